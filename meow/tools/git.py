"""Git tools run in the sandbox working directory."""

from typing import Any

from meow.tools.registry import Tool, ToolOutcome
from meow.tools.sandbox import Sandbox
from meow.tools.shell import run_process

DEFAULT_LOG_COUNT = 10


class _GitTool(Tool):
    """Shared runner: `git <argv>` with stderr folded into the output."""

    def __init__(self, timeout: float = 30.0):
        self.timeout_seconds = timeout

    async def run_git(self, argv: list[str], sandbox: Sandbox, max_bytes: int) -> ToolOutcome:
        returncode, output = await run_process(self.name, ["git", *argv], sandbox.cwd, max_bytes)
        if returncode != 0:
            return ToolOutcome(
                success=False,
                content=output,
                exit_code=returncode,
                error=f"git {argv[0]} failed",
            )
        return ToolOutcome(success=True, content=output or "[no output]", exit_code=0)


class GitStatusTool(_GitTool):
    name = "GitStatus"
    description = "Show the working tree status."

    async def execute(self, args: dict[str, Any], sandbox: Sandbox, max_bytes: int) -> ToolOutcome:
        return await self.run_git(["status", "--short", "--branch"], sandbox, max_bytes)


class GitLogTool(_GitTool):
    name = "GitLog"
    description = "Show recent commits."
    parameters = {"count": "number (optional)", "oneline": "boolean (optional)"}

    async def execute(self, args: dict[str, Any], sandbox: Sandbox, max_bytes: int) -> ToolOutcome:
        try:
            count = max(1, int(args.get("count", DEFAULT_LOG_COUNT)))
        except (TypeError, ValueError):
            return ToolOutcome(success=False, error="count must be an integer")
        argv = ["log", f"-n{count}"]
        if args.get("oneline") in (True, "true"):
            argv.append("--oneline")
        return await self.run_git(argv, sandbox, max_bytes)


class GitAddTool(_GitTool):
    name = "GitAdd"
    description = "Stage a path for commit."
    parameters = {"path": "string (optional, default '.')"}
    path_args = ("path",)

    async def execute(self, args: dict[str, Any], sandbox: Sandbox, max_bytes: int) -> ToolOutcome:
        target = sandbox.resolve(str(args.get("path") or "."))
        return await self.run_git(["add", "--", str(target)], sandbox, max_bytes)


class GitCommitTool(_GitTool):
    name = "GitCommit"
    description = "Commit staged changes."
    parameters = {"message": "string", "amend": "boolean (optional)"}
    required = ("message",)

    async def execute(self, args: dict[str, Any], sandbox: Sandbox, max_bytes: int) -> ToolOutcome:
        message = str(args["message"]).strip()
        if not message:
            return ToolOutcome(success=False, error="Commit message is empty")
        argv = ["commit", "-m", message]
        if args.get("amend") in (True, "true"):
            argv.append("--amend")
        return await self.run_git(argv, sandbox, max_bytes)


def _ref_name(value: Any) -> str | None:
    """A branch name usable as a positional argument, or None."""
    name = str(value or "").strip()
    if not name or name.startswith("-") or any(ch.isspace() for ch in name):
        return None
    return name


class GitBranchTool(_GitTool):
    name = "GitBranch"
    description = "List branches, create a branch, or delete one with delete=true."
    parameters = {"name": "string (optional)", "delete": "boolean (optional)"}

    async def execute(self, args: dict[str, Any], sandbox: Sandbox, max_bytes: int) -> ToolOutcome:
        if not args.get("name"):
            return await self.run_git(["branch", "--list"], sandbox, max_bytes)
        name = _ref_name(args["name"])
        if name is None:
            return ToolOutcome(success=False, error=f"Invalid branch name: {args['name']}")
        if args.get("delete") in (True, "true"):
            return await self.run_git(["branch", "-d", name], sandbox, max_bytes)
        return await self.run_git(["branch", name], sandbox, max_bytes)


class GitCheckoutTool(_GitTool):
    name = "GitCheckout"
    description = "Switch to a branch."
    parameters = {"branch": "string"}
    required = ("branch",)

    async def execute(self, args: dict[str, Any], sandbox: Sandbox, max_bytes: int) -> ToolOutcome:
        branch = _ref_name(args["branch"])
        if branch is None:
            return ToolOutcome(success=False, error=f"Invalid branch name: {args['branch']}")
        return await self.run_git(["checkout", branch], sandbox, max_bytes)


class GitFetchTool(_GitTool):
    name = "GitFetch"
    description = "Fetch from the default remote."

    async def execute(self, args: dict[str, Any], sandbox: Sandbox, max_bytes: int) -> ToolOutcome:
        return await self.run_git(["fetch"], sandbox, max_bytes)


class GitPullTool(_GitTool):
    name = "GitPull"
    description = "Pull from the default remote (fast-forward only)."

    async def execute(self, args: dict[str, Any], sandbox: Sandbox, max_bytes: int) -> ToolOutcome:
        return await self.run_git(["pull", "--ff-only"], sandbox, max_bytes)
