"""Sandbox: path confinement, working directory and bounded tool execution."""

import asyncio
from pathlib import Path
from typing import TYPE_CHECKING, Any

from meow.exceptions import (
    SandboxViolationError,
    ToolError,
    ToolExecutionError,
    ToolLimitError,
)
from meow.logging import get_logger

if TYPE_CHECKING:
    from meow.tools.registry import Tool, ToolOutcome

log = get_logger(__name__)


class Sandbox:
    """Confines tool paths to a root directory and tracks the working directory."""

    def __init__(self, root: Path | str):
        self.root = Path(root).expanduser().resolve()
        self.cwd = self.root

    def contains(self, path: Path) -> bool:
        return path == self.root or path.is_relative_to(self.root)

    def resolve(self, path: str) -> Path:
        """Resolve a path against the working directory.

        Raises:
            SandboxViolationError: the resolved path lies outside the root
        """
        candidate = Path(str(path or ".")).expanduser()
        if not candidate.is_absolute():
            candidate = self.cwd / candidate
        resolved = candidate.resolve()
        if not self.contains(resolved):
            raise SandboxViolationError(str(path), str(self.root))
        return resolved

    def change_dir(self, path: str) -> Path:
        target = self.resolve(path)
        if not target.is_dir():
            raise ToolExecutionError("Cd", f"Not a directory: {path}")
        self.cwd = target
        return target

    def display(self, path: Path) -> str:
        """Path relative to the root, prefixed with '/' for the model."""
        relative = path.relative_to(self.root).as_posix()
        return "/" if relative == "." else f"/{relative}"

    async def execute(
        self,
        tool: "Tool",
        args: dict[str, Any],
        timeout: float,
        max_bytes: int,
    ) -> "ToolOutcome":
        """Validate and run a tool under a timeout and an output-size ceiling.

        Raises:
            ToolError: validation failure, sandbox violation, overrun or handler error
        """
        tool.validate(args, self)
        log.info("Executing tool", tool=tool.name, args=args, cwd=str(self.cwd))
        try:
            outcome = await asyncio.wait_for(tool.execute(args, self, max_bytes), timeout=timeout)
        except asyncio.TimeoutError as e:
            timeout_label = int(timeout) if float(timeout).is_integer() else timeout
            raise ToolLimitError(tool.name, "timeout", f"Execution timed out after {timeout_label}s") from e
        except ToolError:
            raise
        except Exception as e:
            log.error("Tool execution failed", tool=tool.name, error=str(e))
            raise ToolExecutionError(tool.name, str(e)) from e

        size = len(outcome.content.encode("utf-8"))
        if size > max_bytes:
            raise ToolLimitError(tool.name, "size", f"Output of {size} bytes exceeds the {max_bytes} byte limit")
        log.info("Tool executed", tool=tool.name, success=outcome.success)
        return outcome
