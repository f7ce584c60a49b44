"""Shell tool for executing commands."""

import asyncio
import os
from pathlib import Path
from typing import Any, cast

from meow.exceptions import ToolLimitError
from meow.logging import get_logger
from meow.tools.registry import Tool, ToolOutcome
from meow.tools.sandbox import Sandbox

log = get_logger(__name__)

READ_CHUNK_BYTES = 64 * 1024


async def _kill(process: asyncio.subprocess.Process) -> None:
    if process.returncode is None:
        try:
            process.kill()
        except ProcessLookupError:
            pass
    await process.wait()


async def run_process(
    tool_name: str,
    command: str | list[str],
    cwd: Path,
    max_bytes: int,
) -> tuple[int, str]:
    """Run a command with stderr folded into stdout, bounded by `max_bytes`.

    A string runs through the shell, a list is executed directly. The process
    is killed when its output exceeds the ceiling or when the caller cancels
    (timeouts arrive as cancellation).

    Returns:
        Exit code and decoded output
    """
    env = os.environ.copy()
    env["PATH"] = os.environ.get("PATH", "/usr/local/bin:/usr/bin:/bin")
    if isinstance(command, str):
        process = await asyncio.create_subprocess_shell(
            command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
            cwd=str(cwd),
            env=env,
        )
    else:
        process = await asyncio.create_subprocess_exec(
            *command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
            cwd=str(cwd),
            env=env,
        )

    output = bytearray()
    try:
        stdout = cast(asyncio.StreamReader, process.stdout)
        while True:
            chunk = await stdout.read(READ_CHUNK_BYTES)
            if not chunk:
                break
            output.extend(chunk)
            if len(output) > max_bytes:
                await _kill(process)
                raise ToolLimitError(
                    tool_name,
                    "size",
                    f"Output exceeded the {max_bytes} byte limit; process killed",
                )
        returncode = await process.wait()
    except asyncio.CancelledError:
        await _kill(process)
        raise

    return returncode, output.decode("utf-8", errors="replace").strip()


class ShellTool(Tool):
    """Execute shell commands."""

    name = "Shell"
    description = "Execute a shell command in the current directory and return its output."
    parameters = {"cmd": "string"}
    required = ("cmd",)

    def __init__(self, timeout: float = 30.0):
        self.timeout_seconds = timeout

    async def execute(self, args: dict[str, Any], sandbox: Sandbox, max_bytes: int) -> ToolOutcome:
        command = str(args["cmd"]).strip()
        if not command:
            return ToolOutcome(success=False, error="Command is empty")

        log.info("Executing shell command", command=command, cwd=str(sandbox.cwd))
        returncode, output = await run_process(self.name, command, sandbox.cwd, max_bytes)
        if returncode != 0:
            return ToolOutcome(
                success=False,
                content=output,
                exit_code=returncode,
                error="Command failed",
            )
        return ToolOutcome(success=True, content=output or "[no output]", exit_code=0)
