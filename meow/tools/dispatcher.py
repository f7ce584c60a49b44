"""Find the embedded tool invocation in model text, run it, format the result."""

import json
import re
from dataclasses import dataclass, field
from typing import Any

from meow.config import ToolsConfig
from meow.exceptions import ToolError
from meow.logging import get_logger
from meow.tools.overflow import OverflowStore
from meow.tools.registry import ToolOutcome, ToolRegistry
from meow.tools.sandbox import Sandbox

log = get_logger(__name__)

_FENCED_BLOCK_RE = re.compile(r"```(?:json)?[ \t]*\r?\n?(.*?)```", re.DOTALL)
_INLINE_COMMAND_RE = re.compile(r'\{\s*"command"')
_DECODER = json.JSONDecoder()

TOOL_RESULT_OPEN = "[Tool Result]"
TOOL_RESULT_CLOSE = "[End Tool Result]"
SUCCESS_FOLLOWUP = "Please continue your response based on this result."
FAILURE_FOLLOWUP = (
    "Please analyze the failure and try again with a corrected command or different approach."
)


@dataclass
class ToolCall:
    """A tool invocation parsed from model text."""

    name: str
    arguments: dict[str, Any] = field(default_factory=dict)
    start: int = 0
    end: int = 0


def parse_tool_call(payload: Any, start: int = 0, end: int = 0) -> ToolCall | None:
    """Build a ToolCall from a decoded `{"command": {"tool": ..., "args": {...}}}` object."""
    if not isinstance(payload, dict):
        return None
    command = payload.get("command")
    if not isinstance(command, dict):
        return None
    name = command.get("tool")
    if not isinstance(name, str) or not name.strip():
        return None
    if "args" in command:
        arguments = command["args"]
        if not isinstance(arguments, dict):
            return None
    else:
        # Flat form: arguments sit beside "tool".
        arguments = {key: value for key, value in command.items() if key != "tool"}
    return ToolCall(name=name.strip(), arguments=dict(arguments), start=start, end=end)


def _decode_at(text: str, index: int) -> tuple[Any, int] | None:
    try:
        return _DECODER.raw_decode(text, index)
    except json.JSONDecodeError:
        return None


def find_tool_calls(text: str) -> list[ToolCall]:
    """Return every well-formed tool invocation in order of appearance.

    Candidates come from fenced code blocks and from inline objects that start
    with a "command" key. Malformed candidates are skipped.
    """
    found: dict[int, ToolCall] = {}

    for match in _FENCED_BLOCK_RE.finditer(text):
        body_start = match.start(1)
        brace = text.find("{", body_start, match.end(1))
        if brace < 0:
            continue
        decoded = _decode_at(text, brace)
        if decoded is None:
            continue
        payload, end = decoded
        call = parse_tool_call(payload, brace, end)
        if call is not None:
            found.setdefault(brace, call)

    for match in _INLINE_COMMAND_RE.finditer(text):
        if match.start() in found:
            continue
        decoded = _decode_at(text, match.start())
        if decoded is None:
            continue
        payload, end = decoded
        call = parse_tool_call(payload, match.start(), end)
        if call is not None:
            found[match.start()] = call

    return [found[start] for start in sorted(found)]


def find_first_tool_call(text: str) -> tuple[ToolCall | None, int]:
    """Return the first tool invocation and how many later ones were found."""
    calls = find_tool_calls(text)
    if not calls:
        return None, 0
    return calls[0], len(calls) - 1


class ToolDispatcher:
    """Execute one tool call through the sandbox and apply the overflow policy."""

    def __init__(
        self,
        registry: ToolRegistry,
        sandbox: Sandbox,
        overflow: OverflowStore,
        config: ToolsConfig,
    ):
        self.registry = registry
        self.sandbox = sandbox
        self.overflow = overflow
        self.config = config

    async def dispatch(self, call: ToolCall) -> ToolOutcome:
        """Run a tool call. Tool errors become failed outcomes, never exceptions."""
        try:
            tool = self.registry.get(call.name)
            timeout = tool.timeout_seconds or self.config.timeout
            outcome = await self.sandbox.execute(
                tool,
                call.arguments,
                timeout=timeout,
                max_bytes=self.config.max_output_bytes,
            )
        except ToolError as e:
            log.warning("Tool call failed", tool=call.name, error=str(e))
            return ToolOutcome(success=False, error=str(e))

        if outcome.success:
            outcome = self._apply_overflow(outcome)
        return outcome

    def _apply_overflow(self, outcome: ToolOutcome) -> ToolOutcome:
        data = outcome.content.encode("utf-8")
        if len(data) <= self.config.preview_threshold:
            return outcome
        spill_path = self.overflow.spill(data)
        preview = self.overflow.preview(data, self.config.preview_chars)
        preview_bytes = len(preview.encode("utf-8"))
        content = (
            f"{preview}\n\n[Output truncated: showing {preview_bytes} of {len(data)} bytes. "
            f"Full output saved to {spill_path}]"
        )
        return outcome.model_copy(
            update={"content": content, "overflowed": True, "spill_path": str(spill_path)}
        )

    def format_result(self, outcome: ToolOutcome, ignored_calls: int = 0) -> str:
        """Render a tool outcome as the message fed back to the model."""
        cwd = self.sandbox.display(self.sandbox.cwd)
        if outcome.success:
            message = (
                f"{TOOL_RESULT_OPEN}\n{outcome.content}\n{TOOL_RESULT_CLOSE}\n"
                f"[Current Directory: {cwd}]\n\n{SUCCESS_FOLLOWUP}"
            )
        else:
            detail = outcome.error or "Tool execution failed"
            if outcome.exit_code is not None:
                detail = f"{detail} (exit code {outcome.exit_code})"
            if outcome.content.strip():
                detail = f"{detail}\n{outcome.content}"
            message = f"Tool failed: {detail}\n[Current Directory: {cwd}]\n\n{FAILURE_FOLLOWUP}"
        if ignored_calls:
            message += (
                f"\n\n[Note: {ignored_calls} additional tool call(s) in your response were ignored. "
                "Only the first tool call runs per response.]"
            )
        return message
