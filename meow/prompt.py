"""System prompt assembly: persona text plus the tool invocation protocol."""

DEFAULT_PERSONA = (
    "You are Meow, a helpful coding assistant running in the user's terminal. "
    "You can read and change files, run commands and fetch URLs through tools."
)

TOOL_PROTOCOL = """\
To use a tool, reply with exactly one JSON object in a fenced block:

```json
{{"command": {{"tool": "ToolName", "args": {{"arg": "value"}}}}}}
```

Only the first tool call in a response is executed. Wait for the result before
calling another tool. Never write "[Tool Result]" yourself; results are
provided to you after the tool runs.

When the conversation grows long, call CompactContext with a summary of
everything important so far:
{{"command": {{"tool": "CompactContext", "args": {{"summary": "..."}}}}}}

Available tools:
{tools}"""


def build_system_prompt(tool_lines: list[str], persona: str = "") -> str:
    """Combine persona text with the tool protocol and tool list."""
    listing = "\n".join(f"- {line}" for line in tool_lines) if tool_lines else "- (none)"
    return f"{(persona or DEFAULT_PERSONA).strip()}\n\n{TOOL_PROTOCOL.format(tools=listing)}"
