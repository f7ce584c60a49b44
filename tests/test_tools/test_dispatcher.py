import asyncio
from pathlib import Path
from typing import Any

import pytest

from meow.config import ToolsConfig
from meow.tools import OverflowStore, Sandbox, ToolDispatcher, ToolRegistry
from meow.tools.dispatcher import find_first_tool_call, find_tool_calls, parse_tool_call
from meow.tools.fs import FileReadTool
from meow.tools.registry import Tool, ToolOutcome


class BigOutputTool(Tool):
    name = "Big"
    description = "Return a large payload."

    def __init__(self, size: int, char: str = "x"):
        self.size = size
        self.char = char

    async def execute(self, args: dict[str, Any], sandbox: Sandbox, max_bytes: int) -> ToolOutcome:
        return ToolOutcome(success=True, content=self.char * self.size)


class SlowTool(Tool):
    name = "Slow"
    description = "Never finishes in time."
    timeout_seconds = 0.05

    async def execute(self, args: dict[str, Any], sandbox: Sandbox, max_bytes: int) -> ToolOutcome:
        await asyncio.sleep(5)
        return ToolOutcome(success=True, content="late")


def make_dispatcher(root: Path, *tools: Tool, **tools_config) -> ToolDispatcher:
    registry = ToolRegistry()
    registry.register(FileReadTool())
    for tool in tools:
        registry.register(tool)
    sandbox = Sandbox(root)
    config = ToolsConfig(**tools_config)
    return ToolDispatcher(registry, sandbox, OverflowStore(sandbox.root / config.spill_dir), config)


def test_parse_tool_call_accepts_args_and_flat_forms():
    nested = parse_tool_call({"command": {"tool": "FileRead", "args": {"filename": "a.txt"}}})
    flat = parse_tool_call({"command": {"tool": "Shell", "cmd": "ls"}})

    assert (nested.name, nested.arguments) == ("FileRead", {"filename": "a.txt"})
    assert (flat.name, flat.arguments) == ("Shell", {"cmd": "ls"})
    assert parse_tool_call({"command": {"args": {}}}) is None
    assert parse_tool_call({"command": {"tool": "X", "args": "nope"}}) is None
    assert parse_tool_call(["command"]) is None


def test_only_first_of_several_calls_is_selected():
    text = (
        "I'll read both files.\n"
        '```json\n{"command": {"tool": "FileRead", "args": {"filename": "file1.txt"}}}\n```\n'
        "and then\n"
        '```json\n{"command": {"tool": "FileRead", "args": {"filename": "file2.txt"}}}\n```\n'
    )

    call, ignored = find_first_tool_call(text)

    assert call.arguments == {"filename": "file1.txt"}
    assert ignored == 1


def test_malformed_candidates_are_skipped():
    text = (
        '```json\n{"command": {"tool": "FileRead", "args": {"filename": \n```\n'
        "```\nnot json at all\n```\n"
        'Now inline: {"command": {"tool": "Pwd", "args": {}}} done.'
    )

    calls = find_tool_calls(text)

    assert [c.name for c in calls] == ["Pwd"]


def test_fenced_and_inline_same_object_counted_once():
    text = '```\n{"command": {"tool": "Pwd", "args": {}}}\n```'

    call, ignored = find_first_tool_call(text)

    assert call.name == "Pwd"
    assert ignored == 0


def test_no_tool_call():
    assert find_first_tool_call("Just an answer, no tools.") == (None, 0)


@pytest.mark.asyncio
async def test_dispatch_runs_first_call_and_reports_ignored(tmp_path):
    (tmp_path / "file1.txt").write_text("one")
    (tmp_path / "file2.txt").write_text("two")
    dispatcher = make_dispatcher(tmp_path)
    text = (
        '```json\n{"command": {"tool": "FileRead", "args": {"filename": "file1.txt"}}}\n```\n'
        '```json\n{"command": {"tool": "FileRead", "args": {"filename": "file2.txt"}}}\n```\n'
    )
    call, ignored = find_first_tool_call(text)

    outcome = await dispatcher.dispatch(call)
    message = dispatcher.format_result(outcome, ignored_calls=ignored)

    assert outcome.success
    assert outcome.content == "one"
    assert message.startswith("[Tool Result]\none\n[End Tool Result]\n[Current Directory: /]")
    assert "1 additional tool call(s)" in message
    assert "two" not in message


@pytest.mark.asyncio
async def test_unknown_tool_becomes_failed_result(tmp_path):
    dispatcher = make_dispatcher(tmp_path)
    call, _ = find_first_tool_call('{"command": {"tool": "Teleport", "args": {}}}')

    outcome = await dispatcher.dispatch(call)

    assert not outcome.success
    assert outcome.error == "Tool not found: Teleport"
    assert dispatcher.format_result(outcome).startswith("Tool failed: Tool not found: Teleport")


@pytest.mark.asyncio
async def test_path_outside_sandbox_is_rejected(tmp_path):
    root = tmp_path / "root"
    root.mkdir()
    (tmp_path / "secret.txt").write_text("hidden")
    dispatcher = make_dispatcher(root)
    call, _ = find_first_tool_call('{"command": {"tool": "FileRead", "args": {"filename": "../secret.txt"}}}')

    outcome = await dispatcher.dispatch(call)

    assert not outcome.success
    assert "outside the sandbox root" in outcome.error
    assert "hidden" not in dispatcher.format_result(outcome)


@pytest.mark.asyncio
async def test_large_output_spills_and_keeps_preview(tmp_path):
    dispatcher = make_dispatcher(
        tmp_path,
        BigOutputTool(40 * 1024),
        preview_threshold=32 * 1024,
        max_output_bytes=1024 * 1024,
        preview_chars=100,
    )
    call, _ = find_first_tool_call('{"command": {"tool": "Big", "args": {}}}')

    outcome = await dispatcher.dispatch(call)

    assert outcome.success
    assert outcome.overflowed
    spill = Path(outcome.spill_path)
    assert spill.parent == tmp_path.resolve() / "tmp"
    assert spill.name.startswith("meow_tool_")
    assert spill.read_bytes() == b"x" * (40 * 1024)
    assert outcome.content.startswith("x" * 100 + "\n\n[Output truncated: showing 100 of 40960 bytes.")
    assert str(spill) in outcome.content


@pytest.mark.asyncio
async def test_truncation_notice_counts_preview_in_bytes(tmp_path):
    dispatcher = make_dispatcher(
        tmp_path,
        BigOutputTool(20000, char="é"),
        preview_threshold=32 * 1024,
        max_output_bytes=1024 * 1024,
        preview_chars=100,
    )
    call, _ = find_first_tool_call('{"command": {"tool": "Big", "args": {}}}')

    outcome = await dispatcher.dispatch(call)

    assert outcome.overflowed
    assert outcome.content.startswith("é" * 100 + "\n\n[Output truncated: showing 200 of 40000 bytes.")


@pytest.mark.asyncio
async def test_output_above_ceiling_fails(tmp_path):
    dispatcher = make_dispatcher(tmp_path, BigOutputTool(2048), max_output_bytes=1024)
    call, _ = find_first_tool_call('{"command": {"tool": "Big", "args": {}}}')

    outcome = await dispatcher.dispatch(call)

    assert not outcome.success
    assert "exceeds the 1024 byte limit" in outcome.error
    assert not (tmp_path / "tmp").exists()


@pytest.mark.asyncio
async def test_tool_timeout_becomes_failed_result(tmp_path):
    dispatcher = make_dispatcher(tmp_path, SlowTool())
    call, _ = find_first_tool_call('{"command": {"tool": "Slow", "args": {}}}')

    outcome = await dispatcher.dispatch(call)

    assert not outcome.success
    assert "timed out after 0.05s" in outcome.error
