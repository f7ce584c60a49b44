"""Tools package for Meow."""

from pathlib import Path

from meow.config import Config
from meow.tools.dispatcher import ToolCall, ToolDispatcher, find_first_tool_call, find_tool_calls
from meow.tools.fs import (
    CdTool,
    FileAppendTool,
    FileCopyTool,
    FileDeleteTool,
    FileEditTool,
    FileExistsTool,
    FileListTool,
    FileMoveTool,
    FileReadLinesTool,
    FileReadTool,
    FileRenameTool,
    FileWriteTool,
    FolderCreateTool,
    PwdTool,
)
from meow.tools.git import (
    GitAddTool,
    GitBranchTool,
    GitCheckoutTool,
    GitCommitTool,
    GitFetchTool,
    GitLogTool,
    GitPullTool,
    GitStatusTool,
)
from meow.tools.http_fetch import HttpFetchTool
from meow.tools.overflow import OverflowStore
from meow.tools.registry import Tool, ToolOutcome, ToolRegistry
from meow.tools.sandbox import Sandbox
from meow.tools.search import CodeSearchTool
from meow.tools.shell import ShellTool


def build_registry(config: Config) -> ToolRegistry:
    """Registry with the built-in tools, filtered by `tools.enabled` when set."""
    tools_cfg = config.tools
    tools: list[Tool] = [
        FileReadTool(max_file_bytes=tools_cfg.max_file_bytes),
        FileReadLinesTool(),
        FileWriteTool(),
        FileAppendTool(),
        FileListTool(),
        FileExistsTool(),
        FileDeleteTool(),
        FileCopyTool(),
        FileEditTool(max_file_bytes=tools_cfg.max_file_bytes),
        FileRenameTool(),
        FileMoveTool(),
        FolderCreateTool(),
        CodeSearchTool(),
        CdTool(),
        PwdTool(),
        ShellTool(timeout=tools_cfg.shell_timeout),
        HttpFetchTool(timeout=tools_cfg.http_timeout),
        GitStatusTool(timeout=tools_cfg.shell_timeout),
        GitLogTool(timeout=tools_cfg.shell_timeout),
        GitAddTool(timeout=tools_cfg.shell_timeout),
        GitCommitTool(timeout=tools_cfg.shell_timeout),
        GitBranchTool(timeout=tools_cfg.shell_timeout),
        GitCheckoutTool(timeout=tools_cfg.shell_timeout),
        GitFetchTool(timeout=tools_cfg.shell_timeout),
        GitPullTool(timeout=tools_cfg.shell_timeout),
    ]
    enabled = {name.strip() for name in tools_cfg.enabled if name.strip()}
    registry = ToolRegistry()
    for tool in tools:
        if enabled and tool.name not in enabled:
            continue
        registry.register(tool)
    return registry


def build_dispatcher(config: Config, runtime_base: Path | str | None = None) -> ToolDispatcher:
    """Dispatcher wired to a sandbox rooted at the configured sandbox root."""
    sandbox = Sandbox(config.resolved_sandbox_root(runtime_base))
    overflow = OverflowStore(sandbox.root / config.tools.spill_dir)
    return ToolDispatcher(build_registry(config), sandbox, overflow, config.tools)


__all__ = [
    "Tool",
    "ToolCall",
    "ToolDispatcher",
    "ToolOutcome",
    "ToolRegistry",
    "OverflowStore",
    "Sandbox",
    "build_dispatcher",
    "build_registry",
    "find_first_tool_call",
    "find_tool_calls",
]
