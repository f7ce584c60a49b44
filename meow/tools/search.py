"""Code search tool: plain-substring grep over the sandbox."""

import asyncio
import fnmatch
import os
from pathlib import Path
from typing import Any

from meow.logging import get_logger
from meow.tools.registry import Tool, ToolOutcome
from meow.tools.sandbox import Sandbox

log = get_logger(__name__)

MAX_MATCHES = 50
MAX_SEARCH_FILE_BYTES = 256 * 1024
SKIP_DIRS = frozenset({".git", "node_modules", "target", "__pycache__", ".venv", "venv", ".mypy_cache"})


def search_files(
    root: Path,
    pattern: str,
    context: int = 2,
    file_glob: str | None = None,
    limit: int = MAX_MATCHES,
) -> list[tuple[Path, int, list[str]]]:
    """Find lines containing `pattern` under `root`.

    Symlinks, large files, binary and non-UTF-8 files are skipped. Collection
    stops once twice `limit` matches are found.

    Returns:
        Matches as (path, 1-based line, context lines)
    """
    matches: list[tuple[Path, int, list[str]]] = []
    if root.is_file():
        candidates = [root]
    else:
        candidates = []
        for dirpath, dirnames, filenames in os.walk(root):
            dirnames[:] = sorted(d for d in dirnames if d not in SKIP_DIRS)
            for filename in sorted(filenames):
                if file_glob and not fnmatch.fnmatch(filename, file_glob):
                    continue
                candidates.append(Path(dirpath) / filename)

    for path in candidates:
        if len(matches) >= limit * 2:
            break
        if path.is_symlink():
            continue
        try:
            if path.stat().st_size > MAX_SEARCH_FILE_BYTES:
                continue
            data = path.read_bytes()
        except OSError:
            continue
        if b"\0" in data:
            continue
        try:
            lines = data.decode("utf-8").splitlines()
        except UnicodeDecodeError:
            continue

        for index, line in enumerate(lines):
            if pattern not in line:
                continue
            first = max(0, index - context)
            last = min(len(lines), index + context + 1)
            shown = [
                f"{'>' if i == index else ' '} {i + 1:>4}: {lines[i]}"
                for i in range(first, last)
            ]
            matches.append((path, index + 1, shown))

    return matches


class CodeSearchTool(Tool):
    """Search file contents for a literal string."""

    name = "CodeSearch"
    description = "Search files for a literal text pattern and show matching lines with context."
    parameters = {
        "pattern": "string",
        "path": "string (optional, default '.')",
        "context": "number (optional, default 2)",
        "glob": "string (optional, e.g. '*.py')",
    }
    required = ("pattern",)
    path_args = ("path",)

    async def execute(self, args: dict[str, Any], sandbox: Sandbox, max_bytes: int) -> ToolOutcome:
        pattern = str(args["pattern"])
        if not pattern:
            return ToolOutcome(success=False, error="Empty search pattern")
        try:
            context = max(0, int(args.get("context", 2)))
        except (TypeError, ValueError):
            return ToolOutcome(success=False, error="context must be an integer")
        root = sandbox.resolve(str(args.get("path") or "."))
        if not root.exists():
            return ToolOutcome(success=False, error=f"Path not found: {args.get('path')}")
        file_glob = args.get("glob") or None

        loop = asyncio.get_running_loop()
        matches = await loop.run_in_executor(
            None,
            lambda: search_files(root, pattern, context, file_glob),
        )
        total = len(matches)
        log.info("Code search finished", pattern=pattern, root=str(root), matches=total)

        if not matches:
            return ToolOutcome(success=True, content=f"No matches found for pattern: {pattern}")

        header = f"Found {total} matches for '{pattern}'"
        if total > MAX_MATCHES:
            header += f" (showing first {MAX_MATCHES})"
        blocks = [header + ":"]
        for path, line, shown in matches[:MAX_MATCHES]:
            blocks.append(f"{sandbox.display(path)}:{line}\n" + "\n".join(shown))
        return ToolOutcome(success=True, content="\n\n".join(blocks))
