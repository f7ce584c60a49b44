"""File system tools confined to the sandbox."""

import shutil
from typing import Any

from meow.logging import get_logger
from meow.tools.registry import Tool, ToolOutcome
from meow.tools.sandbox import Sandbox

log = get_logger(__name__)

DEFAULT_READ_LINES = 50


class FileReadTool(Tool):
    """Read file contents."""

    name = "FileRead"
    description = "Read the contents of a file."
    parameters = {"filename": "string"}
    required = ("filename",)
    path_args = ("filename",)

    def __init__(self, max_file_bytes: int = 512 * 1024):
        self.max_file_bytes = max_file_bytes

    async def execute(self, args: dict[str, Any], sandbox: Sandbox, max_bytes: int) -> ToolOutcome:
        filename = args["filename"]
        file_path = sandbox.resolve(filename)

        if not file_path.exists():
            return ToolOutcome(success=False, error=f"File not found: {filename}")
        if not file_path.is_file():
            return ToolOutcome(success=False, error=f"Not a file: {filename}")

        file_size = file_path.stat().st_size
        if file_size > self.max_file_bytes:
            return ToolOutcome(
                success=False,
                error=f"File too large: {file_size} bytes (max {self.max_file_bytes}). Use FileReadLines.",
            )

        content = file_path.read_text(encoding="utf-8", errors="replace")
        return ToolOutcome(success=True, content=content)


class FileReadLinesTool(Tool):
    """Read a 1-indexed, inclusive line range of a file."""

    name = "FileReadLines"
    description = "Read lines start..end (1-indexed, inclusive) of a file."
    parameters = {"filename": "string", "start": "number", "end": "number"}
    required = ("filename",)
    path_args = ("filename",)

    async def execute(self, args: dict[str, Any], sandbox: Sandbox, max_bytes: int) -> ToolOutcome:
        filename = args["filename"]
        file_path = sandbox.resolve(filename)
        if not file_path.is_file():
            return ToolOutcome(success=False, error=f"File not found: {filename}")

        try:
            start = max(1, int(args.get("start", 1)))
            end = int(args.get("end", start + DEFAULT_READ_LINES))
        except (TypeError, ValueError):
            return ToolOutcome(success=False, error="start and end must be integers")
        if end < start:
            return ToolOutcome(success=False, error=f"Invalid range: {start}-{end}")

        lines = file_path.read_text(encoding="utf-8", errors="replace").splitlines()
        selected = lines[start - 1:end]
        numbered = "\n".join(
            f"{number:>5} | {line}" for number, line in enumerate(selected, start=start)
        )
        header = f"[{filename} lines {start}-{min(end, len(lines))} of {len(lines)}]"
        return ToolOutcome(success=True, content=f"{header}\n{numbered}")


class FileWriteTool(Tool):
    """Write content to a file, creating parent directories."""

    name = "FileWrite"
    description = "Write content to a file, replacing it if it exists."
    parameters = {"filename": "string", "content": "string"}
    required = ("filename",)
    path_args = ("filename",)

    async def execute(self, args: dict[str, Any], sandbox: Sandbox, max_bytes: int) -> ToolOutcome:
        file_path = sandbox.resolve(args["filename"])
        content = str(args.get("content", ""))
        file_path.parent.mkdir(parents=True, exist_ok=True)
        file_path.write_text(content, encoding="utf-8")
        size = len(content.encode("utf-8"))
        return ToolOutcome(success=True, content=f"Written {size} bytes to {sandbox.display(file_path)}")


class FileAppendTool(Tool):
    """Append content to a file."""

    name = "FileAppend"
    description = "Append content to the end of a file."
    parameters = {"filename": "string", "content": "string"}
    required = ("filename", "content")
    path_args = ("filename",)

    async def execute(self, args: dict[str, Any], sandbox: Sandbox, max_bytes: int) -> ToolOutcome:
        file_path = sandbox.resolve(args["filename"])
        content = str(args["content"])
        file_path.parent.mkdir(parents=True, exist_ok=True)
        with open(file_path, "a", encoding="utf-8") as f:
            f.write(content)
        size = len(content.encode("utf-8"))
        return ToolOutcome(success=True, content=f"Appended {size} bytes to {sandbox.display(file_path)}")


class FileListTool(Tool):
    """List a directory."""

    name = "FileList"
    description = "List files and folders in a directory."
    parameters = {"path": "string (optional)"}
    path_args = ("path",)

    async def execute(self, args: dict[str, Any], sandbox: Sandbox, max_bytes: int) -> ToolOutcome:
        path = str(args.get("path") or ".")
        dir_path = sandbox.resolve(path)
        if not dir_path.is_dir():
            return ToolOutcome(success=False, error=f"Not a directory: {path}")

        entries = []
        for entry in sorted(dir_path.iterdir(), key=lambda p: (not p.is_dir(), p.name.lower())):
            if entry.is_dir():
                entries.append(f"{entry.name}/")
            else:
                entries.append(f"{entry.name} ({entry.stat().st_size} bytes)")
        listing = "\n".join(entries) if entries else "[empty directory]"
        return ToolOutcome(success=True, content=f"{sandbox.display(dir_path)}:\n{listing}")


class FileExistsTool(Tool):
    name = "FileExists"
    description = "Check whether a file or folder exists."
    parameters = {"filename": "string"}
    required = ("filename",)
    path_args = ("filename",)

    async def execute(self, args: dict[str, Any], sandbox: Sandbox, max_bytes: int) -> ToolOutcome:
        target = sandbox.resolve(args["filename"])
        if target.is_dir():
            return ToolOutcome(success=True, content=f"Directory exists: {sandbox.display(target)}")
        if target.exists():
            return ToolOutcome(success=True, content=f"File exists: {sandbox.display(target)}")
        return ToolOutcome(success=True, content=f"Does not exist: {args['filename']}")


class FileDeleteTool(Tool):
    name = "FileDelete"
    description = "Delete a file or an empty folder."
    parameters = {"filename": "string"}
    required = ("filename",)
    path_args = ("filename",)

    async def execute(self, args: dict[str, Any], sandbox: Sandbox, max_bytes: int) -> ToolOutcome:
        filename = args["filename"]
        target = sandbox.resolve(filename)
        if target == sandbox.root:
            return ToolOutcome(success=False, error="Refusing to delete the sandbox root")
        if not target.exists():
            return ToolOutcome(success=False, error=f"File not found: {filename}")
        if target.is_dir():
            try:
                target.rmdir()
            except OSError:
                return ToolOutcome(success=False, error=f"Directory not empty: {filename}")
        else:
            target.unlink()
        return ToolOutcome(success=True, content=f"Deleted {sandbox.display(target)}")


class FolderCreateTool(Tool):
    name = "FolderCreate"
    description = "Create a folder, including missing parents."
    parameters = {"path": "string"}
    required = ("path",)
    path_args = ("path",)

    async def execute(self, args: dict[str, Any], sandbox: Sandbox, max_bytes: int) -> ToolOutcome:
        target = sandbox.resolve(args["path"])
        if target.exists() and not target.is_dir():
            return ToolOutcome(success=False, error=f"A file already exists at {args['path']}")
        target.mkdir(parents=True, exist_ok=True)
        return ToolOutcome(success=True, content=f"Created folder {sandbox.display(target)}")


class FileCopyTool(Tool):
    name = "FileCopy"
    description = "Copy a file."
    parameters = {"source": "string", "destination": "string"}
    required = ("source", "destination")
    path_args = ("source", "destination")

    async def execute(self, args: dict[str, Any], sandbox: Sandbox, max_bytes: int) -> ToolOutcome:
        source = sandbox.resolve(args["source"])
        destination = sandbox.resolve(args["destination"])
        if not source.is_file():
            return ToolOutcome(success=False, error=f"File not found: {args['source']}")
        destination.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(source, destination)
        return ToolOutcome(
            success=True,
            content=f"Copied {sandbox.display(source)} to {sandbox.display(destination)}",
        )


class FileEditTool(Tool):
    """Replace one exact occurrence of a text fragment in a file."""

    name = "FileEdit"
    description = (
        "Replace old_text with new_text in a file. old_text must match exactly once, "
        "including whitespace."
    )
    parameters = {"filename": "string", "old_text": "string", "new_text": "string"}
    required = ("filename", "old_text", "new_text")
    path_args = ("filename",)

    def __init__(self, max_file_bytes: int = 512 * 1024):
        self.max_file_bytes = max_file_bytes

    async def execute(self, args: dict[str, Any], sandbox: Sandbox, max_bytes: int) -> ToolOutcome:
        filename = args["filename"]
        old_text = str(args["old_text"])
        new_text = str(args["new_text"])
        file_path = sandbox.resolve(filename)

        if not file_path.is_file():
            return ToolOutcome(success=False, error=f"File not found: {filename}")
        if not old_text:
            return ToolOutcome(success=False, error="old_text must not be empty")
        file_size = file_path.stat().st_size
        if file_size > self.max_file_bytes:
            return ToolOutcome(success=False, error=f"File too large: {file_size} bytes (max {self.max_file_bytes})")
        try:
            content = file_path.read_text(encoding="utf-8")
        except UnicodeDecodeError:
            return ToolOutcome(success=False, error=f"File is not UTF-8 text: {filename}")

        positions = []
        start = content.find(old_text)
        while start != -1:
            positions.append(start)
            start = content.find(old_text, start + 1)
        if not positions:
            return ToolOutcome(
                success=False,
                error=f"Text not found in {filename}. The text must match exactly, including whitespace.",
            )
        line = content.count("\n", 0, positions[0]) + 1
        if len(positions) > 1:
            lines = ", ".join(str(content.count("\n", 0, pos) + 1) for pos in positions)
            return ToolOutcome(
                success=False,
                error=(
                    f"Found {len(positions)} occurrences at lines {lines}. "
                    "Include more surrounding text to make the match unique."
                ),
            )

        pos = positions[0]
        file_path.write_text(content[:pos] + new_text + content[pos + len(old_text):], encoding="utf-8")
        log.info("File edited", path=str(file_path), line=line)

        diff = [f"-{text}" for text in old_text.splitlines()]
        diff.extend(f"+{text}" for text in new_text.splitlines())
        body = "\n".join(diff)
        return ToolOutcome(
            success=True,
            content=f"Modified {sandbox.display(file_path)} at line {line}:\n```diff\n{body}\n```",
        )


class FileRenameTool(Tool):
    name = "FileRename"
    description = "Rename a file or folder. Fails if the destination exists."
    parameters = {"source_filename": "string", "destination_filename": "string"}
    required = ("source_filename", "destination_filename")
    path_args = ("source_filename", "destination_filename")

    async def execute(self, args: dict[str, Any], sandbox: Sandbox, max_bytes: int) -> ToolOutcome:
        source = sandbox.resolve(args["source_filename"])
        destination = sandbox.resolve(args["destination_filename"])
        if source == sandbox.root:
            return ToolOutcome(success=False, error="Refusing to rename the sandbox root")
        if not source.exists():
            return ToolOutcome(success=False, error=f"File not found: {args['source_filename']}")
        if destination.exists():
            return ToolOutcome(success=False, error=f"Destination exists: {args['destination_filename']}")
        destination.parent.mkdir(parents=True, exist_ok=True)
        source.rename(destination)
        return ToolOutcome(
            success=True,
            content=f"Renamed {sandbox.display(source)} to {sandbox.display(destination)}",
        )


class FileMoveTool(Tool):
    """Move a file or folder; an existing destination folder receives it."""

    name = "FileMove"
    description = "Move a file or folder. Moving into an existing folder keeps the name."
    parameters = {"source": "string", "destination": "string"}
    required = ("source", "destination")
    path_args = ("source", "destination")

    async def execute(self, args: dict[str, Any], sandbox: Sandbox, max_bytes: int) -> ToolOutcome:
        source = sandbox.resolve(args["source"])
        destination = sandbox.resolve(args["destination"])
        if source == sandbox.root:
            return ToolOutcome(success=False, error="Refusing to move the sandbox root")
        if not source.exists():
            return ToolOutcome(success=False, error=f"File not found: {args['source']}")
        if destination.is_dir():
            destination = destination / source.name
        if destination.exists():
            return ToolOutcome(success=False, error=f"Destination exists: {sandbox.display(destination)}")
        if destination == source or destination.is_relative_to(source):
            return ToolOutcome(success=False, error="Cannot move a folder into itself")
        destination.parent.mkdir(parents=True, exist_ok=True)
        shutil.move(str(source), str(destination))
        return ToolOutcome(
            success=True,
            content=f"Moved {sandbox.display(source)} to {sandbox.display(destination)}",
        )


class CdTool(Tool):
    name = "Cd"
    description = "Change the current directory (within the sandbox)."
    parameters = {"path": "string"}
    required = ("path",)
    path_args = ("path",)

    async def execute(self, args: dict[str, Any], sandbox: Sandbox, max_bytes: int) -> ToolOutcome:
        target = sandbox.resolve(args["path"])
        if not target.is_dir():
            return ToolOutcome(success=False, error=f"Not a directory: {args['path']}")
        sandbox.change_dir(args["path"])
        return ToolOutcome(success=True, content=f"Changed directory to {sandbox.display(target)}")


class PwdTool(Tool):
    name = "Pwd"
    description = "Print the current directory."

    async def execute(self, args: dict[str, Any], sandbox: Sandbox, max_bytes: int) -> ToolOutcome:
        return ToolOutcome(success=True, content=sandbox.display(sandbox.cwd))
