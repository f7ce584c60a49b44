import pytest

from meow.exceptions import SandboxViolationError, ToolValidationError
from meow.tools import Sandbox
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

MAX = 1024 * 1024


@pytest.mark.asyncio
async def test_write_then_read_round_trip(tmp_path):
    sandbox = Sandbox(tmp_path)

    written = await FileWriteTool().execute({"filename": "notes/a.txt", "content": "héllo"}, sandbox, MAX)
    read = await FileReadTool().execute({"filename": "notes/a.txt"}, sandbox, MAX)

    assert written.content == "Written 6 bytes to /notes/a.txt"
    assert read.success and read.content == "héllo"


@pytest.mark.asyncio
async def test_read_missing_and_oversized_files(tmp_path):
    sandbox = Sandbox(tmp_path)
    (tmp_path / "big.txt").write_text("a" * 100)

    missing = await FileReadTool().execute({"filename": "nope.txt"}, sandbox, MAX)
    too_big = await FileReadTool(max_file_bytes=10).execute({"filename": "big.txt"}, sandbox, MAX)

    assert not missing.success and missing.error == "File not found: nope.txt"
    assert not too_big.success and "File too large" in too_big.error


@pytest.mark.asyncio
async def test_read_lines_numbers_the_range(tmp_path):
    sandbox = Sandbox(tmp_path)
    (tmp_path / "f.txt").write_text("\n".join(f"line {i}" for i in range(1, 11)))

    result = await FileReadLinesTool().execute({"filename": "f.txt", "start": 3, "end": 4}, sandbox, MAX)
    bad = await FileReadLinesTool().execute({"filename": "f.txt", "start": 5, "end": 2}, sandbox, MAX)

    assert result.content == "[f.txt lines 3-4 of 10]\n    3 | line 3\n    4 | line 4"
    assert not bad.success


@pytest.mark.asyncio
async def test_append_list_exists_copy_delete(tmp_path):
    sandbox = Sandbox(tmp_path)
    (tmp_path / "log.txt").write_text("a")

    await FileAppendTool().execute({"filename": "log.txt", "content": "b"}, sandbox, MAX)
    assert (tmp_path / "log.txt").read_text() == "ab"

    copied = await FileCopyTool().execute({"source": "log.txt", "destination": "backup/log.txt"}, sandbox, MAX)
    assert copied.content == "Copied /log.txt to /backup/log.txt"

    listing = await FileListTool().execute({}, sandbox, MAX)
    assert listing.content.splitlines() == ["/:", "backup/", "log.txt (2 bytes)"]

    exists = await FileExistsTool().execute({"filename": "backup"}, sandbox, MAX)
    assert exists.content == "Directory exists: /backup"

    not_empty = await FileDeleteTool().execute({"filename": "backup"}, sandbox, MAX)
    assert not not_empty.success

    await FileDeleteTool().execute({"filename": "backup/log.txt"}, sandbox, MAX)
    gone = await FileExistsTool().execute({"filename": "backup/log.txt"}, sandbox, MAX)
    assert gone.content == "Does not exist: backup/log.txt"


@pytest.mark.asyncio
async def test_delete_refuses_sandbox_root(tmp_path):
    result = await FileDeleteTool().execute({"filename": "."}, Sandbox(tmp_path), MAX)

    assert not result.success
    assert tmp_path.exists()


@pytest.mark.asyncio
async def test_cd_and_pwd_track_working_directory(tmp_path):
    sandbox = Sandbox(tmp_path)
    await FolderCreateTool().execute({"path": "src/pkg"}, sandbox, MAX)

    changed = await CdTool().execute({"path": "src"}, sandbox, MAX)
    pwd = await PwdTool().execute({}, sandbox, MAX)
    written = await FileWriteTool().execute({"filename": "pkg/mod.py", "content": "x = 1\n"}, sandbox, MAX)

    assert changed.content == "Changed directory to /src"
    assert pwd.content == "/src"
    assert written.content == "Written 6 bytes to /src/pkg/mod.py"
    assert (tmp_path / "src" / "pkg" / "mod.py").exists()


def test_validate_rejects_missing_and_escaping_arguments(tmp_path):
    sandbox = Sandbox(tmp_path / "root")

    with pytest.raises(ToolValidationError) as exc_info:
        FileReadTool().validate({}, sandbox)
    assert "Missing required argument: filename" in str(exc_info.value)

    with pytest.raises(ToolValidationError):
        FileReadTool().validate({"filename": 42}, sandbox)

    with pytest.raises(SandboxViolationError):
        FileCopyTool().validate({"source": "a.txt", "destination": "/etc/passwd"}, sandbox)


@pytest.mark.asyncio
async def test_edit_replaces_a_unique_fragment(tmp_path):
    sandbox = Sandbox(tmp_path)
    (tmp_path / "app.py").write_text("def main():\n    return 1\n")

    result = await FileEditTool().execute(
        {"filename": "app.py", "old_text": "    return 1", "new_text": "    return 2"},
        sandbox,
        MAX,
    )

    assert result.success
    assert (tmp_path / "app.py").read_text() == "def main():\n    return 2\n"
    assert result.content == "Modified /app.py at line 2:\n```diff\n-    return 1\n+    return 2\n```"


@pytest.mark.asyncio
async def test_edit_requires_exactly_one_match(tmp_path):
    sandbox = Sandbox(tmp_path)
    original = "x = 1\ny = 2\nx = 1\n"
    (tmp_path / "vals.py").write_text(original)

    ambiguous = await FileEditTool().execute(
        {"filename": "vals.py", "old_text": "x = 1", "new_text": "x = 3"}, sandbox, MAX
    )
    missing = await FileEditTool().execute(
        {"filename": "vals.py", "old_text": "z = 1", "new_text": "z = 3"}, sandbox, MAX
    )
    whitespace = await FileEditTool().execute(
        {"filename": "vals.py", "old_text": "y  = 2", "new_text": "y = 5"}, sandbox, MAX
    )

    assert not ambiguous.success
    assert ambiguous.error.startswith("Found 2 occurrences at lines 1, 3.")
    assert not missing.success and "Text not found" in missing.error
    assert not whitespace.success
    assert (tmp_path / "vals.py").read_text() == original


@pytest.mark.asyncio
async def test_rename_refuses_to_overwrite(tmp_path):
    sandbox = Sandbox(tmp_path)
    (tmp_path / "old.txt").write_text("data")
    (tmp_path / "taken.txt").write_text("other")

    renamed = await FileRenameTool().execute(
        {"source_filename": "old.txt", "destination_filename": "new.txt"}, sandbox, MAX
    )
    clash = await FileRenameTool().execute(
        {"source_filename": "new.txt", "destination_filename": "taken.txt"}, sandbox, MAX
    )

    assert renamed.content == "Renamed /old.txt to /new.txt"
    assert not (tmp_path / "old.txt").exists()
    assert (tmp_path / "new.txt").read_text() == "data"
    assert not clash.success and clash.error == "Destination exists: taken.txt"
    assert (tmp_path / "taken.txt").read_text() == "other"


@pytest.mark.asyncio
async def test_move_into_folder_keeps_name(tmp_path):
    sandbox = Sandbox(tmp_path)
    (tmp_path / "report.md").write_text("# Report")
    (tmp_path / "docs").mkdir()
    (tmp_path / "pkg").mkdir()

    moved = await FileMoveTool().execute({"source": "report.md", "destination": "docs"}, sandbox, MAX)
    into_itself = await FileMoveTool().execute({"source": "pkg", "destination": "pkg/inner"}, sandbox, MAX)
    missing = await FileMoveTool().execute({"source": "nope.md", "destination": "docs"}, sandbox, MAX)

    assert moved.content == "Moved /report.md to /docs/report.md"
    assert not (tmp_path / "report.md").exists()
    assert (tmp_path / "docs" / "report.md").read_text() == "# Report"
    assert not into_itself.success
    assert (tmp_path / "pkg").is_dir()
    assert missing.error == "File not found: nope.md"


def test_move_and_rename_paths_stay_in_sandbox(tmp_path):
    sandbox = Sandbox(tmp_path / "root")

    with pytest.raises(SandboxViolationError):
        FileMoveTool().validate({"source": "a.txt", "destination": "../outside.txt"}, sandbox)
    with pytest.raises(SandboxViolationError):
        FileRenameTool().validate({"source_filename": "/etc/hosts", "destination_filename": "h"}, sandbox)
