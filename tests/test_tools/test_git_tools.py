import shutil

import pytest

from meow.tools import Sandbox
from meow.tools.git import GitBranchTool, GitCheckoutTool, GitLogTool, GitStatusTool
from meow.tools.shell import run_process

MAX = 1024 * 1024

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")


async def init_repo(root) -> None:
    for argv in (
        ["git", "init", "-q"],
        ["git", "-c", "user.name=Test", "-c", "user.email=test@example.com", "commit", "-q", "--allow-empty", "-m", "init"],
    ):
        returncode, output = await run_process("setup", argv, root, MAX)
        assert returncode == 0, output


@pytest.mark.asyncio
async def test_branch_names_cannot_be_options(tmp_path):
    sandbox = Sandbox(tmp_path)

    created = await GitBranchTool().execute({"name": "--force"}, sandbox, MAX)
    switched = await GitCheckoutTool().execute({"branch": "-b x"}, sandbox, MAX)

    assert not created.success and created.error == "Invalid branch name: --force"
    assert not switched.success and switched.error == "Invalid branch name: -b x"


@requires_git
@pytest.mark.asyncio
async def test_branch_create_list_and_checkout(tmp_path):
    await init_repo(tmp_path)
    sandbox = Sandbox(tmp_path)

    created = await GitBranchTool().execute({"name": "feature"}, sandbox, MAX)
    listing = await GitBranchTool().execute({}, sandbox, MAX)
    switched = await GitCheckoutTool().execute({"branch": "feature"}, sandbox, MAX)
    status = await GitStatusTool().execute({}, sandbox, MAX)
    log = await GitLogTool().execute({"oneline": True}, sandbox, MAX)

    assert created.success
    assert "feature" in listing.content
    assert switched.success
    assert "feature" in status.content.splitlines()[0]
    assert log.content.endswith("init")


@requires_git
@pytest.mark.asyncio
async def test_checkout_of_unknown_branch_fails(tmp_path):
    await init_repo(tmp_path)

    result = await GitCheckoutTool().execute({"branch": "missing"}, Sandbox(tmp_path), MAX)

    assert not result.success
    assert result.error == "git checkout failed"
    assert result.exit_code != 0
