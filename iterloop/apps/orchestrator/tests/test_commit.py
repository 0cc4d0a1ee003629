"""GitCommitter 测试 -- 需要本机 git"""

import asyncio
import shutil
import subprocess
from pathlib import Path

import pytest
from iterloop.orchestrator.services.commit import GitCommitter

pytestmark = pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")


def _git(repo: Path, *args: str) -> str:
    return subprocess.run(
        ["git", *args], cwd=repo, check=True, capture_output=True, text=True
    ).stdout


@pytest.fixture
def repo(tmp_path: Path) -> Path:
    _git(tmp_path, "init", "-q")
    _git(tmp_path, "config", "user.email", "loop@example.com")
    _git(tmp_path, "config", "user.name", "loop")
    return tmp_path


class TestGitCommitter:
    async def test_commits_listed_paths(self, repo: Path):
        (repo / "a.py").write_text("print('a')\n", encoding="utf-8")
        (repo / "b.py").write_text("print('b')\n", encoding="utf-8")

        ok = await GitCommitter().commit(str(repo), [str(repo / "a.py")], "iterloop: s iteration 1")

        assert ok is True
        assert _git(repo, "log", "--format=%s").strip() == "iterloop: s iteration 1"
        assert _git(repo, "show", "--name-only", "--format=").split() == ["a.py"]

    async def test_nothing_to_commit_is_not_fatal(self, repo: Path):
        (repo / "a.py").write_text("x\n", encoding="utf-8")
        committer = GitCommitter()
        assert await committer.commit(str(repo), [str(repo / "a.py")], "first") is True
        assert await committer.commit(str(repo), [str(repo / "a.py")], "second") is False

    async def test_empty_paths(self, repo: Path):
        assert await GitCommitter().commit(str(repo), [], "noop") is False

    async def test_missing_git_binary(self, repo: Path):
        committer = GitCommitter(git="iterloop-no-such-git")
        assert await committer.commit(str(repo), ["a.py"], "msg") is False

    async def test_not_a_repository(self, tmp_path: Path):
        plain = tmp_path / "plain"
        plain.mkdir()
        (plain / "a.py").write_text("x\n", encoding="utf-8")
        result = await asyncio.wait_for(
            GitCommitter().commit(str(plain), [str(plain / "a.py")], "msg"), timeout=10
        )
        assert result is False
