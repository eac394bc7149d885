"""Tests for GitHelper against a real temporary repository."""

import shutil
import subprocess
from pathlib import Path

import pytest

from changeset_engine.adapters.git import GitHelper, parse_numstat, sanitize_paths
from changeset_engine.core.models import DiffStat

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")


def _git(cwd: Path, *args: str) -> None:
    subprocess.run(["git", *args], cwd=cwd, check=True, capture_output=True)


@pytest.fixture()
def repo(tmp_path: Path) -> Path:
    """Create a git repository with one committed file."""
    root = tmp_path / "repo"
    (root / "src").mkdir(parents=True)
    (root / "src" / "app.ts").write_text("one\ntwo\n", encoding="utf-8")
    (root / "src" / "other.ts").write_text("other\n", encoding="utf-8")
    _git(root, "init", "-q")
    _git(root, "config", "user.email", "dev@example.com")
    _git(root, "config", "user.name", "Dev")
    _git(root, "config", "commit.gpgsign", "false")
    _git(root, "add", ".")
    _git(root, "commit", "-q", "-m", "initial")
    return root


class TestParsing:
    """Tests for numstat parsing and path sanitizing."""

    def test_parse_numstat(self) -> None:
        output = "3\t1\tsrc/app.ts\n-\t-\tassets/logo.png\nnot a numstat line\n"

        assert parse_numstat(output) == {
            "src/app.ts": DiffStat(added=3, removed=1),
            "assets/logo.png": DiffStat(added=0, removed=0),
        }

    def test_sanitize_paths(self) -> None:
        assert sanitize_paths(["  a.ts ", "", "   ", "b.ts"], 300) == ["a.ts", "b.ts"]
        assert sanitize_paths([f"f{i}" for i in range(10)], 3) == ["f0", "f1", "f2"]
        assert sanitize_paths(None, 3) == []


@requires_git
class TestGitHelper:
    """Tests for GitHelper commands."""

    @pytest.mark.asyncio()
    async def test_root_and_head(self, repo: Path) -> None:
        helper = GitHelper()

        root = await helper.resolve_git_root(str(repo / "src"))
        head = await helper.get_git_head(str(repo))

        assert root is not None
        assert Path(root).resolve() == repo.resolve()
        assert head is not None
        assert len(head) == 40

    @pytest.mark.asyncio()
    async def test_diff_and_numstat_restricted_to_paths(self, repo: Path) -> None:
        (repo / "src" / "app.ts").write_text("one\nTWO\nthree\n", encoding="utf-8")
        (repo / "src" / "other.ts").write_text("changed\n", encoding="utf-8")
        helper = GitHelper()

        patch = await helper.get_git_diff(str(repo), ["src/app.ts"])
        numstat = await helper.get_git_numstat(str(repo), ["src/app.ts"])

        assert "+TWO" in patch
        assert "other.ts" not in patch
        assert numstat == {"src/app.ts": DiffStat(added=2, removed=1)}

    @pytest.mark.asyncio()
    async def test_outside_repository_degrades(self, tmp_path: Path) -> None:
        plain = tmp_path / "plain"
        plain.mkdir()
        helper = GitHelper()

        assert await helper.resolve_git_root(str(plain)) is None
        assert await helper.get_git_head(str(plain)) is None
        assert await helper.get_git_diff(str(plain), ["x"]) == ""
        assert await helper.get_git_numstat(str(plain), ["x"]) == {}


class TestMissingGit:
    """Tests for GitHelper when the git binary cannot be started."""

    @pytest.mark.asyncio()
    async def test_missing_cwd_returns_none(self, tmp_path: Path) -> None:
        helper = GitHelper()

        assert await helper.get_git_head(str(tmp_path / "does-not-exist")) is None
