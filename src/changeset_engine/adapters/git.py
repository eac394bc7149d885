"""Git metadata helpers.

Git is optional: every helper returns None or an empty value when git is not
installed, the directory is not a repository, or a command times out.
"""

import asyncio

from changeset_engine.core.models import DiffStat
from changeset_engine.observability import get_logger

logger = get_logger(__name__)


def sanitize_paths(paths: list[str] | None, max_paths: int) -> list[str]:
    """Strip, drop empty entries and cap the number of paths passed to git."""
    if not paths:
        return []
    cleaned = [str(path).strip() for path in paths]
    return [path for path in cleaned if path][:max_paths]


def parse_numstat(output: str) -> dict[str, DiffStat]:
    """Parse ``git diff --numstat`` output into path → DiffStat.

    Binary files report ``-`` for both counts and are recorded as zero.
    """
    stats: dict[str, DiffStat] = {}
    for line in output.splitlines():
        parts = line.split("\t")
        if len(parts) < 3:
            continue
        added, removed = parts[0], parts[1]
        path = "\t".join(parts[2:]).strip()
        if not path:
            continue
        stats[path] = DiffStat(
            added=int(added) if added.isdigit() else 0,
            removed=int(removed) if removed.isdigit() else 0,
        )
    return stats


class GitHelper:
    """Runs read-only git commands as subprocesses.

    Args:
        timeout_s: Timeout for rev-parse commands.
        diff_timeout_s: Timeout for diff and numstat.
        max_paths: Maximum number of paths passed to one diff invocation.
    """

    def __init__(self, timeout_s: float = 20.0, diff_timeout_s: float = 60.0, max_paths: int = 300) -> None:
        """Initialize GitHelper.

        Args:
            timeout_s: Timeout for rev-parse commands.
            diff_timeout_s: Timeout for diff and numstat.
            max_paths: Path cap for diff commands.
        """
        self._timeout_s = timeout_s
        self._diff_timeout_s = diff_timeout_s
        self._max_paths = max_paths

    async def _run_git(self, args: list[str], cwd: str, timeout_s: float) -> str | None:
        try:
            process = await asyncio.create_subprocess_exec(
                "git",
                *args,
                cwd=cwd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            logger.warning("git unavailable", args=args, cwd=cwd, error=str(exc))
            return None

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout_s)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            logger.warning("git command timed out", args=args, cwd=cwd, timeout_s=timeout_s)
            return None

        if process.returncode != 0:
            logger.debug(
                "git command failed",
                args=args,
                cwd=cwd,
                returncode=process.returncode,
                stderr=stderr.decode("utf-8", errors="replace").strip(),
            )
            return None
        return stdout.decode("utf-8", errors="replace")

    async def resolve_git_root(self, cwd: str) -> str | None:
        """Return the repository top-level directory, or None outside a repository."""
        output = await self._run_git(["rev-parse", "--show-toplevel"], cwd, self._timeout_s)
        root = output.strip() if output else ""
        return root or None

    async def get_git_head(self, cwd: str) -> str | None:
        """Return the HEAD commit hash, or None."""
        output = await self._run_git(["rev-parse", "HEAD"], cwd, self._timeout_s)
        head = output.strip() if output else ""
        return head or None

    async def get_git_diff(self, cwd: str, paths: list[str] | None = None) -> str:
        """Return the unified working-tree diff restricted to paths.

        Args:
            cwd: Directory inside the repository.
            paths: Repository-relative paths; all tracked changes when empty.

        Returns:
            The patch text, or "" when git is unavailable.
        """
        safe_paths = sanitize_paths(paths, self._max_paths)
        output = await self._run_git(["diff", "--no-color", "--", *safe_paths], cwd, self._diff_timeout_s)
        return output or ""

    async def get_git_numstat(self, cwd: str, paths: list[str] | None = None) -> dict[str, DiffStat]:
        """Return repository-relative path → added/removed line counts."""
        safe_paths = sanitize_paths(paths, self._max_paths)
        output = await self._run_git(["diff", "--numstat", "--", *safe_paths], cwd, self._diff_timeout_s)
        if not output:
            return {}
        return parse_numstat(output)
