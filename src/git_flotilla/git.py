"""Low-level git subprocess wrapper."""

from __future__ import annotations

import subprocess
from pathlib import Path

import structlog

from .config import GIT_OPERATION_TIMEOUT, SHORT_HASH_LENGTH
from .errors import GitCommandError, GitTimeoutError

log = structlog.get_logger("git_flotilla.git")


class GitOperations:
    """Low-level Git operations for a single repository.

    Every command runs with a timeout; an expired timeout raises
    ``GitTimeoutError``. Helpers return plain values and leave the
    interpretation of failures to the caller.
    """

    def __init__(self, repo_path: Path, timeout: float = GIT_OPERATION_TIMEOUT):
        self.repo_path = repo_path
        self.timeout = timeout

    def _run(self, *args: str, check: bool = False) -> subprocess.CompletedProcess:
        """Run a git command in the repository."""
        log.debug("git.run", args=list(args), cwd=str(self.repo_path))
        try:
            result = subprocess.run(
                ["git", *args],
                cwd=self.repo_path,
                capture_output=True,
                text=True,
                check=False,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as e:
            log.warning(
                "git.timeout", args=list(args), cwd=str(self.repo_path), timeout=self.timeout
            )
            raise GitTimeoutError(list(args), self.timeout) from e
        if check and result.returncode != 0:
            raise GitCommandError(list(args), result.returncode, result.stderr.strip())
        return result

    def _output(self, *args: str) -> str | None:
        """Stripped stdout, or ``None`` when the command fails."""
        result = self._run(*args)
        if result.returncode != 0:
            return None
        return result.stdout.strip()

    # -------------------------------------------------------------------------
    # Working tree
    # -------------------------------------------------------------------------

    def refresh_index(self) -> None:
        self._run("update-index", "--refresh")

    def has_uncommitted(self) -> bool:
        """Tracked changes against HEAD; ``update-index --refresh`` should run first."""
        return self._run("diff-index", "--quiet", "HEAD", "--").returncode != 0

    def has_staged_changes(self) -> bool:
        return self._run("diff", "--cached", "--quiet").returncode != 0

    def status_porcelain(self) -> subprocess.CompletedProcess:
        return self._run("status", "--porcelain")

    def status_porcelain_lines(self) -> list[str]:
        """``git status --porcelain`` lines, untracked files included."""
        result = self.status_porcelain()
        if result.returncode != 0:
            return []
        return [line for line in result.stdout.splitlines() if line]

    def is_dirty(self) -> bool:
        return bool(self.status_porcelain_lines())

    # -------------------------------------------------------------------------
    # Refs and branches
    # -------------------------------------------------------------------------

    def get_current_branch(self) -> str | None:
        """Current branch name; ``None`` for a detached HEAD or unborn repository."""
        branch = self._output("rev-parse", "--abbrev-ref", "HEAD")
        if not branch or branch == "HEAD":
            return None
        return branch

    def get_upstream(self) -> str | None:
        return self._output("rev-parse", "--abbrev-ref", "@{upstream}") or None

    def count_commits(self, include: str, exclude: str) -> int:
        """Commits reachable from ``include`` but not from ``exclude``."""
        out = self._output("rev-list", "--count", include, f"^{exclude}")
        try:
            return int(out) if out else 0
        except ValueError:
            return 0

    def get_ahead_behind(self) -> tuple[int, int]:
        """Ahead/behind counts relative to the upstream."""
        ahead = self.count_commits("HEAD", "@{upstream}")
        behind = self.count_commits("@{upstream}", "HEAD")
        return ahead, behind

    def rev_parse(self, ref: str) -> str | None:
        return self._output("rev-parse", ref) or None

    def get_head(self) -> str | None:
        return self.rev_parse("HEAD")

    def get_short_head(self) -> str | None:
        head = self.get_head()
        return head[:SHORT_HASH_LENGTH] if head else None

    def get_commit_timestamp(self) -> int:
        """Committer timestamp of HEAD (``%ct``), 0 when unavailable."""
        out = self._output("show", "-s", "--format=%ct", "HEAD")
        try:
            return int(out) if out else 0
        except ValueError:
            return 0

    # -------------------------------------------------------------------------
    # Remotes
    # -------------------------------------------------------------------------

    def get_remotes(self) -> list[str]:
        out = self._output("remote")
        return out.split() if out else []

    def get_remote_url(self, remote: str = "origin") -> str | None:
        return self._output("remote", "get-url", remote) or None

    def fetch(self, *args: str) -> subprocess.CompletedProcess:
        return self._run("fetch", *args)

    def push(self, remote: str, branch: str, set_upstream: bool = False) -> subprocess.CompletedProcess:
        if set_upstream:
            return self._run("push", "-u", remote, branch)
        return self._run("push", remote, branch)

    def pull(self, rebase: bool = False) -> subprocess.CompletedProcess:
        if rebase:
            return self._run("pull", "--rebase", "--autostash")
        return self._run("pull", "--ff-only")

    # -------------------------------------------------------------------------
    # Index and commits
    # -------------------------------------------------------------------------

    def add(self, pattern: str) -> subprocess.CompletedProcess:
        return self._run("add", pattern)

    def restore_staged(self, pattern: str) -> subprocess.CompletedProcess:
        return self._run("restore", "--staged", pattern)

    def commit(self, message: str, allow_empty: bool = False) -> subprocess.CompletedProcess:
        if allow_empty:
            return self._run("commit", "--allow-empty", "-m", message)
        return self._run("commit", "-m", message)

    def stash_push(self, message: str) -> subprocess.CompletedProcess:
        return self._run("stash", "push", "--include-untracked", "-m", message)

    def checkout(self, ref: str) -> subprocess.CompletedProcess:
        return self._run("checkout", ref)

    # -------------------------------------------------------------------------
    # Config
    # -------------------------------------------------------------------------

    def config_get(self, key: str, global_scope: bool = False) -> str | None:
        if global_scope:
            return self._output("config", "--global", "--get", key) or None
        return self._output("config", "--get", key) or None

    def config_set(self, key: str, value: str) -> None:
        self._run("config", key, value, check=True)
