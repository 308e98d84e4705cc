"""Configuration constants, concurrency limits and environment settings."""

from __future__ import annotations

import os
from dataclasses import dataclass

# =============================================================================
# Concurrency
# =============================================================================

# Discovery walks the filesystem with at most this many threads
DISCOVERY_MAX_THREADS = 8

# Phase 1 (fetch/analyze) runs at twice the push limit, capped here
FETCH_CONCURRENT_CAP = 24

# Default for commands without a --jobs option
GIT_CONCURRENT_CAP = 32

# Parents analyzed in parallel while building a subrepo report
SUBREPO_ANALYSIS_WORKERS = 8

# =============================================================================
# Timeouts
# =============================================================================

GIT_OPERATION_TIMEOUT = 180  # seconds, per git subprocess

# =============================================================================
# Discovery
# =============================================================================

SKIP_DIRECTORIES = frozenset(
    {
        "node_modules",
        "vendor",
        "target",
        "build",
        ".next",
        "dist",
        "__pycache__",
        ".venv",
        "venv",
    }
)

MAX_SCAN_DEPTH = 10
SUBREPO_SCAN_DEPTH = 5
GIT_FILE_PROBE_LINES = 5

DEFAULT_REPO_NAME = "current"
UNKNOWN_REPO_NAME = "unknown"

# =============================================================================
# Display
# =============================================================================

PATH_DISPLAY_WIDTH = 30
ERROR_MESSAGE_MAX_LENGTH = 40
ERROR_MESSAGE_TRUNCATE_LENGTH = 37
SHORT_HASH_LENGTH = 7
CHANGED_FILES_DISPLAY_LIMIT = 10

NO_REPOS_MESSAGE = "No git repositories found in current directory."

STATUS_NO_REMOTE = "no remote"
STATUS_DETACHED_HEAD = "detached HEAD"
STATUS_NO_UPSTREAM = "no tracking"
STATUS_SYNCED = "up to date"

STASH_MESSAGE = "git-flotilla: subrepo auto-stash"


def get_git_concurrency(jobs: int | None = None, sequential: bool = False) -> int:
    """Resolve the push/mutate concurrency limit.

    Priority: ``--sequential`` → 1, ``--jobs N`` → N (at least 1),
    otherwise CPU cores + 2.
    """
    if sequential:
        return 1
    if jobs is not None:
        return max(jobs, 1)
    return (os.cpu_count() or 1) + 2


def get_fetch_concurrency(push_limit: int, fetch_jobs: int | None = None) -> int:
    """Resolve the fetch/analyze limit: explicit value, or 2x push limit capped."""
    if fetch_jobs is not None:
        return max(fetch_jobs, 1)
    return max(1, min(push_limit * 2, FETCH_CONCURRENT_CAP))


def get_discovery_threads() -> int:
    return max(1, min(os.cpu_count() or 1, DISCOVERY_MAX_THREADS))


def _env_int(name: str) -> int | None:
    value = os.environ.get(name, "").strip()
    if not value:
        return None
    try:
        return int(value)
    except ValueError:
        return None


@dataclass(frozen=True)
class Settings:
    """Runtime settings read from the environment.

    CLI options take precedence over every value here.
    """

    jobs: int | None = None
    fetch_jobs: int | None = None
    git_timeout: int = GIT_OPERATION_TIMEOUT
    log_level: str = "WARNING"
    log_format: str = "console"

    @classmethod
    def from_env(cls) -> Settings:
        """Build settings from ``GIT_FLOTILLA_*`` environment variables."""
        return cls(
            jobs=_env_int("GIT_FLOTILLA_JOBS"),
            fetch_jobs=_env_int("GIT_FLOTILLA_FETCH_JOBS"),
            git_timeout=_env_int("GIT_FLOTILLA_GIT_TIMEOUT") or GIT_OPERATION_TIMEOUT,
            log_level=os.environ.get("GIT_FLOTILLA_LOG_LEVEL", "WARNING").upper(),
            log_format=os.environ.get("GIT_FLOTILLA_LOG_FORMAT", "console").lower(),
        )
