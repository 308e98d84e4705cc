"""Exceptions and error classification for git operations."""

from __future__ import annotations

from enum import StrEnum
from typing import TYPE_CHECKING

from .config import (
    ERROR_MESSAGE_MAX_LENGTH,
    ERROR_MESSAGE_TRUNCATE_LENGTH,
    GIT_OPERATION_TIMEOUT,
)

if TYPE_CHECKING:
    from .models import SubrepoSyncSummary


RATE_LIMIT_PREFIX = "RATE LIMIT: "


# =============================================================================
# Exceptions
# =============================================================================


class FlotillaError(Exception):
    """Base class for git-flotilla errors."""


class ContextError(FlotillaError):
    """A processing context could not be built. Aborts the whole run."""


class GitCommandError(FlotillaError):
    """A git command exited non-zero."""

    def __init__(self, args: list[str], returncode: int, stderr: str):
        self.args_list = args
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(f"git {' '.join(args)} failed (exit {returncode}): {stderr}")


class GitTimeoutError(FlotillaError):
    """A git command exceeded its timeout."""

    def __init__(self, args: list[str], timeout: float):
        self.args_list = args
        self.timeout = timeout
        super().__init__(f"git {' '.join(args)} timed out after {timeout:g} seconds")


class InvalidUserConfigError(FlotillaError, ValueError):
    """User name/email failed validation."""


class SubrepoNotFoundError(FlotillaError, LookupError):
    """No nested repository instance carries the requested name."""


class SubrepoSyncError(FlotillaError):
    """Some subrepo instances failed to sync.

    Instances that did sync stay synced; ``summary`` holds every outcome.
    """

    def __init__(self, message: str, summary: SubrepoSyncSummary):
        self.summary = summary
        super().__init__(message)


# =============================================================================
# Classification
# =============================================================================


class ErrorCategory(StrEnum):
    """Best-effort category of a failed git command, from its stderr."""

    RATE_LIMIT = "rate_limit"
    AUTHENTICATION = "authentication"
    MERGE_CONFLICT = "merge_conflict"
    NETWORK = "network"
    TIMEOUT = "timeout"
    GENERIC = "generic"


def is_rate_limit_error(text: str) -> bool:
    lowered = text.lower()
    return (
        "rate limit" in lowered
        or "too many requests" in lowered
        or "secondary rate limit" in lowered
        or ("403" in lowered and "github" in lowered)
    )


def classify_error(text: str) -> ErrorCategory:
    """Map git stderr onto an ErrorCategory.

    Substring matching is not a stable contract across git versions or
    locales; rate limits are checked first.
    """
    if is_rate_limit_error(text):
        return ErrorCategory.RATE_LIMIT
    if "timed out" in text or "timeout" in text.lower():
        return ErrorCategory.TIMEOUT
    if "authentication" in text or "Permission denied" in text:
        return ErrorCategory.AUTHENTICATION
    if "conflict" in text or "diverged" in text:
        return ErrorCategory.MERGE_CONFLICT
    if "Connection" in text or "network" in text:
        return ErrorCategory.NETWORK
    return ErrorCategory.GENERIC


def truncate_message(text: str) -> str:
    """Collapse whitespace and cut to the display width."""
    cleaned = " ".join(text.split())
    if len(cleaned) > ERROR_MESSAGE_MAX_LENGTH:
        return f"{cleaned[:ERROR_MESSAGE_TRUNCATE_LENGTH]}..."
    return cleaned


def clean_error_message(error: str) -> str:
    """Collapse an error into a short one-line message for display."""
    cleaned = " ".join(error.replace("\r", "").split())

    if "repository moved" in cleaned:
        if "email privacy" in cleaned:
            return "repo moved + email privacy"
        return "repo moved"
    if "email privacy" in cleaned:
        return "email privacy restriction"
    if "timed out" in cleaned:
        if str(GIT_OPERATION_TIMEOUT) in cleaned:
            return f"timeout ({GIT_OPERATION_TIMEOUT}s)"
        return "timeout"
    if "authentication" in cleaned or "Permission denied" in cleaned:
        return "authentication failed"
    if "conflict" in cleaned or "diverged" in cleaned:
        return "merge conflict"
    if "Connection" in cleaned or "network" in cleaned:
        return "network error"
    return truncate_message(cleaned)


def remote_error_message(error: str) -> str:
    """Clean a fetch/push/pull error, flagging rate limits ahead of anything else."""
    if is_rate_limit_error(error):
        return f"{RATE_LIMIT_PREFIX}{clean_error_message(error)}"
    return clean_error_message(error)
