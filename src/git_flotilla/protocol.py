"""Per-repository git protocol: two-phase push/pull, staging, commit and user config.

Push and pull run in two phases. Phase 1 (``fetch_and_analyze*``) is
read-only apart from updating remote-tracking refs and produces a
``FetchResult``; phase 2 (``push_if_needed`` / ``pull_if_needed``) decides
from that snapshot alone whether to mutate. Diverged histories are reported,
never merged.
"""

from __future__ import annotations

import tempfile
from collections.abc import Callable
from pathlib import Path

import structlog

from .config import (
    SHORT_HASH_LENGTH,
    STATUS_DETACHED_HEAD,
    STATUS_NO_REMOTE,
    STATUS_NO_UPSTREAM,
    STATUS_SYNCED,
)
from .errors import (
    FlotillaError,
    GitTimeoutError,
    InvalidUserConfigError,
    classify_error,
    clean_error_message,
    is_rate_limit_error,
    remote_error_message,
    truncate_message,
)
from .git import GitOperations
from .models import (
    ConfigPolicy,
    ConfigSource,
    ConfigSourceKind,
    FetchResult,
    Status,
    TaskOutcome,
    UserConfig,
)

log = structlog.get_logger("git_flotilla.protocol")

ConfirmCallback = Callable[[str, UserConfig, UserConfig], bool]


def _commits(count: int) -> str:
    return "commit" if count == 1 else "commits"


# =============================================================================
# Phase 1: fetch and analyze
# =============================================================================


def _analyze(git: GitOperations) -> FetchResult:
    """Steps shared by the push and pull variants of phase 1.

    Returns a terminal result, or a ``Synced`` result carrying ahead/behind
    counts for the caller to interpret.
    """
    git.refresh_index()
    has_uncommitted = git.has_uncommitted()

    remotes = git.get_remotes()
    if not remotes:
        return FetchResult(has_uncommitted, Status.NO_REMOTE, STATUS_NO_REMOTE)
    remote_name = remotes[0]

    branch = git.get_current_branch()
    if branch is None:
        return FetchResult(
            has_uncommitted, Status.SKIP, STATUS_DETACHED_HEAD, remote_name=remote_name
        )

    try:
        fetched = git.fetch("--quiet")
    except GitTimeoutError as e:
        fetch_error = str(e)
    else:
        fetch_error = fetched.stderr if fetched.returncode != 0 else None
    if fetch_error is not None:
        log.warning(
            "protocol.fetch_failed",
            path=str(git.repo_path),
            category=classify_error(fetch_error).value,
            error=fetch_error.strip(),
        )
        return FetchResult(
            has_uncommitted,
            Status.ERROR,
            remote_error_message(fetch_error),
            current_branch=branch,
            remote_name=remote_name,
        )

    if git.get_upstream() is None:
        return FetchResult(
            has_uncommitted,
            Status.NO_UPSTREAM,
            STATUS_NO_UPSTREAM,
            current_branch=branch,
            remote_name=remote_name,
        )

    ahead, behind = git.get_ahead_behind()
    return FetchResult(
        has_uncommitted,
        Status.SYNCED,
        STATUS_SYNCED,
        current_branch=branch,
        ahead_count=ahead,
        behind_count=behind,
        upstream_exists=True,
        remote_name=remote_name,
    )


def fetch_and_analyze(path: Path, git: GitOperations | None = None) -> FetchResult:
    """Phase 1 of push: fetch, then classify the repository against its upstream."""
    git = git or GitOperations(path)
    result = _analyze(git)
    if result.status != Status.SYNCED:
        return result

    ahead, behind = result.ahead_count, result.behind_count
    if ahead > 0 and behind > 0:
        message = f"diverged: {ahead} ahead, {behind} behind (pull required before push)"
        return FetchResult(
            result.has_uncommitted,
            Status.ERROR,
            message,
            current_branch=result.current_branch,
            ahead_count=ahead,
            behind_count=behind,
            upstream_exists=True,
            remote_name=result.remote_name,
        )
    if ahead == 0:
        return result
    return FetchResult(
        result.has_uncommitted,
        Status.SYNCED,
        f"{ahead} {_commits(ahead)} ahead",
        current_branch=result.current_branch,
        ahead_count=ahead,
        behind_count=behind,
        upstream_exists=True,
        remote_name=result.remote_name,
    )


def fetch_and_analyze_for_pull(path: Path, git: GitOperations | None = None) -> FetchResult:
    """Phase 1 of pull; divergence is a ``PULL_ERROR``."""
    git = git or GitOperations(path)
    result = _analyze(git)
    if result.status != Status.SYNCED:
        return result

    ahead, behind = result.ahead_count, result.behind_count
    if ahead > 0 and behind > 0:
        return FetchResult(
            result.has_uncommitted,
            Status.PULL_ERROR,
            f"diverged: {ahead} ahead, {behind} behind (manual merge required)",
            current_branch=result.current_branch,
            ahead_count=ahead,
            behind_count=behind,
            upstream_exists=True,
            remote_name=result.remote_name,
        )
    if behind == 0:
        return result
    return FetchResult(
        result.has_uncommitted,
        Status.SYNCED,
        f"{behind} {_commits(behind)} behind",
        current_branch=result.current_branch,
        ahead_count=ahead,
        behind_count=behind,
        upstream_exists=True,
        remote_name=result.remote_name,
    )


# =============================================================================
# Phase 2: mutate
# =============================================================================


def push_if_needed(
    path: Path, fetch_result: FetchResult, force: bool = False, git: GitOperations | None = None
) -> TaskOutcome:
    """Phase 2 of push. Only ``Synced`` and ``NoUpstream`` results can push.

    Git LFS objects are not handled here. When git-lfs is installed its own
    pre-push hook uploads them as part of ``git push``.
    """
    if fetch_result.status not in (Status.SYNCED, Status.NO_UPSTREAM):
        return fetch_result.outcome()

    dirty = fetch_result.has_uncommitted
    remote = fetch_result.remote_name
    branch = fetch_result.current_branch

    if not fetch_result.upstream_exists:
        if not force:
            return TaskOutcome(Status.NO_UPSTREAM, STATUS_NO_UPSTREAM, dirty)
        success, error = _push(git or GitOperations(path), remote, branch, set_upstream=True)
        if success:
            return TaskOutcome(Status.PUSHED, f"set upstream ({remote}) & pushed", dirty)
        return TaskOutcome(Status.ERROR, error, dirty)

    if fetch_result.ahead_count == 0:
        return TaskOutcome(Status.SYNCED, STATUS_SYNCED, dirty)

    success, error = _push(git or GitOperations(path), remote, branch)
    if success:
        ahead = fetch_result.ahead_count
        return TaskOutcome(Status.PUSHED, f"{ahead} {_commits(ahead)} pushed", dirty)
    return TaskOutcome(Status.ERROR, error, dirty)


def _push(
    git: GitOperations, remote: str, branch: str, set_upstream: bool = False
) -> tuple[bool, str]:
    try:
        result = git.push(remote, branch, set_upstream=set_upstream)
    except GitTimeoutError as e:
        return False, remote_error_message(str(e))
    if result.returncode == 0:
        return True, ""
    log.warning(
        "protocol.push_failed",
        path=str(git.repo_path),
        remote=remote,
        branch=branch,
        category=classify_error(result.stderr).value,
        error=result.stderr.strip(),
    )
    return False, remote_error_message(result.stderr)


def pull_if_needed(
    path: Path, fetch_result: FetchResult, rebase: bool = False, git: GitOperations | None = None
) -> TaskOutcome:
    """Phase 2 of pull: fast-forward (or rebase with autostash) when behind."""
    if fetch_result.status != Status.SYNCED:
        return fetch_result.outcome()

    dirty = fetch_result.has_uncommitted
    behind = fetch_result.behind_count
    if behind == 0:
        return TaskOutcome(Status.SYNCED, STATUS_SYNCED, dirty)

    git = git or GitOperations(path)
    try:
        result = git.pull(rebase=rebase)
    except GitTimeoutError as e:
        return TaskOutcome(Status.PULL_ERROR, remote_error_message(str(e)), dirty)
    if result.returncode == 0:
        return TaskOutcome(Status.PULLED, f"{behind} {_commits(behind)} pulled", dirty)

    log.warning("protocol.pull_failed", path=str(path), error=result.stderr.strip())
    return TaskOutcome(Status.PULL_ERROR, _pull_error_message(result.stderr), dirty)


def _pull_error_message(stderr: str) -> str:
    lowered = stderr.lower()
    if is_rate_limit_error(stderr):
        return remote_error_message(stderr)
    if "conflict" in lowered:
        return f"merge conflict: {truncate_message(stderr)}"
    if "would be overwritten" in lowered:
        return f"uncommitted changes conflict: {truncate_message(stderr)}"
    return clean_error_message(stderr)


# =============================================================================
# Staging and commits
# =============================================================================


def stage_files(path: Path, pattern: str, git: GitOperations | None = None) -> TaskOutcome:
    git = git or GitOperations(path)
    result = git.add(pattern)
    if result.returncode == 0:
        return TaskOutcome(Status.STAGED, f"staged {pattern}")
    if "did not match" in result.stderr:
        return TaskOutcome(Status.NO_CHANGES, f"no files match {pattern}")
    return TaskOutcome(Status.STAGING_ERROR, clean_error_message(result.stderr))


def unstage_files(path: Path, pattern: str, git: GitOperations | None = None) -> TaskOutcome:
    git = git or GitOperations(path)
    result = git.restore_staged(pattern)
    if result.returncode == 0:
        return TaskOutcome(Status.UNSTAGED, f"unstaged {pattern}")
    if "did not match" in result.stderr:
        return TaskOutcome(Status.NO_CHANGES, f"no staged files match {pattern}")
    return TaskOutcome(Status.STAGING_ERROR, clean_error_message(result.stderr))


def staging_status(path: Path, git: GitOperations | None = None) -> TaskOutcome:
    """Summarize ``git status --porcelain`` as staged/unstaged/untracked counts."""
    git = git or GitOperations(path)
    result = git.status_porcelain()
    if result.returncode != 0:
        return TaskOutcome(Status.STAGING_ERROR, clean_error_message(result.stderr))

    lines = [line for line in result.stdout.splitlines() if len(line) >= 2]
    untracked = sum(1 for line in lines if line.startswith("??"))
    staged = sum(1 for line in lines if line[0] not in " ?")
    unstaged = sum(1 for line in lines if line[1] not in " ?")

    parts = []
    if staged:
        parts.append(f"{staged} staged")
    if unstaged:
        parts.append(f"{unstaged} unstaged")
    if untracked:
        parts.append(f"{untracked} untracked")
    if not parts:
        return TaskOutcome(Status.NO_CHANGES, "no changes")
    return TaskOutcome(Status.SYNCED, ", ".join(parts), has_uncommitted=True)


def commit_changes(
    path: Path, message: str, include_empty: bool = False, git: GitOperations | None = None
) -> TaskOutcome:
    git = git or GitOperations(path)
    if not include_empty and not git.has_staged_changes():
        return TaskOutcome(Status.NO_CHANGES, "no staged changes")

    result = git.commit(message, allow_empty=include_empty)
    if result.returncode == 0:
        short = git.get_short_head() or ""
        return TaskOutcome(Status.COMMITTED, f"committed {short[:SHORT_HASH_LENGTH]}")

    output = result.stdout + result.stderr
    if "nothing to commit" in output or "no changes added" in output:
        return TaskOutcome(Status.NO_CHANGES, "no staged changes")
    log.warning("protocol.commit_failed", path=str(path), error=result.stderr.strip())
    return TaskOutcome(Status.COMMIT_ERROR, clean_error_message(result.stderr or result.stdout))


# =============================================================================
# User configuration
# =============================================================================


def validate_user_config(config: UserConfig) -> None:
    """Raise ``InvalidUserConfigError`` for blank values or a malformed email."""
    if config.name is not None and not config.name.strip():
        raise InvalidUserConfigError("User name cannot be empty")
    if config.email is not None:
        email = config.email.strip()
        if not email:
            raise InvalidUserConfigError("User email cannot be empty")
        _, at, domain = email.partition("@")
        if not at or "." not in domain:
            raise InvalidUserConfigError(f"Invalid email format: {email}")


def _read_user_config(git: GitOperations, global_scope: bool = False) -> UserConfig:
    return UserConfig(
        name=git.config_get("user.name", global_scope=global_scope),
        email=git.config_get("user.email", global_scope=global_scope),
    )


def resolve_target_config(source: ConfigSource) -> UserConfig:
    """Resolve the identity to apply across the fleet and validate it."""
    if source.kind == ConfigSourceKind.EXPLICIT:
        config = source.config
    elif source.kind == ConfigSourceKind.GLOBAL:
        config = _read_user_config(GitOperations(Path(tempfile.gettempdir())), global_scope=True)
    else:
        config = _read_user_config(GitOperations(source.path or Path.cwd()))

    if config.is_empty():
        raise InvalidUserConfigError(f"No user.name or user.email found ({source.kind.value})")
    validate_user_config(config)
    return config


def _needs_update(current: str | None, target: str | None) -> bool:
    return target is not None and current != target


def check_repo_config(
    path: Path,
    repo_name: str,
    target: UserConfig,
    policy: ConfigPolicy,
    confirm: ConfirmCallback | None = None,
    git: GitOperations | None = None,
) -> TaskOutcome:
    """Compare a repository's user identity with ``target`` and apply ``policy``.

    ``confirm(repo_name, current, target)`` decides interactive updates; with
    no callback interactive mode leaves the repository unchanged.
    """
    git = git or GitOperations(path)
    current = _read_user_config(git)

    name_update = _needs_update(current.name, target.name)
    email_update = _needs_update(current.email, target.email)
    if not name_update and not email_update:
        return TaskOutcome(Status.CONFIG_SYNCED, "config synced")

    if policy == ConfigPolicy.DRY_RUN:
        changes = []
        if name_update:
            changes.append(f"name → {target.name}")
        if email_update:
            changes.append(f"email → {target.email}")
        return TaskOutcome(Status.CONFIG_SKIPPED, f"would update: {', '.join(changes)}")

    if policy == ConfigPolicy.INTERACTIVE:
        if confirm is None or not confirm(repo_name, current, target):
            return TaskOutcome(Status.CONFIG_SKIPPED, "config unchanged")

    updated, failed = [], []
    for field_name, key, value, needed in (
        ("name", "user.name", target.name, name_update),
        ("email", "user.email", target.email, email_update),
    ):
        if not needed:
            continue
        try:
            git.config_set(key, value)
        except FlotillaError as e:
            log.warning("protocol.config_failed", path=str(path), key=key, error=str(e))
            failed.append(field_name)
        else:
            updated.append(field_name)

    if failed:
        return TaskOutcome(Status.CONFIG_ERROR, f"failed to update: {', '.join(failed)}")
    return TaskOutcome(Status.CONFIG_UPDATED, f"updated: {', '.join(updated)}")
