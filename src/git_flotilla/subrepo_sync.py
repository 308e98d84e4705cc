"""Bring every instance of a shared subrepo to the same commit."""

from __future__ import annotations

import structlog

from .config import SHORT_HASH_LENGTH, STASH_MESSAGE
from .errors import GitTimeoutError, SubrepoNotFoundError, SubrepoSyncError, clean_error_message
from .git import GitOperations
from .models import (
    InstanceSyncOutcome,
    InstanceSyncResult,
    SubrepoInstance,
    SubrepoSyncSummary,
    ValidationReport,
)

log = structlog.get_logger("git_flotilla.subrepo")

_LATEST_REFS = ("origin/HEAD", "origin/main", "origin/master")


def find_instances_by_name(report: ValidationReport, name: str) -> list[SubrepoInstance]:
    """Every grouped instance named ``name``, across all remotes.

    Raises ``SubrepoNotFoundError`` when there is none.
    """
    instances = [
        instance
        for group in report.by_remote.values()
        for instance in group
        if instance.subrepo_name == name
    ]
    if not instances:
        raise SubrepoNotFoundError(f"Subrepo '{name}' not found in any parent repository")

    remotes = {i.remote_url for i in instances}
    if len(remotes) > 1:
        log.warning("subrepo.cross_remote_match", name=name, remotes=sorted(remotes))
    return instances


def _new_summary(name: str, target: str, instances: list[SubrepoInstance]) -> SubrepoSyncSummary:
    remotes = sorted({i.remote_url for i in instances if i.remote_url})
    return SubrepoSyncSummary(name=name, target_commit=target, remotes=remotes)


def _prepare(git: GitOperations, stash: bool, force: bool) -> tuple[InstanceSyncResult | None, str]:
    """Apply the dirty-tree gate.

    Returns ``(None, "")`` to proceed without stashing, ``STASHED`` after a
    successful stash, ``SKIPPED`` or ``FAILED`` to stop.
    """
    if not git.is_dirty():
        return None, ""
    if stash:
        result = git.stash_push(STASH_MESSAGE)
        if result.returncode != 0:
            return InstanceSyncResult.FAILED, f"stash failed: {clean_error_message(result.stderr)}"
        return InstanceSyncResult.STASHED, "stashed local changes (restore with git stash pop)"
    if force:
        return None, ""
    return InstanceSyncResult.SKIPPED, "uncommitted changes, use --stash or --force"


def _sync_instance(
    instance: SubrepoInstance, target: str, stash: bool, force: bool, fetch_first: bool = False
) -> InstanceSyncOutcome:
    git = GitOperations(instance.subrepo_path)
    try:
        gate, note = _prepare(git, stash, force)
        if gate in (InstanceSyncResult.SKIPPED, InstanceSyncResult.FAILED):
            return InstanceSyncOutcome(instance, gate, note)

        if fetch_first:
            fetched = git.fetch("origin")
            if fetched.returncode != 0:
                message = f"fetch failed: {clean_error_message(fetched.stderr)}"
                return InstanceSyncOutcome(instance, InstanceSyncResult.FAILED, message)

        result = git.checkout(target)
    except GitTimeoutError as e:
        return InstanceSyncOutcome(instance, InstanceSyncResult.FAILED, clean_error_message(str(e)))

    if result.returncode != 0:
        log.warning(
            "subrepo.checkout_failed",
            parent=instance.parent_repo,
            path=str(instance.subrepo_path),
            target=target,
            error=result.stderr.strip(),
        )
        return InstanceSyncOutcome(
            instance, InstanceSyncResult.FAILED, clean_error_message(result.stderr)
        )

    moved = f"{instance.short_hash} → {target[:SHORT_HASH_LENGTH]}"
    if gate == InstanceSyncResult.STASHED:
        return InstanceSyncOutcome(instance, InstanceSyncResult.STASHED, f"{moved}; {note}")
    return InstanceSyncOutcome(instance, InstanceSyncResult.SYNCED, moved)


def _finish(summary: SubrepoSyncSummary, verb: str) -> SubrepoSyncSummary:
    log.info(
        f"subrepo.{verb}_completed",
        name=summary.name,
        synced=summary.synced_count,
        skipped=summary.skipped_count,
        failed=summary.failed_count,
    )
    if summary.failed_count:
        raise SubrepoSyncError(f"{summary.failed_count} repositories failed to {verb}", summary)
    return summary


def sync_subrepo(
    name: str,
    target_commit: str,
    report: ValidationReport,
    stash: bool = False,
    force: bool = False,
) -> SubrepoSyncSummary:
    """Check out ``target_commit`` in every instance of ``name``.

    Dirty instances are stashed (``stash``), overwritten (``force``) or
    skipped. Stashes are never popped. Instances that synced stay synced
    when others fail; a ``SubrepoSyncError`` then carries the summary.
    """
    instances = find_instances_by_name(report, name)
    summary = _new_summary(name, target_commit, instances)
    for instance in instances:
        summary.outcomes.append(_sync_instance(instance, target_commit, stash, force))
    return _finish(summary, "sync")


def _latest_remote_commit(name: str, instances: list[SubrepoInstance]) -> str:
    """Fetch ``origin`` in the first instance and resolve the newest commit."""
    git = GitOperations(instances[0].subrepo_path)
    try:
        result = git.fetch("origin")
    except GitTimeoutError as e:
        raise SubrepoSyncError(
            f"git fetch failed: {clean_error_message(str(e))}", _new_summary(name, "", instances)
        ) from e
    if result.returncode != 0:
        raise SubrepoSyncError(
            f"git fetch failed: {clean_error_message(result.stderr)}",
            _new_summary(name, "", instances),
        )
    for ref in _LATEST_REFS:
        commit = git.rev_parse(ref)
        if commit:
            return commit
    raise SubrepoSyncError(
        "Could not determine latest commit from remote", _new_summary(name, "", instances)
    )


def update_subrepo(
    name: str,
    report: ValidationReport,
    stash: bool = False,
    force: bool = False,
) -> SubrepoSyncSummary:
    """Move every instance of ``name`` to the newest commit on ``origin``.

    The target is resolved in the first instance from ``origin/HEAD``, then
    ``origin/main``, then ``origin/master``. Instances already there are
    counted as synced without touching them.
    """
    instances = find_instances_by_name(report, name)
    latest = _latest_remote_commit(name, instances)
    summary = _new_summary(name, latest, instances)

    for instance in instances:
        if instance.commit_hash == latest:
            summary.outcomes.append(
                InstanceSyncOutcome(instance, InstanceSyncResult.SYNCED, "already at latest")
            )
            continue
        summary.outcomes.append(_sync_instance(instance, latest, stash, force, fetch_first=True))
    return _finish(summary, "update")
