"""Detect nested repositories shared across parents and measure their drift."""

from __future__ import annotations

import re
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import structlog

from .config import (
    SHORT_HASH_LENGTH,
    SKIP_DIRECTORIES,
    SUBREPO_ANALYSIS_WORKERS,
    SUBREPO_SCAN_DEPTH,
    UNKNOWN_REPO_NAME,
)
from .discovery import walk_repository_paths
from .git import GitOperations
from .models import Repository, SubrepoInstance, SubrepoStatus, ValidationReport

log = structlog.get_logger("git_flotilla.subrepo")

_SSH_URL = re.compile(r"^ssh://(?:[^@/]+@)?(?P<host>[^/:]+)(?::\d+)?/(?P<path>.+)$")
_SCP_URL = re.compile(r"^(?:[^@/]+@)?(?P<host>[^/:]+):(?P<path>[^/].*)$")


def normalize_remote_url(url: str) -> str:
    """Canonical form of a remote URL so SSH and HTTPS clones group together.

    ``git@github.com:Owner/Repo.git`` and ``https://github.com/owner/repo/``
    both become ``https://github.com/owner/repo``.
    """
    url = url.strip()
    while url.endswith("/") or url.endswith(".git"):
        url = url.removesuffix("/").removesuffix(".git")

    if "://" not in url:
        match = _SCP_URL.match(url)
        if match:
            url = f"https://{match['host']}/{match['path']}"
    else:
        match = _SSH_URL.match(url)
        if match:
            url = f"https://{match['host']}/{match['path']}"
    return url.lower()


def _relative(path: Path, parent: Path) -> str:
    try:
        return str(path.relative_to(parent))
    except ValueError:
        return str(path)


def find_nested_in_parent(parent: Repository) -> list[SubrepoInstance]:
    """Nested repositories inside one parent, the parent itself excluded.

    Symlinks are not followed. An instance whose HEAD cannot be resolved
    is left out.
    """
    found = walk_repository_paths(
        parent.path,
        skip_dirs=SKIP_DIRECTORIES,
        max_depth=SUBREPO_SCAN_DEPTH,
        workers=1,
        follow_links=False,
        include_root=False,
        strict=False,
    )

    instances = []
    for path, base_name in sorted(found, key=lambda item: str(item[0])):
        git = GitOperations(path)
        commit = git.get_head()
        if commit is None:
            log.debug("subrepo.head_unresolved", parent=parent.name, path=str(path))
            continue
        remote = git.get_remote_url("origin")
        instances.append(
            SubrepoInstance(
                parent_repo=parent.name,
                parent_path=parent.path,
                subrepo_name=base_name or UNKNOWN_REPO_NAME,
                subrepo_path=path,
                relative_path=_relative(path, parent.path),
                commit_hash=commit,
                short_hash=commit[:SHORT_HASH_LENGTH],
                remote_url=normalize_remote_url(remote) if remote else None,
                has_uncommitted=git.has_uncommitted(),
                commit_timestamp=git.get_commit_timestamp(),
            )
        )
    return instances


def validate_subrepos(
    parents: list[Repository], workers: int = SUBREPO_ANALYSIS_WORKERS
) -> ValidationReport:
    """Scan every parent and group the nested repositories by normalized remote."""
    report = ValidationReport()
    if not parents:
        return report

    with ThreadPoolExecutor(max_workers=max(1, min(workers, len(parents)))) as executor:
        per_parent = list(executor.map(find_nested_in_parent, parents))

    for instances in per_parent:
        for instance in instances:
            if instance.remote_url:
                report.by_remote.setdefault(instance.remote_url, []).append(instance)
            else:
                report.no_remote.append(instance)
            report.total_nested += 1

    log.debug(
        "subrepo.scan_completed",
        parents=len(parents),
        nested=report.total_nested,
        remotes=report.unique_remotes,
    )
    return report


def calculate_sync_score(instances: list[SubrepoInstance]) -> tuple[float, int]:
    """Return ``(score, unique_commits)``.

    score = (N - U) / (N - 1) * 100, so two instances on one commit score
    100, two on different commits score 0, and three spread over two
    commits score 50. A single instance always scores 100.
    """
    unique = len({i.commit_hash for i in instances})
    total = len(instances)
    if total <= 1:
        return 100.0, unique
    return (total - unique) / (total - 1) * 100.0, unique


def build_status(name: str, remote_url: str, instances: list[SubrepoInstance]) -> SubrepoStatus:
    score, unique = calculate_sync_score(instances)
    return SubrepoStatus(
        name=name,
        remote_url=remote_url,
        instances=instances,
        sync_score=score,
        unique_commits=unique,
        has_drift=score < 100.0,
    )


def analyze_subrepos(report: ValidationReport) -> list[SubrepoStatus]:
    """Status of every subrepo shared by more than one parent, worst first."""
    statuses = [
        build_status(instances[0].subrepo_name, remote, instances)
        for remote, instances in report.by_remote.items()
        if len(instances) > 1
    ]
    statuses.sort(key=lambda s: (s.sync_score, s.name))
    return statuses


def find_drift(parents: list[Repository]) -> list[SubrepoStatus]:
    """Shared subrepos whose instances disagree on the checked-out commit."""
    return [s for s in analyze_subrepos(validate_subrepos(parents)) if s.has_drift]
