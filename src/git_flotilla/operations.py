"""Batch entry points: discovery, then the orchestrator, then the protocol per repository."""

from __future__ import annotations

import structlog

from .config import (
    GIT_CONCURRENT_CAP,
    GIT_OPERATION_TIMEOUT,
    get_fetch_concurrency,
    get_git_concurrency,
)
from .errors import clean_error_message
from .git import GitOperations
from .models import ConfigPolicy, FetchResult, Repository, Status, UserConfig
from .orchestrator import (
    CompletionCallback,
    ProcessingContext,
    UnitOfWork,
    create_context,
    map_repositories,
    process_repositories,
)
from .protocol import (
    ConfirmCallback,
    check_repo_config,
    commit_changes,
    fetch_and_analyze,
    fetch_and_analyze_for_pull,
    pull_if_needed,
    push_if_needed,
    stage_files,
    staging_status,
    unstage_files,
)
from .stats import SyncStatistics

log = structlog.get_logger("git_flotilla.operations")


def _phase_error(repo: Repository, exc: Exception) -> FetchResult:
    return FetchResult(False, Status.ERROR, clean_error_message(str(exc)))


def _limits(jobs: int | None, fetch_jobs: int | None, sequential: bool) -> tuple[int, int]:
    push_limit = get_git_concurrency(jobs, sequential)
    fetch_limit = 1 if sequential else get_fetch_concurrency(push_limit, fetch_jobs)
    return fetch_limit, push_limit


def push_all(
    repositories: list[Repository],
    force: bool = False,
    jobs: int | None = None,
    fetch_jobs: int | None = None,
    sequential: bool = False,
    on_complete: CompletionCallback | None = None,
    timeout: float = GIT_OPERATION_TIMEOUT,
) -> ProcessingContext[SyncStatistics]:
    """Fetch/analyze every repository, then push those that are ahead.

    Phase 1 finishes for the whole batch before any push starts; the two
    phases run under independent concurrency limits.
    """
    fetch_limit, push_limit = _limits(jobs, fetch_jobs, sequential)
    log.info("operations.push_started", repos=len(repositories), fetch=fetch_limit, push=push_limit)

    analyzed = map_repositories(
        repositories,
        lambda repo: fetch_and_analyze(repo.path, GitOperations(repo.path, timeout)),
        fetch_limit,
        _phase_error,
    )
    context = create_context(repositories, push_limit, SyncStatistics())
    process_repositories(
        context,
        lambda repo: push_if_needed(
            repo.path, analyzed[repo.path], force, GitOperations(repo.path, timeout)
        ),
        on_complete,
    )
    return context


def pull_all(
    repositories: list[Repository],
    rebase: bool = False,
    jobs: int | None = None,
    fetch_jobs: int | None = None,
    sequential: bool = False,
    on_complete: CompletionCallback | None = None,
    timeout: float = GIT_OPERATION_TIMEOUT,
) -> ProcessingContext[SyncStatistics]:
    """Fetch/analyze every repository, then fast-forward (or rebase) those behind."""
    fetch_limit, pull_limit = _limits(jobs, fetch_jobs, sequential)
    log.info("operations.pull_started", repos=len(repositories), fetch=fetch_limit, pull=pull_limit)

    analyzed = map_repositories(
        repositories,
        lambda repo: fetch_and_analyze_for_pull(repo.path, GitOperations(repo.path, timeout)),
        fetch_limit,
        _phase_error,
    )
    context = create_context(repositories, pull_limit, SyncStatistics())
    process_repositories(
        context,
        lambda repo: pull_if_needed(
            repo.path, analyzed[repo.path], rebase, GitOperations(repo.path, timeout)
        ),
        on_complete,
    )
    return context


def _single_step(
    repositories: list[Repository],
    work: UnitOfWork,
    concurrency_limit: int,
    on_complete: CompletionCallback | None,
) -> ProcessingContext[SyncStatistics]:
    context = create_context(repositories, concurrency_limit, SyncStatistics())
    process_repositories(context, work, on_complete)
    return context


def stage_all(
    repositories: list[Repository],
    pattern: str,
    concurrency_limit: int = GIT_CONCURRENT_CAP,
    on_complete: CompletionCallback | None = None,
) -> ProcessingContext[SyncStatistics]:
    return _single_step(
        repositories, lambda repo: stage_files(repo.path, pattern), concurrency_limit, on_complete
    )


def unstage_all(
    repositories: list[Repository],
    pattern: str,
    concurrency_limit: int = GIT_CONCURRENT_CAP,
    on_complete: CompletionCallback | None = None,
) -> ProcessingContext[SyncStatistics]:
    return _single_step(
        repositories, lambda repo: unstage_files(repo.path, pattern), concurrency_limit, on_complete
    )


def status_all(
    repositories: list[Repository],
    concurrency_limit: int = GIT_CONCURRENT_CAP,
    on_complete: CompletionCallback | None = None,
) -> ProcessingContext[SyncStatistics]:
    return _single_step(
        repositories, lambda repo: staging_status(repo.path), concurrency_limit, on_complete
    )


def commit_all(
    repositories: list[Repository],
    message: str,
    include_empty: bool = False,
    concurrency_limit: int = GIT_CONCURRENT_CAP,
    on_complete: CompletionCallback | None = None,
) -> ProcessingContext[SyncStatistics]:
    return _single_step(
        repositories,
        lambda repo: commit_changes(repo.path, message, include_empty),
        concurrency_limit,
        on_complete,
    )


def config_all(
    repositories: list[Repository],
    target: UserConfig,
    policy: ConfigPolicy,
    confirm: ConfirmCallback | None = None,
    concurrency_limit: int = GIT_CONCURRENT_CAP,
    on_complete: CompletionCallback | None = None,
) -> ProcessingContext[SyncStatistics]:
    """Apply ``target`` to every repository. Interactive runs one repository at a time."""
    if policy == ConfigPolicy.INTERACTIVE:
        concurrency_limit = 1
    return _single_step(
        repositories,
        lambda repo: check_repo_config(repo.path, repo.name, target, policy, confirm),
        concurrency_limit,
        on_complete,
    )
