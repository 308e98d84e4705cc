"""Bounded-concurrency processing of repository batches."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Generic, Protocol, TypeVar

import structlog

from .errors import ContextError, clean_error_message
from .models import Repository, Status, TaskOutcome

log = structlog.get_logger("git_flotilla.orchestrator")


class StatisticsAccumulator(Protocol):
    """Anything that can fold per-repository outcomes into an aggregate.

    ``update`` must give the same aggregate whatever order outcomes arrive in.
    """

    def update(
        self,
        repo_name: str,
        repo_path: str,
        status: Status,
        message: str,
        has_uncommitted: bool,
    ) -> None: ...


S = TypeVar("S", bound=StatisticsAccumulator)
R = TypeVar("R")

UnitOfWork = Callable[[Repository], TaskOutcome]
CompletionCallback = Callable[[Repository, TaskOutcome], None]


@dataclass
class ProcessingContext(Generic[S]):
    """Shared state for one batch run.

    ``statistics`` is only touched under ``lock``; ``permits`` bounds how many
    units of work run at once.
    """

    repositories: list[Repository]
    concurrency_limit: int
    statistics: S
    max_name_length: int = 0
    lock: threading.Lock = field(default_factory=threading.Lock)
    permits: threading.BoundedSemaphore = field(init=False)
    start_time: float = field(default_factory=time.monotonic)

    def __post_init__(self) -> None:
        self.permits = threading.BoundedSemaphore(self.concurrency_limit)

    @property
    def total_repos(self) -> int:
        return len(self.repositories)

    def elapsed(self) -> float:
        return time.monotonic() - self.start_time

    def read_statistics(self, fn: Callable[[S], R]) -> R:
        """Apply ``fn`` to the aggregate while holding the lock."""
        with self.lock:
            return fn(self.statistics)


def create_context(
    repositories: list[Repository], concurrency_limit: int, initial_statistics: S
) -> ProcessingContext[S]:
    """Build a processing context; a limit below 1 is a setup error."""
    if concurrency_limit < 1:
        raise ContextError(f"concurrency limit must be at least 1, got {concurrency_limit}")
    return ProcessingContext(
        repositories=list(repositories),
        concurrency_limit=concurrency_limit,
        statistics=initial_statistics,
        max_name_length=max((len(r.name) for r in repositories), default=0),
    )


def _failure_outcome(repo: Repository, exc: Exception) -> TaskOutcome:
    log.warning(
        "orchestrator.task_failed",
        repo=repo.name,
        path=str(repo.path),
        error=str(exc),
        error_type=type(exc).__name__,
    )
    return TaskOutcome(Status.ERROR, clean_error_message(str(exc)))


def _run_task(
    context: ProcessingContext[S], repo: Repository, unit_of_work: UnitOfWork
) -> TaskOutcome:
    with context.permits:
        try:
            outcome = unit_of_work(repo)
        except Exception as e:
            outcome = _failure_outcome(repo, e)

    with context.lock:
        context.statistics.update(
            repo.name, str(repo.path), outcome.status, outcome.message, outcome.has_uncommitted
        )
    return outcome


def process_repositories(
    context: ProcessingContext[S],
    unit_of_work: UnitOfWork,
    on_complete: CompletionCallback | None = None,
) -> S:
    """Run ``unit_of_work`` once per repository and return the aggregate.

    A failing unit of work resolves its own repository to ``Status.ERROR``;
    the others are unaffected. ``on_complete`` runs on the calling thread as
    each repository finishes.
    """
    if not context.repositories:
        return context.statistics

    workers = min(context.concurrency_limit, context.total_repos)
    with ThreadPoolExecutor(max_workers=workers) as executor:
        futures = {
            executor.submit(_run_task, context, repo, unit_of_work): repo
            for repo in context.repositories
        }
        for future in as_completed(futures):
            outcome = future.result()
            if on_complete is not None:
                on_complete(futures[future], outcome)

    log.debug(
        "orchestrator.completed",
        repos=context.total_repos,
        limit=context.concurrency_limit,
        duration=round(context.elapsed(), 3),
    )
    return context.statistics


def map_repositories(
    repositories: list[Repository],
    work: Callable[[Repository], R],
    concurrency_limit: int,
    on_error: Callable[[Repository, Exception], R],
) -> dict[Path, R]:
    """Run a read-only phase under its own permit pool; results keyed by path."""
    if concurrency_limit < 1:
        raise ContextError(f"concurrency limit must be at least 1, got {concurrency_limit}")
    if not repositories:
        return {}

    permits = threading.BoundedSemaphore(concurrency_limit)

    def guarded(repo: Repository) -> R:
        with permits:
            try:
                return work(repo)
            except Exception as e:
                log.warning("orchestrator.phase_failed", repo=repo.name, error=str(e))
                return on_error(repo, e)

    results: dict[Path, R] = {}
    with ThreadPoolExecutor(max_workers=min(concurrency_limit, len(repositories))) as executor:
        futures = {executor.submit(guarded, repo): repo for repo in repositories}
        for future in as_completed(futures):
            results[futures[future].path] = future.result()
    return results
