"""Parallel filesystem discovery of Git repositories."""

from __future__ import annotations

import os
import threading
from collections.abc import Iterable
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from itertools import islice
from pathlib import Path

import structlog

from .config import (
    DEFAULT_REPO_NAME,
    GIT_FILE_PROBE_LINES,
    MAX_SCAN_DEPTH,
    SKIP_DIRECTORIES,
    UNKNOWN_REPO_NAME,
    get_discovery_threads,
)
from .models import Repository

log = structlog.get_logger("git_flotilla.discovery")


def is_git_file(path: Path) -> bool:
    """True if a ``.git`` file points at a git directory (submodules, worktrees)."""
    try:
        with path.open(encoding="utf-8", errors="replace") as fh:
            return any(
                line.lstrip().startswith("gitdir:")
                for line in islice(fh, GIT_FILE_PROBE_LINES)
            )
    except OSError:
        return False


def is_repository(directory: Path, strict: bool = True) -> bool:
    """Check whether ``directory`` is a working tree.

    With ``strict`` a ``.git`` file only counts when it carries a ``gitdir:``
    line; otherwise any ``.git`` entry is enough.
    """
    git_path = directory / ".git"
    if git_path.is_dir():
        return True
    if git_path.is_file():
        return is_git_file(git_path) if strict else True
    return False


class _Walker:
    """Directory walk fanned out over a thread pool.

    One task lists one directory. A canonical directory is listed again only
    when reached at a shallower depth than before, so the depth bound does not
    depend on which path got there first and symlink cycles still terminate.
    """

    def __init__(
        self,
        root: Path,
        skip_dirs: Iterable[str],
        max_depth: int,
        follow_links: bool,
        include_root: bool,
        strict: bool,
    ):
        self.root = root
        self.skip_dirs = frozenset(skip_dirs)
        self.max_depth = max_depth
        self.follow_links = follow_links
        self.include_root = include_root
        self.strict = strict
        self._lock = threading.Lock()
        self._visited: dict[Path, int] = {}
        self._found: dict[Path, str] = {}

    def _mark_visited(self, canonical: Path, depth: int) -> bool:
        """Keep the shallowest depth seen; True if this caller improved on it."""
        with self._lock:
            seen = self._visited.get(canonical)
            if seen is not None and seen <= depth:
                return False
            self._visited[canonical] = depth
            return True

    def _record(self, canonical: Path, base_name: str) -> None:
        with self._lock:
            self._found.setdefault(canonical, base_name)

    def _base_name(self, canonical: Path, is_root: bool) -> str:
        if is_root:
            return canonical.name or DEFAULT_REPO_NAME
        return canonical.name or UNKNOWN_REPO_NAME

    def visit(self, directory: Path, depth: int) -> list[tuple[Path, int]]:
        """Record ``directory`` if it is a repository and return its subdirectories."""
        try:
            canonical = directory.resolve()
        except OSError as e:
            log.debug("discovery.resolve_failed", path=str(directory), error=str(e))
            return []
        if not self._mark_visited(canonical, depth):
            return []

        is_root = depth == 0
        if (self.include_root or not is_root) and is_repository(directory, self.strict):
            self._record(canonical, self._base_name(canonical, is_root))

        if depth >= self.max_depth:
            return []

        children = []
        try:
            with os.scandir(directory) as entries:
                for entry in entries:
                    if entry.name == ".git" or entry.name in self.skip_dirs:
                        continue
                    try:
                        if not entry.is_dir(follow_symlinks=self.follow_links):
                            continue
                    except OSError:
                        continue
                    children.append((Path(entry.path), depth + 1))
        except OSError as e:
            log.debug("discovery.scan_failed", path=str(directory), error=str(e))
        return children

    def run(self, workers: int) -> dict[Path, str]:
        if workers <= 1:
            stack = [(self.root, 0)]
            while stack:
                stack.extend(self.visit(*stack.pop()))
            return self._found

        with ThreadPoolExecutor(max_workers=workers) as executor:
            pending: set[Future] = {executor.submit(self.visit, self.root, 0)}
            while pending:
                done, pending = wait(pending, return_when=FIRST_COMPLETED)
                for future in done:
                    for child, depth in future.result():
                        pending.add(executor.submit(self.visit, child, depth))
        return self._found


def walk_repository_paths(
    root: Path,
    skip_dirs: Iterable[str] = SKIP_DIRECTORIES,
    max_depth: int = MAX_SCAN_DEPTH,
    workers: int | None = None,
    follow_links: bool = True,
    include_root: bool = True,
    strict: bool = True,
) -> list[tuple[Path, str]]:
    """Collect ``(canonical_path, base_name)`` for every repository under ``root``.

    The order is unspecified; callers that need stable names sort first.
    """
    walker = _Walker(root, skip_dirs, max_depth, follow_links, include_root, strict)
    found = walker.run(workers if workers is not None else get_discovery_threads())
    return list(found.items())


def assign_names(found: Iterable[tuple[Path, str]]) -> list[Repository]:
    """Give each repository a unique name, suffixing duplicates ``-2``, ``-3``, ...

    Suffixes are assigned in canonical-path order so they do not depend on
    the order the walk finished in.
    """
    counts: dict[str, int] = {}
    repos = []
    for path, base_name in sorted(found, key=lambda item: str(item[0])):
        counts[base_name] = counts.get(base_name, 0) + 1
        count = counts[base_name]
        name = f"{base_name}-{count}" if count > 1 else base_name
        repos.append(Repository(name=name, path=path))
    repos.sort(key=lambda r: (r.name.lower(), str(r.path)))
    return repos


def find_repositories(
    root: Path | str = ".",
    skip_dirs: Iterable[str] = SKIP_DIRECTORIES,
    max_depth: int = MAX_SCAN_DEPTH,
    workers: int | None = None,
    follow_links: bool = True,
) -> list[Repository]:
    """Discover all Git repositories under ``root``.

    Skips build/dependency directories and never descends into ``.git``.
    Each canonical path appears once; the result is sorted by name,
    case-insensitively.
    """
    root = Path(root)
    found = walk_repository_paths(root, skip_dirs, max_depth, workers, follow_links)
    repos = assign_names(found)
    log.debug("discovery.completed", root=str(root), count=len(repos))
    return repos
