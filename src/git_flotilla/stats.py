"""Statistics accumulated across one batch operation."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from .config import CHANGED_FILES_DISPLAY_LIMIT, PATH_DISPLAY_WIDTH
from .errors import RATE_LIMIT_PREFIX
from .git import GitOperations
from .models import Status


def shorten_path(path: str, max_length: int = PATH_DISPLAY_WIDTH) -> str:
    """Shorten a long path to ``.../parent/leaf``."""
    if len(path) <= max_length:
        return path
    components = [c for c in path.split("/") if c]
    if len(components) <= 2:
        return path
    prefix = "./" if path.startswith("./") else ""
    return f"{prefix}.../{components[-2]}/{components[-1]}"


def _leading_count(message: str) -> int:
    """Parse the leading integer of messages like ``"3 commits pushed"``."""
    words = message.split()
    if words and words[0].isdigit():
        return int(words[0])
    return 0


@dataclass
class SummarySection:
    """One block of the end-of-run breakdown."""

    title: str
    icon: str
    entries: list[tuple[str, str, str]] = field(default_factory=list)  # name, path, note
    details: dict[str, list[str]] = field(default_factory=dict)  # name -> changed files


@dataclass
class SyncStatistics:
    """Counters and attention lists for a batch run.

    Not thread-safe on its own; the orchestrator serializes ``update`` calls
    behind the processing context's lock. ``update`` is order-independent.
    """

    synced_repos: int = 0
    total_commits_pushed: int = 0
    total_commits_pulled: int = 0
    skipped_repos: int = 0
    error_repos: int = 0
    uncommitted_count: int = 0
    failed_repos: list[tuple[str, str, str]] = field(default_factory=list)
    no_upstream_repos: list[tuple[str, str]] = field(default_factory=list)
    no_remote_repos: list[tuple[str, str]] = field(default_factory=list)
    uncommitted_repos: list[tuple[str, str]] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return self.synced_repos + self.skipped_repos + self.error_repos

    @property
    def rate_limited_count(self) -> int:
        return sum(1 for _, _, msg in self.failed_repos if msg.startswith(RATE_LIMIT_PREFIX))

    def update(
        self,
        repo_name: str,
        repo_path: str,
        status: Status,
        message: str,
        has_uncommitted: bool,
    ) -> None:
        """Fold one repository outcome into the aggregate."""
        if status == Status.PUSHED:
            self.synced_repos += 1
            self.total_commits_pushed += _leading_count(message)
        elif status == Status.PULLED:
            self.synced_repos += 1
            self.total_commits_pulled += _leading_count(message)
        elif status == Status.NO_UPSTREAM:
            self.skipped_repos += 1
            self.no_upstream_repos.append((repo_name, repo_path))
        elif status == Status.NO_REMOTE:
            self.skipped_repos += 1
            self.no_remote_repos.append((repo_name, repo_path))
        elif status.is_failure:
            self.error_repos += 1
            self.failed_repos.append((repo_name, repo_path, message))
        elif status.is_success:
            self.synced_repos += 1
        else:
            self.skipped_repos += 1

        if has_uncommitted and not status.is_failure:
            if not any(name == repo_name for name, _ in self.uncommitted_repos):
                self.uncommitted_count += 1
                self.uncommitted_repos.append((repo_name, repo_path))

    def generate_summary(self, duration: float) -> str:
        """One-line completion summary."""
        line = (
            f"✅ Completed in {duration:.1f}s • {self.synced_repos} synced"
            f" • {self.total_commits_pushed} pushed"
        )
        if self.total_commits_pulled:
            line += f" • {self.total_commits_pulled} pulled"
        if self.error_repos:
            line += f" • {self.error_repos} failed"
        return line

    def detailed_sections(
        self, changes_for: Callable[[str], list[str]] | None = None
    ) -> list[SummarySection]:
        """Attention sections in display order: failed, upstream, uncommitted, remotes.

        ``changes_for`` maps a repository path to its changed-file lines; when
        given, uncommitted entries carry those lines as details.
        """
        sections = []
        if self.failed_repos:
            sections.append(
                SummarySection("FAILED REPOS", "🔴", [(n, p, m) for n, p, m in self.failed_repos])
            )
        if self.no_upstream_repos:
            sections.append(
                SummarySection(
                    "NEEDS UPSTREAM",
                    "🟡",
                    [(n, p, "git push -u origin <branch>") for n, p in self.no_upstream_repos],
                )
            )
        if self.uncommitted_repos:
            section = SummarySection(
                "UNCOMMITTED CHANGES", "⚠️ ", [(n, p, "") for n, p in self.uncommitted_repos]
            )
            if changes_for is not None:
                for name, path in self.uncommitted_repos:
                    section.details[name] = changes_for(path)
            sections.append(section)
        if self.no_remote_repos:
            sections.append(
                SummarySection("MISSING REMOTES", "🔧", [(n, p, "") for n, p in self.no_remote_repos])
            )
        return sections

    def to_dict(self) -> dict:
        return {
            "synced": self.synced_repos,
            "skipped": self.skipped_repos,
            "errors": self.error_repos,
            "commits_pushed": self.total_commits_pushed,
            "commits_pulled": self.total_commits_pulled,
            "uncommitted": self.uncommitted_count,
            "rate_limited": self.rate_limited_count,
            "failed_repos": [
                {"name": n, "path": p, "error": m} for n, p, m in self.failed_repos
            ],
            "no_upstream_repos": [{"name": n, "path": p} for n, p in self.no_upstream_repos],
            "no_remote_repos": [{"name": n, "path": p} for n, p in self.no_remote_repos],
            "uncommitted_repos": [{"name": n, "path": p} for n, p in self.uncommitted_repos],
        }


def changed_files(repo_path: str, limit: int = CHANGED_FILES_DISPLAY_LIMIT) -> list[str]:
    """First ``limit`` lines of ``git status --porcelain``, plus a remainder note."""
    lines = GitOperations(Path(repo_path)).status_porcelain_lines()
    if len(lines) > limit:
        return [*lines[:limit], f"... and {len(lines) - limit} more"]
    return lines
