"""Output formatters for console and JSON display."""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .config import SHORT_HASH_LENGTH
from .models import InstanceSyncResult, UncommittedState
from .stats import changed_files, shorten_path

if TYPE_CHECKING:
    from .models import (
        Repository,
        SubrepoStatus,
        SubrepoSyncSummary,
        TaskOutcome,
        ValidationReport,
    )
    from .stats import SyncStatistics


_STATUS_STYLE = {"🔴": "red", "🟡": "yellow", "🟢": "green", "🟠": "dim"}

_INSTANCE_ICON = {
    InstanceSyncResult.SYNCED: "[green]✅[/]",
    InstanceSyncResult.STASHED: "[yellow]📦[/]",
    InstanceSyncResult.SKIPPED: "[yellow]⚠️ [/]",
    InstanceSyncResult.FAILED: "[red]❌[/]",
}


class OutputFormatter:
    """Format output for console or JSON."""

    def __init__(self, console: Console, use_json: bool = False):
        self.console = console
        self.use_json = use_json

    def _print_json(self, output: Any):
        self.console.print(
            json.dumps(output, indent=2, default=str), markup=False, highlight=False, soft_wrap=True
        )

    def _get_relative_path(self, path: Path, root: Path) -> str:
        """Get relative path from root."""
        try:
            return str(path.relative_to(root))
        except ValueError:
            return str(path)

    # -------------------------------------------------------------------------
    # Repository list
    # -------------------------------------------------------------------------

    def print_repo_list(self, repos: list[Repository], root_path: Path):
        """Print simple repository list."""
        if self.use_json:
            self._print_json(
                {
                    "root": str(root_path),
                    "count": len(repos),
                    "repositories": [r.to_dict() for r in repos],
                }
            )
            return

        self.console.print(f"[bold]Found {len(repos)} repositories in {root_path}[/]\n")
        for repo in repos:
            rel_path = self._get_relative_path(repo.path, root_path.resolve())
            self.console.print(f"  [cyan]{repo.name}[/] [dim]{rel_path}[/]")

    # -------------------------------------------------------------------------
    # Batch operations
    # -------------------------------------------------------------------------

    def print_result_line(self, repo: Repository, outcome: TaskOutcome, name_width: int):
        """Live per-repository line, printed as each repository finishes."""
        if self.use_json:
            return
        symbol = outcome.status.symbol
        style = _STATUS_STYLE.get(symbol, "white")
        name = repo.name.ljust(name_width)
        self.console.print(
            f"{symbol} [bold]{name}[/]  [{style}]{outcome.status.text:<14}[/] {escape(outcome.message)}",
            highlight=False,
        )

    def print_batch_summary(
        self,
        operation: str,
        statistics: SyncStatistics,
        duration: float,
        results: list[tuple[Repository, TaskOutcome]] | None = None,
        show_changes: bool = False,
    ):
        """Print the end-of-run summary and the attention breakdown."""
        if self.use_json:
            self._print_batch_json(operation, statistics, duration, results or [])
            return

        self.console.print()
        self.console.print(f"[bold]{statistics.generate_summary(duration)}[/]")

        sections = statistics.detailed_sections(changed_files if show_changes else None)
        for section in sections:
            self.console.print()
            table = Table(
                title=f"{section.icon} {section.title} ({len(section.entries)})",
                title_justify="left",
                show_header=False,
                box=None,
                pad_edge=False,
            )
            table.add_column("Repository", style="cyan", no_wrap=True)
            table.add_column("Path", style="dim")
            table.add_column("Note")
            for name, path, note in section.entries:
                table.add_row(name, shorten_path(path), escape(f"# {note}") if note else "")
                for change in section.details.get(name, []):
                    table.add_row("", escape(f"  {change}"), "")
            self.console.print(table)

        if statistics.rate_limited_count:
            self.console.print(
                f"\n[yellow]⚠️  {statistics.rate_limited_count} repositories hit a rate limit;"
                " rerun later or lower --jobs[/]"
            )

    def _print_batch_json(
        self,
        operation: str,
        statistics: SyncStatistics,
        duration: float,
        results: list[tuple[Repository, TaskOutcome]],
    ):
        ordered = sorted(results, key=lambda item: (item[0].name.lower(), str(item[0].path)))
        self._print_json(
            {
                "operation": operation,
                "duration_seconds": round(duration, 3),
                "results": [
                    {**repo.to_dict(), **outcome.to_dict()} for repo, outcome in ordered
                ],
                "summary": statistics.to_dict(),
            }
        )

    # -------------------------------------------------------------------------
    # Subrepos
    # -------------------------------------------------------------------------

    def print_validation_report(self, report: ValidationReport):
        """Print nested repositories grouped by remote."""
        if self.use_json:
            self._print_json(report.to_dict())
            return

        self.console.print(
            f"[bold]Nested repos:[/] {report.total_nested} | "
            f"[bold]Unique remotes:[/] {report.unique_remotes} | "
            f"[bold]Shared:[/] {report.shared_subrepos_count}"
        )
        if report.total_nested == 0:
            self.console.print("[dim]No nested repositories found.[/]")
            return

        table = Table(title="Nested Repositories by Remote")
        table.add_column("Subrepo", style="cyan", no_wrap=True)
        table.add_column("Remote")
        table.add_column("Parent")
        table.add_column("Commit", justify="center")
        table.add_column("Tree", justify="center")

        for remote, instances in report.by_remote.items():
            for i, instance in enumerate(instances):
                table.add_row(
                    instance.subrepo_name if i == 0 else "",
                    remote if i == 0 else "",
                    f"{instance.parent_repo}/{instance.relative_path}",
                    instance.short_hash,
                    "[yellow]dirty[/]" if instance.has_uncommitted else "[green]clean[/]",
                )
        self.console.print(table)

        if report.no_remote:
            self.console.print(f"\n[yellow]⚠️  Nested repos without remotes ({len(report.no_remote)}):[/]")
            for instance in report.no_remote:
                self.console.print(f"   • {instance.parent_repo}/{instance.relative_path}")

    def print_subrepo_statuses(self, statuses: list[SubrepoStatus], show_all: bool = False):
        """Print drift status for shared subrepos; in-sync ones only with ``show_all``."""
        if self.use_json:
            self._print_json([s.to_dict() for s in statuses if show_all or s.has_drift])
            return

        if not statuses:
            self.console.print("[dim]No subrepos are shared across parent repositories.[/]")
            return

        drifted = [s for s in statuses if s.has_drift]
        shown = statuses if show_all else drifted
        if not shown:
            self.console.print(f"[green]✓ All {len(statuses)} shared subrepos are in sync[/]")
            return

        for status in shown:
            self._print_subrepo_status(status)

        in_sync = len(statuses) - len(drifted)
        self.console.print(
            f"[bold]Drifted:[/] {len(drifted)} | [bold]In sync:[/] {in_sync} | "
            f"[bold]Total shared:[/] {len(statuses)}"
        )

    def _print_subrepo_status(self, status: SubrepoStatus):
        color = "green" if not status.has_drift else "yellow" if status.sync_score >= 50 else "red"
        table = Table(
            title=(
                f"{status.name}  [{color}]{status.sync_score:.0f}% in sync[/]"
                f"  [dim]{status.unique_commits} commits across {len(status.instances)} instances[/]"
            ),
            title_justify="left",
            caption=status.remote_url,
            caption_justify="left",
        )
        table.add_column("Parent", style="cyan", no_wrap=True)
        table.add_column("Commit", justify="center")
        table.add_column("Date", justify="right")
        table.add_column("Tree", justify="center")

        target = status.sync_target
        for instance in sorted(status.instances, key=lambda i: -i.commit_timestamp):
            marker = " [green]← target[/]" if target is not None and instance is target else ""
            table.add_row(
                f"{instance.parent_repo}{marker}",
                instance.short_hash,
                self._format_timestamp(instance.commit_timestamp),
                "[yellow]dirty[/]" if instance.has_uncommitted else "[green]clean[/]",
            )
        self.console.print(table)

        if status.has_drift:
            self._print_sync_hint(status)
        self.console.print()

    def _print_sync_hint(self, status: SubrepoStatus):
        state = status.uncommitted_state
        target = status.sync_target
        if state == UncommittedState.ALL_DIRTY or target is None:
            self.console.print(
                "[red]Every instance has uncommitted changes; commit or stash before syncing.[/]"
            )
            return
        flag = " --stash" if state == UncommittedState.MIXED else ""
        self.console.print(
            f"[dim]Sync with:[/] git-flotilla subrepo sync {status.name} --to {target.short_hash}{flag}"
        )

    def _format_timestamp(self, timestamp: int) -> str:
        if timestamp <= 0:
            return "[dim]unknown[/]"
        return datetime.fromtimestamp(timestamp).strftime("%Y-%m-%d")

    def print_drift_warning(self, statuses: list[SubrepoStatus]):
        """Short notice after a push when shared subrepos have drifted."""
        if self.use_json or not statuses:
            return
        self.console.print(f"\n[yellow]🔀 SUBREPO DRIFT ({len(statuses)})[/]")
        for status in statuses:
            self.console.print(
                f"   {status.name:20} {status.sync_score:5.0f}% in sync"
                f"  ({status.unique_commits} commits, {len(status.instances)} instances)"
            )
        self.console.print("[dim]   Run 'git-flotilla subrepo status' for details[/]")

    def print_sync_summary(self, summary: SubrepoSyncSummary, verb: str = "sync"):
        """Per-instance outcome of ``subrepo sync`` / ``subrepo update``."""
        if self.use_json:
            self._print_json(summary.to_dict())
            return

        if summary.spans_multiple_remotes:
            self.console.print(
                f"[yellow]⚠️  '{summary.name}' matched instances from {len(summary.remotes)} "
                f"different remotes:[/]"
            )
            for remote in summary.remotes:
                self.console.print(f"   • {remote}")

        short_target = summary.target_commit[:SHORT_HASH_LENGTH]
        self.console.print(f"\n🔄 {verb.title()} {summary.name} to {short_target}\n")
        for outcome in summary.outcomes:
            icon = _INSTANCE_ICON[outcome.result]
            self.console.print(
                f"  {icon} {outcome.instance.parent_repo}/{outcome.instance.relative_path}"
                f" [dim]({escape(outcome.message)})[/]"
            )

        parts = [f"[green]✅ {summary.synced_count} synced[/]"]
        if summary.stashed_count:
            parts.append(f"[yellow]📦 {summary.stashed_count} stashed[/]")
        if summary.skipped_count:
            parts.append(f"[yellow]⚠️  {summary.skipped_count} skipped[/]")
        if summary.failed_count:
            parts.append(f"[red]❌ {summary.failed_count} failed[/]")
        self.console.print("\n" + " | ".join(parts))
        if summary.stashed_count:
            self.console.print("[dim]Stashed changes were not restored; run 'git stash pop' in each.[/]")
