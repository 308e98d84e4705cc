"""Command-line interface."""

from __future__ import annotations

import time
from collections.abc import Callable
from pathlib import Path

import structlog
import typer
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn

from ._version import __version__
from .config import NO_REPOS_MESSAGE, Settings
from .discovery import find_repositories
from .errors import ContextError, InvalidUserConfigError, SubrepoNotFoundError, SubrepoSyncError
from .formatters import OutputFormatter
from .logging import setup_logging
from .models import ConfigPolicy, ConfigSource, ConfigSourceKind, Repository, TaskOutcome, UserConfig
from .operations import (
    commit_all,
    config_all,
    pull_all,
    push_all,
    stage_all,
    status_all,
    unstage_all,
)
from .orchestrator import CompletionCallback, ProcessingContext
from .protocol import resolve_target_config
from .stats import SyncStatistics
from .subrepo import analyze_subrepos, find_drift, validate_subrepos
from .subrepo_sync import sync_subrepo, update_subrepo

log = structlog.get_logger("git_flotilla.cli")

app = typer.Typer(
    name="git-flotilla",
    help="Push, pull, commit and keep shared subrepos in sync across many Git repositories.",
    no_args_is_help=True,
)

subrepo_app = typer.Typer(
    help="Find nested repositories shared across parents and keep them on one commit.",
    no_args_is_help=True,
)
app.add_typer(subrepo_app, name="subrepo")


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        print(f"git-flotilla {__version__}")
        raise typer.Exit()


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
):
    """git-flotilla: operate on every Git repository under the current directory."""
    settings = Settings.from_env()
    setup_logging(settings)
    ctx.obj = settings


def get_console_and_formatter(json_output: bool) -> tuple[Console, OutputFormatter]:
    """Create console and formatter."""
    console = Console(force_terminal=not json_output)
    formatter = OutputFormatter(console, use_json=json_output)
    return console, formatter


def _settings(ctx: typer.Context) -> Settings:
    return ctx.obj if isinstance(ctx.obj, Settings) else Settings.from_env()


def _spinner(console: Console) -> Progress:
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
        transient=True,
    )


def _discover(console: Console, json_output: bool, path: Path | None) -> list[Repository]:
    """Find repositories under ``path``; exit cleanly when there are none."""
    root = path if path else Path(".")
    if json_output:
        repos = find_repositories(root)
    else:
        with _spinner(console) as progress:
            progress.add_task("Scanning repositories...", total=None)
            repos = find_repositories(root)

    if not repos and not json_output:
        console.print(NO_REPOS_MESSAGE)
        raise typer.Exit()
    return repos


def _run_batch(
    console: Console,
    formatter: OutputFormatter,
    operation: str,
    repos: list[Repository],
    runner: Callable[[CompletionCallback], ProcessingContext[SyncStatistics]],
    show_changes: bool = False,
    json_output: bool = False,
) -> SyncStatistics:
    """Run a batch operation, streaming one line per repository, then summarize."""
    start = time.monotonic()
    width = max((len(r.name) for r in repos), default=0)
    results: list[tuple[Repository, TaskOutcome]] = []

    def on_complete(repo: Repository, outcome: TaskOutcome):
        results.append((repo, outcome))
        formatter.print_result_line(repo, outcome, width)

    if not json_output:
        repo_word = "repository" if len(repos) == 1 else "repositories"
        console.print(f"🚀 {operation.title()} [bold]{len(repos)}[/] {repo_word}\n")

    try:
        context = runner(on_complete)
    except ContextError as e:
        console.print(f"[red]Error: {e}[/]")
        raise typer.Exit(1) from e

    statistics = context.read_statistics(lambda s: s)
    duration = time.monotonic() - start
    log.debug("cli.batch_completed", operation=operation, repos=len(repos), duration=round(duration, 3))
    formatter.print_batch_summary(operation, statistics, duration, results, show_changes)
    return statistics


# =============================================================================
# Repository commands
# =============================================================================


@app.command("list")
def list_repos(
    path: Path = typer.Argument(
        None,
        help="Root path to scan for repositories",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output as JSON",
    ),
):
    """List discovered repositories."""
    console, formatter = get_console_and_formatter(json_output)
    repos = _discover(console, json_output, path)
    formatter.print_repo_list(repos, path if path else Path("."))


@app.command()
def push(
    ctx: typer.Context,
    path: Path = typer.Argument(
        None,
        help="Root path to scan for repositories",
    ),
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Push branches without an upstream and set it (push -u)",
    ),
    jobs: int = typer.Option(
        None,
        "--jobs",
        help="Concurrent pushes (default: CPU cores + 2)",
    ),
    fetch_jobs: int = typer.Option(
        None,
        "--fetch-jobs",
        help="Concurrent fetches (default: 2x --jobs, at most 24)",
    ),
    sequential: bool = typer.Option(
        False,
        "--sequential",
        "-s",
        help="Process one repository at a time",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output as JSON",
    ),
    show_changes: bool = typer.Option(
        False,
        "--show-changes",
        help="List changed files for repositories with uncommitted changes",
    ),
    no_drift_check: bool = typer.Option(
        False,
        "--no-drift-check",
        help="Skip the shared-subrepo drift check after pushing",
    ),
):
    """Fetch every repository, then push those with commits ahead of upstream."""
    settings = _settings(ctx)
    console, formatter = get_console_and_formatter(json_output)
    repos = _discover(console, json_output, path)

    _run_batch(
        console,
        formatter,
        "pushing",
        repos,
        lambda on_complete: push_all(
            repos,
            force=force,
            jobs=jobs if jobs is not None else settings.jobs,
            fetch_jobs=fetch_jobs if fetch_jobs is not None else settings.fetch_jobs,
            sequential=sequential,
            on_complete=on_complete,
            timeout=settings.git_timeout,
        ),
        show_changes=show_changes,
        json_output=json_output,
    )

    if not no_drift_check and not json_output:
        with _spinner(console) as progress:
            progress.add_task("Checking shared subrepos...", total=None)
            drifted = find_drift(repos)
        formatter.print_drift_warning(drifted)


@app.command()
def pull(
    ctx: typer.Context,
    path: Path = typer.Argument(
        None,
        help="Root path to scan for repositories",
    ),
    rebase: bool = typer.Option(
        False,
        "--rebase",
        "-r",
        help="Rebase with autostash instead of fast-forward only",
    ),
    jobs: int = typer.Option(
        None,
        "--jobs",
        help="Concurrent pulls (default: CPU cores + 2)",
    ),
    sequential: bool = typer.Option(
        False,
        "--sequential",
        "-s",
        help="Process one repository at a time",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output as JSON",
    ),
):
    """Fetch every repository, then pull those behind upstream. Never merges."""
    settings = _settings(ctx)
    console, formatter = get_console_and_formatter(json_output)
    repos = _discover(console, json_output, path)

    _run_batch(
        console,
        formatter,
        "pulling",
        repos,
        lambda on_complete: pull_all(
            repos,
            rebase=rebase,
            jobs=jobs if jobs is not None else settings.jobs,
            fetch_jobs=settings.fetch_jobs,
            sequential=sequential,
            on_complete=on_complete,
            timeout=settings.git_timeout,
        ),
        json_output=json_output,
    )


@app.command()
def stage(
    pattern: str = typer.Argument(..., help="Pathspec passed to git add"),
    path: Path = typer.Option(None, "--path", "-p", help="Root path to scan for repositories"),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """Stage files matching PATTERN in every repository."""
    console, formatter = get_console_and_formatter(json_output)
    repos = _discover(console, json_output, path)
    _run_batch(
        console,
        formatter,
        f"staging {pattern} in",
        repos,
        lambda on_complete: stage_all(repos, pattern, on_complete=on_complete),
        json_output=json_output,
    )


@app.command()
def unstage(
    pattern: str = typer.Argument(..., help="Pathspec passed to git restore --staged"),
    path: Path = typer.Option(None, "--path", "-p", help="Root path to scan for repositories"),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """Unstage files matching PATTERN in every repository."""
    console, formatter = get_console_and_formatter(json_output)
    repos = _discover(console, json_output, path)
    _run_batch(
        console,
        formatter,
        f"unstaging {pattern} in",
        repos,
        lambda on_complete: unstage_all(repos, pattern, on_complete=on_complete),
        json_output=json_output,
    )


@app.command()
def status(
    path: Path = typer.Argument(
        None,
        help="Root path to scan for repositories",
    ),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """Show staged, unstaged and untracked counts for every repository."""
    console, formatter = get_console_and_formatter(json_output)
    repos = _discover(console, json_output, path)
    _run_batch(
        console,
        formatter,
        "checking",
        repos,
        lambda on_complete: status_all(repos, on_complete=on_complete),
        json_output=json_output,
    )


@app.command()
def commit(
    message: str = typer.Argument(..., help="Commit message"),
    include_empty: bool = typer.Option(
        False,
        "--include-empty",
        help="Create empty commits in repositories with nothing staged",
    ),
    path: Path = typer.Option(None, "--path", "-p", help="Root path to scan for repositories"),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """Commit staged changes in every repository."""
    console, formatter = get_console_and_formatter(json_output)
    repos = _discover(console, json_output, path)
    _run_batch(
        console,
        formatter,
        "committing",
        repos,
        lambda on_complete: commit_all(
            repos, message, include_empty=include_empty, on_complete=on_complete
        ),
        json_output=json_output,
    )


@app.command()
def config(
    path: Path = typer.Argument(
        None,
        help="Root path to scan for repositories",
    ),
    name: str = typer.Option(None, "--name", help="user.name to apply"),
    email: str = typer.Option(None, "--email", help="user.email to apply"),
    from_global: bool = typer.Option(
        False,
        "--from-global",
        help="Use user.name/user.email from the global git config",
    ),
    from_current: bool = typer.Option(
        False,
        "--from-current",
        help="Use user.name/user.email of the repository in the current directory",
    ),
    force: bool = typer.Option(False, "--force", "-f", help="Update without asking"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show what would change"),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """Make user.name and user.email consistent across every repository."""
    console, formatter = get_console_and_formatter(json_output)

    if from_global and from_current:
        console.print("[red]Error: --from-global and --from-current are mutually exclusive[/]")
        raise typer.Exit(1)
    if from_global:
        source = ConfigSource(ConfigSourceKind.GLOBAL)
    elif from_current:
        source = ConfigSource(ConfigSourceKind.CURRENT, path=Path.cwd())
    else:
        source = ConfigSource(ConfigSourceKind.EXPLICIT, UserConfig(name=name, email=email))

    try:
        target = resolve_target_config(source)
    except InvalidUserConfigError as e:
        console.print(f"[red]Error: {e}[/]")
        raise typer.Exit(1) from e

    if dry_run:
        policy = ConfigPolicy.DRY_RUN
    elif force:
        policy = ConfigPolicy.FORCE
    else:
        policy = ConfigPolicy.INTERACTIVE
        if json_output:
            console.print("[red]Error: --json needs --force or --dry-run[/]")
            raise typer.Exit(1)

    def confirm(repo_name: str, current: UserConfig, wanted: UserConfig) -> bool:
        console.print(
            f"\n[bold]{repo_name}[/]: {current.name or '-'} <{current.email or '-'}>"
            f" → {wanted.name or current.name or '-'} <{wanted.email or current.email or '-'}>"
        )
        return typer.confirm("Update?", default=False)

    repos = _discover(console, json_output, path)
    _run_batch(
        console,
        formatter,
        "configuring",
        repos,
        lambda on_complete: config_all(
            repos, target, policy, confirm=confirm, on_complete=on_complete
        ),
        json_output=json_output,
    )


# =============================================================================
# Subrepo commands
# =============================================================================


def _scan_subrepos(console: Console, json_output: bool, path: Path | None):
    repos = _discover(console, json_output, path)
    if json_output:
        return validate_subrepos(repos)
    with _spinner(console) as progress:
        progress.add_task(f"Scanning {len(repos)} repositories for nested repos...", total=None)
        return validate_subrepos(repos)


@subrepo_app.command("validate")
def subrepo_validate(
    path: Path = typer.Argument(None, help="Root path to scan for repositories"),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """List nested repositories grouped by remote."""
    console, formatter = get_console_and_formatter(json_output)
    formatter.print_validation_report(_scan_subrepos(console, json_output, path))


@subrepo_app.command("status")
def subrepo_status(
    path: Path = typer.Argument(None, help="Root path to scan for repositories"),
    show_all: bool = typer.Option(False, "--all", "-a", help="Include subrepos already in sync"),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """Show drift for subrepos shared by more than one parent."""
    console, formatter = get_console_and_formatter(json_output)
    report = _scan_subrepos(console, json_output, path)
    formatter.print_subrepo_statuses(analyze_subrepos(report), show_all=show_all)


def _run_subrepo_sync(console: Console, formatter: OutputFormatter, verb: str, action):
    try:
        summary = action()
    except SubrepoNotFoundError as e:
        console.print(f"[red]Error: {e}[/]")
        raise typer.Exit(1) from e
    except SubrepoSyncError as e:
        if e.summary.outcomes:
            formatter.print_sync_summary(e.summary, verb)
        console.print(f"[red]Error: {e}[/]")
        raise typer.Exit(1) from e
    formatter.print_sync_summary(summary, verb)


@subrepo_app.command("sync")
def subrepo_sync(
    name: str = typer.Argument(..., help="Subrepo directory name"),
    to: str = typer.Option(..., "--to", help="Commit to check out in every instance"),
    stash: bool = typer.Option(False, "--stash", help="Stash uncommitted changes first"),
    force: bool = typer.Option(False, "--force", "-f", help="Check out over uncommitted changes"),
    path: Path = typer.Option(None, "--path", "-p", help="Root path to scan for repositories"),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """Check out one commit in every instance of a shared subrepo."""
    console, formatter = get_console_and_formatter(json_output)
    report = _scan_subrepos(console, json_output, path)
    _run_subrepo_sync(
        console,
        formatter,
        "sync",
        lambda: sync_subrepo(name, to, report, stash=stash, force=force),
    )


@subrepo_app.command("update")
def subrepo_update(
    name: str = typer.Argument(..., help="Subrepo directory name"),
    stash: bool = typer.Option(False, "--stash", help="Stash uncommitted changes first"),
    force: bool = typer.Option(False, "--force", "-f", help="Check out over uncommitted changes"),
    path: Path = typer.Option(None, "--path", "-p", help="Root path to scan for repositories"),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
):
    """Move every instance of a shared subrepo to the newest commit on origin."""
    console, formatter = get_console_and_formatter(json_output)
    report = _scan_subrepos(console, json_output, path)
    _run_subrepo_sync(
        console,
        formatter,
        "update",
        lambda: update_subrepo(name, report, stash=stash, force=force),
    )
