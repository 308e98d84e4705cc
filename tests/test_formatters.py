"""Tests for console and JSON output."""

import io
import json
from pathlib import Path

from rich.console import Console

from git_flotilla.formatters import OutputFormatter
from git_flotilla.models import Repository, Status, SubrepoStatus, TaskOutcome
from git_flotilla.stats import SyncStatistics
from tests_support import make_instance


def make_formatter(use_json: bool = False) -> tuple[OutputFormatter, io.StringIO]:
    buffer = io.StringIO()
    console = Console(file=buffer, width=120, force_terminal=False, color_system=None)
    return OutputFormatter(console, use_json=use_json), buffer


def test_result_line():
    formatter, buffer = make_formatter()
    formatter.print_result_line(Repository("api", Path("/w/api")), TaskOutcome(Status.PUSHED, "2 commits pushed"), 6)
    assert buffer.getvalue().startswith("🟢 api     pushed")
    assert "2 commits pushed" in buffer.getvalue()


def test_result_line_escapes_markup():
    formatter, buffer = make_formatter()
    formatter.print_result_line(Repository("api", Path("/w/api")), TaskOutcome(Status.ERROR, "[red] bad"), 3)
    assert "[red] bad" in buffer.getvalue()


def test_batch_summary_json():
    formatter, buffer = make_formatter(use_json=True)
    stats = SyncStatistics()
    stats.update("api", "/w/api", Status.NO_REMOTE, "no remote", False)
    results = [(Repository("api", Path("/w/api")), TaskOutcome(Status.NO_REMOTE, "no remote"))]
    formatter.print_batch_summary("pushing", stats, 1.5, results)
    data = json.loads(buffer.getvalue())
    assert data["results"] == [
        {"name": "api", "path": "/w/api", "status": "no_remote", "message": "no remote", "has_uncommitted": False}
    ]
    assert data["summary"]["no_remote_repos"] == [{"name": "api", "path": "/w/api"}]


def test_batch_summary_sections():
    formatter, buffer = make_formatter()
    stats = SyncStatistics()
    stats.update("cli", "/w/cli", Status.NO_UPSTREAM, "no tracking", False)
    formatter.print_batch_summary("pushing", stats, 0.4)
    output = buffer.getvalue()
    assert "Completed in 0.4s" in output
    assert "NEEDS UPSTREAM (1)" in output
    assert "git push -u origin <branch>" in output


def test_sync_hint_suggests_stash_for_mixed_state():
    clean = make_instance("a", "a" * 40, 200)
    dirty = make_instance("b", "b" * 40, 100, dirty=True)
    status = SubrepoStatus("shared", "https://github.com/org/shared", [clean, dirty], 0.0, 2, True)
    formatter, buffer = make_formatter()
    formatter.print_subrepo_statuses([status])
    assert f"git-flotilla subrepo sync shared --to {'a' * 7} --stash" in buffer.getvalue()


def test_in_sync_statuses_hidden_by_default():
    status = SubrepoStatus("shared", "https://github.com/org/shared", [make_instance("a", "a" * 40)], 100.0, 1, False)
    formatter, buffer = make_formatter()
    formatter.print_subrepo_statuses([status])
    assert "All 1 shared subrepos are in sync" in buffer.getvalue()
