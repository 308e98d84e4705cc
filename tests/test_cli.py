"""Tests for the command-line interface."""

import json
from pathlib import Path

from typer.testing import CliRunner

from git_flotilla import __version__
from git_flotilla.cli import app
from git_flotilla.config import NO_REPOS_MESSAGE

runner = CliRunner()


def test_version():
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.stdout


def test_list_json(workspace: Path, git):
    git.init(workspace / "alpha")
    git.init(workspace / "beta")
    result = runner.invoke(app, ["list", str(workspace), "--json"])
    assert result.exit_code == 0
    data = json.loads(result.stdout)
    assert data["count"] == 2
    assert [r["name"] for r in data["repositories"]] == ["alpha", "beta"]


def test_no_repositories(workspace: Path):
    result = runner.invoke(app, ["push", str(workspace)])
    assert result.exit_code == 0
    assert NO_REPOS_MESSAGE in result.stdout


def test_push_json(tracked_clone: Path, workspace: Path, git):
    git.commit(tracked_clone, "a.txt", "a")
    result = runner.invoke(app, ["push", str(workspace), "--json", "--jobs", "2"])
    assert result.exit_code == 0
    data = json.loads(result.stdout)
    assert data["results"][0]["status"] == "pushed"
    assert data["summary"]["commits_pushed"] == 1
    assert git.run(tracked_clone, "rev-parse", "origin/main") == git.head(tracked_clone)


def test_short_json_flag_shared_by_push_and_list(tracked_clone: Path, workspace: Path):
    for command in ("push", "list"):
        result = runner.invoke(app, [command, str(workspace), "-j"])
        assert result.exit_code == 0
        assert json.loads(result.stdout)


def test_push_console_summary(tracked_clone: Path, workspace: Path, temp_git_repo: Path):
    result = runner.invoke(app, ["push", str(workspace), "--sequential", "--no-drift-check"])
    assert result.exit_code == 0
    assert "Completed in" in result.stdout
    assert "MISSING REMOTES" in result.stdout


def test_pull_json(tracked_clone: Path, workspace: Path):
    result = runner.invoke(app, ["pull", str(workspace), "--json"])
    assert result.exit_code == 0
    assert json.loads(result.stdout)["results"][0]["message"] == "up to date"


def test_stage_status_and_commit(temp_git_repo: Path, workspace: Path, git):
    (temp_git_repo / "notes.md").write_text("hello")

    staged = runner.invoke(app, ["stage", "notes.md", "--path", str(workspace), "--json"])
    assert json.loads(staged.stdout)["results"][0]["status"] == "staged"

    status = runner.invoke(app, ["status", str(workspace), "--json"])
    assert json.loads(status.stdout)["results"][0]["message"] == "1 staged"

    committed = runner.invoke(app, ["commit", "Add notes", "--path", str(workspace), "--json"])
    assert json.loads(committed.stdout)["results"][0]["status"] == "committed"
    assert git.run(temp_git_repo, "log", "-1", "--format=%s") == "Add notes"


def test_config_force(temp_git_repo: Path, workspace: Path, git):
    result = runner.invoke(
        app, ["config", str(workspace), "--email", "dev@example.com", "--force", "--json"]
    )
    assert result.exit_code == 0
    assert git.run(temp_git_repo, "config", "user.email") == "dev@example.com"


def test_config_invalid_email(workspace: Path):
    result = runner.invoke(app, ["config", str(workspace), "--email", "nope", "--force"])
    assert result.exit_code == 1
    assert "Invalid email" in result.stdout


def test_config_without_identity(workspace: Path):
    result = runner.invoke(app, ["config", str(workspace), "--force"])
    assert result.exit_code == 1


def test_subrepo_sync_unknown_name(temp_git_repo: Path, workspace: Path):
    result = runner.invoke(
        app, ["subrepo", "sync", "missing", "--to", "abc1234", "--path", str(workspace)]
    )
    assert result.exit_code == 1
    assert "not found" in result.stdout


def test_subrepo_status_json_empty(temp_git_repo: Path, workspace: Path):
    result = runner.invoke(app, ["subrepo", "status", str(workspace), "--json"])
    assert result.exit_code == 0
    assert json.loads(result.stdout) == []
