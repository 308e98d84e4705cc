"""End-to-end tests for batch operations over real repositories."""

import stat
from pathlib import Path

import pytest

from git_flotilla.discovery import find_repositories
from git_flotilla.git import GitOperations
from git_flotilla.models import ConfigPolicy, InstanceSyncResult, Repository, Status, UserConfig
from git_flotilla.operations import commit_all, config_all, pull_all, push_all, stage_all, status_all
from git_flotilla.protocol import fetch_and_analyze
from git_flotilla.subrepo import analyze_subrepos, validate_subrepos
from git_flotilla.subrepo_sync import sync_subrepo


def collect():
    results = {}

    def on_complete(repo: Repository, outcome):
        results[repo.name] = outcome

    return results, on_complete


class CountingGit(GitOperations):
    """GitOperations that records fetch calls."""

    def __init__(self, repo_path: Path):
        super().__init__(repo_path)
        self.fetches = 0

    def fetch(self, *args: str):
        self.fetches += 1
        return super().fetch(*args)


def reject_pushes(remote: Path) -> None:
    hook = remote / "hooks" / "pre-receive"
    hook.write_text("#!/bin/sh\necho 'push rejected by hook' >&2\nexit 1\n")
    hook.chmod(hook.stat().st_mode | stat.S_IEXEC)


class TestDiscoveryScenarios:
    """Discovery over whole workspaces."""

    def test_empty_directory(self, workspace: Path):
        assert find_repositories(workspace) == []

    def test_duplicate_pair(self, workspace: Path, git):
        for path in ("api", "web", "docs", "one/lib", "two/lib"):
            git.init(workspace / path, commit=False)
        repos = find_repositories(workspace)
        names = [r.name for r in repos]
        assert len(repos) == 5
        assert {"lib", "lib-2"} <= set(names)
        assert names == sorted(names, key=str.lower)


class TestPhaseSeparation:
    """Phase 1 never touches the network for repositories without a remote."""

    def test_no_remote_never_fetches(self, temp_git_repo: Path):
        (temp_git_repo / "README.md").write_text("edited\n")
        git_ops = CountingGit(temp_git_repo)
        result = fetch_and_analyze(temp_git_repo, git_ops)
        assert result.status == Status.NO_REMOTE
        assert result.has_uncommitted
        assert git_ops.fetches == 0

    @pytest.mark.parametrize("force", [False, True])
    def test_nothing_ahead_is_synced(self, tracked_clone: Path, force: bool):
        results, on_complete = collect()
        push_all(find_repositories(tracked_clone), force=force, on_complete=on_complete)
        assert results["app"].status == Status.SYNCED


class TestPushAll:
    """Tests for push_all."""

    def test_two_commits_pushed(self, tracked_clone: Path, git):
        git.commit(tracked_clone, "a.txt", "a")
        git.commit(tracked_clone, "b.txt", "b")
        assert fetch_and_analyze(tracked_clone).ahead_count == 2

        results, on_complete = collect()
        context = push_all(find_repositories(tracked_clone), on_complete=on_complete)
        assert results["app"].status == Status.PUSHED
        assert results["app"].message == "2 commits pushed"
        assert context.statistics.total_commits_pushed == 2

    def test_partial_failure_isolated(self, tmp_path: Path, workspace: Path, git):
        clones = []
        for i in range(5):
            remote = git.remote_with_commit(tmp_path, f"svc{i}")
            clone = git.clone(remote, workspace / f"svc{i}")
            git.commit(clone, "change.txt", f"change {i}")
            clones.append(clone)
            if i == 2:
                reject_pushes(remote)

        results, on_complete = collect()
        context = push_all(find_repositories(workspace), jobs=3, on_complete=on_complete)
        stats = context.statistics

        assert results["svc2"].status == Status.ERROR
        assert all(results[f"svc{i}"].status == Status.PUSHED for i in (0, 1, 3, 4))
        assert stats.error_repos == 1
        assert [name for name, _, _ in stats.failed_repos] == ["svc2"]
        assert stats.synced_repos == 4

    def test_sequential(self, tracked_clone: Path, temp_git_repo: Path, workspace: Path):
        context = push_all(find_repositories(workspace), sequential=True)
        assert context.concurrency_limit == 1
        assert context.statistics.no_remote_repos[0][0] == "solo"


def test_pull_all(tracked_clone: Path, tmp_path: Path, workspace: Path, git):
    remote = git.run(tracked_clone, "remote", "get-url", "origin")
    other = git.clone(Path(remote), tmp_path / "other")
    git.commit(other, "a.txt", "a")
    git.run(other, "push", "--quiet")

    results, on_complete = collect()
    context = pull_all(find_repositories(workspace), on_complete=on_complete)
    assert results["app"].status == Status.PULLED
    assert context.statistics.total_commits_pulled == 1


def test_stage_status_commit_across_repos(workspace: Path, git):
    for name in ("one", "two", "three"):
        repo = git.init(workspace / name)
        if name != "three":
            (repo / "notes.md").write_text(name)
    repos = find_repositories(workspace)

    staged, on_staged = collect()
    stage_all(repos, "notes.md", on_complete=on_staged)
    assert staged["one"].status == Status.STAGED
    assert staged["three"].status == Status.NO_CHANGES

    statuses, on_status = collect()
    status_all(repos, on_complete=on_status)
    assert statuses["two"].message == "1 staged"

    committed, on_commit = collect()
    context = commit_all(repos, "Add notes", on_complete=on_commit)
    assert committed["one"].status == Status.COMMITTED
    assert committed["three"].status == Status.NO_CHANGES
    assert context.statistics.synced_repos == 2


def test_config_all_interactive_runs_one_at_a_time(workspace: Path, git):
    for name in ("one", "two"):
        git.init(workspace / name)
    asked = []

    def confirm(name, current, target):
        asked.append(name)
        return name == "one"

    results, on_complete = collect()
    context = config_all(
        find_repositories(workspace),
        UserConfig(name="Dev"),
        ConfigPolicy.INTERACTIVE,
        confirm=confirm,
        on_complete=on_complete,
    )
    assert context.concurrency_limit == 1
    assert sorted(asked) == ["one", "two"]
    assert results["one"].status == Status.CONFIG_UPDATED
    assert results["two"].status == Status.CONFIG_SKIPPED


class TestSubrepoScenarios:
    """Shared subrepo scenarios across three parents."""

    def build(self, tmp_path: Path, workspace: Path, git):
        remote = git.remote_with_commit(tmp_path, "shared-lib")
        parents = []
        clones = []
        for name in ("alpha", "beta", "gamma"):
            parent = git.init(workspace / name)
            clones.append(git.clone(remote, parent / "vendor" / "shared-lib"))
            parents.append(Repository(name, parent.resolve()))
        return parents, clones

    def test_identical_instances(self, tmp_path: Path, workspace: Path, git):
        parents, _ = self.build(tmp_path, workspace, git)
        statuses = analyze_subrepos(validate_subrepos(parents))
        assert len(statuses) == 1
        assert statuses[0].name == "shared-lib"
        assert statuses[0].sync_score == 100.0
        assert not statuses[0].has_drift

    def test_drift_then_sync(self, tmp_path: Path, workspace: Path, git, monkeypatch: pytest.MonkeyPatch):
        parents, clones = self.build(tmp_path, workspace, git)
        commit_a = git.head(clones[0])
        monkeypatch.setenv("GIT_COMMITTER_DATE", "2001-01-01T00:00:00+0000")
        git.commit(clones[2], "local.txt", "older local change")
        monkeypatch.delenv("GIT_COMMITTER_DATE")

        status = analyze_subrepos(validate_subrepos(parents))[0]
        assert status.unique_commits == 2
        assert status.sync_score == 50.0
        assert status.has_drift
        assert status.sync_target.commit_hash == commit_a

        summary = sync_subrepo("shared-lib", commit_a, validate_subrepos(parents))
        assert summary.synced_count == 3
        assert {git.head(clone) for clone in clones} == {commit_a}
        gamma = next(o for o in summary.outcomes if o.instance.parent_repo == "gamma")
        assert gamma.result == InstanceSyncResult.SYNCED
