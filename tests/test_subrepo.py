"""Tests for shared subrepo detection and drift scoring."""

from pathlib import Path

import pytest

from git_flotilla.discovery import find_repositories
from git_flotilla.models import Repository
from git_flotilla.subrepo import (
    analyze_subrepos,
    calculate_sync_score,
    find_drift,
    find_nested_in_parent,
    normalize_remote_url,
    validate_subrepos,
)
from tests_support import make_instance


class TestNormalizeRemoteUrl:
    """Tests for normalize_remote_url."""

    @pytest.mark.parametrize(
        "url",
        [
            "git@github.com:Org/Shared.git",
            "https://github.com/org/shared",
            "https://github.com/org/shared.git",
            "https://github.com/Org/Shared/",
            "ssh://git@github.com/org/shared.git",
            "ssh://git@github.com:22/org/shared",
        ],
    )
    def test_equivalent_forms(self, url: str):
        assert normalize_remote_url(url) == "https://github.com/org/shared"

    def test_local_path_kept(self):
        assert normalize_remote_url("/srv/git/Shared.git") == "/srv/git/shared"


class TestSyncScore:
    """Tests for calculate_sync_score."""

    def test_all_same(self):
        instances = [make_instance("a", "1" * 40), make_instance("b", "1" * 40)]
        assert calculate_sync_score(instances) == (100.0, 1)

    def test_all_different(self):
        instances = [make_instance("a", "1" * 40), make_instance("b", "2" * 40)]
        assert calculate_sync_score(instances) == (0.0, 2)

    def test_partial(self):
        instances = [
            make_instance("a", "1" * 40),
            make_instance("b", "1" * 40),
            make_instance("c", "2" * 40),
        ]
        assert calculate_sync_score(instances) == (50.0, 2)

    def test_single_instance(self):
        assert calculate_sync_score([make_instance("a", "1" * 40)]) == (100.0, 1)


@pytest.fixture
def shared_layout(tmp_path: Path, workspace: Path, git):
    """Two parents carrying clones of one remote; the first is one commit ahead."""
    remote = git.remote_with_commit(tmp_path, "shared")
    old = git.run(remote, "rev-parse", "main")

    first = git.init(workspace / "first")
    second = git.init(workspace / "second")
    first_shared = git.clone(remote, first / "libs" / "shared")
    second_shared = git.clone(remote, second / "libs" / "shared")

    new = git.commit(first_shared, "feature.txt", "feature")
    git.run(first_shared, "push", "--quiet")

    parents = [
        Repository("first", first.resolve()),
        Repository("second", second.resolve()),
    ]
    return {
        "parents": parents,
        "old": old,
        "new": new,
        "first_shared": first_shared,
        "second_shared": second_shared,
    }


class TestValidateSubrepos:
    """Tests for scanning parents for nested repositories."""

    def test_find_nested_excludes_parent(self, shared_layout):
        instances = find_nested_in_parent(shared_layout["parents"][0])
        assert len(instances) == 1
        instance = instances[0]
        assert instance.subrepo_name == "shared"
        assert instance.relative_path == str(Path("libs") / "shared")
        assert instance.commit_hash == shared_layout["new"]
        assert instance.short_hash == shared_layout["new"][:7]
        assert instance.commit_timestamp > 0

    def test_grouped_by_remote(self, shared_layout):
        report = validate_subrepos(shared_layout["parents"])
        assert report.total_nested == 2
        assert report.unique_remotes == 1
        assert report.shared_subrepos_count == 1
        assert report.no_remote == []

    def test_nested_without_remote(self, workspace: Path, git):
        parent = git.init(workspace / "parent")
        git.init(parent / "scratch")
        report = validate_subrepos([Repository("parent", parent.resolve())])
        assert report.by_remote == {}
        assert [i.subrepo_name for i in report.no_remote] == ["scratch"]

    def test_unborn_nested_repo_skipped(self, workspace: Path, git):
        parent = git.init(workspace / "parent")
        git.init(parent / "empty", commit=False)
        assert validate_subrepos([Repository("parent", parent.resolve())]).total_nested == 0

    def test_empty_parent_list(self):
        assert validate_subrepos([]).total_nested == 0


class TestAnalyzeSubrepos:
    """Tests for drift analysis."""

    def test_drift_detected(self, shared_layout):
        statuses = analyze_subrepos(validate_subrepos(shared_layout["parents"]))
        assert len(statuses) == 1
        status = statuses[0]
        assert status.name == "shared"
        assert status.has_drift
        assert status.sync_score == 0.0
        assert status.unique_commits == 2

    def test_in_sync_after_catching_up(self, shared_layout, git):
        git.run(shared_layout["second_shared"], "pull", "--quiet", "--ff-only")
        statuses = analyze_subrepos(validate_subrepos(shared_layout["parents"]))
        assert statuses[0].sync_score == 100.0
        assert not statuses[0].has_drift

    def test_single_instance_not_shared(self, shared_layout):
        report = validate_subrepos(shared_layout["parents"][:1])
        assert analyze_subrepos(report) == []

    def test_find_drift_from_discovery(self, shared_layout, workspace: Path):
        parents = [r for r in find_repositories(workspace) if r.name in ("first", "second")]
        assert [s.name for s in find_drift(parents)] == ["shared"]
