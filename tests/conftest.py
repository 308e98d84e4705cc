"""Pytest configuration and fixtures for git-flotilla tests."""

import subprocess
from pathlib import Path

import pytest


@pytest.fixture(autouse=True)
def isolated_git_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point HOME at an empty directory so global git config never leaks in."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    monkeypatch.setenv("GIT_AUTHOR_NAME", "Test User")
    monkeypatch.setenv("GIT_AUTHOR_EMAIL", "test@example.com")
    monkeypatch.setenv("GIT_COMMITTER_NAME", "Test User")
    monkeypatch.setenv("GIT_COMMITTER_EMAIL", "test@example.com")
    monkeypatch.setenv("GIT_TERMINAL_PROMPT", "0")
    for name in ("GIT_FLOTILLA_JOBS", "GIT_FLOTILLA_FETCH_JOBS", "GIT_FLOTILLA_GIT_TIMEOUT"):
        monkeypatch.delenv(name, raising=False)
    return home


class GitHelper:
    """Small wrapper for building repositories in tests."""

    def run(self, cwd: Path, *args: str) -> str:
        result = subprocess.run(
            ["git", *args], cwd=cwd, check=True, capture_output=True, text=True
        )
        return result.stdout.strip()

    def init(self, path: Path, commit: bool = True) -> Path:
        path.mkdir(parents=True, exist_ok=True)
        self.run(path, "init", "-b", "main")
        if commit:
            self.commit(path, "README.md", f"# {path.name}\n", "Initial commit")
        return path

    def bare(self, path: Path) -> Path:
        path.mkdir(parents=True, exist_ok=True)
        self.run(path, "init", "--bare", "-b", "main")
        return path

    def commit(self, repo: Path, filename: str, content: str, message: str = "Update") -> str:
        target = repo / filename
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content)
        self.run(repo, "add", filename)
        self.run(repo, "commit", "-m", message)
        return self.head(repo)

    def head(self, repo: Path) -> str:
        return self.run(repo, "rev-parse", "HEAD")

    def clone(self, remote: Path, dest: Path) -> Path:
        dest.parent.mkdir(parents=True, exist_ok=True)
        self.run(dest.parent, "clone", "--quiet", str(remote), dest.name)
        return dest

    def remote_with_commit(self, root: Path, name: str) -> Path:
        """A bare remote holding one commit on ``main``."""
        remote = self.bare(root / "remotes" / f"{name}.git")
        seed = self.init(root / "seeds" / name)
        self.run(seed, "remote", "add", "origin", str(remote))
        self.run(seed, "push", "--quiet", "-u", "origin", "main")
        return remote


@pytest.fixture
def git() -> GitHelper:
    return GitHelper()


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    """Directory scanned for repositories."""
    path = tmp_path / "workspace"
    path.mkdir()
    return path


@pytest.fixture
def temp_git_repo(workspace: Path, git: GitHelper) -> Path:
    """A repository with one commit and no remote."""
    return git.init(workspace / "solo")


@pytest.fixture
def tracked_clone(tmp_path: Path, workspace: Path, git: GitHelper) -> Path:
    """A clone of a bare remote, tracking ``origin/main``."""
    remote = git.remote_with_commit(tmp_path, "app")
    return git.clone(remote, workspace / "app")
