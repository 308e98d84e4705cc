"""Domain models shared by discovery, the sync protocol and subrepo analysis."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path

# =============================================================================
# Repository operations
# =============================================================================


class Status(StrEnum):
    """Terminal outcome of one operation on one repository."""

    SYNCED = "synced"
    PUSHED = "pushed"
    PULLED = "pulled"
    SKIP = "skip"
    NO_UPSTREAM = "no_upstream"
    NO_REMOTE = "no_remote"
    ERROR = "error"
    PULL_ERROR = "pull_error"
    CONFIG_SYNCED = "config_synced"
    CONFIG_UPDATED = "config_updated"
    CONFIG_SKIPPED = "config_skipped"
    CONFIG_ERROR = "config_error"
    STAGED = "staged"
    UNSTAGED = "unstaged"
    STAGING_ERROR = "staging_error"
    COMMITTED = "committed"
    COMMIT_ERROR = "commit_error"
    NO_CHANGES = "no_changes"

    @property
    def is_failure(self) -> bool:
        return self in _FAILURE_STATUSES

    @property
    def is_success(self) -> bool:
        return self in _SUCCESS_STATUSES

    @property
    def is_skip(self) -> bool:
        return not self.is_failure and not self.is_success

    @property
    def symbol(self) -> str:
        """Emoji shown in front of the repository name."""
        if self.is_failure:
            return "🔴"
        if self == Status.NO_UPSTREAM:
            return "🟡"
        if self.is_success:
            return "🟢"
        return "🟠"

    @property
    def text(self) -> str:
        """Short label shown in the status column."""
        return _STATUS_TEXT[self]


_FAILURE_STATUSES = frozenset(
    {
        Status.ERROR,
        Status.PULL_ERROR,
        Status.CONFIG_ERROR,
        Status.STAGING_ERROR,
        Status.COMMIT_ERROR,
    }
)

_SUCCESS_STATUSES = frozenset(
    {
        Status.SYNCED,
        Status.PUSHED,
        Status.PULLED,
        Status.CONFIG_SYNCED,
        Status.CONFIG_UPDATED,
        Status.STAGED,
        Status.UNSTAGED,
        Status.COMMITTED,
    }
)

_STATUS_TEXT = {
    Status.SYNCED: "synced",
    Status.PUSHED: "pushed",
    Status.PULLED: "pulled",
    Status.SKIP: "skip",
    Status.NO_UPSTREAM: "no-upstream",
    Status.NO_REMOTE: "skip",
    Status.ERROR: "failed",
    Status.PULL_ERROR: "pull-failed",
    Status.CONFIG_SYNCED: "config-ok",
    Status.CONFIG_UPDATED: "config-updated",
    Status.CONFIG_SKIPPED: "config-skip",
    Status.CONFIG_ERROR: "config-failed",
    Status.STAGED: "staged",
    Status.UNSTAGED: "unstaged",
    Status.STAGING_ERROR: "failed",
    Status.COMMITTED: "committed",
    Status.COMMIT_ERROR: "commit-failed",
    Status.NO_CHANGES: "no-changes",
}


@dataclass(frozen=True)
class Repository:
    """A discovered working tree. Identity is the canonical path."""

    name: str
    path: Path

    def to_dict(self) -> dict:
        return {"name": self.name, "path": str(self.path)}


@dataclass(frozen=True)
class TaskOutcome:
    """What a unit of work reports back for one repository."""

    status: Status
    message: str
    has_uncommitted: bool = False

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "message": self.message,
            "has_uncommitted": self.has_uncommitted,
        }


@dataclass(frozen=True)
class FetchResult:
    """Snapshot produced by phase 1 of the sync protocol; read by phase 2."""

    has_uncommitted: bool
    status: Status
    message: str
    current_branch: str = ""
    ahead_count: int = 0
    behind_count: int = 0
    upstream_exists: bool = False
    remote_name: str = "origin"

    def outcome(self) -> TaskOutcome:
        return TaskOutcome(self.status, self.message, self.has_uncommitted)


# =============================================================================
# User configuration
# =============================================================================


class ConfigPolicy(StrEnum):
    """How ``config`` applies a differing user identity."""

    INTERACTIVE = "interactive"
    FORCE = "force"
    DRY_RUN = "dry_run"


class ConfigSourceKind(StrEnum):
    """Where the target user identity comes from."""

    EXPLICIT = "explicit"
    GLOBAL = "global"
    CURRENT = "current"


@dataclass(frozen=True)
class UserConfig:
    """user.name / user.email pair; ``None`` means unset."""

    name: str | None = None
    email: str | None = None

    def is_empty(self) -> bool:
        return self.name is None and self.email is None

    def to_dict(self) -> dict:
        return {"name": self.name, "email": self.email}


@dataclass(frozen=True)
class ConfigSource:
    kind: ConfigSourceKind
    config: UserConfig = field(default_factory=UserConfig)
    path: Path | None = None


# =============================================================================
# Subrepos
# =============================================================================


@dataclass
class SubrepoInstance:
    """One occurrence of a nested repository inside a parent."""

    parent_repo: str
    parent_path: Path
    subrepo_name: str
    subrepo_path: Path
    relative_path: str
    commit_hash: str
    short_hash: str
    remote_url: str | None = None
    has_uncommitted: bool = False
    commit_timestamp: int = 0

    def to_dict(self) -> dict:
        return {
            "parent_repo": self.parent_repo,
            "parent_path": str(self.parent_path),
            "subrepo_name": self.subrepo_name,
            "subrepo_path": str(self.subrepo_path),
            "relative_path": self.relative_path,
            "commit_hash": self.commit_hash,
            "short_hash": self.short_hash,
            "remote_url": self.remote_url,
            "has_uncommitted": self.has_uncommitted,
            "commit_timestamp": self.commit_timestamp,
        }


@dataclass
class ValidationReport:
    """Nested repositories grouped by normalized remote URL."""

    by_remote: dict[str, list[SubrepoInstance]] = field(default_factory=dict)
    no_remote: list[SubrepoInstance] = field(default_factory=list)
    total_nested: int = 0

    @property
    def unique_remotes(self) -> int:
        return len(self.by_remote)

    @property
    def shared_subrepos_count(self) -> int:
        return sum(1 for instances in self.by_remote.values() if len(instances) > 1)

    def to_dict(self) -> dict:
        return {
            "total_nested": self.total_nested,
            "unique_remotes": self.unique_remotes,
            "shared_subrepos": self.shared_subrepos_count,
            "by_remote": {
                remote: [i.to_dict() for i in instances]
                for remote, instances in self.by_remote.items()
            },
            "no_remote": [i.to_dict() for i in self.no_remote],
        }


class UncommittedState(StrEnum):
    ALL_CLEAN = "all_clean"
    ALL_DIRTY = "all_dirty"
    MIXED = "mixed"


@dataclass
class SubrepoStatus:
    """Drift analysis for one group of instances sharing a remote."""

    name: str
    remote_url: str
    instances: list[SubrepoInstance]
    sync_score: float
    unique_commits: int
    has_drift: bool

    @property
    def latest(self) -> SubrepoInstance | None:
        """Instance with the newest commit, dirty or not."""
        return max(self.instances, key=lambda i: i.commit_timestamp, default=None)

    @property
    def sync_target(self) -> SubrepoInstance | None:
        """Newest clean instance; ``None`` when every instance is dirty."""
        clean = [i for i in self.instances if not i.has_uncommitted]
        return max(clean, key=lambda i: i.commit_timestamp, default=None)

    @property
    def uncommitted_state(self) -> UncommittedState:
        dirty = sum(1 for i in self.instances if i.has_uncommitted)
        if dirty == 0:
            return UncommittedState.ALL_CLEAN
        if dirty == len(self.instances):
            return UncommittedState.ALL_DIRTY
        return UncommittedState.MIXED

    def to_dict(self) -> dict:
        target = self.sync_target
        latest = self.latest
        return {
            "name": self.name,
            "remote_url": self.remote_url,
            "sync_score": round(self.sync_score, 1),
            "unique_commits": self.unique_commits,
            "has_drift": self.has_drift,
            "uncommitted_state": self.uncommitted_state.value,
            "sync_target": target.commit_hash if target else None,
            "latest": latest.commit_hash if latest else None,
            "instances": [i.to_dict() for i in self.instances],
        }


class InstanceSyncResult(StrEnum):
    """Per-instance outcome of a subrepo sync or update."""

    SYNCED = "synced"
    STASHED = "stashed"  # stashed, then synced
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class InstanceSyncOutcome:
    instance: SubrepoInstance
    result: InstanceSyncResult
    message: str = ""

    def to_dict(self) -> dict:
        return {
            "parent_repo": self.instance.parent_repo,
            "subrepo_path": str(self.instance.subrepo_path),
            "from_commit": self.instance.short_hash,
            "result": self.result.value,
            "message": self.message,
        }


@dataclass
class SubrepoSyncSummary:
    """Outcome of syncing every instance of one subrepo name."""

    name: str
    target_commit: str
    outcomes: list[InstanceSyncOutcome] = field(default_factory=list)
    remotes: list[str] = field(default_factory=list)

    def _count(self, result: InstanceSyncResult) -> int:
        return sum(1 for o in self.outcomes if o.result == result)

    @property
    def synced_count(self) -> int:
        """Instances now at the target, stashed ones included."""
        return self._count(InstanceSyncResult.SYNCED) + self.stashed_count

    @property
    def stashed_count(self) -> int:
        return self._count(InstanceSyncResult.STASHED)

    @property
    def skipped_count(self) -> int:
        return self._count(InstanceSyncResult.SKIPPED)

    @property
    def failed_count(self) -> int:
        return self._count(InstanceSyncResult.FAILED)

    @property
    def spans_multiple_remotes(self) -> bool:
        return len(self.remotes) > 1

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "target_commit": self.target_commit,
            "remotes": self.remotes,
            "synced": self.synced_count,
            "stashed": self.stashed_count,
            "skipped": self.skipped_count,
            "failed": self.failed_count,
            "instances": [o.to_dict() for o in self.outcomes],
        }
