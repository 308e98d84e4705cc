"""git-flotilla: push, pull, commit and configure a whole tree of Git repositories at once."""

# Guard against deleted CWD (e.g. directory removed by another process).
# rich crashes on import if os.getcwd() fails, so recover before any imports.
import os

try:
    os.getcwd()
except (OSError, PermissionError):
    os.chdir(os.path.expanduser("~"))

from ._version import __version__
from .cli import app
from .config import Settings
from .discovery import find_repositories
from .errors import (
    ContextError,
    FlotillaError,
    GitCommandError,
    GitTimeoutError,
    InvalidUserConfigError,
    SubrepoNotFoundError,
    SubrepoSyncError,
    clean_error_message,
)
from .formatters import OutputFormatter
from .git import GitOperations
from .models import (
    ConfigPolicy,
    ConfigSource,
    ConfigSourceKind,
    FetchResult,
    Repository,
    Status,
    SubrepoInstance,
    SubrepoStatus,
    SubrepoSyncSummary,
    TaskOutcome,
    UserConfig,
    ValidationReport,
)
from .operations import (
    commit_all,
    config_all,
    pull_all,
    push_all,
    stage_all,
    status_all,
    unstage_all,
)
from .orchestrator import ProcessingContext, create_context, process_repositories
from .stats import SyncStatistics
from .subrepo import analyze_subrepos, validate_subrepos
from .subrepo_sync import sync_subrepo, update_subrepo

__all__ = [
    # Version
    "__version__",
    # CLI
    "app",
    # Configuration
    "Settings",
    # Models
    "ConfigPolicy",
    "ConfigSource",
    "ConfigSourceKind",
    "FetchResult",
    "Repository",
    "Status",
    "SubrepoInstance",
    "SubrepoStatus",
    "SubrepoSyncSummary",
    "SyncStatistics",
    "TaskOutcome",
    "UserConfig",
    "ValidationReport",
    # Errors
    "ContextError",
    "FlotillaError",
    "GitCommandError",
    "GitTimeoutError",
    "InvalidUserConfigError",
    "SubrepoNotFoundError",
    "SubrepoSyncError",
    "clean_error_message",
    # Operations
    "GitOperations",
    "ProcessingContext",
    "analyze_subrepos",
    "commit_all",
    "config_all",
    "create_context",
    "find_repositories",
    "process_repositories",
    "pull_all",
    "push_all",
    "stage_all",
    "status_all",
    "sync_subrepo",
    "unstage_all",
    "update_subrepo",
    "validate_subrepos",
    # Formatters
    "OutputFormatter",
]
