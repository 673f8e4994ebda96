from .config import SyncConfig, load_config
from .model import (
    Baseline, BaselineEntry, LocalEntry, RemoteEntry,
    SyncOp, OpType, ConflictReason, ConflictPolicy, ConflictRecord,
    SyncPlan, Resolution, LogEntry, SyncProgress,
)
from .planner import plan
from .resolver import resolve
from .engine import SyncEngine, SyncReport
from .actions import ConflictAction, ConflictActionRunner
from .local import DiskStore, LocalIndexer
from .remote import RemoteIndexer
from .gitrepo import GitRepoRemote
from .github import GitHubRemote
from .state import JsonStateStore, StateLogHandler
from .exceptions import (
    TreeSyncError, ConfigError, StateError, RemoteError, PreflightError,
    SyncFailedError, SyncInProgressError,
)

__all__ = [
    "SyncConfig", "load_config",
    "Baseline", "BaselineEntry", "LocalEntry", "RemoteEntry",
    "SyncOp", "OpType", "ConflictReason", "ConflictPolicy", "ConflictRecord",
    "SyncPlan", "Resolution", "LogEntry", "SyncProgress",
    "plan", "resolve",
    "SyncEngine", "SyncReport", "ConflictAction", "ConflictActionRunner",
    "DiskStore", "LocalIndexer", "RemoteIndexer", "GitRepoRemote", "GitHubRemote",
    "JsonStateStore", "StateLogHandler",
    "TreeSyncError", "ConfigError", "StateError", "RemoteError", "PreflightError",
    "SyncFailedError", "SyncInProgressError",
]
