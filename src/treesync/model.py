"""Data model shared by the planner, resolver and engine.

Snapshots are plain path-keyed records with no live handles: a local
entry is what the indexer saw on disk, a remote entry is what the remote
tree listing reported, and a baseline entry is the last state both sides
were known to agree on.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

__all__ = [
    "LocalEntry", "RemoteEntry", "BaselineEntry", "Baseline",
    "LocalIndex", "RemoteIndex",
    "OpType", "ConflictReason", "ConflictPolicy", "SyncOp",
    "ConflictRecord", "LogEntry", "SyncPlan", "Resolution", "SyncProgress",
]


# ---------------------------------------------------------------------------
# Snapshot entries
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class LocalEntry:
    """A file present in the local tree.

    Attributes:
        path: Relative path (forward slashes).
        content_hash: SHA-256 hex digest of the file bytes.
        mod_time: Modification time as POSIX epoch seconds.
        size: Size in bytes.
    """
    path: str
    content_hash: str
    mod_time: float
    size: int


@dataclass(frozen=True)
class RemoteEntry:
    """A blob reachable from the tracked branch tip.

    Attributes:
        path: Relative path (forward slashes).
        object_id: Content-addressed blob id (40-char hex).
        size: Blob size in bytes (0 when the listing did not report it).
        last_change_time: Commit time of the last change to *path*, or 0
            when unknown (full listings carry no per-path history).
    """
    path: str
    object_id: str
    size: int = 0
    last_change_time: int = 0


LocalIndex = dict[str, LocalEntry]
RemoteIndex = dict[str, RemoteEntry]


@dataclass(frozen=True)
class BaselineEntry:
    """Last known-synchronized state of one path.

    Carries whichever side's fields were known when the baseline was
    saved.  No local fields means the path was remote-only at that time,
    and vice versa.
    """
    path: str
    content_hash: str | None = None
    mod_time: float | None = None
    size: int | None = None
    object_id: str | None = None
    last_change_time: int | None = None

    @property
    def has_local(self) -> bool:
        return self.content_hash is not None

    @property
    def has_remote(self) -> bool:
        return self.object_id is not None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"path": self.path}
        for key in ("content_hash", "mod_time", "size", "object_id", "last_change_time"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BaselineEntry:
        return cls(
            path=data["path"],
            content_hash=data.get("content_hash"),
            mod_time=data.get("mod_time"),
            size=data.get("size"),
            object_id=data.get("object_id"),
            last_change_time=data.get("last_change_time"),
        )


@dataclass(frozen=True)
class Baseline:
    """Snapshot correlating local and remote state per path.

    Attributes:
        commit_id: Remote branch tip the snapshot was taken at; anchors
            the next incremental remote fetch.
        entries: ``{path: BaselineEntry}``.
    """
    commit_id: str | None = None
    entries: dict[str, BaselineEntry] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.entries)

    def get(self, path: str) -> BaselineEntry | None:
        return self.entries.get(path)

    def to_dict(self) -> dict[str, Any]:
        return {
            "commit_id": self.commit_id,
            "entries": {p: e.to_dict() for p, e in sorted(self.entries.items())},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Baseline:
        entries = {
            path: BaselineEntry.from_dict({"path": path, **raw})
            for path, raw in (data.get("entries") or {}).items()
        }
        return cls(commit_id=data.get("commit_id"), entries=entries)


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------

class OpType(str, Enum):
    """Kind of a planned sync operation."""
    PULL_NEW = "pull_new"
    PULL_UPDATE = "pull_update"
    PULL_DELETE = "pull_delete"
    PUSH_NEW = "push_new"
    PUSH_UPDATE = "push_update"
    PUSH_DELETE = "push_delete"
    RENAME_LOCAL = "rename_local"
    RENAME_REMOTE = "rename_remote"
    CONFLICT = "conflict"

    def __str__(self) -> str:
        return self.value


class ConflictReason(str, Enum):
    """Why a path could not be reconciled automatically."""
    MODIFY_MODIFY = "modify-modify"
    DELETE_MODIFY_LOCAL = "delete-modify-local"
    DELETE_MODIFY_REMOTE = "delete-modify-remote"
    LOCAL_MISSING_REMOTE = "local-missing-remote"
    MASS_REMOTE_DELETION = "mass-remote-deletion-safety"

    def __str__(self) -> str:
        return self.value

    @property
    def record_type(self) -> str:
        """``modify-modify`` or ``delete-modify`` for the conflict record."""
        if self is ConflictReason.MODIFY_MODIFY:
            return "modify-modify"
        return "delete-modify"


class ConflictPolicy(str, Enum):
    """How detected conflicts are disposed of."""
    PREFER_LOCAL = "prefer-local"
    PREFER_REMOTE = "prefer-remote"
    KEEP_BOTH = "keep-both"
    MANUAL = "manual"

    def __str__(self) -> str:
        return self.value


_RENAMES = (OpType.RENAME_LOCAL, OpType.RENAME_REMOTE)


@dataclass(frozen=True)
class SyncOp:
    """A single planned operation.

    Renames use *src*/*dst*; every other kind uses *path*.  Conflicts
    also carry a *reason*.
    """
    type: OpType
    path: str | None = None
    src: str | None = None
    dst: str | None = None
    reason: ConflictReason | None = None

    def __post_init__(self):
        if self.type in _RENAMES:
            if self.src is None or self.dst is None:
                raise ValueError(f"{self.type} requires src and dst")
        elif self.path is None:
            raise ValueError(f"{self.type} requires a path")
        if (self.type is OpType.CONFLICT) != (self.reason is not None):
            raise ValueError("reason is set for conflicts and only for conflicts")

    @classmethod
    def conflict(cls, path: str, reason: ConflictReason) -> SyncOp:
        return cls(OpType.CONFLICT, path=path, reason=reason)

    @classmethod
    def rename(cls, op_type: OpType, src: str, dst: str) -> SyncOp:
        return cls(op_type, src=src, dst=dst)

    @property
    def is_conflict(self) -> bool:
        return self.type is OpType.CONFLICT

    @property
    def paths(self) -> tuple[str, ...]:
        """Every path this operation touches."""
        if self.type in _RENAMES:
            return (self.src, self.dst)
        return (self.path,)

    @property
    def label(self) -> str:
        """Short human-readable description, used in logs."""
        if self.type in _RENAMES:
            return f"{self.type} {self.src} -> {self.dst}"
        if self.is_conflict:
            return f"conflict {self.path} ({self.reason})"
        return f"{self.type} {self.path}"


@dataclass
class SyncPlan:
    """Planner output: non-conflict operations plus conflicts."""
    ops: list[SyncOp] = field(default_factory=list)
    conflicts: list[SyncOp] = field(default_factory=list)

    @property
    def in_sync(self) -> bool:
        return not self.ops and not self.conflicts

    @property
    def total(self) -> int:
        return len(self.ops) + len(self.conflicts)


# ---------------------------------------------------------------------------
# Conflict records and log entries
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ConflictRecord:
    """Persisted audit entry for a detected conflict.

    Attributes:
        path: Conflicting path.
        type: ``modify-modify`` or ``delete-modify``.
        reason: The planner's :class:`ConflictReason`.
        policy: Policy in force when the conflict was recorded.
        timestamp: ISO-8601 UTC time of detection.
        local_version: ``{"content_hash", "mod_time"}`` when known.
        remote_version: ``{"object_id", "last_change_time"}`` when known.
    """
    path: str
    type: str
    reason: ConflictReason
    policy: ConflictPolicy
    timestamp: str
    local_version: dict[str, Any] | None = None
    remote_version: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "path": self.path,
            "type": self.type,
            "reason": self.reason.value,
            "policy": self.policy.value,
            "timestamp": self.timestamp,
        }
        if self.local_version is not None:
            data["local_version"] = dict(self.local_version)
        if self.remote_version is not None:
            data["remote_version"] = dict(self.remote_version)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ConflictRecord:
        return cls(
            path=data["path"],
            type=data["type"],
            reason=ConflictReason(data["reason"]),
            policy=ConflictPolicy(data["policy"]),
            timestamp=data["timestamp"],
            local_version=data.get("local_version"),
            remote_version=data.get("remote_version"),
        )


@dataclass
class Resolution:
    """Resolver output."""
    resolved_ops: list[SyncOp] = field(default_factory=list)
    conflict_records: list[ConflictRecord] = field(default_factory=list)


@dataclass(frozen=True)
class LogEntry:
    """One line of the persisted sync log."""
    timestamp: str
    level: str  # "info" | "warn" | "error"
    message: str

    def to_dict(self) -> dict[str, str]:
        return {"timestamp": self.timestamp, "level": self.level, "message": self.message}

    @classmethod
    def from_dict(cls, data: dict[str, str]) -> LogEntry:
        return cls(data["timestamp"], data["level"], data["message"])


@dataclass
class SyncProgress:
    """Progress notification passed to the optional ``progress`` callback."""
    stage: str  # "scanning" | "planning" | "executing" | "saving"
    message: str
    current: int | None = None
    total: int | None = None

    @property
    def percentage(self) -> int | None:
        if self.current is None or not self.total:
            return None
        return round(self.current * 100 / self.total)
