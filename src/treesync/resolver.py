"""Policy-driven conflict resolution.

Every conflict yields a :class:`ConflictRecord` regardless of policy.
``prefer-local`` and ``prefer-remote`` additionally turn each conflict
into an ordinary operation; ``keep-both`` and ``manual`` leave the
conflict to the engine or to a human.
"""

from __future__ import annotations

from datetime import datetime, timezone

from .model import (
    ConflictPolicy,
    ConflictReason,
    ConflictRecord,
    LocalIndex,
    OpType,
    RemoteIndex,
    Resolution,
    SyncOp,
)

__all__ = ["resolve"]

_PREFER_LOCAL = {
    ConflictReason.DELETE_MODIFY_LOCAL: OpType.PUSH_DELETE,
    ConflictReason.LOCAL_MISSING_REMOTE: OpType.PUSH_DELETE,
    ConflictReason.DELETE_MODIFY_REMOTE: OpType.PUSH_NEW,
    ConflictReason.MODIFY_MODIFY: OpType.PUSH_UPDATE,
}

_PREFER_REMOTE = {
    ConflictReason.DELETE_MODIFY_LOCAL: OpType.PULL_UPDATE,
    ConflictReason.LOCAL_MISSING_REMOTE: OpType.PULL_UPDATE,
    ConflictReason.DELETE_MODIFY_REMOTE: OpType.PULL_DELETE,
    ConflictReason.MODIFY_MODIFY: OpType.PULL_UPDATE,
}

_POLICY_TABLES = {
    ConflictPolicy.PREFER_LOCAL: _PREFER_LOCAL,
    ConflictPolicy.PREFER_REMOTE: _PREFER_REMOTE,
}


def _build_record(
    op: SyncOp,
    policy: ConflictPolicy,
    timestamp: str,
    local: LocalIndex,
    remote: RemoteIndex,
) -> ConflictRecord:
    loc = local.get(op.path)
    rem = remote.get(op.path)
    return ConflictRecord(
        path=op.path,
        type=op.reason.record_type,
        reason=op.reason,
        policy=policy,
        timestamp=timestamp,
        local_version=(
            {"content_hash": loc.content_hash, "mod_time": loc.mod_time}
            if loc is not None else None
        ),
        remote_version=(
            {"object_id": rem.object_id, "last_change_time": rem.last_change_time}
            if rem is not None else None
        ),
    )


def resolve(
    conflicts: list[SyncOp],
    policy: ConflictPolicy,
    *,
    local: LocalIndex | None = None,
    remote: RemoteIndex | None = None,
    now: datetime | None = None,
) -> Resolution:
    """Turn conflicts into records and, where the policy allows, operations.

    Args:
        conflicts: Conflict operations from :func:`treesync.planner.plan`.
            Non-conflict operations are ignored.
        policy: Policy in force for this run.
        local: Optional local snapshot, used to stamp record versions.
        remote: Optional remote snapshot, used to stamp record versions.
        now: Detection time (defaults to the current UTC time).

    Mass-deletion conflicts are recorded but never resolved automatically.
    """
    timestamp = (now or datetime.now(timezone.utc)).isoformat()
    table = _POLICY_TABLES.get(policy)
    result = Resolution()
    for op in conflicts:
        if not op.is_conflict:
            continue
        result.conflict_records.append(
            _build_record(op, policy, timestamp, local or {}, remote or {})
        )
        if table is None or op.reason is ConflictReason.MASS_REMOTE_DELETION:
            continue
        result.resolved_ops.append(SyncOp(table[op.reason], path=op.path))
    return result
