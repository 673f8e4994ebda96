"""Three-way change planning.

``plan`` compares the current local and remote snapshots against the
baseline and decides, per path, whether to pull, push, delete, rename or
flag a conflict.  It is pure and total: it never raises for missing
entries and never touches either store.
"""

from __future__ import annotations

import logging

from .model import (
    Baseline,
    BaselineEntry,
    ConflictReason,
    LocalEntry,
    LocalIndex,
    OpType,
    RemoteEntry,
    RemoteIndex,
    SyncOp,
    SyncPlan,
)

__all__ = ["plan", "MASS_DELETION_THRESHOLD"]

logger = logging.getLogger(__name__)

MASS_DELETION_THRESHOLD = 10


# ---------------------------------------------------------------------------
# Change detection
# ---------------------------------------------------------------------------

def _local_changed(entry: LocalEntry, base: BaselineEntry) -> bool:
    """True if any recorded local signal differs from *entry*.

    A local side the baseline never recorded counts as changed.
    """
    if base.content_hash is None or base.content_hash != entry.content_hash:
        return True
    if base.mod_time and base.mod_time != entry.mod_time:
        return True
    return False


def _remote_changed(entry: RemoteEntry, base: BaselineEntry) -> bool:
    """True if any recorded remote signal differs from *entry*.

    A change time of 0 means "unknown" on either side and is not compared.
    """
    if base.object_id is None or base.object_id != entry.object_id:
        return True
    if base.last_change_time and base.last_change_time != entry.last_change_time:
        return True
    return False


# ---------------------------------------------------------------------------
# Rename inference
# ---------------------------------------------------------------------------

def _match_renames(
    deleted: list[tuple[str, str]], added: list[tuple[str, str]],
) -> list[tuple[str, str]]:
    """Pair each deleted ``(path, key)`` with the first unused added one.

    First match in enumeration order wins; there is no global matching.
    """
    used: set[str] = set()
    pairs: list[tuple[str, str]] = []
    for old_path, key in deleted:
        for new_path, new_key in added:
            if new_path in used or new_key != key:
                continue
            used.add(new_path)
            pairs.append((old_path, new_path))
            break
    return pairs


def _local_renames(
    local: LocalIndex, remote: RemoteIndex, baseline: Baseline,
) -> list[tuple[str, str]]:
    """Paths renamed on the local side since the baseline.

    The old path is gone locally but the remote still holds the baseline
    blob there; the new path is a local file the baseline never saw.
    Pairs match on content hash.
    """
    deleted = []
    for path, base in sorted(baseline.entries.items()):
        if path in local or base.content_hash is None:
            continue
        rem = remote.get(path)
        if rem is not None and rem.object_id == base.object_id:
            deleted.append((path, base.content_hash))
    added = [
        (path, entry.content_hash)
        for path, entry in sorted(local.items())
        if path not in baseline.entries
    ]
    return _match_renames(deleted, added)


def _remote_renames(
    local: LocalIndex, remote: RemoteIndex, baseline: Baseline,
) -> list[tuple[str, str]]:
    """Paths renamed on the remote side since the baseline.

    Mirror image of :func:`_local_renames`: the old path is gone from the
    remote while the local copy still matches the baseline, and the new
    path is a remote blob neither the baseline nor local knows.  Pairs
    match on object id.
    """
    deleted = []
    for path, base in sorted(baseline.entries.items()):
        if path in remote or base.object_id is None:
            continue
        loc = local.get(path)
        if loc is not None and loc.content_hash == base.content_hash:
            deleted.append((path, base.object_id))
    added = [
        (path, entry.object_id)
        for path, entry in sorted(remote.items())
        if path not in baseline.entries and path not in local
    ]
    return _match_renames(deleted, added)


# ---------------------------------------------------------------------------
# Per-path diff
# ---------------------------------------------------------------------------

def _diff_path(
    path: str,
    loc: LocalEntry | None,
    rem: RemoteEntry | None,
    base: BaselineEntry | None,
) -> SyncOp | None:
    """Classify one path.  Returns ``None`` when nothing needs doing."""
    # A side the baseline never recorded has no common ancestor there.
    if base is not None and loc is not None and rem is None and not base.has_remote:
        base = None
    elif base is not None and loc is None and rem is not None and not base.has_local:
        base = None

    if base is None:
        if loc is not None and rem is None:
            return SyncOp(OpType.PUSH_NEW, path=path)
        if loc is None and rem is not None:
            return SyncOp(OpType.PULL_NEW, path=path)
        if loc is not None and rem is not None:
            return SyncOp.conflict(path, ConflictReason.MODIFY_MODIFY)
        return None

    if loc is not None and rem is not None:
        local_changed = _local_changed(loc, base)
        remote_changed = _remote_changed(rem, base)
        if local_changed and remote_changed:
            return SyncOp.conflict(path, ConflictReason.MODIFY_MODIFY)
        if local_changed:
            return SyncOp(OpType.PUSH_UPDATE, path=path)
        if remote_changed:
            return SyncOp(OpType.PULL_UPDATE, path=path)
        return None

    if loc is not None:
        # Remote deleted the path; keep independent local edits.
        if _local_changed(loc, base):
            return SyncOp.conflict(path, ConflictReason.DELETE_MODIFY_REMOTE)
        return SyncOp(OpType.PULL_DELETE, path=path)

    if rem is not None:
        if _remote_changed(rem, base):
            return SyncOp.conflict(path, ConflictReason.DELETE_MODIFY_LOCAL)
        # Deleted locally, or never pulled: ambiguous, never auto-planned.
        return SyncOp.conflict(path, ConflictReason.LOCAL_MISSING_REMOTE)

    return None


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def plan(
    local: LocalIndex, remote: RemoteIndex, baseline: Baseline | None,
) -> SyncPlan:
    """Compute the operations and conflicts that reconcile both sides.

    Args:
        local: ``{path: LocalEntry}`` for every local file.
        remote: ``{path: RemoteEntry}`` for every remote blob.
        baseline: Last synchronized state, or ``None`` before the first sync.

    Returns:
        A :class:`SyncPlan`; conflicts are kept apart from the other ops.
    """
    baseline = baseline or Baseline()
    result = SyncPlan()

    if (
        len(baseline.entries) > MASS_DELETION_THRESHOLD
        and not remote
        and len(local) > MASS_DELETION_THRESHOLD
    ):
        logger.warning(
            "Remote appears empty but local has %d files and the baseline had %d; "
            "treating every local file as a conflict instead of deleting it",
            len(local), len(baseline.entries),
        )
        result.conflicts = [
            SyncOp.conflict(path, ConflictReason.MASS_REMOTE_DELETION)
            for path in sorted(local)
        ]
        return result

    handled: set[str] = set()
    for src, dst in _local_renames(local, remote, baseline):
        result.ops.append(SyncOp.rename(OpType.RENAME_LOCAL, src, dst))
        handled.update((src, dst))
    for src, dst in _remote_renames(local, remote, baseline):
        result.ops.append(SyncOp.rename(OpType.RENAME_REMOTE, src, dst))
        handled.update((src, dst))

    all_paths = set(local) | set(remote) | set(baseline.entries)
    for path in sorted(all_paths - handled):
        op = _diff_path(path, local.get(path), remote.get(path), baseline.get(path))
        if op is None:
            continue
        if op.is_conflict:
            result.conflicts.append(op)
        else:
            result.ops.append(op)
    return result
