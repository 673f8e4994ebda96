"""Sync orchestration: the only component that performs I/O.

One :meth:`SyncEngine.sync` call runs the whole pipeline::

    load baseline
    scan local  ||  fetch remote
    plan -> resolve -> persist conflict records
    execute: remote renames, pull deletes, pulls, one batched push, keep-both
    re-scan local, re-fetch remote -> save a fresh baseline

Per-operation failures are logged and counted without stopping the run;
a non-zero count raises :class:`SyncFailedError` at the end.
"""

from __future__ import annotations

import logging
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Collection, Iterable

from ._exclude import ExcludeFilter
from .config import SyncConfig
from .exceptions import PreflightError, RemoteError, SyncFailedError
from .interfaces import LocalStore, RemoteStore, StateStore, TreeChange
from .keepboth import KeepBothMaterializer
from .local import LocalIndexer
from .model import (
    Baseline,
    BaselineEntry,
    ConflictPolicy,
    ConflictReason,
    ConflictRecord,
    LocalIndex,
    OpType,
    RemoteIndex,
    SyncOp,
    SyncPlan,
    SyncProgress,
)
from .planner import plan
from .remote import RemoteIndexer
from .resolver import resolve
from .state import StateLogHandler

__all__ = ["SyncEngine", "SyncReport", "BatchChanges", "collapse_batch", "build_baseline"]

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[SyncProgress], None]

_PULLS = (OpType.PULL_NEW, OpType.PULL_UPDATE)
_PUSH_WRITES = (OpType.PUSH_NEW, OpType.PUSH_UPDATE)


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------

@dataclass
class BatchChanges:
    """Remote-side writes and deletes gathered into one commit."""
    writes: list[str] = field(default_factory=list)
    deletes: list[str] = field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.writes or self.deletes)


def collapse_batch(ops: Iterable[SyncOp]) -> BatchChanges:
    """Merge push and local-rename operations into one write/delete set.

    A local rename contributes a delete of its source and a write of its
    destination.  A path in both sets is written, never deleted.
    """
    writes: set[str] = set()
    deletes: set[str] = set()
    for op in ops:
        if op.type in _PUSH_WRITES:
            writes.add(op.path)
        elif op.type is OpType.PUSH_DELETE:
            deletes.add(op.path)
        elif op.type is OpType.RENAME_LOCAL:
            deletes.add(op.src)
            writes.add(op.dst)
    return BatchChanges(sorted(writes), sorted(deletes - writes))


def build_baseline(local: LocalIndex, remote: RemoteIndex, commit_id: str | None) -> Baseline:
    """Correlate two post-sync snapshots into a new baseline.

    Each entry carries the fields of whichever sides hold the path.
    """
    entries = {}
    for path in sorted(set(local) | set(remote)):
        loc = local.get(path)
        rem = remote.get(path)
        entries[path] = BaselineEntry(
            path,
            content_hash=loc.content_hash if loc else None,
            mod_time=loc.mod_time if loc else None,
            size=loc.size if loc else None,
            object_id=rem.object_id if rem else None,
            last_change_time=rem.last_change_time if rem else None,
        )
    return Baseline(commit_id=commit_id, entries=entries)


def _in_scope(
    config: SyncConfig, oversized: Collection[str] = (),
) -> Callable[[str, int], bool]:
    """Predicate for remote paths the local indexer would also consider.

    *oversized* local paths are out of scope whatever size the remote
    reports; an incremental snapshot does not know blob sizes.
    """
    excl = ExcludeFilter(config.ignore_patterns)
    root = config.root_path
    limit = config.max_file_size_bytes

    def check(path: str, size: int) -> bool:
        if root and path != root and not path.startswith(root + "/"):
            return False
        if excl.active and excl.is_excluded(path):
            return False
        if path in oversized:
            return False
        return size <= limit

    return check


def _breakdown(ops: Iterable[SyncOp]) -> str:
    counts = Counter(str(op.type) for op in ops)
    return ", ".join(f"{name}={n}" for name, n in sorted(counts.items()))


@dataclass
class SyncReport:
    """Summary of a completed run."""
    plan: SyncPlan
    executed: list[SyncOp]
    conflict_records: list[ConflictRecord]
    commit_id: str | None = None
    keep_both_paths: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

class SyncEngine:
    """Drives one local store against one remote store.

    Not reentrant: serialise runs against the same state (the CLI holds
    :func:`treesync._lock.sync_lock` for this).
    """

    def __init__(self, local: LocalStore, remote: RemoteStore, state: StateStore):
        self.local = local
        self.remote = remote
        self.state = state
        self.local_indexer = LocalIndexer(local)
        self.remote_indexer = RemoteIndexer(remote)
        self.keep_both = KeepBothMaterializer(local, remote)

    # -- snapshots ---------------------------------------------------------

    def _snapshot(
        self, config: SyncConfig, baseline: Baseline | None,
    ) -> tuple[LocalIndex, RemoteIndex]:
        with ThreadPoolExecutor(max_workers=2, thread_name_prefix="treesync-scan") as pool:
            local_future = pool.submit(self.local_indexer.scan, config, baseline)
            remote_future = pool.submit(
                self.remote_indexer.fetch_index, config.branch, baseline,
            )
            local = local_future.result()
            remote = remote_future.result()
        return local, self._scope_remote(remote, config)

    def _scope_remote(self, remote: RemoteIndex, config: SyncConfig) -> RemoteIndex:
        check = _in_scope(config, self.local_indexer.oversized)
        return {p: e for p, e in remote.items() if check(p, e.size)}

    def preview(self, config: SyncConfig) -> SyncPlan:
        """Plan against the current state without changing anything."""
        baseline = self.state.load_baseline()
        local, remote = self._snapshot(config, baseline)
        return plan(local, remote, baseline)

    # -- pipeline ----------------------------------------------------------

    def _preflight(self) -> None:
        try:
            info = self.remote.get_repo_info()
        except RemoteError as exc:
            raise PreflightError(f"Repository check failed: {exc}") from exc
        if not info.can_pull:
            raise PreflightError("Remote repository is not readable with these credentials.")
        if not info.can_push:
            raise PreflightError("Remote repository does not grant push permission.")

    def sync(self, config: SyncConfig, progress: ProgressCallback | None = None) -> SyncReport:
        """Run one full sync.

        Raises:
            PreflightError: The repository check failed; nothing was changed.
            SyncFailedError: One or more operations failed; see the log.
        """
        pkg_logger = logging.getLogger("treesync")
        handler = StateLogHandler(self.state)
        old_level = pkg_logger.level
        if pkg_logger.getEffectiveLevel() > logging.INFO:
            pkg_logger.setLevel(logging.INFO)
        pkg_logger.addHandler(handler)
        try:
            logger.info("Sync started.")
            try:
                report = self._run(config, progress or (lambda p: None))
            except Exception as exc:
                logger.error("Sync failed: %s", exc)
                raise
            logger.info("Sync completed.")
            return report
        finally:
            pkg_logger.removeHandler(handler)
            pkg_logger.setLevel(old_level)

    def _run(self, config: SyncConfig, progress: ProgressCallback) -> SyncReport:
        self._preflight()
        baseline = self.state.load_baseline()

        progress(SyncProgress("scanning", "Scanning local and remote trees"))
        local, remote = self._snapshot(config, baseline)
        logger.info(
            "Scanned %d local files, %d remote files, %d baseline entries.",
            len(local), len(remote), len(baseline) if baseline else 0,
        )

        progress(SyncProgress("planning", "Planning changes"))
        sync_plan = plan(local, remote, baseline)
        resolution = resolve(
            sync_plan.conflicts, config.conflict_policy, local=local, remote=remote,
        )
        ops = sync_plan.ops + resolution.resolved_ops
        logger.info(
            "Planned %d operations and %d conflicts.", len(ops), len(sync_plan.conflicts),
        )
        if ops:
            logger.info("Operations: %s", _breakdown(ops))
        self.state.save_conflicts(resolution.conflict_records)

        failures: list[tuple[str, str]] = []
        keep_both_paths = self._execute(ops, sync_plan.conflicts, config, failures, progress)

        progress(SyncProgress("saving", "Saving baseline"))
        local_after = self.local_indexer.scan(config, baseline)
        head = self.remote.get_commit_info(config.branch)
        remote_after: RemoteIndex = {}
        if head is not None:
            remote_after = self._scope_remote(
                self.remote_indexer.fetch_index(head.id, force_full=True), config,
            )
        self.state.save_baseline(
            build_baseline(local_after, remote_after, head.id if head else None)
        )

        if failures:
            raise SyncFailedError(len(failures))
        return SyncReport(
            plan=sync_plan,
            executed=ops,
            conflict_records=resolution.conflict_records,
            commit_id=head.id if head else None,
            keep_both_paths=keep_both_paths,
        )

    # -- execution ---------------------------------------------------------

    def _run_op(self, label: str, failures: list[tuple[str, str]], fn, *args):
        """Run one operation; failures are logged and collected, never raised."""
        try:
            result = fn(*args)
        except Exception as exc:
            failures.append((label, str(exc)))
            logger.error("Op failed: %s: %s", label, exc)
            return None
        logger.info("Op ok: %s", label)
        return result

    def _pull(self, path: str, branch: str) -> None:
        self.local.write(path, self.remote.get_file(path, branch).content)

    def _execute(
        self,
        ops: list[SyncOp],
        conflicts: list[SyncOp],
        config: SyncConfig,
        failures: list[tuple[str, str]],
        progress: ProgressCallback,
    ) -> list[str]:
        branch = config.branch
        if config.conflict_policy is ConflictPolicy.KEEP_BOTH:
            copies = [c for c in conflicts if c.reason is not ConflictReason.MASS_REMOTE_DELETION]
        else:
            copies = []
        total = len(ops) + len(copies)
        done = 0

        def step(op_label: str) -> None:
            nonlocal done
            done += 1
            progress(SyncProgress("executing", op_label, done, total))

        for op in ops:
            if op.type is OpType.RENAME_REMOTE:
                self._run_op(op.label, failures, self.local.rename, op.src, op.dst)
                step(op.label)
        for op in ops:
            if op.type is OpType.PULL_DELETE:
                self._run_op(op.label, failures, self.local.delete, op.path)
                step(op.label)
        for op in ops:
            if op.type in _PULLS:
                self._run_op(op.label, failures, self._pull, op.path, branch)
                step(op.label)

        pushes = [
            op for op in ops
            if op.type in _PUSH_WRITES or op.type in (OpType.PUSH_DELETE, OpType.RENAME_LOCAL)
        ]
        batch = collapse_batch(pushes)
        if batch:
            self._push_batch(batch, config, failures)
        for op in pushes:
            step(op.label)

        written = []
        for conflict in copies:
            label = f"keep-both {conflict.path} ({conflict.reason})"
            path = self._run_op(label, failures, self.keep_both.materialize, conflict, branch)
            if path is not None:
                written.append(path)
            step(label)
        return written

    def _push_batch(
        self, batch: BatchChanges, config: SyncConfig, failures: list[tuple[str, str]],
    ) -> None:
        """Apply every remote change as one tree, one commit, one ref update."""
        changes = []
        for path in batch.writes:
            object_id = self._run_op(
                f"upload {path}", failures,
                lambda p: self.remote.create_blob(self.local.read(p)), path,
            )
            if object_id is not None:
                changes.append(TreeChange(path, object_id))
        changes.extend(TreeChange(path, None) for path in batch.deletes)
        if not changes:
            return

        writes = sum(1 for c in changes if c.object_id is not None)
        deletes = len(changes) - writes
        label = f"batch commit ({writes} updates, {deletes} deletes)"
        message = f"{config.commit_message_prefix}: batch {writes} updates, {deletes} deletes"
        self._run_op(label, failures, self._commit_changes, changes, message, config.branch)

    def _commit_changes(self, changes: list[TreeChange], message: str, branch: str) -> str | None:
        head = self.remote.get_commit_info(branch)
        base_tree = self.remote.get_commit_tree(head.id) if head else None
        tree = self.remote.create_tree(base_tree, changes)
        if tree == base_tree:
            logger.debug("Batch left the tree unchanged; no commit created")
            return None
        commit = self.remote.create_commit(message, tree, [head.id] if head else [])
        self.remote.update_ref(branch, commit, expected=head.id if head else None)
        return commit
