"""Manual conflict actions.

A human picks one side (or both) for a recorded conflict; the runner
applies that choice to the stores, settles the baseline entry for the
path so the next sync sees it as agreed, and drops the record.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import replace
from enum import Enum

from .config import SyncConfig
from .exceptions import RemoteNotFoundError
from .interfaces import LocalStore, RemoteStore, StateStore
from .keepboth import TAG_MANUAL, KeepBothMaterializer, conflict_path
from .model import Baseline, BaselineEntry, ConflictReason, ConflictRecord

__all__ = ["ConflictAction", "ConflictActionRunner"]

logger = logging.getLogger(__name__)


class ConflictAction(str, Enum):
    KEEP_LOCAL = "keep_local"
    KEEP_REMOTE = "keep_remote"
    KEEP_BOTH = "keep_both"

    def __str__(self) -> str:
        return self.value


_LOCAL_ABSENT = (ConflictReason.DELETE_MODIFY_LOCAL, ConflictReason.LOCAL_MISSING_REMOTE)


class ConflictActionRunner:
    def __init__(self, local: LocalStore, remote: RemoteStore, state: StateStore):
        self.local = local
        self.remote = remote
        self.state = state
        self._copies = KeepBothMaterializer(local, remote)

    def resolve(
        self, record: ConflictRecord, action: ConflictAction, config: SyncConfig,
    ) -> str | None:
        """Apply *action* to *record*.

        Returns the sibling path written by ``keep_both``, if any.
        """
        action = ConflictAction(action)
        branch = config.branch
        sibling = None
        mass = record.reason is ConflictReason.MASS_REMOTE_DELETION

        if action is ConflictAction.KEEP_LOCAL or (mass and action is ConflictAction.KEEP_BOTH):
            if record.reason in _LOCAL_ABSENT:
                self._delete_remote(record.path, branch)
            else:
                self._push_local(record.path, branch)
        elif action is ConflictAction.KEEP_REMOTE:
            if record.reason in (ConflictReason.DELETE_MODIFY_REMOTE,
                                 ConflictReason.MASS_REMOTE_DELETION):
                if self.local.exists(record.path):
                    self.local.delete(record.path)
            else:
                self._copies.restore_remote(record.path, branch)
        elif record.reason is ConflictReason.LOCAL_MISSING_REMOTE:
            self._copies.restore_remote(record.path, branch)
        else:
            sibling = conflict_path(record.path, TAG_MANUAL, self.local.exists)
            if record.reason is ConflictReason.DELETE_MODIFY_REMOTE:
                self._copies.save_local_copy(record.path, sibling)
            else:
                self._copies.save_remote_copy(record.path, sibling, branch)

        logger.info("Conflict %s resolved manually: %s", record.path, action)
        self._settle(record.path, branch)
        self._drop_record(record.path)
        return sibling

    # -- store actions -----------------------------------------------------

    def _remote_id(self, path: str, branch: str) -> str | None:
        try:
            return self.remote.get_file(path, branch).object_id
        except RemoteNotFoundError:
            return None

    def _push_local(self, path: str, branch: str) -> None:
        if not self.local.exists(path):
            return
        self.remote.put_file(
            path,
            self.local.read(path),
            f"conflict: keep local {path}",
            expected_id=self._remote_id(path, branch),
            branch=branch,
        )

    def _delete_remote(self, path: str, branch: str) -> None:
        object_id = self._remote_id(path, branch)
        if object_id is None:
            return
        self.remote.delete_file(
            path, f"conflict: delete {path}", expected_id=object_id, branch=branch,
        )

    # -- bookkeeping -------------------------------------------------------

    def _settle(self, path: str, branch: str) -> None:
        """Record the post-action state of *path* as agreed in the baseline."""
        baseline = self.state.load_baseline() or Baseline()
        entries = dict(baseline.entries)
        content_hash = None
        if self.local.exists(path):
            content_hash = hashlib.sha256(self.local.read(path)).hexdigest()
        object_id = self._remote_id(path, branch)
        if content_hash is None and object_id is None:
            entries.pop(path, None)
        else:
            entries[path] = BaselineEntry(path, content_hash=content_hash, object_id=object_id)
        self.state.save_baseline(replace(baseline, entries=entries))

    def _drop_record(self, path: str) -> None:
        records = self.state.load_conflicts()
        remaining = [r for r in records if r.path != path]
        if len(remaining) != len(records):
            self.state.save_conflicts(remaining)
