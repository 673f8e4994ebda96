"""Keep-both conflict materialisation.

Instead of picking a winner, the losing copy of a conflicting file is
written next to the original under a tagged, timestamped name::

    notes/plan.md  ->  notes/plan (conflict-remote-20240131-0915).md
"""

from __future__ import annotations

import logging
import posixpath
from datetime import datetime
from typing import Callable

from .interfaces import FileAccess, LocalStore
from .model import ConflictReason, SyncOp

__all__ = [
    "conflict_path", "conflict_tag", "KeepBothMaterializer",
    "TAG_LOCAL", "TAG_REMOTE", "TAG_MANUAL",
]

logger = logging.getLogger(__name__)

TAG_LOCAL = "conflict-local"
TAG_REMOTE = "conflict-remote"
TAG_MANUAL = "conflict-manual"


def conflict_tag(reason: ConflictReason) -> str:
    if reason is ConflictReason.DELETE_MODIFY_LOCAL:
        return TAG_LOCAL
    return TAG_REMOTE


def conflict_path(
    path: str,
    tag: str,
    exists: Callable[[str], bool],
    now: datetime | None = None,
) -> str:
    """First free sibling of *path* carrying *tag* and a local-time stamp.

    The stamp is ``YYYYMMDD-HHMM``; on collision ``-1``, ``-2``, ... is
    appended inside the parentheses.  A leading dot does not start an
    extension (``.env`` has none).
    """
    stamp = (now or datetime.now()).strftime("%Y%m%d-%H%M")
    base, ext = posixpath.splitext(path)
    candidate = f"{base} ({tag}-{stamp}){ext}"
    counter = 1
    while exists(candidate):
        candidate = f"{base} ({tag}-{stamp}-{counter}){ext}"
        counter += 1
    return candidate


class KeepBothMaterializer:
    """Writes side-by-side copies for unresolved conflicts."""

    def __init__(self, local: LocalStore, remote: FileAccess):
        self.local = local
        self.remote = remote

    def save_remote_copy(self, path: str, dest: str, ref: str) -> None:
        self.local.write(dest, self.remote.get_file(path, ref).content)

    def save_local_copy(self, path: str, dest: str) -> None:
        self.local.write(dest, self.local.read(path))

    def restore_remote(self, path: str, ref: str) -> None:
        self.local.write(path, self.remote.get_file(path, ref).content)

    def materialize(
        self, conflict: SyncOp, branch: str, now: datetime | None = None,
    ) -> str | None:
        """Keep both sides of *conflict*; returns the path written, if any.

        ``local-missing-remote`` has no local copy to keep, so the remote
        file is restored in place.  Mass-deletion conflicts are left alone.
        """
        reason = conflict.reason
        path = conflict.path
        if reason is ConflictReason.MASS_REMOTE_DELETION:
            return None
        if reason is ConflictReason.LOCAL_MISSING_REMOTE:
            self.restore_remote(path, branch)
            logger.warning("Conflict keep-both: remote restored %s", path)
            return path

        dest = conflict_path(path, conflict_tag(reason), self.local.exists, now)
        if reason is ConflictReason.DELETE_MODIFY_REMOTE:
            self.save_local_copy(path, dest)
            logger.warning("Conflict keep-both: local copy saved as %s", dest)
        else:
            self.save_remote_copy(path, dest, branch)
            logger.warning("Conflict keep-both: remote copy saved as %s", dest)
        return dest
