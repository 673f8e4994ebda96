"""Remote snapshot: full tree listing or an incremental update from a baseline."""

from __future__ import annotations

import logging

from .interfaces import TreeReader, FileAccess
from .model import Baseline, RemoteEntry, RemoteIndex

__all__ = ["RemoteIndexer"]

logger = logging.getLogger(__name__)


class RemoteIndexer:
    """Builds a :data:`~treesync.model.RemoteIndex` for one branch.

    With a baseline anchor the snapshot is derived from the baseline's
    remote fields plus a comparison of the anchor against the branch tip,
    which stamps changed paths with the tip's commit time.  Any failure
    along that path falls back to a full listing.
    """

    def __init__(self, remote: TreeReader | FileAccess):
        self.remote = remote

    def fetch_index(
        self, branch: str, baseline: Baseline | None = None, *, force_full: bool = False,
    ) -> RemoteIndex:
        if not force_full and baseline is not None and baseline.commit_id:
            try:
                return self._incremental(branch, baseline)
            except Exception as exc:
                logger.warning(
                    "Incremental remote fetch failed, falling back to full listing: %s", exc,
                )
        return self._full(branch)

    def _full(self, branch: str) -> RemoteIndex:
        index = self.remote.list_tree(branch)
        logger.debug("Full remote listing of %s: %d files", branch, len(index))
        return index

    def _incremental(self, branch: str, baseline: Baseline) -> RemoteIndex:
        index: RemoteIndex = {
            path: RemoteEntry(path, entry.object_id, 0, entry.last_change_time or 0)
            for path, entry in baseline.entries.items()
            if entry.object_id is not None
        }
        head = self.remote.get_commit_info(branch)
        if head is None:
            raise LookupError(f"branch {branch!r} has no commits")
        if head.id == baseline.commit_id:
            return index

        comparison = self.remote.compare_commits(baseline.commit_id, head.id)
        for change in comparison.files:
            if change.status == "removed":
                index.pop(change.path, None)
                if change.previous_path:
                    index.pop(change.previous_path, None)
                continue
            if change.status == "renamed" and change.previous_path:
                index.pop(change.previous_path, None)
            object_id = change.object_id
            if object_id is None:
                object_id = self.remote.get_file(change.path, head.id).object_id
            index[change.path] = RemoteEntry(
                change.path, object_id, 0, comparison.head_time,
            )
        logger.debug(
            "Incremental remote fetch %s..%s: %d changed paths",
            baseline.commit_id[:7], head.id[:7], len(comparison.files),
        )
        return index
