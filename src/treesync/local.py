"""Local side: a directory-backed store and the snapshot indexer."""

from __future__ import annotations

import hashlib
import logging
import os
import tempfile
from pathlib import Path
from typing import BinaryIO, Iterator, Sequence

from ._exclude import ExcludeFilter
from .config import SyncConfig
from .interfaces import FileStat, LocalStore
from .model import Baseline, LocalEntry, LocalIndex
from .tree import normalize_path

__all__ = ["DiskStore", "LocalIndexer", "hash_stream", "HASH_CHUNK_SIZE"]

logger = logging.getLogger(__name__)

HASH_CHUNK_SIZE = 64 * 1024


def hash_stream(f: BinaryIO, chunk_size: int = HASH_CHUNK_SIZE) -> str:
    """SHA-256 hex digest of everything readable from *f*."""
    h = hashlib.sha256()
    for chunk in iter(lambda: f.read(chunk_size), b""):
        h.update(chunk)
    return h.hexdigest()


# ---------------------------------------------------------------------------
# Directory store
# ---------------------------------------------------------------------------

class DiskStore:
    """A :class:`~treesync.interfaces.LocalStore` rooted at a directory.

    Paths are relative, forward-slash separated, and never escape the root.
    """

    def __init__(self, root: str | os.PathLike[str]):
        self.root = Path(root)

    def __repr__(self) -> str:
        return f"DiskStore({str(self.root)!r})"

    def _full(self, path: str) -> Path:
        return self.root.joinpath(*normalize_path(path).split("/"))

    def list_files(self, ignore: Sequence[str] = ()) -> Iterator[FileStat]:
        """Yield every regular file under the root, ignored paths excluded.

        Excluded directories are not descended into.  Symlinks are skipped.
        """
        excl = ExcludeFilter(ignore)
        base = self.root
        if not base.is_dir():
            return
        for dirpath, dirnames, filenames in os.walk(base):
            dp = Path(dirpath)
            rel_dir = dp.relative_to(base).as_posix()
            prefix = "" if rel_dir == "." else rel_dir + "/"
            kept = []
            for dname in sorted(dirnames):
                if (dp / dname).is_symlink():
                    continue
                if excl.active and excl.is_excluded(prefix + dname, is_dir=True):
                    continue
                kept.append(dname)
            dirnames[:] = kept
            for fname in sorted(filenames):
                rel = prefix + fname
                if excl.active and excl.is_excluded(rel):
                    continue
                full = dp / fname
                if full.is_symlink():
                    continue
                try:
                    st = full.stat()
                except FileNotFoundError:
                    continue  # vanished mid-walk
                yield FileStat(rel, st.st_mtime, st.st_size)

    def exists(self, path: str) -> bool:
        return self._full(path).is_file()

    def open(self, path: str) -> BinaryIO:
        return open(self._full(path), "rb")

    def read(self, path: str) -> bytes:
        return self._full(path).read_bytes()

    def write(self, path: str, data: bytes) -> None:
        """Write *data* atomically, creating parent directories as needed."""
        full = self._full(path)
        full.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=full.parent, prefix=".treesync-")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp, full)
        except BaseException:
            try:
                os.unlink(tmp)
            except OSError:
                pass
            raise

    def delete(self, path: str) -> None:
        """Remove a file, then any parent directories left empty."""
        full = self._full(path)
        full.unlink()
        self._prune_parents(full.parent)

    def rename(self, src: str, dst: str) -> None:
        src_full = self._full(src)
        dst_full = self._full(dst)
        dst_full.parent.mkdir(parents=True, exist_ok=True)
        os.replace(src_full, dst_full)
        self._prune_parents(src_full.parent)

    def _prune_parents(self, directory: Path) -> None:
        while directory != self.root and self.root in directory.parents:
            try:
                directory.rmdir()  # only succeeds if truly empty
            except OSError:
                return
            directory = directory.parent


# ---------------------------------------------------------------------------
# Snapshot indexer
# ---------------------------------------------------------------------------

def _under_root(path: str, root: str) -> bool:
    return not root or path == root or path.startswith(root + "/")


class LocalIndexer:
    """Builds a :data:`~treesync.model.LocalIndex` from a local store.

    Hashes are reused from the baseline when the recorded modification
    time and size both match, so unchanged files are not read again.
    """

    def __init__(self, store: LocalStore):
        self.store = store
        #: Paths the last :meth:`scan` skipped for exceeding the size limit.
        self.oversized: frozenset[str] = frozenset()

    def scan(self, config: SyncConfig, baseline: Baseline | None = None) -> LocalIndex:
        limit = config.max_file_size_bytes
        index: LocalIndex = {}
        oversized = set()
        hashed = reused = 0
        for st in self.store.list_files(config.ignore_patterns):
            if not _under_root(st.path, config.root_path):
                continue
            if st.size > limit:
                logger.warning(
                    "Skipping %s: %d bytes exceeds the %s MB limit",
                    st.path, st.size, config.max_file_size_mb,
                )
                oversized.add(st.path)
                continue
            base = baseline.get(st.path) if baseline is not None else None
            if (
                base is not None
                and base.content_hash is not None
                and base.mod_time == st.mod_time
                and base.size == st.size
            ):
                digest = base.content_hash
                reused += 1
            else:
                try:
                    with self.store.open(st.path) as f:
                        digest = hash_stream(f)
                except FileNotFoundError:
                    logger.debug("File disappeared during scan: %s", st.path)
                    continue
                hashed += 1
            index[st.path] = LocalEntry(st.path, digest, st.mod_time, st.size)
        self.oversized = frozenset(oversized)
        logger.debug("Local scan: %d hashed, %d reused from baseline", hashed, reused)
        return index
