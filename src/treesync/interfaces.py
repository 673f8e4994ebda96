"""Collaborator contracts consumed by the engine.

The engine depends only on these protocols.  Concrete stores live in
:mod:`treesync.local`, :mod:`treesync.gitrepo`, :mod:`treesync.github`
and :mod:`treesync.state`; tests may substitute anything that matches.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import BinaryIO, Iterator, Protocol, Sequence

from .model import Baseline, ConflictRecord, LogEntry, RemoteIndex

__all__ = [
    "FileStat", "RemoteFile", "CommitInfo", "ChangedFile", "Comparison",
    "RepoInfo", "TreeChange",
    "LocalStore", "TreeReader", "FileAccess", "ObjectWriter", "RefUpdater",
    "RepoInspector", "RemoteStore", "StateStore",
]


# ---------------------------------------------------------------------------
# Value types exchanged with the stores
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FileStat:
    """Metadata of one local file, as enumerated by a :class:`LocalStore`."""
    path: str
    mod_time: float
    size: int


@dataclass(frozen=True)
class RemoteFile:
    """Bytes of a remote file plus the id of the blob they came from."""
    content: bytes
    object_id: str


@dataclass(frozen=True)
class CommitInfo:
    """A resolved commit: its id and committer time (epoch seconds)."""
    id: str
    time: int


@dataclass(frozen=True)
class ChangedFile:
    """One entry of a commit comparison.

    Attributes:
        path: Path in the head commit (or the removed path).
        status: ``added``, ``modified``, ``removed`` or ``renamed``.
        previous_path: Old path for renames.
        object_id: Blob id in the head commit, when the diff carries it.
    """
    path: str
    status: str
    previous_path: str | None = None
    object_id: str | None = None


@dataclass(frozen=True)
class Comparison:
    """Result of comparing two commits."""
    files: tuple[ChangedFile, ...]
    head_time: int


@dataclass(frozen=True)
class RepoInfo:
    """Repository-level accessibility check."""
    private: bool
    can_pull: bool
    can_push: bool


@dataclass(frozen=True)
class TreeChange:
    """A tree edit: write *object_id* at *path*, or delete when ``None``."""
    path: str
    object_id: str | None


# ---------------------------------------------------------------------------
# Local side
# ---------------------------------------------------------------------------

class LocalStore(Protocol):
    """Host file storage rooted at one directory."""

    def list_files(self, ignore: Sequence[str] = ()) -> Iterator[FileStat]: ...
    def exists(self, path: str) -> bool: ...
    def open(self, path: str) -> BinaryIO: ...
    def read(self, path: str) -> bytes: ...
    def write(self, path: str, data: bytes) -> None: ...
    def delete(self, path: str) -> None: ...
    def rename(self, src: str, dst: str) -> None: ...


# ---------------------------------------------------------------------------
# Remote side, split into capability sets
# ---------------------------------------------------------------------------

class TreeReader(Protocol):
    def list_tree(self, ref: str) -> RemoteIndex: ...
    def get_commit_info(self, branch: str) -> CommitInfo | None: ...
    def get_commit_tree(self, commit_id: str) -> str: ...
    def compare_commits(self, base: str, head: str) -> Comparison: ...


class FileAccess(Protocol):
    def get_file(self, path: str, ref: str) -> RemoteFile: ...

    def put_file(
        self, path: str, content: bytes, message: str, *,
        expected_id: str | None = None, branch: str,
    ) -> None: ...

    def delete_file(
        self, path: str, message: str, *, expected_id: str, branch: str,
    ) -> None: ...


class ObjectWriter(Protocol):
    def create_blob(self, content: bytes) -> str: ...
    def create_tree(self, base_tree: str | None, changes: Sequence[TreeChange]) -> str: ...
    def create_commit(self, message: str, tree: str, parents: Sequence[str]) -> str: ...


class RefUpdater(Protocol):
    def update_ref(self, branch: str, commit_id: str, *, expected: str | None = None) -> None: ...


class RepoInspector(Protocol):
    def get_repo_info(self) -> RepoInfo: ...


class RemoteStore(TreeReader, FileAccess, ObjectWriter, RefUpdater, RepoInspector, Protocol):
    """Everything the engine needs from a content-addressed remote."""


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------

class StateStore(Protocol):
    def load_baseline(self) -> Baseline | None: ...
    def save_baseline(self, baseline: Baseline) -> None: ...
    def load_conflicts(self) -> list[ConflictRecord]: ...
    def save_conflicts(self, records: Sequence[ConflictRecord]) -> None: ...
    def append_log(self, entry: LogEntry) -> None: ...
    def load_logs(self) -> list[LogEntry]: ...
