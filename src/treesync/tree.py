"""Low-level tree manipulation for the git repository remote.

Provides path normalisation, a layered tree rebuild and a recursive
blob walk on top of GitPython's object database.
"""

from __future__ import annotations

import os
from collections import defaultdict
from io import BytesIO
from typing import Iterator, NamedTuple

from git import Repo
from git.objects import Tree
from git.objects.fun import tree_to_stream
from gitdb.base import IStream
from gitdb.typ import str_tree_type
from gitdb.util import bin_to_hex, hex_to_bin

GIT_FILEMODE_TREE = 0o040000
GIT_FILEMODE_BLOB = 0o100644
GIT_FILEMODE_BLOB_EXECUTABLE = 0o100755
GIT_FILEMODE_LINK = 0o120000

# name -> (binsha, filemode)
_Entries = dict[str, tuple[bytes, int]]


class BlobEntry(NamedTuple):
    """A file entry yielded by :func:`walk_blobs`."""

    path: str
    object_id: str
    size: int


def normalize_path(path: str | os.PathLike[str]) -> str:
    """Normalize a path: strip leading/trailing slashes, reject bad segments."""
    path = os.fspath(path)
    if os.name == "nt":
        path = path.replace("\\", "/")
    path = path.strip("/")
    if not path:
        raise ValueError("Path must not be empty")
    segments = path.split("/")
    for seg in segments:
        if not seg:
            raise ValueError(f"Empty segment in path: {path!r}")
        if seg in (".", ".."):
            raise ValueError(f"Invalid path segment: {seg!r}")
    return "/".join(segments)


def entry_sort_key(name: str, mode: int) -> bytes:
    """Git orders tree entries bytewise, with subtrees compared as ``name/``."""
    key = name.encode("utf-8")
    if mode == GIT_FILEMODE_TREE:
        key += b"/"
    return key


def root_tree(repo: Repo, tree_id: str | bytes) -> Tree:
    """The tree object *tree_id* (hex or binary) as a root, with an empty path."""
    binsha = hex_to_bin(tree_id) if isinstance(tree_id, str) else tree_id
    return Tree(repo, binsha, mode=GIT_FILEMODE_TREE, path="")


def _read_entries(repo: Repo, tree_sha: bytes | None) -> _Entries:
    if tree_sha is None:
        return {}
    tree = root_tree(repo, tree_sha)
    return {obj.name: (obj.binsha, obj.mode) for obj in tree}


def _write_entries(repo: Repo, entries: _Entries) -> bytes:
    items = sorted(
        ((sha, mode, name) for name, (sha, mode) in entries.items()),
        key=lambda item: entry_sort_key(item[2], item[1]),
    )
    buf = BytesIO()
    tree_to_stream(items, buf.write)
    data = buf.getvalue()
    istream = repo.odb.store(IStream(str_tree_type, len(data), BytesIO(data)))
    return istream.binsha


def _rebuild(
    repo: Repo,
    base_sha: bytes | None,
    writes: dict[str, tuple[bytes, int]],
    removes: set[str],
) -> bytes | None:
    sub_writes: dict[str, dict[str, tuple[bytes, int]]] = defaultdict(dict)
    sub_removes: dict[str, set[str]] = defaultdict(set)
    entries = _read_entries(repo, base_sha)

    for path, value in writes.items():
        head, _, rest = path.partition("/")
        if rest:
            sub_writes[head][rest] = value
        else:
            entries[head] = value

    for path in removes:
        head, _, rest = path.partition("/")
        if rest:
            sub_removes[head].add(rest)
        else:
            # Missing entries are ignored; callers check existence.
            entries.pop(head, None)

    for subdir in set(sub_writes) | set(sub_removes):
        existing = entries.get(subdir)
        if existing is not None and existing[1] != GIT_FILEMODE_TREE:
            # A blob is in the way of a directory write; a remove below it is moot.
            existing = None
            if subdir not in sub_writes:
                continue
        new_sha = _rebuild(
            repo,
            existing[0] if existing else None,
            sub_writes.get(subdir, {}),
            sub_removes.get(subdir, set()),
        )
        # Prune empty directories
        if new_sha is None:
            entries.pop(subdir, None)
        else:
            entries[subdir] = (new_sha, GIT_FILEMODE_TREE)

    if not entries:
        return None
    return _write_entries(repo, entries)


def rebuild_tree(
    repo: Repo,
    base_tree: str | None,
    writes: dict[str, str | tuple[str, int]],
    removes: set[str],
) -> str:
    """Rebuild a tree with writes and removes applied.

    Only the ancestor chain from changed leaves to root is rebuilt;
    sibling subtrees are shared by hash reference.

    Args:
        repo: The GitPython repository.
        base_tree: Hex id of the existing tree (or None for empty).
        writes: Mapping of normalized path -> blob hex id, or
            ``(hex id, filemode)``.
        removes: Set of normalized paths to remove.

    Returns:
        Hex id of the new root tree.
    """
    bin_writes = {}
    for path, value in writes.items():
        sha, mode = value if isinstance(value, tuple) else (value, GIT_FILEMODE_BLOB)
        bin_writes[path] = (hex_to_bin(sha), mode)
    base_sha = hex_to_bin(base_tree) if base_tree else None
    new_sha = _rebuild(repo, base_sha, bin_writes, set(removes))
    if new_sha is None:
        new_sha = _write_entries(repo, {})
    return bin_to_hex(new_sha).decode("ascii")


def walk_blobs(repo: Repo, tree_id: str) -> Iterator[BlobEntry]:
    """Yield every blob reachable from *tree_id*, depth first."""
    for obj in root_tree(repo, tree_id).traverse():
        if obj.type == "blob":
            yield BlobEntry(obj.path, obj.hexsha, obj.size)
