"""Remote store backed by a bare git repository on disk.

Every write goes through git plumbing: blobs and trees are written to
the object database, commits are created from trees, and branches move
with ``git update-ref <new> <old>`` so a stale tip is detected rather
than overwritten.
"""

from __future__ import annotations

import logging
import os
from io import BytesIO
from pathlib import Path
from typing import Sequence

from git import Actor, Repo
from git.exc import GitCommandError, InvalidGitRepositoryError, NoSuchPathError
from git.objects import Commit
from gitdb.base import IStream
from gitdb.exc import BadName, BadObject
from gitdb.typ import str_blob_type
from gitdb.util import bin_to_hex

from .exceptions import RemoteConflictError, RemoteError, RemoteNotFoundError
from .interfaces import (
    ChangedFile,
    CommitInfo,
    Comparison,
    RemoteFile,
    RepoInfo,
    TreeChange,
)
from .model import RemoteEntry, RemoteIndex
from .tree import normalize_path, rebuild_tree, walk_blobs

__all__ = ["GitRepoRemote", "DEFAULT_AUTHOR"]

logger = logging.getLogger(__name__)

DEFAULT_AUTHOR = Actor("treesync", "treesync@localhost")

_STATUS = {
    "A": "added",
    "C": "added",
    "D": "removed",
    "M": "modified",
    "T": "modified",
    "R": "renamed",
}


def _branch_ref(branch: str) -> str:
    return branch if branch.startswith("refs/") else f"refs/heads/{branch}"


class GitRepoRemote:
    """A :class:`~treesync.interfaces.RemoteStore` over a local bare repository.

    Usage::

        remote = GitRepoRemote.open("/srv/notes.git")
        remote.list_tree("main")
    """

    def __init__(self, repo: Repo, *, author: Actor | None = None):
        self._repo = repo
        self._author = author or DEFAULT_AUTHOR

    @classmethod
    def open(
        cls,
        path: str | os.PathLike[str],
        *,
        create: bool = True,
        branch: str = "main",
        author: Actor | None = None,
    ) -> GitRepoRemote:
        """Open the bare repository at *path*, initialising it when missing."""
        path = os.fspath(path)
        try:
            repo = Repo(path)
        except (NoSuchPathError, InvalidGitRepositoryError):
            if not create:
                raise RemoteNotFoundError(f"No git repository at {path}") from None
            logger.info("Creating bare repository at %s", path)
            repo = Repo.init(path, mkdir=True, bare=True, initial_branch=branch)
        return cls(repo, author=author)

    def __repr__(self) -> str:
        return f"GitRepoRemote({self.path!r})"

    @property
    def path(self) -> str:
        return self._repo.git_dir

    @property
    def repo(self) -> Repo:
        return self._repo

    def close(self) -> None:
        """Stop the git helper processes GitPython keeps running."""
        self._repo.close()

    # -- resolution --------------------------------------------------------

    def _resolve(self, ref: str) -> Commit | None:
        try:
            commit = self._repo.commit(ref)
        except (BadName, BadObject, ValueError):
            return None
        # GitPython hands back the null id as a commit without looking it up.
        if commit.binsha == Commit.NULL_BIN_SHA:
            return None
        return commit

    def _require(self, ref: str) -> Commit:
        commit = self._resolve(ref)
        if commit is None:
            raise RemoteNotFoundError(f"Unknown ref or commit: {ref}")
        return commit

    def _entry(self, commit: Commit | None, path: str):
        if commit is None:
            return None
        try:
            obj = commit.tree / path
        except KeyError:
            return None
        return obj if obj.type == "blob" else None

    # -- tree reading ------------------------------------------------------

    def list_tree(self, ref: str) -> RemoteIndex:
        """Every blob reachable from *ref*; ``{}`` for a missing branch."""
        commit = self._resolve(ref)
        if commit is None:
            return {}
        return {
            blob.path: RemoteEntry(blob.path, blob.object_id, blob.size)
            for blob in walk_blobs(self._repo, commit.tree.hexsha)
        }

    def get_commit_info(self, branch: str) -> CommitInfo | None:
        commit = self._resolve(_branch_ref(branch))
        if commit is None:
            return None
        return CommitInfo(commit.hexsha, commit.committed_date)

    def get_commit_tree(self, commit_id: str) -> str:
        return self._require(commit_id).tree.hexsha

    def compare_commits(self, base: str, head: str) -> Comparison:
        base_commit = self._require(base)
        head_commit = self._require(head)
        try:
            diffs = base_commit.diff(head_commit)
        except GitCommandError as exc:
            raise RemoteNotFoundError(
                f"Cannot compare {base[:7]}..{head[:7]}: {exc.stderr.strip()}"
            ) from exc
        files = []
        for d in diffs:
            status = _STATUS.get(d.change_type, "modified")
            if status == "removed":
                files.append(ChangedFile(d.a_path, status))
                continue
            files.append(ChangedFile(
                d.b_path,
                status,
                previous_path=d.a_path if status == "renamed" else None,
                object_id=d.b_blob.hexsha if d.b_blob is not None else None,
            ))
        return Comparison(tuple(files), head_commit.committed_date)

    # -- single-file access ------------------------------------------------

    def get_file(self, path: str, ref: str) -> RemoteFile:
        path = normalize_path(path)
        blob = self._entry(self._resolve(ref), path)
        if blob is None:
            raise RemoteNotFoundError(f"{path} not found at {ref}")
        return RemoteFile(blob.data_stream.read(), blob.hexsha)

    def _commit_single(
        self,
        branch: str,
        path: str,
        message: str,
        expected_id: str | None,
        new_id: str | None,
    ) -> None:
        ref = _branch_ref(branch)
        head = self._resolve(ref)
        current = self._entry(head, path)
        current_id = current.hexsha if current is not None else None
        if current_id != expected_id:
            raise RemoteConflictError(
                f"{path}: expected {expected_id or 'no file'}, found {current_id or 'no file'}",
                status=409,
            )
        change = TreeChange(path, new_id)
        tree = self.create_tree(head.tree.hexsha if head else None, [change])
        commit = self.create_commit(message, tree, [head.hexsha] if head else [])
        self.update_ref(branch, commit, expected=head.hexsha if head else None)

    def put_file(
        self, path: str, content: bytes, message: str, *,
        expected_id: str | None = None, branch: str,
    ) -> None:
        """Create or replace one file in a single commit.

        *expected_id* is the blob the caller last saw at *path* (``None``
        when it believes the path is absent); a mismatch raises
        :class:`RemoteConflictError`.
        """
        path = normalize_path(path)
        self._commit_single(branch, path, message, expected_id, self.create_blob(content))

    def delete_file(
        self, path: str, message: str, *, expected_id: str, branch: str,
    ) -> None:
        path = normalize_path(path)
        if self._entry(self._resolve(_branch_ref(branch)), path) is None:
            raise RemoteNotFoundError(f"{path} not found on {branch}")
        self._commit_single(branch, path, message, expected_id, None)

    # -- object writing ----------------------------------------------------

    def create_blob(self, content: bytes) -> str:
        istream = self._repo.odb.store(
            IStream(str_blob_type, len(content), BytesIO(content))
        )
        return bin_to_hex(istream.binsha).decode("ascii")

    def create_tree(self, base_tree: str | None, changes: Sequence[TreeChange]) -> str:
        writes = {}
        removes = set()
        for change in changes:
            path = normalize_path(change.path)
            if change.object_id is None:
                removes.add(path)
                writes.pop(path, None)
            else:
                writes[path] = change.object_id
                removes.discard(path)
        return rebuild_tree(self._repo, base_tree, writes, removes)

    def create_commit(self, message: str, tree: str, parents: Sequence[str]) -> str:
        # An empty parent list must stay empty: GitPython defaults to HEAD otherwise.
        commit = Commit.create_from_tree(
            self._repo,
            tree,
            message,
            parent_commits=[self._require(p) for p in parents],
            head=False,
            author=self._author,
            committer=self._author,
        )
        return commit.hexsha

    def update_ref(self, branch: str, commit_id: str, *, expected: str | None = None) -> None:
        """Point *branch* at *commit_id*.

        With *expected*, the update only succeeds while the branch still
        points there.  Without it, the branch is created or fast-forwarded.
        """
        ref = _branch_ref(branch)
        if expected is None:
            current = self._resolve(ref)
            if current is not None and not self._repo.is_ancestor(current.hexsha, commit_id):
                raise RemoteConflictError(
                    f"{branch}: {commit_id[:7]} does not fast-forward {current.hexsha[:7]}",
                    status=409,
                )
            old = current.hexsha if current is not None else "0" * 40
        else:
            old = expected
        try:
            self._repo.git.update_ref("-m", "treesync", ref, commit_id, old)
        except GitCommandError as exc:
            raise RemoteConflictError(
                f"{branch}: ref moved concurrently ({exc.stderr.strip()})", status=409,
            ) from exc
        logger.debug("Updated %s to %s", ref, commit_id[:7])

    # -- inspection --------------------------------------------------------

    def get_repo_info(self) -> RepoInfo:
        git_dir = Path(self._repo.git_dir)
        if not git_dir.is_dir():
            raise RemoteError(f"Repository disappeared: {git_dir}")
        return RepoInfo(
            private=True,
            can_pull=os.access(git_dir, os.R_OK),
            can_push=os.access(git_dir / "objects", os.W_OK)
            and os.access(git_dir / "refs", os.W_OK),
        )
