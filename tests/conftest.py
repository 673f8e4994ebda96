"""Shared fixtures for treesync tests."""

import pytest
from click.testing import CliRunner

from treesync import DiskStore, GitRepoRemote, JsonStateStore, SyncConfig, SyncEngine
from treesync.interfaces import TreeChange


@pytest.fixture
def local_dir(tmp_path):
    d = tmp_path / "local"
    d.mkdir()
    return d


@pytest.fixture
def disk(local_dir):
    return DiskStore(local_dir)


@pytest.fixture
def remote_path(tmp_path):
    return tmp_path / "remote.git"


@pytest.fixture
def remote(remote_path):
    """An empty bare repository with HEAD on 'main'."""
    return GitRepoRemote.open(remote_path)


@pytest.fixture
def state(tmp_path):
    return JsonStateStore(tmp_path / "state.json")


@pytest.fixture
def engine(disk, remote, state):
    return SyncEngine(disk, remote, state)


@pytest.fixture
def config():
    return SyncConfig()


@pytest.fixture
def push(remote):
    """Commit ``{path: bytes | None}`` to 'main' directly; ``None`` deletes."""
    def _push(files, message="seed", branch="main"):
        head = remote.get_commit_info(branch)
        base = remote.get_commit_tree(head.id) if head else None
        changes = [
            TreeChange(path, None if data is None else remote.create_blob(data))
            for path, data in files.items()
        ]
        tree = remote.create_tree(base, changes)
        commit = remote.create_commit(message, tree, [head.id] if head else [])
        remote.update_ref(branch, commit, expected=head.id if head else None)
        return commit
    return _push


@pytest.fixture
def write_local(local_dir):
    """Write ``{path: bytes}`` under the local directory."""
    def _write(files):
        for path, data in files.items():
            p = local_dir / path
            p.parent.mkdir(parents=True, exist_ok=True)
            p.write_bytes(data)
    return _write


def remote_files(remote, branch="main"):
    """``{path: bytes}`` for every file on *branch*."""
    return {
        path: remote.get_file(path, branch).content
        for path in remote.list_tree(branch)
    }


@pytest.fixture
def read_remote(remote):
    return lambda branch="main": remote_files(remote, branch)


@pytest.fixture
def commit_count(remote):
    def _count(branch="main"):
        if remote.get_commit_info(branch) is None:
            return 0
        return sum(1 for _ in remote.repo.iter_commits(branch))
    return _count


@pytest.fixture
def runner():
    return CliRunner()
