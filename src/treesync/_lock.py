"""Advisory run lock: at most one sync per state directory, across threads and processes."""

from __future__ import annotations

import os
import threading
from contextlib import contextmanager

from .exceptions import SyncInProgressError

LOCK_NAME = "sync.lock"

# flock is per open file, so two engines in one process need their own guard.
# Keyed by device and inode so aliases of one state directory share it.
_running: dict[tuple[int, int] | str, threading.Lock] = {}
_running_guard = threading.Lock()


def _state_dir_key(state_dir: str) -> tuple[int, int] | str:
    real = os.path.realpath(state_dir)
    st = os.stat(real)
    if st.st_ino == 0:
        return os.path.normcase(real)
    return (st.st_dev, st.st_ino)


def _in_process_guard(state_dir: str) -> threading.Lock:
    key = _state_dir_key(state_dir)
    with _running_guard:
        return _running.setdefault(key, threading.Lock())


try:
    import fcntl

    def _try_lock(fd: int) -> bool:
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            return False
        return True

    def _unlock(fd: int) -> None:
        fcntl.flock(fd, fcntl.LOCK_UN)

except ImportError:
    import msvcrt

    def _try_lock(fd: int) -> bool:
        try:
            msvcrt.locking(fd, msvcrt.LK_NBLCK, 1)
        except OSError:
            return False
        return True

    def _unlock(fd: int) -> None:
        msvcrt.locking(fd, msvcrt.LK_UNLCK, 1)


@contextmanager
def sync_lock(state_dir: str | os.PathLike[str]):
    """Hold the run lock for *state_dir* or raise :class:`SyncInProgressError`.

    The directory is created when missing.  The lock never waits: a
    second run against the same state fails immediately.
    """
    state_dir = os.fspath(state_dir)
    os.makedirs(state_dir, exist_ok=True)
    guard = _in_process_guard(state_dir)
    if not guard.acquire(blocking=False):
        raise SyncInProgressError(f"A sync is already running for {state_dir}")
    try:
        lock_path = os.path.join(state_dir, LOCK_NAME)
        fd = os.open(lock_path, os.O_CREAT | os.O_RDWR | getattr(os, "O_CLOEXEC", 0))
        try:
            if not _try_lock(fd):
                raise SyncInProgressError(f"A sync is already running for {state_dir}")
            try:
                yield
            finally:
                _unlock(fd)
        finally:
            os.close(fd)
    finally:
        guard.release()
