"""
Per-environment locking.

An environment lock serializes transitions on one name across threads and
processes while leaving other names free to proceed. It combines:

1. A threading.RLock per name, so a thread already holding the lock can
   re-acquire it (the engine holds it for a whole transition and the store
   takes it again inside save())
2. An OS advisory lock on `<name>/environment.json.lock`, taken only on the
   outermost acquisition of a thread

A holder may remove the lock file (and its directory, when empty) before
releasing, e.g. after looking up a name that has no record. Acquirers
therefore check that the file they locked is still the one on disk and
start over otherwise.
"""

from __future__ import annotations

import contextlib
import logging
import os
import sys
import threading
from pathlib import Path
from typing import IO, Callable, Dict, Generator, Optional

from provisionctl.errors import StoreError

logger = logging.getLogger(__name__)

__all__ = ["file_lock", "NamedLocks"]


# Cross-platform file locking
if sys.platform == "win32":
    import msvcrt

    def _lock_file(f: IO, exclusive: bool = True) -> None:
        """Lock file on Windows."""
        msvcrt.locking(f.fileno(), msvcrt.LK_LOCK if exclusive else msvcrt.LK_RLCK, 1)

    def _unlock_file(f: IO) -> None:
        """Unlock file on Windows."""
        msvcrt.locking(f.fileno(), msvcrt.LK_UNLCK, 1)
else:
    import fcntl

    def _lock_file(f: IO, exclusive: bool = True) -> None:
        """Lock file on Unix."""
        fcntl.flock(f.fileno(), fcntl.LOCK_EX if exclusive else fcntl.LOCK_SH)

    def _unlock_file(f: IO) -> None:
        """Unlock file on Unix."""
        fcntl.flock(f.fileno(), fcntl.LOCK_UN)


def lock_path_for(path: Path) -> Path:
    return path.with_suffix(path.suffix + ".lock")


def _still_on_disk(f: IO, lock_path: Path) -> bool:
    if sys.platform == "win32":
        # Open files cannot be removed on Windows
        return True
    try:
        return os.fstat(f.fileno()).st_ino == os.stat(lock_path).st_ino
    except FileNotFoundError:
        return False


def _release(f: IO, lock_path: Path) -> None:
    try:
        _unlock_file(f)
    except OSError as e:
        logger.debug(f"Failed to unlock {lock_path}: {e}")
    finally:
        f.close()


@contextlib.contextmanager
def file_lock(path: Path, exclusive: bool = True) -> Generator[IO, None, None]:
    """
    Context manager for an OS advisory lock adjacent to `path`.

    The lock file is `<path>.lock`; its parent directory is created if needed.

    Example:
        with file_lock(record_path):
            write_record(record_path)
    """
    lock_path = lock_path_for(path)
    while True:
        lock_path.parent.mkdir(parents=True, exist_ok=True)
        lock_file = open(lock_path, "a+")
        try:
            _lock_file(lock_file, exclusive)
        except BaseException:
            lock_file.close()
            raise
        if _still_on_disk(lock_file, lock_path):
            break
        logger.debug(f"Lock file {lock_path} was removed while waiting, retrying")
        _release(lock_file, lock_path)

    try:
        yield lock_file
    finally:
        _release(lock_file, lock_path)


def discard_lock_file(path: Path) -> None:
    """Remove the lock file of `path` and its directory if that is now empty."""
    lock_path = lock_path_for(path)
    try:
        lock_path.unlink()
        lock_path.parent.rmdir()
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.debug(f"Left {lock_path.parent} in place: {e}")


class _NameLock:
    """Re-entrant lock for one name: an RLock plus the OS lock of the outermost holder."""

    def __init__(self):
        self.rlock = threading.RLock()
        self.depth = 0
        self.file_cm: Optional[contextlib.AbstractContextManager] = None


class NamedLocks:
    """
    Registry of re-entrant locks keyed by environment name.

    Args:
        path_for: Maps a name to the record path whose `.lock` sibling is the
            OS lock. When None, only in-process locking is used.
        discard_when: Called with the name before the outermost release; when
            it returns True the lock file and its empty directory are removed
    """

    def __init__(
        self,
        path_for: Optional[Callable[[str], Path]] = None,
        discard_when: Optional[Callable[[str], bool]] = None,
    ):
        self._path_for = path_for
        self._discard_when = discard_when
        self._guard = threading.Lock()
        self._locks: Dict[str, _NameLock] = {}

    def _get(self, name: str) -> _NameLock:
        with self._guard:
            lock = self._locks.get(name)
            if lock is None:
                lock = _NameLock()
                self._locks[name] = lock
            return lock

    def _acquire_file(self, name: str) -> contextlib.AbstractContextManager:
        path = self._path_for(name)
        file_cm = file_lock(path)
        try:
            file_cm.__enter__()
        except OSError as e:
            raise StoreError(
                f"cannot lock {lock_path_for(path)}: {e}", environment=name
            ) from e
        return file_cm

    def _release_file(self, name: str, file_cm: contextlib.AbstractContextManager) -> None:
        try:
            if self._discard_when is not None and self._discard_when(name):
                discard_lock_file(self._path_for(name))
        finally:
            file_cm.__exit__(None, None, None)

    @contextlib.contextmanager
    def hold(self, name: str) -> Generator[None, None, None]:
        lock = self._get(name)
        with lock.rlock:
            if lock.depth == 0 and self._path_for is not None:
                lock.file_cm = self._acquire_file(name)
            lock.depth += 1
            try:
                yield
            finally:
                lock.depth -= 1
                if lock.depth == 0 and lock.file_cm is not None:
                    file_cm, lock.file_cm = lock.file_cm, None
                    self._release_file(name, file_cm)
