"""
Cross-process exclusive advisory file locks.

The mountmap, the address cache and the log file are shared between the
per-mount helper and the long-lived watchdog. Each is guarded by a
blocking `flock` on the file itself, scoped to a `with` block so the
lock is released on every exit path.
"""

import fcntl
from contextlib import contextmanager
from pathlib import Path
from typing import IO, Iterator

from .exceptions import LockAcquisitionError


class ExclusiveFileLock:
    """
    Blocking exclusive `flock` on an existing file.

    The file is opened read-only so the lock can be taken even while the
    file carries the immutable attribute. Writers open their own handle.

    Usage:
        lock = ExclusiveFileLock(path)
        with lock.acquire():
            ...  # read-modify-write
    """

    def __init__(self, path: Path, create: bool = False) -> None:
        """
        Args:
            path: File to lock
            create: Create the file (empty) if it does not exist
        """
        self._path = path
        self._create = create
        self._held = False

    @property
    def path(self) -> Path:
        return self._path

    @property
    def held(self) -> bool:
        """True while this instance holds the lock."""
        return self._held

    @contextmanager
    def acquire(self) -> Iterator[IO[str]]:
        """
        Take the lock, waiting as long as needed.

        Yields:
            The read-only handle the lock is held on

        Raises:
            LockAcquisitionError: If the file cannot be opened or locked
        """
        if self._held:
            raise LockAcquisitionError(
                code="already_held",
                message=f"Lock on {self._path} is already held by this process",
                details={"path": str(self._path)},
            )

        try:
            if self._create and not self._path.exists():
                self._path.touch()
            handle = open(self._path, "r", encoding="utf-8")
        except OSError as e:
            raise LockAcquisitionError(
                code="open_failed",
                message=f"Failed to open {self._path} for locking: {e}",
                details={"path": str(self._path)},
            )

        try:
            try:
                fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
            except OSError as e:
                raise LockAcquisitionError(
                    code="flock_failed",
                    message=f"Failed to lock {self._path}: {e}",
                    details={"path": str(self._path)},
                )
            self._held = True
            try:
                yield handle
            finally:
                self._held = False
                fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
        finally:
            handle.close()


@contextmanager
def locked_append(path: Path) -> Iterator[IO[str]]:
    """Open `path` for appending while holding an exclusive lock on it."""
    with open(path, "a", encoding="utf-8") as handle:
        fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
        try:
            yield handle
            handle.flush()
        finally:
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
