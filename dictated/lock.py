"""Advisory, crash-safe lock guarding the single recording slot.

The lock is an ``flock`` on a well-known file. The kernel drops it when the
holding descriptor is closed, including when the holder dies, so a crashed
``start`` can never leave the slot permanently taken. The holder writes its
pid into the file for diagnostics.
"""

from __future__ import annotations

import fcntl
import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)

# Retries when the lock file is replaced between open() and flock().
MAX_ACQUIRE_ATTEMPTS = 5


class LockHandle:
    """An acquired lock. Release explicitly or leave the ``with`` block."""

    def __init__(self, lock: "SessionLock", fd: int) -> None:
        self._lock = lock
        self._fd: int | None = fd

    @property
    def held(self) -> bool:
        return self._fd is not None

    @property
    def fileno(self) -> int | None:
        return self._fd

    def release(self) -> None:
        self._lock.release(self)

    def _take_fd(self) -> int | None:
        fd, self._fd = self._fd, None
        return fd

    def __enter__(self) -> "LockHandle":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.release()


class SessionLock:
    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def acquire(self) -> LockHandle | None:
        """Take the lock without blocking. Returns None if another process holds it."""
        self._path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)

        for _ in range(MAX_ACQUIRE_ATTEMPTS):
            fd = os.open(self._path, os.O_RDWR | os.O_CREAT, 0o600)
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            except BlockingIOError:
                os.close(fd)
                logger.warning("Another recording is already in progress (lock held)")
                return None
            except OSError:
                os.close(fd)
                raise

            if self._same_file(fd):
                os.ftruncate(fd, 0)
                os.write(fd, str(os.getpid()).encode())
                logger.debug("Acquired recording lock at %s", self._path)
                return LockHandle(self, fd)

            # The file we locked was unlinked by a releasing holder.
            os.close(fd)

        logger.warning("Lock file kept changing under us: %s", self._path)
        return None

    def release(self, handle: LockHandle) -> None:
        """Release ``handle``. Safe to call more than once."""
        fd = handle._take_fd()
        if fd is None:
            return
        try:
            if self._same_file(fd):
                self._path.unlink(missing_ok=True)
            fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            os.close(fd)
        logger.debug("Released recording lock")

    def is_held(self) -> bool:
        """True if a live process currently holds the lock."""
        try:
            fd = os.open(self._path, os.O_RDONLY)
        except FileNotFoundError:
            return False
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            logger.debug("Recording lock is held by another process")
            return True
        finally:
            os.close(fd)
        return False

    def is_stale(self) -> bool:
        """True if the lock file exists but nobody holds it."""
        return self._path.exists() and not self.is_held()

    def holder_pid(self) -> int | None:
        try:
            content = self._path.read_text().strip()
        except FileNotFoundError:
            return None
        try:
            return int(content)
        except ValueError:
            return None

    def clear(self) -> bool:
        """Remove a stale lock file. A lock held by a live process is left alone."""
        if not self.is_stale():
            return False
        try:
            self._path.unlink()
        except FileNotFoundError:
            return False
        logger.debug("Removed stale lock file %s", self._path)
        return True

    def _same_file(self, fd: int) -> bool:
        try:
            on_disk = os.stat(self._path)
        except FileNotFoundError:
            return False
        held = os.fstat(fd)
        return (on_disk.st_dev, on_disk.st_ino) == (held.st_dev, held.st_ino)
