"""
Advisory run lock.

Prevents a manual run and a scheduled run from racing on the destination and
the configuration store. The lock is an OS file lock (flock on POSIX,
msvcrt.locking on Windows) on a file that holds the owner's PID. The kernel
drops the lock when its process dies, so a file left behind by a crashed
run is simply locked again by the next one.
"""

import os
import logging
from typing import Optional

if os.name == 'nt':
    import msvcrt
else:
    import fcntl


logger = logging.getLogger(__name__)


class LockError(Exception):
    """Raised when another backup run holds the lock."""

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.path = path


def lock_path_for(config_path: str) -> str:
    """Lock file used for runs of the given configuration store."""
    return f"{config_path}.lock"


class RunLock:
    """
    Non-blocking exclusive lock file.

    Usage:
        with RunLock(path):
            ...
    """

    def __init__(self, path: str):
        self.path = path
        self.acquired = False
        self._fd = None

    def acquire(self):
        """
        Take the lock or fail immediately.

        Raises:
            LockError: If another run holds the lock
        """
        while True:
            try:
                fd = os.open(self.path, os.O_CREAT | os.O_RDWR, 0o644)
            except OSError as e:
                raise LockError(f"Failed to create lock {self.path}: {e}", self.path) from e

            try:
                _lock_fd(fd)
            except OSError:
                os.close(fd)
                owner = self._read_owner()
                holder = f"pid {owner}" if owner is not None else "another process"
                raise LockError(f"Another backup run ({holder}) holds {self.path}", self.path)

            # The previous holder unlinks the file on release; if that happened
            # between our open and lock we hold a lock nobody else can see
            if _is_current_file(fd, self.path):
                break

            _unlock_fd(fd)
            os.close(fd)

        try:
            os.ftruncate(fd, 0)
            os.lseek(fd, 0, os.SEEK_SET)
            os.write(fd, str(os.getpid()).encode('ascii'))
        except OSError as e:
            logger.warning(f"Failed to record owner in {self.path}: {e}")

        self._fd = fd
        self.acquired = True

    def release(self):
        """Remove the lock file and drop the lock if this instance holds it."""
        if not self.acquired:
            return

        self.acquired = False
        fd, self._fd = self._fd, None

        # POSIX: unlink while still locked so no one can lock the old file after us.
        # Windows cannot unlink an open file; it is removed after closing instead.
        if os.name != 'nt':
            self._remove_file()

        try:
            _unlock_fd(fd)
        except OSError as e:
            logger.warning(f"Failed to unlock {self.path}: {e}")
        finally:
            os.close(fd)

        if os.name == 'nt':
            self._remove_file()

    def __enter__(self):
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()
        return False

    def _remove_file(self):
        try:
            os.remove(self.path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Failed to remove lock {self.path}: {e}")

    def _read_owner(self) -> Optional[int]:
        try:
            with open(self.path, 'r') as f:
                return int(f.read().strip())
        except (OSError, ValueError):
            return None


def _lock_fd(fd: int):
    """Take an exclusive non-blocking lock on fd; OSError if it is held."""
    if os.name == 'nt':
        os.lseek(fd, 0, os.SEEK_SET)
        msvcrt.locking(fd, msvcrt.LK_NBLCK, 1)
    else:
        fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)


def _unlock_fd(fd: int):
    if os.name == 'nt':
        os.lseek(fd, 0, os.SEEK_SET)
        msvcrt.locking(fd, msvcrt.LK_UNLCK, 1)
    else:
        fcntl.flock(fd, fcntl.LOCK_UN)


def _is_current_file(fd: int, path: str) -> bool:
    """True if path still names the file open on fd."""
    try:
        current = os.stat(path)
    except FileNotFoundError:
        return False
    opened = os.fstat(fd)
    return (opened.st_dev, opened.st_ino) == (current.st_dev, current.st_ino)
