"""
Process Lock

File-based mutual exclusion ensuring only one update run operates on a
database directory at a time. A second run fails immediately instead of
waiting for the first to finish.
"""

import os
import logging
from typing import Optional

from filelock import FileLock, Timeout

from .errors import DatabaseIOError, LockHeldError

logger = logging.getLogger(__name__)
logging.getLogger("filelock").setLevel(logging.INFO)


class ProcessLock:
    """Exclusive, non-blocking lock tied to a file path."""

    def __init__(self, path: str):
        self.path = path
        self._lock: Optional[FileLock] = None

    @property
    def is_held(self) -> bool:
        return self._lock is not None and self._lock.is_locked

    def acquire(self) -> 'ProcessLock':
        """
        Acquire the lock, creating the lock file and its directories if needed.

        Raises:
            LockHeldError: If another process already holds the lock
            DatabaseIOError: If the lock file cannot be created
        """
        if self.is_held:
            return self

        lock_dir = os.path.dirname(self.path)
        try:
            if lock_dir:
                os.makedirs(lock_dir, exist_ok=True)
        except OSError as e:
            raise DatabaseIOError(f"error creating lock directory {lock_dir}: {e}") from e

        file_lock = FileLock(self.path, timeout=0)
        try:
            file_lock.acquire()
        except Timeout as e:
            raise LockHeldError(self.path) from e
        except OSError as e:
            raise DatabaseIOError(f"error acquiring lock at {self.path}: {e}") from e

        self._lock = file_lock
        logger.debug(f"Acquired lock file: {self.path}")
        return self

    def release(self):
        """Release the lock. Calling it when the lock is not held does nothing."""
        if self._lock is None:
            return

        file_lock, self._lock = self._lock, None
        file_lock.release(force=True)
        logger.debug(f"Released lock file: {self.path}")

    def __enter__(self):
        return self.acquire()

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()


def acquire_lock(path: str) -> ProcessLock:
    """Acquire and return a ProcessLock for `path`."""
    return ProcessLock(path).acquire()
