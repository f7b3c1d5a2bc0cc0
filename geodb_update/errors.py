"""
Update Error Types

Exception hierarchy shared by the fetcher, writer, lock and orchestrator.
Each error class declares whether retrying the failed edition can help, which
is what the orchestrator uses to decide between backing off and giving up.
"""

from typing import Dict, List, Optional


class UpdateError(Exception):
    """Base class for all update system errors."""

    retryable = False

    def __init__(self, message: str, edition_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.edition_id = edition_id

    def __str__(self) -> str:
        if self.edition_id:
            return f"{self.edition_id}: {self.message}"
        return self.message


class TransientError(UpdateError):
    """Network timeout, connection reset or server-side failure."""

    retryable = True

    def __init__(self, message: str, edition_id: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message, edition_id)
        self.status_code = status_code


class FatalError(UpdateError):
    """Rejected credentials or a response that does not follow the protocol."""

    retryable = False

    def __init__(self, message: str, edition_id: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message, edition_id)
        self.status_code = status_code


class IntegrityError(UpdateError):
    """Downloaded content does not match the announced MD5 hash."""

    # A corrupted transfer is assumed to be transient
    retryable = True

    def __init__(self, message: str, edition_id: Optional[str] = None,
                 expected_hash: Optional[str] = None, actual_hash: Optional[str] = None):
        super().__init__(message, edition_id)
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash


class DatabaseIOError(UpdateError):
    """Local filesystem failure while reading or writing a database file."""

    retryable = False


class LockHeldError(UpdateError):
    """Another process holds the lock on the database directory."""

    def __init__(self, lock_path: str):
        super().__init__(f"lock file {lock_path} is held by another process")
        self.lock_path = lock_path


class UpdateFailedError(UpdateError):
    """Aggregate error raised when one or more editions failed to update."""

    def __init__(self, failures: Dict[str, BaseException]):
        self.failures = dict(sorted(failures.items()))
        lines: List[str] = [
            f"{edition_id}: {_describe(error)}" for edition_id, error in self.failures.items()
        ]
        count = len(self.failures)
        noun = "edition" if count == 1 else "editions"
        super().__init__(f"{count} {noun} failed to update:\n  " + "\n  ".join(lines))


class ConfigError(ValueError):
    """Invalid or incomplete configuration."""


def _describe(error: BaseException) -> str:
    if isinstance(error, UpdateError):
        return error.message
    return str(error) or type(error).__name__
