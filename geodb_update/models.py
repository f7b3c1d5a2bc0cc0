"""
Update Data Models

Values passed between the fetcher, the writer and the orchestrator, and the
per-edition and aggregate results reported at the end of a run.
"""

import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, BinaryIO, Dict, List, Optional

from .errors import UpdateFailedError


@dataclass(frozen=True)
class Metadata:
    """Database metadata announced by the update service."""
    edition_id: str
    date: str  # Format: "YYYY-MM-DD"
    md5: str


class ReadResult:
    """
    A downloaded edition waiting to be written.

    The stream is owned by whoever consumes it: the writer closes it once it
    is done, and any error path that never reaches the writer closes it too.
    Closing is safe to call more than once.
    """

    def __init__(self, edition_id: str, reader: BinaryIO, old_hash: str,
                 new_hash: str, modified_at: datetime):
        self.edition_id = edition_id
        self.reader = reader
        self.old_hash = old_hash
        self.new_hash = new_hash
        self.modified_at = modified_at
        self._closed = False
        self._close_lock = threading.Lock()

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self):
        """Close the underlying stream exactly once."""
        with self._close_lock:
            if self._closed:
                return
            self._closed = True
        self.reader.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def __repr__(self) -> str:
        return (f"ReadResult(edition_id={self.edition_id!r}, old_hash={self.old_hash!r}, "
                f"new_hash={self.new_hash!r}, modified_at={self.modified_at!r})")


class EditionStatus(Enum):
    """Terminal status of one edition's update task."""
    UPDATED = "updated"
    UP_TO_DATE = "up_to_date"
    FAILED = "failed"


@dataclass
class RunOutcome:
    """Result of updating a single database edition."""
    edition_id: str
    status: EditionStatus
    old_hash: str
    new_hash: Optional[str] = None
    attempts: int = 0
    error: Optional[BaseException] = None
    modified_at: Optional[datetime] = None
    checked_at: Optional[datetime] = None

    @property
    def failed(self) -> bool:
        return self.status is EditionStatus.FAILED

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON output."""
        result: Dict[str, Any] = {
            'edition_id': self.edition_id,
            'status': self.status.value,
            'old_hash': self.old_hash,
            'new_hash': self.new_hash,
            'attempts': self.attempts,
        }
        if self.error is not None:
            result['error'] = str(self.error)
        if self.modified_at:
            result['modified_at'] = self.modified_at.isoformat()
        if self.checked_at:
            result['checked_at'] = self.checked_at.isoformat()
        return result


@dataclass
class RunResult:
    """Result of a complete update run across all editions."""
    run_id: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    processing_time: float = 0.0
    outcomes: List[RunOutcome] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.failed

    @property
    def failed(self) -> List[RunOutcome]:
        return [o for o in self.outcomes if o.status is EditionStatus.FAILED]

    @property
    def updated(self) -> List[RunOutcome]:
        return [o for o in self.outcomes if o.status is EditionStatus.UPDATED]

    @property
    def up_to_date(self) -> List[RunOutcome]:
        return [o for o in self.outcomes if o.status is EditionStatus.UP_TO_DATE]

    def get_outcome(self, edition_id: str) -> Optional[RunOutcome]:
        for outcome in self.outcomes:
            if outcome.edition_id == edition_id:
                return outcome
        return None

    def raise_for_failures(self):
        """Raise UpdateFailedError naming every failed edition, if any."""
        failures = {o.edition_id: o.error for o in self.failed}
        if failures:
            raise UpdateFailedError(failures)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'run_id': self.run_id,
            'started_at': self.started_at.isoformat(),
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
            'processing_time': self.processing_time,
            'success': self.success,
            'editions': [o.to_dict() for o in self.outcomes],
        }
