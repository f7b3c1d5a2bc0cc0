"""
GeoIP Database Update Orchestrator

Central orchestration of an update run:
- Acquires the process lock for the database directory
- Checks every configured edition against the update service in a bounded
  worker pool, downloading and installing only editions that changed
- Retries transient failures per edition within a time budget
- Aggregates per-edition outcomes into a single run result

A failing edition never cancels or blocks the others.
"""

import time
import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from .config import Config
from .errors import UpdateError
from .fetcher import Fetcher, HTTPFetcher
from .lock import ProcessLock
from .models import EditionStatus, RunOutcome, RunResult
from .retry import next_retry
from .writer import LocalFileWriter, Writer

logger = logging.getLogger(__name__)


class UpdateOrchestrator:
    """Central orchestrator for the database update system."""

    def __init__(self, config: Config, fetcher: Optional[Fetcher] = None,
                 writer: Optional[Writer] = None,
                 sleep: Callable[[float], None] = time.sleep,
                 clock: Callable[[], float] = time.monotonic):
        """
        Initialize the orchestrator.

        Args:
            config: Update configuration
            fetcher: Remote edition fetcher (HTTPFetcher built from config if None)
            writer: Local database writer (LocalFileWriter built from config if None)
            sleep: Function used to wait between retries
            clock: Monotonic clock used to measure the retry budget
        """
        self.config = config
        # A fetcher built here is closed by run()
        self._owns_fetcher = fetcher is None
        self.fetcher = fetcher or HTTPFetcher(
            account_id=config.account_id,
            license_key=config.license_key,
            url=config.url,
            proxy=config.proxy
        )
        self.writer = writer or LocalFileWriter(
            config.database_directory,
            preserve_file_times=config.preserve_file_times,
            verbose=config.verbose
        )
        self.sleep = sleep
        self.clock = clock
        self.result: Optional[RunResult] = None
        self.notification_handlers: List[Callable[[RunResult], None]] = []

    def add_notification_handler(self, handler: Callable[[RunResult], None]):
        """Add a notification handler called with the result of each run."""
        self.notification_handlers.append(handler)

    def run(self) -> RunResult:
        """
        Execute a complete update run for the configured editions.

        Returns:
            RunResult: Per-edition outcomes sorted by edition ID

        Raises:
            LockHeldError: If another run holds the lock; no edition is processed
        """
        lock = ProcessLock(self.config.lock_file)
        try:
            lock.acquire()
            try:
                self.run_all(self.config.edition_ids, self.config.parallelism, self.config.retry_for)
            finally:
                lock.release()
        finally:
            if self._owns_fetcher:
                self.fetcher.close()

        self._send_notifications()
        return self.result

    def run_all(self, editions: Iterable[str], parallelism: int,
                retry_for: Union[timedelta, float]) -> RunResult:
        """
        Update editions concurrently, at most `parallelism` at a time.

        Args:
            editions: Edition IDs to update; duplicates are processed once
            parallelism: Maximum number of editions in flight
            retry_for: Retry budget per edition, measured from its first attempt

        Returns:
            RunResult: Per-edition outcomes sorted by edition ID
        """
        start_time = time.time()
        run_id = f"update_{int(start_time)}"
        edition_ids = list(dict.fromkeys(editions))
        max_workers = max(1, parallelism)

        self.result = RunResult(run_id=run_id, started_at=datetime.now())
        logger.info(f"Starting update run {run_id}: {len(edition_ids)} edition(s), parallelism {max_workers}")

        outcomes: List[RunOutcome] = []
        with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix='edition') as executor:
            futures = {
                executor.submit(self.update_edition, edition_id, retry_for): edition_id
                for edition_id in edition_ids
            }

            for future in as_completed(futures):
                edition_id = futures[future]
                try:
                    outcomes.append(future.result())
                except Exception as e:
                    logger.error(f"Update task for {edition_id} crashed: {e}")
                    outcomes.append(RunOutcome(
                        edition_id=edition_id,
                        status=EditionStatus.FAILED,
                        old_hash='',
                        error=e
                    ))

        self.result.outcomes = sorted(outcomes, key=lambda o: o.edition_id)
        return self._finalize_result(start_time)

    def update_edition(self, edition_id: str, retry_for: Union[timedelta, float]) -> RunOutcome:
        """
        Bring one edition up to date, retrying transient failures.

        Returns:
            RunOutcome: UPDATED, UP_TO_DATE or FAILED; never raises for
            errors of the edition itself
        """
        first_attempt_at = self.clock()
        attempt = 0
        old_hash = ''

        while True:
            attempt += 1
            try:
                # Baseline is re-read on every attempt
                old_hash = self.writer.get_hash(edition_id)
                outcome = self._attempt_update(edition_id, old_hash)
                outcome.attempts = attempt
                return outcome

            except Exception as e:
                retryable = isinstance(e, UpdateError) and e.retryable
                if not retryable:
                    logger.error(f"Update of {edition_id} failed: {e}")
                    return self._failed(edition_id, old_hash, attempt, e)

                elapsed = self.clock() - first_attempt_at
                decision = next_retry(attempt, elapsed, retry_for)
                if not decision.retry:
                    logger.error(f"Update of {edition_id} failed after {attempt} attempt(s): {e}")
                    return self._failed(edition_id, old_hash, attempt, e)

                logger.warning(
                    f"Attempt {attempt} for {edition_id} failed: {e}. "
                    f"Retrying in {decision.delay:.1f}s"
                )
                self.sleep(decision.delay)

    def _attempt_update(self, edition_id: str, old_hash: str) -> RunOutcome:
        """Fetch the edition once and write it if the service has a new version."""
        checked_at = datetime.now(timezone.utc)
        read_result = self.fetcher.check(edition_id, old_hash)

        if read_result is None:
            logger.info(f"Database {edition_id} up to date")
            return RunOutcome(
                edition_id=edition_id,
                status=EditionStatus.UP_TO_DATE,
                old_hash=old_hash,
                new_hash=old_hash,
                checked_at=checked_at
            )

        with read_result:
            self.writer.write(read_result)

        logger.info(f"Database {edition_id} updated: {old_hash} -> {read_result.new_hash.lower()}")
        return RunOutcome(
            edition_id=edition_id,
            status=EditionStatus.UPDATED,
            old_hash=old_hash,
            new_hash=read_result.new_hash.lower(),
            modified_at=read_result.modified_at,
            checked_at=checked_at
        )

    @staticmethod
    def _failed(edition_id: str, old_hash: str, attempts: int, error: BaseException) -> RunOutcome:
        return RunOutcome(
            edition_id=edition_id,
            status=EditionStatus.FAILED,
            old_hash=old_hash,
            attempts=attempts,
            error=error
        )

    def _finalize_result(self, start_time: float) -> RunResult:
        """Finalize the run result."""
        self.result.completed_at = datetime.now()
        self.result.processing_time = time.time() - start_time

        summary = (f"{len(self.result.updated)} updated, {len(self.result.up_to_date)} up to date, "
                   f"{len(self.result.failed)} failed")
        if self.result.success:
            logger.info(f"Update run completed in {self.result.processing_time:.2f}s: {summary}")
        else:
            logger.error(f"Update run finished with failures after {self.result.processing_time:.2f}s: {summary}")

        return self.result

    def _send_notifications(self):
        """Send notifications to registered handlers."""
        for handler in self.notification_handlers:
            try:
                handler(self.result)
            except Exception as e:
                logger.warning(f"Notification handler failed: {e}")

    def get_status(self) -> List[Dict[str, Any]]:
        """Get local file information for every configured edition."""
        status = []
        for edition_id in sorted(set(self.config.edition_ids)):
            if isinstance(self.writer, LocalFileWriter):
                status.append(self.writer.get_file_info(edition_id))
            else:
                status.append({'edition_id': edition_id, 'file_hash': self.writer.get_hash(edition_id)})
        return status


def run_update(config: Config, **kwargs) -> RunResult:
    """
    Run an update and raise if any edition failed.

    Raises:
        LockHeldError: If another run holds the lock
        UpdateFailedError: If one or more editions failed
    """
    orchestrator = UpdateOrchestrator(config, **kwargs)
    result = orchestrator.run()
    result.raise_for_failures()
    return result


# Notification handlers
def console_notification_handler(result: RunResult):
    """Simple console notification handler."""
    if result.success:
        print(f"✅ Update completed: {len(result.updated)} updated, "
              f"{len(result.up_to_date)} up to date in {result.processing_time:.2f}s")
    else:
        failed = ', '.join(o.edition_id for o in result.failed)
        print(f"❌ Update failed for: {failed}")


def log_notification_handler(result: RunResult):
    """Log-based notification handler."""
    for outcome in result.outcomes:
        level = logging.ERROR if outcome.failed else logging.INFO
        message = f"{outcome.edition_id}: {outcome.status.value}"
        if outcome.error is not None:
            message += f" ({outcome.error})"
        logger.log(level, message)
