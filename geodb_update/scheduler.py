"""
GeoIP Database Update Scheduler

Runs update runs periodically for long-lived deployments that do not use cron.
Every execution goes through the orchestrator and therefore the process lock,
so a scheduled run never overlaps a manual one.
"""

import time
import threading
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import schedule

from .config import Config
from .errors import LockHeldError, UpdateFailedError
from .models import RunResult
from .orchestrator import UpdateOrchestrator

logger = logging.getLogger(__name__)

MAX_HISTORY = 100


@dataclass
class ScheduleConfig:
    """Configuration for a scheduled update job."""
    name: str
    enabled: bool = True

    # Interval scheduling
    interval_minutes: Optional[int] = None

    # Daily scheduling, format: "HH:MM"
    daily_time: Optional[str] = None

    max_consecutive_failures: int = 3


@dataclass
class ScheduledJobResult:
    """Result of a scheduled job execution."""
    job_name: str
    started_at: datetime
    completed_at: datetime
    success: bool
    run_result: Optional[RunResult] = None
    error_message: Optional[str] = None


class UpdateScheduler:
    """Scheduler for automated database updates."""

    def __init__(self, config: Config,
                 orchestrator_factory: Optional[Callable[[Config], UpdateOrchestrator]] = None,
                 scheduler: Optional[schedule.Scheduler] = None):
        """
        Initialize the scheduler.

        Args:
            config: Configuration passed to every update run
            orchestrator_factory: Builds the orchestrator for each run
            scheduler: schedule.Scheduler to register jobs on
        """
        self.config = config
        self.orchestrator_factory = orchestrator_factory or UpdateOrchestrator
        self.scheduler = scheduler or schedule.Scheduler()
        self.scheduled_jobs: Dict[str, ScheduleConfig] = {}
        self.job_history: List[ScheduledJobResult] = []
        self.failure_counts: Dict[str, int] = {}
        self.running = False
        self.scheduler_thread: Optional[threading.Thread] = None
        self.notification_handlers: List[Callable[[ScheduledJobResult], None]] = []
        self._stop_event = threading.Event()

    def add_notification_handler(self, handler: Callable[[ScheduledJobResult], None]):
        """Add notification handler for job results."""
        self.notification_handlers.append(handler)

    def add_scheduled_job(self, config: ScheduleConfig):
        """
        Add a scheduled job.

        Raises:
            ValueError: If the job has neither an interval nor a daily time
        """
        if not (config.interval_minutes or config.daily_time):
            raise ValueError(f"Invalid schedule configuration for job: {config.name}")

        self.remove_scheduled_job(config.name)
        self.scheduled_jobs[config.name] = config
        self.failure_counts[config.name] = 0

        if config.enabled:
            self._setup_job_schedule(config)

        logger.info(f"Added scheduled job: {config.name}")

    def remove_scheduled_job(self, job_name: str):
        """Remove a scheduled job."""
        if job_name in self.scheduled_jobs:
            del self.scheduled_jobs[job_name]
            del self.failure_counts[job_name]
            self.scheduler.clear(job_name)
            logger.info(f"Removed scheduled job: {job_name}")

    def disable_job(self, job_name: str):
        """Disable a scheduled job."""
        if job_name in self.scheduled_jobs:
            self.scheduled_jobs[job_name].enabled = False
            self.scheduler.clear(job_name)
            logger.info(f"Disabled job: {job_name}")

    def _setup_job_schedule(self, config: ScheduleConfig):
        """Register the job with the underlying scheduler."""
        job_func = lambda: self.execute_job(config.name)

        if config.interval_minutes:
            self.scheduler.every(config.interval_minutes).minutes.do(job_func).tag(config.name)
        else:
            self.scheduler.every().day.at(config.daily_time).do(job_func).tag(config.name)

    def run_pending(self):
        """Run any jobs that are due."""
        self.scheduler.run_pending()

    def start_scheduler(self, poll_interval: float = 60):
        """Start the scheduler in a background thread."""
        if self.running:
            logger.warning("Scheduler is already running")
            return

        self.running = True
        self._stop_event.clear()
        self.scheduler_thread = threading.Thread(
            target=self._run_scheduler, args=(poll_interval,), daemon=True
        )
        self.scheduler_thread.start()
        logger.info("Update scheduler started")

    def stop_scheduler(self):
        """Stop the scheduler."""
        if not self.running:
            logger.warning("Scheduler is not running")
            return

        self.running = False
        self._stop_event.set()

        if self.scheduler_thread and self.scheduler_thread.is_alive():
            self.scheduler_thread.join(timeout=5)

        logger.info("Update scheduler stopped")

    def _run_scheduler(self, poll_interval: float):
        """Main scheduler loop."""
        while self.running:
            try:
                self.run_pending()
            except Exception as e:
                logger.error(f"Scheduler error: {e}")
            self._stop_event.wait(poll_interval)

    def execute_job(self, job_name: str) -> Optional[ScheduledJobResult]:
        """Execute a scheduled job now."""
        config = self.scheduled_jobs.get(job_name)
        if config is None:
            logger.error(f"Scheduled job not found: {job_name}")
            return None
        if not config.enabled:
            return None

        logger.info(f"Executing scheduled job: {job_name}")
        started_at = datetime.now()
        job_result = ScheduledJobResult(
            job_name=job_name,
            started_at=started_at,
            completed_at=started_at,
            success=False
        )

        try:
            orchestrator = self.orchestrator_factory(self.config)
            run_result = orchestrator.run()
            job_result.run_result = run_result
            job_result.success = run_result.success
            if not run_result.success:
                job_result.error_message = str(UpdateFailedError(
                    {o.edition_id: o.error for o in run_result.failed}
                ))

        except LockHeldError as e:
            logger.warning(f"Skipping scheduled job {job_name}: {e}")
            job_result.error_message = str(e)

        except Exception as e:
            logger.error(f"Scheduled job {job_name} failed with exception: {e}")
            job_result.error_message = str(e)

        finally:
            job_result.completed_at = datetime.now()
            self.job_history.append(job_result)
            if len(self.job_history) > MAX_HISTORY:
                self.job_history = self.job_history[-MAX_HISTORY:]

        self._record_outcome(config, job_result)
        self._send_job_notifications(job_result)

        logger.info(f"Scheduled job {job_name} completed: {'success' if job_result.success else 'failed'}")
        return job_result

    def _record_outcome(self, config: ScheduleConfig, job_result: ScheduledJobResult):
        if job_result.success:
            self.failure_counts[config.name] = 0
            return

        self.failure_counts[config.name] += 1
        if self.failure_counts[config.name] >= config.max_consecutive_failures:
            logger.error(
                f"Job {config.name} disabled due to {config.max_consecutive_failures} consecutive failures"
            )
            self.disable_job(config.name)

    def _send_job_notifications(self, job_result: ScheduledJobResult):
        for handler in self.notification_handlers:
            try:
                handler(job_result)
            except Exception as e:
                logger.warning(f"Notification handler failed: {e}")

    def has_active_jobs(self) -> bool:
        """Whether any job is still registered with the underlying scheduler."""
        return bool(self.scheduler.jobs)

    def get_job_status(self, job_name: str) -> Dict[str, Any]:
        """Get status of a specific job."""
        if job_name not in self.scheduled_jobs:
            return {'error': 'Job not found'}

        config = self.scheduled_jobs[job_name]

        next_run = None
        for job in self.scheduler.jobs:
            if job_name in job.tags:
                next_run = job.next_run
                break

        recent_results = [r for r in self.job_history if r.job_name == job_name][-10:]

        return {
            'name': job_name,
            'enabled': config.enabled,
            'failure_count': self.failure_counts.get(job_name, 0),
            'max_consecutive_failures': config.max_consecutive_failures,
            'next_run': next_run.isoformat() if next_run else None,
            'recent_results': [
                {
                    'started_at': r.started_at.isoformat(),
                    'success': r.success,
                    'updated': len(r.run_result.updated) if r.run_result else 0
                }
                for r in reversed(recent_results)
            ]
        }


def scheduled_job_log_handler(result: ScheduledJobResult):
    """Log-based notification handler for scheduled jobs."""
    log_level = logging.INFO if result.success else logging.ERROR
    updated = len(result.run_result.updated) if result.run_result else 0
    duration = (result.completed_at - result.started_at).total_seconds()

    logger.log(
        log_level,
        f"Scheduled job '{result.job_name}' completed: "
        f"success={result.success}, updated={updated}, duration={duration:.1f}s"
    )


def run_forever(scheduler: UpdateScheduler, poll_interval: float = 1.0):
    """Run pending jobs in the foreground until interrupted or no job is left enabled."""
    while scheduler.has_active_jobs():
        scheduler.run_pending()
        if scheduler.has_active_jobs():
            time.sleep(poll_interval)

    logger.error("No enabled scheduled jobs left, stopping scheduler")
