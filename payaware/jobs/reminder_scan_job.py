"""
Reminder scan job.

Runs on a fixed period, finds subscriptions whose reminder falls inside the
lookahead window and hands each one to the dispatch queue. The scan itself
never touches the dedup store: a candidate that cannot be queued is simply
left for the next pass.
"""

import asyncio
import time
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from payaware.db.helpers import DatabaseError
from payaware.infrastructure.observability.logging import get_logger
from payaware.models.domain.subscription_domain import Subscription
from payaware.repositories.subscription_repository import SubscriptionRepository
from payaware.services.recurrence import is_due

logger = get_logger(__name__)


def utc_now() -> datetime:
    return datetime.now(UTC)


class ReminderJobError(Exception):
    """Custom exception for reminder job operations."""

    def __init__(self, message: str, operation: str | None = None, recoverable: bool = True):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


class ScanMetrics:
    """Metrics for one scan pass."""

    def __init__(self):
        self.reset()

    def reset(self):
        self.start_time = utc_now()
        self.candidates_found = 0
        self.enqueued = 0
        self.dropped_queue_full = 0
        self.skipped_not_due = 0
        self.store_error: str | None = None
        self.total_duration_seconds = 0.0

    def finalize(self):
        self.total_duration_seconds = (utc_now() - self.start_time).total_seconds()

    def to_dict(self) -> dict:
        return {
            "job_run": "reminder_scan",
            "start_time": self.start_time.isoformat(),
            "total_duration_seconds": round(self.total_duration_seconds, 3),
            "candidates_found": self.candidates_found,
            "enqueued": self.enqueued,
            "dropped_queue_full": self.dropped_queue_full,
            "skipped_not_due": self.skipped_not_due,
            "store_error": self.store_error,
        }


class ReminderScanJob:
    """
    Periodic scanner feeding the dispatch queue.

    The queue is bounded; when it is full the candidate is dropped for this
    pass. No marker exists for it yet, so the next pass offers it again.
    """

    def __init__(
        self,
        subscriptions: SubscriptionRepository,
        queue: asyncio.Queue,
        interval_s: float = 60,
        lookahead_s: float = 120,
        clock: Callable[[], datetime] = utc_now,
    ):
        if interval_s > lookahead_s:
            raise ReminderJobError(
                "Scan interval must not exceed the lookahead window",
                operation="configure",
                recoverable=False,
            )

        self.subscriptions = subscriptions
        self.queue = queue
        self.interval_s = interval_s
        self.lookahead = timedelta(seconds=lookahead_s)
        self._clock = clock

        self.is_running = False
        self.last_run_time: datetime | None = None
        self.passes_completed = 0
        self.metrics = ScanMetrics()

    async def run_once(self) -> dict:
        """Run a single scan pass and return its metrics."""
        if self.is_running:
            logger.warning("Reminder scan already running, skipping this iteration")
            return {"skipped": True, "reason": "already_running"}

        self.is_running = True
        self.metrics.reset()
        now = self._clock()
        until = now + self.lookahead

        try:
            try:
                candidates = await self.subscriptions.find_due(now, until)
            except DatabaseError as e:
                # Abort this pass only; the next tick tries again
                self.metrics.store_error = str(e)
                logger.error("Reminder scan query failed", error=str(e))
                return self._finish()

            self.metrics.candidates_found = len(candidates)
            for candidate in candidates:
                self._offer(candidate, now)

            return self._finish()
        finally:
            self.is_running = False

    def _offer(self, candidate: Subscription, now: datetime) -> None:
        if not is_due(candidate, now, self.lookahead):
            self.metrics.skipped_not_due += 1
            logger.debug("Candidate outside window", subscription_id=candidate.id)
            return

        try:
            self.queue.put_nowait(candidate)
            self.metrics.enqueued += 1
        except asyncio.QueueFull:
            self.metrics.dropped_queue_full += 1
            logger.warning(
                "Dispatch queue full, candidate deferred to next scan",
                subscription_id=candidate.id,
                queue_size=self.queue.qsize(),
            )

    def _finish(self) -> dict:
        self.metrics.finalize()
        self.last_run_time = self._clock()
        self.passes_completed += 1
        metrics = self.metrics.to_dict()
        logger.info("Reminder scan completed", **metrics)
        return metrics

    async def run_forever(self) -> None:
        """Scan every interval for the lifetime of the process."""
        logger.info(
            "Starting reminder scan loop",
            interval_s=self.interval_s,
            lookahead_s=self.lookahead.total_seconds(),
        )

        while True:
            started = time.monotonic()
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("Error in reminder scan loop", error=str(e), error_type=type(e).__name__)

            elapsed = time.monotonic() - started
            await asyncio.sleep(max(0.0, self.interval_s - elapsed))

    def get_job_status(self) -> dict:
        return {
            "job_name": "reminder_scan",
            "is_running": self.is_running,
            "last_run_time": self.last_run_time.isoformat() if self.last_run_time else None,
            "passes_completed": self.passes_completed,
            "interval_seconds": self.interval_s,
            "lookahead_seconds": self.lookahead.total_seconds(),
            "queue_size": self.queue.qsize(),
            "queue_capacity": self.queue.maxsize,
            "last_run_metrics": self.metrics.to_dict() if self.last_run_time else None,
        }

    def health_check(self) -> dict:
        """Unhealthy when no pass has completed within two intervals."""
        now = self._clock()
        overdue_threshold = timedelta(seconds=self.interval_s * 2)
        is_overdue = self.last_run_time is not None and (now - self.last_run_time) > overdue_threshold

        health = {
            "healthy": not is_overdue,
            "service": "reminder_scan_job",
            "last_run_time": self.last_run_time.isoformat() if self.last_run_time else None,
            "is_overdue": is_overdue,
        }
        if is_overdue:
            health["warning"] = (
                f"Scan overdue by {(now - self.last_run_time).total_seconds():.0f} seconds"
            )
        return health
