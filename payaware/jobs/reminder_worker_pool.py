"""
Worker pool draining the dispatch queue.

Each worker takes one candidate at a time and:
1. drops candidates without a valid id,
2. claims the cycle's dedup marker with an atomic SET NX EX (already
   claimed -> skip; store unreachable -> skip without publishing),
3. skips the publish when the owner has no device token,
4. publishes the delivery request, releasing the marker if that fails,
5. advances recurring subscriptions and invalidates the owner's list cache.

Two workers holding the same candidate cannot both publish because only one
of them wins the claim.
"""

import asyncio
from collections.abc import Callable
from datetime import datetime
from enum import Enum

from payaware.db.helpers import DatabaseError
from payaware.infrastructure.observability.logging import get_logger
from payaware.jobs.reminder_scan_job import utc_now
from payaware.messaging.producer import ProducerError, ReminderProducer
from payaware.models.domain.notification_domain import DeliveryRequest
from payaware.models.domain.subscription_domain import Subscription
from payaware.repositories.subscription_repository import SubscriptionRepository
from payaware.repositories.user_repository import UserRepository
from payaware.services.dedup_store import DedupStoreError, ReminderDedupStore, SubscriptionListCache
from payaware.services.recurrence import advance
from payaware.services.reminder_text import render_queued_message

logger = get_logger(__name__)


class CandidateResult(str, Enum):
    INVALID = "invalid"
    DUPLICATE = "duplicate"
    DEDUP_ERROR = "dedup_error"
    NO_DEVICE_TOKEN = "no_device_token"
    USER_LOOKUP_FAILED = "user_lookup_failed"
    PUBLISH_FAILED = "publish_failed"
    PUBLISHED = "published"


class ReminderWorkerPool:
    def __init__(
        self,
        queue: asyncio.Queue,
        dedup: ReminderDedupStore,
        producer: ReminderProducer,
        subscriptions: SubscriptionRepository,
        users: UserRepository,
        list_cache: SubscriptionListCache,
        worker_count: int = 10,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.queue = queue
        self.dedup = dedup
        self.producer = producer
        self.subscriptions = subscriptions
        self.users = users
        self.list_cache = list_cache
        self.worker_count = worker_count
        self._clock = clock
        self._workers: list[asyncio.Task] = []
        self.counters: dict[str, int] = {result.value: 0 for result in CandidateResult}
        self.advance_failures = 0
        self.advance_skipped = 0

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._workers)

    def start(self) -> None:
        if self._workers:
            logger.warning("Reminder worker pool already started")
            return

        self._workers = [
            asyncio.create_task(self._worker_loop(index), name=f"reminder-worker-{index}")
            for index in range(self.worker_count)
        ]
        logger.info("Reminder worker pool started", worker_count=self.worker_count)

    async def stop(self) -> None:
        """Cancel every worker; queued candidates are abandoned."""
        for task in self._workers:
            task.cancel()
        if self._workers:
            await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        logger.info("Reminder worker pool stopped", abandoned=self.queue.qsize())

    async def _worker_loop(self, index: int) -> None:
        while True:
            candidate = await self.queue.get()
            try:
                await self.process(candidate)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(
                    "Unexpected error processing candidate",
                    worker=index,
                    subscription_id=getattr(candidate, "id", None),
                    error=str(e),
                    error_type=type(e).__name__,
                )
            finally:
                self.queue.task_done()

    async def process(self, candidate: Subscription) -> CandidateResult:
        """Handle one candidate end to end and report what happened."""
        result = await self._process(candidate)
        self.counters[result.value] += 1
        return result

    async def _process(self, candidate: Subscription) -> CandidateResult:
        if not candidate.id or candidate.id <= 0:
            logger.error("Invalid subscription ID, skipping notification", user_id=candidate.user_id)
            return CandidateResult.INVALID

        now = self._clock()
        try:
            claimed = await self.dedup.claim(candidate, now)
        except DedupStoreError as e:
            logger.error(
                "Dedup store unavailable, reminder not queued",
                subscription_id=candidate.id,
                error=str(e),
            )
            return CandidateResult.DEDUP_ERROR

        if not claimed:
            logger.debug("Reminder already queued this cycle", subscription_id=candidate.id)
            return CandidateResult.DUPLICATE

        try:
            user = await self.users.get(candidate.user_id)
        except DatabaseError as e:
            logger.error("User lookup failed", user_id=candidate.user_id, error=str(e))
            await self.dedup.release(candidate)
            return CandidateResult.USER_LOOKUP_FAILED

        if user is None or not user.has_device_token():
            # Cycle stays marked; billing still rolls forward
            logger.info(
                "No device token, reminder skipped",
                user_id=candidate.user_id,
                subscription_id=candidate.id,
            )
            await self._advance(candidate)
            return CandidateResult.NO_DEVICE_TOKEN

        request = DeliveryRequest(
            user_id=candidate.user_id,
            subscription_id=candidate.id,
            message=render_queued_message(candidate),
        )

        try:
            await self.producer.publish(request)
        except ProducerError as e:
            logger.error(
                "Failed to publish reminder", subscription_id=candidate.id, error=str(e)
            )
            await self.dedup.release(candidate)
            return CandidateResult.PUBLISH_FAILED

        logger.info("Reminder queued", subscription_id=candidate.id, user_id=candidate.user_id)
        await self._advance(candidate)
        return CandidateResult.PUBLISHED

    async def _advance(self, candidate: Subscription) -> None:
        if not candidate.is_recurring:
            return

        advanced = advance(candidate)
        try:
            applied = await self.subscriptions.advance_payment(
                candidate.id,
                candidate.next_payment_date,
                advanced.next_payment_date,
                advanced.notification_date,
            )
        except DatabaseError as e:
            self.advance_failures += 1
            logger.error(
                "Failed to persist recurrence advance",
                subscription_id=candidate.id,
                error=str(e),
            )
            return

        if not applied:
            # Edited or deleted after the scan read it; the edit wins
            self.advance_skipped += 1
            return

        await self.list_cache.invalidate_user(candidate.user_id)
        logger.info(
            "Subscription advanced",
            subscription_id=candidate.id,
            next_payment_date=advanced.next_payment_date.isoformat(),
            notification_date=advanced.notification_date.isoformat(),
        )

    def get_status(self) -> dict:
        return {
            "worker_count": self.worker_count,
            "workers_alive": sum(1 for task in self._workers if not task.done()),
            "queue_size": self.queue.qsize(),
            "results": dict(self.counters),
            "advance_failures": self.advance_failures,
            "advance_skipped": self.advance_skipped,
        }
