"""
Process-level wiring of infrastructure handles and the reminder pipeline.

Everything is built from Settings and passed down explicitly; nothing below
this module reaches for a global connection.
"""

import asyncio

from payaware.config import Settings
from payaware.db.pool import DatabasePoolManager
from payaware.infrastructure.observability.logging import get_logger
from payaware.jobs.reminder_scan_job import ReminderScanJob
from payaware.jobs.reminder_worker_pool import ReminderWorkerPool
from payaware.messaging.consumer import ReminderConsumer
from payaware.messaging.producer import ReminderProducer
from payaware.repositories.notification_repository import NotificationRepository
from payaware.repositories.subscription_repository import SubscriptionRepository
from payaware.repositories.user_repository import UserRepository
from payaware.services.dedup_store import ReminderDedupStore, SubscriptionListCache
from payaware.services.delivery_service import DeliveryService
from payaware.services.push_service import ExpoPushClient
from payaware.services.redis_client import FastRedisClient
from payaware.utils.retry import retry_with_fixed_delay

logger = get_logger(__name__)


class ServiceContainer:
    """Owns connections and the long-running pipeline tasks."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.db_pool = DatabasePoolManager(
            settings.DATABASE_URL,
            settings.get_db_pool_config(),
            app_name=f"payaware-{settings.environment}",
        )
        self.redis = FastRedisClient(settings.REDIS_URL)
        self.producer = ReminderProducer(settings)
        self.push_client: ExpoPushClient | None = None

        self.subscriptions = SubscriptionRepository(self.db_pool)
        self.users = UserRepository(self.db_pool)
        self.notifications = NotificationRepository(self.db_pool)
        self.dedup = ReminderDedupStore(self.redis)
        self.list_cache = SubscriptionListCache(self.redis)

        self.scan_job: ReminderScanJob | None = None
        self.worker_pool: ReminderWorkerPool | None = None
        self.consumer: ReminderConsumer | None = None
        self._tasks: list[asyncio.Task] = []
        self._started: list[str] = []

    async def initialize(self, *, with_producer: bool = True) -> None:
        """
        Open stores with bounded retries. Any failure here is fatal to startup.
        """
        attempts = self.settings.STARTUP_RETRY_ATTEMPTS
        delay = self.settings.STARTUP_RETRY_DELAY_SECONDS

        try:
            await retry_with_fixed_delay(
                self.db_pool.initialize, name="database_pool", attempts=attempts, delay_s=delay
            )
            self._started.append("database_pool")

            await retry_with_fixed_delay(
                self.redis.initialize, name="redis", attempts=attempts, delay_s=delay
            )
            self._started.append("redis")

            if with_producer:
                await self.producer.start()
                self._started.append("kafka_producer")
        except Exception as e:
            logger.error("Failed to initialize services", error=str(e), completed=self._started)
            await self.close()
            raise

        logger.info("All services initialized successfully", services=self._started)

    def start_scheduler(self) -> None:
        """Start the scan loop and the worker pool on the running loop."""
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.settings.DISPATCH_QUEUE_SIZE)

        self.worker_pool = ReminderWorkerPool(
            queue,
            self.dedup,
            self.producer,
            self.subscriptions,
            self.users,
            self.list_cache,
            worker_count=self.settings.WORKER_COUNT,
        )
        self.scan_job = ReminderScanJob(
            self.subscriptions,
            queue,
            interval_s=self.settings.SCAN_INTERVAL_SECONDS,
            lookahead_s=self.settings.LOOKAHEAD_SECONDS,
        )

        self.worker_pool.start()
        self._tasks.append(asyncio.create_task(self.scan_job.run_forever(), name="reminder-scan"))
        logger.info("Reminder scheduler started")

    def start_consumer(self) -> None:
        """Start the delivery consumer on the running loop."""
        self.push_client = ExpoPushClient(
            self.settings.EXPO_PUSH_URL,
            access_token=self.settings.EXPO_ACCESS_TOKEN,
            icon_url=self.settings.PUSH_ICON_URL,
            timeout_s=self.settings.PUSH_TIMEOUT_SECONDS,
        )
        delivery = DeliveryService(
            self.subscriptions,
            self.users,
            self.notifications,
            self.push_client,
            jitter_max_s=self.settings.PUSH_JITTER_MAX_SECONDS,
            currency=self.settings.PUSH_CURRENCY,
        )
        self.consumer = ReminderConsumer(self.settings, delivery)
        self._tasks.append(asyncio.create_task(self.consumer.run(), name="reminder-consumer"))
        logger.info("Reminder consumer task started")

    async def wait(self) -> None:
        """Block until every pipeline task has ended."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    async def close(self) -> None:
        """Stop pipeline tasks, then close stores in reverse order."""
        if self.consumer:
            await self.consumer.stop()
        if self.worker_pool:
            await self.worker_pool.stop()

        for task in self._tasks:
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

        if self.push_client:
            await self.push_client.close()

        shutdown_errors = []
        for name, closer in (
            ("kafka_producer", self.producer.stop),
            ("redis", self.redis.close),
            ("database_pool", self.db_pool.close),
        ):
            if name not in self._started:
                continue
            try:
                await closer()
            except Exception as e:
                logger.error("Error closing service", service=name, error=str(e))
                shutdown_errors.append(f"{name}: {e}")

        self._started = []
        if shutdown_errors:
            logger.warning("Some services had shutdown errors", errors=shutdown_errors)
        else:
            logger.info("All services closed successfully")

    def pipeline_status(self) -> dict:
        return {
            "scan_job": self.scan_job.get_job_status() if self.scan_job else None,
            "worker_pool": self.worker_pool.get_status() if self.worker_pool else None,
            "consumer": self.consumer.get_status() if self.consumer else None,
        }
