"""
Kafka consumer for reminder delivery requests.

Each polled batch is fanned out into one asyncio task per message so the
per-message jitter delays overlap; offsets are committed once every task in
the batch has finished, whether its push succeeded or not.

Connecting is retried a bounded number of times with a fixed delay; the
budget covers consecutive failed attempts only and starts over after every
session that connects. When it runs out the consumer task ends with an error
log and the rest of the process keeps running.
"""

import asyncio
from collections.abc import Callable
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from aiokafka import AIOKafkaConsumer
from aiokafka.errors import KafkaError
from pydantic import ValidationError

from payaware.config import Settings
from payaware.infrastructure.observability.logging import get_logger
from payaware.messaging.producer import kafka_security_options
from payaware.models.domain.notification_domain import DeliveryRequest
from payaware.services.delivery_service import DeliveryService
from payaware.utils.retry import retry_with_fixed_delay

logger = get_logger(__name__)

POLL_TIMEOUT_MS = 1000
MAX_RECORDS_PER_POLL = 50


class ConsumerState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    RECONNECTING = "reconnecting"
    FAILED = "failed"
    STOPPED = "stopped"


def parse_delivery_request(raw: bytes | None) -> DeliveryRequest | None:
    """Decode a message value; None for malformed or incomplete requests."""
    if not raw:
        logger.warning("Empty Kafka message")
        return None

    try:
        request = DeliveryRequest.model_validate_json(raw)
    except ValidationError as e:
        logger.warning("Error decoding Kafka message", error=str(e))
        return None

    if not request.is_valid():
        logger.warning(
            "Invalid notification data: user_id or subscription_id is zero",
            user_id=request.user_id,
            subscription_id=request.subscription_id,
        )
        return None

    return request


class ReminderConsumer:
    def __init__(
        self,
        settings: Settings,
        delivery: DeliveryService,
        *,
        consumer_factory: Callable[[], Any] | None = None,
    ):
        self.topic = settings.KAFKA_TOPIC
        self.group_id = settings.KAFKA_CONSUMER_GROUP
        self.broker = settings.KAFKA_BROKER
        self.delivery = delivery
        self._security = kafka_security_options(settings)
        self._retry_attempts = settings.STARTUP_RETRY_ATTEMPTS
        self._retry_delay = settings.STARTUP_RETRY_DELAY_SECONDS
        self._consumer_factory = consumer_factory or self._default_consumer
        self._in_flight: set[asyncio.Task] = set()
        self._stopping = False

        self.state = ConsumerState.IDLE
        self.messages_processed = 0
        self.messages_dropped = 0
        self.last_error: str | None = None
        self.last_commit_time: datetime | None = None
        self.sessions_started = 0

    def _default_consumer(self) -> AIOKafkaConsumer:
        return AIOKafkaConsumer(
            self.topic,
            bootstrap_servers=self.broker,
            group_id=self.group_id,
            enable_auto_commit=False,
            auto_offset_reset="earliest",
            **self._security,
        )

    async def run(self) -> None:
        """Consume until stopped or until reconnect attempts are exhausted."""
        logger.info("Starting reminder consumer", topic=self.topic, group_id=self.group_id)
        try:
            while not self._stopping:
                try:
                    consumer = await retry_with_fixed_delay(
                        self._connect,
                        name="kafka_consumer_connect",
                        attempts=self._retry_attempts,
                        delay_s=self._retry_delay,
                        exceptions=(KafkaError, OSError),
                    )
                except (KafkaError, OSError) as e:
                    self.state = ConsumerState.FAILED
                    self.last_error = str(e)
                    logger.error(
                        "Reminder consumer stopped after retries; reminders will not be delivered until restart",
                        error=str(e),
                    )
                    return

                # Every connected session starts with a fresh reconnect budget
                try:
                    await self._consume(consumer)
                except (KafkaError, OSError) as e:
                    self.state = ConsumerState.RECONNECTING
                    self.last_error = str(e)
                    logger.error("Error consuming Kafka messages, reconnecting", error=str(e))
                    await asyncio.sleep(self._retry_delay)
                finally:
                    await self._stop_quietly(consumer)
        except asyncio.CancelledError:
            self.state = ConsumerState.STOPPED
            raise

        self.state = ConsumerState.STOPPED
        logger.info("Reminder consumer stopped")

    async def _connect(self) -> Any:
        consumer = self._consumer_factory()
        try:
            await consumer.start()
        except Exception:
            self.state = ConsumerState.RECONNECTING
            await self._stop_quietly(consumer)
            raise

        self.state = ConsumerState.RUNNING
        self.sessions_started += 1
        logger.info("Reminder consumer connected", topic=self.topic, session=self.sessions_started)
        return consumer

    async def _consume(self, consumer: Any) -> None:
        while not self._stopping:
            batches = await consumer.getmany(
                timeout_ms=POLL_TIMEOUT_MS, max_records=MAX_RECORDS_PER_POLL
            )
            if not batches:
                continue

            await self._process_batches(batches)
            if self._stopping:
                # Cancelled deliveries stay uncommitted and are redelivered
                break
            await consumer.commit()
            self.last_commit_time = datetime.now(UTC)

    async def _process_batches(self, batches: dict) -> None:
        for messages in batches.values():
            for message in messages:
                logger.debug(
                    "Message claimed",
                    topic=message.topic,
                    partition=message.partition,
                    offset=message.offset,
                )
                request = parse_delivery_request(message.value)
                if request is None:
                    self.messages_dropped += 1
                    continue
                self._submit(request)

        if self._in_flight:
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)

    def _submit(self, request: DeliveryRequest) -> None:
        task = asyncio.create_task(self._deliver(request))
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)

    async def _deliver(self, request: DeliveryRequest) -> None:
        try:
            await self.delivery.deliver(request)
            self.messages_processed += 1
        except asyncio.CancelledError:
            raise
        except Exception as e:
            # One bad message must not take the batch down
            self.messages_dropped += 1
            logger.error(
                "Unexpected delivery error",
                user_id=request.user_id,
                subscription_id=request.subscription_id,
                error=str(e),
                error_type=type(e).__name__,
            )

    @staticmethod
    async def _stop_quietly(consumer: Any) -> None:
        try:
            await consumer.stop()
        except Exception as e:
            logger.warning("Error stopping Kafka consumer", error=str(e))

    async def stop(self) -> None:
        """Cancel in-flight deliveries; the run loop exits on its next poll."""
        self._stopping = True
        for task in list(self._in_flight):
            task.cancel()
        if self._in_flight:
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)
        await self.delivery.close()

    def get_status(self) -> dict:
        return {
            "state": self.state.value,
            "topic": self.topic,
            "group_id": self.group_id,
            "messages_processed": self.messages_processed,
            "messages_dropped": self.messages_dropped,
            "sessions_started": self.sessions_started,
            "in_flight": len(self._in_flight),
            "last_commit_time": self.last_commit_time.isoformat() if self.last_commit_time else None,
            "last_error": self.last_error,
        }
