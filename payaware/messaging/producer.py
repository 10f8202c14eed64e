"""
Kafka producer for reminder delivery requests.

Messages are keyed by `user-<id>` so one user's reminders share a partition.
"""

from aiokafka import AIOKafkaProducer
from aiokafka.errors import KafkaError
from aiokafka.helpers import create_ssl_context

from payaware.config import Settings
from payaware.infrastructure.observability.logging import get_logger
from payaware.models.domain.notification_domain import DeliveryRequest
from payaware.utils.retry import retry_with_fixed_delay

logger = get_logger(__name__)


class ProducerError(Exception):
    """Publishing a delivery request failed."""

    def __init__(self, message: str, user_id: int | None = None, recoverable: bool = True):
        super().__init__(message)
        self.user_id = user_id
        self.recoverable = recoverable


def kafka_security_options(settings: Settings) -> dict:
    """Connection options shared by the producer and the consumer."""
    if not settings.KAFKA_USE_SSL:
        return {}
    return {
        "security_protocol": "SSL",
        "ssl_context": create_ssl_context(cafile=settings.KAFKA_SSL_CAFILE),
    }


class ReminderProducer:
    def __init__(self, settings: Settings):
        self.broker = settings.KAFKA_BROKER
        self.topic = settings.KAFKA_TOPIC
        self._security = kafka_security_options(settings)
        self._retry_attempts = settings.STARTUP_RETRY_ATTEMPTS
        self._retry_delay = settings.STARTUP_RETRY_DELAY_SECONDS
        self._producer: AIOKafkaProducer | None = None

    @property
    def started(self) -> bool:
        return self._producer is not None

    async def start(self) -> None:
        """
        Connect to the broker, retrying with a fixed delay.

        Raises:
            RuntimeError: if the broker stays unreachable after every attempt
        """
        if self._producer is not None:
            return

        async def _connect() -> AIOKafkaProducer:
            producer = AIOKafkaProducer(
                bootstrap_servers=self.broker,
                acks="all",
                enable_idempotence=True,
                **self._security,
            )
            try:
                await producer.start()
            except Exception:
                await producer.stop()
                raise
            return producer

        try:
            self._producer = await retry_with_fixed_delay(
                _connect,
                name="kafka_producer_connect",
                attempts=self._retry_attempts,
                delay_s=self._retry_delay,
            )
        except Exception as e:
            raise RuntimeError(f"Kafka producer initialization failed: {e}") from e

        logger.info("Kafka producer started", broker=self.broker, topic=self.topic)

    async def stop(self) -> None:
        if self._producer is None:
            return
        try:
            await self._producer.stop()
            logger.info("Kafka producer closed")
        except Exception as e:
            logger.error("Failed to close Kafka producer", error=str(e))
        finally:
            self._producer = None

    async def publish(self, request: DeliveryRequest) -> None:
        """
        Publish one delivery request and wait for the broker ack.

        Raises:
            ProducerError: if the producer is not started or the send fails
        """
        if self._producer is None:
            logger.warning("Kafka producer is not started; skipping publish", user_id=request.user_id)
            raise ProducerError("Kafka producer is not started", user_id=request.user_id)

        try:
            await self._producer.send_and_wait(
                self.topic,
                value=request.model_dump_json().encode(),
                key=request.partition_key(),
            )
        except KafkaError as e:
            logger.error(
                "Failed to publish delivery request",
                user_id=request.user_id,
                subscription_id=request.subscription_id,
                error=str(e),
            )
            raise ProducerError(f"Kafka publish failed: {e}", user_id=request.user_id) from e

        logger.info(
            "Delivery request published",
            user_id=request.user_id,
            subscription_id=request.subscription_id,
        )
        # Message text stays at debug level
        logger.debug("Delivery request content", user_id=request.user_id, message=request.message)
