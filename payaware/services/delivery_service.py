"""
Consumer-side delivery of one reminder.

The request only carries identifiers, so the subscription and user are read
again here and the push text is rendered from live state. Every attempt that
reaches the push transport is recorded as exactly one Notification row,
whatever the outcome; failed pushes are not retried.
"""

import asyncio
import random
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime

from payaware.db.helpers import DatabaseError
from payaware.infrastructure.observability.logging import get_logger
from payaware.models.domain.notification_domain import (
    DeliveryRequest,
    DeliveryStatus,
    Notification,
    PushOutcome,
)
from payaware.repositories.notification_repository import NotificationRepository
from payaware.repositories.subscription_repository import SubscriptionRepository
from payaware.repositories.user_repository import UserRepository
from payaware.services.push_service import DEFAULT_TITLE, ExpoPushClient
from payaware.services.reminder_text import DEFAULT_CURRENCY, render_push_body

logger = get_logger(__name__)


class DeliveryService:
    def __init__(
        self,
        subscriptions: SubscriptionRepository,
        users: UserRepository,
        notifications: NotificationRepository,
        push_client: ExpoPushClient,
        jitter_max_s: float = 120,
        *,
        rng: random.Random | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        title: str = DEFAULT_TITLE,
        currency: str = DEFAULT_CURRENCY,
    ):
        self.subscriptions = subscriptions
        self.users = users
        self.notifications = notifications
        self.push_client = push_client
        self.jitter_max_s = jitter_max_s
        self.title = title
        self.currency = currency
        self._rng = rng or random.Random()
        self._sleep = sleep
        self._background: set[asyncio.Task] = set()

    def _jitter(self) -> float:
        if self.jitter_max_s <= 0:
            return 0.0
        return self._rng.uniform(0, self.jitter_max_s)

    async def deliver(self, request: DeliveryRequest) -> Notification | None:
        """
        Deliver one reminder.

        Returns the recorded Notification, or None when the request was
        dropped before reaching the push transport.
        """
        if not request.is_valid():
            logger.warning(
                "Invalid delivery request",
                user_id=request.user_id,
                subscription_id=request.subscription_id,
            )
            return None

        try:
            subscription = await self.subscriptions.get(request.subscription_id)
            if subscription is None:
                logger.warning("Subscription not found for delivery", subscription_id=request.subscription_id)
                return None

            user = await self.users.get(subscription.user_id)
        except DatabaseError as e:
            logger.error(
                "Failed to load delivery data",
                subscription_id=request.subscription_id,
                error=str(e),
            )
            return None

        if user is None:
            logger.warning("User not found for delivery", user_id=subscription.user_id)
            return None

        if subscription.user_id != request.user_id:
            logger.warning(
                "Delivery request owner differs from subscription owner",
                request_user_id=request.user_id,
                subscription_user_id=subscription.user_id,
            )

        if not user.has_device_token():
            logger.warning("Device token is missing for user", user_id=user.id)
            return None

        body = render_push_body(subscription, self.currency)

        jitter = self._jitter()
        logger.debug("Delaying push by jitter", subscription_id=subscription.id, jitter_s=round(jitter, 2))
        await self._sleep(jitter)

        outcome = await self.push_client.send(
            user.device_token, self.title, body, subscription.high_priority
        )
        self._handle_outcome(outcome, user.id, subscription.id)

        notification = Notification(
            user_id=user.id,
            subscription_id=subscription.id,
            message=body,
            sent_at=datetime.now(UTC),
            status=DeliveryStatus.SUCCESS if outcome.succeeded else DeliveryStatus.FAILED,
        )

        try:
            return await self.notifications.create(notification)
        except DatabaseError as e:
            logger.error(
                "Failed to record notification",
                user_id=user.id,
                subscription_id=subscription.id,
                error=str(e),
            )
            return notification

    def _handle_outcome(self, outcome: PushOutcome, user_id: int, subscription_id: int) -> None:
        if outcome.succeeded:
            logger.info("Push notification sent", user_id=user_id, subscription_id=subscription_id)
            return

        if outcome.device_token_invalid:
            logger.warning("Device token rejected, clearing", user_id=user_id)
            self._spawn(self._clear_device_token(user_id))
            return

        logger.error(
            "Push notification failed",
            user_id=user_id,
            subscription_id=subscription_id,
            outcome=outcome.kind.value,
            code=outcome.code,
            reason=outcome.reason,
        )

    def _spawn(self, coro: Awaitable[None]) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _clear_device_token(self, user_id: int) -> None:
        try:
            await self.users.clear_device_token(user_id)
        except DatabaseError as e:
            logger.error("Failed to clear device token", user_id=user_id, error=str(e))

    async def drain_background(self) -> None:
        """Wait for pending token clean-ups."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def close(self) -> None:
        for task in list(self._background):
            task.cancel()
        await self.drain_background()
