"""
Reminder dedup markers and subscription-list cache invalidation.

A marker `reminder:subscription:<id>` means "this billing cycle's reminder is
already on the topic". It lives until the cycle's payment moment, which is
always before the next cycle's scan window can open.
"""

import math
from datetime import datetime

from payaware.infrastructure.observability.logging import get_logger
from payaware.models.domain.subscription_domain import Subscription, subscription_list_cache_key
from payaware.services.redis_client import FastRedisClient, RedisOperationError

logger = get_logger(__name__)

MARKER_VALUE = "queued"
MIN_MARKER_TTL_SECONDS = 60
SUBSCRIPTION_LIST_CACHE_PATTERN = "subscriptions:user:*"


class DedupStoreError(Exception):
    """Dedup store could not answer; the caller must not publish."""

    def __init__(self, message: str, subscription_id: int | None = None):
        super().__init__(message)
        self.subscription_id = subscription_id


def marker_ttl_seconds(subscription: Subscription, now: datetime) -> int:
    """Seconds until the subscription's current payment date, floored."""
    remaining = (subscription.next_payment_date - now).total_seconds()
    if remaining <= 0:
        return MIN_MARKER_TTL_SECONDS
    return math.ceil(remaining)


class ReminderDedupStore:
    """Atomic claim/release of the per-cycle reminder marker."""

    def __init__(self, redis_client: FastRedisClient):
        self._redis = redis_client

    async def claim(self, subscription: Subscription, now: datetime) -> bool:
        """
        Try to mark this cycle as queued.

        Returns:
            True if this caller now owns the cycle, False if already claimed

        Raises:
            DedupStoreError: if the store could not be reached
        """
        ttl = marker_ttl_seconds(subscription, now)
        try:
            claimed = await self._redis.set_if_absent(subscription.dedup_key(), MARKER_VALUE, ttl)
        except RedisOperationError as e:
            raise DedupStoreError(str(e), subscription_id=subscription.id) from e

        if claimed:
            logger.debug("Reminder marker set", subscription_id=subscription.id, ttl_s=ttl)
        return claimed

    async def release(self, subscription: Subscription) -> bool:
        """Remove the marker after a failed publish so a later scan can retry."""
        released = await self._redis.delete(subscription.dedup_key())
        if not released:
            # The cycle stays marked until the TTL runs out
            logger.warning("Reminder marker release failed", subscription_id=subscription.id)
        return released


class SubscriptionListCache:
    """Invalidation of the API's cached per-user subscription lists."""

    def __init__(self, redis_client: FastRedisClient):
        self._redis = redis_client

    async def invalidate_user(self, user_id: int) -> bool:
        return await self._redis.delete(subscription_list_cache_key(user_id))

    async def clear_all(self) -> int:
        """Drop every cached subscription list."""
        deleted = await self._redis.delete_matching(SUBSCRIPTION_LIST_CACHE_PATTERN)
        logger.info("Subscription list caches cleared", deleted=deleted)
        return deleted
