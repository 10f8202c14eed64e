"""
Persistence layer for subscriptions.

The notification_date column is written from the model's derived property on
every insert/update so the scan query can use its index; it is never read
back into the model.
"""

from datetime import UTC, datetime

from payaware.db.helpers import DatabaseError, execute_query, execute_transaction, fetch_all, fetch_one
from payaware.db.pool import DatabasePoolManager
from payaware.infrastructure.observability.logging import get_logger
from payaware.models.domain.subscription_domain import Subscription
from payaware.services.recurrence import validate_subscription

logger = get_logger(__name__)


class RepositoryError(DatabaseError):
    """More specific exception for repository failures."""


class SubscriptionRepository:
    """Subscription reads and writes used by the reminder pipeline."""

    SELECT_COLUMNS = """
        id, user_id, service_name, cost, next_payment_date,
        notification_offset, recurrence_type, tag, high_priority
    """

    def __init__(self, pool: DatabasePoolManager):
        self._pool = pool

    @staticmethod
    def _row_to_subscription(row: dict | None) -> Subscription | None:
        if not row:
            return None

        return Subscription(
            id=row["id"],
            user_id=row["user_id"],
            service_name=row["service_name"],
            cost=float(row["cost"]),
            next_payment_date=row["next_payment_date"],
            notification_offset=row.get("notification_offset") or 0,
            recurrence_type=row.get("recurrence_type"),
            tag=row.get("tag"),
            high_priority=bool(row.get("high_priority")),
        )

    async def find_due(self, now: datetime, until: datetime) -> list[Subscription]:
        """
        Subscriptions whose reminder is at or before `until` and whose payment
        is still at or after `now`.
        """
        query = f"""
            SELECT {self.SELECT_COLUMNS}
            FROM subscriptions
            WHERE notification_date <= %s
              AND next_payment_date >= %s
              AND deleted_at IS NULL
            ORDER BY notification_date
        """

        rows = await fetch_all(self._pool, query, (until, now))
        return [self._row_to_subscription(row) for row in rows]

    async def get(self, subscription_id: int) -> Subscription | None:
        query = f"""
            SELECT {self.SELECT_COLUMNS}
            FROM subscriptions
            WHERE id = %s AND deleted_at IS NULL
        """
        row = await fetch_one(self._pool, query, (subscription_id,))
        return self._row_to_subscription(row)

    async def save(self, subscription: Subscription) -> None:
        """Persist billing fields and the recomputed notification date."""
        query = """
            UPDATE subscriptions
            SET service_name = %s,
                cost = %s,
                next_payment_date = %s,
                notification_offset = %s,
                notification_date = %s,
                recurrence_type = %s,
                tag = %s,
                high_priority = %s,
                updated_at = NOW()
            WHERE id = %s AND deleted_at IS NULL
        """
        params = (
            subscription.service_name,
            subscription.cost,
            subscription.next_payment_date,
            subscription.notification_offset,
            subscription.notification_date,
            subscription.recurrence_type.value,
            subscription.tag,
            subscription.high_priority,
            subscription.id,
        )

        affected = await execute_query(self._pool, query, params)
        if affected == 0:
            raise RepositoryError(
                f"Subscription {subscription.id} not found", operation="save", recoverable=False
            )

        logger.debug(
            "Subscription saved",
            subscription_id=subscription.id,
            next_payment_date=subscription.next_payment_date.isoformat(),
        )

    async def advance_payment(
        self,
        subscription_id: int,
        old_next_payment: datetime,
        new_next_payment: datetime,
        new_notification_date: datetime,
    ) -> bool:
        """
        Move a subscription to its next billing cycle.

        Only the two date columns are written, and only while the row still
        holds `old_next_payment`. Returns False when the row was edited or
        deleted since it was read; the caller leaves it alone then.
        """
        query = """
            UPDATE subscriptions
            SET next_payment_date = %s,
                notification_date = %s,
                updated_at = NOW()
            WHERE id = %s
              AND next_payment_date = %s
              AND deleted_at IS NULL
        """
        params = (new_next_payment, new_notification_date, subscription_id, old_next_payment)

        affected = await execute_query(self._pool, query, params)
        if affected == 0:
            logger.info(
                "Subscription changed since it was read, advance skipped",
                subscription_id=subscription_id,
            )
            return False

        logger.debug(
            "Subscription advanced",
            subscription_id=subscription_id,
            next_payment_date=new_next_payment.isoformat(),
        )
        return True

    async def create(self, subscription: Subscription) -> Subscription:
        """Insert a new subscription after checking creation invariants."""
        validate_subscription(subscription, datetime.now(UTC), is_new=True)

        query = f"""
            INSERT INTO subscriptions (
                user_id, service_name, cost, next_payment_date, notification_offset,
                notification_date, recurrence_type, tag, high_priority
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING {self.SELECT_COLUMNS}
        """
        params = (
            subscription.user_id,
            subscription.service_name,
            subscription.cost,
            subscription.next_payment_date,
            subscription.notification_offset,
            subscription.notification_date,
            subscription.recurrence_type.value,
            subscription.tag,
            subscription.high_priority,
        )

        row = await fetch_one(self._pool, query, params)
        if not row:
            raise RepositoryError("Failed to create subscription", operation="create")

        created = self._row_to_subscription(row)
        logger.info("Subscription created", subscription_id=created.id, user_id=created.user_id)
        return created

    async def delete(self, subscription_id: int) -> None:
        """Delete a subscription together with its notification history."""
        await execute_transaction(
            self._pool,
            [
                ("DELETE FROM notifications WHERE subscription_id = %s", (subscription_id,)),
                ("DELETE FROM subscriptions WHERE id = %s", (subscription_id,)),
            ],
        )
        logger.info("Subscription deleted", subscription_id=subscription_id)
