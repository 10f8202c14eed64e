"""
Persistence for delivery attempts and the per-user notification history.
"""

from payaware.db.helpers import fetch_all, fetch_one
from payaware.db.pool import DatabasePoolManager
from payaware.infrastructure.observability.logging import get_logger
from payaware.models.domain.notification_domain import Notification
from payaware.repositories.subscription_repository import RepositoryError

logger = get_logger(__name__)

DEFAULT_HISTORY_LIMIT = 20


class NotificationRepository:
    SELECT_COLUMNS = "id, user_id, subscription_id, message, sent_at, status, read_at"

    def __init__(self, pool: DatabasePoolManager):
        self._pool = pool

    @staticmethod
    def _row_to_notification(row: dict) -> Notification:
        return Notification(
            id=row["id"],
            user_id=row["user_id"],
            subscription_id=row["subscription_id"],
            message=row["message"],
            sent_at=row["sent_at"],
            status=row["status"],
            read_at=row.get("read_at"),
        )

    async def create(self, notification: Notification) -> Notification:
        """Record one delivery attempt and return it with its id."""
        query = f"""
            INSERT INTO notifications (user_id, subscription_id, message, sent_at, status)
            VALUES (%s, %s, %s, %s, %s)
            RETURNING {self.SELECT_COLUMNS}
        """
        params = (
            notification.user_id,
            notification.subscription_id,
            notification.message,
            notification.sent_at,
            notification.status.value,
        )

        row = await fetch_one(self._pool, query, params)
        if not row:
            raise RepositoryError("Failed to record notification", operation="create_notification")

        return self._row_to_notification(row)

    async def list_for_user(
        self, user_id: int, limit: int = DEFAULT_HISTORY_LIMIT, offset: int = 0
    ) -> list[Notification]:
        """Newest-first notification history page."""
        if limit <= 0:
            raise ValueError("limit must be positive")
        if offset < 0:
            raise ValueError("offset cannot be negative")

        query = f"""
            SELECT {self.SELECT_COLUMNS}
            FROM notifications
            WHERE user_id = %s
            ORDER BY sent_at DESC
            LIMIT %s OFFSET %s
        """
        rows = await fetch_all(self._pool, query, (user_id, limit, offset))
        return [self._row_to_notification(row) for row in rows]

    async def mark_read(self, notification_id: int, user_id: int) -> Notification | None:
        """
        Set read_at on a notification owned by user_id.

        Returns None when the notification does not exist or belongs to
        someone else.
        """
        query = f"""
            UPDATE notifications
            SET read_at = NOW()
            WHERE id = %s AND user_id = %s
            RETURNING {self.SELECT_COLUMNS}
        """
        row = await fetch_one(self._pool, query, (notification_id, user_id))
        if not row:
            logger.warning(
                "Notification not found for user", notification_id=notification_id, user_id=user_id
            )
            return None

        return self._row_to_notification(row)
