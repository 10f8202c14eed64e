from payaware.db.helpers import execute_query, fetch_one
from payaware.db.pool import DatabasePoolManager
from payaware.infrastructure.observability.logging import get_logger
from payaware.models.domain.user_domain import User

logger = get_logger(__name__)


class UserRepository:
    """User lookups and the device-token reset used after a dead token."""

    def __init__(self, pool: DatabasePoolManager):
        self._pool = pool

    async def get(self, user_id: int) -> User | None:
        query = """
            SELECT id, name, email, device_token
            FROM users
            WHERE id = %s AND deleted_at IS NULL
        """
        row = await fetch_one(self._pool, query, (user_id,))
        if not row:
            return None

        return User(
            id=row["id"],
            name=row.get("name") or "",
            email=row.get("email") or "",
            device_token=row.get("device_token"),
        )

    async def clear_device_token(self, user_id: int) -> bool:
        """Drop the stored push token; safe to repeat."""
        query = """
            UPDATE users
            SET device_token = NULL,
                updated_at = NOW()
            WHERE id = %s AND device_token IS NOT NULL
        """
        affected = await execute_query(self._pool, query, (user_id,))
        logger.info("Device token cleared", user_id=user_id, changed=affected > 0)
        return affected > 0
