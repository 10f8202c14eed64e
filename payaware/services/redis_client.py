# payaware/services/redis_client.py
"""
Async Redis access for reminder markers and cached subscription lists.

Reads and best-effort deletes degrade to a falsy result when Redis is down;
the operations the dedup decision depends on raise RedisOperationError so the
caller can refuse to publish.
"""

import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool
from redis.exceptions import RedisError

from payaware.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

SOCKET_TIMEOUT_SECONDS = 5


class RedisOperationError(Exception):
    """Raised by operations whose callers must know the store was unreachable."""

    def __init__(self, message: str, operation: str = "unknown"):
        super().__init__(message)
        self.operation = operation


class FastRedisClient:
    """Pooled async Redis client shared by the dedup store and the list cache."""

    def __init__(self, redis_url: str, max_connections: int = 20):
        self.redis_url = redis_url
        self.max_connections = max_connections
        self.pool = None
        self.client = None
        self._initialized = False

    async def initialize(self):
        """
        Build the pool and ping once.

        Raises:
            RuntimeError: if Redis does not answer
        """
        if self._initialized:
            return

        self.pool = ConnectionPool.from_url(
            self.redis_url,
            max_connections=self.max_connections,
            retry_on_timeout=True,
            socket_connect_timeout=SOCKET_TIMEOUT_SECONDS,
            socket_timeout=SOCKET_TIMEOUT_SECONDS,
            health_check_interval=30,
            decode_responses=True,
        )
        self.client = redis.Redis(connection_pool=self.pool)

        try:
            await self.client.ping()
        except RedisError as e:
            logger.error("Redis unreachable", error=str(e), error_type=type(e).__name__)
            await self.close()
            raise RuntimeError("Redis initialization failed") from e

        self._initialized = True
        logger.info("Redis client ready", max_connections=self.max_connections)

    async def close(self):
        try:
            if self.client:
                await self.client.aclose()
            if self.pool:
                await self.pool.disconnect()
        except RedisError as e:
            logger.warning("Error closing Redis client", error=str(e))
        finally:
            self.client = None
            self.pool = None
            self._initialized = False


    async def _ensure_initialized(self):
        if not self._initialized:
            logger.warning("Redis not initialized, attempting to initialize")
            await self.initialize()

    async def ping(self) -> bool:
        """Test Redis connection"""
        try:
            await self._ensure_initialized()
            return bool(await self.client.ping())
        except Exception as e:
            logger.error("Redis ping failed", error=str(e))
            return False

    async def set_if_absent(self, key: str, value: str, ttl_s: int) -> bool:
        """
        SET key value NX EX ttl in one round trip.

        Returns True when this call created the key, False when it already
        existed.

        Raises:
            RedisOperationError: if Redis could not be reached
        """
        if ttl_s <= 0:
            raise ValueError("ttl_s must be positive")

        try:
            await self._ensure_initialized()
            result = await self.client.set(key, value, ex=ttl_s, nx=True)
            return bool(result)
        except Exception as e:
            logger.error("Redis SET NX failed", key=key[:40], error=str(e))
            raise RedisOperationError(f"SET NX failed: {e}", operation="set_if_absent") from e

    async def delete(self, key: str) -> bool:
        """Delete key - False on miss or failure"""
        try:
            await self._ensure_initialized()
            result = await self.client.delete(key)
            return result > 0
        except Exception as e:
            logger.error("Redis DELETE failed", key=key[:40], error=str(e))
            return False

    async def delete_matching(self, pattern: str, batch_size: int = 100) -> int:
        """
        Delete every key matching a glob pattern using SCAN, never KEYS.

        Raises:
            RedisOperationError: if Redis could not be reached
        """
        deleted = 0
        try:
            await self._ensure_initialized()
            batch: list[str] = []
            async for key in self.client.scan_iter(match=pattern, count=batch_size):
                batch.append(key)
                if len(batch) >= batch_size:
                    deleted += await self.client.delete(*batch)
                    batch = []
            if batch:
                deleted += await self.client.delete(*batch)
            return deleted
        except Exception as e:
            logger.error("Redis pattern delete failed", pattern=pattern, error=str(e))
            raise RedisOperationError(
                f"Pattern delete failed: {e}", operation="delete_matching"
            ) from e

    async def health_check(self) -> dict:
        """Ping plus a set/delete round trip."""
        try:
            if not await self.ping():
                return {"healthy": False, "error": "Redis ping failed", "service": "redis"}

            probe_key = "health_check:payaware"
            created = await self.set_if_absent(probe_key, "ok", 10)
            await self.delete(probe_key)
            return {"healthy": True, "ping": True, "set_nx": created, "service": "redis"}

        except Exception as e:
            logger.error("Redis health check failed", error=str(e))
            return {"healthy": False, "error": str(e), "service": "redis"}
