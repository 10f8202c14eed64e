# payaware/db/pool.py
"""
PostgreSQL connection pool for the reminder pipeline.

The process entrypoint owns one manager and hands it to each repository.
Connections come back with dict rows, autocommit on and the session pinned to
UTC so timestamps compare the same way in SQL and in Python.
"""

import asyncio
import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import psycopg
from psycopg import sql
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from payaware.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

CLOSE_TIMEOUT_SECONDS = 30.0
STATEMENT_TIMEOUT = "60s"


class DatabasePoolManager:
    def __init__(self, conninfo: str, pool_config: dict[str, Any], app_name: str = "payaware"):
        self.conninfo = conninfo
        self.pool_config = dict(pool_config)
        self.app_name = app_name
        self.pool: AsyncConnectionPool | None = None
        self._ready = False
        self._closed = False

    @property
    def initialized(self) -> bool:
        return self._ready and not self._closed

    async def initialize(self) -> None:
        """
        Open the pool and run one probe query.

        Raises:
            RuntimeError: if the pool cannot be opened or the probe fails
        """
        if self._ready:
            return
        if self._closed:
            raise RuntimeError("Cannot reopen a closed database pool")

        logger.info("Opening database pool", **self.pool_config)
        pool = AsyncConnectionPool(
            conninfo=self.conninfo,
            open=False,
            check=AsyncConnectionPool.check_connection,
            configure=self._configure_connection,
            **self.pool_config,
        )

        try:
            await pool.open(wait=True)
            self.pool = pool
            self._ready = True
            await self._probe()
        except Exception as e:
            self._ready = False
            self.pool = None
            logger.error("Database pool failed to open", error=str(e), error_type=type(e).__name__)
            await pool.close()
            raise RuntimeError(f"Database pool initialization failed: {e}") from e

        logger.info("Database pool ready")

    async def _configure_connection(self, conn: psycopg.AsyncConnection) -> None:
        conn.row_factory = dict_row
        await conn.set_autocommit(True)
        await conn.execute(sql.SQL("SET application_name = {}").format(sql.Literal(self.app_name)))
        await conn.execute("SET timezone = 'UTC'")
        await conn.execute(
            sql.SQL("SET statement_timeout = {}").format(sql.Literal(STATEMENT_TIMEOUT))
        )

    async def _probe(self) -> None:
        async with self.connection() as conn:
            cursor = await conn.execute("SELECT 1 AS ok")
            row = await cursor.fetchone()
        if not row or row["ok"] != 1:
            raise RuntimeError("Database probe returned an unexpected row")

    async def close(self) -> None:
        if not self._ready or self._closed:
            return

        try:
            await asyncio.wait_for(self.pool.close(), timeout=CLOSE_TIMEOUT_SECONDS)
            logger.info("Database pool closed")
        except TimeoutError:
            logger.warning("Database pool close timed out", timeout_s=CLOSE_TIMEOUT_SECONDS)
        finally:
            self._ready = False
            self._closed = True

    @asynccontextmanager
    async def connection(self) -> AsyncGenerator[psycopg.AsyncConnection, None]:
        """Borrow a connection; raises RuntimeError before initialize() or after close()."""
        if not self.initialized:
            raise RuntimeError("Database pool is not open")

        async with self.pool.connection() as conn:
            yield conn

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator[psycopg.AsyncConnection, None]:
        """Borrow a connection inside a transaction: commit on exit, rollback on error."""
        async with self.connection() as conn:
            async with conn.transaction():
                yield conn

    async def health_check(self) -> dict[str, Any]:
        if not self.initialized:
            return {"healthy": False, "error": "Pool not initialized", "service": "database_pool"}

        started = time.perf_counter()
        try:
            await self._probe()
        except (psycopg.Error, RuntimeError) as e:
            logger.error("Database health probe failed", error=str(e))
            return {
                "healthy": False,
                "service": "database_pool",
                "error": str(e),
                "error_type": type(e).__name__,
            }

        stats = self.pool.get_stats()
        size = stats.get("pool_size", 0)
        available = stats.get("pool_available", 0)

        return {
            "healthy": True,
            "service": "database_pool",
            "connection_time_ms": round((time.perf_counter() - started) * 1000, 2),
            "pool_stats": {
                "pool_size": size,
                "pool_available": available,
                "pool_utilization_percent": round((size - available) / size * 100, 2) if size else 0,
                "requests_waiting": stats.get("requests_waiting", 0),
            },
        }
