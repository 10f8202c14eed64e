# payaware/db/helpers.py
"""
Query helpers shared by the repositories.

Every helper borrows a connection from the pool it is given and turns driver
failures into DatabaseError, so the pipeline only ever catches one type.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import psycopg

from payaware.db.pool import DatabasePoolManager
from payaware.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

Statement = tuple[str, tuple]


class DatabaseError(Exception):
    """A query could not be completed."""

    def __init__(self, message: str, operation: str = "unknown", recoverable: bool = True):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


@contextmanager
def _driver_errors(operation: str, query: str | None = None) -> Iterator[None]:
    try:
        yield
    except psycopg.Error as e:
        logger.error(
            "Database operation failed",
            operation=operation,
            query=query[:100] if query else None,
            error=str(e),
            error_type=type(e).__name__,
        )
        raise DatabaseError(f"{operation} failed: {e}", operation=operation) from e


async def fetch_one(
    pool: DatabasePoolManager, query: str, params: tuple = ()
) -> dict[str, Any] | None:
    """First row of the result as a dict, or None."""
    with _driver_errors("fetch_one", query):
        async with pool.connection() as conn:
            cursor = await conn.execute(query, params)
            return await cursor.fetchone()


async def fetch_all(pool: DatabasePoolManager, query: str, params: tuple = ()) -> list[dict[str, Any]]:
    with _driver_errors("fetch_all", query):
        async with pool.connection() as conn:
            cursor = await conn.execute(query, params)
            return await cursor.fetchall()


async def execute_query(pool: DatabasePoolManager, query: str, params: tuple = ()) -> int:
    """Run a write and return the affected row count."""
    with _driver_errors("execute", query):
        async with pool.connection() as conn:
            cursor = await conn.execute(query, params)
            return cursor.rowcount


async def execute_transaction(pool: DatabasePoolManager, statements: list[Statement]) -> None:
    """
    Run several writes atomically; nothing is applied if one fails.

    Example:
        await execute_transaction(pool, [
            ("DELETE FROM notifications WHERE subscription_id = %s", (sub_id,)),
            ("DELETE FROM subscriptions WHERE id = %s", (sub_id,)),
        ])
    """
    with _driver_errors("transaction"):
        async with pool.transaction() as conn:
            for query, params in statements:
                await conn.execute(query, params)

    logger.debug("Transaction committed", statement_count=len(statements))
