from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import backoff

from payaware.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


async def retry_with_fixed_delay(
    operation: Callable[[], Awaitable[T]],
    *,
    name: str,
    attempts: int,
    delay_s: float,
    exceptions: tuple[type[BaseException], ...] = (Exception,),
) -> T:
    """
    Run an async operation up to `attempts` times with a constant pause.

    The last exception is re-raised once every attempt has failed.
    """

    def _on_backoff(details: dict[str, Any]) -> None:
        logger.warning(
            "Attempt failed, retrying",
            operation=name,
            attempt=details["tries"],
            max_attempts=attempts,
            wait_s=details.get("wait"),
            error=str(details.get("exception")),
        )

    def _on_giveup(details: dict[str, Any]) -> None:
        logger.error(
            "All attempts failed",
            operation=name,
            attempts=details["tries"],
            error=str(details.get("exception")),
        )

    retrying = backoff.on_exception(
        backoff.constant,
        exceptions,
        max_tries=attempts,
        interval=delay_s,
        jitter=None,
        on_backoff=_on_backoff,
        on_giveup=_on_giveup,
    )(operation)

    return await retrying()
