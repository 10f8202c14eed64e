"""
Generic background worker runner.

Reads the desired job name from CLI args or the WORKER_JOB environment
variable and runs it without the HTTP server.
"""

import asyncio
import os
import sys
from collections.abc import Awaitable, Callable

from payaware.config import get_settings
from payaware.infrastructure.observability.logging import bind_component, get_logger, setup_logging
from payaware.services.container import ServiceContainer

logger = get_logger(__name__)

JobCoroutine = Callable[[], Awaitable[None]]


async def run_reminder_scheduler() -> None:
    """Scan loop plus worker pool until the process is stopped."""
    container = ServiceContainer(get_settings())
    await container.initialize()
    try:
        container.start_scheduler()
        await container.wait()
    finally:
        await container.close()


async def run_reminder_consumer() -> None:
    """Delivery consumer until it stops or runs out of reconnect attempts."""
    container = ServiceContainer(get_settings())
    await container.initialize(with_producer=False)
    try:
        container.start_consumer()
        await container.wait()
    finally:
        await container.close()


async def run_clear_subscription_cache() -> None:
    """One-off removal of every cached subscription list."""
    container = ServiceContainer(get_settings())
    await container.initialize(with_producer=False)
    try:
        await container.list_cache.clear_all()
    finally:
        await container.close()


JOB_REGISTRY: dict[str, JobCoroutine] = {
    "reminder_scheduler": run_reminder_scheduler,
    "reminder_consumer": run_reminder_consumer,
    "clear_subscription_cache": run_clear_subscription_cache,
}


def _resolve_job_name() -> str:
    """Pick the target job from CLI args or WORKER_JOB env variable."""
    if len(sys.argv) > 1:
        return sys.argv[1].strip().lower()
    return os.getenv("WORKER_JOB", "reminder_scheduler").strip().lower()


async def run_worker(job_name: str | None = None) -> None:
    """Run the requested background job."""
    name = (job_name or _resolve_job_name()).strip().lower()
    if name not in JOB_REGISTRY:
        raise ValueError(
            f"Unknown worker job '{name}'. "
            f"Available jobs: {', '.join(sorted(JOB_REGISTRY.keys()))}"
        )

    bind_component(name)
    logger.info("Starting background worker", job=name)
    await JOB_REGISTRY[name]()


def main() -> None:
    """CLI entrypoint."""
    settings = get_settings()
    setup_logging(log_level=settings.LOG_LEVEL, json_output=not settings.debug)
    asyncio.run(run_worker(_resolve_job_name()))


if __name__ == "__main__":
    main()
