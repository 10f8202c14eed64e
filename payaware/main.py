"""
HTTP process: health endpoints plus the reminder pipeline in the background.

If the consumer gives up after its reconnect attempts, the app keeps serving
and /readyz reports the degraded consumer.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI

from payaware.config import get_settings
from payaware.infrastructure.observability.logging import bind_component, get_logger, setup_logging
from payaware.routes import health
from payaware.services.container import ServiceContainer

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle application startup and shutdown with proper resource management."""
    settings = get_settings()
    setup_logging(log_level=settings.LOG_LEVEL, json_output=not settings.debug)
    bind_component("api")
    logger.info("Application starting", environment=settings.environment, debug=settings.debug)

    container = ServiceContainer(settings)
    await container.initialize()
    container.start_scheduler()
    container.start_consumer()
    app.state.container = container

    yield

    logger.info("Application shutting down")
    await container.close()


app = FastAPI(
    title="PayAware Reminders",
    description="Subscription payment reminder pipeline",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(health.router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
