"""
Structured logging for the reminder pipeline.

All processes emit one JSON object per line. Values bound with
bind_component() (for example which worker job the process runs) are merged
into every entry written afterwards.
"""

import logging
import sys
from typing import Any

import structlog
from structlog.stdlib import LoggerFactory

SERVICE_NAME = "payaware"

_NOISY_LOGGERS = ("httpx", "httpcore", "aiokafka", "uvicorn.access")


def setup_logging(log_level: str = "INFO", json_output: bool = True) -> None:
    """
    Configure structlog on top of stdlib logging.

    Args:
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        json_output: False renders human-readable lines for local runs
    """
    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer(colors=False)
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            _add_service,
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO),
    )

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def _add_service(logger, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def bind_component(component: str) -> None:
    """Tag every following log entry of this context with a pipeline component."""
    structlog.contextvars.bind_contextvars(component=component)


def get_logger(name: str = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def log_health_check(service: str, healthy: bool, latency_ms: float, error: str = None):
    """One entry per dependency probed by /readyz."""
    fields = {"dependency": service, "healthy": healthy, "latency_ms": latency_ms}
    if error:
        fields["error"] = error

    logger = get_logger("health")
    if healthy:
        logger.info("Dependency healthy", **fields)
    else:
        logger.error("Dependency unhealthy", **fields)
