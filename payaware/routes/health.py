# payaware/routes/health.py
"""
Health check endpoints covering stores and pipeline tasks.
"""

import time

from fastapi import APIRouter, Request

from payaware.infrastructure.observability.logging import log_health_check

router = APIRouter()


@router.get("/healthz")
async def healthz():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "ok", "service": "payaware"}


@router.get("/readyz")
async def readyz(request: Request):
    """
    Readiness check: Redis, database, scan loop and consumer.

    Always answers 200; `overall_ok` carries the verdict.
    """
    container = getattr(request.app.state, "container", None)
    if container is None:
        return {"overall_ok": False, "checks": {}, "error": "services not initialized"}

    checks = {}
    overall_ok = True

    t0 = time.time()
    redis_health = await container.redis.health_check()
    latency_ms = round((time.time() - t0) * 1000, 1)
    checks["redis"] = {"ok": redis_health.get("healthy", False), "latency_ms": latency_ms}
    if not checks["redis"]["ok"]:
        checks["redis"]["error"] = redis_health.get("error")
    log_health_check("redis", checks["redis"]["ok"], latency_ms, redis_health.get("error"))
    overall_ok = overall_ok and checks["redis"]["ok"]

    t0 = time.time()
    db_health = await container.db_pool.health_check()
    latency_ms = round((time.time() - t0) * 1000, 1)
    checks["database"] = {"ok": db_health.get("healthy", False), "latency_ms": latency_ms}
    if "pool_stats" in db_health:
        checks["database"].update(db_health["pool_stats"])
    if not checks["database"]["ok"]:
        checks["database"]["error"] = db_health.get("error", "Database unhealthy")
    log_health_check("database", checks["database"]["ok"], latency_ms, db_health.get("error"))
    overall_ok = overall_ok and checks["database"]["ok"]

    if container.scan_job is not None:
        scan_health = container.scan_job.health_check()
        checks["reminder_scan"] = {"ok": scan_health["healthy"], **scan_health}
        overall_ok = overall_ok and scan_health["healthy"]

    if container.consumer is not None:
        consumer_status = container.consumer.get_status()
        consumer_ok = consumer_status["state"] in ("idle", "running", "reconnecting")
        checks["reminder_consumer"] = {"ok": consumer_ok, **consumer_status}
        overall_ok = overall_ok and consumer_ok

    return {"overall_ok": overall_ok, "checks": checks, "pipeline": container.pipeline_status()}
