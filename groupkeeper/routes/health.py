"""
Health check endpoints for the ops API.
"""

import time

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from groupkeeper.config import settings
from groupkeeper.db.pool import db_health_check
from groupkeeper.services.infrastructure.redis_client import redis_client

router = APIRouter()


@router.get("/healthz")
async def healthz():
    """Basic health check - always returns 200 if the app is running."""
    return {"status": "ok", "service": "groupkeeper"}


@router.get("/readyz")
async def readyz():
    """Readiness: Redis queues and the database pool."""
    checks = {}
    overall_ok = True

    t0 = time.time()
    try:
        redis_ok = await redis_client.ping()
        checks["redis"] = {
            "ok": bool(redis_ok),
            "latency_ms": round((time.time() - t0) * 1000, 1),
        }
        overall_ok = overall_ok and bool(redis_ok)
    except Exception as e:
        checks["redis"] = {"ok": False, "error": f"{type(e).__name__}: {e}"}
        overall_ok = False

    t0 = time.time()
    try:
        db_health = await db_health_check()
        is_healthy = bool(db_health.get("healthy", False))
        checks["database"] = {
            "ok": is_healthy,
            "latency_ms": round((time.time() - t0) * 1000, 1),
        }
        if "pool_stats" in db_health:
            checks["database"].update(db_health["pool_stats"])
        if not is_healthy:
            checks["database"]["error"] = db_health.get("error", "Database unhealthy")
        overall_ok = overall_ok and is_healthy
    except Exception as e:
        checks["database"] = {"ok": False, "error": f"{type(e).__name__}: {e}"}
        overall_ok = False

    checks["configuration"] = {
        "ok": bool(settings.MESSAGING_CLIENT_FACTORY),
        "environment": settings.environment,
        "notifications_configured": bool(
            settings.TELEGRAM_BOT_TOKEN and settings.TELEGRAM_FAILURES_CHAT_ID
        ),
    }

    body = {"overall_ok": overall_ok, "checks": checks, "timestamp": time.time()}
    return JSONResponse(status_code=200 if overall_ok else 503, content=body)
