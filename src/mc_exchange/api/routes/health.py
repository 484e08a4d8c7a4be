"""Health check route handlers.

``GET /api/health``
    Dependency check: database (``SELECT 1``), Redis (``PING``) and Celery
    workers.  Always returns HTTP 200; ``status`` is ``"ok"`` or
    ``"degraded"``.

``GET /api/health/ready``
    Readiness probe: 200 when the database answers, 503 otherwise.  Redis
    is optional.

``GET /api/health/live``
    Liveness probe with no I/O.

These endpoints are exempt from the global rate limit and must never raise
HTTP 5xx errors of their own.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import UTC, datetime

import sqlalchemy as sa
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from mc_exchange.api.limiter import limiter
from mc_exchange.config.settings import get_settings
from mc_exchange.core.cache_service import get_cache
from mc_exchange.core.database import AsyncSessionLocal

logger = logging.getLogger(__name__)

router = APIRouter(tags=["system"])

_STARTED_AT = time.monotonic()
_VERSION = "1.0.0"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _check_database() -> str:
    """Run ``SELECT 1`` against the configured database."""
    try:
        async with AsyncSessionLocal() as session:
            await session.execute(sa.text("SELECT 1"))
        return "ok"
    except Exception:
        logger.exception("Health check: database unreachable")
        return "error"


async def _check_redis() -> str:
    """Ping Redis through the shared cache client."""
    cache = get_cache()
    if not cache.enabled:
        return "disabled"
    return "ok" if await cache.ping() else "error"


async def _check_celery_workers() -> str:
    """Check if any Celery workers are responding.

    ``"no_workers"`` is a soft failure: the API keeps serving requests,
    only the periodic jobs stop.
    """
    try:
        from mc_exchange.workers.celery_app import celery_app  # noqa: PLC0415

        loop = asyncio.get_running_loop()
        inspect = celery_app.control.inspect(timeout=2.0)
        ping_result = await loop.run_in_executor(None, inspect.ping)
        if ping_result:
            return "ok"
        return "no_workers"
    except Exception:
        logger.exception("Health check: Celery inspect failed")
        return "error"


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.get("/api/health")
@limiter.exempt
async def system_health(request: Request) -> JSONResponse:
    """Return database, Redis and Celery status.

    Returns:
        JSON with keys ``success``, ``status``, ``version``, ``environment``,
        ``database``, ``redis``, ``celery`` and ``timestamp``.
    """
    db_status, redis_status, celery_status = await asyncio.gather(
        _check_database(),
        _check_redis(),
        _check_celery_workers(),
    )
    overall = "ok" if (db_status, redis_status, celery_status) == ("ok", "ok", "ok") else "degraded"

    payload = {
        "success": True,
        "status": overall,
        "version": _VERSION,
        "environment": get_settings().environment,
        "database": db_status,
        "redis": redis_status,
        "celery": celery_status,
        "timestamp": datetime.now(UTC).isoformat(),
    }
    logger.info("system_health_check", extra={"health": payload})
    return JSONResponse(payload)


@router.get("/api/health/ready")
@limiter.exempt
async def readiness(request: Request) -> JSONResponse:
    started = time.perf_counter()
    db_status, redis_status = await asyncio.gather(_check_database(), _check_redis())
    ready = db_status == "ok"
    payload = {
        "success": ready,
        "status": "ready" if ready else "unhealthy",
        "uptime": round(time.monotonic() - _STARTED_AT, 1),
        "responseTime": round((time.perf_counter() - started) * 1000, 2),
        "services": {
            "database": {"status": "healthy" if ready else "unhealthy"},
            "redis": {
                "status": "healthy" if redis_status == "ok" else "unavailable",
                "required": False,
            },
        },
        "timestamp": datetime.now(UTC).isoformat(),
    }
    return JSONResponse(payload, status_code=200 if ready else 503)


@router.get("/api/health/live")
@limiter.exempt
async def liveness(request: Request) -> JSONResponse:
    return JSONResponse({"status": "alive", "timestamp": datetime.now(UTC).isoformat()})
