"""Health and readiness endpoints.

  /health (liveness): the process answers.  Always 200; ``status`` is
    "degraded" when a dependency check fails.
  /ready (readiness): can this instance serve traffic?  503 when the
    database is configured but unreachable, so the load balancer stops
    routing here without restarting the container.
"""

from __future__ import annotations

from fastapi import APIRouter, Response, status
from sqlalchemy import text

from enrollment_service.db.engine import engine
from enrollment_service.db.redis import redis_pool

router = APIRouter(tags=["health"])


async def _check_database() -> str:
    if engine is None:
        return "not_configured"
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception:
        return "degraded"
    return "ok"


async def _check_redis() -> str:
    if redis_pool is None:
        return "not_configured"
    try:
        await redis_pool.ping()  # type: ignore[misc]
    except Exception:
        return "degraded"
    return "ok"


@router.get("/health")
async def health() -> dict:
    checks = {
        "database": await _check_database(),
        "redis": await _check_redis(),
    }
    overall = "degraded" if "degraded" in checks.values() else "ok"
    return {"status": overall, "checks": checks}


@router.get("/ready")
async def ready(response: Response) -> dict:
    database = await _check_database()
    if database == "degraded":
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return {"ready": False, "database": database}
    return {"ready": True, "database": database}
