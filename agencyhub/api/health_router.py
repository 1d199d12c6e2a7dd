"""
Health check endpoints for monitoring and orchestration.
"""

from typing import Any

import structlog
from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from sqlalchemy import text

from agencyhub.config import settings
from agencyhub.core.database import db_manager
from agencyhub.core.redis_client import redis_manager

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["Health"])


@router.get("/health/live")
async def liveness() -> dict:
    """Liveness probe: the process is up."""
    return {"status": "alive"}


@router.get("/health/ready")
async def readiness() -> JSONResponse:
    """
    Readiness probe.

    Checks:
    - Database connectivity (the key store)
    - Redis connectivity, when counters live there

    Returns:
        200: Ready to serve traffic
        503: Not ready (dependencies unavailable)
    """
    checks: dict[str, Any] = {}
    is_ready = True

    try:
        async with db_manager.session_factory() as db:
            await db.execute(text("SELECT 1"))
        checks["database"] = {"status": "healthy"}
    except Exception as e:
        logger.warning("readiness_database_unhealthy", error=str(e))
        checks["database"] = {"status": "unhealthy", "error": str(e)}
        is_ready = False

    if settings.rate_limit_backend == "redis":
        try:
            await redis_manager.client.ping()
            checks["redis"] = {"status": "healthy"}
        except Exception as e:
            logger.warning("readiness_redis_unhealthy", error=str(e))
            checks["redis"] = {"status": "unhealthy", "error": str(e)}
            is_ready = False

    status_code = status.HTTP_200_OK if is_ready else status.HTTP_503_SERVICE_UNAVAILABLE

    return JSONResponse(
        status_code=status_code,
        content={
            "status": "ready" if is_ready else "not_ready",
            "checks": checks,
        }
    )
