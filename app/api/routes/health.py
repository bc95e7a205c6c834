"""
Health Check Endpoints

Liveness and readiness checks for the chat booking service.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from app.config import settings
from app.infra.database import check_db_health
from app.infra.redis import check_redis_health

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["Health"])

APP_VERSION = "1.0.0"

# Track application start time for uptime calculation
_start_time: Optional[datetime] = None


def set_start_time() -> None:
    """Set application start time. Called once on startup."""
    global _start_time
    _start_time = datetime.now(timezone.utc)


def get_uptime_seconds() -> Optional[float]:
    """Get application uptime in seconds."""
    if _start_time is None:
        return None
    return (datetime.now(timezone.utc) - _start_time).total_seconds()


class HealthResponse(BaseModel):
    """Basic health check response."""
    status: str
    timestamp: datetime
    version: str
    environment: str
    whatsapp_configured: bool


class ReadyResponse(BaseModel):
    """Readiness check response with dependency status."""
    status: str
    timestamp: datetime
    checks: dict[str, str]


class LiveResponse(BaseModel):
    """Liveness check response."""
    status: str
    timestamp: datetime
    uptime_seconds: Optional[float] = None


@router.get(
    "",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
    summary="Basic health check",
)
async def health() -> HealthResponse:
    """Always returns 200 if the application is running."""
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(timezone.utc),
        version=APP_VERSION,
        environment=settings.app_env,
        whatsapp_configured=bool(settings.whatsapp_access_token),
    )


@router.get(
    "/ready",
    response_model=ReadyResponse,
    summary="Readiness check",
    responses={
        200: {"description": "Database is reachable"},
        503: {"description": "Database is unavailable"},
    },
)
async def ready() -> ReadyResponse:
    """
    Readiness check.

    The database is required. Redis is reported but optional: without it
    sender locks fall back to in-process locks ("degraded").
    """
    checks = {}

    try:
        db_ok = await check_db_health()
        checks["database"] = "ok" if db_ok else "failed"
        if not db_ok:
            logger.warning("Readiness check: Database unhealthy")
    except Exception as e:
        db_ok = False
        checks["database"] = "error"
        logger.error(f"Readiness check: Database error - {e}")

    try:
        redis_ok = await check_redis_health()
        checks["redis"] = "ok" if redis_ok else "degraded"
    except Exception as e:
        checks["redis"] = "degraded"
        logger.warning(f"Readiness check: Redis error - {e}")

    response = ReadyResponse(
        status="ready" if db_ok else "not_ready",
        timestamp=datetime.now(timezone.utc),
        checks=checks,
    )

    if not db_ok:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=response.model_dump(mode="json"),
        )

    return response


@router.get(
    "/live",
    response_model=LiveResponse,
    status_code=status.HTTP_200_OK,
    summary="Liveness check",
)
async def live() -> LiveResponse:
    """Returns 200 while the process is alive."""
    return LiveResponse(
        status="alive",
        timestamp=datetime.now(timezone.utc),
        uptime_seconds=get_uptime_seconds(),
    )
