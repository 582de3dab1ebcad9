"""
Health Endpoints

The database is required for every calendar operation; Redis only backs
the slot cache, notifications and the reminder outbox, all of which
degrade without it. Readiness reports 503 only when the database is down.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from app.config import settings
from app.infra.database import check_db_health
from app.infra.redis import check_redis_health

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["Health"])

_start_time: Optional[datetime] = None


def set_start_time() -> None:
    """Called once on startup."""
    global _start_time
    _start_time = datetime.now(timezone.utc)


def get_uptime_seconds() -> Optional[float]:
    if _start_time is None:
        return None
    return (datetime.now(timezone.utc) - _start_time).total_seconds()


class HealthResponse(BaseModel):
    status: str
    version: str
    environment: str
    default_timezone: str
    uptime_seconds: Optional[float] = None


class ReadyResponse(BaseModel):
    """Dependency checks and the calendar features they enable."""

    status: str
    timestamp: datetime
    checks: dict[str, str]
    features: dict[str, bool]


@router.get(
    "",
    response_model=HealthResponse,
    summary="Service health",
    description="Returns 200 while the process runs. Does not check dependencies.",
)
async def health(request: Request) -> HealthResponse:
    return HealthResponse(
        status="healthy",
        version=request.app.version,
        environment=settings.app_env,
        default_timezone=settings.default_timezone,
        uptime_seconds=get_uptime_seconds(),
    )


@router.get(
    "/ready",
    response_model=ReadyResponse,
    summary="Readiness",
    description=(
        "503 if the database is unreachable. A Redis outage reports 'degraded' "
        "with 200: slots are served uncached and reminders wait in the database."
    ),
    responses={503: {"description": "Database unavailable"}},
)
async def ready() -> ReadyResponse:
    db_ok = await check_db_health()
    redis_ok = await check_redis_health()

    if not db_ok:
        logger.warning("Readiness check: database unreachable")
        state = "not_ready"
    elif not redis_ok:
        logger.warning("Readiness check: Redis unreachable, running without cache and notifications")
        state = "degraded"
    else:
        state = "ready"

    response = ReadyResponse(
        status=state,
        timestamp=datetime.now(timezone.utc),
        checks={
            "database": "ok" if db_ok else "failed",
            "redis": "ok" if redis_ok else "failed",
        },
        features={
            "availability_cache": redis_ok,
            "notifications": redis_ok,
            "reminder_outbox": redis_ok,
        },
    )

    if not db_ok:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=response.model_dump(mode="json"),
        )
    return response


@router.get("/live", summary="Liveness")
async def live() -> dict:
    return {"status": "alive", "uptime_seconds": get_uptime_seconds()}
