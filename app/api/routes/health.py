"""
Health Endpoints

Liveness, readiness and an integrations report. Only the database can make
the service unready: Redis, Claude and Google Calendar all have fallbacks
(in-process locks, rule-based extraction, a calendar sync warning).
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from app.config import settings
from app.infra.calendar_sync import get_calendar_sync
from app.infra.claude import ClaudeClient
from app.infra.database import check_db_health
from app.infra.redis import check_redis_health

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["Health"])

_started_at: Optional[datetime] = None


def set_start_time() -> None:
    """Record process start; called from the lifespan hook."""
    global _started_at
    _started_at = datetime.now(timezone.utc)


def _uptime() -> Optional[float]:
    if _started_at is None:
        return None
    return round((datetime.now(timezone.utc) - _started_at).total_seconds(), 1)


class HealthResponse(BaseModel):
    status: str
    timestamp: datetime
    environment: str
    uptime_seconds: Optional[float] = None


class ReadyResponse(BaseModel):
    status: str
    timestamp: datetime
    checks: dict[str, str]


class IntegrationsResponse(BaseModel):
    """Which collaborators are live and which fallback is in use."""
    orchestration_mode: str
    default_time_zone: str
    llm: str
    calendar: str
    locks: str


async def _run_check(name: str, check, down: str) -> str:
    try:
        return "ok" if await check() else down
    except Exception as e:
        logger.error(f"{name} health check raised: {e}")
        return down


@router.get("", response_model=HealthResponse, summary="Process is up")
async def health() -> HealthResponse:
    """Always 200 while the process runs; dependencies are not checked."""
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(timezone.utc),
        environment=settings.app_env,
        uptime_seconds=_uptime(),
    )


@router.get("/live", response_model=HealthResponse, summary="Liveness check")
async def live() -> HealthResponse:
    return HealthResponse(
        status="alive",
        timestamp=datetime.now(timezone.utc),
        environment=settings.app_env,
        uptime_seconds=_uptime(),
    )


@router.get(
    "/ready",
    response_model=ReadyResponse,
    summary="Readiness check",
    responses={503: {"description": "The database is unavailable"}},
)
async def ready():
    """
    200 when the database answers. Redis down reports "degraded" since
    booking and session locks fall back to asyncio locks in this process.
    """
    checks = {
        "database": await _run_check("Database", check_db_health, "failed"),
        "redis": await _run_check("Redis", check_redis_health, "degraded"),
    }
    is_ready = checks["database"] == "ok"
    if not is_ready:
        logger.warning("Readiness: database unavailable")

    body = ReadyResponse(
        status="ready" if is_ready else "not_ready",
        timestamp=datetime.now(timezone.utc),
        checks=checks,
    )
    if not is_ready:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=body.model_dump(mode="json"),
        )
    return body


@router.get("/integrations", response_model=IntegrationsResponse, summary="Fallback report")
async def integrations() -> IntegrationsResponse:
    """No secrets, only whether each integration is configured."""
    redis_ok = await _run_check("Redis", check_redis_health, "degraded") == "ok"
    return IntegrationsResponse(
        orchestration_mode=settings.orchestration_mode,
        default_time_zone=settings.default_time_zone,
        llm="claude" if ClaudeClient.is_configured() else "rule-based",
        calendar="google" if get_calendar_sync().is_configured() else "disabled",
        locks="redis" if redis_ok else "in-process",
    )
