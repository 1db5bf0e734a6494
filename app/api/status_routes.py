"""
Status API routes - Health checks for the identity service dependencies.

Public endpoints (no auth). /v1/status is cached for 10 seconds to prevent abuse.
"""

import asyncio
import time
from datetime import UTC, datetime
from enum import Enum

import httpx
from fastapi import APIRouter
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy import text
from structlog import get_logger

from app.config import settings
from app.db.session import get_session
from app.models.api import HealthResponse

logger = get_logger(__name__)
router = APIRouter(tags=["status"])

# Timeout for health checks
CHECK_TIMEOUT = 5.0  # seconds
DEGRADED_LATENCY_THRESHOLD = 1000  # ms

# Rate limiting: cache last result for 10 seconds
_status_cache: dict[str, tuple[datetime, "ServiceStatusResponse"]] = {}
_CACHE_TTL_SECONDS = 10


class StatusLevel(str, Enum):
    """Status levels for health checks."""

    OPERATIONAL = "operational"
    DEGRADED = "degraded"
    OUTAGE = "outage"


class ProviderStatus(BaseModel):
    """Status of a single dependency."""

    status: StatusLevel
    latency_ms: int | None = None
    last_check: str = Field(..., description="ISO 8601 timestamp")
    message: str | None = None


class ServiceStatusResponse(BaseModel):
    """Response for /v1/status endpoint."""

    service: str
    status: StatusLevel
    timestamp: str = Field(..., description="ISO 8601 timestamp")
    version: str
    providers: dict[str, ProviderStatus]


def _level_for_latency(latency_ms: int) -> StatusLevel:
    return StatusLevel.DEGRADED if latency_ms > DEGRADED_LATENCY_THRESHOLD else StatusLevel.OPERATIONAL


async def check_postgresql() -> ProviderStatus:
    """Check PostgreSQL connectivity."""
    start = time.perf_counter()
    timestamp = datetime.now(UTC).isoformat()

    try:
        async with get_session() as db:
            await asyncio.wait_for(db.execute(text("SELECT 1")), timeout=CHECK_TIMEOUT)
        latency_ms = int((time.perf_counter() - start) * 1000)
        status = _level_for_latency(latency_ms)
        return ProviderStatus(
            status=status,
            latency_ms=latency_ms,
            last_check=timestamp,
            message="High latency" if status == StatusLevel.DEGRADED else None,
        )
    except Exception as e:
        logger.warning("postgresql_health_check_failed", error=str(e))
        return ProviderStatus(
            status=StatusLevel.OUTAGE,
            latency_ms=None,
            last_check=timestamp,
            message="Connection failed",
        )


async def check_notification_gateway() -> ProviderStatus:
    """Check the notification webhook is reachable (any HTTP answer counts)."""
    start = time.perf_counter()
    timestamp = datetime.now(UTC).isoformat()

    if not settings.notification_webhook_url:
        return ProviderStatus(
            status=StatusLevel.OPERATIONAL,
            latency_ms=0,
            last_check=timestamp,
            message="Not configured",
        )

    try:
        async with httpx.AsyncClient(timeout=CHECK_TIMEOUT) as client:
            response = await client.head(settings.notification_webhook_url)
        latency_ms = int((time.perf_counter() - start) * 1000)

        if response.status_code >= 500:
            return ProviderStatus(
                status=StatusLevel.DEGRADED,
                latency_ms=latency_ms,
                last_check=timestamp,
                message=f"Unexpected status: {response.status_code}",
            )
        status = _level_for_latency(latency_ms)
        return ProviderStatus(
            status=status,
            latency_ms=latency_ms,
            last_check=timestamp,
            message="High latency" if status == StatusLevel.DEGRADED else None,
        )
    except httpx.TimeoutException:
        return ProviderStatus(
            status=StatusLevel.OUTAGE,
            latency_ms=int(CHECK_TIMEOUT * 1000),
            last_check=timestamp,
            message="Timeout",
        )
    except httpx.HTTPError as e:
        logger.warning("notification_gateway_health_check_failed", error=str(e))
        return ProviderStatus(
            status=StatusLevel.OUTAGE,
            latency_ms=None,
            last_check=timestamp,
            message="Connection failed",
        )


def calculate_overall_status(providers: dict[str, ProviderStatus]) -> StatusLevel:
    """Calculate overall service status from provider statuses."""
    statuses = [p.status for p in providers.values()]

    if StatusLevel.OUTAGE in statuses:
        return StatusLevel.OUTAGE
    if StatusLevel.DEGRADED in statuses:
        return StatusLevel.DEGRADED
    return StatusLevel.OPERATIONAL


@router.get("/health", response_model=HealthResponse)
async def health() -> JSONResponse:
    """Liveness plus a database ping. 503 when the database is unreachable."""
    postgres = await check_postgresql()
    healthy = postgres.status != StatusLevel.OUTAGE
    body = HealthResponse(
        status="healthy" if healthy else "unhealthy",
        database="connected" if healthy else "disconnected",
        timestamp=datetime.now(UTC).isoformat(),
    )
    return JSONResponse(status_code=200 if healthy else 503, content=body.model_dump())


@router.get("/v1/status", response_model=ServiceStatusResponse)
async def get_status() -> ServiceStatusResponse:
    """
    Get identity service status.

    Checks connectivity to all dependencies concurrently.
    Rate limited via 10-second cache.
    """
    cache_key = "status"
    now = datetime.now(UTC)

    if cache_key in _status_cache:
        cached_time, cached_response = _status_cache[cache_key]
        age_seconds = (now - cached_time).total_seconds()
        if age_seconds < _CACHE_TTL_SECONDS:
            logger.debug("status_cache_hit", age_seconds=age_seconds)
            return cached_response

    postgresql_status, gateway_status = await asyncio.gather(
        check_postgresql(), check_notification_gateway()
    )
    providers = {
        "postgresql": postgresql_status,
        "notification_gateway": gateway_status,
    }

    response = ServiceStatusResponse(
        service=settings.service_name,
        status=calculate_overall_status(providers),
        timestamp=now.isoformat(),
        version=settings.api_version,
        providers=providers,
    )

    _status_cache[cache_key] = (now, response)
    return response
