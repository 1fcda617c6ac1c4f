"""Health check endpoints.

Liveness and readiness probes for container deployments.  Readiness
checks the persistence backend and reports queued writes.
"""

from __future__ import annotations

import time

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import ORJSONResponse
from pydantic import BaseModel

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

router = APIRouter(prefix="/health", tags=["health"])


class HealthResponse(BaseModel):
    """Basic health check response."""

    status: str
    version: str
    uptime_seconds: float


class ReadinessResponse(BaseModel):
    """Readiness check response with individual component statuses."""

    status: str
    checks: dict[str, str]


@router.get("", response_model=HealthResponse)
async def health_check(request: Request) -> HealthResponse:
    """Liveness probe.  Does *not* check downstream dependencies."""
    start_time: float = getattr(request.app.state, "start_time", time.time())
    return HealthResponse(
        status="healthy",
        version=request.app.version,
        uptime_seconds=round(time.time() - start_time, 2),
    )


@router.get("/ready", response_model=ReadinessResponse)
async def readiness_check(request: Request) -> ReadinessResponse | ORJSONResponse:
    """Readiness probe.

    Returns 503 until the grievance service exists and the persistence
    backend answers.
    """
    checks: dict[str, str] = {}
    all_ok = True

    service = getattr(request.app.state, "grievance_service", None)
    if service is None:
        checks["grievance_service"] = "unavailable"
        all_ok = False
    else:
        checks["grievance_service"] = "ok"
        checks["pending_writes"] = str(service.store.pending_count)

    backend = getattr(request.app.state, "persistence", None)
    ping = getattr(backend, "ping", None)
    if ping is not None:
        if await ping():
            checks["persistence"] = "ok"
        else:
            checks["persistence"] = "unreachable"
            all_ok = False
    else:
        checks["persistence"] = "in_memory"

    status = "ready" if all_ok else "not_ready"
    if not all_ok:
        logger.warning("health.not_ready", checks=checks)
        return ORJSONResponse(status_code=503, content={"status": status, "checks": checks})
    return ReadinessResponse(status=status, checks=checks)
