"""Operator endpoints: deadline sweeps and reports.

All endpoints require the ``X-Admin-API-Key`` header.

Endpoints
---------
- ``POST /api/v1/admin/sweep``              -- Run a deadline sweep now.
- ``GET  /api/v1/admin/sweep/status``       -- Last sweep and loop state.
- ``GET  /api/v1/admin/reports/offices``    -- Per-office performance.
- ``GET  /api/v1/admin/reports/overview``   -- System-wide counts.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel

from redressal.middleware.auth import require_admin_api_key
from redressal.services import reports
from redressal.services.escalation_scheduler import EscalationScheduler
from redressal.services.grievance_service import GrievanceService
from redressal.services.reports import OfficePerformance, OverviewStats

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

router = APIRouter(
    prefix="/admin",
    tags=["admin"],
    dependencies=[Depends(require_admin_api_key)],
)


class SweepResponse(BaseModel):
    status: str
    report: dict[str, Any]


class SweepStatusResponse(BaseModel):
    scheduler_running: bool
    pending_writes: int
    last_sweep: dict[str, Any] | None = None


def _get_scheduler(request: Request) -> EscalationScheduler:
    scheduler = getattr(request.app.state, "escalation_scheduler", None)
    if scheduler is None:
        raise HTTPException(status_code=503, detail="Escalation scheduler not initialised.")
    return scheduler


def _get_service(request: Request) -> GrievanceService:
    service = getattr(request.app.state, "grievance_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Grievance service not initialised.")
    return service


@router.post("/sweep", response_model=SweepResponse)
async def trigger_sweep(request: Request) -> SweepResponse:
    """Evaluate every open grievance and fire due system transitions."""
    report = await _get_scheduler(request).run_sweep_now()
    status = "completed" if not report.failures else "completed_with_failures"
    return SweepResponse(status=status, report=report.to_dict())


@router.get("/sweep/status", response_model=SweepStatusResponse)
async def sweep_status(request: Request) -> SweepStatusResponse:
    scheduler = _get_scheduler(request)
    last = scheduler.last_sweep
    return SweepStatusResponse(
        scheduler_running=scheduler.is_running,
        pending_writes=_get_service(request).store.pending_count,
        last_sweep=last.to_dict() if last is not None else None,
    )


@router.get("/reports/offices", response_model=list[OfficePerformance])
async def office_report(request: Request) -> list[OfficePerformance]:
    service = _get_service(request)
    directory = request.app.state.directory
    return reports.office_performance(service.store.all(), directory, datetime.now(UTC))


@router.get("/reports/overview", response_model=OverviewStats)
async def overview_report(request: Request) -> OverviewStats:
    service = _get_service(request)
    return reports.overview(service.store.all(), datetime.now(UTC), service.engine.policy)
