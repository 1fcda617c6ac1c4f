"""Grievance lifecycle endpoints.

Endpoints
---------
- ``POST /api/v1/grievances``                      -- File a grievance.
- ``GET  /api/v1/grievances``                      -- List by citizen or office.
- ``GET  /api/v1/grievances/{id}``                 -- Fetch one grievance.
- ``GET  /api/v1/grievances/{id}/deadlines``       -- Deadline windows.
- ``POST /api/v1/grievances/{id}/{action}``        -- Apply a transition.

The acting role and identity travel in the request body and are trusted
as authenticated upstream.  Engine failures are turned into HTTP errors
by the application's exception handler.
"""

from __future__ import annotations

from dataclasses import asdict
from datetime import UTC, datetime

import structlog
from fastapi import APIRouter, HTTPException, Query, Request
from pydantic import BaseModel

from redressal.models.grievance import ActionRequest, FilingRequest, Grievance
from redressal.services.escalation_scheduler import EscalationScheduler
from redressal.services.grievance_service import GrievanceService
from redressal.services.transitions import Transition

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

router = APIRouter(prefix="/grievances", tags=["grievances"])


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class DeadlineResponse(BaseModel):
    grievance_id: str
    status: str
    evaluated_at: datetime
    sla_breached: bool
    authority_response_breached: bool
    citizen_response_breached: bool
    citizen_auto_close_breached: bool
    days_until_sla_breach: int | None = None
    days_until_authority_response_deadline: int | None = None
    days_until_citizen_response_deadline: int | None = None
    days_until_citizen_auto_close: int | None = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _get_service(request: Request) -> GrievanceService:
    service = getattr(request.app.state, "grievance_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Grievance service not initialised.")
    return service


def _get_scheduler(request: Request) -> EscalationScheduler | None:
    return getattr(request.app.state, "escalation_scheduler", None)


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.post("", response_model=Grievance, status_code=201)
async def file_grievance(body: FilingRequest, request: Request) -> Grievance:
    """Submit a grievance.

    Leave ``category`` or ``department_id`` empty to have the
    categorization assistant choose them.
    """
    grievance = await _get_service(request).file_grievance(body)
    logger.info("api.grievance.filed", grievance_id=grievance.id, authority_id=grievance.authority_id)
    return grievance


@router.get("", response_model=list[Grievance])
async def list_grievances(
    request: Request,
    citizen_id: str | None = Query(default=None),
    authority_id: str | None = Query(default=None),
    include_closed: bool = Query(default=False),
) -> list[Grievance]:
    """A citizen's grievances, or an office's queue."""
    service = _get_service(request)
    if citizen_id:
        return service.list_for_citizen(citizen_id)
    if authority_id:
        return service.list_for_authority(authority_id, include_closed=include_closed)
    raise HTTPException(status_code=422, detail="Provide citizen_id or authority_id.")


@router.get("/{grievance_id}", response_model=Grievance)
async def get_grievance(
    grievance_id: str,
    request: Request,
    refresh: bool = Query(default=False, description="Run the deadline check before returning"),
) -> Grievance:
    scheduler = _get_scheduler(request)
    if refresh and scheduler is not None:
        return await scheduler.check(grievance_id)
    return _get_service(request).get(grievance_id)


@router.get("/{grievance_id}/deadlines", response_model=DeadlineResponse)
async def get_deadlines(grievance_id: str, request: Request) -> DeadlineResponse:
    service = _get_service(request)
    now = datetime.now(UTC)
    grievance = service.get(grievance_id)
    summary = service.deadlines(grievance_id, now)
    return DeadlineResponse(
        grievance_id=grievance.id,
        status=str(grievance.status),
        evaluated_at=now,
        **asdict(summary),
    )


@router.post("/{grievance_id}/{action}", response_model=Grievance)
async def apply_action(
    grievance_id: str,
    action: Transition,
    body: ActionRequest,
    request: Request,
) -> Grievance:
    """Apply *action* (``acknowledge``, ``resolve``, ``forward``, ...)."""
    grievance = await _get_service(request).apply_transition(action, grievance_id, body)
    logger.info(
        "api.grievance.transition",
        grievance_id=grievance_id,
        action=str(action),
        status=str(grievance.status),
    )
    return grievance
