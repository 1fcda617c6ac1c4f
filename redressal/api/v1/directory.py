"""Read-only views of the office hierarchy and escalation rules."""

from __future__ import annotations

from fastapi import APIRouter, Query, Request

from redressal.models.authority import Authority, EscalationRule

router = APIRouter(prefix="/directory", tags=["directory"])


@router.get("/authorities", response_model=list[Authority])
async def list_authorities(
    request: Request,
    department_id: str | None = Query(default=None),
) -> list[Authority]:
    authorities = request.app.state.directory.all()
    if department_id:
        authorities = [a for a in authorities if a.department_id == department_id]
    return sorted(authorities, key=lambda a: (a.department_id, a.level, a.id))


@router.get("/authorities/{authority_id}/chain", response_model=list[Authority])
async def escalation_chain(authority_id: str, request: Request) -> list[Authority]:
    """The office followed by every office above it."""
    return request.app.state.directory.chain_from(authority_id)


@router.get("/authorities/{authority_id}/peers", response_model=list[Authority])
async def forwarding_targets(authority_id: str, request: Request) -> list[Authority]:
    return request.app.state.directory.peers(authority_id)


@router.get("/rules", response_model=list[EscalationRule])
async def list_rules(request: Request) -> list[EscalationRule]:
    return sorted(request.app.state.resolver.all(), key=lambda r: r.id)
