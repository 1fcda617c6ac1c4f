"""Administrative reports over the committed grievance records.

Office ratings
--------------
``excellent``  resolution rate > 80 %, escalation rate < 10 % and fewer
               than 20 % of the office's grievances past their SLA
``poor``       resolution rate < 50 %, escalation rate > 30 % or more
               than 50 % past their SLA
``good``       everything else, including offices with no grievances
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable
from datetime import datetime
from enum import StrEnum
from typing import Final

from pydantic import BaseModel

from redressal.models.enums import GrievanceStatus
from redressal.models.grievance import Grievance
from redressal.services import deadlines
from redressal.services.deadlines import DeadlinePolicy
from redressal.services.directory import AuthorityDirectory

_S = GrievanceStatus

RESOLVED_STATUSES: Final[frozenset[GrievanceStatus]] = frozenset({_S.CLOSED_ACCEPTED, _S.CLOSED_AUTO})
PENDING_STATUSES: Final[frozenset[GrievanceStatus]] = frozenset(
    {_S.SUBMITTED, _S.UNDER_REVIEW, _S.INFO_REQUESTED}
)
ESCALATED_STATUSES: Final[frozenset[GrievanceStatus]] = frozenset({_S.ESCALATED, _S.AUTHORITY_ESCALATED})


class PerformanceRating(StrEnum):
    __slots__ = ()

    EXCELLENT = "excellent"
    GOOD = "good"
    POOR = "poor"


class OfficePerformance(BaseModel):
    authority_id: str
    authority_name: str
    department_id: str
    level: int
    total: int
    resolved: int
    pending: int
    escalated: int
    sla_breached: int
    resolution_rate: float
    escalation_rate: float
    mean_open_age_days: float
    rating: PerformanceRating


class OverviewStats(BaseModel):
    total: int
    resolved: int
    pending: int
    escalated: int
    sla_breached: int
    citizen_overdue: int
    authority_response_overdue: int
    resolution_rate: float
    escalation_rate: float
    by_status: dict[str, int]
    by_department: dict[str, int]


def _rate(part: int, whole: int) -> float:
    return round(part / whole, 4) if whole else 0.0


def rate_office(total: int, resolved: int, escalated: int, sla_breached: int) -> PerformanceRating:
    if total == 0:
        return PerformanceRating.GOOD
    resolution = resolved / total
    escalation = escalated / total
    if resolution > 0.8 and escalation < 0.1 and sla_breached < total * 0.2:
        return PerformanceRating.EXCELLENT
    if resolution < 0.5 or escalation > 0.3 or sla_breached > total * 0.5:
        return PerformanceRating.POOR
    return PerformanceRating.GOOD


def office_performance(
    grievances: Iterable[Grievance],
    directory: AuthorityDirectory,
    now: datetime,
) -> list[OfficePerformance]:
    """One row per office, counting the grievances the office currently holds."""
    by_office: dict[str, list[Grievance]] = {}
    for grievance in grievances:
        by_office.setdefault(grievance.authority_id, []).append(grievance)

    rows = []
    for authority in sorted(directory.all(), key=lambda a: (a.department_id, a.level, a.id)):
        held = by_office.get(authority.id, [])
        total = len(held)
        resolved = sum(1 for g in held if g.status in RESOLVED_STATUSES)
        pending = sum(1 for g in held if g.status in PENDING_STATUSES)
        escalated = sum(1 for g in held if g.status in ESCALATED_STATUSES)
        breached = sum(1 for g in held if deadlines.is_sla_breached(g, now))
        open_ages = [(now - g.created_at).total_seconds() / 86400 for g in held if not g.is_terminal]

        rows.append(
            OfficePerformance(
                authority_id=authority.id,
                authority_name=authority.name,
                department_id=authority.department_id,
                level=authority.level,
                total=total,
                resolved=resolved,
                pending=pending,
                escalated=escalated,
                sla_breached=breached,
                resolution_rate=_rate(resolved, total),
                escalation_rate=_rate(escalated, total),
                mean_open_age_days=round(sum(open_ages) / len(open_ages), 2) if open_ages else 0.0,
                rating=rate_office(total, resolved, escalated, breached),
            )
        )
    return rows


def overview(
    grievances: Iterable[Grievance],
    now: datetime,
    policy: DeadlinePolicy = DeadlinePolicy(),
) -> OverviewStats:
    records = list(grievances)
    total = len(records)
    resolved = sum(1 for g in records if g.status in RESOLVED_STATUSES)
    escalated = sum(1 for g in records if g.status in ESCALATED_STATUSES)
    return OverviewStats(
        total=total,
        resolved=resolved,
        pending=sum(1 for g in records if g.status in PENDING_STATUSES),
        escalated=escalated,
        sla_breached=sum(1 for g in records if deadlines.is_sla_breached(g, now)),
        citizen_overdue=sum(1 for g in records if deadlines.is_citizen_response_deadline_breached(g, now)),
        authority_response_overdue=sum(
            1 for g in records if deadlines.is_authority_response_deadline_breached(g, now, policy)
        ),
        resolution_rate=_rate(resolved, total),
        escalation_rate=_rate(escalated, total),
        by_status=dict(Counter(str(g.status) for g in records)),
        by_department=dict(Counter(g.department_id for g in records)),
    )
