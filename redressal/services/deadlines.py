"""Deadline Evaluator -- pure functions over a grievance's time windows.

Every window is anchored at ``status_since``, the moment the grievance
entered its current status.  Comparisons use ``>=``: a grievance sitting
exactly on a deadline counts as breached.

Windows
-------
SLA
    ``grievance.sla_days`` while the office holds the case.
Authority response
    ``DeadlinePolicy.authority_response_days`` while the case waits for the
    office to act (SUBMITTED / UNDER_REVIEW).
Citizen response
    ``grievance.citizen_response_days`` while the case waits for the
    citizen (INFO_REQUESTED / RESOLVED_PENDING_CONFIRM).  A breach only
    raises an overdue warning.
Citizen auto-close
    Citizen response window plus ``citizen_auto_close_grace_days``; after
    this the system closes the case.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Final

from redressal.models.enums import GrievanceStatus
from redressal.models.grievance import Grievance

_DAY: Final[timedelta] = timedelta(days=1)

DEFAULT_AUTHORITY_RESPONSE_DAYS: Final[int] = 3
DEFAULT_CITIZEN_AUTO_CLOSE_GRACE_DAYS: Final[int] = 7

SLA_STATUSES: Final[frozenset[GrievanceStatus]] = frozenset(
    {
        GrievanceStatus.SUBMITTED,
        GrievanceStatus.UNDER_REVIEW,
        GrievanceStatus.ESCALATED,
        GrievanceStatus.AUTHORITY_ESCALATED,
    }
)
AUTHORITY_RESPONSE_STATUSES: Final[frozenset[GrievanceStatus]] = frozenset(
    {GrievanceStatus.SUBMITTED, GrievanceStatus.UNDER_REVIEW}
)
CITIZEN_RESPONSE_STATUSES: Final[frozenset[GrievanceStatus]] = frozenset(
    {GrievanceStatus.INFO_REQUESTED, GrievanceStatus.RESOLVED_PENDING_CONFIRM}
)


@dataclass(slots=True, frozen=True)
class DeadlinePolicy:
    """Fixed windows that do not come from an escalation rule."""

    authority_response_days: int = DEFAULT_AUTHORITY_RESPONSE_DAYS
    citizen_auto_close_grace_days: int = DEFAULT_CITIZEN_AUTO_CLOSE_GRACE_DAYS

    def __post_init__(self) -> None:
        if self.authority_response_days <= 0:
            raise ValueError("authority_response_days must be positive")
        # The overdue warning and the auto-close must never coincide.
        if self.citizen_auto_close_grace_days <= 0:
            raise ValueError("citizen_auto_close_grace_days must be positive")

    def citizen_auto_close_days(self, citizen_response_days: int) -> int:
        return citizen_response_days + self.citizen_auto_close_grace_days


# ---------------------------------------------------------------------------
# Window arithmetic
# ---------------------------------------------------------------------------


def deadline(status_since: datetime, window_days: int) -> datetime:
    return status_since + window_days * _DAY


def is_breached(status_since: datetime, window_days: int, now: datetime) -> bool:
    return now >= deadline(status_since, window_days)


def days_remaining(status_since: datetime, window_days: int, now: datetime) -> int:
    """Whole days left before the window closes, rounded up.

    Zero or negative once the window has been breached.
    """
    return math.ceil((deadline(status_since, window_days) - now) / _DAY)


# ---------------------------------------------------------------------------
# Grievance-level predicates
# ---------------------------------------------------------------------------


def is_sla_breached(grievance: Grievance, now: datetime) -> bool:
    if grievance.status not in SLA_STATUSES:
        return False
    return is_breached(grievance.status_since, grievance.sla_days, now)


def is_authority_response_deadline_breached(
    grievance: Grievance,
    now: datetime,
    policy: DeadlinePolicy = DeadlinePolicy(),
) -> bool:
    if grievance.status not in AUTHORITY_RESPONSE_STATUSES:
        return False
    return is_breached(grievance.status_since, policy.authority_response_days, now)


def is_citizen_response_deadline_breached(grievance: Grievance, now: datetime) -> bool:
    if grievance.status not in CITIZEN_RESPONSE_STATUSES:
        return False
    return is_breached(grievance.status_since, grievance.citizen_response_days, now)


def is_citizen_auto_close_deadline_breached(
    grievance: Grievance,
    now: datetime,
    policy: DeadlinePolicy = DeadlinePolicy(),
) -> bool:
    if grievance.status not in CITIZEN_RESPONSE_STATUSES:
        return False
    window = policy.citizen_auto_close_days(grievance.citizen_response_days)
    return is_breached(grievance.status_since, window, now)


def days_until_sla_breach(grievance: Grievance, now: datetime) -> int | None:
    if grievance.status not in SLA_STATUSES:
        return None
    return days_remaining(grievance.status_since, grievance.sla_days, now)


def days_until_authority_response_deadline(
    grievance: Grievance,
    now: datetime,
    policy: DeadlinePolicy = DeadlinePolicy(),
) -> int | None:
    if grievance.status not in AUTHORITY_RESPONSE_STATUSES:
        return None
    return days_remaining(grievance.status_since, policy.authority_response_days, now)


def days_until_citizen_response_deadline(grievance: Grievance, now: datetime) -> int | None:
    if grievance.status not in CITIZEN_RESPONSE_STATUSES:
        return None
    return days_remaining(grievance.status_since, grievance.citizen_response_days, now)


def days_until_citizen_auto_close(
    grievance: Grievance,
    now: datetime,
    policy: DeadlinePolicy = DeadlinePolicy(),
) -> int | None:
    if grievance.status not in CITIZEN_RESPONSE_STATUSES:
        return None
    window = policy.citizen_auto_close_days(grievance.citizen_response_days)
    return days_remaining(grievance.status_since, window, now)


@dataclass(slots=True, frozen=True)
class DeadlineSummary:
    """Every window's state for one grievance at one instant."""

    sla_breached: bool
    authority_response_breached: bool
    citizen_response_breached: bool
    citizen_auto_close_breached: bool
    days_until_sla_breach: int | None
    days_until_authority_response_deadline: int | None
    days_until_citizen_response_deadline: int | None
    days_until_citizen_auto_close: int | None


def deadline_summary(
    grievance: Grievance,
    now: datetime,
    policy: DeadlinePolicy = DeadlinePolicy(),
) -> DeadlineSummary:
    return DeadlineSummary(
        sla_breached=is_sla_breached(grievance, now),
        authority_response_breached=is_authority_response_deadline_breached(grievance, now, policy),
        citizen_response_breached=is_citizen_response_deadline_breached(grievance, now),
        citizen_auto_close_breached=is_citizen_auto_close_deadline_breached(grievance, now, policy),
        days_until_sla_breach=days_until_sla_breach(grievance, now),
        days_until_authority_response_deadline=days_until_authority_response_deadline(grievance, now, policy),
        days_until_citizen_response_deadline=days_until_citizen_response_deadline(grievance, now),
        days_until_citizen_auto_close=days_until_citizen_auto_close(grievance, now, policy),
    )
