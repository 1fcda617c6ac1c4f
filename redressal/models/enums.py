from __future__ import annotations

from enum import StrEnum
from typing import Final


class GrievanceStatus(StrEnum):
    __slots__ = ()

    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    UNDER_REVIEW = "UNDER_REVIEW"
    INFO_REQUESTED = "INFO_REQUESTED"
    RESOLVED_PENDING_CONFIRM = "RESOLVED_PENDING_CONFIRM"
    ESCALATED = "ESCALATED"
    AUTHORITY_ESCALATED = "AUTHORITY_ESCALATED"
    CLOSED_ACCEPTED = "CLOSED_ACCEPTED"
    CLOSED_AUTO = "CLOSED_AUTO"
    CLOSED_NO_RESPONSE = "CLOSED_NO_RESPONSE"
    WITHDRAWN = "WITHDRAWN"
    ARCHIVED = "ARCHIVED"


class GrievanceEventType(StrEnum):
    __slots__ = ()

    SUBMIT = "SUBMIT"
    ACK = "ACK"
    REQUEST_INFO = "REQUEST_INFO"
    INFO_PROVIDED = "INFO_PROVIDED"
    FORWARD = "FORWARD"
    ASSIGN = "ASSIGN"
    RESOLVE = "RESOLVE"
    DISPUTE = "DISPUTE"
    ACCEPT = "ACCEPT"
    ESCALATE = "ESCALATE"
    AUTHORITY_ESCALATE = "AUTHORITY_ESCALATE"
    AUTO_CLOSE = "AUTO_CLOSE"
    WITHDRAW = "WITHDRAW"
    ARCHIVE = "ARCHIVE"


class ActorRole(StrEnum):
    __slots__ = ()

    CITIZEN = "CITIZEN"
    AUTHORITY_HANDLER = "AUTHORITY_HANDLER"
    AUTHORITY_ADMIN = "AUTHORITY_ADMIN"
    SYSTEM = "SYSTEM"


TERMINAL_STATUSES: Final[frozenset[GrievanceStatus]] = frozenset(
    {
        GrievanceStatus.CLOSED_ACCEPTED,
        GrievanceStatus.CLOSED_AUTO,
        GrievanceStatus.CLOSED_NO_RESPONSE,
        GrievanceStatus.WITHDRAWN,
        GrievanceStatus.ARCHIVED,
    }
)

# Closed records that may still be archived by an administrator.
ARCHIVABLE_STATUSES: Final[frozenset[GrievanceStatus]] = TERMINAL_STATUSES - {GrievanceStatus.ARCHIVED}
