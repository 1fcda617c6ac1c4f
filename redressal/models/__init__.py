from redressal.models.authority import Authority, EscalationRule, Jurisdiction
from redressal.models.enums import (
    ARCHIVABLE_STATUSES,
    TERMINAL_STATUSES,
    ActorRole,
    GrievanceEventType,
    GrievanceStatus,
)
from redressal.models.grievance import (
    ActionRequest,
    Actor,
    FilingRequest,
    Grievance,
    GrievanceEvent,
    Privacy,
)

__all__ = [
    "ARCHIVABLE_STATUSES",
    "ActionRequest",
    "Actor",
    "ActorRole",
    "Authority",
    "EscalationRule",
    "FilingRequest",
    "Grievance",
    "GrievanceEvent",
    "GrievanceEventType",
    "GrievanceStatus",
    "Jurisdiction",
    "Privacy",
    "TERMINAL_STATUSES",
]
