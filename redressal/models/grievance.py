"""Grievance record, its audit history, and the payloads that drive it.

The grievance is a *current projection* (status, owning office,
escalation level) over an append-only history of :class:`GrievanceEvent`
entries.  Records are only ever changed through the transition engine.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from redressal.models.enums import (
    TERMINAL_STATUSES,
    ActorRole,
    GrievanceEventType,
    GrievanceStatus,
)


class Privacy(BaseModel):
    share_contact: bool = False
    anonymous: bool = False


class GrievanceEvent(BaseModel):
    """One immutable entry in a grievance's audit trail."""

    model_config = {"frozen": True}

    type: GrievanceEventType
    at: datetime
    by_role: ActorRole
    by_id: str | None = None
    note: str | None = None
    to_authority_id: str | None = None
    attachments: tuple[str, ...] = ()


class Grievance(BaseModel):
    """A citizen grievance under management."""

    id: str
    citizen_id: str
    category: str
    department_id: str

    authority_id: str
    escalation_level: int = Field(default=0, ge=0)

    subject: str
    description: str
    desired_outcome: str | None = None
    attachments: list[str] = Field(default_factory=list)
    privacy: Privacy = Field(default_factory=Privacy)

    created_at: datetime
    updated_at: datetime
    status_since: datetime
    sla_days: int = Field(..., gt=0)
    citizen_response_days: int = Field(..., gt=0)

    status: GrievanceStatus
    history: list[GrievanceEvent] = Field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def last_event(self) -> GrievanceEvent | None:
        return self.history[-1] if self.history else None


class Actor(BaseModel):
    """Who is performing an operation.

    ``authority_ids`` lists the offices the actor works at: a handler's
    single office, or every office an administrator manages.
    """

    model_config = {"frozen": True}

    role: ActorRole
    id: str | None = None
    authority_ids: frozenset[str] = frozenset()

    @classmethod
    def system(cls) -> Actor:
        return cls(role=ActorRole.SYSTEM, id="system")

    @classmethod
    def citizen(cls, citizen_id: str) -> Actor:
        return cls(role=ActorRole.CITIZEN, id=citizen_id)

    def works_at(self, authority_id: str) -> bool:
        return authority_id in self.authority_ids


class ActionRequest(BaseModel):
    """GrievanceEvent-shaped payload carried by every inbound operation."""

    by_role: ActorRole
    by_id: str | None = None
    authority_ids: list[str] = Field(default_factory=list)
    note: str | None = Field(default=None, max_length=5000)
    to_authority_id: str | None = None
    attachments: list[str] = Field(default_factory=list)

    @property
    def actor(self) -> Actor:
        return Actor(role=self.by_role, id=self.by_id, authority_ids=frozenset(self.authority_ids))

    @classmethod
    def for_actor(cls, actor: Actor, **kwargs: object) -> ActionRequest:
        return cls(
            by_role=actor.role,
            by_id=actor.id,
            authority_ids=sorted(actor.authority_ids),
            **kwargs,
        )


class FilingRequest(BaseModel):
    """A grievance in its DRAFT stage, before submission.

    ``category`` and ``department_id`` may be left empty to ask the
    categorization assistant for a suggestion.
    """

    citizen_id: str = Field(..., min_length=1)
    category: str = ""
    department_id: str = ""
    subject: str = Field(..., min_length=3, max_length=300)
    description: str = Field(..., min_length=10, max_length=5000)
    desired_outcome: str | None = Field(default=None, max_length=2000)
    attachments: list[str] = Field(default_factory=list)
    privacy: Privacy = Field(default_factory=Privacy)

    @property
    def needs_categorization(self) -> bool:
        return not self.category or not self.department_id

    @property
    def status(self) -> GrievanceStatus:
        return GrievanceStatus.DRAFT
