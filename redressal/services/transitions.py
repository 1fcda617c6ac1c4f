"""Transition Engine -- the grievance state machine.

Every operation takes the current record and returns a *new* record; the
input is never touched.  Checks run in a fixed order so callers always get
the most specific failure:

1. terminal record            -> :class:`TerminalStateViolation`
2. role / ownership           -> :class:`Unauthorized`
3. current status             -> :class:`InvalidTransition`
4. operation preconditions    -> :class:`InvalidTransition`,
   :class:`NoFurtherEscalation`, :class:`RecordNotFound`

Authorization is table driven: ``_CATALOGUE`` lists, per transition, the
statuses it may start from and the roles that may request it, and
``_authorize`` applies the office partition between handlers and admins.
Adding a role means touching those two places only.

The engine does no I/O.  Persistence and notification happen in
:mod:`redressal.services.grievance_service` after a transition commits.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import Final
from uuid import uuid4

import structlog

from redressal.errors import (
    GrievanceEngineError,
    InvalidTransition,
    TerminalStateViolation,
    Unauthorized,
)
from redressal.models.enums import (
    ARCHIVABLE_STATUSES,
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
)
from redressal.services import deadlines
from redressal.services.deadlines import DeadlinePolicy
from redressal.services.directory import AuthorityDirectory
from redressal.services.rules import EscalationRuleResolver

logger = structlog.get_logger(__name__)


class Transition(StrEnum):
    __slots__ = ()

    ACKNOWLEDGE = "acknowledge"
    REQUEST_INFO = "request_info"
    PROVIDE_INFO = "provide_info"
    RESOLVE = "resolve"
    ACCEPT = "accept"
    DISPUTE = "dispute"
    FORWARD = "forward"
    ASSIGN = "assign"
    ESCALATE = "escalate"
    AUTHORITY_ESCALATE = "authority_escalate"
    AUTO_CLOSE = "auto_close"
    WITHDRAW = "withdraw"
    ARCHIVE = "archive"


# Transitions the escalation scheduler may fire on its own.
SYSTEM_TRANSITIONS: Final[frozenset[Transition]] = frozenset(
    {Transition.ESCALATE, Transition.AUTHORITY_ESCALATE, Transition.AUTO_CLOSE}
)


@dataclass(slots=True, frozen=True)
class _CatalogueEntry:
    event: GrievanceEventType
    allowed_from: frozenset[GrievanceStatus]
    roles: frozenset[ActorRole]


_S = GrievanceStatus
_R = ActorRole

_OFFICE_ACTIVE: Final[frozenset[GrievanceStatus]] = frozenset(
    {_S.SUBMITTED, _S.UNDER_REVIEW, _S.ESCALATED, _S.AUTHORITY_ESCALATED}
)
_OPEN: Final[frozenset[GrievanceStatus]] = frozenset(
    {
        _S.SUBMITTED,
        _S.UNDER_REVIEW,
        _S.INFO_REQUESTED,
        _S.RESOLVED_PENDING_CONFIRM,
        _S.ESCALATED,
        _S.AUTHORITY_ESCALATED,
    }
)
_OFFICE_ROLES: Final[frozenset[ActorRole]] = frozenset({_R.AUTHORITY_HANDLER, _R.AUTHORITY_ADMIN})

_CATALOGUE: Final[dict[Transition, _CatalogueEntry]] = {
    Transition.ACKNOWLEDGE: _CatalogueEntry(
        GrievanceEventType.ACK, frozenset({_S.SUBMITTED}), frozenset({_R.AUTHORITY_HANDLER})
    ),
    Transition.REQUEST_INFO: _CatalogueEntry(GrievanceEventType.REQUEST_INFO, _OFFICE_ACTIVE, _OFFICE_ROLES),
    Transition.PROVIDE_INFO: _CatalogueEntry(
        GrievanceEventType.INFO_PROVIDED, frozenset({_S.INFO_REQUESTED}), frozenset({_R.CITIZEN})
    ),
    Transition.RESOLVE: _CatalogueEntry(GrievanceEventType.RESOLVE, _OFFICE_ACTIVE, _OFFICE_ROLES),
    Transition.ACCEPT: _CatalogueEntry(
        GrievanceEventType.ACCEPT, frozenset({_S.RESOLVED_PENDING_CONFIRM}), frozenset({_R.CITIZEN})
    ),
    Transition.DISPUTE: _CatalogueEntry(
        GrievanceEventType.DISPUTE, frozenset({_S.RESOLVED_PENDING_CONFIRM}), frozenset({_R.CITIZEN})
    ),
    Transition.FORWARD: _CatalogueEntry(GrievanceEventType.FORWARD, _OPEN, _OFFICE_ROLES),
    Transition.ASSIGN: _CatalogueEntry(
        GrievanceEventType.ASSIGN, frozenset({_S.AUTHORITY_ESCALATED}), frozenset({_R.AUTHORITY_ADMIN})
    ),
    Transition.ESCALATE: _CatalogueEntry(
        GrievanceEventType.ESCALATE, deadlines.SLA_STATUSES, _OFFICE_ROLES | {_R.SYSTEM}
    ),
    Transition.AUTHORITY_ESCALATE: _CatalogueEntry(
        GrievanceEventType.AUTHORITY_ESCALATE, deadlines.AUTHORITY_RESPONSE_STATUSES, frozenset({_R.SYSTEM})
    ),
    Transition.AUTO_CLOSE: _CatalogueEntry(
        GrievanceEventType.AUTO_CLOSE, deadlines.CITIZEN_RESPONSE_STATUSES, frozenset({_R.SYSTEM})
    ),
    Transition.WITHDRAW: _CatalogueEntry(GrievanceEventType.WITHDRAW, _OPEN, frozenset({_R.CITIZEN})),
    Transition.ARCHIVE: _CatalogueEntry(
        GrievanceEventType.ARCHIVE, ARCHIVABLE_STATUSES, frozenset({_R.AUTHORITY_ADMIN, _R.SYSTEM})
    ),
}

# Status reached by each event; FORWARD keeps the status and AUTO_CLOSE
# depends on what the citizen was asked to do.
_EVENT_STATUS: Final[dict[GrievanceEventType, GrievanceStatus]] = {
    GrievanceEventType.SUBMIT: _S.SUBMITTED,
    GrievanceEventType.ACK: _S.UNDER_REVIEW,
    GrievanceEventType.REQUEST_INFO: _S.INFO_REQUESTED,
    GrievanceEventType.INFO_PROVIDED: _S.UNDER_REVIEW,
    GrievanceEventType.ASSIGN: _S.UNDER_REVIEW,
    GrievanceEventType.RESOLVE: _S.RESOLVED_PENDING_CONFIRM,
    GrievanceEventType.DISPUTE: _S.UNDER_REVIEW,
    GrievanceEventType.ACCEPT: _S.CLOSED_ACCEPTED,
    GrievanceEventType.ESCALATE: _S.ESCALATED,
    GrievanceEventType.AUTHORITY_ESCALATE: _S.AUTHORITY_ESCALATED,
    GrievanceEventType.WITHDRAW: _S.WITHDRAWN,
    GrievanceEventType.ARCHIVE: _S.ARCHIVED,
}

_AUTO_CLOSE_OUTCOME: Final[dict[GrievanceStatus, GrievanceStatus]] = {
    # The citizen never supplied the requested information.
    _S.INFO_REQUESTED: _S.CLOSED_NO_RESPONSE,
    # The citizen neither accepted nor disputed the resolution.
    _S.RESOLVED_PENDING_CONFIRM: _S.CLOSED_AUTO,
}


def new_grievance_id() -> str:
    return f"GRV-{uuid4().hex[:12].upper()}"


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class TransitionEngine:
    """Validates and applies grievance transitions.

    Parameters
    ----------
    directory:
        Office hierarchy, for forwarding and authority-response targets.
    resolver:
        Escalation rules, for filing and level-by-level escalation.
    policy:
        Fixed deadline windows.
    """

    __slots__ = ("_directory", "_effects", "_policy", "_resolver")

    def __init__(
        self,
        directory: AuthorityDirectory,
        resolver: EscalationRuleResolver,
        policy: DeadlinePolicy | None = None,
    ) -> None:
        self._directory = directory
        self._resolver = resolver
        self._policy = policy or DeadlinePolicy()
        self._effects: dict[Transition, Callable[[Grievance, ActionRequest, datetime], None]] = {
            Transition.ACKNOWLEDGE: self._status_effect(_S.UNDER_REVIEW),
            Transition.REQUEST_INFO: self._status_effect(_S.INFO_REQUESTED),
            Transition.PROVIDE_INFO: self._status_effect(_S.UNDER_REVIEW),
            Transition.RESOLVE: self._status_effect(_S.RESOLVED_PENDING_CONFIRM),
            Transition.ACCEPT: self._status_effect(_S.CLOSED_ACCEPTED),
            Transition.DISPUTE: self._status_effect(_S.UNDER_REVIEW),
            Transition.FORWARD: self._forward,
            Transition.ASSIGN: self._assign,
            Transition.ESCALATE: self._escalate,
            Transition.AUTHORITY_ESCALATE: self._authority_escalate,
            Transition.AUTO_CLOSE: self._auto_close,
            Transition.WITHDRAW: self._status_effect(_S.WITHDRAWN),
            Transition.ARCHIVE: self._status_effect(_S.ARCHIVED),
        }

    @property
    def policy(self) -> DeadlinePolicy:
        return self._policy

    # -- filing --------------------------------------------------------------

    def file(
        self,
        request: FilingRequest,
        now: datetime,
        grievance_id: str | None = None,
    ) -> Grievance:
        """Create a SUBMITTED grievance owned by the rule's level-0 office."""
        rule = self._resolver.resolve(request.category, request.department_id)
        assignment = self._resolver.initial_assignment(rule)

        grievance = Grievance(
            id=grievance_id or new_grievance_id(),
            citizen_id=request.citizen_id,
            category=rule.category,
            department_id=rule.department_id,
            authority_id=assignment.authority_id,
            escalation_level=assignment.level,
            subject=request.subject,
            description=request.description,
            desired_outcome=request.desired_outcome,
            attachments=list(request.attachments),
            privacy=request.privacy,
            created_at=now,
            updated_at=now,
            status_since=now,
            sla_days=assignment.sla_days,
            citizen_response_days=rule.citizen_response_days,
            status=_S.SUBMITTED,
            history=[
                GrievanceEvent(
                    type=GrievanceEventType.SUBMIT,
                    at=now,
                    by_role=ActorRole.CITIZEN,
                    by_id=request.citizen_id,
                    to_authority_id=assignment.authority_id,
                    attachments=tuple(request.attachments),
                )
            ],
        )
        logger.info(
            "grievance.filed",
            grievance_id=grievance.id,
            rule_id=rule.id,
            authority_id=grievance.authority_id,
            sla_days=grievance.sla_days,
        )
        return grievance

    # -- generic application -------------------------------------------------

    def apply(
        self,
        transition: Transition,
        grievance: Grievance,
        request: ActionRequest,
        now: datetime,
    ) -> Grievance:
        """Validate *transition* against *grievance* and return the new record."""
        entry = _CATALOGUE[transition]
        actor = request.actor

        if grievance.is_terminal and not (
            transition == Transition.ARCHIVE and grievance.status in ARCHIVABLE_STATUSES
        ):
            raise TerminalStateViolation(
                f"grievance {grievance.id} is {grievance.status} and cannot be changed",
                grievance_id=grievance.id,
            )
        self._authorize(transition, entry, grievance, actor)
        if grievance.status not in entry.allowed_from:
            raise InvalidTransition(
                f"cannot {transition} a grievance in status {grievance.status}",
                grievance_id=grievance.id,
            )

        updated = grievance.model_copy(deep=True)
        self._effects[transition](updated, request, now)
        self._append_event(updated, entry.event, request, now)

        logger.info(
            "grievance.transition.applied",
            grievance_id=grievance.id,
            transition=str(transition),
            from_status=str(grievance.status),
            to_status=str(updated.status),
            by_role=str(actor.role),
            authority_id=updated.authority_id,
            escalation_level=updated.escalation_level,
        )
        return updated

    def can_apply(
        self,
        transition: Transition,
        grievance: Grievance,
        actor: Actor,
    ) -> bool:
        """Whether *actor* passes the role, ownership and status checks."""
        entry = _CATALOGUE[transition]
        if grievance.is_terminal and transition != Transition.ARCHIVE:
            return False
        try:
            self._authorize(transition, entry, grievance, actor)
        except Unauthorized:
            return False
        return grievance.status in entry.allowed_from

    # -- authorization -------------------------------------------------------

    @staticmethod
    def _authorize(
        transition: Transition,
        entry: _CatalogueEntry,
        grievance: Grievance,
        actor: Actor,
    ) -> None:
        def deny(reason: str) -> Unauthorized:
            who = f"{actor.role} {actor.id}" if actor.id else str(actor.role)
            return Unauthorized(
                f"{who} may not {transition} grievance {grievance.id}: {reason}",
                grievance_id=grievance.id,
            )

        if actor.role not in entry.roles:
            raise deny("role not permitted")

        if actor.role == ActorRole.CITIZEN:
            if actor.id != grievance.citizen_id:
                raise deny("not the filing citizen")
        elif actor.role == ActorRole.AUTHORITY_HANDLER:
            if not actor.works_at(grievance.authority_id):
                raise deny("grievance is held by another office")
            if grievance.status == _S.AUTHORITY_ESCALATED:
                raise deny("escalated to the office administrator")
        elif actor.role == ActorRole.AUTHORITY_ADMIN:
            if not actor.works_at(grievance.authority_id):
                raise deny("office not managed by this administrator")
            if transition != Transition.ARCHIVE and grievance.status != _S.AUTHORITY_ESCALATED:
                raise deny("administrators only act on escalated grievances")

    # -- effects -------------------------------------------------------------

    @staticmethod
    def _enter(grievance: Grievance, status: GrievanceStatus, now: datetime) -> None:
        grievance.status = status
        grievance.status_since = TransitionEngine._event_time(grievance, now)

    @staticmethod
    def _status_effect(status: GrievanceStatus) -> Callable[[Grievance, ActionRequest, datetime], None]:
        def effect(grievance: Grievance, request: ActionRequest, now: datetime) -> None:
            TransitionEngine._enter(grievance, status, now)

        return effect

    def _forward(self, grievance: Grievance, request: ActionRequest, now: datetime) -> None:
        target = request.to_authority_id
        if not target or not self._directory.is_peer(grievance.authority_id, target):
            raise InvalidTransition(
                f"forward target {target!r} is not a peer office of {grievance.authority_id}",
                grievance_id=grievance.id,
            )
        grievance.authority_id = target
        grievance.status_since = self._event_time(grievance, now)

    def _assign(self, grievance: Grievance, request: ActionRequest, now: datetime) -> None:
        target = request.to_authority_id or grievance.authority_id
        if target != grievance.authority_id and not self._directory.is_peer(grievance.authority_id, target):
            raise InvalidTransition(
                f"assignment target {target!r} is outside the department of {grievance.authority_id}",
                grievance_id=grievance.id,
            )
        grievance.authority_id = target
        self._enter(grievance, _S.UNDER_REVIEW, now)

    def _escalate(self, grievance: Grievance, request: ActionRequest, now: datetime) -> None:
        if not deadlines.is_sla_breached(grievance, now):
            raise InvalidTransition(
                f"SLA window of {grievance.sla_days} days has not lapsed",
                grievance_id=grievance.id,
            )
        try:
            rule = self._resolver.rule_for(grievance)
            assignment = self._resolver.next_level_assignment(rule, grievance.escalation_level)
        except GrievanceEngineError as exc:
            exc.grievance_id = grievance.id
            raise
        grievance.authority_id = assignment.authority_id
        grievance.escalation_level = assignment.level
        grievance.sla_days = assignment.sla_days
        self._enter(grievance, _S.ESCALATED, now)

    def _authority_escalate(self, grievance: Grievance, request: ActionRequest, now: datetime) -> None:
        if not deadlines.is_authority_response_deadline_breached(grievance, now, self._policy):
            raise InvalidTransition(
                f"authority response window of {self._policy.authority_response_days} days has not lapsed",
                grievance_id=grievance.id,
            )
        grievance.authority_id = self._directory.administrator_of(grievance.authority_id).id
        self._enter(grievance, _S.AUTHORITY_ESCALATED, now)

    def _auto_close(self, grievance: Grievance, request: ActionRequest, now: datetime) -> None:
        if not deadlines.is_citizen_auto_close_deadline_breached(grievance, now, self._policy):
            raise InvalidTransition(
                "citizen auto-close window has not lapsed",
                grievance_id=grievance.id,
            )
        self._enter(grievance, _AUTO_CLOSE_OUTCOME[grievance.status], now)

    # -- history -------------------------------------------------------------

    @staticmethod
    def _event_time(grievance: Grievance, now: datetime) -> datetime:
        # History timestamps never go backwards, even if the clock does.
        last = grievance.last_event
        if last is not None and now < last.at:
            return last.at
        return now

    @staticmethod
    def _append_event(
        grievance: Grievance,
        event_type: GrievanceEventType,
        request: ActionRequest,
        now: datetime,
    ) -> None:
        at = TransitionEngine._event_time(grievance, now)
        to_authority_id = None
        if event_type in _ROUTING_EVENTS:
            to_authority_id = grievance.authority_id
        grievance.history.append(
            GrievanceEvent(
                type=event_type,
                at=at,
                by_role=request.by_role,
                by_id=request.by_id,
                note=request.note,
                to_authority_id=to_authority_id,
                attachments=tuple(request.attachments),
            )
        )
        grievance.updated_at = at


_ROUTING_EVENTS: Final[frozenset[GrievanceEventType]] = frozenset(
    {
        GrievanceEventType.SUBMIT,
        GrievanceEventType.FORWARD,
        GrievanceEventType.ASSIGN,
        GrievanceEventType.ESCALATE,
        GrievanceEventType.AUTHORITY_ESCALATE,
    }
)


# ---------------------------------------------------------------------------
# Projection replay
# ---------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class Projection:
    status: GrievanceStatus
    authority_id: str
    escalation_level: int
    status_since: datetime


def replay_projection(history: Iterable[GrievanceEvent]) -> Projection:
    """Re-derive the current projection of a grievance from its history.

    Used by audits to confirm that a stored record agrees with its log.
    """
    status: GrievanceStatus | None = None
    authority_id = ""
    level = 0
    status_since: datetime | None = None

    for event in history:
        if event.type == GrievanceEventType.AUTO_CLOSE:
            if status not in _AUTO_CLOSE_OUTCOME:
                raise ValueError(f"AUTO_CLOSE recorded while {status}")
            status = _AUTO_CLOSE_OUTCOME[status]
            status_since = event.at
        elif event.type == GrievanceEventType.FORWARD:
            status_since = event.at
        else:
            status = _EVENT_STATUS[event.type]
            status_since = event.at
        if event.type == GrievanceEventType.ESCALATE:
            level += 1
        if event.to_authority_id:
            authority_id = event.to_authority_id

    if status is None or status_since is None:
        raise ValueError("cannot replay an empty history")
    return Projection(
        status=status,
        authority_id=authority_id,
        escalation_level=level,
        status_since=status_since,
    )
