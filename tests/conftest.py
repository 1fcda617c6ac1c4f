"""Shared fixtures: the seeded office hierarchy, an engine, a service and
factories for grievances in arbitrary states.

All tests run WITHOUT network access: persistence is in memory and
notifications are recorded by :class:`LogNotifier`.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime, timedelta

import pytest

from redressal.data.seed import build_directory, build_resolver
from redressal.models.enums import ActorRole, GrievanceEventType, GrievanceStatus
from redressal.models.grievance import ActionRequest, Actor, FilingRequest, Grievance, GrievanceEvent
from redressal.services.deadlines import DeadlinePolicy
from redressal.services.directory import AuthorityDirectory
from redressal.services.escalation_scheduler import EscalationScheduler
from redressal.services.grievance_service import GrievanceService
from redressal.services.notifications import LogNotifier
from redressal.services.rules import EscalationRuleResolver
from redressal.services.store import GrievanceStore, InMemoryPersistence
from redressal.services.transitions import TransitionEngine

CITIZEN_ID = "citizen-1"


class FlakyPersistence(InMemoryPersistence):
    """In-memory backend whose writes fail while ``failing`` is set."""

    def __init__(self) -> None:
        super().__init__()
        self.failing = True

    async def save(self, grievance: Grievance) -> None:
        if self.failing:
            raise ConnectionError("persistence backend unavailable")
        await super().save(grievance)


# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------


@pytest.fixture
def t0() -> datetime:
    return datetime(2025, 3, 3, 9, 0, tzinfo=UTC)


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def directory() -> AuthorityDirectory:
    return build_directory()


@pytest.fixture(scope="session")
def resolver(directory: AuthorityDirectory) -> EscalationRuleResolver:
    return build_resolver(directory)


@pytest.fixture
def policy() -> DeadlinePolicy:
    return DeadlinePolicy(authority_response_days=3, citizen_auto_close_grace_days=7)


@pytest.fixture
def engine(directory: AuthorityDirectory, resolver: EscalationRuleResolver, policy: DeadlinePolicy) -> TransitionEngine:
    return TransitionEngine(directory, resolver, policy)


# ---------------------------------------------------------------------------
# Service stack
# ---------------------------------------------------------------------------


@pytest.fixture
def backend() -> InMemoryPersistence:
    return InMemoryPersistence()


@pytest.fixture
def flaky_backend() -> FlakyPersistence:
    return FlakyPersistence()


@pytest.fixture
def store(backend: InMemoryPersistence) -> GrievanceStore:
    return GrievanceStore(backend, timeout_seconds=1.0)


@pytest.fixture
def notifier() -> LogNotifier:
    return LogNotifier()


@pytest.fixture
def service(
    engine: TransitionEngine,
    store: GrievanceStore,
    directory: AuthorityDirectory,
    resolver: EscalationRuleResolver,
    notifier: LogNotifier,
) -> GrievanceService:
    return GrievanceService(engine, store, directory, resolver, notifier, notification_timeout_seconds=1.0)


@pytest.fixture
def scheduler(service: GrievanceService, policy: DeadlinePolicy) -> EscalationScheduler:
    return EscalationScheduler(service, policy, interval_seconds=0.01)


# ---------------------------------------------------------------------------
# Actors and payloads
# ---------------------------------------------------------------------------


@pytest.fixture
def citizen() -> Actor:
    return Actor.citizen(CITIZEN_ID)


@pytest.fixture
def handler() -> Actor:
    """Handler at the Dhaka electricity office."""
    return Actor(role=ActorRole.AUTHORITY_HANDLER, id="handler-dhk", authority_ids=frozenset({"UTIL-L0-DHK"}))


@pytest.fixture
def admin() -> Actor:
    """Administrator of the Dhaka electricity office."""
    return Actor(role=ActorRole.AUTHORITY_ADMIN, id="admin-dhk", authority_ids=frozenset({"UTIL-L0-DHK"}))


@pytest.fixture
def filing() -> FilingRequest:
    return FilingRequest(
        citizen_id=CITIZEN_ID,
        category="Utilities",
        department_id="DPT-UTIL",
        subject="Power outage for three days",
        description="Our street in Mirpur has had no electricity since Friday evening.",
        desired_outcome="Restore supply and confirm the repair date",
        attachments=["att://photo-1"],
    )


@pytest.fixture
def act() -> Callable[..., ActionRequest]:
    """Build an :class:`ActionRequest` for an actor."""

    def _act(actor: Actor, **kwargs: object) -> ActionRequest:
        return ActionRequest.for_actor(actor, **kwargs)

    return _act


@pytest.fixture
def make_grievance(t0: datetime) -> Callable[..., Grievance]:
    """Build a Utilities grievance already sitting in *status*.

    ``age_days`` places ``status_since`` that many days before ``t0``.
    """

    def _make(
        status: GrievanceStatus = GrievanceStatus.SUBMITTED,
        *,
        age_days: float = 0,
        authority_id: str = "UTIL-L0-DHK",
        escalation_level: int = 0,
        sla_days: int = 7,
        citizen_response_days: int = 5,
        grievance_id: str = "GRV-TEST00000001",
    ) -> Grievance:
        since = t0 - timedelta(days=age_days)
        return Grievance(
            id=grievance_id,
            citizen_id=CITIZEN_ID,
            category="Utilities",
            department_id="DPT-UTIL",
            authority_id=authority_id,
            escalation_level=escalation_level,
            subject="Power outage",
            description="No electricity on our street since Friday.",
            created_at=since,
            updated_at=since,
            status_since=since,
            sla_days=sla_days,
            citizen_response_days=citizen_response_days,
            status=status,
            history=[
                GrievanceEvent(
                    type=GrievanceEventType.SUBMIT,
                    at=since,
                    by_role=ActorRole.CITIZEN,
                    by_id=CITIZEN_ID,
                    to_authority_id=authority_id,
                )
            ],
        )

    return _make
