"""Tests for the async grievance service.

The service wraps the transition engine with per-grievance locking,
write-behind persistence and status-change notifications.  Side-effect
failures must never roll a committed transition back.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from datetime import datetime, timedelta

import pytest

from redressal.errors import (
    InvalidSuggestion,
    InvalidTransition,
    RecordNotFound,
    RuleNotFound,
    Unauthorized,
)
from redressal.models.authority import Authority, EscalationRule
from redressal.models.enums import ActorRole, GrievanceStatus
from redressal.models.grievance import FilingRequest, Grievance
from redressal.services.categorizer import CategorySuggestion
from redressal.services.grievance_service import GrievanceService
from redressal.services.notifications import LogNotifier, StatusChange
from redressal.services.store import GrievanceStore, InMemoryPersistence
from redressal.services.transitions import Transition


class BrokenNotifier:
    async def notify(self, change: StatusChange) -> None:
        raise RuntimeError("delivery service down")

    async def close(self) -> None:
        return None


class FixedSuggester:
    def __init__(self, suggestion: CategorySuggestion) -> None:
        self.suggestion = suggestion
        self.calls = 0

    async def suggest(
        self,
        draft: FilingRequest,
        rules: Sequence[EscalationRule],
        authorities: Sequence[Authority],
    ) -> CategorySuggestion:
        self.calls += 1
        return self.suggestion


class FailingSuggester:
    async def suggest(
        self,
        draft: FilingRequest,
        rules: Sequence[EscalationRule],
        authorities: Sequence[Authority],
    ) -> CategorySuggestion:
        raise RuntimeError("503 Vertex AI unavailable")


class StallingPersistence(InMemoryPersistence):
    """Backend that fails while ``failing`` is set, then holds writes until released."""

    def __init__(self) -> None:
        super().__init__()
        self.failing = True
        self.stalled = asyncio.Event()
        self.release = asyncio.Event()

    async def save(self, grievance: Grievance) -> None:
        if self.failing:
            raise ConnectionError("persistence backend unavailable")
        if not self.release.is_set():
            self.stalled.set()
            await self.release.wait()
        await super().save(grievance)


@pytest.fixture
def uncategorized(filing: FilingRequest) -> FilingRequest:
    return filing.model_copy(update={"category": "", "department_id": ""})


def _service_with(service: GrievanceService, **overrides) -> GrievanceService:
    parts = {
        "engine": service.engine,
        "store": service.store,
        "directory": service.directory,
        "resolver": service.resolver,
        "notifier": LogNotifier(),
    }
    suggester = overrides.pop("suggester", None)
    parts.update(overrides)
    return GrievanceService(**parts, suggester=suggester, notification_timeout_seconds=1.0)


# ---------------------------------------------------------------------------
# Filing
# ---------------------------------------------------------------------------


class TestFiling:
    async def test_file_commits_persists_and_notifies(self, service, backend, notifier, filing, t0) -> None:
        grievance = await service.file_grievance(filing, t0)

        assert service.get(grievance.id) == grievance
        assert backend.size == 1
        assert [(c.recipient_role, c.recipient_id) for c in notifier.sent] == [
            (ActorRole.AUTHORITY_HANDLER, "UTIL-L0-DHK")
        ]

    async def test_unknown_category_rejected(self, service, filing, t0) -> None:
        with pytest.raises(RuleNotFound):
            await service.file_grievance(filing.model_copy(update={"category": "Weather"}), t0)
        assert len(service.store) == 0

    async def test_uncategorized_without_assistant(self, service, uncategorized, t0) -> None:
        with pytest.raises(InvalidSuggestion):
            await service.file_grievance(uncategorized, t0)

    async def test_categorization_assistant_fills_in_route(self, service, uncategorized, t0) -> None:
        suggester = FixedSuggester(
            CategorySuggestion(
                category="Health",
                department_id="DPT-HEALTH",
                authority_id="HEALTH-L0-DHK",
                confidence=88,
            )
        )
        grievance = await _service_with(service, suggester=suggester).file_grievance(uncategorized, t0)

        assert suggester.calls == 1
        assert (grievance.category, grievance.department_id) == ("Health", "DPT-HEALTH")
        assert grievance.authority_id == "HEALTH-L0-DHK", "routing follows the rule's level-0 office"

    async def test_suggestion_naming_unknown_office_rejected(self, service, uncategorized, t0) -> None:
        suggester = FixedSuggester(
            CategorySuggestion(category="Health", department_id="DPT-HEALTH", authority_id="NOWHERE")
        )
        with pytest.raises(InvalidSuggestion):
            await _service_with(service, suggester=suggester).file_grievance(uncategorized, t0)
        assert len(service.store) == 0

    async def test_assistant_outage_is_a_typed_failure(self, service, uncategorized, t0) -> None:
        with pytest.raises(InvalidSuggestion) as exc_info:
            await _service_with(service, suggester=FailingSuggester()).file_grievance(uncategorized, t0)
        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert len(service.store) == 0

    async def test_assistant_skipped_when_route_given(self, service, filing, t0) -> None:
        suggester = FixedSuggester(
            CategorySuggestion(category="Health", department_id="DPT-HEALTH", authority_id="HEALTH-L0-DHK")
        )
        grievance = await _service_with(service, suggester=suggester).file_grievance(filing, t0)
        assert suggester.calls == 0
        assert grievance.category == "Utilities"


# ---------------------------------------------------------------------------
# Transitions through the service
# ---------------------------------------------------------------------------


class TestTransitions:
    async def test_named_operations(self, service, filing, handler, citizen, act, t0) -> None:
        grievance = await service.file_grievance(filing, t0)
        await service.acknowledge(grievance.id, act(handler), t0 + timedelta(hours=1))
        await service.resolve(grievance.id, act(handler, note="Line repaired"), t0 + timedelta(days=1))
        closed = await service.accept(grievance.id, act(citizen), t0 + timedelta(days=2))

        assert closed.status == GrievanceStatus.CLOSED_ACCEPTED
        assert service.get(grievance.id).status == GrievanceStatus.CLOSED_ACCEPTED
        assert [e.type.value for e in closed.history] == ["SUBMIT", "ACK", "RESOLVE", "ACCEPT"]

    async def test_unknown_grievance(self, service, handler, act) -> None:
        with pytest.raises(RecordNotFound):
            await service.acknowledge("GRV-MISSING", act(handler))

    async def test_rejected_transition_leaves_record_unchanged(self, service, filing, admin, act, t0) -> None:
        grievance = await service.file_grievance(filing, t0)
        with pytest.raises(Unauthorized):
            await service.resolve(grievance.id, act(admin), t0)
        assert service.get(grievance.id) == grievance

    async def test_concurrent_transitions_are_serialised(self, service, filing, handler, act, t0) -> None:
        grievance = await service.file_grievance(filing, t0)
        results = await asyncio.gather(
            service.acknowledge(grievance.id, act(handler), t0 + timedelta(minutes=1)),
            service.acknowledge(grievance.id, act(handler), t0 + timedelta(minutes=2)),
            return_exceptions=True,
        )

        successes = [r for r in results if isinstance(r, Grievance)]
        failures = [r for r in results if isinstance(r, InvalidTransition)]
        assert len(successes) == 1 and len(failures) == 1, "exactly one acknowledgement may win"
        assert len(service.get(grievance.id).history) == 2

    async def test_system_transition_choice_declined(self, service, make_grievance, t0) -> None:
        service.store.commit(make_grievance(GrievanceStatus.SUBMITTED))
        assert await service.apply_system_transition("GRV-TEST00000001", lambda g: None, t0) is None

    async def test_system_transition_only_fires_system_kinds(self, service, make_grievance, t0) -> None:
        service.store.commit(make_grievance(GrievanceStatus.SUBMITTED))
        with pytest.raises(ValueError):
            await service.apply_system_transition("GRV-TEST00000001", lambda g: Transition.ACKNOWLEDGE, t0)

    async def test_archived_record_releases_its_lock(self, service, make_grievance, t0) -> None:
        service.store.commit(make_grievance(GrievanceStatus.CLOSED_ACCEPTED))
        await service.archive("GRV-TEST00000001", now=t0)
        assert service.tracked_locks == 0

    async def test_open_record_keeps_its_lock(self, service, filing, handler, act, t0) -> None:
        grievance = await service.file_grievance(filing, t0)
        await service.acknowledge(grievance.id, act(handler), t0 + timedelta(hours=1))
        assert service.tracked_locks == 1

    async def test_escalate_defaults_to_system_actor(self, service, make_grievance, t0) -> None:
        service.store.commit(make_grievance(GrievanceStatus.UNDER_REVIEW, age_days=8))
        escalated = await service.escalate("GRV-TEST00000001", now=t0)
        assert escalated.history[-1].by_role == ActorRole.SYSTEM
        assert escalated.authority_id == "UTIL-L1"


# ---------------------------------------------------------------------------
# Side-effect failures
# ---------------------------------------------------------------------------


class TestSideEffects:
    async def test_persistence_failure_keeps_commit(self, service, flaky_backend, filing, handler, act, t0) -> None:
        flaky = flaky_backend
        store = GrievanceStore(flaky, timeout_seconds=1.0)
        svc = _service_with(service, store=store)

        grievance = await svc.file_grievance(filing, t0)
        updated = await svc.acknowledge(grievance.id, act(handler), t0 + timedelta(hours=1))

        assert store.get(grievance.id).status == GrievanceStatus.UNDER_REVIEW == updated.status
        assert store.pending_count == 1, "one pending write per record, the latest one"

        flaky.failing = False
        assert await svc.retry_pending() == 1
        assert store.pending_count == 0
        (saved,) = await flaky.load_all()
        assert saved.status == GrievanceStatus.UNDER_REVIEW

    async def test_retry_is_ordered_with_a_concurrent_transition(self, service, filing, handler, act, t0) -> None:
        backend = StallingPersistence()
        store = GrievanceStore(backend, timeout_seconds=1.0)
        svc = _service_with(service, store=store)
        grievance = await svc.file_grievance(filing, t0)
        assert store.pending_ids() == [grievance.id]

        backend.failing = False
        retry = asyncio.create_task(svc.retry_pending())
        await backend.stalled.wait()
        acknowledged = asyncio.create_task(svc.acknowledge(grievance.id, act(handler), t0 + timedelta(hours=1)))
        await asyncio.sleep(0)
        backend.release.set()
        await asyncio.gather(retry, acknowledged)

        committed = svc.get(grievance.id)
        (durable,) = await backend.load_all()
        assert committed.status == GrievanceStatus.UNDER_REVIEW
        assert durable == committed, "the older retried copy must not land last"
        assert store.pending_count == 0

    async def test_notification_failure_is_swallowed(self, service, filing, t0) -> None:
        svc = _service_with(service, notifier=BrokenNotifier())
        grievance = await svc.file_grievance(filing, t0)
        assert svc.get(grievance.id).status == GrievanceStatus.SUBMITTED

    async def test_slow_notifier_times_out(self, service, filing, t0) -> None:
        class SlowNotifier(LogNotifier):
            async def notify(self, change: StatusChange) -> None:
                await asyncio.sleep(10)

        svc = GrievanceService(
            service.engine,
            service.store,
            service.directory,
            service.resolver,
            SlowNotifier(),
            notification_timeout_seconds=0.01,
        )
        grievance = await asyncio.wait_for(svc.file_grievance(filing, t0), timeout=2)
        assert svc.get(grievance.id) == grievance


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


class TestQueries:
    async def test_list_for_citizen_newest_first(self, service, filing, t0) -> None:
        first = await service.file_grievance(filing, t0)
        second = await service.file_grievance(filing, t0 + timedelta(days=1))
        assert [g.id for g in service.list_for_citizen(filing.citizen_id)] == [second.id, first.id]
        assert service.list_for_citizen("nobody") == []

    async def test_list_for_authority_excludes_closed_by_default(
        self, service, filing, citizen, act, t0
    ) -> None:
        kept = await service.file_grievance(filing, t0)
        gone = await service.file_grievance(filing, t0 + timedelta(hours=1))
        await service.withdraw(gone.id, act(citizen), t0 + timedelta(hours=2))

        assert [g.id for g in service.list_for_authority("UTIL-L0-DHK")] == [kept.id]
        assert len(service.list_for_authority("UTIL-L0-DHK", include_closed=True)) == 2

    def test_list_for_unknown_authority(self, service) -> None:
        with pytest.raises(RecordNotFound):
            service.list_for_authority("NOWHERE")

    async def test_deadlines(self, service, filing, t0: datetime) -> None:
        grievance = await service.file_grievance(filing, t0)
        summary = service.deadlines(grievance.id, t0 + timedelta(days=4))
        assert summary.authority_response_breached
        assert summary.days_until_sla_breach == 3
