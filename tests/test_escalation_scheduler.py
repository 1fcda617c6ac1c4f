"""Tests for the escalation scheduler.

Sweeps are driven with an explicit clock so every deadline is exact.
"""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from redressal.errors import InvalidTransition, TerminalStateViolation
from redressal.models.enums import ActorRole, GrievanceStatus
from redressal.services.escalation_scheduler import EscalationScheduler, evaluate
from redressal.services.grievance_service import GrievanceService
from redressal.services.store import GrievanceStore
from redressal.services.transitions import Transition

S = GrievanceStatus
GID = "GRV-TEST00000001"


# ---------------------------------------------------------------------------
# evaluate()
# ---------------------------------------------------------------------------


class TestEvaluate:
    def test_nothing_due_for_fresh_grievance(self, make_grievance, t0, policy) -> None:
        assert evaluate(make_grievance(S.SUBMITTED, age_days=1), t0, policy) is None

    def test_auto_close_first(self, make_grievance, t0, policy) -> None:
        due = evaluate(make_grievance(S.INFO_REQUESTED, age_days=13), t0, policy)
        assert due is not None
        assert (due.transition, due.window) == (Transition.AUTO_CLOSE, "citizen_auto_close")

    def test_authority_response_beats_sla(self, make_grievance, t0, policy) -> None:
        # Eight days in SUBMITTED breaches both the 3-day response and the 7-day SLA.
        due = evaluate(make_grievance(S.SUBMITTED, age_days=8), t0, policy)
        assert due is not None and due.transition == Transition.AUTHORITY_ESCALATE

    def test_sla_escalation(self, make_grievance, t0, policy) -> None:
        due = evaluate(make_grievance(S.ESCALATED, age_days=8, authority_id="UTIL-L1", escalation_level=1), t0, policy)
        assert due is not None and due.transition == Transition.ESCALATE

    def test_terminal_grievances_skipped(self, make_grievance, t0, policy) -> None:
        assert evaluate(make_grievance(S.CLOSED_AUTO, age_days=90), t0, policy) is None


# ---------------------------------------------------------------------------
# Sweeps
# ---------------------------------------------------------------------------


class TestSweep:
    async def test_authority_response_breach(self, service, scheduler, make_grievance, t0) -> None:
        service.store.commit(make_grievance(S.SUBMITTED, age_days=4))

        report = await scheduler.sweep(t0)

        assert report.fired == {GID: "authority_escalate"}
        grievance = service.get(GID)
        assert grievance.status == S.AUTHORITY_ESCALATED
        assert grievance.escalation_level == 0
        assert grievance.history[-1].by_role == ActorRole.SYSTEM

    async def test_second_sweep_with_same_clock_is_a_no_op(self, service, scheduler, make_grievance, t0) -> None:
        service.store.commit(make_grievance(S.UNDER_REVIEW, age_days=8))

        first = await scheduler.sweep(t0)
        second = await scheduler.sweep(t0)

        assert len(first.fired) == 1
        assert second.fired == {}
        assert len(service.get(GID).history) == 2

    async def test_sla_escalation_walks_the_chain(self, service, scheduler, make_grievance, t0) -> None:
        # Administrators are only held to the SLA, so each sweep climbs one level.
        service.store.commit(make_grievance(S.AUTHORITY_ESCALATED, age_days=8))

        await scheduler.sweep(t0)
        level_one = service.get(GID)
        assert (level_one.status, level_one.authority_id, level_one.escalation_level) == (S.ESCALATED, "UTIL-L1", 1)
        assert level_one.sla_days == 7

        await scheduler.sweep(t0 + timedelta(days=7))
        apex = service.get(GID)
        assert (apex.authority_id, apex.escalation_level, apex.sla_days) == ("OMB", 2, 10)

        report = await scheduler.sweep(t0 + timedelta(days=17))
        assert report.manual_intervention == [GID]
        assert report.fired == {}
        assert service.get(GID) == apex, "an apex breach leaves the record alone"

    async def test_citizen_silence_auto_closes(self, service, scheduler, make_grievance, citizen, act, t0) -> None:
        service.store.commit(make_grievance(S.INFO_REQUESTED, age_days=13))

        report = await scheduler.sweep(t0)

        assert report.fired == {GID: "auto_close"}
        assert service.get(GID).status == S.CLOSED_NO_RESPONSE
        with pytest.raises(TerminalStateViolation):
            await service.provide_info(GID, act(citizen), t0 + timedelta(minutes=1))

    async def test_unanswered_resolution_auto_closes(self, service, scheduler, make_grievance, t0) -> None:
        service.store.commit(make_grievance(S.RESOLVED_PENDING_CONFIRM, age_days=12))
        await scheduler.sweep(t0)
        assert service.get(GID).status == S.CLOSED_AUTO

    async def test_many_grievances_in_one_sweep(self, service, scheduler, make_grievance, t0) -> None:
        for n, age in enumerate((0, 4, 8)):
            service.store.commit(make_grievance(S.UNDER_REVIEW, age_days=age, grievance_id=f"GRV-{n}"))
        service.store.commit(make_grievance(S.WITHDRAWN, age_days=30, grievance_id="GRV-DONE"))

        report = await scheduler.sweep(t0)

        assert report.evaluated == 3, "terminal records are not evaluated"
        assert report.fired == {"GRV-1": "authority_escalate", "GRV-2": "authority_escalate"}
        assert service.get("GRV-0").status == S.UNDER_REVIEW

    async def test_failing_records_do_not_halt_the_sweep(self, service, make_grievance, t0) -> None:
        class PartlyFailingService(GrievanceService):
            async def apply_system_transition(self, grievance_id, choose, now=None):
                if grievance_id == "GRV-BROKEN":
                    raise RuntimeError("corrupt record")
                if grievance_id == "GRV-STALE":
                    raise InvalidTransition("record moved on", grievance_id=grievance_id)
                return await super().apply_system_transition(grievance_id, choose, now)

        svc = PartlyFailingService(
            service.engine, service.store, service.directory, service.resolver, notification_timeout_seconds=1.0
        )
        for grievance_id in ("GRV-1", "GRV-BROKEN", "GRV-STALE", "GRV-2"):
            service.store.commit(make_grievance(S.SUBMITTED, age_days=4, grievance_id=grievance_id))

        report = await EscalationScheduler(svc).sweep(t0)

        assert report.evaluated == 4
        assert report.fired == {"GRV-1": "authority_escalate", "GRV-2": "authority_escalate"}
        assert report.failures == {"GRV-BROKEN": "unexpected_error", "GRV-STALE": "invalid_transition"}
        assert service.get("GRV-BROKEN").status == S.SUBMITTED

    async def test_sweep_retries_pending_writes(self, service, flaky_backend, make_grievance, t0) -> None:
        store = GrievanceStore(flaky_backend, timeout_seconds=1.0)
        svc = GrievanceService(
            service.engine, store, service.directory, service.resolver, notification_timeout_seconds=1.0
        )
        scheduler = EscalationScheduler(svc)

        store.commit(make_grievance(S.SUBMITTED, age_days=4))
        await scheduler.sweep(t0)
        assert store.pending_count == 1

        flaky_backend.failing = False
        report = await scheduler.sweep(t0)
        assert report.retried_writes == 1
        assert store.pending_count == 0

    async def test_report_serialises(self, scheduler, t0) -> None:
        report = await scheduler.run_sweep_now(t0)
        payload = report.to_dict()
        assert payload["started_at"] == t0.isoformat()
        assert payload["evaluated"] == 0
        assert scheduler.last_sweep is report


# ---------------------------------------------------------------------------
# Read-time checks
# ---------------------------------------------------------------------------


class TestCheck:
    async def test_check_fires_due_transition(self, service, scheduler, make_grievance, t0) -> None:
        service.store.commit(make_grievance(S.SUBMITTED, age_days=4))
        grievance = await scheduler.check(GID, t0)
        assert grievance.status == S.AUTHORITY_ESCALATED

    async def test_check_without_breach_returns_record(self, service, scheduler, make_grievance, t0) -> None:
        original = make_grievance(S.SUBMITTED, age_days=1)
        service.store.commit(original)
        assert await scheduler.check(GID, t0) == original


# ---------------------------------------------------------------------------
# Background loop
# ---------------------------------------------------------------------------


class TestBackgroundLoop:
    async def test_start_and_stop(self, scheduler) -> None:
        task = asyncio.create_task(scheduler.start_background_scheduler())
        await asyncio.sleep(0.05)

        assert scheduler.is_running
        assert scheduler.last_sweep is not None

        await scheduler.stop()
        assert not scheduler.is_running
        assert task.done()

    async def test_disabled_loop_returns_immediately(self, service) -> None:
        scheduler = EscalationScheduler(service, enabled=False)
        await asyncio.wait_for(scheduler.start_background_scheduler(), timeout=1)
        assert not scheduler.is_running
