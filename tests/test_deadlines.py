"""Tests for the deadline evaluator.

Windows are anchored at ``status_since`` and compared with ``>=``, so a
grievance sitting exactly on its deadline is already breached.
"""

from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from redressal.models.enums import GrievanceStatus
from redressal.services import deadlines
from redressal.services.deadlines import DeadlinePolicy


class TestWindowArithmetic:
    def test_breached_exactly_on_deadline(self, t0: datetime) -> None:
        assert deadlines.is_breached(t0, 3, t0 + timedelta(days=3))

    def test_not_breached_one_second_early(self, t0: datetime) -> None:
        assert not deadlines.is_breached(t0, 3, t0 + timedelta(days=3) - timedelta(seconds=1))

    def test_days_remaining_rounds_up(self, t0: datetime) -> None:
        assert deadlines.days_remaining(t0, 3, t0 + timedelta(hours=1)) == 3
        assert deadlines.days_remaining(t0, 3, t0 + timedelta(days=2, hours=1)) == 1

    def test_days_remaining_negative_after_breach(self, t0: datetime) -> None:
        assert deadlines.days_remaining(t0, 3, t0 + timedelta(days=5)) == -2


class TestDeadlinePolicy:
    def test_defaults(self) -> None:
        policy = DeadlinePolicy()
        assert policy.authority_response_days == 3
        assert policy.citizen_auto_close_days(5) == 12

    @pytest.mark.parametrize("field", ["authority_response_days", "citizen_auto_close_grace_days"])
    def test_rejects_non_positive_windows(self, field: str) -> None:
        with pytest.raises(ValueError):
            DeadlinePolicy(**{field: 0})


class TestGrievanceWindows:
    def test_authority_response_breach_scenario(self, make_grievance, t0, policy) -> None:
        grievance = make_grievance(GrievanceStatus.SUBMITTED, age_days=4)
        assert deadlines.is_authority_response_deadline_breached(grievance, t0, policy)
        assert not deadlines.is_sla_breached(grievance, t0), "SLA of 7 days still running"

    def test_authority_response_window_only_while_office_must_act(self, make_grievance, t0, policy) -> None:
        grievance = make_grievance(GrievanceStatus.ESCALATED, age_days=4)
        assert not deadlines.is_authority_response_deadline_breached(grievance, t0, policy)
        assert deadlines.days_until_authority_response_deadline(grievance, t0, policy) is None

    def test_sla_breach(self, make_grievance, t0) -> None:
        grievance = make_grievance(GrievanceStatus.UNDER_REVIEW, age_days=7)
        assert deadlines.is_sla_breached(grievance, t0)
        assert deadlines.days_until_sla_breach(grievance, t0) == 0

    def test_sla_not_applicable_while_waiting_on_citizen(self, make_grievance, t0) -> None:
        grievance = make_grievance(GrievanceStatus.INFO_REQUESTED, age_days=30)
        assert not deadlines.is_sla_breached(grievance, t0)
        assert deadlines.days_until_sla_breach(grievance, t0) is None

    def test_citizen_overdue_but_not_yet_auto_closed(self, make_grievance, t0, policy) -> None:
        grievance = make_grievance(GrievanceStatus.INFO_REQUESTED, age_days=5, citizen_response_days=5)
        assert deadlines.is_citizen_response_deadline_breached(grievance, t0)
        assert not deadlines.is_citizen_auto_close_deadline_breached(grievance, t0, policy)
        assert deadlines.days_until_citizen_auto_close(grievance, t0, policy) == 7

    def test_citizen_auto_close_breached(self, make_grievance, t0, policy) -> None:
        grievance = make_grievance(GrievanceStatus.RESOLVED_PENDING_CONFIRM, age_days=13, citizen_response_days=5)
        assert deadlines.is_citizen_auto_close_deadline_breached(grievance, t0, policy)
        assert deadlines.days_until_citizen_response_deadline(grievance, t0) == -8

    def test_terminal_grievance_has_no_running_windows(self, make_grievance, t0, policy) -> None:
        grievance = make_grievance(GrievanceStatus.CLOSED_ACCEPTED, age_days=100)
        summary = deadlines.deadline_summary(grievance, t0, policy)
        assert not any(
            (
                summary.sla_breached,
                summary.authority_response_breached,
                summary.citizen_response_breached,
                summary.citizen_auto_close_breached,
            )
        )
        assert summary.days_until_sla_breach is None
        assert summary.days_until_citizen_auto_close is None

    def test_summary_for_fresh_submission(self, make_grievance, t0, policy) -> None:
        summary = deadlines.deadline_summary(make_grievance(GrievanceStatus.SUBMITTED), t0, policy)
        assert summary.days_until_sla_breach == 7
        assert summary.days_until_authority_response_deadline == 3
        assert summary.days_until_citizen_response_deadline is None
