"""Tests for administrative reports."""

from __future__ import annotations

import pytest

from redressal.models.enums import GrievanceStatus
from redressal.services.reports import PerformanceRating, office_performance, overview, rate_office

S = GrievanceStatus


@pytest.mark.parametrize(
    ("counts", "rating"),
    [
        ((0, 0, 0, 0), PerformanceRating.GOOD),
        ((10, 9, 0, 1), PerformanceRating.EXCELLENT),
        ((10, 9, 0, 2), PerformanceRating.GOOD),
        ((10, 6, 2, 0), PerformanceRating.GOOD),
        ((10, 4, 0, 0), PerformanceRating.POOR),
        ((10, 7, 4, 0), PerformanceRating.POOR),
        ((10, 7, 0, 6), PerformanceRating.POOR),
    ],
)
def test_rate_office(counts, rating) -> None:
    assert rate_office(*counts) == rating


def test_office_performance_rows(directory, make_grievance, t0) -> None:
    grievances = [
        make_grievance(S.CLOSED_ACCEPTED, grievance_id="GRV-1"),
        make_grievance(S.UNDER_REVIEW, age_days=8, grievance_id="GRV-2"),
    ]

    rows = {row.authority_id: row for row in office_performance(grievances, directory, t0)}

    assert len(rows) == len(directory.all()), "every office gets a row"
    dhaka = rows["UTIL-L0-DHK"]
    assert (dhaka.total, dhaka.resolved, dhaka.pending, dhaka.sla_breached) == (2, 1, 1, 1)
    assert dhaka.resolution_rate == 0.5
    assert dhaka.mean_open_age_days == 8.0
    assert dhaka.rating == PerformanceRating.GOOD
    assert rows["OMB"].total == 0


def test_overview_counts(make_grievance, t0, policy) -> None:
    grievances = [
        make_grievance(S.SUBMITTED, age_days=4, grievance_id="GRV-1"),
        make_grievance(S.INFO_REQUESTED, age_days=6, grievance_id="GRV-2"),
        make_grievance(S.CLOSED_AUTO, age_days=1, grievance_id="GRV-3"),
        make_grievance(S.ESCALATED, age_days=8, authority_id="UTIL-L1", escalation_level=1, grievance_id="GRV-4"),
    ]

    stats = overview(grievances, t0, policy)

    assert (stats.total, stats.resolved, stats.pending, stats.escalated) == (4, 1, 2, 1)
    assert stats.sla_breached == 1
    assert stats.citizen_overdue == 1
    assert stats.authority_response_overdue == 1
    assert stats.resolution_rate == 0.25
    assert stats.by_status["SUBMITTED"] == 1
    assert stats.by_department == {"DPT-UTIL": 4}


def test_overview_of_nothing(t0) -> None:
    stats = overview([], t0)
    assert stats.total == 0
    assert stats.resolution_rate == 0.0
