"""Redressal service layer -- directory, rules, deadlines, transitions,
persistence, notifications, and the escalation scheduler.

The Vertex AI client (:mod:`redressal.services.llm`) is not exported here
so that ``import redressal.services`` does not load the Google Cloud SDK;
the application imports it only when categorization is enabled.
"""

from __future__ import annotations

from redressal.services.deadlines import DeadlinePolicy, DeadlineSummary, deadline_summary
from redressal.services.directory import AuthorityDirectory
from redressal.services.escalation_scheduler import (
    EscalationScheduler,
    SweepReport,
    SystemTransition,
    evaluate,
)
from redressal.services.grievance_service import GrievanceService
from redressal.services.notifications import LogNotifier, Notifier, StatusChange, WebhookNotifier
from redressal.services.rules import Assignment, EscalationRuleResolver
from redressal.services.store import GrievanceStore, InMemoryPersistence, PersistenceBackend, RedisPersistence
from redressal.services.transitions import Transition, TransitionEngine, replay_projection

__all__ = [
    "Assignment",
    "AuthorityDirectory",
    "DeadlinePolicy",
    "DeadlineSummary",
    "EscalationRuleResolver",
    "EscalationScheduler",
    "GrievanceService",
    "GrievanceStore",
    "InMemoryPersistence",
    "LogNotifier",
    "Notifier",
    "PersistenceBackend",
    "RedisPersistence",
    "StatusChange",
    "SweepReport",
    "SystemTransition",
    "Transition",
    "TransitionEngine",
    "WebhookNotifier",
    "deadline_summary",
    "evaluate",
    "replay_projection",
]
