"""Escalation Rule Resolver.

Maps a grievance's (category, department) pair to the rule that governs
it and answers "who owns the case at level *n*, and for how long".
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

import structlog

from redressal.errors import NoFurtherEscalation, RuleNotFound
from redressal.models.authority import EscalationRule
from redressal.models.grievance import Grievance
from redressal.services.directory import AuthorityDirectory

logger = structlog.get_logger(__name__)


@dataclass(slots=True, frozen=True)
class Assignment:
    """Owning office and SLA window for one escalation level."""

    authority_id: str
    sla_days: int
    level: int


def _rule_key(category: str, department_id: str) -> tuple[str, str]:
    return category.strip().lower(), department_id.strip().upper()


class EscalationRuleResolver:
    """Resolves escalation rules and level assignments.

    Parameters
    ----------
    rules:
        Every configured rule.  At most one rule per (category, department).
    directory:
        Used to check that every office a rule names exists.
    """

    __slots__ = ("_directory", "_rules")

    def __init__(self, rules: Iterable[EscalationRule], directory: AuthorityDirectory) -> None:
        self._directory = directory
        self._rules: dict[tuple[str, str], EscalationRule] = {}

        for rule in rules:
            key = _rule_key(rule.category, rule.department_id)
            if key in self._rules:
                raise ValueError(f"rules {self._rules[key].id} and {rule.id} both cover {key}")
            for authority_id in rule.levels:
                if not directory.contains(authority_id):
                    raise ValueError(f"rule {rule.id} names unknown authority {authority_id}")
            self._rules[key] = rule

        logger.info("rules.loaded", rules=len(self._rules))

    def resolve(self, category: str, department_id: str) -> EscalationRule:
        rule = self._rules.get(_rule_key(category, department_id))
        if rule is None:
            raise RuleNotFound(f"no escalation rule for category {category!r} in department {department_id!r}")
        return rule

    def rule_for(self, grievance: Grievance) -> EscalationRule:
        return self.resolve(grievance.category, grievance.department_id)

    def all(self) -> list[EscalationRule]:
        return list(self._rules.values())

    def categories(self) -> set[str]:
        return {rule.category for rule in self._rules.values()}

    def departments(self) -> set[str]:
        return {rule.department_id for rule in self._rules.values()}

    @staticmethod
    def initial_assignment(rule: EscalationRule) -> Assignment:
        return Assignment(authority_id=rule.levels[0], sla_days=rule.sla_days_per_level[0], level=0)

    @staticmethod
    def next_level_assignment(rule: EscalationRule, current_level: int) -> Assignment:
        """Assignment for ``current_level + 1``.

        Raises
        ------
        NoFurtherEscalation
            When the grievance is already at the last level of the chain.
        """
        next_level = current_level + 1
        if next_level >= len(rule.levels):
            raise NoFurtherEscalation(
                f"rule {rule.id} has no level above {current_level} (apex: {rule.levels[-1]})"
            )
        return Assignment(
            authority_id=rule.levels[next_level],
            sla_days=rule.sla_days_per_level[next_level],
            level=next_level,
        )
