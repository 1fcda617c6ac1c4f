"""Demonstration office hierarchy and escalation rules.

Six departments, each with city offices at level 0 reporting to a
national authority at level 1, all topped by a global Ombudsman at
level 2.  Loaded at application startup when no other configuration is
supplied, and used as fixtures by the tests.
"""

from __future__ import annotations

from typing import Final

import structlog

from redressal.models.authority import Authority, EscalationRule, Jurisdiction
from redressal.services.directory import AuthorityDirectory
from redressal.services.rules import EscalationRuleResolver

logger = structlog.get_logger(__name__)

# ---------------------------------------------------------------------------
# Departments
# ---------------------------------------------------------------------------

DEPARTMENTS: Final[dict[str, str]] = {
    "DPT-UTIL": "Utilities",
    "DPT-HEALTH": "Health",
    "DPT-EDU": "Education",
    "DPT-TRANSPORT": "Transportation",
    "DPT-HOUSING": "Housing",
    "DPT-ENV": "Environment",
}

OMBUDSMAN_ID: Final[str] = "OMB"


def _city_office(office_id: str, name: str, department_id: str, city: str, parent_id: str) -> Authority:
    return Authority(
        id=office_id,
        name=name,
        level=0,
        department_id=department_id,
        parent_id=parent_id,
        jurisdiction=Jurisdiction(city=city),
    )


def _national_authority(office_id: str, name: str, department_id: str) -> Authority:
    return Authority(id=office_id, name=name, level=1, department_id=department_id, parent_id=OMBUDSMAN_ID)


def seed_authorities() -> list[Authority]:
    return [
        # Utilities
        _city_office("UTIL-L0-DHK", "Dhaka Electricity Office", "DPT-UTIL", "Dhaka", "UTIL-L1"),
        _city_office("UTIL-L0-CTG", "Chittagong Electricity Office", "DPT-UTIL", "Chittagong", "UTIL-L1"),
        _national_authority("UTIL-L1", "National Electricity Authority", "DPT-UTIL"),
        # Health
        _city_office("HEALTH-L0-DHK", "Dhaka Health Office", "DPT-HEALTH", "Dhaka", "HEALTH-L1"),
        _city_office("HEALTH-L0-CTG", "Chittagong Health Office", "DPT-HEALTH", "Chittagong", "HEALTH-L1"),
        _national_authority("HEALTH-L1", "National Health Authority", "DPT-HEALTH"),
        # Education
        _city_office("EDU-L0-DHK", "Dhaka Education Office", "DPT-EDU", "Dhaka", "EDU-L1"),
        _national_authority("EDU-L1", "National Education Authority", "DPT-EDU"),
        # Transportation
        _city_office("TRANSPORT-L0-DHK", "Dhaka Transport Office", "DPT-TRANSPORT", "Dhaka", "TRANSPORT-L1"),
        _national_authority("TRANSPORT-L1", "National Transport Authority", "DPT-TRANSPORT"),
        # Housing
        _city_office("HOUSING-L0-DHK", "Dhaka Housing Office", "DPT-HOUSING", "Dhaka", "HOUSING-L1"),
        _national_authority("HOUSING-L1", "National Housing Authority", "DPT-HOUSING"),
        # Environment
        _city_office("ENV-L0-DHK", "Dhaka Environment Office", "DPT-ENV", "Dhaka", "ENV-L1"),
        _national_authority("ENV-L1", "National Environment Authority", "DPT-ENV"),
        # Global apex
        Authority(id=OMBUDSMAN_ID, name="Ombudsman", level=2, department_id="GLOBAL"),
    ]


def _default_rule(
    rule_id: str,
    category: str,
    department_id: str,
    prefix: str,
    sla_days: tuple[int, int, int],
    citizen_response_days: int,
) -> EscalationRule:
    return EscalationRule(
        id=rule_id,
        name=f"{category} Default",
        category=category,
        department_id=department_id,
        levels=(f"{prefix}-L0-DHK", f"{prefix}-L1", OMBUDSMAN_ID),
        sla_days_per_level=sla_days,
        citizen_response_days=citizen_response_days,
    )


def seed_rules() -> list[EscalationRule]:
    return [
        _default_rule("R-UTIL", "Utilities", "DPT-UTIL", "UTIL", (7, 7, 10), 5),
        _default_rule("R-HEALTH", "Health", "DPT-HEALTH", "HEALTH", (7, 10, 10), 5),
        _default_rule("R-EDU", "Education", "DPT-EDU", "EDU", (10, 14, 15), 7),
        _default_rule("R-TRANSPORT", "Transportation", "DPT-TRANSPORT", "TRANSPORT", (5, 7, 10), 3),
        _default_rule("R-HOUSING", "Housing", "DPT-HOUSING", "HOUSING", (14, 21, 30), 10),
        _default_rule("R-ENV", "Environment", "DPT-ENV", "ENV", (10, 14, 20), 7),
    ]


def build_directory() -> AuthorityDirectory:
    return AuthorityDirectory(seed_authorities())


def build_resolver(directory: AuthorityDirectory | None = None) -> EscalationRuleResolver:
    resolver = EscalationRuleResolver(seed_rules(), directory or build_directory())
    logger.info("seed.loaded", departments=len(DEPARTMENTS))
    return resolver
