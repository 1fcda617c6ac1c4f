"""Authority hierarchy and escalation policy records.

Both are administrative configuration: the engine reads them and never
writes them.
"""

from __future__ import annotations

from pydantic import BaseModel, Field, model_validator


class Jurisdiction(BaseModel):
    """Optional geographic scope of an office."""

    model_config = {"frozen": True}

    state: str | None = None
    district: str | None = None
    city: str | None = None


class Authority(BaseModel):
    """A government office capable of owning and acting on a grievance."""

    model_config = {"frozen": True}

    id: str = Field(..., min_length=1)
    name: str
    level: int = Field(..., ge=0)
    department_id: str
    parent_id: str | None = None
    jurisdiction: Jurisdiction | None = None
    # Office whose administrators receive authority-response escalations.
    admin_office_id: str | None = None


class EscalationRule(BaseModel):
    """Escalation chain and SLA windows for one category within a department."""

    model_config = {"frozen": True}

    id: str
    name: str = ""
    category: str
    department_id: str
    levels: tuple[str, ...]
    sla_days_per_level: tuple[int, ...]
    citizen_response_days: int = Field(..., gt=0)

    @model_validator(mode="after")
    def _check_levels(self) -> EscalationRule:
        if not self.levels:
            raise ValueError(f"rule {self.id} has no escalation levels")
        if len(self.levels) != len(self.sla_days_per_level):
            raise ValueError(
                f"rule {self.id}: {len(self.levels)} levels but "
                f"{len(self.sla_days_per_level)} SLA windows"
            )
        if any(days <= 0 for days in self.sla_days_per_level):
            raise ValueError(f"rule {self.id}: SLA windows must be positive")
        return self
