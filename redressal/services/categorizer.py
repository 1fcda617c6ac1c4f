"""Categorization assistant for grievances filed without a category.

A :class:`CategorySuggester` proposes a category, department and office
for a draft.  Suggestions are advisory: :func:`validate_suggestion`
checks every field against the configured rules and directory, and the
grievance is still routed by the escalation rule, not by the suggested
office.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from typing import TYPE_CHECKING, Final, Protocol, runtime_checkable

import orjson
import structlog
from pydantic import BaseModel, Field, ValidationError, field_validator

from redressal.errors import InvalidSuggestion, RuleNotFound
from redressal.models.authority import Authority, EscalationRule
from redressal.models.grievance import FilingRequest
from redressal.services.directory import AuthorityDirectory
from redressal.services.rules import EscalationRuleResolver

if TYPE_CHECKING:
    from redressal.services.llm import LLMService

logger = structlog.get_logger(__name__)

_DEFAULT_SLA_DAYS: Final[int] = 7
_MIN_SLA_DAYS: Final[int] = 1
_MAX_SLA_DAYS: Final[int] = 30

_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


class CategorySuggestion(BaseModel):
    """What the assistant thinks a draft is about."""

    model_config = {"frozen": True}

    category: str
    department_id: str
    authority_id: str
    suggested_sla_days: int = _DEFAULT_SLA_DAYS
    confidence: float = Field(default=0.0, ge=0.0, le=100.0)
    reasoning: str = ""

    @field_validator("suggested_sla_days", mode="before")
    @classmethod
    def _clamp_sla(cls, value: object) -> int:
        try:
            days = int(value) if value else _DEFAULT_SLA_DAYS
        except (TypeError, ValueError):
            days = _DEFAULT_SLA_DAYS
        return max(_MIN_SLA_DAYS, min(_MAX_SLA_DAYS, days))

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, value: object) -> float:
        try:
            score = float(value) if value else 0.0
        except (TypeError, ValueError):
            score = 0.0
        return max(0.0, min(100.0, score))


@runtime_checkable
class CategorySuggester(Protocol):
    async def suggest(
        self,
        draft: FilingRequest,
        rules: Sequence[EscalationRule],
        authorities: Sequence[Authority],
    ) -> CategorySuggestion: ...


def validate_suggestion(
    suggestion: CategorySuggestion,
    directory: AuthorityDirectory,
    resolver: EscalationRuleResolver,
) -> None:
    """Reject a suggestion that names anything not configured.

    Raises
    ------
    InvalidSuggestion
        Unknown category, unknown department, unknown office, or a
        (category, department) pair with no escalation rule.
    """
    categories = {c.lower() for c in resolver.categories()}
    if suggestion.category.lower() not in categories:
        raise InvalidSuggestion(f"unknown category: {suggestion.category!r}")
    if suggestion.department_id.upper() not in {d.upper() for d in resolver.departments()}:
        raise InvalidSuggestion(f"unknown department: {suggestion.department_id!r}")
    if not directory.contains(suggestion.authority_id):
        raise InvalidSuggestion(f"unknown authority: {suggestion.authority_id!r}")
    try:
        resolver.resolve(suggestion.category, suggestion.department_id)
    except RuleNotFound as exc:
        raise InvalidSuggestion(exc.message) from exc


# ---------------------------------------------------------------------------
# Gemini-backed suggester
# ---------------------------------------------------------------------------

_CATEGORIZE_PROMPT: Final[str] = """\
Categorize and route the following public grievance.

Available categories: {categories}
Available departments: {departments}
Available authorities: {authorities}

Grievance details:
Subject: "{subject}"
Description: "{description}"
Desired outcome: "{desired_outcome}"

Choose:
1. the most appropriate category from the available options
2. the most appropriate department id from the available options
3. the most appropriate authority id, the lowest level office of that department
4. suggested SLA days (1-30, considering urgency and complexity)
5. a confidence score (0-100)
6. brief reasoning

Respond in JSON:
{{"category": "...", "departmentId": "...", "authorityId": "...", \
"suggestedSlaDays": 7, "confidence": 80, "reasoning": "..."}}
"""


class LLMCategorizer:
    """Asks Gemini to categorize a draft grievance.

    Parameters
    ----------
    llm:
        The Vertex AI client.
    """

    __slots__ = ("_llm",)

    def __init__(self, llm: LLMService) -> None:
        self._llm = llm

    @staticmethod
    def build_prompt(
        draft: FilingRequest,
        rules: Sequence[EscalationRule],
        authorities: Sequence[Authority],
    ) -> str:
        catalogue = [
            {"id": a.id, "name": a.name, "departmentId": a.department_id, "level": a.level} for a in authorities
        ]
        return _CATEGORIZE_PROMPT.format(
            categories=", ".join(sorted({r.category for r in rules})),
            departments=", ".join(sorted({r.department_id for r in rules})),
            authorities=orjson.dumps(catalogue).decode(),
            subject=draft.subject,
            description=draft.description,
            desired_outcome=draft.desired_outcome or "Not specified",
        )

    @staticmethod
    def parse(raw_text: str) -> CategorySuggestion:
        """Extract a suggestion from the model output.

        Raises
        ------
        InvalidSuggestion
            When no JSON object can be found or it lacks required fields.
        """
        match = _JSON_OBJECT.search(raw_text)
        if match is None:
            raise InvalidSuggestion("categorization response contained no JSON object")
        try:
            payload = orjson.loads(match.group(0))
            return CategorySuggestion(
                category=payload["category"],
                department_id=payload["departmentId"],
                authority_id=payload["authorityId"],
                suggested_sla_days=payload.get("suggestedSlaDays"),
                confidence=payload.get("confidence"),
                reasoning=payload.get("reasoning") or "Analysis completed",
            )
        except (orjson.JSONDecodeError, KeyError, TypeError, ValidationError) as exc:
            raise InvalidSuggestion(f"malformed categorization response: {exc}") from exc

    async def suggest(
        self,
        draft: FilingRequest,
        rules: Sequence[EscalationRule],
        authorities: Sequence[Authority],
    ) -> CategorySuggestion:
        result = await self._llm.generate(self.build_prompt(draft, rules, authorities))
        suggestion = self.parse(result.text)
        logger.info(
            "categorizer.suggested",
            category=suggestion.category,
            department_id=suggestion.department_id,
            authority_id=suggestion.authority_id,
            confidence=suggestion.confidence,
            processing_time_ms=result.processing_time_ms,
        )
        return suggestion
