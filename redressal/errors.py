"""Typed failures raised by the grievance engine.

Every failure the engine reports derives from :class:`GrievanceEngineError`
and carries a stable ``code`` so the API layer can map it to an HTTP
status without inspecting messages.
"""

from __future__ import annotations


class GrievanceEngineError(Exception):
    """Base class for all engine failures."""

    code: str = "engine_error"

    def __init__(self, message: str = "", *, grievance_id: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.grievance_id = grievance_id


class InvalidTransition(GrievanceEngineError):
    """The grievance is not in a state that permits the requested operation."""

    code = "invalid_transition"


class Unauthorized(GrievanceEngineError):
    """The acting role or identity may not perform the operation."""

    code = "unauthorized"


class TerminalStateViolation(GrievanceEngineError):
    """An attempt was made to mutate a closed, withdrawn or archived grievance."""

    code = "terminal_state"


class RuleNotFound(GrievanceEngineError):
    code = "rule_not_found"


class NoFurtherEscalation(GrievanceEngineError):
    """The grievance already sits at the apex of its escalation chain.

    Apex breaches need manual administrative handling.
    """

    code = "no_further_escalation"


class RecordNotFound(GrievanceEngineError):
    code = "record_not_found"


class InvalidSuggestion(GrievanceEngineError):
    """A categorization suggestion named an unknown category, department or office."""

    code = "invalid_suggestion"


class SideEffectFailure(GrievanceEngineError):
    """Persistence or notification failed after a committed transition.

    The committed state change stands; the side effect is retried or
    alerted on separately.
    """

    code = "side_effect_failure"

    def __init__(
        self,
        message: str = "",
        *,
        grievance_id: str | None = None,
        effect: str = "",
    ) -> None:
        super().__init__(message, grievance_id=grievance_id)
        self.effect = effect
