"""Escalation scheduler -- fires system transitions when deadlines lapse.

Each sweep evaluates every non-terminal grievance and fires at most one
system transition per record, chosen in priority order:

1. citizen auto-close      (INFO_REQUESTED / RESOLVED_PENDING_CONFIRM)
2. authority-response      (SUBMITTED / UNDER_REVIEW, to the office admin)
3. SLA escalation          (one level up the rule's chain)

Every fired transition resets ``status_since``, so sweeping twice with
the same clock fires nothing the second time.

Transitions go through :class:`GrievanceService`, taking the same
per-grievance lock as actor calls.  Different grievances are processed
concurrently.

Development mode
    :meth:`EscalationScheduler.start_background_scheduler` runs an
    ``asyncio`` loop inside the API process.

Production mode
    An external clock calls ``POST /api/v1/admin/sweep``.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime

import structlog

from redressal.errors import GrievanceEngineError, NoFurtherEscalation
from redressal.models.grievance import Grievance
from redressal.services import deadlines
from redressal.services.deadlines import DeadlinePolicy
from redressal.services.grievance_service import GrievanceService
from redressal.services.transitions import Transition

logger = structlog.get_logger(__name__)


@dataclass(slots=True, frozen=True)
class SystemTransition:
    """A system transition due for one grievance, and the window that lapsed."""

    transition: Transition
    window: str


def evaluate(
    grievance: Grievance,
    now: datetime,
    policy: DeadlinePolicy = DeadlinePolicy(),
) -> SystemTransition | None:
    """Pick the system transition due for *grievance* at *now*, if any."""
    if grievance.is_terminal:
        return None
    if deadlines.is_citizen_auto_close_deadline_breached(grievance, now, policy):
        return SystemTransition(Transition.AUTO_CLOSE, "citizen_auto_close")
    # Authority response wins over the SLA while both windows are open.
    if deadlines.is_authority_response_deadline_breached(grievance, now, policy):
        return SystemTransition(Transition.AUTHORITY_ESCALATE, "authority_response")
    if deadlines.is_sla_breached(grievance, now):
        return SystemTransition(Transition.ESCALATE, "sla")
    return None


@dataclass(slots=True)
class SweepReport:
    """Outcome of one sweep."""

    started_at: datetime
    evaluated: int = 0
    fired: dict[str, str] = field(default_factory=dict)
    failures: dict[str, str] = field(default_factory=dict)
    manual_intervention: list[str] = field(default_factory=list)
    retried_writes: int = 0
    duration_seconds: float = 0.0

    def to_dict(self) -> dict:
        return {
            "started_at": self.started_at.isoformat(),
            "evaluated": self.evaluated,
            "fired": dict(self.fired),
            "failures": dict(self.failures),
            "manual_intervention": list(self.manual_intervention),
            "retried_writes": self.retried_writes,
            "duration_seconds": round(self.duration_seconds, 3),
        }


# ---------------------------------------------------------------------------
# EscalationScheduler
# ---------------------------------------------------------------------------


class EscalationScheduler:
    """Periodic and on-demand deadline sweeps.

    Parameters
    ----------
    service:
        The grievance service every transition goes through.
    policy:
        Fixed deadline windows.  Defaults to the engine's policy.
    interval_seconds:
        Pause between background sweeps.
    enabled:
        When ``False`` the background loop does not start; on-demand
        sweeps still work.
    """

    def __init__(
        self,
        service: GrievanceService,
        policy: DeadlinePolicy | None = None,
        *,
        interval_seconds: float = 3600,
        enabled: bool = True,
    ) -> None:
        self._service = service
        self._policy = policy or service.engine.policy
        self._interval = interval_seconds
        self._enabled = enabled
        self._task: asyncio.Task | None = None  # type: ignore[type-arg]
        self._running = False
        self._last_sweep: SweepReport | None = None

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        """Whether the background loop is currently active."""
        return self._running

    @property
    def last_sweep(self) -> SweepReport | None:
        return self._last_sweep

    # ------------------------------------------------------------------
    # Sweeping
    # ------------------------------------------------------------------

    async def sweep(self, now: datetime | None = None) -> SweepReport:
        """Evaluate every open grievance once and fire what is due."""
        now = now or datetime.now(UTC)
        report = SweepReport(started_at=now)
        loop = asyncio.get_running_loop()
        start = loop.time()

        report.retried_writes = await self._service.retry_pending()

        candidates = [g.id for g in self._service.store.open_grievances()]
        report.evaluated = len(candidates)
        await asyncio.gather(*(self._process(grievance_id, now, report) for grievance_id in candidates))

        report.duration_seconds = loop.time() - start
        self._last_sweep = report
        logger.info(
            "scheduler.sweep.completed",
            evaluated=report.evaluated,
            fired=len(report.fired),
            failures=len(report.failures),
            manual_intervention=len(report.manual_intervention),
            retried_writes=report.retried_writes,
            duration_s=round(report.duration_seconds, 3),
        )
        return report

    async def check(self, grievance_id: str, now: datetime | None = None) -> Grievance:
        """Evaluate a single grievance, e.g. when it is read, and return it."""
        now = now or datetime.now(UTC)
        await self._service.apply_system_transition(grievance_id, self._chooser(now), now)
        return self._service.get(grievance_id)

    def _chooser(self, now: datetime) -> Callable[[Grievance], Transition | None]:
        def choose(grievance: Grievance) -> Transition | None:
            due = evaluate(grievance, now, self._policy)
            return due.transition if due is not None else None

        return choose

    async def _process(self, grievance_id: str, now: datetime, report: SweepReport) -> None:
        log = logger.bind(grievance_id=grievance_id)
        try:
            outcome = await self._service.apply_system_transition(grievance_id, self._chooser(now), now)
        except NoFurtherEscalation as exc:
            report.manual_intervention.append(grievance_id)
            log.warning("scheduler.manual_intervention_required", reason=exc.message)
            return
        except GrievanceEngineError as exc:
            report.failures[grievance_id] = exc.code
            log.warning("scheduler.transition_failed", code=exc.code, reason=exc.message)
            return
        except Exception:
            report.failures[grievance_id] = "unexpected_error"
            log.error("scheduler.transition_error", exc_info=True)
            return

        if outcome is not None:
            transition, updated = outcome
            report.fired[grievance_id] = str(transition)
            log.info(
                "scheduler.transition_fired",
                transition=str(transition),
                status=str(updated.status),
                authority_id=updated.authority_id,
            )

    # ------------------------------------------------------------------
    # Background loop (development mode)
    # ------------------------------------------------------------------

    async def start_background_scheduler(self) -> None:
        """Run sweeps every ``interval_seconds`` until :meth:`stop` is called.

        Meant to be wrapped in ``asyncio.create_task`` by the application
        lifespan; :meth:`stop` cancels it.
        """
        if not self._enabled:
            logger.info("scheduler.auto_sweep_disabled")
            return

        self._running = True
        self._task = asyncio.current_task()
        logger.info("scheduler.background_started", interval_s=self._interval)

        try:
            while self._running:
                await self._safe_sweep()
                await asyncio.sleep(self._interval)
        except asyncio.CancelledError:
            logger.info("scheduler.background_cancelled")
        finally:
            self._running = False
            logger.info("scheduler.background_stopped")

    async def _safe_sweep(self) -> SweepReport | None:
        try:
            return await self.sweep()
        except Exception:
            logger.error("scheduler.sweep.failed", exc_info=True)
            return None

    # ------------------------------------------------------------------
    # On-demand execution (for admin API / external clock)
    # ------------------------------------------------------------------

    async def run_sweep_now(self, now: datetime | None = None) -> SweepReport:
        logger.info("scheduler.manual_trigger")
        return await self.sweep(now)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def stop(self) -> None:
        """Stop the background loop, waiting briefly for it to finish."""
        logger.info("scheduler.stopping")
        self._running = False

        if self._task is not None and self._task is not asyncio.current_task():
            self._task.cancel()
            try:
                await asyncio.wait_for(self._task, timeout=10.0)
            except (asyncio.CancelledError, TimeoutError):
                pass
            self._task = None

        logger.info("scheduler.stopped")
