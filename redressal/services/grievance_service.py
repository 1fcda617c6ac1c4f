"""Grievance service -- the inbound facade over the transition engine.

Every operation, whether requested by an actor or fired by the escalation
scheduler, goes through :meth:`GrievanceService._mutate`:

1. take the per-grievance ``asyncio.Lock``
2. read the committed record and run the (synchronous) engine transition
3. commit the new record to the store
4. persist it, still under the lock so writes for one record stay ordered
5. release the lock and send status-change notifications

Steps 4 and 5 are side effects.  They run under timeouts and a failure is
logged as a :class:`~redressal.errors.SideEffectFailure`; the committed
transition is never rolled back.  Failed writes are retried by
:meth:`GrievanceService.retry_pending` under the same lock.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from collections.abc import Callable
from datetime import UTC, datetime

import structlog

from redressal.errors import GrievanceEngineError, InvalidSuggestion, SideEffectFailure
from redressal.models.enums import GrievanceStatus
from redressal.models.grievance import ActionRequest, Actor, FilingRequest, Grievance
from redressal.services.categorizer import CategorySuggester, validate_suggestion
from redressal.services.deadlines import DeadlineSummary, deadline_summary
from redressal.services.directory import AuthorityDirectory
from redressal.services.notifications import LogNotifier, Notifier, status_changes_for
from redressal.services.rules import EscalationRuleResolver
from redressal.services.store import GrievanceStore
from redressal.services.transitions import SYSTEM_TRANSITIONS, Transition, TransitionEngine

logger = structlog.get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _system_request(note: str | None = None) -> ActionRequest:
    return ActionRequest.for_actor(Actor.system(), note=note)


class GrievanceService:
    """Async operations on grievances with per-record serialisation.

    Parameters
    ----------
    engine:
        The transition engine.
    store:
        Committed records and durable persistence.
    directory, resolver:
        Office hierarchy and escalation rules (for categorization and
        authority queue listings).
    notifier:
        Status-change delivery.  Defaults to :class:`LogNotifier`.
    suggester:
        Optional categorization assistant used when a citizen files
        without a category or department.
    notification_timeout_seconds:
        Upper bound on one notification call.
    """

    __slots__ = (
        "_directory",
        "_engine",
        "_locks",
        "_notification_timeout",
        "_notifier",
        "_resolver",
        "_store",
        "_suggester",
    )

    def __init__(
        self,
        engine: TransitionEngine,
        store: GrievanceStore,
        directory: AuthorityDirectory,
        resolver: EscalationRuleResolver,
        notifier: Notifier | None = None,
        *,
        suggester: CategorySuggester | None = None,
        notification_timeout_seconds: float = 5.0,
    ) -> None:
        self._engine = engine
        self._store = store
        self._directory = directory
        self._resolver = resolver
        self._notifier: Notifier = notifier or LogNotifier()
        self._suggester = suggester
        self._notification_timeout = notification_timeout_seconds
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    @property
    def engine(self) -> TransitionEngine:
        return self._engine

    @property
    def store(self) -> GrievanceStore:
        return self._store

    @property
    def directory(self) -> AuthorityDirectory:
        return self._directory

    @property
    def resolver(self) -> EscalationRuleResolver:
        return self._resolver

    @property
    def tracked_locks(self) -> int:
        """Number of per-grievance locks currently held in memory."""
        return len(self._locks)

    # ------------------------------------------------------------------
    # Filing
    # ------------------------------------------------------------------

    async def file_grievance(self, request: FilingRequest, now: datetime | None = None) -> Grievance:
        """Submit a draft grievance.

        When the draft has no category or department, the categorization
        assistant is asked for one and its answer is validated against the
        directory and rules before use.

        Raises
        ------
        RuleNotFound
            No escalation rule covers the (category, department) pair.
        InvalidSuggestion
            Categorization was needed but unavailable or returned an
            unknown category, department or office.
        """
        if request.needs_categorization:
            request = await self._categorize(request)

        grievance = self._engine.file(request, now or _utcnow())
        async with self._locks[grievance.id]:
            self._store.commit(grievance)
            await self._persist(grievance)
        await self._notify(grievance)
        return grievance

    async def _categorize(self, request: FilingRequest) -> FilingRequest:
        if self._suggester is None:
            raise InvalidSuggestion("category and department are required: no categorization assistant configured")

        try:
            suggestion = await self._suggester.suggest(request, self._resolver.all(), self._directory.all())
        except GrievanceEngineError:
            raise
        except Exception as exc:
            logger.error("grievance.categorization_failed", citizen_id=request.citizen_id, exc_info=True)
            raise InvalidSuggestion(f"categorization assistant unavailable: {exc!r}") from exc
        validate_suggestion(suggestion, self._directory, self._resolver)
        logger.info(
            "grievance.categorized",
            citizen_id=request.citizen_id,
            category=suggestion.category,
            department_id=suggestion.department_id,
            confidence=suggestion.confidence,
        )
        return request.model_copy(
            update={"category": suggestion.category, "department_id": suggestion.department_id}
        )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def apply_transition(
        self,
        transition: Transition,
        grievance_id: str,
        request: ActionRequest,
        now: datetime | None = None,
    ) -> Grievance:
        """Apply *transition* to the grievance and return the new record."""
        updated = await self._mutate(
            grievance_id,
            lambda current: self._engine.apply(transition, current, request, now or _utcnow()),
        )
        assert updated is not None  # noqa: S101
        return updated

    async def apply_system_transition(
        self,
        grievance_id: str,
        choose: Callable[[Grievance], Transition | None],
        now: datetime | None = None,
    ) -> tuple[Transition, Grievance] | None:
        """Let *choose* pick a system transition from the locked record.

        The choice is made while holding the grievance's lock, so it sees
        the same record the transition is applied to.  Returns ``None``
        when *choose* declines.
        """
        when = now or _utcnow()
        chosen: list[Transition] = []

        def step(current: Grievance) -> Grievance | None:
            transition = choose(current)
            if transition is None:
                return None
            if transition not in SYSTEM_TRANSITIONS:
                raise ValueError(f"{transition} is not a system transition")
            chosen.append(transition)
            return self._engine.apply(transition, current, _system_request(), when)

        updated = await self._mutate(grievance_id, step)
        if updated is None:
            return None
        return chosen[0], updated

    async def acknowledge(self, grievance_id: str, request: ActionRequest, now: datetime | None = None) -> Grievance:
        return await self.apply_transition(Transition.ACKNOWLEDGE, grievance_id, request, now)

    async def request_info(self, grievance_id: str, request: ActionRequest, now: datetime | None = None) -> Grievance:
        return await self.apply_transition(Transition.REQUEST_INFO, grievance_id, request, now)

    async def provide_info(self, grievance_id: str, request: ActionRequest, now: datetime | None = None) -> Grievance:
        return await self.apply_transition(Transition.PROVIDE_INFO, grievance_id, request, now)

    async def resolve(self, grievance_id: str, request: ActionRequest, now: datetime | None = None) -> Grievance:
        return await self.apply_transition(Transition.RESOLVE, grievance_id, request, now)

    async def accept(self, grievance_id: str, request: ActionRequest, now: datetime | None = None) -> Grievance:
        return await self.apply_transition(Transition.ACCEPT, grievance_id, request, now)

    async def dispute(self, grievance_id: str, request: ActionRequest, now: datetime | None = None) -> Grievance:
        return await self.apply_transition(Transition.DISPUTE, grievance_id, request, now)

    async def forward(self, grievance_id: str, request: ActionRequest, now: datetime | None = None) -> Grievance:
        """Hand the grievance to a peer office; ``request.to_authority_id`` is required."""
        return await self.apply_transition(Transition.FORWARD, grievance_id, request, now)

    async def assign(self, grievance_id: str, request: ActionRequest, now: datetime | None = None) -> Grievance:
        return await self.apply_transition(Transition.ASSIGN, grievance_id, request, now)

    async def withdraw(self, grievance_id: str, request: ActionRequest, now: datetime | None = None) -> Grievance:
        return await self.apply_transition(Transition.WITHDRAW, grievance_id, request, now)

    async def escalate(
        self,
        grievance_id: str,
        request: ActionRequest | None = None,
        now: datetime | None = None,
    ) -> Grievance:
        return await self.apply_transition(Transition.ESCALATE, grievance_id, request or _system_request(), now)

    async def authority_escalate(
        self,
        grievance_id: str,
        request: ActionRequest | None = None,
        now: datetime | None = None,
    ) -> Grievance:
        return await self.apply_transition(
            Transition.AUTHORITY_ESCALATE, grievance_id, request or _system_request(), now
        )

    async def auto_close(
        self,
        grievance_id: str,
        request: ActionRequest | None = None,
        now: datetime | None = None,
    ) -> Grievance:
        return await self.apply_transition(Transition.AUTO_CLOSE, grievance_id, request or _system_request(), now)

    async def archive(
        self,
        grievance_id: str,
        request: ActionRequest | None = None,
        now: datetime | None = None,
    ) -> Grievance:
        return await self.apply_transition(Transition.ARCHIVE, grievance_id, request or _system_request(), now)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, grievance_id: str) -> Grievance:
        return self._store.get(grievance_id)

    def list_for_citizen(self, citizen_id: str) -> list[Grievance]:
        """The citizen's grievances, newest first."""
        return sorted(self._store.for_citizen(citizen_id), key=lambda g: g.created_at, reverse=True)

    def list_for_authority(self, authority_id: str, *, include_closed: bool = False) -> list[Grievance]:
        """The office's queue, longest-waiting first."""
        self._directory.get(authority_id)
        grievances = self._store.for_authorities([authority_id])
        if not include_closed:
            grievances = [g for g in grievances if not g.is_terminal]
        return sorted(grievances, key=lambda g: g.status_since)

    def deadlines(self, grievance_id: str, now: datetime | None = None) -> DeadlineSummary:
        return deadline_summary(self._store.get(grievance_id), now or _utcnow(), self._engine.policy)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _mutate(
        self,
        grievance_id: str,
        step: Callable[[Grievance], Grievance | None],
    ) -> Grievance | None:
        # Unknown ids fail before a lock is allocated for them.
        self._store.get(grievance_id)

        async with self._locks[grievance_id]:
            updated = step(self._store.get(grievance_id))
            if updated is None:
                return None
            self._store.commit(updated)
            await self._persist(updated)

        self._release_lock(updated)
        await self._notify(updated)
        return updated

    def _release_lock(self, grievance: Grievance) -> None:
        # Archived records accept no further transitions.
        lock = self._locks.get(grievance.id)
        if grievance.status == GrievanceStatus.ARCHIVED and lock is not None and not lock.locked():
            del self._locks[grievance.id]

    async def retry_pending(self) -> int:
        """Rewrite queued records under their locks; return how many succeeded.

        Each retry writes the committed copy read after the lock is taken,
        so it can never overwrite a newer transition's write.
        """
        written = 0
        for grievance_id in self._store.pending_ids():
            async with self._locks[grievance_id]:
                latest = self._store.get(grievance_id)
                try:
                    await self._store.persist(latest)
                except SideEffectFailure:
                    continue
                written += 1
            self._release_lock(latest)
        if written:
            logger.info("store.pending_retried", written=written, remaining=self._store.pending_count)
        return written

    async def _persist(self, grievance: Grievance) -> None:
        try:
            await self._store.persist(grievance)
        except SideEffectFailure as exc:
            logger.warning(
                "grievance.side_effect_failed",
                grievance_id=grievance.id,
                effect=exc.effect,
                error=exc.message,
            )

    async def _notify(self, grievance: Grievance) -> None:
        log = logger.bind(grievance_id=grievance.id, status=str(grievance.status))
        for change in status_changes_for(grievance):
            try:
                await asyncio.wait_for(self._notifier.notify(change), timeout=self._notification_timeout)
            except Exception as exc:
                failure = SideEffectFailure(
                    f"could not notify {change.recipient_role} {change.recipient_id}: {exc!r}",
                    grievance_id=grievance.id,
                    effect="notification",
                )
                log.warning(
                    "grievance.side_effect_failed",
                    effect=failure.effect,
                    error=failure.message,
                    exc_info=True,
                )
