"""Grievance store: committed in-memory projection plus durable persistence.

The store keeps the authoritative, committed copy of every grievance in
process memory -- that is what transitions read and replace.  Writing to
the durable backend (Redis, or an in-memory stand-in for development and
tests) happens afterwards as a side effect.  A failed write never undoes
the commit: the record is parked in a pending set and retried by the
escalation scheduler on its next pass.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Iterable
from typing import Protocol, runtime_checkable

import orjson
import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from redressal.errors import RecordNotFound, SideEffectFailure
from redressal.models.grievance import Grievance

logger = structlog.get_logger(__name__)


def _dump(grievance: Grievance) -> bytes:
    return orjson.dumps(grievance.model_dump(mode="json"))


def _load(raw: bytes) -> Grievance:
    return Grievance.model_validate(orjson.loads(raw))


# ---------------------------------------------------------------------------
# Persistence backend protocol
# ---------------------------------------------------------------------------


@runtime_checkable
class PersistenceBackend(Protocol):
    """Async durable storage for grievance records."""

    async def load_all(self) -> list[Grievance]: ...

    async def save(self, grievance: Grievance) -> None: ...

    async def close(self) -> None: ...


# ---------------------------------------------------------------------------
# Redis backend
# ---------------------------------------------------------------------------


class RedisPersistence:
    """Redis-backed persistence using ``redis.asyncio`` with connection pooling.

    Each grievance is stored as an orjson document under
    ``{namespace}grievance:{id}``; the ids live in the ``{namespace}grievances``
    set so the store can be rebuilt at startup.
    """

    __slots__ = ("_namespace", "_pool", "_redis")

    def __init__(
        self,
        url: str = "redis://localhost:6379/0",
        *,
        namespace: str = "redressal:",
        max_connections: int = 20,
    ) -> None:
        import redis.asyncio as aioredis

        self._namespace = namespace
        self._pool = aioredis.ConnectionPool.from_url(
            url,
            max_connections=max_connections,
            decode_responses=False,
        )
        self._redis = aioredis.Redis(connection_pool=self._pool)

    def _key(self, grievance_id: str) -> str:
        return f"{self._namespace}grievance:{grievance_id}"

    @property
    def _index_key(self) -> str:
        return f"{self._namespace}grievances"

    async def load_all(self) -> list[Grievance]:
        ids = await self._redis.smembers(self._index_key)
        if not ids:
            return []
        keys = [self._key(raw_id.decode()) for raw_id in sorted(ids)]
        documents = await self._redis.mget(keys)
        return [_load(raw) for raw in documents if raw is not None]

    @retry(
        retry=retry_if_exception_type(Exception),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
        reraise=True,
    )
    async def save(self, grievance: Grievance) -> None:
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.set(self._key(grievance.id), _dump(grievance))
            pipe.sadd(self._index_key, grievance.id)
            await pipe.execute()

    async def ping(self) -> bool:
        """Return *True* if the Redis server is reachable."""
        try:
            return bool(await self._redis.ping())
        except Exception:
            return False

    async def close(self) -> None:
        await self._redis.aclose()
        await self._pool.aclose()


# ---------------------------------------------------------------------------
# In-memory backend
# ---------------------------------------------------------------------------


class InMemoryPersistence:
    """Process-local stand-in for the durable store.

    Documents are kept serialised so a load round-trips exactly like the
    Redis backend does.
    """

    __slots__ = ("_documents",)

    def __init__(self) -> None:
        self._documents: dict[str, bytes] = {}

    async def load_all(self) -> list[Grievance]:
        return [_load(raw) for raw in self._documents.values()]

    async def save(self, grievance: Grievance) -> None:
        self._documents[grievance.id] = _dump(grievance)

    async def close(self) -> None:
        self._documents.clear()

    @property
    def size(self) -> int:
        return len(self._documents)


# ---------------------------------------------------------------------------
# GrievanceStore  --  public API
# ---------------------------------------------------------------------------


class GrievanceStore:
    """Committed grievance records with write-behind persistence.

    Parameters
    ----------
    backend:
        Durable storage.  Defaults to :class:`InMemoryPersistence`.
    timeout_seconds:
        Upper bound on a single persistence call.
    """

    __slots__ = ("_backend", "_pending", "_records", "_timeout")

    def __init__(
        self,
        backend: PersistenceBackend | None = None,
        *,
        timeout_seconds: float = 5.0,
    ) -> None:
        self._backend: PersistenceBackend = backend or InMemoryPersistence()
        self._timeout = timeout_seconds
        self._records: dict[str, Grievance] = {}
        self._pending: set[str] = set()

    # -- committed projection ------------------------------------------------

    def get(self, grievance_id: str) -> Grievance:
        try:
            return self._records[grievance_id]
        except KeyError:
            raise RecordNotFound(f"unknown grievance: {grievance_id}", grievance_id=grievance_id) from None

    def contains(self, grievance_id: str) -> bool:
        return grievance_id in self._records

    def commit(self, grievance: Grievance) -> None:
        self._records[grievance.id] = grievance

    def all(self) -> list[Grievance]:
        return list(self._records.values())

    def open_grievances(self) -> list[Grievance]:
        return [g for g in self._records.values() if not g.is_terminal]

    def for_citizen(self, citizen_id: str) -> list[Grievance]:
        return [g for g in self._records.values() if g.citizen_id == citizen_id]

    def for_authorities(self, authority_ids: Iterable[str]) -> list[Grievance]:
        wanted = set(authority_ids)
        return [g for g in self._records.values() if g.authority_id in wanted]

    def __len__(self) -> int:
        return len(self._records)

    # -- durable side ---------------------------------------------------------

    async def hydrate(self) -> int:
        """Load every persisted record into the committed projection."""
        records = await asyncio.wait_for(self._backend.load_all(), timeout=self._timeout)
        for grievance in records:
            self._records[grievance.id] = grievance
        logger.info("store.hydrated", records=len(records))
        return len(records)

    async def persist(self, grievance: Grievance) -> None:
        """Write *grievance* to the backend.

        Raises
        ------
        SideEffectFailure
            When the write fails or times out.  The record stays listed in
            :meth:`pending_ids` until its committed copy is written.
        """
        try:
            await asyncio.wait_for(self._backend.save(grievance), timeout=self._timeout)
        except Exception as exc:
            self._pending.add(grievance.id)
            logger.error(
                "store.persist.failed",
                grievance_id=grievance.id,
                pending=len(self._pending),
                exc_info=True,
            )
            raise SideEffectFailure(
                f"could not persist grievance {grievance.id}",
                grievance_id=grievance.id,
                effect="persistence",
            ) from exc
        # Only a write of the committed copy settles the record.
        if self._records.get(grievance.id, grievance) == grievance:
            self._pending.discard(grievance.id)

    def pending_ids(self) -> list[str]:
        """Ids whose committed copy has not yet reached the backend.

        Callers retry them with :meth:`persist` of the committed copy while
        holding the record's lock, so a retry never races a newer write.
        """
        return sorted(self._pending)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def close(self) -> None:
        with contextlib.suppress(Exception):
            await self._backend.close()
