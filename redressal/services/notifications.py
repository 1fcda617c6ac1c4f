"""Status-change notifications for grievance transitions.

After a transition commits, the grievance service hands one
:class:`StatusChange` per recipient to a :class:`Notifier`.  Delivery is
fire-and-forget from the engine's point of view: a failure is logged and
reported as a side-effect failure but never rolls the transition back.

Recipients by new status:

* waiting on the office (SUBMITTED, UNDER_REVIEW) -> the handler queue
* waiting on the citizen (INFO_REQUESTED, RESOLVED_PENDING_CONFIRM) -> citizen
* moved up the chain (ESCALATED) -> citizen and the new office's handlers
* handed to administrators (AUTHORITY_ESCALATED) -> citizen and the admins
* closed -> the last handling office, plus the citizen when the system
  closed it
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Final, Protocol, runtime_checkable
from uuid import uuid4

import httpx
import structlog
from pydantic import BaseModel, Field
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from redressal.models.enums import ActorRole, GrievanceStatus
from redressal.models.grievance import Grievance

logger = structlog.get_logger(__name__)


class StatusChange(BaseModel):
    """A single "status changed" message for one recipient."""

    notification_id: str = Field(default_factory=lambda: uuid4().hex)
    grievance_id: str
    status: GrievanceStatus
    recipient_role: ActorRole
    recipient_id: str
    authority_id: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


_S = GrievanceStatus
_R = ActorRole

_RECIPIENTS: Final[dict[GrievanceStatus, tuple[ActorRole, ...]]] = {
    _S.SUBMITTED: (_R.AUTHORITY_HANDLER,),
    _S.UNDER_REVIEW: (_R.AUTHORITY_HANDLER,),
    _S.INFO_REQUESTED: (_R.CITIZEN,),
    _S.RESOLVED_PENDING_CONFIRM: (_R.CITIZEN,),
    _S.ESCALATED: (_R.CITIZEN, _R.AUTHORITY_HANDLER),
    _S.AUTHORITY_ESCALATED: (_R.CITIZEN, _R.AUTHORITY_ADMIN),
    _S.CLOSED_ACCEPTED: (_R.AUTHORITY_HANDLER,),
    _S.CLOSED_AUTO: (_R.CITIZEN, _R.AUTHORITY_HANDLER),
    _S.CLOSED_NO_RESPONSE: (_R.CITIZEN, _R.AUTHORITY_HANDLER),
    _S.WITHDRAWN: (_R.AUTHORITY_HANDLER,),
    _S.ARCHIVED: (),
}


def status_changes_for(grievance: Grievance) -> list[StatusChange]:
    """Build the messages announcing *grievance*'s current status."""
    changes = []
    for role in _RECIPIENTS.get(grievance.status, ()):
        recipient_id = grievance.citizen_id if role == ActorRole.CITIZEN else grievance.authority_id
        changes.append(
            StatusChange(
                grievance_id=grievance.id,
                status=grievance.status,
                recipient_role=role,
                recipient_id=recipient_id,
                authority_id=grievance.authority_id,
            )
        )
    return changes


# ---------------------------------------------------------------------------
# Notifier implementations
# ---------------------------------------------------------------------------


@runtime_checkable
class Notifier(Protocol):
    async def notify(self, change: StatusChange) -> None: ...

    async def close(self) -> None: ...


class LogNotifier:
    """Records messages and writes them to the structured log.

    Used when no delivery channel is configured, and by tests.
    """

    __slots__ = ("_sent",)

    def __init__(self) -> None:
        self._sent: list[StatusChange] = []

    async def notify(self, change: StatusChange) -> None:
        self._sent.append(change)
        logger.info(
            "notification.logged",
            grievance_id=change.grievance_id,
            status=str(change.status),
            recipient_role=str(change.recipient_role),
            recipient_id=change.recipient_id,
        )

    @property
    def sent(self) -> list[StatusChange]:
        return list(self._sent)

    async def close(self) -> None:
        return None


class WebhookNotifier:
    """POSTs each message as JSON to a delivery service.

    Parameters
    ----------
    url:
        Endpoint of the notification delivery service.
    timeout_seconds:
        Per-request timeout.
    client:
        Optional pre-built ``httpx.AsyncClient`` (for tests).
    """

    __slots__ = ("_client", "_url")

    def __init__(
        self,
        url: str,
        *,
        timeout_seconds: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = url
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_seconds),
            headers={"Content-Type": "application/json"},
        )

    @retry(
        retry=retry_if_exception_type((httpx.TransportError, httpx.HTTPStatusError)),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        reraise=True,
    )
    async def notify(self, change: StatusChange) -> None:
        response = await self._client.post(self._url, content=change.model_dump_json())
        response.raise_for_status()
        logger.debug(
            "notification.delivered",
            grievance_id=change.grievance_id,
            recipient_role=str(change.recipient_role),
            status_code=response.status_code,
        )

    async def close(self) -> None:
        await self._client.aclose()
