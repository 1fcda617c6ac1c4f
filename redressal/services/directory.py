"""Authority Directory -- read-only view of the office hierarchy.

Offices are grouped by department and linked upward through
``parent_id`` to an apex office (typically an ombudsman).  The directory
validates the hierarchy once at construction so the engine can rely on
it afterwards:

* every ``parent_id`` and ``admin_office_id`` names a known office,
* ``level`` never decreases while walking up the parent chain,
* every chain terminates (no cycles).
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable

import structlog

from redressal.errors import RecordNotFound
from redressal.models.authority import Authority

logger = structlog.get_logger(__name__)


class AuthorityDirectory:
    """Lookup service over a fixed set of :class:`Authority` records.

    Parameters
    ----------
    authorities:
        Every office known to the engine.  Duplicated ids are rejected.
    """

    __slots__ = ("_by_department", "_by_id")

    def __init__(self, authorities: Iterable[Authority]) -> None:
        self._by_id: dict[str, Authority] = {}
        self._by_department: dict[str, list[Authority]] = defaultdict(list)

        for authority in authorities:
            if authority.id in self._by_id:
                raise ValueError(f"duplicate authority id: {authority.id}")
            self._by_id[authority.id] = authority
            self._by_department[authority.department_id].append(authority)

        self._validate_hierarchy()
        logger.info(
            "directory.loaded",
            authorities=len(self._by_id),
            departments=len(self._by_department),
        )

    # -- validation ----------------------------------------------------------

    def _validate_hierarchy(self) -> None:
        for authority in self._by_id.values():
            if authority.admin_office_id and authority.admin_office_id not in self._by_id:
                raise ValueError(
                    f"authority {authority.id} names unknown admin office {authority.admin_office_id}"
                )

            seen = {authority.id}
            current = authority
            while current.parent_id is not None:
                parent = self._by_id.get(current.parent_id)
                if parent is None:
                    raise ValueError(f"authority {current.id} names unknown parent {current.parent_id}")
                if parent.level < current.level:
                    raise ValueError(
                        f"authority {parent.id} (level {parent.level}) sits above "
                        f"{current.id} (level {current.level})"
                    )
                if parent.id in seen:
                    raise ValueError(f"escalation chain from {authority.id} loops at {parent.id}")
                seen.add(parent.id)
                current = parent

    # -- lookups -------------------------------------------------------------

    def get(self, authority_id: str) -> Authority:
        try:
            return self._by_id[authority_id]
        except KeyError:
            raise RecordNotFound(f"unknown authority: {authority_id}") from None

    def contains(self, authority_id: str) -> bool:
        return authority_id in self._by_id

    def all(self) -> list[Authority]:
        return list(self._by_id.values())

    def departments(self) -> set[str]:
        return set(self._by_department)

    def peers(self, authority_id: str) -> list[Authority]:
        """Other offices of the same department, at any level."""
        authority = self.get(authority_id)
        return [
            other
            for other in self._by_department[authority.department_id]
            if other.id != authority.id
        ]

    def is_peer(self, authority_id: str, other_id: str) -> bool:
        if authority_id == other_id or other_id not in self._by_id:
            return False
        return self.get(authority_id).department_id == self.get(other_id).department_id

    def parent_of(self, authority_id: str) -> Authority | None:
        authority = self.get(authority_id)
        if authority.parent_id is None:
            return None
        return self.get(authority.parent_id)

    def administrator_of(self, authority_id: str) -> Authority:
        """Office whose administrators take over an unanswered grievance."""
        authority = self.get(authority_id)
        if authority.admin_office_id is None:
            return authority
        return self.get(authority.admin_office_id)

    def chain_from(self, authority_id: str) -> list[Authority]:
        """The office followed by each of its ancestors up to the apex."""
        chain = [self.get(authority_id)]
        while (parent := self.parent_of(chain[-1].id)) is not None:
            chain.append(parent)
        return chain
