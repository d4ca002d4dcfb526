"""Versioned ticket store with compare-and-swap as the only mutation path."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from .errors import DuplicateTicket, StoreUnavailable, UnknownTicket, VersionConflict
from .models.ticket import Ticket, TicketState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TicketChanges:
    """Field values written by a single compare-and-swap.

    ``None`` means "leave the stored value unchanged"; ``state`` is always
    written. ``version`` is never part of the change set, the store derives
    it from the expected version.
    """

    state: TicketState
    redeemed_by: Optional[str] = None
    redeemed_at: Optional[datetime] = None
    last_device_id: Optional[str] = None
    last_sequence_no: Optional[int] = None
    redeemed_version: Optional[int] = None
    drawn: Optional[bool] = None
    drawn_in: Optional[str] = None
    voided_at: Optional[datetime] = None
    void_reason: Optional[str] = None

    def values(self) -> dict[str, Any]:
        values: dict[str, Any] = {"state": self.state}
        for name in (
            "redeemed_by",
            "redeemed_at",
            "last_device_id",
            "last_sequence_no",
            "redeemed_version",
            "drawn",
            "drawn_in",
            "voided_at",
            "void_reason",
        ):
            value = getattr(self, name)
            if value is not None:
                values[name] = value
        return values


class TicketStore:
    """Ticket persistence bound to a SQLAlchemy session.

    Every state change goes through :meth:`compare_and_swap`, a single
    conditional ``UPDATE`` keyed on ``(code, version)``. The database applies
    it atomically, so two sessions racing on the same ticket can never both
    succeed: the loser matches zero rows and gets :class:`VersionConflict`.
    """

    def __init__(self, session: Session) -> None:
        self._session = session

    @property
    def session(self) -> Session:
        return self._session

    def get(self, code: str) -> Ticket:
        """Return the current row for ``code``.

        Raises
        ------
        UnknownTicket
            If no ticket with ``code`` exists.
        StoreUnavailable
            If the database could not be reached.
        """
        try:
            ticket = Ticket.get_by_code(self._session, code)
        except OperationalError as exc:
            raise StoreUnavailable(f"Could not read ticket {code!r}: {exc}") from exc
        if ticket is None:
            raise UnknownTicket(code)
        return ticket

    def find(self, code: str) -> Optional[Ticket]:
        try:
            return self.get(code)
        except UnknownTicket:
            return None

    def compare_and_swap(
        self, code: str, expected_version: int, changes: TicketChanges
    ) -> int:
        """Apply ``changes`` only if the ticket is still at ``expected_version``.

        Parameters
        ----------
        code : str
            Ticket to update.
        expected_version : int
            Version the caller read before deciding on ``changes``.
        changes : TicketChanges
            New field values. The version is bumped to ``expected_version + 1``.

        Returns
        -------
        int
            The new version.

        Raises
        ------
        VersionConflict
            If another writer changed the ticket since it was read.
        UnknownTicket
            If the ticket does not exist.
        StoreUnavailable
            If the database could not be reached or stayed locked.
        """
        stmt = (
            update(Ticket)
            .where(Ticket.code == code, Ticket.version == expected_version)
            .values(version=Ticket.version + 1, **changes.values())
            .execution_options(synchronize_session=False)
        )
        try:
            result = self._session.execute(stmt)
        except OperationalError as exc:
            raise StoreUnavailable(f"Could not update ticket {code!r}: {exc}") from exc

        if result.rowcount == 0:
            current = self._session.scalar(select(Ticket.version).where(Ticket.code == code))
            if current is None:
                raise UnknownTicket(code)
            logger.debug(
                f"CAS on {code} lost: expected version {expected_version}, found {current}"
            )
            raise VersionConflict(code, expected_version)

        new_version = expected_version + 1
        # Refresh the identity map so the caller reads its own write.
        self.get(code)
        return new_version

    def issue(
        self,
        code: str,
        *,
        event_name: Optional[str] = None,
        issued_at: Optional[datetime] = None,
    ) -> Ticket:
        """Create a new ticket in the ``issued`` state at version 0."""

        if code is None or not isinstance(code, str) or not code.strip():
            raise ValueError("ticket code must be a non-empty string")
        code = code.strip()
        if self.find(code) is not None:
            raise DuplicateTicket(code)

        ticket = Ticket(code=code, event_name=event_name, issued_at=issued_at)
        self._session.add(ticket)
        try:
            self._session.flush()
        except IntegrityError as exc:
            raise DuplicateTicket(code) from exc
        return ticket

    def eligible_pool(self) -> list[str]:
        """Codes of redeemed tickets that have not been drawn, ordered by code."""

        stmt = (
            select(Ticket.code)
            .where(Ticket.state == TicketState.REDEEMED, Ticket.drawn.is_(False))
            .order_by(Ticket.code.asc())
        )
        try:
            return list(self._session.scalars(stmt))
        except OperationalError as exc:
            raise StoreUnavailable(f"Could not read the eligible pool: {exc}") from exc

    def counts(self) -> dict[str, int]:
        """Number of tickets per state, plus redeemed tickets already drawn."""

        counts = {state.value: 0 for state in TicketState}
        rows = self._session.execute(
            select(Ticket.state, func.count(Ticket.id)).group_by(Ticket.state)
        )
        for state, total in rows:
            counts[TicketState(state).value] = int(total)
        counts["drawn"] = int(
            self._session.scalar(
                select(func.count(Ticket.id)).where(
                    Ticket.state == TicketState.REDEEMED, Ticket.drawn.is_(True)
                )
            )
            or 0
        )
        return counts


__all__ = ["TicketChanges", "TicketStore"]
