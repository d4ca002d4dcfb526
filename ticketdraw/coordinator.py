"""Redemption coordinator: at-most-once ticket redemption over compare-and-swap."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from dotenv import load_dotenv
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from .db.utils import as_utc, env_int
from .errors import (
    AlreadyDrawn,
    AlreadyRedeemed,
    Contention,
    RedemptionRejected,
    StoreUnavailable,
    TicketNotRedeemed,
    TransientError,
    VersionConflict,
    VoidTicket,
)
from .models.scan import ScanAudit, ScanEvent
from .models.ticket import Ticket, TicketState
from .store import TicketChanges, TicketStore
from .sync.events import ChangeNotifier, TicketChangeEvent

logger = logging.getLogger(__name__)

load_dotenv()
DEFAULT_MAX_RETRIES = env_int(os.getenv("TICKETDRAW_MAX_CAS_RETRIES"), 5)


@dataclass(frozen=True)
class RedemptionResult:
    """Successful outcome of a transition.

    Attributes
    ----------
    ticket_code : str
        Ticket that was transitioned.
    state : TicketState
        State after the transition.
    version : int
        Version written by the transition.
    redeemed_by : Optional[str]
        Identity recorded on redemption.
    redeemed_at : Optional[datetime]
        Timestamp recorded on redemption.
    replayed : bool
        ``True`` when the submitted scan had already redeemed the ticket and
        the original outcome is being returned again.
    attempts : int
        Compare-and-swap attempts used (0 for replays).
    """

    ticket_code: str
    state: TicketState
    version: int
    redeemed_by: Optional[str]
    redeemed_at: Optional[datetime]
    replayed: bool = False
    attempts: int = 1

    @classmethod
    def from_ticket(
        cls, ticket: Ticket, *, replayed: bool = False, attempts: int = 1
    ) -> "RedemptionResult":
        return cls(
            ticket_code=ticket.code,
            state=ticket.state,
            version=ticket.version,
            redeemed_by=ticket.redeemed_by,
            redeemed_at=as_utc(ticket.redeemed_at),
            replayed=replayed,
            attempts=attempts,
        )

    @classmethod
    def original_redemption(cls, ticket: Ticket) -> "RedemptionResult":
        """Rebuild the outcome of the swap that redeemed ``ticket``."""

        return cls(
            ticket_code=ticket.code,
            state=TicketState.REDEEMED,
            version=ticket.redeemed_version or ticket.version,
            redeemed_by=ticket.redeemed_by,
            redeemed_at=as_utc(ticket.redeemed_at),
            replayed=True,
            attempts=0,
        )


class RedemptionCoordinator:
    """The only component that changes ticket state.

    Each operation reads the ticket, decides on the transition, and writes it
    with :meth:`TicketStore.compare_and_swap`. A lost swap means another
    session changed the same ticket, so the operation re-reads and decides
    again, up to ``max_retries`` times. Tickets other than the one being
    changed are never read or locked.
    """

    def __init__(
        self,
        session: Session,
        *,
        store: Optional[TicketStore] = None,
        notifier: Optional[ChangeNotifier] = None,
        max_retries: Optional[int] = None,
        audit: bool = True,
    ) -> None:
        """Create a coordinator bound to a SQLAlchemy session.

        Parameters
        ----------
        session : Session
            Session used for reads, swaps and audit rows.
        store : Optional[TicketStore], default: None
            Store to use; a :class:`TicketStore` over ``session`` by default.
        notifier : Optional[ChangeNotifier], default: None
            Receives a :class:`TicketChangeEvent` for every transition once
            ``session`` commits; a rollback discards them.
        max_retries : Optional[int], default: None
            Swap attempts before :class:`Contention` is raised. Defaults to
            ``TICKETDRAW_MAX_CAS_RETRIES`` (5).
        audit : bool, default: True
            Write a :class:`ScanAudit` row for every scan decision.
        """
        attempts = DEFAULT_MAX_RETRIES if max_retries is None else max_retries
        if attempts < 1:
            raise ValueError("max_retries must be at least 1")
        self._session = session
        self._store = store or TicketStore(session)
        self._notifier = notifier
        self._max_retries = attempts
        self._audit = audit

    @property
    def store(self) -> TicketStore:
        return self._store

    @property
    def max_retries(self) -> int:
        return self._max_retries

    def redeem(self, scan: ScanEvent) -> RedemptionResult:
        """Transition the scanned ticket from issued to redeemed.

        Parameters
        ----------
        scan : ScanEvent
            Decoded scan from a device, live or replayed from its offline queue.

        Returns
        -------
        RedemptionResult
            The new state, or the original outcome again (``replayed=True``)
            if this exact ``(device_id, sequence_no)`` already redeemed it.

        Raises
        ------
        UnknownTicket
            If the code was never issued.
        AlreadyRedeemed
            If any other scan, including an earlier one from the same device,
            redeemed the ticket.
        VoidTicket
            If the ticket was voided.
        Contention
            If every swap attempt lost against concurrent writers.
        StoreUnavailable
            If the database could not be reached.
        """
        try:
            result = self._redeem(scan)
        except StoreUnavailable:
            # Nothing can be written while the store is unreachable.
            raise
        except (RedemptionRejected, TransientError) as exc:
            self._record(scan, exc.outcome, None)
            raise
        self._record(scan, "replayed" if result.replayed else "redeemed", result.version)
        return result

    def _redeem(self, scan: ScanEvent) -> RedemptionResult:
        def decide(ticket: Ticket) -> Optional[TicketChanges]:
            if ticket.redeemed_by_scan(scan.device_id, scan.sequence_no):
                return None
            if ticket.state is TicketState.VOID:
                raise VoidTicket(ticket.code)
            if ticket.state is TicketState.REDEEMED:
                raise AlreadyRedeemed(
                    ticket.code,
                    redeemed_by=ticket.redeemed_by,
                    redeemed_at=as_utc(ticket.redeemed_at),
                )
            return TicketChanges(
                state=TicketState.REDEEMED,
                redeemed_by=scan.operator_id or scan.device_id,
                redeemed_at=datetime.now(timezone.utc),
                last_device_id=scan.device_id,
                last_sequence_no=scan.sequence_no,
                redeemed_version=ticket.version + 1,
            )

        ticket, attempts = self._swap(scan.ticket_code, decide)
        if attempts == 0:
            logger.debug(
                f"Scan {scan.device_id}#{scan.sequence_no} already redeemed {ticket.code}; "
                "returning original outcome"
            )
            return RedemptionResult.original_redemption(ticket)
        logger.info(
            f"Ticket {ticket.code} redeemed by {ticket.redeemed_by} "
            f"(scan {scan.device_id}#{scan.sequence_no}, version {ticket.version})"
        )
        return RedemptionResult.from_ticket(ticket, attempts=attempts)

    def void(self, code: str, *, reason: Optional[str] = None) -> RedemptionResult:
        """Administratively void an issued or redeemed ticket.

        Raises :class:`VoidTicket` if it is already void.
        """

        def decide(ticket: Ticket) -> TicketChanges:
            if ticket.state is TicketState.VOID:
                raise VoidTicket(ticket.code)
            return TicketChanges(
                state=TicketState.VOID,
                voided_at=datetime.now(timezone.utc),
                void_reason=reason,
            )

        ticket, attempts = self._swap(code, decide)
        logger.info(f"Ticket {code} voided (version {ticket.version}): {reason or 'no reason'}")
        return RedemptionResult.from_ticket(ticket, attempts=attempts)

    def mark_drawn(self, code: str, draw_id: str) -> int:
        """Set the drawn flag on a redeemed ticket selected by ``draw_id``.

        Returns the new version. Raises :class:`AlreadyDrawn`,
        :class:`VoidTicket` or :class:`TicketNotRedeemed` when the ticket is
        not eligible, and :class:`Contention` when swaps keep losing.
        """

        def decide(ticket: Ticket) -> TicketChanges:
            if ticket.state is TicketState.VOID:
                raise VoidTicket(ticket.code)
            if ticket.state is not TicketState.REDEEMED:
                raise TicketNotRedeemed(ticket.code)
            if ticket.drawn:
                raise AlreadyDrawn(ticket.code, ticket.drawn_in)
            return TicketChanges(
                state=TicketState.REDEEMED,
                drawn=True,
                drawn_in=draw_id,
            )

        ticket, _ = self._swap(code, decide)
        return ticket.version

    def _swap(
        self,
        code: str,
        decide: Callable[[Ticket], Optional[TicketChanges]],
    ) -> tuple[Ticket, int]:
        """Read-decide-swap loop shared by every transition.

        ``decide`` returns the changes to write, ``None`` when no write is
        needed, or raises to reject. Returns the refreshed ticket and the
        number of swap attempts made.
        """
        for attempt in range(1, self._max_retries + 1):
            ticket = self._store.get(code)
            changes = decide(ticket)
            if changes is None:
                return ticket, 0
            try:
                self._store.compare_and_swap(code, ticket.version, changes)
            except VersionConflict:
                logger.debug(
                    f"Swap conflict on {code} (attempt {attempt}/{self._max_retries})"
                )
                continue
            ticket = self._store.get(code)
            self._notify(ticket)
            return ticket, attempt

        logger.warning(f"Giving up on {code} after {self._max_retries} conflicting swaps")
        raise Contention(code, self._max_retries)

    def _notify(self, ticket: Ticket) -> None:
        if self._notifier is None:
            return
        self._notifier.publish_after_commit(
            self._session,
            TicketChangeEvent(
                ticket_code=ticket.code,
                new_state=ticket.state.value,
                version=ticket.version,
                drawn=ticket.drawn,
            ),
        )

    def _record(self, scan: ScanEvent, outcome: str, version: Optional[int]) -> None:
        if not self._audit:
            return
        try:
            ScanAudit.record(self._session, scan, outcome, ticket_version=version)
        except OperationalError as exc:
            raise StoreUnavailable(
                f"Could not audit scan {scan.device_id}#{scan.sequence_no}: {exc}"
            ) from exc


__all__ = ["DEFAULT_MAX_RETRIES", "RedemptionCoordinator", "RedemptionResult"]
