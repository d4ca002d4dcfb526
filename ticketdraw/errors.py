"""Exception taxonomy shared by the store, coordinator, offline queue and draw engine.

Permanent rejections derive from :class:`RedemptionRejected` and are safe to
show to scanner operators as a definitive answer. :class:`TransientError`
subclasses mean "try again later"; the offline queue keeps entries that fail
with one of them. :class:`VersionConflict` never leaves the coordinator.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional


class TicketDrawError(Exception):
    """Base class for every error raised by this package."""


class RedemptionRejected(TicketDrawError):
    """A scan was definitively rejected; retrying will not change the answer."""

    outcome = "rejected"

    def __init__(self, ticket_code: str, message: Optional[str] = None) -> None:
        self.ticket_code = ticket_code
        super().__init__(message or f"Ticket {ticket_code!r} rejected")


class UnknownTicket(RedemptionRejected):
    outcome = "unknown_ticket"

    def __init__(self, ticket_code: str) -> None:
        super().__init__(ticket_code, f"Ticket {ticket_code!r} does not exist")


class VoidTicket(RedemptionRejected):
    outcome = "void_ticket"

    def __init__(self, ticket_code: str) -> None:
        super().__init__(ticket_code, f"Ticket {ticket_code!r} has been voided")


class AlreadyRedeemed(RedemptionRejected):
    """The ticket was redeemed by a different scan than the one submitted."""

    outcome = "already_redeemed"

    def __init__(
        self,
        ticket_code: str,
        *,
        redeemed_by: Optional[str] = None,
        redeemed_at: Optional[datetime] = None,
    ) -> None:
        self.redeemed_by = redeemed_by
        self.redeemed_at = redeemed_at
        detail = f" by {redeemed_by}" if redeemed_by else ""
        super().__init__(ticket_code, f"Ticket {ticket_code!r} already redeemed{detail}")


class VersionConflict(TicketDrawError):
    """Compare-and-swap lost against a concurrent writer."""

    def __init__(self, ticket_code: str, expected_version: int) -> None:
        self.ticket_code = ticket_code
        self.expected_version = expected_version
        super().__init__(
            f"Ticket {ticket_code!r} no longer at version {expected_version}"
        )


class TransientError(TicketDrawError):
    """The operation may succeed if attempted again."""

    outcome = "transient"


class Contention(TransientError):
    """Compare-and-swap retries were exhausted for a heavily contended ticket."""

    outcome = "contention"

    def __init__(self, ticket_code: str, attempts: int) -> None:
        self.ticket_code = ticket_code
        self.attempts = attempts
        super().__init__(
            f"Ticket {ticket_code!r} still contended after {attempts} attempts"
        )


class StoreUnavailable(TransientError):
    """The backing database could not be reached or was locked."""

    outcome = "store_unavailable"


class InsufficientPool(TicketDrawError):
    """A draw asked for more winners than the eligible pool holds."""

    def __init__(self, requested: int, available: int) -> None:
        self.requested = requested
        self.available = available
        super().__init__(
            f"Cannot draw {requested} winners from a pool of {available} tickets"
        )


class DuplicateTicket(TicketDrawError):
    def __init__(self, ticket_code: str) -> None:
        self.ticket_code = ticket_code
        super().__init__(f"Ticket {ticket_code!r} has already been issued")


class TicketNotRedeemed(TicketDrawError):
    """Only redeemed tickets may take part in a draw."""

    def __init__(self, ticket_code: str) -> None:
        self.ticket_code = ticket_code
        super().__init__(f"Ticket {ticket_code!r} has not been redeemed")


class AlreadyDrawn(TicketDrawError):
    def __init__(self, ticket_code: str, draw_id: Optional[str] = None) -> None:
        self.ticket_code = ticket_code
        self.draw_id = draw_id
        where = f" in draw {draw_id}" if draw_id else ""
        super().__init__(f"Ticket {ticket_code!r} was already drawn{where}")


class ImmutableRecordError(TicketDrawError):
    """Raised when code attempts to modify a persisted draw record."""


__all__ = [
    "AlreadyDrawn",
    "AlreadyRedeemed",
    "Contention",
    "DuplicateTicket",
    "ImmutableRecordError",
    "InsufficientPool",
    "RedemptionRejected",
    "StoreUnavailable",
    "TicketDrawError",
    "TicketNotRedeemed",
    "TransientError",
    "UnknownTicket",
    "VersionConflict",
    "VoidTicket",
]
