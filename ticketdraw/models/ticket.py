"""Ticket rows: the single source of truth for redemption state."""

from __future__ import annotations

import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    Index,
    Integer,
    String,
    Text,
    func,
    select,
)
from sqlalchemy.orm import Mapped, Session, mapped_column

from ..db.utils import dt_iso
from .base import ID_TYPE, Base, utcnow


class TicketState(str, enum.Enum):
    """Lifecycle of a ticket. ``redeemed`` is terminal except for ``void``."""

    ISSUED = "issued"
    REDEEMED = "redeemed"
    VOID = "void"


class Ticket(Base):
    """A redeemable entry identified by the string decoded from its barcode.

    Rows are only ever modified through
    :meth:`ticketdraw.store.TicketStore.compare_and_swap`, which bumps
    :attr:`version` on every state change.
    """

    __tablename__ = "tickets"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    """Surrogate primary key."""

    code: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    """Opaque code decoded from the barcode/QR; immutable identity."""

    state: Mapped[TicketState] = mapped_column(
        Enum(
            TicketState,
            native_enum=False,
            length=16,
            values_callable=lambda states: [s.value for s in states],
            validate_strings=True,
        ),
        nullable=False,
        default=TicketState.ISSUED,
    )

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    """Optimistic-concurrency token, incremented on every state change."""

    redeemed_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    redeemed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    last_device_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    """Device of the scan that redeemed the ticket."""

    last_sequence_no: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    """Per-device sequence number of the scan that redeemed the ticket."""

    redeemed_version: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    """Version written by the redeeming swap, returned again on idempotent replays."""

    drawn: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    """Bookkeeping flag set once the ticket has won a draw."""

    drawn_in: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    """``draw_id`` of the draw that selected this ticket."""

    event_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    issued_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
    )
    voided_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    void_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        CheckConstraint("version >= 0", name="version_non_negative"),
        Index("ix_tickets_state_drawn", "state", "drawn"),
    )

    def __init__(
        self,
        *,
        code: str,
        event_name: Optional[str] = None,
        issued_at: Optional[datetime] = None,
    ) -> None:
        self.code = code
        self.event_name = event_name
        self.state = TicketState.ISSUED
        self.version = 0
        self.drawn = False
        if issued_at is not None:
            self.issued_at = issued_at

    def __repr__(self) -> str:
        return (
            "<Ticket("
            f"code='{self.code}', state={self.state.value if self.state else None}, "
            f"version={self.version}, redeemed_by={self.redeemed_by}, "
            f"redeemed_at={dt_iso(self.redeemed_at)}, drawn={self.drawn}"
            ")>"
        )

    @classmethod
    def get_by_code(cls, session: Session, code: str) -> Optional["Ticket"]:
        """Fetch a ticket by code, refreshing any copy already in the session."""

        stmt = (
            select(cls)
            .where(cls.code == code)
            .execution_options(populate_existing=True)
        )
        return session.scalar(stmt)

    def redeemed_by_scan(self, device_id: str, sequence_no: int) -> bool:
        """Return ``True`` when this exact scan is the one that redeemed the ticket."""

        return (
            self.redeemed_version is not None
            and self.last_device_id == device_id
            and self.last_sequence_no == sequence_no
        )

    @property
    def eligible_for_draw(self) -> bool:
        return self.state is TicketState.REDEEMED and not self.drawn


__all__ = ["Ticket", "TicketState"]
