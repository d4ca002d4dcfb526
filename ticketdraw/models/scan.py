"""Scan events, the per-device offline backlog and the scan audit trail."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    insert,
    select,
)
from sqlalchemy.orm import Mapped, Session, mapped_column

from ..db.utils import as_utc, dt_iso
from .base import ID_TYPE, Base, utcnow


def _require_text(value: str, name: str) -> str:
    if value is None:
        raise ValueError(f"{name} must not be None")
    if not isinstance(value, str):
        raise TypeError(f"{name} must be a string")
    normalized = value.strip()
    if not normalized:
        raise ValueError(f"{name} must not be empty")
    return normalized


@dataclass(frozen=True)
class ScanEvent:
    """A decoded ticket code read by one scanner device.

    Attributes
    ----------
    ticket_code : str
        Opaque code produced by the barcode decoder. Only surrounding
        whitespace is stripped; no format validation is applied.
    device_id : str
        Identity of the scanning device.
    sequence_no : int
        Per-device monotonic counter. Together with ``device_id`` it
        identifies the scan for idempotent retries.
    captured_at : datetime
        Client clock reading at capture time. Defaults to now (UTC).
    operator_id : Optional[str]
        Staff identity supplied by the authentication layer, if any.
    """

    ticket_code: str
    device_id: str
    sequence_no: int
    captured_at: datetime = field(default_factory=utcnow)
    operator_id: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "ticket_code", _require_text(self.ticket_code, "ticket_code"))
        object.__setattr__(self, "device_id", _require_text(self.device_id, "device_id"))
        if isinstance(self.sequence_no, bool) or not isinstance(self.sequence_no, int):
            raise TypeError("sequence_no must be an integer")
        if self.sequence_no < 0:
            raise ValueError("sequence_no must be non-negative")
        object.__setattr__(self, "captured_at", as_utc(self.captured_at))

    @property
    def scan_key(self) -> tuple[str, int]:
        return (self.device_id, self.sequence_no)


class OfflineScanEntry(Base):
    """A scan captured while the device had no connectivity, awaiting replay."""

    __tablename__ = "offline_scan_entries"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    device_id: Mapped[str] = mapped_column(String(255), nullable=False)
    sequence_no: Mapped[int] = mapped_column(Integer, nullable=False)
    ticket_code: Mapped[str] = mapped_column(String(255), nullable=False)
    operator_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    captured_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    enqueued_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )
    # Replay passes that stopped on this entry with a transient error.
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint("device_id", "sequence_no", name="uq_offline_scan_device_seq"),
        Index("ix_offline_scan_entries_device_seq", "device_id", "sequence_no"),
    )

    def __repr__(self) -> str:
        return (
            "<OfflineScanEntry("
            f"device_id='{self.device_id}', sequence_no={self.sequence_no}, "
            f"ticket_code='{self.ticket_code}', attempts={self.attempts}, "
            f"captured_at={dt_iso(self.captured_at)}"
            ")>"
        )

    @classmethod
    def from_event(cls, event: ScanEvent) -> "OfflineScanEntry":
        return cls(
            device_id=event.device_id,
            sequence_no=event.sequence_no,
            ticket_code=event.ticket_code,
            operator_id=event.operator_id,
            captured_at=event.captured_at,
            attempts=0,
        )

    def to_event(self) -> ScanEvent:
        return ScanEvent(
            ticket_code=self.ticket_code,
            device_id=self.device_id,
            sequence_no=self.sequence_no,
            captured_at=self.captured_at,
            operator_id=self.operator_id,
        )

    @classmethod
    def pending_for_device(
        cls, session: Session, device_id: str
    ) -> list["OfflineScanEntry"]:
        """Return the device's queued scans in capture order."""

        stmt = (
            select(cls)
            .where(cls.device_id == device_id)
            .order_by(cls.sequence_no.asc())
            .execution_options(populate_existing=True)
        )
        return list(session.scalars(stmt))

    @classmethod
    def devices_with_pending(cls, session: Session) -> list[str]:
        stmt = select(cls.device_id).distinct().order_by(cls.device_id)
        return list(session.scalars(stmt))


class ScanAudit(Base):
    """One row per coordinator decision on a scan."""

    __tablename__ = "scan_audit_log"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    ticket_code: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    device_id: Mapped[str] = mapped_column(String(255), nullable=False)
    sequence_no: Mapped[int] = mapped_column(Integer, nullable=False)
    operator_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    outcome: Mapped[str] = mapped_column(String(32), nullable=False)
    ticket_version: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    captured_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    processed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return (
            f"<ScanAudit(ticket_code='{self.ticket_code}', device_id='{self.device_id}', "
            f"sequence_no={self.sequence_no}, outcome={self.outcome})>"
        )

    @classmethod
    def record(
        cls,
        session: Session,
        event: ScanEvent,
        outcome: str,
        *,
        ticket_version: Optional[int] = None,
    ) -> None:
        """Insert the audit row immediately, outside the unit of work.

        A database error surfaces from this call and leaves the session
        transaction usable.
        """
        session.execute(
            insert(cls).values(
                ticket_code=event.ticket_code,
                device_id=event.device_id,
                sequence_no=event.sequence_no,
                operator_id=event.operator_id,
                outcome=outcome,
                ticket_version=ticket_version,
                captured_at=event.captured_at,
            )
        )

    @classmethod
    def for_ticket(cls, session: Session, ticket_code: str) -> list["ScanAudit"]:
        stmt = (
            select(cls)
            .where(cls.ticket_code == ticket_code)
            .order_by(cls.processed_at.asc(), cls.id.asc())
        )
        return list(session.scalars(stmt))


__all__ = ["OfflineScanEntry", "ScanAudit", "ScanEvent"]
