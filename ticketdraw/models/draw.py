"""Database model for completed draws."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, DateTime, Integer, String, event, select
from sqlalchemy.orm import Mapped, Session, mapped_column

from ..db.utils import dt_iso
from ..errors import ImmutableRecordError
from .base import ID_TYPE, Base, utcnow


class DrawRecord(Base):
    """Immutable audit artifact describing one draw.

    Re-running the recorded algorithm with :attr:`seed` over
    :attr:`eligible_pool` (in stored order) for :attr:`count` winners must
    reproduce :attr:`winners` exactly.
    """

    __tablename__ = "draw_records"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    """Surrogate primary key."""

    draw_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    """Public identifier quoted in announcements and disputes."""

    seed: Mapped[str] = mapped_column(String(255), nullable=False)
    """Normalized seed fed to the shuffle."""

    algorithm_key: Mapped[str] = mapped_column(String(100), nullable=False)
    """Registry key of the shuffle algorithm used."""

    count: Mapped[int] = mapped_column(Integer, nullable=False)
    """Number of winners requested."""

    eligible_pool: Mapped[list] = mapped_column(JSON, nullable=False)
    """Ordered ticket codes considered by the draw."""

    winners: Mapped[list] = mapped_column(JSON, nullable=False)
    """Winning ticket codes in selection order."""

    created_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )

    def __init__(
        self,
        *,
        draw_id: str,
        seed: str,
        algorithm_key: str,
        count: int,
        eligible_pool: list[str],
        winners: list[str],
        created_by: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> None:
        self.draw_id = draw_id
        self.seed = seed
        self.algorithm_key = algorithm_key
        self.count = count
        self.eligible_pool = list(eligible_pool)
        self.winners = list(winners)
        self.created_by = created_by
        if created_at is not None:
            self.created_at = created_at

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return (
            "<DrawRecord("
            f"draw_id='{self.draw_id}', seed='{self.seed}', count={self.count}, "
            f"pool_size={len(self.eligible_pool or [])}, created_at={dt_iso(self.created_at)}"
            ")>"
        )

    @classmethod
    def get_by_draw_id(cls, session: Session, draw_id: str) -> Optional["DrawRecord"]:
        return session.scalar(select(cls).where(cls.draw_id == draw_id))

    @classmethod
    def latest(cls, session: Session, limit: int = 20) -> list["DrawRecord"]:
        stmt = select(cls).order_by(cls.created_at.desc(), cls.id.desc()).limit(limit)
        return list(session.scalars(stmt))


@event.listens_for(DrawRecord, "before_update")
def _reject_draw_record_update(mapper, connection, target: DrawRecord) -> None:
    raise ImmutableRecordError(
        f"Draw record {target.draw_id!r} is immutable once persisted"
    )


__all__ = ["DrawRecord"]
