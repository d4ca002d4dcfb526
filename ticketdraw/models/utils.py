"""Identifier helpers for the models package."""

from __future__ import annotations

import secrets
import string
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

BASE62_ALPHABET = string.digits + string.ascii_uppercase + string.ascii_lowercase


def _base62(length: int) -> str:
    return "".join(secrets.choice(BASE62_ALPHABET) for _ in range(length))


def _draw_id_taken(session: Session, candidate: str) -> bool:
    from .draw import DrawRecord

    pending = any(
        isinstance(obj, DrawRecord) and obj.draw_id == candidate for obj in session.new
    )
    if pending:
        return True
    return session.scalar(select(DrawRecord.id).where(DrawRecord.draw_id == candidate)) is not None


def generate_draw_id(
    prefix: str = "DRW",
    session: Optional[Session] = None,
    length: int = 12,
    max_attempts: int = 32,
) -> str:
    """Return an identifier such as ``DRW-4fQ9...`` for a new draw record.

    With a session, candidates already stored or pending in
    ``DrawRecord.draw_id`` are skipped.
    """

    if length < 1:
        raise ValueError("length must be positive")
    for _ in range(max_attempts):
        candidate = f"{prefix}-{_base62(length)}"
        if len(candidate) > 64:
            raise ValueError("draw identifiers are limited to 64 characters")
        if session is None or not _draw_id_taken(session, candidate):
            return candidate
    raise RuntimeError(f"No free draw identifier after {max_attempts} attempts")
