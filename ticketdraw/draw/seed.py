"""Helpers for normalizing and generating draw seeds."""

from __future__ import annotations

import secrets
from typing import Optional, Union

SeedLike = Union[str, int]


def normalize_seed(seed: SeedLike) -> str:
    """Normalize a caller supplied seed to the string recorded on the draw.

    Parameters
    ----------
    seed : str | int
        Seed given by the operator. Integers are rendered in decimal so that
        ``42`` and ``"42"`` select the same winners.
    """

    if seed is None:
        raise ValueError("seed must not be None")
    if isinstance(seed, bool):
        raise TypeError("seed must be a string or an integer")
    if isinstance(seed, int):
        return str(seed)
    if not isinstance(seed, str):
        raise TypeError("seed must be a string or an integer")
    normalized = seed.strip()
    if not normalized:
        raise ValueError("seed must not be empty")
    return normalized


def generate_seed(nbytes: int = 16) -> str:
    """Return a fresh random seed as a hex string."""

    return secrets.token_hex(nbytes)


def resolve_seed(seed: Optional[SeedLike]) -> str:
    """Normalize ``seed``, generating one when omitted."""

    return generate_seed() if seed is None else normalize_seed(seed)


__all__ = ["SeedLike", "generate_seed", "normalize_seed", "resolve_seed"]
