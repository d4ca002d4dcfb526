"""Utilities for the draw subsystem."""

from .engine import DrawEngine, DrawResult, select_winners
from .seed import generate_seed, normalize_seed, resolve_seed
from .shuffle import (
    DEFAULT_ALGORITHM_KEY,
    DEFAULT_SHUFFLE_REGISTRY,
    ShuffleAlgorithm,
    ShuffleRegistry,
)

__all__ = [
    "DEFAULT_ALGORITHM_KEY",
    "DEFAULT_SHUFFLE_REGISTRY",
    "DrawEngine",
    "DrawResult",
    "ShuffleAlgorithm",
    "ShuffleRegistry",
    "generate_seed",
    "normalize_seed",
    "resolve_seed",
    "select_winners",
]
