"""Seeded permutations used to pick draw winners."""

from __future__ import annotations

from dataclasses import dataclass
import hashlib
import random
from typing import Callable, Dict, Optional, Sequence


class Sha256Stream:
    """Deterministic byte stream: SHA-256 of ``seed:counter`` for counter 0, 1, ..."""

    def __init__(self, seed: str) -> None:
        try:
            self._key = seed.encode("utf-8")
        except UnicodeEncodeError as exc:  # pragma: no cover - lone surrogates only
            raise ValueError("seed must be encodable as UTF-8") from exc
        self._counter = 0
        self._buffer = b""

    def read(self, size: int) -> bytes:
        while len(self._buffer) < size:
            block = hashlib.sha256(self._key + b":" + str(self._counter).encode("ascii"))
            self._buffer += block.digest()
            self._counter += 1
        chunk, self._buffer = self._buffer[:size], self._buffer[size:]
        return chunk

    def randbelow(self, n: int) -> int:
        """Return a uniform integer in ``[0, n)`` using rejection sampling."""
        if n <= 0:
            raise ValueError("n must be positive")
        bits = n.bit_length()
        nbytes = (bits + 7) // 8
        excess = nbytes * 8 - bits
        while True:
            value = int.from_bytes(self.read(nbytes), "big") >> excess
            if value < n:
                return value


def _sha256_fisher_yates(pool: Sequence[str], seed: str) -> list[str]:
    """Fisher-Yates shuffle driven by a SHA-256 counter stream."""
    items = list(pool)
    stream = Sha256Stream(seed)
    for i in range(len(items) - 1, 0, -1):
        j = stream.randbelow(i + 1)
        items[i], items[j] = items[j], items[i]
    return items


def _mt19937_fisher_yates(pool: Sequence[str], seed: str) -> list[str]:
    """Fisher-Yates shuffle from :class:`random.Random` seeded with ``seed``."""
    items = list(pool)
    random.Random(seed).shuffle(items)
    return items


@dataclass(frozen=True)
class ShuffleAlgorithm:
    """Definition of a seeded permutation.

    Attributes
    ----------
    key : str
        Registry key, recorded on every :class:`DrawRecord` that used it.
    permute : Callable[[Sequence[str], str], list[str]]
        Returns a permutation of the pool fully determined by the seed.
    description : Optional[str]
        Human-readable summary of the algorithm's behaviour.
    """

    key: str
    permute: Callable[[Sequence[str], str], list[str]]
    description: Optional[str] = None

    def select(self, pool: Sequence[str], count: int, seed: str) -> list[str]:
        """Return the first ``count`` codes of the seeded permutation of ``pool``."""
        return self.permute(pool, seed)[:count]


class ShuffleRegistry:
    """Mutable registry mapping algorithm keys to definitions."""

    def __init__(self) -> None:
        self._algorithms: Dict[str, ShuffleAlgorithm] = {}

    def register(self, algorithm: ShuffleAlgorithm, *, replace: bool = False) -> None:
        """Register a shuffle algorithm under its key.

        Parameters
        ----------
        algorithm : ShuffleAlgorithm
            Algorithm to add to the registry.
        replace : bool, default: False
            When ``True`` an existing registration with the same key is
            overwritten. Otherwise a duplicate raises :class:`ValueError`.
        """
        if not replace and algorithm.key in self._algorithms:
            raise ValueError(f"Algorithm '{algorithm.key}' is already registered")
        self._algorithms[algorithm.key] = algorithm

    def get(self, key: str) -> ShuffleAlgorithm:
        """Return the algorithm registered under ``key``."""
        try:
            return self._algorithms[key]
        except KeyError as exc:
            raise KeyError(f"Unknown shuffle algorithm '{key}'") from exc

    def available_algorithms(self) -> Dict[str, ShuffleAlgorithm]:
        """Return a copy of the registered algorithms keyed by identifier."""
        return dict(self._algorithms)


DEFAULT_ALGORITHM_KEY = "sha256_fisher_yates"

DEFAULT_SHUFFLE_REGISTRY = ShuffleRegistry()
DEFAULT_SHUFFLE_REGISTRY.register(
    ShuffleAlgorithm(
        key=DEFAULT_ALGORITHM_KEY,
        permute=_sha256_fisher_yates,
        description=(
            "Fisher-Yates shuffle whose swap indices come from SHA-256 digests of "
            "'seed:counter', with rejection sampling to avoid modulo bias."
        ),
    )
)
DEFAULT_SHUFFLE_REGISTRY.register(
    ShuffleAlgorithm(
        key="mt19937_fisher_yates",
        permute=_mt19937_fisher_yates,
        description="random.Random(seed).shuffle; reproducible but not cryptographic.",
    )
)
__all__ = [
    "DEFAULT_ALGORITHM_KEY",
    "DEFAULT_SHUFFLE_REGISTRY",
    "Sha256Stream",
    "ShuffleAlgorithm",
    "ShuffleRegistry",
]
