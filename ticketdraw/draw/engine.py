"""Draw engine: reproducible winner selection over the eligible ticket pool."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional, Sequence

from sqlalchemy.orm import Session

from .seed import SeedLike, normalize_seed, resolve_seed
from .shuffle import DEFAULT_ALGORITHM_KEY, DEFAULT_SHUFFLE_REGISTRY, ShuffleRegistry
from ..errors import InsufficientPool, TicketDrawError
from ..models.draw import DrawRecord
from ..models.utils import generate_draw_id
from ..store import TicketStore

if TYPE_CHECKING:
    from ..coordinator import RedemptionCoordinator

logger = logging.getLogger(__name__)


def _validate_pool(pool: Sequence[str]) -> list[str]:
    codes = list(pool)
    seen: set[str] = set()
    for code in codes:
        if not isinstance(code, str) or not code:
            raise ValueError("pool entries must be non-empty ticket codes")
        if code in seen:
            raise ValueError(f"ticket {code!r} appears more than once in the pool")
        seen.add(code)
    return codes


def _validate_count(count: int) -> int:
    if isinstance(count, bool) or not isinstance(count, int):
        raise TypeError("count must be an integer")
    if count <= 0:
        raise ValueError("count must be a positive integer")
    return count


def select_winners(
    pool: Sequence[str],
    count: int,
    seed: SeedLike,
    *,
    algorithm_key: str = DEFAULT_ALGORITHM_KEY,
    registry: Optional[ShuffleRegistry] = None,
) -> list[str]:
    """Pick ``count`` distinct winners from ``pool`` without touching the database.

    Parameters
    ----------
    pool : Sequence[str]
        Eligible ticket codes. Their order is part of the draw input.
    count : int
        Number of winners. Must not exceed ``len(pool)``.
    seed : str | int
        Seed fed to the shuffle; normalized with :func:`normalize_seed`.
    algorithm_key : str, default: "sha256_fisher_yates"
        Shuffle algorithm to use.
    registry : Optional[ShuffleRegistry], default: None
        Registry holding the algorithm; the default registry when omitted.

    Returns
    -------
    list[str]
        Winners in selection order. Identical inputs always give identical
        winners.

    Raises
    ------
    InsufficientPool
        If ``count`` is larger than the pool.
    """
    codes = _validate_pool(pool)
    _validate_count(count)
    if count > len(codes):
        raise InsufficientPool(count, len(codes))
    algorithm = (registry or DEFAULT_SHUFFLE_REGISTRY).get(algorithm_key)
    return algorithm.select(codes, count, normalize_seed(seed))


@dataclass
class DrawResult:
    """A persisted draw plus the outcome of setting the drawn flags.

    Attributes
    ----------
    record : DrawRecord
        The immutable draw record.
    marked : list[str]
        Winners whose drawn flag was set.
    mark_failures : dict[str, str]
        Winners whose flag could not be set, mapped to the error message.
        The draw stays valid regardless.
    """

    record: DrawRecord
    marked: list[str] = field(default_factory=list)
    mark_failures: dict[str, str] = field(default_factory=dict)

    @property
    def winners(self) -> list[str]:
        return list(self.record.winners)

    @property
    def fully_marked(self) -> bool:
        return not self.mark_failures


class DrawEngine:
    """Engine that snapshots the eligible pool, selects winners and records the draw."""

    def __init__(
        self,
        session: Session,
        *,
        coordinator: Optional["RedemptionCoordinator"] = None,
        registry: Optional[ShuffleRegistry] = None,
        store: Optional[TicketStore] = None,
    ) -> None:
        """Create a draw engine bound to a SQLAlchemy session.

        Parameters
        ----------
        session : Session
            Active SQLAlchemy session used for the pool snapshot and the record.
        coordinator : Optional[RedemptionCoordinator], default: None
            Used to set the drawn flag on winners. When omitted, winners are
            recorded but not flagged.
        registry : Optional[ShuffleRegistry], default: None
            Custom registry of shuffle algorithms. Typically omitted, in which
            case the default registry is used.
        store : Optional[TicketStore], default: None
            Store used for the pool snapshot; defaults to the coordinator's
            store or a new one over ``session``.
        """

        self._session = session
        self._coordinator = coordinator
        self._registry = registry or DEFAULT_SHUFFLE_REGISTRY
        if store is None:
            store = coordinator.store if coordinator is not None else TicketStore(session)
        self._store = store

    def draw(
        self,
        count: int,
        seed: Optional[SeedLike] = None,
        *,
        pool: Optional[Sequence[str]] = None,
        algorithm_key: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> DrawResult:
        """Select ``count`` winners and persist a :class:`DrawRecord`.

        Parameters
        ----------
        count : int
            Number of winners to select.
        seed : Optional[str | int], default: None
            Seed for the permutation. When omitted a random seed is generated
            and recorded so the draw stays reproducible.
        pool : Optional[Sequence[str]], default: None
            Explicit pool. When omitted, the store's eligible pool (redeemed,
            not yet drawn, ordered by code) is snapshotted.
        algorithm_key : Optional[str], default: None
            Shuffle algorithm; ``"sha256_fisher_yates"`` by default.
        created_by : Optional[str], default: None
            Identity of the operator running the draw.

        Returns
        -------
        DrawResult
            The record and the drawn-flag bookkeeping outcome.

        Notes
        -----
        The steps are:

        1. Snapshot the pool. Tickets redeemed afterwards are simply not part
           of this draw; nothing else is locked.
        2. Select winners with the seeded permutation.
        3. Persist the record.
        4. Ask the coordinator to flag each winner as drawn. Failures are
           reported in :attr:`DrawResult.mark_failures` and never undo the
           record or change the winners.

        Raises
        ------
        InsufficientPool
            If ``count`` exceeds the pool size. No record is written.
        """
        key = algorithm_key or DEFAULT_ALGORITHM_KEY
        snapshot = _validate_pool(self._store.eligible_pool() if pool is None else pool)
        resolved_seed = resolve_seed(seed)
        winners = select_winners(
            snapshot,
            count,
            resolved_seed,
            algorithm_key=key,
            registry=self._registry,
        )

        record = DrawRecord(
            draw_id=generate_draw_id(session=self._session),
            seed=resolved_seed,
            algorithm_key=key,
            count=count,
            eligible_pool=snapshot,
            winners=winners,
            created_by=created_by,
        )
        self._session.add(record)
        self._session.flush()
        logger.info(
            f"Draw {record.draw_id} selected {len(winners)} of {len(snapshot)} tickets "
            f"(seed={resolved_seed}, algorithm={key})"
        )

        result = DrawResult(record=record)
        if self._coordinator is None:
            return result

        for code in winners:
            try:
                self._coordinator.mark_drawn(code, record.draw_id)
            except TicketDrawError as exc:
                result.mark_failures[code] = str(exc)
                logger.warning(f"Draw {record.draw_id}: could not flag {code} as drawn: {exc}")
            else:
                result.marked.append(code)
        return result

    def verify(self, record: DrawRecord) -> bool:
        """Recompute the winners of ``record`` and compare with the stored ones."""

        try:
            expected = select_winners(
                record.eligible_pool,
                record.count,
                record.seed,
                algorithm_key=record.algorithm_key,
                registry=self._registry,
            )
        except (InsufficientPool, ValueError, KeyError) as exc:
            logger.warning(f"Draw {record.draw_id} cannot be recomputed: {exc}")
            return False
        return expected == list(record.winners)


__all__ = ["DrawEngine", "DrawResult", "select_winners"]
