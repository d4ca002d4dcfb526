from dataclasses import dataclass
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from .coordinator import RedemptionCoordinator, RedemptionResult
from .draw.engine import DrawEngine, DrawResult
from .draw.seed import SeedLike
from .draw.shuffle import ShuffleRegistry
from .models import DrawRecord, OfflineScanEntry, ScanEvent, Ticket
from .offline import OfflineScanQueue, ReplayReport
from .store import TicketStore
from .sync.events import ChangeNotifier


def issue_tickets(
    session: Session,
    codes: Iterable[str],
    *,
    event_name: Optional[str] = None,
) -> list[Ticket]:
    """Create tickets in the ``issued`` state for every code in ``codes``.

    Parameters
    ----------
    session : Session
        Active SQLAlchemy session.
    codes : Iterable[str]
        Codes printed on the tickets. Each must be non-empty and unique.
    event_name : Optional[str]
        Optional label for the event the tickets admit to.

    Returns
    -------
    list[Ticket]
        The persisted tickets, in input order.

    Raises
    ------
    DuplicateTicket
        If a code already exists.
    """
    store = TicketStore(session)
    tickets = [store.issue(code, event_name=event_name) for code in codes]
    session.flush()
    return tickets


def scan_ticket(
    session: Session,
    scan: ScanEvent,
    *,
    notifier: Optional[ChangeNotifier] = None,
    max_retries: Optional[int] = None,
) -> RedemptionResult:
    """Redeem the ticket read by an online scanner.

    This function essentially wraps :meth:`RedemptionCoordinator.redeem`;
    rejections (:class:`~ticketdraw.errors.UnknownTicket`,
    :class:`~ticketdraw.errors.AlreadyRedeemed`,
    :class:`~ticketdraw.errors.VoidTicket`) and transient failures
    (:class:`~ticketdraw.errors.Contention`) propagate unchanged.
    """
    coordinator = RedemptionCoordinator(
        session, notifier=notifier, max_retries=max_retries
    )
    result = coordinator.redeem(scan)
    session.flush()
    return result


def queue_offline_scan(session: Session, scan: ScanEvent) -> OfflineScanEntry:
    """Append a scan captured without connectivity to its device's queue."""

    return OfflineScanQueue(session, scan.device_id).enqueue(scan)


def replay_offline_scans(
    session: Session,
    device_id: Optional[str] = None,
    *,
    notifier: Optional[ChangeNotifier] = None,
    max_retries: Optional[int] = None,
) -> list[ReplayReport]:
    """Replay queued offline scans once a device reconnects.

    Parameters
    ----------
    session : Session
        Session used for the redemptions and queue bookkeeping. Committing
        it makes the redemptions and the removal of their queue entries
        visible together.
    device_id : Optional[str], default: None
        Device to replay. When omitted, every device with pending entries is
        replayed, each in its own capture order.
    notifier : Optional[ChangeNotifier], default: None
        Receives change events for successful redemptions.
    max_retries : Optional[int], default: None
        Swap retry budget passed to the coordinator.

    Returns
    -------
    list[ReplayReport]
        One report per replayed device.
    """
    coordinator = RedemptionCoordinator(
        session, notifier=notifier, max_retries=max_retries
    )
    devices = (
        [device_id]
        if device_id is not None
        else OfflineScanEntry.devices_with_pending(session)
    )
    reports = [OfflineScanQueue(session, device).replay(coordinator) for device in devices]
    session.flush()
    return reports


def void_ticket(
    session: Session,
    code: str,
    *,
    reason: Optional[str] = None,
    notifier: Optional[ChangeNotifier] = None,
) -> RedemptionResult:
    """Administratively void ``code``; it can no longer be redeemed or drawn."""

    coordinator = RedemptionCoordinator(session, notifier=notifier)
    result = coordinator.void(code, reason=reason)
    session.flush()
    return result


def run_draw(
    session: Session,
    count: int,
    seed: Optional[SeedLike] = None,
    *,
    algorithm_key: Optional[str] = None,
    created_by: Optional[str] = None,
    notifier: Optional[ChangeNotifier] = None,
    registry: Optional[ShuffleRegistry] = None,
) -> DrawResult:
    """Draw ``count`` winners from the redeemed, not yet drawn tickets.

    When ``seed`` is omitted, one is generated and stored on the record so
    the draw can be re-run for audits. Winners are flagged as drawn through
    the coordinator, so a later draw never selects them again.

    This function essentially wraps :class:`DrawEngine`.

    Parameters
    ----------
    session : Session
        Active session used for the pool snapshot and persistence.
    count : int
        Number of winners.
    seed : Optional[str | int], default: None
        Seed for the permutation.
    algorithm_key : Optional[str], default: None
        Shuffle algorithm override.
    created_by : Optional[str], default: None
        Operator running the draw.
    notifier : Optional[ChangeNotifier], default: None
        Receives change events for the drawn flags.
    registry : Optional[ShuffleRegistry], default: None
        Optional registry containing custom shuffle algorithms.

    Returns
    -------
    DrawResult
        The persisted record and the drawn-flag report.

    Raises
    ------
    InsufficientPool
        If fewer tickets are eligible than ``count``.
    """
    coordinator = RedemptionCoordinator(session, notifier=notifier)
    engine = DrawEngine(session, coordinator=coordinator, registry=registry)
    result = engine.draw(
        count,
        seed,
        algorithm_key=algorithm_key,
        created_by=created_by,
    )
    session.flush()
    return result


def verify_draw(
    session: Session,
    draw_id: str,
    *,
    registry: Optional[ShuffleRegistry] = None,
) -> bool:
    """Re-run a recorded draw and confirm it reproduces the stored winners.

    Raises
    ------
    ValueError
        If no draw with ``draw_id`` exists.
    """
    record = DrawRecord.get_by_draw_id(session, draw_id)
    if record is None:
        raise ValueError(f"Draw {draw_id!r} does not exist")
    return DrawEngine(session, registry=registry).verify(record)


@dataclass(frozen=True)
class PoolMetrics:
    """Ticket counts shown to organizers before running a draw."""

    issued: int
    redeemed: int
    void: int
    drawn: int

    @property
    def eligible(self) -> int:
        return self.redeemed - self.drawn

    @property
    def total(self) -> int:
        return self.issued + self.redeemed + self.void


def pool_metrics(session: Session) -> PoolMetrics:
    """Count tickets by state.

    ``drawn`` only counts redeemed winners; a voided winner keeps its flag
    but moves to ``void``.
    """
    counts = TicketStore(session).counts()
    return PoolMetrics(
        issued=counts["issued"],
        redeemed=counts["redeemed"],
        void=counts["void"],
        drawn=counts["drawn"],
    )
