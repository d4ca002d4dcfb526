"""Per-device durable backlog of scans captured without connectivity."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional, Protocol

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from .errors import RedemptionRejected, StoreUnavailable, TransientError
from .models.scan import OfflineScanEntry, ScanEvent

logger = logging.getLogger(__name__)


class ScanRedeemer(Protocol):
    def redeem(self, scan: ScanEvent) -> object: ...


@dataclass
class ReplayReport:
    """Summary of one :meth:`OfflineScanQueue.replay` pass.

    Attributes
    ----------
    device_id : str
        Device whose queue was replayed.
    outcomes : list[tuple[int, str, str]]
        ``(sequence_no, ticket_code, outcome)`` for each drained entry, in
        replay order. ``outcome`` is ``"redeemed"``, ``"replayed"`` or the
        rejection's outcome name.
    blocked_on : Optional[int]
        Sequence number of the entry that hit a transient failure, if any.
    blocked_reason : Optional[str]
        Message of that transient failure.
    remaining : int
        Entries still queued after the pass.
    """

    device_id: str
    outcomes: list[tuple[int, str, str]] = field(default_factory=list)
    blocked_on: Optional[int] = None
    blocked_reason: Optional[str] = None
    remaining: int = 0

    @property
    def completed(self) -> bool:
        return self.blocked_on is None and self.remaining == 0

    @property
    def drained(self) -> int:
        return len(self.outcomes)


class OfflineScanQueue:
    """Append-only, ordered queue of one device's offline scans.

    Entries live in the ``offline_scan_entries`` table so they survive restarts
    of the scanning process. They leave the queue only when the coordinator
    returns a terminal answer for them.
    """

    def __init__(self, session: Session, device_id: str) -> None:
        if not device_id or not device_id.strip():
            raise ValueError("device_id must not be empty")
        self._session = session
        self.device_id = device_id.strip()

    def __len__(self) -> int:
        stmt = select(func.count(OfflineScanEntry.id)).where(
            OfflineScanEntry.device_id == self.device_id
        )
        return int(self._session.scalar(stmt) or 0)

    def pending(self) -> list[OfflineScanEntry]:
        """Return queued entries in capture order."""

        return OfflineScanEntry.pending_for_device(self._session, self.device_id)

    def enqueue(self, scan: ScanEvent) -> OfflineScanEntry:
        """Append ``scan`` to the device's backlog.

        Raises
        ------
        ValueError
            If the scan belongs to another device, or its ``sequence_no`` does
            not come after every entry already queued.
        """
        if scan.device_id != self.device_id:
            raise ValueError(
                f"Scan from device {scan.device_id!r} cannot join the queue of {self.device_id!r}"
            )
        last = self._session.scalar(
            select(func.max(OfflineScanEntry.sequence_no)).where(
                OfflineScanEntry.device_id == self.device_id
            )
        )
        if last is not None and scan.sequence_no <= last:
            raise ValueError(
                f"sequence_no {scan.sequence_no} must be greater than the last queued ({last})"
            )

        entry = OfflineScanEntry.from_event(scan)
        self._session.add(entry)
        self._session.flush()
        logger.debug(
            f"Queued offline scan {self.device_id}#{scan.sequence_no} for {scan.ticket_code}"
        )
        return entry

    def replay(self, coordinator: ScanRedeemer) -> ReplayReport:
        """Submit queued scans to ``coordinator`` strictly in capture order.

        An entry is deleted once the coordinator redeems it or definitively
        rejects it. The first transient failure stops the pass: that entry and
        every later one stay queued so that no scan overtakes an earlier one.

        Queue writes are immediate statements, so a locked database stops the
        pass with a report and leaves the session usable for the caller.
        """
        report = ReplayReport(device_id=self.device_id)
        for entry in self.pending():
            sequence_no, ticket_code = entry.sequence_no, entry.ticket_code
            try:
                outcome = self._submit(coordinator, entry)
                self._dequeue(entry)
            except TransientError as exc:
                report.blocked_on = sequence_no
                report.blocked_reason = str(exc)
                logger.warning(f"Replay of {self.device_id} paused at #{sequence_no}: {exc}")
                self._note_failure(entry, exc)
                break
            report.outcomes.append((sequence_no, ticket_code, outcome))

        report.remaining = len(self)
        return report

    def _submit(self, coordinator: ScanRedeemer, entry: OfflineScanEntry) -> str:
        try:
            result = coordinator.redeem(entry.to_event())
        except RedemptionRejected as exc:
            logger.info(f"Offline scan {self.device_id}#{entry.sequence_no} rejected: {exc}")
            return exc.outcome
        return "replayed" if getattr(result, "replayed", False) else "redeemed"

    def _dequeue(self, entry: OfflineScanEntry) -> None:
        stmt = delete(OfflineScanEntry).where(OfflineScanEntry.id == entry.id)
        try:
            self._session.execute(stmt)
        except OperationalError as exc:
            raise StoreUnavailable(
                f"Could not dequeue {self.device_id}#{entry.sequence_no}: {exc}"
            ) from exc

    def _note_failure(self, entry: OfflineScanEntry, error: Exception) -> None:
        stmt = (
            update(OfflineScanEntry)
            .where(OfflineScanEntry.id == entry.id)
            .values(attempts=OfflineScanEntry.attempts + 1, last_error=str(error))
            .execution_options(synchronize_session=False)
        )
        try:
            self._session.execute(stmt)
        except OperationalError as exc:
            # The entry stays queued either way; only the counters are lost.
            logger.warning(
                f"Could not record failed attempt for {self.device_id}#{entry.sequence_no}: {exc}"
            )


__all__ = ["OfflineScanQueue", "ReplayReport", "ScanRedeemer"]
