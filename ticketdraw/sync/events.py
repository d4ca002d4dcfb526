"""Ticket change events and best-effort fan-out to connected devices."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional, Protocol

from sqlalchemy import event as sa_event
from sqlalchemy.orm import Session

from ..db.utils import dt_iso

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TicketChangeEvent:
    """State change pushed to scanner UIs after a successful transition."""

    ticket_code: str
    new_state: str
    version: int
    drawn: bool = False
    emitted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "ticketCode": self.ticket_code,
            "newState": self.new_state,
            "version": self.version,
            "drawn": self.drawn,
            "emittedAt": dt_iso(self.emitted_at),
        }

    def supersedes(self, other: Optional["TicketChangeEvent"]) -> bool:
        """Return ``True`` if this event is newer than ``other`` for the same ticket."""

        if other is None:
            return True
        if other.ticket_code != self.ticket_code:
            raise ValueError("Cannot compare change events for different tickets")
        return self.version > other.version


class ChangePublisher(Protocol):
    def publish(self, event: TicketChangeEvent) -> None: ...


Subscriber = Callable[[TicketChangeEvent], None]


class ChangeNotifier:
    """Fan change events out to in-process subscribers and remote publishers.

    Delivery is best effort: a failing subscriber or publisher is logged and
    counted but never propagates into the redemption that produced the event.
    One notifier may be shared by every scanner thread.
    """

    def __init__(self, publishers: Optional[list[ChangePublisher]] = None) -> None:
        self._lock = threading.Lock()
        self._subscribers: list[Subscriber] = []
        self._publishers: list[ChangePublisher] = list(publishers or [])
        self.delivered = 0
        self.failed = 0

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register ``callback`` and return a function that unregisters it."""

        with self._lock:
            self._subscribers.append(callback)

        def _unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return _unsubscribe

    def add_publisher(self, publisher: ChangePublisher) -> None:
        with self._lock:
            self._publishers.append(publisher)

    def publish(self, event: TicketChangeEvent) -> None:
        """Deliver ``event`` to every sink now."""

        with self._lock:
            sinks: list[Subscriber] = list(self._subscribers)
            sinks.extend(p.publish for p in self._publishers)
        # Sinks run outside the lock.
        for sink in sinks:
            try:
                sink(event)
            except Exception as exc:
                with self._lock:
                    self.failed += 1
                logger.warning(
                    f"Change event for {event.ticket_code} v{event.version} not delivered: {exc}"
                )
            else:
                with self._lock:
                    self.delivered += 1

    def publish_after_commit(self, session: Session, event: TicketChangeEvent) -> None:
        """Deliver ``event`` once ``session`` commits; drop it if it rolls back."""

        if not session.in_transaction():
            session.begin()
        session.info.setdefault(_PENDING_EVENTS_KEY, []).append((self, event))


_PENDING_EVENTS_KEY = "ticketdraw.pending_change_events"


@sa_event.listens_for(Session, "after_commit")
def _publish_committed_changes(session: Session) -> None:
    if session.in_nested_transaction():
        return
    for notifier, change in session.info.pop(_PENDING_EVENTS_KEY, []):
        notifier.publish(change)


@sa_event.listens_for(Session, "after_transaction_end")
def _discard_uncommitted_changes(session: Session, transaction) -> None:
    # Root transaction ended without a commit: rollback or close.
    if transaction.parent is None:
        session.info.pop(_PENDING_EVENTS_KEY, None)


class TicketStateView:
    """Client-side view that tolerates duplicate and out-of-order events.

    Only an event with a higher version than the one held replaces it, so
    replays and late deliveries are harmless. :meth:`reconcile` resets an
    entry from the store, which always wins.
    """

    def __init__(self) -> None:
        self._latest: dict[str, TicketChangeEvent] = {}

    def apply(self, event: TicketChangeEvent) -> bool:
        current = self._latest.get(event.ticket_code)
        if not event.supersedes(current):
            return False
        self._latest[event.ticket_code] = event
        return True

    def reconcile(self, ticket_code: str, state: str, version: int, drawn: bool = False) -> None:
        self._latest[ticket_code] = TicketChangeEvent(
            ticket_code=ticket_code, new_state=state, version=version, drawn=drawn
        )

    def latest(self, ticket_code: str) -> Optional[TicketChangeEvent]:
        return self._latest.get(ticket_code)

    def state_of(self, ticket_code: str) -> Optional[str]:
        event = self._latest.get(ticket_code)
        return event.new_state if event is not None else None

    def version_of(self, ticket_code: str) -> Optional[int]:
        event = self._latest.get(ticket_code)
        return event.version if event is not None else None


__all__ = [
    "ChangeNotifier",
    "ChangePublisher",
    "TicketChangeEvent",
    "TicketStateView",
]
