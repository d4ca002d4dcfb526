import tempfile
import threading
import unittest
from pathlib import Path

from ticketdraw.coordinator import RedemptionCoordinator
from ticketdraw.db.engine import get_sessionmaker, make_engine
from ticketdraw.errors import AlreadyRedeemed
from ticketdraw.models import Base, ScanAudit, ScanEvent, TicketState
from ticketdraw.store import TicketStore


class ConcurrentRedemptionTests(unittest.TestCase):
    """Scanners in separate threads and sessions racing on one ticket."""

    DEVICES = 8

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        db_path = Path(self.tmpdir.name) / "race.db"
        self.engine = make_engine(f"sqlite:///{db_path}")
        Base.metadata.create_all(self.engine)
        self.Session = get_sessionmaker(self.engine)
        with self.Session.begin() as session:
            TicketStore(session).issue("T-001")

    def tearDown(self):
        self.engine.dispose()
        self.tmpdir.cleanup()

    def _scan(self, device_id, barrier, outcomes, lock):
        scan = ScanEvent("T-001", device_id, 1)
        barrier.wait()
        with self.Session() as session:
            try:
                result = RedemptionCoordinator(session, max_retries=10).redeem(scan)
                session.commit()
                outcome = ("redeemed", device_id, result.version)
            except AlreadyRedeemed as exc:
                session.commit()
                outcome = ("already_redeemed", device_id, exc.redeemed_by)
            except Exception as exc:
                session.rollback()
                outcome = ("error", device_id, repr(exc))
        with lock:
            outcomes.append(outcome)

    def test_exactly_one_scanner_wins(self):
        barrier = threading.Barrier(self.DEVICES)
        lock = threading.Lock()
        outcomes = []
        threads = [
            threading.Thread(
                target=self._scan, args=(f"gate-{n}", barrier, outcomes, lock)
            )
            for n in range(self.DEVICES)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=60)

        self.assertEqual([o for o in outcomes if o[0] == "error"], [])
        winners = [o for o in outcomes if o[0] == "redeemed"]
        losers = [o for o in outcomes if o[0] == "already_redeemed"]
        self.assertEqual(len(winners), 1)
        self.assertEqual(len(losers), self.DEVICES - 1)

        winner_device = winners[0][1]
        self.assertEqual(winners[0][2], 1)
        self.assertTrue(all(o[2] == winner_device for o in losers))

        with self.Session() as session:
            ticket = TicketStore(session).get("T-001")
            self.assertIs(ticket.state, TicketState.REDEEMED)
            self.assertEqual(ticket.version, 1)
            self.assertEqual(ticket.last_device_id, winner_device)
            audit = ScanAudit.for_ticket(session, "T-001")
            self.assertEqual(len(audit), self.DEVICES)


if __name__ == "__main__":
    unittest.main()
