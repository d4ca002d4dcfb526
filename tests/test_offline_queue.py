import sqlite3
import tempfile
import unittest
from datetime import datetime, timedelta, timezone
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from ticketdraw.coordinator import RedemptionCoordinator
from ticketdraw.db.engine import get_sessionmaker, make_engine
from ticketdraw.errors import StoreUnavailable
from ticketdraw.models import Base, OfflineScanEntry, ScanEvent, TicketState
from ticketdraw.offline import OfflineScanQueue
from ticketdraw.store import TicketStore


class FlakyCoordinator:
    """Delegates to a real coordinator but fails given codes once with a transient error."""

    def __init__(self, coordinator, fail_once=()):
        self.coordinator = coordinator
        self.fail_once = set(fail_once)
        self.calls = []

    def redeem(self, scan):
        self.calls.append(scan.ticket_code)
        if scan.ticket_code in self.fail_once:
            self.fail_once.discard(scan.ticket_code)
            raise StoreUnavailable("database is locked")
        return self.coordinator.redeem(scan)


class OfflineScanQueueTests(unittest.TestCase):
    def setUp(self):
        self.engine = create_engine("sqlite+pysqlite:///:memory:", future=True)
        Base.metadata.create_all(self.engine)
        self.Session = sessionmaker(bind=self.engine, expire_on_commit=False, future=True)
        with self.Session.begin() as session:
            store = TicketStore(session)
            for code in ("A", "B", "C", "D"):
                store.issue(code)
        self.t0 = datetime(2026, 10, 18, 18, 0, tzinfo=timezone.utc)

    def tearDown(self):
        self.engine.dispose()

    def _scan(self, code, seq, device="gate-b"):
        return ScanEvent(code, device, seq, captured_at=self.t0 + timedelta(seconds=seq))

    def _enqueue(self, session, *codes, device="gate-b"):
        queue = OfflineScanQueue(session, device)
        for seq, code in enumerate(codes, start=1):
            queue.enqueue(self._scan(code, seq, device))
        return queue

    def test_entries_survive_a_new_session(self):
        with self.Session.begin() as session:
            self._enqueue(session, "A", "B", "C")

        with self.Session() as session:
            queue = OfflineScanQueue(session, "gate-b")
            self.assertEqual(len(queue), 3)
            pending = queue.pending()
            self.assertEqual([e.ticket_code for e in pending], ["A", "B", "C"])
            self.assertEqual(pending[0].to_event().captured_at, self.t0 + timedelta(seconds=1))

    def test_transient_failure_keeps_order(self):
        with self.Session() as session:
            queue = self._enqueue(session, "A", "B", "C")
            flaky = FlakyCoordinator(RedemptionCoordinator(session), fail_once={"B"})

            report = queue.replay(flaky)
            self.assertEqual(report.outcomes, [(1, "A", "redeemed")])
            self.assertEqual(report.blocked_on, 2)
            self.assertIn("locked", report.blocked_reason)
            self.assertEqual(report.remaining, 2)
            self.assertFalse(report.completed)
            # C must not overtake B.
            self.assertEqual(flaky.calls, ["A", "B"])

            store = TicketStore(session)
            self.assertIs(store.get("C").state, TicketState.ISSUED)
            blocked = queue.pending()[0]
            self.assertEqual(blocked.ticket_code, "B")
            self.assertEqual(blocked.attempts, 1)
            self.assertIn("locked", blocked.last_error)

            report = queue.replay(flaky)
            self.assertEqual(report.outcomes, [(2, "B", "redeemed"), (3, "C", "redeemed")])
            self.assertTrue(report.completed)
            self.assertEqual(flaky.calls, ["A", "B", "B", "C"])
            self.assertEqual(len(queue), 0)

    def test_rejections_are_terminal(self):
        with self.Session() as session:
            coordinator = RedemptionCoordinator(session)
            coordinator.redeem(ScanEvent("A", "gate-a", 1))
            coordinator.void("D")

            queue = self._enqueue(session, "A", "X-404", "D", "B")
            report = queue.replay(coordinator)

            self.assertEqual(
                report.outcomes,
                [
                    (1, "A", "already_redeemed"),
                    (2, "X-404", "unknown_ticket"),
                    (3, "D", "void_ticket"),
                    (4, "B", "redeemed"),
                ],
            )
            self.assertTrue(report.completed)
            self.assertEqual(report.drained, 4)

    def test_scan_already_applied_online_is_reported_as_replayed(self):
        with self.Session() as session:
            coordinator = RedemptionCoordinator(session)
            # The device's request reached the server but the answer was lost.
            coordinator.redeem(self._scan("A", 1))

            queue = self._enqueue(session, "A")
            report = queue.replay(coordinator)
            self.assertEqual(report.outcomes, [(1, "A", "replayed")])

    def test_queues_are_per_device(self):
        with self.Session() as session:
            self._enqueue(session, "A", "B", device="gate-b")
            self._enqueue(session, "C", device="gate-c")

            self.assertEqual(len(OfflineScanQueue(session, "gate-b")), 2)
            self.assertEqual(len(OfflineScanQueue(session, "gate-c")), 1)
            self.assertEqual(OfflineScanEntry.devices_with_pending(session), ["gate-b", "gate-c"])

    def test_enqueue_validation(self):
        with self.Session() as session:
            queue = self._enqueue(session, "A", "B")

            with self.assertRaises(ValueError):
                queue.enqueue(self._scan("C", 2))
            with self.assertRaises(ValueError):
                queue.enqueue(self._scan("C", 3, device="gate-z"))
            with self.assertRaises(ValueError):
                OfflineScanQueue(session, "  ")

            queue.enqueue(self._scan("C", 5))
            self.assertEqual(len(queue), 3)


class LockedDatabaseReplayTests(unittest.TestCase):
    """Replay while another connection holds the SQLite write lock."""

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.db_path = Path(self.tmpdir.name) / "gate.db"
        self.engine = make_engine(f"sqlite:///{self.db_path}", busy_timeout_ms=100)
        Base.metadata.create_all(self.engine)
        self.Session = get_sessionmaker(self.engine)
        with self.Session.begin() as session:
            store = TicketStore(session)
            for code in ("A", "B"):
                store.issue(code)

    def tearDown(self):
        self.engine.dispose()
        self.tmpdir.cleanup()

    def _hold_write_lock(self):
        locker = sqlite3.connect(self.db_path, isolation_level=None)
        locker.execute("BEGIN IMMEDIATE")
        self.addCleanup(locker.close)
        return locker

    def test_locked_store_blocks_replay_without_losing_entries(self):
        with self.Session.begin() as session:
            queue = OfflineScanQueue(session, "gate-b")
            queue.enqueue(ScanEvent("A", "gate-b", 1))
            queue.enqueue(ScanEvent("B", "gate-b", 2))

        locker = self._hold_write_lock()
        with self.Session() as session:
            queue = OfflineScanQueue(session, "gate-b")
            report = queue.replay(RedemptionCoordinator(session))

            self.assertEqual(report.outcomes, [])
            self.assertEqual(report.blocked_on, 1)
            self.assertIn("locked", report.blocked_reason)
            self.assertEqual(report.remaining, 2)
            session.commit()

            locker.execute("ROLLBACK")
            report = queue.replay(RedemptionCoordinator(session))
            self.assertEqual(report.outcomes, [(1, "A", "redeemed"), (2, "B", "redeemed")])
            self.assertTrue(report.completed)
            session.commit()

        with self.Session() as session:
            store = TicketStore(session)
            self.assertIs(store.get("A").state, TicketState.REDEEMED)
            self.assertIs(store.get("B").state, TicketState.REDEEMED)
            self.assertEqual(len(OfflineScanQueue(session, "gate-b")), 0)

    def test_rejection_that_cannot_be_audited_stays_queued(self):
        with self.Session.begin() as session:
            RedemptionCoordinator(session).redeem(ScanEvent("A", "gate-a", 1))
            OfflineScanQueue(session, "gate-b").enqueue(ScanEvent("A", "gate-b", 1))

        locker = self._hold_write_lock()
        with self.Session() as session:
            queue = OfflineScanQueue(session, "gate-b")
            report = queue.replay(RedemptionCoordinator(session))
            self.assertEqual(report.blocked_on, 1)
            self.assertEqual(report.remaining, 1)

            locker.execute("ROLLBACK")
            report = queue.replay(RedemptionCoordinator(session))
            self.assertEqual(report.outcomes, [(1, "A", "already_redeemed")])
            session.commit()


class ScanEventTests(unittest.TestCase):
    def test_fields_are_normalized(self):
        scan = ScanEvent("  T-001\n", " gate-a ", 0)
        self.assertEqual(scan.ticket_code, "T-001")
        self.assertEqual(scan.device_id, "gate-a")
        self.assertEqual(scan.scan_key, ("gate-a", 0))
        self.assertEqual(scan.captured_at.tzinfo, timezone.utc)

    def test_invalid_fields(self):
        with self.assertRaises(ValueError):
            ScanEvent("", "gate-a", 1)
        with self.assertRaises(ValueError):
            ScanEvent("T-001", "gate-a", -1)
        with self.assertRaises(TypeError):
            ScanEvent("T-001", "gate-a", True)
        with self.assertRaises(TypeError):
            ScanEvent("T-001", "gate-a", "1")


if __name__ == "__main__":
    unittest.main()
