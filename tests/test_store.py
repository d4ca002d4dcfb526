import unittest
from datetime import datetime, timezone

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from ticketdraw.errors import DuplicateTicket, UnknownTicket, VersionConflict
from ticketdraw.models import Base, Ticket, TicketState
from ticketdraw.store import TicketChanges, TicketStore


class TicketStoreTests(unittest.TestCase):
    def setUp(self):
        self.engine = create_engine("sqlite+pysqlite:///:memory:", future=True)
        Base.metadata.create_all(self.engine)
        self.Session = sessionmaker(bind=self.engine, expire_on_commit=False, future=True)

    def tearDown(self):
        self.engine.dispose()

    def _redeemed(self, device="gate-a", seq=1, version=1):
        return TicketChanges(
            state=TicketState.REDEEMED,
            redeemed_by=device,
            redeemed_at=datetime(2026, 10, 18, 9, 0, tzinfo=timezone.utc),
            last_device_id=device,
            last_sequence_no=seq,
            redeemed_version=version,
        )

    def test_issue_creates_ticket_at_version_zero(self):
        with self.Session() as session:
            store = TicketStore(session)
            ticket = store.issue("  T-001 ", event_name="Opening Night")
            session.commit()

            self.assertEqual(ticket.code, "T-001")
            self.assertIs(ticket.state, TicketState.ISSUED)
            self.assertEqual(ticket.version, 0)
            self.assertFalse(ticket.drawn)
            self.assertIsNotNone(ticket.issued_at)

    def test_issue_rejects_duplicates_and_blank_codes(self):
        with self.Session() as session:
            store = TicketStore(session)
            store.issue("T-001")
            with self.assertRaises(DuplicateTicket):
                store.issue("T-001")
            with self.assertRaises(ValueError):
                store.issue("   ")

    def test_get_unknown_code_raises(self):
        with self.Session() as session:
            store = TicketStore(session)
            with self.assertRaises(UnknownTicket):
                store.get("T-404")
            self.assertIsNone(store.find("T-404"))

    def test_compare_and_swap_bumps_version(self):
        with self.Session() as session:
            store = TicketStore(session)
            store.issue("T-001")
            session.commit()

            new_version = store.compare_and_swap("T-001", 0, self._redeemed())
            session.commit()

            self.assertEqual(new_version, 1)
            ticket = store.get("T-001")
            self.assertIs(ticket.state, TicketState.REDEEMED)
            self.assertEqual(ticket.version, 1)
            self.assertEqual(ticket.redeemed_by, "gate-a")
            self.assertEqual(ticket.last_sequence_no, 1)

    def test_compare_and_swap_with_stale_version_conflicts(self):
        with self.Session() as session:
            store = TicketStore(session)
            store.issue("T-001")
            store.compare_and_swap("T-001", 0, self._redeemed())

            with self.assertRaises(VersionConflict) as ctx:
                store.compare_and_swap("T-001", 0, self._redeemed(device="gate-b"))
            self.assertEqual(ctx.exception.expected_version, 0)

            ticket = store.get("T-001")
            self.assertEqual(ticket.version, 1)
            self.assertEqual(ticket.redeemed_by, "gate-a")

    def test_compare_and_swap_on_missing_ticket(self):
        with self.Session() as session:
            with self.assertRaises(UnknownTicket):
                TicketStore(session).compare_and_swap("T-404", 0, self._redeemed())

    def test_unset_fields_are_left_untouched(self):
        with self.Session() as session:
            store = TicketStore(session)
            store.issue("T-001")
            store.compare_and_swap("T-001", 0, self._redeemed())
            store.compare_and_swap(
                "T-001", 1, TicketChanges(state=TicketState.REDEEMED, drawn=True, drawn_in="DRW1")
            )

            ticket = store.get("T-001")
            self.assertEqual(ticket.version, 2)
            self.assertTrue(ticket.drawn)
            self.assertEqual(ticket.redeemed_by, "gate-a")
            self.assertEqual(ticket.redeemed_version, 1)

    def test_swaps_from_another_session_are_visible(self):
        with self.Session() as first, self.Session() as second:
            TicketStore(first).issue("T-001")
            first.commit()

            stale = TicketStore(second).get("T-001")
            self.assertEqual(stale.version, 0)

            TicketStore(first).compare_and_swap("T-001", 0, self._redeemed())
            first.commit()

            fresh = TicketStore(second).get("T-001")
            self.assertEqual(fresh.version, 1)
            self.assertIs(fresh.state, TicketState.REDEEMED)

    def test_eligible_pool_and_counts(self):
        with self.Session() as session:
            store = TicketStore(session)
            for code in ["T-003", "T-001", "T-002", "T-004", "T-005"]:
                store.issue(code)
            store.compare_and_swap("T-003", 0, self._redeemed(seq=1))
            store.compare_and_swap("T-001", 0, self._redeemed(seq=2))
            store.compare_and_swap("T-002", 0, self._redeemed(seq=3))
            store.compare_and_swap(
                "T-002", 1, TicketChanges(state=TicketState.REDEEMED, drawn=True, drawn_in="DRW1")
            )
            store.compare_and_swap(
                "T-005", 0, TicketChanges(state=TicketState.VOID, void_reason="lost")
            )

            self.assertEqual(store.eligible_pool(), ["T-001", "T-003"])
            self.assertEqual(
                store.counts(),
                {"issued": 1, "redeemed": 3, "void": 1, "drawn": 1},
            )

    def test_negative_version_is_rejected_by_schema(self):
        from sqlalchemy.exc import IntegrityError

        with self.Session() as session:
            ticket = Ticket(code="T-001")
            ticket.version = -1
            session.add(ticket)
            with self.assertRaises(IntegrityError):
                session.flush()


if __name__ == "__main__":
    unittest.main()
