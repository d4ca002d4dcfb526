from datetime import datetime, timedelta, timezone

from ticketdraw.db.engine import get_sessionmaker, make_engine
from ticketdraw.models import Base, ScanEvent
from ticketdraw.workflows import (
    issue_tickets,
    queue_offline_scan,
    scan_ticket,
    void_ticket,
)


def main() -> None:
    """Seed the development database with sample tickets and scans."""
    engine = make_engine()

    # Drop and recreate all tables for a clean development schema.
    Base.metadata.drop_all(engine)
    Base.metadata.create_all(engine)
    Session = get_sessionmaker(engine)

    now = datetime.now(timezone.utc)

    with Session.begin() as session:
        # 40 tickets for the sample event
        codes = [f"T-{n:03d}" for n in range(1, 41)]
        issue_tickets(session, codes, event_name="Dev Night Match")

        # Gate A checked in the first 20 while online
        for seq, code in enumerate(codes[:20], start=1):
            scan_ticket(
                session,
                ScanEvent(
                    ticket_code=code,
                    device_id="gate-a",
                    sequence_no=seq,
                    captured_at=now - timedelta(minutes=40 - seq),
                ),
            )

        # Gate B lost connectivity and holds five scans for replay
        for seq, code in enumerate(codes[20:25], start=1):
            queue_offline_scan(
                session,
                ScanEvent(
                    ticket_code=code,
                    device_id="gate-b",
                    sequence_no=seq,
                    captured_at=now - timedelta(minutes=10 - seq),
                ),
            )

        void_ticket(session, codes[-1], reason="reported lost")

    print("Seeded 40 tickets: 20 redeemed, 5 queued offline on gate-b, 1 void.")


if __name__ == "__main__":
    main()
