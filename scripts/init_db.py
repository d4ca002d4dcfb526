"""Bring the configured database up to date and summarise the ticket pool.

Usage::

    python scripts/init_db.py               # alembic upgrade head
    python scripts/init_db.py --revision 0001_initial_schema
    python scripts/init_db.py --check       # exit 1 if models and schema differ
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from alembic import command
from alembic.autogenerate import compare_metadata
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from sqlalchemy import inspect

from ticketdraw.db.engine import get_sessionmaker, make_engine
from ticketdraw.models import Base
from ticketdraw.workflows import pool_metrics

PROJECT_ROOT = Path(__file__).resolve().parents[1]


def upgrade_db(target_revision: str = "head") -> None:
    alembic_cfg = Config(str(PROJECT_ROOT / "alembic.ini"))
    alembic_cfg.set_main_option("script_location", str(PROJECT_ROOT / "alembic"))
    command.upgrade(alembic_cfg, target_revision)


def schema_differences() -> list:
    """Return Alembic's diff between the ORM models and the live schema."""
    engine = make_engine()
    with engine.connect() as connection:
        context = MigrationContext.configure(
            connection=connection,
            opts={"compare_type": True},
        )
        return list(compare_metadata(context, Base.metadata))


def report() -> None:
    engine = make_engine()
    tables = sorted(inspect(engine).get_table_names())
    print("Tables:", ", ".join(tables))
    if "tickets" not in tables:
        return
    with get_sessionmaker(engine)() as session:
        metrics = pool_metrics(session)
    print(
        f"Tickets: {metrics.total} total, {metrics.issued} issued, "
        f"{metrics.redeemed} redeemed ({metrics.eligible} eligible for a draw), "
        f"{metrics.void} void"
    )


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--revision", default="head", help="target alembic revision")
    parser.add_argument(
        "--check",
        action="store_true",
        help="only compare models with the database schema",
    )
    args = parser.parse_args(argv)

    if args.check:
        diffs = schema_differences()
        if not diffs:
            print("Schema matches the models.")
            return 0
        print("Schema drift detected:")
        for diff in diffs:
            print(f"  - {diff}")
        return 1

    upgrade_db(args.revision)
    report()
    return 0


if __name__ == "__main__":
    sys.exit(main())
