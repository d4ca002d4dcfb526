from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

import os
from pathlib import Path
from typing import Optional
from dotenv import load_dotenv
from .utils import env_int, resolve_sqlite_url

# Get DB url
load_dotenv()
# Project root directory (repo root)
ROOT_DIR = Path(__file__).resolve().parents[2]
DEFAULT_SQLITE_URL = resolve_sqlite_url(
    os.getenv("DB_URL", "sqlite:///./dev.db"), ROOT_DIR
)
# Milliseconds a SQLite writer waits on a competing writer before failing.
SQLITE_BUSY_TIMEOUT_MS = env_int(os.getenv("SQLITE_BUSY_TIMEOUT_MS"), 10_000)


def make_engine(
    database_url: Optional[str] = None,
    echo: bool = False,
    busy_timeout_ms: Optional[int] = None,
):
    url = database_url or DEFAULT_SQLITE_URL
    timeout_ms = SQLITE_BUSY_TIMEOUT_MS if busy_timeout_ms is None else busy_timeout_ms
    engine = create_engine(
        url,
        echo=echo,
        future=True,
    )
    if url.startswith("sqlite"):
        # Concurrent scanners serialise on the database write lock; let them
        # queue instead of failing immediately with "database is locked".
        @event.listens_for(engine, "connect")
        def _set_sqlite_pragma(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute(f"PRAGMA busy_timeout={int(timeout_ms)}")
            cursor.close()

    return engine


def get_sessionmaker(engine):
    return sessionmaker(
        bind=engine,
        expire_on_commit=False,  # Keep objects accessible after commit for scanner UIs
        future=True,
    )
