"""
core/database.py -- Shared SQLAlchemy engine and schema metadata.

Every store (auth/store.py, auth/broker.py, mods/store.py) registers its tables
on the one `metadata` object below and receives the same Engine. One engine
means one connection pool, and that pool is the concurrency bound for the
whole service: when all connections are checked out, further requests queue
for up to `db_pool_timeout` seconds and then fail with
sqlalchemy.exc.TimeoutError (reported to the caller as a retryable 500).

SQLite notes:
  WAL mode is enabled per connection so readers never block behind a writer.
  foreign_keys is OFF by default in SQLite; it is switched on per connection
  so author/username references are enforced the same way PostgreSQL does.
  SQLite pools are chosen by SQLAlchemy (QueuePool for files, SingletonThreadPool
  for :memory:), so the pool sizing arguments only apply to server databases.

Timestamps are stored as fixed-width ISO 8601 UTC strings
(microsecond precision, "+00:00" suffix). Fixed width keeps lexical order equal
to chronological order, so `expires_at > :now` comparisons work in SQL.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import MetaData, create_engine, event, text
from sqlalchemy.engine import Engine

logger = logging.getLogger("acorn.database")

metadata = MetaData()


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(moment: datetime) -> str:
    """Format a datetime as a fixed-width UTC ISO 8601 string."""
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _configure_sqlite(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode and foreign key enforcement.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_db_engine(db_url: str, pool_size: int = 5, pool_timeout: float = 30.0) -> Engine:
    """Build the service-wide Engine.

    Usage:
        engine = create_db_engine("sqlite:///acorn.db")
        engine = create_db_engine("postgresql+psycopg://user:pw@host/acorn", pool_size=10)
    """
    if db_url.startswith("sqlite"):
        engine = create_engine(db_url, connect_args={"check_same_thread": False})
        event.listen(engine, "connect", _configure_sqlite)
        return engine
    return create_engine(
        db_url,
        pool_size=pool_size,
        max_overflow=0,
        pool_timeout=pool_timeout,
        pool_pre_ping=True,
    )


def ping(engine: Engine) -> bool:
    """Return True if the database answers a trivial query. Used by /health."""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception:
        logger.warning("Database health check failed", exc_info=True)
        return False
