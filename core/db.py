"""
core/db.py -- Shared SQLAlchemy engine factory and timestamp helpers.

Every store (auth/, otp/, audit/) receives the same Engine so users, tokens,
OTP records and audit events live in one relational database: the Credential
Store. Each store owns its own Table definitions and calls create_all on
construction.

Timestamps are stored as fixed-width UTC ISO 8601 strings
("2026-01-31T23:59:59.000000+00:00", always 32 chars). Fixed width keeps
text comparison in SQL (expires_at > :now) equivalent to chronological
comparison, which datetime.isoformat() alone does not guarantee because it
drops the microsecond field when it is zero.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine

_ISO_FORMAT = "%Y-%m-%dT%H:%M:%S.%f+00:00"


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def create_db_engine(db_url: str) -> Engine:
    """Build an Engine for db_url. SQLite gets WAL mode and cross-thread access."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    return engine


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(dt: datetime) -> str:
    """Render an aware (or naive-UTC) datetime in the fixed-width storage format."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).strftime(_ISO_FORMAT)


def from_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value)
