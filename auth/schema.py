"""
auth/schema.py -- SQLAlchemy Core schema shared by the auth stores.

Uses SQLAlchemy Core (not ORM) so the dataclasses in auth/models.py remain the
authoritative domain representation. Swapping SQLite for PostgreSQL is a
connection string change.

Users, sessions and ephemeral tokens live in one MetaData on one engine
because the recovery flows must update all three inside a single
transaction. Each store's write methods accept an optional Connection: pass
one to join the caller's transaction, omit it to get a short transaction of
the method's own (see transaction()).

Timestamps are stored as ISO-8601 text with fixed microsecond precision and
a +00:00 offset. Fixed width means lexical ORDER BY equals chronological
order. Booleans are stored as 0/1 integers for SQLite.

Security: all queries use bound parameters. No f-strings in SQL.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
)
from sqlalchemy.engine import Connection, Engine

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("hashed_password", Text),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("email_verified", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    Column("last_password_change", String(32)),
)

sessions = Table(
    "sessions",
    metadata,
    Column("id", String(32), primary_key=True),  # uuid4 hex, also the "sid" claim
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("access_token_hash", Text, nullable=False),
    Column("refresh_token_hash", Text, nullable=False),
    Column("expires_at", String(32), nullable=False),
    Column("last_activity_at", String(32), nullable=False),
    Column("issuing_ip", String(45), nullable=False),
    Column("issuing_user_agent", Text, nullable=False),
    Column("is_valid", Integer, nullable=False, server_default="1"),
    Column("created_at", String(32), nullable=False),
    Column("invalidated_at", String(32)),
    Index("ix_sessions_user_valid", "user_id", "is_valid"),
)

ephemeral_tokens = Table(
    "ephemeral_tokens",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("purpose", String(32), nullable=False),  # "password_reset" | "email_verification"
    Column("token_hash", Text, nullable=False),
    Column("expires_at", String(32), nullable=False),
    Column("used", Integer, nullable=False, server_default="0"),
    Column("issuing_ip", String(45), nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("used_at", String(32)),
    Index("ix_ephemeral_tokens_user_purpose_used", "user_id", "purpose", "used"),
)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers are not blocked by a writer.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def create_db_engine(db_url: str) -> Engine:
    """Create an engine for db_url and make sure the auth tables exist."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    metadata.create_all(engine)
    return engine


@contextmanager
def transaction(engine: Engine, conn: Connection | None = None) -> Iterator[Connection]:
    """Yield conn unchanged if given, else a new connection inside engine.begin().

    The begin() block commits on normal exit and rolls back if the body
    raises, so every multi-statement write either fully lands or not at all.
    """
    if conn is not None:
        yield conn
        return
    with engine.begin() as new_conn:
        yield new_conn


# ---------------------------------------------------------------------------
# Timestamp helpers
# ---------------------------------------------------------------------------


def to_iso(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
