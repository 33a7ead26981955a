"""
auth/sessions.py -- Session Store: persistence and the per-user capacity policy.

Pattern: Repository + Data Mapper (same as auth/store.py).

Invariant: for any user, the number of rows with is_valid = 1 never exceeds
the configured capacity. insert_with_capacity() is the only insert path and
does eviction + insert in one transaction. Callers serialise concurrent
calls for the same user (SessionManager holds a KeyedLock); lock_user()
additionally takes a row lock on the owning user where the backend supports
SELECT ... FOR UPDATE.

Rows are never deleted. Invalidation sets is_valid = 0 and stamps
invalidated_at; invalidating an already-invalid row changes nothing.

Eviction order: last_activity_at ascending, then created_at, then id, so the
session idle the longest goes first and ties break deterministically.
"""

from __future__ import annotations

import logging
import uuid

from sqlalchemy import func, select
from sqlalchemy.engine import Connection, Engine

from auth.clock import Clock, utcnow
from auth.models import Session
from auth.schema import from_iso, sessions, to_iso, transaction, users

logger = logging.getLogger("authcore.auth.sessions")


def new_session_id() -> str:
    return uuid.uuid4().hex


def normalize_session_id(value: object) -> str | None:
    """Return the canonical hex form of a session id, or None if it is not UUID-shaped."""
    try:
        return uuid.UUID(str(value)).hex
    except (TypeError, ValueError):
        return None


class SessionStore:
    """Repository for Session records.

    Usage:
        store = SessionStore(engine)
        evicted = store.insert_with_capacity(session, max_sessions=5)
        store.invalidate([session.id])
    """

    def __init__(self, engine: Engine, clock: Clock = utcnow) -> None:
        self.engine = engine
        self._clock = clock

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def lock_user(self, user_id: int, conn: Connection) -> None:
        """Row-lock the owning user for the rest of conn's transaction.

        SQLite has no row locks and the compiler drops FOR UPDATE there; its
        single-writer lock plus the caller's KeyedLock cover that case.
        """
        conn.execute(select(users.c.id).where(users.c.id == user_id).with_for_update())

    def insert_with_capacity(self, session: Session, max_sessions: int, conn: Connection | None = None) -> list[str]:
        """Evict the oldest valid sessions until max_sessions - 1 remain, then insert session.

        Returns the ids of the evicted sessions (possibly empty).
        """
        with transaction(self.engine, conn) as c:
            self.lock_user(session.user_id, c)
            valid = self.list_valid(session.user_id, conn=c)
            overflow = len(valid) - (max_sessions - 1)
            evicted = [s.id for s in valid[:overflow]] if overflow > 0 else []
            if evicted:
                self.invalidate(evicted, conn=c)
                logger.info(
                    "Session capacity reached for user_id=%s; evicted %d session(s)",
                    session.user_id,
                    len(evicted),
                )
            now = to_iso(self._clock())
            c.execute(
                sessions.insert().values(
                    id=session.id,
                    user_id=session.user_id,
                    access_token_hash=session.access_token_hash,
                    refresh_token_hash=session.refresh_token_hash,
                    expires_at=to_iso(session.expires_at),
                    last_activity_at=to_iso(session.last_activity_at),
                    issuing_ip=session.issuing_ip,
                    issuing_user_agent=session.issuing_user_agent,
                    is_valid=1,
                    created_at=to_iso(session.created_at) if session.created_at else now,
                )
            )
        return evicted

    def invalidate(self, session_ids: list[str], conn: Connection | None = None) -> int:
        """Mark the given sessions invalid. Returns how many were valid before the call."""
        if not session_ids:
            return 0
        with transaction(self.engine, conn) as c:
            result = c.execute(
                sessions.update()
                .where(sessions.c.id.in_(session_ids) & (sessions.c.is_valid == 1))
                .values(is_valid=0, invalidated_at=to_iso(self._clock()))
            )
        return result.rowcount

    def invalidate_all(self, user_id: int, conn: Connection | None = None) -> int:
        """Mark every valid session of user_id invalid. Returns the number invalidated."""
        with transaction(self.engine, conn) as c:
            result = c.execute(
                sessions.update()
                .where((sessions.c.user_id == user_id) & (sessions.c.is_valid == 1))
                .values(is_valid=0, invalidated_at=to_iso(self._clock()))
            )
        return result.rowcount

    def touch(self, session_id: str, conn: Connection | None = None) -> bool:
        """Set last_activity_at to now. Returns False if session_id does not exist."""
        with transaction(self.engine, conn) as c:
            result = c.execute(
                sessions.update().where(sessions.c.id == session_id).values(last_activity_at=to_iso(self._clock()))
            )
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, session_id: str, conn: Connection | None = None) -> Session | None:
        with transaction(self.engine, conn) as c:
            row = c.execute(sessions.select().where(sessions.c.id == session_id)).fetchone()
        return _row_to_session(row) if row is not None else None

    def list_valid(self, user_id: int, conn: Connection | None = None) -> list[Session]:
        """Return the user's valid sessions, least recently active first."""
        with transaction(self.engine, conn) as c:
            rows = c.execute(
                sessions.select()
                .where((sessions.c.user_id == user_id) & (sessions.c.is_valid == 1))
                .order_by(sessions.c.last_activity_at, sessions.c.created_at, sessions.c.id)
            ).fetchall()
        return [_row_to_session(r) for r in rows]

    def list_for_user(self, user_id: int) -> list[Session]:
        """Return every session ever issued to the user, oldest first (audit view)."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                sessions.select().where(sessions.c.user_id == user_id).order_by(sessions.c.created_at, sessions.c.id)
            ).fetchall()
        return [_row_to_session(r) for r in rows]

    def count_valid(self, user_id: int) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count())
                .select_from(sessions)
                .where((sessions.c.user_id == user_id) & (sessions.c.is_valid == 1))
            ).scalar()
        return result or 0


# ---------------------------------------------------------------------------
# Row mapper
# ---------------------------------------------------------------------------


def _row_to_session(row) -> Session:
    return Session(
        id=row.id,
        user_id=row.user_id,
        access_token_hash=row.access_token_hash,
        refresh_token_hash=row.refresh_token_hash,
        expires_at=from_iso(row.expires_at),
        last_activity_at=from_iso(row.last_activity_at),
        issuing_ip=row.issuing_ip,
        issuing_user_agent=row.issuing_user_agent,
        is_valid=bool(row.is_valid),
        created_at=from_iso(row.created_at),
        invalidated_at=from_iso(row.invalidated_at),
    )
