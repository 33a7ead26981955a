"""
auth/ledger.py -- Ephemeral Token Ledger: single-use hashed secrets.

Password-reset and email-verification secrets share one table, tagged by
purpose. Only bcrypt hashes are stored; the plaintext secret exists in memory
just long enough to be handed to the notifier.

Invariants:
  At most one unused, unexpired token per (user_id, purpose). issue() marks
  every earlier unused token of that purpose used before inserting the new
  one, in the same transaction, after row-locking the owning user so two
  issuers cannot both find nothing to supersede. Callers also hold the
  per-user KeyedLock, which covers SQLite where FOR UPDATE is dropped.

  used goes 0 -> 1 exactly once. mark_used() is a conditional update
  (WHERE used = 0), so if two consumers race on the same row only one sees
  rowcount == 1; the loser gets False and must treat the token as spent.

Rows are never deleted.
"""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.engine import Connection, Engine

from auth.clock import Clock, utcnow
from auth.models import EphemeralToken, Purpose
from auth.schema import ephemeral_tokens, from_iso, to_iso, transaction, users

logger = logging.getLogger("authcore.auth.ledger")


class EphemeralTokenLedger:
    """Repository for EphemeralToken records.

    Usage:
        ledger = EphemeralTokenLedger(engine)
        token = ledger.issue(EphemeralToken(user_id=1, purpose=Purpose.PASSWORD_RESET, ...))
        for candidate in ledger.unused_for(1, Purpose.PASSWORD_RESET): ...
        ledger.mark_used(token.id)
    """

    def __init__(self, engine: Engine, clock: Clock = utcnow) -> None:
        self.engine = engine
        self._clock = clock

    def issue(self, token: EphemeralToken, conn: Connection | None = None) -> EphemeralToken:
        """Supersede earlier unused tokens for (user_id, purpose) and insert token.

        Returns the stored record with id and created_at filled in.
        """
        now = self._clock()
        with transaction(self.engine, conn) as c:
            # Serialises concurrent issuers for the same user until commit.
            c.execute(select(users.c.id).where(users.c.id == token.user_id).with_for_update())
            superseded = c.execute(
                ephemeral_tokens.update()
                .where(
                    (ephemeral_tokens.c.user_id == token.user_id)
                    & (ephemeral_tokens.c.purpose == token.purpose.value)
                    & (ephemeral_tokens.c.used == 0)
                )
                .values(used=1, used_at=to_iso(now))
            ).rowcount
            result = c.execute(
                ephemeral_tokens.insert().values(
                    user_id=token.user_id,
                    purpose=token.purpose.value,
                    token_hash=token.token_hash,
                    expires_at=to_iso(token.expires_at),
                    used=0,
                    issuing_ip=token.issuing_ip,
                    created_at=to_iso(now),
                )
            )
            token_id = result.inserted_primary_key[0]
        if superseded:
            logger.info(
                "Superseded %d unused %s token(s) for user_id=%s",
                superseded,
                token.purpose.value,
                token.user_id,
            )
        return EphemeralToken(
            id=token_id,
            user_id=token.user_id,
            purpose=token.purpose,
            token_hash=token.token_hash,
            expires_at=token.expires_at,
            issuing_ip=token.issuing_ip,
            used=False,
            created_at=now,
        )

    def unused_for(self, user_id: int, purpose: Purpose, conn: Connection | None = None) -> list[EphemeralToken]:
        """Return unused tokens for (user_id, purpose), newest first. Expired ones are included."""
        with transaction(self.engine, conn) as c:
            rows = c.execute(
                ephemeral_tokens.select()
                .where(
                    (ephemeral_tokens.c.user_id == user_id)
                    & (ephemeral_tokens.c.purpose == purpose.value)
                    & (ephemeral_tokens.c.used == 0)
                )
                .order_by(ephemeral_tokens.c.created_at.desc(), ephemeral_tokens.c.id.desc())
            ).fetchall()
        return [_row_to_token(r) for r in rows]

    def mark_used(self, token_id: int, conn: Connection | None = None) -> bool:
        """Flip used to 1. Returns False if the token was already used (or does not exist)."""
        with transaction(self.engine, conn) as c:
            result = c.execute(
                ephemeral_tokens.update()
                .where((ephemeral_tokens.c.id == token_id) & (ephemeral_tokens.c.used == 0))
                .values(used=1, used_at=to_iso(self._clock()))
            )
        return result.rowcount == 1

    def get(self, token_id: int) -> EphemeralToken | None:
        with self.engine.connect() as conn:
            row = conn.execute(ephemeral_tokens.select().where(ephemeral_tokens.c.id == token_id)).fetchone()
        return _row_to_token(row) if row is not None else None

    def list_for_user(self, user_id: int, purpose: Purpose) -> list[EphemeralToken]:
        """Return every token of purpose ever issued to the user, oldest first (audit view)."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                ephemeral_tokens.select()
                .where((ephemeral_tokens.c.user_id == user_id) & (ephemeral_tokens.c.purpose == purpose.value))
                .order_by(ephemeral_tokens.c.created_at, ephemeral_tokens.c.id)
            ).fetchall()
        return [_row_to_token(r) for r in rows]


# ---------------------------------------------------------------------------
# Row mapper
# ---------------------------------------------------------------------------


def _row_to_token(row) -> EphemeralToken:
    return EphemeralToken(
        id=row.id,
        user_id=row.user_id,
        purpose=Purpose(row.purpose),
        token_hash=row.token_hash,
        expires_at=from_iso(row.expires_at),
        issuing_ip=row.issuing_ip,
        used=bool(row.used),
        created_at=from_iso(row.created_at),
        used_at=from_iso(row.used_at),
    )
