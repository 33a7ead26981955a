"""
auth/recovery.py -- Recovery flows: password reset and email verification.

Both flows have the same two steps and differ only in purpose, lifetime and
what a successful consumption changes:

  initiate(user_id, email, ip)
      Generate a 256-bit secret (secrets.token_hex(32)), store its bcrypt
      hash with an absolute expiry (superseding earlier unused tokens of the
      same purpose, under the per-user lock), commit, then hand the plaintext to the notifier. A
      notifier failure is logged and swallowed: the stored token stays valid.

  consume(secret, user_id, ...)
      Under the per-user lock and inside one transaction: scan the user's
      unused tokens of this purpose, and on an unexpired match mark it used
      and apply the flow's effect. "No match" and "match but expired" raise
      the same InvalidOrExpiredToken.

  PasswordResetFlow   -- 1h by default; sets the new credential hash and
                         invalidates every valid session of the user.
  EmailVerificationFlow -- 24h by default; sets email_verified; sessions
                         are left alone.

The plaintext secret is never persisted and never logged.
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Callable
from datetime import timedelta

from sqlalchemy.engine import Connection

from auth.clock import Clock, utcnow
from auth.config import AuthConfig
from auth.errors import InvalidOrExpiredToken
from auth.hashing import CredentialHasher
from auth.ledger import EphemeralTokenLedger
from auth.locks import KeyedLock
from auth.models import EphemeralToken, Purpose
from auth.notify import LoggingNotifier, Notifier, RecoveryPayload
from auth.schema import transaction
from auth.sessions import SessionStore
from auth.store import UserDirectory

logger = logging.getLogger("authcore.auth.recovery")


class RecoveryFlow:
    """Shared initiate/consume protocol. Subclasses set purpose and ttl."""

    purpose: Purpose

    def __init__(
        self,
        config: AuthConfig,
        ledger: EphemeralTokenLedger,
        users: UserDirectory,
        hasher: CredentialHasher,
        notifier: Notifier | None = None,
        locks: KeyedLock | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self.config = config
        self.ledger = ledger
        self.users = users
        self.hasher = hasher
        self.notifier = notifier or LoggingNotifier()
        self.locks = locks or KeyedLock()
        self._clock = clock

    @property
    def ttl(self) -> timedelta:
        raise NotImplementedError

    def initiate(self, user_id: int, email: str, ip: str) -> EphemeralToken:
        """Issue a new secret for user_id and dispatch it to email.

        Returns the stored (hashed) record; the plaintext only goes to the notifier.
        """
        secret = secrets.token_hex(32)
        expires_at = self._clock() + self.ttl
        token = EphemeralToken(
            user_id=user_id,
            purpose=self.purpose,
            token_hash=self.hasher.hash(secret),
            expires_at=expires_at,
            issuing_ip=ip,
        )
        with self.locks.hold(user_id):
            stored = self.ledger.issue(token)
        logger.info("Issued %s token id=%s for user_id=%s", self.purpose.value, stored.id, user_id)
        try:
            self.notifier.send(self.purpose, email, RecoveryPayload(user_id=user_id, secret=secret, expires_at=expires_at))
        except Exception:
            logger.exception("Notifier failed for %s token id=%s; token kept", self.purpose.value, stored.id)
        return stored

    def _consume(self, secret: str, user_id: int, apply: Callable[[Connection], None]) -> EphemeralToken:
        with self.locks.hold(user_id), transaction(self.ledger.engine) as conn:
            match = None
            for candidate in self.ledger.unused_for(user_id, self.purpose, conn=conn):
                if self.hasher.verify(secret, candidate.token_hash):
                    match = candidate
                    break
            if match is None or self._clock() > match.expires_at:
                logger.info("Rejected %s secret for user_id=%s", self.purpose.value, user_id)
                raise InvalidOrExpiredToken()
            if not self.ledger.mark_used(match.id, conn=conn):
                raise InvalidOrExpiredToken()
            apply(conn)
        logger.info("Consumed %s token id=%s for user_id=%s", self.purpose.value, match.id, user_id)
        return match


class PasswordResetFlow(RecoveryFlow):
    purpose = Purpose.PASSWORD_RESET

    def __init__(
        self,
        config: AuthConfig,
        ledger: EphemeralTokenLedger,
        users: UserDirectory,
        hasher: CredentialHasher,
        sessions: SessionStore,
        **kwargs,
    ) -> None:
        super().__init__(config, ledger, users, hasher, **kwargs)
        self.sessions = sessions

    @property
    def ttl(self) -> timedelta:
        return self.config.password_reset_ttl

    def consume(self, secret: str, user_id: int, new_password: str) -> None:
        """Set a new password and force re-authentication everywhere.

        The new password is hashed only once the secret has matched, so a
        wrong secret costs one verify per stored token and nothing more. A
        hashing failure rolls the consumption back.
        """

        def apply(conn: Connection) -> None:
            new_hash = self.hasher.hash(new_password)
            if not self.users.set_credential_hash(user_id, new_hash, conn=conn):
                raise InvalidOrExpiredToken()
            revoked = self.sessions.invalidate_all(user_id, conn=conn)
            logger.info("Password reset for user_id=%s; invalidated %d session(s)", user_id, revoked)

        self._consume(secret, user_id, apply)


class EmailVerificationFlow(RecoveryFlow):
    purpose = Purpose.EMAIL_VERIFICATION

    @property
    def ttl(self) -> timedelta:
        return self.config.email_verification_ttl

    def consume(self, secret: str, user_id: int) -> None:
        def apply(conn: Connection) -> None:
            if not self.users.set_email_verified(user_id, conn=conn):
                raise InvalidOrExpiredToken()

        self._consume(secret, user_id, apply)
