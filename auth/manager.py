"""
auth/manager.py -- Session Manager: login-side session lifecycle.

State machine per session: Active -> Invalidated (terminal). Expiry never
changes a row; it is judged at verification time against expires_at.

Token-to-session lookup:
  Every token carries its session id as the "sid" claim, so the owning row
  is found by primary key and the stored bcrypt hash only confirms the token
  is the one issued for that row. Tokens without a usable sid fall back to a
  linear hash scan over the subject's valid sessions.

Logout fallback:
  If a token verifies but matches no stored session, the subject's valid
  sessions are all revoked when AuthConfig.logout_fallback_invalidate_all is
  set (the default), trading precision for safety. A warning is logged
  either way.

Concurrency:
  Hashing (bcrypt, deliberately slow) happens before the per-user critical
  section. Inside it, eviction and insert share one transaction. Rotation
  revokes the old session in that same transaction.
  A token's sid claim is authoritative: if the named row does not confirm
  the hash, no scan is attempted and the token matches nothing.
"""

from __future__ import annotations

import logging

from sqlalchemy.engine import Connection

from auth.clock import Clock, utcnow
from auth.config import AuthConfig
from auth.errors import NotFound, TokenExpired, TokenInvalid
from auth.hashing import CredentialHasher
from auth.locks import KeyedLock
from auth.models import AuthContext, Purpose, Session, SessionTokens, SignedClaim
from auth.schema import transaction
from auth.sessions import SessionStore, new_session_id, normalize_session_id
from auth.tokens import TokenCodec

logger = logging.getLogger("authcore.auth.manager")


class SessionManager:
    def __init__(
        self,
        config: AuthConfig,
        store: SessionStore,
        codec: TokenCodec,
        hasher: CredentialHasher,
        locks: KeyedLock | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self.config = config
        self.store = store
        self.codec = codec
        self.hasher = hasher
        self.locks = locks or KeyedLock()
        self._clock = clock

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_session(self, user_id: int, ip: str, user_agent: str) -> SessionTokens:
        """Mint an access/refresh pair, store their hashes, and enforce capacity.

        The plaintext tokens are returned here and nowhere else.
        """
        session, tokens = self._mint(user_id, ip, user_agent)
        with self.locks.hold(user_id):
            self.store.insert_with_capacity(session, self.config.max_sessions)
        logger.info("Session created for user_id=%s session_id=%s", user_id, session.id)
        return tokens

    def _mint(self, user_id: int, ip: str, user_agent: str) -> tuple[Session, SessionTokens]:
        """Sign and hash a new token pair. Nothing is written."""
        session_id = new_session_id()
        now = self._clock()
        access_token = self.codec.sign(user_id, Purpose.ACCESS, self.config.access_ttl, session_id=session_id)
        refresh_token = self.codec.sign(user_id, Purpose.REFRESH, self.config.refresh_ttl, session_id=session_id)
        session = Session(
            id=session_id,
            user_id=user_id,
            access_token_hash=self.hasher.hash(access_token),
            refresh_token_hash=self.hasher.hash(refresh_token),
            expires_at=now + self.config.refresh_ttl,
            last_activity_at=now,
            issuing_ip=ip,
            issuing_user_agent=user_agent,
            created_at=now,
        )
        tokens = SessionTokens(
            access_token=access_token,
            refresh_token=refresh_token,
            session_id=session_id,
            user_id=user_id,
            issued_at=now,
            access_expires_at=now + self.config.access_ttl,
            refresh_expires_at=session.expires_at,
        )
        return session, tokens

    # ------------------------------------------------------------------
    # Invalidation
    # ------------------------------------------------------------------

    def invalidate_session(self, token: str, purpose: Purpose = Purpose.ACCESS) -> bool:
        """Revoke the session a token belongs to. Never raises for a bad token.

        Returns True if at least one session was invalidated.
        """
        try:
            claim = self.codec.verify(token, purpose)
        except (TokenExpired, TokenInvalid):
            logger.warning("Logout presented a token that failed verification")
            return False

        session = self._match_session(claim, token)
        if session is not None:
            if self.store.invalidate([session.id]):
                logger.info("Session invalidated: user_id=%s session_id=%s", claim.subject_id, session.id)
            return True

        remaining = self.store.list_valid(claim.subject_id)
        if not remaining:
            return False
        if not self.config.logout_fallback_invalidate_all:
            logger.warning("Logout token matched no session for user_id=%s; nothing revoked", claim.subject_id)
            return False
        count = self.store.invalidate_all(claim.subject_id)
        logger.warning(
            "Logout token matched no session for user_id=%s; invalidated all %d session(s)",
            claim.subject_id,
            count,
        )
        return count > 0

    def invalidate_session_by_id(self, session_id: str) -> None:
        """Revoke a session by primary key. Idempotent for already-invalid sessions."""
        sid = normalize_session_id(session_id)
        if sid is None or self.store.get(sid) is None:
            raise NotFound("Session not found.")
        if self.store.invalidate([sid]):
            logger.info("Session invalidated by id: session_id=%s", sid)

    def invalidate_all(self, user_id: int) -> int:
        return self.store.invalidate_all(user_id)

    # ------------------------------------------------------------------
    # Activity and verification
    # ------------------------------------------------------------------

    def touch_activity(self, session_id: str) -> None:
        sid = normalize_session_id(session_id)
        if sid is None or not self.store.touch(sid):
            raise NotFound("Session not found.")

    def authenticate(self, access_token: str) -> AuthContext:
        """Resolve an access token to the identity of a live session.

        Raises TokenExpired / TokenInvalid. Records activity on success.
        """
        claim = self.codec.verify(access_token, Purpose.ACCESS)
        session = self._live_session(claim, access_token)
        self.store.touch(session.id)
        return AuthContext(user_id=claim.subject_id, session_id=session.id)

    def rotate(self, refresh_token: str, ip: str, user_agent: str) -> SessionTokens:
        """Exchange a refresh token for a new session; the old session is revoked.

        A refresh token can therefore be redeemed once. Replays fail with
        TokenInvalid because their session is no longer valid. Revoking the
        old row and inserting the new one commit together, so a failure
        leaves the old session usable.
        """
        claim = self.codec.verify(refresh_token, Purpose.REFRESH)
        new_session, tokens = self._mint(claim.subject_id, ip, user_agent)
        with self.locks.hold(claim.subject_id), transaction(self.store.engine) as conn:
            old = self._live_session(claim, refresh_token, conn=conn)
            if not self.store.invalidate([old.id], conn=conn):
                raise TokenInvalid()
            self.store.insert_with_capacity(new_session, self.config.max_sessions, conn=conn)
        logger.info(
            "Refresh token redeemed: user_id=%s old_session_id=%s new_session_id=%s",
            claim.subject_id,
            old.id,
            new_session.id,
        )
        return tokens

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _token_matches(self, session: Session, token: str, purpose: Purpose) -> bool:
        stored = session.refresh_token_hash if purpose is Purpose.REFRESH else session.access_token_hash
        return self.hasher.verify(token, stored)

    def _match_session(self, claim: SignedClaim, token: str, conn: Connection | None = None) -> Session | None:
        """Find the session this token was issued for, valid or not, or None.

        With a sid claim only that row is considered. Without one, the
        subject's valid sessions are scanned.
        """
        if claim.session_id is not None:
            sid = normalize_session_id(claim.session_id)
            session = self.store.get(sid, conn=conn) if sid is not None else None
            if (
                session is not None
                and session.user_id == claim.subject_id
                and self._token_matches(session, token, claim.purpose)
            ):
                return session
            return None
        for session in self.store.list_valid(claim.subject_id, conn=conn):
            if self._token_matches(session, token, claim.purpose):
                return session
        return None

    def _live_session(self, claim: SignedClaim, token: str, conn: Connection | None = None) -> Session:
        session = self._match_session(claim, token, conn=conn)
        if session is None or not session.is_valid:
            raise TokenInvalid()
        if self._clock() > session.expires_at:
            raise TokenExpired()
        return session
