"""
auth/service.py -- AuthService: the caller-facing contract of the auth core.

Every outer layer (the reference HTTP binding in api/, CLIs, other services)
goes through this facade. It wires the components together once, sharing a
single engine, hasher, codec and per-user lock registry:

  login                      -> SessionManager.create_session
  refresh                    -> SessionManager.rotate
  logout                     -> SessionManager.invalidate_session
  forgot_password            -> PasswordResetFlow.initiate
  reset_password             -> PasswordResetFlow.consume
  request_email_verification -> EmailVerificationFlow.initiate
  verify_email               -> EmailVerificationFlow.consume
  authenticate               -> SessionManager.authenticate

Each method returns a success payload or raises one of the AuthError kinds
in auth/errors.py.

Account enumeration:
  login() runs a full bcrypt check even when the email is unknown and raises
  the same InvalidCredentials for "no such account" and "wrong password".
  forgot_password() returns None whether or not the email is known or active.
"""

from __future__ import annotations

import logging

from sqlalchemy.engine import Engine

from auth.clock import Clock, utcnow
from auth.config import AuthConfig
from auth.errors import AccountInactive, InvalidCredentials, NotFound, TokenInvalid
from auth.hashing import CredentialHasher
from auth.ledger import EphemeralTokenLedger
from auth.locks import KeyedLock
from auth.manager import SessionManager
from auth.models import AuthContext, Purpose, SessionTokens
from auth.notify import Notifier
from auth.recovery import EmailVerificationFlow, PasswordResetFlow
from auth.schema import create_db_engine
from auth.sessions import SessionStore
from auth.store import UserDirectory, UserStore
from auth.tokens import TokenCodec

logger = logging.getLogger("authcore.auth.service")


class AuthService:
    """Usage:
    service = AuthService.from_settings(get_settings())
    tokens = service.login("a@example.com", "secret", ip="203.0.113.7", user_agent="curl/8")
    ctx = service.authenticate(tokens.access_token)
    service.logout(tokens.access_token)
    service.close()
    """

    def __init__(
        self,
        config: AuthConfig,
        engine: Engine,
        users: UserDirectory | None = None,
        notifier: Notifier | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self.config = config
        self.engine = engine
        self.users = users if users is not None else UserStore(engine, clock=clock)
        self.hasher = CredentialHasher(rounds=config.bcrypt_rounds)
        self.codec = TokenCodec(config, clock=clock)
        self.session_store = SessionStore(engine, clock=clock)
        self.ledger = EphemeralTokenLedger(engine, clock=clock)
        locks = KeyedLock()
        self.session_manager = SessionManager(
            config, self.session_store, self.codec, self.hasher, locks=locks, clock=clock
        )
        self.password_reset = PasswordResetFlow(
            config,
            self.ledger,
            self.users,
            self.hasher,
            self.session_store,
            notifier=notifier,
            locks=locks,
            clock=clock,
        )
        self.email_verification = EmailVerificationFlow(
            config, self.ledger, self.users, self.hasher, notifier=notifier, locks=locks, clock=clock
        )

    @classmethod
    def from_settings(cls, settings, notifier: Notifier | None = None) -> AuthService:
        """Build the service from core.config.Settings (engine, tables and config included)."""
        return cls(AuthConfig.from_settings(settings), create_db_engine(settings.database_url), notifier=notifier)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def login(self, email: str, password: str, ip: str, user_agent: str) -> SessionTokens:
        user = self.users.get_user_by_email(email)
        if user is None or not user.hashed_password:
            # Same bcrypt cost as a real check so timing does not reveal the account exists.
            self.hasher.verify_dummy(password)
            raise InvalidCredentials()
        if not self.hasher.verify(password, user.hashed_password):
            raise InvalidCredentials()
        if not user.is_active:
            raise AccountInactive()
        return self.session_manager.create_session(user.id, ip, user_agent)

    def refresh(self, refresh_token: str, ip: str, user_agent: str) -> SessionTokens:
        claim = self.codec.verify(refresh_token, Purpose.REFRESH)
        user = self.users.get_user_by_id(claim.subject_id)
        if user is None:
            raise TokenInvalid()
        if not user.is_active:
            raise AccountInactive()
        return self.session_manager.rotate(refresh_token, ip, user_agent)

    def logout(self, access_token: str) -> bool:
        return self.session_manager.invalidate_session(access_token)

    def authenticate(self, access_token: str) -> AuthContext:
        ctx = self.session_manager.authenticate(access_token)
        user = self.users.get_user_by_id(ctx.user_id)
        if user is None:
            raise TokenInvalid()
        if not user.is_active:
            raise AccountInactive()
        return ctx

    # ------------------------------------------------------------------
    # Recovery
    # ------------------------------------------------------------------

    def forgot_password(self, email: str, ip: str) -> None:
        user = self.users.get_user_by_email(email)
        if user is None or not user.is_active:
            logger.info("Password reset requested for unknown or inactive account; ignoring")
            return
        self.password_reset.initiate(user.id, user.email, ip)

    def reset_password(self, user_id: int, secret: str, new_password: str) -> None:
        self.password_reset.consume(secret, user_id, new_password)

    def request_email_verification(self, user_id: int, ip: str) -> None:
        user = self.users.get_user_by_id(user_id)
        if user is None:
            raise NotFound("User not found.")
        if user.email_verified:
            return
        self.email_verification.initiate(user.id, user.email, ip)

    def verify_email(self, user_id: int, secret: str) -> None:
        self.email_verification.consume(secret, user_id)

    def close(self) -> None:
        self.engine.dispose()
