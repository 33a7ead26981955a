"""
auth/config.py -- Immutable configuration struct for the auth core.

AuthConfig is built once at startup (from core.config.Settings in production,
directly in tests) and passed to every constructor. Nothing in auth/ reads
module-level configuration, so tests can run side by side with different
secrets, lifetimes and capacities.

Durations are parsed here: a malformed lifetime string raises InvalidDuration
while the process is starting, not on the first request.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING

from auth.tokens import parse_duration

if TYPE_CHECKING:
    from core.config import Settings


@dataclass(frozen=True)
class AuthConfig:
    access_secret: str
    refresh_secret: str
    access_ttl: timedelta = timedelta(minutes=15)
    refresh_ttl: timedelta = timedelta(days=7)
    password_reset_ttl: timedelta = timedelta(hours=1)
    email_verification_ttl: timedelta = timedelta(hours=24)
    max_sessions: int = 5
    bcrypt_rounds: int = 12
    logout_fallback_invalidate_all: bool = True

    def __post_init__(self) -> None:
        if self.access_secret == self.refresh_secret:
            raise ValueError("access and refresh secrets must differ")
        if self.max_sessions < 1:
            raise ValueError("max_sessions must be at least 1")

    @classmethod
    def from_settings(cls, settings: Settings) -> AuthConfig:
        return cls(
            access_secret=settings.jwt_secret,
            refresh_secret=settings.jwt_refresh_secret,
            access_ttl=parse_duration(settings.access_token_expiry),
            refresh_ttl=parse_duration(settings.refresh_token_expiry),
            password_reset_ttl=parse_duration(settings.password_reset_expiry),
            email_verification_ttl=parse_duration(settings.email_verification_expiry),
            max_sessions=settings.max_sessions,
            bcrypt_rounds=settings.bcrypt_rounds,
            logout_fallback_invalidate_all=settings.logout_fallback_invalidate_all,
        )
