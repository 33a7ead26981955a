"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for authcore happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. jwt_secret -> JWT_SECRET). Type coercion and validation are built in.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved. Dev mode generates missing signing secrets with a warning,
      production mode refuses to start without them.

Settings is the raw, environment-facing layer. The auth core never reads it
directly: auth.config.AuthConfig.from_settings() turns it into a frozen
struct (durations parsed, secrets resolved) that is passed to constructors.

Security notes:
  Signing secrets shorter than 32 chars are rejected outright. The access and
  refresh secrets must differ -- sharing one would let a refresh token verify
  as an access token.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("authcore.config")


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file. The model_validator enforces
    production-safety rules at startup.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    database_url: str = "sqlite:///authcore.db"

    # ------------------------------------------------------------------
    # Signing secrets -- empty string is the "not configured" sentinel
    # ------------------------------------------------------------------

    jwt_secret: str = ""
    jwt_refresh_secret: str = ""

    # ------------------------------------------------------------------
    # Lifetimes -- compact duration strings: 30s, 15m, 24h, 7d
    # ------------------------------------------------------------------

    access_token_expiry: str = "15m"
    refresh_token_expiry: str = "7d"
    password_reset_expiry: str = "1h"
    email_verification_expiry: str = "24h"

    # ------------------------------------------------------------------
    # Session policy
    # ------------------------------------------------------------------

    max_sessions: int = Field(default=5, ge=1)
    bcrypt_rounds: int = Field(default=12, ge=4, le=31)
    # Logout with a token that matches no stored session revokes every
    # session of the subject when true.
    logout_fallback_invalidate_all: bool = True

    # ------------------------------------------------------------------
    # HTTP binding
    # ------------------------------------------------------------------

    secure_cookies: bool = False
    login_rate_limit: str = "10/minute"
    # JSON lists in the environment, e.g. ALLOWED_HOSTS='["auth.example.com"]'
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secrets(self) -> "Settings":
        """Enforce the signing-secret policy.

        Dev mode (DEBUG=true): auto-generate missing secrets with a warning.
            Sessions will not survive restart -- acceptable for local dev.

        Production mode: refuse to start if either secret is missing.

        Both modes: reject secrets shorter than 32 characters and reject an
            access secret equal to the refresh secret.
        """
        for name in ("jwt_secret", "jwt_refresh_secret"):
            if getattr(self, name):
                continue
            if not self.debug:
                raise ValueError(
                    f"{name.upper()} is required in production mode. "
                    "Set it in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
            setattr(self, name, secrets.token_hex(32))
            logger.warning("Using auto-generated %s. Sessions will not persist across restarts.", name.upper())

        if len(self.jwt_secret) < 32 or len(self.jwt_refresh_secret) < 32:
            raise ValueError("JWT_SECRET and JWT_REFRESH_SECRET must be at least 32 characters.")
        if self.jwt_secret == self.jwt_refresh_secret:
            raise ValueError("JWT_SECRET and JWT_REFRESH_SECRET must differ.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
