"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores own the
mapping between rows and these shapes; managers and flows do the work.

All datetimes are timezone-aware UTC instants.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class Purpose(str, Enum):
    """Scope tag for every token or secret the core hands out."""

    ACCESS = "access"
    REFRESH = "refresh"
    PASSWORD_RESET = "password_reset"
    EMAIL_VERIFICATION = "email_verification"


@dataclass
class User:
    """An account as seen by the core.

    The core never creates or deletes users. It reads them, and flips
    hashed_password / email_verified when a recovery flow succeeds.
    """

    email: str
    id: int | None = None
    hashed_password: str | None = None
    is_active: bool = True
    email_verified: bool = False
    created_at: datetime | None = None
    last_password_change: datetime | None = None


@dataclass
class Session:
    """One authenticated device or browser instance.

    Rows are never deleted. is_valid goes True -> False exactly once and
    invalidated_at records when. Expiry is judged against expires_at at
    verification time; the store never flips is_valid on its own.
    """

    id: str  # uuid4 hex, also carried in tokens as the "sid" claim
    user_id: int
    access_token_hash: str
    refresh_token_hash: str
    expires_at: datetime
    last_activity_at: datetime
    issuing_ip: str
    issuing_user_agent: str
    is_valid: bool = True
    created_at: datetime | None = None
    invalidated_at: datetime | None = None


@dataclass
class EphemeralToken:
    """A single-use hashed secret delivered out of band (password reset, email verification)."""

    user_id: int
    purpose: Purpose
    token_hash: str
    expires_at: datetime
    issuing_ip: str
    id: int | None = None
    used: bool = False
    created_at: datetime | None = None
    used_at: datetime | None = None


@dataclass(frozen=True)
class SignedClaim:
    """Decoded, verified content of a bearer token. Never persisted."""

    subject_id: int
    purpose: Purpose
    unique_id: str
    expires_at: datetime
    issued_at: datetime | None = None
    session_id: str | None = None


@dataclass(frozen=True)
class SessionTokens:
    """Plaintext credentials returned once, at session creation."""

    access_token: str
    refresh_token: str
    session_id: str
    user_id: int
    issued_at: datetime
    access_expires_at: datetime
    refresh_expires_at: datetime


@dataclass(frozen=True)
class AuthContext:
    """The identity an authenticated request resolves to."""

    user_id: int
    session_id: str
