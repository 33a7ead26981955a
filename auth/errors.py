"""
auth/errors.py -- Error kinds raised by the authentication core.

Every kind carries a stable machine-readable code, a generic client-safe
message, and the HTTP status the reference binding maps it to. Messages never
include identifiers, hashes, or token material.

InvalidCredentials deliberately covers both "unknown account" and "wrong
password". InvalidOrExpiredToken deliberately covers both "no matching
secret" and "matching secret past its expiry".

InvalidDuration is not an AuthError: it is a ValueError raised while building
configuration and should stop the process, not produce a response.

Layer rule: stdlib only.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for every error the core surfaces to its callers."""

    code: str = "auth_error"
    message: str = "Authentication failed."
    status_code: int = 400

    def __init__(self, message: str | None = None) -> None:
        if message is not None:
            self.message = message
        super().__init__(self.message)


class InvalidCredentials(AuthError):
    code = "invalid_credentials"
    message = "Invalid email or password."
    status_code = 401


class AccountInactive(AuthError):
    code = "account_inactive"
    message = "Account is inactive."
    status_code = 403


class TokenExpired(AuthError):
    code = "token_expired"
    message = "Token has expired."
    status_code = 401


class TokenInvalid(AuthError):
    code = "token_invalid"
    message = "Invalid token."
    status_code = 401


class InvalidOrExpiredToken(AuthError):
    code = "invalid_or_expired_token"
    message = "Invalid or expired token."
    status_code = 400


class HashingFailure(AuthError):
    """Infrastructure fault in the credential hasher. Logged server-side."""

    code = "internal_error"
    message = "An unexpected error occurred."
    status_code = 500


class NotFound(AuthError):
    code = "not_found"
    message = "Resource not found."
    status_code = 404


class InvalidDuration(ValueError):
    """A lifetime string did not match the compact <int><s|m|h|d> format."""
