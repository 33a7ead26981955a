"""
auth/hashing.py -- One-way credential hashing (bcrypt).

Security design decisions:
  bcrypt directly, no passlib wrapper. passlib's wrap-bug detection feeds
  bcrypt a >72-byte input, which bcrypt 4.x+ rejects outright.

  Inputs are reduced to base64(SHA-256(input)) before bcrypt (the
  "bcrypt-sha256" scheme). bcrypt only looks at the first 72 bytes, and two
  JWTs for the same user share a much longer prefix than that -- without the
  reduction any of a user's tokens would verify against any other's hash.
  The reduced form is 44 ASCII bytes and never contains NUL.

  verify() fails closed: malformed hashes and library errors return False.
  hash() raises HashingFailure, the only infrastructure-level error kind.

  verify_dummy() runs a full bcrypt check against a hash computed once at
  construction, so a login for an unknown account costs the same as a wrong
  password and response time does not reveal which accounts exist.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import base64
import hashlib
import logging

import bcrypt

from auth.errors import HashingFailure

logger = logging.getLogger("authcore.auth.hashing")


def _reduce(plaintext: str) -> bytes:
    return base64.b64encode(hashlib.sha256(plaintext.encode("utf-8")).digest())


class CredentialHasher:
    """Salted, adaptive-cost hashing for passwords and stored token digests."""

    def __init__(self, rounds: int = 12) -> None:
        self.rounds = rounds
        self._dummy_hash = self.hash("authcore_timing_dummy")

    def hash(self, plaintext: str) -> str:
        """Return a bcrypt hash of plaintext. Raises HashingFailure on internal error."""
        try:
            return bcrypt.hashpw(_reduce(plaintext), bcrypt.gensalt(rounds=self.rounds)).decode("ascii")
        except Exception as exc:
            logger.exception("bcrypt hashing failed (rounds=%d)", self.rounds)
            raise HashingFailure() from exc

    def verify(self, plaintext: str, hashed: str | None) -> bool:
        """Return True if plaintext matches hashed. Any error counts as no match."""
        if not hashed:
            return False
        try:
            return bcrypt.checkpw(_reduce(plaintext), hashed.encode("ascii"))
        except Exception:
            return False

    def verify_dummy(self, plaintext: str) -> None:
        """Burn one verification's worth of CPU. Result is always discarded."""
        self.verify(plaintext, self._dummy_hash)
