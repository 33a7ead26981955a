"""
auth/tokens.py -- Signed bearer tokens (JWT via python-jose, HS256).

Security design decisions:
  Per-purpose secrets. Access and refresh tokens are signed with different
  keys, and the "typ" claim must also equal the purpose being verified. A
  refresh token presented where an access token is expected fails signature
  verification before its claims are even read, and vice versa.

  Every token carries a fresh jti (uuid4 hex), so two tokens minted in the
  same second for the same subject are still distinct strings -- and
  therefore distinct stored hashes.

  Expiry is checked here, against the injected clock, rather than by jose
  (options verify_exp=False). Tests can then pin "now" to either side of the
  boundary. A token is expired once now > exp.

  Error mapping: TokenExpired only when the signature is good and the clock
  has passed exp; everything else -- bad signature, wrong secret, malformed
  segments, missing or ill-typed claims -- is TokenInvalid.

Duration strings: "30s", "15m", "24h", "7d". Anything else raises
InvalidDuration while configuration is being built, so a typo stops startup
instead of surfacing on the first login.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
import re
import uuid
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from jose import JWTError, jwt

from auth.clock import Clock, utcnow
from auth.errors import InvalidDuration, TokenExpired, TokenInvalid
from auth.models import Purpose, SignedClaim

if TYPE_CHECKING:
    from auth.config import AuthConfig

logger = logging.getLogger("authcore.auth.tokens")

_ALGORITHM = "HS256"

_DURATION_RE = re.compile(r"^(\d+)([smhd])$")
_UNIT_SECONDS = {"s": 1, "m": 60, "h": 60 * 60, "d": 24 * 60 * 60}


# ---------------------------------------------------------------------------
# Durations
# ---------------------------------------------------------------------------


def parse_duration(value: str | timedelta) -> timedelta:
    """Return value as a timedelta. Strings must match ^\\d+[smhd]$."""
    if isinstance(value, timedelta):
        return value
    match = _DURATION_RE.match(value) if isinstance(value, str) else None
    if match is None:
        raise InvalidDuration(f"Invalid duration {value!r}. Expected format: 30s, 15m, 24h, 7d")
    amount, unit = match.groups()
    return timedelta(seconds=int(amount) * _UNIT_SECONDS[unit])


# ---------------------------------------------------------------------------
# Codec
# ---------------------------------------------------------------------------


class TokenCodec:
    """Signs and verifies claims for the access and refresh purposes.

    Usage:
        codec = TokenCodec(config)
        token = codec.sign(user_id, Purpose.ACCESS, config.access_ttl, session_id=sid)
        claim = codec.verify(token, Purpose.ACCESS)
    """

    def __init__(self, config: AuthConfig, clock: Clock = utcnow) -> None:
        self._secrets = {
            Purpose.ACCESS: config.access_secret,
            Purpose.REFRESH: config.refresh_secret,
        }
        self._clock = clock

    def sign(
        self,
        subject_id: int,
        purpose: Purpose,
        ttl: str | timedelta,
        session_id: str | None = None,
    ) -> str:
        """Encode a signed token for subject_id that expires at now + ttl."""
        secret = self._secrets.get(purpose)
        if secret is None:
            raise ValueError(f"No signing secret for purpose {purpose!r}")
        now = self._clock()
        expires_at = now + parse_duration(ttl)
        payload = {
            "sub": str(subject_id),
            "typ": purpose.value,
            "jti": uuid.uuid4().hex,
            "iat": int(now.timestamp()),
            "exp": int(expires_at.timestamp()),
        }
        if session_id is not None:
            payload["sid"] = session_id
        return jwt.encode(payload, secret, algorithm=_ALGORITHM)

    def verify(self, token: str, purpose: Purpose) -> SignedClaim:
        """Verify signature, purpose and expiry; return the decoded claim."""
        secret = self._secrets.get(purpose)
        if secret is None or not token:
            raise TokenInvalid()
        try:
            payload = jwt.decode(
                token,
                secret,
                algorithms=[_ALGORITHM],
                options={"verify_exp": False},
            )
        except JWTError as exc:
            logger.debug("Token rejected for purpose=%s: %s", purpose.value, exc)
            raise TokenInvalid() from exc

        if payload.get("typ") != purpose.value:
            raise TokenInvalid()
        exp = payload.get("exp")
        jti = payload.get("jti")
        sid = payload.get("sid")
        if not isinstance(exp, int) or not isinstance(jti, str) or (sid is not None and not isinstance(sid, str)):
            raise TokenInvalid()
        try:
            subject_id = int(payload["sub"])
        except (KeyError, TypeError, ValueError) as exc:
            raise TokenInvalid() from exc

        expires_at = datetime.fromtimestamp(exp, tz=timezone.utc)
        if self._clock() > expires_at:
            raise TokenExpired()

        iat = payload.get("iat")
        return SignedClaim(
            subject_id=subject_id,
            purpose=purpose,
            unique_id=jti,
            expires_at=expires_at,
            issued_at=datetime.fromtimestamp(iat, tz=timezone.utc) if isinstance(iat, int) else None,
            session_id=sid,
        )
