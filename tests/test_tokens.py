"""
tests/test_tokens.py -- Unit tests for auth.tokens (durations and TokenCodec).

Coverage:
  - parse_duration accepts ^\\d+[smhd]$ and rejects everything else
  - sign/verify round trip carries subject, purpose, jti and sid
  - purpose isolation: a refresh token never verifies as an access token
  - expiry boundary: one second before exp passes, one second after fails
  - tampered, foreign-secret and malformed tokens are TokenInvalid
"""

from __future__ import annotations

from datetime import timedelta

import pytest
from jose import jwt

from auth.config import AuthConfig
from auth.errors import InvalidDuration, TokenExpired, TokenInvalid
from auth.models import Purpose
from auth.tokens import TokenCodec, parse_duration
from conftest import ACCESS_SECRET, FakeClock


class TestParseDuration:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("30s", timedelta(seconds=30)),
            ("15m", timedelta(minutes=15)),
            ("24h", timedelta(hours=24)),
            ("7d", timedelta(days=7)),
            ("0s", timedelta(0)),
        ],
    )
    def test_valid(self, raw: str, expected: timedelta) -> None:
        assert parse_duration(raw) == expected

    def test_timedelta_passes_through(self) -> None:
        assert parse_duration(timedelta(minutes=3)) == timedelta(minutes=3)

    @pytest.mark.parametrize("raw", ["", "15", "m", "1.5h", "-1h", "10w", "15 m", " 15m", "15M"])
    def test_invalid(self, raw: str) -> None:
        with pytest.raises(InvalidDuration):
            parse_duration(raw)

    def test_invalid_duration_is_a_value_error(self) -> None:
        with pytest.raises(ValueError):
            parse_duration("soon")


@pytest.fixture
def codec(config: AuthConfig, clock: FakeClock) -> TokenCodec:
    return TokenCodec(config, clock=clock)


class TestSignVerify:
    def test_round_trip(self, codec: TokenCodec, clock: FakeClock) -> None:
        token = codec.sign(42, Purpose.ACCESS, "15m", session_id="a" * 32)
        claim = codec.verify(token, Purpose.ACCESS)
        assert claim.subject_id == 42
        assert claim.purpose is Purpose.ACCESS
        assert claim.session_id == "a" * 32
        assert claim.issued_at == clock.now
        assert claim.expires_at == clock.now + timedelta(minutes=15)

    def test_unique_id_differs_per_token(self, codec: TokenCodec) -> None:
        first = codec.verify(codec.sign(1, Purpose.ACCESS, "15m"), Purpose.ACCESS)
        second = codec.verify(codec.sign(1, Purpose.ACCESS, "15m"), Purpose.ACCESS)
        assert first.unique_id != second.unique_id

    def test_session_id_optional(self, codec: TokenCodec) -> None:
        claim = codec.verify(codec.sign(1, Purpose.REFRESH, "7d"), Purpose.REFRESH)
        assert claim.session_id is None

    def test_recovery_purposes_cannot_be_signed(self, codec: TokenCodec) -> None:
        with pytest.raises(ValueError):
            codec.sign(1, Purpose.PASSWORD_RESET, "1h")


class TestPurposeIsolation:
    def test_refresh_token_rejected_as_access(self, codec: TokenCodec) -> None:
        token = codec.sign(7, Purpose.REFRESH, "7d")
        with pytest.raises(TokenInvalid):
            codec.verify(token, Purpose.ACCESS)

    def test_access_token_rejected_as_refresh(self, codec: TokenCodec) -> None:
        token = codec.sign(7, Purpose.ACCESS, "15m")
        with pytest.raises(TokenInvalid):
            codec.verify(token, Purpose.REFRESH)

    def test_typ_claim_checked_even_with_right_secret(self, codec: TokenCodec, clock: FakeClock) -> None:
        """A token signed with the access secret but labelled refresh is still not an access token."""
        exp = int((clock.now + timedelta(minutes=5)).timestamp())
        forged = jwt.encode({"sub": "7", "typ": "refresh", "jti": "x", "exp": exp}, ACCESS_SECRET, algorithm="HS256")
        with pytest.raises(TokenInvalid):
            codec.verify(forged, Purpose.ACCESS)


class TestExpiryBoundary:
    def test_one_second_before_expiry_succeeds(self, codec: TokenCodec, clock: FakeClock) -> None:
        token = codec.sign(1, Purpose.ACCESS, "15m")
        clock.advance(minutes=15, seconds=-1)
        assert codec.verify(token, Purpose.ACCESS).subject_id == 1

    def test_exactly_at_expiry_succeeds(self, codec: TokenCodec, clock: FakeClock) -> None:
        token = codec.sign(1, Purpose.ACCESS, "15m")
        clock.advance(minutes=15)
        assert codec.verify(token, Purpose.ACCESS).subject_id == 1

    def test_one_second_after_expiry_fails(self, codec: TokenCodec, clock: FakeClock) -> None:
        token = codec.sign(1, Purpose.ACCESS, "15m")
        clock.advance(minutes=15, seconds=1)
        with pytest.raises(TokenExpired):
            codec.verify(token, Purpose.ACCESS)


class TestRejectedTokens:
    def test_swapped_payload(self, codec: TokenCodec) -> None:
        """Another subject's payload under this token's signature must not verify."""
        head, _body, sig = codec.sign(1, Purpose.ACCESS, "15m").split(".")
        other_body = codec.sign(2, Purpose.ACCESS, "15m").split(".")[1]
        tampered = f"{head}.{other_body}.{sig}"
        with pytest.raises(TokenInvalid):
            codec.verify(tampered, Purpose.ACCESS)

    def test_foreign_secret(self, codec: TokenCodec, clock: FakeClock) -> None:
        exp = int((clock.now + timedelta(minutes=5)).timestamp())
        foreign = jwt.encode({"sub": "1", "typ": "access", "jti": "x", "exp": exp}, "x" * 40, algorithm="HS256")
        with pytest.raises(TokenInvalid):
            codec.verify(foreign, Purpose.ACCESS)

    @pytest.mark.parametrize("token", ["", "garbage", "a.b.c"])
    def test_malformed(self, codec: TokenCodec, token: str) -> None:
        with pytest.raises(TokenInvalid):
            codec.verify(token, Purpose.ACCESS)

    def test_non_numeric_subject(self, codec: TokenCodec, clock: FakeClock) -> None:
        exp = int((clock.now + timedelta(minutes=5)).timestamp())
        token = jwt.encode({"sub": "alice", "typ": "access", "jti": "x", "exp": exp}, ACCESS_SECRET, algorithm="HS256")
        with pytest.raises(TokenInvalid):
            codec.verify(token, Purpose.ACCESS)

    def test_missing_exp(self, codec: TokenCodec) -> None:
        token = jwt.encode({"sub": "1", "typ": "access", "jti": "x"}, ACCESS_SECRET, algorithm="HS256")
        with pytest.raises(TokenInvalid):
            codec.verify(token, Purpose.ACCESS)
