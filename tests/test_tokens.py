"""Unit tests for auth/tokens.py and the duration parser in core/config.py.

Covers:
- PasswordHasher hash/verify, malformed stored hashes
- TokenCodec sign/verify: round trip claims, wrong secret, expiry, jti uniqueness,
  returned expiry equals the exp claim
- parse_duration grammar and the seven-day fallback
"""

from datetime import timedelta

import pytest
from jose import jwt

from auth.tokens import PasswordHasher, TokenCodec, generate_token_value
from core.config import DEFAULT_DURATION, parse_duration

_SECRET = "s" * 40
_OTHER = "o" * 40
_PAYLOAD = {"sub": "acct-1", "email": "a@x.com", "role": "CUSTOMER"}


class TestPasswordHasher:
    def test_hash_and_verify(self) -> None:
        hasher = PasswordHasher(rounds=4)
        digest = hasher.hash("pw1")
        assert digest != "pw1"
        assert digest.startswith("$2")
        assert hasher.verify("pw1", digest)
        assert not hasher.verify("pw2", digest)

    def test_malformed_hash_is_a_mismatch(self) -> None:
        hasher = PasswordHasher(rounds=4)
        assert hasher.verify("pw1", "not-a-bcrypt-hash") is False

    def test_burn_never_raises(self) -> None:
        PasswordHasher(rounds=4).burn("anything")

    def test_multibyte_password_beyond_72_bytes(self) -> None:
        hasher = PasswordHasher(rounds=4)
        password = "\u00e9" * 72
        digest = hasher.hash(password)
        assert hasher.verify(password, digest)
        # Only the first 72 bytes count
        assert hasher.verify("\u00e9" * 36, digest)
        assert not hasher.verify("\u00e9" * 35, digest)


class TestTokenCodec:
    def test_round_trip(self) -> None:
        codec = TokenCodec()
        token, expires_at = codec.sign(_PAYLOAD, _SECRET, timedelta(minutes=15))
        claims = codec.verify(token, _SECRET)
        assert claims["sub"] == "acct-1"
        assert claims["email"] == "a@x.com"
        assert claims["role"] == "CUSTOMER"
        assert claims["exp"] == int(expires_at.timestamp())

    def test_wrong_secret_rejected(self) -> None:
        codec = TokenCodec()
        token, _ = codec.sign(_PAYLOAD, _SECRET, timedelta(minutes=15))
        assert codec.verify(token, _OTHER) is None

    def test_expired_token_rejected(self) -> None:
        codec = TokenCodec()
        token, _ = codec.sign(_PAYLOAD, _SECRET, timedelta(seconds=-30))
        assert codec.verify(token, _SECRET) is None

    def test_garbage_rejected(self) -> None:
        assert TokenCodec().verify("a.b.c", _SECRET) is None

    def test_missing_claims_rejected(self) -> None:
        token = jwt.encode({"sub": "acct-1"}, _SECRET, algorithm="HS256")
        assert TokenCodec().verify(token, _SECRET) is None

    def test_tokens_are_unique_within_a_second(self) -> None:
        codec = TokenCodec()
        first, _ = codec.sign(_PAYLOAD, _SECRET, timedelta(days=7))
        second, _ = codec.sign(_PAYLOAD, _SECRET, timedelta(days=7))
        assert first != second

    def test_expiry_is_whole_seconds(self) -> None:
        _, expires_at = TokenCodec().sign(_PAYLOAD, _SECRET, timedelta(days=7))
        assert expires_at.microsecond == 0
        assert expires_at.tzinfo is not None


def test_generate_token_value() -> None:
    first, second = generate_token_value(), generate_token_value()
    assert len(first) == 64
    assert first != second
    int(first, 16)


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("30s", timedelta(seconds=30)),
        ("15m", timedelta(minutes=15)),
        ("12h", timedelta(hours=12)),
        ("7d", timedelta(days=7)),
        ("0s", timedelta(0)),
    ],
)
def test_parse_duration(value: str, expected: timedelta) -> None:
    assert parse_duration(value) == expected


@pytest.mark.parametrize("value", ["", "7", "d7", "7w", "1.5h", "-1d", "7 days"])
def test_parse_duration_falls_back_to_seven_days(value: str) -> None:
    assert parse_duration(value) == DEFAULT_DURATION == timedelta(days=7)


def test_parse_duration_custom_default() -> None:
    assert parse_duration("bogus", default=timedelta(hours=1)) == timedelta(hours=1)
