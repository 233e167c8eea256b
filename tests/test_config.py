"""Unit tests for core/config.py -- Settings validation.

Covers:
- DEBUG mode auto-generates distinct signing secrets
- production mode refuses to start without secrets
- short and identical secrets are rejected
- malformed token lifetimes fail at load time
- derived TTL properties
"""

from datetime import timedelta

import pytest
from pydantic import ValidationError

from core.config import Settings

_ACCESS = "a" * 32
_REFRESH = "r" * 32


def test_debug_generates_distinct_secrets() -> None:
    s = Settings(_env_file=None, debug=True, jwt_secret="", jwt_refresh_secret="")
    assert len(s.jwt_secret) >= 32
    assert len(s.jwt_refresh_secret) >= 32
    assert s.jwt_secret != s.jwt_refresh_secret


def test_production_requires_secrets() -> None:
    with pytest.raises(ValidationError, match="JWT_SECRET is required"):
        Settings(_env_file=None, debug=False, jwt_secret="", jwt_refresh_secret=_REFRESH)
    with pytest.raises(ValidationError, match="JWT_REFRESH_SECRET is required"):
        Settings(_env_file=None, debug=False, jwt_secret=_ACCESS, jwt_refresh_secret="")


def test_short_secret_rejected() -> None:
    with pytest.raises(ValidationError, match="at least 32 characters"):
        Settings(_env_file=None, jwt_secret="short", jwt_refresh_secret=_REFRESH)


def test_identical_secrets_rejected() -> None:
    with pytest.raises(ValidationError, match="must differ"):
        Settings(_env_file=None, jwt_secret=_ACCESS, jwt_refresh_secret=_ACCESS)


@pytest.mark.parametrize("field", ["jwt_expires_in", "jwt_refresh_expires_in"])
def test_malformed_duration_fails_fast(field: str) -> None:
    with pytest.raises(ValidationError, match="Invalid duration"):
        Settings(_env_file=None, jwt_secret=_ACCESS, jwt_refresh_secret=_REFRESH, **{field: "7 days"})


def test_ttl_properties() -> None:
    s = Settings(
        _env_file=None,
        jwt_secret=_ACCESS,
        jwt_refresh_secret=_REFRESH,
        jwt_expires_in="15m",
        jwt_refresh_expires_in="30d",
    )
    assert s.access_token_ttl == timedelta(minutes=15)
    assert s.refresh_token_ttl == timedelta(days=30)


def test_bcrypt_rounds_bounded() -> None:
    with pytest.raises(ValidationError):
        Settings(_env_file=None, jwt_secret=_ACCESS, jwt_refresh_secret=_REFRESH, bcrypt_rounds=3)
