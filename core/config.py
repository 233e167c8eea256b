"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads happen here. No module should call os.getenv()
or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file. Field names map to env var names
      (e.g. jwt_secret -> JWT_SECRET).

  @model_validator(mode="after"): Cross-field validation after all fields are
      resolved. Implements the DEBUG-conditional secret policy and the
      "access and refresh secrets must differ" rule.

Security notes:
  [M6] Signing secrets shorter than 32 chars are rejected outright.

  [M7] In production mode (DEBUG not set or false), a missing JWT_SECRET or
       JWT_REFRESH_SECRET is a hard startup failure.

  [M8] JWT_SECRET and JWT_REFRESH_SECRET must differ. A refresh token signed
       with the access secret would otherwise verify as an access token.

Token lifetimes use the duration grammar "<int><s|m|h|d>" ("15m", "7d").
parse_duration() falls back to seven days on malformed input, but Settings
rejects a malformed TTL at load time so a typo fails at startup instead of
silently changing session length.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import re
import secrets
from datetime import timedelta
from functools import lru_cache

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("storefront.config")

_DURATION_RE = re.compile(r"^(\d+)([smhd])$")
_UNIT_SECONDS = {"s": 1, "m": 60, "h": 60 * 60, "d": 24 * 60 * 60}

DEFAULT_DURATION = timedelta(days=7)


def parse_duration(value: str, default: timedelta = DEFAULT_DURATION) -> timedelta:
    """Parse a duration string such as "15m" or "7d" into a timedelta.

    Returns `default` when the string does not match "<int><s|m|h|d>".
    """
    match = _DURATION_RE.match(value.strip()) if value else None
    if match is None:
        return default
    amount, unit = match.groups()
    return timedelta(seconds=int(amount) * _UNIT_SECONDS[unit])


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings(debug=True) can be instantiated in
    test environments without a real .env file.
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
    app_name: str = "Ecommerce Platform"
    frontend_url: str = "http://localhost:3000"
    database_url: str = "sqlite:///storefront_auth.db"

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev secret or raises, so callers never see "".
    jwt_secret: str = ""
    jwt_expires_in: str = "15m"
    jwt_refresh_secret: str = ""
    jwt_refresh_expires_in: str = "7d"

    bcrypt_rounds: int = Field(default=10, ge=4, le=31)

    # Expired tokens are deleted by the purge loop every 6 hours.
    token_purge_interval_seconds: int = 6 * 60 * 60

    # ------------------------------------------------------------------
    # Email (SMTP). Empty smtp_host means dev mode: messages are logged.
    # ------------------------------------------------------------------

    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_use_tls: bool = True
    smtp_from: str = "noreply@ecommerce.com"
    smtp_timeout_seconds: float = 30.0
    email_workers: int = 2

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"
    auth_rate_limit: str = "20/minute"
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost", "testserver"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator("jwt_expires_in", "jwt_refresh_expires_in")
    @classmethod
    def validate_duration(cls, value: str) -> str:
        if not _DURATION_RE.match(value.strip()):
            raise ValueError(f"Invalid duration {value!r}: expected <int><s|m|h|d>, e.g. '15m' or '7d'.")
        return value.strip()

    @model_validator(mode="after")
    def validate_secrets(self) -> "Settings":
        """Enforce the signing secret policy [M6] [M7] [M8].

        Dev mode (DEBUG=true): auto-generate missing secrets with a warning.
            Sessions will not survive restart -- acceptable for local dev.

        Production mode: refuse to start if either secret is missing.
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

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    @property
    def access_token_ttl(self) -> timedelta:
        return parse_duration(self.jwt_expires_in)

    @property
    def refresh_token_ttl(self) -> timedelta:
        return parse_duration(self.jwt_refresh_expires_in)


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
