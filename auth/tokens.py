"""
auth/tokens.py -- Password hashing, signed session tokens, and opaque token values.

Security design decisions:
  Passwords: bcrypt used directly (no passlib wrapper). The work factor comes
       from Settings.bcrypt_rounds. PasswordHasher keeps a dummy hash computed
       at construction so AuthService.login() can run a full bcrypt check even
       when the email is unknown -- response time does not reveal whether an
       account exists [C1].

  Session tokens: python-jose JWTs with HS256. TokenCodec.sign() takes the
       secret per call because access and refresh tokens are signed with
       different secrets. Every token carries a random `jti` so two tokens
       minted for the same account in the same second are still distinct
       values (the REFRESH_TOKEN record's value column is UNIQUE).
       TokenCodec.verify() returns None on any failure -- the service turns
       that into an UnauthorizedError.

  Opaque tokens: secrets.token_hex(32) for email verification and password
       reset links (256 bits of entropy).

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import secrets
from datetime import datetime, timedelta, timezone

import bcrypt
from jose import JWTError, jwt

_ALGORITHM = "HS256"

# Claims every session token must carry for the service to trust it.
_REQUIRED_CLAIMS = ("sub", "email", "role", "exp")


# ---------------------------------------------------------------------------
# Password hashing (bcrypt)
# ---------------------------------------------------------------------------

MAX_PASSWORD_BYTES = 72


def _password_bytes(plain: str) -> bytes:
    return plain.encode("utf-8")[:MAX_PASSWORD_BYTES]


class PasswordHasher:
    """One-way password hashing with constant-time verification.

    bcrypt only reads the first 72 bytes of a password and current releases
    raise on anything longer, so both hash() and verify() cut the UTF-8
    encoding at 72 bytes. The API layer rejects longer passwords up front.
    """

    def __init__(self, rounds: int = 10) -> None:
        self.rounds = rounds
        self._dummy_hash = self.hash("storefront_timing_dummy")

    def hash(self, plain: str) -> str:
        return bcrypt.hashpw(_password_bytes(plain), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, plain: str, hashed: str) -> bool:
        """Return True if the plaintext password matches the bcrypt hash."""
        try:
            return bcrypt.checkpw(_password_bytes(plain), hashed.encode("utf-8"))
        except ValueError:
            # Malformed stored hash
            return False

    def burn(self, plain: str) -> None:
        """Run one bcrypt check against the dummy hash to equalize timing [C1]."""
        self.verify(plain, self._dummy_hash)


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


class TokenCodec:
    """Signs and verifies compact expiring session tokens."""

    def __init__(self, algorithm: str = _ALGORITHM) -> None:
        self.algorithm = algorithm

    def sign(self, payload: dict, secret: str, ttl: timedelta) -> tuple[str, datetime]:
        """Encode `payload` into a signed JWT that expires after `ttl`.

        Returns (token, expires_at). expires_at is truncated to whole seconds
        because the `exp` claim is an integer timestamp; callers persisting the
        expiry alongside the token store exactly what the token itself claims.
        """
        now = datetime.now(timezone.utc).replace(microsecond=0)
        expires_at = now + ttl
        claims = {
            **payload,
            "iat": now,
            "exp": expires_at,
            "jti": secrets.token_hex(16),
        }
        return jwt.encode(claims, secret, algorithm=self.algorithm), expires_at

    def verify(self, token: str, secret: str) -> dict | None:
        """Decode and verify a JWT. Returns the claims dict or None on any failure.

        Signature mismatch, expiry, malformed input and missing claims all
        return None. Callers never learn which check failed.
        """
        try:
            claims = jwt.decode(token, secret, algorithms=[self.algorithm])
        except JWTError:
            return None
        if any(claim not in claims for claim in _REQUIRED_CLAIMS):
            return None
        return claims


# ---------------------------------------------------------------------------
# Opaque token values
# ---------------------------------------------------------------------------


def generate_token_value() -> str:
    """Return a random 64-hex-char token for verification and reset links."""
    return secrets.token_hex(32)
