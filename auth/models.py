"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own domain
shape; the store and the service do the work.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class Role(str, Enum):
    CUSTOMER = "CUSTOMER"
    VENDOR = "VENDOR"
    ADMIN = "ADMIN"


class TokenKind(str, Enum):
    """Which operation is allowed to consume a SecurityToken."""

    EMAIL_VERIFICATION = "EMAIL_VERIFICATION"
    PASSWORD_RESET = "PASSWORD_RESET"
    REFRESH_TOKEN = "REFRESH_TOKEN"


@dataclass
class Account:
    """A registered storefront identity.

    password_hash is internal to the auth package. Anything returned to a
    caller goes through AccountProfile, which has no hash field.

    Accounts are never hard-deleted here; deactivation flips is_active.
    """

    email: str
    password_hash: str
    first_name: str
    last_name: str
    role: Role = Role.CUSTOMER
    id: str | None = None
    phone: str | None = None
    avatar: str | None = None
    email_verified: bool = False
    is_active: bool = True
    last_login: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class AccountProfile:
    """Caller-safe projection of an Account (no password hash)."""

    id: str
    email: str
    first_name: str
    last_name: str
    role: Role
    email_verified: bool
    is_active: bool
    phone: str | None = None
    avatar: str | None = None
    last_login: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class SecurityToken:
    """A single-use, expiring token record.

    Lifecycle is one-way: created unused, flipped to used exactly once at
    consumption. Validity (not used and not expired) is derived at the point
    of use and never stored.
    """

    account_id: str
    kind: TokenKind
    value: str
    expires_at: datetime
    id: str | None = None
    used: bool = False
    created_at: datetime | None = None


@dataclass(frozen=True)
class SessionTokenPair:
    """Access + refresh token pair. Transient, never persisted as a unit.

    The refresh token is mirrored by a REFRESH_TOKEN SecurityToken whose
    expires_at equals refresh_expires_at.
    """

    access_token: str
    refresh_token: str
    access_expires_at: datetime
    refresh_expires_at: datetime


@dataclass(frozen=True)
class AuthResult:
    account: AccountProfile
    tokens: SessionTokenPair
