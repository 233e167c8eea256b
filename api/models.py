"""
API request and response models for the storefront auth REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Password fields are length-bounded only. Complexity policy belongs to the
client-facing validation layer, not to this service.
"""

from datetime import datetime
from typing import Annotated, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator

from auth.models import AccountProfile, AuthResult, Role, SessionTokenPair
from auth.tokens import MAX_PASSWORD_BYTES


def _check_password_bytes(value: str) -> str:
    # bcrypt counts bytes, not characters
    if len(value.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValueError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes when UTF-8 encoded.")
    return value


_Password = Annotated[str, Field(min_length=1, max_length=MAX_PASSWORD_BYTES), AfterValidator(_check_password_bytes)]

# Roles a visitor may pick for themselves. Admins are created with `main.py create-admin`.
SELF_SERVICE_ROLES = frozenset({Role.CUSTOMER, Role.VENDOR})


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=3, max_length=255, pattern=r"^[^@\s]+@[^@\s]+$")
    password: _Password
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    phone: Optional[str] = Field(default=None, max_length=30)
    role: Role = Role.CUSTOMER

    @field_validator("role")
    @classmethod
    def role_is_self_service(cls, value: Role) -> Role:
        if value not in SELF_SERVICE_ROLES:
            raise ValueError("Role must be CUSTOMER or VENDOR.")
        return value


class LoginRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=1, max_length=255)
    password: _Password


class RefreshRequest(BaseModel):
    refresh_token: str = Field(min_length=1, max_length=4096)


class VerifyEmailRequest(BaseModel):
    token: str = Field(min_length=1, max_length=255)


class ForgotPasswordRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=1, max_length=255)


class ResetPasswordRequest(BaseModel):
    token: str = Field(min_length=1, max_length=255)
    new_password: _Password


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class AccountResponse(BaseModel):
    """Public account shape. There is no password field to leak."""

    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    first_name: str
    last_name: str
    phone: Optional[str]
    avatar: Optional[str]
    role: Role
    email_verified: bool
    is_active: bool
    last_login: Optional[datetime]
    created_at: Optional[datetime]
    updated_at: Optional[datetime]

    @classmethod
    def from_profile(cls, profile: AccountProfile) -> "AccountResponse":
        return cls(
            id=profile.id,
            email=profile.email,
            first_name=profile.first_name,
            last_name=profile.last_name,
            phone=profile.phone,
            avatar=profile.avatar,
            role=profile.role,
            email_verified=profile.email_verified,
            is_active=profile.is_active,
            last_login=profile.last_login,
            created_at=profile.created_at,
            updated_at=profile.updated_at,
        )


class TokenPairResponse(BaseModel):
    """Response for POST /api/v1/auth/refresh."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_at: datetime
    refresh_expires_at: datetime

    @classmethod
    def from_pair(cls, pair: SessionTokenPair) -> "TokenPairResponse":
        return cls(
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
            expires_at=pair.access_expires_at,
            refresh_expires_at=pair.refresh_expires_at,
        )


class AuthResponse(TokenPairResponse):
    """Response for register and login: the account plus a fresh token pair."""

    user: AccountResponse

    @classmethod
    def from_result(cls, result: AuthResult) -> "AuthResponse":
        pair = result.tokens
        return cls(
            user=AccountResponse.from_profile(result.account),
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
            expires_at=pair.access_expires_at,
            refresh_expires_at=pair.refresh_expires_at,
        )


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
