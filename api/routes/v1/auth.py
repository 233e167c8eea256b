"""
api/routes/v1/auth.py -- Authentication REST endpoints.

Routes:
  POST /api/v1/auth/register         -- create account; returns account + token pair (201)
  POST /api/v1/auth/login            -- password login; returns account + token pair
  POST /api/v1/auth/refresh          -- rotate a refresh token; returns a new pair
  POST /api/v1/auth/verify-email     -- consume an email verification token
  POST /api/v1/auth/forgot-password  -- request a reset link (same reply whether or not the email exists)
  POST /api/v1/auth/reset-password   -- consume a reset token; revokes all sessions
  POST /api/v1/auth/logout           -- revoke all refresh tokens (requires auth)
  GET  /api/v1/auth/profile          -- current account profile (requires auth)
  GET  /api/v1/auth/me               -- same as /auth/profile

Handlers are thin: they translate request models into AuthService calls and
results into response models. AuthError subclasses raised by the service are
turned into the error envelope by the handler registered in api/main.py.

Security:
  [H2] Credential and token endpoints are rate-limited per IP via slowapi.
  [M5] Cache-Control: no-store on every response that carries tokens.

The handlers are sync (def) on purpose: bcrypt and SQLite calls block, so
FastAPI runs them in its threadpool instead of on the event loop.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response

from api.limiter import limiter
from api.models import (
    AccountResponse,
    AuthResponse,
    ForgotPasswordRequest,
    LoginRequest,
    MessageResponse,
    RefreshRequest,
    RegisterRequest,
    ResetPasswordRequest,
    TokenPairResponse,
    VerifyEmailRequest,
)
from auth.dependencies import get_auth_service, get_current_account
from auth.models import Account
from auth.service import AuthService
from core.config import get_settings

_settings = get_settings()

# Auth policy:
# - register, login, refresh, verify-email, forgot-password, reset-password: public
# - logout, me: require a Bearer access token (get_current_account)
router = APIRouter()


def _no_store(response: Response) -> None:
    response.headers["Cache-Control"] = "no-store"  # [M5]


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit(_settings.auth_rate_limit)
@router.post("/auth/register", response_model=AuthResponse, status_code=201)
def register(
    request: Request,
    response: Response,
    body: RegisterRequest,
    service: AuthService = Depends(get_auth_service),
) -> AuthResponse:
    """Create an account, send the verification email, and open a session.

    A delivery failure on the verification email does not fail registration.
    """
    result = service.register(
        email=body.email,
        password=body.password,
        first_name=body.first_name,
        last_name=body.last_name,
        phone=body.phone,
        role=body.role,
    )
    _no_store(response)
    return AuthResponse.from_result(result)


@limiter.limit(_settings.login_rate_limit)  # [H2] brute-force mitigation
@router.post("/auth/login", response_model=AuthResponse)
def login(
    request: Request,
    response: Response,
    body: LoginRequest,
    service: AuthService = Depends(get_auth_service),
) -> AuthResponse:
    """Authenticate with email and password.

    Wrong password and unknown email produce the same 401 body.
    """
    result = service.login(body.email, body.password)
    _no_store(response)
    return AuthResponse.from_result(result)


@limiter.limit(_settings.auth_rate_limit)
@router.post("/auth/refresh", response_model=TokenPairResponse)
def refresh(
    request: Request,
    response: Response,
    body: RefreshRequest,
    service: AuthService = Depends(get_auth_service),
) -> TokenPairResponse:
    """Exchange a refresh token for a new pair. Each refresh token works once."""
    pair = service.refresh(body.refresh_token)
    _no_store(response)
    return TokenPairResponse.from_pair(pair)


@limiter.limit(_settings.auth_rate_limit)
@router.post("/auth/verify-email", response_model=MessageResponse)
def verify_email(
    request: Request,
    body: VerifyEmailRequest,
    service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    return MessageResponse(**service.verify_email(body.token))


@limiter.limit(_settings.auth_rate_limit)
@router.post("/auth/forgot-password", response_model=MessageResponse)
def forgot_password(
    request: Request,
    body: ForgotPasswordRequest,
    service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    """Always 200 with the same message, so the endpoint cannot confirm an email exists."""
    return MessageResponse(**service.forgot_password(body.email))


@limiter.limit(_settings.auth_rate_limit)
@router.post("/auth/reset-password", response_model=MessageResponse)
def reset_password(
    request: Request,
    body: ResetPasswordRequest,
    service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    return MessageResponse(**service.reset_password(body.token, body.new_password))


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/logout", response_model=MessageResponse)
def logout(
    current_account: Account = Depends(get_current_account),
    service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    """Revoke every refresh token of the caller. Access tokens expire on their own."""
    return MessageResponse(**service.logout(current_account.id))


@router.get("/auth/profile", response_model=AccountResponse)
@router.get("/auth/me", response_model=AccountResponse)
def me(
    current_account: Account = Depends(get_current_account),
    service: AuthService = Depends(get_auth_service),
) -> AccountResponse:
    return AccountResponse.from_profile(service.get_profile(current_account.id))
