"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Only one credential is accepted on protected routes: an access token in the
Authorization: Bearer header. Access tokens are verified with JWT_SECRET, so
a refresh token (signed with JWT_REFRESH_SECRET) presented here fails
signature verification and is treated as unauthenticated.

try_get_current_account() is the soft variant (returns None on failure).
get_current_account() wraps it and raises HTTP 401 if unauthenticated.

Layer rule: auth/dependencies.py may import from fastapi (for
HTTPException/Request) because this module is part of the FastAPI dependency
injection system. It does not import from api/.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.models import Account
from auth.service import AuthService


def get_auth_service(request: Request) -> AuthService:
    """Return the AuthService wired into app.state by the lifespan."""
    return request.app.state.auth_service


def try_get_current_account(request: Request) -> Account | None:
    """Authenticate the request via its Bearer access token.

    Returns the active Account on success, None on any failure. Never raises.
    """
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return None
    token = auth_header[7:].strip()
    if not token:
        return None

    service = get_auth_service(request)
    claims = service.codec.verify(token, service.settings.jwt_secret)
    if claims is None:
        return None
    account = service.store.find_account_by_id(claims["sub"])
    if account is None or not account.is_active:
        return None
    return account


def get_current_account(request: Request) -> Account:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(account: Account = Depends(get_current_account)): ...
    """
    account = try_get_current_account(request)
    if account is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
            headers={"WWW-Authenticate": "Bearer"},
        )
    return account
