"""
auth/errors.py -- Error taxonomy for the auth lifecycle engine.

Every failure the engine surfaces is an AuthError subclass with a stable
machine-readable `code`, the HTTP `status_code` the API layer should use, and
a human-readable `message`. Callers branch on the class (or on `code`), never
on message text.

Messages for credential and token-validity failures are deliberately generic
so responses cannot be used as an enumeration or token-state oracle.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations


class AuthError(Exception):
    code: str = "auth_error"
    status_code: int = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ConflictError(AuthError):
    """Duplicate email on registration."""

    code = "conflict"
    status_code = 409


class UnauthorizedError(AuthError):
    """Bad credentials, inactive account, or an invalid/expired/replayed refresh token."""

    code = "unauthorized"
    status_code = 401


class BadRequestError(AuthError):
    """Invalid, expired, or already consumed verification / reset token."""

    code = "bad_request"
    status_code = 400


class NotFoundError(AuthError):
    code = "not_found"
    status_code = 404


class InternalError(AuthError):
    """A collaborator (usually persistence) failed unexpectedly."""

    code = "internal_error"
    status_code = 500
