"""
auth/service.py -- Credential and token lifecycle engine.

AuthService orchestrates registration, login, refresh rotation, logout, email
verification and password reset on top of four injected collaborators:

  store     AuthStore        accounts + security tokens (SQLAlchemy Core)
  hasher    PasswordHasher   bcrypt
  codec     TokenCodec       signed session tokens (python-jose)
  notifier  Notifier         email; best-effort, failures logged and dropped

The service holds no mutable state between calls. Every operation either
returns its documented result or raises an auth.errors.AuthError subclass.

Token rules:
  - A SecurityToken is valid iff it is unused and unexpired. Validity is
    checked again by the conditional UPDATE that consumes it, so a token
    read as valid a moment earlier can still lose the race [CAS].
  - Refresh rotation is consume-then-reissue: the presented REFRESH_TOKEN
    record is flipped to used before a successor pair is minted. Replay of
    a used refresh token fails.
  - Email verification and password reset apply their account mutation in
    the same transaction as the token flip.
  - A password reset revokes every outstanding refresh token of the account.

Error messages for credential and token failures are generic on purpose
(see auth/errors.py).
"""

from __future__ import annotations

import functools
import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.errors import AuthError, BadRequestError, ConflictError, InternalError, NotFoundError, UnauthorizedError
from auth.models import Account, AccountProfile, AuthResult, Role, SessionTokenPair, TokenKind
from auth.notifications import Notifier, build_password_reset_email, build_verification_email, redact_email
from auth.store import AuthStore
from auth.tokens import PasswordHasher, TokenCodec, generate_token_value
from core.config import Settings

logger = logging.getLogger("storefront.auth")

EMAIL_VERIFICATION_TTL = timedelta(hours=24)
PASSWORD_RESET_TTL = timedelta(hours=1)

INVALID_CREDENTIALS = "Invalid credentials"
ACCOUNT_DEACTIVATED = "Account is deactivated"
INVALID_REFRESH_TOKEN = "Invalid refresh token"
INVALID_VERIFICATION_TOKEN = "Invalid or expired verification token"
INVALID_RESET_TOKEN = "Invalid or expired reset token"
FORGOT_PASSWORD_MESSAGE = "If the email exists, a reset link will be sent"


def _store_errors(method):
    """Translate unexpected persistence failures into InternalError.

    AuthError subclasses pass through untouched.
    """

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except AuthError:
            raise
        except SQLAlchemyError as exc:
            logger.exception("Persistence failure in %s", method.__name__)
            raise InternalError("An unexpected error occurred.") from exc

    return wrapper


def to_profile(account: Account) -> AccountProfile:
    """Project an Account to its caller-safe shape (drops password_hash)."""
    return AccountProfile(
        id=account.id,
        email=account.email,
        first_name=account.first_name,
        last_name=account.last_name,
        role=account.role,
        email_verified=account.email_verified,
        is_active=account.is_active,
        phone=account.phone,
        avatar=account.avatar,
        last_login=account.last_login,
        created_at=account.created_at,
        updated_at=account.updated_at,
    )


class AuthService:
    def __init__(
        self,
        store: AuthStore,
        hasher: PasswordHasher,
        codec: TokenCodec,
        notifier: Notifier,
        settings: Settings,
    ) -> None:
        self.store = store
        self.hasher = hasher
        self.codec = codec
        self.notifier = notifier
        self.settings = settings

    # ------------------------------------------------------------------
    # Registration and login
    # ------------------------------------------------------------------

    @_store_errors
    def register(
        self,
        email: str,
        password: str,
        first_name: str,
        last_name: str,
        phone: str | None = None,
        role: Role = Role.CUSTOMER,
    ) -> AuthResult:
        """Create an account, send the verification email, and open a session.

        Raises ConflictError if the email is already registered.
        """
        if self.store.find_account_by_email(email) is not None:
            raise ConflictError("Email already registered")

        candidate = Account(
            email=email,
            password_hash=self.hasher.hash(password),
            first_name=first_name,
            last_name=last_name,
            phone=phone,
            role=Role(role or Role.CUSTOMER),
            email_verified=False,
            is_active=True,
        )
        try:
            account = self.store.create_account(candidate)
        except IntegrityError as exc:
            # Lost a race with a concurrent registration for the same email
            raise ConflictError("Email already registered") from exc
        logger.info("Registered account %s (%s)", account.id, account.role.value)

        token = self._issue_token(account.id, TokenKind.EMAIL_VERIFICATION, EMAIL_VERIFICATION_TTL)
        subject, html = build_verification_email(self.settings.app_name, self.settings.frontend_url, token)
        self._notify(account.email, subject, html)

        return AuthResult(account=to_profile(account), tokens=self._issue_session(account))

    @_store_errors
    def login(self, email: str, password: str) -> AuthResult:
        """Verify credentials and open a session.

        Unknown email and wrong password raise the same UnauthorizedError.
        bcrypt runs in both branches so timing does not tell them apart [C1].
        """
        account = self.store.find_account_by_email(email)
        if account is None:
            self.hasher.burn(password)
            raise UnauthorizedError(INVALID_CREDENTIALS)
        if not self.hasher.verify(password, account.password_hash):
            raise UnauthorizedError(INVALID_CREDENTIALS)
        if not account.is_active:
            raise UnauthorizedError(ACCOUNT_DEACTIVATED)

        account = self.store.update_account(account.id, last_login=datetime.now(timezone.utc)) or account
        return AuthResult(account=to_profile(account), tokens=self._issue_session(account))

    # ------------------------------------------------------------------
    # Session rotation
    # ------------------------------------------------------------------

    def refresh(self, refresh_token: str) -> SessionTokenPair:
        """Rotate a refresh token: consume it and mint a successor pair.

        Every verification failure -- bad signature, expiry, unknown or used
        record, lost consumption race, missing or inactive account, or a store
        error while checking -- raises the same UnauthorizedError.
        """
        try:
            account = self._consume_refresh_token(refresh_token)
        except UnauthorizedError:
            raise
        except Exception:
            logger.exception("Refresh token verification failed unexpectedly")
            raise UnauthorizedError(INVALID_REFRESH_TOKEN) from None
        return self._issue_session_guarded(account)

    def _consume_refresh_token(self, refresh_token: str) -> Account:
        claims = self.codec.verify(refresh_token, self.settings.jwt_refresh_secret)
        if claims is None:
            raise UnauthorizedError(INVALID_REFRESH_TOKEN)

        record = self.store.find_active_token(refresh_token, TokenKind.REFRESH_TOKEN, account_id=claims["sub"])
        if record is None:
            raise UnauthorizedError(INVALID_REFRESH_TOKEN)
        if not self.store.mark_token_used(record.id):
            logger.warning("Refresh token replay rejected for account %s", record.account_id)
            raise UnauthorizedError(INVALID_REFRESH_TOKEN)

        account = self.store.find_account_by_id(record.account_id)
        if account is None or not account.is_active:
            raise UnauthorizedError(INVALID_REFRESH_TOKEN)
        return account

    @_store_errors
    def _issue_session_guarded(self, account: Account) -> SessionTokenPair:
        return self._issue_session(account)

    @_store_errors
    def logout(self, account_id: str) -> dict:
        """Revoke every outstanding refresh token of the account. Idempotent."""
        revoked = self.store.mark_all_tokens_used(account_id, TokenKind.REFRESH_TOKEN)
        logger.info("Logout for account %s revoked %d refresh token(s)", account_id, revoked)
        return {"message": "Logged out successfully"}

    # ------------------------------------------------------------------
    # Email verification and password reset
    # ------------------------------------------------------------------

    @_store_errors
    def verify_email(self, token: str) -> dict:
        record = self.store.find_active_token(token, TokenKind.EMAIL_VERIFICATION)
        if record is None:
            raise BadRequestError(INVALID_VERIFICATION_TOKEN)
        consumed = self.store.consume_token(
            record.id,
            account_id=record.account_id,
            account_fields={"email_verified": True},
        )
        if not consumed:
            raise BadRequestError(INVALID_VERIFICATION_TOKEN)
        logger.info("Email verified for account %s", record.account_id)
        return {"message": "Email verified successfully"}

    @_store_errors
    def forgot_password(self, email: str) -> dict:
        """Send a reset link if the account exists. The reply never says which."""
        account = self.store.find_account_by_email(email)
        if account is None:
            logger.info("Password reset requested for unknown email %s", redact_email(email))
            return {"message": FORGOT_PASSWORD_MESSAGE}

        token = self._issue_token(account.id, TokenKind.PASSWORD_RESET, PASSWORD_RESET_TTL)
        subject, html = build_password_reset_email(self.settings.app_name, self.settings.frontend_url, token)
        self._notify(account.email, subject, html)
        return {"message": FORGOT_PASSWORD_MESSAGE}

    @_store_errors
    def reset_password(self, token: str, new_password: str) -> dict:
        """Set a new password and terminate every existing session of the account."""
        record = self.store.find_active_token(token, TokenKind.PASSWORD_RESET)
        if record is None:
            raise BadRequestError(INVALID_RESET_TOKEN)
        consumed = self.store.consume_token(
            record.id,
            account_id=record.account_id,
            account_fields={"password_hash": self.hasher.hash(new_password)},
            revoke_kind=TokenKind.REFRESH_TOKEN,
        )
        if not consumed:
            raise BadRequestError(INVALID_RESET_TOKEN)
        logger.info("Password reset for account %s", record.account_id)
        return {"message": "Password reset successfully"}

    # ------------------------------------------------------------------
    # Profile
    # ------------------------------------------------------------------

    @_store_errors
    def get_profile(self, account_id: str) -> AccountProfile:
        account = self.store.find_account_by_id(account_id)
        if account is None:
            raise NotFoundError("User not found")
        return to_profile(account)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _issue_session(self, account: Account) -> SessionTokenPair:
        payload = {"sub": account.id, "email": account.email, "role": Role(account.role).value}
        access_token, access_expires_at = self.codec.sign(
            payload, self.settings.jwt_secret, self.settings.access_token_ttl
        )
        refresh_token, refresh_expires_at = self.codec.sign(
            payload, self.settings.jwt_refresh_secret, self.settings.refresh_token_ttl
        )
        # Stored expiry is the token's own exp claim, not a second clock read.
        self.store.create_token(account.id, TokenKind.REFRESH_TOKEN, refresh_token, refresh_expires_at)
        return SessionTokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            access_expires_at=access_expires_at,
            refresh_expires_at=refresh_expires_at,
        )

    def _issue_token(self, account_id: str, kind: TokenKind, ttl: timedelta) -> str:
        value = generate_token_value()
        self.store.create_token(account_id, kind, value, datetime.now(timezone.utc) + ttl)
        return value

    def _notify(self, to: str, subject: str, html: str) -> None:
        try:
            self.notifier.send(to, subject, html)
        except Exception:
            logger.exception("Failed to dispatch email to %s (subject=%r)", redact_email(to), subject)
