"""
auth/notifications.py -- Email delivery for verification and password reset links.

Three pieces:
  SmtpNotifier        -- sends one message over SMTP (STARTTLS or implicit TLS).
                         With no SMTP host configured it logs the message
                         instead, which is the local development mode.
  BackgroundNotifier  -- fire-and-forget wrapper. send() submits to a small
                         thread pool and returns immediately; a failed
                         delivery is logged from the future's done-callback
                         and never reaches the caller.
  build_*_email()     -- subject + HTML body for each message type.

Anything with a send(to, subject, html) method can stand in for a notifier;
tests use a recording stub.

Email addresses are redacted before they reach the logs.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
import re
import smtplib
import ssl
from concurrent.futures import Future, ThreadPoolExecutor
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Protocol

from core.config import Settings

logger = logging.getLogger("storefront.notify")

_TAG_RE = re.compile(r"<[^>]*>")


class Notifier(Protocol):
    def send(self, to: str, subject: str, html: str) -> None: ...


def redact_email(email: str) -> str:
    """Return "ab***@domain" so log lines do not carry full addresses."""
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


def html_to_text(html: str) -> str:
    """Plain-text alternative part: tags stripped, blank lines collapsed."""
    lines = (line.strip() for line in _TAG_RE.sub("", html).splitlines())
    return "\n".join(line for line in lines if line)


# ---------------------------------------------------------------------------
# SMTP
# ---------------------------------------------------------------------------


class SmtpNotifier:
    """Synchronous SMTP sender. Raises on delivery failure."""

    def __init__(
        self,
        *,
        host: str = "",
        port: int = 587,
        user: str = "",
        password: str = "",
        use_tls: bool = True,
        from_email: str = "noreply@ecommerce.com",
        from_name: str = "Ecommerce Platform",
        timeout: float = 30.0,
    ) -> None:
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.use_tls = use_tls
        self.from_email = from_email
        self.from_name = from_name
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "SmtpNotifier":
        return cls(
            host=settings.smtp_host,
            port=settings.smtp_port,
            user=settings.smtp_user,
            password=settings.smtp_password,
            use_tls=settings.smtp_use_tls,
            from_email=settings.smtp_from,
            from_name=settings.app_name,
            timeout=settings.smtp_timeout_seconds,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.host and self.from_email)

    def send(self, to: str, subject: str, html: str) -> None:
        if not self.is_configured:
            logger.info(
                "SMTP not configured; email to %s not sent (subject=%r):\n%s",
                redact_email(to),
                subject,
                html_to_text(html),
            )
            return

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = f"{self.from_name} <{self.from_email}>"
        msg["To"] = to
        msg.attach(MIMEText(html_to_text(html), "plain"))
        msg.attach(MIMEText(html, "html"))

        context = ssl.create_default_context()
        if self.use_tls:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                server.starttls(context=context)
                self._login(server)
                server.sendmail(self.from_email, to, msg.as_string())
        else:
            with smtplib.SMTP_SSL(self.host, self.port, context=context, timeout=self.timeout) as server:
                self._login(server)
                server.sendmail(self.from_email, to, msg.as_string())
        logger.info("Email sent to %s (subject=%r)", redact_email(to), subject)

    def _login(self, server: smtplib.SMTP) -> None:
        if self.user and self.password:
            server.login(self.user, self.password)


# ---------------------------------------------------------------------------
# Fire-and-forget dispatch
# ---------------------------------------------------------------------------


class BackgroundNotifier:
    """Submit deliveries to a thread pool; never block or raise on the caller's path."""

    def __init__(self, inner: Notifier, max_workers: int = 2) -> None:
        self.inner = inner
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="email")

    def send(self, to: str, subject: str, html: str) -> None:
        future = self._executor.submit(self.inner.send, to, subject, html)
        future.add_done_callback(lambda f: _log_failure(f, to, subject))

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


def _log_failure(future: Future, to: str, subject: str) -> None:
    exc = future.exception()
    if exc is not None:
        logger.error(
            "Failed to send email to %s (subject=%r): %s",
            redact_email(to),
            subject,
            exc,
            exc_info=exc,
        )


# ---------------------------------------------------------------------------
# Message templates
# ---------------------------------------------------------------------------


def build_verification_email(app_name: str, frontend_url: str, token: str) -> tuple[str, str]:
    """Return (subject, html) for the email verification message."""
    url = f"{frontend_url.rstrip('/')}/verify-email?token={token}"
    html = f"""
        <h1>Welcome to {app_name}!</h1>
        <p>Please click the link below to verify your email address:</p>
        <a href="{url}">Verify Email</a>
        <p>This link will expire in 24 hours.</p>
        <p>If you didn't create an account, please ignore this email.</p>
    """
    return f"Verify Your Email - {app_name}", html


def build_password_reset_email(app_name: str, frontend_url: str, token: str) -> tuple[str, str]:
    """Return (subject, html) for the password reset message."""
    url = f"{frontend_url.rstrip('/')}/reset-password?token={token}"
    html = f"""
        <h1>Password Reset Request</h1>
        <p>You requested to reset your password. Click the link below:</p>
        <a href="{url}">Reset Password</a>
        <p>This link will expire in 1 hour.</p>
        <p>If you didn't request this, please ignore this email.</p>
    """
    return f"Reset Your Password - {app_name}", html
