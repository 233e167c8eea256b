"""
api/main.py -- FastAPI application entry point for the storefront auth service.

Run with:      python main.py serve
               uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan builds the auth collaborators (store, hasher, codec, notifier) and
the AuthService on startup, starts the expired-token purge task, and tears
everything down symmetrically on shutdown.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from auth.errors import AuthError
from auth.notifications import BackgroundNotifier, SmtpNotifier
from auth.service import AuthService
from auth.store import AuthStore
from auth.tokens import PasswordHasher, TokenCodec
from core.config import get_settings

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("storefront.api")

_settings = get_settings()

# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI) -> None:
    """Delete expired security tokens every token_purge_interval_seconds.

    Expired tokens can never validate again, so this only bounds table size.
    The store call blocks, so it runs in a worker thread. CancelledError from
    task.cancel() during shutdown propagates out of asyncio.sleep and unwinds
    the coroutine cleanly.
    """
    while True:
        await asyncio.sleep(_settings.token_purge_interval_seconds)
        try:
            removed = await asyncio.to_thread(app.state.auth_store.purge_expired_tokens)
        except Exception:
            logger.exception("Expired token purge failed")
        else:
            logger.info("Purged %d expired token(s)", removed)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


def build_auth_service(store: AuthStore, settings=None, notifier=None) -> AuthService:
    """Wire an AuthService from settings. Tests pass their own store and notifier."""
    if settings is None:
        settings = get_settings()
    if notifier is None:
        notifier = BackgroundNotifier(SmtpNotifier.from_settings(settings), max_workers=settings.email_workers)
    return AuthService(
        store=store,
        hasher=PasswordHasher(rounds=settings.bcrypt_rounds),
        codec=TokenCodec(),
        notifier=notifier,
        settings=settings,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Everything before yield runs on startup; everything after yield runs on
    shutdown.
    """
    logger.info("Storefront auth API starting up")
    app.state.auth_store = AuthStore(_settings.database_url)
    app.state.auth_service = build_auth_service(app.state.auth_store, _settings)
    logger.info(
        "Auth initialized (access_ttl=%s refresh_ttl=%s smtp=%s)",
        _settings.jwt_expires_in,
        _settings.jwt_refresh_expires_in,
        "on" if _settings.smtp_host else "log-only",
    )
    app.state.purge_task = asyncio.create_task(_purge_loop(app))

    yield

    app.state.purge_task.cancel()
    with suppress(asyncio.CancelledError):
        await app.state.purge_task
    notifier = app.state.auth_service.notifier
    if isinstance(notifier, BackgroundNotifier):
        notifier.shutdown(wait=True)
    app.state.auth_store.close()
    logger.info("Storefront auth API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Storefront Auth API",
    description="Account registration, login, token rotation, email verification and password reset.",
    version=VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Register in the order you want the request to encounter them:
# TrustedHost -> CORS -> SlowAPI.
# ---------------------------------------------------------------------------

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


# ---------------------------------------------------------------------------
# Request logging middleware
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Map an engine error to its status code and the error envelope.

    InternalError keeps the generic message; the cause was already logged
    with its traceback where it was raised.
    """
    response = JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=ErrorDetail(code=exc.code, message=exc.message)).model_dump(),
    )
    if exc.status_code == 401:
        response.headers["WWW-Authenticate"] = "Bearer"
    response.headers["Cache-Control"] = "no-store"
    return response


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = JSONResponse(
        status_code=429,
        content=ErrorResponse(
            error=ErrorDetail(
                code="rate_limited",
                message="Too many requests.",
                detail=str(exc),
            )
        ).model_dump(),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation.

    The offending input values are left out of the detail so passwords never
    get echoed back.
    """
    fields = ", ".join(".".join(str(p) for p in err.get("loc", ())) for err in exc.errors())
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail=fields or None,
            )
        ).model_dump(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    When detail is already a structured dict, use it directly as the error
    field rather than stringifying it.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(),
        headers=exc.headers,
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception is written to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(
                code="internal_error",
                message="An unexpected error occurred.",
            )
        ).model_dump(),
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# No rate limit applied -- health checks from load balancers and monitoring
# systems must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"], response_model=HealthResponse)
def health(request: Request) -> HealthResponse:
    """Return liveness, version, and whether the auth database answers."""
    database_ok = request.app.state.auth_store.ping()
    return HealthResponse(
        status="healthy" if database_ok else "degraded",
        version=VERSION,
        components={"app": "ok", "database": "ok" if database_ok else "error"},
    )
