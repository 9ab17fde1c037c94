"""
api/main.py -- FastAPI application entry point for the Expense Tracker auth service.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. log_requests           -- method, path, status, latency, client
  2. authenticate_request   -- binds request.state.principal (never rejects)
  3. SlowAPIMiddleware      -- enforces per-route rate limits from api.limiter
  4. CORSMiddleware         -- adds CORS headers for allowed browser origins
  5. TrustedHostMiddleware  -- rejects requests with unexpected Host headers

Lifespan builds the auth components once per process (codec, revocation
registry, issuer, authenticator, service) and holds them on app.state. Nothing
auth-related is a module global, so tests wire their own instances.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from urllib.parse import quote

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.auth import router as auth_router
from auth.authenticator import RequestAuthenticator
from auth.errors import AuthenticationRequired
from auth.issuer import CredentialIssuer
from auth.models import AuthFailure
from auth.revocation import RevocationRegistry
from auth.service import AuthService
from auth.store import UserStore
from auth.tokens import TokenCodec, clear_auth_cookie
from core.config import Settings, get_settings

__version__ = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("expensetracker.api")

_settings = get_settings()

# Failures that mean the client holds a cookie that will never work again.
_STALE_COOKIE_FAILURES = frozenset({AuthFailure.REVOKED, AuthFailure.IDENTITY_NOT_FOUND})


# ---------------------------------------------------------------------------
# Auth wiring
# ---------------------------------------------------------------------------


def build_auth_state(app: FastAPI, settings: Settings, user_store: UserStore) -> None:
    """Construct the auth components and attach them to app.state.

    The signing key is read from settings exactly once, here. The revocation
    registry is created empty; it lives as long as the process.
    """
    codec = TokenCodec.from_settings(settings)
    registry = RevocationRegistry()
    issuer = CredentialIssuer(codec)
    app.state.user_store = user_store
    app.state.codec = codec
    app.state.revocation_registry = registry
    app.state.authenticator = RequestAuthenticator(
        codec,
        registry,
        user_store,
        cookie_name=settings.auth_cookie_name,
    )
    app.state.auth_service = AuthService(user_store, issuer, codec, registry)


# ---------------------------------------------------------------------------
# Lifespan -- modern startup / shutdown pattern (replaces @app.on_event)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Everything before yield runs on startup; everything after yield runs on
    shutdown.
    """
    logger.info("Expense Tracker auth API starting up")
    user_store = UserStore(_settings.database_url) if _settings.database_url else UserStore()
    build_auth_state(app, _settings, user_store)
    logger.info("Auth initialized (token lifetime %ds)", app.state.codec.lifetime_seconds)

    yield

    app.state.user_store.close()
    logger.info("Expense Tracker auth API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Expense Tracker Auth API",
    description="Stateless token authentication with server-side revocation.",
    version=__version__,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# add_middleware() and @app.middleware both insert at the outermost position,
# so the last registration sees the request first.
# ---------------------------------------------------------------------------

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=_settings.allowed_hosts,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


# ---------------------------------------------------------------------------
# Authentication middleware
#
# Runs the RequestAuthenticator for every request and always calls the next
# stage -- it decides whether a principal is bound, never whether the request
# may proceed. Protected routes enforce that via require_principal().
#
# wants_machine_readable is decided here, once, from the path prefix. The
# AuthenticationRequired handler reads it to pick JSON 401 or a redirect.
# ---------------------------------------------------------------------------


def _sets_auth_cookie(response, cookie_name: str) -> bool:
    return any(h.startswith(f"{cookie_name}=") for h in response.headers.getlist("set-cookie"))


@app.middleware("http")
async def authenticate_request(request: Request, call_next):
    request.state.wants_machine_readable = request.url.path.startswith("/api/")
    outcome = await request.app.state.authenticator.authenticate_request(request)
    response = await call_next(request)
    # Drop a dead cookie, unless this response just issued a fresh one (re-login).
    # Only a rejected cookie token clears the cookie; a rejected Bearer token leaves it.
    if (
        outcome.failure in _STALE_COOKIE_FAILURES
        and outcome.source == "cookie"
        and not _sets_auth_cookie(response, _settings.auth_cookie_name)
    ):
        clear_auth_cookie(response, _settings)
    return response


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

app.include_router(auth_router, prefix="/api", tags=["Auth"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(AuthenticationRequired)
async def authentication_required_handler(request: Request, exc: AuthenticationRequired):
    """401 for programmatic callers, redirect to the login page for browsers.

    The body never says why authentication failed (expired, revoked, forged)
    -- only that it is required.
    """
    if getattr(request.state, "wants_machine_readable", True):
        return JSONResponse(
            status_code=401,
            content=ErrorResponse(
                error=ErrorDetail(code="unauthorized", message="Authentication required."),
            ).model_dump(),
        )
    return RedirectResponse(f"/login?next={quote(request.url.path)}", status_code=302)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded.

    Retry-After tells clients how many seconds to wait before retrying.
    """
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
    """Return 422 with structured error when request body or query params fail validation."""
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail=str(exc.errors()),
            )
        ).model_dump(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    Route handlers raise HTTPException with a {"code", "message"} dict as
    detail; that dict becomes the error field as-is.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
        )
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception goes to the log only, never to the response body.
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
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state. No rate limit and no auth.
# ---------------------------------------------------------------------------


@app.get("/api/health", include_in_schema=True, tags=["Health"])
async def health() -> HealthResponse:
    """Return API liveness and current version."""
    return HealthResponse(version=__version__)
