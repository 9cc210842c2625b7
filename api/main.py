"""
api/main.py -- FastAPI application factory for SessionGate.

Run with:  uvicorn asgi:app --reload

create_app() resolves Settings once and wires every collaborator explicitly:
    PasswordHasher, TokenCodec -> SessionManager -> FederationHandler
The results live on app.state; route dependencies read them from there.
A missing signing secret raises ConfigError inside create_app(), i.e. before
the server accepts its first connection.

Middleware stack (outermost to innermost):
  1. CORSMiddleware     -- browser origins from CORS_ORIGINS, credentials allowed
  2. SlowAPIMiddleware  -- per-route rate limits from api.limiter
  3. SessionMiddleware  -- authlib OAuth state + post-login origin

Lifespan logs startup and closes the credential store on shutdown.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.middleware.sessions import SessionMiddleware

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from auth.errors import AuthError
from auth.federation import FederationHandler
from auth.oauth import build_oauth_registry, get_enabled_providers
from auth.passwords import PasswordHasher
from auth.sessions import SessionManager
from auth.store import CredentialStore, SQLCredentialStore
from auth.tokens import TokenCodec
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
logger = logging.getLogger("sessiongate.api")


# ---------------------------------------------------------------------------
# Lifespan -- modern startup / shutdown pattern (replaces @app.on_event)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings: Settings = app.state.settings
    logger.info(
        "SessionGate API starting up (providers=%s, secure_cookies=%s)",
        [p["name"] for p in get_enabled_providers(settings)],
        settings.secure_cookies,
    )

    yield

    app.state.store.close()
    logger.info("SessionGate API shutdown complete")


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Render an AuthError with its own status and code.

    The message is the exception's generic text; it never says which check
    failed [C1].
    """
    resp = JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=ErrorDetail(code=exc.code, message=exc.message)).model_dump(),
    )
    resp.headers["Cache-Control"] = "no-store"
    if exc.status_code == 401:
        resp.headers["WWW-Authenticate"] = "Bearer"
    return resp


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


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions."""
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(code=f"http_{exc.status_code}", message=str(exc.detail))
        ).model_dump(),
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(code="internal_error", message="An unexpected error occurred.")
        ).model_dump(),
    )


# ---------------------------------------------------------------------------
# Request logging middleware
# ---------------------------------------------------------------------------


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
# App factory
# ---------------------------------------------------------------------------


def create_app(settings: Optional[Settings] = None, store: Optional[CredentialStore] = None) -> FastAPI:
    """Build the ASGI app with explicitly wired collaborators.

    Args:
        settings: Resolved configuration. Defaults to get_settings().
        store:    Credential store. Defaults to SQLCredentialStore at
                  settings.database_url. Tests pass an in-memory store.

    Raises:
        ConfigError: signing secrets missing or unsafe.
    """
    settings = settings or get_settings()
    store = store if store is not None else SQLCredentialStore(settings.database_url)

    hasher = PasswordHasher(rounds=settings.bcrypt_rounds)
    codec = TokenCodec(settings)
    sessions = SessionManager(store, hasher, codec)

    app = FastAPI(
        title="SessionGate API",
        description="Password and OAuth sessions with rotating refresh tokens.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.store = store
    app.state.sessions = sessions
    app.state.federation = FederationHandler(sessions)
    app.state.oauth = build_oauth_registry(settings)

    # Register in the order the request should encounter them; Starlette
    # applies add_middleware() outermost-last, so add innermost first.
    app.add_middleware(SessionMiddleware, secret_key=settings.session_secret, same_site="lax")
    app.add_middleware(SlowAPIMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["Content-Type", "Authorization"],
        max_age=3600,
    )
    app.middleware("http")(log_requests)

    # SlowAPI looks for app.state.limiter by convention.
    app.state.limiter = limiter

    app.add_exception_handler(AuthError, auth_error_handler)
    app.add_exception_handler(RateLimitExceeded, rate_limit_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])

    @app.get("/api/v1/health", tags=["Health"])
    async def health() -> HealthResponse:
        """Return API liveness and current version. Not rate limited."""
        return HealthResponse(version=__version__)

    return app
