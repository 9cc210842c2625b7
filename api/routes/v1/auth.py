"""
api/routes/v1/auth.py -- Session lifecycle REST endpoints.

Routes:
  POST /api/v1/auth/signup              -- create password account; sets cookies; 201
  POST /api/v1/auth/login               -- password login; sets cookies
  GET  /api/v1/auth/validate            -- profile of the access token's subject
  POST /api/v1/auth/refresh             -- rotate refresh token; sets cookies
  POST /api/v1/auth/logout              -- revoke session; clears cookies
  GET  /api/v1/auth/providers           -- list enabled OAuth providers (public)
  GET  /api/v1/auth/oauth/{provider}    -- redirect to provider authorization page
  GET  /api/v1/auth/callback/{provider} -- provider callback; sets cookies; redirect

Security:
  [H2] POST /login is rate-limited to 10 requests/minute per IP.
  [C1] SessionManager.login() equalizes timing -- never inline the lookup.
  [C2] Post-OAuth redirects go only to an origin from ALLOWED_REDIRECT_ORIGINS;
       anything else falls back to the first allowed origin.
  [M5] Cache-Control: no-store on every response that carries tokens.

Errors are raised as AuthError subclasses and rendered by the handler in
api/main.py, so these routes only describe the happy path.
"""

from __future__ import annotations

import logging
from typing import Optional
from urllib.parse import urlencode, urlsplit

from authlib.integrations.starlette_client import OAuthError
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, RedirectResponse
from starlette.concurrency import run_in_threadpool

from api.limiter import limiter
from api.models import (
    AccountResponse,
    AuthResponse,
    LoginRequest,
    MessageResponse,
    OAuthProviderInfo,
    SignupRequest,
)
from auth.dependencies import get_session_manager, require_access_token, require_refresh_token
from auth.errors import AuthError, DuplicateEmail
from auth.federation import FederationHandler
from auth.models import AuthResult
from auth.oauth import fetch_external_identity, get_enabled_providers
from auth.sessions import SessionManager
from auth.tokens import clear_auth_cookies, set_auth_cookies
from core.config import Settings

logger = logging.getLogger("sessiongate.api.auth")

# Session key holding the post-login origin between redirect and callback.
_REDIRECT_SESSION_KEY = "oauth_redirect_origin"

# Auth policy:
# - POST /auth/signup, /auth/login:      public
# - GET  /auth/validate:                 requires access token
# - POST /auth/refresh:                  requires refresh token
# - POST /auth/logout:                   requires access token
# - GET  /auth/providers, oauth, callback: public
router = APIRouter()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _token_response(request: Request, result: AuthResult, status_code: int = 200) -> JSONResponse:
    settings: Settings = request.app.state.settings
    resp = JSONResponse(
        status_code=status_code,
        content=AuthResponse.from_result(result, expires_in=settings.access_token_expire_seconds).model_dump(),
    )
    set_auth_cookies(resp, result.tokens, settings)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


def safe_redirect_origin(candidate: Optional[str], allowed: list[str]) -> str:
    """Return the allow-listed origin that candidate belongs to, else allowed[0]. [C2]

    candidate is a full URL (Referer) or a bare origin (Origin header). Only
    scheme and host:port are compared, exactly -- a prefix match would accept
    "http://localhost:5173.evil.example".
    """
    if candidate:
        parts = urlsplit(candidate)
        if parts.scheme and parts.netloc:
            origin = f"{parts.scheme}://{parts.netloc}".lower()
            for allowed_origin in allowed:
                if origin == allowed_origin.lower():
                    return allowed_origin
    return allowed[0]


def _oauth_failure_redirect(origin: str, code: str) -> RedirectResponse:
    return RedirectResponse(f"{origin}/login?{urlencode({'error': code})}", status_code=302)


# ---------------------------------------------------------------------------
# Password sessions
# ---------------------------------------------------------------------------


@router.post("/auth/signup", response_model=AuthResponse, status_code=201)
def signup(
    request: Request,
    body: SignupRequest,
    sessions: SessionManager = Depends(get_session_manager),
) -> JSONResponse:
    """Create a password account and open its first session."""
    result = sessions.signup(body.email, body.password, body.display_name)
    return _token_response(request, result, status_code=201)


@limiter.limit("10/minute")  # [H2] brute-force mitigation -- must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=AuthResponse)
def login(
    request: Request,
    body: LoginRequest,
    sessions: SessionManager = Depends(get_session_manager),
) -> JSONResponse:
    """Authenticate with email and password; set token cookies.

    Unknown email, OAuth-only account, and wrong password all produce the
    same 401 "bad_credentials" body.
    """
    result = sessions.login(body.email, body.password)
    return _token_response(request, result)


@router.get("/auth/validate", response_model=AccountResponse)
def validate(
    access_token: str = Depends(require_access_token),
    sessions: SessionManager = Depends(get_session_manager),
) -> AccountResponse:
    """Return the public profile of the access token's subject."""
    return AccountResponse.from_summary(sessions.validate_token(access_token))


@router.post("/auth/refresh", response_model=AuthResponse)
def refresh(
    request: Request,
    refresh_token: str = Depends(require_refresh_token),
    sessions: SessionManager = Depends(get_session_manager),
) -> JSONResponse:
    """Exchange the current refresh token for a new pair (single use)."""
    result = sessions.refresh_from_token(refresh_token)
    return _token_response(request, result)


@router.post("/auth/logout", response_model=MessageResponse)
def logout(
    request: Request,
    access_token: str = Depends(require_access_token),
    sessions: SessionManager = Depends(get_session_manager),
) -> JSONResponse:
    """Revoke the caller's session and clear both cookies.

    Only the access token identifies the caller. A client whose access token
    has expired refreshes first, which proves it holds the current session.
    """
    settings: Settings = request.app.state.settings
    sessions.logout_from_token(access_token)
    resp = JSONResponse(content=MessageResponse(message="Logged out.").model_dump())
    clear_auth_cookies(resp, settings)
    return resp


# ---------------------------------------------------------------------------
# OAuth federation
# ---------------------------------------------------------------------------


@router.get("/auth/providers", response_model=list[OAuthProviderInfo])
async def list_providers(request: Request) -> list[OAuthProviderInfo]:
    """Return the configured OAuth providers (empty list if none)."""
    return [OAuthProviderInfo(**p) for p in get_enabled_providers(request.app.state.settings)]


@router.get("/auth/oauth/{provider}")
async def oauth_redirect(request: Request, provider: str) -> RedirectResponse:
    """Remember where the user came from, then redirect to the provider.

    The Referer/Origin is reduced to an allow-listed origin here, before it is
    stored, so the callback never has to trust anything from the session
    beyond that.
    """
    settings: Settings = request.app.state.settings
    enabled = {p["name"] for p in get_enabled_providers(settings)}
    origin = safe_redirect_origin(
        request.headers.get("referer") or request.headers.get("origin"),
        settings.redirect_origins,
    )
    if provider not in enabled:
        return _oauth_failure_redirect(origin, "oauth_failed")

    request.session[_REDIRECT_SESSION_KEY] = origin
    client = request.app.state.oauth.create_client(provider)
    redirect_uri = str(request.url_for("oauth_callback", provider=provider))
    return await client.authorize_redirect(request, redirect_uri)


@router.get("/auth/callback/{provider}", name="oauth_callback")
async def oauth_callback(request: Request, provider: str) -> RedirectResponse:
    """Handle the provider callback: exchange, fetch profile, open session.

    Flow:
      1. Exchange authorization code for token (authlib verifies state).
      2. Fetch and normalize the profile -- FederationFailure on any problem.
      3. Resolve or create the local account; issue tokens.
      4. Set cookies and redirect to the remembered allow-listed origin.
    """
    settings: Settings = request.app.state.settings
    origin = safe_redirect_origin(request.session.pop(_REDIRECT_SESSION_KEY, None), settings.redirect_origins)

    enabled = {p["name"] for p in get_enabled_providers(settings)}
    if provider not in enabled:
        return _oauth_failure_redirect(origin, "oauth_failed")

    client = request.app.state.oauth.create_client(provider)
    try:
        token = await client.authorize_access_token(request)
    except OAuthError:
        logger.exception("OAuth token exchange failed for provider %r", provider)
        return _oauth_failure_redirect(origin, "oauth_failed")

    federation: FederationHandler = request.app.state.federation
    try:
        identity = await fetch_external_identity(client, provider, token)
        # bcrypt and store writes stay off the event loop.
        result = await run_in_threadpool(federation.login_with_external_identity, identity)
    except DuplicateEmail:
        return _oauth_failure_redirect(origin, "email_in_use")
    except AuthError as exc:
        logger.warning("OAuth login via %r failed: %s", provider, exc.code)
        return _oauth_failure_redirect(origin, "oauth_failed")

    resp = RedirectResponse(origin, status_code=302)
    set_auth_cookies(resp, result.tokens, settings)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp
