"""
auth/dependencies.py -- FastAPI Depends() helpers for token extraction.

Two token sources are checked in priority order:
  1. Cookie (ACCESS_COOKIE_NAME / REFRESH_COOKIE_NAME) -- set by login/refresh.
  2. Authorization: Bearer <token> header -- API clients keeping tokens
     themselves.

The helpers only extract. Signature, expiry, and whether the subject still
holds the current session are checked by SessionManager.

A missing token raises TokenInvalid; the exception handler in api/main.py
turns it into the 401 envelope.

Layer rule: auth/dependencies.py may import from fastapi because this module
is part of the FastAPI dependency injection system. No imports from api/.
"""

from __future__ import annotations

from fastapi import Request

from auth.errors import TokenInvalid
from auth.models import TokenContext
from auth.sessions import SessionManager
from core.config import Settings


def _bearer(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:].strip() or None
    return None


def extract_token(request: Request, context: TokenContext) -> str | None:
    """Return the raw token for the given context from cookie or Bearer header."""
    settings: Settings = request.app.state.settings
    cookie_name = settings.access_cookie_name if context is TokenContext.ACCESS else settings.refresh_cookie_name
    return request.cookies.get(cookie_name) or _bearer(request)


def get_session_manager(request: Request) -> SessionManager:
    return request.app.state.sessions


def require_access_token(request: Request) -> str:
    """Require an access token to be present; SessionManager verifies it.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(access_token: str = Depends(require_access_token)): ...
    """
    token = extract_token(request, TokenContext.ACCESS)
    if not token:
        raise TokenInvalid("Authentication required.")
    return token


def require_refresh_token(request: Request) -> str:
    """Require a refresh token to be present; verification happens in SessionManager."""
    token = extract_token(request, TokenContext.REFRESH)
    if not token:
        raise TokenInvalid("Refresh token required.")
    return token
