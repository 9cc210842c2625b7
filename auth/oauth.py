"""
auth/oauth.py -- Authlib OAuth/OIDC provider registry and profile adapters.

build_oauth_registry() registers only the providers whose client ID and
secret are both configured; the login page renders buttons from
get_enabled_providers(). Settings are passed in, never read at import time.

fetch_external_identity() is the boundary between the provider's loosely
typed JSON and the Federation Handler. Every way the fetch can go wrong --
HTTP error, provider-level non-success code, unverified email, missing
field -- is raised as FederationFailure. A failed fetch is never treated as
"new user".

Security notes:
  [H1] Email verification is mandatory for github and google. An unverified
       email could be a victim's address added by an attacker. Naver only
       returns emails it has verified, so its profile is taken as-is once
       resultcode is "00".

  OAuth state (CSRF protection) is handled by authlib via Starlette
  SessionMiddleware -- never trust state from query params alone.

Supported providers:
  naver  -- Authorization code flow; static endpoints; profile at v1/nid/me.
  github -- Authorization code flow; static endpoints.
  google -- Authorization code flow; OIDC discovery.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging

import httpx
from authlib.integrations.starlette_client import OAuth

from auth.errors import FederationFailure
from auth.federation import normalize_profile
from auth.models import ExternalIdentity
from core.config import Settings

logger = logging.getLogger("sessiongate.auth.oauth")

_LABELS = {"naver": "Naver", "github": "GitHub", "google": "Google"}


# ---------------------------------------------------------------------------
# Authlib OAuth registry
# ---------------------------------------------------------------------------


def build_oauth_registry(settings: Settings) -> OAuth:
    """Return an OAuth registry with every fully configured provider registered."""
    oauth = OAuth()

    # Naver -- static endpoints (no OIDC discovery document)
    if settings.naver_client_id and settings.naver_client_secret:
        oauth.register(
            name="naver",
            client_id=settings.naver_client_id,
            client_secret=settings.naver_client_secret,
            access_token_url="https://nid.naver.com/oauth2.0/token",  # noqa: S106 -- URL, not a password
            authorize_url="https://nid.naver.com/oauth2.0/authorize",
            api_base_url="https://openapi.naver.com/",
            client_kwargs={"scope": "email profile"},
        )
        logger.info("Naver OAuth provider registered")

    # GitHub -- static endpoints
    if settings.github_client_id and settings.github_client_secret:
        oauth.register(
            name="github",
            client_id=settings.github_client_id,
            client_secret=settings.github_client_secret,
            access_token_url="https://github.com/login/oauth/access_token",  # noqa: S106 -- URL, not a password
            authorize_url="https://github.com/login/oauth/authorize",
            api_base_url="https://api.github.com/",
            client_kwargs={"scope": "read:user user:email"},
        )
        logger.info("GitHub OAuth provider registered")

    # Google -- OIDC discovery
    if settings.google_client_id and settings.google_client_secret:
        oauth.register(
            name="google",
            client_id=settings.google_client_id,
            client_secret=settings.google_client_secret,
            server_metadata_url="https://accounts.google.com/.well-known/openid-configuration",
            client_kwargs={"scope": "openid email profile"},
        )
        logger.info("Google OAuth provider registered")

    return oauth


def get_enabled_providers(settings: Settings) -> list[dict]:
    """Return [{"name": ..., "label": ...}] for every configured provider."""
    configured = {
        "naver": settings.naver_client_id and settings.naver_client_secret,
        "github": settings.github_client_id and settings.github_client_secret,
        "google": settings.google_client_id and settings.google_client_secret,
    }
    return [{"name": name, "label": _LABELS[name]} for name, ok in configured.items() if ok]


# ---------------------------------------------------------------------------
# Profile fetch -- provider-specific normalization [H1]
# ---------------------------------------------------------------------------


async def fetch_external_identity(client, provider: str, token: dict) -> ExternalIdentity:
    """Fetch the provider profile for an exchanged token and normalize it.

    Args:
        client:   The authlib OAuth client for this provider.
        provider: "naver", "github", or "google".
        token:    The token dict returned by authlib after code exchange.

    Raises:
        FederationFailure: on any fetch error or unusable profile.
    """
    try:
        if provider == "naver":
            payload = await _get_naver_profile(client, token)
        elif provider == "github":
            payload = await _get_github_profile(client, token)
        elif provider == "google":
            payload = _get_oidc_profile(token, provider)
        else:
            raise FederationFailure(f"Unknown OAuth provider: {provider!r}")
    except httpx.HTTPError as exc:
        logger.warning("Profile fetch from %s failed: %s", provider, exc)
        raise FederationFailure() from exc
    except (KeyError, TypeError, ValueError) as exc:
        logger.warning("Profile from %s was malformed: %s", provider, exc)
        raise FederationFailure() from exc
    return normalize_profile(provider, payload)


async def _get_naver_profile(client, token: dict) -> dict:
    """GET v1/nid/me. Success is resultcode "00"; anything else is a failure."""
    resp = await client.get("v1/nid/me", token=token)
    resp.raise_for_status()
    data = resp.json()
    if not isinstance(data, dict) or data.get("resultcode") != "00":
        logger.warning("Naver profile API returned non-success: %r", data)
        raise FederationFailure()
    profile = data.get("response") or {}
    return {
        "provider_id": profile.get("id"),
        "email": profile.get("email"),
        "display_name": profile.get("nickname") or profile.get("name"),
        "avatar_url": profile.get("profile_image"),
    }


async def _get_github_profile(client, token: dict) -> dict:
    """GET user for the numeric ID, then user/emails for the primary verified email."""
    resp = await client.get("user", token=token)
    resp.raise_for_status()
    profile = resp.json()

    emails_resp = await client.get("user/emails", token=token)
    emails_resp.raise_for_status()
    email: str | None = None
    for entry in emails_resp.json():
        if entry.get("primary") and entry.get("verified"):
            email = entry["email"]
            break
    if not email:
        logger.warning("GitHub OAuth: no primary verified email")
        raise FederationFailure()

    return {
        "provider_id": profile["id"],
        "email": email,
        "display_name": profile.get("name") or profile.get("login"),
        "avatar_url": profile.get("avatar_url"),
    }


def _get_oidc_profile(token: dict, provider: str) -> dict:
    """Read the id_token userinfo; email_verified must be explicitly true."""
    userinfo = token.get("userinfo")
    if not userinfo:
        logger.warning("%s OAuth: no userinfo in token response", provider)
        raise FederationFailure()
    if userinfo.get("email_verified") is not True:
        logger.warning("%s OAuth: email is not verified", provider)
        raise FederationFailure()
    return {
        "provider_id": userinfo.get("sub"),
        "email": userinfo.get("email"),
        "display_name": userinfo.get("name"),
        "avatar_url": userinfo.get("picture"),
    }
