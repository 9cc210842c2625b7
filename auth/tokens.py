"""
auth/tokens.py -- JWT signing/verification and auth cookie helpers.

Security design decisions:
  JWT: python-jose with HS256. Two signing contexts, access and refresh, each
       with its own secret and lifetime taken from Settings. Every token also
       carries typ=<context>, so a refresh token is rejected on the access
       path (and vice versa) even if an operator misconfigures the secrets.

  jti: every token carries 128 random bits. Two tokens issued in the same
       second for the same account are still distinct, which rotation relies
       on -- the refresh hash of the new token must not match the old one.

  Expiry: checked against the codec's own clock after the signature is
       verified, so a forged token is TokenInvalid and a genuine but stale one
       is TokenExpired. Callers can tell the two apart.

  Secrets: passed in through Settings at construction. A missing secret is a
       ConfigError at startup, never a per-request failure.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from auth.errors import TokenExpired, TokenInvalid
from auth.models import TokenClaims, TokenContext, TokenPair
from core.config import ConfigError, Settings

logger = logging.getLogger("sessiongate.auth.tokens")

_ALGORITHM = "HS256"
_REQUIRED_CLAIMS = ("sub", "email", "iat", "exp")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenCodec:
    """Signs and verifies access and refresh tokens.

    Usage:
        codec = TokenCodec(get_settings())
        pair = codec.issue_pair(account.id, account.email)
        claims = codec.verify(pair.access_token, TokenContext.ACCESS)
    """

    def __init__(self, settings: Settings, clock: Callable[[], datetime] = _utcnow) -> None:
        self._secrets = {
            TokenContext.ACCESS: settings.access_token_secret,
            TokenContext.REFRESH: settings.refresh_token_secret,
        }
        self._lifetimes = {
            TokenContext.ACCESS: timedelta(seconds=settings.access_token_expire_seconds),
            TokenContext.REFRESH: timedelta(seconds=settings.refresh_token_expire_seconds),
        }
        for context, secret in self._secrets.items():
            if not secret:
                raise ConfigError(f"No signing secret configured for {context.value} tokens.")
        self._clock = clock

    # ------------------------------------------------------------------
    # Encode
    # ------------------------------------------------------------------

    def sign(self, subject: str, email: str, context: TokenContext) -> str:
        """Encode a signed JWT for the given account in the given context."""
        issued = self._clock()
        payload = {
            "sub": subject,
            "email": email,
            "typ": context.value,
            "jti": secrets.token_hex(16),
            "iat": int(issued.timestamp()),
            "exp": int((issued + self._lifetimes[context]).timestamp()),
        }
        return jwt.encode(payload, self._secrets[context], algorithm=_ALGORITHM)

    def issue_pair(self, subject: str, email: str) -> TokenPair:
        return TokenPair(
            access_token=self.sign(subject, email, TokenContext.ACCESS),
            refresh_token=self.sign(subject, email, TokenContext.REFRESH),
        )

    # ------------------------------------------------------------------
    # Decode
    # ------------------------------------------------------------------

    def verify(self, token: str, context: TokenContext) -> TokenClaims:
        """Verify signature, shape, context, and expiry. Return the claims.

        Raises:
            TokenInvalid: bad signature, malformed token, wrong context, or a
                missing sub/email/iat/exp claim.
            TokenExpired: signature is valid but the clock is past exp.
        """
        if not token or not isinstance(token, str):
            raise TokenInvalid()
        try:
            payload = jwt.decode(
                token,
                self._secrets[context],
                algorithms=[_ALGORITHM],
                options={"verify_exp": False, "verify_iat": False, "verify_nbf": False},
            )
        except JWTError as exc:
            raise TokenInvalid() from exc

        if any(not payload.get(name) for name in _REQUIRED_CLAIMS):
            raise TokenInvalid("Token is missing required claims.")
        if payload.get("typ") != context.value:
            raise TokenInvalid()
        try:
            issued_at = datetime.fromtimestamp(int(payload["iat"]), tz=timezone.utc)
            expires_at = datetime.fromtimestamp(int(payload["exp"]), tz=timezone.utc)
        except (TypeError, ValueError, OverflowError) as exc:
            raise TokenInvalid() from exc

        if self._clock() >= expires_at:
            raise TokenExpired()

        return TokenClaims(
            subject=str(payload["sub"]),
            email=str(payload["email"]),
            issued_at=issued_at,
            expires_at=expires_at,
            context=context,
            token_id=str(payload.get("jti", "")),
        )


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_auth_cookies(response, pair: TokenPair, settings: Settings) -> None:
    """Write both tokens as httpOnly cookies on the response.

    httponly=True: JS cannot read the cookies (XSS mitigation).
    samesite="strict": never sent on cross-site requests (CSRF mitigation).
    secure: only sent over HTTPS when SECURE_COOKIES=true (set in production).
    max_age: matches each token's lifetime so cookie and token expire together.
    """
    response.set_cookie(
        settings.access_cookie_name,
        value=pair.access_token,
        httponly=True,
        samesite="strict",
        secure=settings.secure_cookies,
        max_age=settings.access_token_expire_seconds,
    )
    response.set_cookie(
        settings.refresh_cookie_name,
        value=pair.refresh_token,
        httponly=True,
        samesite="strict",
        secure=settings.secure_cookies,
        max_age=settings.refresh_token_expire_seconds,
    )


def clear_auth_cookies(response, settings: Settings) -> None:
    response.delete_cookie(settings.access_cookie_name)
    response.delete_cookie(settings.refresh_cookie_name)
