"""
auth/errors.py -- Typed failure outcomes for the credential lifecycle.

Every operation in auth/ either returns its success payload or raises one of
the AuthError subclasses below. The HTTP layer (api/main.py) maps them onto
the shared ErrorResponse envelope using status_code and code, so routes never
build error bodies by hand.

Messages are deliberately generic. "Unknown email" and "wrong password" both
surface as InvalidCredentials with the same text to prevent account
enumeration [C1].

ConfigError is re-exported from core.config: it is fatal at startup only and
is intentionally NOT an AuthError, so no request handler can swallow it.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from core.config import ConfigError

__all__ = [
    "AccessDenied",
    "AuthError",
    "ConfigError",
    "DuplicateEmail",
    "DuplicateIdentity",
    "FederationFailure",
    "InvalidCredentials",
    "NotFound",
    "TokenExpired",
    "TokenInvalid",
]


class AuthError(Exception):
    """Base class for recoverable credential-lifecycle failures."""

    status_code: int = 400
    code: str = "auth_error"
    default_message: str = "Authentication failed."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class DuplicateEmail(AuthError):
    status_code = 409
    code = "duplicate_email"
    default_message = "That email address is already registered."


class DuplicateIdentity(AuthError):
    """A (provider, provider_id) pair is already linked to an account.

    Raised by the store when a concurrent first-time federation login won the
    insert. The federation handler recovers by re-reading the winner's row.
    """

    status_code = 409
    code = "duplicate_identity"
    default_message = "That external identity is already linked."


class InvalidCredentials(AuthError):
    status_code = 401
    code = "bad_credentials"
    default_message = "Invalid email or password."


class AccessDenied(AuthError):
    """Refresh token missing, superseded, revoked, or lost a rotation race."""

    status_code = 401
    code = "access_denied"
    default_message = "Access denied."


class TokenInvalid(AuthError):
    status_code = 401
    code = "token_invalid"
    default_message = "Token is invalid."


class TokenExpired(AuthError):
    status_code = 401
    code = "token_expired"
    default_message = "Token has expired."


class NotFound(AuthError):
    status_code = 404
    code = "not_found"
    default_message = "Account not found."


class FederationFailure(AuthError):
    """Provider profile fetch failed, returned non-success, or malformed data."""

    status_code = 502
    code = "federation_failed"
    default_message = "External identity provider login failed."
