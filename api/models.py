"""
API request and response models for SessionGate REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field, StringConstraints

from auth.models import AccountSummary, AuthResult

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Deliberately loose: the address is proven by use, not by regex.
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"

# Passwords are never stripped: surrounding spaces are part of the secret.
StrippedStr = Annotated[str, StringConstraints(strip_whitespace=True)]


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class SignupRequest(BaseModel):
    """Request body for POST /api/v1/auth/signup."""

    email: StrippedStr = Field(max_length=255, pattern=EMAIL_PATTERN)
    # bcrypt only sees a digest of the password, so the upper bound just
    # stops abusive payloads.
    password: str = Field(min_length=8, max_length=255)
    display_name: StrippedStr = Field(min_length=1, max_length=50)


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login."""

    email: StrippedStr = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=255)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class AccountResponse(BaseModel):
    """Public profile -- GET /api/v1/auth/validate."""

    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    display_name: str
    avatar_url: Optional[str] = None

    @classmethod
    def from_summary(cls, summary: AccountSummary) -> "AccountResponse":
        return cls(
            id=summary.id,
            email=summary.email,
            display_name=summary.display_name,
            avatar_url=summary.avatar_url,
        )


class AuthResponse(BaseModel):
    """Response for signup, login, and refresh: profile plus the new token pair.

    The tokens are also set as httpOnly cookies; the body copy is for API
    clients that manage tokens themselves.
    """

    model_config = ConfigDict(frozen=True)

    account: AccountResponse
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int

    @classmethod
    def from_result(cls, result: AuthResult, expires_in: int) -> "AuthResponse":
        """Factory Method -- mapping lives next to the output model."""
        return cls(
            account=AccountResponse.from_summary(result.account),
            access_token=result.tokens.access_token,
            refresh_token=result.tokens.refresh_token,
            expires_in=expires_in,
        )


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class OAuthProviderInfo(BaseModel):
    """One enabled OAuth provider -- GET /api/v1/auth/providers."""

    model_config = ConfigDict(frozen=True)

    name: str
    label: str


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
