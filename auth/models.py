"""
auth/models.py -- Domain dataclasses for credential-lifecycle entities.

Pattern: Data class (pure data containers). Stores and managers do the work;
the only logic here is the derived SessionState and the public projection.

Session state is not a stored column. It is derived from refresh_token_hash:
    None        -> NoSession
    "<bcrypt>"  -> ActiveSession(refresh_token_hash)
Managers branch on Account.session instead of null-checking the raw field.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Union


class TokenContext(str, Enum):
    """Signing context. Each has its own secret and lifetime."""

    ACCESS = "access"
    REFRESH = "refresh"


@dataclass(frozen=True)
class NoSession:
    """No refresh token is currently valid for the account."""


@dataclass(frozen=True)
class ActiveSession:
    """Exactly one refresh token is valid: the one hashing to refresh_token_hash."""

    refresh_token_hash: str


SessionState = Union[NoSession, ActiveSession]


@dataclass
class Account:
    """One identity record per user.

    password_hash is None for accounts created purely through federation --
    they can never pass a password login.
    email is stored normalized (stripped, lower-cased) and never changes.
    """

    id: str
    email: str
    display_name: str
    password_hash: str | None = None
    refresh_token_hash: str | None = None
    avatar_url: str | None = None
    created_at: str | None = None

    @property
    def session(self) -> SessionState:
        if self.refresh_token_hash is None:
            return NoSession()
        return ActiveSession(self.refresh_token_hash)

    def summary(self) -> AccountSummary:
        return AccountSummary(
            id=self.id,
            email=self.email,
            display_name=self.display_name,
            avatar_url=self.avatar_url,
        )


@dataclass
class LinkedIdentity:
    """Binding of one external provider identity to a local account.

    (provider, provider_id) is globally unique. Rows are written once, on the
    first successful federation login, and never updated.
    """

    provider: str  # "naver", "github", "google"
    provider_id: str  # provider's stable subject ID
    account_id: str
    created_at: str | None = None


@dataclass(frozen=True)
class ExternalIdentity:
    """Normalized profile handed over by a provider adapter after OAuth exchange."""

    provider: str
    provider_id: str
    email: str
    display_name: str
    avatar_url: str | None = None


@dataclass(frozen=True)
class AccountSummary:
    """Public profile projection. Never carries password or refresh hashes."""

    id: str
    email: str
    display_name: str
    avatar_url: str | None = None


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str


@dataclass(frozen=True)
class TokenClaims:
    """Decoded, verified token content."""

    subject: str
    email: str
    issued_at: datetime
    expires_at: datetime
    context: TokenContext = TokenContext.ACCESS
    token_id: str = field(default="", compare=False)


@dataclass(frozen=True)
class AuthResult:
    """Success payload of signup, login, refresh, and federation login."""

    account: AccountSummary
    tokens: TokenPair
