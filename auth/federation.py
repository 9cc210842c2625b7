"""
auth/federation.py -- Resolve an external provider identity to a local account.

Input is an ExternalIdentity that a provider adapter (auth/oauth.py) already
fetched and normalized. Raw provider JSON goes through normalize_profile()
first; any missing required field is a FederationFailure, never a
half-populated account.

Resolution:
  1. (provider, provider_id) already linked -> that account.
  2. Not linked -> create account (no password) + linked identity in one
     transaction, with the first refresh hash already in the row.
  3. Two first-time callbacks for the same identity racing: the loser's
     insert hits the uniqueness rule (DuplicateIdentity), re-reads the link
     and continues with the winner's account.

Email collision: a new external identity whose email already belongs to
another account (password-based or a different provider) is NOT merged.
Accounts keep unique emails, so the login is refused with DuplicateEmail and
nothing is written. Linking by email is a product decision this module does
not take.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from typing import Any

from auth.errors import DuplicateEmail, DuplicateIdentity, FederationFailure
from auth.models import Account, AuthResult, ExternalIdentity, LinkedIdentity
from auth.sessions import SessionManager, new_account_id
from auth.store import normalize_email

logger = logging.getLogger("sessiongate.auth.federation")


def _clean(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        value = str(value)
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


def normalize_profile(provider: str, payload: dict | None) -> ExternalIdentity:
    """Coerce a loosely-typed provider profile into an ExternalIdentity.

    Accepts the keys adapters produce: provider_id (or id / sub), email,
    display_name (or nickname / name), avatar_url (or profile_image /
    picture / avatar_url). The display name falls back to the email's local
    part, the only field allowed a fallback.

    Raises:
        FederationFailure: payload is not a dict, or provider, provider_id,
            or email is missing or blank.
    """
    if not isinstance(payload, dict):
        raise FederationFailure(f"{provider} returned no profile data.")
    provider = _clean(provider)
    provider_id = _clean(payload.get("provider_id") or payload.get("id") or payload.get("sub"))
    email = _clean(payload.get("email"))
    if not provider or not provider_id or not email or "@" not in email:
        logger.warning("Rejected %s profile: missing provider, provider_id, or email", provider)
        raise FederationFailure()

    display_name = (
        _clean(payload.get("display_name"))
        or _clean(payload.get("nickname"))
        or _clean(payload.get("name"))
        or email.split("@", 1)[0]
    )
    avatar_url = (
        _clean(payload.get("avatar_url")) or _clean(payload.get("profile_image")) or _clean(payload.get("picture"))
    )
    return ExternalIdentity(
        provider=provider,
        provider_id=provider_id,
        email=normalize_email(email),
        display_name=display_name,
        avatar_url=avatar_url,
    )


class FederationHandler:
    """Create-or-reuse a local account for a verified external identity.

    Shares the SessionManager's store, hasher, and codec so federated and
    password sessions follow exactly the same rotation rules.
    """

    def __init__(self, sessions: SessionManager) -> None:
        self.sessions = sessions
        self.store = sessions.store

    def login_with_external_identity(self, identity: ExternalIdentity) -> AuthResult:
        link = self.store.find_linked_identity(identity.provider, identity.provider_id)
        if link is not None:
            account = self.store.find_by_id(link.account_id)
            if account is None:
                logger.error(
                    "Linked identity %s/%s points at missing account %s",
                    identity.provider,
                    identity.provider_id,
                    link.account_id,
                )
                raise FederationFailure()
            logger.info("Federated login for account %s via %s", account.id, identity.provider)
            return self.sessions.open_session(account)

        return self._create_federated_account(identity)

    def _create_federated_account(self, identity: ExternalIdentity) -> AuthResult:
        if self.store.find_by_email(identity.email) is not None:
            logger.warning(
                "Federated login via %s refused: email already belongs to another account", identity.provider
            )
            raise DuplicateEmail()

        hasher = self.sessions.hasher
        account_id = new_account_id()
        tokens = self.sessions.codec.issue_pair(account_id, identity.email)
        try:
            account = self.store.create_account(
                Account(
                    id=account_id,
                    email=identity.email,
                    display_name=identity.display_name,
                    avatar_url=identity.avatar_url,
                    password_hash=None,
                    refresh_token_hash=hasher.hash(tokens.refresh_token),
                ),
                linked_identity=LinkedIdentity(
                    provider=identity.provider,
                    provider_id=identity.provider_id,
                    account_id=account_id,
                ),
            )
        except DuplicateIdentity:
            logger.info("Concurrent first login for %s identity; reusing winner", identity.provider)
            link = self.store.find_linked_identity(identity.provider, identity.provider_id)
            account = self.store.find_by_id(link.account_id) if link else None
            if account is None:
                raise FederationFailure() from None
            return self.sessions.open_session(account)

        logger.info("Account %s created via %s federation", account.id, identity.provider)
        return AuthResult(account=account.summary(), tokens=tokens)
