"""
auth/sessions.py -- Signup, login, validate, refresh, and logout.

SessionManager owns the per-account session state machine:

    NoSession  --signup/login-->  ActiveSession(h1)
    ActiveSession(h1)  --refresh(t1)-->  ActiveSession(h2)   t1 is dead from now on
    ActiveSession(hN)  --login-->  ActiveSession(h')         previous session dies
    any  --logout-->  NoSession                              idempotent

Ordering rule: tokens are signed and hashed first, the store write comes
last. A request cancelled before that write leaves no trace; the write itself
is the single point of irrevocability.

Rotation is single-use. refresh() swaps the stored hash with a
compare-and-swap keyed on the hash it verified against, so of two racing
rotations with the same token only one lands; the other gets AccessDenied.
A presented token that no longer matches is logged at WARNING -- it is either
a stale client or a replayed, captured token.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import uuid

from auth.errors import AccessDenied, DuplicateEmail, InvalidCredentials, NotFound
from auth.models import Account, AccountSummary, ActiveSession, AuthResult, TokenContext
from auth.passwords import PasswordHasher
from auth.store import CredentialStore, normalize_email
from auth.tokens import TokenCodec

logger = logging.getLogger("sessiongate.auth.sessions")


def new_account_id() -> str:
    return uuid.uuid4().hex


class SessionManager:
    """Credential and session-token lifecycle for password accounts.

    Usage:
        manager = SessionManager(store, PasswordHasher(10), TokenCodec(settings))
        result = manager.signup("a@x.com", "password123!", "A")
        result = manager.refresh(result.account.id, result.tokens.refresh_token)
    """

    def __init__(self, store: CredentialStore, hasher: PasswordHasher, codec: TokenCodec) -> None:
        self.store = store
        self.hasher = hasher
        self.codec = codec

    # ------------------------------------------------------------------
    # Signup / login
    # ------------------------------------------------------------------

    def signup(self, email: str, password: str, display_name: str) -> AuthResult:
        """Create a password account and open its first session.

        The account id is minted up front so the token pair and its refresh
        hash are ready before the insert; the account row and its session
        land in one write.

        Raises:
            DuplicateEmail: email already registered (including a racing signup).
        """
        email = normalize_email(email)
        if self.store.find_by_email(email) is not None:
            raise DuplicateEmail()

        account_id = new_account_id()
        tokens = self.codec.issue_pair(account_id, email)
        account = self.store.create_account(
            Account(
                id=account_id,
                email=email,
                display_name=display_name,
                password_hash=self.hasher.hash(password),
                refresh_token_hash=self.hasher.hash(tokens.refresh_token),
            )
        )
        logger.info("Account %s created via signup", account.id)
        return AuthResult(account=account.summary(), tokens=tokens)

    def login(self, email: str, password: str) -> AuthResult:
        """Verify a password and replace any existing session with a new one.

        Unknown email, federation-only account, and wrong password all raise
        the same InvalidCredentials. bcrypt runs in every branch so response
        time does not reveal which one applied [C1].
        """
        account = self.store.find_by_email(email)
        if account is None or account.password_hash is None:
            self.hasher.burn(password)
            raise InvalidCredentials()
        if not self.hasher.verify(password, account.password_hash):
            raise InvalidCredentials()

        result = self.open_session(account)
        logger.info("Account %s logged in", account.id)
        return result

    def open_session(self, account: Account) -> AuthResult:
        """Issue a fresh pair and overwrite the stored refresh hash.

        Shared by login and federation login. Any previously issued refresh
        token stops matching the moment the write lands.
        """
        tokens = self.codec.issue_pair(account.id, account.email)
        new_hash = self.hasher.hash(tokens.refresh_token)
        if not self.store.update_refresh_hash(account.id, new_hash):
            # Account vanished between read and write; the core never deletes.
            raise InvalidCredentials()
        return AuthResult(account=account.summary(), tokens=tokens)

    # ------------------------------------------------------------------
    # Validate
    # ------------------------------------------------------------------

    def validate(self, account_id: str) -> AccountSummary:
        """Return the public profile for the subject of a verified access token."""
        account = self.store.find_by_id(account_id)
        if account is None:
            raise NotFound()
        return account.summary()

    def validate_token(self, access_token: str) -> AccountSummary:
        """Verify an access token, then resolve its subject.

        Raises TokenInvalid / TokenExpired from the codec, NotFound from validate().
        """
        claims = self.codec.verify(access_token, TokenContext.ACCESS)
        return self.validate(claims.subject)

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    def refresh(self, account_id: str, presented_refresh_token: str) -> AuthResult:
        """Rotate: exchange the current refresh token for a brand-new pair.

        The presented token's signature and expiry must already be verified;
        this checks possession against server state only.

        Raises:
            AccessDenied: no active session, token does not match the stored
                hash (superseded, revoked, or foreign), or a concurrent
                rotation won the swap.
        """
        account = self.store.find_by_id(account_id)
        if account is None:
            raise AccessDenied()

        state = account.session
        if not isinstance(state, ActiveSession):
            logger.info("Refresh rejected for account %s: no active session", account_id)
            raise AccessDenied()
        if not self.hasher.verify(presented_refresh_token, state.refresh_token_hash):
            logger.warning(
                "Refresh rejected for account %s: token does not match current session (possible reuse)",
                account_id,
            )
            raise AccessDenied()

        tokens = self.codec.issue_pair(account.id, account.email)
        new_hash = self.hasher.hash(tokens.refresh_token)
        if not self.store.update_refresh_hash(account.id, new_hash, expected_hash=state.refresh_token_hash):
            logger.warning("Refresh rejected for account %s: concurrent rotation already consumed token", account_id)
            raise AccessDenied()

        logger.debug("Rotated refresh token for account %s", account_id)
        return AuthResult(account=account.summary(), tokens=tokens)

    def refresh_from_token(self, refresh_token: str) -> AuthResult:
        """Verify a refresh token with the codec, then rotate it.

        Raises TokenInvalid / TokenExpired before any store access.
        """
        claims = self.codec.verify(refresh_token, TokenContext.REFRESH)
        return self.refresh(claims.subject, refresh_token)

    # ------------------------------------------------------------------
    # Logout
    # ------------------------------------------------------------------

    def logout(self, account_id: str) -> None:
        """Drop the account's session. Succeeds silently if there is none."""
        self.store.clear_refresh_hash(account_id)
        logger.info("Account %s logged out", account_id)

    def logout_from_token(self, access_token: str) -> None:
        claims = self.codec.verify(access_token, TokenContext.ACCESS)
        self.logout(claims.subject)
