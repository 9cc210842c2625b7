"""Unit tests for auth/sessions.py -- the session state machine.

Covers:
- signup: token subject is the new account id; validate succeeds; duplicate email
- login: wrong password, unknown email, federation-only account -> same InvalidCredentials
- login supersedes the previous session's refresh token
- refresh rotation is single-use; a concurrent loser gets AccessDenied
- logout revokes the refresh token and is idempotent
- validate: NotFound for unknown ids; never exposes hashes
- token-taking entry points verify with the codec first
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from auth.errors import AccessDenied, DuplicateEmail, InvalidCredentials, NotFound, TokenExpired, TokenInvalid
from auth.models import Account, AccountSummary, ActiveSession, NoSession, TokenContext
from auth.sessions import SessionManager
from auth.tokens import TokenCodec
from conftest import make_settings


def _signup(sessions: SessionManager, email: str = "a@x.com"):
    return sessions.signup(email, "password123!", "A")


class TestSignup:
    def test_subject_is_new_account_id(self, sessions: SessionManager) -> None:
        result = _signup(sessions)
        claims = sessions.codec.verify(result.tokens.access_token, TokenContext.ACCESS)
        assert claims.subject == result.account.id
        assert claims.email == "a@x.com"
        assert sessions.validate(claims.subject) == result.account

    def test_opens_active_session(self, sessions: SessionManager) -> None:
        result = _signup(sessions)
        account = sessions.store.find_by_id(result.account.id)
        assert isinstance(account.session, ActiveSession)
        assert sessions.hasher.verify(result.tokens.refresh_token, account.session.refresh_token_hash)
        assert sessions.hasher.verify("password123!", account.password_hash)

    def test_duplicate_email(self, sessions: SessionManager) -> None:
        _signup(sessions)
        with pytest.raises(DuplicateEmail):
            sessions.signup("A@X.COM ", "otherpass123", "B")

    def test_email_normalized(self, sessions: SessionManager) -> None:
        result = sessions.signup("  Mixed@Case.Com", "password123!", "M")
        assert result.account.email == "mixed@case.com"


class TestLogin:
    def test_scenario(self, sessions: SessionManager) -> None:
        """signup -> wrong password -> correct password supersedes signup session."""
        signup = _signup(sessions)
        with pytest.raises(InvalidCredentials):
            sessions.login("a@x.com", "wrong-password")

        login = sessions.login("a@x.com", "password123!")
        assert login.account.id == signup.account.id
        assert login.tokens.refresh_token != signup.tokens.refresh_token

        with pytest.raises(AccessDenied):
            sessions.refresh(signup.account.id, signup.tokens.refresh_token)
        sessions.refresh(login.account.id, login.tokens.refresh_token)

    def test_email_lookup_case_insensitive(self, sessions: SessionManager) -> None:
        _signup(sessions)
        assert sessions.login("A@X.com", "password123!").account.email == "a@x.com"

    def test_enumeration_safe_errors(self, sessions: SessionManager) -> None:
        """Unknown email, OAuth-only account, and wrong password are indistinguishable."""
        _signup(sessions)
        sessions.store.create_account(Account(id="fed1", email="fed@x.com", display_name="F"))

        errors = []
        for email, password in (("nobody@x.com", "password123!"), ("fed@x.com", "password123!"), ("a@x.com", "nope")):
            with pytest.raises(InvalidCredentials) as exc_info:
                sessions.login(email, password)
            errors.append((type(exc_info.value), exc_info.value.message, exc_info.value.code))
        assert len(set(errors)) == 1

    def test_unknown_email_still_runs_bcrypt(self, sessions: SessionManager) -> None:
        with patch.object(sessions.hasher, "burn", wraps=sessions.hasher.burn) as burn:
            with pytest.raises(InvalidCredentials):
                sessions.login("nobody@x.com", "password123!")
        burn.assert_called_once_with("password123!")


class TestRefresh:
    def test_rotation_is_single_use(self, sessions: SessionManager) -> None:
        signup = _signup(sessions)
        rotated = sessions.refresh(signup.account.id, signup.tokens.refresh_token)
        assert rotated.tokens.refresh_token != signup.tokens.refresh_token

        with pytest.raises(AccessDenied):
            sessions.refresh(signup.account.id, signup.tokens.refresh_token)
        # The new token still works exactly once.
        sessions.refresh(signup.account.id, rotated.tokens.refresh_token)

    def test_no_session(self, sessions: SessionManager) -> None:
        signup = _signup(sessions)
        sessions.logout(signup.account.id)
        with pytest.raises(AccessDenied):
            sessions.refresh(signup.account.id, signup.tokens.refresh_token)

    def test_unknown_account(self, sessions: SessionManager) -> None:
        with pytest.raises(AccessDenied):
            sessions.refresh("ghost", "whatever")

    def test_foreign_token(self, sessions: SessionManager) -> None:
        first = _signup(sessions)
        second = _signup(sessions, email="b@x.com")
        with pytest.raises(AccessDenied):
            sessions.refresh(first.account.id, second.tokens.refresh_token)

    def test_reuse_is_logged(self, sessions: SessionManager, caplog: pytest.LogCaptureFixture) -> None:
        signup = _signup(sessions)
        sessions.refresh(signup.account.id, signup.tokens.refresh_token)
        with caplog.at_level(logging.WARNING, logger="sessiongate.auth.sessions"):
            with pytest.raises(AccessDenied):
                sessions.refresh(signup.account.id, signup.tokens.refresh_token)
        assert "possible reuse" in caplog.text
        assert signup.tokens.refresh_token not in caplog.text

    def test_lost_race_is_access_denied(self, sessions: SessionManager) -> None:
        """Both requests read the same hash; the second swap must fail."""
        signup = _signup(sessions)
        account_id = signup.account.id
        store = sessions.store
        real_update = store.update_refresh_hash

        def racing_update(aid, new_hash, expected_hash=None):
            # A competing rotation lands between our verify and our write.
            real_update(aid, "competitor-hash")
            return real_update(aid, new_hash, expected_hash=expected_hash)

        with patch.object(store, "update_refresh_hash", side_effect=racing_update):
            with pytest.raises(AccessDenied):
                sessions.refresh(account_id, signup.tokens.refresh_token)
        assert store.find_by_id(account_id).refresh_token_hash == "competitor-hash"

    def test_refresh_from_token_verifies_first(self, sessions: SessionManager) -> None:
        signup = _signup(sessions)
        with pytest.raises(TokenInvalid):
            sessions.refresh_from_token(signup.tokens.access_token)
        result = sessions.refresh_from_token(signup.tokens.refresh_token)
        assert result.account.id == signup.account.id

    def test_refresh_from_expired_token(self, store, hasher) -> None:
        settings = make_settings(refresh_token_expire_seconds=1)
        past = datetime.now(timezone.utc) - timedelta(hours=1)
        old = SessionManager(store, hasher, TokenCodec(settings, clock=lambda: past))
        signup = old.signup("a@x.com", "password123!", "A")
        now_manager = SessionManager(store, hasher, TokenCodec(settings))
        with pytest.raises(TokenExpired):
            now_manager.refresh_from_token(signup.tokens.refresh_token)


class TestLogout:
    def test_logout_revokes(self, sessions: SessionManager) -> None:
        signup = _signup(sessions)
        sessions.logout(signup.account.id)
        assert sessions.store.find_by_id(signup.account.id).session == NoSession()
        with pytest.raises(AccessDenied):
            sessions.refresh(signup.account.id, signup.tokens.refresh_token)

    def test_idempotent(self, sessions: SessionManager) -> None:
        signup = _signup(sessions)
        sessions.logout(signup.account.id)
        sessions.logout(signup.account.id)
        sessions.logout("ghost")

    def test_logout_from_token(self, sessions: SessionManager) -> None:
        signup = _signup(sessions)
        sessions.logout_from_token(signup.tokens.access_token)
        assert sessions.store.find_by_id(signup.account.id).refresh_token_hash is None

    def test_login_after_logout(self, sessions: SessionManager) -> None:
        signup = _signup(sessions)
        sessions.logout(signup.account.id)
        login = sessions.login("a@x.com", "password123!")
        sessions.refresh(login.account.id, login.tokens.refresh_token)


class TestValidate:
    def test_not_found(self, sessions: SessionManager) -> None:
        with pytest.raises(NotFound):
            sessions.validate("ghost")

    def test_public_projection(self, sessions: SessionManager) -> None:
        signup = _signup(sessions)
        summary = sessions.validate(signup.account.id)
        assert isinstance(summary, AccountSummary)
        assert not hasattr(summary, "password_hash")
        assert not hasattr(summary, "refresh_token_hash")
        assert (summary.id, summary.email, summary.display_name) == (signup.account.id, "a@x.com", "A")

    def test_validate_token(self, sessions: SessionManager) -> None:
        signup = _signup(sessions)
        assert sessions.validate_token(signup.tokens.access_token).id == signup.account.id
        with pytest.raises(TokenInvalid):
            sessions.validate_token(signup.tokens.refresh_token)
