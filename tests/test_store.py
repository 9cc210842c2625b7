"""Contract tests for auth/store.py -- run against both CredentialStore implementations.

Covers:
- create/find by id and by email (case-insensitive), absent records -> None
- duplicate email -> DuplicateEmail
- account + linked identity created atomically; duplicate identity -> DuplicateIdentity
  and no orphan account row
- update_refresh_hash: unconditional overwrite and compare-and-swap
- clear_refresh_hash is idempotent
- Account.session reflects the stored hash
- MemoryCredentialStore: concurrent compare-and-swap has exactly one winner
"""

from __future__ import annotations

import threading

import pytest

from auth.errors import DuplicateEmail, DuplicateIdentity
from auth.models import Account, ActiveSession, LinkedIdentity, NoSession
from auth.store import MemoryCredentialStore


def _account(account_id: str = "acc1", email: str = "a@x.com", **kwargs) -> Account:
    return Account(id=account_id, email=email, display_name="A", **kwargs)


class TestAccounts:
    def test_create_and_find(self, store) -> None:
        created = store.create_account(_account(password_hash="pw-hash"))
        assert created.created_at

        by_id = store.find_by_id("acc1")
        assert by_id is not None
        assert by_id.email == "a@x.com"
        assert by_id.password_hash == "pw-hash"
        assert by_id.refresh_token_hash is None

    def test_email_normalized(self, store) -> None:
        store.create_account(_account(email="  Mixed@Example.COM "))
        found = store.find_by_email("mixed@example.com")
        assert found is not None
        assert found.email == "mixed@example.com"
        assert store.find_by_email("MIXED@example.com").id == "acc1"

    def test_absent_records_return_none(self, store) -> None:
        assert store.find_by_id("nope") is None
        assert store.find_by_email("nobody@x.com") is None
        assert store.find_linked_identity("naver", "123") is None
        assert store.list_linked_identities("nope") == []

    def test_duplicate_email(self, store) -> None:
        store.create_account(_account())
        with pytest.raises(DuplicateEmail):
            store.create_account(_account(account_id="acc2", email="A@X.com"))


class TestLinkedIdentities:
    def test_created_with_account(self, store) -> None:
        store.create_account(
            _account(),
            linked_identity=LinkedIdentity(provider="naver", provider_id="n-1", account_id="acc1"),
        )
        link = store.find_linked_identity("naver", "n-1")
        assert link is not None
        assert link.account_id == "acc1"
        assert [i.provider_id for i in store.list_linked_identities("acc1")] == ["n-1"]

    def test_duplicate_identity_leaves_no_orphan(self, store) -> None:
        store.create_account(
            _account(),
            linked_identity=LinkedIdentity(provider="naver", provider_id="n-1", account_id="acc1"),
        )
        with pytest.raises(DuplicateIdentity):
            store.create_account(
                _account(account_id="acc2", email="b@x.com"),
                linked_identity=LinkedIdentity(provider="naver", provider_id="n-1", account_id="acc2"),
            )
        assert store.find_by_id("acc2") is None
        assert store.find_by_email("b@x.com") is None

    def test_same_provider_id_different_provider(self, store) -> None:
        store.create_account(
            _account(),
            linked_identity=LinkedIdentity(provider="naver", provider_id="42", account_id="acc1"),
        )
        store.create_account(
            _account(account_id="acc2", email="b@x.com"),
            linked_identity=LinkedIdentity(provider="github", provider_id="42", account_id="acc2"),
        )
        assert store.find_linked_identity("naver", "42").account_id == "acc1"
        assert store.find_linked_identity("github", "42").account_id == "acc2"


class TestRefreshHash:
    def test_unconditional_overwrite(self, store) -> None:
        store.create_account(_account(refresh_token_hash="h1"))
        assert store.update_refresh_hash("acc1", "h2") is True
        assert store.find_by_id("acc1").refresh_token_hash == "h2"

    def test_compare_and_swap(self, store) -> None:
        store.create_account(_account(refresh_token_hash="h1"))
        assert store.update_refresh_hash("acc1", "h2", expected_hash="h1") is True
        # Second swap from the same starting point loses.
        assert store.update_refresh_hash("acc1", "h3", expected_hash="h1") is False
        assert store.find_by_id("acc1").refresh_token_hash == "h2"

    def test_swap_after_clear_fails(self, store) -> None:
        store.create_account(_account(refresh_token_hash="h1"))
        store.clear_refresh_hash("acc1")
        assert store.update_refresh_hash("acc1", "h2", expected_hash="h1") is False
        assert store.find_by_id("acc1").refresh_token_hash is None

    def test_update_missing_account(self, store) -> None:
        assert store.update_refresh_hash("ghost", "h") is False

    def test_clear_is_idempotent(self, store) -> None:
        store.create_account(_account(refresh_token_hash="h1"))
        store.clear_refresh_hash("acc1")
        store.clear_refresh_hash("acc1")
        store.clear_refresh_hash("ghost")
        assert store.find_by_id("acc1").refresh_token_hash is None

    def test_session_state(self, store) -> None:
        store.create_account(_account())
        assert store.find_by_id("acc1").session == NoSession()
        store.update_refresh_hash("acc1", "h1")
        assert store.find_by_id("acc1").session == ActiveSession("h1")


def test_memory_store_returns_copies() -> None:
    store = MemoryCredentialStore()
    store.create_account(_account(refresh_token_hash="h1"))
    copy = store.find_by_id("acc1")
    copy.refresh_token_hash = "tampered"
    assert store.find_by_id("acc1").refresh_token_hash == "h1"


def test_memory_store_concurrent_swap_has_one_winner() -> None:
    store = MemoryCredentialStore()
    store.create_account(_account(refresh_token_hash="h0"))
    barrier = threading.Barrier(8)
    results: list[bool] = []
    lock = threading.Lock()

    def swap(n: int) -> None:
        barrier.wait()
        ok = store.update_refresh_hash("acc1", f"h{n + 1}", expected_hash="h0")
        with lock:
            results.append(ok)

    threads = [threading.Thread(target=swap, args=(n,)) for n in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert results.count(True) == 1
    assert store.find_by_id("acc1").refresh_token_hash != "h0"
