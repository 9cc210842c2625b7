"""Unit tests for auth/passwords.py -- bcrypt-SHA256 hashing.

Covers:
- hashes are salted (same input, different output) and verify round-trip
- verify() returns False, never raises, on malformed or missing hashes
- secrets longer than bcrypt's 72-byte window are compared in full
- configured cost factor is embedded in the hash
"""

from __future__ import annotations

import pytest

from auth.passwords import PasswordHasher


class TestHashAndVerify:
    def test_salted(self, hasher: PasswordHasher) -> None:
        first = hasher.hash("password123!")
        second = hasher.hash("password123!")
        assert first != second
        assert hasher.verify("password123!", first)
        assert hasher.verify("password123!", second)

    def test_wrong_secret(self, hasher: PasswordHasher) -> None:
        hashed = hasher.hash("password123!")
        assert not hasher.verify("password123?", hashed)
        assert not hasher.verify("", hashed)

    @pytest.mark.parametrize("bad", [None, "", "not-a-hash", "$2b$04$short", "ééé"])
    def test_malformed_hash_is_false(self, hasher: PasswordHasher, bad) -> None:
        assert hasher.verify("password123!", bad) is False

    def test_long_secrets_differ_after_72_bytes(self, hasher: PasswordHasher) -> None:
        """Two refresh-token-sized secrets sharing a 100-byte prefix must not collide."""
        prefix = "x" * 100
        hashed = hasher.hash(prefix + "first")
        assert hasher.verify(prefix + "first", hashed)
        assert not hasher.verify(prefix + "second", hashed)

    def test_cost_factor_in_hash(self) -> None:
        hashed = PasswordHasher(rounds=5).hash("secret")
        assert hashed.startswith("$2b$05$")


def test_burn_does_not_raise(hasher: PasswordHasher) -> None:
    hasher.burn("anything")
