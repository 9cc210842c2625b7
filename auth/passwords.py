"""
auth/passwords.py -- Salted one-way hashing for passwords and refresh tokens.

Security design decisions:
  bcrypt directly, no passlib wrapper. passlib's wrap-bug detection feeds
  bcrypt a secret longer than 72 bytes, which bcrypt 4.x+ rejects outright.

  72-byte window: bcrypt only reads the first 72 bytes of its input, and
  current releases raise on anything longer. A signed refresh token is several
  hundred bytes and its first 72 bytes (JWT header plus the start of the
  payload) are nearly identical across tokens for the same account. Every
  secret is therefore pre-digested with SHA-256 and base64-encoded (44 bytes,
  no NUL bytes) before bcrypt sees it, the same construction as passlib's
  bcrypt_sha256. Passwords and refresh tokens go through the same path.

  Timing equalization [C1]: burn() runs a full bcrypt check against a dummy
  hash so a login for an unknown email costs the same as a wrong password.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import base64
import hashlib

import bcrypt


def _digest(secret: str) -> bytes:
    return base64.b64encode(hashlib.sha256(secret.encode("utf-8")).digest())


class PasswordHasher:
    """bcrypt-SHA256 hasher with a fixed, configuration-owned cost factor.

    Usage:
        hasher = PasswordHasher(rounds=settings.bcrypt_rounds)
        stored = hasher.hash("password123!")
        hasher.verify("password123!", stored)  # True
    """

    def __init__(self, rounds: int = 10) -> None:
        self.rounds = rounds
        # Computed once so the first unknown-email login is not measurably
        # slower than later ones.
        self._dummy_hash = self.hash("sessiongate_timing_dummy")

    def hash(self, plaintext: str) -> str:
        return bcrypt.hashpw(_digest(plaintext), bcrypt.gensalt(rounds=self.rounds)).decode("ascii")

    def verify(self, plaintext: str, hashed: str | None) -> bool:
        """Return True if plaintext matches hashed. Never raises.

        A None, truncated, or otherwise malformed hash is a plain mismatch.
        """
        if not hashed:
            return False
        try:
            return bcrypt.checkpw(_digest(plaintext), hashed.encode("ascii"))
        except (ValueError, TypeError, UnicodeEncodeError):
            return False

    def burn(self, plaintext: str) -> None:
        """Spend one bcrypt verification without a real hash to compare against."""
        self.verify(plaintext, self._dummy_hash)
