"""
auth/store.py -- Persistence layer for accounts and linked external identities.

Pattern: Repository + Data Mapper. CredentialStore is the repository contract;
SQLCredentialStore (SQLAlchemy Core) and MemoryCredentialStore (in-process,
lock-protected) implement it. _row_to_account / _row_to_identity are the
mappers. Managers never touch SQL directly.

Contract shared by both implementations:
  - Lookups on absent records return None.
  - Emails are stored and compared normalized (strip + lower).
  - create_account() writes the account and, optionally, its first linked
    identity in ONE transaction. Either both rows exist afterwards or
    neither does.
  - update_refresh_hash(expected_hash=...) is a compare-and-swap. Of two
    racing rotations that read the same hash, exactly one swap succeeds.

Security:
  All queries use bound parameters. No f-strings in SQL.

  UNIQUE(provider, provider_id) lives in SQL here (unlike a nullable-column
  design) because linked_identities rows only exist once linked -- there are
  no NULL pairs to trip SQLite's NULL-distinct rule.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import threading
from dataclasses import replace
from datetime import datetime, timezone
from typing import Protocol

from sqlalchemy import (
    Column,
    ForeignKey,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.errors import DuplicateEmail, DuplicateIdentity
from auth.models import Account, LinkedIdentity


def normalize_email(email: str) -> str:
    return email.strip().lower()


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository contract
# ---------------------------------------------------------------------------


class CredentialStore(Protocol):
    def find_by_email(self, email: str) -> Account | None: ...

    def find_by_id(self, account_id: str) -> Account | None: ...

    def find_linked_identity(self, provider: str, provider_id: str) -> LinkedIdentity | None: ...

    def list_linked_identities(self, account_id: str) -> list[LinkedIdentity]: ...

    def create_account(self, account: Account, linked_identity: LinkedIdentity | None = None) -> Account: ...

    def update_refresh_hash(self, account_id: str, new_hash: str, expected_hash: str | None = None) -> bool: ...

    def clear_refresh_hash(self, account_id: str) -> None: ...

    def close(self) -> None: ...


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_accounts = Table(
    "accounts",
    _metadata,
    Column("id", String(32), primary_key=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("display_name", String(100), nullable=False),
    Column("password_hash", Text),  # NULL for federation-only accounts
    Column("refresh_token_hash", Text),  # NULL = no active session
    Column("avatar_url", Text),
    Column("created_at", String(32), nullable=False),
)

_linked_identities = Table(
    "linked_identities",
    _metadata,
    Column("provider", String(30), nullable=False),
    Column("provider_id", String(255), nullable=False),
    Column("account_id", String(32), ForeignKey("accounts.id"), nullable=False),
    Column("created_at", String(32), nullable=False),
    UniqueConstraint("provider", "provider_id", name="uq_linked_identity"),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers do not block during writes.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# SQLAlchemy implementation
# ---------------------------------------------------------------------------


class SQLCredentialStore:
    """CredentialStore backed by SQLAlchemy Core.

    Usage:
        store = SQLCredentialStore("sqlite:///:memory:")
        store.create_account(Account(id="...", email="a@x.com", display_name="A"))
        account = store.find_by_email("A@X.com")
        store.close()
    """

    def __init__(self, db_url: str = "sqlite:///sessiongate_auth.db") -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Account queries
    # ------------------------------------------------------------------

    def find_by_email(self, email: str) -> Account | None:
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.email == normalize_email(email))).fetchone()
        return _row_to_account(row) if row is not None else None

    def find_by_id(self, account_id: str) -> Account | None:
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.id == account_id)).fetchone()
        return _row_to_account(row) if row is not None else None

    def create_account(self, account: Account, linked_identity: LinkedIdentity | None = None) -> Account:
        """Insert an account (and optionally its first linked identity) atomically.

        engine.begin() commits both inserts together or rolls both back.

        Raises:
            DuplicateIdentity: (provider, provider_id) already linked -- a
                concurrent first-time federation login won.
            DuplicateEmail: the normalized email is already registered.
        """
        created = replace(account, email=normalize_email(account.email), created_at=_now_iso())
        try:
            with self.engine.begin() as conn:
                conn.execute(
                    _accounts.insert().values(
                        id=created.id,
                        email=created.email,
                        display_name=created.display_name,
                        password_hash=created.password_hash,
                        refresh_token_hash=created.refresh_token_hash,
                        avatar_url=created.avatar_url,
                        created_at=created.created_at,
                    )
                )
                if linked_identity is not None:
                    # Probe first: the constraint name in IntegrityError text
                    # is backend-specific, this keeps the error typed.
                    taken = conn.execute(
                        _linked_identities.select().where(
                            (_linked_identities.c.provider == linked_identity.provider)
                            & (_linked_identities.c.provider_id == linked_identity.provider_id)
                        )
                    ).fetchone()
                    if taken is not None:
                        raise DuplicateIdentity()
                    conn.execute(
                        _linked_identities.insert().values(
                            provider=linked_identity.provider,
                            provider_id=linked_identity.provider_id,
                            account_id=created.id,
                            created_at=created.created_at,
                        )
                    )
        except IntegrityError as exc:
            if linked_identity is not None and self.find_linked_identity(
                linked_identity.provider, linked_identity.provider_id
            ):
                raise DuplicateIdentity() from exc
            raise DuplicateEmail() from exc
        return created

    def update_refresh_hash(self, account_id: str, new_hash: str, expected_hash: str | None = None) -> bool:
        """Store new_hash as the account's only valid refresh-token hash.

        expected_hash=None overwrites unconditionally (login). Otherwise the
        write only lands if the stored hash still equals expected_hash, so the
        second of two racing rotations gets False.

        Returns True if a row was updated.
        """
        condition = _accounts.c.id == account_id
        if expected_hash is not None:
            condition = condition & (_accounts.c.refresh_token_hash == expected_hash)
        with self.engine.begin() as conn:
            result = conn.execute(_accounts.update().where(condition).values(refresh_token_hash=new_hash))
        return result.rowcount > 0

    def clear_refresh_hash(self, account_id: str) -> None:
        with self.engine.begin() as conn:
            conn.execute(_accounts.update().where(_accounts.c.id == account_id).values(refresh_token_hash=None))

    # ------------------------------------------------------------------
    # Linked identity queries
    # ------------------------------------------------------------------

    def find_linked_identity(self, provider: str, provider_id: str) -> LinkedIdentity | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                _linked_identities.select().where(
                    (_linked_identities.c.provider == provider) & (_linked_identities.c.provider_id == provider_id)
                )
            ).fetchone()
        return _row_to_identity(row) if row is not None else None

    def list_linked_identities(self, account_id: str) -> list[LinkedIdentity]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                _linked_identities.select()
                .where(_linked_identities.c.account_id == account_id)
                .order_by(_linked_identities.c.created_at)
            ).fetchall()
        return [_row_to_identity(r) for r in rows]

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# In-process implementation
# ---------------------------------------------------------------------------


class MemoryCredentialStore:
    """CredentialStore held in process memory.

    One lock guards every read-modify-write, which gives the same
    compare-and-swap and all-or-nothing creation guarantees as the SQL store.
    Returned Account objects are copies; mutating them never touches the store.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._accounts: dict[str, Account] = {}
        self._by_email: dict[str, str] = {}
        self._identities: dict[tuple[str, str], LinkedIdentity] = {}

    def find_by_email(self, email: str) -> Account | None:
        with self._lock:
            account_id = self._by_email.get(normalize_email(email))
            return replace(self._accounts[account_id]) if account_id else None

    def find_by_id(self, account_id: str) -> Account | None:
        with self._lock:
            account = self._accounts.get(account_id)
            return replace(account) if account else None

    def create_account(self, account: Account, linked_identity: LinkedIdentity | None = None) -> Account:
        created = replace(account, email=normalize_email(account.email), created_at=_now_iso())
        with self._lock:
            if linked_identity is not None and (linked_identity.provider, linked_identity.provider_id) in self._identities:
                raise DuplicateIdentity()
            if created.email in self._by_email or created.id in self._accounts:
                raise DuplicateEmail()
            self._accounts[created.id] = created
            self._by_email[created.email] = created.id
            if linked_identity is not None:
                self._identities[(linked_identity.provider, linked_identity.provider_id)] = replace(
                    linked_identity, account_id=created.id, created_at=created.created_at
                )
        return replace(created)

    def update_refresh_hash(self, account_id: str, new_hash: str, expected_hash: str | None = None) -> bool:
        with self._lock:
            account = self._accounts.get(account_id)
            if account is None:
                return False
            if expected_hash is not None and account.refresh_token_hash != expected_hash:
                return False
            account.refresh_token_hash = new_hash
            return True

    def clear_refresh_hash(self, account_id: str) -> None:
        with self._lock:
            account = self._accounts.get(account_id)
            if account is not None:
                account.refresh_token_hash = None

    def find_linked_identity(self, provider: str, provider_id: str) -> LinkedIdentity | None:
        with self._lock:
            identity = self._identities.get((provider, provider_id))
            return replace(identity) if identity else None

    def list_linked_identities(self, account_id: str) -> list[LinkedIdentity]:
        with self._lock:
            return [replace(i) for i in self._identities.values() if i.account_id == account_id]

    def close(self) -> None:
        with self._lock:
            self._accounts.clear()
            self._by_email.clear()
            self._identities.clear()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_account(row) -> Account:
    return Account(
        id=row.id,
        email=row.email,
        display_name=row.display_name,
        password_hash=row.password_hash,
        refresh_token_hash=row.refresh_token_hash,
        avatar_url=row.avatar_url,
        created_at=row.created_at,
    )


def _row_to_identity(row) -> LinkedIdentity:
    return LinkedIdentity(
        provider=row.provider,
        provider_id=row.provider_id,
        account_id=row.account_id,
        created_at=row.created_at,
    )
