"""
auth/store.py -- SQLAlchemy Core persistence layer for accounts and passkeys.

Pattern: Repository + Data Mapper. AccountStore is the repository;
_row_to_account / _row_to_credential are the mappers. Services never touch
SQL directly.

Async: every query runs on SQLAlchemy's asyncio engine (aiosqlite by
default), so a slow store call suspends only the request that made it.

Credential set: passkeys live in their own table, one row per credential.
append_credential() is a single INSERT in its own transaction, so two
concurrent registrations for the same account both land without a
read-modify-write race. credential_id is UNIQUE; a duplicate insert is
reported as an unacknowledged write (False).

Security:
  All queries use bound parameters. No f-strings in SQL.

Layer rule: no imports from api/ or cache/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from sqlalchemy import Column, ForeignKey, Integer, MetaData, String, Table, Text, event, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine
from sqlalchemy.pool import StaticPool

from auth.models import Account, FidoCredential

logger = logging.getLogger("authgate.store")

_DEFAULT_DB_URL = f"sqlite+aiosqlite:///{Path(__file__).parent / 'authgate.db'}"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_accounts = Table(
    "accounts",
    _metadata,
    Column("id", String(32), primary_key=True),
    Column("username", String(64), nullable=False, unique=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("display_name", String(255), nullable=False),
    Column("password_digest", Text),  # NULL for passkey-only accounts
    Column("created_at", String(32), nullable=False),
)

_credentials = Table(
    "fido_credentials",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),  # insertion order
    Column("account_id", String(32), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("credential_id", String(1024), nullable=False, unique=True),  # base64url
    Column("public_key_cose", Text, nullable=False),  # base64url
    Column("key_type", String(30), nullable=False, server_default="public-key"),
    Column("sign_count", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# SQLite connection setup
# ---------------------------------------------------------------------------


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL and foreign keys per connection.

    SQLite PRAGMAs are not inherited by new connections from the pool. The
    aiosqlite adapter only exposes execute() through a cursor.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _row_to_credential(row) -> FidoCredential:
    return FidoCredential(
        credential_id=row["credential_id"],
        public_key_cose=row["public_key_cose"],
        key_type=row["key_type"],
        sign_count=row["sign_count"],
    )


def _row_to_account(row, credential_rows) -> Account:
    return Account(
        id=row["id"],
        username=row["username"],
        email=row["email"],
        display_name=row["display_name"],
        password_digest=row["password_digest"],
        credentials=tuple(_row_to_credential(c) for c in credential_rows),
        created_at=row["created_at"],
    )


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AccountStore:
    """Repository for Account and FidoCredential entities.

    Usage:
        store = AccountStore("sqlite+aiosqlite:///:memory:")
        await store.initialize()
        await store.create_account(Account(id=uuid4().hex, username="alice", ...))
        account = await store.find_account("alice")
        await store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        engine_args: dict = {}
        if db_url.startswith("sqlite") and ":memory:" in db_url:
            # One shared connection, otherwise every pooled connection
            # would see its own empty in-memory database.
            engine_args["poolclass"] = StaticPool
        self.engine: AsyncEngine = create_async_engine(db_url, **engine_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine.sync_engine, "connect", _set_sqlite_pragmas)

    async def initialize(self) -> None:
        """Create tables if they do not exist. Idempotent."""
        async with self.engine.begin() as conn:
            await conn.run_sync(_metadata.create_all)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def find_account(self, identifier: str) -> Optional[Account]:
        """Resolve identifier as an email, a username, or an account id.

        Identifiers containing "@" are emails (usernames cannot contain "@")
        and are matched case-insensitively; emails are stored lowercased.
        Anything else is tried as a username first, then as an id.
        """
        if not identifier:
            return None
        async with self.engine.connect() as conn:
            if "@" in identifier:
                row = await self._first(conn, _accounts.c.email == identifier.lower())
            else:
                row = await self._first(conn, _accounts.c.username == identifier)
                if row is None:
                    row = await self._first(conn, _accounts.c.id == identifier)
            if row is None:
                return None
            result = await conn.execute(
                select(_credentials)
                .where(_credentials.c.account_id == row["id"])
                .order_by(_credentials.c.id)
            )
            return _row_to_account(row, result.mappings().all())

    @staticmethod
    async def _first(conn: AsyncConnection, condition):
        result = await conn.execute(select(_accounts).where(condition))
        return result.mappings().first()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create_account(self, account: Account) -> bool:
        """Insert a new account. Returns True when the write was acknowledged.

        Raises sqlalchemy.exc.IntegrityError if the username or email already
        exists. Callers treat that as a concurrent sign-up that won the race.
        Credentials on the passed Account are ignored; passkeys are added
        through append_credential().
        """
        async with self.engine.begin() as conn:
            result = await conn.execute(
                _accounts.insert().values(
                    id=account.id,
                    username=account.username,
                    email=account.email,
                    display_name=account.display_name,
                    password_digest=account.password_digest,
                    created_at=account.created_at or _now_iso(),
                )
            )
        return result.rowcount == 1

    async def append_credential(self, account_id: str, credential: FidoCredential) -> bool:
        """Add a passkey to an account. False if the account is gone or the id is taken."""
        try:
            async with self.engine.begin() as conn:
                owner = await conn.execute(select(_accounts.c.id).where(_accounts.c.id == account_id))
                if owner.first() is None:
                    return False
                result = await conn.execute(
                    _credentials.insert().values(
                        account_id=account_id,
                        credential_id=credential.credential_id,
                        public_key_cose=credential.public_key_cose,
                        key_type=credential.key_type,
                        sign_count=credential.sign_count,
                        created_at=_now_iso(),
                    )
                )
        except IntegrityError:
            logger.warning("Rejected duplicate credential id for account %s", account_id)
            return False
        return result.rowcount == 1

    async def update_sign_count(self, credential_id: str, expected: int, sign_count: int) -> bool:
        """Compare-and-set the signature counter for a credential.

        Writes only while the stored counter still equals `expected`, the value
        the assertion was verified against. False means another assertion got
        there first or the credential is gone.
        """
        async with self.engine.begin() as conn:
            result = await conn.execute(
                update(_credentials)
                .where(_credentials.c.credential_id == credential_id)
                .where(_credentials.c.sign_count == expected)
                .values(sign_count=sign_count)
            )
        return result.rowcount == 1

    async def close(self) -> None:
        await self.engine.dispose()
