"""Account directory: persistent wallet_users rows keyed by normalized address."""

from __future__ import annotations

import logging
import sqlite3
from abc import ABC, abstractmethod
from typing import Any

from geniepay.errors import AccountCreationFailed, LookupFailed
from geniepay.storage.database import Database
from geniepay.storage.models import AccountRecord, utcnow
from geniepay.wallet.address import normalize_address

logger = logging.getLogger("geniepay.storage.accounts")

_UPDATABLE_FIELDS = {"terms_accepted", "terms_version", "last_login", "signature_nonce"}


class AccountDirectory(ABC):
    """Keyed account store consumed by the sign-in flow."""

    @abstractmethod
    async def lookup_by_address(self, address: str) -> AccountRecord | None:
        ...

    @abstractmethod
    async def insert(self, record: AccountRecord) -> AccountRecord:
        ...

    @abstractmethod
    async def update(self, account_id: str, fields: dict[str, Any]) -> AccountRecord:
        ...

    def invalidate(self, address: str) -> None:
        """Drop any cached lookup for *address*. No-op for uncached stores."""


class SqliteAccountDirectory(AccountDirectory):
    """Stores accounts in the ``wallet_users`` table."""

    def __init__(self, db: Database) -> None:
        self.db = db

    async def lookup_by_address(self, address: str) -> AccountRecord | None:
        try:
            row = await self.db.fetch_one(
                "SELECT * FROM wallet_users WHERE wallet_address = ?",
                (normalize_address(address),),
            )
        except sqlite3.Error as exc:
            raise LookupFailed(f"Account lookup failed: {exc}") from exc
        return AccountRecord.model_validate(row) if row else None

    async def get(self, account_id: str) -> AccountRecord | None:
        try:
            row = await self.db.fetch_one(
                "SELECT * FROM wallet_users WHERE id = ?", (account_id,)
            )
        except sqlite3.Error as exc:
            raise LookupFailed(f"Account lookup failed: {exc}") from exc
        return AccountRecord.model_validate(row) if row else None

    async def insert(self, record: AccountRecord) -> AccountRecord:
        try:
            await self.db.execute(
                "INSERT INTO wallet_users "
                "(id, wallet_address, terms_accepted, terms_version, last_login, "
                "signature_nonce, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    record.id,
                    record.wallet_address,
                    int(record.terms_accepted),
                    record.terms_version,
                    record.last_login.isoformat(),
                    record.signature_nonce,
                    record.created_at.isoformat(),
                    record.updated_at.isoformat(),
                ),
            )
        except sqlite3.Error as exc:
            raise AccountCreationFailed(
                f"Could not create account for {record.wallet_address}: {exc}"
            ) from exc
        logger.info(f"Account {record.id} created for {record.wallet_address}")
        return record

    async def update(self, account_id: str, fields: dict[str, Any]) -> AccountRecord:
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update account fields: {sorted(unknown)}")

        values = {**fields, "updated_at": utcnow()}
        assignments = ", ".join(f"{name} = ?" for name in values)
        params = tuple(_to_column(v) for v in values.values()) + (account_id,)
        try:
            cursor = await self.db.execute(
                f"UPDATE wallet_users SET {assignments} WHERE id = ?", params
            )
        except sqlite3.Error as exc:
            raise LookupFailed(f"Account update failed: {exc}") from exc
        if cursor.rowcount == 0:
            raise LookupFailed(f"Account {account_id} not found.")

        record = await self.get(account_id)
        if record is None:
            raise LookupFailed(f"Account {account_id} not found.")
        return record


def _to_column(value: Any) -> Any:
    if hasattr(value, "isoformat"):
        return value.isoformat()
    if isinstance(value, bool):
        return int(value)
    return value


class CachedAccountDirectory(AccountDirectory):
    """Read-through cache in front of another directory.

    Lookups (including misses) are cached per normalized address until
    :meth:`invalidate` is called. Writes pass straight through and do not
    touch the cache; the caller invalidates after every write.
    """

    def __init__(self, inner: AccountDirectory) -> None:
        self.inner = inner
        self._cache: dict[str, AccountRecord | None] = {}

    async def lookup_by_address(self, address: str) -> AccountRecord | None:
        key = normalize_address(address)
        if key in self._cache:
            cached = self._cache[key]
            return cached.model_copy() if cached else None
        record = await self.inner.lookup_by_address(key)
        self._cache[key] = record
        return record.model_copy() if record else None

    async def insert(self, record: AccountRecord) -> AccountRecord:
        return await self.inner.insert(record)

    async def update(self, account_id: str, fields: dict[str, Any]) -> AccountRecord:
        return await self.inner.update(account_id, fields)

    def invalidate(self, address: str) -> None:
        self._cache.pop(normalize_address(address), None)

    def clear(self) -> None:
        self._cache.clear()
