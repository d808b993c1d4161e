"""Async SQLite database layer for GeniePay.

Uses ``aiosqlite`` for non-blocking database access with WAL mode and
dictionary-style row results.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Optional

import aiosqlite


class Database:
    """Thin async wrapper around an SQLite database.

    Parameters
    ----------
    db_path:
        Filesystem path to the SQLite database file.  The file (and any
        intermediate directories) will be created automatically on
        :meth:`connect` if they do not already exist.
    """

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        self._conn: Optional[aiosqlite.Connection] = None

    @property
    def is_connected(self) -> bool:
        return self._conn is not None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Open the database connection, enable WAL mode, and run migrations."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = await aiosqlite.connect(str(self.db_path))
        await self._conn.execute("PRAGMA journal_mode=WAL;")
        self._conn.row_factory = sqlite3.Row
        await self._migrate()

    async def close(self) -> None:
        """Close the database connection gracefully."""
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    # ------------------------------------------------------------------
    # Query helpers
    # ------------------------------------------------------------------

    def _require_conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._conn

    async def execute(self, sql: str, params: tuple = ()) -> aiosqlite.Cursor:
        """Execute a SQL statement and commit.

        Returns the raw ``aiosqlite.Cursor`` so callers can inspect
        ``lastrowid``, ``rowcount``, etc.
        """
        conn = self._require_conn()
        cursor = await conn.execute(sql, params)
        await conn.commit()
        return cursor

    async def fetch_one(self, sql: str, params: tuple = ()) -> Optional[dict]:
        """Execute a query and return the first row as a dict, or ``None``."""
        cursor = await self._require_conn().execute(sql, params)
        row = await cursor.fetchone()
        if row is None:
            return None
        return dict(row)

    async def fetch_all(self, sql: str, params: tuple = ()) -> list[dict]:
        """Execute a query and return all rows as a list of dicts."""
        cursor = await self._require_conn().execute(sql, params)
        rows = await cursor.fetchall()
        return [dict(r) for r in rows]

    # ------------------------------------------------------------------
    # Migrations
    # ------------------------------------------------------------------

    async def _migrate(self) -> None:
        """Create all required tables if they do not already exist."""
        conn = self._require_conn()
        await conn.executescript(
            """\
            CREATE TABLE IF NOT EXISTS wallet_users (
                id TEXT PRIMARY KEY,
                wallet_address TEXT UNIQUE NOT NULL,
                terms_accepted INTEGER NOT NULL DEFAULT 0,
                terms_version TEXT NOT NULL DEFAULT '',
                last_login TIMESTAMP,
                signature_nonce TEXT,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );

            CREATE TABLE IF NOT EXISTS transactions (
                hash TEXT PRIMARY KEY,
                sender TEXT NOT NULL,
                recipient TEXT NOT NULL,
                amount TEXT NOT NULL,
                token TEXT DEFAULT 'ETH',
                chain TEXT NOT NULL,
                status TEXT DEFAULT 'broadcast',
                block_number INTEGER,
                error TEXT,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                confirmed_at TIMESTAMP
            );

            CREATE INDEX IF NOT EXISTS idx_transactions_sender
                ON transactions (sender, created_at);
            """
        )
        await conn.commit()


# ------------------------------------------------------------------
# Convenience factory
# ------------------------------------------------------------------

def get_database(profile_dir: Path, filename: str = "geniepay.db") -> Database:
    """Return a :class:`Database` instance pointing at ``profile_dir/<filename>``.

    The caller is responsible for calling :meth:`Database.connect` before
    using the returned instance.
    """
    return Database(Path(profile_dir) / filename)
