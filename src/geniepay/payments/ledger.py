"""Persistent history of outgoing transfers (``transactions`` table)."""

from __future__ import annotations

import logging
from typing import Optional

from geniepay.storage.database import Database
from geniepay.storage.models import TransactionRecord, TransactionStatus
from geniepay.wallet.address import normalize_address

logger = logging.getLogger("geniepay.payments.ledger")


class TransactionLedger:
    """Stores :class:`TransactionRecord` rows keyed by transaction hash."""

    def __init__(self, db: Database) -> None:
        self.db = db

    async def record(self, tx: TransactionRecord) -> None:
        await self.db.execute(
            "INSERT INTO transactions "
            "(hash, sender, recipient, amount, token, chain, status, "
            "block_number, error, created_at, confirmed_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                tx.hash,
                tx.sender,
                tx.recipient,
                tx.amount,
                tx.token,
                tx.chain,
                tx.status.value,
                tx.block_number,
                tx.error,
                tx.created_at.isoformat(),
                tx.confirmed_at.isoformat() if tx.confirmed_at else None,
            ),
        )
        logger.info(f"Recorded transfer {tx.hash} ({tx.amount} {tx.token} -> {tx.recipient})")

    async def update(self, tx: TransactionRecord) -> None:
        """Persist the status fields of an already recorded transfer."""
        await self.db.execute(
            "UPDATE transactions SET status = ?, block_number = ?, error = ?, confirmed_at = ? "
            "WHERE hash = ?",
            (
                tx.status.value,
                tx.block_number,
                tx.error,
                tx.confirmed_at.isoformat() if tx.confirmed_at else None,
                tx.hash,
            ),
        )

    async def get(self, tx_hash: str) -> Optional[TransactionRecord]:
        row = await self.db.fetch_one("SELECT * FROM transactions WHERE hash = ?", (tx_hash,))
        return TransactionRecord.model_validate(row) if row else None

    async def history(
        self,
        sender: str | None = None,
        status: TransactionStatus | None = None,
        limit: int = 50,
    ) -> list[TransactionRecord]:
        """Most recent transfers first, optionally filtered."""
        clauses: list[str] = []
        params: list = []
        if sender:
            clauses.append("sender = ?")
            params.append(normalize_address(sender))
        if status is not None:
            clauses.append("status = ?")
            params.append(status.value)
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = await self.db.fetch_all(
            f"SELECT * FROM transactions{where} ORDER BY created_at DESC LIMIT ?",
            (*params, limit),
        )
        return [TransactionRecord.model_validate(r) for r in rows]
