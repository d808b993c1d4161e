"""Pydantic models mapping to the GeniePay database tables."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from geniepay.wallet.address import normalize_address


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------

class AccountRecord(BaseModel):
    """Maps to the ``wallet_users`` table. One row per wallet."""

    id: str = Field(default_factory=_new_id)
    wallet_address: str
    terms_accepted: bool = False
    terms_version: str = ""
    last_login: datetime = Field(default_factory=utcnow)
    signature_nonce: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("wallet_address")
    @classmethod
    def _normalize(cls, value: str) -> str:
        return normalize_address(value)


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------

class TransactionStatus(str, Enum):
    BROADCAST = "broadcast"
    CONFIRMED = "confirmed"
    FAILED = "failed"


_ALLOWED_STATUS_CHANGES: dict[TransactionStatus, set[TransactionStatus]] = {
    TransactionStatus.BROADCAST: {TransactionStatus.CONFIRMED, TransactionStatus.FAILED},
    TransactionStatus.CONFIRMED: set(),
    TransactionStatus.FAILED: set(),
}


class TransactionRecord(BaseModel):
    """Maps to the ``transactions`` table."""

    hash: str
    sender: str
    recipient: str
    amount: str  # ether, stored as string to preserve decimal precision
    token: str = "ETH"
    chain: str = "sepolia"
    status: TransactionStatus = TransactionStatus.BROADCAST
    block_number: Optional[int] = None
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    confirmed_at: Optional[datetime] = None

    @field_validator("sender", "recipient")
    @classmethod
    def _normalize(cls, value: str) -> str:
        return normalize_address(value)

    def can_move_to(self, status: TransactionStatus) -> bool:
        return status in _ALLOWED_STATUS_CHANGES[self.status]

    def mark_confirmed(self, block_number: int | None) -> None:
        self._move_to(TransactionStatus.CONFIRMED)
        self.block_number = block_number
        self.confirmed_at = utcnow()

    def mark_failed(self, error: str) -> None:
        self._move_to(TransactionStatus.FAILED)
        self.error = error

    def _move_to(self, status: TransactionStatus) -> None:
        if not self.can_move_to(status):
            raise ValueError(
                f"Transaction {self.hash} is '{self.status.value}', cannot become '{status.value}'."
            )
        self.status = status
