"""GeniePay storage layer -- async SQLite database, models and account directory."""

from geniepay.storage.accounts import (
    AccountDirectory,
    CachedAccountDirectory,
    SqliteAccountDirectory,
)
from geniepay.storage.database import Database, get_database
from geniepay.storage.models import AccountRecord, TransactionRecord, TransactionStatus

__all__ = [
    "Database",
    "get_database",
    "AccountDirectory",
    "CachedAccountDirectory",
    "SqliteAccountDirectory",
    "AccountRecord",
    "TransactionRecord",
    "TransactionStatus",
]
