"""Outgoing transfers and the connected wallet's balance."""

from geniepay.payments.balance import BalanceCache, BalanceSnapshot
from geniepay.payments.ledger import TransactionLedger
from geniepay.payments.tracker import TransactionTracker

__all__ = ["BalanceCache", "BalanceSnapshot", "TransactionLedger", "TransactionTracker"]
