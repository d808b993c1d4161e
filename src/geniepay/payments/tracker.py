"""Outgoing transfer tracking: broadcast, confirm, then refresh the balance."""

from __future__ import annotations

import asyncio
import inspect
import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Optional

from web3 import Web3

from geniepay.config import PaymentConfig
from geniepay.errors import (
    GeniePayError,
    NoWalletConnected,
    TransactionBroadcastFailed,
    TransactionConfirmationFailed,
    UserRejected,
    is_user_rejection,
)
from geniepay.payments.balance import BalanceCache
from geniepay.payments.ledger import TransactionLedger
from geniepay.storage.models import TransactionRecord
from geniepay.wallet.address import is_valid_address, normalize_address
from geniepay.wallet.chains import Chain, get_chain_by_id
from geniepay.wallet.observer import WalletEventObserver
from geniepay.wallet.signer import WalletSigner

logger = logging.getLogger("geniepay.payments.tracker")

SuccessCallback = Callable[[str], Any]
ErrorCallback = Callable[[GeniePayError], Any]


async def _invoke(callback: Optional[Callable], arg: Any) -> None:
    if callback is None:
        return
    try:
        result = callback(arg)
        if inspect.isawaitable(result):
            await result
    except Exception as e:
        logger.error(f"Payment callback error: {e}")


def parse_amount(amount: str | Decimal) -> int:
    """Convert a positive ether amount to wei.

    Raises :class:`ValueError` for anything that is not a positive number.
    """
    try:
        value = Decimal(str(amount).strip())
    except InvalidOperation as exc:
        raise ValueError(f"Invalid amount: {amount!r}") from exc
    if not value.is_finite() or value <= 0:
        raise ValueError(f"Amount must be greater than zero, got {amount!r}")
    wei = Web3.to_wei(value, "ether")
    if wei <= 0:
        raise ValueError(f"Amount {amount!r} is smaller than 1 wei")
    return int(wei)


class TransactionTracker:
    """Sends one value transfer at a time and follows it to confirmation.

    Flags mirror the progress of the most recent transfer: ``is_sending``
    while the signer is prompting, ``is_confirming`` while waiting for the
    receipt, ``is_confirmed`` once mined successfully. A new
    :meth:`send_payment` resets them; watchers for older transfers keep
    running but no longer touch the flags.
    """

    def __init__(
        self,
        observer: WalletEventObserver,
        signer: WalletSigner,
        balance_cache: BalanceCache,
        chain: Chain,
        config: PaymentConfig,
        ledger: TransactionLedger | None = None,
    ) -> None:
        self.observer = observer
        self.signer = signer
        self.balance_cache = balance_cache
        self.chain = chain
        self.config = config
        self.ledger = ledger

        self._sending = False
        self._confirming = False
        self._confirmed = False
        self._error: GeniePayError | None = None
        self._current: TransactionRecord | None = None
        self._watchers: dict[str, asyncio.Task] = {}

    # ------------------------------------------------------------------
    # Read-only view
    # ------------------------------------------------------------------

    @property
    def is_sending(self) -> bool:
        return self._sending

    @property
    def is_confirming(self) -> bool:
        return self._confirming

    @property
    def is_confirmed(self) -> bool:
        return self._confirmed

    @property
    def is_processing(self) -> bool:
        return self._sending or self._confirming

    @property
    def tx_hash(self) -> str | None:
        return self._current.hash if self._current else None

    @property
    def error(self) -> GeniePayError | None:
        return self._error

    @property
    def transaction(self) -> TransactionRecord | None:
        return self._current.model_copy() if self._current else None

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    def reset(self) -> None:
        self._sending = False
        self._confirming = False
        self._confirmed = False
        self._error = None
        self._current = None

    async def send_payment(
        self,
        recipient: str,
        amount: str | Decimal,
        on_success: SuccessCallback | None = None,
        on_error: ErrorCallback | None = None,
    ) -> str | None:
        """Submit a native transfer of *amount* ether to *recipient*.

        Returns the transaction hash once broadcast, or ``None`` if it was
        never broadcast (the reason goes to ``on_error`` and :attr:`error`).
        Confirmation continues in the background.
        """
        self.reset()

        sender = self.observer.address
        if sender is None:
            await self._fail(NoWalletConnected("No wallet connected"), on_error)
            return None
        wallet_chain_id = self.observer.chain_id
        if wallet_chain_id is not None and wallet_chain_id != self.chain.chain_id:
            wallet_chain = get_chain_by_id(wallet_chain_id)
            current = wallet_chain.display_name if wallet_chain else f"unsupported chain {wallet_chain_id}"
            await self._fail(
                TransactionBroadcastFailed(
                    f"Wallet is on {current}; switch to {self.chain.display_name} to pay."
                ),
                on_error,
            )
            return None
        if not recipient or not is_valid_address(normalize_address(recipient)):
            await self._fail(
                TransactionBroadcastFailed(f"Invalid recipient address: {recipient!r}"), on_error
            )
            return None
        try:
            value_wei = parse_amount(amount)
        except ValueError as exc:
            await self._fail(TransactionBroadcastFailed(str(exc)), on_error)
            return None

        self._sending = True
        try:
            tx_hash = await self.signer.send_value_transfer(
                Web3.to_checksum_address(normalize_address(recipient)), value_wei
            )
        except Exception as exc:
            self._sending = False
            if is_user_rejection(exc):
                error: GeniePayError = UserRejected("Transaction was rejected in the wallet.")
            elif isinstance(exc, TransactionBroadcastFailed):
                error = exc
            else:
                error = TransactionBroadcastFailed(f"Transaction failed to send: {exc}")
            logger.warning(f"Transfer from {sender} to {recipient} not sent: {error}")
            await self._fail(error, on_error)
            return None

        record = TransactionRecord(
            hash=tx_hash,
            sender=sender,
            recipient=recipient,
            amount=str(Decimal(str(amount).strip())),
            token=self.chain.native_symbol,
            chain=self.chain.name,
        )
        self._current = record
        self._sending = False
        self._confirming = True
        logger.info(f"Transfer {tx_hash} broadcast: {record.amount} {record.token} -> {record.recipient}")

        await self._save(record, new=True)
        await _invoke(on_success, tx_hash)

        self._watchers[tx_hash] = asyncio.create_task(self._watch(record, on_error))
        return tx_hash

    async def wait_until_settled(self, tx_hash: str | None = None) -> None:
        """Wait for the watcher of *tx_hash* (default: the current transfer)."""
        tx_hash = tx_hash or self.tx_hash
        task = self._watchers.get(tx_hash) if tx_hash else None
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    async def teardown(self) -> None:
        """Cancel all confirmation watchers and pending balance refreshes."""
        watchers = list(self._watchers.values())
        self._watchers.clear()
        for task in watchers:
            task.cancel()
        if watchers:
            await asyncio.gather(*watchers, return_exceptions=True)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _fail(self, error: GeniePayError, on_error: ErrorCallback | None) -> None:
        self._sending = False
        self._confirming = False
        self._error = error
        await _invoke(on_error, error)

    async def _save(self, record: TransactionRecord, *, new: bool = False) -> None:
        if self.ledger is None:
            return
        try:
            if new:
                await self.ledger.record(record)
            else:
                await self.ledger.update(record)
        except Exception as e:
            logger.error(f"Could not save transfer {record.hash} to the ledger: {e}")

    async def _wait_for_receipt(self, tx_hash: str) -> dict:
        timeout = self.config.confirmation_timeout_seconds
        if timeout <= 0:
            return await self.signer.wait_for_receipt(tx_hash)
        try:
            return await asyncio.wait_for(self.signer.wait_for_receipt(tx_hash), timeout)
        except asyncio.TimeoutError as exc:
            raise TransactionConfirmationFailed(
                f"No receipt for {tx_hash} after {timeout:g}s."
            ) from exc

    async def _watch(self, record: TransactionRecord, on_error: ErrorCallback | None) -> None:
        try:
            try:
                receipt = await self._wait_for_receipt(record.hash)
            except asyncio.CancelledError:
                raise
            except TransactionConfirmationFailed as exc:
                await self._confirmation_failed(record, exc, on_error)
                return
            except Exception as exc:
                await self._confirmation_failed(
                    record, TransactionConfirmationFailed(f"Transaction failed: {exc}"), on_error
                )
                return

            if receipt.get("status") != 1:
                await self._confirmation_failed(
                    record,
                    TransactionConfirmationFailed(f"Transaction {record.hash} reverted."),
                    on_error,
                )
                return

            record.mark_confirmed(receipt.get("blockNumber"))
            if self._current is record:
                self._confirming = False
                self._confirmed = True
            logger.info(f"Transfer {record.hash} confirmed in block {record.block_number}")
            await self._save(record)

            # Give the node a moment to reflect the new balance.
            await asyncio.sleep(self.config.settle_delay_seconds)
            await self.balance_cache.refresh()
        finally:
            self._watchers.pop(record.hash, None)

    async def _confirmation_failed(
        self,
        record: TransactionRecord,
        error: TransactionConfirmationFailed,
        on_error: ErrorCallback | None,
    ) -> None:
        record.mark_failed(str(error))
        logger.warning(f"Transfer {record.hash} failed: {error}")
        await self._save(record)
        if self._current is record:
            self._confirming = False
            self._error = error
        await _invoke(on_error, error)
