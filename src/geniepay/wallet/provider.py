"""Web3 provider for the configured EVM network."""

from __future__ import annotations

import logging

from eth_account.signers.local import LocalAccount
from web3 import Web3
from web3.exceptions import TransactionNotFound
from web3.middleware import ExtraDataToPOAMiddleware

from geniepay.wallet.address import to_checksum
from geniepay.wallet.chains import Chain

logger = logging.getLogger("geniepay.wallet.provider")


class Web3Provider:
    """Blocking JSON-RPC access to one chain.

    Callers on the event loop should run these methods in a worker thread.
    """

    def __init__(self, chain: Chain, rpc_url: str | None = None) -> None:
        self.chain = chain
        self.rpc_url = rpc_url or chain.rpc_url
        self._w3: Web3 | None = None

    @property
    def w3(self) -> Web3:
        """Lazily build the Web3 instance.

        Injects POA middleware for non-mainnet chains.
        """
        if self._w3 is None:
            w3 = Web3(Web3.HTTPProvider(self.rpc_url))
            if self.chain.chain_id != 1:
                w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
            self._w3 = w3
        return self._w3

    def get_balance(self, address: str) -> int:
        """Native balance of *address* in wei."""
        return self.w3.eth.get_balance(to_checksum(address))

    def block_number(self) -> int:
        return self.w3.eth.block_number

    def get_receipt(self, tx_hash: str) -> dict | None:
        """Return the receipt for *tx_hash*, or ``None`` while still pending."""
        try:
            receipt = self.w3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            return None
        return dict(receipt)

    def send_value_transfer(self, account: LocalAccount, to_address: str, value_wei: int) -> str:
        """Build, sign, and send a native-token transfer.

        Uses EIP-1559 fee parameters with a legacy gas price fallback.

        Returns the transaction hash as a ``0x`` hex string.
        """
        w3 = self.w3
        tx: dict = {
            "to": to_checksum(to_address),
            "value": value_wei,
            "nonce": w3.eth.get_transaction_count(account.address),
            "chainId": self.chain.chain_id,
        }

        try:
            latest = w3.eth.get_block("latest")
            base_fee = latest.get("baseFeePerGas")
            if base_fee is None:
                raise ValueError("No baseFeePerGas")
            max_priority = Web3.to_wei(1.5, "gwei")
            tx["maxFeePerGas"] = base_fee * 2 + max_priority
            tx["maxPriorityFeePerGas"] = max_priority
            tx["gas"] = w3.eth.estimate_gas(tx)
        except Exception:
            logger.debug(f"EIP-1559 fees unavailable on {self.chain.name}, using legacy gas price")
            tx.pop("maxFeePerGas", None)
            tx.pop("maxPriorityFeePerGas", None)
            tx["gasPrice"] = w3.eth.gas_price
            tx["gas"] = w3.eth.estimate_gas(tx)

        signed = account.sign_transaction(tx)
        tx_hash = w3.eth.send_raw_transaction(signed.raw_transaction)
        return Web3.to_hex(tx_hash)
