"""External signer interface and a local keystore-backed implementation.

The session core never touches private keys. Everything that needs the
wallet owner's approval (signing a challenge, submitting a transfer) goes
through a :class:`WalletSigner`, and every such call may suspend for as
long as the owner takes to answer.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Awaitable, Callable

from eth_account.messages import encode_defunct
from eth_account.signers.local import LocalAccount
from web3 import Web3

from geniepay.errors import UserRejected
from geniepay.wallet.observer import WalletEventObserver
from geniepay.wallet.provider import Web3Provider

logger = logging.getLogger("geniepay.wallet.signer")

BlockCallback = Callable[[int], Awaitable[None]]
ConfirmPrompt = Callable[[str], Awaitable[bool]]


class WalletSigner(ABC):
    """What the session core needs from a connected wallet.

    Implementations report connection changes to ``observer``.
    """

    def __init__(self, observer: WalletEventObserver) -> None:
        self.observer = observer

    @property
    def current_address(self) -> str | None:
        return self.observer.address

    @property
    def chain_id(self) -> int | None:
        return self.observer.chain_id

    @abstractmethod
    async def sign_message(self, text: str) -> str:
        """Ask the owner to sign *text*; returns the ``0x`` signature."""

    @abstractmethod
    async def send_value_transfer(self, to_address: str, value_wei: int) -> str:
        """Ask the owner to send *value_wei*; returns the broadcast tx hash."""

    @abstractmethod
    async def wait_for_receipt(self, tx_hash: str) -> dict:
        """Suspend until *tx_hash* is mined and return its receipt."""

    @abstractmethod
    async def get_balance(self, address: str) -> int:
        """Native balance of *address* in wei."""

    @abstractmethod
    def subscribe_new_block(self, callback: BlockCallback) -> Callable[[], None]:
        """Call *callback* with each new block number; returns an unsubscriber."""

    @abstractmethod
    async def disconnect(self) -> None:
        """Drop the connection and report it to the observer."""


class KeystoreSigner(WalletSigner):
    """Signs with an unlocked local key and talks to the chain over JSON-RPC.

    ``confirm`` plays the part of a wallet popup: it is awaited before each
    signature or transfer and a falsy answer raises :class:`UserRejected`.
    """

    def __init__(
        self,
        observer: WalletEventObserver,
        provider: Web3Provider,
        *,
        confirm: ConfirmPrompt | None = None,
        poll_interval: float = 12.0,
    ) -> None:
        super().__init__(observer)
        self.provider = provider
        self._confirm = confirm
        self._poll_interval = poll_interval
        self._account: LocalAccount | None = None
        self._block_callbacks: list[BlockCallback] = []
        self._block_task: asyncio.Task | None = None

    async def connect(self, account: LocalAccount) -> None:
        self._account = account
        await self.observer.handle_connect(account.address, self.provider.chain.chain_id)

    async def disconnect(self) -> None:
        self._account = None
        self._stop_block_watch()
        await self.observer.handle_disconnect()

    def _require_account(self) -> LocalAccount:
        if self._account is None:
            raise RuntimeError("Keystore signer is not connected.")
        return self._account

    async def _ask(self, prompt: str) -> None:
        if self._confirm is not None and not await self._confirm(prompt):
            raise UserRejected("User rejected the request.")

    async def sign_message(self, text: str) -> str:
        account = self._require_account()
        await self._ask(f"Sign this message?\n\n{text}")
        signed = account.sign_message(encode_defunct(text=text))
        return Web3.to_hex(signed.signature)

    async def send_value_transfer(self, to_address: str, value_wei: int) -> str:
        account = self._require_account()
        ether = Web3.from_wei(value_wei, "ether")
        await self._ask(
            f"Send {ether} {self.provider.chain.native_symbol} to {to_address} "
            f"on {self.provider.chain.display_name}?"
        )
        return await asyncio.to_thread(
            self.provider.send_value_transfer, account, to_address, value_wei
        )

    async def wait_for_receipt(self, tx_hash: str) -> dict:
        while True:
            receipt = await asyncio.to_thread(self.provider.get_receipt, tx_hash)
            if receipt is not None:
                return receipt
            await asyncio.sleep(self._poll_interval)

    async def get_balance(self, address: str) -> int:
        return await asyncio.to_thread(self.provider.get_balance, address)

    # ------------------------------------------------------------------
    # Block subscription
    # ------------------------------------------------------------------

    def subscribe_new_block(self, callback: BlockCallback) -> Callable[[], None]:
        self._block_callbacks.append(callback)
        if self._block_task is None:
            self._block_task = asyncio.create_task(self._watch_blocks())

        def _unsubscribe() -> None:
            if callback in self._block_callbacks:
                self._block_callbacks.remove(callback)
            if not self._block_callbacks:
                self._stop_block_watch()

        return _unsubscribe

    def _stop_block_watch(self) -> None:
        if self._block_task is not None:
            self._block_task.cancel()
            self._block_task = None

    async def _watch_blocks(self) -> None:
        last_seen: int | None = None
        while True:
            try:
                number = await asyncio.to_thread(self.provider.block_number)
            except Exception as e:
                logger.warning(f"Block poll failed on {self.provider.chain.name}: {e}")
                number = last_seen
            if number is not None and number != last_seen:
                last_seen = number
                for callback in list(self._block_callbacks):
                    try:
                        await callback(number)
                    except Exception as e:
                        logger.error(f"New block callback error: {e}")
            await asyncio.sleep(self._poll_interval)
