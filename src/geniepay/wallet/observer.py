"""Connected-wallet event observer.

Signer adapters report connect, disconnect and account switches here;
the session manager and the balance cache subscribe to the resulting
events instead of polling the signer.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Awaitable, Callable

from geniepay.wallet.address import normalize_address

logger = logging.getLogger("geniepay.wallet.observer")


class WalletEventType(str, Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ACCOUNT_CHANGED = "account_changed"
    CHAIN_CHANGED = "chain_changed"


@dataclass
class WalletEvent:
    type: WalletEventType
    address: str | None  # normalized; None after a disconnect
    chain_id: int | None
    previous_address: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


Listener = Callable[[WalletEvent], Awaitable[None]]


class WalletEventObserver:
    """Tracks the connected address and chain and fans out transitions."""

    def __init__(self) -> None:
        self._address: str | None = None
        self._chain_id: int | None = None
        self._listeners: list[Listener] = []

    @property
    def address(self) -> str | None:
        """The connected address in normalized form, or ``None``."""
        return self._address

    @property
    def chain_id(self) -> int | None:
        return self._chain_id

    @property
    def is_connected(self) -> bool:
        return self._address is not None

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register *listener*; returns a callable that removes it again."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    async def handle_connect(self, address: str, chain_id: int | None = None) -> None:
        normalized = normalize_address(address)
        previous = self._address
        self._chain_id = chain_id
        if previous is not None and previous != normalized:
            self._address = normalized
            await self._emit(WalletEventType.ACCOUNT_CHANGED, previous)
            return
        if previous == normalized:
            return
        self._address = normalized
        logger.info(f"Wallet connected: {normalized} (chain {chain_id})")
        await self._emit(WalletEventType.CONNECTED, previous)

    async def handle_account_changed(self, address: str | None) -> None:
        if address is None:
            await self.handle_disconnect()
            return
        normalized = normalize_address(address)
        previous = self._address
        if previous == normalized:
            return
        if previous is None:
            await self.handle_connect(normalized, self._chain_id)
            return
        self._address = normalized
        logger.info(f"Wallet account changed: {previous} -> {normalized}")
        await self._emit(WalletEventType.ACCOUNT_CHANGED, previous)

    async def handle_chain_changed(self, chain_id: int) -> None:
        if chain_id == self._chain_id:
            return
        self._chain_id = chain_id
        await self._emit(WalletEventType.CHAIN_CHANGED, self._address)

    async def handle_disconnect(self) -> None:
        if self._address is None:
            return
        previous = self._address
        self._address = None
        self._chain_id = None
        logger.info(f"Wallet disconnected: {previous}")
        await self._emit(WalletEventType.DISCONNECTED, previous)

    async def _emit(self, event_type: WalletEventType, previous: str | None) -> None:
        event = WalletEvent(
            type=event_type,
            address=self._address,
            chain_id=self._chain_id,
            previous_address=previous,
        )
        for listener in list(self._listeners):
            try:
                await listener(event)
            except Exception as e:
                logger.error(f"Wallet event listener error on '{event_type.value}': {e}")
