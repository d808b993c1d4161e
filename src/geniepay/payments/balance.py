"""Native-token balance cache for the connected wallet.

Refreshes on every new block while a wallet is connected and on demand
(after a confirmed transfer). Results fetched for an address that is no
longer connected are dropped.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_DOWN, Decimal
from typing import Callable

from geniepay.auth.messages import utcnow
from geniepay.wallet.address import same_address
from geniepay.wallet.observer import WalletEvent, WalletEventObserver, WalletEventType
from geniepay.wallet.signer import WalletSigner

logger = logging.getLogger("geniepay.payments.balance")

WEI_PER_ETHER = Decimal(10) ** 18


@dataclass(frozen=True)
class BalanceSnapshot:
    address: str
    value: int  # wei
    symbol: str
    as_of: datetime

    @property
    def ether(self) -> Decimal:
        return Decimal(self.value) / WEI_PER_ETHER

    @property
    def formatted(self) -> str:
        """``"1.2345 ETH"``, truncated to 4 decimal places."""
        quantized = self.ether.quantize(Decimal("0.0001"), rounding=ROUND_DOWN)
        return f"{quantized} {self.symbol}"


class BalanceCache:
    def __init__(
        self,
        observer: WalletEventObserver,
        signer: WalletSigner,
        symbol: str = "ETH",
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.observer = observer
        self.signer = signer
        self.symbol = symbol
        self._clock = clock

        self._snapshot: BalanceSnapshot | None = None
        self._loading = 0
        self._error: str | None = None
        self._unsubscribe_events: Callable[[], None] | None = None
        self._unsubscribe_blocks: Callable[[], None] | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def init(self) -> None:
        if self._unsubscribe_events is not None:
            return
        self._unsubscribe_events = self.observer.subscribe(self._on_wallet_event)
        if self.observer.is_connected:
            await self._activate()

    async def teardown(self) -> None:
        if self._unsubscribe_events is not None:
            self._unsubscribe_events()
            self._unsubscribe_events = None
        self._deactivate()

    # ------------------------------------------------------------------
    # Read-only view
    # ------------------------------------------------------------------

    @property
    def snapshot(self) -> BalanceSnapshot | None:
        return self._snapshot

    @property
    def is_loading(self) -> bool:
        return self._loading > 0

    @property
    def is_error(self) -> bool:
        return self._error is not None

    @property
    def error(self) -> str | None:
        return self._error

    @property
    def last_updated(self) -> datetime | None:
        return self._snapshot.as_of if self._snapshot else None

    @property
    def is_active(self) -> bool:
        return self._unsubscribe_blocks is not None

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    async def refresh(self) -> BalanceSnapshot | None:
        """Fetch the connected wallet's balance and replace the snapshot.

        Returns the new snapshot, or ``None`` if there is no wallet, the
        fetch failed, or the wallet changed while it was in flight.
        """
        address = self.observer.address
        if address is None:
            return None

        self._loading += 1
        try:
            value = await self.signer.get_balance(address)
        except Exception as e:
            logger.warning(f"Balance fetch failed for {address}: {e}")
            if same_address(address, self.observer.address):
                self._error = str(e)
            return None
        finally:
            self._loading -= 1

        if not same_address(address, self.observer.address):
            logger.debug(f"Dropping balance for {address}; wallet changed")
            return None

        snapshot = BalanceSnapshot(
            address=address, value=int(value), symbol=self.symbol, as_of=self._clock()
        )
        self._snapshot = snapshot
        self._error = None
        return snapshot

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _on_new_block(self, block_number: int) -> None:
        await self.refresh()

    async def _on_wallet_event(self, event: WalletEvent) -> None:
        if event.type is WalletEventType.CONNECTED:
            await self._activate()
        elif event.type is WalletEventType.DISCONNECTED:
            self._deactivate()
        elif event.type in (WalletEventType.ACCOUNT_CHANGED, WalletEventType.CHAIN_CHANGED):
            self._snapshot = None
            self._error = None
            await self._activate()

    async def _activate(self) -> None:
        if self._unsubscribe_blocks is None:
            self._unsubscribe_blocks = self.signer.subscribe_new_block(self._on_new_block)
        await self.refresh()

    def _deactivate(self) -> None:
        if self._unsubscribe_blocks is not None:
            self._unsubscribe_blocks()
            self._unsubscribe_blocks = None
        self._snapshot = None
        self._error = None
