"""Shared fakes and fixtures for the GeniePay test suite."""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import pytest

from geniepay.auth.session import SessionManager
from geniepay.auth.signature import SignatureCoordinator
from geniepay.auth.terms import TermsGate
from geniepay.config import AuthConfig
from geniepay.errors import AccountCreationFailed, LookupFailed
from geniepay.storage.accounts import AccountDirectory
from geniepay.storage.models import AccountRecord
from geniepay.wallet.address import normalize_address
from geniepay.wallet.observer import WalletEventObserver
from geniepay.wallet.signer import BlockCallback, WalletSigner

ALICE = "0xAbCdEf0123456789aBcDeF0123456789AbCdEf01"
BOB = "0x1234567890AbCdEf1234567890aBcDeF12345678"
SEPOLIA_ID = 11155111


# =============================================================================
# Fakes
# =============================================================================


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class FakeSigner(WalletSigner):
    """Scriptable signer.

    Set ``sign_gate`` / ``balance_gate`` to an ``asyncio.Event`` to hold the
    corresponding call until the test releases it. Receipts are resolved
    with :meth:`confirm`.
    """

    def __init__(self, observer: WalletEventObserver):
        super().__init__(observer)
        self.sign_calls: list[str] = []
        self.sign_gate: asyncio.Event | None = None
        self.sign_error: BaseException | None = None

        self.sent: list[tuple[str, int]] = []
        self.send_error: BaseException | None = None
        self.receipts: dict[str, asyncio.Future] = {}

        self.balances: dict[str, int] = {}
        self.balance_calls = 0
        self.balance_gate: asyncio.Event | None = None
        self.balance_error: BaseException | None = None

        self.block_callbacks: list[BlockCallback] = []
        self.disconnect_calls = 0

    async def connect(self, address: str, chain_id: int = SEPOLIA_ID) -> None:
        await self.observer.handle_connect(address, chain_id)

    async def sign_message(self, text: str) -> str:
        self.sign_calls.append(text)
        if self.sign_gate is not None:
            await self.sign_gate.wait()
        if self.sign_error is not None:
            raise self.sign_error
        return "0x" + "ab" * 65

    async def send_value_transfer(self, to_address: str, value_wei: int) -> str:
        if self.send_error is not None:
            raise self.send_error
        self.sent.append((to_address, value_wei))
        tx_hash = f"0x{len(self.sent):064x}"
        self.receipts[tx_hash] = asyncio.get_running_loop().create_future()
        return tx_hash

    def confirm(self, tx_hash: str, status: int = 1, block_number: int = 100) -> None:
        self.receipts[tx_hash].set_result(
            {"transactionHash": tx_hash, "status": status, "blockNumber": block_number}
        )

    async def wait_for_receipt(self, tx_hash: str) -> dict:
        return await self.receipts[tx_hash]

    async def get_balance(self, address: str) -> int:
        self.balance_calls += 1
        if self.balance_gate is not None:
            await self.balance_gate.wait()
        if self.balance_error is not None:
            raise self.balance_error
        return self.balances.get(normalize_address(address), 0)

    def subscribe_new_block(self, callback: BlockCallback) -> Callable[[], None]:
        self.block_callbacks.append(callback)

        def _unsubscribe() -> None:
            if callback in self.block_callbacks:
                self.block_callbacks.remove(callback)

        return _unsubscribe

    async def emit_block(self, number: int) -> None:
        for callback in list(self.block_callbacks):
            await callback(number)

    async def disconnect(self) -> None:
        self.disconnect_calls += 1
        await self.observer.handle_disconnect()


class InMemoryAccountDirectory(AccountDirectory):
    def __init__(self):
        self.records: dict[str, AccountRecord] = {}
        self.inserts: list[AccountRecord] = []
        self.lookup_calls = 0
        self.lookup_error: BaseException | None = None
        self.insert_error: BaseException | None = None
        self.invalidated: list[str] = []

    def add(self, address: str, **fields: Any) -> AccountRecord:
        record = AccountRecord(wallet_address=address, terms_accepted=True, **fields)
        self.records[record.wallet_address] = record
        return record

    async def lookup_by_address(self, address: str) -> AccountRecord | None:
        self.lookup_calls += 1
        if self.lookup_error is not None:
            raise self.lookup_error
        record = self.records.get(normalize_address(address))
        return record.model_copy() if record else None

    async def insert(self, record: AccountRecord) -> AccountRecord:
        if self.insert_error is not None:
            raise self.insert_error
        if record.wallet_address in self.records:
            raise AccountCreationFailed(f"duplicate wallet {record.wallet_address}")
        self.records[record.wallet_address] = record
        self.inserts.append(record)
        return record.model_copy()

    async def update(self, account_id: str, fields: dict[str, Any]) -> AccountRecord:
        for address, record in self.records.items():
            if record.id == account_id:
                updated = record.model_copy(update=fields)
                self.records[address] = updated
                return updated.model_copy()
        raise LookupFailed(f"Account {account_id} not found.")

    def invalidate(self, address: str) -> None:
        self.invalidated.append(normalize_address(address))


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def observer() -> WalletEventObserver:
    return WalletEventObserver()


@pytest.fixture
def signer(observer: WalletEventObserver) -> FakeSigner:
    return FakeSigner(observer)


@pytest.fixture
def directory() -> InMemoryAccountDirectory:
    return InMemoryAccountDirectory()


@pytest.fixture
def auth_config() -> AuthConfig:
    # Long interval so the background expiry task never fires on its own.
    return AuthConfig(expiry_check_interval_seconds=3600)


@pytest.fixture
def coordinator(signer, directory, auth_config, clock) -> SignatureCoordinator:
    return SignatureCoordinator(signer, directory, auth_config, "Sepolia Testnet", clock=clock)


@pytest.fixture
def terms_gate(directory, auth_config, clock) -> TermsGate:
    return TermsGate(directory, auth_config, clock=clock)


@pytest.fixture
async def manager(observer, signer, coordinator, terms_gate, auth_config, clock):
    mgr = SessionManager(observer, signer, coordinator, terms_gate, auth_config, clock=clock)
    await mgr.init()
    yield mgr
    await mgr.teardown()
