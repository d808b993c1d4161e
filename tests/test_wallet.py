"""Tests for the wallet observer, keystore signer and signature verifiers."""

import httpx
import pytest
from eth_account import Account
from eth_account.messages import encode_defunct

from conftest import ALICE, BOB, SEPOLIA_ID
from geniepay.config import AuthConfig
from geniepay.errors import SignatureVerificationFailed, UserRejected, is_user_rejection
from geniepay.wallet.address import normalize_address
from geniepay.wallet.chains import get_chain, get_chain_by_id, list_chain_names
from geniepay.wallet.keystore import Keystore
from geniepay.wallet.observer import WalletEventObserver, WalletEventType
from geniepay.wallet.provider import Web3Provider
from geniepay.wallet.signer import KeystoreSigner
from geniepay.wallet.verify import (
    LocalSignatureVerifier,
    RemoteSignatureVerifier,
    build_verifier,
)


# =============================================================================
# Chains
# =============================================================================

class TestChains:

    def test_supported_networks(self):
        assert set(list_chain_names()) == {
            "ethereum", "sepolia", "optimism", "base", "arbitrum", "polygon",
        }

    def test_lookup_by_id(self):
        assert get_chain_by_id(SEPOLIA_ID).name == "sepolia"
        assert get_chain_by_id(999999) is None

    def test_unknown_chain(self):
        with pytest.raises(KeyError):
            get_chain("dogechain")

    def test_tx_url(self):
        assert get_chain("sepolia").tx_url("0xabc") == "https://sepolia.etherscan.io/tx/0xabc"


# =============================================================================
# Observer
# =============================================================================

class TestWalletEventObserver:

    @pytest.mark.asyncio
    async def test_event_sequence(self):
        observer = WalletEventObserver()
        events = []

        async def listener(event):
            events.append((event.type, event.address, event.previous_address))

        observer.subscribe(listener)
        await observer.handle_connect(ALICE, SEPOLIA_ID)
        await observer.handle_connect(ALICE.lower(), SEPOLIA_ID)
        await observer.handle_account_changed(BOB)
        await observer.handle_chain_changed(1)
        await observer.handle_disconnect()
        await observer.handle_disconnect()

        a, b = normalize_address(ALICE), normalize_address(BOB)
        assert events == [
            (WalletEventType.CONNECTED, a, None),
            (WalletEventType.ACCOUNT_CHANGED, b, a),
            (WalletEventType.CHAIN_CHANGED, b, b),
            (WalletEventType.DISCONNECTED, None, b),
        ]
        assert observer.is_connected is False
        assert observer.chain_id is None

    @pytest.mark.asyncio
    async def test_account_changed_to_none_disconnects(self):
        observer = WalletEventObserver()
        await observer.handle_connect(ALICE, SEPOLIA_ID)
        await observer.handle_account_changed(None)
        assert observer.address is None

    @pytest.mark.asyncio
    async def test_unsubscribe_and_listener_errors(self):
        observer = WalletEventObserver()
        seen = []

        async def broken(event):
            raise RuntimeError("listener exploded")

        async def good(event):
            seen.append(event.type)

        observer.subscribe(broken)
        unsubscribe = observer.subscribe(good)
        await observer.handle_connect(ALICE, SEPOLIA_ID)
        unsubscribe()
        await observer.handle_disconnect()

        assert seen == [WalletEventType.CONNECTED]


# =============================================================================
# Errors
# =============================================================================

class TestUserRejection:

    class _RpcError(Exception):
        def __init__(self, message, code):
            super().__init__(message)
            self.code = code

    @pytest.mark.parametrize(
        "exc,expected",
        [
            (UserRejected("no"), True),
            (RuntimeError("User rejected the request."), True),
            (RuntimeError("MetaMask: User denied transaction signature"), True),
            (_RpcError("whatever", 4001), True),
            (RuntimeError("insufficient funds"), False),
            (_RpcError("internal", -32603), False),
        ],
    )
    def test_classification(self, exc, expected):
        assert is_user_rejection(exc) is expected


# =============================================================================
# Keystore signer
# =============================================================================

async def _approve(prompt):
    return True


async def _decline(prompt):
    return False


class TestKeystoreSigner:

    @pytest.mark.asyncio
    async def test_connect_reports_to_observer(self):
        observer = WalletEventObserver()
        account = Account.create()
        signer = KeystoreSigner(observer, Web3Provider(get_chain("sepolia")))

        await signer.connect(account)

        assert signer.current_address == normalize_address(account.address)
        assert signer.chain_id == SEPOLIA_ID

        await signer.disconnect()
        assert signer.current_address is None

    @pytest.mark.asyncio
    async def test_signature_recovers_to_account(self):
        observer = WalletEventObserver()
        account = Account.create()
        signer = KeystoreSigner(observer, Web3Provider(get_chain("sepolia")), confirm=_approve)
        await signer.connect(account)

        signature = await signer.sign_message("hello")

        recovered = Account.recover_message(encode_defunct(text="hello"), signature=signature)
        assert recovered == account.address

    @pytest.mark.asyncio
    async def test_declined_prompt_raises(self):
        observer = WalletEventObserver()
        signer = KeystoreSigner(observer, Web3Provider(get_chain("sepolia")), confirm=_decline)
        await signer.connect(Account.create())

        with pytest.raises(UserRejected):
            await signer.sign_message("hello")

    @pytest.mark.asyncio
    async def test_not_connected(self):
        signer = KeystoreSigner(WalletEventObserver(), Web3Provider(get_chain("sepolia")))
        with pytest.raises(RuntimeError):
            await signer.sign_message("hello")


class TestKeystore:

    def test_create_unlock(self, tmp_path):
        keystore = Keystore(tmp_path / "wallet")
        assert keystore.exists() is False
        assert keystore.address() is None

        address = keystore.create("correct horse")

        assert keystore.address() == address
        assert keystore.unlock("correct horse").address == address
        with pytest.raises(ValueError):
            keystore.unlock("wrong")
        with pytest.raises(FileExistsError):
            keystore.create("again")


# =============================================================================
# Verifiers
# =============================================================================

def _signed(message="Welcome to GeniePay!"):
    account = Account.create()
    signed = account.sign_message(encode_defunct(text=message))
    return account, message, "0x" + signed.signature.hex().removeprefix("0x")


class TestLocalSignatureVerifier:

    @pytest.mark.asyncio
    async def test_accepts_matching_signer(self):
        account, message, signature = _signed()
        await LocalSignatureVerifier().verify(account.address.lower(), message, signature, "n")

    @pytest.mark.asyncio
    async def test_rejects_other_signer(self):
        _, message, signature = _signed()
        with pytest.raises(SignatureVerificationFailed):
            await LocalSignatureVerifier().verify(ALICE, message, signature, "n")

    @pytest.mark.asyncio
    async def test_rejects_garbage(self):
        with pytest.raises(SignatureVerificationFailed):
            await LocalSignatureVerifier().verify(ALICE, "msg", "0x1234", "n")


def _remote(handler):
    return RemoteSignatureVerifier(
        "https://verify.example.com", "secret", transport=httpx.MockTransport(handler)
    )


class TestRemoteSignatureVerifier:

    @pytest.mark.asyncio
    async def test_success(self):
        seen = {}

        def handler(request):
            seen["auth"] = request.headers.get("Authorization")
            seen["body"] = request.read()
            return httpx.Response(200, json={"success": True})

        await _remote(handler).verify(ALICE, "msg", "0xsig", "n0nce")

        assert seen["auth"] == "Bearer secret"
        assert normalize_address(ALICE).encode() in seen["body"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "response",
        [
            httpx.Response(200, json={"success": False}),
            httpx.Response(200, json={"success": "true"}),
            httpx.Response(200, json=["success"]),
            httpx.Response(200, text="not json"),
            httpx.Response(500, json={"success": True}),
        ],
    )
    async def test_anything_else_fails_closed(self, response):
        with pytest.raises(SignatureVerificationFailed):
            await _remote(lambda request: response).verify(ALICE, "msg", "0xsig", "n")

    @pytest.mark.asyncio
    async def test_transport_error_fails_closed(self):
        def handler(request):
            raise httpx.ConnectError("unreachable")

        with pytest.raises(SignatureVerificationFailed):
            await _remote(handler).verify(ALICE, "msg", "0xsig", "n")


class TestBuildVerifier:

    def test_none(self):
        assert build_verifier(AuthConfig()) is None

    def test_local(self):
        assert isinstance(build_verifier(AuthConfig(verifier="local")), LocalSignatureVerifier)

    def test_remote_requires_url(self):
        with pytest.raises(ValueError):
            build_verifier(AuthConfig(verifier="remote"))
        verifier = build_verifier(AuthConfig(verifier="remote", verify_url="https://x.example"))
        assert isinstance(verifier, RemoteSignatureVerifier)

    def test_unknown(self):
        with pytest.raises(ValueError):
            build_verifier(AuthConfig(verifier="magic"))
