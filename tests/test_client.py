"""End-to-end tests for the profile client with a local keystore."""

import pytest

from geniepay.auth.models import AuthState
from geniepay.core.client import GeniePayClient
from geniepay.config import load_config
from geniepay.storage.accounts import CachedAccountDirectory
from geniepay.wallet.address import normalize_address


@pytest.fixture
def offline(monkeypatch):
    """Keep the JSON-RPC provider off the network."""
    from geniepay.wallet.provider import Web3Provider

    monkeypatch.setattr(Web3Provider, "get_balance", lambda self, address: 3 * 10**18)
    monkeypatch.setattr(Web3Provider, "block_number", lambda self: 1)


class TestGeniePayClient:

    @pytest.mark.asyncio
    async def test_init_then_load(self, tmp_path):
        client = await GeniePayClient.init(tmp_path, name="Acme", profile="acme", chain="base")
        await client.shutdown()

        config = load_config(tmp_path / ".geniepay" / "acme" / "config.yaml")
        assert config.name == "Acme"
        assert config.network.chain == "base"

        loaded = await GeniePayClient.load(tmp_path, profile="acme")
        try:
            assert loaded.chain.name == "base"
            assert isinstance(loaded.accounts, CachedAccountDirectory)
            assert loaded.session.state is AuthState.DISCONNECTED
        finally:
            await loaded.shutdown()

    @pytest.mark.asyncio
    async def test_load_missing_profile(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            await GeniePayClient.load(tmp_path, profile="missing")

    @pytest.mark.asyncio
    async def test_init_rejects_unknown_chain(self, tmp_path):
        with pytest.raises(KeyError):
            await GeniePayClient.init(tmp_path, chain="dogechain")

    @pytest.mark.asyncio
    async def test_first_and_returning_sign_in(self, tmp_path, offline):
        client = await GeniePayClient.init(tmp_path)
        address = client.keystore.create("pw")
        try:
            await client.connect("pw")
            await client.start()
            assert client.session.state is AuthState.PENDING_SIGNATURE
            assert client.balance.snapshot.formatted == "3.0000 ETH"

            await client.session.request_signature()
            assert client.session.state is AuthState.PENDING_TERMS
            await client.session.accept_terms()
            assert client.session.is_authenticated
            first_id = client.session.session.user_id
        finally:
            await client.shutdown()

        client = await GeniePayClient.load(tmp_path)
        try:
            await client.connect("pw")
            await client.start()
            await client.session.request_signature()

            assert client.session.state is AuthState.AUTHENTICATED
            assert client.session.session.user_id == first_id
            assert client.session.session.is_new_user is False
            record = await client.accounts.lookup_by_address(address)
            assert record.wallet_address == normalize_address(address)
            assert record.signature_nonce == client.session.session.nonce
        finally:
            await client.shutdown()
