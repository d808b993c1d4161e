"""GeniePayClient - wires the wallet, sign-in and payment components together."""

from __future__ import annotations

import logging
from pathlib import Path

from eth_account.signers.local import LocalAccount

from geniepay.auth.session import SessionManager
from geniepay.auth.signature import SignatureCoordinator
from geniepay.auth.terms import TermsGate
from geniepay.config import (
    GeniePayConfig,
    get_profile_dir,
    load_config,
    save_config,
)
from geniepay.payments.balance import BalanceCache
from geniepay.payments.ledger import TransactionLedger
from geniepay.payments.tracker import TransactionTracker
from geniepay.storage.accounts import (
    AccountDirectory,
    CachedAccountDirectory,
    SqliteAccountDirectory,
)
from geniepay.storage.database import Database, get_database
from geniepay.wallet.chains import get_chain
from geniepay.wallet.keystore import Keystore
from geniepay.wallet.observer import WalletEventObserver
from geniepay.wallet.provider import Web3Provider
from geniepay.wallet.signer import ConfirmPrompt, KeystoreSigner
from geniepay.wallet.verify import build_verifier

logger = logging.getLogger("geniepay.client")

CONFIG_FILENAME = "config.yaml"


class GeniePayClient:
    """One operator profile: its config, database, keystore and live session.

    Use :meth:`load` or :meth:`init` to build one, :meth:`start` once the
    event loop is running, :meth:`connect` to unlock the keystore and
    :meth:`shutdown` when done.
    """

    def __init__(
        self,
        config: GeniePayConfig,
        profile_dir: Path,
        db: Database,
        *,
        confirm: ConfirmPrompt | None = None,
    ):
        self.config = config
        self.profile_dir = profile_dir
        self.db = db

        self.chain = get_chain(config.network.chain)
        self.keystore = Keystore(profile_dir / "wallet")
        self.provider = Web3Provider(self.chain, config.network.rpc_url)
        self.observer = WalletEventObserver()
        self.signer = KeystoreSigner(
            self.observer,
            self.provider,
            confirm=confirm,
            poll_interval=config.network.block_poll_interval_seconds,
        )

        directory: AccountDirectory = SqliteAccountDirectory(db)
        if config.storage.cache_accounts:
            directory = CachedAccountDirectory(directory)
        self.accounts = directory

        self.coordinator = SignatureCoordinator(
            self.signer,
            self.accounts,
            config.auth,
            self.chain.display_name,
            verifier=build_verifier(config.auth),
        )
        self.terms = TermsGate(self.accounts, config.auth)
        self.session = SessionManager(
            self.observer, self.signer, self.coordinator, self.terms, config.auth
        )
        self.balance = BalanceCache(self.observer, self.signer, self.chain.native_symbol)
        self.ledger = TransactionLedger(db)
        self.payments = TransactionTracker(
            self.observer, self.signer, self.balance, self.chain, config.payments, self.ledger
        )

    @classmethod
    async def load(
        cls,
        base_path: Path | None = None,
        profile: str = "default",
        *,
        confirm: ConfirmPrompt | None = None,
    ) -> GeniePayClient:
        """Load an existing profile from a .geniepay directory."""
        profile_dir = get_profile_dir(profile, base_path, create=False)
        config_path = profile_dir / CONFIG_FILENAME

        if not config_path.exists():
            raise FileNotFoundError(
                f"No GeniePay profile found at {profile_dir}. Run 'geniepay init' first."
            )

        config = load_config(config_path)
        db = get_database(profile_dir, config.storage.db_filename)
        await db.connect()
        return cls(config=config, profile_dir=profile_dir, db=db, confirm=confirm)

    @classmethod
    async def init(
        cls,
        base_path: Path | None = None,
        name: str = "GeniePay",
        profile: str = "default",
        chain: str = "sepolia",
    ) -> GeniePayClient:
        """Create (or overwrite the config of) a profile."""
        get_chain(chain)
        profile_dir = get_profile_dir(profile, base_path)
        config = GeniePayConfig(name=name)
        config.network.chain = chain
        save_config(config, profile_dir / CONFIG_FILENAME)

        db = get_database(profile_dir, config.storage.db_filename)
        await db.connect()
        logger.info(f"Initialized profile '{profile}' at {profile_dir} on {chain}")
        return cls(config=config, profile_dir=profile_dir, db=db)

    async def start(self) -> None:
        """Begin following wallet events."""
        await self.session.init()
        await self.balance.init()

    async def connect(self, password: str) -> str:
        """Unlock the keystore and connect it as the active wallet.

        Returns the connected address.
        """
        account: LocalAccount = self.keystore.unlock(password)
        await self.signer.connect(account)
        return account.address

    async def shutdown(self) -> None:
        """Clean shutdown."""
        await self.payments.teardown()
        await self.balance.teardown()
        await self.session.teardown()
        if self.observer.is_connected:
            await self.signer.disconnect()
        await self.db.close()
