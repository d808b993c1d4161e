"""Encrypted operator keystore backed by eth-account."""

from __future__ import annotations

import json
from pathlib import Path

from eth_account import Account
from eth_account.signers.local import LocalAccount

from geniepay.wallet.address import to_checksum

KEYSTORE_FILENAME = "keystore.json"


class Keystore:
    """A single encrypted key file inside a profile's ``wallet/`` directory."""

    def __init__(self, wallet_dir: Path) -> None:
        self.wallet_dir = Path(wallet_dir)
        self.path = self.wallet_dir / KEYSTORE_FILENAME

    def exists(self) -> bool:
        return self.path.exists()

    def create(self, password: str) -> str:
        """Generate a new keypair, encrypt it with *password*, and save it.

        Returns the checksummed address of the new wallet.

        Raises
        ------
        FileExistsError
            If a keystore already exists.
        """
        if self.exists():
            raise FileExistsError(
                f"Wallet already exists at {self.path}. "
                "Delete it first if you want to create a new one."
            )

        acct = Account.create()
        encrypted = Account.encrypt(acct.key, password)

        self.wallet_dir.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(encrypted, indent=2), encoding="utf-8")
        return acct.address

    def address(self) -> str | None:
        """Read the wallet address without decrypting, or ``None``."""
        if not self.exists():
            return None
        data = json.loads(self.path.read_text(encoding="utf-8"))
        raw_address = data.get("address", "")
        if not raw_address.startswith("0x"):
            raw_address = "0x" + raw_address
        return to_checksum(raw_address)

    def unlock(self, password: str) -> LocalAccount:
        """Decrypt the key and return a signing account.

        Raises
        ------
        FileNotFoundError
            If no keystore file exists.
        ValueError
            If the password is incorrect.
        """
        if not self.exists():
            raise FileNotFoundError(f"No keystore found at {self.path}")

        data = json.loads(self.path.read_text(encoding="utf-8"))
        try:
            private_key = Account.decrypt(data, password)
        except Exception as exc:
            raise ValueError(f"Failed to decrypt keystore: {exc}") from exc
        return Account.from_key(private_key)
