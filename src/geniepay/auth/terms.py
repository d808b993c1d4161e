"""Terms-of-service consent gate for first-time wallets."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from geniepay.auth.messages import utcnow
from geniepay.auth.models import AuthSession
from geniepay.config import AuthConfig
from geniepay.errors import AccountCreationFailed, GeniePayError, NoWalletConnected, SessionError
from geniepay.storage.accounts import AccountDirectory
from geniepay.storage.models import AccountRecord
from geniepay.wallet.address import normalize_address, same_address

logger = logging.getLogger("geniepay.auth.terms")


class TermsGate:
    """Creates the account row once the owner of a new wallet consents."""

    def __init__(
        self,
        directory: AccountDirectory,
        config: AuthConfig,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.directory = directory
        self.config = config
        self._clock = clock

    @property
    def declined_message(self) -> str:
        return f"You must accept the Terms of Service to use {self.config.app_name}."

    async def accept(self, session: AuthSession | None, address: str | None) -> AuthSession:
        """Persist consent for *session* and return it promoted with the new id."""
        if session is None or not session.is_new_user:
            raise SessionError("No pending sign-in is waiting for terms acceptance.")
        if not address:
            raise NoWalletConnected("No wallet connected")
        if not same_address(address, session.wallet_address):
            raise SessionError("Connected wallet does not match the pending sign-in.")

        normalized = normalize_address(address)
        now = self._clock()
        record = AccountRecord(
            wallet_address=normalized,
            terms_accepted=True,
            terms_version=self.config.terms_version,
            last_login=now,
            signature_nonce=session.nonce,
            created_at=now,
            updated_at=now,
        )
        try:
            created = await self.directory.insert(record)
        except GeniePayError:
            raise
        except Exception as exc:
            raise AccountCreationFailed(f"Could not create account for {normalized}: {exc}") from exc
        finally:
            self.directory.invalidate(normalized)

        logger.info(
            f"Terms v{self.config.terms_version} accepted by {normalized} (account {created.id})"
        )
        return session.model_copy(update={"user_id": created.id})
