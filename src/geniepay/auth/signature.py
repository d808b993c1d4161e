"""Challenge signing and new/returning wallet classification."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Callable

from geniepay.auth.messages import (
    create_challenge_message,
    generate_nonce,
    is_signature_expired,
    session_expiry,
    timestamp_ms,
    utcnow,
)
from geniepay.auth.models import AuthSession, SignatureOutcome, SignatureResult
from geniepay.config import AuthConfig
from geniepay.errors import (
    GeniePayError,
    LookupFailed,
    NoWalletConnected,
    SignatureTimeout,
    StaleContext,
    UserRejected,
    is_user_rejection,
)
from geniepay.storage.accounts import AccountDirectory
from geniepay.wallet.address import is_valid_address, normalize_address, same_address, to_checksum
from geniepay.wallet.signer import WalletSigner
from geniepay.wallet.verify import SignatureVerifier

logger = logging.getLogger("geniepay.auth.signature")


class SignatureCoordinator:
    """Runs one sign-in challenge at a time against the connected signer.

    The signer's answer is accepted as proof of key ownership unless a
    ``verifier`` is configured, in which case it must also pass.
    """

    def __init__(
        self,
        signer: WalletSigner,
        directory: AccountDirectory,
        config: AuthConfig,
        network_name: str,
        *,
        verifier: SignatureVerifier | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.signer = signer
        self.directory = directory
        self.config = config
        self.network_name = network_name
        self.verifier = verifier
        self._clock = clock
        self._loading = False
        self._pending_nonce: str | None = None

    @property
    def is_loading(self) -> bool:
        return self._loading

    @property
    def pending_nonce(self) -> str | None:
        return self._pending_nonce

    async def request_signature(self) -> SignatureResult | None:
        """Sign a fresh challenge and classify the wallet.

        Returns ``None`` without prompting if a request is already in
        flight.

        Raises
        ------
        NoWalletConnected
            If no address is connected.
        UserRejected
            If the owner declined the prompt.
        StaleContext
            If the connected address changed before the answer arrived.
        GeniePayError
            For every other failure (lookup, verification, timeout).
        """
        address = self.signer.current_address
        if not address:
            raise NoWalletConnected("No wallet connected")
        if self._loading:
            logger.debug(f"Signature already pending for {address}, ignoring request")
            return None
        if not is_valid_address(address):
            raise GeniePayError(f"Connected wallet address {address!r} is not a valid address.")

        self._loading = True
        nonce = generate_nonce()
        self._pending_nonce = nonce
        try:
            issued_at = timestamp_ms(self._clock())
            message = create_challenge_message(
                to_checksum(address),
                nonce,
                issued_at,
                self.network_name,
                app_name=self.config.app_name,
                session_ttl_seconds=self.config.session_ttl_seconds,
            )
            signature = await self._await_signature(message)
            self._check_context(address)

            max_age = self.config.signature_max_age_seconds
            if max_age > 0 and is_signature_expired(issued_at, self._clock(), max_age):
                raise SignatureTimeout("Signature arrived after the challenge expired.")
            if self.verifier is not None:
                await self.verifier.verify(address, message, signature, nonce)

            result = await self._classify(address, nonce)
            self._check_context(address)
            return result
        except StaleContext:
            raise
        except GeniePayError:
            # A failure that belongs to a previous wallet must not close the new one.
            self._check_context(address)
            raise
        except Exception as exc:
            self._check_context(address)
            if is_user_rejection(exc):
                raise UserRejected("Signature request was rejected in the wallet.") from exc
            raise GeniePayError(f"Signature request failed: {exc}") from exc
        finally:
            self._pending_nonce = None
            self._loading = False

    async def _await_signature(self, message: str) -> str:
        timeout = self.config.signature_timeout_seconds
        if timeout <= 0:
            return await self.signer.sign_message(message)
        try:
            return await asyncio.wait_for(self.signer.sign_message(message), timeout)
        except asyncio.TimeoutError as exc:
            raise SignatureTimeout(f"No signature after {timeout:g}s.") from exc

    def _check_context(self, address: str) -> None:
        current = self.signer.current_address
        if not same_address(address, current):
            raise StaleContext(
                f"Wallet changed from {address} to {current} while signing; discarding result."
            )

    async def _classify(self, address: str, nonce: str) -> SignatureResult:
        normalized = normalize_address(address)
        try:
            record = await self.directory.lookup_by_address(normalized)
        except GeniePayError:
            raise
        except Exception as exc:
            raise LookupFailed(f"Account lookup failed: {exc}") from exc

        now = self._clock()
        expires_at = session_expiry(now, self.config.session_ttl_seconds)

        if record is None:
            logger.info(f"New wallet {normalized} signed in; terms acceptance required")
            session = AuthSession(
                user_id="",
                wallet_address=normalized,
                nonce=nonce,
                expires_at=expires_at,
                is_new_user=True,
            )
            return SignatureResult(outcome=SignatureOutcome.NEW_WALLET, session=session)

        try:
            updated = await self.directory.update(
                record.id, {"last_login": now, "signature_nonce": nonce}
            )
        except GeniePayError:
            raise
        except Exception as exc:
            raise LookupFailed(f"Account update failed: {exc}") from exc
        self.directory.invalidate(normalized)

        logger.info(f"Returning wallet {normalized} signed in as account {updated.id}")
        session = AuthSession(
            user_id=updated.id,
            wallet_address=normalized,
            nonce=nonce,
            expires_at=expires_at,
            is_new_user=False,
        )
        return SignatureResult(outcome=SignatureOutcome.KNOWN_WALLET, session=session)
