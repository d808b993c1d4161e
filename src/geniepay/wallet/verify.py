"""Optional checks on a signed sign-in challenge.

By default a successful signer response is taken as proof of key
ownership. Profiles can opt into a local ecrecover check or a remote
verification endpoint; either way a failure is reported as
:class:`SignatureVerificationFailed` and never as a pass.
"""

from __future__ import annotations

import logging
from typing import Protocol

import httpx
from eth_account import Account
from eth_account.messages import encode_defunct

from geniepay.config import AuthConfig
from geniepay.errors import SignatureVerificationFailed
from geniepay.wallet.address import normalize_address

logger = logging.getLogger("geniepay.wallet.verify")


class SignatureVerifier(Protocol):
    async def verify(self, address: str, message: str, signature: str, nonce: str) -> None:
        ...


class LocalSignatureVerifier:
    """Recovers the personal_sign signer and compares it to *address*."""

    async def verify(self, address: str, message: str, signature: str, nonce: str) -> None:
        try:
            recovered = Account.recover_message(
                encode_defunct(text=message), signature=signature
            )
        except Exception as exc:
            raise SignatureVerificationFailed(f"Could not recover signer: {exc}") from exc
        if normalize_address(recovered) != normalize_address(address):
            raise SignatureVerificationFailed(
                f"Signature was produced by {recovered}, not {address}"
            )


class RemoteSignatureVerifier:
    """POSTs the signed challenge to a verification endpoint.

    The endpoint must answer with a JSON object whose ``success`` field is
    exactly ``true``. Anything else is treated as a rejection.
    """

    def __init__(
        self,
        url: str,
        api_key: str = "",
        timeout: float = 10.0,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.url = url
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport

    async def verify(self, address: str, message: str, signature: str, nonce: str) -> None:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        payload = {
            "wallet_address": normalize_address(address),
            "message": message,
            "signature": signature,
            "nonce": nonce,
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(self.url, json=payload, headers=headers)
                resp.raise_for_status()
                data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise SignatureVerificationFailed(f"Verification request failed: {exc}") from exc

        if not isinstance(data, dict) or data.get("success") is not True:
            logger.warning(f"Remote verifier rejected signature for {payload['wallet_address']}")
            raise SignatureVerificationFailed("Remote verifier did not confirm the signature")


def build_verifier(config: AuthConfig) -> SignatureVerifier | None:
    """Return the verifier selected by ``auth.verifier``, or ``None``."""
    kind = config.verifier.strip().lower()
    if kind in ("", "none"):
        return None
    if kind == "local":
        return LocalSignatureVerifier()
    if kind == "remote":
        if not config.verify_url:
            raise ValueError("auth.verify_url must be set when auth.verifier is 'remote'")
        return RemoteSignatureVerifier(config.verify_url, config.verify_api_key)
    raise ValueError(f"Unknown signature verifier '{config.verifier}'")
