"""Sign-in challenge construction and timing helpers."""

from __future__ import annotations

import secrets
from datetime import datetime, timedelta, timezone

NONCE_NUM_BYTES = 16  # 32 hex characters


def generate_nonce(num_bytes: int = NONCE_NUM_BYTES) -> str:
    """Return a fresh single-use hex nonce."""
    if num_bytes <= 0:
        num_bytes = NONCE_NUM_BYTES
    return secrets.token_hex(num_bytes)


def timestamp_ms(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


def create_challenge_message(
    wallet_address: str,
    nonce: str,
    timestamp: int,
    network: str,
    *,
    app_name: str = "GeniePay",
    session_ttl_seconds: int = 24 * 60 * 60,
) -> str:
    """Build the text the owner signs to prove control of *wallet_address*.

    The output depends only on the arguments, so the same inputs always
    produce the same message.
    """
    hours = max(1, session_ttl_seconds // 3600)
    return (
        f"Welcome to {app_name}!\n"
        "\n"
        "This request will not trigger a blockchain transaction or cost any gas fees.\n"
        "\n"
        f"Your authentication status will reset after {hours} hours.\n"
        "\n"
        f"Wallet address: {wallet_address}\n"
        f"Network: {network}\n"
        f"Nonce: {nonce}\n"
        f"Timestamp: {timestamp}"
    )


def session_expiry(created_at: datetime, ttl_seconds: int) -> datetime:
    return created_at + timedelta(seconds=ttl_seconds)


def is_signature_expired(signed_at_ms: int, now: datetime, max_age_seconds: int) -> bool:
    """True once a challenge signed at *signed_at_ms* is too old to accept."""
    return timestamp_ms(now) - signed_at_ms > max_age_seconds * 1000


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
