"""Wallet address helpers.

Addresses are compared and stored lower-case; the checksummed form is
only produced when handing an address to web3.
"""

from __future__ import annotations

import re

from web3 import Web3

_ADDRESS_RE = re.compile(r"^0x[0-9a-f]{40}$")


def normalize_address(address: str) -> str:
    """Canonicalize *address* for storage and comparison."""
    return address.strip().lower()


def same_address(a: str | None, b: str | None) -> bool:
    if a is None or b is None:
        return False
    return normalize_address(a) == normalize_address(b)


def is_valid_address(address: str) -> bool:
    """True for any ``0x`` + 40 hex address, regardless of letter case."""
    return bool(_ADDRESS_RE.match(normalize_address(address)))


def to_checksum(address: str) -> str:
    """Return the EIP-55 form of *address*.

    Raises ``ValueError`` if the address is not 20 bytes of hex.
    """
    if not is_valid_address(address):
        raise ValueError(f"Invalid wallet address: {address!r}")
    return Web3.to_checksum_address(normalize_address(address))


def display_address(address: str | None, head: int = 6, tail: int = 4) -> str:
    """Shorten an address for display, e.g. ``0x1234...abcd``."""
    if not address:
        return ""
    if len(address) <= head + tail:
        return address
    return f"{address[:head]}...{address[-tail:]}"
