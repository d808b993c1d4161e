"""Sign-in states, events and the in-memory session object."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict


class AuthState(str, Enum):
    DISCONNECTED = "disconnected"
    PENDING_SIGNATURE = "pending_signature"
    PENDING_TERMS = "pending_terms"
    AUTHENTICATED = "authenticated"


class AuthEvent(str, Enum):
    WALLET_CONNECTED = "wallet_connected"
    SIGNATURE_NEW_WALLET = "signature_new_wallet"
    SIGNATURE_KNOWN_WALLET = "signature_known_wallet"
    SIGNATURE_FAILED = "signature_failed"
    TERMS_ACCEPTED = "terms_accepted"
    TERMS_DECLINED = "terms_declined"
    SESSION_EXPIRED = "session_expired"
    REFRESH_REQUESTED = "refresh_requested"
    WALLET_DISCONNECTED = "wallet_disconnected"


class AuthSession(BaseModel):
    """A signed-in (or signing-in) wallet. Immutable; replace to change."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    wallet_address: str
    nonce: str
    expires_at: datetime
    is_new_user: bool

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at


class SignatureOutcome(str, Enum):
    NEW_WALLET = "new_wallet"
    KNOWN_WALLET = "known_wallet"


class SignatureResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    outcome: SignatureOutcome
    session: AuthSession
