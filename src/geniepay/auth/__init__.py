"""Wallet sign-in: challenge signing, terms consent and session lifecycle."""

from geniepay.auth.models import AuthEvent, AuthSession, AuthState
from geniepay.auth.session import SessionManager
from geniepay.auth.signature import SignatureCoordinator
from geniepay.auth.terms import TermsGate

__all__ = [
    "AuthEvent",
    "AuthSession",
    "AuthState",
    "SessionManager",
    "SignatureCoordinator",
    "TermsGate",
]
