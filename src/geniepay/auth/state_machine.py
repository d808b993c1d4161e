"""Sign-in transition table.

Every (state, event) pair has an explicit entry: either the next state or
``IGNORED``. The table is checked for completeness when this module is
imported, so adding a state or event without deciding its transitions
fails immediately.
"""

from __future__ import annotations

from typing import Final

from geniepay.auth.models import AuthEvent, AuthState

IGNORED: Final = None

_S = AuthState
_E = AuthEvent

TRANSITIONS: dict[tuple[AuthState, AuthEvent], AuthState | None] = {
    # disconnected
    (_S.DISCONNECTED, _E.WALLET_CONNECTED): _S.PENDING_SIGNATURE,
    (_S.DISCONNECTED, _E.SIGNATURE_NEW_WALLET): IGNORED,
    (_S.DISCONNECTED, _E.SIGNATURE_KNOWN_WALLET): IGNORED,
    (_S.DISCONNECTED, _E.SIGNATURE_FAILED): IGNORED,
    (_S.DISCONNECTED, _E.TERMS_ACCEPTED): IGNORED,
    (_S.DISCONNECTED, _E.TERMS_DECLINED): _S.DISCONNECTED,
    (_S.DISCONNECTED, _E.SESSION_EXPIRED): IGNORED,
    (_S.DISCONNECTED, _E.REFRESH_REQUESTED): IGNORED,
    (_S.DISCONNECTED, _E.WALLET_DISCONNECTED): _S.DISCONNECTED,
    # pending_signature
    (_S.PENDING_SIGNATURE, _E.WALLET_CONNECTED): IGNORED,
    (_S.PENDING_SIGNATURE, _E.SIGNATURE_NEW_WALLET): _S.PENDING_TERMS,
    (_S.PENDING_SIGNATURE, _E.SIGNATURE_KNOWN_WALLET): _S.AUTHENTICATED,
    (_S.PENDING_SIGNATURE, _E.SIGNATURE_FAILED): _S.DISCONNECTED,
    (_S.PENDING_SIGNATURE, _E.TERMS_ACCEPTED): IGNORED,
    (_S.PENDING_SIGNATURE, _E.TERMS_DECLINED): _S.DISCONNECTED,
    (_S.PENDING_SIGNATURE, _E.SESSION_EXPIRED): IGNORED,
    (_S.PENDING_SIGNATURE, _E.REFRESH_REQUESTED): IGNORED,
    (_S.PENDING_SIGNATURE, _E.WALLET_DISCONNECTED): _S.DISCONNECTED,
    # pending_terms
    (_S.PENDING_TERMS, _E.WALLET_CONNECTED): IGNORED,
    (_S.PENDING_TERMS, _E.SIGNATURE_NEW_WALLET): IGNORED,
    (_S.PENDING_TERMS, _E.SIGNATURE_KNOWN_WALLET): IGNORED,
    (_S.PENDING_TERMS, _E.SIGNATURE_FAILED): IGNORED,
    (_S.PENDING_TERMS, _E.TERMS_ACCEPTED): _S.AUTHENTICATED,
    (_S.PENDING_TERMS, _E.TERMS_DECLINED): _S.DISCONNECTED,
    (_S.PENDING_TERMS, _E.SESSION_EXPIRED): IGNORED,
    (_S.PENDING_TERMS, _E.REFRESH_REQUESTED): IGNORED,
    (_S.PENDING_TERMS, _E.WALLET_DISCONNECTED): _S.DISCONNECTED,
    # authenticated
    (_S.AUTHENTICATED, _E.WALLET_CONNECTED): IGNORED,
    (_S.AUTHENTICATED, _E.SIGNATURE_NEW_WALLET): IGNORED,
    (_S.AUTHENTICATED, _E.SIGNATURE_KNOWN_WALLET): IGNORED,
    (_S.AUTHENTICATED, _E.SIGNATURE_FAILED): IGNORED,
    (_S.AUTHENTICATED, _E.TERMS_ACCEPTED): IGNORED,
    (_S.AUTHENTICATED, _E.TERMS_DECLINED): _S.DISCONNECTED,
    (_S.AUTHENTICATED, _E.SESSION_EXPIRED): _S.PENDING_SIGNATURE,
    (_S.AUTHENTICATED, _E.REFRESH_REQUESTED): _S.PENDING_SIGNATURE,
    (_S.AUTHENTICATED, _E.WALLET_DISCONNECTED): _S.DISCONNECTED,
}


def next_state(state: AuthState, event: AuthEvent) -> AuthState | None:
    """Return the state *event* leads to from *state*, or ``None`` to ignore it."""
    return TRANSITIONS[(state, event)]


def _check_complete() -> None:
    missing = [
        (state.value, event.value)
        for state in AuthState
        for event in AuthEvent
        if (state, event) not in TRANSITIONS
    ]
    if missing:
        raise RuntimeError(f"Sign-in transition table is missing entries: {missing}")


_check_complete()
