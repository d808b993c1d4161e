"""Error taxonomy for the wallet session core."""

from __future__ import annotations


class GeniePayError(Exception):
    """Base class for all GeniePay errors."""


class UserRejected(GeniePayError):
    """The signer declined a signature or transaction request."""


class NoWalletConnected(GeniePayError):
    """An action needs a connected wallet address and none is present."""


class LookupFailed(GeniePayError):
    """The account store could not be reached."""


class AccountCreationFailed(GeniePayError):
    """Inserting a new account record failed."""


class SignatureTimeout(GeniePayError):
    """The signer did not answer within the configured window."""


class SignatureVerificationFailed(GeniePayError):
    """A configured verifier rejected the signed challenge."""


class SessionExpired(GeniePayError):
    """The session passed its ``expires_at`` timestamp."""


class SessionError(GeniePayError):
    """An auth action was invoked in a state that does not allow it."""


class StaleContext(GeniePayError):
    """The connected address changed while a signer call was in flight."""


class TransactionBroadcastFailed(GeniePayError):
    """A value transfer could not be submitted to the network."""


class TransactionConfirmationFailed(GeniePayError):
    """A broadcast transfer reverted or its receipt could not be read."""


# EIP-1193 "user rejected request"
_USER_REJECTED_CODE = 4001
_USER_REJECTED_MARKERS = ("user rejected", "user denied", "user cancelled")


def is_user_rejection(exc: BaseException) -> bool:
    """Return True if *exc* means the wallet owner declined the prompt."""
    if isinstance(exc, UserRejected):
        return True
    if getattr(exc, "code", None) == _USER_REJECTED_CODE:
        return True
    message = str(exc).lower()
    return any(marker in message for marker in _USER_REJECTED_MARKERS)
