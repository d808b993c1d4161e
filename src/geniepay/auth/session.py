"""Wallet sign-in session manager.

Owns the sign-in state, the active :class:`AuthSession` and the recurring
expiry check. Construct one per connected signer, call :meth:`init` to
start listening for wallet events and :meth:`teardown` to stop.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Awaitable, Callable

from geniepay.auth.messages import utcnow
from geniepay.auth.models import AuthEvent, AuthSession, AuthState, SignatureOutcome
from geniepay.auth.signature import SignatureCoordinator
from geniepay.auth.state_machine import next_state
from geniepay.auth.terms import TermsGate
from geniepay.config import AuthConfig
from geniepay.errors import (
    GeniePayError,
    NoWalletConnected,
    SessionError,
    SessionExpired,
    StaleContext,
    UserRejected,
)
from geniepay.wallet.address import display_address, same_address
from geniepay.wallet.observer import WalletEvent, WalletEventObserver, WalletEventType
from geniepay.wallet.signer import WalletSigner

logger = logging.getLogger("geniepay.auth.session")

StateListener = Callable[[AuthState, AuthState], Awaitable[None]]

SESSION_EXPIRED_MESSAGE = "Your session has expired. Please sign in again."
SIGNATURE_REJECTED_MESSAGE = "Signature request was rejected. Please connect and sign to continue."


class SessionManager:
    """Drives ``disconnected -> pending_signature -> [pending_terms] -> authenticated``."""

    def __init__(
        self,
        observer: WalletEventObserver,
        signer: WalletSigner,
        coordinator: SignatureCoordinator,
        terms_gate: TermsGate,
        config: AuthConfig,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.observer = observer
        self.signer = signer
        self.coordinator = coordinator
        self.terms_gate = terms_gate
        self.config = config
        self._clock = clock

        self._state = AuthState.DISCONNECTED
        self._session: AuthSession | None = None
        self._error: str | None = None
        self._accepting_terms = False
        self._listeners: list[StateListener] = []
        self._expiry_task: asyncio.Task | None = None
        self._unsubscribe: Callable[[], None] | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def init(self) -> None:
        """Start following wallet events. Picks up an already connected wallet."""
        if self._unsubscribe is not None:
            return
        self._unsubscribe = self.observer.subscribe(self._on_wallet_event)
        if self.observer.is_connected:
            await self._dispatch(AuthEvent.WALLET_CONNECTED)

    async def teardown(self) -> None:
        """Stop following wallet events and cancel the expiry check."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        await self._stop_expiry_check()

    # ------------------------------------------------------------------
    # Read-only view
    # ------------------------------------------------------------------

    @property
    def state(self) -> AuthState:
        return self._state

    @property
    def session(self) -> AuthSession | None:
        return self._session

    @property
    def error(self) -> str | None:
        return self._error

    @property
    def is_loading(self) -> bool:
        return self.coordinator.is_loading or self._accepting_terms

    @property
    def is_authenticated(self) -> bool:
        return (
            self._state is AuthState.AUTHENTICATED
            and self._session is not None
            and not self._session.is_expired(self._clock())
        )

    @property
    def wallet_address(self) -> str | None:
        return self.observer.address

    @property
    def display_address(self) -> str:
        return display_address(self.observer.address)

    def require_session(self) -> AuthSession:
        """Return the signed-in session for an action that needs one.

        Raises ``SessionExpired`` once the session is past its expiry, even
        before the background check has downgraded it, and ``SessionError``
        when no wallet has signed in.
        """
        if self._session is not None and self._session.is_expired(self._clock()):
            raise SessionExpired(SESSION_EXPIRED_MESSAGE)
        if self._state is not AuthState.AUTHENTICATED or self._session is None:
            raise SessionError("Sign in with your wallet first.")
        return self._session

    def add_listener(self, listener: StateListener) -> None:
        """Register an async ``(old_state, new_state)`` callback."""
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    async def request_signature(self) -> None:
        """Prompt the wallet to sign a fresh challenge.

        A second call while the first is still waiting on the wallet does
        nothing. Any failure disconnects the wallet and resets to
        ``disconnected`` with :attr:`error` set.
        """
        if self.observer.address is None:
            raise NoWalletConnected("No wallet connected")
        if self._state is not AuthState.PENDING_SIGNATURE:
            raise SessionError(f"Cannot request a signature while {self._state.value}.")
        if self.coordinator.is_loading:
            return

        self._error = None
        try:
            result = await self.coordinator.request_signature()
        except StaleContext as exc:
            logger.warning(str(exc))
            return
        except UserRejected:
            logger.info(f"Signature declined by {self.observer.address}")
            await self._fail_closed(SIGNATURE_REJECTED_MESSAGE, AuthEvent.SIGNATURE_FAILED)
            return
        except GeniePayError as exc:
            logger.warning(f"Sign-in failed for {self.observer.address}: {exc}")
            await self._fail_closed(str(exc), AuthEvent.SIGNATURE_FAILED)
            return

        if result is None:
            return
        if self._state is not AuthState.PENDING_SIGNATURE or not same_address(
            result.session.wallet_address, self.observer.address
        ):
            logger.warning(
                f"Discarding signature for {result.session.wallet_address}; sign-in context changed"
            )
            return

        self._session = result.session
        if result.outcome is SignatureOutcome.NEW_WALLET:
            await self._dispatch(AuthEvent.SIGNATURE_NEW_WALLET)
        else:
            await self._dispatch(AuthEvent.SIGNATURE_KNOWN_WALLET)
        self._start_expiry_check()

    async def accept_terms(self) -> None:
        """Record consent for a first-time wallet and finish signing in."""
        if self._state is not AuthState.PENDING_TERMS or self._session is None:
            raise SessionError("No pending sign-in is waiting for terms acceptance.")
        address = self.observer.address
        if address is None:
            raise NoWalletConnected("No wallet connected")

        pending = self._session
        self._accepting_terms = True
        try:
            promoted = await self.terms_gate.accept(pending, address)
        except GeniePayError as exc:
            logger.warning(f"Terms acceptance failed for {address}: {exc}")
            await self._fail_closed(str(exc), AuthEvent.WALLET_DISCONNECTED)
            return
        finally:
            self._accepting_terms = False

        if self._state is not AuthState.PENDING_TERMS or self._session is not pending:
            logger.warning(f"Sign-in for {address} changed while saving consent; not promoting")
            return
        self._session = promoted
        await self._dispatch(AuthEvent.TERMS_ACCEPTED)

    async def decline_terms(self) -> None:
        """Refuse consent: disconnect and reset from whatever state we are in."""
        self._error = self.terms_gate.declined_message
        await self._disconnect_wallet()
        await self._dispatch(AuthEvent.TERMS_DECLINED)
        self._reset()

    async def disconnect(self) -> None:
        """Disconnect the wallet and clear the session."""
        await self._disconnect_wallet()
        await self._dispatch(AuthEvent.WALLET_DISCONNECTED)
        self._reset()

    async def refresh_session(self) -> None:
        """Sign a new challenge to extend (or recover) the session."""
        if self._state is AuthState.AUTHENTICATED:
            await self._dispatch(AuthEvent.REFRESH_REQUESTED)
        await self.request_signature()

    def clear_error(self) -> None:
        self._error = None

    async def check_expiry(self) -> bool:
        """Downgrade an expired session. Returns True if it did.

        Never authenticates; only ``authenticated -> pending_signature``.
        """
        if self._state is not AuthState.AUTHENTICATED or self._session is None:
            return False
        if not self._session.is_expired(self._clock()):
            return False
        logger.info(f"Session for {self._session.wallet_address} expired at {self._session.expires_at}")
        self._error = SESSION_EXPIRED_MESSAGE
        await self._dispatch(AuthEvent.SESSION_EXPIRED)
        return True

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _on_wallet_event(self, event: WalletEvent) -> None:
        if event.type is WalletEventType.CONNECTED:
            if self._session is None:
                await self._dispatch(AuthEvent.WALLET_CONNECTED)
        elif event.type is WalletEventType.DISCONNECTED:
            await self._dispatch(AuthEvent.WALLET_DISCONNECTED)
            self._reset()
        elif event.type is WalletEventType.ACCOUNT_CHANGED:
            # A different key needs its own signature.
            await self._dispatch(AuthEvent.WALLET_DISCONNECTED)
            self._reset()
            await self._dispatch(AuthEvent.WALLET_CONNECTED)

    async def _dispatch(self, event: AuthEvent) -> bool:
        old = self._state
        new = next_state(old, event)
        if new is None:
            logger.debug(f"Ignoring '{event.value}' in state '{old.value}'")
            return False
        self._state = new
        if new is AuthState.DISCONNECTED:
            self._reset()
        if new is not old:
            logger.info(f"Auth state {old.value} -> {new.value} ({event.value})")
            await self._notify(old, new)
        return True

    async def _notify(self, old: AuthState, new: AuthState) -> None:
        for listener in list(self._listeners):
            try:
                await listener(old, new)
            except Exception as e:
                logger.error(f"Auth state listener error: {e}")

    async def _fail_closed(self, message: str, event: AuthEvent) -> None:
        self._error = message
        await self._dispatch(event)
        await self._disconnect_wallet()
        self._reset()

    async def _disconnect_wallet(self) -> None:
        try:
            await self.signer.disconnect()
        except Exception as e:
            logger.error(f"Wallet disconnect failed: {e}")

    def _reset(self) -> None:
        self._state = AuthState.DISCONNECTED
        self._session = None
        if self._expiry_task is not None:
            self._expiry_task.cancel()
            self._expiry_task = None

    # ------------------------------------------------------------------
    # Expiry check
    # ------------------------------------------------------------------

    def _start_expiry_check(self) -> None:
        if self._expiry_task is None and self._session is not None:
            self._expiry_task = asyncio.create_task(self._expiry_loop())

    async def _stop_expiry_check(self) -> None:
        task, self._expiry_task = self._expiry_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _expiry_loop(self) -> None:
        interval = self.config.expiry_check_interval_seconds
        while True:
            await asyncio.sleep(interval)
            try:
                await self.check_expiry()
            except Exception as e:
                logger.error(f"Session expiry check failed: {e}")
