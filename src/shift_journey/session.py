"""Session bootstrap guard.

The initial load and the identity provider's session-change callback can
both try to initialize application state. The guard lets the bootstrap
routine run exactly once and makes the listener a no-op until that
routine has finished.
"""
from __future__ import annotations

import logging
from typing import Awaitable, Callable, Optional

from shift_journey.journey import Journey
from shift_journey.models import AuthSession, SessionBootstrapError
from shift_journey.storage import SessionEvent, SessionProvider

logger = logging.getLogger("shift_journey.session")

SessionLoader = Callable[[AuthSession], Awaitable[object]]
SignedOutHandler = Callable[[], Awaitable[object]]


class SessionGuard:
    """Serializes bootstrap against asynchronous session-change events.

    Args:
        provider: Identity provider to establish and observe sessions with.
        loader: Loads application state for a session.
        on_signed_out: Re-establishes a guest-equivalent state after
            sign-out.
    """

    def __init__(
        self,
        provider: SessionProvider,
        loader: SessionLoader,
        on_signed_out: SignedOutHandler,
    ) -> None:
        self._provider = provider
        self._loader = loader
        self._on_signed_out = on_signed_out
        self._initialized = False
        self._started = False
        self._unsubscribe: Optional[Callable[[], None]] = None

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def bootstrap(self) -> AuthSession:
        """Establish a session and load its state, once.

        Uses the current session if there is one, otherwise signs in
        anonymously. The ``initialized`` flag is set only after the loader
        has completed.

        A failed bootstrap may be retried.

        Raises:
            SessionBootstrapError: If no session could be established or
                the initial load failed.
        """
        if self._started:
            raise SessionBootstrapError("Session bootstrap has already run")
        self._started = True

        try:
            session = await self._establish()
            try:
                await self._loader(session)
            except Exception as err:
                raise SessionBootstrapError(f"Initial load failed: {err}") from err
        except SessionBootstrapError:
            self._started = False
            raise

        self._initialized = True
        logger.info("Session bootstrapped for %s (%s)", session.identity, session.provider)
        return session

    async def _establish(self) -> AuthSession:
        try:
            session = await self._provider.get_current_session()
            if session is None:
                session = await self._provider.sign_in_anonymously()
        except Exception as err:
            raise SessionBootstrapError(f"Could not establish a session: {err}") from err
        if session is None:
            raise SessionBootstrapError("No session could be established")
        return session

    async def handle_session_change(
        self, event: SessionEvent, session: Optional[AuthSession]
    ) -> None:
        """Session-change listener; ignored until bootstrap has finished."""
        if not self._initialized:
            logger.debug("Ignoring %s before bootstrap completed", event.value)
            return

        if event is SessionEvent.SIGNED_IN and session is not None:
            logger.info("Signed in as %s; reloading", session.identity)
            await self._loader(session)
        elif event is SessionEvent.SIGNED_OUT:
            logger.info("Signed out; restoring guest session")
            await self._on_signed_out()
        else:
            logger.warning("Unhandled session event %s", event.value)

    def attach(self) -> None:
        """Subscribe the listener with the provider."""
        if self._unsubscribe is None:
            self._unsubscribe = self._provider.subscribe(self.handle_session_change)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    @classmethod
    def for_journey(cls, journey: Journey, provider: SessionProvider) -> "SessionGuard":
        """Wire a guard that loads *journey* and falls back to a guest session."""

        async def _signed_out() -> None:
            await journey.reset()
            session = await provider.sign_in_anonymously()
            if session is None:
                raise SessionBootstrapError("Could not restore a guest session")
            if not journey.is_loaded:
                await journey.load(session)

        guard = cls(provider, journey.load, _signed_out)
        guard.attach()
        return guard

