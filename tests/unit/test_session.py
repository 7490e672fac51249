"""Unit tests for the session bootstrap guard."""
from typing import List, Optional

import pytest

from conftest import make_session
from shift_journey.journey import Journey
from shift_journey.models import (
    AuthSession,
    NotFoundError,
    PersistenceError,
    SessionBootstrapError,
    StorageError,
)
from shift_journey.session import SessionGuard
from shift_journey.storage import Backend, InMemorySessionProvider, SessionEvent

pytestmark = pytest.mark.asyncio


class RecordingLoader:
    def __init__(self, fail: bool = False) -> None:
        self.calls: List[AuthSession] = []
        self.fail = fail

    async def __call__(self, session: AuthSession) -> None:
        self.calls.append(session)
        if self.fail:
            raise PersistenceError("load your account")


class MissingUserLoader(RecordingLoader):
    async def __call__(self, session: AuthSession) -> None:
        self.calls.append(session)
        if self.fail:
            raise NotFoundError("User for this session is gone")


class NoSessionProvider(InMemorySessionProvider):
    async def sign_in_anonymously(self) -> Optional[AuthSession]:
        return None


class OfflineProvider(InMemorySessionProvider):
    """Provider whose lookups fail until brought back online."""

    def __init__(self, session: Optional[AuthSession] = None) -> None:
        super().__init__(session)
        self.offline = True

    async def get_current_session(self) -> Optional[AuthSession]:
        if self.offline:
            raise StorageError("auth service unreachable")
        return await super().get_current_session()

    async def sign_in_anonymously(self) -> Optional[AuthSession]:
        if self.offline:
            raise StorageError("auth service unreachable")
        return await super().sign_in_anonymously()


async def _noop() -> None:
    return None


class TestBootstrap:
    """Tests for SessionGuard.bootstrap."""

    async def test_uses_existing_session(self) -> None:
        existing = make_session("returning-device")
        loader = RecordingLoader()
        guard = SessionGuard(InMemorySessionProvider(existing), loader, _noop)
        assert await guard.bootstrap() == existing
        assert loader.calls == [existing]
        assert guard.initialized

    async def test_anonymous_sign_in_loads_once(self) -> None:
        """The SIGNED_IN event fired during bootstrap must not load again."""
        provider = InMemorySessionProvider()
        loader = RecordingLoader()
        guard = SessionGuard(provider, loader, _noop)
        guard.attach()
        session = await guard.bootstrap()
        assert session.is_anonymous
        assert loader.calls == [session]

    async def test_runs_once(self) -> None:
        guard = SessionGuard(InMemorySessionProvider(make_session()), RecordingLoader(), _noop)
        await guard.bootstrap()
        with pytest.raises(SessionBootstrapError, match="already run"):
            await guard.bootstrap()

    async def test_no_session(self) -> None:
        guard = SessionGuard(NoSessionProvider(), RecordingLoader(), _noop)
        with pytest.raises(SessionBootstrapError, match="No session"):
            await guard.bootstrap()
        assert not guard.initialized

    async def test_load_failure(self) -> None:
        guard = SessionGuard(
            InMemorySessionProvider(make_session()), RecordingLoader(fail=True), _noop
        )
        with pytest.raises(SessionBootstrapError, match="Initial load failed") as exc_info:
            await guard.bootstrap()
        assert isinstance(exc_info.value.__cause__, PersistenceError)
        assert not guard.initialized

    async def test_provider_failure_is_wrapped(self) -> None:
        guard = SessionGuard(OfflineProvider(), RecordingLoader(), _noop)
        with pytest.raises(SessionBootstrapError, match="Could not establish a session") as exc_info:
            await guard.bootstrap()
        assert isinstance(exc_info.value.__cause__, StorageError)
        assert not guard.initialized

    async def test_retry_after_provider_failure(self) -> None:
        provider = OfflineProvider(make_session())
        loader = RecordingLoader()
        guard = SessionGuard(provider, loader, _noop)
        with pytest.raises(SessionBootstrapError):
            await guard.bootstrap()
        assert loader.calls == []

        provider.offline = False
        session = await guard.bootstrap()
        assert session == make_session()
        assert loader.calls == [session]
        assert guard.initialized

    async def test_any_loader_error_is_wrapped(self) -> None:
        guard = SessionGuard(
            InMemorySessionProvider(make_session()), MissingUserLoader(fail=True), _noop
        )
        with pytest.raises(SessionBootstrapError, match="Initial load failed") as exc_info:
            await guard.bootstrap()
        assert isinstance(exc_info.value.__cause__, NotFoundError)
        assert not guard.initialized

    async def test_retry_after_load_failure(self) -> None:
        loader = RecordingLoader(fail=True)
        guard = SessionGuard(InMemorySessionProvider(make_session()), loader, _noop)
        with pytest.raises(SessionBootstrapError):
            await guard.bootstrap()
        loader.fail = False
        await guard.bootstrap()
        assert len(loader.calls) == 2
        assert guard.initialized

    async def test_retry_after_no_session(self) -> None:
        guard = SessionGuard(NoSessionProvider(), RecordingLoader(), _noop)
        for _ in range(2):
            with pytest.raises(SessionBootstrapError, match="No session"):
                await guard.bootstrap()


class TestSessionChanges:
    """Tests for handle_session_change."""

    async def test_ignored_before_bootstrap(self) -> None:
        loader = RecordingLoader()
        guard = SessionGuard(InMemorySessionProvider(), loader, _noop)
        await guard.handle_session_change(SessionEvent.SIGNED_IN, make_session())
        assert loader.calls == []

    async def test_sign_in_after_bootstrap_reloads(self) -> None:
        provider = InMemorySessionProvider(make_session())
        loader = RecordingLoader()
        guard = SessionGuard(provider, loader, _noop)
        guard.attach()
        await guard.bootstrap()
        linked = await provider.sign_in_with_provider("google")
        assert loader.calls[-1] == linked
        assert len(loader.calls) == 2

    async def test_detach(self) -> None:
        provider = InMemorySessionProvider(make_session())
        loader = RecordingLoader()
        guard = SessionGuard(provider, loader, _noop)
        guard.attach()
        await guard.bootstrap()
        guard.detach()
        await provider.sign_in_with_provider("google")
        assert len(loader.calls) == 1

    async def test_sign_out_calls_handler(self) -> None:
        signed_out: List[bool] = []

        async def on_signed_out() -> None:
            signed_out.append(True)

        provider = InMemorySessionProvider(make_session())
        guard = SessionGuard(provider, RecordingLoader(), on_signed_out)
        guard.attach()
        await guard.bootstrap()
        await provider.sign_out()
        assert signed_out == [True]


class TestForJourney:
    """Tests for SessionGuard.for_journey."""

    async def test_bootstrap_loads_journey(self) -> None:
        journey = Journey(Backend.in_memory())
        guard = SessionGuard.for_journey(journey, InMemorySessionProvider())
        await guard.bootstrap()
        assert journey.is_loaded
        assert journey.user is not None
        assert journey.user.integrity_score == 100

    async def test_sign_out_restores_fresh_guest(self) -> None:
        provider = InMemorySessionProvider()
        journey = Journey(Backend.in_memory())
        guard = SessionGuard.for_journey(journey, provider)
        await guard.bootstrap()
        assert journey.user is not None
        first_user = journey.user.user_id
        await journey.create_goal("Learn Spanish")

        await provider.sign_out()

        assert journey.is_loaded
        assert journey.user is not None
        assert journey.user.user_id != first_user
        assert journey.goal is None
