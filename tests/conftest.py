"""Shared pytest fixtures for all tests."""
import pytest
from datetime import datetime, timedelta, timezone
from typing import Any, List, Optional

from shift_journey import (
    AuthSession,
    Backend,
    Goal,
    Journey,
    JourneyConfig,
    Milestone,
    User,
    new_id,
)

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = NOW) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: Any) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


def make_session(identity: str = "device-1") -> AuthSession:
    return AuthSession(identity=identity)


def make_goal(**overrides: Any) -> Goal:
    """Build a Goal with defaults for all required fields."""
    defaults: dict[str, Any] = {
        "goal_id": new_id(),
        "user_id": "user-1",
        "title": "Run a marathon",
        "created_at": NOW,
    }
    defaults.update(overrides)
    return Goal(**defaults)


def make_milestone(**overrides: Any) -> Milestone:
    """Build a pending Milestone with defaults for all required fields."""
    defaults: dict[str, Any] = {
        "milestone_id": new_id(),
        "goal_id": "goal-1",
        "user_id": "user-1",
        "number": 1,
        "title": "Run 5k",
    }
    defaults.update(overrides)
    return Milestone(**defaults)


async def start_journey(
    journey: Journey,
    backend: Backend,
    score: Optional[int] = None,
    streak: int = 0,
    identity: str = "device-1",
) -> User:
    """Load *journey* for a fresh session, optionally seeding score/streak."""
    session = make_session(identity)
    user = await backend.users.get_or_create(session)
    if score is not None or streak:
        await backend.integrity.update_score_and_streak(
            user.user_id,
            user.integrity_score if score is None else score,
            streak,
        )
    return await journey.load(session)


async def add_milestones(journey: Journey, *titles: str) -> List[Milestone]:
    return [await journey.add_milestone(title) for title in titles]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def backend() -> Backend:
    return Backend.in_memory()


@pytest.fixture
def config() -> JourneyConfig:
    return JourneyConfig()


@pytest.fixture
def journey(backend: Backend, config: JourneyConfig, clock: FakeClock) -> Journey:
    return Journey(backend, config=config, clock=clock)
