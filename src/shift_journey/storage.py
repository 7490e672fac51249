"""Persistence collaborator interfaces and in-memory adapters.

The core never talks to a database directly. It awaits the abstract
stores below and reacts to success or :class:`StorageError`. The
``InMemory*`` adapters are reference implementations used by tests and
local tooling.
"""
from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import (
    Awaitable,
    Callable,
    Dict,
    List,
    Optional,
    Sequence,
    TypeVar,
)

from shift_journey.models import (
    ArchivedGoal,
    AuthSession,
    CalendarEntry,
    Goal,
    GoalStatus,
    Milestone,
    MilestoneStatus,
    PersistenceError,
    Promise,
    StorageError,
    User,
    new_id,
)
from shift_journey.ledger import IntegrityHistoryRecord

logger = logging.getLogger("shift_journey.storage")

T = TypeVar("T")


async def call_store(
    awaitable: Awaitable[T], action: str, timeout: Optional[float] = None
) -> T:
    """Await a store call, translating failures into PersistenceError.

    Args:
        awaitable: The pending store call.
        action: Human-readable description used in the error message
            (e.g. ``"lock your promise"``).
        timeout: Optional seconds to wait before giving up.

    Raises:
        PersistenceError: If the store raised StorageError or timed out.
    """
    try:
        if timeout is None:
            return await awaitable
        return await asyncio.wait_for(awaitable, timeout)
    except (StorageError, asyncio.TimeoutError) as err:
        logger.warning("Persistence call failed while trying to %s: %r", action, err)
        raise PersistenceError(action) from err


# ---------------------------------------------------------------------------
# Abstract stores
# ---------------------------------------------------------------------------


class UserStore(ABC):
    """Abstract user record storage."""

    @abstractmethod
    async def get_or_create(self, session: AuthSession, initial_score: int = 100) -> User:
        """Load the user bound to *session*, creating it on first use."""
        pass

    @abstractmethod
    async def get(self, user_id: str) -> Optional[User]:
        pass


class GoalStore(ABC):
    """Abstract goal storage."""

    @abstractmethod
    async def create(self, goal: Goal) -> Goal:
        pass

    @abstractmethod
    async def get_active(self, user_id: str) -> Optional[Goal]:
        pass

    @abstractmethod
    async def get_completed(self, user_id: str) -> List[ArchivedGoal]:
        """Completed goals for *user_id*, newest first."""
        pass

    @abstractmethod
    async def mark_completed(self, archived: ArchivedGoal) -> None:
        """Persist completion (reflection, final score, stats) of a goal."""
        pass

    @abstractmethod
    async def delete(self, goal_id: str) -> None:
        """Delete an active goal together with its milestones."""
        pass

    @abstractmethod
    async def restore(self, goal: Goal) -> None:
        """Reinstate *goal* exactly as given (compensating write)."""
        pass


class MilestoneStore(ABC):
    """Abstract milestone storage."""

    @abstractmethod
    async def create(self, milestone: Milestone) -> Milestone:
        pass

    @abstractmethod
    async def list_for_goal(self, goal_id: str) -> List[Milestone]:
        """Milestones of *goal_id* ordered by number."""
        pass

    @abstractmethod
    async def update_title(self, milestone_id: str, title: str) -> None:
        pass

    @abstractmethod
    async def delete(self, milestone_id: str) -> None:
        pass

    @abstractmethod
    async def renumber(self, goal_id: str, ordered_ids: Sequence[str]) -> None:
        """Assign numbers 1..N to *ordered_ids* in the given order."""
        pass

    @abstractmethod
    async def lock(self, milestone_id: str, promise: Promise, share_token: str) -> None:
        pass

    @abstractmethod
    async def complete(self, milestone_id: str, completed_at: datetime) -> None:
        pass

    @abstractmethod
    async def break_promise(
        self,
        milestone_id: str,
        reason: str,
        broken_at: datetime,
        auto_expired: bool = False,
    ) -> None:
        pass

    @abstractmethod
    async def add_witness(self, milestone_id: str) -> int:
        """Increment and return the witness count."""
        pass

    @abstractmethod
    async def get_by_share_token(self, share_token: str) -> Optional[Milestone]:
        pass

    @abstractmethod
    async def restore(self, milestone: Milestone) -> None:
        """Reinstate *milestone* exactly as given (compensating write)."""
        pass


class IntegrityStore(ABC):
    """Abstract integrity score and history storage."""

    @abstractmethod
    async def update_score_and_streak(self, user_id: str, score: int, streak: int) -> None:
        pass

    @abstractmethod
    async def append_history(self, record: IntegrityHistoryRecord) -> None:
        pass

    @abstractmethod
    async def list_history(self, user_id: str, limit: int = 50) -> List[IntegrityHistoryRecord]:
        """The latest *limit* records for *user_id*, oldest first."""
        pass


class CalendarStore(ABC):
    """Abstract calendar entry storage."""

    @abstractmethod
    async def upsert(self, user_id: str, entry: CalendarEntry) -> None:
        pass

    @abstractmethod
    async def list_for_user(self, user_id: str) -> List[CalendarEntry]:
        pass


class SessionEvent(str, Enum):
    """Session-change notifications from the identity provider."""

    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"


SessionListener = Callable[[SessionEvent, Optional[AuthSession]], Awaitable[None]]


class SessionProvider(ABC):
    """Abstract identity provider."""

    @abstractmethod
    async def get_current_session(self) -> Optional[AuthSession]:
        pass

    @abstractmethod
    async def sign_in_anonymously(self) -> Optional[AuthSession]:
        pass

    @abstractmethod
    async def sign_in_with_provider(self, provider: str) -> Optional[AuthSession]:
        pass

    @abstractmethod
    async def sign_out(self) -> None:
        pass

    @abstractmethod
    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        """Register *listener*; returns a callable that unsubscribes it."""
        pass


# ---------------------------------------------------------------------------
# In-memory adapters
# ---------------------------------------------------------------------------


class InMemoryUserStore(UserStore):
    """Dict-backed user storage keyed by session identity."""

    def __init__(self) -> None:
        self._users: Dict[str, User] = {}
        self._by_identity: Dict[str, str] = {}

    async def get_or_create(self, session: AuthSession, initial_score: int = 100) -> User:
        user_id = self._by_identity.get(session.identity)
        if user_id is not None:
            return self._users[user_id]
        user = User(
            user_id=new_id(),
            identity=session.identity,
            integrity_score=initial_score,
            failure_streak=0,
        )
        self._users[user.user_id] = user
        self._by_identity[session.identity] = user.user_id
        return user

    async def get(self, user_id: str) -> Optional[User]:
        return self._users.get(user_id)

    def put(self, user: User) -> None:
        if user.user_id not in self._users:
            raise StorageError(f"User {user.user_id} not found")
        self._users[user.user_id] = user


class InMemoryMilestoneStore(MilestoneStore):
    """Dict-backed milestone storage."""

    def __init__(self) -> None:
        self._milestones: Dict[str, Milestone] = {}

    def _get(self, milestone_id: str) -> Milestone:
        try:
            return self._milestones[milestone_id]
        except KeyError:
            raise StorageError(f"Milestone {milestone_id} not found") from None

    def _put(self, milestone: Milestone) -> None:
        self._milestones[milestone.milestone_id] = milestone

    async def create(self, milestone: Milestone) -> Milestone:
        if milestone.milestone_id in self._milestones:
            raise StorageError(f"Milestone {milestone.milestone_id} already exists")
        self._put(milestone)
        return milestone

    async def list_for_goal(self, goal_id: str) -> List[Milestone]:
        return sorted(
            (m for m in self._milestones.values() if m.goal_id == goal_id),
            key=lambda m: m.number,
        )

    async def update_title(self, milestone_id: str, title: str) -> None:
        self._put(self._get(milestone_id).model_copy(update={"title": title}))

    async def delete(self, milestone_id: str) -> None:
        self._get(milestone_id)
        del self._milestones[milestone_id]

    def delete_for_goal(self, goal_id: str) -> None:
        for milestone_id in [m.milestone_id for m in self._milestones.values() if m.goal_id == goal_id]:
            del self._milestones[milestone_id]

    async def renumber(self, goal_id: str, ordered_ids: Sequence[str]) -> None:
        for number, milestone_id in enumerate(ordered_ids, start=1):
            milestone = self._get(milestone_id)
            if milestone.goal_id != goal_id:
                raise StorageError(f"Milestone {milestone_id} does not belong to goal {goal_id}")
            self._put(milestone.model_copy(update={"number": number}))

    async def lock(self, milestone_id: str, promise: Promise, share_token: str) -> None:
        self._put(self._get(milestone_id).model_copy(update={
            "status": MilestoneStatus.LOCKED,
            "promise": promise,
            "share_token": share_token,
        }))

    async def complete(self, milestone_id: str, completed_at: datetime) -> None:
        self._put(self._get(milestone_id).model_copy(update={
            "status": MilestoneStatus.COMPLETED,
            "completed_at": completed_at,
        }))

    async def break_promise(
        self,
        milestone_id: str,
        reason: str,
        broken_at: datetime,
        auto_expired: bool = False,
    ) -> None:
        self._put(self._get(milestone_id).model_copy(update={
            "status": MilestoneStatus.BROKEN,
            "reason": reason,
            "broken_at": broken_at,
            "auto_expired": auto_expired,
        }))

    async def add_witness(self, milestone_id: str) -> int:
        milestone = self._get(milestone_id)
        if milestone.promise is None:
            raise StorageError(f"Milestone {milestone_id} has no promise")
        count = milestone.promise.witness_count + 1
        promise = milestone.promise.model_copy(update={"witness_count": count})
        self._put(milestone.model_copy(update={"promise": promise}))
        return count

    async def get_by_share_token(self, share_token: str) -> Optional[Milestone]:
        for milestone in self._milestones.values():
            if milestone.share_token == share_token:
                return milestone
        return None

    async def restore(self, milestone: Milestone) -> None:
        self._put(milestone)


class InMemoryGoalStore(GoalStore):
    """Dict-backed goal storage. Deleting a goal cascades to its milestones."""

    def __init__(self, milestones: Optional[InMemoryMilestoneStore] = None) -> None:
        self._goals: Dict[str, Goal] = {}
        self._archive: Dict[str, ArchivedGoal] = {}
        self._milestones = milestones

    async def create(self, goal: Goal) -> Goal:
        if goal.goal_id in self._goals:
            raise StorageError(f"Goal {goal.goal_id} already exists")
        self._goals[goal.goal_id] = goal
        return goal

    async def get_active(self, user_id: str) -> Optional[Goal]:
        active = [
            g for g in self._goals.values()
            if g.user_id == user_id and g.status is GoalStatus.ACTIVE
        ]
        if not active:
            return None
        return max(active, key=lambda g: g.created_at)

    async def get_completed(self, user_id: str) -> List[ArchivedGoal]:
        return sorted(
            (a for a in self._archive.values() if a.goal.user_id == user_id),
            key=lambda a: a.completed_at,
            reverse=True,
        )

    async def mark_completed(self, archived: ArchivedGoal) -> None:
        goal_id = archived.goal.goal_id
        if goal_id not in self._goals:
            raise StorageError(f"Goal {goal_id} not found")
        self._goals[goal_id] = archived.goal
        self._archive[goal_id] = archived

    async def delete(self, goal_id: str) -> None:
        if goal_id not in self._goals:
            raise StorageError(f"Goal {goal_id} not found")
        del self._goals[goal_id]
        if self._milestones is not None:
            self._milestones.delete_for_goal(goal_id)

    async def restore(self, goal: Goal) -> None:
        self._goals[goal.goal_id] = goal
        if goal.status is GoalStatus.ACTIVE:
            self._archive.pop(goal.goal_id, None)


class InMemoryIntegrityStore(IntegrityStore):
    """Integrity storage writing scores through to an InMemoryUserStore."""

    def __init__(self, users: InMemoryUserStore) -> None:
        self._users = users
        self._history: List[IntegrityHistoryRecord] = []

    async def update_score_and_streak(self, user_id: str, score: int, streak: int) -> None:
        user = await self._users.get(user_id)
        if user is None:
            raise StorageError(f"User {user_id} not found")
        self._users.put(
            user.model_copy(update={"integrity_score": score, "failure_streak": streak})
        )

    async def append_history(self, record: IntegrityHistoryRecord) -> None:
        if any(r.record_id == record.record_id for r in self._history):
            raise StorageError(f"History record {record.record_id} already exists")
        self._history.append(record)

    async def list_history(self, user_id: str, limit: int = 50) -> List[IntegrityHistoryRecord]:
        records = [r for r in self._history if r.user_id == user_id]
        records.sort(key=lambda r: (r.recorded_at, r.record_id))
        return records[-limit:]


class InMemoryCalendarStore(CalendarStore):
    """Dict-backed calendar storage keyed by (user, day)."""

    def __init__(self) -> None:
        self._entries: Dict[str, Dict[date, CalendarEntry]] = {}

    async def upsert(self, user_id: str, entry: CalendarEntry) -> None:
        self._entries.setdefault(user_id, {})[entry.day] = entry

    async def list_for_user(self, user_id: str) -> List[CalendarEntry]:
        return sorted(self._entries.get(user_id, {}).values(), key=lambda e: e.day)


class InMemorySessionProvider(SessionProvider):
    """Identity provider double; sign-in and sign-out notify listeners."""

    def __init__(self, session: Optional[AuthSession] = None) -> None:
        self._session = session
        self._listeners: List[SessionListener] = []

    async def get_current_session(self) -> Optional[AuthSession]:
        return self._session

    async def sign_in_anonymously(self) -> Optional[AuthSession]:
        self._session = AuthSession(identity=new_id(), provider="anonymous", is_anonymous=True)
        await self.emit(SessionEvent.SIGNED_IN, self._session)
        return self._session

    async def sign_in_with_provider(self, provider: str) -> Optional[AuthSession]:
        self._session = AuthSession(
            identity=f"{provider}:{new_id()}", provider=provider, is_anonymous=False
        )
        await self.emit(SessionEvent.SIGNED_IN, self._session)
        return self._session

    async def sign_out(self) -> None:
        self._session = None
        await self.emit(SessionEvent.SIGNED_OUT, None)

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    async def emit(self, event: SessionEvent, session: Optional[AuthSession]) -> None:
        """Deliver *event* to every listener, in subscription order."""
        for listener in list(self._listeners):
            await listener(event, session)


# ---------------------------------------------------------------------------
# Backend bundle
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Backend:
    """The set of stores a journey persists through."""

    users: UserStore
    goals: GoalStore
    milestones: MilestoneStore
    integrity: IntegrityStore
    calendar: CalendarStore

    @classmethod
    def in_memory(cls) -> "Backend":
        users = InMemoryUserStore()
        milestones = InMemoryMilestoneStore()
        return cls(
            users=users,
            goals=InMemoryGoalStore(milestones),
            milestones=milestones,
            integrity=InMemoryIntegrityStore(users),
            calendar=InMemoryCalendarStore(),
        )
