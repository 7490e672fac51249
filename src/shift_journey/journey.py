"""The per-user journey aggregate.

A :class:`Journey` owns one user's state (score, streak, active goal, its
milestones, goal history, integrity ledger and calendar) and is the only
place where lifecycle transitions, scoring and persistence meet. Callers
hold a journey instance explicitly; there is no module-level state.

Every mutating operation follows the same shape:

1. validate against in-memory state (raising before any I/O),
2. await the persistence calls, compensating earlier writes if a later
   one fails,
3. replace the in-memory state with the confirmed result.

Mutations are serialized with an :class:`asyncio.Lock`, so two concurrent
callers can never both pass a "no promise is locked" check.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple, TypeVar

from shift_journey import lifecycle
from shift_journey.config import DEFAULT_CONFIG, JourneyConfig
from shift_journey.journal import CalendarJournal
from shift_journey.ledger import (
    IntegrityHistoryRecord,
    IntegrityLedger,
    ReducedIntegrityState,
    reduce_history,
    streak_before,
)
from shift_journey.models import (
    ArchivedGoal,
    AuthSession,
    Goal,
    GoalStats,
    GoalStatus,
    InvariantViolation,
    Milestone,
    MilestoneStatus,
    NotFoundError,
    PersistenceError,
    User,
    new_id,
    rounded_percent,
)
from shift_journey.scoring import Outcome, ScoreResult, apply_outcome
from shift_journey.storage import Backend, call_store
from shift_journey.tiers import TierChangeNotification, detect_change

logger = logging.getLogger("shift_journey.journey")

T = TypeVar("T")


@dataclass(frozen=True)
class PromiseOutcome:
    """Result of keeping or breaking a promise."""

    milestone: Milestone
    score: ScoreResult
    record: IntegrityHistoryRecord
    tier_change: Optional[TierChangeNotification]


@dataclass(frozen=True)
class GoalCompletion:
    """Result of finishing a goal."""

    archived: ArchivedGoal
    score: ScoreResult
    record: IntegrityHistoryRecord
    tier_change: Optional[TierChangeNotification]


@dataclass(frozen=True)
class _ScoreCommit:
    result: ScoreResult
    record: IntegrityHistoryRecord
    tier_change: Optional[TierChangeNotification]


def goal_stats(milestones: Sequence[Milestone]) -> GoalStats:
    """Totals and success rate for a goal's milestones.

    The success rate is kept / (kept + broken) as a percentage, rounded
    half up; 0 when nothing has been resolved.
    """
    completed = sum(1 for m in milestones if m.status is MilestoneStatus.COMPLETED)
    broken = sum(1 for m in milestones if m.status is MilestoneStatus.BROKEN)
    resolved = completed + broken
    rate = rounded_percent(completed, resolved)
    return GoalStats(
        total=len(milestones),
        completed=completed,
        broken=broken,
        success_rate=rate,
    )


class Journey:
    """One user's goal, milestones and integrity state."""

    def __init__(
        self,
        backend: Backend,
        config: Optional[JourneyConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._backend = backend
        self._config = config or DEFAULT_CONFIG
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._lock = asyncio.Lock()
        self._user: Optional[User] = None
        self._goal: Optional[Goal] = None
        self._milestones: Tuple[Milestone, ...] = ()
        self._goal_history: Tuple[ArchivedGoal, ...] = ()
        self._ledger = IntegrityLedger()
        self._calendar: Optional[CalendarJournal] = None
        self._tier_change: Optional[TierChangeNotification] = None
        self._history_truncated = False

    # ── State ────────────────────────────────────────────────────────────

    @property
    def config(self) -> JourneyConfig:
        return self._config

    @property
    def is_loaded(self) -> bool:
        return self._user is not None

    @property
    def user(self) -> Optional[User]:
        return self._user

    @property
    def goal(self) -> Optional[Goal]:
        return self._goal

    @property
    def milestones(self) -> Tuple[Milestone, ...]:
        return self._milestones

    @property
    def goal_history(self) -> Tuple[ArchivedGoal, ...]:
        return self._goal_history

    @property
    def ledger(self) -> IntegrityLedger:
        return self._ledger

    @property
    def calendar(self) -> CalendarJournal:
        if self._calendar is None:
            raise NotFoundError("No user loaded; bootstrap the session first")
        return self._calendar

    @property
    def locked_milestone(self) -> Optional[Milestone]:
        return lifecycle.find_locked(self._milestones)

    @property
    def next_available_milestone(self) -> Optional[Milestone]:
        """First pending milestone, unless a promise is already locked."""
        if self.locked_milestone is not None:
            return None
        return next(
            (m for m in self._milestones if m.status is MilestoneStatus.PENDING), None
        )

    @property
    def can_create_goal(self) -> bool:
        return self.locked_milestone is None

    @property
    def can_complete_goal(self) -> bool:
        return (
            self._goal is not None
            and len(self._milestones) > 0
            and all(m.is_resolved for m in self._milestones)
        )

    @property
    def tier_change(self) -> Optional[TierChangeNotification]:
        return self._tier_change

    def dismiss_tier_change(self) -> Optional[TierChangeNotification]:
        """Consume the pending tier-change notification."""
        notification, self._tier_change = self._tier_change, None
        return notification

    def time_remaining(self) -> Optional[lifecycle.TimeRemaining]:
        locked = self.locked_milestone
        if locked is None:
            return None
        return lifecycle.time_remaining(locked, self._clock())

    def audit(self) -> ReducedIntegrityState:
        """Replay the loaded ledger.

        A full history replays from the initial score. When only the latest
        ``history_limit`` records were loaded, the replay starts from the
        state recorded just before the oldest loaded record.
        """
        records = self._ledger.records
        if self._history_truncated and records:
            first = records[0]
            return reduce_history(records, first.previous_score, streak_before(first))
        return reduce_history(records, self._config.score_policy.initial_score)

    # ── Session ──────────────────────────────────────────────────────────

    async def load(self, session: AuthSession) -> User:
        """Load (or create) the user bound to *session* and all their state.

        Nothing is replaced in memory until every load has succeeded.
        """
        async with self._lock:
            backend = self._backend
            user = await self._call(
                backend.users.get_or_create(
                    session, self._config.score_policy.initial_score
                ),
                "load your account",
            )
            goal = await self._call(backend.goals.get_active(user.user_id), "load your goal")
            milestones: List[Milestone] = []
            if goal is not None:
                milestones = await self._call(
                    backend.milestones.list_for_goal(goal.goal_id), "load your milestones"
                )
            history = await self._call(
                backend.goals.get_completed(user.user_id), "load your goal history"
            )
            records = await self._call(
                backend.integrity.list_history(user.user_id, self._config.history_limit),
                "load your integrity history",
            )
            calendar = CalendarJournal(
                backend.calendar,
                user.user_id,
                clock=self._clock,
                lookback_days=self._config.streak_lookback_days,
                timeout=self._config.persistence_timeout,
            )
            await calendar.load()

            self._user = user
            self._goal = goal
            self._milestones = lifecycle.renumber(milestones)
            self._goal_history = tuple(history)
            self._ledger = IntegrityLedger(records)
            self._history_truncated = len(records) >= self._config.history_limit
            self._calendar = calendar
            self._tier_change = None
            logger.info(
                "Loaded user %s (score=%d, streak=%d, goal=%s, milestones=%d)",
                user.user_id, user.integrity_score, user.failure_streak,
                goal.goal_id if goal else None, len(milestones),
            )
            return user

    async def reset(self) -> None:
        """Forget all in-memory state (e.g. after sign-out).

        Waits for any in-flight mutation to finish first.
        """
        async with self._lock:
            self._user = None
            self._goal = None
            self._milestones = ()
            self._goal_history = ()
            self._ledger = IntegrityLedger()
            self._history_truncated = False
            self._calendar = None
            self._tier_change = None

    # ── Goals ────────────────────────────────────────────────────────────

    async def create_goal(self, title: str, description: Optional[str] = None) -> Goal:
        """Start a new active goal.

        Rejected while any milestone is locked. An existing active goal
        without a locked promise is replaced: it is deleted together with
        its milestones and never archived.
        """
        async with self._lock:
            user = self._require_user()
            locked = self.locked_milestone
            if locked is not None:
                raise InvariantViolation((
                    f"Cannot create a new goal while milestone #{locked.number} "
                    f"is locked; keep or break it first",
                ))
            if not title or not title.strip():
                raise InvariantViolation(("Goal title must not be empty",))

            goal = Goal(
                goal_id=new_id(),
                user_id=user.user_id,
                title=title.strip(),
                description=description,
                created_at=self._clock(),
            )
            previous = self._goal
            await self._call(self._backend.goals.create(goal), "create your goal")
            if previous is not None:
                try:
                    await self._call(
                        self._backend.goals.delete(previous.goal_id), "replace your goal"
                    )
                except PersistenceError:
                    await self._compensate(
                        self._backend.goals.delete(goal.goal_id), "discard the new goal"
                    )
                    raise
                logger.info("Goal %s replaced by %s", previous.goal_id, goal.goal_id)

            self._goal = goal
            self._milestones = ()
            logger.info("Goal %s created for user %s", goal.goal_id, user.user_id)
            return goal

    async def complete_goal(self, reflection: str) -> GoalCompletion:
        """Finish the active goal, apply the completion bonus and archive it.

        Requires at least one milestone, none pending or locked, and a
        non-empty reflection.
        """
        async with self._lock:
            user = self._require_user()
            goal = self._require_goal()

            violations: List[str] = []
            if not self._milestones:
                violations.append("Add at least one milestone before finishing the goal")
            unresolved = [m for m in self._milestones if not m.is_resolved]
            if unresolved:
                numbers = ", ".join(f"#{m.number}" for m in unresolved)
                violations.append(f"Milestones {numbers} are still pending or locked")
            if not reflection or not reflection.strip():
                violations.append("A reflection is required to finish the goal")
            if violations:
                raise InvariantViolation(tuple(violations))

            now = self._clock()
            result = apply_outcome(
                user.integrity_score,
                user.failure_streak,
                Outcome.GOAL_COMPLETED,
                self._config.score_policy,
            )
            archived = ArchivedGoal(
                goal=goal.model_copy(update={"status": GoalStatus.COMPLETED}),
                completed_at=now,
                reflection=reflection,
                milestones=self._milestones,
                stats=goal_stats(self._milestones),
                final_integrity_score=result.new_score,
            )

            await self._call(self._backend.goals.mark_completed(archived), "finish your goal")
            try:
                commit = await self._persist_score(
                    user, Outcome.GOAL_COMPLETED, result, goal_id=goal.goal_id
                )
            except PersistenceError:
                await self._compensate(
                    self._backend.goals.restore(goal), "reopen the goal"
                )
                raise

            self._commit_score(commit)
            self._goal_history = (archived,) + self._goal_history
            self._goal = None
            self._milestones = ()
            logger.info(
                "Goal %s completed: %d/%d kept, success rate %d%%",
                goal.goal_id, archived.stats.completed, archived.stats.total,
                archived.stats.success_rate,
            )
            return GoalCompletion(
                archived=archived,
                score=commit.result,
                record=commit.record,
                tier_change=commit.tier_change,
            )

    # ── Milestones ───────────────────────────────────────────────────────

    async def add_milestone(self, title: str) -> Milestone:
        async with self._lock:
            goal = self._require_goal()
            draft = lifecycle.new_milestone(goal, title, self._milestones)
            created = await self._call(
                self._backend.milestones.create(draft), "add your milestone"
            )
            self._milestones = self._milestones + (created,)
            return created

    async def edit_milestone(self, milestone_id: str, title: str) -> Milestone:
        async with self._lock:
            updated = lifecycle.edit_title(self._find(milestone_id), title)
            await self._call(
                self._backend.milestones.update_title(milestone_id, updated.title),
                "rename your milestone",
            )
            self._replace(updated)
            return updated

    async def delete_milestone(self, milestone_id: str) -> Tuple[Milestone, ...]:
        """Delete a pending milestone and renumber the rest densely."""
        async with self._lock:
            goal = self._require_goal()
            milestone = self._find(milestone_id)
            lifecycle.ensure_deletable(milestone)
            remaining = lifecycle.renumber(
                [m for m in self._milestones if m.milestone_id != milestone_id]
            )

            await self._call(
                self._backend.milestones.delete(milestone_id), "delete your milestone"
            )
            try:
                await self._call(
                    self._backend.milestones.renumber(
                        goal.goal_id, [m.milestone_id for m in remaining]
                    ),
                    "renumber your milestones",
                )
            except PersistenceError:
                await self._compensate(
                    self._backend.milestones.restore(milestone), "restore the milestone"
                )
                raise

            self._milestones = remaining
            return remaining

    async def reorder_milestone(self, milestone_id: str, new_index: int) -> Tuple[Milestone, ...]:
        """Move a pending milestone to *new_index* (0-based)."""
        async with self._lock:
            goal = self._require_goal()
            reordered = lifecycle.move(self._milestones, milestone_id, new_index)
            await self._call(
                self._backend.milestones.renumber(
                    goal.goal_id, [m.milestone_id for m in reordered]
                ),
                "reorder your milestones",
            )
            self._milestones = reordered
            return reordered

    # ── Promises ─────────────────────────────────────────────────────────

    async def lock_promise(
        self,
        milestone_id: str,
        text: str,
        deadline: datetime,
        consequence: Optional[str] = None,
    ) -> Milestone:
        """Lock a pending milestone; only one promise may be locked at a time."""
        async with self._lock:
            locked = lifecycle.lock(
                self._find(milestone_id),
                text,
                deadline,
                consequence,
                self._clock(),
                self._milestones,
            )
            promise, share_token = locked.promise, locked.share_token
            if promise is None or share_token is None:
                raise InvariantViolation((f"Milestone #{locked.number} has no promise to lock",))
            await self._call(
                self._backend.milestones.lock(milestone_id, promise, share_token),
                "lock your promise",
            )
            self._replace(locked)
            logger.info(
                "Milestone #%d locked until %s",
                locked.number, promise.deadline.isoformat(),
            )
            return locked

    async def complete_milestone(self, milestone_id: str, force: bool = False) -> PromiseOutcome:
        """Keep a locked promise (+score, streak reset)."""
        async with self._lock:
            user = self._require_user()
            original = self._find(milestone_id)
            now = self._clock()
            kept = lifecycle.complete(original, now, force=force)
            await self._call(
                self._backend.milestones.complete(milestone_id, now),
                "mark your promise as kept",
            )
            return await self._resolve(user, original, kept, Outcome.KEPT)

    async def break_promise(self, milestone_id: str, reason: str) -> PromiseOutcome:
        """Break a locked promise with a mandatory reflection (-score, streak+1)."""
        async with self._lock:
            user = self._require_user()
            original = self._find(milestone_id)
            now = self._clock()
            broken = lifecycle.break_promise(original, reason, now)
            await self._call(
                self._backend.milestones.break_promise(milestone_id, reason, now),
                "mark your promise as broken",
            )
            return await self._resolve(user, original, broken, Outcome.BROKEN)

    async def expire_overdue(self) -> Optional[PromiseOutcome]:
        """Break the locked promise if its deadline has passed.

        Returns None when there is nothing overdue.
        """
        async with self._lock:
            original = self.locked_milestone
            now = self._clock()
            if original is None or not lifecycle.is_overdue(original, now):
                return None
            user = self._require_user()
            expired = lifecycle.expire(original, now)
            await self._call(
                self._backend.milestones.break_promise(
                    original.milestone_id, lifecycle.AUTO_EXPIRED_REASON, now,
                    auto_expired=True,
                ),
                "expire your promise",
            )
            logger.info("Milestone #%d expired at %s", original.number, now.isoformat())
            return await self._resolve(user, original, expired, Outcome.BROKEN)

    async def add_witness(self, milestone_id: str) -> Milestone:
        """Count one more witness on a locked promise. Does not affect score."""
        async with self._lock:
            witnessed = lifecycle.add_witness(self._find(milestone_id))
            count = await self._call(
                self._backend.milestones.add_witness(milestone_id), "add a witness"
            )
            promise = witnessed.promise
            if promise is not None and count != promise.witness_count:
                witnessed = witnessed.model_copy(update={
                    "promise": promise.model_copy(update={"witness_count": count})
                })
            self._replace(witnessed)
            return witnessed

    # ── Internals ────────────────────────────────────────────────────────

    async def _call(self, awaitable: Awaitable[T], action: str) -> T:
        return await call_store(awaitable, action, self._config.persistence_timeout)

    async def _compensate(self, awaitable: Awaitable[object], description: str) -> None:
        try:
            await self._call(awaitable, description)
        except PersistenceError:
            logger.exception("Compensating write failed: %s", description)
        else:
            logger.warning("Rolled back: %s", description)

    def _require_user(self) -> User:
        if self._user is None:
            raise NotFoundError("No user loaded; bootstrap the session first")
        return self._user

    def _require_goal(self) -> Goal:
        if self._goal is None:
            raise NotFoundError("There is no active goal")
        return self._goal

    def _find(self, milestone_id: str) -> Milestone:
        for milestone in self._milestones:
            if milestone.milestone_id == milestone_id:
                return milestone
        raise NotFoundError(f"Milestone {milestone_id} is not part of the active goal")

    def _replace(self, milestone: Milestone) -> None:
        self._milestones = tuple(
            milestone if m.milestone_id == milestone.milestone_id else m
            for m in self._milestones
        )

    async def _resolve(
        self,
        user: User,
        original: Milestone,
        resolved: Milestone,
        outcome: Outcome,
    ) -> PromiseOutcome:
        try:
            commit = await self._persist_score(
                user,
                outcome,
                milestone_id=original.milestone_id,
                goal_id=original.goal_id,
            )
        except PersistenceError:
            await self._compensate(
                self._backend.milestones.restore(original),
                f"restore milestone #{original.number}",
            )
            raise
        self._commit_score(commit)
        self._replace(resolved)
        logger.info(
            "Milestone #%d %s: score %d -> %d, streak %d",
            resolved.number, resolved.status.value, commit.result.previous_score,
            commit.result.new_score, commit.result.new_failure_streak,
        )
        return PromiseOutcome(
            milestone=resolved,
            score=commit.result,
            record=commit.record,
            tier_change=commit.tier_change,
        )

    async def _persist_score(
        self,
        user: User,
        outcome: Outcome,
        result: Optional[ScoreResult] = None,
        milestone_id: Optional[str] = None,
        goal_id: Optional[str] = None,
    ) -> _ScoreCommit:
        """Write the new score, then its ledger record.

        The ledger append is the commit point: if it fails the score write
        is reverted, so history never has to be deleted.
        """
        if result is None:
            result = apply_outcome(
                user.integrity_score,
                user.failure_streak,
                outcome,
                self._config.score_policy,
            )
        record = IntegrityHistoryRecord.from_result(
            user.user_id,
            outcome,
            result,
            recorded_at=self._clock(),
            milestone_id=milestone_id,
            goal_id=goal_id,
        )
        integrity = self._backend.integrity
        await self._call(
            integrity.update_score_and_streak(
                user.user_id, result.new_score, result.new_failure_streak
            ),
            "update your integrity score",
        )
        try:
            await self._call(integrity.append_history(record), "record your integrity history")
        except PersistenceError:
            await self._compensate(
                integrity.update_score_and_streak(
                    user.user_id, result.previous_score, result.previous_failure_streak
                ),
                "revert the integrity score",
            )
            raise
        return _ScoreCommit(
            result=result,
            record=record,
            tier_change=detect_change(
                result.previous_score, result.new_score, result.effective_change
            ),
        )

    def _commit_score(self, commit: _ScoreCommit) -> None:
        user = self._require_user()
        self._user = user.model_copy(update={
            "integrity_score": commit.result.new_score,
            "failure_streak": commit.result.new_failure_streak,
        })
        self._ledger.record(commit.record)
        if commit.tier_change is not None:
            self._tier_change = commit.tier_change
