"""Milestone lifecycle state machine.

Sections:
    1. Constants and transition matrix
    2. Transition validation
    3. Pure transition functions
    4. Ordering helpers
    5. Deadline helpers

Every transition function is pure: it receives the current milestone (and
whatever sibling milestones the rule needs) and returns a new frozen
milestone, or raises before anything changes.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import FrozenSet, List, Optional, Sequence, Tuple

from shift_journey.models import (
    DeadlinePassedError,
    Goal,
    GoalStatus,
    ImmutableMilestoneError,
    InvariantViolation,
    Milestone,
    MilestoneStatus,
    NotFoundError,
    Promise,
    TemporalViolation,
    new_id,
)

# ── Section 1: Constants and transition matrix ───────────────────────────────

TERMINAL_STATUSES: FrozenSet[MilestoneStatus] = frozenset({
    MilestoneStatus.COMPLETED,
    MilestoneStatus.BROKEN,
})

AUTO_EXPIRED_REASON: str = "Deadline passed - promise automatically marked as broken"

_ALLOWED_TRANSITIONS: FrozenSet[Tuple[Optional[MilestoneStatus], MilestoneStatus]] = frozenset({
    # Creation
    (None, MilestoneStatus.PENDING),
    # Lock the promise
    (MilestoneStatus.PENDING, MilestoneStatus.LOCKED),
    # Resolve it
    (MilestoneStatus.LOCKED, MilestoneStatus.COMPLETED),
    (MilestoneStatus.LOCKED, MilestoneStatus.BROKEN),
})


# ── Section 2: Transition validation ─────────────────────────────────────────


@dataclass(frozen=True)
class TransitionValidationResult:
    """Result of validating a proposed milestone transition."""

    valid: bool
    violations: Tuple[str, ...] = ()


def validate_transition(
    from_status: Optional[MilestoneStatus], to_status: MilestoneStatus
) -> TransitionValidationResult:
    """Check a status change against the lifecycle matrix.

    Never raises for rule violations; always returns a result.
    """
    violations: List[str] = []

    if from_status is not None and from_status in TERMINAL_STATUSES:
        violations.append(f"{from_status.value} is terminal")
    elif (from_status, to_status) not in _ALLOWED_TRANSITIONS:
        source = from_status.value if from_status is not None else "<new>"
        violations.append(f"Transition {source} -> {to_status.value} is not allowed")

    return TransitionValidationResult(
        valid=len(violations) == 0,
        violations=tuple(violations),
    )


def _require_transition(milestone: Milestone, to_status: MilestoneStatus) -> None:
    result = validate_transition(milestone.status, to_status)
    if not result.valid:
        raise InvariantViolation(result.violations)


def _require_pending(milestone: Milestone, action: str) -> None:
    if milestone.status is not MilestoneStatus.PENDING:
        raise ImmutableMilestoneError((
            f"Cannot {action} milestone #{milestone.number}: it is "
            f"{milestone.status.value}; only pending milestones can change",
        ))


def _clean_title(title: str) -> str:
    cleaned = title.strip() if title else ""
    if not cleaned:
        raise InvariantViolation(("Milestone title must not be empty",))
    return cleaned


# ── Section 3: Pure transition functions ─────────────────────────────────────


def new_milestone(goal: Goal, title: str, existing: Sequence[Milestone]) -> Milestone:
    """Build the next pending milestone for *goal*.

    The number is ``len(existing) + 1`` so the sequence stays dense.
    """
    if goal.status is not GoalStatus.ACTIVE:
        raise InvariantViolation((f"Goal {goal.goal_id} is not active",))
    return Milestone(
        milestone_id=new_id(),
        goal_id=goal.goal_id,
        user_id=goal.user_id,
        number=len(existing) + 1,
        title=_clean_title(title),
    )


def edit_title(milestone: Milestone, title: str) -> Milestone:
    """Rename a pending milestone."""
    _require_pending(milestone, "edit")
    return milestone.model_copy(update={"title": _clean_title(title)})


def ensure_deletable(milestone: Milestone) -> None:
    """Raise unless *milestone* may be deleted (pending only)."""
    _require_pending(milestone, "delete")


def find_locked(milestones: Sequence[Milestone]) -> Optional[Milestone]:
    """Return the locked milestone, if any."""
    for milestone in milestones:
        if milestone.status is MilestoneStatus.LOCKED:
            return milestone
    return None


def lock(
    milestone: Milestone,
    text: str,
    deadline: datetime,
    consequence: Optional[str],
    now: datetime,
    siblings: Sequence[Milestone] = (),
) -> Milestone:
    """Lock a pending milestone as a promise.

    Args:
        milestone: The milestone to lock.
        text: Promise wording; must not be blank.
        deadline: Timezone-aware due time, strictly after *now*.
        consequence: Optional self-imposed consequence.
        now: Current time.
        siblings: Every milestone in the user's active goal; none other
            than *milestone* itself may already be locked.

    Raises:
        InvariantViolation: On any lifecycle or single-lock violation.
        TemporalViolation: If the deadline is not in the future.
    """
    _require_transition(milestone, MilestoneStatus.LOCKED)

    violations: List[str] = []
    other = find_locked([m for m in siblings if m.milestone_id != milestone.milestone_id])
    if other is not None:
        violations.append(
            f"Milestone #{other.number} is already locked; keep or break it first"
        )
    if not text or not text.strip():
        violations.append("Promise text must not be empty")
    if deadline.tzinfo is None:
        violations.append("Promise deadline must be timezone-aware")
    if violations:
        raise InvariantViolation(tuple(violations))

    if deadline <= now:
        raise TemporalViolation(
            f"Promise deadline {deadline.isoformat()} is not in the future"
        )

    promise = Promise(
        text=text.strip(),
        deadline=deadline,
        consequence=consequence.strip() if consequence and consequence.strip() else None,
        locked_at=now,
        witness_count=0,
    )
    return milestone.model_copy(update={
        "status": MilestoneStatus.LOCKED,
        "promise": promise,
        "share_token": new_id(),
    })


def complete(milestone: Milestone, now: datetime, force: bool = False) -> Milestone:
    """Mark a locked promise as kept.

    Raises:
        InvariantViolation: If the milestone is not locked.
        DeadlinePassedError: If *now* is after the deadline and not *force*.
    """
    _require_transition(milestone, MilestoneStatus.COMPLETED)
    if milestone.promise is None:
        raise InvariantViolation((f"Milestone #{milestone.number} has no promise",))
    if not force and now > milestone.promise.deadline:
        raise DeadlinePassedError(milestone.promise.deadline)
    return milestone.model_copy(update={
        "status": MilestoneStatus.COMPLETED,
        "completed_at": now,
    })


def break_promise(milestone: Milestone, reason: str, now: datetime) -> Milestone:
    """Mark a locked promise as broken. A non-empty reflection is required."""
    _require_transition(milestone, MilestoneStatus.BROKEN)
    if not reason or not reason.strip():
        raise InvariantViolation(("A reason is required to break a promise",))
    return milestone.model_copy(update={
        "status": MilestoneStatus.BROKEN,
        "broken_at": now,
        "reason": reason,
    })


def is_overdue(milestone: Milestone, now: datetime) -> bool:
    """True when *milestone* is locked and its deadline has passed."""
    return (
        milestone.status is MilestoneStatus.LOCKED
        and milestone.promise is not None
        and now > milestone.promise.deadline
    )


def expire(milestone: Milestone, now: datetime) -> Milestone:
    """Break an overdue promise on the user's behalf."""
    if not is_overdue(milestone, now):
        raise InvariantViolation((
            f"Milestone #{milestone.number} is not an overdue locked promise",
        ))
    broken = break_promise(milestone, AUTO_EXPIRED_REASON, now)
    return broken.model_copy(update={"auto_expired": True})


def add_witness(milestone: Milestone) -> Milestone:
    """Record one more witness on a locked promise."""
    if milestone.status is not MilestoneStatus.LOCKED or milestone.promise is None:
        raise InvariantViolation((
            f"Witnesses can only join a locked promise; milestone is "
            f"{milestone.status.value}",
        ))
    promise = milestone.promise.model_copy(
        update={"witness_count": milestone.promise.witness_count + 1}
    )
    return milestone.model_copy(update={"promise": promise})


# ── Section 4: Ordering helpers ──────────────────────────────────────────────


def renumber(milestones: Sequence[Milestone]) -> Tuple[Milestone, ...]:
    """Return *milestones* in current order, numbered densely from 1."""
    ordered = sorted(milestones, key=lambda m: m.number)
    return tuple(
        m if m.number == index else m.model_copy(update={"number": index})
        for index, m in enumerate(ordered, start=1)
    )


def move(
    milestones: Sequence[Milestone], milestone_id: str, new_index: int
) -> Tuple[Milestone, ...]:
    """Move a pending milestone to *new_index* (0-based) and renumber."""
    ordered = sorted(milestones, key=lambda m: m.number)
    position = next(
        (i for i, m in enumerate(ordered) if m.milestone_id == milestone_id), None
    )
    if position is None:
        raise NotFoundError(f"Milestone {milestone_id} not found")
    if not 0 <= new_index < len(ordered):
        raise InvariantViolation((
            f"Index {new_index} out of range for {len(ordered)} milestones",
        ))
    moved = ordered.pop(position)
    _require_pending(moved, "reorder")
    ordered.insert(new_index, moved)
    return tuple(
        m if m.number == index else m.model_copy(update={"number": index})
        for index, m in enumerate(ordered, start=1)
    )


# ── Section 5: Deadline helpers ──────────────────────────────────────────────


@dataclass(frozen=True)
class TimeRemaining:
    """Countdown to a promise deadline."""

    days: int
    hours: int
    minutes: int
    seconds: int
    expired: bool


def time_remaining(milestone: Milestone, now: datetime) -> Optional[TimeRemaining]:
    """Time left on a locked promise, or None if it has no promise."""
    if milestone.status is not MilestoneStatus.LOCKED or milestone.promise is None:
        return None
    total = int((milestone.promise.deadline - now).total_seconds())
    if total <= 0:
        return TimeRemaining(0, 0, 0, 0, expired=True)
    days, rest = divmod(total, 86400)
    hours, rest = divmod(rest, 3600)
    minutes, seconds = divmod(rest, 60)
    return TimeRemaining(days, hours, minutes, seconds, expired=False)
