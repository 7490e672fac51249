"""Core data models for the shift-journey core library."""
from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator
from ulid import ULID


def new_id() -> str:
    """Return a fresh 26-char ULID string."""
    return str(ULID())


def rounded_percent(part: int, whole: int) -> int:
    """Integer percentage of *part* in *whole*, rounded half up; 0 if *whole* is 0."""
    if whole <= 0:
        return 0
    return (200 * part + whole) // (2 * whole)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class MilestoneStatus(str, Enum):
    """Milestone lifecycle states."""

    PENDING = "pending"
    LOCKED = "locked"
    COMPLETED = "completed"
    BROKEN = "broken"


class GoalStatus(str, Enum):
    """Goal lifecycle states."""

    ACTIVE = "active"
    COMPLETED = "completed"


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------


class User(BaseModel):
    """A tracked user and their running integrity state."""

    model_config = ConfigDict(frozen=True)

    user_id: str = Field(..., min_length=1, description="User identifier")
    name: str = Field(default="User", description="Display name")
    identity: Optional[str] = Field(
        None, description="Auth identity (device id or provider user id)"
    )
    integrity_score: int = Field(
        default=100, ge=0, le=100, description="Current integrity score"
    )
    failure_streak: int = Field(
        default=0, ge=0, description="Consecutive broken promises"
    )

    @property
    def tier(self) -> "Tier":
        from shift_journey.tiers import classify

        return classify(self.integrity_score)

    def __repr__(self) -> str:
        """Human-readable representation."""
        return (
            f"User(user_id={self.user_id[:8]}..., "
            f"score={self.integrity_score}, "
            f"streak={self.failure_streak})"
        )


class Promise(BaseModel):
    """The commitment attached to a locked milestone."""

    model_config = ConfigDict(frozen=True)

    text: str = Field(..., min_length=1, description="Promise wording")
    deadline: datetime = Field(..., description="When the promise falls due")
    consequence: Optional[str] = Field(
        None, description="Self-imposed consequence if the promise is broken"
    )
    locked_at: datetime = Field(..., description="When the promise was locked")
    witness_count: int = Field(default=0, ge=0, description="Passive witnesses")


class Milestone(BaseModel):
    """An ordered step of a goal, optionally carrying a locked promise."""

    model_config = ConfigDict(frozen=True)

    milestone_id: str = Field(..., min_length=1)
    goal_id: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)
    number: int = Field(..., ge=1, description="Dense 1-based position in the goal")
    title: str = Field(..., min_length=1)
    status: MilestoneStatus = Field(default=MilestoneStatus.PENDING)
    promise: Optional[Promise] = None
    reason: Optional[str] = Field(
        None, description="Reflection supplied when the promise was broken"
    )
    completed_at: Optional[datetime] = None
    broken_at: Optional[datetime] = None
    share_token: Optional[str] = None
    auto_expired: bool = False

    @property
    def is_resolved(self) -> bool:
        return self.status in (MilestoneStatus.COMPLETED, MilestoneStatus.BROKEN)

    def __repr__(self) -> str:
        """Human-readable representation."""
        return (
            f"Milestone(#{self.number}, id={self.milestone_id[:8]}..., "
            f"status={self.status.value}, title={self.title[:30]})"
        )


class Goal(BaseModel):
    """A user goal decomposed into milestones."""

    model_config = ConfigDict(frozen=True)

    goal_id: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    status: GoalStatus = Field(default=GoalStatus.ACTIVE)
    created_at: datetime

    @field_validator("title")
    @classmethod
    def _title_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("goal title must not be blank")
        return v


class GoalStats(BaseModel):
    """Aggregate outcome of a finished goal."""

    model_config = ConfigDict(frozen=True)

    total: int = Field(..., ge=0)
    completed: int = Field(..., ge=0)
    broken: int = Field(..., ge=0)
    success_rate: int = Field(..., ge=0, le=100, description="Percent kept")


class ArchivedGoal(BaseModel):
    """Snapshot of a completed goal kept in the user's goal history."""

    model_config = ConfigDict(frozen=True)

    goal: Goal
    completed_at: datetime
    reflection: str = Field(..., min_length=1)
    milestones: Tuple[Milestone, ...] = Field(default_factory=tuple)
    stats: GoalStats
    final_integrity_score: int = Field(..., ge=0, le=100)


class CalendarEntry(BaseModel):
    """A single day of the work journal."""

    model_config = ConfigDict(frozen=True)

    day: date
    worked: Optional[bool] = None
    journal: str = ""


class AuthSession(BaseModel):
    """An established identity-provider session."""

    model_config = ConfigDict(frozen=True)

    identity: str = Field(..., min_length=1)
    provider: str = Field(default="anonymous", min_length=1)
    is_anonymous: bool = True


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ShiftJourneyError(Exception):
    """Base exception for all library errors."""
    pass


class InvariantViolation(ShiftJourneyError):
    """Raised when an operation would break a lifecycle or aggregate rule.

    Rejection always happens before any mutation or I/O.
    """

    def __init__(self, violations: Tuple[str, ...]) -> None:
        self.violations = violations
        super().__init__("; ".join(violations))


class ImmutableMilestoneError(InvariantViolation):
    """Raised when editing or deleting a milestone that is no longer pending."""
    pass


class TemporalViolation(ShiftJourneyError):
    """A deadline rule was violated."""
    pass


class DeadlinePassedError(TemporalViolation):
    """Completion was attempted after the promise deadline without force."""

    def __init__(self, deadline: datetime) -> None:
        self.deadline = deadline
        super().__init__(
            f"Deadline passed at {deadline.isoformat()}; promise can no longer be kept"
        )


class NotFoundError(ShiftJourneyError):
    """Referenced goal or milestone does not exist in the active journey."""
    pass


class StorageError(ShiftJourneyError):
    """Storage adapter failure."""
    pass


class PersistenceError(ShiftJourneyError):
    """A persistence call failed; the operation was rolled back."""

    def __init__(self, action: str) -> None:
        self.action = action
        super().__init__(
            f"Could not {action}; nothing was changed. Please try again."
        )


class SessionBootstrapError(ShiftJourneyError):
    """No valid session could be established."""
    pass


# Late import to avoid circular dependency
from shift_journey.tiers import Tier  # noqa: E402, F401
