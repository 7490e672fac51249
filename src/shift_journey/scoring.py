"""Integrity score policy.

Translates an outcome (promise kept, promise broken, goal completed) plus
the current score and failure streak into the next score and streak.
Pure functions only; persisting the result is the caller's job.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from shift_journey.config import ScorePolicyConfig

DEFAULT_POLICY = ScorePolicyConfig()


class Outcome(str, Enum):
    """Score-changing outcomes."""

    KEPT = "KEPT"
    BROKEN = "BROKEN"
    GOAL_COMPLETED = "GOAL_COMPLETED"


@dataclass(frozen=True)
class ScoreResult:
    """Result of applying an outcome to a score/streak pair."""

    previous_score: int
    previous_failure_streak: int
    new_score: int
    score_change: int
    new_failure_streak: int

    @property
    def effective_change(self) -> int:
        """Delta actually applied after clamping."""
        return self.new_score - self.previous_score


def clamp_score(score: int, policy: ScorePolicyConfig = DEFAULT_POLICY) -> int:
    """Clamp *score* to ``[policy.min_score, policy.max_score]``."""
    return max(policy.min_score, min(policy.max_score, score))


def broken_penalty(
    failure_streak: int, policy: ScorePolicyConfig = DEFAULT_POLICY
) -> int:
    """Return the (positive) penalty for a break at the given pre-break streak.

    Raises:
        ValueError: If *failure_streak* is negative.
    """
    if failure_streak < 0:
        raise ValueError(f"failure_streak must be >= 0, got {failure_streak}")
    table = policy.broken_penalties
    return table[min(failure_streak, len(table) - 1)]


def apply_outcome(
    current_score: int,
    failure_streak: int,
    outcome: Outcome,
    policy: ScorePolicyConfig = DEFAULT_POLICY,
) -> ScoreResult:
    """Apply *outcome* to a score/streak pair.

    - KEPT: ``+kept_bonus``, streak resets to 0.
    - BROKEN: ``-broken_penalty(streak)``, streak + 1.
    - GOAL_COMPLETED: ``+goal_completed_bonus``, streak unchanged.

    The new score is clamped to the policy bounds. ``score_change`` is the
    nominal policy delta; see :attr:`ScoreResult.effective_change` for the
    clamped one.

    Raises:
        ValueError: If *failure_streak* is negative or *outcome* is unknown.
    """
    if failure_streak < 0:
        raise ValueError(f"failure_streak must be >= 0, got {failure_streak}")

    outcome = Outcome(outcome)
    if outcome is Outcome.KEPT:
        change = policy.kept_bonus
        new_streak = 0
    elif outcome is Outcome.BROKEN:
        change = -broken_penalty(failure_streak, policy)
        new_streak = failure_streak + 1
    else:
        change = policy.goal_completed_bonus
        new_streak = failure_streak

    return ScoreResult(
        previous_score=current_score,
        previous_failure_streak=failure_streak,
        new_score=clamp_score(current_score + change, policy),
        score_change=change,
        new_failure_streak=new_streak,
    )
