"""Unit tests for the integrity score policy."""
import pytest

from shift_journey.config import ScorePolicyConfig
from shift_journey.scoring import (
    Outcome,
    ScoreResult,
    apply_outcome,
    broken_penalty,
    clamp_score,
)


class TestBrokenPenalty:
    """Tests for the streak-indexed penalty table."""

    @pytest.mark.parametrize(
        "streak,expected", [(0, 10), (1, 15), (2, 20), (3, 20), (50, 20)]
    )
    def test_penalty_by_streak(self, streak: int, expected: int) -> None:
        assert broken_penalty(streak) == expected

    def test_negative_streak_rejected(self) -> None:
        with pytest.raises(ValueError, match="failure_streak"):
            broken_penalty(-1)

    def test_custom_table(self) -> None:
        policy = ScorePolicyConfig(broken_penalties=(5, 5, 30, 40))
        assert broken_penalty(2, policy) == 30
        assert broken_penalty(9, policy) == 40


class TestApplyOutcome:
    """Tests for apply_outcome."""

    def test_kept_adds_bonus_and_resets_streak(self) -> None:
        result = apply_outcome(50, 2, Outcome.KEPT)
        assert result == ScoreResult(
            previous_score=50,
            previous_failure_streak=2,
            new_score=52,
            score_change=2,
            new_failure_streak=0,
        )

    def test_broken_escalates_with_streak(self) -> None:
        """Three breaks in a row from 50: 40, 25, 5."""
        score, streak = 50, 0
        scores = []
        for _ in range(3):
            result = apply_outcome(score, streak, Outcome.BROKEN)
            score, streak = result.new_score, result.new_failure_streak
            scores.append((score, streak))
        assert scores == [(40, 1), (25, 2), (5, 3)]

    def test_goal_completion_keeps_streak(self) -> None:
        result = apply_outcome(60, 2, Outcome.GOAL_COMPLETED)
        assert result.new_score == 70
        assert result.new_failure_streak == 2
        assert result.score_change == 10

    def test_accepts_outcome_value_string(self) -> None:
        assert apply_outcome(50, 0, "KEPT").new_score == 52  # type: ignore[arg-type]

    def test_unknown_outcome_rejected(self) -> None:
        with pytest.raises(ValueError):
            apply_outcome(50, 0, "SKIPPED")  # type: ignore[arg-type]

    def test_negative_streak_rejected(self) -> None:
        with pytest.raises(ValueError):
            apply_outcome(50, -1, Outcome.KEPT)

    def test_clamped_at_upper_bound(self) -> None:
        result = apply_outcome(99, 0, Outcome.KEPT)
        assert result.new_score == 100
        assert result.score_change == 2
        assert result.effective_change == 1

    def test_clamped_at_lower_bound(self) -> None:
        result = apply_outcome(5, 3, Outcome.BROKEN)
        assert result.new_score == 0
        assert result.score_change == -20
        assert result.effective_change == -5
        assert result.new_failure_streak == 4

    def test_full_score_kept_is_noop_on_score(self) -> None:
        result = apply_outcome(100, 0, Outcome.KEPT)
        assert result.new_score == 100
        assert result.effective_change == 0

    def test_custom_policy(self) -> None:
        policy = ScorePolicyConfig(kept_bonus=5, goal_completed_bonus=0)
        assert apply_outcome(50, 0, Outcome.KEPT, policy).new_score == 55
        assert apply_outcome(50, 0, Outcome.GOAL_COMPLETED, policy).new_score == 50


class TestClampScore:
    """Tests for clamp_score."""

    @pytest.mark.parametrize("raw,expected", [(-7, 0), (0, 0), (42, 42), (100, 100), (130, 100)])
    def test_clamp(self, raw: int, expected: int) -> None:
        assert clamp_score(raw) == expected
