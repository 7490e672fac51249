"""Unit tests for tier classification and change detection."""
import logging

import pytest
from pydantic import ValidationError

from shift_journey.models import User
from shift_journey.tiers import (
    Tier,
    TierChangeNotification,
    classify,
    detect_change,
    tier_label,
    tier_rank,
)


class TestClassify:
    """Tests for classify."""

    @pytest.mark.parametrize(
        "score,tier",
        [
            (0, Tier.UNRELIABLE),
            (30, Tier.UNRELIABLE),
            (31, Tier.INCONSISTENT),
            (70, Tier.INCONSISTENT),
            (71, Tier.RELIABLE),
            (100, Tier.RELIABLE),
        ],
    )
    def test_boundaries(self, score: int, tier: Tier) -> None:
        assert classify(score) is tier

    def test_out_of_range_falls_into_end_tiers(self) -> None:
        assert classify(-5) is Tier.UNRELIABLE
        assert classify(150) is Tier.RELIABLE

    def test_rank_and_label(self) -> None:
        assert tier_rank(Tier.UNRELIABLE) < tier_rank(Tier.INCONSISTENT) < tier_rank(Tier.RELIABLE)
        assert tier_label(Tier.INCONSISTENT) == "Inconsistent"

    def test_user_tier_property(self) -> None:
        assert User(user_id="u1", integrity_score=45).tier is Tier.INCONSISTENT


class TestDetectChange:
    """Tests for detect_change."""

    def test_same_tier_returns_none(self) -> None:
        assert detect_change(80, 72) is None

    def test_down(self) -> None:
        change = detect_change(75, 65)
        assert change is not None
        assert change.direction == "down"
        assert change.old_tier is Tier.RELIABLE
        assert change.new_tier is Tier.INCONSISTENT
        assert change.score_change == -10

    def test_up(self) -> None:
        change = detect_change(70, 72)
        assert change is not None
        assert change.direction == "up"
        assert change.new_tier is Tier.RELIABLE

    def test_multi_tier_jump_is_single_notification(self) -> None:
        change = detect_change(100, 20)
        assert change is not None
        assert (change.old_tier, change.new_tier) == (Tier.RELIABLE, Tier.UNRELIABLE)

    def test_up_out_of_unreliable(self) -> None:
        change = detect_change(29, 32)
        assert change is not None
        assert change.direction == "up"
        assert (change.old_tier, change.new_tier) == (Tier.UNRELIABLE, Tier.INCONSISTENT)
        assert change.score_change == 3

    def test_up_across_two_tiers_is_single_notification(self) -> None:
        change = detect_change(29, 90)
        assert change is not None
        assert change.direction == "up"
        assert (change.old_tier, change.new_tier) == (Tier.UNRELIABLE, Tier.RELIABLE)
        assert change.score_change == 61

    def test_explicit_score_change_reported(self) -> None:
        change = detect_change(72, 62, score_change=-15)
        assert change is not None
        assert change.score_change == -15

    def test_logs_change(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.INFO, logger="shift_journey.tiers"):
            detect_change(31, 30)
        assert "Tier changed down" in caplog.text

    def test_notification_is_frozen(self) -> None:
        change = detect_change(31, 30)
        assert isinstance(change, TierChangeNotification)
        with pytest.raises(ValidationError):
            change.direction = "up"  # type: ignore[misc]
