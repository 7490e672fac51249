"""Unit tests for configuration models."""
import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from shift_journey.config import (
    DEFAULT_CONFIG,
    JourneyConfig,
    ScorePolicyConfig,
    load_config,
)


class TestScorePolicyConfig:
    """Tests for ScorePolicyConfig validation."""

    def test_defaults(self) -> None:
        policy = ScorePolicyConfig()
        assert policy.initial_score == 100
        assert (policy.min_score, policy.max_score) == (0, 100)
        assert policy.kept_bonus == 2
        assert policy.broken_penalties == (10, 15, 20)
        assert policy.goal_completed_bonus == 10

    def test_frozen(self) -> None:
        with pytest.raises(ValidationError):
            DEFAULT_CONFIG.score_policy.kept_bonus = 3  # type: ignore[misc]

    def test_decreasing_penalties_rejected(self) -> None:
        with pytest.raises(ValidationError, match="must not decrease"):
            ScorePolicyConfig(broken_penalties=(20, 10))

    def test_negative_penalty_rejected(self) -> None:
        with pytest.raises(ValidationError, match="non-negative"):
            ScorePolicyConfig(broken_penalties=(-5, 10))

    def test_empty_penalties_rejected(self) -> None:
        with pytest.raises(ValidationError):
            ScorePolicyConfig(broken_penalties=())

    def test_inverted_bounds_rejected(self) -> None:
        with pytest.raises(ValidationError, match="min_score"):
            ScorePolicyConfig(min_score=60, max_score=50, initial_score=55)

    def test_initial_score_outside_bounds_rejected(self) -> None:
        with pytest.raises(ValidationError, match="initial_score"):
            ScorePolicyConfig(min_score=10, initial_score=5)


class TestJourneyConfig:
    """Tests for JourneyConfig and load_config."""

    def test_defaults(self) -> None:
        config = JourneyConfig()
        assert config.streak_lookback_days == 365
        assert config.persistence_timeout is None
        assert config.history_limit == 50

    def test_non_positive_timeout_rejected(self) -> None:
        with pytest.raises(ValidationError):
            JourneyConfig(persistence_timeout=0)

    def test_load_from_json(self, tmp_path: Path) -> None:
        path = tmp_path / "journey.json"
        path.write_text(json.dumps({
            "score_policy": {"kept_bonus": 3},
            "persistence_timeout": 2.5,
        }))
        config = load_config(path)
        assert config.score_policy.kept_bonus == 3
        assert config.score_policy.broken_penalties == (10, 15, 20)
        assert config.persistence_timeout == 2.5
        assert config.history_limit == 50

    def test_load_invalid_json_raises(self, tmp_path: Path) -> None:
        path = tmp_path / "journey.json"
        path.write_text(json.dumps({"history_limit": 0}))
        with pytest.raises(ValidationError):
            load_config(path)

    def test_missing_file_raises(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "absent.json")
