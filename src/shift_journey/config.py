"""Configuration models for the scoring policy and journey runtime."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

logger = logging.getLogger("shift_journey.config")


class ScorePolicyConfig(BaseModel):
    """Numeric policy applied to promise and goal outcomes.

    ``broken_penalties`` is indexed by the failure streak *before* the break;
    streaks beyond the end of the table reuse the last entry.
    """

    model_config = ConfigDict(frozen=True)

    initial_score: int = Field(default=100, ge=0, le=100)
    min_score: int = Field(default=0, ge=0)
    max_score: int = Field(default=100, le=100)
    kept_bonus: int = Field(default=2, ge=0)
    broken_penalties: Tuple[int, ...] = Field(
        default=(10, 15, 20), min_length=1,
        description="Penalty magnitudes for the 1st, 2nd, 3rd+ consecutive break",
    )
    goal_completed_bonus: int = Field(default=10, ge=0)

    @model_validator(mode="after")
    def _check_bounds(self) -> "ScorePolicyConfig":
        if self.min_score >= self.max_score:
            raise ValueError("min_score must be below max_score")
        if not self.min_score <= self.initial_score <= self.max_score:
            raise ValueError("initial_score must lie within [min_score, max_score]")
        if any(p < 0 for p in self.broken_penalties):
            raise ValueError("broken_penalties must be non-negative magnitudes")
        if list(self.broken_penalties) != sorted(self.broken_penalties):
            raise ValueError("broken_penalties must not decrease with the streak")
        return self


class JourneyConfig(BaseModel):
    """Runtime settings for a :class:`~shift_journey.journey.Journey`."""

    model_config = ConfigDict(frozen=True)

    score_policy: ScorePolicyConfig = Field(default_factory=ScorePolicyConfig)
    streak_lookback_days: int = Field(
        default=365, ge=1, description="Calendar streak walk bound"
    )
    persistence_timeout: Optional[float] = Field(
        None, gt=0, description="Seconds to wait on each persistence call"
    )
    history_limit: int = Field(
        default=50, ge=1, description="Ledger records loaded at bootstrap"
    )


DEFAULT_CONFIG = JourneyConfig()


def load_config(path: Union[str, Path]) -> JourneyConfig:
    """Load a :class:`JourneyConfig` from a JSON file.

    Missing keys fall back to their defaults.

    Raises:
        FileNotFoundError: If *path* does not exist.
        pydantic.ValidationError: If the file content is invalid.
    """
    config_path = Path(path)
    config = JourneyConfig.model_validate_json(config_path.read_text(encoding="utf-8"))
    logger.info("Loaded journey config from %s", config_path)
    return config
