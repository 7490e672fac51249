"""Integrity tier classification and tier-change detection."""
from __future__ import annotations

import logging
from enum import Enum
from typing import Dict, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger("shift_journey.tiers")


class Tier(str, Enum):
    """Canonical score bands, in ascending order."""

    UNRELIABLE = "unreliable"
    INCONSISTENT = "inconsistent"
    RELIABLE = "reliable"


# Inclusive (low, high) score range per tier, ascending.
TIER_BOUNDS: Tuple[Tuple[Tier, int, int], ...] = (
    (Tier.UNRELIABLE, 0, 30),
    (Tier.INCONSISTENT, 31, 70),
    (Tier.RELIABLE, 71, 100),
)

_TIER_RANK: Dict[Tier, int] = {tier: rank for rank, (tier, _, _) in enumerate(TIER_BOUNDS)}

_TIER_LABELS: Dict[Tier, str] = {
    Tier.UNRELIABLE: "Unreliable",
    Tier.INCONSISTENT: "Inconsistent",
    Tier.RELIABLE: "Reliable",
}


class TierChangeNotification(BaseModel):
    """Emitted when a score change moves the user into a different tier.

    Ephemeral: never persisted; the caller consumes and dismisses it.
    """

    model_config = ConfigDict(frozen=True)

    direction: Literal["up", "down"]
    old_tier: Tier
    new_tier: Tier
    score_change: int = Field(..., description="Signed delta that caused the change")


def classify(score: int) -> Tier:
    """Map a score to its tier.

    Scores outside the nominal range fall into the nearest end tier.
    """
    for tier, _low, high in TIER_BOUNDS:
        if score <= high:
            return tier
    return TIER_BOUNDS[-1][0]


def tier_rank(tier: Tier) -> int:
    """Ascending position of *tier* (0 = lowest)."""
    return _TIER_RANK[tier]


def tier_label(tier: Tier) -> str:
    """Display name for *tier*."""
    return _TIER_LABELS[tier]


def detect_change(
    old_score: int, new_score: int, score_change: Optional[int] = None
) -> Optional[TierChangeNotification]:
    """Compare the tiers of two scores and describe any change.

    The tiers are compared directly, so a jump across several boundaries
    still yields a single notification.

    Args:
        old_score: Score before the event.
        new_score: Score after the event.
        score_change: Signed delta to report; defaults to
            ``new_score - old_score``.

    Returns:
        A notification when the tier differs, otherwise None.
    """
    old_tier = classify(old_score)
    new_tier = classify(new_score)
    if old_tier is new_tier:
        return None

    direction: Literal["up", "down"] = (
        "up" if tier_rank(new_tier) > tier_rank(old_tier) else "down"
    )
    notification = TierChangeNotification(
        direction=direction,
        old_tier=old_tier,
        new_tier=new_tier,
        score_change=new_score - old_score if score_change is None else score_change,
    )
    logger.info(
        "Tier changed %s: %s -> %s (%d -> %d)",
        direction, old_tier.value, new_tier.value, old_score, new_score,
    )
    return notification
