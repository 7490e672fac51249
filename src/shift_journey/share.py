"""Public, read-only projection of a locked promise for witnesses."""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from shift_journey.models import Milestone, MilestoneStatus, User
from shift_journey.storage import Backend, call_store
from shift_journey.tiers import Tier, classify

SCORE_MASK_STEP = 10


def mask_score(score: int) -> int:
    """Round a score down to the nearest multiple of ``SCORE_MASK_STEP``."""
    return (score // SCORE_MASK_STEP) * SCORE_MASK_STEP


class SharedMilestoneView(BaseModel):
    """What a witness may see of a milestone.

    Deliberately omits the goal, other milestones, reasons and any
    failure history.
    """

    model_config = ConfigDict(frozen=True)

    title: str
    status: MilestoneStatus
    promise_text: Optional[str] = None
    deadline: Optional[datetime] = None
    consequence: Optional[str] = None
    witness_count: int = Field(default=0, ge=0)
    masked_score: int = Field(..., ge=0, le=100)
    tier: Tier

    @classmethod
    def from_milestone(cls, milestone: Milestone, owner: User) -> "SharedMilestoneView":
        promise = milestone.promise
        return cls(
            title=milestone.title,
            status=milestone.status,
            promise_text=promise.text if promise else None,
            deadline=promise.deadline if promise else None,
            consequence=promise.consequence if promise else None,
            witness_count=promise.witness_count if promise else 0,
            masked_score=mask_score(owner.integrity_score),
            tier=classify(owner.integrity_score),
        )


async def lookup_shared_milestone(
    backend: Backend, share_token: str, timeout: Optional[float] = None
) -> Optional[SharedMilestoneView]:
    """Resolve a share token to its public view, or None if unknown."""
    milestone = await call_store(
        backend.milestones.get_by_share_token(share_token), "open the shared promise", timeout
    )
    if milestone is None:
        return None
    owner = await call_store(
        backend.users.get(milestone.user_id), "open the shared promise", timeout
    )
    if owner is None:
        return None
    return SharedMilestoneView.from_milestone(milestone, owner)
