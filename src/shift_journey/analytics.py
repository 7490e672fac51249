"""Promise analytics derived from resolved milestones."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional

from shift_journey.models import ArchivedGoal, Milestone, MilestoneStatus, rounded_percent


@dataclass(frozen=True)
class PromiseAnalytics:
    """Kept/broken totals and kept-promise streaks."""

    total_kept: int
    total_broken: int
    success_rate: int
    current_kept_streak: int
    best_kept_streak: int
    days_since_last_broken: Optional[int]


def _resolved_at(milestone: Milestone) -> Optional[datetime]:
    return milestone.completed_at or milestone.broken_at


def summarize_promises(
    milestones: Iterable[Milestone], now: Optional[datetime] = None
) -> PromiseAnalytics:
    """Summarize resolved milestones in resolution order.

    Unresolved milestones, and resolved ones without a timestamp, are
    ignored.
    """
    resolved: List[Milestone] = sorted(
        (m for m in milestones if m.is_resolved and _resolved_at(m) is not None),
        key=lambda m: _resolved_at(m),  # type: ignore[arg-type, return-value]
    )

    best = run = 0
    for milestone in resolved:
        if milestone.status is MilestoneStatus.COMPLETED:
            run += 1
            best = max(best, run)
        else:
            run = 0

    kept = sum(1 for m in resolved if m.status is MilestoneStatus.COMPLETED)
    broken = len(resolved) - kept
    rate = rounded_percent(kept, len(resolved))

    days_since: Optional[int] = None
    broken_times = [m.broken_at for m in resolved if m.broken_at is not None]
    if now is not None and broken_times:
        days_since = max(0, (now - max(broken_times)).days)

    return PromiseAnalytics(
        total_kept=kept,
        total_broken=broken,
        success_rate=rate,
        current_kept_streak=run,
        best_kept_streak=best,
        days_since_last_broken=days_since,
    )


def all_milestones(
    active: Iterable[Milestone], history: Iterable[ArchivedGoal]
) -> List[Milestone]:
    """Active milestones followed by every archived goal's milestones."""
    combined = list(active)
    for archived in history:
        combined.extend(archived.milestones)
    return combined
