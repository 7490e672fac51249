"""Integrity ledger: the append-only audit trail of score changes.

Sections:
    1. Reason codes
    2. Record model
    3. Ledger
    4. History reducer
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator

from shift_journey.models import new_id
from shift_journey.scoring import Outcome, ScoreResult

logger = logging.getLogger("shift_journey.ledger")

# ── Section 1: Reason codes ──────────────────────────────────────────────────


class HistoryReason(str, Enum):
    """Why a score changed."""

    PROMISE_KEPT = "PROMISE_KEPT"
    PROMISE_BROKEN = "PROMISE_BROKEN"
    GOAL_COMPLETED = "GOAL_COMPLETED"


OUTCOME_REASONS: Dict[Outcome, HistoryReason] = {
    Outcome.KEPT: HistoryReason.PROMISE_KEPT,
    Outcome.BROKEN: HistoryReason.PROMISE_BROKEN,
    Outcome.GOAL_COMPLETED: HistoryReason.GOAL_COMPLETED,
}

# ── Section 2: Record model ──────────────────────────────────────────────────


class IntegrityHistoryRecord(BaseModel):
    """One immutable score change."""

    model_config = ConfigDict(frozen=True)

    record_id: str = Field(default_factory=new_id, min_length=1)
    user_id: str = Field(..., min_length=1)
    previous_score: int = Field(..., ge=0, le=100)
    new_score: int = Field(..., ge=0, le=100)
    change_amount: int = Field(..., description="Signed applied delta")
    reason: HistoryReason
    failure_streak: int = Field(..., ge=0, description="Streak after the change")
    milestone_id: Optional[str] = None
    goal_id: Optional[str] = None
    recorded_at: datetime

    @model_validator(mode="after")
    def _check_delta(self) -> "IntegrityHistoryRecord":
        if self.new_score - self.previous_score != self.change_amount:
            raise ValueError(
                "change_amount must equal new_score - previous_score"
            )
        return self

    @classmethod
    def from_result(
        cls,
        user_id: str,
        outcome: Outcome,
        result: ScoreResult,
        recorded_at: datetime,
        milestone_id: Optional[str] = None,
        goal_id: Optional[str] = None,
    ) -> "IntegrityHistoryRecord":
        """Build the ledger entry for a scoring result."""
        return cls(
            user_id=user_id,
            previous_score=result.previous_score,
            new_score=result.new_score,
            change_amount=result.effective_change,
            reason=OUTCOME_REASONS[Outcome(outcome)],
            failure_streak=result.new_failure_streak,
            milestone_id=milestone_id,
            goal_id=goal_id,
            recorded_at=recorded_at,
        )


# ── Section 3: Ledger ────────────────────────────────────────────────────────


@dataclass(frozen=True)
class LedgerStats:
    """Counts derived from a user's history."""

    total_kept: int
    total_broken: int
    goals_completed: int
    longest_failure_streak: int


class IntegrityLedger:
    """Write-once, in-memory view of a user's integrity history.

    Records can only be appended; there is no update or delete.
    """

    def __init__(self, records: Sequence[IntegrityHistoryRecord] = ()) -> None:
        self._records: List[IntegrityHistoryRecord] = []
        self._ids: set[str] = set()
        for record in sorted(records, key=_record_sort_key):
            self.record(record)

    def record(self, entry: IntegrityHistoryRecord) -> None:
        """Append *entry*.

        Raises:
            ValueError: If a record with the same id was already appended.
        """
        if entry.record_id in self._ids:
            raise ValueError(f"Ledger record {entry.record_id} already recorded")
        self._records.append(entry)
        self._ids.add(entry.record_id)
        logger.debug(
            "Ledger %s: %d -> %d (%+d), streak=%d",
            entry.reason.value, entry.previous_score, entry.new_score,
            entry.change_amount, entry.failure_streak,
        )

    @property
    def records(self) -> Tuple[IntegrityHistoryRecord, ...]:
        return tuple(self._records)

    def latest(self) -> Optional[IntegrityHistoryRecord]:
        return self._records[-1] if self._records else None

    def __len__(self) -> int:
        return len(self._records)

    def stats(self) -> LedgerStats:
        return LedgerStats(
            total_kept=sum(1 for r in self._records if r.reason is HistoryReason.PROMISE_KEPT),
            total_broken=sum(1 for r in self._records if r.reason is HistoryReason.PROMISE_BROKEN),
            goals_completed=sum(1 for r in self._records if r.reason is HistoryReason.GOAL_COMPLETED),
            longest_failure_streak=max((r.failure_streak for r in self._records), default=0),
        )


# ── Section 4: History reducer ───────────────────────────────────────────────


class IntegrityAnomaly(BaseModel):
    """Non-fatal inconsistency found while replaying history."""

    model_config = ConfigDict(frozen=True)

    record_id: str
    reason: str


class ReducedIntegrityState(BaseModel):
    """Score and streak recomputed from the ledger."""

    model_config = ConfigDict(frozen=True)

    score: int
    failure_streak: int
    record_count: int = 0
    anomalies: Tuple[IntegrityAnomaly, ...] = Field(default_factory=tuple)


def _record_sort_key(record: IntegrityHistoryRecord) -> Tuple[datetime, str]:
    return (record.recorded_at, record.record_id)


def streak_before(record: IntegrityHistoryRecord) -> int:
    """Failure streak in effect just before *record* was applied.

    A kept promise resets the streak whatever it was, so 0 is returned.
    """
    if record.reason is HistoryReason.PROMISE_BROKEN:
        return max(0, record.failure_streak - 1)
    if record.reason is HistoryReason.GOAL_COMPLETED:
        return record.failure_streak
    return 0


def reduce_history(
    records: Sequence[IntegrityHistoryRecord],
    initial_score: int = 100,
    initial_failure_streak: int = 0,
) -> ReducedIntegrityState:
    """Fold history records into the current score and streak.

    Pipeline:
    1. Sort by (recorded_at, record_id)
    2. Deduplicate by record_id
    3. Replay each record, flagging breaks in score continuity

    Pure function. No I/O. The replay trusts each record's ``new_score``
    and ``failure_streak``; a continuity break is recorded as an anomaly
    rather than corrected.
    """
    seen: set[str] = set()
    unique: List[IntegrityHistoryRecord] = []
    for record in sorted(records, key=_record_sort_key):
        if record.record_id in seen:
            continue
        seen.add(record.record_id)
        unique.append(record)

    score = initial_score
    streak = initial_failure_streak
    anomalies: List[IntegrityAnomaly] = []
    for record in unique:
        if record.previous_score != score:
            anomalies.append(
                IntegrityAnomaly(
                    record_id=record.record_id,
                    reason=(
                        f"previous_score {record.previous_score} does not follow "
                        f"running score {score}"
                    ),
                )
            )
        if record.reason is HistoryReason.GOAL_COMPLETED and record.failure_streak != streak:
            anomalies.append(
                IntegrityAnomaly(
                    record_id=record.record_id,
                    reason="goal completion altered the failure streak",
                )
            )
        score = record.new_score
        streak = record.failure_streak

    return ReducedIntegrityState(
        score=score,
        failure_streak=streak,
        record_count=len(unique),
        anomalies=tuple(anomalies),
    )
