"""Calendar journal: day-by-day work log and the consecutive-day streak."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Dict, Mapping, Optional

from shift_journey.models import CalendarEntry, InvariantViolation, rounded_percent
from shift_journey.storage import CalendarStore, call_store

logger = logging.getLogger("shift_journey.journal")

DEFAULT_LOOKBACK_DAYS = 365


def compute_streak(
    entries: Mapping[date, CalendarEntry],
    today: date,
    lookback_days: int = DEFAULT_LOOKBACK_DAYS,
) -> int:
    """Count consecutive worked days ending today.

    Walking back from *today*: a worked day adds one and continues, a
    missed day stops the walk, and a day without an entry stops the walk
    unless it is today itself (today may simply not be logged yet).
    At most *lookback_days* days are examined.
    """
    streak = 0
    for offset in range(lookback_days):
        entry = entries.get(today - timedelta(days=offset))
        worked = entry.worked if entry is not None else None
        if worked is True:
            streak += 1
        elif worked is False:
            break
        elif offset == 0:
            continue
        else:
            break
    return streak


@dataclass(frozen=True)
class ConsistencyStats:
    """Worked/missed totals over all logged days."""

    worked_days: int
    missed_days: int
    tracked_days: int
    consistency_rate: int


def consistency_stats(entries: Mapping[date, CalendarEntry]) -> ConsistencyStats:
    worked = sum(1 for e in entries.values() if e.worked is True)
    missed = sum(1 for e in entries.values() if e.worked is False)
    tracked = worked + missed
    rate = rounded_percent(worked, tracked)
    return ConsistencyStats(
        worked_days=worked,
        missed_days=missed,
        tracked_days=tracked,
        consistency_rate=rate,
    )


class CalendarJournal:
    """A user's calendar entries with optimistic, rollback-safe writes."""

    def __init__(
        self,
        store: CalendarStore,
        user_id: str,
        clock: Optional[Callable[[], datetime]] = None,
        lookback_days: int = DEFAULT_LOOKBACK_DAYS,
        timeout: Optional[float] = None,
    ) -> None:
        self._store = store
        self._user_id = user_id
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._lookback_days = lookback_days
        self._timeout = timeout
        self._entries: Dict[date, CalendarEntry] = {}
        self._write_lock = asyncio.Lock()

    @property
    def entries(self) -> Dict[date, CalendarEntry]:
        return dict(self._entries)

    def entry(self, day: date) -> Optional[CalendarEntry]:
        return self._entries.get(day)

    def today(self) -> date:
        return self._clock().date()

    async def load(self) -> None:
        entries = await call_store(
            self._store.list_for_user(self._user_id),
            "load your calendar",
            self._timeout,
        )
        self._entries = {entry.day: entry for entry in entries}

    async def mark_day(
        self, day: date, worked: Optional[bool], journal: str = ""
    ) -> CalendarEntry:
        """Record whether *day* was worked.

        The entry is applied in memory first, then persisted. If the store
        call fails the previous value (or absence) is restored and
        :class:`~shift_journey.models.PersistenceError` is raised. Writes are
        serialized so a rollback never restores a value written concurrently.
        """
        if day > self.today():
            raise InvariantViolation((f"Cannot log {day.isoformat()}: it is in the future",))
        async with self._write_lock:
            return await self._write(day, worked, journal)

    async def toggle_day(self, day: date) -> CalendarEntry:
        """Flip *day* between worked and not worked, keeping its journal."""
        if day > self.today():
            raise InvariantViolation((f"Cannot log {day.isoformat()}: it is in the future",))
        async with self._write_lock:
            current = self._entries.get(day)
            worked = bool(current.worked) if current is not None else False
            journal = current.journal if current is not None else ""
            return await self._write(day, not worked, journal)

    async def _write(
        self, day: date, worked: Optional[bool], journal: str
    ) -> CalendarEntry:
        entry = CalendarEntry(day=day, worked=worked, journal=journal)
        previous = self._entries.get(day)
        self._entries[day] = entry
        try:
            await call_store(
                self._store.upsert(self._user_id, entry),
                "save your calendar entry",
                self._timeout,
            )
        except Exception:
            if previous is None:
                self._entries.pop(day, None)
            else:
                self._entries[day] = previous
            logger.warning("Rolled back calendar entry for %s", day.isoformat())
            raise
        return entry

    def streak(self, today: Optional[date] = None) -> int:
        return compute_streak(
            self._entries, today or self.today(), self._lookback_days
        )

    def stats(self) -> ConsistencyStats:
        return consistency_stats(self._entries)
