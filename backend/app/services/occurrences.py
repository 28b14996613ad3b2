"""Occurrence generation for one-time and weekly-recurring classes."""

from datetime import date, datetime, timedelta, tzinfo as TzInfo
from typing import Dict, Iterable, List, Optional, Tuple

from backend.app.core.time import add_minutes, combine, start_of_day
from backend.app.domain.scheduling import ClassSchedule, Occurrence, OccurrenceRecord

DEFAULT_LOOKAHEAD_DAYS = 14


class OccurrenceIndex:
    """Flat arena of per-date occurrence records, indexed by (class_id, date).

    Lookups never depend on the order records were added in.
    """

    def __init__(self, records: Iterable[OccurrenceRecord] = ()):
        self._arena: List[OccurrenceRecord] = []
        self._index: Dict[Tuple[int, date], int] = {}
        for record in records:
            self.add(record)

    def add(self, record: OccurrenceRecord) -> None:
        key = (record.class_id, record.occurrence_date)
        slot = self._index.get(key)
        if slot is None:
            self._index[key] = len(self._arena)
            self._arena.append(record)
        else:
            self._arena[slot] = record

    def get(self, class_id: int, day: date) -> Optional[OccurrenceRecord]:
        slot = self._index.get((class_id, day))
        return None if slot is None else self._arena[slot]

    def status_for(self, class_id: int, day: date, default: str = "scheduled") -> str:
        record = self.get(class_id, day)
        return record.status if record else default

    def is_cancelled(self, class_id: Optional[int], day: date) -> bool:
        if class_id is None:
            return False
        return self.status_for(class_id, day) == "cancelled"

    def for_class(self, class_id: int) -> List[OccurrenceRecord]:
        return sorted(
            (self._arena[slot] for (cid, _), slot in self._index.items() if cid == class_id),
            key=lambda record: record.occurrence_date,
        )

    def __contains__(self, key: Tuple[int, date]) -> bool:
        return key in self._index

    def __len__(self) -> int:
        return len(self._arena)


def session_bounds(schedule: ClassSchedule, day: date, tzinfo: TzInfo | None = None) -> Tuple[datetime, datetime]:
    start = combine(day, schedule.start_time, tzinfo)
    return start, add_minutes(start, schedule.effective_duration)


def _occurrence(schedule: ClassSchedule, day: date, tzinfo, index: Optional[OccurrenceIndex]) -> Occurrence:
    start, end = session_bounds(schedule, day, tzinfo)
    status = "scheduled"
    if index is not None and schedule.class_id is not None:
        status = index.status_for(schedule.class_id, day)
    return Occurrence(class_id=schedule.class_id, occurrence_date=day, start=start, end=end, status=status)


def is_live_date(schedule: ClassSchedule, day: date, index: Optional[OccurrenceIndex]) -> bool:
    if not schedule.covers(day):
        return False
    return not (index is not None and index.is_cancelled(schedule.class_id, day))


def next_occurrence(
    schedule: ClassSchedule,
    now: datetime,
    *,
    lookahead_days: int = DEFAULT_LOOKAHEAD_DAYS,
    index: Optional[OccurrenceIndex] = None,
) -> Optional[Occurrence]:
    """Return the active or next upcoming occurrence, or None.

    For recurring classes an occurrence that is inside its join window (or
    still running) wins over any later date. Yesterday's occurrence counts
    when it runs past midnight.
    """
    tz = now.tzinfo

    if not schedule.is_recurring:
        if schedule.status != "scheduled" or schedule.class_date is None:
            return None
        if not is_live_date(schedule, schedule.class_date, index):
            return None
        occurrence = _occurrence(schedule, schedule.class_date, tz, index)
        return occurrence if occurrence.start > now else None

    if not schedule.recurring_days:
        return None

    today = now.date()
    for day in (today - timedelta(days=1), today):
        if not is_live_date(schedule, day, index):
            continue
        occurrence = _occurrence(schedule, day, tz, index)
        opens_at = add_minutes(occurrence.start, -schedule.join_window_minutes)
        if opens_at <= now <= occurrence.end:
            return occurrence

    for offset in range(lookahead_days):
        day = today + timedelta(days=offset)
        if not is_live_date(schedule, day, index):
            continue
        occurrence = _occurrence(schedule, day, tz, index)
        if occurrence.start > now:
            return occurrence
    return None


def count_upcoming(schedule: ClassSchedule, now: datetime, *, index: Optional[OccurrenceIndex] = None) -> int:
    """Count occurrences whose start is strictly after ``now``."""
    tz = now.tzinfo

    if not schedule.is_recurring:
        if schedule.status != "scheduled" or schedule.class_date is None:
            return 0
        if not is_live_date(schedule, schedule.class_date, index):
            return 0
        start, _ = session_bounds(schedule, schedule.class_date, tz)
        return 1 if start > now else 0

    if schedule.end_date is None or not schedule.recurring_days:
        return 0

    count = 0
    cursor = start_of_day(now).date()
    while cursor <= schedule.end_date:
        if is_live_date(schedule, cursor, index):
            start, _ = session_bounds(schedule, cursor, tz)
            if start > now:
                count += 1
        cursor += timedelta(days=1)
    return count


def occurrence_dates(schedule: ClassSchedule, window_start: date, window_end: date) -> List[date]:
    """Pattern dates of ``schedule`` within the inclusive window."""
    if window_end < window_start:
        return []
    if not schedule.is_recurring:
        day = schedule.class_date
        return [day] if day is not None and window_start <= day <= window_end else []
    if schedule.start_date is None or schedule.end_date is None or not schedule.recurring_days:
        return []

    first = max(schedule.start_date, window_start)
    last = min(schedule.end_date, window_end)
    dates = []
    cursor = first
    while cursor <= last:
        if schedule.covers(cursor):
            dates.append(cursor)
        cursor += timedelta(days=1)
    return dates


def occurrences_between(
    schedule: ClassSchedule,
    window_start: date,
    window_end: date,
    *,
    index: Optional[OccurrenceIndex] = None,
    tzinfo: TzInfo | None = None,
) -> List[Occurrence]:
    return [_occurrence(schedule, day, tzinfo, index) for day in occurrence_dates(schedule, window_start, window_end)]
