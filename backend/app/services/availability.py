"""
Tutor and participant availability checks.

Every check here is a fast-path pre-filter. The scheduling service repeats the
tutor check under a row lock in the same transaction that persists the class.
"""

import logging
from datetime import date, datetime, timedelta
from typing import Iterable, List, Optional

from backend.app.core.time import add_minutes, combine, overlaps
from backend.app.domain.scheduling import ClassSchedule, Conflict
from backend.app.services.occurrences import OccurrenceIndex, is_live_date, occurrence_dates, session_bounds

logger = logging.getLogger(__name__)


def _blocking(schedule: ClassSchedule, day: date, exclude_class_id: Optional[int], index: Optional[OccurrenceIndex]) -> bool:
    if exclude_class_id is not None and schedule.class_id == exclude_class_id:
        return False
    if schedule.status != "scheduled":
        return False
    return is_live_date(schedule, day, index)


def _conflict(schedule: ClassSchedule, day: date, kind: str, participant_id: Optional[int] = None) -> Conflict:
    start, end = session_bounds(schedule, day)
    return Conflict(
        class_id=schedule.class_id,
        occurrence_date=day,
        start_time=start.strftime("%H:%M"),
        end_time=end.strftime("%H:%M"),
        kind=kind,
        participant_id=participant_id,
    )


def _overlapping_days(
    schedule: ClassSchedule,
    candidate_date: date,
    candidate_start: datetime,
    candidate_end: datetime,
    exclude_class_id: Optional[int],
    index: Optional[OccurrenceIndex],
) -> List[date]:
    # Sessions last at most a few hours, so only the neighbouring days can spill over.
    days = []
    for offset in (-1, 0, 1):
        day = candidate_date + timedelta(days=offset)
        if not _blocking(schedule, day, exclude_class_id, index):
            continue
        start, end = session_bounds(schedule, day)
        if overlaps(candidate_start, candidate_end, start, end):
            days.append(day)
    return days


def find_conflicts(
    tutor_id: int,
    candidate_date: date,
    start_time: str,
    duration_minutes: int,
    existing: Iterable[ClassSchedule],
    *,
    exclude_class_id: Optional[int] = None,
    index: Optional[OccurrenceIndex] = None,
) -> List[Conflict]:
    """Return existing occurrences of ``tutor_id`` overlapping the candidate slot."""
    candidate_start = combine(candidate_date, start_time)
    candidate_end = add_minutes(candidate_start, duration_minutes)

    conflicts = []
    for schedule in existing:
        if schedule.tutor_id != tutor_id:
            continue
        for day in _overlapping_days(schedule, candidate_date, candidate_start, candidate_end, exclude_class_id, index):
            conflicts.append(_conflict(schedule, day, "tutor"))
    return conflicts


def is_available(
    tutor_id: int,
    candidate_date: date,
    start_time: str,
    duration_minutes: int,
    existing: Iterable[ClassSchedule],
    *,
    exclude_class_id: Optional[int] = None,
    index: Optional[OccurrenceIndex] = None,
) -> bool:
    return not find_conflicts(
        tutor_id,
        candidate_date,
        start_time,
        duration_minutes,
        existing,
        exclude_class_id=exclude_class_id,
        index=index,
    )


def find_participant_conflicts(
    student_ids: Iterable[int],
    candidate_date: date,
    start_time: str,
    duration_minutes: int,
    existing: Iterable[ClassSchedule],
    *,
    exclude_class_id: Optional[int] = None,
    index: Optional[OccurrenceIndex] = None,
) -> List[Conflict]:
    """Overlaps between the candidate slot and other classes of the given students."""
    wanted = frozenset(student_ids)
    if not wanted:
        return []
    candidate_start = combine(candidate_date, start_time)
    candidate_end = add_minutes(candidate_start, duration_minutes)

    conflicts = []
    for schedule in existing:
        shared = wanted & schedule.student_ids
        if not shared:
            continue
        for day in _overlapping_days(schedule, candidate_date, candidate_start, candidate_end, exclude_class_id, index):
            for student_id in sorted(shared):
                conflicts.append(_conflict(schedule, day, "student", student_id))
    return conflicts


def check_schedule(
    candidate: ClassSchedule,
    existing: Iterable[ClassSchedule],
    window_start: date,
    window_end: date,
    *,
    index: Optional[OccurrenceIndex] = None,
) -> List[Conflict]:
    """Check every occurrence of ``candidate`` inside the window against ``existing``."""
    existing = list(existing)
    conflicts: List[Conflict] = []
    for day in occurrence_dates(candidate, window_start, window_end):
        conflicts.extend(
            find_conflicts(
                candidate.tutor_id,
                day,
                candidate.start_time,
                candidate.effective_duration,
                existing,
                exclude_class_id=candidate.class_id,
                index=index,
            )
        )
        conflicts.extend(
            find_participant_conflicts(
                candidate.student_ids,
                day,
                candidate.start_time,
                candidate.effective_duration,
                existing,
                exclude_class_id=candidate.class_id,
                index=index,
            )
        )
    if conflicts:
        logger.info(
            "Schedule for tutor %s has %d conflict(s), first on %s",
            candidate.tutor_id,
            len(conflicts),
            conflicts[0].occurrence_date.isoformat(),
        )
    return conflicts
