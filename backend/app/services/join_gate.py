"""Join gate: may a participant enter a class session right now?

Outcomes are returned as ``JoinDecision`` data. "Not yet", "ended" and "not
authorized" are frequent, expected answers, not errors.
"""

import math
from datetime import datetime
from typing import Iterable, Optional

from backend.app.core.time import add_minutes, localize
from backend.app.domain.scheduling import ClassSchedule, JoinDecision, Occurrence
from backend.app.services.occurrences import (
    DEFAULT_LOOKAHEAD_DAYS,
    OccurrenceIndex,
    next_occurrence,
    session_bounds,
)

NOT_SCHEDULED = "not_scheduled"
NO_UPCOMING_SESSION = "no_upcoming_session"
NOT_YET_OPEN = "not_yet_open"
SESSION_ENDED = "session_ended"
READY = "ready"
NOT_AUTHORIZED = "not_authorized"


def _resolve_session(
    schedule: ClassSchedule,
    now: datetime,
    index: Optional[OccurrenceIndex],
    lookahead_days: int,
) -> Optional[Occurrence]:
    if schedule.is_recurring:
        return next_occurrence(schedule, now, lookahead_days=lookahead_days, index=index)

    if schedule.class_date is None:
        return None
    start, end = session_bounds(schedule, schedule.class_date, now.tzinfo)
    # Nothing left to join once the session's last day is behind us.
    if end.date() < now.date():
        return None
    return Occurrence(class_id=schedule.class_id, occurrence_date=schedule.class_date, start=start, end=end)


def evaluate(
    schedule: ClassSchedule,
    now: datetime,
    *,
    index: Optional[OccurrenceIndex] = None,
    lookahead_days: int = DEFAULT_LOOKAHEAD_DAYS,
) -> JoinDecision:
    """Evaluate the time window of the relevant session of ``schedule`` at ``now``."""
    if schedule.status != "scheduled":
        return JoinDecision(can_join=False, reason="not scheduled", reason_code=NOT_SCHEDULED)

    local_now = localize(now, schedule.time_zone)
    if not schedule.is_recurring and schedule.class_date is not None and index is not None:
        if index.is_cancelled(schedule.class_id, schedule.class_date):
            return JoinDecision(can_join=False, reason="not scheduled", reason_code=NOT_SCHEDULED)

    occurrence = _resolve_session(schedule, local_now, index, lookahead_days)
    if occurrence is None:
        return JoinDecision(can_join=False, reason="no upcoming session", reason_code=NO_UPCOMING_SESSION)

    opens_at = add_minutes(occurrence.start, -schedule.join_window_minutes)
    if local_now < opens_at:
        minutes_until = math.ceil((opens_at - local_now).total_seconds() / 60)
        return JoinDecision(
            can_join=False,
            reason=f"join available in {minutes_until} minutes",
            reason_code=NOT_YET_OPEN,
            session_start=occurrence.start,
            session_end=occurrence.end,
            minutes_until_open=minutes_until,
        )

    if local_now > occurrence.end:
        return JoinDecision(
            can_join=False,
            reason="session has ended",
            reason_code=SESSION_ENDED,
            session_start=occurrence.start,
            session_end=occurrence.end,
        )

    return JoinDecision(
        can_join=True,
        reason="ready to join",
        reason_code=READY,
        session_start=occurrence.start,
        session_end=occurrence.end,
    )


def is_authorized_participant(
    schedule: ClassSchedule,
    participant_id: int,
    *,
    ledger_student_ids: Iterable[int] = (),
    attendee_ids: Iterable[int] = (),
) -> bool:
    if participant_id == schedule.tutor_id:
        return True
    if participant_id in schedule.student_ids:
        return True
    return participant_id in set(ledger_student_ids) or participant_id in set(attendee_ids)


def evaluate_join(
    schedule: ClassSchedule,
    participant_id: int,
    now: datetime,
    *,
    index: Optional[OccurrenceIndex] = None,
    ledger_student_ids: Iterable[int] = (),
    attendee_ids: Iterable[int] = (),
    lookahead_days: int = DEFAULT_LOOKAHEAD_DAYS,
) -> JoinDecision:
    """Both the participant check and the time-window check must pass."""
    if not is_authorized_participant(
        schedule,
        participant_id,
        ledger_student_ids=ledger_student_ids,
        attendee_ids=attendee_ids,
    ):
        return JoinDecision(can_join=False, reason="not authorized to join", reason_code=NOT_AUTHORIZED)
    return evaluate(schedule, now, index=index, lookahead_days=lookahead_days)
