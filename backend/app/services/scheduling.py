"""Class scheduling workflows.

Each workflow runs in one transaction: availability is checked (and re-checked
under a row lock on the tutor) before the class, its occurrence rows and the
ledger entries are written. Any domain error rolls the whole unit back.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from backend.app.core.exceptions import DomainException, SchedulingConflict, ValidationError
from backend.app.core.settings import get_settings
from backend.app.core.time import as_utc_naive, get_zone, localize, utc_now
from backend.app.crud.crud_class import class_crud, to_schedule
from backend.app.crud.crud_ledger import ledger_crud
from backend.app.domain.scheduling import (
    OCCURRENCE_STATUSES,
    WEEKDAYS,
    ClassSchedule,
    Conflict,
    JoinDecision,
    Occurrence,
    normalize_days,
    validate_schedule,
)
from backend.app.models.class_definition import ClassDefinition
from backend.app.models.class_occurrence import ClassOccurrence
from backend.app.models.ledger_entry import LedgerEntry
from backend.app.models.occurrence_attendee import OccurrenceAttendee
from backend.app.models.user import User
from backend.app.schemas.class_definition import ClassCreate, ClassUpdate
from backend.app.services import join_gate, ledger
from backend.app.services.availability import check_schedule, find_conflicts
from backend.app.services.occurrences import next_occurrence, occurrence_dates, occurrences_between

logger = logging.getLogger(__name__)

SCHEDULE_FIELDS = (
    "start_time",
    "duration_minutes",
    "custom_duration_minutes",
    "schedule_type",
    "class_date",
    "start_date",
    "end_date",
    "recurring_days",
    "time_zone",
    "join_window_minutes",
)
PRICING_FIELDS = ("amount", "currency", "subject")


@dataclass
class ScheduledClass:
    class_obj: ClassDefinition
    occurrences: List[ClassOccurrence] = field(default_factory=list)
    ledger_entries: List[LedgerEntry] = field(default_factory=list)


def _schedule_from_payload(payload: ClassCreate) -> ClassSchedule:
    return ClassSchedule(
        tutor_id=payload.tutor_id,
        start_time=payload.start_time,
        duration_minutes=payload.duration_minutes,
        custom_duration_minutes=payload.custom_duration_minutes,
        schedule_type=payload.schedule_type,
        class_date=payload.class_date,
        start_date=payload.start_date,
        end_date=payload.end_date,
        recurring_days=normalize_days(payload.recurring_days),
        join_window_minutes=payload.join_window_minutes,
        student_ids=frozenset(payload.student_ids),
        max_capacity=payload.max_capacity,
        amount=payload.amount,
        currency=payload.currency,
        subject=payload.subject,
        time_zone=payload.time_zone,
    )


def horizon(schedule: ClassSchedule, now: datetime) -> Tuple[date, date]:
    """Dates of ``schedule`` that get occurrence rows and ledger entries.

    Recurring ranges start at today or the start date, whichever is later,
    and are cut at ``billing_horizon_days`` past that anchor. Past pattern
    dates are never materialized or billed.
    """
    if not schedule.is_recurring:
        return schedule.class_date, schedule.class_date
    anchor = max(localize(now, schedule.time_zone).date(), schedule.start_date)
    last = min(schedule.end_date, anchor + timedelta(days=get_settings().billing_horizon_days))
    return anchor, last


def _find_schedule_conflicts(db: Session, candidate: ClassSchedule, window: Tuple[date, date]) -> List[Conflict]:
    # Pad a day each side so sessions that cross midnight are loaded.
    date_from, date_to = window[0] - timedelta(days=1), window[1] + timedelta(days=1)
    existing: Dict[int, ClassSchedule] = {}
    for schedule in class_crud.load_occurrences_for_tutor(
        db, tutor_id=candidate.tutor_id, date_from=date_from, date_to=date_to
    ):
        existing[schedule.class_id] = schedule
    for schedule in class_crud.load_occurrences_for_students(
        db, student_ids=candidate.student_ids, date_from=date_from, date_to=date_to
    ):
        existing[schedule.class_id] = schedule
    index = class_crud.load_index(db, class_ids=existing.keys())
    return check_schedule(candidate, existing.values(), *window, index=index)


def _ensure_available(db: Session, candidate: ClassSchedule, window: Tuple[date, date]) -> None:
    conflicts = _find_schedule_conflicts(db, candidate, window)
    if conflicts:
        raise SchedulingConflict("Schedule conflicts with existing classes", conflicts=conflicts)


def schedule_class(
    db: Session,
    payload: ClassCreate,
    actor: Optional[User] = None,
    now: Optional[datetime] = None,
) -> ScheduledClass:
    now = now or utc_now()
    candidate = _schedule_from_payload(payload)
    validate_schedule(candidate)
    get_zone(candidate.time_zone)
    window = horizon(candidate, now)
    actor_id = actor.id if actor else None

    students = class_crud.load_users(db, user_ids=payload.student_ids)
    _ensure_available(db, candidate, window)

    try:
        class_crud.lock_tutor(db, tutor_id=candidate.tutor_id)
        _ensure_available(db, candidate, window)

        fields = payload.model_dump(exclude={"student_ids"})
        fields["recurring_days"] = sorted(candidate.recurring_days, key=WEEKDAYS.index)
        fields["created_by_id"] = actor_id
        class_obj = class_crud.create(db, fields=fields, students=students)

        dates = occurrence_dates(candidate, *window)
        rows = class_crud.materialize_occurrences(db, class_obj=class_obj, dates=dates)
        schedule = to_schedule(class_obj)
        entries: List[LedgerEntry] = []
        for day in dates:
            entries.extend(
                ledger.create_entries_for_occurrence(
                    db, schedule, day, class_obj.payment_status, actor_id, commit=False
                )
            )
        db.commit()
    except DomainException:
        db.rollback()
        raise

    db.refresh(class_obj)
    logger.info(
        "Scheduled class %s for tutor %s: %d occurrence(s), %d ledger entr(ies)",
        class_obj.id,
        class_obj.tutor_id,
        len(rows),
        len(entries),
    )
    return ScheduledClass(class_obj=class_obj, occurrences=rows, ledger_entries=entries)


def update_class(
    db: Session,
    class_id: int,
    changes: ClassUpdate,
    actor: Optional[User] = None,
    now: Optional[datetime] = None,
) -> ScheduledClass:
    """Apply ``changes`` and propagate them to occurrences and unpaid ledger entries."""
    now = now or utc_now()
    actor_id = actor.id if actor else None
    class_obj = class_crud.load_class(db, class_id=class_id)
    before = to_schedule(class_obj)
    data = changes.model_dump(exclude_unset=True)

    new_student_ids = data.pop("student_ids", None)
    students = None
    if new_student_ids is not None:
        students = class_crud.load_users(db, user_ids=new_student_ids)

    schedule_changes = {k: data[k] for k in SCHEDULE_FIELDS if k in data}
    if "recurring_days" in schedule_changes:
        schedule_changes["recurring_days"] = normalize_days(schedule_changes["recurring_days"])
    candidate = replace(
        before,
        **schedule_changes,
        **{k: data[k] for k in ("amount", "currency", "subject", "max_capacity", "status") if k in data},
        student_ids=frozenset(new_student_ids) if new_student_ids is not None else before.student_ids,
    )
    validate_schedule(candidate)
    get_zone(candidate.time_zone)

    timing_changed = any(getattr(before, k) != getattr(candidate, k) for k in SCHEDULE_FIELDS)
    added = candidate.student_ids - before.student_ids
    removed = before.student_ids - candidate.student_ids
    window = horizon(candidate, now)

    try:
        if timing_changed or added:
            class_crud.lock_tutor(db, tutor_id=candidate.tutor_id)
            _ensure_available(db, candidate, window)

        old_payment_status = class_obj.payment_status
        for key, value in data.items():
            if key == "recurring_days":
                value = sorted(candidate.recurring_days, key=WEEKDAYS.index)
            setattr(class_obj, key, value)
        if students is not None:
            class_obj.students = list(students)
        db.flush()

        # Re-materialize: new pattern dates get rows, dropped future dates are cancelled.
        today = localize(now, candidate.time_zone).date()
        wanted = set(occurrence_dates(candidate, *window))
        existing_rows = {row.occurrence_date: row for row in class_obj.occurrences}
        for day, row in existing_rows.items():
            if day not in wanted and day >= today and row.status == "scheduled":
                row.status = "cancelled"
                ledger.void_entries_for_occurrence(
                    db, class_id, day, actor_id, "class schedule changed", commit=False
                )
        new_dates = sorted(wanted - set(existing_rows))
        rows = class_crud.materialize_occurrences(db, class_obj=class_obj, dates=wanted)

        if "payment_status" in data and data["payment_status"] != old_payment_status:
            ledger.update_status_for_class_change(
                db, class_id, class_obj.payment_status, actor_id, commit=False
            )
        if timing_changed or any(k in data for k in PRICING_FIELDS):
            ledger.refresh_terms_for_class_change(db, class_id, actor_id, commit=False)
        if removed:
            ledger.cancel_entries_for_students(db, class_id, removed, actor_id, commit=False)

        schedule = to_schedule(class_obj)
        entries: List[LedgerEntry] = []
        live_dates = [row.occurrence_date for row in rows if row.status != "cancelled"]
        for day in live_dates:
            if day in new_dates:
                targets = None
            elif added:
                targets = added
            else:
                continue
            entries.extend(
                ledger.create_entries_for_occurrence(
                    db, schedule, day, class_obj.payment_status, actor_id, student_ids=targets, commit=False
                )
            )
        db.commit()
    except DomainException:
        db.rollback()
        raise

    db.refresh(class_obj)
    logger.info(
        "Updated class %s: %d new date(s), %d student(s) added, %d removed",
        class_id,
        len(new_dates),
        len(added),
        len(removed),
    )
    return ScheduledClass(class_obj=class_obj, occurrences=rows, ledger_entries=entries)


def set_occurrence_status(
    db: Session,
    class_id: int,
    occurrence_date: date,
    status: str,
    actor: Optional[User] = None,
) -> ClassOccurrence:
    if status not in OCCURRENCE_STATUSES:
        raise ValidationError(f"Occurrence status must be one of: {', '.join(OCCURRENCE_STATUSES)}")
    class_obj = class_crud.load_class(db, class_id=class_id)
    schedule = to_schedule(class_obj)
    if not schedule.covers(occurrence_date):
        raise ValidationError(
            "Date is not an occurrence of this class",
            details={"class_id": class_id, "occurrence_date": occurrence_date.isoformat()},
        )

    row = class_crud.materialize_occurrences(db, class_obj=class_obj, dates=[occurrence_date])[0]
    row.status = status
    if status == "cancelled":
        ledger.void_entries_for_occurrence(
            db, class_id, occurrence_date, actor.id if actor else None, commit=False
        )
    if not schedule.is_recurring:
        class_obj.status = "completed" if status == "completed" else "scheduled"
    db.commit()
    db.refresh(row)
    logger.info("Class %s occurrence %s -> %s", class_id, occurrence_date.isoformat(), status)
    return row


def record_attendance(
    db: Session,
    class_id: int,
    occurrence_date: date,
    student_id: int,
    attended: bool,
    now: Optional[datetime] = None,
) -> OccurrenceAttendee:
    class_obj = class_crud.load_class(db, class_id=class_id)
    schedule = to_schedule(class_obj)
    if not schedule.covers(occurrence_date):
        raise ValidationError("Date is not an occurrence of this class")
    ledger_ids = ledger_crud.active_student_ids(db, class_id=class_id, occurrence_date=occurrence_date)
    if student_id == schedule.tutor_id or not join_gate.is_authorized_participant(
        schedule, student_id, ledger_student_ids=ledger_ids
    ):
        raise ValidationError(
            "Student is not a participant of this class",
            details={"class_id": class_id, "student_id": student_id},
        )

    row = class_crud.materialize_occurrences(db, class_obj=class_obj, dates=[occurrence_date])[0]
    if row.status == "cancelled":
        raise ValidationError("Cannot record attendance for a cancelled occurrence")
    attendee = class_crud.upsert_attendee(
        db,
        occurrence=row,
        student_id=student_id,
        attended=attended,
        joined_at=as_utc_naive(now or utc_now()) if attended else None,
    )
    db.commit()
    db.refresh(attendee)
    return attendee


def realize_billing(
    db: Session,
    class_id: int,
    occurrence_date: date,
    payment_status: Optional[str] = None,
    actor: Optional[User] = None,
) -> List[LedgerEntry]:
    """Create (or confirm) the ledger entries of one occurrence."""
    class_obj = class_crud.load_class(db, class_id=class_id)
    schedule = to_schedule(class_obj)
    if not schedule.covers(occurrence_date):
        raise ValidationError(
            "Date is not an occurrence of this class",
            details={"class_id": class_id, "occurrence_date": occurrence_date.isoformat()},
        )
    try:
        class_crud.materialize_occurrences(db, class_obj=class_obj, dates=[occurrence_date])
        entries = ledger.create_entries_for_occurrence(
            db,
            schedule,
            occurrence_date,
            payment_status or class_obj.payment_status,
            actor.id if actor else None,
            commit=False,
        )
        db.commit()
    except DomainException:
        db.rollback()
        raise
    return entries


def next_occurrence_for(db: Session, class_id: int, now: Optional[datetime] = None) -> Optional[Occurrence]:
    class_obj = class_crud.load_class(db, class_id=class_id)
    schedule = to_schedule(class_obj)
    index = class_crud.load_index(db, class_ids=[class_id])
    return next_occurrence(
        schedule,
        localize(now or utc_now(), schedule.time_zone),
        lookahead_days=get_settings().next_occurrence_lookahead_days,
        index=index,
    )


def list_occurrences(
    db: Session,
    class_id: int,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    now: Optional[datetime] = None,
) -> List[Occurrence]:
    class_obj = class_crud.load_class(db, class_id=class_id)
    schedule = to_schedule(class_obj)
    default_from, default_to = horizon(schedule, now or utc_now())
    index = class_crud.load_index(db, class_ids=[class_id])
    return occurrences_between(
        schedule,
        date_from or default_from,
        date_to or default_to,
        index=index,
        tzinfo=get_zone(schedule.time_zone),
    )


def tutor_availability(
    db: Session,
    tutor_id: int,
    candidate_date: date,
    start_time: str,
    duration_minutes: int,
    exclude_class_id: Optional[int] = None,
) -> List[Conflict]:
    existing = class_crud.load_occurrences_for_tutor(
        db,
        tutor_id=tutor_id,
        date_from=candidate_date - timedelta(days=1),
        date_to=candidate_date + timedelta(days=1),
    )
    index = class_crud.load_index(db, class_ids=[s.class_id for s in existing])
    return find_conflicts(
        tutor_id,
        candidate_date,
        start_time,
        duration_minutes,
        existing,
        exclude_class_id=exclude_class_id,
        index=index,
    )


def evaluate_join_for(
    db: Session,
    class_id: int,
    participant_id: int,
    now: Optional[datetime] = None,
) -> JoinDecision:
    now = now or utc_now()
    settings = get_settings()
    class_obj = class_crud.load_class(db, class_id=class_id)
    schedule = to_schedule(class_obj)
    index = class_crud.load_index(db, class_ids=[class_id])

    window = join_gate.evaluate(
        schedule, now, index=index, lookahead_days=settings.next_occurrence_lookahead_days
    )
    ledger_ids: List[int] = []
    attendee_ids = frozenset()
    if window.session_start is not None:
        day = window.session_start.date()
        ledger_ids = ledger_crud.active_student_ids(db, class_id=class_id, occurrence_date=day)
        record = index.get(class_id, day)
        if record is not None:
            attendee_ids = record.attendee_ids

    return join_gate.evaluate_join(
        schedule,
        participant_id,
        now,
        index=index,
        ledger_student_ids=ledger_ids,
        attendee_ids=attendee_ids,
        lookahead_days=settings.next_occurrence_lookahead_days,
    )


def join_class(db: Session, class_id: int, participant_id: int, now: Optional[datetime] = None) -> JoinDecision:
    """Evaluate the join and, when granted to a student, mark them present."""
    now = now or utc_now()
    decision = evaluate_join_for(db, class_id, participant_id, now)
    class_obj = class_crud.load_class(db, class_id=class_id)
    if decision.can_join and participant_id != class_obj.tutor_id:
        record_attendance(db, class_id, decision.session_start.date(), participant_id, True, now)
    return decision
