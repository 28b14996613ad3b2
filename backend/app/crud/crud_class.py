"""Storage access for classes, their occurrences and attendance."""

from datetime import date
from decimal import Decimal
from typing import Iterable, List, Optional

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from backend.app.core.exceptions import NotFoundError
from backend.app.domain.scheduling import ONE_TIME, WEEKLY_RECURRING, ClassSchedule, OccurrenceRecord
from backend.app.models.class_definition import ClassDefinition, class_students
from backend.app.models.class_occurrence import ClassOccurrence
from backend.app.models.occurrence_attendee import OccurrenceAttendee
from backend.app.models.user import User
from backend.app.services.occurrences import OccurrenceIndex


def to_schedule(obj: ClassDefinition) -> ClassSchedule:
    """Snapshot an ORM class into an immutable schedule value."""
    return ClassSchedule(
        class_id=obj.id,
        tutor_id=obj.tutor_id,
        start_time=obj.start_time,
        duration_minutes=obj.duration_minutes,
        custom_duration_minutes=obj.custom_duration_minutes,
        schedule_type=obj.schedule_type,
        class_date=obj.class_date,
        start_date=obj.start_date,
        end_date=obj.end_date,
        recurring_days=frozenset(obj.recurring_days or ()),
        join_window_minutes=obj.join_window_minutes,
        status=obj.status,
        student_ids=frozenset(student.id for student in obj.students),
        max_capacity=obj.max_capacity,
        amount=Decimal(str(obj.amount if obj.amount is not None else "0.00")),
        currency=obj.currency,
        subject=obj.subject,
        time_zone=obj.time_zone or "UTC",
    )


def _in_range(date_from: date, date_to: date):
    return or_(
        and_(
            ClassDefinition.schedule_type == ONE_TIME,
            ClassDefinition.class_date >= date_from,
            ClassDefinition.class_date <= date_to,
        ),
        and_(
            ClassDefinition.schedule_type == WEEKLY_RECURRING,
            ClassDefinition.start_date <= date_to,
            ClassDefinition.end_date >= date_from,
        ),
    )


class CRUDClass:
    def get(self, db: Session, *, class_id: int) -> Optional[ClassDefinition]:
        return db.query(ClassDefinition).filter(ClassDefinition.id == class_id).first()

    def load_class(self, db: Session, *, class_id: int) -> ClassDefinition:
        obj = self.get(db, class_id=class_id)
        if obj is None:
            raise NotFoundError("Class not found", details={"class_id": class_id})
        return obj

    def load_users(self, db: Session, *, user_ids: Iterable[int]) -> List[User]:
        ids = sorted(set(user_ids))
        if not ids:
            return []
        users = db.query(User).filter(User.id.in_(ids)).all()
        missing = set(ids) - {user.id for user in users}
        if missing:
            raise NotFoundError("User not found", details={"user_ids": sorted(missing)})
        return users

    def lock_tutor(self, db: Session, *, tutor_id: int) -> User:
        """Row-lock the tutor so concurrent bookings for them serialize."""
        tutor = db.query(User).filter(User.id == tutor_id).with_for_update().first()
        if tutor is None:
            raise NotFoundError("Tutor not found", details={"tutor_id": tutor_id})
        return tutor

    def create(self, db: Session, *, fields: dict, students: List[User]) -> ClassDefinition:
        obj = ClassDefinition(**fields)
        obj.students = list(students)
        db.add(obj)
        db.flush()
        return obj

    def load_occurrences_for_tutor(
        self, db: Session, *, tutor_id: int, date_from: date, date_to: date
    ) -> List[ClassSchedule]:
        classes = (
            db.query(ClassDefinition)
            .filter(
                ClassDefinition.tutor_id == tutor_id,
                ClassDefinition.status == "scheduled",
                _in_range(date_from, date_to),
            )
            .all()
        )
        return [to_schedule(obj) for obj in classes]

    def load_occurrences_for_students(
        self, db: Session, *, student_ids: Iterable[int], date_from: date, date_to: date
    ) -> List[ClassSchedule]:
        ids = list(student_ids)
        if not ids:
            return []
        classes = (
            db.query(ClassDefinition)
            .join(class_students, class_students.c.class_id == ClassDefinition.id)
            .filter(
                class_students.c.student_id.in_(ids),
                ClassDefinition.status == "scheduled",
                _in_range(date_from, date_to),
            )
            .distinct()
            .all()
        )
        return [to_schedule(obj) for obj in classes]

    def load_index(self, db: Session, *, class_ids: Iterable[int]) -> OccurrenceIndex:
        ids = [cid for cid in set(class_ids) if cid is not None]
        if not ids:
            return OccurrenceIndex()
        rows = db.query(ClassOccurrence).filter(ClassOccurrence.class_id.in_(ids)).all()
        return OccurrenceIndex(
            OccurrenceRecord(
                class_id=row.class_id,
                occurrence_date=row.occurrence_date,
                status=row.status,
                attendee_ids=frozenset(a.student_id for a in row.attendees),
            )
            for row in rows
        )

    def get_occurrence(self, db: Session, *, class_id: int, occurrence_date: date) -> Optional[ClassOccurrence]:
        return (
            db.query(ClassOccurrence)
            .filter(ClassOccurrence.class_id == class_id, ClassOccurrence.occurrence_date == occurrence_date)
            .first()
        )

    def materialize_occurrences(
        self, db: Session, *, class_obj: ClassDefinition, dates: Iterable[date]
    ) -> List[ClassOccurrence]:
        """Insert occurrence rows for ``dates`` that have none yet; return all rows for them."""
        existing = {
            row.occurrence_date: row
            for row in db.query(ClassOccurrence).filter(ClassOccurrence.class_id == class_obj.id).all()
        }
        rows = []
        for day in sorted(set(dates)):
            row = existing.get(day)
            if row is None:
                row = ClassOccurrence(class_id=class_obj.id, occurrence_date=day, status="scheduled")
                db.add(row)
            rows.append(row)
        db.flush()
        return rows

    def upsert_attendee(
        self, db: Session, *, occurrence: ClassOccurrence, student_id: int, attended: bool, joined_at=None
    ) -> OccurrenceAttendee:
        attendee = (
            db.query(OccurrenceAttendee)
            .filter(OccurrenceAttendee.occurrence_id == occurrence.id, OccurrenceAttendee.student_id == student_id)
            .first()
        )
        if attendee is None:
            attendee = OccurrenceAttendee(occurrence_id=occurrence.id, student_id=student_id)
            db.add(attendee)
        attendee.attended = attended
        if joined_at is not None and attendee.joined_at is None:
            attendee.joined_at = joined_at
        db.flush()
        return attendee


class_crud = CRUDClass()
