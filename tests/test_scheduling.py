from dataclasses import replace
from datetime import UTC, date, datetime
from decimal import Decimal

import pytest
from pydantic import ValidationError as SchemaError

from backend.app.core.exceptions import SchedulingConflict, ValidationError
from backend.app.crud.crud_class import class_crud, to_schedule
from backend.app.db.base import Base
from backend.app.db.session import SessionLocal, engine
from backend.app.domain.scheduling import validate_schedule
from backend.app.models.class_definition import ClassDefinition
from backend.app.models.class_occurrence import ClassOccurrence
from backend.app.models.ledger_entry import LedgerEntry
from backend.app.models.user import User
from backend.app.schemas.class_definition import ClassCreate, ClassUpdate
from backend.app.services import ledger
from backend.app.services.scheduling import (
    evaluate_join_for,
    join_class,
    next_occurrence_for,
    record_attendance,
    realize_billing,
    schedule_class,
    set_occurrence_status,
    update_class,
)

NOW = datetime(2024, 1, 1, 0, 0, tzinfo=UTC)
MONDAY = date(2024, 1, 8)


@pytest.fixture(autouse=True)
def setup_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


def _create_users(db):
    admin = User(email="admin@example.com", role="admin", is_admin=True)
    tutor = User(email="tutor@example.com", role="tutor")
    alice = User(email="alice@example.com", role="student")
    bob = User(email="bob@example.com", role="student")
    db.add_all([admin, tutor, alice, bob])
    db.commit()
    return admin, tutor, alice, bob


def _recurring_payload(tutor, students, **overrides):
    payload = dict(
        title="Physics",
        subject="Science",
        tutor_id=tutor.id,
        student_ids=[s.id for s in students],
        start_time="14:00",
        duration_minutes=45,
        schedule_type="weekly-recurring",
        start_date=date(2024, 1, 1),
        end_date=date(2024, 1, 31),
        recurring_days=["Monday", "wednesday"],
        amount=Decimal("40.00"),
    )
    payload.update(overrides)
    return ClassCreate(**payload)


def _entries(db, class_id, status=None):
    query = db.query(LedgerEntry).filter(LedgerEntry.class_id == class_id)
    if status:
        query = query.filter(LedgerEntry.status == status)
    return query.all()


def test_recurring_class_materializes_occurrences_and_entries():
    db = SessionLocal()
    try:
        admin, tutor, alice, bob = _create_users(db)
        result = schedule_class(db, _recurring_payload(tutor, [alice, bob]), admin, NOW)
        assert result.class_obj.recurring_days == ["monday", "wednesday"]
        assert len(result.occurrences) == 10
        assert len(result.ledger_entries) == 20
        assert db.query(ClassOccurrence).count() == 10
    finally:
        db.close()


def test_conflicting_schedule_is_rejected_and_nothing_is_written():
    db = SessionLocal()
    try:
        admin, tutor, alice, bob = _create_users(db)
        schedule_class(db, _recurring_payload(tutor, [alice]), admin, NOW)
        clash = ClassCreate(
            title="Chem",
            subject="Science",
            tutor_id=tutor.id,
            student_ids=[bob.id],
            start_time="14:30",
            duration_minutes=30,
            schedule_type="one-time",
            class_date=MONDAY,
        )
        with pytest.raises(SchedulingConflict) as excinfo:
            schedule_class(db, clash, admin, NOW)
        assert excinfo.value.conflicts[0].occurrence_date == MONDAY
        assert db.query(ClassDefinition).count() == 1
    finally:
        db.close()


def test_shared_student_conflict_across_tutors():
    db = SessionLocal()
    try:
        admin, tutor, alice, _ = _create_users(db)
        other_tutor = User(email="tutor2@example.com", role="tutor")
        db.add(other_tutor)
        db.commit()
        schedule_class(db, _recurring_payload(tutor, [alice]), admin, NOW)
        with pytest.raises(SchedulingConflict) as excinfo:
            schedule_class(
                db,
                _recurring_payload(other_tutor, [alice], start_time="14:15", duration_minutes=30),
                admin,
                NOW,
            )
        assert {c.kind for c in excinfo.value.conflicts} == {"student"}
    finally:
        db.close()


def test_back_to_back_classes_are_allowed():
    db = SessionLocal()
    try:
        admin, tutor, alice, bob = _create_users(db)
        schedule_class(db, _recurring_payload(tutor, [alice]), admin, NOW)
        result = schedule_class(
            db,
            ClassCreate(
                title="Chem",
                subject="Science",
                tutor_id=tutor.id,
                student_ids=[bob.id],
                start_time="14:45",
                duration_minutes=30,
                class_date=MONDAY,
            ),
            admin,
            NOW,
        )
        assert result.class_obj.id is not None
    finally:
        db.close()


def test_invalid_shape_is_rejected():
    db = SessionLocal()
    try:
        admin, tutor, alice, _ = _create_users(db)
        with pytest.raises(ValidationError):
            schedule_class(db, _recurring_payload(tutor, [alice], duration_minutes=50), admin, NOW)
        with pytest.raises(ValidationError):
            schedule_class(db, _recurring_payload(tutor, [alice], end_date=date(2023, 12, 1)), admin, NOW)
        with pytest.raises(ValidationError):
            schedule_class(db, _recurring_payload(tutor, [alice], max_capacity=1, student_ids=[1, 2]), admin, NOW)
    finally:
        db.close()


def test_cancelling_an_occurrence_voids_its_entries_and_skips_it():
    db = SessionLocal()
    try:
        admin, tutor, alice, _ = _create_users(db)
        result = schedule_class(db, _recurring_payload(tutor, [alice]), admin, NOW)
        class_id = result.class_obj.id
        set_occurrence_status(db, class_id, date(2024, 1, 3), "cancelled", admin)

        assert len(_entries(db, class_id, "void")) == 1
        occurrence = next_occurrence_for(db, class_id, datetime(2024, 1, 2, 0, 0))
        assert occurrence.occurrence_date == date(2024, 1, 8)
    finally:
        db.close()


def test_update_propagates_price_students_and_payment_status():
    db = SessionLocal()
    try:
        admin, tutor, alice, bob = _create_users(db)
        result = schedule_class(db, _recurring_payload(tutor, [alice]), admin, NOW)
        class_id = result.class_obj.id
        paid = _entries(db, class_id)[0]
        ledger.mark_paid(db, paid, "cash", None, admin.id)

        update_class(db, class_id, ClassUpdate(amount=Decimal("55.00")), admin, NOW)
        unpaid = _entries(db, class_id, "unpaid")
        assert {e.amount for e in unpaid} == {Decimal("55.00")}
        db.refresh(paid)
        assert paid.amount == Decimal("40.00")

        update_class(db, class_id, ClassUpdate(student_ids=[bob.id]), admin, NOW)
        assert len([e for e in _entries(db, class_id) if e.student_id == bob.id]) == 10
        assert len([e for e in _entries(db, class_id, "canceled") if e.student_id == alice.id]) == 9

        update_class(db, class_id, ClassUpdate(payment_status="democlass"), admin, NOW)
        bob_entries = [e for e in _entries(db, class_id) if e.student_id == bob.id]
        assert {e.status for e in bob_entries} == {"democlass"}
        assert {e.total_amount for e in bob_entries} == {Decimal("0.00")}
    finally:
        db.close()


def test_rescheduling_moves_unpaid_entries_and_cancels_dropped_dates():
    db = SessionLocal()
    try:
        admin, tutor, alice, _ = _create_users(db)
        result = schedule_class(db, _recurring_payload(tutor, [alice]), admin, NOW)
        class_id = result.class_obj.id

        update_class(db, class_id, ClassUpdate(recurring_days=["monday"], start_time="15:00"), admin, NOW)
        cancelled = db.query(ClassOccurrence).filter(ClassOccurrence.status == "cancelled").count()
        assert cancelled == 5
        active = _entries(db, class_id, "unpaid")
        assert len(active) == 5
        assert all(e.scheduled_start.hour == 15 for e in active)
    finally:
        db.close()


def test_realize_billing_is_idempotent():
    db = SessionLocal()
    try:
        admin, tutor, alice, _ = _create_users(db)
        result = schedule_class(db, _recurring_payload(tutor, [alice]), admin, NOW)
        entries = realize_billing(db, result.class_obj.id, MONDAY, actor=admin)
        assert len(entries) == 1
        assert len(_entries(db, result.class_obj.id)) == 10
    finally:
        db.close()


def test_join_records_attendance_and_refuses_strangers():
    db = SessionLocal()
    try:
        admin, tutor, alice, bob = _create_users(db)
        result = schedule_class(db, _recurring_payload(tutor, [alice]), admin, NOW)
        class_id = result.class_obj.id
        at = datetime(2024, 1, 8, 13, 50, tzinfo=UTC)

        assert evaluate_join_for(db, class_id, bob.id, at).reason_code == "not_authorized"
        assert evaluate_join_for(db, class_id, tutor.id, at).can_join

        decision = join_class(db, class_id, alice.id, at)
        assert decision.can_join
        occurrence = (
            db.query(ClassOccurrence)
            .filter(ClassOccurrence.class_id == class_id, ClassOccurrence.occurrence_date == MONDAY)
            .one()
        )
        assert [a.student_id for a in occurrence.attendees] == [alice.id]
        assert occurrence.attendees[0].joined_at == datetime(2024, 1, 8, 13, 50)
    finally:
        db.close()


def test_attendance_rejects_non_participants_and_cancelled_dates():
    db = SessionLocal()
    try:
        admin, tutor, alice, bob = _create_users(db)
        result = schedule_class(db, _recurring_payload(tutor, [alice]), admin, NOW)
        class_id = result.class_obj.id
        with pytest.raises(ValidationError):
            record_attendance(db, class_id, MONDAY, bob.id, True)
        set_occurrence_status(db, class_id, MONDAY, "cancelled", admin)
        with pytest.raises(ValidationError):
            record_attendance(db, class_id, MONDAY, alice.id, True)
    finally:
        db.close()


def test_completing_one_time_occurrence_completes_class():
    db = SessionLocal()
    try:
        admin, tutor, alice, _ = _create_users(db)
        result = schedule_class(
            db,
            ClassCreate(
                title="Review",
                subject="Math",
                tutor_id=tutor.id,
                student_ids=[alice.id],
                start_time="09:00",
                duration_minutes=60,
                class_date=MONDAY,
            ),
            admin,
            NOW,
        )
        set_occurrence_status(db, result.class_obj.id, MONDAY, "completed", admin)
        db.refresh(result.class_obj)
        assert result.class_obj.status == "completed"
    finally:
        db.close()


def test_past_start_date_bills_from_today_only():
    db = SessionLocal()
    try:
        admin, tutor, alice, _ = _create_users(db)
        result = schedule_class(
            db,
            _recurring_payload(
                tutor,
                [alice],
                start_date=date(2023, 1, 2),
                end_date=date(2024, 12, 31),
                recurring_days=["monday"],
            ),
            admin,
            NOW,
        )
        class_id = result.class_obj.id
        entries = _entries(db, class_id)
        assert min(e.occurrence_date for e in entries) == date(2024, 1, 1)
        assert not [e for e in entries if e.occurrence_date < date(2024, 1, 1)]
        past_rows = (
            db.query(ClassOccurrence)
            .filter(ClassOccurrence.class_id == class_id, ClassOccurrence.occurrence_date < date(2024, 1, 1))
            .count()
        )
        assert past_rows == 0
        # Mondays from 2024-01-01 through the 180 day horizon
        assert len(entries) == 26
    finally:
        db.close()


def test_adding_a_student_skips_past_dates():
    db = SessionLocal()
    try:
        admin, tutor, alice, bob = _create_users(db)
        result = schedule_class(db, _recurring_payload(tutor, [alice]), admin, NOW)
        class_id = result.class_obj.id

        later = datetime(2024, 1, 16, 0, 0, tzinfo=UTC)
        update_class(db, class_id, ClassUpdate(student_ids=[alice.id, bob.id]), admin, later)
        bob_dates = sorted(e.occurrence_date for e in _entries(db, class_id) if e.student_id == bob.id)
        assert bob_dates[0] == date(2024, 1, 17)
        assert len(bob_dates) == 5
    finally:
        db.close()


@pytest.mark.parametrize("field", ["amount", "join_window_minutes", "max_capacity", "subject", "start_time"])
def test_update_rejects_explicit_null(field):
    with pytest.raises(SchemaError):
        ClassUpdate(**{field: None})


def test_update_allows_clearing_nullable_fields():
    changes = ClassUpdate(description=None, notes=None, custom_duration_minutes=None)
    assert changes.model_dump(exclude_unset=True) == {
        "description": None,
        "notes": None,
        "custom_duration_minutes": None,
    }


def test_schedule_with_missing_required_value_is_a_validation_error():
    db = SessionLocal()
    try:
        admin, tutor, alice, _ = _create_users(db)
        result = schedule_class(db, _recurring_payload(tutor, [alice]), admin, NOW)
        schedule = to_schedule(class_crud.load_class(db, class_id=result.class_obj.id))
        for field in ("amount", "join_window_minutes", "max_capacity", "subject"):
            with pytest.raises(ValidationError):
                validate_schedule(replace(schedule, **{field: None}))
    finally:
        db.close()
