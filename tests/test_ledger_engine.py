from datetime import UTC, date, datetime
from decimal import Decimal

import pytest

from backend.app.core.exceptions import DuplicateLedgerEntry, ImmutableAfterPayment, ValidationError
from backend.app.crud.crud_class import class_crud, to_schedule
from backend.app.crud.crud_ledger import ledger_crud
from backend.app.db.base import Base
from backend.app.db.session import SessionLocal, engine
from backend.app.models.ledger_entry import LedgerEntry
from backend.app.models.user import User
from backend.app.schemas.class_definition import ClassCreate
from backend.app.services import ledger
from backend.app.services.scheduling import schedule_class, set_occurrence_status

CLASS_DAY = date(2030, 1, 7)
NOW = datetime(2029, 12, 1, tzinfo=UTC)


@pytest.fixture(autouse=True)
def setup_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


def _create_users(db):
    admin = User(email="admin@example.com", role="admin", is_admin=True)
    tutor = User(email="tutor@example.com", role="tutor")
    parent = User(email="parent@example.com", role="parent")
    db.add_all([admin, tutor, parent])
    db.commit()
    student = User(email="student@example.com", role="student", parent_id=parent.id)
    db.add(student)
    db.commit()
    return admin, tutor, parent, student


def _schedule(db, admin, tutor, students, **overrides):
    payload = dict(
        title="Algebra",
        subject="Math",
        tutor_id=tutor.id,
        student_ids=[s.id for s in students],
        start_time="10:00",
        duration_minutes=45,
        schedule_type="one-time",
        class_date=CLASS_DAY,
        amount=Decimal("100.00"),
    )
    payload.update(overrides)
    return schedule_class(db, ClassCreate(**payload), admin, NOW)


def _entries(db, class_id):
    return db.query(LedgerEntry).filter(LedgerEntry.class_id == class_id).all()


def test_scheduling_creates_one_entry_per_student_with_parent_copied():
    db = SessionLocal()
    try:
        admin, tutor, parent, student = _create_users(db)
        result = _schedule(db, admin, tutor, [student])
        entries = _entries(db, result.class_obj.id)
        assert len(entries) == 1
        entry = entries[0]
        assert entry.status == "unpaid"
        assert entry.amount == Decimal("100.00")
        assert entry.total_amount == Decimal("100.00")
        assert entry.parent_id == parent.id
        assert entry.scheduled_start == datetime(2030, 1, 7, 10, 0)
        assert entry.due_date == datetime(2030, 1, 14, 10, 45)
    finally:
        db.close()


def test_repeat_creation_with_identical_terms_is_a_no_op():
    db = SessionLocal()
    try:
        admin, tutor, _, student = _create_users(db)
        result = _schedule(db, admin, tutor, [student])
        schedule = to_schedule(class_crud.load_class(db, class_id=result.class_obj.id))

        first = ledger.create_entries_for_occurrence(db, schedule, CLASS_DAY, "unpaid", admin.id)
        second = ledger.create_entries_for_occurrence(db, schedule, CLASS_DAY, "unpaid", admin.id)
        assert [e.id for e in first] == [e.id for e in second]
        assert len(_entries(db, result.class_obj.id)) == 1
    finally:
        db.close()


def test_different_terms_conflict_and_write_nothing():
    db = SessionLocal()
    try:
        admin, tutor, _, student = _create_users(db)
        other = User(email="other@example.com", role="student")
        db.add(other)
        db.commit()
        result = _schedule(db, admin, tutor, [student])
        class_obj = class_crud.load_class(db, class_id=result.class_obj.id)
        class_obj.students.append(other)
        db.commit()
        schedule = to_schedule(class_obj)

        with pytest.raises(DuplicateLedgerEntry):
            ledger.create_entries_for_occurrence(db, schedule, CLASS_DAY, "democlass", admin.id)
        entries = _entries(db, class_obj.id)
        assert [(e.student_id, e.status) for e in entries] == [(student.id, "unpaid")]
    finally:
        db.close()


def test_voided_entry_is_reactivated():
    db = SessionLocal()
    try:
        admin, tutor, _, student = _create_users(db)
        result = _schedule(db, admin, tutor, [student])
        entry = _entries(db, result.class_obj.id)[0]
        ledger.mark_void(db, entry, admin.id, "billing error")
        assert entry.status == "void"
        assert entry.notes == "Voided: billing error"

        schedule = to_schedule(class_crud.load_class(db, class_id=result.class_obj.id))
        again = ledger.create_entries_for_occurrence(db, schedule, CLASS_DAY, "unpaid", admin.id)
        assert [e.id for e in again] == [entry.id]
        db.refresh(entry)
        assert entry.status == "unpaid"
    finally:
        db.close()


def test_off_pattern_and_cancelled_dates_are_rejected():
    db = SessionLocal()
    try:
        admin, tutor, _, student = _create_users(db)
        result = _schedule(db, admin, tutor, [student])
        schedule = to_schedule(result.class_obj)
        with pytest.raises(ValidationError):
            ledger.create_entries_for_occurrence(db, schedule, date(2030, 1, 8), "unpaid", admin.id)

        set_occurrence_status(db, result.class_obj.id, CLASS_DAY, "cancelled", admin)
        assert _entries(db, result.class_obj.id)[0].status == "void"
        with pytest.raises(ValidationError):
            ledger.create_entries_for_occurrence(db, schedule, CLASS_DAY, "unpaid", admin.id)
    finally:
        db.close()


def test_discount_adjustment_and_tax_recompute_totals():
    db = SessionLocal()
    try:
        admin, tutor, _, student = _create_users(db)
        result = _schedule(db, admin, tutor, [student])
        schedule = to_schedule(result.class_obj)
        entry = _entries(db, result.class_obj.id)[0]
        ledger.mark_void(db, entry, admin.id)
        entry = ledger.create_entries_for_occurrence(
            db, schedule, CLASS_DAY, "unpaid", admin.id, tax_rate=Decimal("8"), platform_fee=Decimal("2")
        )[0]

        applied = ledger.apply_discount(db, entry, "percentage", Decimal("10"), "sibling")
        adjustment = ledger.apply_adjustment(db, entry, Decimal("5"), "late join fee", admin.id, kind="late_penalty")
        assert applied == Decimal("10.00")
        assert adjustment.kind == "late_penalty"
        assert entry.discount_total == Decimal("10.00")
        assert entry.tax_amount == Decimal("7.60")
        assert entry.total_amount == Decimal("104.60")
    finally:
        db.close()


def test_invalid_discounts_are_rejected():
    db = SessionLocal()
    try:
        admin, tutor, _, student = _create_users(db)
        result = _schedule(db, admin, tutor, [student])
        entry = _entries(db, result.class_obj.id)[0]
        with pytest.raises(ValidationError):
            ledger.apply_discount(db, entry, "percentage", Decimal("120"))
        with pytest.raises(ValidationError):
            ledger.apply_discount(db, entry, "fixed", Decimal("-1"))
        with pytest.raises(ValidationError):
            ledger.apply_discount(db, entry, "voucher", Decimal("1"))
    finally:
        db.close()


def test_paid_entry_is_immutable():
    db = SessionLocal()
    try:
        admin, tutor, _, student = _create_users(db)
        result = _schedule(db, admin, tutor, [student])
        class_id = result.class_obj.id
        entry = _entries(db, class_id)[0]
        ledger.mark_paid(db, entry, "card", "txn-1", admin.id, now=NOW)
        assert entry.paid_at == datetime(2029, 12, 1, 0, 0)

        with pytest.raises(ImmutableAfterPayment):
            ledger.apply_discount(db, entry, "fixed", Decimal("5"))
        with pytest.raises(ImmutableAfterPayment):
            ledger.apply_adjustment(db, entry, Decimal("5"), "bonus", admin.id)
        with pytest.raises(ImmutableAfterPayment):
            ledger.update_status_for_class_change(db, class_id, "democlass", admin.id, occurrence_date=CLASS_DAY)
        with pytest.raises(ImmutableAfterPayment):
            ledger.mark_paid(db, entry, "cash", None, admin.id)
        with pytest.raises(ImmutableAfterPayment):
            ledger.mark_void(db, entry, admin.id)
        assert ledger.update_status_for_class_change(db, class_id, "democlass", admin.id) == 0

        db.refresh(entry)
        assert entry.status == "paid"
        assert entry.amount == Decimal("100.00")
        assert entry.total_amount == Decimal("100.00")
    finally:
        db.close()


def test_class_status_change_reprices_unpaid_entries():
    db = SessionLocal()
    try:
        admin, tutor, _, student = _create_users(db)
        result = _schedule(db, admin, tutor, [student])
        class_id = result.class_obj.id
        changed = ledger.update_status_for_class_change(db, class_id, "democlass", admin.id)
        assert changed == 1
        entry = _entries(db, class_id)[0]
        assert entry.status == "democlass"
        assert entry.total_amount == Decimal("0.00")
        with pytest.raises(ValidationError):
            ledger.update_status_for_class_change(db, class_id, "paid", admin.id)
    finally:
        db.close()


def test_changed_tax_or_fee_is_a_conflict():
    db = SessionLocal()
    try:
        admin, tutor, _, student = _create_users(db)
        result = _schedule(db, admin, tutor, [student])
        schedule = to_schedule(class_crud.load_class(db, class_id=result.class_obj.id))

        with pytest.raises(DuplicateLedgerEntry):
            ledger.create_entries_for_occurrence(db, schedule, CLASS_DAY, "unpaid", admin.id, tax_rate=Decimal("8"))
        with pytest.raises(DuplicateLedgerEntry):
            ledger.create_entries_for_occurrence(
                db, schedule, CLASS_DAY, "unpaid", admin.id, platform_fee=Decimal("2.00")
            )
        entry = _entries(db, result.class_obj.id)[0]
        assert entry.tax_rate == Decimal("0.00")
        assert entry.platform_fee == Decimal("0.00")
    finally:
        db.close()


def _copy_entry(entry, **overrides):
    fields = dict(
        class_id=entry.class_id,
        occurrence_date=entry.occurrence_date,
        tutor_id=entry.tutor_id,
        student_id=entry.student_id,
        subject=entry.subject,
        status="unpaid",
        amount=entry.amount,
        total_amount=entry.total_amount,
        currency=entry.currency,
        scheduled_start=entry.scheduled_start,
        scheduled_end=entry.scheduled_end,
        duration_minutes=entry.duration_minutes,
        due_date=entry.due_date,
    )
    fields.update(overrides)
    return LedgerEntry(**fields)


def test_unique_constraint_rejects_the_whole_batch():
    db = SessionLocal()
    try:
        admin, tutor, _, student = _create_users(db)
        other = User(email="other@example.com", role="student")
        db.add(other)
        db.commit()
        other_id = other.id
        result = _schedule(db, admin, tutor, [student])
        class_id = result.class_obj.id
        existing = _entries(db, class_id)[0]

        batch = [_copy_entry(existing, student_id=other_id), _copy_entry(existing)]
        with pytest.raises(DuplicateLedgerEntry):
            ledger_crud.insert_entries(db, entries=batch)
    finally:
        db.close()

    db = SessionLocal()
    try:
        entries = _entries(db, class_id)
        assert len(entries) == 1
        assert entries[0].student_id != other_id
    finally:
        db.close()


def test_concurrent_insert_surfaces_as_duplicate(monkeypatch):
    db = SessionLocal()
    try:
        admin, tutor, _, student = _create_users(db)
        other = User(email="other@example.com", role="student")
        db.add(other)
        db.commit()
        other_id = other.id
        result = _schedule(db, admin, tutor, [student])
        class_obj = class_crud.load_class(db, class_id=result.class_obj.id)
        class_obj.students.append(other)
        db.commit()
        class_id = class_obj.id
        schedule = to_schedule(class_obj)

        # The lookup misses the row another transaction already wrote.
        monkeypatch.setattr(ledger_crud, "for_class", lambda db, **kwargs: [])
        with pytest.raises(DuplicateLedgerEntry):
            ledger.create_entries_for_occurrence(db, schedule, CLASS_DAY, "unpaid", admin.id)
    finally:
        db.close()

    db = SessionLocal()
    try:
        entries = _entries(db, class_id)
        assert len(entries) == 1
        assert entries[0].student_id != other_id
    finally:
        db.close()
