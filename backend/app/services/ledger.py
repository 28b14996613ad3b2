"""Ledger engine: per-occurrence entry creation, pricing and status transitions.

Entry status only changes through the functions in this module. A paid entry
is never altered by a discount, an adjustment or a class edit.
"""

import logging
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Iterable, List, Optional

from sqlalchemy.orm import Session

from backend.app.core.exceptions import DuplicateLedgerEntry, ImmutableAfterPayment, ValidationError
from backend.app.core.settings import get_settings
from backend.app.core.time import as_utc_naive, get_zone, utc_now
from backend.app.crud.crud_class import class_crud, to_schedule
from backend.app.crud.crud_ledger import INACTIVE_STATUSES, ledger_crud
from backend.app.domain.scheduling import ClassSchedule
from backend.app.models.ledger_adjustment import LedgerAdjustment
from backend.app.models.ledger_discount import LedgerDiscount
from backend.app.models.ledger_entry import LedgerEntry
from backend.app.services.ledger_math import (
    ADJUSTMENT_KINDS,
    DISCOUNT_KINDS,
    ZERO,
    DiscountLine,
    Totals,
    compute_totals,
    to_money,
)
from backend.app.services.occurrences import session_bounds

logger = logging.getLogger(__name__)

CREATABLE_STATUSES = ("unpaid", "democlass")
MUTABLE_STATUSES = ("unpaid", "democlass")
PAYMENT_METHODS = ("cash", "card", "bank_transfer", "wallet", "external", "credit")


def amount_for(schedule: ClassSchedule, payment_status: str) -> Decimal:
    """Flat per-occurrence price; democlass entries are free."""
    if payment_status == "democlass":
        return ZERO
    return to_money(schedule.amount)


def recalculate_entry_totals(entry: LedgerEntry) -> Totals:
    totals = compute_totals(
        entry.amount,
        [DiscountLine(kind=d.kind, value=Decimal(str(d.value))) for d in entry.discounts],
        [Decimal(str(a.amount)) for a in entry.adjustments],
        entry.tax_rate if entry.tax_rate is not None else ZERO,
        entry.platform_fee if entry.platform_fee is not None else ZERO,
    )
    for line, applied in zip(entry.discounts, totals.applied_discounts):
        line.applied_amount = applied
    entry.discount_total = totals.discount_total
    entry.adjustment_total = totals.adjustment_total
    entry.tax_amount = totals.tax_amount
    entry.platform_fee = totals.platform_fee
    entry.total_amount = totals.total_amount
    return totals


def _guard_mutable(entry: LedgerEntry, action: str) -> None:
    if entry.status == "paid":
        raise ImmutableAfterPayment(entry.id, action)
    if entry.status in INACTIVE_STATUSES:
        raise ValidationError(
            f"Ledger entry {entry.id} is {entry.status}; cannot {action}.",
            details={"entry_id": entry.id, "status": entry.status},
        )


def _same_terms(
    entry: LedgerEntry,
    status: str,
    amount: Decimal,
    currency: str,
    start: datetime,
    end: datetime,
    tax_rate: Decimal,
    platform_fee: Decimal,
) -> bool:
    return (
        entry.status == status
        and to_money(entry.amount) == amount
        and entry.currency == currency
        and as_utc_naive(entry.scheduled_start) == start
        and as_utc_naive(entry.scheduled_end) == end
        and to_money(entry.tax_rate) == tax_rate
        and to_money(entry.platform_fee) == platform_fee
    )


def create_entries_for_occurrence(
    db: Session,
    schedule: ClassSchedule,
    occurrence_date: date,
    payment_status: str,
    created_by: Optional[int],
    *,
    student_ids: Optional[Iterable[int]] = None,
    tax_rate: Decimal | None = None,
    platform_fee: Decimal | None = None,
    commit: bool = True,
) -> List[LedgerEntry]:
    """Create one entry per enrolled student for the occurrence on ``occurrence_date``.

    Identical existing entries are returned untouched. An active entry with
    different terms rejects the whole batch with ``DuplicateLedgerEntry``.
    Void or canceled entries for the same key are reactivated in place.
    """
    if payment_status not in CREATABLE_STATUSES:
        raise ValidationError(
            f"Ledger entries are created as one of: {', '.join(CREATABLE_STATUSES)}",
            details={"payment_status": payment_status},
        )
    if not schedule.covers(occurrence_date):
        raise ValidationError(
            "Date is not an occurrence of this class",
            details={"class_id": schedule.class_id, "occurrence_date": occurrence_date.isoformat()},
        )
    occurrence = class_crud.get_occurrence(db, class_id=schedule.class_id, occurrence_date=occurrence_date)
    if occurrence is not None and occurrence.status == "cancelled":
        raise ValidationError(
            "Cancelled occurrences are not billable",
            details={"class_id": schedule.class_id, "occurrence_date": occurrence_date.isoformat()},
        )

    settings = get_settings()
    wanted = set(schedule.student_ids if student_ids is None else student_ids)
    students = class_crud.load_users(db, user_ids=wanted)

    zone = get_zone(schedule.time_zone)
    local_start, local_end = session_bounds(schedule, occurrence_date, zone)
    scheduled_start = as_utc_naive(local_start)
    scheduled_end = as_utc_naive(local_end)
    amount = amount_for(schedule, payment_status)
    rate = to_money(settings.default_tax_rate if tax_rate is None else tax_rate)
    fee = to_money(settings.default_platform_fee if platform_fee is None else platform_fee)

    existing = {
        entry.student_id: entry
        for entry in ledger_crud.for_class(
            db, class_id=schedule.class_id, occurrence_date=occurrence_date, student_ids=wanted
        )
    }

    unchanged: List[LedgerEntry] = []
    reactivate: List[LedgerEntry] = []
    fresh: List[LedgerEntry] = []
    conflicting: List[int] = []
    for student in students:
        current = existing.get(student.id)
        if current is None:
            fresh.append(
                LedgerEntry(
                    class_id=schedule.class_id,
                    occurrence_date=occurrence_date,
                    tutor_id=schedule.tutor_id,
                    student_id=student.id,
                    parent_id=student.parent_id,
                    subject=schedule.subject or "General",
                    status=payment_status,
                    amount=amount,
                    currency=schedule.currency,
                    scheduled_start=scheduled_start,
                    scheduled_end=scheduled_end,
                    time_zone=schedule.time_zone,
                    duration_minutes=schedule.effective_duration,
                    due_date=scheduled_end + timedelta(days=settings.payment_terms_days),
                    tax_rate=rate,
                    platform_fee=fee,
                    notes="",
                    created_by_id=created_by,
                    updated_by_id=created_by,
                )
            )
        elif current.status in INACTIVE_STATUSES:
            reactivate.append(current)
        elif _same_terms(
            current, payment_status, amount, schedule.currency, scheduled_start, scheduled_end, rate, fee
        ):
            unchanged.append(current)
        else:
            conflicting.append(student.id)

    if conflicting:
        logger.warning(
            "Ledger conflict for class %s on %s, students %s",
            schedule.class_id,
            occurrence_date.isoformat(),
            conflicting,
        )
        raise DuplicateLedgerEntry(
            "Ledger entries with different terms already exist for this occurrence",
            details={
                "class_id": schedule.class_id,
                "occurrence_date": occurrence_date.isoformat(),
                "student_ids": sorted(conflicting),
            },
        )

    for entry in reactivate:
        entry.status = payment_status
        entry.amount = amount
        entry.currency = schedule.currency
        entry.subject = schedule.subject or entry.subject
        entry.scheduled_start = scheduled_start
        entry.scheduled_end = scheduled_end
        entry.duration_minutes = schedule.effective_duration
        entry.due_date = scheduled_end + timedelta(days=settings.payment_terms_days)
        entry.paid_at = None
        entry.tax_rate = rate
        entry.platform_fee = fee
        entry.payment_method = None
        entry.payment_reference = None
        entry.updated_by_id = created_by
        recalculate_entry_totals(entry)
    for entry in fresh:
        recalculate_entry_totals(entry)

    ledger_crud.insert_entries(db, entries=fresh)
    if commit:
        db.commit()
    else:
        db.flush()

    logger.info(
        "Ledger for class %s on %s: %d created, %d reactivated, %d unchanged",
        schedule.class_id,
        occurrence_date.isoformat(),
        len(fresh),
        len(reactivate),
        len(unchanged),
    )
    return sorted(fresh + reactivate + unchanged, key=lambda e: e.student_id)


def update_status_for_class_change(
    db: Session,
    class_id: int,
    new_status: str,
    updated_by: Optional[int],
    *,
    occurrence_date: Optional[date] = None,
    student_id: Optional[int] = None,
    commit: bool = True,
) -> int:
    """Move unpaid/democlass entries of a class to ``new_status``.

    A whole-class call leaves paid entries alone. A call narrowed to an
    occurrence date or a student fails if it selects a paid entry.
    """
    if new_status not in CREATABLE_STATUSES:
        raise ValidationError(
            f"Class payment status must be one of: {', '.join(CREATABLE_STATUSES)}",
            details={"payment_status": new_status},
        )
    schedule = to_schedule(class_crud.load_class(db, class_id=class_id))
    entries = ledger_crud.for_class(
        db,
        class_id=class_id,
        occurrence_date=occurrence_date,
        student_ids=[student_id] if student_id is not None else None,
    )

    targeted = occurrence_date is not None or student_id is not None
    if targeted:
        paid = [entry for entry in entries if entry.status == "paid"]
        if paid:
            raise ImmutableAfterPayment(paid[0].id, "change its payment status")

    changed = 0
    for entry in entries:
        if entry.status not in MUTABLE_STATUSES:
            continue
        entry.status = new_status
        entry.amount = amount_for(schedule, new_status)
        entry.updated_by_id = updated_by
        recalculate_entry_totals(entry)
        changed += 1

    if commit:
        db.commit()
    else:
        db.flush()
    logger.info("Class %s payment status -> %s on %d ledger entries", class_id, new_status, changed)
    return changed


def refresh_terms_for_class_change(
    db: Session,
    class_id: int,
    updated_by: Optional[int],
    *,
    commit: bool = True,
) -> int:
    """Re-price and re-time unpaid entries after a class edit."""
    settings = get_settings()
    schedule = to_schedule(class_crud.load_class(db, class_id=class_id))
    zone = get_zone(schedule.time_zone)
    changed = 0
    for entry in ledger_crud.for_class(db, class_id=class_id, statuses=MUTABLE_STATUSES):
        local_start, local_end = session_bounds(schedule, entry.occurrence_date, zone)
        entry.scheduled_start = as_utc_naive(local_start)
        entry.scheduled_end = as_utc_naive(local_end)
        entry.time_zone = schedule.time_zone
        entry.duration_minutes = schedule.effective_duration
        entry.due_date = entry.scheduled_end + timedelta(days=settings.payment_terms_days)
        entry.subject = schedule.subject or entry.subject
        entry.amount = amount_for(schedule, entry.status)
        entry.currency = schedule.currency
        entry.updated_by_id = updated_by
        recalculate_entry_totals(entry)
        changed += 1
    if commit:
        db.commit()
    else:
        db.flush()
    return changed


def _close_entries(entries: Iterable[LedgerEntry], status: str, note: str, updated_by: Optional[int]) -> int:
    changed = 0
    for entry in entries:
        entry.status = status
        entry.notes = note
        entry.updated_by_id = updated_by
        changed += 1
    return changed


def cancel_entries_for_students(
    db: Session,
    class_id: int,
    student_ids: Iterable[int],
    updated_by: Optional[int],
    *,
    commit: bool = True,
) -> int:
    ids = list(student_ids)
    if not ids:
        return 0
    entries = ledger_crud.for_class(db, class_id=class_id, statuses=MUTABLE_STATUSES, student_ids=ids)
    changed = _close_entries(entries, "canceled", "Canceled: student removed from class", updated_by)
    if commit:
        db.commit()
    else:
        db.flush()
    logger.info("Canceled %d ledger entries of class %s for removed students", changed, class_id)
    return changed


def void_entries_for_occurrence(
    db: Session,
    class_id: int,
    occurrence_date: date,
    updated_by: Optional[int],
    reason: str = "occurrence cancelled",
    *,
    commit: bool = True,
) -> int:
    entries = ledger_crud.for_class(db, class_id=class_id, statuses=MUTABLE_STATUSES, occurrence_date=occurrence_date)
    changed = _close_entries(entries, "void", f"Voided: {reason}", updated_by)
    if commit:
        db.commit()
    else:
        db.flush()
    return changed


def apply_discount(
    db: Session,
    entry: LedgerEntry,
    kind: str,
    value: Decimal | float | str,
    reason: Optional[str] = None,
    updated_by: Optional[int] = None,
) -> Decimal:
    """Append a discount and return the amount it took off."""
    _guard_mutable(entry, "apply a discount")
    if kind not in DISCOUNT_KINDS:
        raise ValidationError(f"Discount kind must be one of: {', '.join(DISCOUNT_KINDS)}")
    value = Decimal(str(value))
    if value < 0:
        raise ValidationError("Discount value must not be negative")
    if kind == "percentage" and value > 100:
        raise ValidationError("Percentage discount must not exceed 100")

    entry.discounts.append(
        LedgerDiscount(position=len(entry.discounts), kind=kind, value=to_money(value), reason=reason)
    )
    entry.updated_by_id = updated_by
    totals = recalculate_entry_totals(entry)
    db.commit()
    db.refresh(entry)
    logger.info("Discount %s %s applied to ledger entry %s", kind, value, entry.id)
    return totals.applied_discounts[-1]


def apply_adjustment(
    db: Session,
    entry: LedgerEntry,
    amount: Decimal | float | str,
    reason: Optional[str],
    applied_by: Optional[int],
    *,
    kind: str = "manual",
    now: Optional[datetime] = None,
) -> LedgerAdjustment:
    _guard_mutable(entry, "apply an adjustment")
    if kind not in ADJUSTMENT_KINDS:
        raise ValidationError(f"Adjustment kind must be one of: {', '.join(ADJUSTMENT_KINDS)}")

    adjustment = LedgerAdjustment(
        kind=kind,
        amount=to_money(amount),
        reason=reason,
        applied_by_id=applied_by,
        applied_at=as_utc_naive(now or utc_now()),
    )
    entry.adjustments.append(adjustment)
    entry.updated_by_id = applied_by
    recalculate_entry_totals(entry)
    db.commit()
    db.refresh(entry)
    logger.info("Adjustment %s applied to ledger entry %s", adjustment.amount, entry.id)
    return adjustment


def mark_paid(
    db: Session,
    entry: LedgerEntry,
    method: Optional[str],
    reference: Optional[str],
    updated_by: Optional[int] = None,
    *,
    now: Optional[datetime] = None,
    notes: Optional[str] = None,
) -> LedgerEntry:
    """Record payment. There is no way back to unpaid through this module."""
    if entry.status == "paid":
        raise ImmutableAfterPayment(entry.id, "mark it paid again")
    if entry.status in INACTIVE_STATUSES:
        raise ValidationError(
            f"Cannot record payment on a {entry.status} ledger entry",
            details={"entry_id": entry.id, "status": entry.status},
        )
    if method is not None and method not in PAYMENT_METHODS:
        raise ValidationError(f"Payment method must be one of: {', '.join(PAYMENT_METHODS)}")

    entry.status = "paid"
    entry.paid_at = as_utc_naive(now or utc_now())
    entry.payment_method = method
    entry.payment_reference = reference
    entry.updated_by_id = updated_by
    if notes:
        entry.notes = notes
    db.commit()
    db.refresh(entry)
    logger.info("Ledger entry %s marked paid via %s", entry.id, method)
    return entry


def mark_void(db: Session, entry: LedgerEntry, updated_by: Optional[int] = None, reason: Optional[str] = None) -> LedgerEntry:
    _guard_mutable(entry, "void it")
    entry.status = "void"
    entry.notes = f"Voided: {reason}" if reason else "Voided"
    entry.updated_by_id = updated_by
    db.commit()
    db.refresh(entry)
    logger.info("Ledger entry %s voided", entry.id)
    return entry
