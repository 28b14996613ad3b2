"""Ledger endpoints: billing realization, entry transitions and reports."""

from dataclasses import replace
from datetime import date, datetime
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from backend.app.core.exceptions import DomainException
from backend.app.core.security import get_current_admin, get_current_user
from backend.app.core.time import as_utc_naive
from backend.app.crud.crud_ledger import ledger_crud
from backend.app.db.session import get_db
from backend.app.domain.scheduling import LedgerFilter
from backend.app.models.ledger_entry import LedgerEntry
from backend.app.models.user import User
from backend.app.schemas.ledger import (
    AdjustmentCreate,
    DiscountApplied,
    DiscountCreate,
    LedgerEntryRead,
    LedgerReportRead,
    MarkPaidRequest,
    RealizeBillingRequest,
    VoidRequest,
)
from backend.app.services import ledger, reports, scheduling

router = APIRouter(prefix="/ledger", tags=["ledger"])


def _scope_filter(ledger_filter: LedgerFilter, user: User) -> LedgerFilter:
    """Non-admins only see entries where they are the tutor, the student or the parent."""
    if user.is_admin:
        return ledger_filter
    if user.role == "tutor":
        return replace(ledger_filter, tutor_id=user.id)
    if user.role == "parent":
        return replace(ledger_filter, parent_id=user.id)
    return replace(ledger_filter, student_id=user.id)


def _build_filter(
    status: List[str] | None,
    subject: List[str] | None,
    date_from: datetime | None,
    date_to: datetime | None,
    tutor_id: int | None,
    student_id: int | None,
    parent_id: int | None,
    class_id: int | None,
    currency: str | None = None,
) -> LedgerFilter:
    if date_from and date_to and date_to < date_from:
        raise HTTPException(status_code=400, detail="date_to must not be before date_from")
    return LedgerFilter(
        statuses=tuple(status or ()),
        subjects=tuple(subject or ()),
        date_from=as_utc_naive(date_from),
        date_to=as_utc_naive(date_to),
        tutor_id=tutor_id,
        student_id=student_id,
        parent_id=parent_id,
        class_id=class_id,
        currency=currency,
    )


def _load_visible_entry(db: Session, entry_id: int, user: User) -> LedgerEntry:
    entry = ledger_crud.get(db, entry_id=entry_id)
    if entry is None:
        raise HTTPException(status_code=404, detail="Ledger entry not found")
    if user.is_admin or user.id in (entry.tutor_id, entry.student_id, entry.parent_id):
        return entry
    raise HTTPException(status_code=404, detail="Ledger entry not found")


@router.post(
    "/classes/{class_id}/occurrences/{occurrence_date}",
    response_model=List[LedgerEntryRead],
    status_code=201,
)
async def realize_billing(
    class_id: int,
    occurrence_date: date,
    payload: RealizeBillingRequest | None = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_admin),
):
    payment_status = payload.payment_status if payload else None
    try:
        return scheduling.realize_billing(db, class_id, occurrence_date, payment_status, current_user)
    except DomainException as exc:
        raise exc.to_http_exception()


@router.get("/entries", response_model=List[LedgerEntryRead])
async def list_entries(
    status: List[str] | None = Query(default=None),
    subject: List[str] | None = Query(default=None),
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    tutor_id: int | None = None,
    student_id: int | None = None,
    parent_id: int | None = None,
    class_id: int | None = None,
    currency: str | None = None,
    skip: int = 0,
    limit: int = 50,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    ledger_filter = _build_filter(
        status, subject, date_from, date_to, tutor_id, student_id, parent_id, class_id, currency
    )
    entries = ledger_crud.query(db, ledger_filter=_scope_filter(ledger_filter, current_user))
    return entries[skip : skip + limit]


@router.get("/entries/{entry_id}", response_model=LedgerEntryRead)
async def get_entry(
    entry_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return _load_visible_entry(db, entry_id, current_user)


@router.post("/entries/{entry_id}/discounts", response_model=DiscountApplied)
async def apply_discount(
    entry_id: int,
    payload: DiscountCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_admin),
):
    entry = _load_visible_entry(db, entry_id, current_user)
    try:
        applied = ledger.apply_discount(db, entry, payload.kind, payload.value, payload.reason, current_user.id)
    except DomainException as exc:
        raise exc.to_http_exception()
    return DiscountApplied(applied_amount=applied, entry=LedgerEntryRead.model_validate(entry))


@router.post("/entries/{entry_id}/adjustments", response_model=LedgerEntryRead)
async def apply_adjustment(
    entry_id: int,
    payload: AdjustmentCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_admin),
):
    entry = _load_visible_entry(db, entry_id, current_user)
    try:
        ledger.apply_adjustment(db, entry, payload.amount, payload.reason, current_user.id, kind=payload.kind)
    except DomainException as exc:
        raise exc.to_http_exception()
    return entry


@router.post("/entries/{entry_id}/mark-paid", response_model=LedgerEntryRead)
async def mark_paid(
    entry_id: int,
    payload: MarkPaidRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_admin),
):
    entry = _load_visible_entry(db, entry_id, current_user)
    try:
        return ledger.mark_paid(db, entry, payload.method, payload.reference, current_user.id, notes=payload.notes)
    except DomainException as exc:
        raise exc.to_http_exception()


@router.post("/entries/{entry_id}/void", response_model=LedgerEntryRead)
async def void_entry(
    entry_id: int,
    payload: VoidRequest | None = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_admin),
):
    entry = _load_visible_entry(db, entry_id, current_user)
    try:
        return ledger.mark_void(db, entry, current_user.id, payload.reason if payload else None)
    except DomainException as exc:
        raise exc.to_http_exception()


@router.get("/report", response_model=LedgerReportRead)
async def get_report(
    status: List[str] | None = Query(default=None),
    subject: List[str] | None = Query(default=None),
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    tutor_id: int | None = None,
    student_id: int | None = None,
    parent_id: int | None = None,
    class_id: int | None = None,
    currency: str | None = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    ledger_filter = _build_filter(
        status, subject, date_from, date_to, tutor_id, student_id, parent_id, class_id, currency
    )
    try:
        summary = reports.generate_report(db, _scope_filter(ledger_filter, current_user))
    except DomainException as exc:
        raise exc.to_http_exception()
    return summary.as_dict()
