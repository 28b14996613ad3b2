"""Class scheduling, occurrence, attendance and join endpoints."""

from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from backend.app.core.exceptions import DomainException
from backend.app.core.security import get_current_admin, get_current_user
from backend.app.crud.crud_class import class_crud
from backend.app.db.session import get_db
from backend.app.models.class_definition import ClassDefinition
from backend.app.models.user import User
from backend.app.schemas.class_definition import (
    AttendanceCreate,
    AttendanceRead,
    ClassCreate,
    ClassRead,
    ClassUpdate,
    JoinDecisionRead,
    OccurrenceRead,
    OccurrenceStatusUpdate,
    ScheduledClassRead,
)
from backend.app.services import scheduling

router = APIRouter(prefix="/classes", tags=["classes"])


def _load_visible_class(db: Session, class_id: int, user: User) -> ClassDefinition:
    """Classes are visible to admins, their tutor, enrolled students and those students' parents."""
    class_obj = class_crud.get(db, class_id=class_id)
    if class_obj is None:
        raise HTTPException(status_code=404, detail="Class not found")
    if user.is_admin or class_obj.tutor_id == user.id:
        return class_obj
    for student in class_obj.students:
        if student.id == user.id or student.parent_id == user.id:
            return class_obj
    raise HTTPException(status_code=404, detail="Class not found")


def _scheduled_read(result: scheduling.ScheduledClass) -> ScheduledClassRead:
    return ScheduledClassRead(
        class_definition=ClassRead.model_validate(result.class_obj),
        occurrence_dates=[row.occurrence_date for row in result.occurrences],
        ledger_entry_count=len(result.ledger_entries),
    )


@router.post("/", response_model=ScheduledClassRead, status_code=201)
async def create_class(
    payload: ClassCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_admin),
):
    try:
        result = scheduling.schedule_class(db, payload, current_user)
    except DomainException as exc:
        raise exc.to_http_exception()
    return _scheduled_read(result)


@router.put("/{class_id}", response_model=ScheduledClassRead)
async def update_class(
    class_id: int,
    payload: ClassUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_admin),
):
    try:
        result = scheduling.update_class(db, class_id, payload, current_user)
    except DomainException as exc:
        raise exc.to_http_exception()
    return _scheduled_read(result)


@router.get("/{class_id}", response_model=ClassRead)
async def get_class(
    class_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return _load_visible_class(db, class_id, current_user)


@router.get("/{class_id}/next-occurrence", response_model=Optional[OccurrenceRead])
async def get_next_occurrence(
    class_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    _load_visible_class(db, class_id, current_user)
    try:
        return scheduling.next_occurrence_for(db, class_id)
    except DomainException as exc:
        raise exc.to_http_exception()


@router.get("/{class_id}/occurrences", response_model=List[OccurrenceRead])
async def list_occurrences(
    class_id: int,
    date_from: date | None = None,
    date_to: date | None = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    _load_visible_class(db, class_id, current_user)
    if date_from and date_to and date_to < date_from:
        raise HTTPException(status_code=400, detail="date_to must not be before date_from")
    try:
        return scheduling.list_occurrences(db, class_id, date_from, date_to)
    except DomainException as exc:
        raise exc.to_http_exception()


@router.patch("/{class_id}/occurrences/{occurrence_date}", response_model=OccurrenceRead)
async def update_occurrence_status(
    class_id: int,
    occurrence_date: date,
    payload: OccurrenceStatusUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_admin),
):
    try:
        scheduling.set_occurrence_status(db, class_id, occurrence_date, payload.status, current_user)
        occurrences = scheduling.list_occurrences(db, class_id, occurrence_date, occurrence_date)
    except DomainException as exc:
        raise exc.to_http_exception()
    return occurrences[0]


@router.post("/{class_id}/occurrences/{occurrence_date}/attendance", response_model=AttendanceRead)
async def record_attendance(
    class_id: int,
    occurrence_date: date,
    payload: AttendanceCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_admin),
):
    try:
        return scheduling.record_attendance(db, class_id, occurrence_date, payload.student_id, payload.attended)
    except DomainException as exc:
        raise exc.to_http_exception()


@router.get("/{class_id}/join-status", response_model=JoinDecisionRead)
async def get_join_status(
    class_id: int,
    participant_id: int | None = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    if participant_id is not None and participant_id != current_user.id and not current_user.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    try:
        return scheduling.evaluate_join_for(db, class_id, participant_id or current_user.id)
    except DomainException as exc:
        raise exc.to_http_exception()


@router.post("/{class_id}/join", response_model=JoinDecisionRead)
async def join_class(
    class_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        return scheduling.join_class(db, class_id, current_user.id)
    except DomainException as exc:
        raise exc.to_http_exception()
