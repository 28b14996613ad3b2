"""Tutor availability lookup."""

from datetime import date

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from backend.app.core.exceptions import DomainException
from backend.app.core.security import get_current_user
from backend.app.db.session import get_db
from backend.app.models.user import User
from backend.app.schemas.class_definition import AvailabilityRead
from backend.app.services import scheduling

router = APIRouter(prefix="/availability", tags=["availability"])


@router.get("/", response_model=AvailabilityRead)
async def check_availability(
    tutor_id: int,
    candidate_date: date,
    start_time: str,
    duration_minutes: int,
    exclude_class_id: int | None = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        conflicts = scheduling.tutor_availability(
            db, tutor_id, candidate_date, start_time, duration_minutes, exclude_class_id
        )
    except DomainException as exc:
        raise exc.to_http_exception()
    return AvailabilityRead(available=not conflicts, conflicts=[c.as_dict() for c in conflicts])
