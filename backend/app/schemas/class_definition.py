"""Class, occurrence, attendance and join schemas."""

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from backend.app.core.exceptions import InvalidTimeFormat
from backend.app.core.time import parse_wall_clock
from backend.app.domain.scheduling import WEEKDAYS

ScheduleType = Literal["one-time", "weekly-recurring"]
Currency = Literal["USD", "EUR", "INR", "GBP", "CAD", "AUD"]
ClassPaymentStatus = Literal["unpaid", "democlass"]


def _check_wall_clock(v):
    if v is None:
        return v
    try:
        parse_wall_clock(v)
    except InvalidTimeFormat as exc:
        raise ValueError(exc.message) from exc
    return v.strip()


def _check_weekdays(v):
    if v is None:
        return v
    days = []
    for day in v:
        name = str(day).strip().lower()
        if name not in WEEKDAYS:
            raise ValueError(f"Unknown weekday: {day}")
        if name not in days:
            days.append(name)
    return days


class ClassBase(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    subject: str = Field(min_length=1, max_length=100)
    tutor_id: int
    student_ids: List[int] = Field(default_factory=list)
    max_capacity: int = Field(default=10, ge=1, le=50)
    start_time: str
    duration_minutes: int = 35
    custom_duration_minutes: Optional[int] = None
    schedule_type: ScheduleType = "one-time"
    class_date: Optional[date] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    recurring_days: List[str] = Field(default_factory=list)
    time_zone: str = "UTC"
    join_window_minutes: int = Field(default=15, ge=5, le=30)
    payment_status: ClassPaymentStatus = "unpaid"
    amount: Decimal = Field(default=Decimal("0.00"), ge=0)
    currency: Currency = "USD"
    notes: Optional[str] = None

    @field_validator("start_time")
    @classmethod
    def validate_start_time(cls, v):
        return _check_wall_clock(v)

    @field_validator("recurring_days")
    @classmethod
    def validate_recurring_days(cls, v):
        return _check_weekdays(v)


class ClassCreate(ClassBase):
    pass


class ClassUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    subject: Optional[str] = Field(default=None, min_length=1, max_length=100)
    student_ids: Optional[List[int]] = None
    max_capacity: Optional[int] = Field(default=None, ge=1, le=50)
    start_time: Optional[str] = None
    duration_minutes: Optional[int] = None
    custom_duration_minutes: Optional[int] = None
    schedule_type: Optional[ScheduleType] = None
    class_date: Optional[date] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    recurring_days: Optional[List[str]] = None
    time_zone: Optional[str] = None
    join_window_minutes: Optional[int] = Field(default=None, ge=5, le=30)
    payment_status: Optional[ClassPaymentStatus] = None
    amount: Optional[Decimal] = Field(default=None, ge=0)
    currency: Optional[Currency] = None
    status: Optional[Literal["scheduled", "completed"]] = None
    notes: Optional[str] = None

    # Omit a field to keep it; only the nullable columns accept an explicit null.
    @field_validator(
        "title",
        "subject",
        "student_ids",
        "max_capacity",
        "start_time",
        "duration_minutes",
        "schedule_type",
        "recurring_days",
        "time_zone",
        "join_window_minutes",
        "payment_status",
        "amount",
        "currency",
        "status",
    )
    @classmethod
    def reject_null(cls, v, info):
        if v is None:
            raise ValueError(f"{info.field_name} cannot be null")
        return v

    @field_validator("start_time")
    @classmethod
    def validate_start_time(cls, v):
        return _check_wall_clock(v)

    @field_validator("recurring_days")
    @classmethod
    def validate_recurring_days(cls, v):
        return _check_weekdays(v)


class ClassRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    description: Optional[str] = None
    subject: str
    tutor_id: int
    student_ids: List[int]
    max_capacity: int
    start_time: str
    duration_minutes: int
    custom_duration_minutes: Optional[int] = None
    effective_duration: int
    schedule_type: str
    class_date: Optional[date] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    recurring_days: List[str]
    time_zone: str
    join_window_minutes: int
    status: str
    payment_status: str
    amount: Decimal
    currency: str
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class ScheduledClassRead(BaseModel):
    class_definition: ClassRead
    occurrence_dates: List[date]
    ledger_entry_count: int


class OccurrenceRead(BaseModel):
    class_id: Optional[int]
    occurrence_date: date
    start: datetime
    end: datetime
    status: str

    model_config = ConfigDict(from_attributes=True)


class OccurrenceStatusUpdate(BaseModel):
    status: Literal["scheduled", "completed", "cancelled"]


class AttendanceCreate(BaseModel):
    student_id: int
    attended: bool = True


class AttendanceRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    occurrence_id: int
    student_id: int
    attended: bool
    joined_at: Optional[datetime] = None

    @field_validator("joined_at", mode="before")
    @classmethod
    def ensure_timezone(cls, v):
        if isinstance(v, datetime) and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v


class JoinDecisionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    can_join: bool
    reason: str
    reason_code: str
    session_start: Optional[datetime] = None
    session_end: Optional[datetime] = None
    minutes_until_open: Optional[int] = None


class AvailabilityRead(BaseModel):
    available: bool
    conflicts: List[dict] = Field(default_factory=list)
