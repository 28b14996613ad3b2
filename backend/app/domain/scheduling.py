"""Immutable value structs for the scheduling and billing core.

These are plain domain objects with no persistence behaviour; the ORM models
in ``backend.app.models`` are converted into them by the ``crud`` layer.
"""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from backend.app.core.exceptions import ValidationError
from backend.app.core.time import parse_wall_clock

# Index matches date.weekday()
WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")

ONE_TIME = "one-time"
WEEKLY_RECURRING = "weekly-recurring"
SCHEDULE_TYPES = (ONE_TIME, WEEKLY_RECURRING)

CLASS_STATUSES = ("scheduled", "completed")
OCCURRENCE_STATUSES = ("scheduled", "completed", "cancelled")

STANDARD_DURATIONS = (30, 35, 45, 60, 90, 120)
CUSTOM_DURATION_MIN = 30
CUSTOM_DURATION_MAX = 180
JOIN_WINDOW_MIN = 5
JOIN_WINDOW_MAX = 30
MAX_CAPACITY_LIMIT = 50
CURRENCIES = ("USD", "EUR", "INR", "GBP", "CAD", "AUD")

REQUIRED_FIELDS = (
    "start_time",
    "duration_minutes",
    "schedule_type",
    "recurring_days",
    "join_window_minutes",
    "student_ids",
    "max_capacity",
    "amount",
    "currency",
    "subject",
    "time_zone",
)


def weekday_name(day: date) -> str:
    return WEEKDAYS[day.weekday()]


def normalize_days(days) -> frozenset:
    """Lowercase and validate weekday names."""
    normalized = set()
    for day in days or ():
        name = str(day).strip().lower()
        if name not in WEEKDAYS:
            raise ValidationError(f"Unknown weekday: {day}", details={"day": str(day)})
        normalized.add(name)
    return frozenset(normalized)


@dataclass(frozen=True)
class ClassSchedule:
    """Schedule template of a class: one-time or weekly-recurring."""

    tutor_id: int
    start_time: str
    duration_minutes: int
    schedule_type: str
    class_id: Optional[int] = None
    class_date: Optional[date] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    recurring_days: frozenset = frozenset()
    custom_duration_minutes: Optional[int] = None
    join_window_minutes: int = 15
    status: str = "scheduled"
    student_ids: frozenset = frozenset()
    max_capacity: int = 10
    amount: Decimal = Decimal("0.00")
    currency: str = "USD"
    subject: str = ""
    time_zone: str = "UTC"

    @property
    def effective_duration(self) -> int:
        return self.custom_duration_minutes or self.duration_minutes

    @property
    def is_recurring(self) -> bool:
        return self.schedule_type == WEEKLY_RECURRING

    def covers(self, day: date) -> bool:
        """True if ``day`` is one of this schedule's pattern dates."""
        if not self.is_recurring:
            return self.class_date == day
        if self.start_date is None or self.end_date is None:
            return False
        if not (self.start_date <= day <= self.end_date):
            return False
        return weekday_name(day) in self.recurring_days


def validate_schedule(schedule: ClassSchedule) -> None:
    """Reject schedules that break the class-definition invariants."""
    for name in REQUIRED_FIELDS:
        if getattr(schedule, name) is None:
            raise ValidationError(f"{name} is required")
    parse_wall_clock(schedule.start_time)

    if schedule.schedule_type not in SCHEDULE_TYPES:
        raise ValidationError(f"Unsupported schedule type: {schedule.schedule_type}")

    if schedule.custom_duration_minutes is not None:
        if not CUSTOM_DURATION_MIN <= schedule.custom_duration_minutes <= CUSTOM_DURATION_MAX:
            raise ValidationError(
                f"Custom duration must be between {CUSTOM_DURATION_MIN} and {CUSTOM_DURATION_MAX} minutes"
            )
    elif schedule.duration_minutes not in STANDARD_DURATIONS:
        raise ValidationError(
            "Unsupported duration. Allowed durations are "
            + ", ".join(str(d) for d in STANDARD_DURATIONS)
            + " minutes, or a custom duration."
        )

    if not JOIN_WINDOW_MIN <= schedule.join_window_minutes <= JOIN_WINDOW_MAX:
        raise ValidationError(f"Join window must be between {JOIN_WINDOW_MIN} and {JOIN_WINDOW_MAX} minutes")

    if schedule.is_recurring:
        if schedule.class_date is not None:
            raise ValidationError("Recurring classes must not set class_date")
        if schedule.start_date is None or schedule.end_date is None:
            raise ValidationError("Recurring classes require start_date and end_date")
        if schedule.end_date < schedule.start_date:
            raise ValidationError("end_date must not be before start_date")
        for day in schedule.recurring_days:
            if day not in WEEKDAYS:
                raise ValidationError(f"Unknown weekday: {day}")
    else:
        if schedule.class_date is None:
            raise ValidationError("One-time classes require class_date")
        if schedule.start_date is not None or schedule.end_date is not None or schedule.recurring_days:
            raise ValidationError("One-time classes must not set start_date, end_date or recurring_days")

    if schedule.amount < 0:
        raise ValidationError("Amount must be a non-negative number")
    if schedule.currency not in CURRENCIES:
        raise ValidationError(f"Invalid currency. Must be one of: {', '.join(CURRENCIES)}")
    if not 1 <= schedule.max_capacity <= MAX_CAPACITY_LIMIT:
        raise ValidationError(f"Capacity must be between 1 and {MAX_CAPACITY_LIMIT}")
    if len(schedule.student_ids) > schedule.max_capacity:
        raise ValidationError("Enrolled students exceed class capacity")


@dataclass(frozen=True)
class Occurrence:
    """One concrete dated instance of a class."""

    class_id: Optional[int]
    occurrence_date: date
    start: datetime
    end: datetime
    status: str = "scheduled"


@dataclass(frozen=True)
class OccurrenceRecord:
    """Persisted per-date state of an occurrence."""

    class_id: int
    occurrence_date: date
    status: str = "scheduled"
    attendee_ids: frozenset = frozenset()


@dataclass(frozen=True)
class Conflict:
    """An existing occurrence that overlaps a candidate slot."""

    class_id: Optional[int]
    occurrence_date: date
    start_time: str
    end_time: str
    kind: str = "tutor"
    participant_id: Optional[int] = None

    def as_dict(self) -> dict:
        return {
            "class_id": self.class_id,
            "occurrence_date": self.occurrence_date.isoformat(),
            "start_time": self.start_time,
            "end_time": self.end_time,
            "kind": self.kind,
            "participant_id": self.participant_id,
        }


@dataclass(frozen=True)
class JoinDecision:
    can_join: bool
    reason: str
    reason_code: str
    session_start: Optional[datetime] = None
    session_end: Optional[datetime] = None
    minutes_until_open: Optional[int] = None


@dataclass(frozen=True)
class LedgerFilter:
    """Selection criteria for ledger queries and reports."""

    statuses: tuple = ()
    subjects: tuple = ()
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    tutor_id: Optional[int] = None
    student_id: Optional[int] = None
    parent_id: Optional[int] = None
    class_id: Optional[int] = None
    currency: Optional[str] = None
