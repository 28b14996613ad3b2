"""Time utilities: UTC defaults and wall-clock session arithmetic."""

import re
from datetime import UTC, date, datetime, time, timedelta, tzinfo as TzInfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from backend.app.core.exceptions import InvalidTimeFormat, ValidationError

_WALL_CLOCK_RE = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")


def utc_now() -> datetime:
    """Return a timezone-aware UTC datetime for defaults and onupdate hooks."""
    return datetime.now(UTC)


def parse_wall_clock(value: str) -> time:
    """Parse ``H:MM`` / ``HH:MM`` (24-hour) into a ``time``."""
    if not isinstance(value, str):
        raise InvalidTimeFormat(value)
    match = _WALL_CLOCK_RE.match(value.strip())
    if not match:
        raise InvalidTimeFormat(value)
    return time(int(match.group(1)), int(match.group(2)))


def combine(day: date | datetime, wall_clock: str, tzinfo: TzInfo | None = None) -> datetime:
    """Set the hour/minute of ``day`` to ``wall_clock``; seconds are zeroed.

    A datetime keeps its own tzinfo unless ``tzinfo`` is given.
    """
    clock = parse_wall_clock(wall_clock)
    if isinstance(day, datetime):
        tz = tzinfo if tzinfo is not None else day.tzinfo
        day = day.date()
    else:
        tz = tzinfo
    return datetime.combine(day, clock, tzinfo=tz)


def add_minutes(value: datetime, minutes: int) -> datetime:
    return value + timedelta(minutes=minutes)


def overlaps(start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime) -> bool:
    """Half-open interval overlap; back-to-back intervals do not overlap."""
    return start_a < end_b and start_b < end_a


def as_utc_naive(value: datetime | None) -> datetime | None:
    """Normalize to naive UTC for storage and comparison."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


def get_zone(tz_name: str) -> ZoneInfo:
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValidationError(f"Unknown time zone: {tz_name}", details={"time_zone": tz_name}) from exc


def localize(now: datetime, tz_name: str) -> datetime:
    """Express ``now`` in the class zone. Naive values are already class-local."""
    if now.tzinfo is None:
        return now
    return now.astimezone(get_zone(tz_name))


def start_of_day(value: datetime) -> datetime:
    return value.replace(hour=0, minute=0, second=0, microsecond=0)
