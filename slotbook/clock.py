"""
Civil-time calendar helpers.

All business rules ("is it today", "which weekday", "N hours before the
slot") are evaluated in a fixed UTC+05:30 civil timezone, independent of
the host's locale. Instants are always timezone-aware UTC datetimes; this
module is the only place that converts between the two.
"""

import re
from datetime import date, datetime, time, timedelta, timezone
from typing import Callable, Optional

CIVIL_TZ = timezone(timedelta(hours=5, minutes=30), "IST")

DAY_NAMES = ["MONDAY", "TUESDAY", "WEDNESDAY", "THURSDAY", "FRIDAY", "SATURDAY", "SUNDAY"]

_DATE_PATTERN = re.compile(r"^(\d{4})-(0[1-9]|1[0-2])-(0[1-9]|[12]\d|3[01])$")

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Current instant as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(instant: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if instant.tzinfo is None:
        return instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(timezone.utc)


def to_civil(instant: datetime) -> datetime:
    """Express an instant in the civil timezone."""
    return ensure_utc(instant).astimezone(CIVIL_TZ)


def civil_date(instant: datetime) -> date:
    """Calendar date of an instant as observed in the civil timezone."""
    return to_civil(instant).date()


def civil_weekday(instant: datetime) -> int:
    """Civil weekday index, Monday=0 .. Sunday=6."""
    return to_civil(instant).weekday()


def civil_time(instant: datetime) -> time:
    """Civil time of day, without tzinfo."""
    return to_civil(instant).time().replace(tzinfo=None)


def parse_civil_date(value: str) -> Optional[date]:
    """Parse a strict ``YYYY-MM-DD`` string; None when malformed or impossible."""
    if not isinstance(value, str):
        return None
    match = _DATE_PATTERN.match(value.strip())
    if not match:
        return None
    year, month, day = (int(part) for part in match.groups())
    try:
        return date(year, month, day)
    except ValueError:
        return None


def civil_midnight(day: date) -> datetime:
    """UTC instant at which the given civil calendar day starts."""
    return datetime.combine(day, time(0, 0), tzinfo=CIVIL_TZ).astimezone(timezone.utc)


def civil_day_range(value: str) -> Optional[tuple[datetime, datetime]]:
    """Half-open UTC range ``[start, start + 24h)`` for a civil date string."""
    day = parse_civil_date(value)
    if day is None:
        return None
    start = civil_midnight(day)
    return start, start + timedelta(days=1)


def civil_instant(day: date, hour: int, minute: int = 0) -> datetime:
    """UTC instant of a civil wall-clock time on a civil day."""
    return datetime.combine(day, time(hour, minute), tzinfo=CIVIL_TZ).astimezone(timezone.utc)


def next_occurrence(reference: datetime, weekday: int, hour: int, minute: int = 0) -> datetime:
    """Next civil occurrence of ``weekday`` at ``hour:minute`` after ``reference``.

    A same-day time that has already been reached rolls to next week.
    """
    local = to_civil(reference)
    days_ahead = (weekday - local.weekday()) % 7
    now_minutes = local.hour * 60 + local.minute
    if days_ahead == 0 and now_minutes >= hour * 60 + minute:
        days_ahead = 7
    return civil_instant(local.date() + timedelta(days=days_ahead), hour, minute)


def parse_instant(value: str) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp (``Z`` suffix allowed) into aware UTC."""
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    return ensure_utc(parsed)


def hours_until(target: datetime, now: datetime) -> float:
    """Signed hours from ``now`` to ``target``."""
    return (ensure_utc(target) - ensure_utc(now)).total_seconds() / 3600
