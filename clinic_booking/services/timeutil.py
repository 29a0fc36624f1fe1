"""Minute-of-day arithmetic and clinic clock helpers."""

from __future__ import annotations

import re
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from flask import current_app

from clinic_booking.services.scheduling_errors import InvalidInput, InvalidTimeFormat

MINUTES_PER_DAY = 24 * 60

_HHMM = re.compile(r"^(\d{2}):(\d{2})$")
_ISO_DAY = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def parse_hhmm(value: str) -> int:
    """Return the minute-of-day for ``HH:MM`` (``24:00`` is the end of day)."""

    if not isinstance(value, str):
        raise InvalidTimeFormat(f"expected HH:MM, got {value!r}")
    match = _HHMM.match(value.strip())
    if not match:
        raise InvalidTimeFormat(f"expected HH:MM, got {value!r}")
    hours, minutes = int(match.group(1)), int(match.group(2))
    if minutes > 59 or hours > 24 or (hours == 24 and minutes):
        raise InvalidTimeFormat(f"time out of range: {value!r}")
    return hours * 60 + minutes


def format_hhmm(minute: int) -> str:
    if not 0 <= minute <= MINUTES_PER_DAY:
        raise InvalidTimeFormat(f"minute-of-day out of range: {minute}")
    return f"{minute // 60:02d}:{minute % 60:02d}"


def add_minutes(minute: int, delta: int) -> int:
    result = minute + delta
    if not 0 <= result <= MINUTES_PER_DAY:
        raise InvalidTimeFormat(f"{format_hhmm(minute)} + {delta} min leaves the day")
    return result


def floor_to_step(minute: int, step: int, anchor: int = 0) -> int:
    """Largest grid point ``anchor + k*step`` that is ``<= minute``."""

    if step <= 0:
        raise InvalidInput("step must be positive")
    return anchor + ((minute - anchor) // step) * step


def is_aligned(minute: int, step: int, anchor: int = 0) -> bool:
    return floor_to_step(minute, step, anchor) == minute


def minute_range(start: int, end: int, step: int) -> list[int]:
    """Grid points from ``start`` whose ``step``-long span ends by ``end``."""

    if step <= 0:
        raise InvalidInput("step must be positive")
    return list(range(start, end - step + 1, step))


def format_clock_label(minute: int) -> str:
    hour = (minute // 60) % 24
    display = hour % 12 or 12
    ampm = "PM" if hour >= 12 else "AM"
    return f"{display}:{minute % 60:02d} {ampm}"


def parse_day(value: str | date) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not _ISO_DAY.match(value.strip()):
        raise InvalidInput(f"expected YYYY-MM-DD, got {value!r}")
    try:
        return date.fromisoformat(value.strip())
    except ValueError as exc:
        raise InvalidInput(f"invalid date: {value!r}") from exc


def clinic_timezone(name: str | None = None) -> tzinfo:
    if name is None:
        name = current_app.config.get("CLINIC_TIMEZONE", "UTC")
    if (name or "UTC").upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise InvalidInput(f"unknown clinic timezone: {name!r}") from exc


def clinic_now() -> datetime:
    return datetime.now(clinic_timezone())


def as_clinic_time(moment: datetime, tz: tzinfo) -> datetime:
    """Naive datetimes are taken to be clinic wall-clock time."""

    if moment.tzinfo is None:
        return moment.replace(tzinfo=tz)
    return moment.astimezone(tz)


def slot_datetime(day: date, minute: int, tz: tzinfo) -> datetime:
    return datetime.combine(day, time(0), tzinfo=tz) + timedelta(minutes=minute)


def to_utc_iso(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).replace(microsecond=0).isoformat()
