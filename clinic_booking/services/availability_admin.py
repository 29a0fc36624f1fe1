"""Maintain doctors' weekly schedules and per-date exceptions."""

from __future__ import annotations

from datetime import date, timedelta
from typing import Any, Iterable, Mapping

from flask import current_app

from clinic_booking.services.audit import write_event
from clinic_booking.services.availability import (
    EXCEPTION_CLOSURE,
    EXCEPTION_KINDS,
    EXCEPTION_OVERRIDE,
    WorkingWindow,
    effective_windows,
    validate_day_windows,
    validate_slot_minutes,
)
from clinic_booking.services.doctors import require_doctor
from clinic_booking.services.intervals import IntervalSet
from clinic_booking.services.scheduling_errors import InvalidInput, NotFound, ScheduleLocked
from clinic_booking.services.scheduling_store import reading, writing
from clinic_booking.services.timeutil import clinic_now, format_hhmm, parse_day, parse_hhmm

MAX_CALENDAR_DAYS = 92
WEEKDAY_NAMES = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")


def _default_slot() -> int:
    return int(current_app.config.get("APPOINTMENT_SLOT_MINUTES", 30))


def _int_field(value: Any, label: str) -> int:
    if isinstance(value, bool):
        raise InvalidInput(f"{label} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise InvalidInput(f"{label} must be an integer") from exc


def parse_weekly_schedule(entries: Iterable[Mapping[str, Any]]) -> list[WorkingWindow]:
    """Turn ``[{"weekday", "start_time", "end_time", "slot_minutes"}]`` into windows."""

    windows = []
    for entry in entries:
        if not isinstance(entry, Mapping):
            raise InvalidInput("each schedule entry must be an object")
        slot = entry.get("slot_minutes")
        windows.append(
            WorkingWindow(
                _int_field(entry.get("weekday"), "weekday"),
                parse_hhmm(entry.get("start_time")),
                parse_hhmm(entry.get("end_time")),
                _default_slot() if slot in (None, "") else _int_field(slot, "slot_minutes"),
            )
        )
    validate_day_windows(windows)
    return sorted(windows, key=lambda w: (w.weekday, w.start))


def _day_signature(windows: Iterable[WorkingWindow], weekday: int) -> list[tuple[int, int, int]]:
    return sorted((w.start, w.end, w.slot_minutes) for w in windows if w.weekday == weekday)


def get_weekly_availability(doctor_id: str) -> list[dict[str, Any]]:
    with reading() as store:
        require_doctor(store, doctor_id)
        windows = store.get_weekly_availability(doctor_id)
    return [{**w.to_dict(), "weekday_name": WEEKDAY_NAMES[w.weekday]} for w in windows]


def replace_weekly_availability(
    doctor_id: str,
    entries: Iterable[Mapping[str, Any]],
    *,
    actor_id: str | None = None,
) -> list[dict[str, Any]]:
    """Replace the whole weekly schedule.

    Weekdays that still have upcoming bookings must keep their windows and
    slot length unchanged; otherwise :class:`ScheduleLocked` is raised.
    """

    windows = parse_weekly_schedule(entries)
    today = clinic_now().date()
    with writing() as store:
        require_doctor(store, doctor_id)
        current = store.get_weekly_availability(doctor_id)
        booked_days = store.future_active_weekdays(doctor_id, today)
        changed = {
            weekday
            for weekday in range(7)
            if _day_signature(current, weekday) != _day_signature(windows, weekday)
        }
        locked = sorted(changed & booked_days)
        if locked:
            names = ", ".join(WEEKDAY_NAMES[d] for d in locked)
            raise ScheduleLocked(
                f"{names} still has upcoming appointments; cancel or move them first",
                weekdays=locked,
            )
        store.replace_weekly_availability(doctor_id, windows)
        write_event(
            actor_id,
            "availability.replace",
            entity="doctor",
            entity_id=doctor_id,
            meta={"windows": len(windows), "weekdays_changed": sorted(changed)},
            conn=store.conn,
        )
    current_app.logger.info("Weekly schedule of %s replaced (%d windows)", doctor_id, len(windows))
    return [{**w.to_dict(), "weekday_name": WEEKDAY_NAMES[w.weekday]} for w in windows]


def _exception_rows(
    kind: str,
    ranges: Iterable[Mapping[str, Any]] | None,
    slot_minutes: Any,
    reason: str | None,
) -> list[dict[str, Any]]:
    if kind not in EXCEPTION_KINDS:
        raise InvalidInput(f"exception kind must be one of {', '.join(EXCEPTION_KINDS)}")
    spans = []
    for item in ranges or []:
        if not isinstance(item, Mapping):
            raise InvalidInput("each range must be an object with start_time and end_time")
        spans.append((parse_hhmm(item.get("start_time")), parse_hhmm(item.get("end_time"))))
    canonical = IntervalSet(spans)
    if len(canonical) != len(spans):
        raise InvalidInput("exception ranges must not overlap or touch")

    slot = None
    if slot_minutes not in (None, ""):
        if kind != EXCEPTION_OVERRIDE:
            raise InvalidInput("slot_minutes only applies to override exceptions")
        slot = validate_slot_minutes(_int_field(slot_minutes, "slot_minutes"))

    if kind == EXCEPTION_OVERRIDE:
        if not spans:
            raise InvalidInput("an override needs at least one working window")
        if slot:
            for start, end in canonical:
                if (end - start) % slot:
                    raise InvalidInput(
                        f"window {format_hhmm(start)}-{format_hhmm(end)} is not a multiple of {slot} minutes"
                    )

    reason = (reason or "").strip() or None
    if not spans:
        return [{"kind": kind, "start_time": None, "end_time": None, "slot_minutes": None, "reason": reason}]
    return [
        {
            "kind": kind,
            "start_time": format_hhmm(start),
            "end_time": format_hhmm(end),
            "slot_minutes": slot,
            "reason": reason,
        }
        for start, end in canonical
    ]


def set_exception(
    doctor_id: str,
    day: str | date,
    kind: str,
    ranges: Iterable[Mapping[str, Any]] | None = None,
    *,
    slot_minutes: Any = None,
    reason: str | None = None,
    actor_id: str | None = None,
) -> dict[str, Any]:
    """Set the single exception of ``day``, replacing whatever was there.

    A ``closure`` without ranges closes the whole day.
    """

    day = parse_day(day)
    rows = _exception_rows(kind, ranges, slot_minutes, reason)
    with writing() as store:
        require_doctor(store, doctor_id)
        store.replace_exception(doctor_id, day, rows)
        write_event(
            actor_id,
            "exception.set",
            entity="doctor",
            entity_id=doctor_id,
            meta={"day": day.isoformat(), "kind": kind, "ranges": len(rows), "reason": reason},
            conn=store.conn,
        )
        exceptions = store.get_exceptions(doctor_id, day)
    current_app.logger.info("Exception %s set for %s on %s", kind, doctor_id, day.isoformat())
    return _exception_payload(day, exceptions)


def delete_exception(doctor_id: str, day: str | date, *, actor_id: str | None = None) -> None:
    day = parse_day(day)
    with writing() as store:
        require_doctor(store, doctor_id)
        if not store.delete_exception(doctor_id, day):
            raise NotFound(f"no exception on {day.isoformat()}", day=day.isoformat())
        write_event(
            actor_id,
            "exception.delete",
            entity="doctor",
            entity_id=doctor_id,
            meta={"day": day.isoformat()},
            conn=store.conn,
        )


def _exception_payload(day: date, exceptions) -> dict[str, Any]:
    kinds = {ex.kind for ex in exceptions}
    kind = EXCEPTION_OVERRIDE if EXCEPTION_OVERRIDE in kinds else EXCEPTION_CLOSURE
    picked = [ex for ex in exceptions if ex.kind == kind]
    return {
        "day": day.isoformat(),
        "kind": kind,
        "whole_day": any(ex.whole_day for ex in picked),
        "ranges": [
            {"start_time": format_hhmm(ex.start), "end_time": format_hhmm(ex.end)}
            for ex in picked
            if not ex.whole_day
        ],
        "slot_minutes": next((ex.slot_minutes for ex in picked if ex.slot_minutes), None),
        "reason": next((ex.reason for ex in picked if ex.reason), None),
    }


def _date_range(start: str | date, end: str | date) -> tuple[date, date]:
    first, last = parse_day(start), parse_day(end)
    if last < first:
        raise InvalidInput("end must not be before start")
    if (last - first).days + 1 > MAX_CALENDAR_DAYS:
        raise InvalidInput(f"date range is limited to {MAX_CALENDAR_DAYS} days")
    return first, last


def list_exceptions(doctor_id: str, start: str | date, end: str | date) -> list[dict[str, Any]]:
    first, last = _date_range(start, end)
    with reading() as store:
        require_doctor(store, doctor_id)
        exceptions = store.get_exceptions_between(doctor_id, first, last)
    by_day: dict[date, list] = {}
    for ex in exceptions:
        by_day.setdefault(ex.day, []).append(ex)
    return [_exception_payload(day, rows) for day, rows in sorted(by_day.items())]


def unavailable_days(doctor_id: str, start: str | date, end: str | date) -> list[str]:
    """Dates in ``[start, end]`` on which the doctor has no working window."""

    first, last = _date_range(start, end)
    with reading() as store:
        require_doctor(store, doctor_id)
        weekly = store.get_weekly_availability(doctor_id)
        exceptions = store.get_exceptions_between(doctor_id, first, last)
    days = []
    current = first
    while current <= last:
        result = effective_windows(current, weekly, exceptions, default_slot_minutes=_default_slot())
        if result.windows.is_empty():
            days.append(current.isoformat())
        current += timedelta(days=1)
    return days
