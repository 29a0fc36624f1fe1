"""Resolve a doctor's effective working windows for a calendar day.

The weekly schedule gives the default windows for each weekday (0 = Monday).
Exceptions adjust a single date: an ``override`` replaces the weekly windows
outright, a ``closure`` cuts time out of them. When a date carries both kinds
the override wins and the closure rows are ignored.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Iterable, Sequence

from clinic_booking.services.intervals import IntervalSet
from clinic_booking.services.scheduling_errors import InvalidInput, NoAvailability
from clinic_booking.services.timeutil import MINUTES_PER_DAY, format_hhmm

log = logging.getLogger(__name__)

MIN_SLOT_MINUTES = 5
DEFAULT_SLOT_MINUTES = 30

EXCEPTION_CLOSURE = "closure"
EXCEPTION_OVERRIDE = "override"
EXCEPTION_KINDS = (EXCEPTION_CLOSURE, EXCEPTION_OVERRIDE)


@dataclass(frozen=True)
class WorkingWindow:
    weekday: int
    start: int
    end: int
    slot_minutes: int

    def to_dict(self) -> dict[str, object]:
        return {
            "weekday": self.weekday,
            "start_time": format_hhmm(self.start),
            "end_time": format_hhmm(self.end),
            "slot_minutes": self.slot_minutes,
        }


@dataclass(frozen=True)
class ScheduleException:
    """One stored exception row; ``start``/``end`` absent means the whole day."""

    day: date
    kind: str
    start: int | None = None
    end: int | None = None
    slot_minutes: int | None = None
    reason: str | None = None

    @property
    def whole_day(self) -> bool:
        return self.start is None or self.end is None

    def to_dict(self) -> dict[str, object]:
        return {
            "day": self.day.isoformat(),
            "kind": self.kind,
            "start_time": None if self.start is None else format_hhmm(self.start),
            "end_time": None if self.end is None else format_hhmm(self.end),
            "slot_minutes": self.slot_minutes,
            "reason": self.reason,
        }


@dataclass(frozen=True)
class EffectiveAvailability:
    """Bookable windows of one day.

    ``anchor`` is the grid origin: the start of the earliest window before
    closures are cut out, so a closure never shifts the slot grid.
    """

    day: date
    windows: IntervalSet
    slot_minutes: int
    source: str
    anchor: int | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "day": self.day.isoformat(),
            "slot_minutes": self.slot_minutes,
            "source": self.source,
            "anchor": None if self.anchor is None else format_hhmm(self.anchor),
            "windows": [
                {"start_time": format_hhmm(s), "end_time": format_hhmm(e)} for s, e in self.windows
            ],
        }


def validate_slot_minutes(slot_minutes: int) -> int:
    if isinstance(slot_minutes, bool) or not isinstance(slot_minutes, int):
        raise InvalidInput("slot_minutes must be an integer")
    if slot_minutes < MIN_SLOT_MINUTES:
        raise InvalidInput(f"slot_minutes must be at least {MIN_SLOT_MINUTES}")
    return slot_minutes


def validate_day_windows(windows: Sequence[WorkingWindow]) -> None:
    """Check the per-weekday invariants of a weekly schedule."""

    by_day: dict[int, list[WorkingWindow]] = {}
    for window in windows:
        if not 0 <= window.weekday <= 6:
            raise InvalidInput(f"weekday must be 0..6, got {window.weekday}")
        validate_slot_minutes(window.slot_minutes)
        if not 0 <= window.start < window.end <= MINUTES_PER_DAY:
            raise InvalidInput(
                f"window {format_hhmm(window.start)}-{format_hhmm(window.end)} must start before it ends"
            )
        if (window.end - window.start) % window.slot_minutes:
            raise InvalidInput(
                f"window {format_hhmm(window.start)}-{format_hhmm(window.end)} "
                f"is not a multiple of {window.slot_minutes} minutes"
            )
        by_day.setdefault(window.weekday, []).append(window)

    for weekday, day_windows in by_day.items():
        if len({w.slot_minutes for w in day_windows}) > 1:
            raise InvalidInput(f"weekday {weekday} mixes slot durations")
        ordered = sorted(day_windows, key=lambda w: w.start)
        for prev, nxt in zip(ordered, ordered[1:]):
            if nxt.start < prev.end:
                raise InvalidInput(f"weekday {weekday} has overlapping windows")


def _weekday_policy(
    weekly: Iterable[WorkingWindow], weekday: int
) -> tuple[list[WorkingWindow], int | None]:
    day_windows = sorted((w for w in weekly if w.weekday == weekday), key=lambda w: w.start)
    slot = day_windows[0].slot_minutes if day_windows else None
    return day_windows, slot


def effective_windows(
    day: date,
    weekly: Sequence[WorkingWindow],
    exceptions: Sequence[ScheduleException],
    *,
    default_slot_minutes: int = DEFAULT_SLOT_MINUTES,
) -> EffectiveAvailability:
    """Apply the exceptions for ``day`` to the weekly schedule; may be empty."""

    day_windows, weekday_slot = _weekday_policy(weekly, day.weekday())
    todays = [ex for ex in exceptions if ex.day == day]
    overrides = [ex for ex in todays if ex.kind == EXCEPTION_OVERRIDE]
    closures = [ex for ex in todays if ex.kind == EXCEPTION_CLOSURE]

    if overrides:
        if closures:
            log.warning(
                "Both override and closure exceptions on %s; closure ignored", day.isoformat()
            )
        ranges = [(ex.start, ex.end) for ex in overrides if not ex.whole_day]
        explicit_slot = next((ex.slot_minutes for ex in overrides if ex.slot_minutes), None)
        slot = explicit_slot or weekday_slot or default_slot_minutes
        windows = IntervalSet(ranges)
        return EffectiveAvailability(
            day, windows, slot, EXCEPTION_OVERRIDE, anchor=windows.earliest()
        )

    windows = IntervalSet((w.start, w.end) for w in day_windows)
    anchor = windows.earliest()
    slot = weekday_slot or default_slot_minutes
    if not closures:
        return EffectiveAvailability(day, windows, slot, "weekly", anchor=anchor)

    if any(ex.whole_day for ex in closures):
        return EffectiveAvailability(day, IntervalSet(), slot, EXCEPTION_CLOSURE, anchor=anchor)
    cut = IntervalSet((ex.start, ex.end) for ex in closures)
    return EffectiveAvailability(
        day, windows.difference(cut), slot, EXCEPTION_CLOSURE, anchor=anchor
    )


def resolve(
    day: date,
    weekly: Sequence[WorkingWindow],
    exceptions: Sequence[ScheduleException],
    *,
    default_slot_minutes: int = DEFAULT_SLOT_MINUTES,
) -> EffectiveAvailability:
    """Like :func:`effective_windows` but raise when nothing is bookable."""

    result = effective_windows(
        day, weekly, exceptions, default_slot_minutes=default_slot_minutes
    )
    if result.windows.is_empty():
        raise NoAvailability(f"no working hours on {day.isoformat()}", day=day.isoformat())
    return result
