"""Tile effective working windows into bookable slots."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, tzinfo

from clinic_booking.services.availability import EffectiveAvailability
from clinic_booking.services.booking_index import BookingIndex
from clinic_booking.services.timeutil import (
    as_clinic_time,
    format_clock_label,
    format_hhmm,
    minute_range,
    slot_datetime,
)

REASON_PAST = "past"
REASON_TAKEN = "taken"


@dataclass(frozen=True)
class CandidateSlot:
    start: int
    end: int
    free: bool
    reason: str | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "start_time": format_hhmm(self.start),
            "end_time": format_hhmm(self.end),
            "label": f"{format_clock_label(self.start)} → {format_clock_label(self.end)}",
            "free": self.free,
            "reason": self.reason,
        }


def grid_starts(availability: EffectiveAvailability) -> list[int]:
    """Grid positions whose whole slot lies inside one effective window."""

    if availability.windows.is_empty() or availability.anchor is None:
        return []
    step = availability.slot_minutes
    last_end = availability.windows.intervals[-1][1]
    return [
        start
        for start in minute_range(availability.anchor, last_end, step)
        if availability.windows.contains(start, start + step)
    ]


def generate_slots(
    availability: EffectiveAvailability,
    index: BookingIndex,
    *,
    now: datetime,
    tz: tzinfo,
) -> list[CandidateSlot]:
    now = as_clinic_time(now, tz)
    step = availability.slot_minutes
    slots: list[CandidateSlot] = []
    for start in grid_starts(availability):
        end = start + step
        if slot_datetime(availability.day, start, tz) <= now:
            slots.append(CandidateSlot(start, end, False, REASON_PAST))
        elif index.conflicts(start, end):
            slots.append(CandidateSlot(start, end, False, REASON_TAKEN))
        else:
            slots.append(CandidateSlot(start, end, True))
    return slots
