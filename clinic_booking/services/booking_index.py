"""Occupied time of one doctor on one day."""

from __future__ import annotations

from typing import Iterable, Mapping

from clinic_booking.services.appointment_states import occupies_slot
from clinic_booking.services.intervals import IntervalSet
from clinic_booking.services.scheduling_errors import SlotTaken
from clinic_booking.services.timeutil import format_hhmm, parse_hhmm


class BookingIndex:
    """Interval view of the non-terminal appointments of a (doctor, day)."""

    def __init__(self, occupied: Iterable[tuple[int, int]] = ()) -> None:
        self._busy = IntervalSet(occupied)

    @classmethod
    def from_appointments(
        cls,
        appointments: Iterable[Mapping[str, object]],
        *,
        exclude_id: str | None = None,
    ) -> "BookingIndex":
        spans = []
        for appt in appointments:
            if exclude_id and appt["id"] == exclude_id:
                continue
            if not occupies_slot(str(appt["state"])):
                continue
            start = parse_hhmm(str(appt["start_time"]))
            spans.append((start, start + int(appt["duration_minutes"])))
        return cls(spans)

    @property
    def busy(self) -> IntervalSet:
        return self._busy

    def conflicts(self, start: int, end: int) -> bool:
        return self._busy.overlaps(start, end)

    def insert(self, start: int, end: int) -> None:
        if self.conflicts(start, end):
            raise SlotTaken(
                f"{format_hhmm(start)}-{format_hhmm(end)} is already booked",
                start_time=format_hhmm(start),
            )
        self._busy = self._busy.union(IntervalSet([(start, end)]))
