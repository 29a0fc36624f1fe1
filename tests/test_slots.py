from datetime import date, datetime, timezone

import pytest

from clinic_booking.services.availability import ScheduleException, WorkingWindow, resolve
from clinic_booking.services.booking_index import BookingIndex
from clinic_booking.services.scheduling_errors import SlotTaken
from clinic_booking.services.slots import generate_slots
from clinic_booking.services.timeutil import format_hhmm

MONDAY = date(2030, 1, 7)
WEEKLY = [WorkingWindow(0, 540, 720, 30)]
EARLY = datetime(2030, 1, 7, 8, 0, tzinfo=timezone.utc)


def _starts(slots):
    return [format_hhmm(slot.start) for slot in slots]


def test_simple_day_is_tiled_with_free_slots():
    slots = generate_slots(resolve(MONDAY, WEEKLY, []), BookingIndex(), now=EARLY, tz=timezone.utc)
    assert _starts(slots) == ["09:00", "09:30", "10:00", "10:30", "11:00", "11:30"]
    assert all(slot.free for slot in slots)
    assert slots[0].to_dict()["label"] == "9:00 AM → 9:30 AM"


def test_closure_drops_slots_inside_it():
    availability = resolve(MONDAY, WEEKLY, [ScheduleException(MONDAY, "closure", 600, 660)])
    slots = generate_slots(availability, BookingIndex(), now=EARLY, tz=timezone.utc)
    assert _starts(slots) == ["09:00", "09:30", "11:00", "11:30"]


def test_closure_edge_does_not_shift_the_grid():
    availability = resolve(MONDAY, WEEKLY, [ScheduleException(MONDAY, "closure", 540, 555)])
    slots = generate_slots(availability, BookingIndex(), now=EARLY, tz=timezone.utc)
    assert _starts(slots) == ["09:30", "10:00", "10:30", "11:00", "11:30"]


def test_override_grid():
    availability = resolve(MONDAY, WEEKLY, [ScheduleException(MONDAY, "override", 840, 900, 15)])
    slots = generate_slots(availability, BookingIndex(), now=EARLY, tz=timezone.utc)
    assert _starts(slots) == ["14:00", "14:15", "14:30", "14:45"]


def test_past_and_taken_slots_are_flagged():
    index = BookingIndex([(630, 660)])
    now = datetime(2030, 1, 7, 9, 40, tzinfo=timezone.utc)
    slots = {format_hhmm(s.start): s for s in generate_slots(resolve(MONDAY, WEEKLY, []), index, now=now, tz=timezone.utc)}
    assert (slots["09:00"].free, slots["09:00"].reason) == (False, "past")
    assert (slots["09:30"].free, slots["09:30"].reason) == (False, "past")
    assert slots["10:00"].free
    assert (slots["10:30"].free, slots["10:30"].reason) == (False, "taken")


def test_booking_index_ignores_terminal_and_excluded_rows():
    rows = [
        {"id": "a", "state": "scheduled", "start_time": "09:00", "duration_minutes": 30},
        {"id": "b", "state": "cancelled", "start_time": "09:30", "duration_minutes": 30},
        {"id": "c", "state": "no_show", "start_time": "10:00", "duration_minutes": 30},
        {"id": "d", "state": "pending_payment", "start_time": "10:30", "duration_minutes": 30},
    ]
    index = BookingIndex.from_appointments(rows)
    assert index.busy.intervals == [(540, 570), (630, 660)]
    assert BookingIndex.from_appointments(rows, exclude_id="a").busy.intervals == [(630, 660)]


def test_booking_index_insert_rejects_conflicts():
    index = BookingIndex([(570, 600)])
    index.insert(600, 630)
    assert index.busy.intervals == [(570, 630)]
    with pytest.raises(SlotTaken):
        index.insert(585, 615)
