import threading
from datetime import date, datetime, timedelta, timezone

import pytest

from conftest import DOCTOR, MONDAY, insert_patient
from clinic_booking.services import appointments, scheduling_store
from clinic_booking.services.availability_admin import set_exception
from clinic_booking.services.database import db
from clinic_booking.services.scheduling_errors import (
    DoctorNotFound,
    InvalidInput,
    NoAvailability,
    OutsideWorkingHours,
    PatientNotFound,
    SlotInPast,
    SlotMisaligned,
    SlotTaken,
)

EARLY = datetime(2030, 1, 7, 8, 0, tzinfo=timezone.utc)


def _starts(slots, free_only=False):
    return [slot.to_dict()["start_time"] for slot in slots if slot.free or not free_only]


def test_scenario_a_simple_booking(app, monday_clinic, patient):
    with app.app_context():
        slots = appointments.list_available_slots(DOCTOR, MONDAY, now=EARLY)
        assert _starts(slots) == ["09:00", "09:30", "10:00", "10:30", "11:00", "11:30"]
        assert all(slot.free for slot in slots)

        booked = appointments.propose(DOCTOR, patient, MONDAY, "09:30", 30, "in_person", now=EARLY)
    assert booked["state"] == "scheduled"
    assert booked["start_time"] == "09:30"
    assert booked["end_time"] == "10:00"
    assert booked["starts_at_utc"] == "2030-01-07T09:30:00+00:00"
    assert booked["invoice"]["payment_status"] == "pending"
    assert booked["invoice"]["number"] == "APPT-INV-203001-00001"
    assert booked["invoice"]["amount_cents"] == 50000


def test_scenario_b_conflict_and_misalignment(app, monday_clinic, patient):
    other = insert_patient("Second Patient", "P000002")
    with app.app_context():
        appointments.propose(DOCTOR, patient, MONDAY, "09:30", 30, now=EARLY)
        with pytest.raises(SlotTaken):
            appointments.propose(DOCTOR, other, MONDAY, "09:30", 30, now=EARLY)
        with pytest.raises(SlotMisaligned):
            appointments.propose(DOCTOR, other, MONDAY, "09:45", 30, now=EARLY)
        slots = appointments.list_available_slots(DOCTOR, MONDAY, now=EARLY)
    taken = [s.to_dict() for s in slots if not s.free]
    assert [(s["start_time"], s["reason"]) for s in taken] == [("09:30", "taken")]


def test_scenario_c_closure(app, monday_clinic, patient):
    with app.app_context():
        set_exception(DOCTOR, MONDAY, "closure", [{"start_time": "10:00", "end_time": "11:00"}])
        slots = appointments.list_available_slots(DOCTOR, MONDAY, now=EARLY)
        assert _starts(slots) == ["09:00", "09:30", "11:00", "11:30"]
        with pytest.raises(OutsideWorkingHours):
            appointments.propose(DOCTOR, patient, MONDAY, "10:00", 30, now=EARLY)


def test_scenario_d_override(app, monday_clinic, patient):
    next_monday = MONDAY + timedelta(days=7)
    with app.app_context():
        set_exception(
            DOCTOR,
            next_monday,
            "override",
            [{"start_time": "14:00", "end_time": "15:00"}],
            slot_minutes=15,
        )
        slots = appointments.list_available_slots(DOCTOR, next_monday, now=EARLY)
        assert _starts(slots) == ["14:00", "14:15", "14:30", "14:45"]
        with pytest.raises(OutsideWorkingHours):
            appointments.propose(DOCTOR, patient, next_monday, "09:00", 30, now=EARLY)
        with pytest.raises(OutsideWorkingHours):
            appointments.propose(DOCTOR, patient, next_monday, "09:00", 15, now=EARLY)
        booked = appointments.propose(DOCTOR, patient, next_monday, "14:15", now=EARLY)
    assert booked["duration_minutes"] == 15


def test_scenario_e_past_slot(app, monday_clinic, patient):
    now = datetime(2030, 1, 7, 9, 40, tzinfo=timezone.utc)
    with app.app_context():
        slots = appointments.list_available_slots(DOCTOR, MONDAY, now=now)
        first = slots[0].to_dict()
        assert (first["start_time"], first["free"], first["reason"]) == ("09:00", False, "past")
        with pytest.raises(SlotInPast):
            appointments.propose(DOCTOR, patient, MONDAY, "09:00", 30, now=now)


def test_scenario_f_race(app, monday_clinic, patient):
    other = insert_patient("Racer", "P000002")
    barrier = threading.Barrier(2)
    results: list[object] = []

    def book(pid):
        with app.app_context():
            barrier.wait()
            try:
                results.append(appointments.propose(DOCTOR, pid, MONDAY, "11:00", 30, now=EARLY))
            except SlotTaken as exc:
                results.append(exc)

    threads = [threading.Thread(target=book, args=(pid,)) for pid in (patient, other)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)

    accepted = [r for r in results if isinstance(r, dict)]
    rejected = [r for r in results if isinstance(r, SlotTaken)]
    assert len(accepted) == 1
    assert len(rejected) == 1

    conn = db()
    try:
        rows = conn.execute(
            "SELECT start_time FROM appointments WHERE doctor_id=? AND day=? AND state NOT IN ('cancelled','no_show','completed')",
            (DOCTOR, MONDAY.isoformat()),
        ).fetchall()
    finally:
        conn.close()
    assert [row["start_time"] for row in rows] == ["11:00"]


def test_storage_rejects_a_second_live_booking_for_the_same_slot(app, monday_clinic, patient):
    """The partial unique index backs the in-process admission lock."""
    import sqlite3

    with app.app_context():
        appointments.propose(DOCTOR, patient, MONDAY, "10:00", 30, now=EARLY)
    conn = db()
    try:
        with pytest.raises(sqlite3.IntegrityError):
            conn.execute(
                """
                INSERT INTO appointments(id, doctor_id, patient_id, day, start_time, duration_minutes, starts_at_utc, kind, state)
                VALUES ('dup', ?, ?, ?, '10:00', 30, '2030-01-07T10:00:00+00:00', 'in_person', 'scheduled')
                """,
                (DOCTOR, patient, MONDAY.isoformat()),
            )
    finally:
        conn.rollback()
        conn.close()


def test_reference_and_input_errors(app, monday_clinic, patient):
    with app.app_context():
        with pytest.raises(DoctorNotFound):
            appointments.propose("dr-nobody", patient, MONDAY, "09:00", 30, now=EARLY)
        with pytest.raises(PatientNotFound):
            appointments.propose(DOCTOR, "missing", MONDAY, "09:00", 30, now=EARLY)
        with pytest.raises(InvalidInput):
            appointments.propose(DOCTOR, patient, "2030-13-01", "09:00", 30, now=EARLY)
        with pytest.raises(InvalidInput):
            appointments.propose(DOCTOR, patient, MONDAY, "9am", 30, now=EARLY)
        with pytest.raises(InvalidInput):
            appointments.propose(DOCTOR, patient, MONDAY, "09:00", 45, now=EARLY)
        with pytest.raises(InvalidInput):
            appointments.propose(DOCTOR, patient, MONDAY, "09:00", 30, "house_call", now=EARLY)
        with pytest.raises(NoAvailability):
            appointments.propose(DOCTOR, patient, date(2030, 1, 8), "09:00", 30, now=EARLY)
        with pytest.raises(NoAvailability):
            appointments.list_available_slots(DOCTOR, date(2030, 1, 8), now=EARLY)


def test_booking_lead_time(app, monday_clinic, patient):
    app.config["BOOKING_LEAD_MINUTES"] = 120
    with app.app_context():
        with pytest.raises(SlotInPast):
            appointments.propose(DOCTOR, patient, MONDAY, "09:30", 30, now=EARLY)
        booked = appointments.propose(DOCTOR, patient, MONDAY, "10:30", 30, now=EARLY)
    assert booked["start_time"] == "10:30"


def test_cancelled_slot_can_be_booked_again(app, monday_clinic, patient):
    with app.app_context():
        first = appointments.propose(DOCTOR, patient, MONDAY, "09:00", 30, now=EARLY)
        appointments.cancel(first["id"], "patient called", now=EARLY)
        slots = appointments.list_available_slots(DOCTOR, MONDAY, now=EARLY)
        assert slots[0].free
        second = appointments.propose(DOCTOR, patient, MONDAY, "09:00", 30, now=EARLY)
    assert second["id"] != first["id"]
    assert second["invoice"]["number"] == "APPT-INV-203001-00002"


def test_slot_listing_is_repeatable(app, monday_clinic, patient):
    with app.app_context():
        appointments.propose(DOCTOR, patient, MONDAY, "10:00", 30, now=EARLY)
        first = appointments.list_available_slots(DOCTOR, MONDAY, now=EARLY)
        second = appointments.list_available_slots(DOCTOR, MONDAY, now=EARLY)
    assert first == second
    assert [s.to_dict() for s in first] == [s.to_dict() for s in second]
    assert [s.free for s in first] == [True, True, False, True, True, True]


def test_admission_locks_are_released(app, monday_clinic, patient):
    before = len(scheduling_store._admission_locks)
    booked = 0
    with app.app_context():
        with scheduling_store.admission(DOCTOR, MONDAY):
            assert (DOCTOR, MONDAY.isoformat()) in scheduling_store._admission_locks
        assert len(scheduling_store._admission_locks) == before

        for offset in range(200):
            try:
                appointments.propose(DOCTOR, patient, MONDAY + timedelta(days=offset), "09:00", 30, now=EARLY)
                booked += 1
            except NoAvailability:
                pass
    assert booked == 29
    assert len(scheduling_store._admission_locks) == before
