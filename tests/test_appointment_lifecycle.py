from datetime import datetime, timedelta, timezone

import pytest

from conftest import DOCTOR, MONDAY, insert_patient
from clinic_booking.services import appointments
from clinic_booking.services.audit import recent_events
from clinic_booking.services.doctors import set_doctor_fee
from clinic_booking.services.invoices import get_invoice
from clinic_booking.services.scheduling_errors import (
    IllegalTransition,
    InvalidInput,
    NotFound,
    SlotMisaligned,
    SlotTaken,
    StorageUnavailable,
)
from clinic_booking.services.scheduling_store import SchedulingStore

EARLY = datetime(2030, 1, 7, 8, 0, tzinfo=timezone.utc)


def _book(app, patient, start="09:30", **kwargs):
    with app.app_context():
        return appointments.propose(DOCTOR, patient, MONDAY, start, 30, now=EARLY, **kwargs)


def test_in_person_visit_runs_through_to_completion(app, monday_clinic, patient):
    appt = _book(app, patient)
    with app.app_context():
        paid = appointments.transition(appt["id"], "mark_cash_paid", now=EARLY)
        assert paid["state"] == "scheduled"
        assert paid["invoice"]["payment_status"] == "paid_cash"

        with pytest.raises(IllegalTransition):
            appointments.transition(appt["id"], "check_in", now=EARLY)
        checked = appointments.transition(appt["id"], "check_in", now=EARLY + timedelta(minutes=80))
        assert checked["state"] == "checked_in"
        started = appointments.transition(appt["id"], "start", now=EARLY + timedelta(minutes=90))
        assert started["state"] == "in_progress"
        done = appointments.transition(appt["id"], "complete", now=EARLY + timedelta(minutes=115))
        assert done["state"] == "completed"

        with pytest.raises(IllegalTransition):
            appointments.cancel(appt["id"], "too late", now=EARLY + timedelta(minutes=120))
        slots = appointments.list_available_slots(DOCTOR, MONDAY, now=EARLY)
    assert slots[1].free


def test_second_cash_payment_is_rejected(app, monday_clinic, patient):
    appt = _book(app, patient)
    with app.app_context():
        appointments.transition(appt["id"], "mark_cash_paid", now=EARLY)
        with pytest.raises(IllegalTransition):
            appointments.transition(appt["id"], "mark_cash_paid", now=EARLY)


def test_prepay_policy_starts_pending_and_online_payment_schedules(app, monday_clinic, patient):
    app.config["APPOINTMENT_PAYMENT_POLICY"] = "prepay"
    appt = _book(app, patient)
    assert appt["state"] == "pending_payment"
    with app.app_context():
        paid = appointments.transition(appt["id"], "pay_online", payment_reference="pay_123", now=EARLY)
        invoice = get_invoice(paid["invoice_id"])
    assert paid["state"] == "scheduled"
    assert invoice["payment_status"] == "paid_online"
    assert invoice["payment_reference"] == "pay_123"
    assert invoice["paid_at"] == "2030-01-07T08:00:00+00:00"


def test_teleconsultation_waits_for_payment(app, monday_clinic, patient):
    appt = _book(app, patient, kind="teleconsultation")
    assert appt["state"] == "pending_payment"
    assert appt["kind"] == "teleconsultation"


def test_cancel_voids_pending_invoice_but_keeps_paid_one(app, monday_clinic, patient):
    unpaid = _book(app, patient, "09:00")
    paid = _book(app, patient, "10:00")
    with app.app_context():
        appointments.transition(paid["id"], "mark_cash_paid", now=EARLY)
        cancelled = appointments.cancel(unpaid["id"], "patient called", now=EARLY)
        refunded = appointments.cancel(paid["id"], None, now=EARLY)
    assert cancelled["state"] == "cancelled"
    assert cancelled["cancel_reason"] == "patient called"
    assert cancelled["invoice"]["payment_status"] == "cancelled"
    assert refunded["invoice"]["payment_status"] == "paid_cash"


def test_no_show_after_the_slot(app, monday_clinic, patient):
    appt = _book(app, patient)
    with app.app_context():
        with pytest.raises(IllegalTransition):
            appointments.transition(appt["id"], "mark_no_show", now=EARLY + timedelta(minutes=100))
        missed = appointments.transition(appt["id"], "mark_no_show", now=EARLY + timedelta(minutes=120))
    assert missed["state"] == "no_show"


def test_unknown_event_and_missing_appointment(app, monday_clinic, patient):
    appt = _book(app, patient)
    with app.app_context():
        with pytest.raises(InvalidInput):
            appointments.transition(appt["id"], "teleport", now=EARLY)
        with pytest.raises(NotFound):
            appointments.transition("missing", "cancel", now=EARLY)
        with pytest.raises(NotFound):
            appointments.get_appointment("missing")


def test_reschedule_moves_to_a_free_aligned_slot(app, monday_clinic, patient):
    appt = _book(app, patient)
    other = _book(app, insert_patient("Other", "P000002"), "11:00")
    with app.app_context():
        moved = appointments.reschedule(appt["id"], MONDAY, "10:00", now=EARLY)
        assert moved["start_time"] == "10:00"
        assert moved["state"] == appt["state"]
        assert moved["invoice_id"] == appt["invoice_id"]

        same = appointments.reschedule(appt["id"], MONDAY, "10:00", now=EARLY)
        assert same["start_time"] == "10:00"

        with pytest.raises(SlotTaken):
            appointments.reschedule(appt["id"], MONDAY, other["start_time"], now=EARLY)
        with pytest.raises(SlotMisaligned):
            appointments.reschedule(appt["id"], MONDAY, "10:15", now=EARLY)

        slots = {s.to_dict()["start_time"]: s for s in appointments.list_available_slots(DOCTOR, MONDAY, now=EARLY)}
    assert slots["09:30"].free
    assert not slots["10:00"].free


def test_terminal_appointments_cannot_be_rescheduled(app, monday_clinic, patient):
    appt = _book(app, patient)
    with app.app_context():
        appointments.cancel(appt["id"], now=EARLY)
        with pytest.raises(IllegalTransition):
            appointments.reschedule(appt["id"], MONDAY, "10:00", now=EARLY)


def test_doctor_fee_seeds_invoice_amount(app, monday_clinic, patient):
    with app.app_context():
        set_doctor_fee(DOCTOR, "650.50")
    appt = _book(app, patient)
    assert appt["invoice"]["amount_cents"] == 65050
    assert appt["invoice"]["amount"] == "650.50"


def test_audit_trail_redacts_sensitive_fields(app, monday_clinic, patient):
    appt = _book(app, patient, reason="chest pain", actor_id="front-desk")
    with app.app_context():
        appointments.cancel(appt["id"], "feeling better", actor_id="front-desk", now=EARLY)
        events = recent_events(entity_id=appt["id"])
    actions = [event["action"] for event in events]
    assert actions == ["appointment.cancel", "appointment.propose"]
    assert events[1]["meta"]["reason"] == "[redacted]"
    assert events[0]["meta"]["cancel_reason"] == "[redacted]"
    assert events[0]["actor_user_id"] == "front-desk"


def test_failed_admission_leaves_no_trace(app, monday_clinic, patient):
    _book(app, patient)
    with app.app_context():
        with pytest.raises(SlotTaken):
            appointments.propose(DOCTOR, patient, MONDAY, "09:30", 30, now=EARLY)
        rows = appointments.appointments_for_day(DOCTOR, MONDAY)
        events = [e for e in recent_events() if e["action"] == "appointment.propose"]
    assert len(rows) == 1
    assert len(events) == 1


def test_repeated_write_conflicts_report_storage_unavailable(app, monday_clinic, patient, monkeypatch):
    appt = _book(app, patient)
    calls = []

    def always_stale(self, *args, **kwargs):
        calls.append(args)
        return False

    monkeypatch.setattr(SchedulingStore, "update_appointment_state", always_stale)
    monkeypatch.setattr(SchedulingStore, "move_appointment", always_stale)
    with app.app_context():
        with pytest.raises(StorageUnavailable):
            appointments.cancel(appt["id"], "clash", now=EARLY)
        with pytest.raises(StorageUnavailable):
            appointments.reschedule(appt["id"], MONDAY, "11:00", now=EARLY)
        unchanged = appointments.get_appointment(appt["id"])
    assert len(calls) == 4
    assert unchanged["state"] == "scheduled"
    assert unchanged["start_time"] == "09:30"
    assert unchanged["invoice"]["payment_status"] == "pending"
