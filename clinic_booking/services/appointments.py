"""Appointment booking: slot listing, admission and lifecycle changes."""

from __future__ import annotations

from datetime import date, datetime, timedelta
import uuid
from typing import Any, Callable, Mapping, TypeVar

from flask import current_app

from clinic_booking.services import invoices
from clinic_booking.services.appointment_states import (
    CANCELLED,
    PAYMENT_EVENTS,
    POLICY_PAY_LATER,
    POLICY_PREPAY,
    STATES,
    TERMINAL_STATES,
    initial_state,
    next_state,
)
from clinic_booking.services.audit import write_event
from clinic_booking.services.availability import DEFAULT_SLOT_MINUTES, EffectiveAvailability, resolve
from clinic_booking.services.booking_index import BookingIndex
from clinic_booking.services.doctors import require_doctor
from clinic_booking.services.scheduling_errors import (
    ConcurrencyConflict,
    IllegalTransition,
    InvalidInput,
    NotFound,
    OutsideWorkingHours,
    PatientNotFound,
    SlotInPast,
    SlotMisaligned,
    SlotTaken,
    StorageUnavailable,
)
from clinic_booking.services.scheduling_store import SchedulingStore, admission, reading, writing
from clinic_booking.services.slots import CandidateSlot, generate_slots
from clinic_booking.services.timeutil import (
    MINUTES_PER_DAY,
    as_clinic_time,
    clinic_now,
    clinic_timezone,
    format_clock_label,
    format_hhmm,
    is_aligned,
    parse_day,
    parse_hhmm,
    slot_datetime,
    to_utc_iso,
)

T = TypeVar("T")


def _slot_minutes() -> int:
    return int(current_app.config.get("APPOINTMENT_SLOT_MINUTES", DEFAULT_SLOT_MINUTES))


def _payment_policy() -> str:
    policy = current_app.config.get("APPOINTMENT_PAYMENT_POLICY", POLICY_PAY_LATER)
    return policy if policy in (POLICY_PAY_LATER, POLICY_PREPAY) else POLICY_PAY_LATER


def _lead() -> timedelta:
    return timedelta(minutes=int(current_app.config.get("BOOKING_LEAD_MINUTES", 0)))


def _checkin_grace() -> timedelta:
    return timedelta(minutes=int(current_app.config.get("APPOINTMENT_CHECKIN_GRACE_MINUTES", 15)))


def _no_show_grace() -> timedelta:
    return timedelta(minutes=int(current_app.config.get("APPOINTMENT_NO_SHOW_GRACE_MINUTES", 0)))


def _clock(now: datetime | None):
    tz = clinic_timezone()
    return tz, (clinic_now() if now is None else as_clinic_time(now, tz))


def _availability(store: SchedulingStore, doctor_id: str, day: date) -> EffectiveAvailability:
    return resolve(
        day,
        store.get_weekly_availability(doctor_id),
        store.get_exceptions(doctor_id, day),
        default_slot_minutes=_slot_minutes(),
    )


def _retry_once(operation: Callable[[], T], label: str) -> T:
    try:
        return operation()
    except ConcurrencyConflict as exc:
        current_app.logger.warning("%s hit a concurrent write (%s); retrying", label, exc.message)
    return operation()


def serialize(row: Mapping[str, Any], invoice: Mapping[str, Any] | None = None) -> dict[str, Any]:
    start = parse_hhmm(row["start_time"])
    end = start + int(row["duration_minutes"])
    return {
        "id": row["id"],
        "doctor_id": row["doctor_id"],
        "patient_id": row["patient_id"],
        "day": row["day"],
        "start_time": row["start_time"],
        "end_time": format_hhmm(end),
        "time_label": f"{format_clock_label(start)} → {format_clock_label(end)}",
        "duration_minutes": int(row["duration_minutes"]),
        "starts_at_utc": row["starts_at_utc"],
        "kind": row["kind"],
        "state": row["state"],
        "reason": row["reason"],
        "cancel_reason": row["cancel_reason"],
        "invoice_id": row["invoice_id"],
        "invoice": invoices.summary(invoice),
        "created_at": row["created_at"],
        "updated_at": row["updated_at"],
    }


def _duration(value: Any) -> int | None:
    if value is None or value == "":
        return None
    try:
        minutes = int(value)
    except (TypeError, ValueError) as exc:
        raise InvalidInput(f"duration must be a whole number of minutes, got {value!r}") from exc
    if minutes <= 0:
        raise InvalidInput("duration must be positive")
    return minutes


def admit(
    availability: EffectiveAvailability,
    index: BookingIndex,
    start: int,
    duration: int,
    *,
    now: datetime,
    tz,
    lead: timedelta = timedelta(0),
) -> None:
    """Run the admission checks in order; on success the slot is reserved in ``index``."""

    step = availability.slot_minutes
    end = start + duration
    if end > MINUTES_PER_DAY or not availability.windows.contains(start, end):
        raise OutsideWorkingHours(
            f"{format_hhmm(start)} is outside working hours",
            start_time=format_hhmm(start),
        )
    if duration != step:
        raise InvalidInput(
            f"appointments on {availability.day.isoformat()} last {step} minutes, not {duration}",
            slot_minutes=step,
        )
    if not is_aligned(start, step, availability.anchor or 0):
        raise SlotMisaligned(
            f"{format_hhmm(start)} is not on the {step}-minute grid",
            start_time=format_hhmm(start),
        )
    if slot_datetime(availability.day, start, tz) <= now + lead:
        raise SlotInPast(f"{format_hhmm(start)} has already started", start_time=format_hhmm(start))
    index.insert(start, end)


def list_available_slots(doctor_id: str, day: str | date, *, now: datetime | None = None) -> list[CandidateSlot]:
    day = parse_day(day)
    tz, now = _clock(now)
    with reading() as store:
        require_doctor(store, doctor_id)
        availability = _availability(store, doctor_id, day)
        index = BookingIndex.from_appointments(store.get_appointments(doctor_id, day))
    return generate_slots(availability, index, now=now, tz=tz)


def effective_availability(doctor_id: str, day: str | date) -> EffectiveAvailability:
    day = parse_day(day)
    with reading() as store:
        require_doctor(store, doctor_id)
        return _availability(store, doctor_id, day)


def propose(
    doctor_id: str,
    patient_id: str,
    day: str | date,
    start_time: str,
    duration_minutes: int | str | None = None,
    kind: str = "in_person",
    *,
    reason: str | None = None,
    actor_id: str | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Book ``start_time`` on ``day`` with ``doctor_id`` for ``patient_id``.

    ``duration_minutes`` defaults to the day's slot length. Raises a
    :class:`SchedulingError` subclass when the slot cannot be admitted.
    """

    if not doctor_id or not patient_id:
        raise InvalidInput("doctor_id and patient_id are required")
    day = parse_day(day)
    start = parse_hhmm(start_time)
    duration = _duration(duration_minutes)
    state = initial_state(kind, _payment_policy())
    reason = (reason or "").strip() or None
    tz, now = _clock(now)

    def attempt() -> dict[str, Any]:
        with admission(doctor_id, day) as store:
            require_doctor(store, doctor_id)
            if not store.get_patient(patient_id):
                raise PatientNotFound(f"patient {patient_id} does not exist", patient_id=patient_id)
            availability = _availability(store, doctor_id, day)
            index = BookingIndex.from_appointments(store.get_appointments(doctor_id, day))
            minutes = duration or availability.slot_minutes
            admit(availability, index, start, minutes, now=now, tz=tz, lead=_lead())

            row = {
                "id": str(uuid.uuid4()),
                "doctor_id": doctor_id,
                "patient_id": patient_id,
                "day": day.isoformat(),
                "start_time": format_hhmm(start),
                "duration_minutes": minutes,
                "starts_at_utc": to_utc_iso(slot_datetime(day, start, tz)),
                "kind": kind,
                "state": state,
                "reason": reason,
            }
            store.insert_appointment(row)
            invoice = invoices.seed_invoice(store, row, now=now)
            write_event(
                actor_id,
                "appointment.propose",
                entity="appointment",
                entity_id=row["id"],
                meta={
                    "doctor_id": doctor_id,
                    "day": row["day"],
                    "start_time": row["start_time"],
                    "kind": kind,
                    "state": state,
                    "reason": reason,
                },
                conn=store.conn,
            )
            booked = store.get_appointment(row["id"])
        current_app.logger.info(
            "Appointment %s booked with %s on %s at %s (%s)",
            row["id"],
            doctor_id,
            row["day"],
            row["start_time"],
            state,
        )
        return serialize(booked, invoice)

    try:
        return _retry_once(attempt, "propose")
    except ConcurrencyConflict as exc:
        raise SlotTaken(f"{format_hhmm(start)} was just booked by someone else", start_time=format_hhmm(start)) from exc


def _load(appt_id: str) -> dict[str, Any]:
    with reading() as store:
        appt = store.get_appointment(appt_id)
    if not appt:
        raise NotFound(f"appointment {appt_id} does not exist", appointment_id=appt_id)
    return appt


def get_appointment(appt_id: str) -> dict[str, Any]:
    with reading() as store:
        appt = store.get_appointment(appt_id)
        if not appt:
            raise NotFound(f"appointment {appt_id} does not exist", appointment_id=appt_id)
        invoice = store.get_invoice(appt["invoice_id"]) if appt["invoice_id"] else None
    return serialize(appt, invoice)


def appointments_for_day(doctor_id: str, day: str | date, *, state: str | None = None) -> list[dict[str, Any]]:
    """A doctor's appointments on ``day`` in start order, optionally only those in ``state``."""

    day = parse_day(day)
    if state is not None and state not in STATES:
        raise InvalidInput(f"state must be one of {', '.join(STATES)}", state=state)
    with reading() as store:
        require_doctor(store, doctor_id)
        rows = store.get_appointments(doctor_id, day)
        invoices_by_id = {
            row["invoice_id"]: store.get_invoice(row["invoice_id"]) for row in rows if row["invoice_id"]
        }
    return [
        serialize(row, invoices_by_id.get(row["invoice_id"]))
        for row in rows
        if state is None or row["state"] == state
    ]


def transition(
    appt_id: str,
    event: str,
    *,
    payment_reference: str | None = None,
    reason: str | None = None,
    actor_id: str | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Apply a lifecycle event; payment events also settle the invoice."""

    event = (event or "").strip()
    tz, now = _clock(now)

    def attempt() -> dict[str, Any]:
        snapshot = _load(appt_id)
        day = date.fromisoformat(snapshot["day"])
        with admission(snapshot["doctor_id"], day) as store:
            appt = store.get_appointment(appt_id)
            if not appt:
                raise NotFound(f"appointment {appt_id} does not exist", appointment_id=appt_id)
            if appt["day"] != snapshot["day"]:
                raise ConcurrencyConflict("appointment moved while it was being updated")
            start = parse_hhmm(appt["start_time"])
            starts_at = slot_datetime(day, start, tz)
            ends_at = starts_at + timedelta(minutes=int(appt["duration_minutes"]))
            current = appt["state"]
            target = next_state(
                current,
                event,
                now=now,
                starts_at=starts_at,
                ends_at=ends_at,
                checkin_grace=_checkin_grace(),
                no_show_grace=_no_show_grace(),
            )

            invoice = None
            if event in PAYMENT_EVENTS:
                invoice = invoices.apply_payment(store, appt, event, now=now, reference=payment_reference)
            elif target == CANCELLED:
                invoice = invoices.void_pending_invoice(store, appt_id)

            cancel_reason = ((reason or "").strip() or None) if target == CANCELLED else None
            if not store.update_appointment_state(appt_id, target, current, cancel_reason=cancel_reason):
                raise ConcurrencyConflict("appointment state changed concurrently", state=current)
            write_event(
                actor_id,
                f"appointment.{event}",
                entity="appointment",
                entity_id=appt_id,
                meta={
                    "from": current,
                    "to": target,
                    "cancel_reason": cancel_reason,
                    "payment_reference": payment_reference,
                },
                conn=store.conn,
            )
            updated = store.get_appointment(appt_id)
            if invoice is None and updated["invoice_id"]:
                invoice = store.get_invoice(updated["invoice_id"])
        current_app.logger.info("Appointment %s: %s -> %s (%s)", appt_id, current, target, event)
        return serialize(updated, invoice)

    try:
        return _retry_once(attempt, f"transition {event}")
    except ConcurrencyConflict as exc:
        raise StorageUnavailable(
            "the appointment kept changing while it was being updated; try again",
            appointment_id=appt_id,
        ) from exc


def cancel(
    appt_id: str,
    reason: str | None = None,
    *,
    actor_id: str | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    return transition(appt_id, "cancel", reason=reason, actor_id=actor_id, now=now)


def reschedule(
    appt_id: str,
    day: str | date,
    start_time: str,
    *,
    actor_id: str | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Move a live appointment to another free slot of the same doctor."""

    target_day = parse_day(day)
    start = parse_hhmm(start_time)
    tz, now = _clock(now)

    def attempt() -> dict[str, Any]:
        snapshot = _load(appt_id)
        if snapshot["state"] in TERMINAL_STATES:
            raise IllegalTransition(
                f"cannot reschedule an appointment that is {snapshot['state']}",
                state=snapshot["state"],
            )
        doctor_id = snapshot["doctor_id"]
        with admission(doctor_id, target_day) as store:
            appt = store.get_appointment(appt_id)
            if not appt or appt["state"] in TERMINAL_STATES:
                raise ConcurrencyConflict("appointment changed while it was being moved")
            require_doctor(store, doctor_id)
            availability = _availability(store, doctor_id, target_day)
            index = BookingIndex.from_appointments(
                store.get_appointments(doctor_id, target_day), exclude_id=appt_id
            )
            admit(
                availability,
                index,
                start,
                int(appt["duration_minutes"]),
                now=now,
                tz=tz,
                lead=_lead(),
            )
            moved = store.move_appointment(
                appt_id,
                day=target_day,
                start_time=format_hhmm(start),
                starts_at_utc=to_utc_iso(slot_datetime(target_day, start, tz)),
                expected_state=appt["state"],
            )
            if not moved:
                raise ConcurrencyConflict("appointment state changed concurrently", state=appt["state"])
            write_event(
                actor_id,
                "appointment.reschedule",
                entity="appointment",
                entity_id=appt_id,
                meta={
                    "from_day": appt["day"],
                    "from_time": appt["start_time"],
                    "to_day": target_day.isoformat(),
                    "to_time": format_hhmm(start),
                },
                conn=store.conn,
            )
            updated = store.get_appointment(appt_id)
            invoice = store.get_invoice(updated["invoice_id"]) if updated["invoice_id"] else None
        current_app.logger.info(
            "Appointment %s moved to %s %s", appt_id, target_day.isoformat(), format_hhmm(start)
        )
        return serialize(updated, invoice)

    try:
        return _retry_once(attempt, "reschedule")
    except ConcurrencyConflict as exc:
        if "start_time" in exc.details:
            raise SlotTaken(
                f"{format_hhmm(start)} was just booked by someone else", start_time=format_hhmm(start)
            ) from exc
        raise StorageUnavailable(
            "the appointment kept changing while it was being moved; try again",
            appointment_id=appt_id,
        ) from exc


def purge_appointments(before: str | date, *, dry_run: bool = False) -> int:
    """Delete finished appointments (completed, cancelled, no-show) dated before ``before``."""

    cutoff = parse_day(before)
    terminal = tuple(sorted(TERMINAL_STATES))
    placeholders = ",".join("?" * len(terminal))
    with writing() as store:
        count = store.conn.execute(
            f"SELECT COUNT(*) FROM appointments WHERE day < ? AND state IN ({placeholders})",
            (cutoff.isoformat(), *terminal),
        ).fetchone()[0]
        if not dry_run and count:
            store.conn.execute(
                f"DELETE FROM appointments WHERE day < ? AND state IN ({placeholders})",
                (cutoff.isoformat(), *terminal),
            )
            write_event(
                None,
                "appointment.purge",
                entity="appointment",
                meta={"before": cutoff.isoformat(), "count": count},
                conn=store.conn,
            )
    if not dry_run:
        current_app.logger.info("Purged %d finished appointment(s) before %s", count, cutoff.isoformat())
    return int(count)
