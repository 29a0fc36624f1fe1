"""Booking API: doctors, slots and appointment lifecycle."""

from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from clinic_booking.blueprints import actor_id
from clinic_booking.extensions import limiter
from clinic_booking.forms.booking import CancelForm, ProposeForm, RescheduleForm, TransitionForm
from clinic_booking.services import appointments
from clinic_booking.services.doctors import list_doctors

bp = Blueprint("appointments", __name__, url_prefix="/api")


def _booking_rate_limit() -> str:
    return current_app.config.get("BOOKING_RATE_LIMIT", "30 per minute")


@bp.route("/doctors", methods=["GET"])
def doctors():
    return jsonify({"success": True, "doctors": list_doctors()})


@bp.route("/doctors/<doctor_id>/slots", methods=["GET"])
def slots(doctor_id: str):
    day = request.args.get("day")
    available = appointments.list_available_slots(doctor_id, day)
    return jsonify(
        {
            "success": True,
            "doctor_id": doctor_id,
            "day": day,
            "slots": [slot.to_dict() for slot in available],
        }
    )


@bp.route("/doctors/<doctor_id>/windows", methods=["GET"])
def windows(doctor_id: str):
    availability = appointments.effective_availability(doctor_id, request.args.get("day"))
    return jsonify({"success": True, "doctor_id": doctor_id, **availability.to_dict()})


@bp.route("/doctors/<doctor_id>/appointments", methods=["GET"])
def day_appointments(doctor_id: str):
    day = request.args.get("day")
    rows = appointments.appointments_for_day(doctor_id, day, state=request.args.get("state") or None)
    return jsonify({"success": True, "doctor_id": doctor_id, "day": day, "appointments": rows})


@bp.route("/appointments", methods=["POST"])
@limiter.limit(_booking_rate_limit, methods=["POST"])
def propose():
    form = ProposeForm().validated()
    appointment = appointments.propose(
        str(form.doctor_id.data).strip(),
        str(form.patient_id.data).strip(),
        form.day.data,
        form.start_time.data,
        form.duration_minutes.data,
        form.kind.data or "in_person",
        reason=form.reason.data,
        actor_id=actor_id(),
    )
    return jsonify({"success": True, "appointment": appointment}), 201


@bp.route("/appointments/<appt_id>", methods=["GET"])
def detail(appt_id: str):
    return jsonify({"success": True, "appointment": appointments.get_appointment(appt_id)})


@bp.route("/appointments/<appt_id>/cancel", methods=["POST"])
def cancel(appt_id: str):
    form = CancelForm().validated()
    appointment = appointments.cancel(appt_id, form.reason.data, actor_id=actor_id())
    return jsonify({"success": True, "appointment": appointment})


@bp.route("/appointments/<appt_id>/transition", methods=["POST"])
def transition(appt_id: str):
    form = TransitionForm().validated()
    appointment = appointments.transition(
        appt_id,
        form.event.data,
        payment_reference=form.payment_reference.data or None,
        reason=form.reason.data,
        actor_id=actor_id(),
    )
    return jsonify({"success": True, "appointment": appointment})


@bp.route("/appointments/<appt_id>/reschedule", methods=["POST"])
def reschedule(appt_id: str):
    form = RescheduleForm().validated()
    appointment = appointments.reschedule(
        appt_id,
        form.day.data,
        form.start_time.data,
        actor_id=actor_id(),
    )
    return jsonify({"success": True, "appointment": appointment})
