"""Admin API for weekly schedules, date exceptions and fees."""

from __future__ import annotations

from flask import Blueprint, jsonify, request

from clinic_booking.blueprints import actor_id
from clinic_booking.forms.booking import ExceptionForm, FeeForm
from clinic_booking.services import availability_admin
from clinic_booking.services.doctors import get_doctor_fee, set_doctor_fee
from clinic_booking.services.scheduling_errors import InvalidInput

bp = Blueprint("availability", __name__, url_prefix="/api/doctors")


def _json_body():
    payload = request.get_json(silent=True)
    if payload is None:
        raise InvalidInput("expected a JSON body")
    return payload


@bp.route("/<doctor_id>/availability", methods=["GET"])
def weekly(doctor_id: str):
    windows = availability_admin.get_weekly_availability(doctor_id)
    return jsonify({"success": True, "doctor_id": doctor_id, "windows": windows})


@bp.route("/<doctor_id>/availability", methods=["PUT"])
def replace_weekly(doctor_id: str):
    payload = _json_body()
    entries = payload.get("windows") if isinstance(payload, dict) else payload
    if not isinstance(entries, list):
        raise InvalidInput("windows must be a list")
    windows = availability_admin.replace_weekly_availability(doctor_id, entries, actor_id=actor_id())
    return jsonify({"success": True, "doctor_id": doctor_id, "windows": windows})


@bp.route("/<doctor_id>/unavailable-days", methods=["GET"])
def unavailable(doctor_id: str):
    start, end = request.args.get("start"), request.args.get("end")
    days = availability_admin.unavailable_days(doctor_id, start, end)
    return jsonify({"success": True, "doctor_id": doctor_id, "start": start, "end": end, "days": days})


@bp.route("/<doctor_id>/exceptions", methods=["GET"])
def exceptions(doctor_id: str):
    rows = availability_admin.list_exceptions(doctor_id, request.args.get("start"), request.args.get("end"))
    return jsonify({"success": True, "doctor_id": doctor_id, "exceptions": rows})


@bp.route("/<doctor_id>/exceptions/<day>", methods=["PUT"])
def set_exception(doctor_id: str, day: str):
    form = ExceptionForm().validated()
    payload = _json_body()
    ranges = payload.get("ranges") if isinstance(payload, dict) else None
    if ranges is not None and not isinstance(ranges, list):
        raise InvalidInput("ranges must be a list")
    exception = availability_admin.set_exception(
        doctor_id,
        day,
        form.kind.data,
        ranges,
        slot_minutes=form.slot_minutes.data,
        reason=form.reason.data,
        actor_id=actor_id(),
    )
    return jsonify({"success": True, "doctor_id": doctor_id, "exception": exception})


@bp.route("/<doctor_id>/exceptions/<day>", methods=["DELETE"])
def delete_exception(doctor_id: str, day: str):
    availability_admin.delete_exception(doctor_id, day, actor_id=actor_id())
    return jsonify({"success": True, "doctor_id": doctor_id, "day": day})


@bp.route("/<doctor_id>/fee", methods=["GET"])
def fee(doctor_id: str):
    return jsonify({"success": True, "fee": get_doctor_fee(doctor_id)})


@bp.route("/<doctor_id>/fee", methods=["PUT"])
def update_fee(doctor_id: str):
    form = FeeForm().validated()
    if form.amount_cents.data is not None:
        amount = form.amount_cents.data
    elif form.amount.data not in (None, ""):
        amount = str(form.amount.data)
    else:
        raise InvalidInput("amount_cents or amount is required")
    fee = set_doctor_fee(doctor_id, amount, currency=form.currency.data or None, actor_id=actor_id())
    return jsonify({"success": True, "fee": fee})
