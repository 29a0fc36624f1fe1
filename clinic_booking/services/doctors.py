"""Doctor registry and per-doctor appointment fees."""

from __future__ import annotations

from typing import Any

from flask import current_app

from clinic_booking.services.audit import write_event
from clinic_booking.services.database import db
from clinic_booking.services.payments import DEFAULT_CURRENCY, cents_guard, parse_money_to_cents
from clinic_booking.services.scheduling_errors import DoctorNotFound, InvalidInput
from clinic_booking.services.scheduling_store import reading, writing


def _slugify(label: str) -> str:
    keep = []
    for ch in label.lower():
        if ch.isalnum():
            keep.append(ch)
        elif ch in {" ", "-", "_"}:
            keep.append("-")
    slug = "".join(keep).strip("-")
    return slug or "doctor"


def doctor_choices() -> list[tuple[str, str]]:
    doctors = current_app.config.get("APPOINTMENT_DOCTORS", [])
    if not doctors:
        doctors = ["On Call"]
    return [(_slugify(name), name) for name in doctors]


def ensure_doctors() -> int:
    """Insert the configured doctors that are missing; returns how many were added."""

    conn = db()
    try:
        added = 0
        for slug, name in doctor_choices():
            cur = conn.execute(
                "INSERT OR IGNORE INTO doctors(id, name, is_active, created_at) VALUES (?, ?, 1, datetime('now'))",
                (slug, name),
            )
            added += cur.rowcount
        conn.commit()
        if added:
            current_app.logger.info("Seeded %d doctor(s) from configuration", added)
        return added
    finally:
        conn.close()


def add_doctor(name: str, *, specialty: str | None = None) -> dict[str, Any]:
    name = (name or "").strip()
    if not name:
        raise InvalidInput("doctor name is required")
    slug = _slugify(name)
    with writing() as store:
        existing = store.get_doctor(slug)
        if existing:
            store.conn.execute(
                "UPDATE doctors SET name=?, specialty=COALESCE(?, specialty), is_active=1 WHERE id=?",
                (name, specialty, slug),
            )
        else:
            store.conn.execute(
                "INSERT INTO doctors(id, name, specialty, is_active, created_at) VALUES (?, ?, ?, 1, datetime('now'))",
                (slug, name, specialty),
            )
        return store.get_doctor(slug) or {}


def list_doctors() -> list[dict[str, Any]]:
    with reading() as store:
        return store.list_doctors()


def require_doctor(store, doctor_id: str) -> dict[str, Any]:
    doctor = store.get_doctor(doctor_id)
    if not doctor or not doctor["is_active"]:
        raise DoctorNotFound(f"doctor {doctor_id} does not exist", doctor_id=doctor_id)
    return doctor


def _default_fee() -> int:
    return int(current_app.config.get("APPOINTMENT_DEFAULT_FEE_CENTS", 50000))


def fee_for(store, doctor_id: str) -> tuple[int, str]:
    row = store.get_doctor_fee(doctor_id)
    if row:
        return int(row["amount_cents"]), row["currency"]
    return _default_fee(), DEFAULT_CURRENCY


def get_doctor_fee(doctor_id: str) -> dict[str, Any]:
    with reading() as store:
        require_doctor(store, doctor_id)
        row = store.get_doctor_fee(doctor_id)
    if row:
        return {**row, "source": "doctor"}
    return {
        "doctor_id": doctor_id,
        "amount_cents": _default_fee(),
        "currency": DEFAULT_CURRENCY,
        "source": "default",
    }


def set_doctor_fee(
    doctor_id: str,
    amount: int | str,
    *,
    currency: str | None = None,
    actor_id: str | None = None,
) -> dict[str, Any]:
    """Set the consultation fee; ``amount`` is cents, or a decimal string."""

    if isinstance(amount, str):
        cents = parse_money_to_cents(amount)
    elif isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidInput("amount must be an integer number of cents")
    else:
        cents = amount
    cents = cents_guard(cents, "Fee")
    currency = (currency or DEFAULT_CURRENCY).strip().upper()
    with writing() as store:
        require_doctor(store, doctor_id)
        store.conn.execute(
            """
            INSERT INTO doctor_fees(doctor_id, amount_cents, currency, updated_at)
            VALUES (?, ?, ?, datetime('now'))
            ON CONFLICT(doctor_id) DO UPDATE SET
                amount_cents=excluded.amount_cents,
                currency=excluded.currency,
                updated_at=excluded.updated_at
            """,
            (doctor_id, cents, currency),
        )
        write_event(
            actor_id,
            "doctor.fee",
            entity="doctor",
            entity_id=doctor_id,
            meta={"amount_cents": cents, "currency": currency},
            conn=store.conn,
        )
    return {"doctor_id": doctor_id, "amount_cents": cents, "currency": currency, "source": "doctor"}
