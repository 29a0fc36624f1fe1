"""Patient lookups needed by the booking flow."""

from __future__ import annotations

import re
import uuid
from typing import Any

from clinic_booking.services.database import db
from clinic_booking.services.scheduling_errors import InvalidInput, PatientNotFound
from clinic_booking.services.scheduling_store import writing


def next_short_id(conn) -> str:
    """Next ``P000001``-style id; call inside a write transaction."""

    row = conn.execute(
        "SELECT MAX(CAST(SUBSTR(short_id, 2) AS INTEGER)) FROM patients WHERE short_id GLOB 'P[0-9]*'"
    ).fetchone()
    n = row[0] or 0
    return f"P{n+1:06d}"


def normalize_name(s: str) -> str:
    return re.sub(r"\s+", " ", (s or "").strip())


def create_patient(full_name: str, *, phone: str | None = None) -> dict[str, Any]:
    name = normalize_name(full_name)
    if not name:
        raise InvalidInput("full_name is required")
    phone = (phone or "").strip() or None
    pid = str(uuid.uuid4())
    with writing() as store:
        short_id = next_short_id(store.conn)
        store.conn.execute(
            "INSERT INTO patients(id, short_id, full_name, phone, created_at) VALUES (?, ?, ?, ?, datetime('now'))",
            (pid, short_id, name, phone),
        )
    return {"id": pid, "short_id": short_id, "full_name": name, "phone": phone}


def get_patient(patient_id: str) -> dict[str, Any]:
    conn = db()
    try:
        row = conn.execute(
            "SELECT id, short_id, full_name, phone FROM patients WHERE id=?",
            (patient_id,),
        ).fetchone()
    finally:
        conn.close()
    if not row:
        raise PatientNotFound(f"patient {patient_id} does not exist", patient_id=patient_id)
    return dict(row)
