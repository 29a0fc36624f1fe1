"""Bootstrap helper to ensure the scheduling tables exist for first-time runs."""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Iterable

NON_TERMINAL = "state NOT IN ('completed','cancelled','no_show')"


def _execute_statements(conn: sqlite3.Connection, statements: Iterable[str]) -> None:
    for stmt in statements:
        conn.execute(stmt)


def ensure_base_tables(db_path: Path) -> None:
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path)
    conn.execute("PRAGMA foreign_keys=ON")
    try:
        _execute_statements(
            conn,
            [
                """
                CREATE TABLE IF NOT EXISTS patients (
                    id TEXT PRIMARY KEY,
                    short_id TEXT,
                    full_name TEXT NOT NULL,
                    phone TEXT,
                    notes TEXT,
                    created_at TEXT NOT NULL DEFAULT (datetime('now'))
                )
                """,
                """
                CREATE TABLE IF NOT EXISTS doctors (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    specialty TEXT,
                    is_active INTEGER NOT NULL DEFAULT 1,
                    created_at TEXT NOT NULL DEFAULT (datetime('now'))
                )
                """,
                """
                CREATE TABLE IF NOT EXISTS audit_log (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    actor_user_id TEXT,
                    action TEXT NOT NULL,
                    entity TEXT,
                    entity_id TEXT,
                    ts TEXT NOT NULL,
                    result TEXT NOT NULL DEFAULT 'ok',
                    meta_json_redacted TEXT NOT NULL DEFAULT '{}'
                )
                """,
                "CREATE INDEX IF NOT EXISTS idx_audit_entity ON audit_log(entity_id)",
            ],
        )
        _execute_statements(
            conn,
            [
                """
                CREATE TABLE IF NOT EXISTS doctor_availability (
                    id TEXT PRIMARY KEY,
                    doctor_id TEXT NOT NULL,
                    weekday INTEGER NOT NULL,
                    start_time TEXT NOT NULL,
                    end_time TEXT NOT NULL,
                    slot_minutes INTEGER NOT NULL DEFAULT 30,
                    is_active INTEGER NOT NULL DEFAULT 1,
                    created_at TEXT NOT NULL DEFAULT (datetime('now')),
                    FOREIGN KEY(doctor_id) REFERENCES doctors(id) ON DELETE CASCADE,
                    CHECK(weekday BETWEEN 0 AND 6),
                    CHECK(slot_minutes >= 5)
                )
                """,
                """
                CREATE INDEX IF NOT EXISTS idx_availability_doctor_day
                ON doctor_availability(doctor_id, weekday)
                """,
                """
                CREATE TABLE IF NOT EXISTS schedule_exceptions (
                    id TEXT PRIMARY KEY,
                    doctor_id TEXT NOT NULL,
                    day TEXT NOT NULL,
                    kind TEXT NOT NULL,
                    start_time TEXT,
                    end_time TEXT,
                    slot_minutes INTEGER,
                    reason TEXT,
                    is_active INTEGER NOT NULL DEFAULT 1,
                    created_at TEXT NOT NULL DEFAULT (datetime('now')),
                    FOREIGN KEY(doctor_id) REFERENCES doctors(id) ON DELETE CASCADE,
                    CHECK(kind IN ('closure','override'))
                )
                """,
                """
                CREATE INDEX IF NOT EXISTS idx_exceptions_doctor_day
                ON schedule_exceptions(doctor_id, day)
                """,
                """
                CREATE TABLE IF NOT EXISTS appointments (
                    id TEXT PRIMARY KEY,
                    doctor_id TEXT NOT NULL,
                    patient_id TEXT NOT NULL,
                    day TEXT NOT NULL,
                    start_time TEXT NOT NULL,
                    duration_minutes INTEGER NOT NULL,
                    starts_at_utc TEXT NOT NULL,
                    kind TEXT NOT NULL DEFAULT 'in_person',
                    state TEXT NOT NULL DEFAULT 'pending_payment',
                    invoice_id TEXT,
                    reason TEXT,
                    cancel_reason TEXT,
                    created_at TEXT NOT NULL DEFAULT (datetime('now')),
                    updated_at TEXT NOT NULL DEFAULT (datetime('now')),
                    FOREIGN KEY(doctor_id) REFERENCES doctors(id),
                    FOREIGN KEY(patient_id) REFERENCES patients(id),
                    CHECK(kind IN ('in_person','teleconsultation')),
                    CHECK(state IN ('pending_payment','scheduled','checked_in','in_progress','completed','cancelled','no_show'))
                )
                """,
                """
                CREATE INDEX IF NOT EXISTS idx_appointments_doctor_day
                ON appointments(doctor_id, day)
                """,
                "CREATE INDEX IF NOT EXISTS idx_appointments_patient ON appointments(patient_id)",
                f"""
                CREATE UNIQUE INDEX IF NOT EXISTS uq_appointments_active_slot
                ON appointments(doctor_id, day, start_time)
                WHERE {NON_TERMINAL}
                """,
            ],
        )
        _execute_statements(
            conn,
            [
                """
                CREATE TABLE IF NOT EXISTS doctor_fees (
                    doctor_id TEXT PRIMARY KEY,
                    amount_cents INTEGER NOT NULL,
                    currency TEXT NOT NULL DEFAULT 'INR',
                    updated_at TEXT NOT NULL DEFAULT (datetime('now')),
                    FOREIGN KEY(doctor_id) REFERENCES doctors(id) ON DELETE CASCADE,
                    CHECK(amount_cents >= 0)
                )
                """,
                """
                CREATE TABLE IF NOT EXISTS invoice_sequences (
                    month_key TEXT PRIMARY KEY,
                    last_number INTEGER NOT NULL
                )
                """,
                """
                CREATE TABLE IF NOT EXISTS appointment_invoices (
                    id TEXT PRIMARY KEY,
                    number TEXT NOT NULL UNIQUE,
                    appointment_id TEXT NOT NULL,
                    amount_cents INTEGER NOT NULL DEFAULT 0,
                    currency TEXT NOT NULL DEFAULT 'INR',
                    payment_status TEXT NOT NULL DEFAULT 'pending',
                    payment_reference TEXT,
                    paid_at TEXT,
                    created_at TEXT NOT NULL DEFAULT (datetime('now')),
                    updated_at TEXT NOT NULL DEFAULT (datetime('now')),
                    FOREIGN KEY(appointment_id) REFERENCES appointments(id) ON DELETE CASCADE,
                    CHECK(payment_status IN ('pending','paid_cash','paid_online','cancelled'))
                )
                """,
                """
                CREATE UNIQUE INDEX IF NOT EXISTS uq_invoices_active_appointment
                ON appointment_invoices(appointment_id)
                WHERE payment_status != 'cancelled'
                """,
            ],
        )
        conn.commit()
    finally:
        conn.close()
