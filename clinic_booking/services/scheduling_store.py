"""SQLite storage for the scheduling services.

Every admission (booking, reschedule, state change) runs inside
:func:`admission`, which serialises writers per (doctor, day) with an
in-process lock and holds a ``BEGIN IMMEDIATE`` transaction so that other
processes sharing the database file are excluded as well.
"""

from __future__ import annotations

import sqlite3
import threading
import time
import uuid
from contextlib import contextmanager
from datetime import date
from typing import Any, Iterator, Mapping

from flask import current_app

from clinic_booking.services.availability import ScheduleException, WorkingWindow
from clinic_booking.services.database import db
from clinic_booking.services.scheduling_errors import ConcurrencyConflict, StorageUnavailable
from clinic_booking.services.timeutil import format_hhmm, parse_hhmm

DEFAULT_LOCK_TIMEOUT_SECONDS = 10.0

_registry_lock = threading.Lock()
_admission_locks: dict[tuple[str, str], "_DayLock"] = {}


class _DayLock:
    """A lock plus the number of callers currently holding or waiting on it."""

    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.users = 0


def _claim(key: tuple[str, str]) -> _DayLock:
    with _registry_lock:
        entry = _admission_locks.get(key)
        if entry is None:
            entry = _admission_locks[key] = _DayLock()
        entry.users += 1
        return entry


def _unclaim(key: tuple[str, str], entry: _DayLock) -> None:
    with _registry_lock:
        entry.users -= 1
        if entry.users == 0 and _admission_locks.get(key) is entry:
            del _admission_locks[key]


def _is_busy(exc: sqlite3.OperationalError) -> bool:
    message = str(exc).lower()
    return "locked" in message or "busy" in message


def _row(row: sqlite3.Row | None) -> dict[str, Any] | None:
    return dict(row) if row is not None else None


class SchedulingStore:
    """Queries and writes over one raw connection."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    # Reference data

    def get_doctor(self, doctor_id: str) -> dict[str, Any] | None:
        return _row(
            self.conn.execute(
                "SELECT id, name, specialty, is_active FROM doctors WHERE id=?",
                (doctor_id,),
            ).fetchone()
        )

    def list_doctors(self, *, active_only: bool = True) -> list[dict[str, Any]]:
        sql = "SELECT id, name, specialty, is_active FROM doctors"
        if active_only:
            sql += " WHERE is_active=1"
        sql += " ORDER BY name COLLATE NOCASE"
        return [dict(row) for row in self.conn.execute(sql).fetchall()]

    def get_patient(self, patient_id: str) -> dict[str, Any] | None:
        return _row(
            self.conn.execute(
                "SELECT id, short_id, full_name, phone FROM patients WHERE id=?",
                (patient_id,),
            ).fetchone()
        )

    # Availability

    def get_weekly_availability(self, doctor_id: str) -> list[WorkingWindow]:
        rows = self.conn.execute(
            """
            SELECT weekday, start_time, end_time, slot_minutes
            FROM doctor_availability
            WHERE doctor_id=? AND is_active=1
            ORDER BY weekday, start_time
            """,
            (doctor_id,),
        ).fetchall()
        return [
            WorkingWindow(
                int(row["weekday"]),
                parse_hhmm(row["start_time"]),
                parse_hhmm(row["end_time"]),
                int(row["slot_minutes"]),
            )
            for row in rows
        ]

    def replace_weekly_availability(self, doctor_id: str, windows: list[WorkingWindow]) -> None:
        self.conn.execute("DELETE FROM doctor_availability WHERE doctor_id=?", (doctor_id,))
        self.conn.executemany(
            """
            INSERT INTO doctor_availability(id, doctor_id, weekday, start_time, end_time, slot_minutes, is_active, created_at)
            VALUES (?, ?, ?, ?, ?, ?, 1, datetime('now'))
            """,
            [
                (
                    str(uuid.uuid4()),
                    doctor_id,
                    w.weekday,
                    format_hhmm(w.start),
                    format_hhmm(w.end),
                    w.slot_minutes,
                )
                for w in windows
            ],
        )

    def _exceptions(self, sql: str, params: tuple[Any, ...]) -> list[ScheduleException]:
        rows = self.conn.execute(sql, params).fetchall()
        return [
            ScheduleException(
                date.fromisoformat(row["day"]),
                row["kind"],
                parse_hhmm(row["start_time"]) if row["start_time"] else None,
                parse_hhmm(row["end_time"]) if row["end_time"] else None,
                row["slot_minutes"],
                row["reason"],
            )
            for row in rows
        ]

    def get_exceptions(self, doctor_id: str, day: date) -> list[ScheduleException]:
        return self._exceptions(
            """
            SELECT day, kind, start_time, end_time, slot_minutes, reason
            FROM schedule_exceptions
            WHERE doctor_id=? AND day=? AND is_active=1
            ORDER BY start_time
            """,
            (doctor_id, day.isoformat()),
        )

    def get_exceptions_between(self, doctor_id: str, start: date, end: date) -> list[ScheduleException]:
        return self._exceptions(
            """
            SELECT day, kind, start_time, end_time, slot_minutes, reason
            FROM schedule_exceptions
            WHERE doctor_id=? AND day BETWEEN ? AND ? AND is_active=1
            ORDER BY day, start_time
            """,
            (doctor_id, start.isoformat(), end.isoformat()),
        )

    def replace_exception(self, doctor_id: str, day: date, rows: list[Mapping[str, Any]]) -> None:
        self.delete_exception(doctor_id, day)
        self.conn.executemany(
            """
            INSERT INTO schedule_exceptions(
                id, doctor_id, day, kind, start_time, end_time, slot_minutes, reason, is_active, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, 1, datetime('now'))
            """,
            [
                (
                    str(uuid.uuid4()),
                    doctor_id,
                    day.isoformat(),
                    row["kind"],
                    row.get("start_time"),
                    row.get("end_time"),
                    row.get("slot_minutes"),
                    row.get("reason"),
                )
                for row in rows
            ],
        )

    def delete_exception(self, doctor_id: str, day: date) -> int:
        cur = self.conn.execute(
            "DELETE FROM schedule_exceptions WHERE doctor_id=? AND day=?",
            (doctor_id, day.isoformat()),
        )
        return cur.rowcount

    # Appointments

    def get_appointments(self, doctor_id: str, day: date) -> list[dict[str, Any]]:
        rows = self.conn.execute(
            """
            SELECT * FROM appointments
            WHERE doctor_id=? AND day=?
            ORDER BY start_time
            """,
            (doctor_id, day.isoformat()),
        ).fetchall()
        return [dict(row) for row in rows]

    def get_appointment(self, appt_id: str) -> dict[str, Any] | None:
        return _row(self.conn.execute("SELECT * FROM appointments WHERE id=?", (appt_id,)).fetchone())

    def future_active_weekdays(self, doctor_id: str, today: date) -> set[int]:
        """Weekdays (0 = Monday) that still carry upcoming non-terminal bookings."""

        rows = self.conn.execute(
            """
            SELECT DISTINCT day FROM appointments
            WHERE doctor_id=? AND day>=?
              AND state NOT IN ('completed','cancelled','no_show')
            """,
            (doctor_id, today.isoformat()),
        ).fetchall()
        return {date.fromisoformat(row["day"]).weekday() for row in rows}

    def insert_appointment(self, row: Mapping[str, Any]) -> None:
        try:
            self.conn.execute(
                """
                INSERT INTO appointments(
                    id, doctor_id, patient_id, day, start_time, duration_minutes,
                    starts_at_utc, kind, state, reason, created_at, updated_at
                ) VALUES (
                    :id, :doctor_id, :patient_id, :day, :start_time, :duration_minutes,
                    :starts_at_utc, :kind, :state, :reason, datetime('now'), datetime('now')
                )
                """,
                dict(row),
            )
        except sqlite3.IntegrityError as exc:
            if "UNIQUE" not in str(exc).upper():
                raise
            raise ConcurrencyConflict(
                "slot was booked by a concurrent request",
                start_time=row.get("start_time"),
            ) from exc

    def update_appointment_state(
        self,
        appt_id: str,
        new_state: str,
        expected_state: str,
        *,
        cancel_reason: str | None = None,
    ) -> bool:
        """Compare-and-set; False when the stored state is no longer ``expected_state``."""

        cur = self.conn.execute(
            """
            UPDATE appointments
            SET state=?, cancel_reason=COALESCE(?, cancel_reason), updated_at=datetime('now')
            WHERE id=? AND state=?
            """,
            (new_state, cancel_reason, appt_id, expected_state),
        )
        return cur.rowcount == 1

    def move_appointment(
        self,
        appt_id: str,
        *,
        day: date,
        start_time: str,
        starts_at_utc: str,
        expected_state: str,
    ) -> bool:
        try:
            cur = self.conn.execute(
                """
                UPDATE appointments
                SET day=?, start_time=?, starts_at_utc=?, updated_at=datetime('now')
                WHERE id=? AND state=?
                """,
                (day.isoformat(), start_time, starts_at_utc, appt_id, expected_state),
            )
        except sqlite3.IntegrityError as exc:
            raise ConcurrencyConflict("slot was booked by a concurrent request", start_time=start_time) from exc
        return cur.rowcount == 1

    def set_invoice_link(self, appt_id: str, invoice_id: str) -> None:
        self.conn.execute(
            "UPDATE appointments SET invoice_id=?, updated_at=datetime('now') WHERE id=?",
            (invoice_id, appt_id),
        )

    # Invoices

    def get_active_invoice(self, appointment_id: str) -> dict[str, Any] | None:
        return _row(
            self.conn.execute(
                """
                SELECT * FROM appointment_invoices
                WHERE appointment_id=? AND payment_status != 'cancelled'
                ORDER BY created_at DESC LIMIT 1
                """,
                (appointment_id,),
            ).fetchone()
        )

    def get_invoice(self, invoice_id: str) -> dict[str, Any] | None:
        return _row(
            self.conn.execute("SELECT * FROM appointment_invoices WHERE id=?", (invoice_id,)).fetchone()
        )

    def next_invoice_number(self, prefix: str, month_key: str) -> str:
        row = self.conn.execute(
            "SELECT last_number FROM invoice_sequences WHERE month_key=?",
            (month_key,),
        ).fetchone()
        if row:
            next_num = int(row["last_number"]) + 1
            self.conn.execute(
                "UPDATE invoice_sequences SET last_number=? WHERE month_key=?",
                (next_num, month_key),
            )
        else:
            next_num = 1
            self.conn.execute(
                "INSERT INTO invoice_sequences(month_key, last_number) VALUES (?, ?)",
                (month_key, next_num),
            )
        return f"{prefix}-{month_key}-{next_num:05d}"

    def upsert_invoice(self, appointment_id: str, payload: Mapping[str, Any]) -> dict[str, Any]:
        """Update the appointment's active invoice, or create one when none exists.

        A new invoice requires ``number`` in ``payload``.
        """

        existing = self.get_active_invoice(appointment_id)
        if existing:
            fields = {k: payload[k] for k in ("amount_cents", "currency", "payment_status", "payment_reference", "paid_at") if k in payload}
            if fields:
                assignments = ", ".join(f"{name}=:{name}" for name in fields)
                self.conn.execute(
                    f"UPDATE appointment_invoices SET {assignments}, updated_at=datetime('now') WHERE id=:id",
                    {**fields, "id": existing["id"]},
                )
            return dict(self.get_invoice(existing["id"]) or {})

        invoice_id = str(uuid.uuid4())
        self.conn.execute(
            """
            INSERT INTO appointment_invoices(
                id, number, appointment_id, amount_cents, currency, payment_status,
                payment_reference, paid_at, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, datetime('now'), datetime('now'))
            """,
            (
                invoice_id,
                payload["number"],
                appointment_id,
                int(payload.get("amount_cents") or 0),
                payload.get("currency") or "INR",
                payload.get("payment_status") or "pending",
                payload.get("payment_reference"),
                payload.get("paid_at"),
            ),
        )
        self.set_invoice_link(appointment_id, invoice_id)
        return dict(self.get_invoice(invoice_id) or {})

    # Fees

    def get_doctor_fee(self, doctor_id: str) -> dict[str, Any] | None:
        return _row(
            self.conn.execute(
                "SELECT doctor_id, amount_cents, currency FROM doctor_fees WHERE doctor_id=?",
                (doctor_id,),
            ).fetchone()
        )


@contextmanager
def reading() -> Iterator[SchedulingStore]:
    """Store over a fresh connection for read-only work."""

    conn = db()
    try:
        yield SchedulingStore(conn)
    finally:
        conn.close()


@contextmanager
def writing() -> Iterator[SchedulingStore]:
    """Store inside a ``BEGIN IMMEDIATE`` transaction without the admission lock."""

    conn = db()
    try:
        try:
            conn.execute("BEGIN IMMEDIATE")
        except sqlite3.OperationalError as exc:
            raise StorageUnavailable("database is busy") from exc
        try:
            yield SchedulingStore(conn)
            conn.commit()
        except sqlite3.OperationalError as exc:
            conn.rollback()
            if _is_busy(exc):
                raise StorageUnavailable("database is busy") from exc
            raise
        except Exception:
            conn.rollback()
            raise
    finally:
        conn.close()


@contextmanager
def admission(doctor_id: str, day: date, *, timeout: float | None = None) -> Iterator[SchedulingStore]:
    """Exclusive write access to one doctor's day."""

    if timeout is None:
        timeout = float(current_app.config.get("BOOKING_LOCK_TIMEOUT_SECONDS", DEFAULT_LOCK_TIMEOUT_SECONDS))
    key = (doctor_id, day.isoformat())
    entry = _claim(key)
    try:
        if not entry.lock.acquire(timeout=timeout):
            current_app.logger.warning("Admission lock timeout for %s on %s", doctor_id, day.isoformat())
            raise StorageUnavailable(
                "another booking for this doctor and day is still in progress",
                doctor_id=doctor_id,
                day=day.isoformat(),
            )
        deadline = time.monotonic() + timeout
        try:
            with writing() as store:
                yield store
                if time.monotonic() > deadline:
                    raise StorageUnavailable("admission took too long and was rolled back")
        finally:
            entry.lock.release()
    finally:
        _unclaim(key, entry)
