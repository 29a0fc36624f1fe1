import os
import pathlib
import shutil
import sys
import uuid
from datetime import date

import pytest

root = pathlib.Path(__file__).resolve().parents[1]
if str(root) not in sys.path:
    sys.path.insert(0, str(root))

from clinic_booking import create_app
from clinic_booking.services.database import db as raw_db

# 2030-01-07 is a Monday.
MONDAY = date(2030, 1, 7)
DOCTOR = "dr-lina"


@pytest.fixture(scope="session")
def _template_db(tmp_path_factory):
    """Build a fully-migrated DB once per test session.

    Every function-scoped ``app`` fixture copies this file instead of
    running the Alembic migrations again.
    """
    db_path = tmp_path_factory.mktemp("template") / "app.db"
    saved = {key: os.environ.get(key) for key in ("CLINIC_DB_PATH", "CLINIC_SECRET_KEY", "CLINIC_DOCTORS")}
    os.environ["CLINIC_DB_PATH"] = str(db_path)
    os.environ["CLINIC_SECRET_KEY"] = "test-secret"
    os.environ["CLINIC_DOCTORS"] = "Dr. Lina,Dr. Omar"
    try:
        _app = create_app()
        with _app.app_context():
            pass
    finally:
        for key, value in saved.items():
            if value is None:
                os.environ.pop(key, None)
            else:
                os.environ[key] = value
    return db_path


@pytest.fixture
def app(tmp_path, monkeypatch, _template_db):
    db_path = tmp_path / "app.db"
    shutil.copy2(_template_db, db_path)
    monkeypatch.setenv("CLINIC_DB_PATH", str(db_path))
    monkeypatch.setenv("CLINIC_SECRET_KEY", "test-secret")
    monkeypatch.setenv("CLINIC_AUTO_MIGRATE", "0")  # Already migrated
    monkeypatch.setenv("CLINIC_DOCTORS", "Dr. Lina,Dr. Omar")
    monkeypatch.setenv("CLINIC_TIMEZONE", "UTC")
    monkeypatch.delenv("APPOINTMENT_PAYMENT_POLICY", raising=False)
    app = create_app()
    app.config.update(TESTING=True)
    yield app


@pytest.fixture
def client(app):
    return app.test_client()


def insert_patient(full_name: str = "Test Patient", short_id: str = "P000001") -> str:
    conn = raw_db()
    try:
        pid = f"patient-{uuid.uuid4()}"
        conn.execute(
            "INSERT INTO patients(id, short_id, full_name, phone, created_at) VALUES (?, ?, ?, ?, datetime('now'))",
            (pid, short_id, full_name, "0101010101"),
        )
        conn.commit()
        return pid
    finally:
        conn.close()


def insert_window(doctor_id: str, weekday: int, start: str, end: str, slot_minutes: int = 30) -> None:
    conn = raw_db()
    try:
        conn.execute(
            """
            INSERT INTO doctor_availability(id, doctor_id, weekday, start_time, end_time, slot_minutes, is_active, created_at)
            VALUES (?, ?, ?, ?, ?, ?, 1, datetime('now'))
            """,
            (str(uuid.uuid4()), doctor_id, weekday, start, end, slot_minutes),
        )
        conn.commit()
    finally:
        conn.close()


@pytest.fixture
def patient(app):
    return insert_patient()


@pytest.fixture
def monday_clinic(app):
    """Dr. Lina works Mondays 09:00-12:00 in 30 minute slots."""
    insert_window(DOCTOR, 0, "09:00", "12:00", 30)
    return DOCTOR
