"""Clinic booking package exposing the Flask application factory."""

from __future__ import annotations

import os
from pathlib import Path

from flask import Flask, jsonify, request
from werkzeug.exceptions import HTTPException

from .blueprints import register_blueprints
from .extensions import init_extensions
from .services.auto_migrate import auto_upgrade
from .services.bootstrap import ensure_base_tables
from .services.doctors import ensure_doctors
from .services.errors import record_exception
from .services.scheduling_errors import SchedulingError
from .cli import register_cli

APP_HOST = "127.0.0.1"
APP_PORT = 8080


def _data_root(base_dir: Path, override: Path | None = None) -> Path:
    root = override if override else base_dir / "data"
    root.mkdir(parents=True, exist_ok=True)
    (root / "logs").mkdir(parents=True, exist_ok=True)
    return root


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}") from None


def create_app() -> Flask:
    base_dir = Path(__file__).resolve().parent.parent
    db_override = os.getenv("CLINIC_DB_PATH")
    data_root = _data_root(base_dir, Path(db_override).parent if db_override else None)
    db_path = Path(db_override) if db_override else data_root / "app.db"

    app = Flask(__name__)

    secret_key = os.getenv("CLINIC_SECRET_KEY")
    if not secret_key:
        secret_key = os.urandom(32)

    doctor_list = [
        doc.strip()
        for doc in os.getenv("CLINIC_DOCTORS", "Dr. Lina,Dr. Omar").split(",")
        if doc.strip()
    ]
    if not doctor_list:
        doctor_list = ["On Call"]

    app.config.update(
        SECRET_KEY=secret_key,
        SQLALCHEMY_DATABASE_URI=f"sqlite:///{db_path}",
        SQLALCHEMY_ENGINE_OPTIONS={"connect_args": {"check_same_thread": False}},
        RATELIMIT_STORAGE_URI=os.getenv("RATELIMIT_STORAGE_URI", "memory://"),
        DATA_ROOT=str(data_root),
        CLINIC_DB=str(db_path),
        CLINIC_TIMEZONE=os.getenv("CLINIC_TIMEZONE", "UTC"),
        APPOINTMENT_DOCTORS=doctor_list,
        APPOINTMENT_SLOT_MINUTES=_env_int("APPOINTMENT_SLOT_MINUTES", 30),
        APPOINTMENT_CHECKIN_GRACE_MINUTES=_env_int("APPOINTMENT_CHECKIN_GRACE_MINUTES", 15),
        APPOINTMENT_NO_SHOW_GRACE_MINUTES=_env_int("APPOINTMENT_NO_SHOW_GRACE_MINUTES", 0),
        APPOINTMENT_PAYMENT_POLICY=os.getenv("APPOINTMENT_PAYMENT_POLICY", "pay_later"),
        APPOINTMENT_DEFAULT_FEE_CENTS=_env_int("APPOINTMENT_DEFAULT_FEE_CENTS", 50000),
        BOOKING_LEAD_MINUTES=_env_int("BOOKING_LEAD_MINUTES", 0),
        BOOKING_LOCK_TIMEOUT_SECONDS=_env_int("BOOKING_LOCK_TIMEOUT_SECONDS", 10),
        BOOKING_RATE_LIMIT=os.getenv("BOOKING_RATE_LIMIT", "30 per minute"),
        INVOICE_SERIAL_PREFIX=os.getenv("INVOICE_SERIAL_PREFIX", "APPT-INV"),
    )

    init_extensions(app)
    register_blueprints(app)
    auto_upgrade(app)
    ensure_base_tables(Path(app.config["CLINIC_DB"]))
    with app.app_context():
        ensure_doctors()
    register_cli(app)

    @app.errorhandler(SchedulingError)
    def handle_scheduling_error(exc: SchedulingError):
        if exc.http_status >= 500:
            app.logger.error("%s %s: %s", request.method, request.path, exc.message)
        return jsonify(exc.to_dict()), exc.http_status

    @app.errorhandler(Exception)
    def handle_unexpected(exc: Exception):
        if isinstance(exc, HTTPException):
            code = (exc.name or "error").lower().replace(" ", "_")
            return jsonify({"success": False, "error": code, "message": exc.description}), exc.code
        record_exception(f"{request.method} {request.path}", exc)
        return jsonify({"success": False, "error": "internal_error", "message": "Internal server error"}), 500

    return app


__all__ = ["create_app", "APP_HOST", "APP_PORT"]
