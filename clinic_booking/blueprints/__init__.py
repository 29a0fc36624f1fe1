"""Blueprint registration."""

from __future__ import annotations

from flask import Flask, request


def actor_id() -> str | None:
    """Caller identity forwarded by the front end; authentication happens upstream."""

    value = (request.headers.get("X-Actor-Id") or "").strip()
    return value or None


def register_blueprints(app: Flask) -> None:
    from .appointments.routes import bp as appointments_bp
    from .availability.routes import bp as availability_bp

    app.register_blueprint(appointments_bp)
    app.register_blueprint(availability_bp)
