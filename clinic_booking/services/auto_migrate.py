"""Automatically run Alembic migrations when the app starts."""

from __future__ import annotations

import os

from alembic.util import CommandError
from flask import Flask
from sqlalchemy.exc import SQLAlchemyError

from clinic_booking.services.migrations import migrations_available, run_migrations


def auto_upgrade(app: Flask) -> None:
    """Run `alembic upgrade head` automatically if enabled."""

    if os.getenv("CLINIC_AUTO_MIGRATE", "1") != "1":
        return
    if not migrations_available(app):
        return
    try:
        run_migrations(app)
    except (CommandError, SQLAlchemyError) as exc:
        app.logger.warning("Auto migration skipped: %s", exc)
