"""Flask CLI commands for migrations, doctors and schedule maintenance."""

from __future__ import annotations

import click
from alembic import command
from flask import current_app
from flask.cli import AppGroup, with_appcontext

from clinic_booking.services.appointments import list_available_slots, purge_appointments
from clinic_booking.services.doctors import add_doctor, ensure_doctors
from clinic_booking.services.migrations import alembic_config
from clinic_booking.services.patients import create_patient
from clinic_booking.services.scheduling_errors import SchedulingError


def register_cli(app) -> None:
    db_group = AppGroup("db")

    @db_group.command("upgrade")
    @with_appcontext
    def upgrade() -> None:
        command.upgrade(alembic_config(current_app), "head")

    app.cli.add_command(db_group)

    @app.cli.command("seed-doctors")
    @with_appcontext
    def seed_doctors() -> None:
        added = ensure_doctors()
        click.echo(f"{added} doctor(s) added.")

    @app.cli.command("add-doctor")
    @click.argument("name")
    @click.option("--specialty", default=None)
    @with_appcontext
    def add_doctor_command(name: str, specialty: str | None) -> None:
        try:
            doctor = add_doctor(name, specialty=specialty)
        except SchedulingError as exc:
            raise click.ClickException(exc.message) from exc
        click.echo(f"Doctor '{doctor['name']}' saved as {doctor['id']}.")

    @app.cli.command("add-patient")
    @click.argument("full_name")
    @click.option("--phone", default=None)
    @with_appcontext
    def add_patient_command(full_name: str, phone: str | None) -> None:
        try:
            patient = create_patient(full_name, phone=phone)
        except SchedulingError as exc:
            raise click.ClickException(exc.message) from exc
        click.echo(f"Patient {patient['short_id']} created: {patient['id']}")

    @app.cli.command("show-slots")
    @click.option("--doctor", "doctor_id", required=True)
    @click.option("--day", required=True, help="YYYY-MM-DD")
    @with_appcontext
    def show_slots(doctor_id: str, day: str) -> None:
        try:
            slots = list_available_slots(doctor_id, day)
        except SchedulingError as exc:
            raise click.ClickException(exc.message) from exc
        for slot in slots:
            data = slot.to_dict()
            status = "free" if slot.free else data["reason"]
            click.echo(f"{data['start_time']}-{data['end_time']}  {status}")

    @app.cli.command("purge-appointments")
    @click.option("--before", required=True, help="Delete finished appointments dated before YYYY-MM-DD")
    @click.option("--dry-run", is_flag=True, default=False)
    @with_appcontext
    def purge(before: str, dry_run: bool) -> None:
        try:
            count = purge_appointments(before, dry_run=dry_run)
        except SchedulingError as exc:
            raise click.ClickException(exc.message) from exc
        verb = "Would delete" if dry_run else "Deleted"
        click.echo(f"{verb} {count} appointment(s).")
