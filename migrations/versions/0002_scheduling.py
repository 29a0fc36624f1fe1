"""Weekly availability, schedule exceptions and appointments."""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "0002_scheduling"
down_revision = "0001_initial"
branch_labels = None
depends_on = None

NON_TERMINAL = "state NOT IN ('completed','cancelled','no_show')"


def upgrade() -> None:
    op.create_table(
        "doctor_availability",
        sa.Column("id", sa.Text(), primary_key=True),
        sa.Column("doctor_id", sa.Text(), nullable=False),
        sa.Column("weekday", sa.Integer(), nullable=False),
        sa.Column("start_time", sa.Text(), nullable=False),
        sa.Column("end_time", sa.Text(), nullable=False),
        sa.Column("slot_minutes", sa.Integer(), nullable=False, server_default="30"),
        sa.Column("is_active", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.Text(), server_default=sa.text("(datetime('now'))"), nullable=False),
        sa.ForeignKeyConstraint(["doctor_id"], ["doctors.id"], ondelete="CASCADE"),
        sa.CheckConstraint("weekday BETWEEN 0 AND 6", name="ck_availability_weekday"),
        sa.CheckConstraint("slot_minutes >= 5", name="ck_availability_slot"),
    )
    op.create_index("idx_availability_doctor_day", "doctor_availability", ["doctor_id", "weekday"])

    op.create_table(
        "schedule_exceptions",
        sa.Column("id", sa.Text(), primary_key=True),
        sa.Column("doctor_id", sa.Text(), nullable=False),
        sa.Column("day", sa.Text(), nullable=False),
        sa.Column("kind", sa.Text(), nullable=False),
        sa.Column("start_time", sa.Text(), nullable=True),
        sa.Column("end_time", sa.Text(), nullable=True),
        sa.Column("slot_minutes", sa.Integer(), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.Text(), server_default=sa.text("(datetime('now'))"), nullable=False),
        sa.ForeignKeyConstraint(["doctor_id"], ["doctors.id"], ondelete="CASCADE"),
        sa.CheckConstraint("kind IN ('closure','override')", name="ck_exceptions_kind"),
    )
    op.create_index("idx_exceptions_doctor_day", "schedule_exceptions", ["doctor_id", "day"])

    op.create_table(
        "appointments",
        sa.Column("id", sa.Text(), primary_key=True),
        sa.Column("doctor_id", sa.Text(), nullable=False),
        sa.Column("patient_id", sa.Text(), nullable=False),
        sa.Column("day", sa.Text(), nullable=False),
        sa.Column("start_time", sa.Text(), nullable=False),
        sa.Column("duration_minutes", sa.Integer(), nullable=False),
        sa.Column("starts_at_utc", sa.Text(), nullable=False),
        sa.Column("kind", sa.Text(), nullable=False, server_default="in_person"),
        sa.Column("state", sa.Text(), nullable=False, server_default="pending_payment"),
        sa.Column("invoice_id", sa.Text(), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("cancel_reason", sa.Text(), nullable=True),
        sa.Column("created_at", sa.Text(), server_default=sa.text("(datetime('now'))"), nullable=False),
        sa.Column("updated_at", sa.Text(), server_default=sa.text("(datetime('now'))"), nullable=False),
        sa.ForeignKeyConstraint(["doctor_id"], ["doctors.id"]),
        sa.ForeignKeyConstraint(["patient_id"], ["patients.id"]),
        sa.CheckConstraint("kind IN ('in_person','teleconsultation')", name="ck_appointments_kind"),
        sa.CheckConstraint(
            "state IN ('pending_payment','scheduled','checked_in','in_progress','completed','cancelled','no_show')",
            name="ck_appointments_state",
        ),
    )
    op.create_index("idx_appointments_doctor_day", "appointments", ["doctor_id", "day"])
    op.create_index("idx_appointments_patient", "appointments", ["patient_id"])
    op.create_index(
        "uq_appointments_active_slot",
        "appointments",
        ["doctor_id", "day", "start_time"],
        unique=True,
        sqlite_where=sa.text(NON_TERMINAL),
    )


def downgrade() -> None:
    op.drop_index("uq_appointments_active_slot", table_name="appointments")
    op.drop_index("idx_appointments_patient", table_name="appointments")
    op.drop_index("idx_appointments_doctor_day", table_name="appointments")
    op.drop_table("appointments")
    op.drop_index("idx_exceptions_doctor_day", table_name="schedule_exceptions")
    op.drop_table("schedule_exceptions")
    op.drop_index("idx_availability_doctor_day", table_name="doctor_availability")
    op.drop_table("doctor_availability")
