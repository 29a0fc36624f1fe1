"""Booking-linked invoices, invoice numbering and doctor fees."""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "0003_appointment_invoices"
down_revision = "0002_scheduling"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "doctor_fees",
        sa.Column("doctor_id", sa.Text(), primary_key=True),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("currency", sa.Text(), nullable=False, server_default="INR"),
        sa.Column("updated_at", sa.Text(), server_default=sa.text("(datetime('now'))"), nullable=False),
        sa.ForeignKeyConstraint(["doctor_id"], ["doctors.id"], ondelete="CASCADE"),
        sa.CheckConstraint("amount_cents >= 0", name="ck_doctor_fees_amount"),
    )

    op.create_table(
        "invoice_sequences",
        sa.Column("month_key", sa.Text(), primary_key=True),
        sa.Column("last_number", sa.Integer(), nullable=False),
    )

    op.create_table(
        "appointment_invoices",
        sa.Column("id", sa.Text(), primary_key=True),
        sa.Column("number", sa.Text(), nullable=False, unique=True),
        sa.Column("appointment_id", sa.Text(), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("currency", sa.Text(), nullable=False, server_default="INR"),
        sa.Column("payment_status", sa.Text(), nullable=False, server_default="pending"),
        sa.Column("payment_reference", sa.Text(), nullable=True),
        sa.Column("paid_at", sa.Text(), nullable=True),
        sa.Column("created_at", sa.Text(), server_default=sa.text("(datetime('now'))"), nullable=False),
        sa.Column("updated_at", sa.Text(), server_default=sa.text("(datetime('now'))"), nullable=False),
        sa.ForeignKeyConstraint(["appointment_id"], ["appointments.id"], ondelete="CASCADE"),
        sa.CheckConstraint(
            "payment_status IN ('pending','paid_cash','paid_online','cancelled')",
            name="ck_invoices_status",
        ),
    )
    op.create_index(
        "uq_invoices_active_appointment",
        "appointment_invoices",
        ["appointment_id"],
        unique=True,
        sqlite_where=sa.text("payment_status != 'cancelled'"),
    )


def downgrade() -> None:
    op.drop_index("uq_invoices_active_appointment", table_name="appointment_invoices")
    op.drop_table("appointment_invoices")
    op.drop_table("invoice_sequences")
    op.drop_table("doctor_fees")
