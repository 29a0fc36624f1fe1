"""Initial schema: patients, doctors and the audit log."""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def _create_index_if_not_exists(name: str, table: str, columns: str) -> None:
    op.execute(f"CREATE INDEX IF NOT EXISTS {name} ON {table}({columns})")


def upgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)
    tables = set(inspector.get_table_names())

    if "patients" not in tables:
        op.create_table(
            "patients",
            sa.Column("id", sa.Text(), primary_key=True),
            sa.Column("short_id", sa.Text(), nullable=True),
            sa.Column("full_name", sa.Text(), nullable=False),
            sa.Column("phone", sa.Text(), nullable=True),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("created_at", sa.Text(), server_default=sa.text("(datetime('now'))"), nullable=False),
        )
    _create_index_if_not_exists("idx_patients_name", "patients", "full_name")
    _create_index_if_not_exists("idx_patients_short_id", "patients", "short_id")

    if "doctors" not in tables:
        op.create_table(
            "doctors",
            sa.Column("id", sa.Text(), primary_key=True),
            sa.Column("name", sa.Text(), nullable=False),
            sa.Column("specialty", sa.Text(), nullable=True),
            sa.Column("is_active", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("created_at", sa.Text(), server_default=sa.text("(datetime('now'))"), nullable=False),
        )

    if "audit_log" not in tables:
        op.create_table(
            "audit_log",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("actor_user_id", sa.Text(), nullable=True),
            sa.Column("action", sa.Text(), nullable=False),
            sa.Column("entity", sa.Text(), nullable=True),
            sa.Column("entity_id", sa.Text(), nullable=True),
            sa.Column("ts", sa.Text(), nullable=False),
            sa.Column("result", sa.Text(), nullable=False, server_default="ok"),
            sa.Column("meta_json_redacted", sa.Text(), nullable=False, server_default="{}"),
        )
    _create_index_if_not_exists("idx_audit_entity", "audit_log", "entity_id")


def downgrade() -> None:
    op.execute("DROP INDEX IF EXISTS idx_audit_entity")
    op.drop_table("audit_log")
    op.drop_table("doctors")
    op.execute("DROP INDEX IF EXISTS idx_patients_short_id")
    op.execute("DROP INDEX IF EXISTS idx_patients_name")
    op.drop_table("patients")
