"""forecast task source schema

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "clients",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("expected_monthly_revenue", sa.Numeric(12, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("expected_monthly_revenue >= 0", name="ck_clients_expected_revenue_non_negative"),
    )

    op.create_table(
        "skills",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False, unique=True),
        sa.Column("description", sa.String(length=2000), nullable=True),
        sa.Column("fee_rate", sa.Numeric(10, 2), nullable=True),
        sa.CheckConstraint("fee_rate >= 0", name="ck_skills_fee_rate_non_negative"),
    )

    op.create_table(
        "staff",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("full_name", sa.String(length=255), nullable=False),
        sa.Column("role_title", sa.String(length=128), nullable=True),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
    )

    op.create_table(
        "recurring_tasks",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("client_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("clients.id"), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("required_skills", sa.JSON(), nullable=False),
        sa.Column("estimated_hours", sa.Numeric(10, 2), nullable=False),
        sa.Column("recurrence_type", sa.String(length=32), nullable=False),
        sa.Column("recurrence_interval", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("weekdays", sa.JSON(), nullable=True),
        sa.Column("day_of_month", sa.Integer(), nullable=True),
        sa.Column("month_of_year", sa.Integer(), nullable=True),
        sa.Column("due_date", sa.Date(), nullable=True),
        sa.Column("preferred_staff_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("staff.id"), nullable=True),
        sa.Column("is_recurring", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("estimated_hours >= 0", name="ck_recurring_tasks_hours_non_negative"),
        sa.CheckConstraint("recurrence_interval >= 1", name="ck_recurring_tasks_interval_positive"),
    )
    op.create_index("ix_recurring_tasks_client_id", "recurring_tasks", ["client_id"])
    op.create_index("ix_recurring_tasks_active", "recurring_tasks", ["is_active"])


def downgrade() -> None:
    op.drop_index("ix_recurring_tasks_active", table_name="recurring_tasks")
    op.drop_index("ix_recurring_tasks_client_id", table_name="recurring_tasks")
    op.drop_table("recurring_tasks")
    op.drop_table("staff")
    op.drop_table("skills")
    op.drop_table("clients")
