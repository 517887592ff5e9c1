"""Schedule register, generated entries, audit trail and error logs.

Revision ID: 001
"""

import sqlalchemy as sa
from alembic import op

revision = "001"
down_revision = None
branch_labels = None
depends_on = None

schedule_type = sa.Enum("PREPAYMENT", "UNEARNED", name="scheduletype")
allocation_policy = sa.Enum(
    "EQUAL_MONTHLY", "DAILY_PRORATION", "DAYS_WEIGHTED", name="allocationpolicy"
)
audit_action_type = sa.Enum(
    "CREATED", "UPDATED", "GENERATED", "DOWNLOADED", name="auditactiontype"
)
error_severity = sa.Enum("INFO", "WARNING", "ERROR", "CRITICAL", name="errorseverity")


def upgrade() -> None:
    op.create_table(
        "schedules",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("entity_id", sa.String(64), nullable=False),
        sa.Column("created_by", sa.String(64), nullable=True),
        sa.Column("schedule_type", schedule_type, nullable=False),
        sa.Column("vendor", sa.String(255), nullable=False),
        sa.Column("invoice_date", sa.Date(), nullable=False),
        sa.Column("total_amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("service_start", sa.Date(), nullable=False),
        sa.Column("service_end", sa.Date(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("reference_number", sa.String(100), nullable=False),
        sa.Column("allocation_policy", allocation_policy, nullable=False,
                  server_default="EQUAL_MONTHLY"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("total_amount > 0", name="ck_schedule_total_positive"),
        sa.CheckConstraint("service_start <= service_end", name="ck_schedule_range"),
    )
    op.create_index("ix_schedules_entity_id", "schedules", ["entity_id"])
    op.create_index("ix_schedules_entity_created", "schedules", ["entity_id", "created_at"])

    op.create_table(
        "schedule_entries",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("schedule_id", sa.Integer(),
                  sa.ForeignKey("schedules.id", ondelete="CASCADE"), nullable=False),
        sa.Column("period", sa.Date(), nullable=False),
        sa.Column("amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("cumulative", sa.Numeric(14, 2), nullable=False),
        sa.Column("remaining", sa.Numeric(14, 2), nullable=False),
    )
    op.create_index("ix_schedule_entries_schedule_id", "schedule_entries", ["schedule_id"])

    op.create_table(
        "schedule_audit",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("schedule_id", sa.Integer(),
                  sa.ForeignKey("schedules.id", ondelete="CASCADE"), nullable=False),
        sa.Column("entity_id", sa.String(64), nullable=False),
        sa.Column("action", sa.String(100), nullable=False),
        sa.Column("action_type", audit_action_type, nullable=False),
        sa.Column("details", sa.Text(), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=True),
        sa.Column("user_name", sa.String(200), nullable=True),
        sa.Column("user_email", sa.String(200), nullable=True),
        sa.Column("old_values", sa.JSON(), nullable=True),
        sa.Column("new_values", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_schedule_audit_schedule_id", "schedule_audit", ["schedule_id"])
    op.create_index("ix_schedule_audit_created_at", "schedule_audit", ["created_at"])

    op.create_table(
        "error_logs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("severity", error_severity, nullable=False, server_default="ERROR"),
        sa.Column("error_type", sa.String(200), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("traceback", sa.Text(), nullable=True),
        sa.Column("module", sa.String(300), nullable=True),
        sa.Column("function_name", sa.String(200), nullable=True),
        sa.Column("line_number", sa.Integer(), nullable=True),
        sa.Column("request_method", sa.String(10), nullable=True),
        sa.Column("request_path", sa.String(500), nullable=True),
        sa.Column("status_code", sa.Integer(), nullable=True),
        sa.Column("response_time_ms", sa.Float(), nullable=True),
        sa.Column("user_id", sa.String(64), nullable=True),
        sa.Column("entity_id", sa.String(64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(),
                  nullable=False),
    )
    op.create_index("ix_error_logs_created_at", "error_logs", ["created_at"])


def downgrade() -> None:
    op.drop_table("error_logs")
    op.drop_table("schedule_audit")
    op.drop_table("schedule_entries")
    op.drop_table("schedules")
    for enum_type in (error_severity, audit_action_type, allocation_policy, schedule_type):
        enum_type.drop(op.get_bind(), checkfirst=True)
