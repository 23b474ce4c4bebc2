"""Initial time ledger schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19 00:00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

time_event_kind = postgresql.ENUM("CLOCK_IN", "CLOCK_OUT", name="time_event_kind", create_type=False)
time_event_location = postgresql.ENUM("OFFICE", "REMOTE", name="time_event_location", create_type=False)
time_correction_origin = postgresql.ENUM(
    "ADMIN_DIRECT",
    "USER_REQUEST",
    name="time_correction_origin",
    create_type=False,
)
time_correction_field = postgresql.ENUM(
    "TIMESTAMP",
    "KIND",
    "MULTIPLE",
    name="time_correction_field",
    create_type=False,
)
time_correction_status = postgresql.ENUM(
    "PENDING",
    "APPROVED",
    "REJECTED",
    name="time_correction_status",
    create_type=False,
)
audit_actor_type = postgresql.ENUM("ADMIN", "EMPLOYEE", "SYSTEM", name="audit_actor_type", create_type=False)

_ENUMS = (
    time_event_kind,
    time_event_location,
    time_correction_origin,
    time_correction_field,
    time_correction_status,
    audit_actor_type,
)


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.text("CURRENT_TIMESTAMP"),
    )


def _updated_at() -> sa.Column:
    return sa.Column(
        "updated_at",
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.text("CURRENT_TIMESTAMP"),
    )


def upgrade() -> None:
    bind = op.get_bind()
    for enum_type in _ENUMS:
        enum_type.create(bind, checkfirst=True)

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("full_name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("is_admin", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("expected_daily_minutes", sa.Integer(), nullable=False, server_default=sa.text("480")),
        sa.Column("expected_friday_minutes", sa.Integer(), nullable=True),
        sa.Column(
            "days_off",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
        _created_at(),
        _updated_at(),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "time_events",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("ts_utc", sa.DateTime(timezone=True), nullable=False),
        sa.Column("kind", time_event_kind, nullable=False),
        sa.Column("is_simulated", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("location", time_event_location, nullable=True),
        sa.Column("is_modified", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("last_modified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("modified_by_admin_id", sa.Integer(), nullable=True),
        sa.Column("last_correction_id", sa.Integer(), nullable=True),
        _created_at(),
        _updated_at(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["modified_by_admin_id"], ["users.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_time_events_user_id", "time_events", ["user_id"])
    op.create_index("ix_time_events_ts_utc", "time_events", ["ts_utc"])
    op.create_index("ix_time_events_user_ts_kind", "time_events", ["user_id", "ts_utc", "kind"])

    op.create_table(
        "time_corrections",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("event_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("admin_id", sa.Integer(), nullable=True),
        sa.Column("origin", time_correction_origin, nullable=False),
        sa.Column("field_changed", time_correction_field, nullable=False),
        sa.Column("previous_value", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("new_value", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("reason", sa.String(length=1000), nullable=False),
        sa.Column("status", time_correction_status, nullable=False),
        sa.Column("reviewed_by_id", sa.Integer(), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("review_note", sa.String(length=1000), nullable=True),
        sa.Column("ip_address", sa.String(length=128), nullable=True),
        sa.Column("user_agent", sa.String(length=1024), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["event_id"], ["time_events.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["admin_id"], ["users.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["reviewed_by_id"], ["users.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_time_corrections_event_id", "time_corrections", ["event_id"])
    op.create_index("ix_time_corrections_user_id", "time_corrections", ["user_id"])
    op.create_index("ix_time_corrections_status", "time_corrections", ["status"])

    op.create_table(
        "monthly_reports",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("month", sa.Integer(), nullable=False),
        sa.Column("snapshot", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("generated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("generated_by_id", sa.Integer(), nullable=True),
        sa.Column("viewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("accepted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("contested_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("contest_reason", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["generated_by_id"], ["users.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("user_id", "year", "month", name="uq_monthly_reports_user_period"),
        sa.CheckConstraint(
            "accepted_at IS NULL OR contested_at IS NULL",
            name="ck_monthly_reports_single_disposition",
        ),
        sa.CheckConstraint("month BETWEEN 1 AND 12", name="ck_monthly_reports_month"),
    )
    op.create_index("ix_monthly_reports_user_id", "monthly_reports", ["user_id"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column(
            "ts_utc",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column("actor_type", audit_actor_type, nullable=False),
        sa.Column("actor_id", sa.String(length=255), nullable=False),
        sa.Column("action", sa.String(length=255), nullable=False),
        sa.Column("entity_type", sa.String(length=255), nullable=True),
        sa.Column("entity_id", sa.String(length=255), nullable=True),
        sa.Column("ip", sa.String(length=128), nullable=True),
        sa.Column("user_agent", sa.String(length=1024), nullable=True),
        sa.Column("success", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column(
            "details",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
    )
    op.create_index("ix_audit_logs_ts_utc", "audit_logs", ["ts_utc"])


def downgrade() -> None:
    op.drop_index("ix_audit_logs_ts_utc", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_index("ix_monthly_reports_user_id", table_name="monthly_reports")
    op.drop_table("monthly_reports")
    op.drop_index("ix_time_corrections_status", table_name="time_corrections")
    op.drop_index("ix_time_corrections_user_id", table_name="time_corrections")
    op.drop_index("ix_time_corrections_event_id", table_name="time_corrections")
    op.drop_table("time_corrections")
    op.drop_index("ix_time_events_user_ts_kind", table_name="time_events")
    op.drop_index("ix_time_events_ts_utc", table_name="time_events")
    op.drop_index("ix_time_events_user_id", table_name="time_events")
    op.drop_table("time_events")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")

    bind = op.get_bind()
    for enum_type in reversed(_ENUMS):
        enum_type.drop(bind, checkfirst=True)
