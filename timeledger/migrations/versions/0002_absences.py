"""Add absences table

Revision ID: 0002_absences
Revises: 0001_initial
Create Date: 2026-10-20 00:00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0002_absences"
down_revision: Union[str, None] = "0001_initial"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

absence_kind = postgresql.ENUM(
    "LATE_ARRIVAL",
    "EARLY_DEPARTURE",
    "PARTIAL_ABSENCE",
    "FULL_ABSENCE",
    "MEDICAL_LEAVE",
    "PERSONAL_LEAVE",
    "DAY_OFF",
    name="absence_kind",
    create_type=False,
)

absence_status = postgresql.ENUM(
    "PENDING",
    "APPROVED",
    "REJECTED",
    "SCHEDULED",
    name="absence_status",
    create_type=False,
)


def upgrade() -> None:
    bind = op.get_bind()
    absence_kind.create(bind, checkfirst=True)
    absence_status.create(bind, checkfirst=True)

    op.create_table(
        "absences",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("day", sa.Date(), nullable=False),
        sa.Column("kind", absence_kind, nullable=False),
        sa.Column("start_time", sa.Time(), nullable=False),
        sa.Column("end_time", sa.Time(), nullable=False),
        sa.Column("duration_minutes", sa.Integer(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("comments", sa.Text(), nullable=True),
        sa.Column(
            "status",
            absence_status,
            nullable=False,
            server_default=sa.text("'PENDING'"),
        ),
        sa.Column("created_by_id", sa.Integer(), nullable=True),
        sa.Column("reviewed_by_id", sa.Integer(), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["created_by_id"], ["users.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["reviewed_by_id"], ["users.id"], ondelete="SET NULL"),
        sa.CheckConstraint("end_time > start_time", name="ck_absences_time_range"),
    )
    op.create_index("ix_absences_user_day", "absences", ["user_id", "day"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_absences_user_day", table_name="absences")
    op.drop_table("absences")

    bind = op.get_bind()
    absence_status.drop(bind, checkfirst=True)
    absence_kind.drop(bind, checkfirst=True)
