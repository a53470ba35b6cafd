"""create_activity_logs

Revision ID: 001_create_activity_logs
Revises:
Create Date: 2026-10-17 00:00:00.000000 UTC

Creates the append-only activity_logs table.
One row per enriched activity event (session_start, page_view, dossier_view, ...).
Read by GET /api/logs in (recorded_at DESC, seq DESC) order.
"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "001_create_activity_logs"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "activity_logs",
        sa.Column(
            "seq",
            sa.BigInteger(),
            sa.Identity(always=False),
            nullable=False,
            comment="Monotonic append sequence - tie-breaker within one recorded_at",
        ),
        sa.Column("id", sa.String(36), nullable=False, comment="Public UUID of the log record"),
        sa.Column("kind", sa.String(64), nullable=False, comment="Event kind"),
        sa.Column("uid", sa.String(128), nullable=False, server_default=""),
        sa.Column("login", sa.String(128), nullable=False, server_default=""),
        sa.Column(
            "session_id",
            sa.String(64),
            nullable=False,
            server_default="",
            comment="Client session identifier - groups events by session",
        ),
        sa.Column("payload", postgresql.JSONB(), nullable=False, comment="Kind-specific event data"),
        sa.Column("recorded_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("seq"),
        sa.UniqueConstraint("id", name="uq_activity_logs_id"),
    )
    op.create_index("ix_activity_logs_session_id", "activity_logs", ["session_id"])
    op.create_index("ix_activity_logs_recorded_at_seq", "activity_logs", ["recorded_at", "seq"])
    op.create_index("ix_activity_logs_uid_recorded_at", "activity_logs", ["uid", "recorded_at"])


def downgrade() -> None:
    op.drop_index("ix_activity_logs_uid_recorded_at", table_name="activity_logs")
    op.drop_index("ix_activity_logs_recorded_at_seq", table_name="activity_logs")
    op.drop_index("ix_activity_logs_session_id", table_name="activity_logs")
    op.drop_table("activity_logs")
