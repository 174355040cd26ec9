"""Add the reminder job queue with the active-job uniqueness guard."""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "0002_reminder_jobs"
down_revision = "0001_initial"
branch_labels = None
depends_on = None

ACTIVE_JOB_PREDICATE = "status != 'cancelled'"


def upgrade() -> None:
    op.create_table(
        "reminder_jobs",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("event_id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("tier_id", sa.String(length=16), nullable=False),
        sa.Column("fire_at", sa.DateTime(), nullable=False),
        sa.Column("dedup_key", sa.String(length=64), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("notification_type", sa.String(length=32), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("cancel_reason", sa.String(length=32), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("status_changed_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_reminder_jobs_dedup_key", "reminder_jobs", ["dedup_key"])
    op.create_index(
        "ix_reminder_jobs_status_fire_at", "reminder_jobs", ["status", "fire_at"]
    )
    op.create_index(
        "uq_reminder_jobs_active",
        "reminder_jobs",
        ["event_id", "user_id", "tier_id"],
        unique=True,
        sqlite_where=sa.text(ACTIVE_JOB_PREDICATE),
        postgresql_where=sa.text(ACTIVE_JOB_PREDICATE),
    )


def downgrade() -> None:
    op.drop_index("uq_reminder_jobs_active", table_name="reminder_jobs")
    op.drop_index("ix_reminder_jobs_status_fire_at", table_name="reminder_jobs")
    op.drop_index("ix_reminder_jobs_dedup_key", table_name="reminder_jobs")
    op.drop_table("reminder_jobs")
