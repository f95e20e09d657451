"""Create contest tables

Revision ID: a1c4e7f2b9d0
Revises:
Create Date: 2026-01-12

Creates submissions, votes, vote_receipts and notifications. One
submission per owner, one vote per (voter, work) and one receipt per
(voter, idempotency key) are enforced by unique constraints.
"""
from __future__ import annotations

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "a1c4e7f2b9d0"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    submission_status_enum = sa.Enum(
        "pending", "approved", "rejected",
        name="submission_status",
    )

    op.create_table(
        "submissions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("owner_id", sa.String(128), nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("author_name", sa.String(120), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("demo_url", sa.String(2048), nullable=False),
        sa.Column("youtube_url", sa.String(2048), nullable=True),
        sa.Column("image_urls", sa.JSON(), nullable=False),
        sa.Column("image_url", sa.String(2048), nullable=True),
        sa.Column("status", submission_status_enum, nullable=False, index=True),
        sa.Column("review_note", sa.Text(), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reviewed_by", sa.String(128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("owner_id", name="uq_submissions_owner"),
    )
    op.create_index("ix_submissions_status_created", "submissions", ["status", "created_at"])

    op.create_table(
        "votes",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("voter_id", sa.String(128), nullable=False, index=True),
        sa.Column(
            "work_id",
            sa.String(36),
            sa.ForeignKey("submissions.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("voter_id", "work_id", name="uq_votes_voter_work"),
    )

    op.create_table(
        "vote_receipts",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("voter_id", sa.String(128), nullable=False),
        sa.Column("idempotency_key", sa.String(128), nullable=False),
        sa.Column("work_id", sa.String(36), nullable=False),
        sa.Column("is_voted", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("voter_id", "idempotency_key", name="uq_vote_receipts_voter_key"),
    )

    op.create_table(
        "notifications",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(128), nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_notifications_user_created", "notifications", ["user_id", "created_at"])


def downgrade() -> None:
    op.drop_index("ix_notifications_user_created", table_name="notifications")
    op.drop_table("notifications")
    op.drop_table("vote_receipts")
    op.drop_table("votes")
    op.drop_index("ix_submissions_status_created", table_name="submissions")
    op.drop_table("submissions")

    bind = op.get_bind()
    if bind.dialect.name == "postgresql":
        op.execute("DROP TYPE IF EXISTS submission_status")
