"""Grammar progress and persistence audit tables."""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "20261018_01_grammar_progress"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "grammar_progress",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("learner_id", sa.String(length=128), nullable=False),
        sa.Column("topic_id", sa.String(length=64), nullable=False),
        sa.Column("language", sa.String(length=32), nullable=False, server_default="french"),
        sa.Column("level", sa.String(length=8), nullable=False),
        sa.Column("current_day", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("scores", sa.JSON(), nullable=False),
        sa.Column("completed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_accessed_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.UniqueConstraint("learner_id", "topic_id", name="uq_grammar_progress_learner_topic"),
    )
    op.create_index("ix_grammar_progress_learner_completed", "grammar_progress", ["learner_id", "completed"])
    op.create_index("ix_grammar_progress_learner_level", "grammar_progress", ["learner_id", "level"])

    op.create_table(
        "persistence_audit_events",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("learner_id", sa.String(length=128), nullable=True),
        sa.Column("event_type", sa.String(length=64), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("actor", sa.String(length=128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
    )
    op.create_index(
        "ix_persistence_audit_events_learner",
        "persistence_audit_events",
        ["learner_id", "created_at"],
    )


def downgrade() -> None:
    op.drop_index("ix_persistence_audit_events_learner", table_name="persistence_audit_events")
    op.drop_table("persistence_audit_events")
    op.drop_index("ix_grammar_progress_learner_level", table_name="grammar_progress")
    op.drop_index("ix_grammar_progress_learner_completed", table_name="grammar_progress")
    op.drop_table("grammar_progress")
