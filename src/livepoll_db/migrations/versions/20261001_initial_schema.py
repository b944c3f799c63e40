"""Initial schema: events, questions, responses, admin_state, usage, accounts.

Revision ID: 20261001_initial
Revises:
Create Date: 2026-10-01
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, TIMESTAMP, UUID

# revision identifiers, used by Alembic.
revision = "20261001_initial"
down_revision = None
branch_labels = None
depends_on = None


def _timestamp(name: str, nullable: bool = False) -> sa.Column:
    return sa.Column(
        name,
        TIMESTAMP(timezone=True),
        nullable=nullable,
        server_default=None if nullable else sa.text("now()"),
    )


def upgrade() -> None:
    op.create_table(
        "events",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("event_date", sa.Date(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("owner_id", sa.Text(), nullable=False),
        sa.Column("expected_participants", sa.Integer(), nullable=True),
        sa.Column("text_display_enabled", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("image_display_enabled", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("material_url", sa.Text(), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
    )
    op.create_index("ix_events_owner_id", "events", ["owner_id"])

    op.create_table(
        "questions",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "event_id", UUID(as_uuid=True),
            sa.ForeignKey("events.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("question_text", sa.Text(), nullable=False),
        sa.Column("question_type", sa.String(20), nullable=False),
        sa.Column("options", JSONB(), nullable=True),
        sa.Column("sort_order", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("duplicate_policy", sa.String(20), nullable=False, server_default=sa.text("'overwrite'")),
        _timestamp("created_at"),
        sa.UniqueConstraint("event_id", "sort_order", name="uq_question_sort_order"),
    )
    op.create_index("ix_questions_event_id", "questions", ["event_id"])

    op.create_table(
        "responses",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "question_id", UUID(as_uuid=True),
            sa.ForeignKey("questions.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("session_id", sa.Text(), nullable=False),
        sa.Column("answer", sa.Text(), nullable=False),
        sa.Column("dedupe_key", sa.Text(), nullable=True),
        sa.Column("moderation_status", sa.String(20), nullable=False, server_default=sa.text("'none'")),
        sa.Column("moderation_categories", JSONB(), nullable=True),
        _timestamp("moderation_timestamp", nullable=True),
        _timestamp("policy_agreed_at", nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
    )
    op.create_index("ix_responses_question_session", "responses", ["question_id", "session_id"])
    # NULLs are distinct, so append-policy rows never collide
    op.create_index("uq_responses_dedupe_key", "responses", ["dedupe_key"], unique=True)
    op.create_index(
        "ix_responses_pending",
        "responses",
        ["moderation_status"],
        postgresql_where=sa.text("moderation_status = 'pending'"),
    )

    op.create_table(
        "admin_state",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "event_id", UUID(as_uuid=True),
            sa.ForeignKey("events.id", ondelete="CASCADE"), nullable=False, unique=True,
        ),
        sa.Column(
            "current_question_id", UUID(as_uuid=True),
            sa.ForeignKey("questions.id", ondelete="SET NULL"), nullable=True,
        ),
        sa.Column("is_presenting", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        _timestamp("updated_at"),
    )

    op.create_table(
        "submission_usage",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("session_id", sa.Text(), nullable=False),
        sa.Column(
            "event_id", UUID(as_uuid=True),
            sa.ForeignKey("events.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("question_type", sa.String(20), nullable=False),
        _timestamp("created_at"),
    )
    op.create_index("ix_usage_window", "submission_usage", ["session_id", "event_id", "created_at"])

    op.create_table(
        "email_verification_codes",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("email", sa.Text(), nullable=False),
        sa.Column("code_hash", sa.String(64), nullable=False),
        sa.Column("purpose", sa.String(32), nullable=False),
        _timestamp("expires_at"),
        _timestamp("used_at", nullable=True),
        _timestamp("created_at"),
    )
    op.create_index("ix_verification_email", "email_verification_codes", ["email", "purpose"])

    op.create_table(
        "account_deletion_tokens",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("owner_id", sa.Text(), nullable=False),
        sa.Column("token_hash", sa.String(64), nullable=False, unique=True),
        _timestamp("expires_at"),
        sa.Column("used", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        _timestamp("created_at"),
    )
    op.create_index("ix_account_deletion_tokens_owner_id", "account_deletion_tokens", ["owner_id"])


def downgrade() -> None:
    op.drop_table("account_deletion_tokens")
    op.drop_table("email_verification_codes")
    op.drop_table("submission_usage")
    op.drop_table("admin_state")
    op.drop_table("responses")
    op.drop_table("questions")
    op.drop_table("events")
