"""Response ORM model — one participant answer to one question."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import ForeignKey, Index, String, Text, text
from sqlalchemy.dialects.postgresql import JSONB, TIMESTAMP, UUID
from sqlalchemy.orm import Mapped, mapped_column

from livepoll_db.models.base import Base
from livepoll_db.models.enums import ModerationStatus


class Response(Base):
    """One row per submitted answer.

    Under the ``overwrite`` duplicate policy a (question, session) pair owns
    at most one row.  The invariant is enforced by ``dedupe_key``: it holds
    ``"{question_id}:{session_id}"`` for overwrite rows and stays NULL for
    append rows, so the unique index only bites where it should and the
    repository can upsert with ``ON CONFLICT``.
    """

    __tablename__ = "responses"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    question_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("questions.id", ondelete="CASCADE"),
        nullable=False,
    )
    # Opaque per-browser identifier, not an authenticated identity
    session_id: Mapped[str] = mapped_column(Text, nullable=False)
    # Scalar string, JSON array for multi-choice, or an object-store URL
    answer: Mapped[str] = mapped_column(Text, nullable=False)
    dedupe_key: Mapped[str | None] = mapped_column(Text, nullable=True)

    # --- Moderation ---
    moderation_status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=ModerationStatus.NONE,
        server_default=text("'none'"),
    )
    # Classifier category -> severity score (0..1), stored verbatim
    moderation_categories: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    moderation_timestamp: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    policy_agreed_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        Index("ix_responses_question_session", "question_id", "session_id"),
        Index("uq_responses_dedupe_key", "dedupe_key", unique=True),
        # Moderation queue lookups
        Index(
            "ix_responses_pending",
            "moderation_status",
            postgresql_where=text("moderation_status = 'pending'"),
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<Response(id={self.id!s}, question={self.question_id!s}, "
            f"session={self.session_id!r}, moderation={self.moderation_status!r})>"
        )
