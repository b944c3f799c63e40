"""Question ORM model."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, ForeignKey, Integer, String, Text, UniqueConstraint, text
from sqlalchemy.dialects.postgresql import JSONB, TIMESTAMP, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from livepoll_db.models.base import Base
from livepoll_db.models.enums import DuplicatePolicy


class Question(Base):
    """One question of an event.

    ``sort_order`` defines presentation order and is unique per event (gaps
    are allowed).  Only active questions are shown to participants and can
    be presented.
    """

    __tablename__ = "questions"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    event_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("events.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    question_text: Mapped[str] = mapped_column(Text, nullable=False)
    # One of QuestionType values
    question_type: Mapped[str] = mapped_column(String(20), nullable=False)
    # Ordered option labels; null for text / image
    options: Mapped[list | None] = mapped_column(JSONB, nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False)
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default=text("true"),
    )
    duplicate_policy: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=DuplicatePolicy.OVERWRITE,
        server_default=text("'overwrite'"),
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    event = relationship("Event", back_populates="questions")

    __table_args__ = (
        UniqueConstraint("event_id", "sort_order", name="uq_question_sort_order"),
    )

    def __repr__(self) -> str:
        return (
            f"<Question(id={self.id!s}, type={self.question_type!r}, "
            f"order={self.sort_order}, active={self.is_active})>"
        )
