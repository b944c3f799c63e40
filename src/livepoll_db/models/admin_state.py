"""AdminState ORM model — the shared "what is live" row for an event."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, ForeignKey, text
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID
from sqlalchemy.orm import Mapped, mapped_column

from livepoll_db.models.base import Base


class AdminState(Base):
    """At most one row per event, created on the first presentation toggle.

    ``updated_at`` doubles as the presenter's liveness heartbeat.  When
    presentation stops the live question is cleared; the row is kept.
    Concurrent admin tabs race on this row and the last writer wins.
    """

    __tablename__ = "admin_state"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    event_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("events.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    current_question_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("questions.id", ondelete="SET NULL"),
        nullable=True,
    )
    is_presenting: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=text("false"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    def __repr__(self) -> str:
        return (
            f"<AdminState(event={self.event_id!s}, presenting={self.is_presenting}, "
            f"question={self.current_question_id!s})>"
        )
