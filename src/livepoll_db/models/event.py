"""Event ORM model — one live session with its questions and display gates."""

import uuid
from datetime import date, datetime, timezone

from sqlalchemy import Boolean, Date, Integer, Text, text
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from livepoll_db.models.base import Base


class Event(Base):
    """One row per event (seminar, lecture, workshop).

    Deleting an event cascades to its questions, their responses, the
    admin state row and the rate-limit ledger.
    """

    __tablename__ = "events"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    event_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Identity from the auth provider; not a foreign key
    owner_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    # Null or 0 disables response-rate gating of charts
    expected_participants: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # --- Display gates (free-text / image content exposure) ---
    text_display_enabled: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=text("false"),
    )
    image_display_enabled: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=text("false"),
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default=text("true"),
    )
    material_url: Mapped[str | None] = mapped_column(Text, nullable=True)

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

    questions = relationship(
        "Question",
        back_populates="event",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Question.sort_order",
    )

    def __repr__(self) -> str:
        return f"<Event(id={self.id!s}, name={self.name!r}, owner={self.owner_id!r})>"
