"""Admin controls over what participant content is exposed.

  - Display gates: per-event text / image switches.  Turning a gate on
    requires explicit consent in the same call, every time it goes from
    off to on; turning it off needs nothing.
  - Emergency stop: forces both gates off unconditionally.
  - Manual block: marks one response blocked, overriding the classifier.
  - Clearing responses of a question or of a whole event.
"""

from __future__ import annotations

import enum
import logging
import uuid

from sqlalchemy.ext.asyncio import AsyncSession

from livepoll_db.models.enums import ModerationStatus
from livepoll_db.repository import LivePollRepository

from livepoll_core.errors import ConsentRequired, NotFound
from livepoll_core.models.records import EventInfo, ResponseInfo

logger = logging.getLogger(__name__)


class DisplayGate(str, enum.Enum):
    TEXT = "text"
    IMAGE = "image"


# Shown in the consent interstitial before a gate turns on
CONSENT_NOTICES: dict[DisplayGate, str] = {
    DisplayGate.TEXT: (
        "Free-text answers will be shown on screen. Automated moderation can "
        "miss harmful content; keep an eye on the results and block anything "
        "inappropriate."
    ),
    DisplayGate.IMAGE: (
        "Uploaded images will be shown on screen. Automated moderation can "
        "miss harmful images; keep an eye on the results and block anything "
        "inappropriate."
    ),
}


class DisplayControlService:
    """Stateless; the caller commits."""

    def __init__(self) -> None:
        self._repo = LivePollRepository()

    async def set_gate(
        self,
        db: AsyncSession,
        event_id: uuid.UUID,
        gate: DisplayGate,
        enabled: bool,
        *,
        consent: bool = False,
    ) -> EventInfo:
        """Switch one display gate.

        Raises:
            ConsentRequired: turning a gate on without ``consent``.
            NotFound: unknown event.
        """
        event = await self._get_event(db, event_id)
        gate = DisplayGate(gate)
        field = "text_display_enabled" if gate == DisplayGate.TEXT else "image_display_enabled"
        current = getattr(event, field)

        if enabled == current:
            return EventInfo.model_validate(event)
        if enabled and not consent:
            raise ConsentRequired(f"Turning on the {gate.value} display gate requires consent")

        if gate == DisplayGate.TEXT:
            await self._repo.update_display_gates(db, event, text_enabled=enabled)
        else:
            await self._repo.update_display_gates(db, event, image_enabled=enabled)
        logger.info("Event %s: %s display %s", event_id, gate.value, "on" if enabled else "off")
        return EventInfo.model_validate(event)

    async def emergency_stop(self, db: AsyncSession, event_id: uuid.UUID) -> EventInfo:
        """Force both gates off, whatever their state."""
        event = await self._get_event(db, event_id)
        await self._repo.update_display_gates(db, event, text_enabled=False, image_enabled=False)
        logger.warning("Event %s: emergency stop, all content display off", event_id)
        return EventInfo.model_validate(event)

    async def block_response(
        self, db: AsyncSession, event_id: uuid.UUID, response_id: uuid.UUID
    ) -> ResponseInfo:
        """Manually block one response of the event.  Stored scores are kept."""
        response = await self._repo.get_response(db, response_id)
        if response is None:
            raise NotFound(f"Response {response_id} not found")
        question = await self._repo.get_question(db, response.question_id)
        if question is None or question.event_id != event_id:
            raise NotFound(f"Response {response_id} not found in event {event_id}")
        await self._repo.set_moderation(
            db, response, status=ModerationStatus.BLOCKED, keep_categories=True,
        )
        logger.info("Event %s: response %s blocked manually", event_id, response_id)
        return ResponseInfo.model_validate(response)

    async def clear_question_responses(
        self, db: AsyncSession, event_id: uuid.UUID, question_id: uuid.UUID
    ) -> int:
        await self._get_event(db, event_id)
        question = await self._repo.get_question(db, question_id)
        if question is None or question.event_id != event_id:
            raise NotFound(f"Question {question_id} not found in event {event_id}")
        count = await self._repo.delete_responses_for_question(db, question_id)
        logger.info("Event %s: cleared %d responses of question %s", event_id, count, question_id)
        return count

    async def clear_event_responses(self, db: AsyncSession, event_id: uuid.UUID) -> int:
        await self._get_event(db, event_id)
        count = await self._repo.delete_responses_for_event(db, event_id)
        logger.info("Event %s: cleared %d responses", event_id, count)
        return count

    async def _get_event(self, db: AsyncSession, event_id: uuid.UUID):
        event = await self._repo.get_event(db, event_id)
        if event is None:
            raise NotFound(f"Event {event_id} not found")
        return event
