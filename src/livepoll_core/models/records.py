"""Public views of persisted records for API consumers.

These models map from the ORM rows in ``livepoll_db`` but expose only what
external callers need, so clients never see database internals such as
``dedupe_key``.
"""

import uuid
from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict

from livepoll_db.models.enums import ModerationStatus


class EventInfo(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    event_date: Optional[date] = None
    description: Optional[str] = None
    expected_participants: Optional[int] = None
    text_display_enabled: bool = False
    image_display_enabled: bool = False
    is_active: bool = True
    material_url: Optional[str] = None


class ResponseInfo(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    question_id: uuid.UUID
    session_id: str
    answer: str
    moderation_status: ModerationStatus
    moderation_categories: Optional[dict] = None
    moderation_timestamp: Optional[datetime] = None
    policy_agreed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class AdminStateInfo(BaseModel):
    """Snapshot of the shared presentation row.

    ``updated_at`` is the presenter's last heartbeat; an absent row reads
    as not presenting.
    """

    model_config = ConfigDict(from_attributes=True)

    event_id: uuid.UUID
    current_question_id: Optional[uuid.UUID] = None
    is_presenting: bool = False
    updated_at: Optional[datetime] = None
