"""Display payloads — what the results view renders for one question.

``compute_display`` returns exactly one of four payloads, dispatched on
``kind``:

  - chart: closed-form question with enough respondents; per-option tallies
  - suppressed: closed-form question below the disclosure threshold; a
    placeholder notice only, no numbers
  - content: free-form question with its display gate on; non-blocked items
  - display_off: free-form question with its display gate off; a generic
    notice only

Free-form payloads always carry a ``ModerationSummary`` for the admin,
independent of the display gate.
"""

import uuid
from datetime import datetime
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field


class OptionTally(BaseModel):
    """One bucket of a chart."""

    key: str
    label: str
    count: int
    # 0..100, rounded to one decimal
    percentage: float


class ModerationSummary(BaseModel):
    blocked_count: int = 0
    pending_count: int = 0
    # Highest category score across every response of the question
    max_score: Optional[float] = None


class ContentItem(BaseModel):
    response_id: uuid.UUID
    answer: str
    moderation_status: str
    created_at: Optional[datetime] = None


class ChartPayload(BaseModel):
    kind: Literal["chart"] = "chart"
    question_id: uuid.UUID
    question_type: str
    unique_respondents: int
    total_responses: int
    # None when response-rate gating is disabled
    response_rate: Optional[float] = None
    tallies: List[OptionTally]


class SuppressedPayload(BaseModel):
    kind: Literal["suppressed"] = "suppressed"
    question_id: uuid.UUID
    question_type: str
    threshold: float
    notice: str


class ContentPayload(BaseModel):
    kind: Literal["content"] = "content"
    question_id: uuid.UUID
    question_type: str
    unique_respondents: int
    items: List[ContentItem]
    moderation: ModerationSummary


class DisplayOffPayload(BaseModel):
    kind: Literal["display_off"] = "display_off"
    question_id: uuid.UUID
    question_type: str
    notice: str
    moderation: ModerationSummary


DisplayPayload = Annotated[
    Union[ChartPayload, SuppressedPayload, ContentPayload, DisplayOffPayload],
    Field(discriminator="kind"),
]


class EventSummary(BaseModel):
    """Event-wide participation indicator (results sidebar)."""

    event_id: uuid.UUID
    expected_participants: Optional[int] = None
    unique_respondents: int
    response_rate: Optional[float] = None
    # "low" / "high" relative to the disclosure threshold; None when ungated
    band: Optional[Literal["low", "high"]] = None
    threshold: float
