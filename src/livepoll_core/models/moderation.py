"""Data contracts of the moderation gate and its external classifier.

The classifier receives a list of ``ClassificationItem`` (text or image
URL) and answers with a ``ClassifierResult``.  ``categories`` holds the
per-category flags; ``category_scores`` the 0..1 severities when the
classifier reports them.
"""

from typing import Dict, Literal, Optional

from pydantic import BaseModel, Field


class ClassificationItem(BaseModel):
    type: Literal["text", "image_url"]
    content: str


class ClassifierResult(BaseModel):
    flagged: bool = False
    categories: Dict[str, bool] = Field(default_factory=dict)
    category_scores: Dict[str, float] = Field(default_factory=dict)


class ModerationOutcome(BaseModel):
    """What the gate decided for one response.

    ``reason`` records why: ``"classified"`` for a real verdict, or the
    fail-open cause (``"api_error_fallback"``, ``"no_result"``,
    ``"classifier_not_configured"``).  ``skipped`` is set when the
    response no longer needed review (deleted, or blocked by an admin).
    With ``reason == "superseded"`` the verdict was computed but not
    stored, because the response changed while it was being classified.
    """

    status: str
    categories: Optional[Dict[str, float | bool]] = None
    blocked_by: list[str] = Field(default_factory=list)
    reason: str = "classified"
    skipped: bool = False
