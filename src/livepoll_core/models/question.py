"""Question variants — the closed set of question kinds an event can hold.

Each variant maps to one participant input widget, one validation rule and
one aggregation rule:

  Closed-form (never moderated, charted on the results view):
    - single: pick exactly one option
    - multiple: pick one or more options (answer stored as a JSON array)
    - rating: 5-point scale, answer is an integer 1..5

  Free-form (moderated and rate limited, never charted):
    - text: free text, non-blank after trimming
    - image: an uploaded photo, stored in the object store

The discriminated ``LiveQuestion`` union uses ``question_type`` as its
discriminator.  The ``question_mapper`` dict maps type strings to their
Pydantic classes; ``question_from_row`` converts an ORM row.
"""

from __future__ import annotations

import uuid
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from livepoll_core.constants import DEFAULT_RATING_LABELS, RATING_SCALE


# --- Base question type ---

class BaseQuestion(BaseModel):
    """Fields shared by all question types."""

    model_config = ConfigDict(frozen=True)

    id: uuid.UUID
    event_id: uuid.UUID
    question_text: str
    sort_order: int
    is_active: bool = True
    duplicate_policy: Literal["overwrite", "append"] = "overwrite"

    @property
    def requires_moderation(self) -> bool:
        """True for free-form types routed through moderation and rate limiting."""
        return False

    @property
    def overwrites(self) -> bool:
        return self.duplicate_policy == "overwrite"


# --- Closed-form question types ---

class SingleChoiceQuestion(BaseQuestion):
    """Pick exactly one option."""

    question_type: Literal["single"] = "single"
    options: List[str] = Field(min_length=1)


class MultiChoiceQuestion(BaseQuestion):
    """Pick one or more options; each selection is tallied independently."""

    question_type: Literal["multiple"] = "multiple"
    options: List[str] = Field(min_length=1)


class RatingQuestion(BaseQuestion):
    """5-point rating.  ``options`` optionally relabels the scale points."""

    question_type: Literal["rating"] = "rating"
    options: List[str] = Field(default_factory=list)

    def label_for(self, point: int) -> str:
        """Label of scale point ``point`` (1-based), falling back to defaults."""
        if 1 <= point <= len(self.options) and self.options[point - 1]:
            return self.options[point - 1]
        return DEFAULT_RATING_LABELS.get(point, str(point))

    @property
    def scale(self) -> tuple[int, ...]:
        return RATING_SCALE


# --- Free-form question types ---

class FreeFormQuestion(BaseQuestion):
    """Common base for content that needs moderation."""

    options: Optional[List[str]] = None

    @property
    def requires_moderation(self) -> bool:
        return True


class TextQuestion(FreeFormQuestion):
    """Open-ended text input."""

    question_type: Literal["text"] = "text"


class ImageQuestion(FreeFormQuestion):
    """Photo upload; the stored answer is the object's public URL."""

    question_type: Literal["image"] = "image"


# --- Discriminated union ---

LiveQuestion = Annotated[
    Union[
        SingleChoiceQuestion,
        MultiChoiceQuestion,
        RatingQuestion,
        TextQuestion,
        ImageQuestion,
    ],
    Field(discriminator="question_type"),
]

question_mapper: dict[str, type[BaseQuestion]] = {
    "single": SingleChoiceQuestion,
    "multiple": MultiChoiceQuestion,
    "rating": RatingQuestion,
    "text": TextQuestion,
    "image": ImageQuestion,
}

_question_adapter: TypeAdapter = TypeAdapter(LiveQuestion)


def question_from_row(row) -> BaseQuestion:
    """Build the typed variant for an ORM ``Question`` row (or any object
    with the same attributes).

    Raises:
        ValueError: on an unknown ``question_type`` or invalid options.
    """
    data = {
        "id": row.id,
        "event_id": row.event_id,
        "question_text": row.question_text,
        "question_type": str(getattr(row.question_type, "value", row.question_type)),
        "sort_order": row.sort_order,
        "is_active": row.is_active,
        "duplicate_policy": str(getattr(row.duplicate_policy, "value", row.duplicate_policy)),
    }
    if row.options is not None:
        data["options"] = list(row.options)
    return _question_adapter.validate_python(data)
