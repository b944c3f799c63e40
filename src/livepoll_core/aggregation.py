"""Aggregation and display gating for the results view.

``compute_display(question, responses, event)`` is deterministic: the
same inputs always give the same payload.  Rules:

  - unique respondents = distinct session ids among the responses
  - response rate = unique / expected participants, only when the event
    expects a positive number of participants (otherwise ungated)
  - closed-form questions chart only when the rate is strictly above the
    disclosure threshold (30%); at or below it only a notice is shown
  - free-form questions never chart; blocked responses are dropped and
    the event's text/image display gate decides whether content is shown
    at all.  The moderation summary is computed regardless of the gate.

``responses`` may be ORM rows or ``ResponseInfo`` models; only
``id``, ``session_id``, ``answer``, ``moderation_status``,
``moderation_categories`` and ``created_at`` are read.
"""

from __future__ import annotations

import json
import uuid
from typing import Any, Iterable, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from livepoll_db.models.enums import ModerationStatus
from livepoll_db.repository import LivePollRepository

from livepoll_core.constants import DISCLOSURE_THRESHOLD, RATE_BAND_HIGH, RATE_BAND_LOW
from livepoll_core.errors import NotFound
from livepoll_core.models.display import (
    ChartPayload,
    ContentItem,
    ContentPayload,
    DisplayOffPayload,
    EventSummary,
    ModerationSummary,
    OptionTally,
    SuppressedPayload,
)
from livepoll_core.models.question import (
    BaseQuestion,
    ImageQuestion,
    MultiChoiceQuestion,
    RatingQuestion,
    SingleChoiceQuestion,
    TextQuestion,
    question_from_row,
)

SUPPRESSED_NOTICE = "Results will appear once enough participants have answered."
DISPLAY_OFF_NOTICE = "Display of participant content is turned off."


def _status(response: Any) -> str:
    status = response.moderation_status
    return getattr(status, "value", status)


def unique_respondents(responses: Iterable[Any]) -> int:
    """Distinct session ids; append-policy repeats count once."""
    return len({r.session_id for r in responses})


def response_rate(unique: int, expected: int | None) -> float | None:
    """``unique / expected``, or None when gating is disabled."""
    if not expected or expected <= 0:
        return None
    return unique / expected


def is_disclosed(rate: float | None, threshold: float = DISCLOSURE_THRESHOLD) -> bool:
    """Charts are shown when ungated or when the rate is *above* threshold."""
    return rate is None or rate > threshold


def _percentage(count: int, total: int) -> float:
    return round(count / max(total, 1) * 100, 1)


def _selected_options(answer: str) -> list:
    """Decode a multi-choice payload; a non-JSON answer is one selection."""
    try:
        decoded = json.loads(answer)
    except (TypeError, json.JSONDecodeError):
        return [answer]
    return decoded if isinstance(decoded, list) else [decoded]


def tally(question: BaseQuestion, responses: Sequence[Any]) -> list[OptionTally]:
    """Per-option counts for a closed-form question.

    Percentages use the number of responses as denominator, so
    multi-choice percentages may sum past 100.  Answers outside the
    option domain are ignored.
    """
    total = len(responses)

    if isinstance(question, RatingQuestion):
        counts = {point: 0 for point in question.scale}
        for r in responses:
            try:
                point = int(r.answer)
            except (TypeError, ValueError):
                continue
            if point in counts:
                counts[point] += 1
        return [
            OptionTally(
                key=str(point),
                label=question.label_for(point),
                count=count,
                percentage=_percentage(count, total),
            )
            for point, count in counts.items()
        ]

    if isinstance(question, (SingleChoiceQuestion, MultiChoiceQuestion)):
        counts = {option: 0 for option in question.options}
        for r in responses:
            if isinstance(question, MultiChoiceQuestion):
                selected = set(_selected_options(r.answer))
            else:
                selected = {r.answer}
            for option in selected:
                if option in counts:
                    counts[option] += 1
        return [
            OptionTally(key=option, label=option, count=count, percentage=_percentage(count, total))
            for option, count in counts.items()
        ]

    raise ValueError(f"Question type {question.question_type} is not charted")


def max_category_score(categories: dict | None) -> float | None:
    """Highest numeric score in a stored category map.

    Flag maps (booleans) and fail-open markers carry no score.
    """
    if not categories:
        return None
    # bool is a subclass of int in Python, so reject it explicitly
    scores = [
        float(v) for v in categories.values()
        if isinstance(v, (int, float)) and not isinstance(v, bool)
    ]
    return max(scores) if scores else None


def moderation_summary(responses: Iterable[Any]) -> ModerationSummary:
    blocked = pending = 0
    best: float | None = None
    for r in responses:
        status = _status(r)
        if status == ModerationStatus.BLOCKED.value:
            blocked += 1
        elif status == ModerationStatus.PENDING.value:
            pending += 1
        score = max_category_score(r.moderation_categories)
        if score is not None and (best is None or score > best):
            best = score
    return ModerationSummary(blocked_count=blocked, pending_count=pending, max_score=best)


def _gate_enabled(question: BaseQuestion, event: Any) -> bool:
    if isinstance(question, ImageQuestion):
        return bool(event.image_display_enabled)
    return bool(event.text_display_enabled)


def compute_display(
    question: BaseQuestion,
    responses: Sequence[Any],
    event: Any,
    *,
    threshold: float = DISCLOSURE_THRESHOLD,
):
    """Build the results payload of one question.

    Args:
        question: the typed question.
        responses: every response row of the question.
        event: anything with ``expected_participants``,
            ``text_display_enabled`` and ``image_display_enabled``.
    """
    if isinstance(question, (TextQuestion, ImageQuestion)):
        moderation = moderation_summary(responses)
        if not _gate_enabled(question, event):
            return DisplayOffPayload(
                question_id=question.id,
                question_type=question.question_type,
                notice=DISPLAY_OFF_NOTICE,
                moderation=moderation,
            )
        visible = [r for r in responses if _status(r) != ModerationStatus.BLOCKED.value]
        return ContentPayload(
            question_id=question.id,
            question_type=question.question_type,
            unique_respondents=unique_respondents(visible),
            items=[
                ContentItem(
                    response_id=r.id,
                    answer=r.answer,
                    moderation_status=_status(r),
                    created_at=r.created_at,
                )
                for r in visible
            ],
            moderation=moderation,
        )

    unique = unique_respondents(responses)
    rate = response_rate(unique, event.expected_participants)
    if not is_disclosed(rate, threshold):
        return SuppressedPayload(
            question_id=question.id,
            question_type=question.question_type,
            threshold=threshold,
            notice=SUPPRESSED_NOTICE,
        )
    return ChartPayload(
        question_id=question.id,
        question_type=question.question_type,
        unique_respondents=unique,
        total_responses=len(responses),
        response_rate=rate,
        tallies=tally(question, responses),
    )


def compute_event_summary(
    event: Any,
    responses: Iterable[Any],
    *,
    threshold: float = DISCLOSURE_THRESHOLD,
) -> EventSummary:
    """Event-wide respondents and the low/high participation band."""
    unique = unique_respondents(responses)
    rate = response_rate(unique, event.expected_participants)
    band = None
    if rate is not None:
        band = RATE_BAND_HIGH if rate > threshold else RATE_BAND_LOW
    return EventSummary(
        event_id=event.id,
        expected_participants=event.expected_participants,
        unique_respondents=unique,
        response_rate=rate,
        band=band,
        threshold=threshold,
    )


class ResultsService:
    """Loads rows and runs the aggregation for the results endpoints."""

    def __init__(self, *, threshold: float = DISCLOSURE_THRESHOLD) -> None:
        self._threshold = threshold
        self._repo = LivePollRepository()

    async def display(self, db: AsyncSession, event_id: uuid.UUID, question_id: uuid.UUID):
        event = await self._repo.get_event(db, event_id)
        if event is None:
            raise NotFound(f"Event {event_id} not found")
        row = await self._repo.get_question(db, question_id)
        if row is None or row.event_id != event_id:
            raise NotFound(f"Question {question_id} not found in event {event_id}")
        responses = await self._repo.list_responses_for_question(db, question_id)
        return compute_display(
            question_from_row(row), responses, event, threshold=self._threshold,
        )

    async def summary(self, db: AsyncSession, event_id: uuid.UUID) -> EventSummary:
        event = await self._repo.get_event(db, event_id)
        if event is None:
            raise NotFound(f"Event {event_id} not found")
        responses = await self._repo.list_responses_for_event(db, event_id)
        return compute_event_summary(event, responses, threshold=self._threshold)
