"""SubmissionPipeline — validate, upload, persist and meter one answer.

Steps, in order; every step but the last is a hard gate:

  1. Normalize the raw answer for the question's type (``ValidationFailed``)
  2. Free-form types: consult the rate limiter (``RateLimited``)
  3. Image type: bound, re-encode and upload the file (``UploadFailed``)
  4. Persist: upsert under ``overwrite``, insert under ``append``
     (``PersistFailed``, or ``NotFound`` if the question vanished)
  5. Free-form types: record rate-limit usage

Moderation is *not* run here.  ``submit`` returns with the response
``pending``; the caller schedules the moderation gate once the
transaction has committed and the verdict arrives via the change feed.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from livepoll_db.models.enums import ModerationStatus
from livepoll_db.repository import LivePollRepository

from livepoll_core.errors import (
    NotFound,
    PersistFailed,
    RateLimited,
    UploadFailed,
    UploadFailureCause,
    ValidationFailed,
)
from livepoll_core.interfaces import ObjectStore
from livepoll_core.media import ImageUpload, cache_busted, object_key, prepare_image
from livepoll_core.models.question import (
    BaseQuestion,
    ImageQuestion,
    MultiChoiceQuestion,
    RatingQuestion,
    SingleChoiceQuestion,
    TextQuestion,
    question_from_row,
)
from livepoll_core.models.records import ResponseInfo
from livepoll_core.rate_limit import RateLimiter

logger = logging.getLogger(__name__)

# Session ids end up in object-store keys, so keep them path-safe
_SESSION_ID_RE = re.compile(r"^[A-Za-z0-9_.-]{1,128}$")

# PostgreSQL SQLSTATE for foreign_key_violation
_FK_VIOLATION = "23503"


class SubmissionOutcome(BaseModel):
    response: ResponseInfo
    # False when an overwrite replaced an existing row
    created: bool
    # True when the caller must schedule the moderation gate after commit
    needs_moderation: bool


def validate_session_id(session_id: Any) -> str:
    if not isinstance(session_id, str) or not _SESSION_ID_RE.match(session_id):
        raise ValidationFailed(
            f"Invalid session id: {session_id!r}",
            user_message="Your browser session is invalid. Please reload the page.",
        )
    return session_id


def _decode_selection(raw: Any) -> Any:
    """Multi-choice answers may arrive as a list or a JSON-encoded list."""
    if isinstance(raw, str):
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            return [raw]
    return raw


def normalize_answer(question: BaseQuestion, raw: Any) -> str | None:
    """Validate ``raw`` against the question type and return the stored form.

    Returns ``None`` for image questions, whose stored answer is the
    object-store URL produced later in the pipeline.

    Raises:
        ValidationFailed: with a user-facing message.
    """
    if isinstance(question, SingleChoiceQuestion):
        if not isinstance(raw, str) or raw not in question.options:
            raise ValidationFailed(
                f"Answer {raw!r} is not an option of question {question.id}",
                user_message="Please choose one of the options.",
            )
        return raw

    if isinstance(question, MultiChoiceQuestion):
        selected = _decode_selection(raw)
        if not isinstance(selected, list) or not selected:
            raise ValidationFailed(
                f"Multi-choice answer must be a non-empty list, got {raw!r}",
                user_message="Please choose at least one option.",
            )
        unknown = [s for s in selected if not isinstance(s, str) or s not in question.options]
        if unknown:
            raise ValidationFailed(
                f"Unknown options {unknown!r} for question {question.id}",
                user_message="Please choose from the listed options.",
            )
        # Stored in option order, each option once
        chosen = set(selected)
        return json.dumps([o for o in question.options if o in chosen], ensure_ascii=False)

    if isinstance(question, RatingQuestion):
        value = raw
        if isinstance(raw, str) and raw.strip().isdigit():
            value = int(raw.strip())
        # bool is a subclass of int in Python, so reject it explicitly
        if isinstance(value, bool) or not isinstance(value, int) or not 1 <= value <= 5:
            raise ValidationFailed(
                f"Rating must be an integer 1..5, got {raw!r}",
                user_message="Please choose a rating from 1 to 5.",
            )
        return str(value)

    if isinstance(question, TextQuestion):
        if not isinstance(raw, str) or not raw.strip():
            raise ValidationFailed(
                "Text answer is blank",
                user_message="Please enter your answer.",
            )
        return raw.strip()

    if isinstance(question, ImageQuestion):
        return None

    raise ValidationFailed(f"Unsupported question type: {question.question_type}")


class SubmissionPipeline:
    """Turns one participant answer into a persisted response.

    Stateless: a single instance serves all requests.  The caller owns
    the transaction and must ``await db.commit()`` after ``submit``.

    Args:
        store: object store for image answers; image submissions fail
            with ``UploadFailed`` when it is not configured.
        rate_limiter: defaults to the 3-per-60s limiter.
    """

    def __init__(
        self,
        *,
        store: ObjectStore | None = None,
        rate_limiter: RateLimiter | None = None,
    ) -> None:
        self._store = store
        self._limiter = rate_limiter or RateLimiter()
        self._repo = LivePollRepository()

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    async def load_question(
        self, db: AsyncSession, event_id: uuid.UUID, question_id: uuid.UUID
    ) -> BaseQuestion:
        """Resolve an answerable question of an active event.

        Raises:
            NotFound: unknown/inactive event or question, or a question
                of another event.
        """
        event = await self._repo.get_event(db, event_id)
        if event is None or not event.is_active:
            raise NotFound(f"Event {event_id} not found")
        row = await self._repo.get_question(db, question_id)
        if row is None or row.event_id != event_id or not row.is_active:
            raise NotFound(f"Question {question_id} not found in event {event_id}")
        return question_from_row(row)

    # ------------------------------------------------------------------
    # Submit
    # ------------------------------------------------------------------

    async def submit(
        self,
        db: AsyncSession,
        question: BaseQuestion,
        *,
        session_id: str,
        answer: Any = None,
        agreed_at: datetime | None = None,
        image: ImageUpload | None = None,
    ) -> SubmissionOutcome:
        """Run the pipeline for one answer.

        ``agreed_at`` is the participant's content-notice agreement time;
        it is stored for free-form types only.
        """
        validate_session_id(session_id)
        stored = normalize_answer(question, answer)
        if isinstance(question, ImageQuestion) and image is None:
            raise ValidationFailed(
                "Image question submitted without a file",
                user_message="Please attach an image.",
            )

        moderated = question.requires_moderation
        if moderated:
            allowed = await self._limiter.check_allowed(
                db,
                session_id=session_id,
                event_id=question.event_id,
                question_type=question.question_type,
            )
            if not allowed:
                raise RateLimited(
                    f"Session {session_id} exceeded the submission limit",
                    retry_after=self._limiter.retry_after,
                )

        if isinstance(question, ImageQuestion):
            stored = await self._upload(question, session_id, image)

        status = ModerationStatus.PENDING if moderated else ModerationStatus.NONE
        try:
            if question.overwrites:
                row, created = await self._repo.upsert_response(
                    db,
                    question_id=question.id,
                    session_id=session_id,
                    answer=stored,
                    moderation_status=status,
                    policy_agreed_at=agreed_at if moderated else None,
                )
            else:
                row = await self._repo.insert_response(
                    db,
                    question_id=question.id,
                    session_id=session_id,
                    answer=stored,
                    moderation_status=status,
                    policy_agreed_at=agreed_at if moderated else None,
                )
                created = True

            await self._limiter.record(
                db,
                session_id=session_id,
                event_id=question.event_id,
                question_type=question.question_type,
            )
        except IntegrityError as exc:
            code = getattr(exc.orig, "sqlstate", None) or getattr(exc.orig, "pgcode", None)
            if code == _FK_VIOLATION:
                raise NotFound(f"Question {question.id} was deleted") from exc
            raise PersistFailed(f"Could not save response: {exc}") from exc
        except SQLAlchemyError as exc:
            raise PersistFailed(f"Could not save response: {exc}") from exc

        logger.info(
            "Stored response %s for question %s (%s, %s)",
            row.id,
            question.id,
            "created" if created else "overwritten",
            status.value,
        )
        return SubmissionOutcome(
            response=ResponseInfo.model_validate(row),
            created=created,
            needs_moderation=moderated,
        )

    async def _upload(
        self, question: ImageQuestion, session_id: str, image: ImageUpload
    ) -> str:
        if self._store is None:
            raise UploadFailed("No object store configured", cause=UploadFailureCause.OTHER)
        encoded = await asyncio.to_thread(prepare_image, image)
        key = object_key(question.event_id, question.id, session_id)
        written = await self._store.write(key, encoded.data, encoded.content_type)
        return cache_busted(self._store.public_url(written))
