"""ModerationGate — classify free-form responses and decide approve/block.

The gate runs after the submission has committed (fire-and-forget from the
submitter's point of view).  It re-reads the response, sends its content
to the external classifier, and records the verdict plus the category map
on the row; the admin view learns about it through the change feed.
The verdict is written only while the row is still ``pending`` with the
content that was classified: a manual block or an overwrite resubmission
that lands during the classifier call wins.

Failure policy: any classifier failure fails *open*.  The response is
approved and the fallback reason is recorded in place of the category
map, so a human can still block it manually.  There is no retry.
"""

from __future__ import annotations

import logging
import uuid
from typing import Iterable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from livepoll_db.models.enums import ModerationStatus, QuestionType
from livepoll_db.repository import LivePollRepository

from livepoll_core.constants import BLOCKING_CATEGORIES
from livepoll_core.errors import ClassifierUnavailable, NotFound
from livepoll_core.interfaces import ContentClassifier
from livepoll_core.models.moderation import (
    ClassificationItem,
    ClassifierResult,
    ModerationOutcome,
)

logger = logging.getLogger(__name__)

# Fail-open reasons recorded on the response
FALLBACK_API_ERROR = "api_error_fallback"
FALLBACK_NO_RESULT = "no_result"
FALLBACK_NOT_CONFIGURED = "classifier_not_configured"

# Key under which a fail-open reason is stored in moderation_categories
FALLBACK_KEY = "fallback_reason"


def build_items(question_type: QuestionType, answer: str) -> list[ClassificationItem]:
    """Classifier input for a stored answer (text, or the image's URL)."""
    if question_type == QuestionType.IMAGE:
        return [ClassificationItem(type="image_url", content=answer)]
    return [ClassificationItem(type="text", content=answer)]


def decide(
    result: ClassifierResult,
    blocking: Iterable[str] = BLOCKING_CATEGORIES,
) -> ModerationOutcome:
    """Turn a classifier result into a verdict.

    Blocked iff any category in ``blocking`` is flagged; other flagged
    categories are recorded but do not block.  The persisted map is the
    score map when the classifier returns one, else the flag map.
    """
    blocked_by = sorted(c for c in blocking if result.categories.get(c))
    status = ModerationStatus.BLOCKED if blocked_by else ModerationStatus.APPROVED
    categories: dict = dict(result.category_scores) or dict(result.categories)
    return ModerationOutcome(
        status=status.value,
        categories=categories,
        blocked_by=blocked_by,
    )


def fallback(reason: str) -> ModerationOutcome:
    return ModerationOutcome(
        status=ModerationStatus.APPROVED.value,
        categories={FALLBACK_KEY: reason},
        reason=reason,
    )


class ModerationGate:
    """Moderates one persisted response at a time.

    Args:
        classifier: the external classifier; ``None`` approves everything
            (logged) so that deployments without an API key still work.
        blocking: category names that block a response.
    """

    def __init__(
        self,
        classifier: ContentClassifier | None,
        *,
        blocking: Iterable[str] = BLOCKING_CATEGORIES,
    ) -> None:
        self._classifier = classifier
        self._blocking = frozenset(blocking)
        self._repo = LivePollRepository()

    async def classify(self, question_type: QuestionType, answer: str) -> ModerationOutcome:
        """Classify content without touching the database.  Never raises
        for classifier failures."""
        if self._classifier is None:
            logger.warning("No content classifier configured; approving without review")
            return fallback(FALLBACK_NOT_CONFIGURED)
        try:
            result = await self._classifier.classify(build_items(question_type, answer))
        except ClassifierUnavailable as exc:
            logger.warning("Classifier unavailable, failing open: %s", exc)
            return fallback(FALLBACK_API_ERROR)
        except Exception:
            # Malformed payloads and unexpected client errors fail open too
            logger.exception("Classifier call failed, failing open")
            return fallback(FALLBACK_API_ERROR)
        if result is None:
            logger.warning("Classifier returned no result, failing open")
            return fallback(FALLBACK_NO_RESULT)
        return decide(result, self._blocking)

    async def moderate(self, db: AsyncSession, response_id: uuid.UUID) -> ModerationOutcome:
        """Classify a response and persist the verdict.

        A response an admin already blocked keeps its manual verdict.
        Closed-form answers are never sent to the classifier.  The caller
        must ``await db.commit()``.

        Raises:
            NotFound: if the response (or its question) no longer exists.
        """
        row = await self._repo.get_response(db, response_id)
        if row is None:
            raise NotFound(f"Response {response_id} not found")
        if row.moderation_status == ModerationStatus.BLOCKED:
            return ModerationOutcome(
                status=ModerationStatus.BLOCKED.value,
                categories=row.moderation_categories,
                reason="already_blocked",
                skipped=True,
            )

        question = await self._repo.get_question(db, row.question_id)
        if question is None:
            raise NotFound(f"Question {row.question_id} not found")
        question_type = QuestionType(question.question_type)
        if not question_type.requires_moderation:
            return ModerationOutcome(
                status=ModerationStatus.NONE.value, reason="not_moderated", skipped=True,
            )

        classified_answer = row.answer
        outcome = await self.classify(question_type, classified_answer)
        stored = await self._repo.record_verdict(
            db,
            response_id,
            answer=classified_answer,
            status=ModerationStatus(outcome.status),
            categories=outcome.categories,
        )
        if stored is None:
            logger.info(
                "Discarded %s verdict for response %s: blocked, resubmitted or deleted meanwhile",
                outcome.status,
                response_id,
            )
            return outcome.model_copy(update={"reason": "superseded", "skipped": True})
        logger.info(
            "Moderated response %s: %s (%s)%s",
            response_id,
            outcome.status,
            outcome.reason,
            f" blocked_by={outcome.blocked_by}" if outcome.blocked_by else "",
        )
        return outcome

    async def run(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        response_id: uuid.UUID,
    ) -> ModerationOutcome | None:
        """Background entry point: moderate in a fresh session and commit.

        Runs after the submitting request has returned, so failures can
        only be logged.  Returns the outcome, or ``None`` on failure.
        """
        async with session_factory() as db:
            try:
                outcome = await self.moderate(db, response_id)
                await db.commit()
                return outcome
            except NotFound:
                # Deleted between submit and moderation (e.g. responses cleared)
                logger.info("Response %s vanished before moderation", response_id)
                await db.rollback()
            except SQLAlchemyError:
                logger.exception("Could not persist moderation of response %s", response_id)
                await db.rollback()
        return None
