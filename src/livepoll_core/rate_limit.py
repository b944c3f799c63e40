"""RateLimiter — sliding-window cap on free-form submissions.

Bounds how many free-text / image submissions one session may make within
one event: at most ``max_count`` in any ``window_seconds`` window.  Usage
is a ledger of rows in ``submission_usage``; checking counts rows newer
than ``now - window``, recording inserts one row.

A failed ledger query fails *open* (treated as allowed) and is logged.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from livepoll_db.models.enums import QuestionType
from livepoll_db.repository import LivePollRepository

from livepoll_core.constants import RATE_LIMIT_MAX, RATE_LIMIT_WINDOW_SECONDS

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RateLimiter:
    """Args:
        window_seconds: sliding window length.
        max_count: submissions allowed per window.
        clock: returns the current UTC time; injectable for tests.
    """

    def __init__(
        self,
        *,
        window_seconds: int = RATE_LIMIT_WINDOW_SECONDS,
        max_count: int = RATE_LIMIT_MAX,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.window = timedelta(seconds=window_seconds)
        self.max_count = max_count
        self._clock = clock
        self._repo = LivePollRepository()

    @staticmethod
    def applies_to(question_type: str | QuestionType) -> bool:
        return QuestionType(question_type).requires_moderation

    async def check_allowed(
        self,
        db: AsyncSession,
        *,
        session_id: str,
        event_id: uuid.UUID,
        question_type: str | QuestionType,
    ) -> bool:
        """True if the session may submit another ``question_type`` answer."""
        if not self.applies_to(question_type):
            return True
        since = self._clock() - self.window
        try:
            # Savepoint, so a failed count does not poison the caller's transaction
            async with db.begin_nested():
                used = await self._repo.count_usage_since(
                    db, session_id=session_id, event_id=event_id, since=since,
                )
        except SQLAlchemyError as exc:
            logger.warning(
                "Rate limit check failed for session %s, allowing: %s", session_id, exc,
            )
            return True
        return used < self.max_count

    @property
    def retry_after(self) -> int:
        """Seconds a rejected session should wait (upper bound)."""
        return int(self.window.total_seconds())

    async def record(
        self,
        db: AsyncSession,
        *,
        session_id: str,
        event_id: uuid.UUID,
        question_type: str | QuestionType,
    ) -> None:
        """Add one usage row.  No-op for closed-form question types."""
        if not self.applies_to(question_type):
            return
        await self._repo.record_usage(
            db,
            session_id=session_id,
            event_id=event_id,
            question_type=QuestionType(question_type).value,
            at=self._clock(),
        )
