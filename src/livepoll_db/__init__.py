"""livepoll_db — PostgreSQL persistence layer for live polling events.

This package provides the ORM models, async engine factory, the repository
used by the SDK, and the in-process change feed that mirrors committed
row-level writes to subscribers (participant displays, presenter consoles).
"""

from livepoll_db.engine import get_engine, get_session_factory
from livepoll_db.feed import ChangeEvent, ChangeFeed, ChangeOperation, Subscription
from livepoll_db.models.admin_state import AdminState
from livepoll_db.models.enums import DuplicatePolicy, ModerationStatus, QuestionType
from livepoll_db.models.event import Event
from livepoll_db.models.question import Question
from livepoll_db.models.response import Response
from livepoll_db.repository import LivePollRepository

__all__ = [
    "AdminState",
    "ChangeEvent",
    "ChangeFeed",
    "ChangeOperation",
    "DuplicatePolicy",
    "Event",
    "LivePollRepository",
    "ModerationStatus",
    "Question",
    "QuestionType",
    "Response",
    "Subscription",
    "get_engine",
    "get_session_factory",
]
