"""ORM models for livepoll_db."""

from livepoll_db.models.account import DeletionToken, VerificationCode
from livepoll_db.models.admin_state import AdminState
from livepoll_db.models.base import Base
from livepoll_db.models.enums import (
    DuplicatePolicy,
    ModerationStatus,
    QuestionType,
    VerificationPurpose,
)
from livepoll_db.models.event import Event
from livepoll_db.models.question import Question
from livepoll_db.models.response import Response
from livepoll_db.models.usage import SubmissionUsage

__all__ = [
    "AdminState",
    "Base",
    "DeletionToken",
    "DuplicatePolicy",
    "Event",
    "ModerationStatus",
    "Question",
    "QuestionType",
    "Response",
    "SubmissionUsage",
    "VerificationCode",
    "VerificationPurpose",
]
