"""Pydantic models for the live polling SDK."""

from livepoll_core.models.display import (
    ChartPayload,
    ContentItem,
    ContentPayload,
    DisplayOffPayload,
    DisplayPayload,
    EventSummary,
    ModerationSummary,
    OptionTally,
    SuppressedPayload,
)
from livepoll_core.models.question import (
    BaseQuestion,
    ImageQuestion,
    LiveQuestion,
    MultiChoiceQuestion,
    RatingQuestion,
    SingleChoiceQuestion,
    TextQuestion,
    question_from_row,
    question_mapper,
)
from livepoll_core.models.records import AdminStateInfo, EventInfo, ResponseInfo
from livepoll_core.models.sync import (
    AdminStateObserved,
    Answered,
    Displaying,
    Failed,
    InputChanged,
    Loading,
    LoadFailed,
    ParticipantView,
    PendingSwitch,
    PolicyAgreed,
    Skipped,
    SubmitFailed,
    SubmitSucceeded,
    QuestionsLoaded,
    Waiting,
)

__all__ = [
    "AdminStateInfo",
    "AdminStateObserved",
    "Answered",
    "BaseQuestion",
    "ChartPayload",
    "ContentItem",
    "ContentPayload",
    "DisplayOffPayload",
    "DisplayPayload",
    "Displaying",
    "EventInfo",
    "EventSummary",
    "Failed",
    "ImageQuestion",
    "InputChanged",
    "LiveQuestion",
    "LoadFailed",
    "Loading",
    "ModerationSummary",
    "MultiChoiceQuestion",
    "OptionTally",
    "ParticipantView",
    "PendingSwitch",
    "PolicyAgreed",
    "QuestionsLoaded",
    "RatingQuestion",
    "ResponseInfo",
    "SingleChoiceQuestion",
    "Skipped",
    "SubmitFailed",
    "SubmitSucceeded",
    "SuppressedPayload",
    "TextQuestion",
    "Waiting",
    "question_from_row",
    "question_mapper",
]
