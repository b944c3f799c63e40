"""Participant display view-model and the events that drive it.

The view is an immutable, serializable value.  It changes only through
``livepoll_core.live_sync.reduce(view, event)``; nothing mutates it in
place.

Phases (discriminated on ``kind``):

    Loading        questions not loaded yet
    Waiting        nothing live (not presenting, or live question unknown)
    Displaying     one question on screen, possibly behind the content
                   notice (``awaiting_agreement``)
    PendingSwitch  a different question went live while the participant
                   had input in progress; ``target_id`` is applied on
                   submit or skip (``None`` means presentation stopped)
    Answered       the displayed question was submitted or skipped
    Failed         terminal or load error, shown as a static screen
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Annotated, FrozenSet, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from livepoll_core.models.question import LiveQuestion


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


# --- Phases ---

class Loading(_Frozen):
    kind: Literal["loading"] = "loading"


class Waiting(_Frozen):
    kind: Literal["waiting"] = "waiting"


class Displaying(_Frozen):
    kind: Literal["displaying"] = "displaying"
    question_id: uuid.UUID
    awaiting_agreement: bool = False


class PendingSwitch(_Frozen):
    kind: Literal["pending_switch"] = "pending_switch"
    question_id: uuid.UUID
    target_id: Optional[uuid.UUID] = None


class Answered(_Frozen):
    kind: Literal["answered"] = "answered"
    question_id: uuid.UUID


class Failed(_Frozen):
    kind: Literal["error"] = "error"
    message: str
    retryable: bool = False


SyncPhase = Annotated[
    Union[Loading, Waiting, Displaying, PendingSwitch, Answered, Failed],
    Field(discriminator="kind"),
]


class ParticipantView(_Frozen):
    """Everything one participant display knows."""

    phase: SyncPhase = Field(default_factory=Loading)
    # Active questions in sort order, cached at load
    questions: List[LiveQuestion] = Field(default_factory=list)
    # Last AdminState observed (seed, feed or resume)
    presenting: bool = False
    live_question_id: Optional[uuid.UUID] = None
    has_input: bool = False
    # Question types whose content notice was accepted in this tab
    agreed_types: FrozenSet[str] = frozenset()
    agreed_at: Optional[datetime] = None
    # Last submit failure, shown next to the retained input
    error: Optional[str] = None

    def question(self, question_id: uuid.UUID | None):
        """Cached active question by id, or None."""
        if question_id is None:
            return None
        for q in self.questions:
            if q.id == question_id:
                return q
        return None

    @property
    def current_question_id(self) -> uuid.UUID | None:
        """The question on screen (also while a switch is pending)."""
        phase = self.phase
        if isinstance(phase, (Displaying, PendingSwitch)):
            return phase.question_id
        return None

    @property
    def notice(self) -> str | None:
        """Non-blocking banner text for the participant."""
        if isinstance(self.phase, PendingSwitch):
            if self.phase.target_id is None:
                return "The presenter has paused. Submit or skip when you are ready."
            return "The next question is ready. Submit or skip to continue."
        return None


# --- Events ---

class QuestionsLoaded(_Frozen):
    kind: Literal["questions_loaded"] = "questions_loaded"
    questions: List[LiveQuestion]


class AdminStateObserved(_Frozen):
    kind: Literal["admin_state"] = "admin_state"
    is_presenting: bool
    current_question_id: Optional[uuid.UUID] = None


class InputChanged(_Frozen):
    kind: Literal["input_changed"] = "input_changed"
    has_input: bool


class PolicyAgreed(_Frozen):
    kind: Literal["policy_agreed"] = "policy_agreed"
    question_type: str
    at: datetime


class SubmitSucceeded(_Frozen):
    kind: Literal["submit_succeeded"] = "submit_succeeded"


class Skipped(_Frozen):
    kind: Literal["skipped"] = "skipped"


class SubmitFailed(_Frozen):
    kind: Literal["submit_failed"] = "submit_failed"
    message: str
    retryable: bool = True


class LoadFailed(_Frozen):
    kind: Literal["load_failed"] = "load_failed"
    message: str
    retryable: bool = True


SyncEvent = Union[
    QuestionsLoaded,
    AdminStateObserved,
    InputChanged,
    PolicyAgreed,
    SubmitSucceeded,
    Skipped,
    SubmitFailed,
    LoadFailed,
]
