"""Live sync — keeps one participant display consistent with AdminState.

``reduce(view, event)`` is the whole state machine: a pure function from
the current ``ParticipantView`` and one ``SyncEvent`` to the next view.
It returns the *same object* when an event changes nothing, so redundant
or replayed notifications cause no transition.

Switching rules on an AdminState observation:

  - not presenting, or live question not among the cached active
    questions -> target is "nothing live"
  - target equals the question on screen -> no change
  - participant has input in progress -> ``PendingSwitch``; the target is
    applied only on submit or skip, never by discarding input
  - otherwise -> switch immediately

``LiveSyncClient`` drives the reducer from a ``LiveSource``: it loads the
questions, seeds from a fresh AdminState snapshot, then consumes the
change feed.  ``resume()`` re-fetches the snapshot after the display was
backgrounded, since feed delivery during suspension is not guaranteed.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from livepoll_db.feed import ChangeEvent, ChangeFeed, ChangeOperation, Subscription
from livepoll_db.repository import LivePollRepository

from livepoll_core.errors import LivePollError, NotFound, PersistFailed
from livepoll_core.interfaces import LiveSource
from livepoll_core.media import ImageUpload
from livepoll_core.models.question import BaseQuestion, question_from_row
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
    QuestionsLoaded,
    Skipped,
    SubmitFailed,
    SubmitSucceeded,
    SyncEvent,
    Waiting,
)
from livepoll_core.moderation import ModerationGate
from livepoll_core.submission import SubmissionPipeline

logger = logging.getLogger(__name__)

NO_QUESTIONS_MESSAGE = "There are no questions for this event yet."
LOAD_FAILED_MESSAGE = "Could not load the live question. Please try again."


# ======================================================================
# Reducer
# ======================================================================

def derive_target(view: ParticipantView) -> uuid.UUID | None:
    """The question that should be on screen according to AdminState."""
    if not view.presenting or view.live_question_id is None:
        return None
    question = view.question(view.live_question_id)
    return question.id if question is not None else None


def _needs_agreement(view: ParticipantView, question_id: uuid.UUID) -> bool:
    question = view.question(question_id)
    return (
        question is not None
        and question.requires_moderation
        and question.question_type not in view.agreed_types
    )


def _display(view: ParticipantView, target: uuid.UUID | None):
    if target is None:
        return Waiting()
    return Displaying(question_id=target, awaiting_agreement=_needs_agreement(view, target))


def _with_phase(view: ParticipantView, phase, **changes: Any) -> ParticipantView:
    return view.model_copy(update={"phase": phase, **changes})


def _retarget(view: ParticipantView) -> ParticipantView:
    """Re-run the switching rules against the view's last observed state."""
    phase = view.phase
    target = derive_target(view)

    if isinstance(phase, (Loading, Failed)):
        return view

    if isinstance(phase, Displaying):
        if target == phase.question_id:
            return view
        if view.has_input:
            return _with_phase(view, PendingSwitch(question_id=phase.question_id, target_id=target))
        return _with_phase(view, _display(view, target))

    if isinstance(phase, PendingSwitch):
        if target == phase.question_id:
            # The live question came back to the one being answered
            return _with_phase(
                view,
                Displaying(
                    question_id=phase.question_id,
                    awaiting_agreement=_needs_agreement(view, phase.question_id),
                ),
            )
        if target == phase.target_id:
            return view
        return _with_phase(view, phase.model_copy(update={"target_id": target}))

    if isinstance(phase, Answered) and target == phase.question_id:
        return view
    if isinstance(phase, Waiting) and target is None:
        return view
    return _with_phase(view, _display(view, target))


def _dispose(view: ParticipantView) -> ParticipantView:
    """Submit or skip: apply a pending switch, else mark answered."""
    phase = view.phase
    if isinstance(phase, PendingSwitch):
        return _with_phase(view, _display(view, phase.target_id), has_input=False, error=None)
    if isinstance(phase, Displaying):
        return _with_phase(view, Answered(question_id=phase.question_id), has_input=False, error=None)
    return view


def reduce(view: ParticipantView, event: SyncEvent) -> ParticipantView:
    """Next participant view.  Pure; returns ``view`` when nothing changes."""
    if isinstance(event, QuestionsLoaded):
        questions = sorted((q for q in event.questions if q.is_active), key=lambda q: q.sort_order)
        if not questions:
            return _with_phase(view, Failed(message=NO_QUESTIONS_MESSAGE), questions=[])
        loaded = view.model_copy(update={"questions": questions})
        if isinstance(view.phase, (Loading, Failed)):
            loaded = _with_phase(loaded, Waiting())
        current = loaded.current_question_id
        if current is not None and loaded.question(current) is None:
            # The question on screen was deleted or deactivated
            loaded = _with_phase(loaded, Waiting(), has_input=False)
        return _retarget(loaded)

    if isinstance(event, AdminStateObserved):
        if (
            view.presenting == event.is_presenting
            and view.live_question_id == event.current_question_id
        ):
            return view
        observed = view.model_copy(update={
            "presenting": event.is_presenting,
            "live_question_id": event.current_question_id,
        })
        return _retarget(observed)

    if isinstance(event, InputChanged):
        if view.has_input == event.has_input:
            return view
        return view.model_copy(update={"has_input": event.has_input})

    if isinstance(event, PolicyAgreed):
        agreed = view.model_copy(update={
            "agreed_types": view.agreed_types | {event.question_type},
            "agreed_at": view.agreed_at or event.at,
        })
        phase = agreed.phase
        if isinstance(phase, Displaying) and phase.awaiting_agreement:
            agreed = _with_phase(
                agreed,
                phase.model_copy(update={
                    "awaiting_agreement": _needs_agreement(agreed, phase.question_id),
                }),
            )
        return agreed

    if isinstance(event, (SubmitSucceeded, Skipped)):
        return _dispose(view)

    if isinstance(event, SubmitFailed):
        # Input stays; only the message changes
        return view.model_copy(update={"error": event.message})

    if isinstance(event, LoadFailed):
        return _with_phase(view, Failed(message=event.message, retryable=event.retryable))

    raise TypeError(f"Unknown sync event: {type(event).__name__}")


def observed_from_change(change: ChangeEvent) -> AdminStateObserved:
    """Feed notification -> reducer event.  A deleted row reads as idle."""
    if change.operation == ChangeOperation.DELETE or change.new is None:
        return AdminStateObserved(is_presenting=False, current_question_id=None)
    state = AdminStateInfo.model_validate(change.new)
    return AdminStateObserved(
        is_presenting=state.is_presenting,
        current_question_id=state.current_question_id,
    )


# ======================================================================
# Driver
# ======================================================================

class LiveSyncClient:
    """Runs the reducer for one participant display.

    Args:
        source: where questions, snapshots and notifications come from.
        event_id: the event being followed.
        session_id: the participant's opaque browser session id.
        on_change: called with every new view (not with no-op results).
    """

    def __init__(
        self,
        source: LiveSource,
        event_id: uuid.UUID,
        session_id: str,
        *,
        on_change: Callable[[ParticipantView], None] | None = None,
    ) -> None:
        self._source = source
        self.event_id = event_id
        self.session_id = session_id
        self._on_change = on_change
        self._view = ParticipantView()
        self._listener: asyncio.Task | None = None
        self._submitting = False
        self.event: EventInfo | None = None

    @property
    def view(self) -> ParticipantView:
        return self._view

    @property
    def submitting(self) -> bool:
        return self._submitting

    def dispatch(self, event: SyncEvent) -> ParticipantView:
        new = reduce(self._view, event)
        if new is not self._view:
            self._view = new
            if self._on_change is not None:
                self._on_change(new)
        return new

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> ParticipantView:
        """Load questions, seed from a snapshot, then follow the feed.

        Subscribes *before* taking the snapshot so no change committed in
        between is missed; the reducer absorbs the resulting duplicate.
        A failed load ends in a ``Failed`` view with no listener left
        running; call ``start()`` again to retry.
        """
        try:
            self.event = await self._source.load_event(self.event_id)
            questions = await self._source.load_questions(self.event_id)
        except NotFound as exc:
            return self.dispatch(LoadFailed(message=exc.user_message, retryable=False))
        except LivePollError as exc:
            return self.dispatch(LoadFailed(message=exc.user_message, retryable=exc.retryable))
        except SQLAlchemyError as exc:
            logger.warning("Loading event %s failed: %s", self.event_id, exc)
            return self.dispatch(LoadFailed(message=LOAD_FAILED_MESSAGE))
        self.dispatch(QuestionsLoaded(questions=questions))
        if isinstance(self._view.phase, Failed):
            return self._view

        subscription = self._source.subscribe_admin_state(self.event_id)
        ready = asyncio.Event()
        self._listener = asyncio.create_task(self._listen(subscription, ready))
        await ready.wait()
        try:
            state = await self._source.load_admin_state(self.event_id)
        except (LivePollError, SQLAlchemyError) as exc:
            logger.warning("Initial AdminState fetch for event %s failed: %s", self.event_id, exc)
            await self.stop()
            return self.dispatch(LoadFailed(message=LOAD_FAILED_MESSAGE))
        return self._observe(state)

    async def resume(self) -> ParticipantView:
        """Re-fetch AdminState and re-derive (e.g. after device sleep).

        If the fetch fails the current view, input included, is kept and
        the feed keeps running; call again to retry.
        """
        try:
            state = await self._source.load_admin_state(self.event_id)
        except (LivePollError, SQLAlchemyError) as exc:
            logger.warning("AdminState refresh for event %s failed: %s", self.event_id, exc)
            return self._view
        return self._observe(state)

    def _observe(self, state: AdminStateInfo) -> ParticipantView:
        return self.dispatch(AdminStateObserved(
            is_presenting=state.is_presenting,
            current_question_id=state.current_question_id,
        ))

    async def stop(self) -> None:
        task, self._listener = self._listener, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _listen(self, subscription, ready: asyncio.Event) -> None:
        async with subscription as changes:
            ready.set()
            async for change in changes:
                self.dispatch(observed_from_change(change))

    # ------------------------------------------------------------------
    # Participant actions
    # ------------------------------------------------------------------

    def set_input(self, has_input: bool) -> ParticipantView:
        return self.dispatch(InputChanged(has_input=has_input))

    def agree(self, question_type: str, at: datetime | None = None) -> ParticipantView:
        return self.dispatch(PolicyAgreed(
            question_type=question_type, at=at or datetime.now(timezone.utc),
        ))

    def skip(self) -> ParticipantView:
        return self.dispatch(Skipped())

    async def submit(self, answer: Any = None, *, image: ImageUpload | None = None) -> bool:
        """Submit an answer for the question on screen.

        Returns True on success.  Failures are folded into the view as an
        error message with the input kept; they never raise.  A second
        call while one is in flight is ignored.
        """
        if self._submitting:
            return False
        question = self._view.question(self._view.current_question_id)
        if question is None or (
            isinstance(self._view.phase, Displaying) and self._view.phase.awaiting_agreement
        ):
            self.dispatch(SubmitFailed(message="There is no question to answer right now."))
            return False

        self._submitting = True
        try:
            await self._source.submit(
                question,
                session_id=self.session_id,
                answer=answer,
                agreed_at=self._view.agreed_at if question.requires_moderation else None,
                image=image,
            )
        except LivePollError as exc:
            logger.info("Submission for question %s failed: %s", question.id, exc)
            self.dispatch(SubmitFailed(message=exc.user_message, retryable=exc.retryable))
            return False
        finally:
            self._submitting = False
        self.dispatch(SubmitSucceeded())
        return True


# ======================================================================
# In-process source
# ======================================================================

class InProcessLiveSource(LiveSource):
    """``LiveSource`` backed directly by the database and change feed.

    Moderation is scheduled as a background task after the submission
    commits, exactly like the HTTP surface does.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        feed: ChangeFeed,
        pipeline: SubmissionPipeline,
        gate: ModerationGate | None = None,
    ) -> None:
        self._factory = session_factory
        self._feed = feed
        self._pipeline = pipeline
        self._gate = gate
        self._repo = LivePollRepository()
        self._tasks: set[asyncio.Task] = set()

    async def load_event(self, event_id: uuid.UUID) -> EventInfo:
        async with self._factory() as db:
            row = await self._repo.get_event(db, event_id)
            if row is None or not row.is_active:
                raise NotFound(f"Event {event_id} not found")
            return EventInfo.model_validate(row)

    async def load_questions(self, event_id: uuid.UUID) -> list[BaseQuestion]:
        async with self._factory() as db:
            rows = await self._repo.list_questions(db, event_id, active_only=True)
            return [question_from_row(r) for r in rows]

    async def load_admin_state(self, event_id: uuid.UUID) -> AdminStateInfo:
        async with self._factory() as db:
            row = await self._repo.get_admin_state(db, event_id)
            if row is None:
                return AdminStateInfo(event_id=event_id)
            return AdminStateInfo.model_validate(row)

    def subscribe_admin_state(self, event_id: uuid.UUID) -> Subscription:
        return self._feed.subscribe("admin_state", filters={"event_id": event_id})

    async def submit(
        self,
        question: BaseQuestion,
        *,
        session_id: str,
        answer: Any,
        agreed_at: datetime | None = None,
        image: ImageUpload | None = None,
    ) -> ResponseInfo:
        # Closing the session without commit rolls back a failed submission
        async with self._factory() as db:
            outcome = await self._pipeline.submit(
                db,
                question,
                session_id=session_id,
                answer=answer,
                agreed_at=agreed_at,
                image=image,
            )
            try:
                await db.commit()
            except SQLAlchemyError as exc:
                raise PersistFailed(f"Could not commit response: {exc}") from exc
        if outcome.needs_moderation and self._gate is not None:
            task = asyncio.create_task(self._gate.run(self._factory, outcome.response.id))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        return outcome.response

    async def drain(self) -> None:
        """Wait for scheduled moderation tasks (shutdown and tests)."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks))
