"""Presentation state machine — which question is live, and is it broadcast.

Three layers:

  - ``PresenterView`` plus the pure transitions ``start_view``,
    ``stop_view``, ``advance_view`` and ``select_view``.  The view is the
    admin tab's whole local state: the ordered active questions, the
    locally viewed question and the Idle/Presenting phase.
  - ``PresentationService``: stateless, one call per HTTP request.  Loads
    a view from the database, applies a transition, writes AdminState.
  - ``PresentationController``: one per admin tab/process.  Owns a view
    across calls and runs the heartbeat while presenting.

AdminState is written by lookup-then-write keyed on the event; two admin
tabs writing at once race and the last writer wins.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import uuid
from typing import Callable, List, Optional

from pydantic import BaseModel, ConfigDict
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from livepoll_db.repository import LivePollRepository

from livepoll_core.constants import HEARTBEAT_INTERVAL_SECONDS
from livepoll_core.errors import NoPresentableQuestions, NotFound, PersistFailed
from livepoll_core.models.records import AdminStateInfo

logger = logging.getLogger(__name__)


class Direction(str, enum.Enum):
    PREV = "prev"
    NEXT = "next"


class PresentationPhase(str, enum.Enum):
    IDLE = "idle"
    PRESENTING = "presenting"


class PresenterView(BaseModel):
    """Serializable admin-side view-model."""

    model_config = ConfigDict(frozen=True)

    event_id: uuid.UUID
    # Active questions in sort order
    question_ids: List[uuid.UUID]
    cursor: int = 0
    phase: PresentationPhase = PresentationPhase.IDLE
    live_question_id: Optional[uuid.UUID] = None

    @property
    def presenting(self) -> bool:
        return self.phase == PresentationPhase.PRESENTING

    @property
    def viewed_question_id(self) -> uuid.UUID | None:
        if not self.question_ids:
            return None
        return self.question_ids[self.cursor]

    @property
    def at_first(self) -> bool:
        return self.cursor <= 0

    @property
    def at_last(self) -> bool:
        return self.cursor >= len(self.question_ids) - 1


# ======================================================================
# Pure transitions
# ======================================================================

def start_view(view: PresenterView) -> PresenterView:
    """Idle -> Presenting, broadcasting the viewed question.

    Raises:
        NoPresentableQuestions: the event has no active question.
    """
    if not view.question_ids:
        raise NoPresentableQuestions(f"Event {view.event_id} has no active questions")
    return view.model_copy(update={
        "phase": PresentationPhase.PRESENTING,
        "live_question_id": view.viewed_question_id,
    })


def stop_view(view: PresenterView) -> PresenterView:
    """Presenting -> Idle; the live question is cleared."""
    return view.model_copy(update={
        "phase": PresentationPhase.IDLE,
        "live_question_id": None,
    })


def advance_view(view: PresenterView, direction: Direction) -> PresenterView:
    """Move the local cursor one step, without wraparound.

    Returns ``view`` itself when already at the first/last question.
    While presenting, the live question follows the cursor.
    """
    step = -1 if Direction(direction) == Direction.PREV else 1
    cursor = view.cursor + step
    if not view.question_ids or cursor < 0 or cursor >= len(view.question_ids):
        return view
    return _move(view, cursor)


def select_view(view: PresenterView, question_id: uuid.UUID) -> PresenterView:
    """Jump the cursor to ``question_id``.

    Raises:
        NotFound: ``question_id`` is not an active question of the event.
    """
    try:
        cursor = view.question_ids.index(question_id)
    except ValueError:
        raise NotFound(f"Question {question_id} is not an active question")
    if cursor == view.cursor:
        return view
    return _move(view, cursor)


def _move(view: PresenterView, cursor: int) -> PresenterView:
    update: dict = {"cursor": cursor}
    if view.presenting:
        update["live_question_id"] = view.question_ids[cursor]
    return view.model_copy(update=update)


def _state_info(event_id: uuid.UUID, row) -> AdminStateInfo:
    if row is None:
        return AdminStateInfo(event_id=event_id)
    return AdminStateInfo.model_validate(row)


# ======================================================================
# Stateless service (one call per request)
# ======================================================================

class PresentationService:
    """Database-backed presentation operations.

    Every method takes the caller's ``AsyncSession``; the caller commits.
    """

    def __init__(self) -> None:
        self._repo = LivePollRepository()

    async def get_state(self, db: AsyncSession, event_id: uuid.UUID) -> AdminStateInfo:
        await self._require_event(db, event_id)
        row = await self._repo.get_admin_state(db, event_id)
        return _state_info(event_id, row)

    async def load_view(
        self,
        db: AsyncSession,
        event_id: uuid.UUID,
        *,
        viewed_question_id: uuid.UUID | None = None,
    ) -> PresenterView:
        """Rebuild a view from the database.

        The cursor lands on ``viewed_question_id`` when given and active,
        else on the live question, else on the first question.
        """
        await self._require_event(db, event_id)
        questions = await self._repo.list_questions(db, event_id, active_only=True)
        question_ids = [q.id for q in questions]
        state = await self._repo.get_admin_state(db, event_id)

        presenting = bool(state and state.is_presenting)
        live = state.current_question_id if presenting else None
        cursor = 0
        for candidate in (viewed_question_id, live):
            if candidate is not None and candidate in question_ids:
                cursor = question_ids.index(candidate)
                break
        return PresenterView(
            event_id=event_id,
            question_ids=question_ids,
            cursor=cursor,
            phase=PresentationPhase.PRESENTING if presenting else PresentationPhase.IDLE,
            live_question_id=live,
        )

    async def sync(self, db: AsyncSession, view: PresenterView) -> AdminStateInfo:
        """Write the view's broadcast state to the shared AdminState row."""
        row = await self._repo.save_admin_state(
            db,
            view.event_id,
            current_question_id=view.live_question_id,
            is_presenting=view.presenting,
        )
        return AdminStateInfo.model_validate(row)

    async def start(
        self,
        db: AsyncSession,
        event_id: uuid.UUID,
        *,
        question_id: uuid.UUID | None = None,
    ) -> PresenterView:
        """Start broadcasting ``question_id`` (default: first active question).

        Nothing is written when the event has no active question.
        """
        view = await self.load_view(db, event_id, viewed_question_id=question_id)
        if question_id is not None and view.question_ids:
            view = select_view(view, question_id)
        view = start_view(view)
        await self.sync(db, view)
        logger.info("Event %s: presenting question %s", event_id, view.live_question_id)
        return view

    async def stop(self, db: AsyncSession, event_id: uuid.UUID) -> PresenterView:
        view = stop_view(await self.load_view(db, event_id))
        await self.sync(db, view)
        logger.info("Event %s: presentation stopped", event_id)
        return view

    async def navigate(
        self,
        db: AsyncSession,
        event_id: uuid.UUID,
        *,
        direction: Direction | None = None,
        question_id: uuid.UUID | None = None,
        from_question_id: uuid.UUID | None = None,
    ) -> PresenterView:
        """Move the cursor by ``direction`` from ``from_question_id`` (the
        admin's locally viewed question), or jump to ``question_id``.

        AdminState is written only while presenting and only if the
        cursor actually moved.
        """
        if (direction is None) == (question_id is None):
            raise ValueError("navigate needs exactly one of direction or question_id")
        view = await self.load_view(db, event_id, viewed_question_id=from_question_id)
        if question_id is not None:
            moved = select_view(view, question_id)
        else:
            moved = advance_view(view, direction)
        if moved is not view and moved.presenting:
            await self.sync(db, moved)
        return moved

    async def heartbeat(self, db: AsyncSession, event_id: uuid.UUID) -> AdminStateInfo | None:
        """Touch AdminState's timestamp while presenting; otherwise no-op."""
        row = await self._repo.get_admin_state(db, event_id)
        if row is None or not row.is_presenting:
            return None
        row = await self._repo.touch_admin_state(db, event_id)
        return AdminStateInfo.model_validate(row)

    async def release(self, db: AsyncSession, event_id: uuid.UUID) -> AdminStateInfo:
        """Page-unload flush: stop presenting if still presenting.

        Idempotent; an already idle event is left untouched.
        """
        row = await self._repo.get_admin_state(db, event_id)
        if row is None or not row.is_presenting:
            return _state_info(event_id, row)
        row = await self._repo.save_admin_state(
            db, event_id, current_question_id=None, is_presenting=False,
        )
        logger.info("Event %s: presentation released on unload", event_id)
        return AdminStateInfo.model_validate(row)

    async def _require_event(self, db: AsyncSession, event_id: uuid.UUID) -> None:
        if await self._repo.get_event(db, event_id) is None:
            raise NotFound(f"Event {event_id} not found")


# ======================================================================
# Per-tab controller
# ======================================================================

class PresentationController:
    """Owns one admin tab's ``PresenterView`` and its heartbeat.

    Each transition is applied to a copy of the view and synced to
    AdminState in its own transaction; the local view only changes once
    the sync committed.  A failed sync raises ``PersistFailed`` and leaves
    the view as it was, so the admin can retry.

    Args:
        session_factory: opens a session per sync.
        event_id: the event this tab controls.
        heartbeat_interval: seconds between liveness touches.
        on_change: called with the new view after every transition.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        event_id: uuid.UUID,
        *,
        service: PresentationService | None = None,
        heartbeat_interval: float = HEARTBEAT_INTERVAL_SECONDS,
        on_change: Callable[[PresenterView], None] | None = None,
    ) -> None:
        self._factory = session_factory
        self._service = service or PresentationService()
        self._interval = heartbeat_interval
        self._on_change = on_change
        self._heartbeat: asyncio.Task | None = None
        self._view = PresenterView(event_id=event_id, question_ids=[])

    @property
    def view(self) -> PresenterView:
        return self._view

    @property
    def heartbeat_running(self) -> bool:
        return self._heartbeat is not None and not self._heartbeat.done()

    async def open(self, viewed_question_id: uuid.UUID | None = None) -> PresenterView:
        """Load the event; resumes the heartbeat if it is already presenting."""
        async with self._factory() as db:
            view = await self._service.load_view(
                db, self._view.event_id, viewed_question_id=viewed_question_id,
            )
        self._set(view)
        if view.presenting:
            self._start_heartbeat()
        return view

    async def start(self) -> PresenterView:
        new = start_view(self._view)
        await self._sync(new)
        self._start_heartbeat()
        return new

    async def stop(self) -> PresenterView:
        new = stop_view(self._view)
        await self._sync(new)
        await self._stop_heartbeat()
        return new

    async def advance(self, direction: Direction) -> PresenterView:
        new = advance_view(self._view, direction)
        if new is self._view:
            return new
        if new.presenting:
            await self._sync(new)
        else:
            self._set(new)
        return new

    async def select(self, question_id: uuid.UUID) -> PresenterView:
        new = select_view(self._view, question_id)
        if new is not self._view and new.presenting:
            await self._sync(new)
        else:
            self._set(new)
        return new

    async def close(self) -> None:
        """Tab teardown: best-effort flush to Idle, then stop beating."""
        await self._stop_heartbeat()
        if not self._view.presenting:
            return
        try:
            async with self._factory() as db:
                await self._service.release(db, self._view.event_id)
                await db.commit()
        except SQLAlchemyError:
            logger.warning(
                "Could not release presentation of event %s on close",
                self._view.event_id,
                exc_info=True,
            )
            return
        self._set(stop_view(self._view))

    # ------------------------------------------------------------------

    def _set(self, view: PresenterView) -> None:
        self._view = view
        if self._on_change is not None:
            self._on_change(view)

    async def _sync(self, new: PresenterView) -> None:
        try:
            async with self._factory() as db:
                await self._service.sync(db, new)
                await db.commit()
        except SQLAlchemyError as exc:
            raise PersistFailed(
                f"Could not sync presentation state: {exc}",
                user_message="Presentation state could not be saved. Please try again.",
            ) from exc
        self._set(new)

    async def _beat_once(self) -> None:
        async with self._factory() as db:
            await self._service.heartbeat(db, self._view.event_id)
            await db.commit()

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self._beat_once()
            except SQLAlchemyError:
                # Keep beating; viewers only time out after several misses
                logger.warning(
                    "Heartbeat failed for event %s", self._view.event_id, exc_info=True,
                )

    def _start_heartbeat(self) -> None:
        if self.heartbeat_running:
            return
        self._heartbeat = asyncio.create_task(self._heartbeat_loop())

    async def _stop_heartbeat(self) -> None:
        task, self._heartbeat = self._heartbeat, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
