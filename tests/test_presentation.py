"""Presentation state machine tests.

Covers the pure transitions on ``PresenterView``, the stateless
``PresentationService`` against a MockRepository, and the per-tab
``PresentationController`` with its heartbeat.
"""

import asyncio
import uuid

import pytest

from livepoll_core.errors import NoPresentableQuestions, NotFound, PersistFailed
from livepoll_core.presentation import (
    Direction,
    PresentationController,
    PresentationPhase,
    PresentationService,
    PresenterView,
    advance_view,
    select_view,
    start_view,
    stop_view,
)

from helpers.mocks import MockSessionFactory


def _view(n=3, **kwargs):
    return PresenterView(event_id=uuid.uuid4(), question_ids=[uuid.uuid4() for _ in range(n)], **kwargs)


@pytest.fixture
def service(repo):
    svc = PresentationService()
    svc._repo = repo
    return svc


@pytest.fixture
def questions(repo, event):
    return [repo.add_question(event, "single", sort_order=i) for i in (10, 20, 30)]


# =====================================================================
# Pure transitions
# =====================================================================


class TestTransitions:

    def test_start_broadcasts_viewed_question(self):
        view = _view(cursor=1)
        started = start_view(view)
        assert started.phase == PresentationPhase.PRESENTING
        assert started.live_question_id == view.question_ids[1]

    def test_start_without_questions(self):
        with pytest.raises(NoPresentableQuestions):
            start_view(_view(n=0))

    def test_stop_clears_live_question(self):
        stopped = stop_view(start_view(_view()))
        assert stopped.phase == PresentationPhase.IDLE
        assert stopped.live_question_id is None

    def test_navigation_is_bounded(self):
        view = _view(cursor=0)
        assert advance_view(view, Direction.PREV) is view, "No wraparound at the first question"
        last = view.model_copy(update={"cursor": 2})
        assert advance_view(last, Direction.NEXT) is last, "No wraparound at the last question"

    def test_idle_navigation_only_moves_cursor(self):
        view = _view()
        moved = advance_view(view, Direction.NEXT)
        assert moved.cursor == 1
        assert moved.live_question_id is None

    def test_presenting_navigation_moves_live_question(self):
        view = start_view(_view())
        moved = advance_view(view, "next")
        assert moved.live_question_id == view.question_ids[1]

    def test_select_unknown_question(self):
        with pytest.raises(NotFound):
            select_view(_view(), uuid.uuid4())

    def test_select_current_is_noop(self):
        view = _view()
        assert select_view(view, view.question_ids[0]) is view


# =====================================================================
# Service
# =====================================================================


class TestService:

    @pytest.mark.asyncio
    async def test_start_defaults_to_first_by_sort_order(self, service, repo, event, questions, db):
        view = await service.start(db, event.id)
        state = repo.admin_states[event.id]
        assert state.is_presenting
        assert state.current_question_id == questions[0].id
        assert view.live_question_id == questions[0].id

    @pytest.mark.asyncio
    async def test_start_specific_question(self, service, repo, event, questions, db):
        await service.start(db, event.id, question_id=questions[2].id)
        assert repo.admin_states[event.id].current_question_id == questions[2].id

    @pytest.mark.asyncio
    async def test_start_with_no_active_questions_writes_nothing(self, service, repo, event, db):
        repo.add_question(event, "single", is_active=False)
        with pytest.raises(NoPresentableQuestions):
            await service.start(db, event.id)
        assert event.id not in repo.admin_states

    @pytest.mark.asyncio
    async def test_stop_keeps_row(self, service, repo, event, questions, db):
        await service.start(db, event.id)
        await service.stop(db, event.id)
        state = repo.admin_states[event.id]
        assert state.is_presenting is False
        assert state.current_question_id is None

    @pytest.mark.asyncio
    async def test_next_and_previous_while_presenting(self, service, repo, event, questions, db):
        await service.start(db, event.id)
        await service.navigate(db, event.id, direction=Direction.NEXT)
        assert repo.admin_states[event.id].current_question_id == questions[1].id
        await service.navigate(db, event.id, direction=Direction.PREV)
        assert repo.admin_states[event.id].current_question_id == questions[0].id

    @pytest.mark.asyncio
    async def test_bounded_navigation_writes_nothing(self, service, repo, event, questions, db):
        await service.start(db, event.id)
        repo.calls.clear()
        view = await service.navigate(db, event.id, direction=Direction.PREV)
        assert view.cursor == 0
        assert "save_admin_state" not in repo.calls

    @pytest.mark.asyncio
    async def test_idle_navigation_never_writes(self, service, repo, event, questions, db):
        view = await service.navigate(
            db, event.id, direction=Direction.NEXT, from_question_id=questions[0].id,
        )
        assert view.viewed_question_id == questions[1].id
        assert event.id not in repo.admin_states

    @pytest.mark.asyncio
    async def test_navigate_needs_exactly_one_target(self, service, event, questions, db):
        with pytest.raises(ValueError):
            await service.navigate(db, event.id)
        with pytest.raises(ValueError):
            await service.navigate(
                db, event.id, direction=Direction.NEXT, question_id=questions[0].id,
            )

    @pytest.mark.asyncio
    async def test_heartbeat_only_while_presenting(self, service, repo, event, questions, db):
        assert await service.heartbeat(db, event.id) is None
        await service.start(db, event.id)
        before = repo.admin_states[event.id].updated_at
        state = await service.heartbeat(db, event.id)
        assert state.is_presenting
        assert repo.admin_states[event.id].updated_at >= before

    @pytest.mark.asyncio
    async def test_release_is_idempotent(self, service, repo, event, questions, db):
        await service.start(db, event.id)
        first = await service.release(db, event.id)
        repo.calls.clear()
        second = await service.release(db, event.id)
        assert first.is_presenting is False and second.is_presenting is False
        assert "save_admin_state" not in repo.calls

    @pytest.mark.asyncio
    async def test_last_writer_wins(self, service, repo, event, questions, db):
        """Two admin tabs writing in turn: the later write is what remains."""
        await service.start(db, event.id, question_id=questions[0].id)
        await service.start(db, event.id, question_id=questions[2].id)
        assert repo.admin_states[event.id].current_question_id == questions[2].id

    @pytest.mark.asyncio
    async def test_unknown_event(self, service, db):
        with pytest.raises(NotFound):
            await service.get_state(db, uuid.uuid4())


# =====================================================================
# Controller
# =====================================================================


class TestController:

    @pytest.mark.asyncio
    async def test_start_runs_heartbeat_and_stop_ends_it(self, service, repo, event, questions):
        factory = MockSessionFactory()
        seen = []
        ctrl = PresentationController(
            factory, event.id, service=service, heartbeat_interval=0.01, on_change=seen.append,
        )
        await ctrl.open()
        await ctrl.start()
        assert ctrl.heartbeat_running

        repo.calls.clear()
        await asyncio.sleep(0.05)
        assert "touch_admin_state" in repo.calls, "Heartbeat touches AdminState while presenting"

        await ctrl.stop()
        assert not ctrl.heartbeat_running
        assert repo.admin_states[event.id].is_presenting is False
        assert seen[-1].phase == PresentationPhase.IDLE

    @pytest.mark.asyncio
    async def test_failed_sync_keeps_view(self, service, repo, event, questions):
        ctrl = PresentationController(MockSessionFactory(), event.id, service=service)
        await ctrl.open()
        repo.fail_on.add("save_admin_state")

        with pytest.raises(PersistFailed):
            await ctrl.start()
        assert ctrl.view.phase == PresentationPhase.IDLE, "Local state changes only after a write"
        assert not ctrl.heartbeat_running

    @pytest.mark.asyncio
    async def test_advance_while_presenting_syncs(self, service, repo, event, questions):
        ctrl = PresentationController(MockSessionFactory(), event.id, service=service)
        await ctrl.open()
        await ctrl.start()
        await ctrl.advance(Direction.NEXT)
        assert repo.admin_states[event.id].current_question_id == questions[1].id
        await ctrl.close()

    @pytest.mark.asyncio
    async def test_open_resumes_presenting_event(self, service, repo, event, questions, db):
        await service.start(db, event.id, question_id=questions[1].id)
        ctrl = PresentationController(
            MockSessionFactory(), event.id, service=service, heartbeat_interval=60,
        )
        view = await ctrl.open()
        assert view.presenting and view.cursor == 1
        assert ctrl.heartbeat_running
        await ctrl.close()
        assert repo.admin_states[event.id].is_presenting is False, "Close flushes to idle"
        assert not ctrl.heartbeat_running
