"""Display-gate, emergency stop, manual block and clearing tests."""

import uuid

import pytest

from livepoll_core.display_control import DisplayControlService, DisplayGate
from livepoll_core.errors import ConsentRequired, NotFound, ValidationFailed


@pytest.fixture
def control(repo):
    svc = DisplayControlService()
    svc._repo = repo
    return svc


class TestGates:

    @pytest.mark.asyncio
    async def test_turning_on_requires_consent(self, control, event, db):
        with pytest.raises(ConsentRequired) as exc_info:
            await control.set_gate(db, event.id, DisplayGate.TEXT, True)
        assert isinstance(exc_info.value, ValidationFailed), "Consent errors map to 400"
        assert event.text_display_enabled is False

        info = await control.set_gate(db, event.id, "text", True, consent=True)
        assert info.text_display_enabled is True
        assert event.image_display_enabled is False, "Gates are independent"

    @pytest.mark.asyncio
    async def test_turning_off_needs_nothing(self, control, repo, db):
        event = repo.add_event(image_display_enabled=True)
        info = await control.set_gate(db, event.id, DisplayGate.IMAGE, False)
        assert info.image_display_enabled is False

    @pytest.mark.asyncio
    async def test_unchanged_gate_is_noop(self, control, repo, db):
        event = repo.add_event(text_display_enabled=True)
        repo.calls.clear()
        await control.set_gate(db, event.id, DisplayGate.TEXT, True)
        assert "update_display_gates" not in repo.calls, "Already on: no consent, no write"

    @pytest.mark.asyncio
    async def test_consent_is_asked_every_time(self, control, event, db):
        await control.set_gate(db, event.id, DisplayGate.TEXT, True, consent=True)
        await control.set_gate(db, event.id, DisplayGate.TEXT, False)
        with pytest.raises(ConsentRequired):
            await control.set_gate(db, event.id, DisplayGate.TEXT, True)

    @pytest.mark.asyncio
    async def test_emergency_stop(self, control, repo, db):
        event = repo.add_event(text_display_enabled=True, image_display_enabled=True)
        info = await control.emergency_stop(db, event.id)
        assert not info.text_display_enabled and not info.image_display_enabled

    @pytest.mark.asyncio
    async def test_unknown_event(self, control, db):
        with pytest.raises(NotFound):
            await control.emergency_stop(db, uuid.uuid4())


class TestBlocking:

    @pytest.mark.asyncio
    async def test_manual_block_keeps_scores(self, control, repo, event, db):
        q = repo.add_question(event, "text")
        r = repo.add_response(q, "s1", "meh", moderation_status="approved",
                              moderation_categories={"harassment": 0.4})

        info = await control.block_response(db, event.id, r.id)

        assert info.moderation_status.value == "blocked"
        assert r.moderation_categories == {"harassment": 0.4}

    @pytest.mark.asyncio
    async def test_block_response_of_other_event(self, control, repo, event, db):
        other = repo.add_event()
        r = repo.add_response(repo.add_question(other, "text"), "s1", "x")
        with pytest.raises(NotFound):
            await control.block_response(db, event.id, r.id)


class TestClearing:

    @pytest.mark.asyncio
    async def test_clear_question_and_event(self, control, repo, event, db):
        q1 = repo.add_question(event, "single")
        q2 = repo.add_question(event, "text")
        repo.add_response(q1, "s1", "A")
        repo.add_response(q2, "s1", "hi")
        repo.add_response(q2, "s2", "yo")

        assert await control.clear_question_responses(db, event.id, q1.id) == 1
        assert await control.clear_event_responses(db, event.id) == 2
        assert repo.responses == []

    @pytest.mark.asyncio
    async def test_clear_foreign_question(self, control, repo, event, db):
        q = repo.add_question(repo.add_event(), "single")
        with pytest.raises(NotFound):
            await control.clear_question_responses(db, event.id, q.id)
