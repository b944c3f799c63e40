"""SubmissionPipeline tests — validation, rate limiting, uploads, persistence.

The pipeline and its rate limiter share one MockRepository; images go to a
FakeObjectStore.
"""

import io
import json
from datetime import datetime, timezone

import pytest
from PIL import Image
from sqlalchemy.exc import IntegrityError

from livepoll_core.errors import (
    NotFound,
    PersistFailed,
    RateLimited,
    UploadFailed,
    UploadFailureCause,
    ValidationFailed,
)
from livepoll_core.media import ImageUpload
from livepoll_core.models.moderation import ClassifierResult
from livepoll_core.models.question import question_from_row
from livepoll_core.moderation import ModerationGate
from livepoll_core.submission import SubmissionPipeline, normalize_answer, validate_session_id

from helpers.mocks import FakeClassifier, FakeObjectStore, MockSessionFactory

AGREED = datetime(2026, 10, 1, 9, 0, tzinfo=timezone.utc)


def _jpeg_bytes():
    buf = io.BytesIO()
    Image.new("RGB", (40, 30), (10, 120, 200)).save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def store():
    return FakeObjectStore()


@pytest.fixture
def pipeline(repo, store):
    pipe = SubmissionPipeline(store=store)
    pipe._repo = repo
    pipe._limiter._repo = repo
    return pipe


# =====================================================================
# Answer normalization
# =====================================================================


class TestNormalizeAnswer:

    def test_single_choice(self, repo, event):
        q = question_from_row(repo.add_question(event, "single", options=["Yes", "No"]))
        assert normalize_answer(q, "Yes") == "Yes"
        with pytest.raises(ValidationFailed):
            normalize_answer(q, "Maybe")

    def test_multi_choice_is_stored_in_option_order(self, repo, event):
        q = question_from_row(repo.add_question(event, "multiple", options=["A", "B", "C"]))
        assert json.loads(normalize_answer(q, ["C", "A", "C"])) == ["A", "C"]
        assert json.loads(normalize_answer(q, '["B"]')) == ["B"], "JSON strings are accepted"
        with pytest.raises(ValidationFailed):
            normalize_answer(q, [])
        with pytest.raises(ValidationFailed):
            normalize_answer(q, ["Z"])

    def test_rating_bounds(self, repo, event):
        q = question_from_row(repo.add_question(event, "rating", options=None))
        assert normalize_answer(q, 5) == "5"
        assert normalize_answer(q, " 3 ") == "3"
        for bad in (0, 6, True, 2.5, "five"):
            with pytest.raises(ValidationFailed):
                normalize_answer(q, bad)

    def test_text_is_trimmed_and_non_blank(self, repo, event):
        q = question_from_row(repo.add_question(event, "text"))
        assert normalize_answer(q, "  hello  ") == "hello"
        with pytest.raises(ValidationFailed):
            normalize_answer(q, "   ")

    def test_session_id_must_be_path_safe(self):
        assert validate_session_id("abc-123_x.y") == "abc-123_x.y"
        for bad in ("", "../etc", "a/b", None, "x" * 129):
            with pytest.raises(ValidationFailed):
                validate_session_id(bad)


# =====================================================================
# Persistence and duplicate policy
# =====================================================================


class TestPersistence:

    @pytest.mark.asyncio
    async def test_overwrite_keeps_one_row(self, pipeline, repo, event, db):
        q = question_from_row(repo.add_question(event, "single"))
        first = await pipeline.submit(db, q, session_id="s1", answer="A")
        second = await pipeline.submit(db, q, session_id="s1", answer="B")

        assert first.created and not second.created
        assert len(repo.responses) == 1
        assert repo.responses[0].answer == "B"
        assert second.needs_moderation is False
        assert second.response.moderation_status.value == "none"

    @pytest.mark.asyncio
    async def test_append_adds_rows(self, pipeline, repo, event, db):
        q = question_from_row(repo.add_question(event, "single", duplicate_policy="append"))
        await pipeline.submit(db, q, session_id="s1", answer="A")
        await pipeline.submit(db, q, session_id="s1", answer="A")
        assert len(repo.responses) == 2

    @pytest.mark.asyncio
    async def test_free_form_is_pending_with_agreement(self, pipeline, repo, event, db):
        q = question_from_row(repo.add_question(event, "text"))
        outcome = await pipeline.submit(db, q, session_id="s1", answer="hi", agreed_at=AGREED)

        assert outcome.needs_moderation
        assert outcome.response.moderation_status.value == "pending"
        assert outcome.response.policy_agreed_at == AGREED
        assert len(repo.usage) == 1, "Free-form submissions are metered"

    @pytest.mark.asyncio
    async def test_closed_form_ignores_agreement(self, pipeline, repo, event, db):
        q = question_from_row(repo.add_question(event, "rating", options=None))
        outcome = await pipeline.submit(db, q, session_id="s1", answer=4, agreed_at=AGREED)
        assert outcome.response.policy_agreed_at is None
        assert repo.usage == []

    @pytest.mark.asyncio
    async def test_invalid_answer_persists_nothing(self, pipeline, repo, event, db):
        q = question_from_row(repo.add_question(event, "text"))
        with pytest.raises(ValidationFailed):
            await pipeline.submit(db, q, session_id="s1", answer="")
        assert repo.responses == [] and repo.usage == []

    @pytest.mark.asyncio
    async def test_database_error_becomes_persist_failed(self, pipeline, repo, event, db):
        q = question_from_row(repo.add_question(event, "single"))
        repo.fail_on.add("upsert_response")
        with pytest.raises(PersistFailed) as exc_info:
            await pipeline.submit(db, q, session_id="s1", answer="A")
        assert exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_foreign_key_violation_becomes_not_found(self, pipeline, repo, event, db):
        class _ForeignKeyViolation(Exception):
            sqlstate = "23503"

        async def _fk_violation(*args, **kwargs):
            raise IntegrityError("INSERT", {}, _ForeignKeyViolation())

        q = question_from_row(repo.add_question(event, "single"))
        repo.upsert_response = _fk_violation
        with pytest.raises(NotFound):
            await pipeline.submit(db, q, session_id="s1", answer="A")


# =====================================================================
# Rate limiting
# =====================================================================


class TestRateLimiting:

    @pytest.mark.asyncio
    async def test_fourth_text_submission_is_refused(self, pipeline, repo, event, db):
        q = question_from_row(repo.add_question(event, "text", duplicate_policy="append"))
        for i in range(3):
            await pipeline.submit(db, q, session_id="s1", answer=f"idea {i}")

        with pytest.raises(RateLimited) as exc_info:
            await pipeline.submit(db, q, session_id="s1", answer="one more")
        assert exc_info.value.retry_after == 60
        assert len(repo.responses) == 3, "Refused submission persists nothing"

    @pytest.mark.asyncio
    async def test_choice_answers_are_never_limited(self, pipeline, repo, event, db):
        q = question_from_row(repo.add_question(event, "single", duplicate_policy="append"))
        for _ in range(10):
            await pipeline.submit(db, q, session_id="s1", answer="A")
        assert len(repo.responses) == 10


# =====================================================================
# Images
# =====================================================================


class TestImages:

    @pytest.mark.asyncio
    async def test_upload_stores_public_url(self, pipeline, repo, store, event, db):
        row = repo.add_question(event, "image")
        q = question_from_row(row)
        outcome = await pipeline.submit(
            db, q, session_id="s1", image=ImageUpload(data=_jpeg_bytes()), agreed_at=AGREED,
        )

        key = f"{event.id}/{row.id}/s1.jpg"
        assert key in store.objects, "Image is written under the per-session key"
        assert outcome.response.answer.startswith(f"https://storage.test/public/{key}?t=")
        assert outcome.needs_moderation

    @pytest.mark.asyncio
    async def test_missing_file(self, pipeline, repo, event, db):
        q = question_from_row(repo.add_question(event, "image"))
        with pytest.raises(ValidationFailed):
            await pipeline.submit(db, q, session_id="s1")

    @pytest.mark.asyncio
    async def test_store_failure_persists_nothing(self, repo, event, db):
        store = FakeObjectStore(error=UploadFailed("down", cause=UploadFailureCause.NETWORK))
        pipe = SubmissionPipeline(store=store)
        pipe._repo = repo
        pipe._limiter._repo = repo
        q = question_from_row(repo.add_question(event, "image"))

        with pytest.raises(UploadFailed) as exc_info:
            await pipe.submit(db, q, session_id="s1", image=ImageUpload(data=_jpeg_bytes()))
        assert exc_info.value.cause is UploadFailureCause.NETWORK
        assert repo.responses == [] and repo.usage == []

    @pytest.mark.asyncio
    async def test_no_store_configured(self, repo, event, db):
        pipe = SubmissionPipeline(store=None)
        pipe._repo = repo
        pipe._limiter._repo = repo
        q = question_from_row(repo.add_question(event, "image"))
        with pytest.raises(UploadFailed):
            await pipe.submit(db, q, session_id="s1", image=ImageUpload(data=_jpeg_bytes()))


# =====================================================================
# Lookup
# =====================================================================


class TestLoadQuestion:

    @pytest.mark.asyncio
    async def test_inactive_or_foreign_question(self, pipeline, repo, event, db):
        other = repo.add_event()
        foreign = repo.add_question(other, "single")
        inactive = repo.add_question(event, "single", is_active=False)

        with pytest.raises(NotFound):
            await pipeline.load_question(db, event.id, foreign.id)
        with pytest.raises(NotFound):
            await pipeline.load_question(db, event.id, inactive.id)

    @pytest.mark.asyncio
    async def test_inactive_event(self, pipeline, repo, db):
        closed = repo.add_event(is_active=False)
        q = repo.add_question(closed, "single")
        with pytest.raises(NotFound):
            await pipeline.load_question(db, closed.id, q.id)


# =====================================================================
# Two-phase moderation
# =====================================================================


class TestTwoPhaseModeration:

    @pytest.mark.asyncio
    async def test_pending_then_verdict(self, pipeline, repo, event, db):
        """Submit returns pending; the gate later records the verdict."""
        q = question_from_row(repo.add_question(event, "text"))
        outcome = await pipeline.submit(db, q, session_id="s1", answer="something awful")
        row = repo.responses[0]
        assert row.moderation_status == "pending"

        gate = ModerationGate(FakeClassifier(ClassifierResult(
            flagged=True, categories={"hate": True}, category_scores={"hate": 0.97},
        )))
        gate._repo = repo
        await gate.run(MockSessionFactory(db), outcome.response.id)
        assert row.moderation_status == "blocked"

    @pytest.mark.asyncio
    async def test_overwrite_resets_verdict(self, pipeline, repo, event, db):
        q = question_from_row(repo.add_question(event, "text"))
        await pipeline.submit(db, q, session_id="s1", answer="first")
        row = repo.responses[0]
        row.moderation_status = "approved"
        row.moderation_categories = {"hate": 0.01}

        await pipeline.submit(db, q, session_id="s1", answer="second")
        assert row.moderation_status == "pending", "Overwritten content is re-moderated"
        assert row.moderation_categories is None
