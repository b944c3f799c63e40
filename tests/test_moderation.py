"""ModerationGate tests — verdicts, fail-open fallbacks and persistence.

The classifier is a FakeClassifier; the repository is a MockRepository
swapped in via ``gate._repo``.
"""

import pytest

from livepoll_core.models.moderation import ClassifierResult
from livepoll_core.moderation import (
    FALLBACK_API_ERROR,
    FALLBACK_KEY,
    FALLBACK_NO_RESULT,
    FALLBACK_NOT_CONFIGURED,
    ModerationGate,
    build_items,
    decide,
)
from livepoll_db.models.enums import QuestionType

from helpers.mocks import FakeClassifier, MockSessionFactory


def _gate(repo, classifier):
    gate = ModerationGate(classifier)
    gate._repo = repo
    return gate


# =====================================================================
# Pure decision
# =====================================================================


class TestDecide:

    def test_blocking_category_blocks(self):
        result = ClassifierResult(
            flagged=True,
            categories={"violence": True, "harassment": False},
            category_scores={"violence": 0.91, "harassment": 0.02},
        )
        outcome = decide(result)
        assert outcome.status == "blocked"
        assert outcome.blocked_by == ["violence"]
        assert outcome.categories == {"violence": 0.91, "harassment": 0.02}, (
            "Scores are persisted when the classifier reports them"
        )

    def test_non_blocking_flag_is_recorded_but_approved(self):
        result = ClassifierResult(flagged=True, categories={"harassment": True})
        outcome = decide(result)
        assert outcome.status == "approved"
        assert outcome.categories == {"harassment": True}, "Flag map is the fallback record"

    def test_clean_result_approves(self):
        assert decide(ClassifierResult()).status == "approved"

    def test_custom_blocking_set(self):
        result = ClassifierResult(flagged=True, categories={"harassment": True})
        assert decide(result, blocking={"harassment"}).status == "blocked"

    def test_image_items_use_url(self):
        items = build_items(QuestionType.IMAGE, "https://x/y.jpg")
        assert items[0].type == "image_url"
        assert build_items(QuestionType.TEXT, "hello")[0].type == "text"


# =====================================================================
# Fail-open
# =====================================================================


class TestFailOpen:

    @pytest.mark.asyncio
    async def test_no_classifier_approves(self, repo):
        outcome = await _gate(repo, None).classify(QuestionType.TEXT, "hi")
        assert outcome.status == "approved"
        assert outcome.reason == FALLBACK_NOT_CONFIGURED

    @pytest.mark.asyncio
    async def test_classifier_error_approves(self, repo):
        outcome = await _gate(repo, FakeClassifier(error=True)).classify(QuestionType.TEXT, "hi")
        assert outcome.status == "approved"
        assert outcome.categories == {FALLBACK_KEY: FALLBACK_API_ERROR}

    @pytest.mark.asyncio
    async def test_empty_result_approves(self, repo):
        classifier = FakeClassifier()
        classifier.returns_none = True
        outcome = await _gate(repo, classifier).classify(QuestionType.IMAGE, "https://x")
        assert outcome.reason == FALLBACK_NO_RESULT


# =====================================================================
# Persistence
# =====================================================================


class TestModerate:

    @pytest.mark.asyncio
    async def test_blocked_verdict_is_stored(self, repo, event, db):
        q = repo.add_question(event, "text")
        r = repo.add_response(q, "s1", "violent words", moderation_status="pending")
        classifier = FakeClassifier(ClassifierResult(
            flagged=True, categories={"violence": True}, category_scores={"violence": 0.8},
        ))

        outcome = await _gate(repo, classifier).moderate(db, r.id)

        assert outcome.status == "blocked"
        assert r.moderation_status == "blocked"
        assert r.moderation_categories == {"violence": 0.8}
        assert r.moderation_timestamp is not None

    @pytest.mark.asyncio
    async def test_manual_block_is_not_overridden(self, repo, event, db):
        """A response an admin blocked stays blocked even if the classifier is clean."""
        q = repo.add_question(event, "text")
        r = repo.add_response(q, "s1", "fine", moderation_status="blocked")

        outcome = await _gate(repo, FakeClassifier()).moderate(db, r.id)

        assert outcome.skipped and outcome.reason == "already_blocked"
        assert r.moderation_status == "blocked"
        assert "record_verdict" not in repo.calls

    @pytest.mark.asyncio
    async def test_closed_form_is_not_classified(self, repo, event, db):
        q = repo.add_question(event, "single")
        r = repo.add_response(q, "s1", "A")
        classifier = FakeClassifier()

        outcome = await _gate(repo, classifier).moderate(db, r.id)

        assert outcome.reason == "not_moderated"
        assert classifier.seen == [], "Closed-form answers never reach the classifier"
        assert r.moderation_status == "none"

    @pytest.mark.asyncio
    async def test_run_commits_and_survives_deleted_response(self, repo, event):
        factory = MockSessionFactory()
        gate = _gate(repo, FakeClassifier())
        q = repo.add_question(event, "text")
        r = repo.add_response(q, "s1", "hello", moderation_status="pending")

        outcome = await gate.run(factory, r.id)
        assert outcome.status == "approved"
        factory.db.commit.assert_awaited()

        repo.responses.clear()
        assert await gate.run(factory, r.id) is None, "Vanished responses are logged, not raised"

    @pytest.mark.asyncio
    async def test_run_rolls_back_on_database_error(self, repo, event):
        factory = MockSessionFactory()
        gate = _gate(repo, FakeClassifier())
        q = repo.add_question(event, "text")
        r = repo.add_response(q, "s1", "hello", moderation_status="pending")
        repo.fail_on.add("record_verdict")

        assert await gate.run(factory, r.id) is None
        factory.db.rollback.assert_awaited()
        factory.db.commit.assert_not_awaited()


# =====================================================================
# Unexpected classifier failures
# =====================================================================


class _CrashingClassifier(FakeClassifier):
    async def classify(self, items):
        raise RuntimeError("connection reset")


class _MalformedClassifier(FakeClassifier):
    async def classify(self, items):
        # Provider answered with a payload that does not fit the contract
        return ClassifierResult.model_validate({"categories": "not-a-map"})


class TestUnexpectedFailures:

    @pytest.mark.asyncio
    async def test_runtime_error_fails_open(self, repo):
        outcome = await _gate(repo, _CrashingClassifier()).classify(QuestionType.TEXT, "hi")
        assert outcome.status == "approved"
        assert outcome.reason == FALLBACK_API_ERROR

    @pytest.mark.asyncio
    async def test_malformed_payload_fails_open(self, repo):
        outcome = await _gate(repo, _MalformedClassifier()).classify(QuestionType.TEXT, "hi")
        assert outcome.status == "approved"
        assert outcome.categories == {FALLBACK_KEY: FALLBACK_API_ERROR}

    @pytest.mark.asyncio
    async def test_run_approves_instead_of_leaving_pending(self, repo, event):
        factory = MockSessionFactory()
        q = repo.add_question(event, "text")
        r = repo.add_response(q, "s1", "hello", moderation_status="pending")

        outcome = await _gate(repo, _CrashingClassifier()).run(factory, r.id)

        assert outcome is not None
        assert r.moderation_status == "approved", "A crashing classifier must not strand the row"
        assert r.moderation_categories == {FALLBACK_KEY: FALLBACK_API_ERROR}
        factory.db.commit.assert_awaited()


# =====================================================================
# Changes that land while the classifier is running
# =====================================================================


class _ConcurrentChangeClassifier(FakeClassifier):
    """Applies ``change(row)`` during the classifier call."""

    def __init__(self, row, change, result=None):
        super().__init__(result)
        self.row = row
        self.change = change

    async def classify(self, items):
        self.change(self.row)
        return await super().classify(items)


class TestStaleVerdicts:

    @pytest.mark.asyncio
    async def test_manual_block_during_classification_wins(self, repo, event, db):
        q = repo.add_question(event, "text")
        r = repo.add_response(q, "s1", "borderline", moderation_status="pending")

        def block(row):
            row.moderation_status = "blocked"

        outcome = await _gate(repo, _ConcurrentChangeClassifier(r, block)).moderate(db, r.id)

        assert r.moderation_status == "blocked", "A clean verdict must not undo a manual block"
        assert outcome.skipped and outcome.reason == "superseded"

    @pytest.mark.asyncio
    async def test_resubmission_during_classification_stays_pending(self, repo, event, db):
        """The first answer's verdict must not approve the replacement content."""
        q = repo.add_question(event, "text")
        r = repo.add_response(q, "s1", "first answer", moderation_status="pending")

        def resubmit(row):
            row.answer = "second answer"
            row.moderation_status = "pending"

        outcome = await _gate(repo, _ConcurrentChangeClassifier(r, resubmit)).moderate(db, r.id)

        assert outcome.reason == "superseded"
        assert r.answer == "second answer"
        assert r.moderation_status == "pending", "New content still awaits its own review"
        assert r.moderation_timestamp is None

    @pytest.mark.asyncio
    async def test_unchanged_row_gets_verdict(self, repo, event, db):
        q = repo.add_question(event, "text")
        r = repo.add_response(q, "s1", "nice talk", moderation_status="pending")

        outcome = await _gate(repo, FakeClassifier()).moderate(db, r.id)

        assert outcome.reason == "classified"
        assert r.moderation_status == "approved"
