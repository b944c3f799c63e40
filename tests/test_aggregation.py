"""Aggregation and display-gate tests.

``compute_display`` is pure, so most tests feed it MockResponseRow lists
directly.  ``ResultsService`` is checked once against a MockRepository.
"""

import json
import uuid

import pytest

from livepoll_core.aggregation import (
    DISPLAY_OFF_NOTICE,
    SUPPRESSED_NOTICE,
    ResultsService,
    compute_display,
    compute_event_summary,
    is_disclosed,
    max_category_score,
    response_rate,
    tally,
)
from livepoll_core.errors import NotFound
from livepoll_core.models.display import (
    ChartPayload,
    ContentPayload,
    DisplayOffPayload,
    SuppressedPayload,
)
from livepoll_core.models.question import question_from_row

from helpers.mocks import MockEventRow, MockQuestionRow, MockResponseRow


def _question(event, question_type="single", **kwargs):
    if "options" not in kwargs and question_type in ("single", "multiple"):
        kwargs["options"] = ["A", "B", "C"]
    return question_from_row(MockQuestionRow(event_id=event.id, question_type=question_type, **kwargs))


def _answers(question, *pairs, **kwargs):
    return [
        MockResponseRow(question_id=question.id, session_id=sid, answer=answer, **kwargs)
        for sid, answer in pairs
    ]


# =====================================================================
# Rate gating
# =====================================================================


class TestDisclosure:

    def test_rate_requires_positive_expectation(self):
        assert response_rate(5, None) is None
        assert response_rate(5, 0) is None
        assert response_rate(3, 10) == pytest.approx(0.3)

    def test_threshold_is_strict(self):
        assert is_disclosed(None)
        assert not is_disclosed(0.3), "Exactly at the threshold stays hidden"
        assert is_disclosed(0.4)

    def test_three_of_ten_is_suppressed_four_is_charted(self):
        event = MockEventRow(expected_participants=10)
        q = _question(event)
        three = _answers(q, ("s1", "A"), ("s2", "A"), ("s3", "B"))
        payload = compute_display(q, three, event)
        assert isinstance(payload, SuppressedPayload)
        assert payload.notice == SUPPRESSED_NOTICE

        four = three + _answers(q, ("s4", "C"))
        assert isinstance(compute_display(q, four, event), ChartPayload)

    def test_no_expectation_never_suppresses(self):
        event = MockEventRow(expected_participants=0)
        q = _question(event)
        payload = compute_display(q, _answers(q, ("s1", "A")), event)
        assert isinstance(payload, ChartPayload)
        assert payload.response_rate is None

    def test_repeat_answers_count_once(self):
        """Append-policy repeats do not inflate the respondent count."""
        event = MockEventRow(expected_participants=10)
        q = _question(event, duplicate_policy="append")
        responses = _answers(q, *[("s1", "A")] * 5)
        assert isinstance(compute_display(q, responses, event), SuppressedPayload)


# =====================================================================
# Tallies
# =====================================================================


class TestTally:

    def test_rating_scenario(self):
        """Expected 4, three answers of 5: 75% respond, one bar at 100%."""
        event = MockEventRow(expected_participants=4)
        q = _question(event, "rating")
        payload = compute_display(q, _answers(q, ("s1", "5"), ("s2", "5"), ("s3", "5")), event)

        assert isinstance(payload, ChartPayload)
        assert payload.response_rate == pytest.approx(0.75)
        by_key = {t.key: t for t in payload.tallies}
        assert list(by_key) == ["1", "2", "3", "4", "5"], "All five buckets are always present"
        assert by_key["5"].count == 3 and by_key["5"].percentage == 100.0
        assert by_key["1"].count == 0 and by_key["1"].percentage == 0.0
        assert by_key["5"].label == "Very satisfied"

    def test_rating_custom_labels(self):
        event = MockEventRow()
        q = _question(event, "rating", options=["Bad", "Meh", "OK", "Good", "Great"])
        tallies = tally(q, _answers(q, ("s1", "4")))
        assert tallies[3].label == "Good"

    def test_multi_choice_percentages_can_exceed_100(self):
        event = MockEventRow()
        q = _question(event, "multiple")
        responses = _answers(
            q, ("s1", json.dumps(["A", "B"])), ("s2", json.dumps(["A"])),
        )
        tallies = {t.key: t for t in tally(q, responses)}
        assert tallies["A"].percentage == 100.0
        assert tallies["B"].percentage == 50.0
        assert tallies["C"].count == 0

    def test_multi_choice_tolerates_scalar_answer(self):
        event = MockEventRow()
        q = _question(event, "multiple")
        tallies = {t.key: t.count for t in tally(q, _answers(q, ("s1", "B")))}
        assert tallies["B"] == 1

    def test_single_choice_ignores_unknown_answers(self):
        event = MockEventRow()
        q = _question(event)
        tallies = {t.key: t.count for t in tally(q, _answers(q, ("s1", "A"), ("s2", "Z")))}
        assert tallies == {"A": 1, "B": 0, "C": 0}

    def test_percentages_round_to_one_decimal(self):
        event = MockEventRow()
        q = _question(event)
        tallies = tally(q, _answers(q, ("s1", "A"), ("s2", "B"), ("s3", "B")))
        assert tallies[0].percentage == 33.3
        assert tallies[1].percentage == 66.7

    def test_empty_is_deterministic(self):
        event = MockEventRow()
        q = _question(event)
        first = compute_display(q, [], event)
        assert first == compute_display(q, [], event)
        assert all(t.percentage == 0.0 for t in first.tallies)


# =====================================================================
# Free-form content
# =====================================================================


class TestFreeForm:

    def test_display_off_hides_content_but_reports_moderation(self):
        event = MockEventRow(text_display_enabled=False)
        q = _question(event, "text")
        responses = (
            _answers(q, ("s1", "bad"), moderation_status="blocked",
                     moderation_categories={"hate": 0.9})
            + _answers(q, ("s2", "fine"), moderation_status="pending")
        )
        payload = compute_display(q, responses, event)

        assert isinstance(payload, DisplayOffPayload)
        assert payload.notice == DISPLAY_OFF_NOTICE
        assert payload.moderation.blocked_count == 1
        assert payload.moderation.pending_count == 1
        assert payload.moderation.max_score == pytest.approx(0.9)

    def test_content_excludes_blocked(self):
        event = MockEventRow(text_display_enabled=True)
        q = _question(event, "text")
        responses = (
            _answers(q, ("s1", "bad"), moderation_status="blocked")
            + _answers(q, ("s2", "good"), moderation_status="approved")
        )
        payload = compute_display(q, responses, event)

        assert isinstance(payload, ContentPayload)
        assert [i.answer for i in payload.items] == ["good"]
        assert payload.unique_respondents == 1

    def test_image_uses_image_gate(self):
        event = MockEventRow(text_display_enabled=True, image_display_enabled=False)
        q = _question(event, "image")
        payload = compute_display(q, _answers(q, ("s1", "https://x/a.jpg")), event)
        assert isinstance(payload, DisplayOffPayload)

    def test_free_form_is_never_rate_gated(self):
        event = MockEventRow(expected_participants=100, text_display_enabled=True)
        q = _question(event, "text")
        assert isinstance(compute_display(q, _answers(q, ("s1", "hi")), event), ContentPayload)

    def test_max_score_ignores_flags_and_markers(self):
        assert max_category_score({"hate": True, "violence": 0.4}) == pytest.approx(0.4)
        assert max_category_score({"fallback_reason": "no_result"}) is None
        assert max_category_score(None) is None


# =====================================================================
# Event summary and service
# =====================================================================


class TestSummary:

    def test_band(self):
        event = MockEventRow(expected_participants=10)
        q = _question(event)
        low = compute_event_summary(event, _answers(q, ("s1", "A"), ("s2", "A"), ("s3", "A")))
        assert low.band == "low"
        high = compute_event_summary(event, _answers(q, *[(f"s{i}", "A") for i in range(4)]))
        assert high.band == "high"
        ungated = compute_event_summary(MockEventRow(), [])
        assert ungated.band is None and ungated.response_rate is None


class TestResultsService:

    @pytest.mark.asyncio
    async def test_display_and_not_found(self, repo, db):
        event = repo.add_event(expected_participants=4)
        q = repo.add_question(event, "rating")
        for sid in ("s1", "s2", "s3"):
            repo.add_response(q, sid, "5")
        service = ResultsService()
        service._repo = repo

        payload = await service.display(db, event.id, q.id)
        assert isinstance(payload, ChartPayload)

        with pytest.raises(NotFound):
            await service.display(db, repo.add_event().id, q.id)
        with pytest.raises(NotFound):
            await service.summary(db, uuid.uuid4())
