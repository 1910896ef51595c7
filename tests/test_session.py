"""Tests for the session state controller."""

import asyncio
import datetime as dt
import json

import pytest

from sentiment_hub.errors import OperationInProgressError, SessionStateError
from sentiment_hub.models import ChatMessage, Review
from sentiment_hub.session import (
    ANALYSIS_FAILED_NOTICE,
    build_trend,
    compute_stats,
    filter_by_star,
    round_half_away_from_zero,
)

FALLBACK = "Sorry, I encountered an error processing your request."


def _review(review_id, rating, sentiment="neutral", date="2024-03-01", score=0.5):
    return Review(id=review_id, date=date, rating=rating, sentiment=sentiment, text="t", score=score)


@pytest.fixture
async def analyzed(make_provider, make_controller, payload_json):
    provider = make_provider(responses=[payload_json])
    controller = make_controller(provider)
    await controller.run_analysis("reviews")
    return controller, provider


class TestDerivedViews:
    def test_stats_average_and_positive_ratio(self, payload):
        reviews = tuple(Review.model_validate(r) for r in payload["reviews"])
        stats = compute_stats(reviews)

        assert stats.average_rating == 3.3
        assert stats.positive_percentage == 50
        assert stats.total_reviews == 6

    def test_stats_for_no_reviews(self):
        stats = compute_stats(())
        assert (stats.average_rating, stats.positive_percentage, stats.total_reviews) == (0.0, 0, 0)

    def test_positive_ratio_rounds_to_nearest_percent(self):
        reviews = (_review("a", 5, "positive"), _review("b", 1, "negative"), _review("c", 3))
        assert compute_stats(reviews).positive_percentage == 33

    @pytest.mark.parametrize("value,expected", [(3.5, 4), (4.4, 4), (4.5, 5), (2.49, 2), (0.5, 1)])
    def test_round_half_away_from_zero(self, value, expected):
        assert round_half_away_from_zero(value) == expected

    def test_filter_uses_rounded_rating(self):
        reviews = (_review("a", 4.4), _review("b", 3.5), _review("c", 4.5), _review("d", 3.4), _review("e", 4))
        assert [r.id for r in filter_by_star(reviews, 4)] == ["a", "b", "e"]

    def test_filter_none_returns_everything_in_order(self):
        reviews = (_review("x", 1), _review("y", 5), _review("z", 3))
        assert [r.id for r in filter_by_star(reviews, None)] == ["x", "y", "z"]

    def test_trend_is_sorted_by_date_without_touching_reviews(self):
        reviews = (
            _review("late", 2, date="2024-03-10", score=0.2),
            _review("early", 5, date="2024-03-01", score=0.9),
        )
        trend = build_trend(reviews)

        assert [p.date for p in trend] == [dt.date(2024, 3, 1), dt.date(2024, 3, 10)]
        assert trend[0].score == pytest.approx(90)
        assert reviews[0].id == "late"


class TestAnalysis:
    async def test_successful_analysis_is_stored(self, analyzed):
        controller, _ = analyzed
        assert controller.result is not None
        assert controller.derive_stats().average_rating == 3.3
        assert controller.notice is None
        assert not controller.analyzing

    async def test_failed_analysis_keeps_previous_result(self, analyzed):
        controller, provider = analyzed
        previous = controller.result
        provider.responses.append("this is not json")

        assert await controller.run_analysis("new reviews") is None

        assert controller.result is previous
        assert controller.notice == ANALYSIS_FAILED_NOTICE
        assert controller.input_text == "new reviews"

    async def test_failed_first_analysis_stores_nothing(self, make_provider, make_controller):
        controller = make_controller(make_provider(responses=[TimeoutError("slow")]))

        assert await controller.run_analysis("reviews") is None
        assert controller.result is None
        assert controller.derive_stats() is None
        assert controller.filtered_reviews == []

    async def test_rerun_replaces_result_and_keeps_star_filter(self, analyzed, payload):
        controller, provider = analyzed
        controller.set_star_filter(5)
        assert [r.id for r in controller.filtered_reviews] == ["r1", "r5"]

        payload["reviews"] = [
            {"id": "n1", "date": "2024-04-01", "rating": 4.6, "sentiment": "positive", "text": "new", "score": 0.8},
            {"id": "n2", "date": "2024-04-02", "rating": 2, "sentiment": "negative", "text": "bad", "score": 0.1},
        ]
        provider.responses.append(json.dumps(payload))
        await controller.run_analysis("other reviews")

        assert controller.star_filter == 5
        assert [r.id for r in controller.filtered_reviews] == ["n1"]
        assert controller.derive_stats().total_reviews == 2

    async def test_overlapping_analysis_is_rejected(self, make_provider, make_controller, payload_json):
        gate = asyncio.Event()

        async def slow():
            await gate.wait()
            return payload_json

        controller = make_controller(make_provider(responses=[slow]))
        task = asyncio.create_task(controller.run_analysis("reviews"))
        await asyncio.sleep(0)

        assert controller.analyzing
        with pytest.raises(OperationInProgressError):
            await controller.run_analysis("more reviews")

        gate.set()
        assert await task is not None
        assert not controller.analyzing

    async def test_empty_text_is_rejected(self, make_provider, make_controller):
        controller = make_controller(make_provider())
        with pytest.raises(ValueError):
            await controller.run_analysis("   ")

    def test_star_filter_range(self, make_provider, make_controller):
        controller = make_controller(make_provider())
        with pytest.raises(ValueError):
            controller.set_star_filter(6)


class TestChat:
    async def test_streamed_reply_assembles_in_place(self, analyzed):
        controller, provider = analyzed
        provider.replies.append(["Hel", "lo, ", "world"])

        turn = controller.start_chat_turn("How are we doing?")
        assert controller.chat_history[-1].is_thinking
        assert controller.chatting

        updates = [message async for message in turn.stream()]

        assert [m.text for m in updates] == ["Hel", "Hello, ", "Hello, world"]
        assert not any(m.is_thinking for m in updates)
        assert [(m.role, m.text) for m in controller.chat_history] == [
            ("user", "How are we doing?"),
            ("model", "Hello, world"),
        ]
        assert not controller.chatting

    async def test_failure_before_any_text_replaces_placeholder(self, analyzed):
        controller, provider = analyzed
        provider.replies.append([ConnectionError("refused")])

        updates = [m async for m in controller.start_chat_turn("hi").stream()]

        assert [m.text for m in updates] == [FALLBACK]
        assert [(m.role, m.text, m.is_thinking) for m in controller.chat_history] == [
            ("user", "hi", False),
            ("model", FALLBACK, False),
        ]

    async def test_failure_mid_stream_keeps_partial_text(self, analyzed):
        controller, provider = analyzed
        provider.replies.append(["Half an ", "answer", ConnectionError("dropped")])

        updates = [m async for m in controller.start_chat_turn("hi").stream()]

        assert updates[-1].text == FALLBACK
        assert [m.text for m in controller.chat_history] == ["hi", "Half an answer", FALLBACK]
        assert not controller.chatting

    async def test_chat_stays_usable_after_failure(self, analyzed):
        controller, provider = analyzed
        provider.replies.extend([[RuntimeError("boom")], ["recovered"]])

        [m async for m in controller.start_chat_turn("first").stream()]
        [m async for m in controller.start_chat_turn("second").stream()]

        assert controller.chat_history[-1].text == "recovered"
        assert len(controller.chat_history) == 4

    async def test_second_turn_while_streaming_is_rejected(self, analyzed):
        controller, _ = analyzed
        controller.start_chat_turn("first")
        with pytest.raises(OperationInProgressError):
            controller.start_chat_turn("second")

    async def test_chat_requires_an_analysis(self, make_provider, make_controller):
        controller = make_controller(make_provider())
        with pytest.raises(SessionStateError):
            controller.start_chat_turn("hi")

    async def test_cancel_finalizes_partial_reply(self, analyzed):
        controller, provider = analyzed
        provider.replies.append(["one ", "two ", "three"])
        turn = controller.start_chat_turn("count")

        updates = []
        async for message in turn.stream():
            updates.append(message)
            controller.cancel_chat()

        assert [m.text for m in updates] == ["one "]
        assert controller.chat_history[-1].text == "one "
        assert not controller.chat_history[-1].is_thinking
        assert not controller.chatting

    async def test_cancel_stops_a_stalled_reply(self, analyzed):
        controller, provider = analyzed

        async def stall():
            await asyncio.sleep(3600)

        provider.replies.append(["first ", stall])
        turn = controller.start_chat_turn("hi")
        updates = []

        async def consume():
            async for message in turn.stream():
                updates.append(message)

        task = asyncio.create_task(consume())
        await asyncio.sleep(0.05)
        assert controller.cancel_chat()
        await asyncio.wait_for(task, timeout=1.0)

        assert [m.text for m in updates] == ["first "]
        assert controller.chat_history[-1] == ChatMessage(role="model", text="first ")
        assert not controller.chatting

        provider.replies.append(["next"])
        [m async for m in controller.start_chat_turn("again").stream()]
        assert controller.chat_history[-1].text == "next"

    async def test_cancel_releases_a_turn_nobody_streamed(self, analyzed):
        controller, provider = analyzed
        dropped = controller.start_chat_turn("hi")

        assert controller.cancel_chat()
        assert not controller.chatting
        assert controller.chat_history[-1] == ChatMessage(role="model", text="")
        assert [m async for m in dropped.stream()] == []
        assert provider.sent == []

        provider.replies.append(["retry ok"])
        [m async for m in controller.start_chat_turn("retry").stream()]
        assert [m.text for m in controller.chat_history] == ["hi", "", "retry", "retry ok"]

    async def test_reanalysis_detaches_a_streaming_turn(self, analyzed, payload):
        controller, provider = analyzed
        provider.replies.append(["stale ", "reply"])
        stale = controller.start_chat_turn("hi").stream()
        assert (await stale.__anext__()).text == "stale "

        payload["summary"] = "Fresh numbers"
        provider.responses.append(json.dumps(payload))
        await controller.run_analysis("new batch")

        assert controller.chat_history == []
        assert not controller.chatting

        provider.replies.append(["fresh"])
        fresh = controller.start_chat_turn("again")
        assert [m async for m in stale] == []
        assert controller.chatting

        [m async for m in fresh.stream()]
        assert [(m.role, m.text) for m in controller.chat_history] == [("user", "again"), ("model", "fresh")]
        assert provider.conversations[0].history == []
        assert "Summary: Fresh numbers" in provider.instructions[-1]

    async def test_reanalysis_clears_chat_and_regrounds(self, analyzed, payload):
        controller, provider = analyzed
        [m async for m in controller.start_chat_turn("hi").stream()]

        payload["summary"] = "A completely new story"
        provider.responses.append(json.dumps(payload))
        await controller.run_analysis("new batch")
        assert controller.chat_history == []

        [m async for m in controller.start_chat_turn("again").stream()]
        assert "Summary: A completely new story" in provider.instructions[-1]
        assert len(provider.instructions) == 2

    async def test_context_kept_when_refresh_disabled(self, make_provider, make_controller, payload_json, payload):
        provider = make_provider(responses=[payload_json])
        controller = make_controller(provider, refresh_context_on_reanalysis=False)
        await controller.run_analysis("reviews")
        [m async for m in controller.start_chat_turn("hi").stream()]

        payload["summary"] = "A completely new story"
        provider.responses.append(json.dumps(payload))
        await controller.run_analysis("new batch")
        [m async for m in controller.start_chat_turn("again").stream()]

        assert len(provider.instructions) == 1
        assert "Customers love the power" in provider.instructions[0]
        assert len(controller.chat_history) == 4
        assert controller.result.summary == "A completely new story"

    async def test_snapshot_uses_wire_names(self, analyzed):
        controller, _ = analyzed
        controller.set_star_filter(1)
        snapshot = controller.snapshot()

        assert snapshot["stats"] == {"averageRating": 3.3, "positivePercentage": 50, "totalReviews": 6}
        assert [r["id"] for r in snapshot["filteredReviews"]] == ["r4"]
        assert snapshot["result"]["positiveKeywords"][0]["type"] == "positive"
        first = snapshot["trend"][0]
        assert (first["date"], first["rating"]) == ("2024-03-01", 5.0)
        assert first["score"] == pytest.approx(95)
