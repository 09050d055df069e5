"""
Unit tests for the review loop.

Tests cover:
- JSON extraction and feedback parsing
- Approval on the first iteration
- Budget exhaustion with and without auto-approve
- Early stop when a revision brings no change
- Loop timeout versus request cancellation
"""

import asyncio
import json

import pytest

from conftest import StubEndpoint
from novelforge.agents import AgentExecutor
from novelforge.collaboration import MessageBus, ReviewLoop, extract_json, parse_feedback
from novelforge.config import ReviewSettings
from novelforge.core import CancellationToken, OperationCancelledError, Request
from novelforge.models import MessageKind

INITIAL = "月色下，少年拔剑出鞘。"


def review(score, approved=False, **extra) -> str:
    return json.dumps({"overall_score": score, "passed": approved, **extra})


def make_loop(responses, settings=None, bus=None, **stub_options):
    endpoint = StubEndpoint(responses=responses, **stub_options)
    return ReviewLoop(AgentExecutor(endpoint), bus=bus, settings=settings or ReviewSettings()), endpoint


def make_request(timeout=None):
    return Request.create(user_id="u", instruction="Write the duel", project_id=1, timeout=timeout)


class TestExtractJson:
    """Tests for extract_json."""

    def test_plain_json(self):
        assert extract_json('{"score": 5}') == {"score": 5}

    def test_fenced_block(self):
        text = 'Here is my review:\n```json\n{"score": 88}\n```\nThanks.'
        assert extract_json(text) == {"score": 88}

    def test_object_inside_prose(self):
        assert extract_json('Verdict: {"score": 70, "passed": false} end') == {"score": 70, "passed": False}

    def test_no_json(self):
        assert extract_json("just prose") is None
        assert extract_json("") is None


class TestParseFeedback:
    """Tests for parse_feedback."""

    def test_review_format(self):
        text = json.dumps({
            "overall_score": 72,
            "passed": False,
            "dimensions": {"pacing": {"score": 60, "issues": ["drags in the middle"]}},
            "feedback": {"overall": "Decent start", "improvements": ["cut the flashback"]},
        })
        feedback = parse_feedback(text)
        assert feedback.score == 72
        assert feedback.approved is False
        assert feedback.issues == ["drags in the middle"]
        assert feedback.suggestions == ["cut the flashback"]
        assert feedback.comment == "Decent start"

    def test_score_is_clamped(self):
        assert parse_feedback('{"score": 150}').score == 100

    def test_unparseable_is_a_rejection(self):
        feedback = parse_feedback("looks fine to me")
        assert feedback.approved is False
        assert feedback.score == 0
        assert feedback.comment == "looks fine to me"


class TestReviewLoop:
    """Tests for ReviewLoop.run."""

    @pytest.mark.asyncio
    async def test_approved_on_first_iteration(self):
        """Score 90 with approval ends the loop after one review."""
        loop, endpoint = make_loop({"quality": [review(90, True)]}, ReviewSettings(min_score=80))

        result = await loop.run("narrator", "quality", INITIAL, make_request())

        assert result.success is True
        assert len(result.iterations) == 1
        assert result.final_score == 90
        assert result.auto_approved is False
        assert result.final_content == INITIAL
        assert result.iterations[0].approved is True
        assert endpoint.calls_for("narrator") == []

    @pytest.mark.asyncio
    async def test_min_score_approves_without_flag(self):
        loop, _ = make_loop({"quality": [review(85, False)]}, ReviewSettings(min_score=80))
        result = await loop.run("narrator", "quality", INITIAL, make_request())
        assert result.success is True
        assert len(result.iterations) == 1

    @pytest.mark.asyncio
    async def test_budget_exhausted_auto_approves_last_revision(self):
        """Three rejections with improving revisions end auto-approved on the last revision."""
        loop, endpoint = make_loop(
            {"quality": [review(70)], "narrator": ["rev 1", "rev 2", "rev 3"]},
            ReviewSettings(max_iterations=3, min_score=80, auto_approve=True),
        )

        result = await loop.run("narrator", "quality", INITIAL, make_request())

        assert result.success is True
        assert result.auto_approved is True
        assert len(result.iterations) == 3
        assert [it.index for it in result.iterations] == [1, 2, 3]
        assert result.final_content == "rev 3"
        assert result.final_score == 70
        assert [it.content for it in result.iterations] == [INITIAL, "rev 1", "rev 2"]
        assert len(endpoint.calls_for("narrator")) == 3

    @pytest.mark.asyncio
    async def test_budget_exhausted_without_auto_approve(self):
        loop, _ = make_loop(
            {"quality": [review(70)], "narrator": ["rev 1", "rev 2"]},
            ReviewSettings(max_iterations=2, auto_approve=False),
        )

        result = await loop.run("narrator", "quality", INITIAL, make_request())

        assert result.success is False
        assert result.auto_approved is False
        assert len(result.iterations) == 2
        assert result.error

    @pytest.mark.asyncio
    async def test_zero_iterations(self):
        """No budget at all returns at once, auto-approved or failed."""
        loop, endpoint = make_loop({}, ReviewSettings(max_iterations=0, auto_approve=True))
        approved = await loop.run("narrator", "quality", INITIAL, make_request())
        assert approved.success is True
        assert approved.auto_approved is True
        assert approved.iterations == []
        assert approved.final_content == INITIAL
        assert endpoint.calls == []

        rejected = await loop.run(
            "narrator", "quality", INITIAL, make_request(),
            settings=ReviewSettings(max_iterations=0, auto_approve=False),
        )
        assert rejected.success is False
        assert rejected.iterations == []

    @pytest.mark.asyncio
    async def test_unchanged_revision_stops_loop(self):
        """A revision identical to its input ends the loop early."""
        loop, _ = make_loop(
            {"quality": [review(60)], "narrator": [INITIAL]},
            ReviewSettings(max_iterations=3, auto_approve=False),
        )

        result = await loop.run("narrator", "quality", INITIAL, make_request())

        assert len(result.iterations) == 1
        assert result.iterations[0].revision.improved is False
        assert result.success is False

    @pytest.mark.asyncio
    async def test_unparseable_review_counts_as_rejection(self):
        loop, _ = make_loop(
            {"quality": ["I like it"], "narrator": ["rev 1"]},
            ReviewSettings(max_iterations=1, auto_approve=False),
        )
        result = await loop.run("narrator", "quality", INITIAL, make_request())
        assert result.iterations[0].feedback.score == 0
        assert result.success is False

    @pytest.mark.asyncio
    async def test_feedback_and_revision_published(self):
        """Each rejected iteration sends feedback to the generator and a reply revision."""
        bus = MessageBus()
        loop, _ = make_loop(
            {"quality": [review(70, comment="more tension")], "narrator": ["rev 1"]},
            ReviewSettings(max_iterations=1),
            bus=bus,
        )

        await loop.run("narrator", "quality", INITIAL, make_request())

        feedback, revision = bus.conversation("narrator", "quality")
        assert feedback.kind == MessageKind.FEEDBACK
        assert feedback.sender == "quality"
        assert feedback.body == "more tension"
        assert feedback.metadata["iteration"] == 1
        assert revision.kind == MessageKind.REVISION
        assert revision.body == "rev 1"
        assert revision.reply_to == feedback.id

    @pytest.mark.asyncio
    async def test_loop_timeout_returns_partial_failure(self):
        """The loop's own deadline ends it with a failure, not an exception."""
        loop, _ = make_loop({}, ReviewSettings(timeout_seconds=0.05), hang=["quality"])
        request = make_request()

        result = await loop.run("narrator", "quality", INITIAL, request)

        assert result.success is False
        assert result.error == "review loop timeout"
        assert result.final_content == INITIAL
        assert not request.token.cancelled

    @pytest.mark.asyncio
    async def test_request_cancel_raises_with_partial(self):
        loop, _ = make_loop({}, ReviewSettings(), hang=["quality"])
        request = Request(user_id="u", instruction="x", token=CancellationToken())

        run = asyncio.ensure_future(loop.run("narrator", "quality", INITIAL, request))
        await asyncio.sleep(0.01)
        request.token.cancel("user cancelled")

        with pytest.raises(OperationCancelledError) as exc_info:
            await run
        assert exc_info.value.partial.success is False
        assert exc_info.value.partial.final_content == INITIAL
