"""
Unit tests for configuration, the agent roster and request plumbing.

Tests cover:
- Settings from environment variables
- Roster overrides and tool validation
- Endpoint factory errors
- Cancellation tokens, stream channels and id generation
- CLI helpers
"""

import logging

import pytest
from pydantic import SecretStr

from novelforge.agents import NARRATOR, AgentConfig, AgentRoster, create_model_endpoint
from novelforge.config import (
    AgentOverride,
    ClaudeConfig,
    LLMConfiguration,
    LLMProvider,
    configure_logging,
    create_settings_from_env,
    models_for_agent,
)
from novelforge.core import (
    CancellationToken,
    IdGenerator,
    InvalidInputError,
    OperationCancelledError,
    StreamChannel,
    StreamEventKind,
    create_default_tools,
)
from novelforge.main import _project_id, build_parser, summarize_traces
from novelforge.models import TraceRecord

PROVIDER_KEYS = ("OPENAI_API_KEY", "OPENROUTER_API_KEY", "ANTHROPIC_API_KEY", "LLM_PROVIDER")


@pytest.fixture
def clean_env(monkeypatch):
    for name in PROVIDER_KEYS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestSettings:
    """Tests for create_settings_from_env."""

    def test_defaults(self, clean_env):
        settings = create_settings_from_env(dotenv=False)
        assert settings.review.max_iterations == 3
        assert settings.review.min_score == 80.0
        assert settings.review.auto_approve is True
        assert settings.review_in_workflow is False
        assert settings.max_concurrency == 8
        assert settings.llm.openai is None

    def test_overrides(self, clean_env):
        clean_env.setenv("REVIEW_MAX_ITERATIONS", "5")
        clean_env.setenv("REVIEW_AUTO_APPROVE", "false")
        clean_env.setenv("REVIEW_IN_WORKFLOW", "yes")
        clean_env.setenv("MAX_CONCURRENCY", "2")
        clean_env.setenv("AGENT_MODEL_NARRATOR", "gpt-4o-mini")
        clean_env.setenv("AGENT_TEMPERATURE_NARRATOR", "0.9")
        clean_env.setenv("OPENAI_API_KEY", "sk-test")

        settings = create_settings_from_env(dotenv=False)

        assert settings.review.max_iterations == 5
        assert settings.review.auto_approve is False
        assert settings.review_in_workflow is True
        assert settings.max_concurrency == 2
        assert settings.agent_overrides["narrator"].model == "gpt-4o-mini"
        assert settings.agent_overrides["narrator"].temperature == 0.9
        assert settings.llm.openai.api_key.get_secret_value() == "sk-test"

    def test_configure_logging_once(self):
        logger = configure_logging("DEBUG")
        handlers = len(logger.handlers)
        configure_logging("INFO")
        assert len(logger.handlers) == handlers
        assert logger.level == logging.INFO


class TestAgentRoster:
    """Tests for AgentRoster."""

    def test_default_priorities(self):
        priorities = AgentRoster().priorities()
        assert priorities["director"] == 100
        assert priorities["quality"] == 90
        assert priorities["narrator"] == priorities["character"] == 80
        assert priorities["skyline"] == 70

    def test_overrides(self):
        roster = AgentRoster.with_overrides({NARRATOR: AgentOverride(temperature=0.2)})
        narrator = roster.get(NARRATOR)
        assert narrator.temperature == 0.2
        assert narrator.model == "gpt-4o"

    def test_models_follow_chat_provider(self):
        """On Claude, agents without a model override get a Claude model."""
        llm = LLMConfiguration(
            default_provider=LLMProvider.CLAUDE,
            claude=ClaudeConfig(api_key=SecretStr("sk-ant")),
        )
        roster = AgentRoster.with_overrides({NARRATOR: AgentOverride(model="claude-3-opus")}, llm=llm)

        assert roster.get(NARRATOR).model == "claude-3-opus"
        assert roster.get("director").model == "claude-3-5-sonnet-20241022"
        assert roster.get("skyline").model == "claude-3-5-haiku-20241022"

    def test_models_kept_without_provider_config(self):
        llm = LLMConfiguration(default_provider=LLMProvider.CLAUDE)
        assert llm.model_for("narrator", "gpt-4o") == "gpt-4o"
        assert models_for_agent(LLMProvider.OPENROUTER, "Quality") == ["openai/gpt-4o"]

    def test_unknown_key(self):
        with pytest.raises(InvalidInputError):
            AgentRoster().get("poet")

    def test_duplicate_key(self):
        config = AgentConfig(key="a", name="A", system_prompt="x")
        with pytest.raises(InvalidInputError):
            AgentRoster([config, config])

    def test_tool_validation(self):
        assert AgentRoster().validate_tools(create_default_tools().list_tools()) == []
        errors = AgentRoster().validate_tools(["rag_search"])
        assert "director: tool dispatch_agent is not registered" in errors


class TestEndpointFactory:
    def test_missing_provider_config(self):
        with pytest.raises(InvalidInputError):
            create_model_endpoint(LLMConfiguration())
        with pytest.raises(InvalidInputError):
            create_model_endpoint(LLMConfiguration(), LLMProvider.CLAUDE)


class TestCancellationToken:
    """Tests for CancellationToken."""

    def test_cancel_propagates_to_children(self):
        parent = CancellationToken()
        child = parent.child()
        parent.cancel("user cancelled")
        assert child.cancelled is True
        assert child.reason == "user cancelled"

    def test_child_of_cancelled_parent(self):
        parent = CancellationToken()
        parent.cancel()
        assert parent.child().cancelled is True

    def test_child_cancel_leaves_parent(self):
        parent = CancellationToken()
        parent.child().cancel()
        assert parent.cancelled is False

    def test_deadline(self):
        token = CancellationToken(timeout=0)
        assert token.cancelled is True
        assert token.reason == "deadline exceeded"
        with pytest.raises(OperationCancelledError):
            token.raise_if_cancelled()

    def test_child_inherits_earlier_deadline(self):
        parent = CancellationToken(timeout=1)
        child = parent.child(timeout=100)
        assert child.remaining() <= 1
        assert CancellationToken().remaining() is None

    @pytest.mark.asyncio
    async def test_guard(self):
        async def work():
            return "done"

        token = CancellationToken()
        assert await token.guard(work()) == "done"
        token.cancel()
        with pytest.raises(OperationCancelledError):
            await token.guard(work())


class TestStreamChannel:
    """Tests for StreamChannel."""

    @pytest.mark.asyncio
    async def test_exactly_one_terminal(self):
        channel = StreamChannel()
        channel.send_delta("a")
        channel.send_delta("")
        channel.close_done("a")
        channel.close_error("late")
        channel.send_delta("b")

        events = await channel.collect()

        assert [e.kind for e in events] == [StreamEventKind.DELTA, StreamEventKind.DONE]
        assert channel.terminal.kind == StreamEventKind.DONE

    @pytest.mark.asyncio
    async def test_iteration_yields_deltas(self):
        channel = StreamChannel()
        for piece in ("紧张", "的", "打斗"):
            channel.send_delta(piece)
        channel.close_cancelled()
        assert "".join([d async for d in channel]) == "紧张的打斗"

    def test_consumer_cancel(self):
        channel = StreamChannel()
        channel.cancel()
        assert channel.cancelled is True


class TestIdGenerator:
    def test_monotonic(self):
        ids = IdGenerator(start=5)
        assert ids.next_int() == 5
        assert ids.next_id("conflict") == "conflict_6"


class TestCli:
    """Tests for command-line helpers."""

    def test_parser(self):
        args = build_parser().parse_args(["写一段打斗", "--project-id", "42", "--stream", "--timeout", "30"])
        assert args.instruction == "写一段打斗"
        assert args.stream is True
        assert args.timeout == 30.0
        assert _project_id(args.project_id) == 42
        assert _project_id("proj-a") == "proj-a"
        assert _project_id(None) is None

    def test_summarize_traces(self):
        traces = [
            TraceRecord(agent_key="narrator", input_tokens=10, output_tokens=20),
            TraceRecord(agent_key="narrator", input_tokens=5, output_tokens=5, success=False),
            TraceRecord(agent_key="quality", input_tokens=1, output_tokens=2),
        ]
        summary = summarize_traces(traces)
        assert summary["total_calls"] == 3
        assert summary["agents"]["narrator"] == {"calls": 2, "input_tokens": 15, "output_tokens": 25, "errors": 1}
