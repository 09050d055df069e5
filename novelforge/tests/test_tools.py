"""
Unit tests for the tool registry and the default tools.

Tests cover:
- Registration, lookup and function-calling specs
- Execution: unknown tools, missing parameters, handler errors, cancellation
- Trace records per call and tool statistics
- Default tools with and without their collaborators
"""

import asyncio

import pytest
from unittest.mock import AsyncMock, MagicMock

from conftest import StubEndpoint
from novelforge.agents import AgentRoster
from novelforge.core import (
    CancellationToken,
    InvalidInputError,
    OperationCancelledError,
    Retriever,
    ToolCategory,
    ToolRegistry,
    create_default_tools,
)
from novelforge.core.tools import normalize_line_type
from novelforge.models import Document
from novelforge.services import GraphStore, NodeLabel, RelationType


async def echo(**kwargs):
    return kwargs


def sync_add(a, b):
    return a + b


@pytest.fixture
def registry():
    registry = ToolRegistry()
    registry.register(
        "echo", "Echo the parameters", {"text": {"type": "string"}}, echo,
        required=["text"], category=ToolCategory.MEMORY,
    )
    registry.register("add", "Add two numbers", {}, sync_add, is_async=False)
    return registry


class TestToolRegistry:
    """Tests for ToolRegistry."""

    def test_duplicate_name(self, registry):
        with pytest.raises(InvalidInputError):
            registry.register("echo", "again", {}, echo)

    def test_specs(self, registry):
        functions = registry.get_openai_functions(["echo"])
        assert functions[0]["parameters"]["required"] == ["text"]
        anthropic = registry.get_anthropic_tools()
        assert [t["name"] for t in anthropic] == ["echo", "add"]
        assert "input_schema" in anthropic[0]
        assert registry.list_tools() == ["echo", "add"]
        assert registry.describe_tools() == {"echo": "Echo the parameters", "add": "Add two numbers"}

    @pytest.mark.asyncio
    async def test_execute_async_and_sync(self, registry):
        echoed = await registry.execute("narrator", "echo", {"text": "hi"}, project_id=3)
        added = await registry.execute("narrator", "add", {"a": 1, "b": 2})

        assert echoed.success is True
        assert echoed.data == {"text": "hi"}
        assert added.data == 3

    @pytest.mark.asyncio
    async def test_unknown_tool(self, registry):
        result = await registry.execute("narrator", "teleport")
        assert result.success is False
        assert "not found" in result.error

    @pytest.mark.asyncio
    async def test_missing_required_parameter(self, registry):
        result = await registry.execute("narrator", "echo", {})
        assert result.success is False
        assert "text" in result.error

    @pytest.mark.asyncio
    async def test_handler_error(self, registry):
        result = await registry.execute("narrator", "add", {"a": 1})
        assert result.success is False

    @pytest.mark.asyncio
    async def test_every_call_is_traced(self):
        trace_logger = MagicMock()
        registry = ToolRegistry(trace_logger=trace_logger)
        registry.register("echo", "Echo", {}, echo)

        result = await registry.execute("quality", "echo", {"project_id": 9, "text": "x"})

        trace = trace_logger.submit.call_args.args[0]
        assert trace is result.metadata["trace"]
        assert trace.tool_name == "echo"
        assert trace.agent_key == "quality"
        assert trace.project_id == 9
        assert trace.output_result == {"project_id": 9, "text": "x"}

    @pytest.mark.asyncio
    async def test_trace_logger_failure_is_swallowed(self):
        trace_logger = MagicMock()
        trace_logger.submit.side_effect = RuntimeError("queue closed")
        registry = ToolRegistry(trace_logger=trace_logger)
        registry.register("echo", "Echo", {}, echo)

        result = await registry.execute("quality", "echo", {"text": "x"})

        assert result.success is True

    @pytest.mark.asyncio
    async def test_stats(self, registry):
        await registry.execute("narrator", "echo", {"text": "a"})
        await registry.execute("narrator", "echo", {})
        await registry.execute("quality", "add", {"a": 1, "b": 1})

        stats = registry.stats("narrator")
        assert stats["total_calls"] == 2
        assert stats["success_calls"] == 1
        assert stats["failed_calls"] == 1
        assert registry.stats()["total_calls"] == 3

    @pytest.mark.asyncio
    async def test_cancellation_from_handler_propagates(self):
        """A handler that is cancelled mid-call does not turn into a failed result."""
        trace_logger = MagicMock()
        registry = ToolRegistry(trace_logger=trace_logger)

        async def cancelled(**kwargs):
            raise OperationCancelledError("user cancelled")

        registry.register("dispatch_agent", "Dispatch", {}, cancelled)

        with pytest.raises(OperationCancelledError):
            await registry.execute("director", "dispatch_agent", {"agent_key": "narrator"})

        trace = trace_logger.submit.call_args.args[0]
        assert trace.success is False
        assert trace.error == "user cancelled"

    @pytest.mark.asyncio
    async def test_token_fires_during_slow_handler(self):
        """Cancelling the token aborts a handler that is still running."""
        registry = ToolRegistry()
        started = asyncio.Event()

        async def slow(**kwargs):
            started.set()
            await asyncio.sleep(10)

        registry.register("rag_search", "Search", {}, slow)
        token = CancellationToken()

        async def cancel_when_started():
            await started.wait()
            token.cancel("user cancelled")

        canceller = asyncio.ensure_future(cancel_when_started())
        with pytest.raises(OperationCancelledError):
            await registry.execute("narrator", "rag_search", {"query": "duel"}, token=token)
        await canceller

    @pytest.mark.asyncio
    async def test_ordinary_errors_still_become_failed_results(self, registry):
        token = CancellationToken()
        result = await registry.execute("narrator", "add", {"a": 1}, token=token)
        assert result.success is False
        assert token.cancelled is False


class TestNormalizeLineType:
    """Tests for storyline type aliases."""

    def test_aliases(self):
        assert normalize_line_type("天线") == "skyline"
        assert normalize_line_type("Groundline") == "groundline"
        assert normalize_line_type("all") is None
        assert normalize_line_type(None) is None

    def test_unknown(self):
        with pytest.raises(InvalidInputError):
            normalize_line_type("sideline")


class TestDefaultTools:
    """Tests for create_default_tools."""

    def test_roster_tools_are_all_registered(self):
        registry = create_default_tools()
        assert AgentRoster().validate_tools(registry.list_tools()) == []

    @pytest.mark.asyncio
    async def test_missing_collaborator(self):
        result = await create_default_tools().execute("director", "get_project_status", {"project_id": 1})
        assert result.success is False
        assert "not configured" in result.error

    @pytest.mark.asyncio
    async def test_rag_search(self):
        index = MagicMock()
        index.search = AsyncMock(return_value=[
            Document(id="a", content="low", score=0.2),
            Document(id="b", content="high", score=0.8),
        ])
        registry = create_default_tools(retriever=Retriever(StubEndpoint(), index))

        result = await registry.execute("narrator", "rag_search", {"query": "duel", "project_id": 1, "top_k": 2})

        assert result.success is True
        assert [d["content"] for d in result.data["documents"]] == ["high", "low"]
        assert result.data["context"].startswith("[1] relevance: 0.80\nhigh")

    @pytest.mark.asyncio
    async def test_rag_search_rejects_zero_top_k(self):
        index = MagicMock()
        index.search = AsyncMock(return_value=[])
        registry = create_default_tools(retriever=Retriever(StubEndpoint(), index))

        result = await registry.execute("narrator", "rag_search", {"query": "duel", "project_id": 1, "top_k": 0})

        assert result.success is False
        assert "top_k" in result.error
        index.search.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_query_graph(self):
        graph = GraphStore()
        graph.create_node(1, NodeLabel.CHARACTER, "lin", "林风")
        graph.create_node(1, NodeLabel.CHARACTER, "su", "苏晴")
        graph.create_relation(1, (NodeLabel.CHARACTER, "lin"), (NodeLabel.CHARACTER, "su"), RelationType.ALLY_OF)
        registry = create_default_tools(graph_store=graph)

        relations = await registry.execute(
            "quality", "query_graph", {"query_type": "character_relations", "project_id": 1},
        )
        state = await registry.execute("quality", "query_graph", {"query_type": "character_state", "project_id": 1})
        unknown = await registry.execute("quality", "query_graph", {"query_type": "weather", "project_id": 1})

        assert relations.data["relations"][0]["type"] == "ALLY_OF"
        assert state.success is False
        assert "character_id" in state.error
        assert unknown.success is False

    @pytest.mark.asyncio
    async def test_storyline_tools(self):
        store = MagicMock()
        store.get_storylines = AsyncMock(return_value=[{"id": 1, "line_type": "skyline"}])
        store.create_storyline = AsyncMock(return_value={"id": 2})
        store.update_storyline = AsyncMock(return_value={"id": 1, "updated": True})
        registry = create_default_tools(project_store=store)

        status = await registry.execute("skyline", "get_storyline_status", {"project_id": 1, "line_type": "天线"})
        created = await registry.execute("plotline", "create_storyline", {
            "project_id": 1, "line_type": "剧情线", "title": "Arc 2", "content": "The sect war",
        })
        empty_update = await registry.execute("plotline", "update_storyline", {"storyline_id": 1})

        store.get_storylines.assert_awaited_once_with(1, "skyline")
        assert status.data == {"storylines": [{"id": 1, "line_type": "skyline"}]}
        assert store.create_storyline.await_args.args[1] == "plotline"
        assert created.data == {"id": 2}
        assert empty_update.success is False

    @pytest.mark.asyncio
    async def test_get_chapter_content_needs_a_key(self):
        store = MagicMock()
        store.get_chapter_by_number = AsyncMock(return_value={"chapter_number": 3})
        registry = create_default_tools(project_store=store)

        by_number = await registry.execute("narrator", "get_chapter_content", {"project_id": 1, "chapter_number": 3})
        neither = await registry.execute("narrator", "get_chapter_content", {})

        assert by_number.data == {"chapter_number": 3}
        assert neither.success is False

    @pytest.mark.asyncio
    async def test_dispatch_agent(self):
        dispatcher = AsyncMock(return_value="narrator output")
        registry = create_default_tools(dispatcher=dispatcher)

        result = await registry.execute("director", "dispatch_agent", {"agent_key": "narrator", "input": "Write"})

        dispatcher.assert_awaited_once_with("narrator", "Write")
        assert result.data == {"agent_key": "narrator", "content": "narrator output"}
