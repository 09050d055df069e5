"""
Tool Registry for NovelForge Agents

Tools are named, side-effecting functions an agent may invoke: retrieval,
graph queries, project and storyline reads and writes, and dispatching
another agent. Every invocation is timed and reported as a TraceRecord to
the trace logger; a logger failure never fails the tool call.

Which agent may call which tool is decided by the agent's allowed-tools list
(see AgentExecutor.call_tool), not by the registry.
"""

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Protocol, Union

from ..models import TraceRecord
from .context import CancellationToken
from .errors import InvalidInputError, OperationCancelledError, UpstreamError
from .retriever import Retriever

logger = logging.getLogger("novelforge.tools")

ProjectKey = Union[int, str]


class ToolCategory(str, Enum):
    """Categories of tools."""
    MEMORY = "memory"  # Vector search, retrieval
    GRAPH = "graph"  # Knowledge graph queries
    PROJECT = "project"  # Project and chapter reads
    STORYLINE = "storyline"  # Storyline reads and writes
    DISPATCH = "dispatch"  # Running another agent


class TraceSink(Protocol):
    def submit(self, record: TraceRecord) -> Any:
        ...


@dataclass
class ToolSpec:
    """
    JSON Schema specification for a tool.

    This defines the tool's interface for LLM function calling.
    """
    name: str
    description: str
    parameters: Dict[str, Any]  # JSON Schema for parameters
    required: List[str] = field(default_factory=list)
    category: ToolCategory = ToolCategory.PROJECT

    def to_openai_function(self) -> Dict[str, Any]:
        """Convert to OpenAI function calling format."""
        return {
            "name": self.name,
            "description": self.description,
            "parameters": {
                "type": "object",
                "properties": self.parameters,
                "required": self.required,
            },
        }

    def to_anthropic_tool(self) -> Dict[str, Any]:
        """Convert to Anthropic tool format."""
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": {
                "type": "object",
                "properties": self.parameters,
                "required": self.required,
            },
        }


@dataclass
class ToolResult:
    """Result from executing a tool."""
    success: bool
    data: Any = None
    error: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Tool:
    """A registered tool: its spec plus the handler that runs it."""
    spec: ToolSpec
    handler: Callable[..., Any]
    is_async: bool = True

    async def execute(self, token: Optional[CancellationToken] = None, **kwargs: Any) -> ToolResult:
        """Execute the tool with the given arguments.

        Cancellation is not a tool failure: OperationCancelledError from the
        handler, or from `token` firing mid-call, propagates to the caller.
        """
        missing = [name for name in self.spec.required if kwargs.get(name) in (None, "")]
        if missing:
            return ToolResult(
                success=False,
                error=f"missing required parameters: {', '.join(missing)}",
                metadata={"tool": self.spec.name},
            )
        if token is not None:
            token.raise_if_cancelled()
        try:
            if not self.is_async:
                result = self.handler(**kwargs)
            elif token is not None:
                result = await token.guard(self.handler(**kwargs))
            else:
                result = await self.handler(**kwargs)

            return ToolResult(
                success=True,
                data=result,
                metadata={"tool": self.spec.name},
            )
        except OperationCancelledError:
            raise
        except Exception as e:
            return ToolResult(
                success=False,
                error=str(e),
                metadata={"tool": self.spec.name},
            )


def _as_mapping(data: Any) -> Dict[str, Any]:
    if data is None:
        return {}
    if isinstance(data, dict):
        return data
    return {"result": data}


class ToolRegistry:
    """
    Central registry of tools available to agents.

    The registry:
    - Stores uniquely named tool definitions and handlers
    - Provides tool specs for LLM function calling
    - Executes tools, timing each call and emitting a trace record
    """

    def __init__(self, trace_logger: Optional[TraceSink] = None, history_size: int = 1000) -> None:
        self._tools: Dict[str, Tool] = {}
        self._lock = threading.Lock()
        self.trace_logger = trace_logger
        self._recent: Deque[TraceRecord] = deque(maxlen=history_size)

    def register(
        self,
        name: str,
        description: str,
        parameters: Dict[str, Any],
        handler: Callable[..., Any],
        required: Optional[List[str]] = None,
        category: ToolCategory = ToolCategory.PROJECT,
        is_async: bool = True,
    ) -> Tool:
        """
        Register a new tool.

        Args:
            name: Tool name (must be unique)
            description: Human-readable description
            parameters: JSON Schema for parameters
            handler: Function to execute
            required: Required parameter names
            category: Tool category
            is_async: Whether handler is async

        Raises:
            InvalidInputError: a tool with this name already exists
        """
        spec = ToolSpec(
            name=name,
            description=description,
            parameters=parameters,
            required=required or [],
            category=category,
        )
        tool = Tool(spec=spec, handler=handler, is_async=is_async)
        with self._lock:
            if name in self._tools:
                raise InvalidInputError(f"Tool '{name}' is already registered")
            self._tools[name] = tool
        return tool

    def get_tool(self, name: str) -> Optional[Tool]:
        with self._lock:
            return self._tools.get(name)

    def _select(self, names: Optional[List[str]]) -> List[Tool]:
        with self._lock:
            if names is None:
                return list(self._tools.values())
            return [self._tools[name] for name in names if name in self._tools]

    def get_openai_functions(self, names: Optional[List[str]] = None) -> List[Dict[str, Any]]:
        """Get tool specs in OpenAI function calling format."""
        return [tool.spec.to_openai_function() for tool in self._select(names)]

    def get_anthropic_tools(self, names: Optional[List[str]] = None) -> List[Dict[str, Any]]:
        """Get tool specs in Anthropic tool format."""
        return [tool.spec.to_anthropic_tool() for tool in self._select(names)]

    def list_tools(self) -> List[str]:
        """List all registered tool names."""
        with self._lock:
            return list(self._tools.keys())

    def describe_tools(self) -> Dict[str, str]:
        with self._lock:
            return {name: tool.spec.description for name, tool in self._tools.items()}

    async def execute(
        self,
        agent_id: str,
        tool_name: str,
        params: Optional[Dict[str, Any]] = None,
        project_id: Optional[ProjectKey] = None,
        token: Optional[CancellationToken] = None,
    ) -> ToolResult:
        """Run a tool by name and report the call to the trace logger.

        Raises:
            OperationCancelledError: the call was cancelled; it is still traced as failed
        """
        params = dict(params or {})
        start = time.monotonic()

        tool = self.get_tool(tool_name)
        if tool is None:
            result = ToolResult(success=False, error=f"Tool '{tool_name}' not found")
        else:
            try:
                result = await tool.execute(token=token, **params)
            except OperationCancelledError as e:
                self._emit(self._record(agent_id, tool_name, params, project_id, start, success=False, error=str(e)))
                logger.info(f"[execute] {agent_id} -> {tool_name} cancelled: {e}")
                raise

        record = self._record(
            agent_id, tool_name, params, project_id, start,
            success=result.success, error=result.error, data=result.data,
        )
        result.metadata["trace"] = record
        self._emit(record)

        if not result.success:
            logger.warning(f"[execute] {agent_id} -> {tool_name} failed: {result.error}")
        return result

    @staticmethod
    def _record(
        agent_id: str,
        tool_name: str,
        params: Dict[str, Any],
        project_id: Optional[ProjectKey],
        start: float,
        success: bool,
        error: Optional[str] = None,
        data: Any = None,
    ) -> TraceRecord:
        duration_ms = int((time.monotonic() - start) * 1000)
        return TraceRecord(
            agent_key=agent_id,
            tool_name=tool_name,
            project_id=project_id if project_id is not None else params.get("project_id"),
            action="tool_call",
            input_params=params,
            output_result=_as_mapping(data),
            success=success,
            error=error,
            duration_ms=duration_ms,
        )

    def _emit(self, record: TraceRecord) -> None:
        with self._lock:
            self._recent.append(record)
        if self.trace_logger is None:
            return
        try:
            self.trace_logger.submit(record)
        except Exception as e:
            logger.warning(f"[_emit] Failed to log tool call {record.tool_name}: {e}")

    def stats(self, agent_key: Optional[str] = None) -> Dict[str, Any]:
        """Aggregate counts over recently emitted tool traces."""
        with self._lock:
            records = [r for r in self._recent if agent_key is None or r.agent_key == agent_key]
        durations = [r.duration_ms for r in records]
        success = sum(1 for r in records if r.success)
        return {
            "total_calls": len(records),
            "success_calls": success,
            "failed_calls": len(records) - success,
            "avg_duration_ms": sum(durations) / len(durations) if durations else 0.0,
            "max_duration_ms": max(durations) if durations else 0,
        }


# ============================================================================
# Default tools
# ============================================================================

LINE_TYPE_ALIASES = {
    "skyline": "skyline",
    "天线": "skyline",
    "groundline": "groundline",
    "地线": "groundline",
    "plotline": "plotline",
    "剧情线": "plotline",
    "all": None,
    "全部": None,
}

GRAPH_QUERY_TYPES = ("character_relations", "world_events", "plot_arcs", "character_state")

Dispatcher = Callable[[str, str], Awaitable[str]]


def normalize_line_type(line_type: Optional[str]) -> Optional[str]:
    if not line_type:
        return None
    key = line_type.strip().lower()
    if key not in LINE_TYPE_ALIASES:
        raise InvalidInputError(f"Unknown storyline type: {line_type}")
    return LINE_TYPE_ALIASES[key]


def _require(collaborator: Any, source: str) -> Any:
    if collaborator is None:
        raise UpstreamError(source, "not configured")
    return collaborator


def create_default_tools(
    retriever: Optional[Retriever] = None,
    graph_store: Any = None,
    project_store: Any = None,
    dispatcher: Optional[Dispatcher] = None,
    trace_logger: Optional[TraceSink] = None,
) -> ToolRegistry:
    """
    Create the default tool registry.

    Args:
        retriever: Retriever over the project content index
        graph_store: GraphStore holding characters, events and plot arcs
        project_store: persistence service for projects, chapters and storylines
        dispatcher: coroutine running another agent, used by dispatch_agent
        trace_logger: sink receiving one TraceRecord per call

    Returns:
        Configured ToolRegistry
    """
    registry = ToolRegistry(trace_logger=trace_logger)

    async def rag_search(query: str, project_id: ProjectKey, top_k: int = 5, agent_id: Optional[str] = None):
        documents = await _require(retriever, "vector_index").retrieve(
            project_id, query, top_k=top_k, agent_id=agent_id,
        )
        return {
            "documents": [doc.model_dump() for doc in documents],
            "context": Retriever.build_context(documents),
        }

    registry.register(
        name="rag_search",
        description="Search project content by semantic similarity. Returns the most relevant passages with scores.",
        parameters={
            "query": {"type": "string", "description": "What to look for"},
            "project_id": {"type": ["integer", "string"], "description": "Project to search"},
            "top_k": {"type": "integer", "description": "Maximum number of passages", "default": 5},
            "agent_id": {"type": "string", "description": "Calling agent, for statistics"},
        },
        required=["query", "project_id"],
        category=ToolCategory.MEMORY,
        handler=rag_search,
    )

    async def query_graph(
        query_type: str,
        project_id: ProjectKey,
        character_id: Optional[str] = None,
        limit: int = 20,
    ):
        store = _require(graph_store, "graph_store")
        if query_type == "character_relations":
            return {"relations": store.character_relations(project_id, character_id, limit=limit)}
        if query_type == "world_events":
            return {"events": store.world_events(project_id, limit=limit)}
        if query_type == "plot_arcs":
            return {"arcs": store.plot_arcs(project_id, limit=limit)}
        if query_type == "character_state":
            if not character_id:
                raise InvalidInputError("character_state requires character_id")
            return {"state": store.character_state(project_id, character_id)}
        raise InvalidInputError(
            f"Unknown query_type '{query_type}', expected one of {', '.join(GRAPH_QUERY_TYPES)}"
        )

    registry.register(
        name="query_graph",
        description="Query the story knowledge graph: character relations, world events, plot arcs or a character's state.",
        parameters={
            "query_type": {"type": "string", "enum": list(GRAPH_QUERY_TYPES)},
            "project_id": {"type": ["integer", "string"]},
            "character_id": {"type": "string", "description": "Character node id, where relevant"},
            "limit": {"type": "integer", "default": 20},
        },
        required=["query_type", "project_id"],
        category=ToolCategory.GRAPH,
        handler=query_graph,
    )

    async def get_project_status(project_id: ProjectKey):
        return await _require(project_store, "persistent_store").get_project_status(project_id)

    registry.register(
        name="get_project_status",
        description="Get a project's progress: chapter count, word count and storyline counts.",
        parameters={"project_id": {"type": ["integer", "string"]}},
        required=["project_id"],
        category=ToolCategory.PROJECT,
        handler=get_project_status,
    )

    async def get_chapter_content(
        chapter_id: Optional[ProjectKey] = None,
        project_id: Optional[ProjectKey] = None,
        chapter_number: Optional[int] = None,
    ):
        store = _require(project_store, "persistent_store")
        if chapter_id is not None:
            return await store.get_chapter(chapter_id)
        if project_id is not None and chapter_number is not None:
            return await store.get_chapter_by_number(project_id, chapter_number)
        raise InvalidInputError("Provide chapter_id or project_id with chapter_number")

    registry.register(
        name="get_chapter_content",
        description="Get a chapter's content by chapter_id, or by project_id plus chapter_number.",
        parameters={
            "chapter_id": {"type": ["integer", "string"]},
            "project_id": {"type": ["integer", "string"]},
            "chapter_number": {"type": "integer"},
        },
        category=ToolCategory.PROJECT,
        handler=get_chapter_content,
    )

    async def get_storyline_status(project_id: ProjectKey, line_type: Optional[str] = None):
        storylines = await _require(project_store, "persistent_store").get_storylines(
            project_id, normalize_line_type(line_type),
        )
        return {"storylines": storylines}

    registry.register(
        name="get_storyline_status",
        description="Get the current skyline / groundline / plotline plans of a project.",
        parameters={
            "project_id": {"type": ["integer", "string"]},
            "line_type": {"type": "string", "description": "skyline, groundline, plotline or all"},
        },
        required=["project_id"],
        category=ToolCategory.STORYLINE,
        handler=get_storyline_status,
    )

    async def update_storyline(
        storyline_id: ProjectKey,
        title: Optional[str] = None,
        content: Optional[str] = None,
        status: Optional[str] = None,
    ):
        fields = {k: v for k, v in (("title", title), ("content", content), ("status", status)) if v is not None}
        if not fields:
            raise InvalidInputError("update_storyline needs at least one of title, content, status")
        return await _require(project_store, "persistent_store").update_storyline(storyline_id, fields)

    registry.register(
        name="update_storyline",
        description="Update a storyline's title, content or status.",
        parameters={
            "storyline_id": {"type": ["integer", "string"]},
            "title": {"type": "string"},
            "content": {"type": "string"},
            "status": {"type": "string"},
        },
        required=["storyline_id"],
        category=ToolCategory.STORYLINE,
        handler=update_storyline,
    )

    async def create_storyline(
        project_id: ProjectKey,
        line_type: str,
        title: str,
        content: str,
        chapter_range: Optional[str] = None,
    ):
        resolved = normalize_line_type(line_type)
        if resolved is None:
            raise InvalidInputError("create_storyline needs a concrete line_type")
        return await _require(project_store, "persistent_store").create_storyline(
            project_id, resolved, title, content, chapter_range=chapter_range,
        )

    registry.register(
        name="create_storyline",
        description="Create a new skyline, groundline or plotline plan.",
        parameters={
            "project_id": {"type": ["integer", "string"]},
            "line_type": {"type": "string"},
            "title": {"type": "string"},
            "content": {"type": "string"},
            "chapter_range": {"type": "string"},
        },
        required=["project_id", "line_type", "title", "content"],
        category=ToolCategory.STORYLINE,
        handler=create_storyline,
    )

    async def dispatch_agent(agent_key: str, input: str):
        content = await _require(dispatcher, "dispatcher")(agent_key, input)
        return {"agent_key": agent_key, "content": content}

    registry.register(
        name="dispatch_agent",
        description="Run another agent with the given input and return its output. Director only.",
        parameters={
            "agent_key": {"type": "string"},
            "input": {"type": "string"},
        },
        required=["agent_key", "input"],
        category=ToolCategory.DISPATCH,
        handler=dispatch_agent,
    )

    return registry
