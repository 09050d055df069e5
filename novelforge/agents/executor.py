"""
Agent Executor for NovelForge

The single `execute` contract behind every roster agent: fetch advisory
knowledge, assemble a token-budgeted prompt, call the model endpoint
(blocking or streaming) under the request's cancellation token, and record
a trace of the call.
"""

import asyncio
import hashlib
import json
import logging
import time
from typing import Any, Dict, List, Mapping, Optional, Union

from ..core.context import CancellationToken, Request
from ..core.errors import InvalidInputError, NovelForgeError, OperationCancelledError, UpstreamError
from ..core.prompt_builder import PRIORITY_DEPENDENCY, PromptBuilder, TokenCounter
from ..core.prompt_cache import ContextCache
from ..core.prompt_service import PromptOptions, PromptService
from ..core.retriever import Retriever
from ..core.streaming import StreamChannel
from ..core.tools import ToolRegistry, ToolResult
from ..models import AgentResult, TraceRecord
from .base import ChatMessage, ModelEndpoint
from .roster import AgentConfig, AgentRoster

logger = logging.getLogger("novelforge.executor")

DEPENDENCY_PREFIX = "dependency_"


def instruction_digest(instruction: str) -> str:
    return hashlib.sha1(instruction.encode("utf-8")).hexdigest()[:16]


def _dependency_parts(key: str, value: Any) -> Optional[tuple]:
    """(task id, agent, content) from a dependency_<id> context entry."""
    task_id = key[len(DEPENDENCY_PREFIX):]
    if isinstance(value, Mapping):
        return task_id, value.get("agent", "agent"), value.get("content", "")
    if isinstance(value, str):
        return task_id, "agent", value
    return None


class AgentExecutor:
    """Runs one roster agent against one instruction."""

    def __init__(
        self,
        endpoint: ModelEndpoint,
        roster: Optional[AgentRoster] = None,
        prompt_service: Optional[PromptService] = None,
        knowledge_retriever: Optional[Retriever] = None,
        project_retriever: Optional[Retriever] = None,
        tool_registry: Optional[ToolRegistry] = None,
        trace_logger: Optional[Any] = None,
        tracing: Optional[Any] = None,
        retrieval_top_k: int = 5,
    ):
        self.endpoint = endpoint
        self.roster = roster or AgentRoster()
        self.prompt_service = prompt_service or PromptService()
        self.knowledge_retriever = knowledge_retriever
        self.project_retriever = project_retriever
        self.tool_registry = tool_registry
        self.trace_logger = trace_logger
        self.tracing = tracing
        self.retrieval_top_k = retrieval_top_k

    @property
    def cache(self) -> ContextCache:
        return self.prompt_service.cache

    def resolve(self, agent: Union[str, AgentConfig]) -> AgentConfig:
        if isinstance(agent, AgentConfig):
            return agent
        return self.roster.get(agent)

    # ========================================================================
    # Advisory retrieval
    # ========================================================================

    async def _agent_knowledge(self, config: AgentConfig, instruction: str, token: CancellationToken) -> str:
        if not instruction or self.knowledge_retriever is None:
            return ""
        digest = instruction_digest(instruction)
        cached = self.cache.get_knowledge(config.key, digest)
        if cached is not None:
            return cached
        try:
            documents = await self.knowledge_retriever.retrieve(
                config.key, instruction, self.retrieval_top_k, agent_id=config.key, token=token,
            )
        except OperationCancelledError:
            raise
        except Exception as e:
            logger.warning(f"[_agent_knowledge] Knowledge retrieval failed for {config.key}: {e}")
            return ""
        block = Retriever.build_context(documents)
        self.cache.set_knowledge(config.key, digest, block)
        return block

    async def _project_knowledge(
        self,
        config: AgentConfig,
        instruction: str,
        project_id: Optional[Union[int, str]],
        token: CancellationToken,
    ) -> str:
        if not instruction or project_id is None or self.project_retriever is None:
            return ""
        try:
            documents = await self.project_retriever.retrieve(
                project_id, instruction, self.retrieval_top_k, agent_id=config.key, token=token,
            )
        except OperationCancelledError:
            raise
        except Exception as e:
            logger.warning(f"[_project_knowledge] Project retrieval failed for project {project_id}: {e}")
            return ""
        return Retriever.build_context(documents)

    # ========================================================================
    # Prompt assembly
    # ========================================================================

    def _project_info(self, project_id: Optional[Union[int, str]], context: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
        """Project info from the context, remembered per project in the cache."""
        info = context.get("project_info")
        if project_id is None:
            return info
        if info:
            self.cache.set_project(project_id, json.dumps(info, ensure_ascii=False, default=str))
            return info
        cached = self.cache.get_project(project_id)
        if cached is None:
            return None
        return json.loads(cached)

    def build_prompt(
        self,
        config: AgentConfig,
        instruction: str,
        project_id: Optional[Union[int, str]],
        context: Mapping[str, Any],
        agent_knowledge: str = "",
        project_knowledge: str = "",
    ) -> PromptBuilder:
        options = PromptOptions(
            project_id=project_id,
            project_info=self._project_info(project_id, context),
            chapter_info=context.get("chapter_info"),
            recent_content=context.get("recent_content") or "",
            storylines=context.get("storylines"),
            characters=context.get("characters") or [],
            writing_guidelines=context.get("guidelines") or "",
        )
        builder = self.prompt_service.builder_for(config.system_prompt, instruction, options)
        builder.add_knowledge_block("agent", agent_knowledge)
        builder.add_knowledge_block("project", project_knowledge)

        for key in sorted(context):
            if not key.startswith(DEPENDENCY_PREFIX):
                continue
            parts = _dependency_parts(key, context[key])
            if parts:
                builder.add_dependency_result(*parts)
        if context.get("arbitration"):
            builder.add_section("arbitration", f"### Arbitration\n{context['arbitration']}", PRIORITY_DEPENDENCY)
        return builder

    # ========================================================================
    # Execution
    # ========================================================================

    async def execute(
        self,
        agent: Union[str, AgentConfig],
        instruction: str,
        request: Request,
        stream_sink: Optional[StreamChannel] = None,
        context: Optional[Mapping[str, Any]] = None,
        action: str = "generate",
    ) -> AgentResult:
        """
        Run one agent call.

        Args:
            agent: Agent key or configuration
            instruction: The user-role text
            request: Request context (project id, extras, cancellation)
            stream_sink: Receives content deltas when given
            context: Task context, layered over the request extras
            action: Task kind recorded in the trace

        Raises:
            InvalidInputError: unknown agent key
            UpstreamError: the model endpoint failed
            OperationCancelledError: the request was cancelled or timed out
        """
        config = self.resolve(agent)
        token = request.token
        token.raise_if_cancelled()
        merged: Dict[str, Any] = {**request.extras, **(context or {})}
        start = time.monotonic()

        agent_knowledge, project_knowledge = await asyncio.gather(
            self._agent_knowledge(config, instruction, token),
            self._project_knowledge(config, instruction, request.project_id, token),
        )

        builder = self.build_prompt(
            config, instruction, request.project_id, merged, agent_knowledge, project_knowledge,
        )
        system, user = builder.build_messages()
        messages: List[ChatMessage] = [
            {"role": "system", "content": system},
            {"role": "user", "content": user},
        ]

        content = ""
        tokens_in = tokens_out = 0
        model = config.model
        try:
            if stream_sink is not None:
                content = await self._stream(config, messages, stream_sink, token)
                tokens_in = TokenCounter.count(system) + TokenCounter.count(user)
                tokens_out = TokenCounter.count(content)
            else:
                response = await token.guard(
                    self.endpoint.chat(messages, config.model, config.temperature, config.max_tokens)
                )
                content = response.content
                tokens_in, tokens_out = response.tokens_in, response.tokens_out
                model = response.model or config.model
        except OperationCancelledError as e:
            self._record(request, config, action, instruction, "", 0, 0, model, start, error=str(e))
            raise
        except NovelForgeError as e:
            logger.error(f"[execute] {config.key} failed: {e}")
            self._record(request, config, action, instruction, "", 0, 0, model, start, error=str(e))
            raise
        except Exception as e:
            logger.error(f"[execute] {config.key} failed: {e}")
            self._record(request, config, action, instruction, "", 0, 0, model, start, error=str(e))
            raise UpstreamError("model_endpoint", str(e)) from e

        duration_ms = self._record(
            request, config, action, instruction, content, tokens_in, tokens_out, model, start,
        )
        if self.tracing is not None:
            self.tracing.log_generation(
                request.request_id,
                name=f"{config.key}.{action}",
                model=model,
                input_messages=messages,
                output=content,
                input_tokens=tokens_in,
                output_tokens=tokens_out,
                latency_ms=duration_ms,
            )
        return AgentResult(
            content=content,
            tokens_used=tokens_in + tokens_out,
            duration_ms=duration_ms,
            metadata={
                "agent": config.key,
                "model": model,
                "sections": builder.sections_summary(),
                "streamed": stream_sink is not None,
            },
        )

    async def _stream(
        self,
        config: AgentConfig,
        messages: List[ChatMessage],
        sink: StreamChannel,
        token: CancellationToken,
    ) -> str:
        """Forward deltas to the sink; a consumer cancel tears the stream down."""
        call_token = token.child()
        watcher = asyncio.ensure_future(sink.wait_cancelled())
        watcher.add_done_callback(lambda _: call_token.cancel("stream cancelled by consumer"))
        stream = self.endpoint.chat_stream(messages, config.model, config.temperature, config.max_tokens)
        chunks: List[str] = []

        async def consume() -> None:
            async for delta in stream:
                chunks.append(delta)
                sink.send_delta(delta)

        try:
            await call_token.guard(consume())
        finally:
            watcher.cancel()
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()
        return "".join(chunks)

    def _record(
        self,
        request: Request,
        config: AgentConfig,
        action: str,
        instruction: str,
        response: str,
        tokens_in: int,
        tokens_out: int,
        model: str,
        start: float,
        error: Optional[str] = None,
    ) -> int:
        duration_ms = int((time.monotonic() - start) * 1000)
        record = TraceRecord(
            agent_key=config.key,
            project_id=request.project_id,
            action=action,
            instruction=instruction,
            response=response,
            input_tokens=tokens_in,
            output_tokens=tokens_out,
            model=model,
            success=error is None,
            error=error,
            duration_ms=duration_ms,
        )
        request.record(record)
        if self.trace_logger is not None:
            try:
                self.trace_logger.submit(record)
            except Exception as e:
                logger.warning(f"[_record] Failed to queue trace for {config.key}: {e}")
        return duration_ms

    # ========================================================================
    # Tools
    # ========================================================================

    async def call_tool(
        self,
        agent: Union[str, AgentConfig],
        tool_name: str,
        params: Optional[Dict[str, Any]] = None,
        request: Optional[Request] = None,
    ) -> ToolResult:
        """Run a tool on behalf of an agent, limited to the agent's allowed tools."""
        config = self.resolve(agent)
        if tool_name not in config.tools:
            raise InvalidInputError(f"Agent '{config.key}' may not use tool '{tool_name}'")
        if self.tool_registry is None:
            raise InvalidInputError("No tool registry configured")
        project_id = request.project_id if request is not None else None
        token = request.token if request is not None else None
        result = await self.tool_registry.execute(
            config.key, tool_name, params, project_id=project_id, token=token,
        )
        if request is not None and "trace" in result.metadata:
            request.record(result.metadata["trace"])
        return result
