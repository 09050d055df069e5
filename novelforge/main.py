"""
NovelForge Orchestrator - Main Entry Point
Multi-agent collaborative novel writing.

Usage:
    python -m novelforge "续写上文一段紧张的打斗" --project-id 42
"""

import argparse
import asyncio
import json
import logging
import signal
from typing import Any, Dict, List, Optional

from .agents import AgentExecutor, AgentRoster, create_model_endpoint
from .config import Settings, configure_logging, create_settings_from_env
from .core import ContextCache, PromptService, Request, Retriever, StreamChannel, create_default_tools
from .core.errors import NovelForgeError, OperationCancelledError
from .director import DirectorFacade
from .models import ProcessResult, TraceRecord
from .services import (
    COLLECTION_AGENT_KNOWLEDGE,
    COLLECTION_PROJECT_CONTENT,
    GraphStore,
    QdrantVectorIndex,
    RedisEventPublisher,
    SupabasePersistenceService,
    TraceLogger,
    TracingService,
)

logger = logging.getLogger("novelforge.main")


class NovelForgeOrchestrator:
    """Wires the external collaborators and the director facade together."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.persistence: Optional[SupabasePersistenceService] = None
        self.events: Optional[RedisEventPublisher] = None
        self.tracing = TracingService()
        self.trace_logger: Optional[TraceLogger] = None
        self.graph_store: Optional[GraphStore] = None
        self.cache = ContextCache.from_settings(settings)
        self.facade: Optional[DirectorFacade] = None

    async def initialize(self) -> None:
        """Connect optional services and build the facade."""
        settings = self.settings
        endpoint = create_model_endpoint(settings.llm)

        self.persistence = SupabasePersistenceService(
            settings.supabase_url,
            settings.supabase_key.get_secret_value() if settings.supabase_key else None,
        )
        if await self.persistence.connect():
            logger.info("[initialize] Connected to Supabase")
        else:
            logger.info("[initialize] Supabase not available - traces will not be persisted")

        self.trace_logger = TraceLogger(
            sink=self.persistence if self.persistence.is_connected else None,
            max_queue=settings.trace_queue_size,
        )
        self.trace_logger.start()

        self.events = RedisEventPublisher(settings.redis_url)
        if await self.events.connect():
            logger.info(f"[initialize] Connected to Redis at {settings.redis_url}")

        self.tracing.initialize(
            settings.langfuse_public_key,
            settings.langfuse_secret_key.get_secret_value() if settings.langfuse_secret_key else None,
            settings.langfuse_host,
        )

        self.graph_store = GraphStore(settings.graph_store_path)
        if settings.graph_store_path and self.graph_store.load():
            logger.info(f"[initialize] Graph store loaded from {settings.graph_store_path}")

        qdrant_key = settings.qdrant_api_key.get_secret_value() if settings.qdrant_api_key else None
        project_retriever = knowledge_retriever = None
        try:
            project_index = QdrantVectorIndex(
                COLLECTION_PROJECT_CONTENT, settings.llm.embedding_dimension, settings.qdrant_url, qdrant_key,
            )
            knowledge_index = QdrantVectorIndex(
                COLLECTION_AGENT_KNOWLEDGE, settings.llm.embedding_dimension, settings.qdrant_url, qdrant_key,
            )
            await project_index.connect()
            await knowledge_index.connect()
            project_retriever = Retriever(endpoint, project_index, settings.retrieval_top_k)
            knowledge_retriever = Retriever(endpoint, knowledge_index, settings.retrieval_top_k)
            logger.info(f"[initialize] Connected to Qdrant at {settings.qdrant_url}")
        except NovelForgeError as e:
            logger.warning(f"[initialize] Qdrant unavailable, retrieval disabled: {e}")

        self.cache.start()
        executor = AgentExecutor(
            endpoint,
            roster=AgentRoster.with_overrides(settings.agent_overrides, llm=settings.llm),
            prompt_service=PromptService(
                max_tokens=settings.prompt_max_tokens,
                cache=self.cache,
                recent_max_chars=settings.recent_content_max_chars,
            ),
            knowledge_retriever=knowledge_retriever,
            project_retriever=project_retriever,
            trace_logger=self.trace_logger,
            tracing=self.tracing,
            retrieval_top_k=settings.retrieval_top_k,
        )

        async def dispatch(agent_key: str, text: str) -> str:
            request = Request.create(user_id="dispatch_agent", instruction=text)
            result = await executor.execute(agent_key, text, request)
            return result.content

        executor.tool_registry = create_default_tools(
            retriever=project_retriever,
            graph_store=self.graph_store,
            project_store=self.persistence if self.persistence.is_connected else None,
            dispatcher=dispatch,
            trace_logger=self.trace_logger,
        )
        for error in executor.roster.validate_tools(executor.tool_registry.list_tools()):
            logger.warning(f"[initialize] {error}")

        self.facade = DirectorFacade(executor, settings=settings, tracing=self.tracing, events=self.events)
        logger.info(f"[initialize] Ready with agents: {', '.join(executor.roster.keys())}")

    async def process(self, request: Request, stream: bool = False) -> ProcessResult:
        if self.facade is None:
            raise RuntimeError("Orchestrator not initialized. Call initialize() first.")
        if not stream:
            return await self.facade.process(request)

        channel = StreamChannel()

        async def echo() -> None:
            async for delta in channel:
                print(delta, end="", flush=True)
            print()

        printer = asyncio.ensure_future(echo())
        try:
            return await self.facade.process(request, stream_sink=channel)
        finally:
            await printer

    async def shutdown(self) -> None:
        """Flush traces and close connections."""
        if self.trace_logger is not None:
            await self.trace_logger.stop()
        await self.cache.stop()
        if self.graph_store is not None and self.settings.graph_store_path:
            self.graph_store.save()
        if self.events is not None:
            await self.events.disconnect()
        self.tracing.shutdown()


def summarize_traces(traces: List[TraceRecord]) -> Dict[str, Any]:
    agents: Dict[str, Dict[str, int]] = {}
    for trace in traces:
        entry = agents.setdefault(trace.agent_key, {"calls": 0, "input_tokens": 0, "output_tokens": 0, "errors": 0})
        entry["calls"] += 1
        entry["input_tokens"] += trace.input_tokens
        entry["output_tokens"] += trace.output_tokens
        entry["errors"] += 0 if trace.success else 1
    return {"total_calls": len(traces), "agents": agents}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="novelforge", description="Run one NovelForge request.")
    parser.add_argument("instruction", help="What to write, plan or review")
    parser.add_argument("--project-id", default=None, help="Project the request belongs to")
    parser.add_argument("--user-id", default="cli")
    parser.add_argument("--extras", default=None, help="JSON object of extra context (recent_content, guidelines, ...)")
    parser.add_argument("--timeout", type=float, default=None, help="Request deadline in seconds")
    parser.add_argument("--stream", action="store_true", help="Print the final task's output as it is produced")
    return parser


def _project_id(value: Optional[str]) -> Any:
    if value is None:
        return None
    return int(value) if value.isdigit() else value


async def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    settings = create_settings_from_env()
    configure_logging(settings.log_level)

    orchestrator = NovelForgeOrchestrator(settings)
    request = Request.create(
        user_id=args.user_id,
        instruction=args.instruction,
        project_id=_project_id(args.project_id),
        extras=json.loads(args.extras) if args.extras else None,
        timeout=args.timeout,
    )

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, request.token.cancel, "interrupted")

    try:
        await orchestrator.initialize()
        outcome = await orchestrator.process(request, stream=args.stream)
    except OperationCancelledError as e:
        print(f"Cancelled: {e}")
        return 130
    except NovelForgeError as e:
        print(f"Error: {e}")
        return 1
    finally:
        await orchestrator.shutdown()

    print(json.dumps({
        "request_id": request.request_id,
        "intent": outcome.response.intent.kind.value,
        "workflow_template": outcome.response.workflow_template,
        "workflow_id": outcome.result.workflow_id,
        "success": outcome.success,
        "failed_task_id": outcome.result.failed_task_id,
        "error": outcome.result.error,
        "completed_tasks": [{"id": t.id, "agent": t.agent} for t in outcome.result.completed_tasks],
        "traces": summarize_traces(request.traces),
    }, ensure_ascii=False, indent=2))
    if not args.stream:
        print(outcome.final_content)
    return 0 if outcome.success else 1


def run() -> None:
    raise SystemExit(asyncio.run(main()))


if __name__ == "__main__":
    run()
