"""
Director Facade for NovelForge

Holds the orchestration roots (id generator, message bus, workflow
registry, scheduler, review loop, arbitrator, inference service) and exposes
the request surface:

    process = analyse intent -> decompose -> optimise -> run workflow

plus direct access to workflows, review loops, conflict resolution,
option scoring and chapter forecasting.
"""

import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from ..collaboration.message_bus import MessageBus
from ..collaboration.review_loop import ReviewLoop
from ..collaboration.scheduler import WorkflowScheduler
from ..collaboration.workflows import WorkflowRegistry, plan_to_workflow
from ..config import ReviewSettings, Settings
from ..core.context import Request
from ..core.errors import InvalidInputError, OperationCancelledError
from ..core.ids import IdGenerator
from ..core.streaming import StreamChannel
from ..inference.service import InferenceService
from ..models import (
    ChapterContext,
    Decision,
    DirectorResponse,
    InferenceReport,
    InferenceResult,
    Intent,
    ProcessResult,
    Resolution,
    ReviewResult,
    Workflow,
    WorkflowResult,
)
from .arbitration import ConflictArbitrator
from .decomposer import TaskDecomposer
from .intent import IntentAnalyzer

logger = logging.getLogger("novelforge.director")

BASE_OPTION_SCORE = 50.0
KEYWORD_BONUS = 5.0


def intent_guidelines(intent: Intent, target_length: int) -> str:
    lines = [f"Target length: about {target_length} characters."]
    if intent.parameters.style:
        lines.append(f"Style: {intent.parameters.style}.")
    if intent.parameters.emotion:
        lines.append(f"Emotional tone: {intent.parameters.emotion}.")
    return "\n".join(lines)


class DirectorFacade:
    """Entry point of the orchestrator for one process."""

    def __init__(
        self,
        executor: Any,
        settings: Optional[Settings] = None,
        ids: Optional[IdGenerator] = None,
        bus: Optional[MessageBus] = None,
        registry: Optional[WorkflowRegistry] = None,
        analyzer: Optional[IntentAnalyzer] = None,
        decomposer: Optional[TaskDecomposer] = None,
        arbitrator: Optional[ConflictArbitrator] = None,
        review_loop: Optional[ReviewLoop] = None,
        scheduler: Optional[WorkflowScheduler] = None,
        inference: Optional[InferenceService] = None,
        tracing: Optional[Any] = None,
        events: Optional[Any] = None,
    ):
        self.settings = settings or Settings()
        self.executor = executor
        self.ids = ids or IdGenerator()
        self.bus = bus if bus is not None else MessageBus(
            capacity=self.settings.bus_subscriber_capacity,
            history_size=self.settings.bus_history_size,
            ids=self.ids,
        )
        self.registry = registry or WorkflowRegistry(ids=self.ids)
        self.analyzer = analyzer or IntentAnalyzer()
        self.decomposer = decomposer or TaskDecomposer(self.analyzer)
        self.arbitrator = arbitrator or ConflictArbitrator(ids=self.ids, priorities=executor.roster.priorities())
        self.review_loop = review_loop or ReviewLoop(executor, bus=self.bus, settings=self.settings.review)
        self.scheduler = scheduler or WorkflowScheduler(
            executor,
            bus=self.bus,
            max_concurrency=self.settings.max_concurrency,
            arbitrator=self.arbitrator,
            review_loop=self.review_loop if self.settings.review_in_workflow else None,
            events=events,
        )
        self.inference = inference or InferenceService(horizon_chapters=self.settings.inference_horizon_chapters)
        self.tracing = tracing
        self.events = events

    # ========================================================================
    # Planning and processing
    # ========================================================================

    def plan_request(self, request: Request) -> DirectorResponse:
        """
        Analyse and decompose a request without running anything.

        Raises:
            InvalidInputError: empty instruction
        """
        if not request.instruction or not request.instruction.strip():
            raise InvalidInputError("instruction must not be empty")

        intent = self.analyzer.analyse(request.instruction)
        plan = self.decomposer.optimise(self.decomposer.decompose(intent))
        logger.info(
            f"[plan_request] {request.request_id}: intent={intent.kind.value} "
            f"({intent.confidence:.2f}), {self.decomposer.plan_summary(plan)}"
        )
        return DirectorResponse(
            request_id=request.request_id,
            intent=intent,
            plan=plan,
            workflow_template=self.decomposer.workflow_template(plan),
            required_agents=self.decomposer.required_agents(plan),
        )

    def task_context(self, request: Request, intent: Intent) -> Dict[str, Any]:
        guidelines = intent_guidelines(intent, self.decomposer.estimate_length(intent))
        extra = request.extras.get("guidelines")
        if extra:
            guidelines = f"{extra}\n{guidelines}"
        return {"intent": intent.kind.value, "guidelines": guidelines}

    async def process(self, request: Request, stream_sink: Optional[StreamChannel] = None) -> ProcessResult:
        """
        Plan the request and run its workflow.

        The stream sink, when given, receives the final task's deltas and
        exactly one terminal event.

        Raises:
            InvalidInputError: empty instruction
            OperationCancelledError: the request was cancelled or timed out
        """
        self._start_trace(request)
        try:
            response = self.plan_request(request)
            workflow = plan_to_workflow(
                response.plan,
                self.ids.next_id("wf"),
                context=self.task_context(request, response.intent),
                name=response.workflow_template,
            )
            await self._publish(request, "plan_ready", {
                "workflow_id": workflow.id,
                "intent": response.intent.kind.value,
                "tasks": [t.id for t in workflow.tasks],
            })
            result = await self.scheduler.run(workflow, request, stream_sink)
        except OperationCancelledError as e:
            if stream_sink is not None:
                stream_sink.close_cancelled(str(e))
            await self._publish(request, "cancelled", {"reason": str(e)})
            self._end_trace(request, {"status": "cancelled"})
            raise
        except Exception as e:
            logger.error(f"[process] Request {request.request_id} failed: {e}")
            if stream_sink is not None:
                stream_sink.close_error(str(e))
            await self._publish(request, "error", {"error": str(e)})
            self._end_trace(request, {"status": "error", "error": str(e)})
            raise

        if stream_sink is not None:
            if result.success:
                stream_sink.close_done(result.final_content)
            else:
                stream_sink.close_error(result.error or "workflow failed")
        await self._publish(request, "done" if result.success else "error", {
            "workflow_id": result.workflow_id,
            "success": result.success,
            "failed_task_id": result.failed_task_id,
        })
        self._end_trace(request, {
            "status": "completed" if result.success else "failed",
            "workflow_id": result.workflow_id,
            "traces": len(request.traces),
        })
        return ProcessResult(response=response, result=result)

    async def execute_workflow(
        self,
        workflow: Workflow,
        request: Request,
        stream_sink: Optional[StreamChannel] = None,
    ) -> WorkflowResult:
        return await self.scheduler.run(workflow, request, stream_sink)

    async def run_template(
        self,
        template_id: str,
        request: Request,
        context: Optional[Dict[str, Any]] = None,
        stream_sink: Optional[StreamChannel] = None,
    ) -> WorkflowResult:
        """Build a registered workflow template from the request and run it."""
        workflow = self.registry.build(template_id, request.instruction, context)
        return await self.scheduler.run(workflow, request, stream_sink)

    async def run_review_loop(
        self,
        generator: str,
        reviewer: str,
        initial_content: str,
        request: Request,
        context: Optional[Mapping[str, Any]] = None,
        settings: Optional[ReviewSettings] = None,
    ) -> ReviewResult:
        """
        Raises:
            InvalidInputError: unknown agent key or empty content
            OperationCancelledError: the request was cancelled
        """
        self.executor.resolve(generator)
        self.executor.resolve(reviewer)
        if not initial_content or not initial_content.strip():
            raise InvalidInputError("initial_content must not be empty")
        return await self.review_loop.run(generator, reviewer, initial_content, request, context, settings)

    # ========================================================================
    # Decisions
    # ========================================================================

    def resolve_conflicts(self, outputs: Mapping[str, str]) -> List[Resolution]:
        return self.arbitrator.resolve(outputs)

    def decide(self, options: Sequence[str], criteria: Optional[Mapping[str, Any]] = None) -> Decision:
        """
        Score each option and pick the best one.

        Criteria: `target_length` costs one point per ten characters of
        deviation; each of `keywords` found in an option adds five points.
        Ties go to the earlier option.
        """
        if not options:
            raise InvalidInputError("options must not be empty")
        criteria = criteria or {}
        target_length = criteria.get("target_length")
        keywords = criteria.get("keywords") or []

        scores = []
        for option in options:
            score = BASE_OPTION_SCORE
            if target_length is not None:
                score -= abs(len(option) - int(target_length)) / 10.0
            score += KEYWORD_BONUS * sum(1 for keyword in keywords if keyword and keyword in option)
            scores.append(score)

        best = max(range(len(scores)), key=lambda i: (scores[i], -i))
        return Decision(
            chosen_index=best,
            chosen=options[best],
            score=scores[best],
            scores=scores,
            reason=f"Option {best} scored highest: {scores[best]:.2f}",
        )

    # ========================================================================
    # Forecasting
    # ========================================================================

    def forecast(self, chapters: Sequence[ChapterContext], count: int) -> List[InferenceResult]:
        return self.inference.engine.infer_next_chapters(chapters, count)

    def generate_report(self, project_id: Union[int, str], results: List[InferenceResult]) -> InferenceReport:
        return self.inference.generate_report(project_id, results)

    # ========================================================================
    # Observability
    # ========================================================================

    def _start_trace(self, request: Request) -> None:
        if self.tracing is None:
            return
        self.tracing.start_trace(
            request.request_id,
            name="process_request",
            metadata={"project_id": request.project_id, "instruction": request.instruction[:200]},
            user_id=request.user_id,
        )

    def _end_trace(self, request: Request, output: Dict[str, Any]) -> None:
        if self.tracing is not None:
            self.tracing.end_trace(request.request_id, output)

    async def _publish(self, request: Request, event_type: str, data: Dict[str, Any]) -> None:
        if self.events is None:
            return
        try:
            await self.events.publish(request.request_id, event_type, data)
        except Exception as e:
            logger.warning(f"[_publish] Failed to publish {event_type}: {e}")
