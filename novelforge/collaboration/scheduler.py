"""
Workflow Scheduler for NovelForge

Runs a workflow's task DAG on asyncio. Ready tasks (every dependency
completed) are dispatched concurrently under a global semaphore; a finished
task's output is injected into its dependents' context as
``dependency_<task id>`` and broadcast on the message bus as a response.

A failed task stops new dispatches, lets in-flight tasks finish and yields a
failed WorkflowResult. Cancellation aborts in-flight tasks and raises
OperationCancelledError carrying the partial result.
"""

import asyncio
import logging
import threading
import time
from typing import Any, Dict, List, Optional

from ..core.context import Request
from ..core.errors import DependencyMissingError, InvalidInputError, OperationCancelledError, TaskFailedError
from ..core.streaming import StreamChannel
from ..models import MessageKind, Task, TaskKind, TaskStatus, Workflow, WorkflowResult

logger = logging.getLogger("novelforge.scheduler")

DEFAULT_MAX_CONCURRENCY = 8

# Instructions for tasks that consume upstream output instead of the raw request
DEPENDENT_INSTRUCTIONS = {
    TaskKind.GENERATE: "Write the passage following the plan above.\n\nOriginal request: {instruction}",
    TaskKind.REVIEW: (
        "Review the content above and answer in the JSON review format.\n\n"
        "Original request: {instruction}"
    ),
    TaskKind.REVISE: "Revise the content above according to the feedback.\n\nOriginal request: {instruction}",
    TaskKind.ANALYZE: "Integrate the outputs above into one coherent plan.\n\nOriginal request: {instruction}",
}


def validate_workflow(workflow: Workflow) -> None:
    """Reject duplicate ids, unknown dependencies and cycles before anything runs."""
    ids = [task.id for task in workflow.tasks]
    if len(set(ids)) != len(ids):
        raise InvalidInputError(f"Workflow {workflow.id} has duplicate task ids")
    known = set(ids)
    for task in workflow.tasks:
        for dep in task.dependencies:
            if dep not in known:
                raise DependencyMissingError(
                    f"Task {task.id} depends on unknown task {dep}", task_id=task.id,
                )

    # Kahn's algorithm
    indegree = {task.id: len(set(task.dependencies)) for task in workflow.tasks}
    dependents: Dict[str, List[str]] = {task.id: [] for task in workflow.tasks}
    for task in workflow.tasks:
        for dep in set(task.dependencies):
            dependents[dep].append(task.id)
    ready = [task_id for task_id, degree in indegree.items() if degree == 0]
    visited = 0
    while ready:
        current = ready.pop()
        visited += 1
        for child in dependents[current]:
            indegree[child] -= 1
            if indegree[child] == 0:
                ready.append(child)
    if visited != len(workflow.tasks):
        cyclic = sorted(task_id for task_id, degree in indegree.items() if degree > 0)
        raise DependencyMissingError(f"Workflow {workflow.id} has a dependency cycle through {', '.join(cyclic)}")


class WorkflowScheduler:
    """Dependency-ordered, bounded-concurrency task dispatch."""

    def __init__(
        self,
        executor: Any,
        bus: Optional[Any] = None,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        arbitrator: Optional[Any] = None,
        review_loop: Optional[Any] = None,
        events: Optional[Any] = None,
    ):
        if max_concurrency < 1:
            raise InvalidInputError("max_concurrency must be at least 1")
        self.executor = executor
        self.bus = bus
        self.max_concurrency = max_concurrency
        self.arbitrator = arbitrator
        self.review_loop = review_loop
        self.events = events
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._lock = threading.Lock()
        self._workflows: Dict[str, Workflow] = {}

    # ========================================================================
    # Status
    # ========================================================================

    def workflow_status(self, workflow_id: str) -> Dict[str, Any]:
        with self._lock:
            workflow = self._workflows.get(workflow_id)
        if workflow is None:
            raise InvalidInputError(f"Workflow {workflow_id} not found")
        counts = {status.value: 0 for status in TaskStatus}
        for task in workflow.tasks:
            counts[task.status.value] += 1
        return {
            "workflow_id": workflow.id,
            "name": workflow.name,
            "created_at": workflow.created_at,
            "task_count": len(workflow.tasks),
            "status_counts": counts,
        }

    def task_status(self, task_id: str, workflow_id: Optional[str] = None) -> Task:
        """A task by id, searching the most recent workflows first when no workflow id is given."""
        with self._lock:
            if workflow_id is not None:
                candidates = [self._workflows[workflow_id]] if workflow_id in self._workflows else []
            else:
                candidates = list(reversed(list(self._workflows.values())))
        for workflow in candidates:
            task = workflow.get_task(task_id)
            if task is not None:
                return task
        raise InvalidInputError(f"Task {task_id} not found")

    # ========================================================================
    # Execution
    # ========================================================================

    async def run(
        self,
        workflow: Workflow,
        request: Request,
        stream_sink: Optional[StreamChannel] = None,
    ) -> WorkflowResult:
        """
        Execute every task of `workflow`.

        Args:
            workflow: The task DAG
            request: Request context; its token cancels the run
            stream_sink: Receives the deltas of the final task

        Raises:
            DependencyMissingError: unknown dependency or cycle
            OperationCancelledError: request cancelled or deadline passed
        """
        validate_workflow(workflow)
        with self._lock:
            self._workflows[workflow.id] = workflow

        start = time.monotonic()
        metadata: Dict[str, Any] = {"workflow_id": workflow.id, "task_count": len(workflow.tasks)}
        final_task_id = workflow.tasks[-1].id if workflow.tasks else None
        running: Dict[asyncio.Future, Task] = {}
        failed: Optional[Task] = None

        logger.info(f"[run] Starting workflow {workflow.id} with {len(workflow.tasks)} tasks")
        await self._emit(request, "workflow_started", {"workflow_id": workflow.id})

        try:
            while True:
                if failed is None and not request.token.cancelled:
                    for task in self._ready(workflow, running):
                        sink = stream_sink if task.id == final_task_id else None
                        self._prepare(workflow, task, metadata)
                        task.mark_running()
                        future = asyncio.ensure_future(self._execute_task(workflow, task, request, sink, metadata))
                        running[future] = task
                if not running:
                    break

                waiter = asyncio.ensure_future(request.token.wait())
                done, _ = await asyncio.wait(
                    set(running) | {waiter},
                    timeout=request.token.remaining(),
                    return_when=asyncio.FIRST_COMPLETED,
                )
                waiter.cancel()
                if request.token.cancelled:
                    raise OperationCancelledError(request.token.reason or "cancelled")

                order = {task.id: i for i, task in enumerate(workflow.tasks)}
                finished = sorted((f for f in done if f in running), key=lambda f: order[running[f].id])
                for future in finished:
                    task = running.pop(future)
                    error = future.exception()
                    if isinstance(error, OperationCancelledError):
                        task.mark_failed(str(error))
                        raise error
                    if error is not None:
                        task.mark_failed(str(error))
                        logger.error(f"[run] Task {task.id} ({task.agent}) failed: {error}")
                        if failed is None:
                            failed = task
                        continue
                    self._complete(workflow, task, future.result())
                    await self._emit(request, "task_completed", {"workflow_id": workflow.id, "task_id": task.id})
        except (OperationCancelledError, asyncio.CancelledError) as e:
            await self._abort(running)
            partial = self._result(workflow, start, metadata, failed, error="cancelled")
            await self._emit(request, "workflow_cancelled", {"workflow_id": workflow.id})
            logger.warning(f"[run] Workflow {workflow.id} cancelled")
            if isinstance(e, asyncio.CancelledError):
                raise
            raise OperationCancelledError(str(e), partial=partial) from e

        result = self._result(workflow, start, metadata, failed)
        await self._emit(request, "workflow_completed", {"workflow_id": workflow.id, "success": result.success})
        logger.info(
            f"[run] Workflow {workflow.id} finished: success={result.success}, {result.total_time:.2f}s"
        )
        return result

    @staticmethod
    def _ready(workflow: Workflow, running: Dict[asyncio.Future, Task]) -> List[Task]:
        completed = {t.id for t in workflow.tasks if t.status == TaskStatus.COMPLETED}
        in_flight = {t.id for t in running.values()}
        return [
            task for task in workflow.tasks
            if task.status == TaskStatus.PENDING
            and task.id not in in_flight
            and all(dep in completed for dep in task.dependencies)
        ]

    def _prepare(self, workflow: Workflow, task: Task, metadata: Dict[str, Any]) -> None:
        """Arbitrate between the outputs of a fan-in task's dependencies."""
        if self.arbitrator is None or len(task.dependencies) < 2:
            return
        outputs: Dict[str, str] = {}
        for dep_id in task.dependencies:
            dep = workflow.get_task(dep_id)
            outputs[dep.agent] = dep.result or ""
        resolutions = [self.arbitrator.arbitrate(c, outputs) for c in self.arbitrator.detect(outputs)]
        if not resolutions:
            return
        task.context["arbitration"] = "\n".join(
            f"[{r.strategy.value}] {r.reason}" + (f" (chosen: {r.chosen_agent})" if r.chosen_agent else "")
            for r in resolutions
        )
        metadata.setdefault("arbitration", {})[task.id] = [r.model_dump(mode="json") for r in resolutions]

    @staticmethod
    def instruction_for(task: Task) -> str:
        if task.input:
            return task.input
        template = DEPENDENT_INSTRUCTIONS.get(task.kind, "{instruction}")
        return template.format(instruction=task.context.get("instruction", ""))

    def _review_pair(self, workflow: Workflow, task: Task) -> Optional[Task]:
        """The generate task a review task should loop with, if review wrapping applies."""
        if self.review_loop is None or task.kind != TaskKind.REVIEW or len(task.dependencies) != 1:
            return None
        generator = workflow.get_task(task.dependencies[0])
        if generator is None or generator.kind != TaskKind.GENERATE:
            return None
        return generator

    async def _execute_task(
        self,
        workflow: Workflow,
        task: Task,
        request: Request,
        sink: Optional[StreamChannel],
        metadata: Dict[str, Any],
    ) -> str:
        async with self._semaphore:
            request.token.raise_if_cancelled()
            generator = self._review_pair(workflow, task)
            if generator is not None:
                review = await self.review_loop.run(
                    generator.agent, task.agent, generator.result or "", request, context=task.context,
                )
                metadata.setdefault("reviews", {})[task.id] = {
                    "success": review.success,
                    "iterations": len(review.iterations),
                    "final_score": review.final_score,
                    "auto_approved": review.auto_approved,
                }
                if not review.success:
                    raise TaskFailedError(task.id, review.error or "review not approved")
                if sink is not None:
                    sink.send_delta(review.final_content)
                return review.final_content

            result = await self.executor.execute(
                task.agent,
                self.instruction_for(task),
                request,
                stream_sink=sink,
                context=task.context,
                action=task.kind.value,
            )
            return result.content

    def _complete(self, workflow: Workflow, task: Task, content: str) -> None:
        task.mark_completed(content)
        for dependent in workflow.tasks:
            if task.id in dependent.dependencies:
                dependent.context[f"dependency_{task.id}"] = {
                    "task_id": task.id,
                    "agent": task.agent,
                    "content": content,
                }
        if self.bus is not None:
            self.bus.send(
                task.agent,
                None,
                MessageKind.RESPONSE,
                content,
                metadata={"workflow_id": workflow.id, "task_id": task.id},
            )

    async def _abort(self, running: Dict[asyncio.Future, Task]) -> None:
        for future in running:
            future.cancel()
        await asyncio.gather(*running, return_exceptions=True)
        for task in running.values():
            task.mark_failed("cancelled")
        running.clear()

    @staticmethod
    def _final_content(workflow: Workflow) -> str:
        for task in reversed(workflow.tasks):
            if task.status == TaskStatus.COMPLETED:
                return task.result or ""
        return ""

    def _result(
        self,
        workflow: Workflow,
        start: float,
        metadata: Dict[str, Any],
        failed: Optional[Task],
        error: Optional[str] = None,
    ) -> WorkflowResult:
        completed = [t.id for t in workflow.tasks if t.status == TaskStatus.COMPLETED]
        return WorkflowResult(
            workflow_id=workflow.id,
            success=failed is None and error is None,
            final_content=self._final_content(workflow),
            tasks=workflow.tasks,
            total_time=time.monotonic() - start,
            failed_task_id=failed.id if failed else None,
            error=error or (failed.error if failed else None),
            metadata={**metadata, "completed": completed},
        )

    async def _emit(self, request: Request, event_type: str, data: Dict[str, Any]) -> None:
        if self.events is None:
            return
        try:
            await self.events.publish(request.request_id, event_type, data)
        except Exception as e:
            logger.warning(f"[_emit] Failed to publish {event_type}: {e}")

