"""
Unit tests for workflows and the workflow scheduler.

Tests cover:
- Workflow templates and plan conversion
- Validation: duplicate ids, unknown dependencies, cycles
- Dependency ordering and output injection
- Bounded concurrency
- Failure and cancellation with partial results
- Fan-in arbitration and review-loop wrapping
"""

import asyncio

import pytest

from conftest import StubEndpoint
from novelforge.agents import AgentExecutor
from novelforge.collaboration import (
    CONTINUE_WRITE,
    FULL_GENERATION,
    STORYLINE_PLANNING,
    MessageBus,
    ReviewLoop,
    WorkflowRegistry,
    WorkflowScheduler,
    plan_to_workflow,
    validate_workflow,
)
from novelforge.config import ReviewSettings
from novelforge.core import (
    CancellationToken,
    DependencyMissingError,
    InvalidInputError,
    OperationCancelledError,
    Request,
)
from novelforge.director import ConflictArbitrator, IntentAnalyzer, TaskDecomposer
from novelforge.models import MessageKind, Task, TaskKind, TaskStatus, Workflow


def build(template_id, instruction="Write the duel", context=None):
    return WorkflowRegistry().build(template_id, instruction, context)


def make_request(timeout=None):
    return Request.create(user_id="u", instruction="Write the duel", project_id=1, timeout=timeout)


def task(task_id, dependencies=(), agent="narrator", kind=TaskKind.GENERATE):
    return Task(id=task_id, agent=agent, kind=kind, input="x", dependencies=list(dependencies))


class TestWorkflowTemplates:
    """Tests for the workflow registry."""

    def test_default_templates(self):
        ids = {template.id for template in WorkflowRegistry().list()}
        assert ids == {"continue_write", "dialogue", "full_generation", "storyline_planning"}

    def test_only_roots_carry_the_instruction(self):
        workflow = build(FULL_GENERATION, context={"guidelines": "tense"})
        plan, narration, dialogue, review = workflow.tasks
        assert plan.input == "Write the duel"
        assert narration.input == ""
        assert narration.context["instruction"] == "Write the duel"
        assert narration.context["guidelines"] == "tense"
        assert review.dependencies == ["task_narration", "task_dialogue"]

    def test_workflow_ids_are_unique(self):
        registry = WorkflowRegistry()
        first = registry.build(CONTINUE_WRITE, "a")
        second = registry.build(CONTINUE_WRITE, "a")
        assert first.id != second.id

    def test_unknown_template(self):
        with pytest.raises(InvalidInputError):
            WorkflowRegistry().build("novel_in_a_day", "x")

    def test_plan_to_workflow_keeps_edges(self):
        analyzer = IntentAnalyzer()
        decomposer = TaskDecomposer(analyzer)
        plan = decomposer.decompose(analyzer.analyse("请规划接下来三十章的主线设计"))

        workflow = plan_to_workflow(plan, "wf_1")

        assert [t.id for t in workflow.tasks] == [t.id for t in plan.tasks]
        assert [t.dependencies for t in workflow.tasks] == [t.dependencies for t in plan.tasks]
        assert all(t.status == TaskStatus.PENDING for t in workflow.tasks)


class TestValidation:
    """Tests for validate_workflow."""

    def test_duplicate_ids(self):
        with pytest.raises(InvalidInputError):
            validate_workflow(Workflow(id="wf", tasks=[task("a"), task("a")]))

    def test_unknown_dependency(self):
        with pytest.raises(DependencyMissingError) as exc_info:
            validate_workflow(Workflow(id="wf", tasks=[task("a"), task("b", ["ghost"])]))
        assert exc_info.value.task_id == "b"

    def test_cycle(self):
        workflow = Workflow(id="wf", tasks=[task("a", ["c"]), task("b", ["a"]), task("c", ["b"]), task("d")])
        with pytest.raises(DependencyMissingError, match="cycle"):
            validate_workflow(workflow)

    @pytest.mark.asyncio
    async def test_run_rejects_before_dispatch(self, executor, stub_endpoint):
        """Nothing runs when the workflow is invalid."""
        scheduler = WorkflowScheduler(executor)
        with pytest.raises(DependencyMissingError):
            await scheduler.run(Workflow(id="wf", tasks=[task("a", ["a"])]), make_request())
        assert stub_endpoint.calls == []


class TestRun:
    """Tests for successful runs."""

    @pytest.mark.asyncio
    async def test_continue_write(self, executor, stub_endpoint):
        """The review task sees the generated text; the last task's output is final."""
        scheduler = WorkflowScheduler(executor)

        result = await scheduler.run(build(CONTINUE_WRITE), make_request())

        assert result.success is True
        assert result.final_content == "quality output"
        assert [t.id for t in result.completed_tasks] == ["task_generate", "task_review"]
        review_call = stub_endpoint.calls_for("quality")[0]
        assert "narrator output" in review_call["messages"][0]["content"]
        assert "Original request: Write the duel" in review_call["messages"][1]["content"]

    @pytest.mark.asyncio
    async def test_dependencies_complete_before_start(self):
        """No task starts before every one of its dependencies has finished."""
        endpoint = StubEndpoint(delay=0.01)
        scheduler = WorkflowScheduler(AgentExecutor(endpoint))
        workflow = build(FULL_GENERATION)

        await scheduler.run(workflow, make_request())

        events = endpoint.events
        agents = {t.id: t.agent for t in workflow.tasks}
        for t in workflow.tasks:
            start = events.index(("start", t.agent))
            for dep in t.dependencies:
                assert events.index(("end", agents[dep])) < start

    @pytest.mark.asyncio
    async def test_independent_tasks_run_concurrently(self):
        endpoint = StubEndpoint(delay=0.02)
        await WorkflowScheduler(AgentExecutor(endpoint)).run(build(STORYLINE_PLANNING), make_request())
        assert endpoint.max_in_flight == 3

    @pytest.mark.asyncio
    async def test_concurrency_bound(self):
        endpoint = StubEndpoint(delay=0.02)
        scheduler = WorkflowScheduler(AgentExecutor(endpoint), max_concurrency=1)

        result = await scheduler.run(build(STORYLINE_PLANNING), make_request())

        assert result.success is True
        assert endpoint.max_in_flight == 1

    def test_invalid_concurrency(self, executor):
        with pytest.raises(InvalidInputError):
            WorkflowScheduler(executor, max_concurrency=0)

    @pytest.mark.asyncio
    async def test_completed_tasks_broadcast_responses(self, executor):
        bus = MessageBus()
        listener = bus.subscribe("director")
        scheduler = WorkflowScheduler(executor, bus=bus)

        await scheduler.run(build(CONTINUE_WRITE), make_request())

        messages = [listener.get_nowait() for _ in range(2)]
        assert [m.kind for m in messages] == [MessageKind.RESPONSE, MessageKind.RESPONSE]
        assert [m.metadata["task_id"] for m in messages] == ["task_generate", "task_review"]

    @pytest.mark.asyncio
    async def test_status_queries(self, executor):
        scheduler = WorkflowScheduler(executor)
        workflow = build(CONTINUE_WRITE)
        await scheduler.run(workflow, make_request())

        status = scheduler.workflow_status(workflow.id)
        assert status["status_counts"]["completed"] == 2
        assert scheduler.task_status("task_review").status == TaskStatus.COMPLETED
        with pytest.raises(InvalidInputError):
            scheduler.workflow_status("wf_missing")
        with pytest.raises(InvalidInputError):
            scheduler.task_status("task_missing")

    @pytest.mark.asyncio
    async def test_events_are_published(self, executor):
        events = _RecordingEvents()
        scheduler = WorkflowScheduler(executor, events=events)

        await scheduler.run(build(CONTINUE_WRITE), make_request())

        assert events.types[0] == "workflow_started"
        assert events.types.count("task_completed") == 2
        assert events.types[-1] == "workflow_completed"


class _RecordingEvents:
    def __init__(self):
        self.types = []

    async def publish(self, request_id, event_type, data=None):
        self.types.append(event_type)
        return True


class TestFailure:
    """Tests for failed and cancelled runs."""

    @pytest.mark.asyncio
    async def test_failed_task_stops_dependents(self):
        executor = AgentExecutor(StubEndpoint(failures={"narrator": RuntimeError("model down")}))

        result = await WorkflowScheduler(executor).run(build(CONTINUE_WRITE), make_request())

        assert result.success is False
        assert result.failed_task_id == "task_generate"
        assert "model down" in result.error
        statuses = {t.id: t.status for t in result.tasks}
        assert statuses == {"task_generate": TaskStatus.FAILED, "task_review": TaskStatus.PENDING}

    @pytest.mark.asyncio
    async def test_in_flight_siblings_finish(self):
        """A parallel failure keeps the siblings' results and skips the integration."""
        executor = AgentExecutor(StubEndpoint(failures={"skyline": RuntimeError("boom")}))

        result = await WorkflowScheduler(executor).run(build(STORYLINE_PLANNING), make_request())

        assert result.success is False
        assert result.failed_task_id == "task_skyline"
        assert {t.id for t in result.completed_tasks} == {"task_groundline", "task_plotline"}
        assert result.metadata["completed"] == ["task_groundline", "task_plotline"]

    @pytest.mark.asyncio
    async def test_cancel_returns_partial(self):
        """Cancellation aborts in-flight work and carries what completed."""
        executor = AgentExecutor(StubEndpoint(hang=["quality"]))
        request = Request(user_id="u", instruction="Write", token=CancellationToken())
        run = asyncio.ensure_future(WorkflowScheduler(executor).run(build(CONTINUE_WRITE), request))

        await asyncio.sleep(0.05)
        request.token.cancel("user cancelled")

        with pytest.raises(OperationCancelledError) as exc_info:
            await run
        partial = exc_info.value.partial
        assert partial.success is False
        assert [t.id for t in partial.completed_tasks] == ["task_generate"]
        assert partial.final_content == "narrator output"
        assert partial.tasks[1].status == TaskStatus.FAILED

    @pytest.mark.asyncio
    async def test_deadline_cancels_run(self):
        executor = AgentExecutor(StubEndpoint(hang=["narrator"]))
        with pytest.raises(OperationCancelledError):
            await WorkflowScheduler(executor).run(build(CONTINUE_WRITE), make_request(timeout=0.05))


class TestFanIn:
    """Tests for arbitration and review wrapping."""

    @pytest.mark.asyncio
    async def test_fan_in_is_arbitrated(self):
        """Widely different parallel outputs are arbitrated before the review runs."""
        endpoint = StubEndpoint(responses={"narrator": ["n" * 1200], "character": ["c" * 400]})
        scheduler = WorkflowScheduler(AgentExecutor(endpoint), arbitrator=ConflictArbitrator())

        result = await scheduler.run(build(FULL_GENERATION), make_request())

        resolutions = result.metadata["arbitration"]["task_review"]
        assert len(resolutions) == 1
        assert resolutions[0]["strategy"] == "choose"
        assert resolutions[0]["chosen_agent"] == "narrator"
        review_system = endpoint.calls_for("quality")[0]["messages"][0]["content"]
        assert "Arbitration" in review_system

    @pytest.mark.asyncio
    async def test_review_task_runs_review_loop(self):
        """With a review loop, a review task iterates with its generator."""
        endpoint = StubEndpoint(responses={
            "narrator": ["draft"],
            "quality": ['{"overall_score": 90, "passed": true}'],
        })
        executor = AgentExecutor(endpoint)
        scheduler = WorkflowScheduler(executor, review_loop=ReviewLoop(executor, settings=ReviewSettings()))

        result = await scheduler.run(build(CONTINUE_WRITE), make_request())

        assert result.success is True
        assert result.final_content == "draft"
        assert result.metadata["reviews"]["task_review"]["iterations"] == 1

    @pytest.mark.asyncio
    async def test_rejected_review_fails_task(self):
        endpoint = StubEndpoint(responses={"quality": ['{"overall_score": 10}'], "narrator": ["draft", "draft 2"]})
        executor = AgentExecutor(endpoint)
        loop = ReviewLoop(executor, settings=ReviewSettings(max_iterations=1, auto_approve=False))

        result = await WorkflowScheduler(executor, review_loop=loop).run(build(CONTINUE_WRITE), make_request())

        assert result.success is False
        assert result.failed_task_id == "task_review"
