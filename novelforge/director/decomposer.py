"""
Task Decomposer for NovelForge

Turns an Intent into a TaskPlan sized by its complexity:
- simple: one task for the intent's first required agent
- medium: generate, then review when a reviewer is available
- complex: three parallel storyline analyses plus an integration step for
  planning requests, the full-generation DAG otherwise
"""

import logging
import math
from typing import List, Optional

from ..agents.roster import CHARACTER, DIRECTOR, GROUNDLINE, NARRATOR, PLOTLINE, QUALITY, SKYLINE
from ..collaboration.workflows import FULL_GENERATION, STORYLINE_PLANNING
from ..models import Complexity, Intent, IntentKind, PlanStrategy, SubTask, TaskKind, TaskPlan
from .intent import IntentAnalyzer

logger = logging.getLogger("novelforge.decomposer")

BASE_TASK_SECONDS = 30

DEFAULT_LENGTHS = {
    Complexity.SIMPLE: 300,
    Complexity.MEDIUM: 500,
    Complexity.COMPLEX: 1000,
}

# Task kind of a single-task plan
SIMPLE_TASK_KINDS = {
    IntentKind.CONTINUE: TaskKind.GENERATE,
    IntentKind.DIALOGUE: TaskKind.GENERATE,
    IntentKind.GENERATE: TaskKind.GENERATE,
    IntentKind.REVISE: TaskKind.REVISE,
    IntentKind.ANALYZE: TaskKind.ANALYZE,
    IntentKind.PLAN: TaskKind.ANALYZE,
}


def _task(task_id: str, agent: str, kind: TaskKind, description: str,
          priority: int = 10, dependencies: Optional[List[str]] = None) -> SubTask:
    return SubTask(
        id=task_id,
        agent=agent,
        kind=kind,
        description=description,
        dependencies=list(dependencies or []),
        base_priority=priority,
        priority=priority,
    )


class TaskDecomposer:
    """Builds and optimises decomposition plans."""

    def __init__(self, analyzer: Optional[IntentAnalyzer] = None):
        self.analyzer = analyzer or IntentAnalyzer()

    def decompose(self, intent: Intent) -> TaskPlan:
        if intent.complexity == Complexity.SIMPLE:
            plan = self._simple(intent)
        elif intent.complexity == Complexity.COMPLEX:
            plan = self._complex(intent)
        else:
            plan = self._medium(intent)
        logger.debug(f"[decompose] {intent.kind.value}/{intent.complexity.value} -> {len(plan.tasks)} tasks")
        return plan

    def _simple(self, intent: Intent) -> TaskPlan:
        agents = self.analyzer.required_agents(intent)
        task = _task("task_1", agents[0], SIMPLE_TASK_KINDS[intent.kind], intent.raw_text)
        return TaskPlan(
            intent=intent,
            tasks=[task],
            strategy=PlanStrategy.SEQUENTIAL,
            estimated_seconds=BASE_TASK_SECONDS,
        )

    def _medium(self, intent: Intent) -> TaskPlan:
        agents = self.analyzer.required_agents(intent)
        tasks = [_task("task_generate", agents[0], TaskKind.GENERATE, intent.raw_text)]
        if len(agents) > 1:
            tasks.append(_task(
                "task_review", agents[1], TaskKind.REVIEW,
                "Review the generated content", priority=9, dependencies=["task_generate"],
            ))
        return TaskPlan(
            intent=intent,
            tasks=tasks,
            strategy=PlanStrategy.SEQUENTIAL,
            estimated_seconds=2 * BASE_TASK_SECONDS,
        )

    def _complex(self, intent: Intent) -> TaskPlan:
        if intent.kind == IntentKind.PLAN:
            tasks = [
                _task("task_skyline", SKYLINE, TaskKind.ANALYZE, "Analyse the skyline (world-level events)"),
                _task("task_groundline", GROUNDLINE, TaskKind.ANALYZE, "Analyse the groundline (protagonist growth)"),
                _task("task_plotline", PLOTLINE, TaskKind.ANALYZE, "Analyse the plotline (current scenes)"),
                _task(
                    "task_integrate", DIRECTOR, TaskKind.ANALYZE,
                    "Integrate the three storyline analyses", priority=9,
                    dependencies=["task_skyline", "task_groundline", "task_plotline"],
                ),
            ]
        else:
            tasks = [
                _task("task_plan", DIRECTOR, TaskKind.ANALYZE, "Analyse the request and draft a generation plan"),
                _task("task_narration", NARRATOR, TaskKind.GENERATE, "Write the narration", 9, ["task_plan"]),
                _task("task_dialogue", CHARACTER, TaskKind.GENERATE, "Write the character dialogue", 9, ["task_plan"]),
                _task(
                    "task_review", QUALITY, TaskKind.REVIEW, "Integrate and review the content",
                    priority=8, dependencies=["task_narration", "task_dialogue"],
                ),
            ]
        return TaskPlan(
            intent=intent,
            tasks=tasks,
            strategy=PlanStrategy.MIXED,
            estimated_seconds=4 * BASE_TASK_SECONDS,
        )

    def optimise(self, plan: TaskPlan) -> TaskPlan:
        """
        Re-derive strategy, priorities and the time estimate.

        Priorities are derived from each task's base priority, so optimising
        an optimised plan changes nothing.
        """
        tasks = [
            task.model_copy(update={"priority": task.base_priority - 1 if task.dependencies else task.base_priority})
            for task in plan.tasks
        ]
        strategy = self.determine_strategy(tasks)
        return plan.model_copy(update={
            "tasks": tasks,
            "strategy": strategy,
            "estimated_seconds": self.estimate_seconds(strategy, len(tasks)),
        })

    @staticmethod
    def determine_strategy(tasks: List[SubTask]) -> PlanStrategy:
        if len(tasks) <= 1:
            return PlanStrategy.SEQUENTIAL
        if all(not task.dependencies for task in tasks):
            return PlanStrategy.PARALLEL
        if all(len(task.dependencies) == 1 for task in tasks[1:]):
            return PlanStrategy.SEQUENTIAL
        return PlanStrategy.MIXED

    @staticmethod
    def estimate_seconds(strategy: PlanStrategy, task_count: int) -> int:
        if strategy == PlanStrategy.PARALLEL:
            return 2 * BASE_TASK_SECONDS
        if strategy == PlanStrategy.MIXED:
            return BASE_TASK_SECONDS * (math.ceil(task_count / 2) + 1)
        return BASE_TASK_SECONDS * task_count

    @staticmethod
    def estimate_length(intent: Intent) -> int:
        if intent.parameters.length:
            return intent.parameters.length
        return DEFAULT_LENGTHS.get(intent.complexity, 500)

    def workflow_template(self, plan: TaskPlan) -> str:
        """Name of the workflow the plan actually runs.

        Complex plans are the storyline-planning or full-generation DAG
        whatever the intent kind; smaller plans keep the intent's name.
        """
        if plan.intent.complexity == Complexity.COMPLEX:
            return STORYLINE_PLANNING if plan.intent.kind == IntentKind.PLAN else FULL_GENERATION
        return self.analyzer.workflow_template(plan.intent)

    @staticmethod
    def required_agents(plan: TaskPlan) -> List[str]:
        """Agents the plan's tasks run on, in task order."""
        return list(dict.fromkeys(task.agent for task in plan.tasks))

    @staticmethod
    def plan_summary(plan: TaskPlan) -> str:
        return (
            f"Decomposition plan: {len(plan.tasks)} sub-tasks, "
            f"strategy {plan.strategy.value}, estimated {plan.estimated_seconds}s"
        )
