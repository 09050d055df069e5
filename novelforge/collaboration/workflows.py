"""
Workflow templates and plan conversion.

A template builds a Workflow (a DAG of agent tasks) from an instruction and
a context map. Only root tasks carry the instruction as input; dependent
tasks read it from `context["instruction"]` and get their upstream outputs
injected by the scheduler.
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..agents.roster import CHARACTER, DIRECTOR, GROUNDLINE, NARRATOR, PLOTLINE, QUALITY, SKYLINE
from ..core.errors import InvalidInputError
from ..core.ids import IdGenerator
from ..models import Task, TaskKind, TaskPlan, Workflow

CONTINUE_WRITE = "continue_write"
DIALOGUE = "dialogue"
FULL_GENERATION = "full_generation"
STORYLINE_PLANNING = "storyline_planning"

TaskSpec = Tuple[str, str, TaskKind, List[str]]  # (id, agent, kind, dependencies)
Builder = Callable[[str, Dict[str, Any], str], Workflow]


def _build(workflow_id: str, name: str, specs: List[TaskSpec], instruction: str, context: Dict[str, Any]) -> Workflow:
    tasks = []
    for task_id, agent, kind, dependencies in specs:
        tasks.append(
            Task(
                id=task_id,
                agent=agent,
                kind=kind,
                input="" if dependencies else instruction,
                context={**context, "instruction": instruction},
                dependencies=list(dependencies),
            )
        )
    return Workflow(id=workflow_id, name=name, tasks=tasks)


def build_continue_write(instruction: str, context: Dict[str, Any], workflow_id: str) -> Workflow:
    return _build(workflow_id, "Continue writing", [
        ("task_generate", NARRATOR, TaskKind.GENERATE, []),
        ("task_review", QUALITY, TaskKind.REVIEW, ["task_generate"]),
    ], instruction, context)


def build_dialogue(instruction: str, context: Dict[str, Any], workflow_id: str) -> Workflow:
    return _build(workflow_id, "Dialogue", [
        ("task_dialogue", CHARACTER, TaskKind.GENERATE, []),
        ("task_review", QUALITY, TaskKind.REVIEW, ["task_dialogue"]),
    ], instruction, context)


def build_full_generation(instruction: str, context: Dict[str, Any], workflow_id: str) -> Workflow:
    return _build(workflow_id, "Full generation", [
        ("task_plan", DIRECTOR, TaskKind.ANALYZE, []),
        ("task_narration", NARRATOR, TaskKind.GENERATE, ["task_plan"]),
        ("task_dialogue", CHARACTER, TaskKind.GENERATE, ["task_plan"]),
        ("task_review", QUALITY, TaskKind.REVIEW, ["task_narration", "task_dialogue"]),
    ], instruction, context)


def build_storyline_planning(instruction: str, context: Dict[str, Any], workflow_id: str) -> Workflow:
    return _build(workflow_id, "Storyline planning", [
        ("task_skyline", SKYLINE, TaskKind.ANALYZE, []),
        ("task_groundline", GROUNDLINE, TaskKind.ANALYZE, []),
        ("task_plotline", PLOTLINE, TaskKind.ANALYZE, []),
        ("task_integrate", DIRECTOR, TaskKind.ANALYZE, ["task_skyline", "task_groundline", "task_plotline"]),
    ], instruction, context)


@dataclass
class WorkflowTemplate:
    id: str
    name: str
    description: str
    builder: Builder


class WorkflowRegistry:
    """Templates by stable id."""

    def __init__(self, ids: Optional[IdGenerator] = None, register_defaults: bool = True):
        self.ids = ids or IdGenerator()
        self._templates: Dict[str, WorkflowTemplate] = {}
        if register_defaults:
            self.register_default_templates()

    def register_default_templates(self) -> None:
        self.register(WorkflowTemplate(
            CONTINUE_WRITE, "Continue writing",
            "The narrator writes, the quality inspector reviews.", build_continue_write,
        ))
        self.register(WorkflowTemplate(
            DIALOGUE, "Dialogue",
            "The character actor writes dialogue, the quality inspector reviews.", build_dialogue,
        ))
        self.register(WorkflowTemplate(
            FULL_GENERATION, "Full generation",
            "The director plans, narrator and character actor write in parallel, the quality inspector reviews.",
            build_full_generation,
        ))
        self.register(WorkflowTemplate(
            STORYLINE_PLANNING, "Storyline planning",
            "The three storyline controllers plan in parallel, the director integrates.",
            build_storyline_planning,
        ))

    def register(self, template: WorkflowTemplate) -> None:
        self._templates[template.id] = template

    def get(self, template_id: str) -> WorkflowTemplate:
        template = self._templates.get(template_id)
        if template is None:
            raise InvalidInputError(f"Workflow template '{template_id}' not found")
        return template

    def list(self) -> List[WorkflowTemplate]:
        return list(self._templates.values())

    def build(self, template_id: str, instruction: str, context: Optional[Dict[str, Any]] = None) -> Workflow:
        template = self.get(template_id)
        return template.builder(instruction, dict(context or {}), self.ids.next_id(f"wf_{template_id}"))


def plan_to_workflow(
    plan: TaskPlan,
    workflow_id: str,
    context: Optional[Dict[str, Any]] = None,
    name: str = "",
) -> Workflow:
    """Every SubTask becomes a Task with the same dependency edges."""
    instruction = plan.intent.raw_text
    specs = [(t.id, t.agent, t.kind, t.dependencies) for t in plan.tasks]
    return _build(workflow_id, name or f"{plan.intent.kind.value} plan", specs, instruction, dict(context or {}))
