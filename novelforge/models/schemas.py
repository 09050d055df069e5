"""
Pydantic data models for NovelForge.
Intents, plans, workflows, messages, review and arbitration records, traces
and inference outputs shared by every orchestration component.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# Enums
# ============================================================================

class IntentKind(str, Enum):
    """Kinds of user instruction recognised by the intent analyser."""
    CONTINUE = "continue"
    DIALOGUE = "dialogue"
    REVISE = "revise"
    ANALYZE = "analyze"
    PLAN = "plan"
    GENERATE = "generate"


class Complexity(str, Enum):
    SIMPLE = "simple"
    MEDIUM = "medium"
    COMPLEX = "complex"


class TaskKind(str, Enum):
    """What an agent task does."""
    GENERATE = "generate"
    REVIEW = "review"
    REVISE = "revise"
    ANALYZE = "analyze"


class TaskStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class PlanStrategy(str, Enum):
    PARALLEL = "parallel"
    SEQUENTIAL = "sequential"
    MIXED = "mixed"


class MessageKind(str, Enum):
    """Message types carried by the message bus."""
    REQUEST = "request"
    RESPONSE = "response"
    NOTIFICATION = "notification"
    FEEDBACK = "feedback"
    REVISION = "revision"


class ConflictKind(str, Enum):
    OUTPUT_MISMATCH = "output_mismatch"
    STYLE_DIFFERENCE = "style_difference"
    LOGIC_CONFLICT = "logic_conflict"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ResolutionStrategy(str, Enum):
    CHOOSE = "choose"
    MERGE = "merge"
    REGENERATE = "regenerate"
    ESCALATE = "escalate"


# ============================================================================
# Intent & Planning Models
# ============================================================================

class IntentParameters(BaseModel):
    """Slots extracted from the instruction text. Unknown slots stay None."""
    length: Optional[int] = Field(default=None, gt=0)
    style: Optional[str] = None
    emotion: Optional[str] = None


class Intent(BaseModel):
    kind: IntentKind = IntentKind.GENERATE
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    parameters: IntentParameters = Field(default_factory=IntentParameters)
    keywords: List[str] = Field(default_factory=list)
    complexity: Complexity = Complexity.SIMPLE
    raw_text: str = ""


class SubTask(BaseModel):
    """One node of a decomposition plan."""
    id: str
    agent: str
    kind: TaskKind
    description: str
    dependencies: List[str] = Field(default_factory=list)
    base_priority: int = 10
    priority: int = 10


class TaskPlan(BaseModel):
    """A decomposition of one instruction into agent tasks."""
    intent: Intent
    tasks: List[SubTask] = Field(default_factory=list)
    strategy: PlanStrategy = PlanStrategy.SEQUENTIAL
    estimated_seconds: int = 0


# ============================================================================
# Workflow Models
# ============================================================================

class Task(BaseModel):
    """A single agent invocation within a workflow.

    Status moves pending -> running -> completed | failed and never leaves a
    terminal state.
    """
    id: str
    agent: str
    kind: TaskKind
    input: str = ""
    context: Dict[str, Any] = Field(default_factory=dict)
    dependencies: List[str] = Field(default_factory=list)
    status: TaskStatus = TaskStatus.PENDING
    result: Optional[str] = None
    error: Optional[str] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (TaskStatus.COMPLETED, TaskStatus.FAILED)

    def mark_running(self) -> None:
        if self.is_terminal:
            return
        self.status = TaskStatus.RUNNING
        self.started_at = utc_now()

    def mark_completed(self, result: str) -> None:
        if self.is_terminal:
            return
        self.status = TaskStatus.COMPLETED
        self.result = result
        self.finished_at = utc_now()

    def mark_failed(self, error: str) -> None:
        if self.is_terminal:
            return
        self.status = TaskStatus.FAILED
        self.error = error
        self.finished_at = utc_now()


class Workflow(BaseModel):
    id: str
    name: str = ""
    tasks: List[Task] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)

    def get_task(self, task_id: str) -> Optional[Task]:
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None


class WorkflowResult(BaseModel):
    """Outcome of one scheduler run. Completed tasks keep their records on failure."""
    workflow_id: str
    success: bool
    final_content: str = ""
    tasks: List[Task] = Field(default_factory=list)
    total_time: float = 0.0
    failed_task_id: Optional[str] = None
    error: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def completed_tasks(self) -> List[Task]:
        return [t for t in self.tasks if t.status == TaskStatus.COMPLETED]


# ============================================================================
# Message Bus Models
# ============================================================================

class Recipient(BaseModel):
    """Either a single agent key or every subscriber."""
    model_config = ConfigDict(frozen=True)

    agent: Optional[str] = None

    @classmethod
    def to_agent(cls, agent_key: str) -> "Recipient":
        if not agent_key:
            raise ValueError("agent_key must not be empty")
        return cls(agent=agent_key)

    @classmethod
    def broadcast(cls) -> "Recipient":
        return cls(agent=None)

    @property
    def is_broadcast(self) -> bool:
        return self.agent is None


class Message(BaseModel):
    id: int = 0
    sender: str
    recipient: Recipient = Field(default_factory=Recipient.broadcast)
    kind: MessageKind = MessageKind.NOTIFICATION
    body: str = ""
    metadata: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utc_now)
    reply_to: Optional[int] = None


# ============================================================================
# Review Loop Models
# ============================================================================

class ReviewFeedback(BaseModel):
    approved: bool = False
    score: float = Field(default=0.0, ge=0.0, le=100.0)
    issues: List[str] = Field(default_factory=list)
    suggestions: List[str] = Field(default_factory=list)
    comment: str = ""


class RevisionOutcome(BaseModel):
    content: str
    improved: bool
    tokens_used: int = 0


class IterationRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    index: int = Field(ge=1)
    content: str
    feedback: ReviewFeedback
    revision: Optional[RevisionOutcome] = None
    approved: bool = False
    started_at: datetime
    duration_ms: int = 0


class ReviewResult(BaseModel):
    success: bool
    final_content: str
    iterations: List[IterationRecord] = Field(default_factory=list)
    total_time: float = 0.0
    final_score: float = 0.0
    auto_approved: bool = False
    error: Optional[str] = None


# ============================================================================
# Arbitration Models
# ============================================================================

class Conflict(BaseModel):
    id: str
    kind: ConflictKind
    agents: List[str]
    descriptions: List[str] = Field(default_factory=list)
    severity: Severity = Severity.MEDIUM


class Resolution(BaseModel):
    conflict_id: str
    strategy: ResolutionStrategy
    chosen_agent: Optional[str] = None
    content: str = ""
    reason: str = ""


# ============================================================================
# Trace & Prompt Models
# ============================================================================

class TraceRecord(BaseModel):
    """One agent or tool invocation. Immutable once built."""
    model_config = ConfigDict(frozen=True)

    agent_key: str
    tool_name: Optional[str] = None
    project_id: Optional[Union[int, str]] = None
    action: str = "generate"
    instruction: str = ""
    response: str = ""
    input_params: Dict[str, Any] = Field(default_factory=dict)
    output_result: Dict[str, Any] = Field(default_factory=dict)
    input_tokens: int = 0
    output_tokens: int = 0
    model: Optional[str] = None
    success: bool = True
    error: Optional[str] = None
    duration_ms: int = 0
    timestamp: datetime = Field(default_factory=utc_now)


class PromptSection(BaseModel):
    name: str
    content: str
    priority: int = 0
    tokens: int = 0


class Document(BaseModel):
    id: str
    content: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    score: float = 0.0


class AgentResult(BaseModel):
    content: str
    tokens_used: int = 0
    duration_ms: int = 0
    metadata: Dict[str, Any] = Field(default_factory=dict)


class DirectorResponse(BaseModel):
    """Planning answer for one request: what will run and with whom."""
    request_id: str
    intent: Intent
    plan: TaskPlan
    workflow_template: str
    required_agents: List[str]


class ProcessResult(BaseModel):
    """A planned request together with the outcome of its workflow."""
    response: DirectorResponse
    result: WorkflowResult

    @property
    def success(self) -> bool:
        return self.result.success

    @property
    def final_content(self) -> str:
        return self.result.final_content


class Decision(BaseModel):
    """Outcome of scoring candidate options against criteria."""
    chosen_index: int
    chosen: str
    score: float
    scores: List[float] = Field(default_factory=list)
    reason: str = ""


# ============================================================================
# Inference Models
# ============================================================================

class ChapterContext(BaseModel):
    chapter_number: int = Field(ge=1)
    title: str = ""
    outline: str = ""
    key_events: List[str] = Field(default_factory=list)
    characters: List[str] = Field(default_factory=list)
    plot_points: List[str] = Field(default_factory=list)


class PaceLabel(str, Enum):
    TOO_FAST = "too_fast"
    NORMAL = "normal"
    TOO_SLOW = "too_slow"


class StorylineAnalysis(BaseModel):
    total_chapters: int
    progression: float = Field(ge=0.0, le=1.0)
    main_characters: List[str] = Field(default_factory=list)
    character_count: int = 0
    unresolved_plot_points: List[str] = Field(default_factory=list)
    pace: PaceLabel = PaceLabel.NORMAL
    timeline_gaps: List[int] = Field(default_factory=list)


class Prediction(BaseModel):
    category: str
    content: str
    probability: float = Field(default=0.5, ge=0.0, le=1.0)
    reason: str = ""
    bucket: Optional[str] = None
    subject: Optional[str] = None


class ConflictPrediction(BaseModel):
    kind: str
    description: str
    severity: Severity
    affected_chapters: List[int] = Field(default_factory=list)
    suggestion: str = ""


class InferenceResult(BaseModel):
    chapter_number: int
    predictions: List[Prediction] = Field(default_factory=list)
    character_developments: List[Prediction] = Field(default_factory=list)
    conflicts: List[ConflictPrediction] = Field(default_factory=list)
    suggestions: List[str] = Field(default_factory=list)
    confidence: float = Field(ge=0.0, le=1.0)


class InferenceReport(BaseModel):
    project_id: Union[int, str]
    total_chapters: int
    total_conflicts: int
    summary: str
    warnings: List[ConflictPrediction] = Field(default_factory=list)
    results: List[InferenceResult] = Field(default_factory=list)
    generated_at: datetime = Field(default_factory=utc_now)
