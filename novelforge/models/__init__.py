"""
NovelForge Models Module
Pydantic data models shared by the orchestration components.
"""

from .schemas import (
    AgentResult,
    ChapterContext,
    Complexity,
    Conflict,
    ConflictKind,
    ConflictPrediction,
    Decision,
    DirectorResponse,
    Document,
    InferenceReport,
    InferenceResult,
    Intent,
    IntentKind,
    IntentParameters,
    IterationRecord,
    Message,
    MessageKind,
    PaceLabel,
    PlanStrategy,
    Prediction,
    ProcessResult,
    PromptSection,
    Recipient,
    Resolution,
    ResolutionStrategy,
    ReviewFeedback,
    ReviewResult,
    RevisionOutcome,
    Severity,
    StorylineAnalysis,
    SubTask,
    Task,
    TaskKind,
    TaskPlan,
    TaskStatus,
    TraceRecord,
    Workflow,
    WorkflowResult,
    utc_now,
)

__all__ = [
    # Enums
    "IntentKind",
    "Complexity",
    "TaskKind",
    "TaskStatus",
    "PlanStrategy",
    "MessageKind",
    "ConflictKind",
    "Severity",
    "ResolutionStrategy",
    "PaceLabel",
    # Planning
    "IntentParameters",
    "Intent",
    "SubTask",
    "TaskPlan",
    # Workflow
    "Task",
    "Workflow",
    "WorkflowResult",
    # Bus
    "Recipient",
    "Message",
    # Review
    "ReviewFeedback",
    "RevisionOutcome",
    "IterationRecord",
    "ReviewResult",
    # Arbitration
    "Conflict",
    "Resolution",
    # Traces & prompts
    "TraceRecord",
    "PromptSection",
    "Document",
    "AgentResult",
    "DirectorResponse",
    "Decision",
    "ProcessResult",
    # Inference
    "ChapterContext",
    "StorylineAnalysis",
    "Prediction",
    "ConflictPrediction",
    "InferenceResult",
    "InferenceReport",
    "utc_now",
]
