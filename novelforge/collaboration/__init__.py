"""
NovelForge Collaboration Module
Message bus, workflow templates, the workflow scheduler and the review loop.
"""

from .message_bus import MessageBuilder, MessageBus, Subscription
from .review_loop import ReviewLoop, extract_json, parse_feedback
from .scheduler import WorkflowScheduler, validate_workflow
from .workflows import (
    CONTINUE_WRITE,
    DIALOGUE,
    FULL_GENERATION,
    STORYLINE_PLANNING,
    WorkflowRegistry,
    WorkflowTemplate,
    plan_to_workflow,
)

__all__ = [
    "MessageBus",
    "MessageBuilder",
    "Subscription",
    "ReviewLoop",
    "extract_json",
    "parse_feedback",
    "WorkflowScheduler",
    "validate_workflow",
    "WorkflowRegistry",
    "WorkflowTemplate",
    "plan_to_workflow",
    "CONTINUE_WRITE",
    "DIALOGUE",
    "FULL_GENERATION",
    "STORYLINE_PLANNING",
]
