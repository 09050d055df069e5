"""
NovelForge Core Module
Request context, errors, prompt assembly, retrieval and the tool registry.
"""

from .context import CancellationToken, Request
from .errors import (
    DependencyMissingError,
    InvalidInputError,
    NovelForgeError,
    OperationCancelledError,
    TaskFailedError,
    UpstreamError,
)
from .ids import IdGenerator
from .prompt_builder import PromptBuilder, TokenCounter
from .prompt_cache import ContextCache, PromptCache
from .prompt_service import ContinueOptions, PolishOptions, PromptOptions, PromptService
from .retriever import Retriever
from .streaming import StreamChannel, StreamEvent, StreamEventKind
from .tools import (
    Tool,
    ToolCategory,
    ToolRegistry,
    ToolResult,
    ToolSpec,
    create_default_tools,
)

__all__ = [
    # Context
    "CancellationToken",
    "Request",
    "IdGenerator",
    # Errors
    "NovelForgeError",
    "InvalidInputError",
    "DependencyMissingError",
    "UpstreamError",
    "OperationCancelledError",
    "TaskFailedError",
    # Streaming
    "StreamChannel",
    "StreamEvent",
    "StreamEventKind",
    # Prompts
    "TokenCounter",
    "PromptBuilder",
    "PromptCache",
    "ContextCache",
    "PromptOptions",
    "ContinueOptions",
    "PolishOptions",
    "PromptService",
    # Retrieval & tools
    "Retriever",
    "ToolCategory",
    "ToolSpec",
    "ToolResult",
    "Tool",
    "ToolRegistry",
    "create_default_tools",
]
