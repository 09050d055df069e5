"""
Error taxonomy for NovelForge.

Advisory failures (retrieval, trace persistence, tracing backend) never reach
these types; they are logged and swallowed where they happen.
"""

from typing import Any, Optional


class NovelForgeError(Exception):
    """Base class for orchestrator errors."""


class InvalidInputError(NovelForgeError, ValueError):
    """Unknown agent key, empty required field or out-of-range count."""


class DependencyMissingError(NovelForgeError):
    """A workflow references an unknown task id or contains a cycle."""

    def __init__(self, message: str, task_id: Optional[str] = None):
        super().__init__(message)
        self.task_id = task_id


class UpstreamError(NovelForgeError):
    """A model endpoint, vector index, graph store or persistent store failed."""

    def __init__(self, source: str, message: str):
        super().__init__(f"{source}: {message}")
        self.source = source


class OperationCancelledError(NovelForgeError):
    """The request was cancelled or its deadline passed."""

    def __init__(self, message: str = "operation cancelled", partial: Any = None):
        super().__init__(message)
        self.partial = partial


class TaskFailedError(NovelForgeError):
    def __init__(self, task_id: str, message: str):
        super().__init__(f"task {task_id} failed: {message}")
        self.task_id = task_id
