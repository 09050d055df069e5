"""
NovelForge Agents Module
Model endpoints, the fixed agent roster and the agent executor.
"""

from .base import (
    ChatResponse,
    ClaudeEndpoint,
    ModelEndpoint,
    OpenAIEndpoint,
    create_model_endpoint,
)
from .executor import AgentExecutor
from .roster import (
    AGENT_KEYS,
    CHARACTER,
    DIRECTOR,
    GROUNDLINE,
    NARRATOR,
    PLOTLINE,
    QUALITY,
    SKYLINE,
    STORYLINE_AGENTS,
    AgentConfig,
    AgentRoster,
    default_agent_configs,
)

__all__ = [
    # Endpoints
    "ChatResponse",
    "ModelEndpoint",
    "OpenAIEndpoint",
    "ClaudeEndpoint",
    "create_model_endpoint",
    # Roster
    "AGENT_KEYS",
    "STORYLINE_AGENTS",
    "DIRECTOR",
    "NARRATOR",
    "CHARACTER",
    "QUALITY",
    "SKYLINE",
    "GROUNDLINE",
    "PLOTLINE",
    "AgentConfig",
    "AgentRoster",
    "default_agent_configs",
    # Execution
    "AgentExecutor",
]
