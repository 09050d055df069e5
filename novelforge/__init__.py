"""
NovelForge Orchestrator
Multi-agent collaborative novel writing: intent analysis, task
decomposition, dependency-ordered agent workflows, review loops, conflict
arbitration and storyline forecasting.
"""

from .agents import AgentExecutor, AgentRoster
from .config import Settings, create_settings_from_env
from .core import CancellationToken, Request, StreamChannel
from .director import DirectorFacade

__version__ = "0.1.0"

__all__ = [
    "AgentExecutor",
    "AgentRoster",
    "Settings",
    "create_settings_from_env",
    "CancellationToken",
    "Request",
    "StreamChannel",
    "DirectorFacade",
]
