"""
NovelForge Director Module
Intent analysis, task decomposition, conflict arbitration and the facade
that drives a request end to end.
"""

from .arbitration import ConflictArbitrator, dialogue_share
from .decomposer import TaskDecomposer
from .facade import DirectorFacade
from .intent import IntentAnalyzer

__all__ = [
    "IntentAnalyzer",
    "TaskDecomposer",
    "ConflictArbitrator",
    "dialogue_share",
    "DirectorFacade",
]
