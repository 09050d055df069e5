"""
NovelForge Inference Module
Storyline analysis and chapter forecasting.
"""

from .engine import InferenceEngine, StorylineAnalyzer, progression_bucket
from .service import InferenceService

__all__ = [
    "InferenceEngine",
    "StorylineAnalyzer",
    "InferenceService",
    "progression_bucket",
]
