"""
NovelForge Prompts Module
System prompts for the fixed agent roster.
"""

from .character import CHARACTER_SYSTEM_PROMPT
from .director import DIRECTOR_SYSTEM_PROMPT
from .narrator import NARRATOR_SYSTEM_PROMPT
from .quality import QUALITY_SYSTEM_PROMPT
from .storylines import (
    GROUNDLINE_SYSTEM_PROMPT,
    PLOTLINE_SYSTEM_PROMPT,
    SKYLINE_SYSTEM_PROMPT,
)

__all__ = [
    "DIRECTOR_SYSTEM_PROMPT",
    "NARRATOR_SYSTEM_PROMPT",
    "CHARACTER_SYSTEM_PROMPT",
    "QUALITY_SYSTEM_PROMPT",
    "SKYLINE_SYSTEM_PROMPT",
    "GROUNDLINE_SYSTEM_PROMPT",
    "PLOTLINE_SYSTEM_PROMPT",
]
