"""
Prompt Builder for NovelForge

Accumulates prioritised context sections and trims them to a token budget.

Selection is greedy over sections sorted by priority (ties broken by name so
that adds of equal priority commute). A section that does not fit is
truncated when at least MIN_TRUNCATE_TOKENS remain, which ends selection;
otherwise it is skipped and smaller sections further down may still fit.
"""

from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from ..models import PromptSection

MIN_TRUNCATE_TOKENS = 100
DEFAULT_RECENT_MAX_CHARS = 2000

# Section priorities (higher is kept first)
PRIORITY_RECENT = 9
PRIORITY_DEPENDENCY = 9
PRIORITY_PROJECT = 8
PRIORITY_GUIDELINES = 8
PRIORITY_CHAPTER = 7
PRIORITY_STORYLINE = 7
PRIORITY_KNOWLEDGE = 6
PRIORITY_CHARACTER = 6
PRIORITY_METADATA = 1

STORYLINE_LABELS = (
    ("skyline", "Skyline (world events)"),
    ("groundline", "Groundline (protagonist growth)"),
    ("plotline", "Plotline (current plot)"),
)


class TokenCounter:
    """Rough token estimate: about two tokens for every three characters."""

    @staticmethod
    def count(text: str) -> int:
        if not text:
            return 0
        return (len(text) * 2 + 2) // 3


class PromptBuilder:
    """Token-budgeted prompt composition."""

    def __init__(self, max_tokens: int = 6000):
        if max_tokens <= 0:
            raise ValueError("max_tokens must be positive")
        self.max_tokens = max_tokens
        self.system_prompt = ""
        self.user_prompt = ""
        self._sections: List[PromptSection] = []

    def set_system(self, text: str) -> "PromptBuilder":
        self.system_prompt = text or ""
        return self

    def set_user(self, text: str) -> "PromptBuilder":
        self.user_prompt = text or ""
        return self

    def add_section(self, name: str, content: str, priority: int) -> "PromptBuilder":
        """Add a section. Empty content is ignored."""
        if not content:
            return self
        self._sections.append(
            PromptSection(
                name=name,
                content=content,
                priority=priority,
                tokens=TokenCounter.count(content),
            )
        )
        return self

    @property
    def sections(self) -> List[PromptSection]:
        return list(self._sections)

    # ========================================================================
    # Convenience adders
    # ========================================================================

    def add_project_context(self, project: Optional[Mapping[str, Any]]) -> "PromptBuilder":
        if not project:
            return self
        lines = ["### Project"]
        for key, label in (("title", "Title"), ("genre", "Genre"), ("style", "Style")):
            if project.get(key):
                lines.append(f"{label}: {project[key]}")
        summary = project.get("summary") or project.get("description")
        if summary:
            lines.append(f"Summary: {summary}")
        if len(lines) == 1:
            return self
        return self.add_section("project_context", "\n".join(lines), PRIORITY_PROJECT)

    def add_chapter_context(self, chapter: Optional[Mapping[str, Any]]) -> "PromptBuilder":
        if not chapter:
            return self
        lines = ["### Current chapter"]
        if chapter.get("title"):
            lines.append(f"Title: {chapter['title']}")
        if chapter.get("chapter_number"):
            lines.append(f"Chapter: {chapter['chapter_number']}")
        if chapter.get("outline"):
            lines.append(f"Outline: {chapter['outline']}")
        if len(lines) == 1:
            return self
        return self.add_section("chapter_context", "\n".join(lines), PRIORITY_CHAPTER)

    def add_recent_content(self, content: str, max_chars: int = DEFAULT_RECENT_MAX_CHARS) -> "PromptBuilder":
        """Keep the tail of the preceding text, marking a cut with '...'."""
        if not content:
            return self
        if len(content) > max_chars:
            content = "..." + content[-max_chars:]
        return self.add_section("recent_content", f"### Preceding text\n{content}", PRIORITY_RECENT)

    def add_knowledge(self, items: Iterable[str], category: str) -> "PromptBuilder":
        items = [item for item in items if item]
        if not items:
            return self
        lines = [f"### Reference knowledge - {category}"]
        lines.extend(f"{i}. {item}" for i, item in enumerate(items, 1))
        return self.add_section(f"knowledge_{category}", "\n".join(lines), PRIORITY_KNOWLEDGE)

    def add_knowledge_block(self, category: str, block: str) -> "PromptBuilder":
        """Add an already formatted knowledge block (e.g. Retriever.build_context output)."""
        if not block:
            return self
        return self.add_section(
            f"knowledge_{category}",
            f"### Reference knowledge - {category}\n{block}",
            PRIORITY_KNOWLEDGE,
        )

    def add_storyline_context(self, storylines: Optional[Mapping[str, Any]]) -> "PromptBuilder":
        if not storylines:
            return self
        lines = ["### Storylines"]
        for key, label in STORYLINE_LABELS:
            if storylines.get(key):
                lines.append(f"{label}: {storylines[key]}")
        if len(lines) == 1:
            return self
        return self.add_section("storyline_context", "\n".join(lines), PRIORITY_STORYLINE)

    def add_character_info(self, characters: Optional[Iterable[Mapping[str, Any]]]) -> "PromptBuilder":
        lines = ["### Characters"]
        for character in characters or []:
            name = character.get("name")
            if not name:
                continue
            role = character.get("role")
            lines.append(f"**{name}** ({role})" if role else f"**{name}**")
            if character.get("description"):
                lines.append(f"  {character['description']}")
        if len(lines) == 1:
            return self
        return self.add_section("character_info", "\n".join(lines), PRIORITY_CHARACTER)

    def add_guidelines(self, guidelines: str) -> "PromptBuilder":
        if not guidelines:
            return self
        return self.add_section("writing_guidelines", f"### Writing guidelines\n{guidelines}", PRIORITY_GUIDELINES)

    def add_dependency_result(self, task_id: str, agent: str, content: str) -> "PromptBuilder":
        if not content:
            return self
        return self.add_section(
            f"dependency_{task_id}",
            f"### Output of {task_id} ({agent})\n{content}",
            PRIORITY_DEPENDENCY,
        )

    def add_metadata(self, timestamp: Optional[datetime] = None) -> "PromptBuilder":
        timestamp = timestamp or datetime.now()
        return self.add_section(
            "metadata",
            f"### Metadata\nGenerated at: {timestamp.strftime('%Y-%m-%d %H:%M:%S')}",
            PRIORITY_METADATA,
        )

    # ========================================================================
    # Assembly
    # ========================================================================

    def _available_tokens(self) -> int:
        fixed = TokenCounter.count(self.system_prompt) + TokenCounter.count(self.user_prompt)
        available = self.max_tokens - fixed
        if available < 0:
            # Fixed text alone exceeds the budget: keep half of it for context
            available = self.max_tokens // 2
        return available

    def _ordered(self) -> List[PromptSection]:
        return sorted(self._sections, key=lambda s: (-s.priority, s.name, s.content))

    def select_sections(self) -> List[PromptSection]:
        """Pick the sections that fit the dynamic budget, in output order."""
        remaining = self._available_tokens()
        selected: List[PromptSection] = []
        for section in self._ordered():
            if section.tokens <= remaining:
                selected.append(section)
                remaining -= section.tokens
                continue
            if remaining >= MIN_TRUNCATE_TOKENS:
                selected.append(self._truncate(section, remaining))
                break
        return selected

    @staticmethod
    def _truncate(section: PromptSection, tokens: int) -> PromptSection:
        keep = tokens * 3 // 2
        content = section.content[:keep] + "..."
        return PromptSection(
            name=section.name,
            content=content,
            priority=section.priority,
            tokens=TokenCounter.count(content),
        )

    def _context_block(self, selected: List[PromptSection]) -> List[str]:
        return [section.content for section in selected]

    def build(self) -> str:
        """System prompt, selected sections, then the user prompt, blank-line separated."""
        parts: List[str] = []
        if self.system_prompt:
            parts.append(self.system_prompt)
        parts.extend(self._context_block(self.select_sections()))
        if self.user_prompt:
            parts.append(self.user_prompt)
        return "\n\n".join(parts)

    def build_messages(self) -> Tuple[str, str]:
        """The (system, user) pair sent to a chat endpoint.

        The system message carries the agent prompt plus the selected context;
        the user message carries the instruction.
        """
        parts: List[str] = []
        if self.system_prompt:
            parts.append(self.system_prompt)
        parts.extend(self._context_block(self.select_sections()))
        return "\n\n".join(parts), self.user_prompt

    def estimated_tokens(self) -> int:
        """Upper estimate before trimming: fixed text plus every section."""
        total = TokenCounter.count(self.system_prompt) + TokenCounter.count(self.user_prompt)
        return total + sum(section.tokens for section in self._sections)

    def sections_summary(self) -> Dict[str, int]:
        return {section.name: section.tokens for section in self._sections}
