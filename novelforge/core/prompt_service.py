"""
Prompt Service for NovelForge
Turns structured prompt options into PromptBuilder instances and finished
prompts for the common writing operations (agent call, continue, polish).
"""

from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field

from .prompt_builder import DEFAULT_RECENT_MAX_CHARS, PromptBuilder
from .prompt_cache import ContextCache


class PromptOptions(BaseModel):
    """Context available for one prompt."""
    project_id: Optional[Union[int, str]] = None
    project_info: Optional[Dict[str, Any]] = None
    chapter_info: Optional[Dict[str, Any]] = None
    recent_content: str = ""
    recent_content_max_chars: Optional[int] = Field(default=None, gt=0)
    knowledge_items: Dict[str, List[str]] = Field(default_factory=dict)
    storylines: Optional[Dict[str, Any]] = None
    characters: List[Dict[str, Any]] = Field(default_factory=list)
    writing_guidelines: str = ""
    include_metadata: bool = False


class ContinueOptions(BaseModel):
    project_id: Optional[Union[int, str]] = None
    project_info: Optional[Dict[str, Any]] = None
    chapter_info: Optional[Dict[str, Any]] = None
    context: str = ""
    length: Optional[int] = Field(default=None, gt=0)
    style: Optional[str] = None
    custom_prompt: str = ""
    storylines: Optional[Dict[str, Any]] = None
    characters: List[Dict[str, Any]] = Field(default_factory=list)


class PolishOptions(BaseModel):
    project_id: Optional[Union[int, str]] = None
    project_info: Optional[Dict[str, Any]] = None
    content: str
    polish_type: str = "all"
    custom_prompt: str = ""


POLISH_REQUIREMENTS = {
    "grammar": "Fix grammatical errors and awkward sentences.",
    "style": "Refine the prose style and its literary quality.",
    "clarity": "Make the wording clearer and more precise.",
}
POLISH_DEFAULT_REQUIREMENT = "Improve the overall quality of the writing."


class PromptService:
    """Builds prompts for agent calls, caching formatted project context."""

    def __init__(
        self,
        max_tokens: int = 6000,
        cache: Optional[ContextCache] = None,
        recent_max_chars: int = DEFAULT_RECENT_MAX_CHARS,
    ):
        self.max_tokens = max_tokens
        self.cache = cache if cache is not None else ContextCache()
        self.recent_max_chars = recent_max_chars

    def builder_for(self, system_prompt: str, user_prompt: str, options: PromptOptions) -> PromptBuilder:
        """A PromptBuilder pre-filled with every section the options describe."""
        builder = PromptBuilder(self.max_tokens)
        builder.set_system(system_prompt).set_user(user_prompt)

        if options.project_id is not None and options.project_info:
            builder.add_project_context(options.project_info)
        if options.chapter_info:
            builder.add_chapter_context(options.chapter_info)
        if options.recent_content:
            builder.add_recent_content(
                options.recent_content,
                options.recent_content_max_chars or self.recent_max_chars,
            )
        for category, items in options.knowledge_items.items():
            builder.add_knowledge(items, category)
        if options.storylines:
            builder.add_storyline_context(options.storylines)
        if options.characters:
            builder.add_character_info(options.characters)
        if options.writing_guidelines:
            builder.add_guidelines(options.writing_guidelines)
        if options.include_metadata:
            builder.add_metadata()
        return builder

    def build_agent_prompt(self, system_prompt: str, user_prompt: str, options: PromptOptions) -> str:
        return self.builder_for(system_prompt, user_prompt, options).build()

    def build_continue_prompt(self, system_prompt: str, options: ContinueOptions) -> str:
        user_prompt = "Continue the text above"
        if options.length:
            user_prompt += f", about {options.length} words"
        if options.style:
            user_prompt += f", in a {options.style} style"
        user_prompt += "."
        if options.custom_prompt:
            user_prompt += "\n" + options.custom_prompt
        user_prompt += "\n\nBegin the continuation:"

        prompt_options = PromptOptions(
            project_id=options.project_id,
            project_info=options.project_info,
            chapter_info=options.chapter_info,
            recent_content=options.context,
            recent_content_max_chars=self.recent_max_chars,
            storylines=options.storylines,
            characters=options.characters,
            include_metadata=True,
        )
        return self.build_agent_prompt(system_prompt, user_prompt, prompt_options)

    def build_polish_prompt(self, system_prompt: str, options: PolishOptions) -> str:
        requirement = POLISH_REQUIREMENTS.get(options.polish_type, POLISH_DEFAULT_REQUIREMENT)
        user_prompt = f"Polish the following text:\n\n{options.content}\n\nRequirement: {requirement}\n"
        if options.custom_prompt:
            user_prompt += options.custom_prompt + "\n"
        user_prompt += "\nOutput the polished text:"

        prompt_options = PromptOptions(
            project_id=options.project_id,
            project_info=options.project_info,
        )
        return self.build_agent_prompt(system_prompt, user_prompt, prompt_options)

    def cache_stats(self) -> Dict[str, Dict[str, Any]]:
        return self.cache.stats()
