"""
The fixed agent roster.

Agents are data: an AgentConfig per key, executed through the uniform
AgentExecutor contract. Individual fields can be overridden from settings.
"""

from typing import Dict, Iterable, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..config import AgentOverride, LLMConfiguration
from ..core.errors import InvalidInputError
from ..prompts import (
    CHARACTER_SYSTEM_PROMPT,
    DIRECTOR_SYSTEM_PROMPT,
    GROUNDLINE_SYSTEM_PROMPT,
    NARRATOR_SYSTEM_PROMPT,
    PLOTLINE_SYSTEM_PROMPT,
    QUALITY_SYSTEM_PROMPT,
    SKYLINE_SYSTEM_PROMPT,
)

DIRECTOR = "director"
NARRATOR = "narrator"
CHARACTER = "character"
QUALITY = "quality"
SKYLINE = "skyline"
GROUNDLINE = "groundline"
PLOTLINE = "plotline"

AGENT_KEYS = (DIRECTOR, NARRATOR, CHARACTER, QUALITY, SKYLINE, GROUNDLINE, PLOTLINE)
STORYLINE_AGENTS = (SKYLINE, GROUNDLINE, PLOTLINE)


class AgentConfig(BaseModel):
    """Configuration of one roster agent. Immutable within a request."""
    model_config = ConfigDict(frozen=True)

    key: str
    name: str
    system_prompt: str
    model: str = "gpt-4o"
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(default=4096, gt=0)
    tools: List[str] = Field(default_factory=list)
    priority: int = 50


def default_agent_configs() -> List[AgentConfig]:
    return [
        AgentConfig(
            key=DIRECTOR,
            name="Chief Director",
            system_prompt=DIRECTOR_SYSTEM_PROMPT,
            temperature=0.5,
            max_tokens=4096,
            tools=[
                "rag_search",
                "query_graph",
                "get_project_status",
                "get_storyline_status",
                "get_chapter_content",
                "update_storyline",
                "create_storyline",
                "dispatch_agent",
            ],
            priority=100,
        ),
        AgentConfig(
            key=NARRATOR,
            name="Narrator",
            system_prompt=NARRATOR_SYSTEM_PROMPT,
            temperature=0.8,
            max_tokens=4096,
            tools=["rag_search", "query_graph", "get_chapter_content"],
            priority=80,
        ),
        AgentConfig(
            key=CHARACTER,
            name="Character Actor",
            system_prompt=CHARACTER_SYSTEM_PROMPT,
            temperature=0.8,
            max_tokens=4096,
            tools=["rag_search", "query_graph", "get_chapter_content"],
            priority=80,
        ),
        AgentConfig(
            key=QUALITY,
            name="Quality Inspector",
            system_prompt=QUALITY_SYSTEM_PROMPT,
            temperature=0.3,
            max_tokens=2048,
            tools=["query_graph", "rag_search"],
            priority=90,
        ),
        AgentConfig(
            key=SKYLINE,
            name="Skyline Controller",
            system_prompt=SKYLINE_SYSTEM_PROMPT,
            temperature=0.7,
            max_tokens=4096,
            tools=["query_graph", "rag_search", "get_storyline_status"],
            priority=70,
        ),
        AgentConfig(
            key=GROUNDLINE,
            name="Groundline Controller",
            system_prompt=GROUNDLINE_SYSTEM_PROMPT,
            temperature=0.6,
            max_tokens=4096,
            tools=["rag_search", "query_graph", "get_storyline_status", "update_storyline", "create_storyline"],
            priority=70,
        ),
        AgentConfig(
            key=PLOTLINE,
            name="Plotline Controller",
            system_prompt=PLOTLINE_SYSTEM_PROMPT,
            temperature=0.7,
            max_tokens=4096,
            tools=["rag_search", "query_graph", "get_storyline_status", "update_storyline", "create_storyline"],
            priority=70,
        ),
    ]


class AgentRoster:
    """Lookup of AgentConfig by key. Fixed at start-up."""

    def __init__(self, configs: Optional[Iterable[AgentConfig]] = None):
        self._agents: Dict[str, AgentConfig] = {}
        for config in configs if configs is not None else default_agent_configs():
            if config.key in self._agents:
                raise InvalidInputError(f"Duplicate agent key: {config.key}")
            self._agents[config.key] = config

    @classmethod
    def with_overrides(
        cls,
        overrides: Mapping[str, AgentOverride],
        llm: Optional[LLMConfiguration] = None,
    ) -> "AgentRoster":
        """Default roster with per-agent model / temperature overrides applied.

        With `llm`, agents without an explicit model override are mapped
        onto the chat provider's model catalog.
        """
        configs = []
        for config in default_agent_configs():
            update: Dict[str, object] = {}
            override = overrides.get(config.key)
            if override is not None:
                update = override.model_dump(exclude_none=True)
            if llm is not None and "model" not in update:
                update["model"] = llm.model_for(config.key, config.model)
            if update:
                config = AgentConfig(**{**config.model_dump(), **update})
            configs.append(config)
        return cls(configs)

    def get(self, key: str) -> AgentConfig:
        config = self._agents.get(key)
        if config is None:
            raise InvalidInputError(f"Unknown agent key: {key}")
        return config

    def __contains__(self, key: object) -> bool:
        return key in self._agents

    def keys(self) -> List[str]:
        return list(self._agents.keys())

    def all(self) -> List[AgentConfig]:
        return list(self._agents.values())

    def priorities(self) -> Dict[str, int]:
        return {key: config.priority for key, config in self._agents.items()}

    def validate_tools(self, registered: Iterable[str]) -> List[str]:
        """Errors for allowed-tool names missing from the registry."""
        available = set(registered)
        errors = []
        for config in self._agents.values():
            for tool in config.tools:
                if tool not in available:
                    errors.append(f"{config.key}: tool {tool} is not registered")
        return errors
