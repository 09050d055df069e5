"""
LLM Provider Configuration
Supports OpenAI, OpenRouter and Anthropic Claude model endpoints.

Each provider has a small model catalog naming the roster agents a model
suits. Roster defaults are written for OpenAI; when chat goes to another
provider, `LLMConfiguration.model_for()` maps an agent onto that
provider's catalog.
"""

import os
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, SecretStr


class LLMProvider(str, Enum):
    """Supported LLM providers."""
    OPENAI = "openai"
    OPENROUTER = "openrouter"
    CLAUDE = "claude"


# ============================================================================
# Model catalogs
# ============================================================================

OPENAI_MODELS: Dict[str, Dict[str, Any]] = {
    "gpt-4o": {
        "context_window": 128000,
        "agents": ["director", "narrator", "character", "quality"],
    },
    "gpt-4o-mini": {
        "context_window": 128000,
        "agents": ["skyline", "groundline", "plotline"],
    },
}

OPENROUTER_MODELS: Dict[str, Dict[str, Any]] = {
    "openai/gpt-4o": {
        "context_window": 128000,
        "agents": ["director", "quality"],
    },
    "anthropic/claude-3.5-sonnet": {
        "context_window": 200000,
        "agents": ["narrator", "character"],
    },
    "qwen/qwen-2.5-72b-instruct": {
        "context_window": 131072,
        "agents": ["skyline", "groundline", "plotline"],
    },
}

CLAUDE_MODELS: Dict[str, Dict[str, Any]] = {
    "claude-3-5-sonnet-20241022": {
        "context_window": 200000,
        "agents": ["director", "narrator", "character", "quality"],
    },
    "claude-3-5-haiku-20241022": {
        "context_window": 200000,
        "agents": ["skyline", "groundline", "plotline"],
    },
}

MODEL_CATALOGS: Dict[LLMProvider, Dict[str, Dict[str, Any]]] = {
    LLMProvider.OPENAI: OPENAI_MODELS,
    LLMProvider.OPENROUTER: OPENROUTER_MODELS,
    LLMProvider.CLAUDE: CLAUDE_MODELS,
}


def models_for_agent(provider: LLMProvider, agent_key: str) -> List[str]:
    """Catalog models of `provider` suited to a roster agent, in catalog order."""
    return [
        model_id for model_id, info in MODEL_CATALOGS[provider].items()
        if agent_key.lower() in info["agents"]
    ]


# ============================================================================
# Provider configuration
# ============================================================================

class ProviderConfig(BaseModel):
    provider: LLMProvider
    api_key: SecretStr
    base_url: Optional[str] = None
    default_model: str


class OpenAIConfig(ProviderConfig):
    provider: LLMProvider = LLMProvider.OPENAI
    base_url: str = "https://api.openai.com/v1"
    default_model: str = "gpt-4o"


class OpenRouterConfig(ProviderConfig):
    """OpenRouter speaks the OpenAI API."""
    provider: LLMProvider = LLMProvider.OPENROUTER
    base_url: str = "https://openrouter.ai/api/v1"
    default_model: str = "openai/gpt-4o"


class ClaudeConfig(ProviderConfig):
    provider: LLMProvider = LLMProvider.CLAUDE
    base_url: str = "https://api.anthropic.com"
    default_model: str = "claude-3-5-sonnet-20241022"


class LLMConfiguration(BaseModel):
    """Configured providers plus call-level limits shared by every agent."""

    openai: Optional[OpenAIConfig] = None
    openrouter: Optional[OpenRouterConfig] = None
    claude: Optional[ClaudeConfig] = None

    default_provider: LLMProvider = LLMProvider.OPENAI

    max_retries: int = Field(default=3, ge=0, le=10)
    timeout_seconds: int = Field(default=120, ge=1, le=600)

    # Embeddings always go through an OpenAI-compatible endpoint
    embedding_model: str = "text-embedding-3-small"
    embedding_dimension: int = Field(default=1536, gt=0)

    def get_provider_config(self, provider: Optional[LLMProvider] = None) -> Optional[ProviderConfig]:
        provider_map = {
            LLMProvider.OPENAI: self.openai,
            LLMProvider.OPENROUTER: self.openrouter,
            LLMProvider.CLAUDE: self.claude,
        }
        return provider_map.get(provider or self.default_provider)

    def model_for(self, agent_key: str, model: str) -> str:
        """The model an agent should request from the default provider.

        `model` is kept when the provider's catalog lists it or when the
        provider is not configured; otherwise the first catalog model suited
        to the agent, falling back to the provider's default model.
        """
        provider_config = self.get_provider_config()
        if provider_config is None or model in MODEL_CATALOGS[self.default_provider]:
            return model
        suited = models_for_agent(self.default_provider, agent_key)
        return suited[0] if suited else provider_config.default_model


def create_default_config_from_env() -> LLMConfiguration:
    """Create configuration from environment variables."""
    config = LLMConfiguration(
        default_provider=LLMProvider(os.getenv("LLM_PROVIDER", LLMProvider.OPENAI.value)),
        max_retries=int(os.getenv("LLM_MAX_RETRIES", "3")),
        timeout_seconds=int(os.getenv("LLM_TIMEOUT_SECONDS", "120")),
        embedding_model=os.getenv("EMBEDDING_MODEL", "text-embedding-3-small"),
        embedding_dimension=int(os.getenv("EMBEDDING_DIMENSION", "1536")),
    )

    if os.getenv("OPENAI_API_KEY"):
        config.openai = OpenAIConfig(
            api_key=SecretStr(os.getenv("OPENAI_API_KEY")),
            base_url=os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1"),
        )

    if os.getenv("OPENROUTER_API_KEY"):
        config.openrouter = OpenRouterConfig(api_key=SecretStr(os.getenv("OPENROUTER_API_KEY")))

    if os.getenv("ANTHROPIC_API_KEY"):
        config.claude = ClaudeConfig(api_key=SecretStr(os.getenv("ANTHROPIC_API_KEY")))

    return config
