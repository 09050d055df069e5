"""
NovelForge Configuration Module
LLM provider configuration and runtime settings.
"""

from .llm_providers import (
    MODEL_CATALOGS,
    ClaudeConfig,
    LLMConfiguration,
    LLMProvider,
    OpenAIConfig,
    OpenRouterConfig,
    ProviderConfig,
    create_default_config_from_env,
    models_for_agent,
)
from .settings import (
    AgentOverride,
    CacheSettings,
    ReviewSettings,
    Settings,
    configure_logging,
    create_settings_from_env,
)

__all__ = [
    # Providers
    "LLMProvider",
    "MODEL_CATALOGS",
    "ProviderConfig",
    "OpenAIConfig",
    "OpenRouterConfig",
    "ClaudeConfig",
    "LLMConfiguration",
    "models_for_agent",
    "create_default_config_from_env",
    # Runtime settings
    "AgentOverride",
    "CacheSettings",
    "ReviewSettings",
    "Settings",
    "configure_logging",
    "create_settings_from_env",
]
