"""
Runtime settings for NovelForge.

Every tunable has a documented default; `create_settings_from_env()` reads
overrides from the environment (and a `.env` file when present).
"""

import logging
import os
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, SecretStr

from .llm_providers import LLMConfiguration, create_default_config_from_env

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class CacheSettings(BaseModel):
    """Capacity and time-to-live of one prompt cache namespace."""
    max_size: int = Field(gt=0)
    ttl_seconds: float = Field(gt=0)


class ReviewSettings(BaseModel):
    max_iterations: int = Field(default=3, ge=0)
    min_score: float = Field(default=80.0, ge=0.0, le=100.0)
    timeout_seconds: float = Field(default=300.0, gt=0)
    auto_approve: bool = True


class AgentOverride(BaseModel):
    model: Optional[str] = None
    temperature: Optional[float] = Field(default=None, ge=0.0, le=2.0)


class Settings(BaseModel):
    """Aggregated configuration for one orchestrator process."""

    llm: LLMConfiguration = Field(default_factory=LLMConfiguration)

    # External collaborators
    qdrant_url: str = "http://localhost:6333"
    qdrant_api_key: Optional[SecretStr] = None
    supabase_url: Optional[str] = None
    supabase_key: Optional[SecretStr] = None
    redis_url: str = "redis://localhost:6379"
    graph_store_path: Optional[str] = None
    langfuse_public_key: Optional[str] = None
    langfuse_secret_key: Optional[SecretStr] = None
    langfuse_host: Optional[str] = None

    # Scheduling and messaging
    max_concurrency: int = Field(default=8, gt=0)
    bus_subscriber_capacity: int = Field(default=10, gt=0)
    bus_history_size: int = Field(default=1000, gt=0)
    trace_queue_size: int = Field(default=256, gt=0)

    # Prompt assembly
    prompt_max_tokens: int = Field(default=6000, gt=0)
    recent_content_max_chars: int = Field(default=2000, gt=0)
    retrieval_top_k: int = Field(default=5, gt=0)

    project_cache: CacheSettings = Field(default_factory=lambda: CacheSettings(max_size=100, ttl_seconds=1800))
    character_cache: CacheSettings = Field(default_factory=lambda: CacheSettings(max_size=200, ttl_seconds=3600))
    knowledge_cache: CacheSettings = Field(default_factory=lambda: CacheSettings(max_size=500, ttl_seconds=7200))

    review: ReviewSettings = Field(default_factory=ReviewSettings)
    review_in_workflow: bool = False

    inference_horizon_chapters: int = Field(default=30, gt=0)

    agent_overrides: Dict[str, AgentOverride] = Field(default_factory=dict)

    log_level: str = "INFO"


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


def _agent_overrides_from_env() -> Dict[str, AgentOverride]:
    overrides: Dict[str, Dict[str, Any]] = {}
    for name, value in os.environ.items():
        if name.startswith("AGENT_MODEL_"):
            key = name[len("AGENT_MODEL_"):].lower()
            overrides.setdefault(key, {})["model"] = value
        elif name.startswith("AGENT_TEMPERATURE_"):
            key = name[len("AGENT_TEMPERATURE_"):].lower()
            overrides.setdefault(key, {})["temperature"] = float(value)
    return {key: AgentOverride(**values) for key, values in overrides.items()}


def create_settings_from_env(dotenv: bool = True) -> Settings:
    """Build Settings from environment variables."""
    if dotenv:
        load_dotenv()

    supabase_key = os.getenv("SUPABASE_SERVICE_KEY")
    qdrant_api_key = os.getenv("QDRANT_API_KEY")
    langfuse_secret = os.getenv("LANGFUSE_SECRET_KEY")

    return Settings(
        llm=create_default_config_from_env(),
        qdrant_url=os.getenv("QDRANT_URL", "http://localhost:6333"),
        qdrant_api_key=SecretStr(qdrant_api_key) if qdrant_api_key else None,
        supabase_url=os.getenv("SUPABASE_URL"),
        supabase_key=SecretStr(supabase_key) if supabase_key else None,
        redis_url=os.getenv("REDIS_URL", "redis://localhost:6379"),
        graph_store_path=os.getenv("GRAPH_STORE_PATH"),
        langfuse_public_key=os.getenv("LANGFUSE_PUBLIC_KEY"),
        langfuse_secret_key=SecretStr(langfuse_secret) if langfuse_secret else None,
        langfuse_host=os.getenv("LANGFUSE_HOST"),
        max_concurrency=_env_int("MAX_CONCURRENCY", 8),
        bus_subscriber_capacity=_env_int("BUS_SUBSCRIBER_CAPACITY", 10),
        bus_history_size=_env_int("BUS_HISTORY_SIZE", 1000),
        trace_queue_size=_env_int("TRACE_QUEUE_SIZE", 256),
        prompt_max_tokens=_env_int("PROMPT_MAX_TOKENS", 6000),
        recent_content_max_chars=_env_int("RECENT_CONTENT_MAX_CHARS", 2000),
        retrieval_top_k=_env_int("RETRIEVAL_TOP_K", 5),
        project_cache=CacheSettings(
            max_size=_env_int("PROJECT_CACHE_SIZE", 100),
            ttl_seconds=_env_float("PROJECT_CACHE_TTL_SECONDS", 1800),
        ),
        character_cache=CacheSettings(
            max_size=_env_int("CHARACTER_CACHE_SIZE", 200),
            ttl_seconds=_env_float("CHARACTER_CACHE_TTL_SECONDS", 3600),
        ),
        knowledge_cache=CacheSettings(
            max_size=_env_int("KNOWLEDGE_CACHE_SIZE", 500),
            ttl_seconds=_env_float("KNOWLEDGE_CACHE_TTL_SECONDS", 7200),
        ),
        review=ReviewSettings(
            max_iterations=_env_int("REVIEW_MAX_ITERATIONS", 3),
            min_score=_env_float("REVIEW_MIN_SCORE", 80.0),
            timeout_seconds=_env_float("REVIEW_TIMEOUT_SECONDS", 300.0),
            auto_approve=_env_bool("REVIEW_AUTO_APPROVE", True),
        ),
        review_in_workflow=_env_bool("REVIEW_IN_WORKFLOW", False),
        inference_horizon_chapters=_env_int("INFERENCE_HORIZON_CHAPTERS", 30),
        agent_overrides=_agent_overrides_from_env(),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
    )


def configure_logging(level: str = "INFO") -> logging.Logger:
    """Attach a stream handler to the `novelforge` logger once."""
    logger = logging.getLogger("novelforge")
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
    return logger
