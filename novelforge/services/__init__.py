"""
NovelForge Services Module
External service integrations.
"""

from .graph_store import GraphStore, NodeLabel, RelationType
from .qdrant_memory import (
    COLLECTION_AGENT_KNOWLEDGE,
    COLLECTION_PROJECT_CONTENT,
    QdrantVectorIndex,
)
from .redis_events import RedisEventPublisher
from .supabase_persistence import SupabasePersistenceService
from .trace_logger import TraceLogger
from .tracing import TracingService

__all__ = [
    "GraphStore",
    "NodeLabel",
    "RelationType",
    "QdrantVectorIndex",
    "COLLECTION_PROJECT_CONTENT",
    "COLLECTION_AGENT_KNOWLEDGE",
    "RedisEventPublisher",
    "SupabasePersistenceService",
    "TraceLogger",
    "TracingService",
]
