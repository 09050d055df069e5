"""
Prompt Cache for NovelForge

Keyed cache of assembled context fragments with a time-to-live and a size
cap. Three namespaces sit behind `ContextCache`:

- project context, keyed by project id
- character context, keyed by (project id, character id)
- knowledge content, keyed by (agent id, category)

The cache is memory-only and best-effort: a miss returns None and storing
into a full cache evicts the oldest insertion.
"""

import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Union

from ..config import CacheSettings, Settings
from .prompt_builder import TokenCounter

logger = logging.getLogger("novelforge.cache")


@dataclass
class CacheEntry:
    content: str
    tokens: int
    inserted_at: float
    hits: int = 0


class PromptCache:
    """TTL + capacity bounded map from string key to prompt fragment."""

    def __init__(
        self,
        max_size: int = 100,
        ttl_seconds: float = 1800,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_size <= 0:
            raise ValueError("max_size must be positive")
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self._cleaner: Optional[asyncio.Task] = None

    def _expired(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.inserted_at >= self.ttl_seconds

    def lookup(self, key: str) -> Optional[str]:
        """Return the cached content if present and younger than the TTL."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or self._expired(entry, self._clock()):
                return None
            entry.hits += 1
            return entry.content

    def store(self, key: str, content: str, tokens: Optional[int] = None) -> None:
        if tokens is None:
            tokens = TokenCounter.count(content)
        with self._lock:
            if key not in self._entries and len(self._entries) >= self.max_size:
                oldest = min(self._entries, key=lambda k: self._entries[k].inserted_at)
                del self._entries[oldest]
            self._entries[key] = CacheEntry(content=content, tokens=tokens, inserted_at=self._clock())

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def delete_prefix(self, prefix: str) -> int:
        with self._lock:
            keys = [k for k in self._entries if k.startswith(prefix)]
            for key in keys:
                del self._entries[key]
            return len(keys)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def purge_expired(self) -> int:
        """Remove every expired entry. Returns how many were removed."""
        now = self._clock()
        with self._lock:
            expired = [k for k, entry in self._entries.items() if self._expired(entry, now)]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.debug(f"[purge_expired] Removed {len(expired)} expired entries")
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "size": len(self._entries),
                "max_size": self.max_size,
                "total_hits": sum(e.hits for e in self._entries.values()),
                "total_tokens": sum(e.tokens for e in self._entries.values()),
                "ttl_seconds": self.ttl_seconds,
            }

    # ========================================================================
    # Background cleaner
    # ========================================================================

    def start(self) -> None:
        """Start the cleaner task; it wakes every ttl/2 seconds."""
        if self._cleaner is None or self._cleaner.done():
            self._cleaner = asyncio.get_running_loop().create_task(self._clean_loop())

    async def stop(self) -> None:
        if self._cleaner is None:
            return
        self._cleaner.cancel()
        await asyncio.gather(self._cleaner, return_exceptions=True)
        self._cleaner = None

    async def _clean_loop(self) -> None:
        interval = self.ttl_seconds / 2
        while True:
            await asyncio.sleep(interval)
            self.purge_expired()


ProjectId = Union[int, str]


class ContextCache:
    """The three prompt cache namespaces used by the agent executor."""

    def __init__(
        self,
        project: Optional[PromptCache] = None,
        character: Optional[PromptCache] = None,
        knowledge: Optional[PromptCache] = None,
    ):
        self.project = project if project is not None else PromptCache(max_size=100, ttl_seconds=1800)
        self.character = character if character is not None else PromptCache(max_size=200, ttl_seconds=3600)
        self.knowledge = knowledge if knowledge is not None else PromptCache(max_size=500, ttl_seconds=7200)

    @classmethod
    def from_settings(cls, settings: Settings) -> "ContextCache":
        def build(cfg: CacheSettings) -> PromptCache:
            return PromptCache(max_size=cfg.max_size, ttl_seconds=cfg.ttl_seconds)

        return cls(
            project=build(settings.project_cache),
            character=build(settings.character_cache),
            knowledge=build(settings.knowledge_cache),
        )

    # Project context
    def get_project(self, project_id: ProjectId) -> Optional[str]:
        return self.project.lookup(f"project:{project_id}")

    def set_project(self, project_id: ProjectId, content: str) -> None:
        self.project.store(f"project:{project_id}", content)

    # Character context
    def get_character(self, project_id: ProjectId, character_id: ProjectId) -> Optional[str]:
        return self.character.lookup(f"character:{project_id}:{character_id}")

    def set_character(self, project_id: ProjectId, character_id: ProjectId, content: str) -> None:
        self.character.store(f"character:{project_id}:{character_id}", content)

    # Knowledge content
    def get_knowledge(self, agent_id: str, category: str) -> Optional[str]:
        return self.knowledge.lookup(f"knowledge:{agent_id}:{category}")

    def set_knowledge(self, agent_id: str, category: str, content: str) -> None:
        self.knowledge.store(f"knowledge:{agent_id}:{category}", content)

    def invalidate_project(self, project_id: ProjectId) -> int:
        """Drop the project entry and every character entry of that project."""
        removed = 1 if self.project.delete(f"project:{project_id}") else 0
        removed += self.character.delete_prefix(f"character:{project_id}:")
        return removed

    def start(self) -> None:
        for cache in (self.project, self.character, self.knowledge):
            cache.start()

    async def stop(self) -> None:
        for cache in (self.project, self.character, self.knowledge):
            await cache.stop()

    def stats(self) -> Dict[str, Dict[str, Any]]:
        return {
            "project": self.project.stats(),
            "character": self.character.stats(),
            "knowledge": self.knowledge.stats(),
        }
