"""
Unit tests for the prompt cache.

Tests cover:
- Lookup, expiry and hit counting with an injected clock
- Oldest-insertion eviction at capacity
- ContextCache namespaces and project invalidation
- The background cleaner
"""

import asyncio

import pytest

from novelforge.config import CacheSettings, Settings
from novelforge.core import ContextCache, PromptCache


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class TestPromptCache:
    """Tests for PromptCache."""

    def test_store_then_lookup(self):
        """A stored fragment is returned within the TTL."""
        cache = PromptCache(max_size=10, ttl_seconds=60, clock=FakeClock())
        cache.store("k", "value")
        assert cache.lookup("k") == "value"

    def test_miss_returns_none(self):
        assert PromptCache().lookup("missing") is None

    def test_expired_entry_is_absent(self):
        """An entry as old as the TTL is no longer returned."""
        clock = FakeClock()
        cache = PromptCache(max_size=10, ttl_seconds=60, clock=clock)
        cache.store("k", "value")
        clock.advance(59)
        assert cache.lookup("k") == "value"
        clock.advance(1)
        assert cache.lookup("k") is None

    def test_lookup_counts_hits(self):
        cache = PromptCache(clock=FakeClock())
        cache.store("k", "abc")
        cache.lookup("k")
        cache.lookup("k")
        stats = cache.stats()
        assert stats["total_hits"] == 2
        assert stats["total_tokens"] == 2
        assert stats["size"] == 1

    def test_evicts_oldest_insertion_at_capacity(self):
        """Storing into a full cache drops the oldest entry only."""
        clock = FakeClock()
        cache = PromptCache(max_size=2, ttl_seconds=600, clock=clock)
        cache.store("first", "1")
        clock.advance(1)
        cache.store("second", "2")
        clock.advance(1)
        cache.store("third", "3")

        assert len(cache) == 2
        assert cache.lookup("first") is None
        assert cache.lookup("second") == "2"
        assert cache.lookup("third") == "3"

    def test_restore_existing_key_does_not_evict(self):
        """Overwriting a key in a full cache keeps every other entry."""
        cache = PromptCache(max_size=2, clock=FakeClock())
        cache.store("a", "1")
        cache.store("b", "2")
        cache.store("a", "3")
        assert cache.lookup("a") == "3"
        assert cache.lookup("b") == "2"

    def test_purge_expired(self):
        clock = FakeClock()
        cache = PromptCache(ttl_seconds=10, clock=clock)
        cache.store("old", "x")
        clock.advance(20)
        cache.store("new", "y")
        assert cache.purge_expired() == 1
        assert len(cache) == 1

    def test_invalid_parameters(self):
        with pytest.raises(ValueError):
            PromptCache(max_size=0)
        with pytest.raises(ValueError):
            PromptCache(ttl_seconds=0)

    @pytest.mark.asyncio
    async def test_background_cleaner_removes_expired(self):
        """The cleaner wakes every ttl/2 and drops expired entries."""
        cache = PromptCache(ttl_seconds=0.05)
        cache.store("k", "v")
        cache.start()
        try:
            await asyncio.sleep(0.2)
            assert len(cache) == 0
        finally:
            await cache.stop()


class TestContextCache:
    """Tests for the three cache namespaces."""

    def test_default_capacities(self):
        cache = ContextCache()
        assert cache.project.max_size == 100
        assert cache.project.ttl_seconds == 1800
        assert cache.character.max_size == 200
        assert cache.character.ttl_seconds == 3600
        assert cache.knowledge.max_size == 500
        assert cache.knowledge.ttl_seconds == 7200

    def test_from_settings(self):
        settings = Settings(project_cache=CacheSettings(max_size=3, ttl_seconds=5))
        cache = ContextCache.from_settings(settings)
        assert cache.project.max_size == 3
        assert cache.project.ttl_seconds == 5

    def test_configured_caches_are_kept_while_empty(self):
        """Freshly built caches hold no entries yet and must not be swapped for defaults."""
        settings = Settings(
            project_cache=CacheSettings(max_size=3, ttl_seconds=5),
            character_cache=CacheSettings(max_size=7, ttl_seconds=11),
            knowledge_cache=CacheSettings(max_size=13, ttl_seconds=17),
        )
        cache = ContextCache.from_settings(settings)
        assert (cache.character.max_size, cache.character.ttl_seconds) == (7, 11)
        assert (cache.knowledge.max_size, cache.knowledge.ttl_seconds) == (13, 17)

    def test_explicit_empty_cache_is_used(self):
        knowledge = PromptCache(max_size=2, ttl_seconds=9)
        assert len(knowledge) == 0
        assert ContextCache(knowledge=knowledge).knowledge is knowledge

    def test_namespaces_are_separate(self):
        """The same id in two namespaces maps to two entries."""
        cache = ContextCache()
        cache.set_project(1, "project")
        cache.set_character(1, 1, "character")
        cache.set_knowledge("narrator", "style", "knowledge")
        assert cache.get_project(1) == "project"
        assert cache.get_character(1, 1) == "character"
        assert cache.get_knowledge("narrator", "style") == "knowledge"
        assert cache.get_knowledge("character", "style") is None

    def test_invalidate_project(self):
        """Invalidation removes the project and its characters, nothing else."""
        cache = ContextCache()
        cache.set_project(1, "p1")
        cache.set_character(1, "a", "c1a")
        cache.set_character(1, "b", "c1b")
        cache.set_character(12, "a", "c12a")

        assert cache.invalidate_project(1) == 3
        assert cache.get_project(1) is None
        assert cache.get_character(12, "a") == "c12a"
