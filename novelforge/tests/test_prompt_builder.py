"""
Unit tests for prompt assembly.

Tests cover:
- TokenCounter estimates
- PromptBuilder budget selection, truncation and ordering
- Convenience section adders
- PromptService option handling
"""

from datetime import datetime

import pytest

from novelforge.core import (
    ContextCache,
    ContinueOptions,
    PolishOptions,
    PromptBuilder,
    PromptOptions,
    PromptService,
    TokenCounter,
)
from novelforge.core.prompt_builder import MIN_TRUNCATE_TOKENS, PRIORITY_DEPENDENCY, PRIORITY_RECENT


class TestTokenCounter:
    """Tests for the token estimate."""

    def test_empty_text(self):
        """Empty text costs nothing."""
        assert TokenCounter.count("") == 0

    def test_two_thirds_of_length_rounded_up(self):
        """Three characters cost two tokens, one character costs one."""
        assert TokenCounter.count("abc") == 2
        assert TokenCounter.count("a") == 1
        assert TokenCounter.count("a" * 150) == 100

    def test_counts_characters_not_bytes(self):
        """CJK characters count the same as ASCII ones."""
        assert TokenCounter.count("月色下少年") == TokenCounter.count("abcde")


class TestPromptBuilderSections:
    """Tests for adding sections."""

    def test_empty_content_is_ignored(self):
        """add_section with empty content adds nothing."""
        builder = PromptBuilder().add_section("empty", "", 5)
        assert builder.sections == []

    def test_section_records_token_estimate(self):
        """Each section stores its estimated token count."""
        builder = PromptBuilder().add_section("notes", "a" * 30, 5)
        assert builder.sections[0].tokens == 20

    def test_recent_content_keeps_tail(self):
        """Long preceding text is cut to its tail and marked with '...'."""
        text = "x" * 50 + "END"
        builder = PromptBuilder().add_recent_content(text, max_chars=10)
        section = builder.sections[0]
        assert section.name == "recent_content"
        assert section.priority == PRIORITY_RECENT
        assert section.content.endswith("...xxxxxxxEND")

    def test_recent_content_short_text_is_kept_whole(self):
        """Text under the cap is not marked."""
        builder = PromptBuilder().add_recent_content("short text", max_chars=100)
        assert "..." not in builder.sections[0].content

    def test_knowledge_one_section_per_category(self):
        """Knowledge items become a numbered list per category."""
        builder = PromptBuilder()
        builder.add_knowledge(["first", "second"], "world")
        builder.add_knowledge(["third"], "magic")
        names = [s.name for s in builder.sections]
        assert names == ["knowledge_world", "knowledge_magic"]
        assert "1. first\n2. second" in builder.sections[0].content

    def test_storyline_context_uses_known_lines_only(self):
        """Only skyline, groundline and plotline entries are rendered."""
        builder = PromptBuilder().add_storyline_context({"skyline": "war", "other": "ignored"})
        content = builder.sections[0].content
        assert "war" in content
        assert "ignored" not in content

    def test_character_info_skips_nameless_entries(self):
        """Characters without a name are skipped; none left means no section."""
        builder = PromptBuilder().add_character_info([{"role": "hero"}])
        assert builder.sections == []

        builder.add_character_info([{"name": "林风", "role": "hero", "description": "a swordsman"}])
        assert "**林风** (hero)" in builder.sections[0].content

    def test_dependency_result_section(self):
        """Upstream output is labelled with its task and agent."""
        builder = PromptBuilder().add_dependency_result("task_plan", "director", "the plan")
        section = builder.sections[0]
        assert section.name == "dependency_task_plan"
        assert section.priority == PRIORITY_DEPENDENCY
        assert "task_plan (director)" in section.content

    def test_metadata_timestamp(self):
        """Metadata carries the given timestamp."""
        builder = PromptBuilder().add_metadata(datetime(2024, 1, 2, 3, 4, 5))
        assert "2024-01-02 03:04:05" in builder.sections[0].content


class TestPromptBuilderBudget:
    """Tests for budgeted selection."""

    def test_skips_section_that_does_not_fit_and_continues(self):
        """With under 100 tokens left an oversized section is skipped, smaller ones still fit."""
        builder = PromptBuilder(max_tokens=200)
        builder.set_system("S" * 30).set_user("U" * 30)  # 20 + 20 fixed tokens
        builder.add_section("a", "a" * 150, 9)  # 100 tokens
        builder.add_section("b", "b" * 150, 8)  # 100 tokens, only 60 left
        builder.add_section("c", "c" * 60, 1)  # 40 tokens

        assert [s.name for s in builder.select_sections()] == ["a", "c"]

    def test_truncates_and_stops(self):
        """With at least 100 tokens left an oversized section is truncated and selection ends."""
        builder = PromptBuilder(max_tokens=400)
        builder.add_section("a", "a" * 450, 9)  # 300 tokens
        builder.add_section("b", "b" * 600, 8)  # 400 tokens, 100 left
        builder.add_section("c", "c" * 3, 1)

        selected = builder.select_sections()
        assert [s.name for s in selected] == ["a", "b"]
        assert selected[1].content == "b" * 150 + "..."

    def test_output_stays_within_budget_plus_slack(self):
        """The assembled prompt never exceeds the budget by more than the truncation slack."""
        builder = PromptBuilder(max_tokens=500)
        builder.set_system("system " * 20).set_user("write the next scene")
        for i in range(10):
            builder.add_section(f"s{i}", f"section {i} " * 40, i)

        assert TokenCounter.count(builder.build()) <= 500 + MIN_TRUNCATE_TOKENS + 50

    def test_fixed_text_over_budget_uses_half(self):
        """When system and user exceed the budget, half the budget goes to sections."""
        builder = PromptBuilder(max_tokens=100)
        builder.set_system("S" * 300)  # 200 tokens on its own
        builder.add_section("a", "a" * 60, 9)  # 40 tokens
        builder.add_section("b", "b" * 30, 8)  # 20 tokens, 10 left

        assert [s.name for s in builder.select_sections()] == ["a"]
        assert "a" * 60 in builder.build()

    def test_equal_priorities_order_by_name(self):
        """Adds of equal priority commute."""
        first = PromptBuilder().add_section("beta", "B", 5).add_section("alpha", "A", 5)
        second = PromptBuilder().add_section("alpha", "A", 5).add_section("beta", "B", 5)
        assert first.build() == second.build() == "A\n\nB"

    def test_build_layout(self):
        """System first, sections by priority, user last, blank-line separated."""
        builder = PromptBuilder()
        builder.set_system("SYS").set_user("USER")
        builder.add_section("low", "LOW", 1).add_section("high", "HIGH", 9)
        assert builder.build() == "SYS\n\nHIGH\n\nLOW\n\nUSER"

    def test_build_messages_splits_user(self):
        """The chat pair keeps the instruction out of the system message."""
        builder = PromptBuilder().set_system("SYS").set_user("USER").add_section("ctx", "CTX", 5)
        assert builder.build_messages() == ("SYS\n\nCTX", "USER")

    def test_estimated_tokens_counts_everything(self):
        builder = PromptBuilder().set_system("abc").set_user("abc").add_section("x", "abc", 1)
        assert builder.estimated_tokens() == 6

    def test_rejects_non_positive_budget(self):
        with pytest.raises(ValueError):
            PromptBuilder(max_tokens=0)


class TestPromptService:
    """Tests for PromptService."""

    def test_builder_for_fills_sections(self):
        """Every option present becomes a section."""
        service = PromptService()
        options = PromptOptions(
            project_id=1,
            project_info={"title": "Sword Song", "genre": "wuxia"},
            chapter_info={"title": "Night", "chapter_number": 3},
            recent_content="The blade shone.",
            storylines={"plotline": "the duel"},
            characters=[{"name": "Lin"}],
            writing_guidelines="Keep it tense.",
        )
        builder = service.builder_for("SYS", "USER", options)
        names = {s.name for s in builder.sections}
        assert names == {
            "project_context", "chapter_context", "recent_content",
            "storyline_context", "character_info", "writing_guidelines",
        }

    def test_project_info_needs_project_id(self):
        """Without a project id the project section is left out."""
        builder = PromptService().builder_for("SYS", "USER", PromptOptions(project_info={"title": "T"}))
        assert builder.sections == []

    def test_recent_content_cap_from_service(self):
        """The service cap applies when the options carry none."""
        service = PromptService(recent_max_chars=5)
        builder = service.builder_for("SYS", "USER", PromptOptions(recent_content="0123456789"))
        assert builder.sections[0].content.endswith("...56789")

    def test_continue_prompt(self):
        """Length, style and the custom instruction shape the user prompt; the context is kept."""
        options = ContinueOptions(context="少年拔剑出鞘。", length=800, style="tense", custom_prompt="No flashbacks.")
        prompt = PromptService().build_continue_prompt("SYS", options)
        assert "Continue the text above, about 800 words, in a tense style." in prompt
        assert "No flashbacks." in prompt
        assert "少年拔剑出鞘。" in prompt
        assert prompt.endswith("Begin the continuation:")

    def test_polish_prompt_requirement(self):
        """The polish type selects the requirement line."""
        prompt = PromptService().build_polish_prompt("SYS", PolishOptions(content="Rough text", polish_type="grammar"))
        assert "Rough text" in prompt
        assert "grammatical" in prompt
        assert prompt.endswith("Output the polished text:")

    def test_cache_stats_namespaces(self):
        service = PromptService(cache=ContextCache())
        assert set(service.cache_stats()) == {"project", "character", "knowledge"}

    def test_empty_injected_cache_is_kept(self):
        """An injected cache with no entries is still the one the service uses."""
        cache = ContextCache()
        assert PromptService(cache=cache).cache is cache
