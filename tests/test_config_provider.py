"""Tests for the cached per-entity agent configuration provider."""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import MagicMock

from sales_intel.jobs.config_provider import AgentConfig, AgentConfigProvider, default_agent_config
from sales_intel.prompts import default_system_prompt


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def _record(**overrides):
    values = {
        "system_prompt": "You analyze deals.",
        "max_iterations": 4,
        "general_guidelines": None,
        "quality_standards": None,
    }
    values.update(overrides)
    return SimpleNamespace(**values)


class TestEffectivePrompt:
    def test_prompt_only(self):
        assert AgentConfig("Base prompt.\n", 5).effective_prompt == "Base prompt."

    def test_sections_appended(self):
        config = AgentConfig("Base.", 5, general_guidelines="Be concise.", quality_standards=" Cite. ")
        assert config.effective_prompt == (
            "Base.\n\n## General Guidelines\nBe concise.\n\n## Quality Standards\nCite."
        )

    def test_blank_sections_skipped(self):
        assert AgentConfig("Base.", 5, general_guidelines="   ").effective_prompt == "Base."


class TestProvider:
    def test_stored_record_used(self):
        provider = AgentConfigProvider(lambda _: _record(general_guidelines="Be concise."))
        config = provider.get("deal")
        assert config.system_prompt == "You analyze deals."
        assert config.max_iterations == 4
        assert "## General Guidelines" in config.effective_prompt

    def test_missing_record_uses_default(self):
        config = AgentConfigProvider(lambda _: None).get("company")
        assert config == default_agent_config("company")
        assert config.system_prompt == default_system_prompt("company")

    def test_blank_prompt_uses_default(self):
        config = AgentConfigProvider(lambda _: _record(system_prompt="  ")).get("deal")
        assert config.system_prompt == default_system_prompt("deal")

    def test_iterations_clamped(self):
        config = AgentConfigProvider(lambda _: _record(max_iterations=-3)).get("deal")
        assert config.max_iterations == 1

    def test_cached_within_ttl(self):
        clock = FakeClock()
        load = MagicMock(return_value=_record())
        provider = AgentConfigProvider(load, 300, clock=clock)

        provider.get("deal")
        clock.now += 299
        provider.get("deal")
        assert load.call_count == 1

        clock.now += 2
        provider.get("deal")
        assert load.call_count == 2

    def test_cache_is_per_entity_type(self):
        load = MagicMock(return_value=_record())
        provider = AgentConfigProvider(load, 300, clock=FakeClock())
        provider.get("deal")
        provider.get("contact")
        assert [c.args[0] for c in load.call_args_list] == ["deal", "contact"]

    def test_load_failure_not_cached(self):
        load = MagicMock(side_effect=[RuntimeError("db down"), _record()])
        provider = AgentConfigProvider(load, 300, clock=FakeClock())

        first = provider.get("deal")
        assert first == default_agent_config("deal")

        second = provider.get("deal")
        assert second.system_prompt == "You analyze deals."
        assert load.call_count == 2

    def test_invalidate(self):
        load = MagicMock(return_value=_record())
        provider = AgentConfigProvider(load, 300, clock=FakeClock())
        provider.get("deal")
        provider.invalidate("deal")
        provider.get("deal")
        provider.invalidate()
        provider.get("deal")
        assert load.call_count == 3

    def test_reads_from_store(self, store):
        store.save_agent_config("contact", system_prompt="People first.", max_iterations=3)
        config = AgentConfigProvider(store.get_agent_config).get("contact")
        assert config.system_prompt == "People first."
        assert config.max_iterations == 3
