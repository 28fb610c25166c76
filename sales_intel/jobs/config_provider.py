"""Per-entity-type agent configuration, read through a short-lived cache.

Operators edit prompts and iteration caps in the ``agent_configs`` table.
A run must never fail to start because that store is unavailable, so a
failed load yields the built-in default for the entity type.  Defaults
produced by a failed load are not cached; the next run asks the store again.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from sales_intel.config import CONFIG_CACHE_TTL_SECONDS, DEFAULT_MAX_ITERATIONS
from sales_intel.prompts import default_system_prompt
from sales_intel.services.cache import TTLCache

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AgentConfig:
    system_prompt: str
    max_iterations: int
    general_guidelines: str | None = None
    quality_standards: str | None = None

    @property
    def effective_prompt(self) -> str:
        """System prompt followed by any non-empty guidelines and standards."""
        sections = [self.system_prompt.rstrip()]
        if self.general_guidelines and self.general_guidelines.strip():
            sections.append(f"## General Guidelines\n{self.general_guidelines.strip()}")
        if self.quality_standards and self.quality_standards.strip():
            sections.append(f"## Quality Standards\n{self.quality_standards.strip()}")
        return "\n\n".join(sections)


def default_agent_config(entity_type: str) -> AgentConfig:
    return AgentConfig(
        system_prompt=default_system_prompt(entity_type),
        max_iterations=DEFAULT_MAX_ITERATIONS,
    )


class AgentConfigProvider:
    """Injected into the job runner; owns its own cache state.

    *load_fn* returns the stored record for an entity type (any object with
    ``system_prompt``, ``max_iterations``, ``general_guidelines`` and
    ``quality_standards`` attributes) or ``None`` when nothing is stored.
    """

    def __init__(
        self,
        load_fn: Callable[[str], Any],
        ttl_seconds: float = CONFIG_CACHE_TTL_SECONDS,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._load_fn = load_fn
        self._cache = TTLCache(ttl_seconds, clock=clock)

    def get(self, entity_type: str) -> AgentConfig:
        cached = self._cache.get(entity_type)
        if cached is not None:
            return cached

        try:
            record = self._load_fn(entity_type)
        except Exception:
            logger.exception("Failed to load %s agent config, using defaults", entity_type)
            return default_agent_config(entity_type)

        if record is None or not (record.system_prompt or "").strip():
            config = default_agent_config(entity_type)
        else:
            config = AgentConfig(
                system_prompt=record.system_prompt,
                max_iterations=max(1, int(record.max_iterations or DEFAULT_MAX_ITERATIONS)),
                general_guidelines=record.general_guidelines,
                quality_standards=record.quality_standards,
            )
        self._cache.put(entity_type, config)
        return config

    def invalidate(self, entity_type: str | None = None) -> None:
        """Drop one cached entry, or all of them."""
        if entity_type is None:
            self._cache.clear()
        else:
            self._cache.invalidate(entity_type)
