"""Thread-safe in-memory cache whose entries expire after a fixed TTL.

Design decisions
────────────────
• **Injectable clock** (defaults to ``time.monotonic``) so expiry can be
  unit-tested by advancing a fake clock instead of sleeping.
• **threading.Lock** for thread safety: several job worker threads read
  the same cached agent configuration.
• Expired entries are dropped lazily on read; there is no sweeper thread.
• Purely ephemeral — data is lost on process restart.

Usage in AgentConfigProvider
────────────────────────────
>>> cache = TTLCache(ttl_seconds=60)
>>> cache.put("deal", config)
>>> cache.get("deal")
config
>>> cache.clear()
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 60.0


class TTLCache:
    """Key/value cache where every entry lives for ``ttl_seconds``."""

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        # key → (value, stored_at)
        self._store: dict[str, tuple[Any, float]] = {}
        self._lock = threading.Lock()

    # ── Core operations ──────────────────────────────────────────────

    def get(self, key: str) -> Any | None:
        """Return the cached value, or ``None`` if missing or expired."""
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None
            value, stored_at = entry
            if self._clock() - stored_at >= self._ttl:
                del self._store[key]
                logger.debug("Cache: expired %s", key)
                return None
            return value

    def put(self, key: str, value: Any) -> None:
        """Insert or overwrite *key*, restarting its TTL."""
        with self._lock:
            self._store[key] = (value, self._clock())

    def invalidate(self, key: str) -> bool:
        """Remove a single key.  Returns ``True`` if the key existed."""
        with self._lock:
            return self._store.pop(key, None) is not None

    def clear(self) -> None:
        """Drop all entries."""
        with self._lock:
            self._store.clear()

    # ── Introspection ────────────────────────────────────────────────

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    @property
    def entry_count(self) -> int:
        """Number of entries currently stored (expired ones included)."""
        return len(self._store)
