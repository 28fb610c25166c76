"""Tests for the TTL cache."""

from __future__ import annotations

import threading

from sales_intel.services.cache import TTLCache


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ── Core operations ──────────────────────────────────────────────────


class TestTTLCacheBasics:
    def test_put_and_get(self):
        cache = TTLCache()
        cache.put("deal", {"max_iterations": 10})
        assert cache.get("deal") == {"max_iterations": 10}

    def test_get_returns_none_for_missing_key(self):
        assert TTLCache().get("nonexistent") is None

    def test_put_overwrites_existing_key(self):
        cache = TTLCache()
        cache.put("deal", "old")
        cache.put("deal", "new")
        assert cache.get("deal") == "new"
        assert cache.entry_count == 1

    def test_invalidate_removes_key(self):
        cache = TTLCache()
        cache.put("deal", "value")
        assert cache.invalidate("deal") is True
        assert cache.get("deal") is None

    def test_invalidate_returns_false_for_missing_key(self):
        assert TTLCache().invalidate("nonexistent") is False

    def test_clear_removes_all_entries(self):
        cache = TTLCache()
        cache.put("a", 1)
        cache.put("b", 2)
        cache.clear()
        assert cache.entry_count == 0


# ── Expiry ───────────────────────────────────────────────────────────


class TestTTLCacheExpiry:
    def test_entry_alive_before_ttl(self):
        clock = FakeClock()
        cache = TTLCache(ttl_seconds=60, clock=clock)
        cache.put("deal", "config")
        clock.advance(59.9)
        assert cache.get("deal") == "config"

    def test_entry_expires_at_ttl(self):
        clock = FakeClock()
        cache = TTLCache(ttl_seconds=60, clock=clock)
        cache.put("deal", "config")
        clock.advance(60)
        assert cache.get("deal") is None
        assert cache.entry_count == 0

    def test_put_restarts_ttl(self):
        clock = FakeClock()
        cache = TTLCache(ttl_seconds=60, clock=clock)
        cache.put("deal", "v1")
        clock.advance(50)
        cache.put("deal", "v2")
        clock.advance(50)
        assert cache.get("deal") == "v2"

    def test_ttl_seconds_property(self):
        assert TTLCache(ttl_seconds=15).ttl_seconds == 15


class TestTTLCacheThreadSafety:
    def test_concurrent_puts(self):
        cache = TTLCache()

        def _writer(prefix: str):
            for i in range(200):
                cache.put(f"{prefix}-{i}", i)

        threads = [threading.Thread(target=_writer, args=(f"t{n}",)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert cache.entry_count == 800
