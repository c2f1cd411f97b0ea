"""Tests for the ETag-aware content cache."""

from __future__ import annotations

from contract_spine.core.cache import ContentCache, InMemoryCache
from tests._support.fakes import FakeClock


class TestInMemoryCache:
    def test_set_get_delete(self):
        store = InMemoryCache(max_size=10)
        store.set("a", 1)
        assert store.get("a") == 1
        store.delete("a")
        assert store.get("a") is None
        store.delete("missing")  # no-op

    def test_lru_eviction(self):
        store = InMemoryCache(max_size=2)
        store.set("a", 1)
        store.set("b", 2)
        store.get("a")  # a becomes most recent
        store.set("c", 3)
        assert store.get("b") is None
        assert store.get("a") == 1
        assert store.size() == 2


class TestContentCache:
    def test_put_and_get(self):
        clock = FakeClock(100.0)
        cache = ContentCache(clock=clock)
        entry = cache.put("levels/1", {"name": "Forest"}, '"v1"')
        assert entry.stored_at == 100.0
        assert cache.get("levels/1") == entry
        assert "levels/1" in cache

    def test_touch_refreshes_only_stored_at(self):
        clock = FakeClock(100.0)
        cache = ContentCache(clock=clock)
        original = cache.put("levels/1", {"name": "Forest"}, '"v1"')

        clock.advance(60)
        refreshed = cache.touch("levels/1")

        assert refreshed is not None
        assert refreshed.stored_at == 160.0
        assert refreshed.payload == original.payload
        assert refreshed.etag == original.etag
        assert original.stored_at == 100.0  # old entry untouched

    def test_touch_missing_returns_none(self):
        assert ContentCache().touch("nope") is None

    def test_put_replaces_wholesale(self):
        cache = ContentCache()
        cache.put("p", {"a": 1, "b": 2}, '"v1"')
        cache.put("p", {"a": 9}, '"v2"')
        entry = cache.get("p")
        assert entry.payload == {"a": 9}
        assert entry.etag == '"v2"'

    def test_invalidate_and_clear(self):
        cache = ContentCache()
        cache.put("a", 1, None)
        cache.put("b", 2, None)
        cache.invalidate("a")
        assert cache.get("a") is None
        assert cache.size() == 1
        cache.clear()
        assert cache.size() == 0

    def test_bounded_by_max_entries(self):
        cache = ContentCache(max_entries=2)
        for i in range(3):
            cache.put(f"p{i}", i, None)
        assert cache.size() == 2
        assert cache.get("p0") is None

    def test_put_after_invalidate_is_skipped(self):
        cache = ContentCache()
        seen = cache.version("a")
        cache.invalidate("a")

        assert cache.put("a", "old", "e1", if_version=seen) is None
        assert cache.get("a") is None

        entry = cache.put("a", "new", "e2", if_version=cache.version("a"))
        assert entry is not None
        assert cache.get("a") == entry

    def test_versions_are_per_path(self):
        cache = ContentCache()
        seen = cache.version("b")
        cache.invalidate("a")
        assert cache.put("b", 2, "e", if_version=seen) is not None

    def test_clear_bumps_every_version(self):
        cache = ContentCache()
        seen = cache.version("a")
        cache.clear()
        assert cache.put("a", 1, "e", if_version=seen) is None
