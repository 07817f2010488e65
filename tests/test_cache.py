"""Tests for cache.py: key construction, TTL expiry, and capacity eviction."""
from __future__ import annotations

import threading

from rag_rerank.cache import ResultCache, make_cache_key
from rag_rerank.schema import CacheEntry


def _entry(key: str, timestamp: float, ttl: float = 3600.0) -> CacheEntry:
    return CacheEntry(query_hash=key, results=[], timestamp=timestamp, ttl=ttl)


class TestMakeCacheKey:
    def test_stable_for_identical_inputs(self):
        first = make_cache_key("What is AI?", ["a", "b"], "rerank-english-v3.0", 5)
        second = make_cache_key("What is AI?", ["a", "b"], "rerank-english-v3.0", 5)
        assert first == second

    def test_document_order_matters(self):
        assert make_cache_key("q", ["a", "b"], "m", 5) != make_cache_key("q", ["b", "a"], "m", 5)

    def test_model_and_top_k_are_part_of_key(self):
        base = make_cache_key("q", ["a"], "m", 5)
        assert base != make_cache_key("q", ["a"], "other", 5)
        assert base != make_cache_key("q", ["a"], "m", 6)

    def test_key_ends_with_model_and_top_k(self):
        assert make_cache_key("q", ["a"], "rerank-english-v3.0", 20).endswith("_rerank-english-v3.0_20")


class TestResultCache:
    def test_get_missing_returns_none(self, cache):
        assert cache.get("nope") is None

    def test_put_then_get(self, cache, clock):
        cache.put("k", _entry("k", clock()))
        assert cache.get("k").query_hash == "k"

    def test_entry_valid_at_exact_ttl(self, cache, clock):
        cache.put("k", _entry("k", clock(), ttl=10))
        clock.advance(10)
        assert cache.get("k") is not None

    def test_expired_entry_removed_on_read(self, cache, clock):
        cache.put("k", _entry("k", clock(), ttl=10))
        clock.advance(10.001)
        assert cache.get("k") is None
        assert cache.size == 0

    def test_eviction_drops_oldest_inserted(self, clock):
        cache = ResultCache(max_size=2, clock=clock)
        cache.put("first", _entry("first", clock()))
        cache.put("second", _entry("second", clock()))
        cache.get("first")
        cache.put("third", _entry("third", clock()))
        assert cache.size == 2
        assert cache.get("first") is None
        assert cache.get("second") is not None
        assert cache.get("third") is not None

    def test_size_never_exceeds_max(self, clock):
        cache = ResultCache(max_size=3, clock=clock)
        for index in range(10):
            cache.put(f"k{index}", _entry(f"k{index}", clock()))
            assert cache.size <= 3

    def test_utilization_percent(self, clock):
        cache = ResultCache(max_size=4, clock=clock)
        cache.put("k", _entry("k", clock()))
        assert cache.utilization_percent == 25.0

    def test_clear(self, cache, clock):
        cache.put("k", _entry("k", clock()))
        cache.clear()
        assert cache.size == 0

    def test_concurrent_puts_respect_capacity(self, clock):
        cache = ResultCache(max_size=50, clock=clock)

        def writer(prefix: str) -> None:
            for index in range(200):
                cache.put(f"{prefix}-{index}", _entry(prefix, clock()))

        threads = [threading.Thread(target=writer, args=(str(n),)) for n in range(6)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        assert cache.size == 50
