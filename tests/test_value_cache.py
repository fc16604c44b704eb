"""Tests for the runtime value cache."""

import threading
import uuid

import pytest

from typeforge.errors import ValueNotFoundError
from typeforge.value_cache import (
    CacheStats,
    ValueCache,
    get_default_cache,
    set_default_cache,
)


class TestCacheStats:
    """Tests for CacheStats."""

    def test_hit_rate_zero(self):
        assert CacheStats().hit_rate == 0.0

    def test_hit_rate_calculation(self):
        stats = CacheStats(hits=3, misses=1)
        assert stats.hit_rate == 0.75

    def test_to_dict(self):
        result = CacheStats(hits=2, misses=2, entries=5).to_dict()

        assert result["hits"] == 2
        assert result["misses"] == 2
        assert result["entries"] == 5
        assert result["hit_rate"] == "50.00%"


class TestValueCache:
    """Tests for ValueCache."""

    def test_add_returns_uuid(self):
        cache = ValueCache()
        identifier = cache.add(print)

        assert isinstance(identifier, uuid.UUID)
        assert identifier in cache

    def test_get_returns_same_object(self):
        cache = ValueCache()
        value = object()
        identifier = cache.add(value)

        assert cache.get(identifier) is value

    def test_get_accepts_string_identifier(self):
        cache = ValueCache()
        identifier = cache.add("value")

        assert cache.get(str(identifier)) == "value"
        assert str(identifier) in cache

    def test_identifiers_are_unique(self):
        cache = ValueCache()
        value = object()

        first = cache.add(value)
        second = cache.add(value)

        assert first != second
        assert len(cache) == 2

    def test_unknown_identifier_raises(self):
        cache = ValueCache()
        missing = uuid.uuid4()

        with pytest.raises(ValueNotFoundError) as exc_info:
            cache.get(missing)

        assert exc_info.value.identifier == missing
        assert str(missing) in str(exc_info.value)

    def test_malformed_identifier_raises_not_found(self):
        cache = ValueCache()

        with pytest.raises(ValueNotFoundError):
            cache.get("not-a-uuid")

        assert "not-a-uuid" not in cache

    def test_none_is_a_valid_value(self):
        cache = ValueCache()
        identifier = cache.add(None)

        assert cache.get(identifier) is None

    def test_stats_track_lookups(self):
        cache = ValueCache()
        identifier = cache.add(1)
        cache.get(identifier)
        cache.get(identifier)
        with pytest.raises(ValueNotFoundError):
            cache.get(uuid.uuid4())

        stats = cache.stats
        assert stats.hits == 2
        assert stats.misses == 1
        assert stats.entries == 1

    def test_stats_is_a_snapshot(self):
        cache = ValueCache()
        stats = cache.stats
        cache.add(1)

        assert stats.entries == 0
        assert cache.stats.entries == 1

    def test_concurrent_adds(self):
        cache = ValueCache()
        identifiers: list[uuid.UUID] = []
        lock = threading.Lock()

        def worker(offset: int) -> None:
            for i in range(100):
                identifier = cache.add(offset + i)
                with lock:
                    identifiers.append(identifier)

        threads = [threading.Thread(target=worker, args=(n * 1000,)) for n in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(set(identifiers)) == 800
        assert len(cache) == 800


class TestDefaultCache:
    """Tests for the process-wide default cache."""

    def test_get_default_cache_is_stable(self):
        assert get_default_cache() is get_default_cache()

    def test_set_default_cache(self):
        original = get_default_cache()
        replacement = ValueCache()
        try:
            set_default_cache(replacement)
            assert get_default_cache() is replacement
        finally:
            set_default_cache(original)
