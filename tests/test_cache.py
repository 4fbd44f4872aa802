"""
Tests for caching layer.
"""
import pytest
import time
from notechart.core.cache import SimpleCache, get_analysis_cache, get_debug_cache, analysis_fingerprint


def test_simple_cache_set_get():
    """Test basic cache set and get operations."""
    cache = SimpleCache(default_ttl=1.0)

    cache.set("key1", "value1")
    assert cache.get("key1") == "value1"

    cache.set("key2", "value2", ttl=0.1)
    assert cache.get("key2") == "value2"

    # Wait for expiration
    time.sleep(0.2)
    assert cache.get("key2") is None


def test_simple_cache_cleanup():
    """Test cache cleanup of expired entries."""
    cache = SimpleCache(default_ttl=0.1)

    cache.set("key1", "value1")
    cache.set("key2", "value2", ttl=1.0)

    time.sleep(0.15)
    cache.cleanup_expired()

    assert cache.get("key1") is None
    assert cache.get("key2") == "value2"


def test_simple_cache_sweeps_expired_entries_on_write():
    """Expired entries under other keys are dropped without being read again."""
    cache = SimpleCache(default_ttl=0.1, cleanup_interval=3)

    cache.set("old1", "value1")
    cache.set("old2", "value2")
    time.sleep(0.15)
    assert len(cache._cache) == 2

    cache.set("fresh", "value3", ttl=1.0)

    assert set(cache._cache) == {"fresh"}
    assert cache.get("fresh") == "value3"


def test_simple_cache_stats():
    """Hits and misses are counted."""
    cache = SimpleCache(default_ttl=1.0)

    cache.set("key1", "value1")
    cache.set("key2", "value2")
    cache.get("key1")
    cache.get("absent")

    stats = cache.get_stats()
    assert stats["size"] == 2
    assert stats["default_ttl"] == 1.0
    assert stats["hits"] == 1
    assert stats["misses"] == 1


def _fingerprint(**overrides):
    params = dict(
        notebook_id="nb-1",
        note_ids=["b", "a"],
        time_range={"preset": "30d"},
        policy_fingerprint="p1",
        mode="recommend",
    )
    params.update(overrides)
    return analysis_fingerprint(**params)


def test_fingerprint_ignores_note_id_order():
    """Reordering the note selection hits the same entry."""
    assert _fingerprint(note_ids=["a", "b"]) == _fingerprint(note_ids=["b", "a"])


def test_fingerprint_ignores_missing_field_order():
    first = [{"name": "mood", "role": "dimension"}, {"name": "amount", "role": "metric"}]
    assert _fingerprint(missing_fields=first) == _fingerprint(missing_fields=list(reversed(first)))


@pytest.mark.parametrize("override", [
    {"policy_fingerprint": "p2"},
    {"mode": "config", "selected_chart_type": "pie"},
    {"time_range": {"preset": "7d"}},
    {"content_digest": "changed"},
])
def test_fingerprint_changes_with_inputs(override):
    """Policy, mode, range and content all split the cache."""
    assert _fingerprint(**override) != _fingerprint()


def test_cache_instances():
    """Test that cache instances are singletons."""
    assert get_analysis_cache() is get_analysis_cache()
    assert get_debug_cache() is get_debug_cache()
    assert get_analysis_cache() is not get_debug_cache()
