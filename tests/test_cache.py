import pytest

from procurement.cache import CacheManager, TaggedCache
from procurement.config import CacheConfig, EvictionPolicy


def _cache(clock, **kw):
    return TaggedCache(CacheConfig(**kw), name="test", clock=clock)


def test_get_set_and_stats(clock):
    c = _cache(clock)
    assert c.get("missing") is None
    c.set("a", 1)
    assert c.get("a") == 1
    assert "a" in c
    stats = c.stats()
    assert stats["hits"] == 1
    assert stats["misses"] == 1
    assert stats["sets"] == 1
    assert stats["hit_rate"] == pytest.approx(0.5)


def test_ttl_is_fixed_at_write_time(clock):
    c = _cache(clock, default_ttl_s=10.0)
    c.set("a", "x")
    clock.advance(6)
    assert c.get("a") == "x"  # a read does not renew the ttl
    clock.advance(5)
    assert c.get("a") is None
    assert len(c) == 0
    assert c.stats()["expirations"] == 1


def test_per_write_ttl_and_cleanup(clock):
    c = _cache(clock, default_ttl_s=100.0)
    c.set("short", 1, ttl=1.0)
    c.set("long", 2)
    clock.advance(2)
    assert c.cleanup() == 1
    assert c.keys() == ["long"]


def test_invalidate_tags_removes_every_tagged_entry(clock):
    c = _cache(clock)
    c.set("p1", 1, tags=["product:P1", "user:S1"])
    c.set("p2", 2, tags=["product:P2", "user:S1"])
    c.set("p3", 3, tags=["product:P3"])
    assert c.invalidate_tags(["user:S1"]) == 2
    assert c.keys() == ["p3"]
    # tag index is cleaned up together with the entries
    assert c.invalidate_tags(["product:P1"]) == 0


def test_mget_returns_present_keys_only(clock):
    c = _cache(clock)
    c.mset({"a": 1, "b": None})
    assert c.mget(["a", "b", "c"]) == {"a": 1, "b": None}


def test_get_or_set_calls_factory_once(clock):
    c = _cache(clock)
    calls = []

    def factory():
        calls.append(1)
        return {"total": 3}

    assert c.get_or_set("k", factory) == {"total": 3}
    assert c.get_or_set("k", factory) == {"total": 3}
    assert len(calls) == 1


def test_delete(clock):
    c = _cache(clock)
    c.set("a", 1, tags=["t"])
    assert c.delete("a") is True
    assert c.delete("a") is False
    assert c.invalidate_tags(["t"]) == 0


def test_lru_eviction_prefers_least_recently_used(clock):
    c = _cache(clock, max_size=2, eviction_policy=EvictionPolicy.LRU)
    c.set("a", 1)
    c.set("b", 2)
    c.get("a")
    c.set("c", 3)
    assert set(c.keys()) == {"a", "c"}
    assert c.stats()["evictions"] == 1


def test_lfu_eviction_prefers_least_hit(clock):
    c = _cache(clock, max_size=2, eviction_policy=EvictionPolicy.LFU)
    c.set("a", 1)
    c.set("b", 2)
    c.get("a")
    c.get("a")
    c.get("b")
    c.set("c", 3)
    assert set(c.keys()) == {"a", "c"}


def test_ttl_eviction_prefers_soonest_expiry(clock):
    c = _cache(clock, max_size=2, eviction_policy=EvictionPolicy.TTL)
    c.set("a", 1, ttl=50)
    c.set("b", 2, ttl=5)
    c.set("c", 3, ttl=50)
    assert set(c.keys()) == {"a", "c"}


def test_size_based_eviction_prefers_largest(clock):
    c = _cache(clock, max_size=2, eviction_policy=EvictionPolicy.SIZE_BASED)
    c.set("big", "x" * 10_000)
    c.set("small", "y")
    c.set("new", "z")
    assert set(c.keys()) == {"small", "new"}


def test_overwrite_does_not_evict(clock):
    c = _cache(clock, max_size=2)
    c.set("a", 1)
    c.set("b", 2)
    c.set("a", 3)
    assert len(c) == 2
    assert c.get("a") == 3
    assert c.stats()["evictions"] == 0


def test_health_check_flags_usage_and_hit_rate(clock):
    c = _cache(clock, max_size=10)
    for i in range(10):
        c.set(f"k{i}", i)
    for i in range(101):
        c.get(f"missing{i}")
    health = c.health_check()
    assert health["healthy"] is False
    assert len(health["issues"]) == 2


def test_manager_fans_out(clock):
    m = CacheManager(CacheConfig(), clock=clock)
    m.paths.set("optimal:x", "p", tags=["product:P1"])
    m.prices.set("price:P1", {"min": 1}, tags=["product:P1"])
    m.inventory.set("inventory:P2", {}, tags=["product:P2"])
    assert m.invalidate_tags(["product:P1"]) == 2
    assert set(m.stats()) == {"paths", "prices", "inventory"}
    m.clear()
    assert len(m.inventory) == 0
    assert m.health_check()["healthy"] is True
