"""Unit tests for cache implementations."""

import pytest

from mergeflow.core.exceptions import CacheError
from mergeflow.infrastructure.cache import create_cache, MemoryCache


@pytest.mark.asyncio
async def test_memory_cache_basic_operations():
    """Test basic cache operations."""
    cache = create_cache({"provider": "memory", "ttl": 60})

    await cache.set("test_key", "test_value")
    assert await cache.get("test_key") == "test_value"

    await cache.delete("test_key")
    assert await cache.get("test_key") is None

    await cache.set("key1", "value1")
    await cache.set("key2", "value2")
    await cache.clear()
    assert await cache.get("key1") is None
    assert await cache.get("key2") is None


@pytest.mark.asyncio
async def test_memory_cache_ttl():
    """Entries stored with a zero TTL are already expired."""
    cache = create_cache({"provider": "memory", "ttl": 1})

    await cache.set("ttl_key", "ttl_value", ttl=0)
    assert await cache.get("ttl_key") is None


@pytest.mark.asyncio
async def test_cache_disabled():
    cache = create_cache({"provider": "memory", "enabled": False})

    await cache.set("test_key", "test_value")
    assert await cache.get("test_key") is None


@pytest.mark.asyncio
async def test_cache_health_check():
    cache = create_cache({"provider": "memory"})
    assert await cache.health_check() is True


@pytest.mark.asyncio
async def test_cached_values_are_isolated_copies():
    """Mutating a stored or returned value never changes the cached entry."""
    cache = create_cache({"provider": "memory"})
    table = {"mock-alpha": {"success_rate": 0.8, "history": [1, 2, 3]}}

    await cache.set("model_performance", table)
    table["mock-alpha"]["success_rate"] = 0.0

    cached = await cache.get("model_performance")
    assert cached["mock-alpha"]["success_rate"] == 0.8

    cached["mock-alpha"]["history"].append(4)
    assert (await cache.get("model_performance"))["mock-alpha"]["history"] == [1, 2, 3]


@pytest.mark.asyncio
async def test_cache_size_limit_evicts_soonest_expiry():
    cache = create_cache({"provider": "memory", "max_size": 3})

    await cache.set("key1", "value1", ttl=10)
    await cache.set("key2", "value2", ttl=20)
    await cache.set("key3", "value3", ttl=30)
    await cache.set("key4", "value4", ttl=40)

    assert await cache.get("key1") is None
    assert await cache.get("key2") == "value2"
    assert await cache.get("key3") == "value3"
    assert await cache.get("key4") == "value4"


@pytest.mark.asyncio
async def test_overwrite_at_capacity_keeps_other_entries():
    cache = MemoryCache({"max_size": 2})

    await cache.set("a", 1)
    await cache.set("b", 2)
    await cache.set("a", 3)

    assert await cache.get("a") == 3
    assert await cache.get("b") == 2


def test_unknown_cache_provider():
    with pytest.raises(CacheError):
        create_cache({"provider": "memcached"})


@pytest.mark.asyncio
async def test_hit_and_miss_counters():
    cache = MemoryCache({})

    await cache.get("dispatch:missing")
    await cache.set("dispatch:known", {"merged": "answer"})
    await cache.get("dispatch:known")

    assert cache.stats() == {"hits": 1, "misses": 1, "errors": 0, "hit_rate": 0.5}


@pytest.mark.asyncio
async def test_backend_errors_degrade_to_misses():
    class BrokenCache(MemoryCache):
        async def _get_impl(self, key):
            raise ConnectionError("backend down")

        async def _set_impl(self, key, value, ttl):
            raise ConnectionError("backend down")

    cache = BrokenCache({})

    await cache.set("result:req-1", {"content": "x"})
    assert await cache.get("result:req-1") is None
    assert cache.stats()["errors"] == 2
    assert await cache.health_check() is False
