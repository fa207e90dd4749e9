"""Cache backends for dispatch results, query results and model statistics."""

from typing import Any, Callable, Dict

from mergeflow.core.exceptions import CacheError
from .base import BaseCache
from .memory_cache import MemoryCache
from .redis_cache import RedisCache

BACKENDS: Dict[str, Callable[[Dict[str, Any]], BaseCache]] = {
    "memory": MemoryCache,
    "redis": RedisCache,
}


def create_cache(config: Dict[str, Any]) -> BaseCache:
    """Build the backend named by ``config["provider"]`` (memory by default)."""
    provider = config.get("provider", "memory")
    backend = BACKENDS.get(provider)
    if backend is None:
        raise CacheError(
            f"Unknown cache provider: {provider} (expected one of {', '.join(BACKENDS)})"
        )
    return backend(config)


__all__ = ["BACKENDS", "BaseCache", "MemoryCache", "RedisCache", "create_cache"]
