"""Shared behaviour of the result/performance caches."""

from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, Optional

from mergeflow.utils.logger import get_logger

logger = get_logger(__name__)


class BaseCache(ABC):
    """Base class for cache backends.

    The cache is never authoritative: backend failures are logged and
    surface as a miss on reads and as a no-op on writes, so the pipeline
    keeps answering queries when the backend is down. Hits, misses and
    backend errors are counted for the health endpoint.
    """

    def __init__(self, config: Dict[str, Any]):
        self.config = config
        self.ttl = config.get("ttl", 3600)
        self.enabled = config.get("enabled", True)
        self.hits = 0
        self.misses = 0
        self.errors = 0

    async def _guarded(
        self, operation: str, key: Optional[str], call: Callable[[], Awaitable[Any]]
    ) -> Any:
        try:
            return await call()
        except Exception as e:
            self.errors += 1
            logger.error(
                f"Cache {operation} failed{f' for {key}' if key else ''}: {e}",
                extra={"cache_op": operation},
            )
            return None

    async def get(self, key: str) -> Optional[Any]:
        if not self.enabled:
            return None

        value = await self._guarded("get", key, lambda: self._get_impl(key))
        if value is None:
            self.misses += 1
        else:
            self.hits += 1
        return value

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        """Store ``value``; ``ttl`` in seconds, 0 meaning already expired."""
        if self.enabled:
            expires_in = self.ttl if ttl is None else ttl
            await self._guarded("set", key, lambda: self._set_impl(key, value, expires_in))

    async def delete(self, key: str) -> None:
        if self.enabled:
            await self._guarded("delete", key, lambda: self._delete_impl(key))

    async def clear(self) -> None:
        if self.enabled:
            await self._guarded("clear", None, self._clear_impl)

    async def health_check(self) -> bool:
        """Round-trip a probe key through the backend."""
        try:
            await self._set_impl("health_check", "ok", 10)
            return await self._get_impl("health_check") == "ok"
        except Exception as e:
            logger.warning(f"Cache health check failed: {e}")
            return False

    def stats(self) -> Dict[str, Any]:
        lookups = self.hits + self.misses
        return {
            "hits": self.hits,
            "misses": self.misses,
            "errors": self.errors,
            "hit_rate": self.hits / lookups if lookups else 0.0,
        }

    async def close(self) -> None:
        """Release backend resources."""

    @abstractmethod
    async def _get_impl(self, key: str) -> Optional[Any]:
        ...

    @abstractmethod
    async def _set_impl(self, key: str, value: Any, ttl: int) -> None:
        ...

    @abstractmethod
    async def _delete_impl(self, key: str) -> None:
        ...

    @abstractmethod
    async def _clear_impl(self) -> None:
        ...
