"""Process-local cache backend."""

import copy
import time
from typing import Any, Dict, NamedTuple, Optional

from .base import BaseCache


class _Entry(NamedTuple):
    value: Any
    expires_at: float


class MemoryCache(BaseCache):
    """Dictionary-backed cache with per-entry expiry.

    Values are deep-copied in both directions, so a dispatch result or the
    performance table read back from the cache can be mutated freely, as
    with a serialising backend. At ``max_size`` expired entries are purged
    first, then the entry closest to expiry is evicted.
    """

    def __init__(self, config: Dict[str, Any]):
        super().__init__(config)
        self.max_size = config.get("max_size", 1000)
        self._entries: Dict[str, _Entry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    async def _get_impl(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at <= time.time():
            del self._entries[key]
            return None
        return copy.deepcopy(entry.value)

    async def _set_impl(self, key: str, value: Any, ttl: int) -> None:
        if key not in self._entries and len(self._entries) >= self.max_size:
            self._make_room()
        self._entries[key] = _Entry(copy.deepcopy(value), time.time() + ttl)

    async def _delete_impl(self, key: str) -> None:
        self._entries.pop(key, None)

    async def _clear_impl(self) -> None:
        self._entries.clear()

    def _make_room(self) -> None:
        now = time.time()
        expired = [k for k, entry in self._entries.items() if entry.expires_at <= now]
        for key in expired:
            del self._entries[key]

        if len(self._entries) >= self.max_size:
            victim = min(self._entries, key=lambda k: self._entries[k].expires_at)
            del self._entries[victim]
