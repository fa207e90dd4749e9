"""Redis cache backend, shared between API processes."""

import json
from typing import Any, Dict, List, Optional

import redis.asyncio as redis

from .base import BaseCache
from mergeflow.utils.logger import get_logger

logger = get_logger(__name__)

CLEAR_BATCH = 500


class RedisCache(BaseCache):
    """Stores JSON documents under ``<namespace>:<key>``.

    ``clear`` removes only keys in the namespace, so several MergeFlow
    deployments (or other applications) can share one Redis database.
    """

    def __init__(self, config: Dict[str, Any]):
        super().__init__(config)
        self.namespace = config.get("namespace", "mergeflow")
        self.url = config.get("url")
        self.host = config.get("host", "localhost")
        self.port = config.get("port", 6379)
        self.db = config.get("db", 0)
        self.client: Optional[redis.Redis] = None

    def _connection(self) -> redis.Redis:
        if self.client is None:
            if self.url:
                self.client = redis.Redis.from_url(self.url, decode_responses=True)
            else:
                self.client = redis.Redis(
                    host=self.host, port=self.port, db=self.db, decode_responses=True
                )
            logger.info(f"Using Redis cache namespace '{self.namespace}' at {self.url or f'{self.host}:{self.port}/{self.db}'}")
        return self.client

    def _namespaced(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    async def _get_impl(self, key: str) -> Optional[Any]:
        raw = await self._connection().get(self._namespaced(key))
        return None if raw is None else json.loads(raw)

    async def _set_impl(self, key: str, value: Any, ttl: int) -> None:
        # Redis rejects non-positive expiry; a zero TTL means "do not keep"
        if ttl <= 0:
            await self._delete_impl(key)
            return
        document = json.dumps(value, default=str)
        await self._connection().set(self._namespaced(key), document, ex=int(ttl))

    async def _delete_impl(self, key: str) -> None:
        await self._connection().delete(self._namespaced(key))

    async def _clear_impl(self) -> None:
        client = self._connection()
        batch: List[str] = []
        async for key in client.scan_iter(match=self._namespaced("*"), count=CLEAR_BATCH):
            batch.append(key)
            if len(batch) >= CLEAR_BATCH:
                await client.unlink(*batch)
                batch.clear()
        if batch:
            await client.unlink(*batch)

    async def health_check(self) -> bool:
        try:
            return bool(await self._connection().ping())
        except redis.RedisError as e:
            logger.warning(f"Redis health check failed: {e}")
            return False

    async def close(self) -> None:
        if self.client is not None:
            await self.client.aclose()
            self.client = None
