"""Rolling per-model performance statistics."""

import asyncio
import re
from datetime import datetime
from typing import Dict, Any, Iterable, List, Optional

from mergeflow.core.interfaces import ICache
from mergeflow.core.models import ModelDescriptor, ModelPerformance
from mergeflow.utils.logger import get_logger

logger = get_logger(__name__)

PERFORMANCE_CACHE_KEY = "model_performance"

_SENTENCE_SPLIT = re.compile(r"[.!?]+")


def assess_response_quality(content: str) -> float:
    """Cheap structural quality heuristic in [0, 1]."""
    score = 0.5

    if 50 < len(content) < 2000:
        score += 0.1

    if any(mark in content for mark in ".!?"):
        score += 0.1

    sentences = [s for s in _SENTENCE_SPLIT.split(content) if s.strip()]
    if 1 < len(sentences) < 20:
        score += 0.1

    words = content.lower().split()
    if words and len(set(words)) / len(words) > 0.7:
        score += 0.1

    return min(1.0, max(0.0, score))


class PerformanceTracker:
    """EMA statistics per registered model, persisted to the cache.

    Only registered models have records; updates for anything else are
    ignored so removing a model never leaves a stale entry behind.
    """

    def __init__(self, cache: Optional[ICache], config: Optional[Dict[str, Any]] = None):
        config = config or {}
        self.cache = cache
        self.alpha = config.get("alpha", 0.1)
        self.persist_every = config.get("persist_every", 10)
        self.ttl = config.get("performance_ttl", 86400)

        self._records: Dict[str, ModelPerformance] = {}
        self._persisted: Dict[str, ModelPerformance] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    async def initialize(self) -> None:
        """Load previously persisted statistics."""
        if self.cache is None:
            return

        stored = await self.cache.get(PERFORMANCE_CACHE_KEY)
        if not stored:
            return

        for model_id, data in stored.items():
            try:
                self._persisted[model_id] = ModelPerformance.from_dict(
                    {**data, "model_id": model_id}
                )
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed performance record for {model_id}: {e}")

        logger.info(f"Loaded performance data for {len(self._persisted)} models")

    def register(self, descriptor: ModelDescriptor) -> ModelPerformance:
        """Create the record for a model, reusing persisted stats if any."""
        record = self._records.get(descriptor.model_id)
        if record is None:
            record = self._persisted.pop(descriptor.model_id, None) or ModelPerformance(
                model_id=descriptor.model_id
            )
            record.provider = descriptor.provider
            self._records[descriptor.model_id] = record
        return record

    def get(self, model_id: str) -> Optional[ModelPerformance]:
        return self._records.get(model_id)

    def snapshot(self) -> Dict[str, ModelPerformance]:
        return dict(self._records)

    def model_ids(self) -> List[str]:
        return list(self._records)

    async def update(
        self,
        model_id: str,
        success: bool,
        response_time_ms: float,
        content: Optional[str] = None,
    ) -> None:
        """Fold one call outcome into the model's statistics."""
        if model_id not in self._records:
            logger.debug(f"Ignoring performance update for unregistered model {model_id}")
            return

        try:
            async with self._lock_for(model_id):
                record = self._records.get(model_id)
                if record is None:
                    return

                alpha = self.alpha
                record.total_calls += 1
                if success:
                    record.successful_calls += 1

                record.success_rate = alpha * (1.0 if success else 0.0) + (
                    1 - alpha
                ) * record.success_rate
                record.avg_response_time_ms = (
                    alpha * response_time_ms + (1 - alpha) * record.avg_response_time_ms
                )

                if success and content:
                    quality = assess_response_quality(content)
                    record.quality_score = alpha * quality + (1 - alpha) * record.quality_score

                record.last_updated = datetime.utcnow()
                should_persist = record.total_calls % self.persist_every == 0

            if should_persist:
                await self.save()

        except Exception as e:
            logger.error(
                f"Performance update failed for {model_id}: {e}",
                extra={"model_id": model_id},
            )

    async def save(self) -> None:
        """Persist the whole table; failures are logged by the cache."""
        if self.cache is None:
            return

        table = {model_id: record.to_dict() for model_id, record in self._records.items()}
        await self.cache.set(PERFORMANCE_CACHE_KEY, table, self.ttl)

    def remove(self, model_ids: Iterable[str]) -> int:
        """Drop records; returns how many existed."""
        removed = 0
        for model_id in model_ids:
            if self._records.pop(model_id, None) is not None:
                removed += 1
            self._persisted.pop(model_id, None)
            self._locks.pop(model_id, None)
        return removed

    def retain(self, live_ids: Iterable[str]) -> int:
        """Keep only records whose model is still registered."""
        live = set(live_ids)
        return self.remove([model_id for model_id in self._records if model_id not in live])

    async def reset(self, model_ids: Optional[Iterable[str]] = None) -> None:
        """Put models back to neutral statistics."""
        targets = list(model_ids) if model_ids is not None else list(self._records)
        for model_id in targets:
            record = self._records.get(model_id)
            if record is not None:
                self._records[model_id] = ModelPerformance(
                    model_id=model_id, provider=record.provider
                )

        await self.save()
        logger.info(f"Performance data reset for {len(targets)} models")

    def _lock_for(self, model_id: str) -> asyncio.Lock:
        lock = self._locks.get(model_id)
        if lock is None:
            lock = self._locks[model_id] = asyncio.Lock()
        return lock
