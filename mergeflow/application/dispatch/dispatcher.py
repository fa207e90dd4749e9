"""Parallel fan-out of one prompt to many models."""

import asyncio
import hashlib
import time
import uuid
from typing import Dict, Any, Iterable, List, Optional

from mergeflow.core.exceptions import AllModelsFailedError
from mergeflow.core.interfaces import ICache
from mergeflow.core.models import DispatchResult, ErrorKind, ModelCallResult
from mergeflow.application.merge import MergeEngine
from mergeflow.application.performance import PerformanceTracker
from mergeflow.application.registry import ModelRegistry
from mergeflow.infrastructure.observability.metrics import MetricsCollector
from mergeflow.utils.logger import get_logger

logger = get_logger(__name__)


def dispatch_cache_key(prompt: str, model_ids: Iterable[str]) -> str:
    digest = hashlib.sha256(prompt.encode("utf-8")).hexdigest()[:32]
    return f"dispatch:{digest}:{'|'.join(sorted(model_ids))}"


def selection_from_options(options: Dict[str, Any]) -> List[str]:
    """Model ids named by ``selected_models`` and ``selected_model``."""
    selected = [str(s).strip() for s in options.get("selected_models") or [] if s]
    if isinstance(options.get("selected_model"), str) and options["selected_model"].strip():
        selected.append(options["selected_model"].strip())
    return selected


class ParallelDispatcher:
    """Calls every selected model concurrently and merges the successes."""

    def __init__(
        self,
        registry: ModelRegistry,
        tracker: PerformanceTracker,
        merge_engine: MergeEngine,
        cache: Optional[ICache],
        config: Dict[str, Any],
        metrics: Optional[MetricsCollector] = None,
    ):
        self.registry = registry
        self.tracker = tracker
        self.merge_engine = merge_engine
        self.cache = cache
        self.metrics = metrics

        models_config = config.get("models", {})
        self.max_retries = models_config.get("max_retries", 3)
        self.retry_delay_ms = models_config.get("retry_delay_ms", 1000)
        self.dispatch_ttl = config.get("cache", {}).get(
            "dispatch_ttl", config.get("cache", {}).get("ttl", 3600)
        )

    async def call_with_retry(
        self,
        model_id: str,
        prompt: str,
        options: Optional[Dict[str, Any]] = None,
        max_retries: Optional[int] = None,
    ) -> ModelCallResult:
        """
        Call one model, retrying retryable failures with backoff.

        The delay before attempt ``n + 1`` is the server's Retry-After for
        rate limits, otherwise ``retry_delay_ms * 2 ** (n - 1)``. No sleep
        follows the last attempt.

        Returns:
            The first success, the first non-retryable failure, or the last
            failure once attempts are exhausted.
        """
        options = options or {}
        max_retries = max_retries or options.get("max_retries") or self.max_retries

        descriptor = self.registry.get_descriptor(model_id)
        client = self.registry.get_client(model_id)
        if descriptor is None or client is None:
            logger.warning(
                f"No credential available for model {model_id}",
                extra={"model_id": model_id, "error_kind": ErrorKind.AUTH_ERROR.value},
            )
            return ModelCallResult(
                model_id=model_id,
                success=False,
                error_kind=ErrorKind.AUTH_ERROR,
                retryable=False,
                message=f"No credential configured for model {model_id}",
                attempts=0,
            )

        timeout_ms = options.get("timeout_ms")
        result = None
        for attempt in range(1, max_retries + 1):
            started = time.monotonic()
            try:
                result = await client.call(
                    descriptor.model_id,
                    prompt,
                    max_tokens=options.get("max_tokens"),
                    temperature=options.get("temperature"),
                    timeout=timeout_ms / 1000.0 if timeout_ms else None,
                )
            except Exception as e:
                # Unclassified failure; still counted against the model below
                logger.error(
                    f"Call to {descriptor.model_id} raised: {e}",
                    extra={"model_id": descriptor.model_id, "error_kind": ErrorKind.PROMISE_REJECTED.value},
                )
                result = ModelCallResult(
                    model_id=descriptor.model_id,
                    success=False,
                    response_time_ms=int((time.monotonic() - started) * 1000),
                    error_kind=ErrorKind.PROMISE_REJECTED,
                    message=str(e) or type(e).__name__,
                )
            result.attempts = attempt

            if self.metrics:
                self.metrics.record_model_call(
                    descriptor.model_id,
                    result.success,
                    result.response_time_ms,
                    result.error_kind.value if result.error_kind else None,
                    tokens=int(result.usage.get("total_tokens") or 0),
                )
            await self.tracker.update(
                descriptor.model_id, result.success, result.response_time_ms, result.content
            )

            if result.success or not result.retryable:
                return result

            if attempt < max_retries:
                if result.error_kind == ErrorKind.RATE_LIMIT and result.retry_after_ms is not None:
                    delay_ms = result.retry_after_ms
                else:
                    delay_ms = self.retry_delay_ms * 2 ** (attempt - 1)

                logger.info(
                    f"Retrying {descriptor.model_id} in {delay_ms}ms after {result.error_kind.value}",
                    extra={"model_id": descriptor.model_id, "attempt": attempt},
                )
                await asyncio.sleep(delay_ms / 1000.0)

        return result

    async def _guarded_call(
        self, model_id: str, prompt: str, options: Dict[str, Any]
    ) -> ModelCallResult:
        try:
            return await self.call_with_retry(model_id, prompt, options)
        except Exception as e:
            logger.error(
                f"Call to {model_id} raised: {e}",
                extra={"model_id": model_id, "error_kind": ErrorKind.PROMISE_REJECTED.value},
            )
            return ModelCallResult(
                model_id=model_id,
                success=False,
                error_kind=ErrorKind.PROMISE_REJECTED,
                message=str(e),
            )

    async def dispatch(
        self,
        prompt: str,
        selected_model_ids: Optional[Iterable[str]] = None,
        options: Optional[Dict[str, Any]] = None,
    ) -> DispatchResult:
        """
        Send a prompt to the selected models in parallel and merge the answers.

        Args:
            prompt: Prompt text
            selected_model_ids: Model ids or ``provider:model_id`` keys;
                empty means every registered model
            options: ``max_tokens``, ``temperature``, ``timeout_ms``,
                ``max_retries``, ``skip_cache``, ``selected_models``

        Raises:
            ModelSelectionError: If the selection matches no model
            AllModelsFailedError: If no model succeeded
        """
        options = options or {}
        start_time = time.monotonic()
        query_id = str(uuid.uuid4())

        selection = list(selected_model_ids or []) or selection_from_options(options)
        descriptors = self.registry.resolve_selection(selection)
        model_ids = list(dict.fromkeys(d.model_id for d in descriptors))

        cache_key = dispatch_cache_key(prompt, model_ids)
        if self.cache is not None and not options.get("skip_cache"):
            cached = await self.cache.get(cache_key)
            if cached:
                logger.info("Returning cached dispatch result", extra={"query_id": query_id})
                result = DispatchResult.from_dict(cached)
                result.query_id = query_id
                result.from_cache = True
                if self.metrics:
                    self.metrics.record_dispatch(len(model_ids), len(result.successful), 0, True)
                return result

        weights = self.merge_engine.weights(model_ids)

        logger.info(
            f"Dispatching to {len(model_ids)} models",
            extra={"query_id": query_id},
        )
        results = list(
            await asyncio.gather(
                *(self._guarded_call(model_id, prompt, options) for model_id in model_ids)
            )
        )

        total_time_ms = int((time.monotonic() - start_time) * 1000)
        successful = [r for r in results if r.success]

        logger.info(
            f"Dispatch finished: {len(successful)}/{len(results)} succeeded",
            extra={"query_id": query_id, "latency_ms": total_time_ms},
        )
        if self.metrics:
            self.metrics.record_dispatch(len(results), len(successful), total_time_ms, False)

        if not successful:
            raise AllModelsFailedError(results)

        result = DispatchResult(
            query_id=query_id,
            merged=self.merge_engine.merge(successful, weights),
            individual=results,
            weights=weights,
            total_time_ms=total_time_ms,
            success_rate=len(successful) / len(results),
        )

        if self.cache is not None:
            await self.cache.set(cache_key, result.to_dict(), self.dispatch_ttl)

        return result
