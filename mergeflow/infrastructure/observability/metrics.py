"""In-process metrics for model calls, dispatches, jobs and learning."""

import time
from collections import defaultdict, deque
from typing import Any, Deque, Dict, Optional

from mergeflow.utils.logger import get_logger

logger = get_logger(__name__)

HISTOGRAM_WINDOW = 1000


def metric_key(name: str, labels: Optional[Dict[str, Any]] = None) -> str:
    """``name{k=v,...}`` with labels sorted by key."""
    if not labels:
        return name
    return name + "{" + ",".join(f"{k}={v}" for k, v in sorted(labels.items())) + "}"


class MetricsCollector:
    """
    Counters, windowed histograms and gauges, flattened for ``GET /metrics``.

    Counters are exported as ``<key>_total``; each histogram as
    ``_avg``/``_min``/``_max``/``_p95``/``_count`` over its last
    ``HISTOGRAM_WINDOW`` observations.
    """

    def __init__(self, config: Dict[str, Any]):
        self.config = config
        self.enabled = config.get("metrics_enabled", True)
        self.window = config.get("histogram_window", HISTOGRAM_WINDOW)

        self.counters: Dict[str, float] = defaultdict(int)
        self.histograms: Dict[str, Deque[float]] = defaultdict(lambda: deque(maxlen=self.window))
        self.gauges: Dict[str, float] = {}

        self.start_time = time.time()

    def increment_counter(self, name: str, value: float = 1, labels: Optional[Dict[str, Any]] = None):
        if self.enabled:
            self.counters[metric_key(name, labels)] += value

    def record_histogram(self, name: str, value: float, labels: Optional[Dict[str, Any]] = None):
        if self.enabled:
            self.histograms[metric_key(name, labels)].append(value)

    def set_gauge(self, name: str, value: float, labels: Optional[Dict[str, Any]] = None):
        if self.enabled:
            self.gauges[metric_key(name, labels)] = value

    def get_metrics(self) -> Dict[str, Any]:
        metrics: Dict[str, Any] = {f"{key}_total": value for key, value in self.counters.items()}

        for key, window in self.histograms.items():
            if not window:
                continue
            ordered = sorted(window)
            metrics[f"{key}_avg"] = sum(ordered) / len(ordered)
            metrics[f"{key}_min"] = ordered[0]
            metrics[f"{key}_max"] = ordered[-1]
            metrics[f"{key}_p95"] = ordered[min(len(ordered) - 1, int(len(ordered) * 0.95))]
            metrics[f"{key}_count"] = len(ordered)

        metrics.update(self.gauges)
        metrics["uptime_seconds"] = time.time() - self.start_time
        return metrics

    # Domain recorders

    def record_model_call(
        self,
        model_id: str,
        success: bool,
        latency_ms: int,
        error_kind: Optional[str] = None,
        tokens: int = 0,
    ):
        """One provider call attempt, labelled with its outcome."""
        status = "success" if success else (error_kind or "error")
        self.increment_counter("model_calls", labels={"model": model_id, "status": status})
        self.record_histogram("model_latency_ms", latency_ms, labels={"model": model_id})
        if tokens:
            self.increment_counter("model_tokens", tokens, labels={"model": model_id})

    def record_dispatch(self, models: int, successful: int, total_time_ms: int, from_cache: bool):
        if from_cache:
            self.increment_counter("dispatch_cache_hits")
            return

        self.increment_counter("dispatches", labels={"status": "success" if successful else "failed"})
        self.record_histogram("dispatch_time_ms", total_time_ms)
        self.set_gauge("last_dispatch_success_rate", successful / models if models else 0.0)

    def record_job(self, queue: str, status: str, duration_ms: int):
        self.increment_counter("jobs", labels={"queue": queue, "status": status})
        self.record_histogram("job_duration_ms", duration_ms, labels={"queue": queue})

    def record_feedback(self, rating: int):
        self.increment_counter("feedback", labels={"rating": rating})
        self.record_histogram("feedback_rating", rating)

    def record_retrain(self, refit: bool, weights: Dict[str, float]):
        """Outcome of a meta-model retrain and the weights it left behind."""
        self.increment_counter("meta_model_retrains", labels={"refit": str(refit).lower()})
        for model_id, weight in weights.items():
            self.set_gauge("meta_model_weight", weight, labels={"model": model_id})
