"""Per-model performance tracking."""

from .tracker import PERFORMANCE_CACHE_KEY, PerformanceTracker, assess_response_quality

__all__ = ["PERFORMANCE_CACHE_KEY", "PerformanceTracker", "assess_response_quality"]
