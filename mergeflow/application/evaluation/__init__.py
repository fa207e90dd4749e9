"""Answer evaluation heuristics."""

from .metrics import EvaluationMetrics, METRIC_WEIGHTS

__all__ = ["EvaluationMetrics", "METRIC_WEIGHTS"]
