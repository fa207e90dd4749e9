"""MergeFlow: adaptive multi-model orchestration and ensemble engine."""

__version__ = "1.0.0"
