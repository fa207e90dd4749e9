"""Parallel model dispatch."""

from .dispatcher import ParallelDispatcher, dispatch_cache_key, selection_from_options

__all__ = ["ParallelDispatcher", "dispatch_cache_key", "selection_from_options"]
