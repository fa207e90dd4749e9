"""Response merging."""

from .engine import MergeEngine, consensus, jaccard

__all__ = ["MergeEngine", "consensus", "jaccard"]
