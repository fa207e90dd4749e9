"""HTTP surface for MergeFlow."""
