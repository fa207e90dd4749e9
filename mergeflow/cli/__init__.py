"""Command line interface for MergeFlow."""
