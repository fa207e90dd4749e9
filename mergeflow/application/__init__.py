"""Application services: dispatch, merging, learning and job pipeline."""
