"""Infrastructure adapters: cache, provider clients, observability."""
