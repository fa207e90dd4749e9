"""External knowledge enhancement."""

from .fusion import KnowledgeFusion, WikipediaSource, WebSearchSource, extract_key_concepts

__all__ = ["KnowledgeFusion", "WikipediaSource", "WebSearchSource", "extract_key_concepts"]
