"""External knowledge lookup and fusion into model answers."""

import asyncio
import re
import time
import uuid
from collections import Counter, OrderedDict
from datetime import datetime
from typing import Dict, Any, List, Optional
from urllib.parse import quote

import aiohttp

from mergeflow.core.interfaces import IKnowledgeSource
from mergeflow.core.models import ModelCallResult
from mergeflow.utils.logger import get_logger

logger = get_logger(__name__)

_WORD = re.compile(r"[a-z0-9]+")

SNIPPET_CHARS = 200
MIN_SHARED_WORDS = 3
CACHE_SIZE = 1000


class WikipediaSource:
    """Page summaries from the Wikipedia REST API."""

    name = "wikipedia"
    confidence = 0.8

    def __init__(self, base_url: str, timeout_ms: int = 5000):
        self.base_url = base_url.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout_ms / 1000.0)

    async def search(self, concept: str) -> List[Dict[str, Any]]:
        url = f"{self.base_url}/page/summary/{quote(concept, safe='')}"
        async with aiohttp.ClientSession(timeout=self.timeout) as session:
            async with session.get(url) as response:
                if response.status == 404:
                    return []
                response.raise_for_status()
                data = await response.json(content_type=None)

        if not data or not data.get("extract"):
            return []
        return [
            {
                "source": self.name,
                "concept": concept,
                "title": data.get("title"),
                "extract": data["extract"],
                "url": ((data.get("content_urls") or {}).get("desktop") or {}).get("page"),
                "confidence": self.confidence,
            }
        ]


class WebSearchSource:
    """Web search results; disabled without an API key."""

    name = "web"
    confidence = 0.6

    def __init__(self, base_url: str, api_key: Optional[str], timeout_ms: int = 10000):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = aiohttp.ClientTimeout(total=timeout_ms / 1000.0)

    async def search(self, concept: str) -> List[Dict[str, Any]]:
        if not self.api_key:
            return []

        async with aiohttp.ClientSession(timeout=self.timeout) as session:
            async with session.get(
                f"{self.base_url}/search",
                params={"q": concept, "count": "3", "offset": "0"},
                headers={"Ocp-Apim-Subscription-Key": self.api_key},
            ) as response:
                response.raise_for_status()
                data = await response.json(content_type=None)

        pages = ((data or {}).get("webPages") or {}).get("value") or []
        return [
            {
                "source": self.name,
                "concept": concept,
                "title": page.get("name"),
                "extract": page.get("snippet") or "",
                "url": page.get("url"),
                "confidence": self.confidence,
            }
            for page in pages[:2]
        ]


def extract_key_concepts(query: str, responses: List[ModelCallResult], limit: int = 10) -> List[str]:
    """Most frequent words longer than three characters."""
    text = " ".join([query] + [r.content or "" for r in responses])
    tokens = [t for t in _WORD.findall(text.lower()) if len(t) > 3]
    return [term for term, _ in Counter(tokens).most_common(limit)]


class KnowledgeFusion:
    """Looks up key concepts and attaches matching snippets to answers."""

    def __init__(
        self,
        config: Dict[str, Any],
        sources: Optional[List[IKnowledgeSource]] = None,
    ):
        self.config = config
        self.enabled = config.get("enabled", True)
        self.max_concepts = config.get("max_concepts", 10)
        self.cache_size = config.get("cache_size", CACHE_SIZE)
        # How many concepts each source is asked about
        self.concepts_per_source = {"wikipedia": 3, "web": 2}

        if sources is None:
            timeout_ms = config.get("timeout_ms", 5000)
            sources = [
                WikipediaSource(
                    config.get("wikipedia_url", "https://en.wikipedia.org/api/rest_v1"), timeout_ms
                ),
                WebSearchSource(
                    config.get("search_url", "https://api.bing.microsoft.com/v7.0"),
                    config.get("search_api_key"),
                    timeout_ms * 2,
                ),
            ]
        self.sources = sources
        # Least recently used lookups are dropped first
        self._cache: "OrderedDict[str, List[Dict[str, Any]]]" = OrderedDict()

    async def enhance(
        self, query: str, responses: List[ModelCallResult]
    ) -> Dict[str, Any]:
        """
        Enrich responses with external references.

        Returns:
            Dict with enhanced_responses (one dict per response),
            external_knowledge and key_concepts
        """
        enhancement_id = str(uuid.uuid4())
        start_time = time.time()
        plain = [r.to_dict() for r in responses]

        if not self.enabled:
            return {
                "enhancement_id": enhancement_id,
                "enhanced_responses": plain,
                "external_knowledge": [],
                "key_concepts": [],
                "response_time_ms": 0,
            }

        try:
            concepts = extract_key_concepts(query, responses, self.max_concepts)
            if not concepts:
                return {
                    "enhancement_id": enhancement_id,
                    "enhanced_responses": plain,
                    "external_knowledge": [],
                    "key_concepts": [],
                    "response_time_ms": int((time.time() - start_time) * 1000),
                }

            found = await asyncio.gather(
                *(
                    self._search_source(source, concepts[: self.concepts_per_source.get(source.name, 2)])
                    for source in self.sources
                )
            )
            knowledge = [item for items in found for item in items]
            enhanced = self.integrate(responses, knowledge)
            response_time_ms = int((time.time() - start_time) * 1000)

            logger.info(
                f"Knowledge enhancement found {len(knowledge)} references",
                extra={"latency_ms": response_time_ms},
            )
            return {
                "enhancement_id": enhancement_id,
                "enhanced_responses": enhanced,
                "external_knowledge": knowledge,
                "key_concepts": concepts,
                "response_time_ms": response_time_ms,
                "timestamp": datetime.utcnow().isoformat(),
            }

        except Exception as e:
            logger.error(f"Knowledge enhancement failed: {e}")
            return {
                "enhancement_id": enhancement_id,
                "enhanced_responses": plain,
                "external_knowledge": [],
                "key_concepts": [],
                "error": str(e),
                "response_time_ms": int((time.time() - start_time) * 1000),
            }

    async def _search_source(
        self, source: IKnowledgeSource, concepts: List[str]
    ) -> List[Dict[str, Any]]:
        results = []
        for concept in concepts:
            cache_key = f"{source.name}:{concept}"
            if cache_key in self._cache:
                self._cache.move_to_end(cache_key)
                results.extend(self._cache[cache_key])
                continue
            try:
                items = await source.search(concept)
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                logger.warning(f"{source.name} lookup failed for '{concept}': {e}")
                continue
            self._remember(cache_key, items)
            results.extend(items)
        return results

    def _remember(self, cache_key: str, items: List[Dict[str, Any]]) -> None:
        self._cache[cache_key] = items
        while len(self._cache) > self.cache_size:
            self._cache.popitem(last=False)

    @staticmethod
    def integrate(
        responses: List[ModelCallResult], knowledge: List[Dict[str, Any]]
    ) -> List[Dict[str, Any]]:
        """Attach references sharing enough words with each successful answer."""
        enhanced = []
        for response in responses:
            entry = response.to_dict()
            if response.success and response.content and knowledge:
                response_words = set(response.content.lower().split())
                relevant = [
                    k
                    for k in knowledge
                    if len(response_words & set(k["extract"].lower().split())) >= MIN_SHARED_WORDS
                ]
                if relevant:
                    entry["external_knowledge"] = relevant
                    entry["knowledge_snippets"] = [
                        f"[Source: {k['source']}] {k['extract'][:SNIPPET_CHARS]}..." for k in relevant
                    ]
            enhanced.append(entry)
        return enhanced

    def clear_cache(self) -> None:
        self._cache.clear()
        logger.info("Knowledge cache cleared")
