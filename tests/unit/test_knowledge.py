"""Unit tests for knowledge enhancement."""

import aiohttp
import pytest

from mergeflow.application.knowledge import KnowledgeFusion, extract_key_concepts
from mergeflow.core.models import ModelCallResult


def answer(model_id: str, content: str, success: bool = True) -> ModelCallResult:
    return ModelCallResult(model_id=model_id, success=success, content=content if success else None)


def test_key_concepts_by_frequency():
    concepts = extract_key_concepts(
        "How does caching work?",
        [answer("a", "Caching keeps results. Caching avoids work.")],
        limit=3,
    )
    assert concepts[0] == "caching"
    assert "how" not in concepts
    assert len(concepts) <= 3


def test_integrate_needs_three_shared_words():
    knowledge = [
        {"source": "wikipedia", "extract": "Mock answers stand in for real answers during testing"},
    ]
    matched = answer("a", "mock answers during testing are useful")
    unrelated = answer("b", "completely different subject entirely")
    failed = answer("c", "", success=False)

    enhanced = KnowledgeFusion.integrate([matched, unrelated, failed], knowledge)

    assert enhanced[0]["knowledge_snippets"][0].startswith("[Source: wikipedia] Mock answers")
    assert enhanced[0]["knowledge_snippets"][0].endswith("...")
    assert "external_knowledge" not in enhanced[1]
    assert "external_knowledge" not in enhanced[2]


@pytest.mark.asyncio
async def test_enhance_queries_sources(knowledge, knowledge_source):
    responses = [answer("mock-alpha", "A mock answer is useful for testing software questions.")]

    result = await knowledge.enhance("What is a mock answer?", responses)

    assert "mock" in result["key_concepts"]
    assert len(knowledge_source.searched) <= 3
    assert result["external_knowledge"][0]["source"] == "wikipedia"
    assert result["enhanced_responses"][0]["knowledge_snippets"]


@pytest.mark.asyncio
async def test_lookups_are_cached(knowledge, knowledge_source):
    responses = [answer("mock-alpha", "mock answer")]

    await knowledge.enhance("mock answer", responses)
    searched = len(knowledge_source.searched)
    await knowledge.enhance("mock answer", responses)

    assert len(knowledge_source.searched) == searched

    knowledge.clear_cache()
    await knowledge.enhance("mock answer", responses)
    assert len(knowledge_source.searched) == 2 * searched


@pytest.mark.asyncio
async def test_lookup_cache_drops_least_recently_used(knowledge_source):
    fusion = KnowledgeFusion({"cache_size": 2}, sources=[knowledge_source])

    await fusion._search_source(knowledge_source, ["alpha", "beta"])
    await fusion._search_source(knowledge_source, ["alpha"])
    await fusion._search_source(knowledge_source, ["gamma"])
    assert knowledge_source.searched == ["alpha", "beta", "gamma"]

    await fusion._search_source(knowledge_source, ["alpha", "beta"])

    assert knowledge_source.searched == ["alpha", "beta", "gamma", "beta"]
    assert len(fusion._cache) == 2


@pytest.mark.asyncio
async def test_failing_source_is_skipped(mock_config, knowledge_source):
    class DownSource:
        name = "web"

        async def search(self, concept):
            raise aiohttp.ClientError("unreachable")

    fusion = KnowledgeFusion(mock_config["knowledge"], sources=[DownSource(), knowledge_source])
    result = await fusion.enhance("mock answer", [answer("a", "mock answer text")])

    assert "error" not in result
    assert all(item["source"] == "wikipedia" for item in result["external_knowledge"])


@pytest.mark.asyncio
async def test_disabled_enhancement_passes_responses_through(knowledge_source):
    fusion = KnowledgeFusion({"enabled": False}, sources=[knowledge_source])

    result = await fusion.enhance("q", [answer("a", "text")])

    assert result["external_knowledge"] == []
    assert result["enhanced_responses"][0]["content"] == "text"
    assert knowledge_source.searched == []
