"""Pytest configuration and fixtures."""

import asyncio
import pytest
from typing import Dict, Any, List

from mergeflow.api.dependencies import build_services
from mergeflow.application.dispatch import ParallelDispatcher
from mergeflow.application.knowledge import KnowledgeFusion
from mergeflow.application.merge import MergeEngine
from mergeflow.application.performance import PerformanceTracker
from mergeflow.application.registry import ModelRegistry
from mergeflow.infrastructure.cache import MemoryCache
from mergeflow.infrastructure.observability import MetricsCollector
from mergeflow.infrastructure.providers import MockProviderClient


class StubKnowledgeSource:
    """Knowledge source answering from a fixed table."""

    def __init__(self, name: str, entries: Dict[str, str] = None, confidence: float = 0.8):
        self.name = name
        self.entries = entries or {}
        self.confidence = confidence
        self.searched: List[str] = []

    async def search(self, concept: str) -> List[Dict[str, Any]]:
        self.searched.append(concept)
        if concept not in self.entries:
            return []
        return [
            {
                "source": self.name,
                "concept": concept,
                "title": concept.title(),
                "extract": self.entries[concept],
                "url": f"https://example.org/{concept}",
                "confidence": self.confidence,
            }
        ]


@pytest.fixture
def mock_config(tmp_path) -> Dict[str, Any]:
    """Mock configuration for testing."""
    return {
        "api": {"host": "0.0.0.0", "port": 8000},
        "providers": {"mock": {"models": ["mock-alpha", "mock-beta"]}},
        "models": {
            "timeout_ms": 5000,
            "max_retries": 3,
            "retry_delay_ms": 1,
            "max_tokens": 256,
            "temperature": 0.7,
        },
        "cache": {
            "provider": "memory",
            "ttl": 60,
            "max_size": 1000,
            "dispatch_ttl": 60,
            "result_ttl": 60,
            "feedback_ttl": 60,
            "evaluation_ttl": 60,
            "performance_ttl": 60,
        },
        "queue": {
            "estimated_job_ms": 30000,
            "evaluation_delay_ms": 0,
            "training_priority": 5,
            "query_processing": {"attempts": 2, "backoff": {"type": "fixed", "delay_ms": 1}},
            "model_training": {"attempts": 1, "backoff": {"type": "fixed", "delay_ms": 1}},
            "knowledge_enhancement": {"backoff": {"type": "fixed", "delay_ms": 1}},
            "evaluation": {"backoff": {"type": "fixed", "delay_ms": 1}},
        },
        "ml": {
            "persist": False,
            "model_path": str(tmp_path / "models"),
            "training_data_path": str(tmp_path / "training"),
            "learning_rate": 0.05,
            "epochs": 100,
            "max_examples": 1000,
            "retrain_every": 50,
            "min_examples": 10,
        },
        "knowledge": {"enabled": True, "max_concepts": 10},
        "agents": {"step_delay_ms": 0, "task_timeout_ms": 5000, "max_tasks": 50},
        "observability": {"metrics_enabled": True},
    }


@pytest.fixture
def cache(mock_config):
    """In-memory cache fixture."""
    return MemoryCache(mock_config["cache"])


@pytest.fixture
def metrics():
    return MetricsCollector({"metrics_enabled": True})


@pytest.fixture
def mock_client():
    """Mock provider client with two models."""
    return MockProviderClient({"models": ["mock-alpha", "mock-beta"]})


@pytest.fixture
def tracker(cache, mock_config):
    return PerformanceTracker(cache, mock_config["cache"])


@pytest.fixture
async def registry(tracker, mock_client, mock_config):
    """Registry with the mock client's models registered."""
    registry = ModelRegistry(tracker, {"models": mock_config["models"]})
    await registry.register_client(mock_client, await mock_client.list_models())
    return registry


@pytest.fixture
def merge_engine(tracker):
    return MergeEngine(tracker)


@pytest.fixture
def dispatcher(registry, tracker, merge_engine, cache, mock_config, metrics):
    return ParallelDispatcher(registry, tracker, merge_engine, cache, mock_config, metrics)


@pytest.fixture
def knowledge_source():
    return StubKnowledgeSource(
        "wikipedia",
        {
            "mock": "A mock answer is a stand-in answer used for testing the question "
            "about software without real services."
        },
    )


@pytest.fixture
def knowledge(mock_config, knowledge_source):
    return KnowledgeFusion(mock_config["knowledge"], sources=[knowledge_source])


@pytest.fixture
async def services(mock_config, cache, mock_client, knowledge):
    """Started service graph backed by the mock provider."""
    services = build_services(
        mock_config,
        cache=cache,
        clients=[(mock_client, None)],
        knowledge=knowledge,
    )
    await services.start()
    yield services
    await services.stop()


async def wait_until(predicate, timeout: float = 5.0, interval: float = 0.01):
    """Poll an (optionally async) predicate until it is truthy."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while True:
        value = predicate()
        if asyncio.iscoroutine(value):
            value = await value
        if value:
            return value
        if loop.time() >= deadline:
            raise AssertionError("Condition not met before timeout")
        await asyncio.sleep(interval)


@pytest.fixture
def wait_for():
    return wait_until
