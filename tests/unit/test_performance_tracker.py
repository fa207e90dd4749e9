"""Unit tests for the performance tracker."""

import pytest

from mergeflow.application.performance import (
    PERFORMANCE_CACHE_KEY,
    PerformanceTracker,
    assess_response_quality,
)
from mergeflow.core.models import ModelDescriptor

ALPHA = ModelDescriptor(model_id="mock-alpha", provider="mock")


def test_quality_heuristic_bounds():
    assert assess_response_quality("") == 0.5
    good = (
        "Mock objects replace real collaborators in tests. "
        "They record how they were called and return canned values."
    )
    assert assess_response_quality(good) == pytest.approx(0.9)


def test_register_creates_neutral_record(tracker):
    record = tracker.register(ALPHA)

    assert record.success_rate == 0.8
    assert record.avg_response_time_ms == 5000.0
    assert record.quality_score == 0.7
    assert record.total_calls == 0
    assert record.provider == "mock"


@pytest.mark.asyncio
async def test_failure_update_applies_ema(tracker):
    tracker.register(ALPHA)

    await tracker.update("mock-alpha", False, 1000)

    record = tracker.get("mock-alpha")
    assert record.success_rate == pytest.approx(0.72)
    assert record.avg_response_time_ms == pytest.approx(4600.0)
    assert record.quality_score == pytest.approx(0.7)
    assert record.total_calls == 1
    assert record.successful_calls == 0


@pytest.mark.asyncio
async def test_success_update_moves_quality(tracker):
    tracker.register(ALPHA)

    await tracker.update("mock-alpha", True, 500, "ok ok ok ok")

    record = tracker.get("mock-alpha")
    assert record.success_rate == pytest.approx(0.82)
    assert record.quality_score == pytest.approx(0.1 * 0.5 + 0.9 * 0.7)
    assert record.successful_calls == 1


@pytest.mark.asyncio
async def test_updates_for_unregistered_models_are_ignored(tracker):
    await tracker.update("ghost", True, 100, "content")
    assert tracker.get("ghost") is None


@pytest.mark.asyncio
async def test_persists_every_tenth_call(tracker, cache):
    tracker.register(ALPHA)

    for _ in range(9):
        await tracker.update("mock-alpha", True, 100)
    assert await cache.get(PERFORMANCE_CACHE_KEY) is None

    await tracker.update("mock-alpha", True, 100)
    stored = await cache.get(PERFORMANCE_CACHE_KEY)
    assert stored["mock-alpha"]["total_calls"] == 10


@pytest.mark.asyncio
async def test_persisted_stats_survive_restart(tracker, cache, mock_config):
    tracker.register(ALPHA)
    await tracker.update("mock-alpha", False, 100)
    await tracker.save()

    restarted = PerformanceTracker(cache, mock_config["cache"])
    await restarted.initialize()
    assert restarted.get("mock-alpha") is None

    record = restarted.register(ALPHA)
    assert record.total_calls == 1
    assert record.success_rate == pytest.approx(0.72)


@pytest.mark.asyncio
async def test_reset_and_retain(tracker):
    tracker.register(ALPHA)
    tracker.register(ModelDescriptor(model_id="mock-beta", provider="mock"))
    await tracker.update("mock-alpha", False, 100)

    await tracker.reset()
    assert tracker.get("mock-alpha").success_rate == 0.8
    assert tracker.get("mock-alpha").total_calls == 0

    assert tracker.retain(["mock-alpha"]) == 1
    assert tracker.model_ids() == ["mock-alpha"]
