"""End-to-end tests of the query pipeline: dispatch, learning and caching."""

import pytest

from mergeflow.core.models import JobKind, JobStatus


async def finished(services, request_id):
    status = await services.queue_manager.get_query_result(request_id)
    if status["status"] in (JobStatus.COMPLETED.value, JobStatus.FAILED.value):
        return status
    return None


@pytest.mark.asyncio
async def test_repeated_query_served_from_cache(services, mock_client, wait_for):
    manager = services.queue_manager

    await manager.submit_query("What is a mock answer?", {"request_id": "first"})
    first = await wait_for(lambda: finished(services, "first"))
    calls = len(mock_client.calls)

    await manager.submit_query("What is a mock answer?", {"request_id": "second"})
    second = await wait_for(lambda: finished(services, "second"))

    assert first["result"]["model_results"]["from_cache"] is False
    assert second["result"]["model_results"]["from_cache"] is True
    assert len(mock_client.calls) == calls
    assert (
        second["result"]["model_results"]["merged"]["content"]
        == first["result"]["model_results"]["merged"]["content"]
    )


@pytest.mark.asyncio
async def test_failing_model_loses_standing(services, mock_client, wait_for):
    mock_client.script("mock-alpha", *[400] * 3)

    for index in range(3):
        await services.queue_manager.submit_query(
            f"Question number {index} about mocks?", {"request_id": f"q{index}"}
        )
        status = await wait_for(lambda: finished(services, f"q{index}"))

        result = status["result"]
        assert result["model_results"]["merged"]["primary_model"] == "mock-beta"
        assert result["model_results"]["success_rate"] == 0.5

    stats = services.tracker.snapshot()
    assert stats["mock-alpha"].success_rate < stats["mock-beta"].success_rate
    assert stats["mock-alpha"].total_calls == 3

    weights = services.merge_engine.weights(["mock-alpha", "mock-beta"])
    assert weights["mock-beta"] > weights["mock-alpha"]


@pytest.mark.asyncio
async def test_feedback_retrains_meta_model(services, mock_client, wait_for):
    manager = services.queue_manager
    meta_model = services.meta_model
    mock_client.script("mock-alpha", *[400] * 10)

    for index in range(10):
        request_id = f"rated-{index}"
        await manager.submit_query(f"Rated question {index}?", {"request_id": request_id})
        await wait_for(lambda: services.cache.get(f"evaluation:{request_id}"))
        await manager.submit_feedback(request_id, 5)

    training = manager.queues[JobKind.MODEL_TRAINING.value]
    await wait_for(lambda: training.counts()["completed"] == 10)

    assert len(meta_model.training_data) == 10
    assert all(example.target == 1.0 for example in meta_model.training_data)
    assert meta_model.weights["mock-beta"] > meta_model.weights["mock-alpha"]
    assert sum(abs(w) for w in meta_model.weights.values()) == pytest.approx(1.0)

    assert meta_model.last_updated is not None


@pytest.mark.asyncio
async def test_prioritised_jobs_run_first(services, wait_for):
    manager = services.queue_manager
    await manager.pause_queue(JobKind.QUERY_PROCESSING.value)

    await manager.submit_query("Plain question?", {"request_id": "plain"})
    await manager.submit_query("Urgent question?", {"request_id": "urgent", "priority": 1})
    await manager.resume_queue(JobKind.QUERY_PROCESSING.value)

    plain = await wait_for(lambda: finished(services, "plain"))
    urgent = await wait_for(lambda: finished(services, "urgent"))

    assert urgent["result"]["timestamp"] <= plain["result"]["timestamp"]
