"""Unit tests for background agent tasks."""

import pytest

from mergeflow.application.agents import AgentTaskManager, offline_response
from mergeflow.application.agents.task_manager import is_collaboration
from mergeflow.application.analysis import NeutralQualityAnalyzer
from mergeflow.application.registry import ModelRegistry
from mergeflow.core.models import QualityAnalysis, TaskStatus


@pytest.fixture
def agents(registry, dispatcher, mock_config):
    return AgentTaskManager(registry, dispatcher, NeutralQualityAnalyzer(), mock_config["agents"])


def test_collaboration_detection():
    assert is_collaboration(None, {"collaboration": True})
    assert is_collaboration(None, {"collaboration": {"enabled": True}})
    assert is_collaboration(None, {"selected_models": ["a", "b"]})
    assert not is_collaboration("a", {"selected_models": ["a"]})
    assert not is_collaboration(None, {"collaboration": {"enabled": False}})


@pytest.mark.asyncio
async def test_single_model_task(agents, mock_client):
    task_id = agents.start_agent("Explain mocks", model="mock-beta")

    task = agents.get_task(task_id)
    assert task.status == TaskStatus.PROCESSING

    task = await agents.wait(task_id)
    assert task.status == TaskStatus.COMPLETED
    assert task.result["model"] == "mock-beta"
    assert "mock-beta" in task.result["content"]
    assert task.logs[0].endswith("Agent started: single-model mode")
    assert task.logs[-1].endswith("Done.")
    assert mock_client.calls_for("mock-beta") == 1


@pytest.mark.asyncio
async def test_single_model_defaults_to_first_registered(agents):
    task = await agents.wait(agents.start_agent("hi"))
    assert task.result["model"] == "mock-alpha"


@pytest.mark.asyncio
async def test_failed_call_uses_offline_fallback(agents, mock_client):
    mock_client.script("mock-alpha", 401)

    task = await agents.wait(agents.start_agent("hi", model="mock-alpha"))

    assert task.status == TaskStatus.COMPLETED
    assert task.result["content"] == offline_response("hi")
    assert task.result["content"].startswith("Agent (single-model) response:")
    assert any("AUTH_ERROR" in line for line in task.logs)


@pytest.mark.asyncio
async def test_no_models_uses_offline_fallback(tracker, dispatcher, mock_config):
    empty = ModelRegistry(tracker, {})
    manager = AgentTaskManager(empty, dispatcher, NeutralQualityAnalyzer(), mock_config["agents"])

    task = await manager.wait(manager.start_agent("hi"))

    assert task.result == {"content": offline_response("hi"), "model": None}


@pytest.mark.asyncio
async def test_collaboration_task(agents, mock_client):
    task = await agents.wait(agents.start_agent("Explain mocks", options={"collaboration": True}))

    assert task.status == TaskStatus.COMPLETED
    assert task.result["models"] == ["mock-alpha", "mock-beta"]
    assert task.result["details"]["success_rate"] == 1.0
    assert task.result["analysis"]["quality_score"] == 0.5
    assert task.logs[0].endswith("Agent started: collaboration mode")


@pytest.mark.asyncio
async def test_collaboration_all_failed_falls_back(agents, mock_client):
    mock_client.script("mock-alpha", 400)
    mock_client.script("mock-beta", 400)

    task = await agents.wait(
        agents.start_agent("hi", options={"selected_models": ["mock-alpha", "mock-beta"]})
    )

    assert task.status == TaskStatus.COMPLETED
    assert task.result["content"] == offline_response("hi", "collaboration")
    assert task.result["content"].startswith("Agent (collaboration) response:")
    assert "details" not in task.result


@pytest.mark.asyncio
async def test_analysis_failure_is_logged(registry, dispatcher, mock_config):
    class BrokenAnalyzer:
        async def analyze(self, content, context) -> QualityAnalysis:
            raise RuntimeError("analyzer offline")

    manager = AgentTaskManager(registry, dispatcher, BrokenAnalyzer(), mock_config["agents"])
    task = await manager.wait(manager.start_agent("hi", options={"collaboration": True}))

    assert task.status == TaskStatus.COMPLETED
    assert "analysis" not in task.result
    assert any("Analysis failed: analyzer offline" in line for line in task.logs)


@pytest.mark.asyncio
async def test_timeout_marks_task_failed(registry, dispatcher, mock_client):
    mock_client.latency_ms = 500
    manager = AgentTaskManager(
        registry, dispatcher, NeutralQualityAnalyzer(), {"step_delay_ms": 0, "task_timeout_ms": 20}
    )

    task = await manager.wait(manager.start_agent("hi", model="mock-alpha"))

    assert task.status == TaskStatus.FAILED
    assert task.result == {"error": "Agent task timed out"}
    await manager.shutdown()


@pytest.mark.asyncio
async def test_finished_tasks_are_pruned(registry, dispatcher):
    manager = AgentTaskManager(
        registry, dispatcher, NeutralQualityAnalyzer(), {"step_delay_ms": 0, "max_tasks": 2}
    )
    first = manager.start_agent("one")
    await manager.wait(first)
    await manager.wait(manager.start_agent("two"))
    third = manager.start_agent("three")

    assert manager.get_task(first) is None
    assert manager.get_task(third) is not None
    await manager.wait(third)
