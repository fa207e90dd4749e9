"""Integration tests for API endpoints."""

import time

import pytest
from fastapi.testclient import TestClient

from mergeflow.api.dependencies import build_services, set_services
from mergeflow.api.main import app


@pytest.fixture
def app_services(mock_config, cache, mock_client, knowledge):
    """Unstarted services; the app lifespan starts them on its own loop."""
    services = build_services(
        mock_config, cache=cache, clients=[(mock_client, None)], knowledge=knowledge
    )
    set_services(services)
    yield services
    set_services(None)


@pytest.fixture
def test_client(app_services):
    with TestClient(app) as client:
        yield client


def poll(client, url, until=lambda r: r.status_code != 202, timeout=5.0):
    deadline = time.monotonic() + timeout
    while True:
        response = client.get(url)
        if until(response) or time.monotonic() >= deadline:
            return response
        time.sleep(0.02)


def submit(client, query="What is a mock answer?", **options):
    response = client.post("/api/v1/queries", json={"query": query, "options": options})
    assert response.status_code == 202
    return response.json()


def test_health_endpoint(test_client):
    response = test_client.get("/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["services"]["models"] == "2"
    assert "version" in data


def test_query_lifecycle(test_client):
    submitted = submit(test_client)
    query_id = submitted["query_id"]
    assert submitted["status"] == "queued"
    assert submitted["links"]["result"] == f"/api/v1/queries/{query_id}"

    response = poll(test_client, f"/api/v1/queries/{query_id}")
    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["result"]["primary_model"] in {"mock-alpha", "mock-beta"}
    assert "mock" in data["result"]["content"]
    assert data["metadata"]["model_responses"] == 2
    assert set(data["evaluation"]["metrics"]) == {
        "accuracy", "coherence", "clarity", "completeness", "relevance",
    }

    status = test_client.get(f"/api/v1/queries/{query_id}/status").json()
    assert status["status"] == "completed"


def test_selected_model_is_honoured(test_client):
    query_id = submit(test_client, selected_models=["mock-beta"])["query_id"]

    data = poll(test_client, f"/api/v1/queries/{query_id}").json()

    assert data["result"]["primary_model"] == "mock-beta"
    assert data["metadata"]["model_responses"] == 1


def test_failed_query_reports_error(test_client, mock_client):
    for model_id in ("mock-alpha", "mock-beta"):
        mock_client.script(model_id, 400, 400)

    query_id = submit(test_client)["query_id"]
    response = poll(test_client, f"/api/v1/queries/{query_id}")

    assert response.status_code == 500
    assert response.json()["detail"]["error"] == "Processing Failed"


def test_unknown_query(test_client):
    assert test_client.get("/api/v1/queries/missing").status_code == 404
    assert test_client.get("/api/v1/queries/missing/status").status_code == 404


def test_query_validation_error(test_client):
    assert test_client.post("/api/v1/queries", json={"query": "   "}).status_code == 422
    response = test_client.post(
        "/api/v1/queries", json={"query": "Test query", "options": {"temperature": 3.0}}
    )
    assert response.status_code == 422
    response = test_client.post(
        "/api/v1/queries", json={"query": "Test query", "options": {"priority": 11}}
    )
    assert response.status_code == 422


def test_feedback(test_client, app_services):
    query_id = submit(test_client)["query_id"]
    poll(test_client, f"/api/v1/queries/{query_id}")

    response = test_client.post(
        f"/api/v1/queries/{query_id}/feedback",
        json={"rating": 5, "feedback": "helpful", "aspects": {"clarity": 4}},
    )
    assert response.status_code == 200
    assert response.json()["success"] is True

    assert test_client.post(
        f"/api/v1/queries/{query_id}/feedback", json={"rating": 0}
    ).status_code == 422
    assert test_client.post(
        "/api/v1/queries/missing/feedback", json={"rating": 3}
    ).status_code == 404

    deadline = time.monotonic() + 5
    while not app_services.meta_model.training_data and time.monotonic() < deadline:
        time.sleep(0.02)
    assert app_services.meta_model.training_data[0].target == 1.0


def test_agent_task(test_client):
    response = test_client.post(
        "/api/v1/agents", json={"message": "Explain mocks", "options": {"collaboration": True}}
    )
    assert response.status_code == 202
    task_id = response.json()["task_id"]

    task = poll(
        test_client,
        f"/api/v1/agents/{task_id}",
        until=lambda r: r.json()["status"] != "processing",
    ).json()

    assert task["status"] == "completed"
    assert task["result"]["models"] == ["mock-alpha", "mock-beta"]
    assert task["logs"][-1].endswith("Done.")
    assert test_client.get("/api/v1/agents/unknown").status_code == 404


def test_models_and_performance(test_client):
    models = test_client.get("/api/v1/models").json()
    assert models["total"] == 2
    assert {m["model_id"] for m in models["models"]} == {"mock-alpha", "mock-beta"}

    performance = test_client.get("/api/v1/models/performance").json()
    assert performance["mock-alpha"]["success_rate"] == 0.8

    assert test_client.post("/api/v1/models/performance/reset").json()["success"] is True

    stats = test_client.get("/api/v1/meta-model").json()
    assert stats["weights"] == {"mock-alpha": 0.5, "mock-beta": 0.5}


def test_credentials(test_client, app_services):
    response = test_client.delete("/api/v1/models/credentials/mock")
    assert response.json() == {"provider": "mock", "models_removed": 2}
    assert test_client.get("/api/v1/models").json()["total"] == 0
    assert app_services.meta_model.weights == {}
    assert test_client.delete("/api/v1/models/credentials/mock").status_code == 404

    response = test_client.post(
        "/api/v1/models/credentials", json={"api_key": "test-key", "provider": "mock"}
    )
    assert response.status_code == 200
    assert response.json()["models_discovered"] == 2
    assert app_services.meta_model.weights == {"mock-alpha": 0.5, "mock-beta": 0.5}

    response = test_client.post(
        "/api/v1/models/credentials", json={"api_key": "test-key", "provider": "telegraph"}
    )
    assert response.status_code == 400


def test_rejected_credential(mock_config, cache, mock_client, knowledge):
    mock_config["providers"]["mock"]["valid"] = False
    services = build_services(
        mock_config, cache=cache, clients=[(mock_client, None)], knowledge=knowledge
    )
    set_services(services)
    try:
        with TestClient(app) as client:
            response = client.post(
                "/api/v1/models/credentials", json={"api_key": "bad", "provider": "mock"}
            )
        assert response.status_code == 401
        assert response.json()["detail"]["error"] == "Authentication Failed"
    finally:
        set_services(None)


def test_queue_control(test_client):
    assert set(test_client.get("/api/v1/queues").json()) == {
        "query_processing", "model_training", "knowledge_enhancement", "evaluation",
    }

    assert test_client.post("/api/v1/queues/query_processing/pause").json()["success"] is True
    query_id = submit(test_client)["query_id"]
    response = test_client.get(f"/api/v1/queries/{query_id}")
    assert response.status_code == 202
    assert response.json()["status"] == "waiting"

    cleared = test_client.post("/api/v1/queues/query_processing/clear").json()
    assert cleared["removed"] == 1
    assert test_client.post("/api/v1/queues/query_processing/resume").status_code == 200

    assert test_client.post("/api/v1/queues/nope/pause").status_code == 404
    assert test_client.post("/api/v1/queues/evaluation/explode").status_code == 400


def test_metrics_endpoint(test_client):
    query_id = submit(test_client)["query_id"]
    poll(test_client, f"/api/v1/queries/{query_id}")

    metrics = test_client.get("/metrics").json()

    assert metrics["model_calls{model=mock-alpha,status=success}_total"] >= 1
    assert "uptime_seconds" in metrics
