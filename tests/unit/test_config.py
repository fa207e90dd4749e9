"""Unit tests for configuration loading and metrics collection."""

import pytest
import yaml

from mergeflow.core.exceptions import ConfigurationError
from mergeflow.infrastructure.observability import MetricsCollector
from mergeflow.utils.config import Config, load_config


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "settings.yaml"
    path.write_text(
        yaml.dump(
            {
                "api": {"port": 8000},
                "models": {"max_retries": 3},
                "cache": {"provider": "memory"},
                "queue": {},
                "ml": {},
            }
        )
    )
    yield str(path)
    load_config.cache_clear()


def test_load_config_with_env_overrides(config_file, monkeypatch):
    monkeypatch.setenv("MERGEFLOW_API_PORT", "9100")
    monkeypatch.setenv("MERGEFLOW_ANTHROPIC_API_KEY", "sk-ant-test")
    load_config.cache_clear()

    config = load_config(config_file)

    assert config["api"]["port"] == 9100
    assert config["providers"]["anthropic"]["api_key"] == "sk-ant-test"
    assert Config(config).models.max_retries == 3


def test_missing_sections_rejected(tmp_path):
    path = tmp_path / "broken.yaml"
    path.write_text(yaml.dump({"api": {}}))

    with pytest.raises(ConfigurationError):
        load_config(str(path))
    load_config.cache_clear()


def test_missing_file_rejected(tmp_path):
    with pytest.raises(ConfigurationError):
        load_config(str(tmp_path / "absent.yaml"))
    load_config.cache_clear()


def test_metrics_collector():
    metrics = MetricsCollector({"metrics_enabled": True})

    metrics.record_model_call("mock-alpha", True, 120)
    metrics.record_model_call("mock-alpha", False, 80, "SERVER_ERROR")
    metrics.record_dispatch(2, 1, 150, False)
    snapshot = metrics.get_metrics()

    assert snapshot["model_calls{model=mock-alpha,status=success}_total"] == 1
    assert snapshot["model_calls{model=mock-alpha,status=SERVER_ERROR}_total"] == 1
    assert snapshot["model_latency_ms{model=mock-alpha}_avg"] == 100
    assert snapshot["last_dispatch_success_rate"] == 0.5
    assert "uptime_seconds" in snapshot


def test_disabled_metrics_record_nothing():
    metrics = MetricsCollector({"metrics_enabled": False})
    metrics.record_job("evaluation", "completed", 10)
    assert set(metrics.get_metrics()) == {"uptime_seconds"}


def test_learning_metrics():
    metrics = MetricsCollector({})

    metrics.record_model_call("mock-beta", True, 50, tokens=42)
    metrics.record_feedback(5)
    metrics.record_feedback(3)
    metrics.record_retrain(True, {"mock-alpha": 0.25, "mock-beta": 0.75})
    snapshot = metrics.get_metrics()

    assert snapshot["model_tokens{model=mock-beta}_total"] == 42
    assert snapshot["feedback{rating=5}_total"] == 1
    assert snapshot["feedback_rating_avg"] == 4
    assert snapshot["meta_model_retrains{refit=true}_total"] == 1
    assert snapshot["meta_model_weight{model=mock-beta}"] == 0.75


def test_histogram_window_is_bounded():
    metrics = MetricsCollector({"histogram_window": 10})

    for latency in range(100):
        metrics.record_job("evaluation", "completed", latency)
    snapshot = metrics.get_metrics()

    assert snapshot["job_duration_ms{queue=evaluation}_count"] == 10
    assert snapshot["job_duration_ms{queue=evaluation}_min"] == 90
    assert snapshot["job_duration_ms{queue=evaluation}_p95"] == 99


@pytest.mark.parametrize(
    "section, values, problem",
    [
        ("queue", {"evaluation": {"backoff": {"type": "linear"}}}, "backoff.type"),
        ("queue", {"query_processing": {"concurrency": 0}}, "concurrency"),
        ("ml", {"min_examples": 20, "max_examples": 5}, "min_examples"),
        ("cache", {"provider": "memcached"}, "cache.provider"),
    ],
)
def test_invalid_settings_rejected(tmp_path, section, values, problem):
    settings = {"models": {}, "cache": {}, "queue": {}, "ml": {}}
    settings[section] = values
    path = tmp_path / "settings.yaml"
    path.write_text(yaml.dump(settings))

    with pytest.raises(ConfigurationError, match=problem):
        load_config(str(path))
    load_config.cache_clear()


def test_invalid_env_override(config_file, monkeypatch):
    monkeypatch.setenv("MERGEFLOW_REDIS_PORT", "not-a-port")
    load_config.cache_clear()

    with pytest.raises(ConfigurationError, match="MERGEFLOW_REDIS_PORT"):
        load_config(config_file)
