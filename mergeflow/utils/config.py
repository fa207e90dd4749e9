"""Configuration loading: YAML settings plus MERGEFLOW_* environment overrides."""

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import yaml

from mergeflow.core.exceptions import ConfigurationError

REQUIRED_SECTIONS = ["models", "cache", "queue", "ml"]

QUEUE_NAMES = ["query_processing", "model_training", "knowledge_enhancement", "evaluation"]
BACKOFF_TYPES = {"fixed", "exponential"}
CACHE_PROVIDERS = {"memory", "redis"}

# env var -> (config path, converter)
ENV_OVERRIDES: Dict[str, Tuple[Tuple[str, ...], Callable[[str], Any]]] = {
    "MERGEFLOW_API_HOST": (("api", "host"), str),
    "MERGEFLOW_API_PORT": (("api", "port"), int),
    "MERGEFLOW_CACHE_PROVIDER": (("cache", "provider"), str),
    "MERGEFLOW_REDIS_HOST": (("cache", "host"), str),
    "MERGEFLOW_REDIS_PORT": (("cache", "port"), int),
    "MERGEFLOW_REDIS_URL": (("cache", "url"), str),
    "MERGEFLOW_MODEL_TIMEOUT_MS": (("models", "timeout_ms"), int),
    "MERGEFLOW_MAX_RETRIES": (("models", "max_retries"), int),
    "MERGEFLOW_ML_MODEL_PATH": (("ml", "model_path"), str),
    "MERGEFLOW_LOG_LEVEL": (("logging", "level"), str),
}

PROVIDER_KEY_ENV = {
    "openai": "MERGEFLOW_OPENAI_API_KEY",
    "anthropic": "MERGEFLOW_ANTHROPIC_API_KEY",
    "google": "MERGEFLOW_GOOGLE_API_KEY",
    "openrouter": "MERGEFLOW_OPENROUTER_API_KEY",
}


def _candidate_paths() -> List[Path]:
    return [
        Path("config/settings.yaml"),
        Path("/etc/mergeflow/settings.yaml"),
        Path.home() / ".mergeflow" / "settings.yaml",
        Path(__file__).parent.parent.parent / "config" / "settings.yaml",
    ]


@lru_cache(maxsize=1)
def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load and validate the settings file.

    The file is ``config_path``, else ``$MERGEFLOW_CONFIG``, else the first
    of the candidate locations that exists. Environment overrides are
    applied before validation.

    Raises:
        ConfigurationError: If no file is found, it is not valid YAML, or
            the settings fail validation
    """
    config_path = config_path or os.getenv("MERGEFLOW_CONFIG")
    if config_path is None:
        found = next((p for p in _candidate_paths() if p.exists()), None)
        if found is None:
            raise ConfigurationError(
                f"No configuration file found in: {[str(p) for p in _candidate_paths()]}"
            )
        config_path = str(found)

    try:
        with open(config_path, "r") as f:
            config = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e
    except OSError as e:
        raise ConfigurationError(f"Cannot read config file {config_path}: {e}") from e

    if not isinstance(config, dict):
        raise ConfigurationError(f"Config file {config_path} must contain a mapping")

    config = apply_env_overrides(config)
    validate_config(config)
    return config


def apply_env_overrides(config: Dict[str, Any]) -> Dict[str, Any]:
    """Apply MERGEFLOW_* variables; provider keys come only from the environment."""
    for env_var, (path, convert) in ENV_OVERRIDES.items():
        raw = os.getenv(env_var)
        if raw is None:
            continue
        try:
            value = convert(raw)
        except ValueError as e:
            raise ConfigurationError(f"{env_var} has an invalid value: {raw!r}") from e

        section = config
        for key in path[:-1]:
            section = section.setdefault(key, {})
        section[path[-1]] = value

    providers = config.setdefault("providers", {})
    for provider, env_var in PROVIDER_KEY_ENV.items():
        api_key = os.getenv(env_var)
        if api_key:
            providers.setdefault(provider, {})["api_key"] = api_key

    return config


def validate_config(config: Dict[str, Any]) -> None:
    """Reject settings the queue, cache and meta-model cannot run with."""
    missing = [s for s in REQUIRED_SECTIONS if s not in config]
    if missing:
        raise ConfigurationError(f"Missing required config sections: {missing}")

    problems = []

    provider = config["cache"].get("provider", "memory")
    if provider not in CACHE_PROVIDERS:
        problems.append(f"cache.provider must be one of {sorted(CACHE_PROVIDERS)}")

    for name in QUEUE_NAMES:
        settings = config["queue"].get(name) or {}
        for field in ("concurrency", "attempts"):
            if field in settings and int(settings[field]) < 1:
                problems.append(f"queue.{name}.{field} must be at least 1")
        backoff_type = (settings.get("backoff") or {}).get("type", "fixed")
        if backoff_type not in BACKOFF_TYPES:
            problems.append(f"queue.{name}.backoff.type must be one of {sorted(BACKOFF_TYPES)}")

    ml = config["ml"]
    if ml.get("learning_rate", 0.01) <= 0:
        problems.append("ml.learning_rate must be positive")
    if ml.get("min_examples", 10) > ml.get("max_examples", 1000):
        problems.append("ml.min_examples cannot exceed ml.max_examples")

    if config["models"].get("max_retries", 3) < 1:
        problems.append("models.max_retries must be at least 1")

    if problems:
        raise ConfigurationError("Invalid configuration: " + "; ".join(problems))


def get_config_value(path: str, default: Any = None) -> Any:
    """Dot-path lookup, e.g. ``get_config_value('queue.evaluation.attempts')``."""
    value: Any = load_config()
    for key in path.split("."):
        if not isinstance(value, dict) or key not in value:
            return default
        value = value[key]
    return value


class Config:
    """Read-only attribute view over a configuration dictionary."""

    def __init__(self, config_dict: Optional[Dict[str, Any]] = None):
        self._config = load_config() if config_dict is None else config_dict

    def __getattr__(self, name: str) -> Any:
        try:
            value = self._config[name]
        except KeyError:
            raise AttributeError(f"Config has no attribute '{name}'") from None
        return Config(value) if isinstance(value, dict) else value

    def get(self, name: str, default: Any = None) -> Any:
        return self._config.get(name, default)
