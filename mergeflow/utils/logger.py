"""Structured logging for MergeFlow."""

import json
import logging
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

from mergeflow.core.exceptions import ConfigurationError
from .config import get_config_value

# Correlation fields; set per record via ``extra=`` or per task via ``log_context``
EXTRA_FIELDS = (
    "model_id",
    "request_id",
    "query_id",
    "job_id",
    "queue",
    "task_id",
    "latency_ms",
    "attempt",
    "error_kind",
    "success",
)

SIZE_UNITS = {"KB": 1024, "MB": 1024**2, "GB": 1024**3}

_context: ContextVar[Dict[str, Any]] = ContextVar("mergeflow_log_context", default={})


@contextmanager
def log_context(**fields: Any) -> Iterator[None]:
    """Attach correlation fields to every record logged by the current task.

    Scoped with ``contextvars``, so concurrent queue workers and agent
    tasks never see each other's fields.
    """
    token = _context.set({**_context.get(), **fields})
    try:
        yield
    finally:
        _context.reset(token)


class ContextFilter(logging.Filter):
    """Copies ``log_context`` fields onto records that do not set them."""

    def filter(self, record: logging.LogRecord) -> bool:
        for name, value in _context.get().items():
            if not hasattr(record, name):
                setattr(record, name, value)
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.utcnow().isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        entry.update(
            {name: getattr(record, name) for name in EXTRA_FIELDS if hasattr(record, name)}
        )
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def _setting(path: str, default: Any) -> Any:
    # Logging must come up even when the settings file is absent or invalid
    try:
        return get_config_value(path, default)
    except ConfigurationError:
        return default


def _parse_size(size: str, default: int = 20 * 1024**2) -> int:
    size = size.strip().upper()
    for unit, multiplier in SIZE_UNITS.items():
        if size.endswith(unit) and size[:-2].strip().isdigit():
            return int(size[:-2]) * multiplier
    return int(size) if size.isdigit() else default


def setup_logging(
    level: Optional[str] = None,
    fmt: Optional[str] = None,
    log_file: Optional[str] = None,
) -> None:
    """Configure the root logger; arguments override the ``logging`` settings."""
    level_name = str(level or _setting("logging.level", "INFO")).upper()
    fmt = fmt or _setting("logging.format", "json")
    log_file = log_file if log_file is not None else _setting("logging.file", "logs/mergeflow.log")
    max_bytes = _parse_size(str(_setting("logging.max_size", "20MB")))
    backup_count = int(_setting("logging.backup_count", 5))

    numeric_level = getattr(logging, level_name, logging.INFO)
    formatter: logging.Formatter = (
        JsonFormatter()
        if fmt == "json"
        else logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    )

    handlers = [logging.StreamHandler()]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(RotatingFileHandler(log_file, maxBytes=max_bytes, backupCount=backup_count))

    root = logging.getLogger()
    root.setLevel(numeric_level)
    root.handlers.clear()
    for handler in handlers:
        handler.setLevel(numeric_level)
        handler.setFormatter(formatter)
        handler.addFilter(ContextFilter())
        root.addHandler(handler)

    for noisy in ("aiohttp", "asyncio", "httpx", "openai", "redis"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Logger for ``name``, configuring the root logger on first use."""
    if not logging.getLogger().handlers:
        setup_logging()
    return logging.getLogger(name)
