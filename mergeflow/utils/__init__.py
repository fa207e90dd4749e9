"""Configuration and logging helpers."""

from .config import load_config, get_config_value, Config
from .logger import get_logger, setup_logging, log_context

__all__ = ['load_config', 'get_config_value', 'Config', 'get_logger', 'setup_logging', 'log_context']
