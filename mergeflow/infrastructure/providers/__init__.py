"""Model provider client implementations."""

import re
from typing import Dict, Any, Optional

from mergeflow.core.exceptions import UnknownProviderError
from .base import BaseProviderClient, HTTPProviderClient, classify_status
from .openai_client import OpenAIProviderClient, OpenRouterProviderClient
from .anthropic_client import AnthropicProviderClient
from .google_client import GoogleProviderClient
from .mock_client import MockProviderClient

PROVIDER_CLIENTS = {
    "openai": OpenAIProviderClient,
    "openrouter": OpenRouterProviderClient,
    "anthropic": AnthropicProviderClient,
    "google": GoogleProviderClient,
    "mock": MockProviderClient,
}

PROVIDER_NAMES = {
    "openai": "OpenAI",
    "openrouter": "OpenRouter",
    "anthropic": "Anthropic",
    "google": "Google AI",
    "mock": "Mock",
}

# Tried in this order when the key format does not reveal the provider
DISCOVERY_ORDER = ["openai", "google", "anthropic", "openrouter"]


def detect_provider(api_key: Optional[str]) -> Optional[str]:
    """Guess the provider family from the API key format."""
    if not api_key or not isinstance(api_key, str):
        return None
    if api_key.startswith("sk-ant-"):
        return "anthropic"
    if api_key.startswith("sk-or-"):
        return "openrouter"
    if api_key.startswith("sk-"):
        return "openai"
    if re.fullmatch(r"[A-Za-z0-9_\-]{39}", api_key):
        return "google"
    return None


def create_provider_client(provider: str, config: Dict[str, Any]) -> BaseProviderClient:
    """
    Factory function to create provider clients.

    Args:
        provider: Provider family name
        config: Client configuration (api_key, base_url, timeouts, ...)

    Returns:
        Provider client instance

    Raises:
        UnknownProviderError: If the provider family is unknown
    """
    client_cls = PROVIDER_CLIENTS.get(provider)
    if client_cls is None:
        raise UnknownProviderError(f"Unknown provider: {provider}")
    return client_cls(config)


__all__ = [
    "create_provider_client",
    "detect_provider",
    "classify_status",
    "BaseProviderClient",
    "HTTPProviderClient",
    "OpenAIProviderClient",
    "OpenRouterProviderClient",
    "AnthropicProviderClient",
    "GoogleProviderClient",
    "MockProviderClient",
    "PROVIDER_NAMES",
    "DISCOVERY_ORDER",
]
