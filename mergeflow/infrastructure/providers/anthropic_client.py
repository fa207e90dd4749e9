"""Anthropic Messages API client."""

from typing import Dict, Any, List, Tuple

from .base import HTTPProviderClient
from mergeflow.core.exceptions import AuthenticationError, ProviderHTTPError, ProviderResponseError
from mergeflow.core.models import ModelDescriptor
from mergeflow.utils.logger import get_logger

logger = get_logger(__name__)

# The Messages API has no discovery endpoint.
STATIC_MODELS = [
    ("claude-3-5-sonnet-20241022", "Claude 3.5 Sonnet", "Most intelligent model, highest capability"),
    ("claude-3-5-haiku-20241022", "Claude 3.5 Haiku", "Fastest and most cost-effective model"),
    ("claude-3-opus-20240229", "Claude 3 Opus", "Powerful model for complex tasks"),
    ("claude-3-sonnet-20240229", "Claude 3 Sonnet", "Balanced performance and speed"),
    ("claude-3-haiku-20240307", "Claude 3 Haiku", "Fast and cost-effective"),
]

VALIDATION_MODEL = "claude-3-haiku-20240307"


class AnthropicProviderClient(HTTPProviderClient):
    """Client for the Anthropic Messages API."""

    provider = "anthropic"

    def __init__(self, config: Dict[str, Any]):
        super().__init__(config)
        self.base_url = self.base_url or "https://api.anthropic.com/v1"
        self.api_version = config.get("api_version", "2023-06-01")

    def _headers(self) -> Dict[str, str]:
        return {
            "x-api-key": self.api_key or "",
            "anthropic-version": self.api_version,
            "Content-Type": "application/json",
        }

    async def _complete(
        self,
        model_id: str,
        prompt: str,
        max_tokens: int,
        temperature: float,
        timeout: float,
    ) -> Tuple[str, Dict[str, Any]]:
        data = await self._request(
            "POST",
            f"{self.base_url}/messages",
            timeout,
            payload={
                "model": model_id,
                "max_tokens": max_tokens,
                "temperature": temperature,
                "messages": [{"role": "user", "content": prompt}],
            },
        )
        parts = data.get("content") or []
        content = "\n".join(p.get("text", "") for p in parts if p.get("text"))
        if not content:
            raise ProviderResponseError("Invalid response format from Anthropic API")
        return content, data.get("usage") or {}

    async def list_models(self) -> List[ModelDescriptor]:
        try:
            await self._request(
                "POST",
                f"{self.base_url}/messages",
                10.0,
                payload={
                    "model": VALIDATION_MODEL,
                    "max_tokens": 1,
                    "messages": [{"role": "user", "content": "Hi"}],
                },
            )
        except ProviderHTTPError as e:
            # A rate limit or overload still proves the key is accepted
            if e.status == 401:
                raise AuthenticationError("Invalid Anthropic API key")
            logger.warning(f"Anthropic key validation returned HTTP {e.status}; accepting key")

        return [
            ModelDescriptor(
                model_id=model_id,
                provider=self.provider,
                name=name,
                description=description,
                capabilities=["messages"],
                context_length=200000,
            )
            for model_id, name, description in STATIC_MODELS
        ]
