"""OpenAI-compatible provider clients (OpenAI, OpenRouter)."""

from typing import Dict, Any, List, Optional, Tuple

import openai
from openai import AsyncOpenAI

from .base import BaseProviderClient, format_model_name, parse_retry_after
from mergeflow.core.exceptions import (
    ProviderHTTPError,
    ProviderNetworkError,
    ProviderResponseError,
)
from mergeflow.core.models import ModelDescriptor
from mergeflow.utils.logger import get_logger

logger = get_logger(__name__)

OPENAI_CONTEXT_LENGTHS = {
    "gpt-4-turbo-preview": 128000,
    "gpt-4-turbo": 128000,
    "gpt-4o": 128000,
    "gpt-4o-mini": 128000,
    "gpt-4": 8192,
    "gpt-4-32k": 32768,
    "gpt-3.5-turbo": 16385,
    "gpt-3.5-turbo-16k": 16385,
    "o1-preview": 128000,
    "o1-mini": 128000,
}


class OpenAIProviderClient(BaseProviderClient):
    """Chat-completions client built on the OpenAI SDK.

    SDK retries are disabled; retry policy belongs to the dispatcher.
    """

    provider = "openai"
    default_base_url = "https://api.openai.com/v1"

    def __init__(self, config: Dict[str, Any]):
        super().__init__(config)
        self.base_url = self.base_url or self.default_base_url
        self.organization = config.get("organization")
        self.client: Optional[AsyncOpenAI] = None

    def _default_headers(self) -> Dict[str, str]:
        return {}

    def _ensure_client(self) -> AsyncOpenAI:
        if self.client is None:
            self.client = AsyncOpenAI(
                api_key=self.api_key,
                organization=self.organization,
                base_url=self.base_url,
                max_retries=0,
                timeout=self.timeout,
                default_headers=self._default_headers() or None,
            )
        return self.client

    async def _complete(
        self,
        model_id: str,
        prompt: str,
        max_tokens: int,
        temperature: float,
        timeout: float,
    ) -> Tuple[str, Dict[str, Any]]:
        client = self._ensure_client()
        try:
            response = await client.chat.completions.create(
                model=model_id,
                messages=[{"role": "user", "content": prompt}],
                max_tokens=max_tokens,
                temperature=temperature,
                stream=False,
                timeout=timeout,
            )
        except openai.APIStatusError as e:
            raise ProviderHTTPError(
                e.status_code,
                e.message,
                parse_retry_after(e.response.headers.get("retry-after")),
            )
        except openai.APIConnectionError as e:
            raise ProviderNetworkError(str(e))

        if not response.choices:
            raise ProviderResponseError(f"Invalid response format from {self.provider}")

        content = response.choices[0].message.content or ""
        if not content:
            raise ProviderResponseError(f"Empty completion from {self.provider}")

        usage = response.usage.model_dump() if response.usage else {}
        return content, usage

    async def list_models(self) -> List[ModelDescriptor]:
        client = self._ensure_client()
        try:
            page = await client.models.list()
        except openai.APIStatusError as e:
            raise ProviderHTTPError(e.status_code, e.message)
        except openai.APIConnectionError as e:
            raise ProviderNetworkError(str(e))

        models = [self._describe(model) for model in page.data if self._accepts(model.id)]
        logger.info(f"Discovered {len(models)} models from {self.provider}")
        return models

    def _accepts(self, model_id: str) -> bool:
        return bool(model_id) and any(tag in model_id for tag in ("gpt", "davinci", "o1"))

    def _describe(self, model: Any) -> ModelDescriptor:
        return ModelDescriptor(
            model_id=model.id,
            provider=self.provider,
            name=format_model_name(model.id),
            description=f"OpenAI {model.id} model",
            capabilities=["chat", "completion"],
            context_length=OPENAI_CONTEXT_LENGTHS.get(model.id, 4096),
        )

    async def shutdown(self) -> None:
        if self.client is not None:
            await self.client.close()
            self.client = None


class OpenRouterProviderClient(OpenAIProviderClient):
    """OpenRouter exposes the OpenAI chat-completions surface."""

    provider = "openrouter"
    default_base_url = "https://openrouter.ai/api/v1"
    max_discovered = 50

    def _default_headers(self) -> Dict[str, str]:
        headers = {}
        if self.config.get("referer"):
            headers["HTTP-Referer"] = self.config["referer"]
        if self.config.get("title"):
            headers["X-Title"] = self.config["title"]
        return headers

    async def list_models(self) -> List[ModelDescriptor]:
        models = await super().list_models()
        return models[: self.max_discovered]

    def _accepts(self, model_id: str) -> bool:
        return bool(model_id) and "deprecated" not in model_id

    def _describe(self, model: Any) -> ModelDescriptor:
        extra = model.model_extra or {}
        return ModelDescriptor(
            model_id=model.id,
            provider=self.provider,
            name=format_model_name(extra.get("name") or model.id),
            description=extra.get("description") or "",
            capabilities=["chat", "completion"],
            context_length=int(extra.get("context_length") or 4096),
        )
