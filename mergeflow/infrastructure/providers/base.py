"""Base provider client implementation."""

import asyncio
import time
from abc import ABC, abstractmethod
from typing import Dict, Any, List, Optional, Tuple

import aiohttp

from mergeflow.core.exceptions import (
    ProviderHTTPError,
    ProviderNetworkError,
    ProviderResponseError,
)
from mergeflow.core.models import ErrorKind, ModelCallResult, ModelDescriptor
from mergeflow.utils.logger import get_logger

logger = get_logger(__name__)


def classify_status(status: int) -> Tuple[ErrorKind, bool]:
    """Map an HTTP status to an error kind and whether it may be retried."""
    if status == 429:
        return ErrorKind.RATE_LIMIT, True
    if status >= 500:
        return ErrorKind.SERVER_ERROR, True
    if status in (401, 403):
        return ErrorKind.AUTH_ERROR, False
    return ErrorKind.CLIENT_ERROR, False


def parse_retry_after(value: Optional[str]) -> Optional[int]:
    """Retry-After header (seconds) to milliseconds."""
    if value is None:
        return None
    try:
        return int(float(value) * 1000)
    except (TypeError, ValueError):
        return None


class BaseProviderClient(ABC):
    """Base class for provider clients.

    ``call`` never raises for provider failures: every error is classified
    into a failed :class:`ModelCallResult` so the dispatcher can decide about
    retries.
    """

    provider = "unknown"

    def __init__(self, config: Dict[str, Any]):
        self.config = config
        self.api_key = config.get("api_key")
        self.base_url = (config.get("base_url") or "").rstrip("/")
        self.max_tokens = config.get("max_tokens", 2048)
        self.temperature = config.get("temperature", 0.7)
        self.timeout = config.get("timeout_ms", 30000) / 1000.0

    async def call(
        self,
        model_id: str,
        prompt: str,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        timeout: Optional[float] = None,
    ) -> ModelCallResult:
        """Call one model once and classify the outcome."""
        start_time = time.monotonic()
        max_tokens = max_tokens or self.max_tokens
        temperature = self.temperature if temperature is None else temperature
        timeout = timeout or self.timeout

        logger.debug(
            f"Calling {self.provider} model {model_id}",
            extra={"model_id": model_id, "prompt_length": len(prompt)},
        )

        try:
            content, usage = await asyncio.wait_for(
                self._complete(model_id, prompt, max_tokens, temperature, timeout),
                timeout=timeout,
            )
            return ModelCallResult(
                model_id=model_id,
                success=True,
                content=content,
                response_time_ms=self._elapsed_ms(start_time),
                usage=usage,
            )

        except ProviderHTTPError as e:
            kind, retryable = classify_status(e.status)
            logger.warning(
                f"{self.provider} model {model_id} failed with {kind.value}",
                extra={"model_id": model_id, "error_kind": kind.value},
            )
            return ModelCallResult(
                model_id=model_id,
                success=False,
                response_time_ms=self._elapsed_ms(start_time),
                error_kind=kind,
                retryable=retryable,
                message=e.message or str(e),
                retry_after_ms=e.retry_after_ms if kind == ErrorKind.RATE_LIMIT else None,
                http_status=e.status,
            )

        except (
            asyncio.TimeoutError,
            aiohttp.ClientError,
            ProviderNetworkError,
            ProviderResponseError,
            OSError,
        ) as e:
            message = str(e) or type(e).__name__
            logger.warning(
                f"{self.provider} model {model_id} network failure: {message}",
                extra={"model_id": model_id, "error_kind": ErrorKind.NETWORK_ERROR.value},
            )
            return ModelCallResult(
                model_id=model_id,
                success=False,
                response_time_ms=self._elapsed_ms(start_time),
                error_kind=ErrorKind.NETWORK_ERROR,
                retryable=True,
                message=message,
            )

    @staticmethod
    def _elapsed_ms(start_time: float) -> int:
        return int((time.monotonic() - start_time) * 1000)

    @abstractmethod
    async def _complete(
        self,
        model_id: str,
        prompt: str,
        max_tokens: int,
        temperature: float,
        timeout: float,
    ) -> Tuple[str, Dict[str, Any]]:
        """Return (content, usage) or raise a provider error."""
        pass

    @abstractmethod
    async def list_models(self) -> List[ModelDescriptor]:
        """Validate the credential and discover models."""
        pass

    async def shutdown(self) -> None:
        """Cleanup resources."""


class HTTPProviderClient(BaseProviderClient):
    """Provider client speaking JSON over a shared aiohttp session."""

    def __init__(self, config: Dict[str, Any]):
        super().__init__(config)
        self.session: Optional[aiohttp.ClientSession] = None

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession()
        return self.session

    def _headers(self) -> Dict[str, str]:
        return {"Content-Type": "application/json"}

    async def _request(
        self,
        method: str,
        url: str,
        timeout: float,
        payload: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        session = await self._ensure_session()
        async with session.request(
            method,
            url,
            json=payload,
            params=params,
            headers=self._headers(),
            timeout=aiohttp.ClientTimeout(total=timeout),
        ) as response:
            if response.status >= 400:
                raise ProviderHTTPError(
                    response.status,
                    await self._error_message(response),
                    parse_retry_after(response.headers.get("Retry-After")),
                )
            try:
                return await response.json(content_type=None)
            except ValueError as e:
                raise ProviderResponseError(f"Invalid JSON from {self.provider}: {e}")

    @staticmethod
    async def _error_message(response: aiohttp.ClientResponse) -> str:
        try:
            body = await response.json(content_type=None)
            error = body.get("error") if isinstance(body, dict) else None
            if isinstance(error, dict):
                return str(error.get("message", error))
            if error:
                return str(error)
            return str(body)[:500]
        except (ValueError, aiohttp.ClientError):
            return (await response.text())[:500]

    async def shutdown(self) -> None:
        if self.session is not None and not self.session.closed:
            await self.session.close()
        self.session = None


def format_model_name(name: str) -> str:
    """Display name from a raw model id."""
    if not isinstance(name, str) or not name:
        return "Unknown Model"
    for prefix in ("openai/", "google/", "anthropic/", "models/"):
        if name.startswith(prefix):
            name = name[len(prefix):]
    parts = name.replace("_", "-").split("-")
    return " ".join(part[:1].upper() + part[1:] for part in parts if part)
