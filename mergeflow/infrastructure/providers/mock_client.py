"""Mock provider client for testing and development."""

import asyncio
from collections import defaultdict, deque
from typing import Dict, Any, List, Tuple, Union

from .base import BaseProviderClient
from mergeflow.core.exceptions import AuthenticationError, ProviderHTTPError, ProviderNetworkError
from mergeflow.core.models import ModelDescriptor

# A scripted outcome: text to answer with, an HTTP status to fail with,
# {"status": 429, "retry_after_ms": 10}, "timeout", or an exception to raise.
Outcome = Union[str, int, Dict[str, Any], BaseException]


class MockProviderClient(BaseProviderClient):
    """Answers locally; outcomes can be scripted per model."""

    provider = "mock"

    def __init__(self, config: Dict[str, Any]):
        super().__init__(config)
        self.model_ids: List[str] = list(config.get("models", ["mock-alpha", "mock-beta"]))
        self.responses: Dict[str, str] = dict(config.get("responses", {}))
        self.latency_ms = config.get("latency_ms", 0)
        self.valid = config.get("valid", True)
        self.scripts: Dict[str, deque] = defaultdict(deque)
        for model_id, outcomes in config.get("script", {}).items():
            self.scripts[model_id].extend(outcomes)
        self.calls: List[Tuple[str, str]] = []

    def script(self, model_id: str, *outcomes: Outcome) -> None:
        """Queue outcomes for the next calls to ``model_id``."""
        self.scripts[model_id].extend(outcomes)

    def calls_for(self, model_id: str) -> int:
        return sum(1 for called, _ in self.calls if called == model_id)

    async def _complete(
        self,
        model_id: str,
        prompt: str,
        max_tokens: int,
        temperature: float,
        timeout: float,
    ) -> Tuple[str, Dict[str, Any]]:
        self.calls.append((model_id, prompt))
        if self.latency_ms:
            await asyncio.sleep(self.latency_ms / 1000.0)

        outcome = self.scripts[model_id].popleft() if self.scripts[model_id] else None

        if isinstance(outcome, BaseException):
            raise outcome
        if outcome == "timeout":
            raise ProviderNetworkError(f"Mock timeout for {model_id}")
        if isinstance(outcome, bool):
            outcome = None
        if isinstance(outcome, int):
            raise ProviderHTTPError(outcome, f"Mock HTTP {outcome}")
        if isinstance(outcome, dict):
            raise ProviderHTTPError(
                outcome["status"],
                outcome.get("message", f"Mock HTTP {outcome['status']}"),
                outcome.get("retry_after_ms"),
            )

        content = outcome if isinstance(outcome, str) else self._default_response(model_id, prompt)
        words = len(content.split())
        usage = {
            "prompt_tokens": len(prompt.split()),
            "completion_tokens": words,
            "total_tokens": words + len(prompt.split()),
        }
        return content, usage

    def _default_response(self, model_id: str, prompt: str) -> str:
        if model_id in self.responses:
            return self.responses[model_id]
        return (
            f"This is a mock answer from {model_id}. "
            f"It addresses the question about {prompt[:60]}."
        )

    async def list_models(self) -> List[ModelDescriptor]:
        if not self.valid:
            raise AuthenticationError("Mock credential rejected")
        return [
            ModelDescriptor(
                model_id=model_id,
                provider=self.provider,
                name=model_id.replace("-", " ").title(),
                description="Mock model",
                capabilities=["chat"],
                context_length=4096,
            )
            for model_id in self.model_ids
        ]
