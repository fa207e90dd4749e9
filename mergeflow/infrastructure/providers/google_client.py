"""Google Generative Language (Gemini) client."""

from typing import Dict, Any, List, Tuple
from urllib.parse import quote

from .base import HTTPProviderClient, format_model_name
from mergeflow.core.exceptions import ProviderResponseError
from mergeflow.core.models import ModelDescriptor


class GoogleProviderClient(HTTPProviderClient):
    """Client for the Gemini ``generateContent`` API."""

    provider = "google"

    def __init__(self, config: Dict[str, Any]):
        super().__init__(config)
        self.base_url = self.base_url or "https://generativelanguage.googleapis.com/v1"

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
            f"{self.base_url}/models/{quote(model_id, safe='')}:generateContent",
            timeout,
            payload={
                "contents": [{"role": "user", "parts": [{"text": prompt}]}],
                "generationConfig": {
                    "maxOutputTokens": max_tokens,
                    "temperature": temperature,
                },
            },
            params={"key": self.api_key or ""},
        )
        candidates = data.get("candidates") or []
        parts = (candidates[0].get("content") or {}).get("parts", []) if candidates else []
        content = "\n".join(p["text"] for p in parts if p.get("text"))
        if not content:
            raise ProviderResponseError("Invalid response format from Google API")
        return content, data.get("usageMetadata") or {}

    async def list_models(self) -> List[ModelDescriptor]:
        data = await self._request(
            "GET", f"{self.base_url}/models", 10.0, params={"key": self.api_key or ""}
        )
        models = []
        for model in data.get("models", []):
            methods = model.get("supportedGenerationMethods") or []
            if not model.get("name") or "generateContent" not in methods:
                continue
            display = model.get("displayName") or model["name"]
            models.append(
                ModelDescriptor(
                    model_id=model["name"].replace("models/", "", 1),
                    provider=self.provider,
                    name=format_model_name(display),
                    description=model.get("description") or f"Google {display} model",
                    capabilities=methods,
                    context_length=int(model.get("inputTokenLimit") or 32768),
                )
            )
        return models
