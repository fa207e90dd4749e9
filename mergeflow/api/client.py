"""API client for MergeFlow."""

import aiohttp
import asyncio
from typing import Dict, Any, List, Optional

from mergeflow.core.exceptions import APIClientError
from mergeflow.utils.logger import get_logger

logger = get_logger(__name__)

API_PREFIX = "/api/v1"


class APIClient:
    """Async HTTP client for the MergeFlow API."""

    def __init__(self, base_url: str = "http://localhost:8000", timeout: int = 30):
        self.base_url = base_url.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self):
        self.session = aiohttp.ClientSession(timeout=self.timeout)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def _ensure_session(self):
        if self.session is None:
            self.session = aiohttp.ClientSession(timeout=self.timeout)

    async def _request(
        self, method: str, path: str, payload: Optional[Dict[str, Any]] = None, accept=(200,)
    ) -> Dict[str, Any]:
        await self._ensure_session()
        url = f"{self.base_url}{path}"

        try:
            async with self.session.request(method, url, json=payload) as response:
                if response.status in accept:
                    return await response.json()
                error_text = await response.text()
                raise APIClientError(f"API error ({response.status}): {error_text}")

        except aiohttp.ClientError as e:
            logger.error(f"HTTP client error: {e}")
            raise APIClientError(f"Connection error: {e}")
        except asyncio.TimeoutError:
            raise APIClientError("Request timeout")

    async def submit_query(
        self,
        query: str,
        selected_models: Optional[List[str]] = None,
        **options,
    ) -> Dict[str, Any]:
        """
        Queue a query.

        Args:
            query: User query
            selected_models: Model ids or keys to dispatch to (all when omitted)
            **options: Any other query option (priority, skip_cache, ...)

        Returns:
            Submission response with query_id and estimated_wait_time
        """
        if selected_models:
            options["selected_models"] = selected_models
        return await self._request(
            "POST", f"{API_PREFIX}/queries", {"query": query, "options": options}, accept=(202,)
        )

    async def get_result(self, query_id: str) -> Dict[str, Any]:
        """Result payload, or a status payload while the query is still running."""
        return await self._request("GET", f"{API_PREFIX}/queries/{query_id}", accept=(200, 202))

    async def wait_for_result(
        self, query_id: str, poll_interval: float = 1.0, max_wait: float = 300.0
    ) -> Dict[str, Any]:
        """Poll until the query finishes."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + max_wait
        while True:
            response = await self.get_result(query_id)
            if response.get("success"):
                return response
            if loop.time() >= deadline:
                raise APIClientError(f"Query {query_id} did not finish within {max_wait:.0f}s")
            await asyncio.sleep(poll_interval)

    async def submit_feedback(
        self, query_id: str, rating: int, feedback: Optional[str] = None
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"rating": rating}
        if feedback:
            payload["feedback"] = feedback
        return await self._request("POST", f"{API_PREFIX}/queries/{query_id}/feedback", payload)

    async def start_agent(
        self, message: str, model: Optional[str] = None, options: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        payload = {"message": message, "model": model, "options": options or {}}
        return await self._request("POST", f"{API_PREFIX}/agents", payload, accept=(202,))

    async def get_agent_task(self, task_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"{API_PREFIX}/agents/{task_id}")

    async def list_models(self) -> Dict[str, Any]:
        return await self._request("GET", f"{API_PREFIX}/models")

    async def add_credential(self, api_key: str, provider: Optional[str] = None) -> Dict[str, Any]:
        return await self._request(
            "POST", f"{API_PREFIX}/models/credentials", {"api_key": api_key, "provider": provider}
        )

    async def health_check(self) -> Dict[str, Any]:
        """Check API health."""
        try:
            return await self._request("GET", "/health")
        except APIClientError as e:
            logger.error(f"Health check error: {e}")
            raise APIClientError(f"Health check failed: {e}")

    async def close(self):
        """Close the client session."""
        if self.session:
            await self.session.close()
            self.session = None
