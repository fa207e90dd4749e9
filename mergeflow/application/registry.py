"""Model registry: provider credentials, discovered models and their clients."""

from typing import Dict, Any, Iterable, List, Optional

from mergeflow.core.exceptions import (
    AuthenticationError,
    ModelSelectionError,
    ProviderError,
    UnknownProviderError,
)
from mergeflow.core.interfaces import IProviderClient
from mergeflow.core.models import ModelDescriptor
from mergeflow.infrastructure.providers import (
    DISCOVERY_ORDER,
    PROVIDER_NAMES,
    create_provider_client,
    detect_provider,
)
from mergeflow.application.performance import PerformanceTracker
from mergeflow.utils.logger import get_logger

logger = get_logger(__name__)


class ModelRegistry:
    """Tracks which models are callable and through which client.

    Descriptors are keyed by ``provider:model_id``; performance records live
    in the tracker keyed by ``model_id`` and are added and purged together
    with the descriptors.
    """

    def __init__(self, tracker: PerformanceTracker, config: Dict[str, Any]):
        self.tracker = tracker
        self.providers_config = config.get("providers", {}) or {}
        self.models_config = config.get("models", {}) or {}

        self._descriptors: Dict[str, ModelDescriptor] = {}
        self._clients: Dict[str, IProviderClient] = {}

    async def initialize(self) -> None:
        """Register every provider whose key is present in the configuration."""
        for provider, provider_config in self.providers_config.items():
            api_key = (provider_config or {}).get("api_key")
            if not api_key:
                continue
            try:
                await self.add_credential(api_key, provider)
            except ProviderError as e:
                logger.warning(f"Configured {provider} credential rejected: {e}")

    def _client_config(self, provider: str, api_key: str) -> Dict[str, Any]:
        return {
            **self.models_config,
            **(self.providers_config.get(provider) or {}),
            "api_key": api_key,
        }

    async def _discover(self, provider: str, api_key: str):
        client = create_provider_client(provider, self._client_config(provider, api_key))
        try:
            models = await client.list_models()
        except Exception:
            await client.shutdown()
            raise
        if not models:
            await client.shutdown()
            raise AuthenticationError(f"No models available from {provider}")
        return client, models

    async def add_credential(self, api_key: str, provider: Optional[str] = None) -> Dict[str, Any]:
        """
        Validate a key, discover its models and register them.

        Args:
            api_key: Provider API key
            provider: Provider family; detected from the key format when omitted

        Returns:
            Summary with provider, provider_name, models_discovered and models

        Raises:
            AuthenticationError: If no provider accepts the key
            UnknownProviderError: If an explicit provider is not supported
        """
        if not api_key:
            raise AuthenticationError("API key is required")

        if provider:
            candidates = [provider]
        else:
            detected = detect_provider(api_key)
            candidates = [detected] if detected else list(DISCOVERY_ORDER)

        last_error: Optional[Exception] = None
        for candidate in candidates:
            try:
                client, models = await self._discover(candidate, api_key)
            except UnknownProviderError:
                raise
            except Exception as e:
                logger.info(f"Credential not accepted by {candidate}: {e}")
                last_error = e
                continue

            await self.register_client(client, models)
            logger.info(
                f"Registered {len(models)} models from {candidate}",
                extra={"provider": candidate},
            )
            return {
                "provider": candidate,
                "provider_name": PROVIDER_NAMES.get(candidate, candidate),
                "models_discovered": len(models),
                "models": [model.to_dict() for model in models],
            }

        raise AuthenticationError(
            "Invalid API key or unable to authenticate with provider"
        ) from last_error

    async def register_client(
        self, client: IProviderClient, models: Iterable[ModelDescriptor]
    ) -> None:
        """Install a client and its models, replacing an earlier one for the provider."""
        provider = client.provider
        previous = self._clients.get(provider)
        if previous is not None and previous is not client:
            await previous.shutdown()
        self._clients[provider] = client

        models = list(models)
        kept = {model.model_id for model in models}
        stale = [
            key
            for key, descriptor in self._descriptors.items()
            if descriptor.provider == provider and descriptor.model_id not in kept
        ]
        for key in stale:
            del self._descriptors[key]

        for model in models:
            self._descriptors[model.key] = model
            self.tracker.register(model)

        self.tracker.retain(descriptor.model_id for descriptor in self._descriptors.values())

    async def remove_credential(self, provider: str) -> Dict[str, Any]:
        """Forget a provider's key, models and performance records."""
        client = self._clients.pop(provider, None)
        if client is not None:
            await client.shutdown()

        removed = [
            key for key, descriptor in self._descriptors.items() if descriptor.provider == provider
        ]
        model_ids = {self._descriptors[key].model_id for key in removed}
        for key in removed:
            del self._descriptors[key]

        still_live = {descriptor.model_id for descriptor in self._descriptors.values()}
        self.tracker.remove(model_ids - still_live)
        await self.tracker.save()

        logger.info(f"Removed {len(removed)} models for provider {provider}")
        return {"provider": provider, "models_removed": len(removed)}

    def get_client(self, model_id: str) -> Optional[IProviderClient]:
        """Client able to call ``model_id`` (plain id or provider key)."""
        descriptor = self.get_descriptor(model_id)
        if descriptor is None:
            return None
        return self._clients.get(descriptor.provider)

    def get_descriptor(self, model_id: str) -> Optional[ModelDescriptor]:
        if model_id in self._descriptors:
            return self._descriptors[model_id]
        for descriptor in self._descriptors.values():
            if descriptor.model_id == model_id:
                return descriptor
        return None

    @property
    def descriptors(self) -> List[ModelDescriptor]:
        return list(self._descriptors.values())

    @property
    def providers(self) -> List[str]:
        return list(self._clients)

    def resolve_selection(self, selected: Optional[Iterable[str]] = None) -> List[ModelDescriptor]:
        """
        Turn a selection of ids or keys into descriptors.

        An empty selection means every registered model.

        Raises:
            ModelSelectionError: If nothing is registered or nothing matches
        """
        wanted = {str(item).strip() for item in (selected or []) if item}

        if not wanted:
            if not self._descriptors:
                raise ModelSelectionError("No models registered")
            return self.descriptors

        matches = [
            descriptor
            for key, descriptor in self._descriptors.items()
            if key in wanted or descriptor.model_id in wanted
        ]
        if not matches:
            raise ModelSelectionError("No matching models found for the provided selection")
        return matches

    def list_models(self) -> List[Dict[str, Any]]:
        """Descriptors joined with their current statistics."""
        models = []
        for descriptor in self._descriptors.values():
            entry = descriptor.to_dict()
            record = self.tracker.get(descriptor.model_id)
            entry["provider_name"] = PROVIDER_NAMES.get(descriptor.provider, descriptor.provider)
            entry["success_rate"] = record.success_rate if record else 0.0
            entry["avg_response_time_ms"] = record.avg_response_time_ms if record else 0.0
            entry["quality_score"] = record.quality_score if record else 0.0
            models.append(entry)
        return models

    async def shutdown(self) -> None:
        for client in self._clients.values():
            try:
                await client.shutdown()
            except Exception as e:
                logger.warning(f"Error shutting down {client.provider} client: {e}")
