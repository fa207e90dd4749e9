"""Unit tests for the model registry."""

import pytest

from mergeflow.application.registry import ModelRegistry
from mergeflow.core.exceptions import AuthenticationError, ModelSelectionError, UnknownProviderError
from mergeflow.infrastructure.providers import MockProviderClient


@pytest.mark.asyncio
async def test_registered_models_get_performance_records(registry, tracker):
    assert [d.key for d in registry.descriptors] == ["mock:mock-alpha", "mock:mock-beta"]
    assert set(tracker.model_ids()) == {"mock-alpha", "mock-beta"}
    assert registry.get_descriptor("mock:mock-beta").model_id == "mock-beta"
    assert registry.get_client("mock-alpha") is not None
    assert registry.get_client("ghost") is None


@pytest.mark.asyncio
async def test_list_models_includes_stats(registry):
    models = registry.list_models()

    assert models[0]["provider_name"] == "Mock"
    assert models[0]["success_rate"] == 0.8
    assert models[0]["key"] == "mock:mock-alpha"


@pytest.mark.asyncio
async def test_resolve_selection(registry):
    assert len(registry.resolve_selection([])) == 2
    assert [d.model_id for d in registry.resolve_selection(["mock-beta"])] == ["mock-beta"]

    with pytest.raises(ModelSelectionError):
        registry.resolve_selection(["missing"])


def test_empty_registry_has_nothing_to_select(tracker):
    with pytest.raises(ModelSelectionError):
        ModelRegistry(tracker, {}).resolve_selection()


@pytest.mark.asyncio
async def test_add_credential_with_explicit_provider(tracker):
    registry = ModelRegistry(tracker, {"providers": {"mock": {"models": ["m1", "m2", "m3"]}}})

    summary = await registry.add_credential("any-key", "mock")

    assert summary["provider"] == "mock"
    assert summary["provider_name"] == "Mock"
    assert summary["models_discovered"] == 3
    assert registry.providers == ["mock"]


@pytest.mark.asyncio
async def test_rejected_credential(tracker):
    registry = ModelRegistry(tracker, {"providers": {"mock": {"valid": False}}})

    with pytest.raises(AuthenticationError):
        await registry.add_credential("bad-key", "mock")
    assert registry.descriptors == []

    with pytest.raises(AuthenticationError):
        await registry.add_credential("", "mock")


@pytest.mark.asyncio
async def test_unknown_provider(tracker):
    with pytest.raises(UnknownProviderError):
        await ModelRegistry(tracker, {}).add_credential("key", "carrier-pigeon")


@pytest.mark.asyncio
async def test_reregistering_drops_stale_models(registry, tracker):
    await registry.register_client(
        MockProviderClient({"models": ["mock-alpha"]}),
        await MockProviderClient({"models": ["mock-alpha"]}).list_models(),
    )

    assert [d.model_id for d in registry.descriptors] == ["mock-alpha"]
    assert tracker.model_ids() == ["mock-alpha"]


@pytest.mark.asyncio
async def test_remove_credential_purges_models_and_stats(registry, tracker):
    await tracker.update("mock-alpha", True, 100, "answer")

    summary = await registry.remove_credential("mock")

    assert summary == {"provider": "mock", "models_removed": 2}
    assert registry.descriptors == []
    assert tracker.model_ids() == []
    assert registry.get_client("mock-alpha") is None


@pytest.mark.asyncio
async def test_initialize_registers_configured_keys(tracker):
    registry = ModelRegistry(
        tracker,
        {
            "providers": {
                "mock": {"api_key": "configured", "models": ["m1"]},
                "openai": {"base_url": "https://api.openai.com/v1"},
            }
        },
    )

    await registry.initialize()

    assert [d.model_id for d in registry.descriptors] == ["m1"]
