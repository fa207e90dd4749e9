"""Service wiring and FastAPI dependencies."""

from dataclasses import dataclass, field
from functools import lru_cache
from typing import Dict, Any, List, Optional, Tuple

from mergeflow.core.interfaces import IProviderClient, IQualityAnalyzer
from mergeflow.core.models import ModelDescriptor
from mergeflow.infrastructure.cache import BaseCache, create_cache
from mergeflow.infrastructure.observability.metrics import MetricsCollector
from mergeflow.application.agents import AgentTaskManager
from mergeflow.application.analysis import NeutralQualityAnalyzer
from mergeflow.application.dispatch import ParallelDispatcher
from mergeflow.application.evaluation import EvaluationMetrics
from mergeflow.application.knowledge import KnowledgeFusion
from mergeflow.application.learning import MetaModel
from mergeflow.application.merge import MergeEngine
from mergeflow.application.performance import PerformanceTracker
from mergeflow.application.queue import QueueManager
from mergeflow.application.registry import ModelRegistry
from mergeflow.utils.config import load_config
from mergeflow.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class Services:
    """Every long-lived component of a running MergeFlow instance."""

    config: Dict[str, Any]
    cache: BaseCache
    metrics: MetricsCollector
    tracker: PerformanceTracker
    registry: ModelRegistry
    merge_engine: MergeEngine
    dispatcher: ParallelDispatcher
    analyzer: IQualityAnalyzer
    meta_model: MetaModel
    evaluator: EvaluationMetrics
    knowledge: KnowledgeFusion
    queue_manager: QueueManager
    agents: AgentTaskManager
    preset_clients: List[Tuple[IProviderClient, Optional[List[ModelDescriptor]]]] = field(
        default_factory=list
    )
    started: bool = False

    async def start(self) -> None:
        """Load state, register credentials and start the queue workers."""
        if self.started:
            return

        await self.tracker.initialize()
        await self.registry.initialize()
        for client, models in self.preset_clients:
            await self.registry.register_client(client, models or await client.list_models())

        await self.meta_model.initialize([d.model_id for d in self.registry.descriptors])
        await self.queue_manager.initialize()
        self.started = True
        logger.info(f"Services started with {len(self.registry.descriptors)} models")

    async def stop(self) -> None:
        await self.agents.shutdown()
        await self.queue_manager.close()
        await self.tracker.save()
        await self.registry.shutdown()
        await self.cache.close()
        self.started = False
        logger.info("Services stopped")


def build_services(
    config: Dict[str, Any],
    cache: Optional[BaseCache] = None,
    clients: Optional[List[Tuple[IProviderClient, Optional[List[ModelDescriptor]]]]] = None,
    analyzer: Optional[IQualityAnalyzer] = None,
    knowledge: Optional[KnowledgeFusion] = None,
) -> Services:
    """
    Assemble the component graph from configuration.

    Args:
        config: Full configuration dictionary
        cache: Cache to use instead of the configured one
        clients: Pre-built provider clients (and optionally their models)
            registered at start, in addition to configured credentials
        analyzer: Quality-agent collaborator; neutral scores by default
        knowledge: Knowledge fusion instance; configured sources by default
    """
    cache = cache or create_cache(config.get("cache", {}))
    metrics = MetricsCollector(config.get("observability", {}))
    tracker = PerformanceTracker(cache, config.get("cache", {}))
    registry = ModelRegistry(tracker, config)
    merge_engine = MergeEngine(tracker)
    dispatcher = ParallelDispatcher(registry, tracker, merge_engine, cache, config, metrics)
    analyzer = analyzer or NeutralQualityAnalyzer()
    meta_model = MetaModel(config.get("ml", {}))
    evaluator = EvaluationMetrics()
    knowledge = knowledge or KnowledgeFusion(config.get("knowledge", {}))
    queue_manager = QueueManager(
        dispatcher, meta_model, cache, analyzer, evaluator, knowledge, config, metrics
    )
    agents = AgentTaskManager(registry, dispatcher, analyzer, config.get("agents", {}))

    return Services(
        config=config,
        cache=cache,
        metrics=metrics,
        tracker=tracker,
        registry=registry,
        merge_engine=merge_engine,
        dispatcher=dispatcher,
        analyzer=analyzer,
        meta_model=meta_model,
        evaluator=evaluator,
        knowledge=knowledge,
        queue_manager=queue_manager,
        agents=agents,
        preset_clients=list(clients or []),
    )


# Singleton instance
_services: Optional[Services] = None


@lru_cache()
def get_config():
    """Get configuration singleton."""
    return load_config()


def set_services(services: Optional[Services]) -> None:
    """Install a pre-built service graph (used by tests and embedders)."""
    global _services
    _services = services


async def get_services() -> Services:
    """Get the started service graph, building it from config on first use."""
    global _services

    if _services is None:
        _services = build_services(get_config())
        logger.info("Services built from configuration")

    if not _services.started:
        await _services.start()

    return _services


async def cleanup_resources():
    """Cleanup all resources on shutdown."""
    global _services

    if _services is not None and _services.started:
        await _services.stop()

    logger.info("All resources cleaned up")
