"""Core domain logic for MergeFlow."""

from .interfaces import (
    IProviderClient,
    ICache,
    IQualityAnalyzer,
    IPredictor,
    IKnowledgeSource,
)
from .exceptions import (
    MergeFlowError,
    ConfigurationError,
    CacheError,
    ProviderError,
    DispatchError,
    AllModelsFailedError,
    ModelSelectionError,
    QueueError,
    JobNotFoundError,
    FeedbackError,
)

__all__ = [
    "IProviderClient",
    "ICache",
    "IQualityAnalyzer",
    "IPredictor",
    "IKnowledgeSource",
    "MergeFlowError",
    "ConfigurationError",
    "CacheError",
    "ProviderError",
    "DispatchError",
    "AllModelsFailedError",
    "ModelSelectionError",
    "QueueError",
    "JobNotFoundError",
    "FeedbackError",
]
