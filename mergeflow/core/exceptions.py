"""Custom exceptions for MergeFlow."""

from typing import Any, List, Optional


class MergeFlowError(Exception):
    """Base exception for MergeFlow."""
    pass


class ConfigurationError(MergeFlowError):
    """Configuration related errors."""
    pass


class CacheError(MergeFlowError):
    """Cache related errors."""
    pass


class ProviderError(MergeFlowError):
    """Model provider related errors."""
    pass


class ProviderHTTPError(ProviderError):
    """Provider answered with a non-2xx HTTP status."""

    def __init__(
        self, status: int, message: str = "", retry_after_ms: Optional[int] = None
    ):
        super().__init__(f"HTTP {status}: {message}" if message else f"HTTP {status}")
        self.status = status
        self.message = message
        self.retry_after_ms = retry_after_ms


class ProviderResponseError(ProviderError):
    """Provider answered 2xx with a body we could not use."""
    pass


class ProviderNetworkError(ProviderError):
    """Transport failure or timeout talking to a provider."""
    pass


class AuthenticationError(ProviderError):
    """Credential rejected or missing."""
    pass


class UnknownProviderError(ProviderError):
    """Provider family not supported."""
    pass


class DispatchError(MergeFlowError):
    """Parallel dispatch errors."""
    pass


class AllModelsFailedError(DispatchError):
    """Every model in a dispatch failed."""

    def __init__(self, results: Optional[List[Any]] = None):
        super().__init__("All model calls failed")
        self.results = results or []


class ModelSelectionError(DispatchError):
    """Selection did not resolve to any registered model."""
    pass


class QueueError(MergeFlowError):
    """Job queue errors."""
    pass


class QueueNotFoundError(QueueError):
    """Unknown queue name."""
    pass


class JobNotFoundError(QueueError):
    """Unknown job or request id."""
    pass


class FeedbackError(MergeFlowError):
    """Feedback submission errors."""
    pass


class MetaModelError(MergeFlowError):
    """Meta-model errors."""
    pass


class APIClientError(MergeFlowError):
    """HTTP client errors talking to a MergeFlow server."""
    pass
