"""Core interfaces for MergeFlow."""

from typing import Protocol, List, Dict, Any, Optional

from mergeflow.core.models import (
    ModelCallResult,
    ModelDescriptor,
    QualityAnalysis,
)


class IProviderClient(Protocol):
    """Interface for model provider clients (one per backend family)."""

    provider: str

    async def call(
        self,
        model_id: str,
        prompt: str,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        timeout: Optional[float] = None,
    ) -> ModelCallResult:
        """Call one model once; failures are returned classified, not raised."""
        ...

    async def list_models(self) -> List[ModelDescriptor]:
        """Validate the credential and discover available models."""
        ...

    async def shutdown(self) -> None:
        """Cleanup resources."""
        ...


class ICache(Protocol):
    """Key-value store for dispatch results, query results, feedback and model stats.

    Implementations never raise on backend failure: a failed read is a
    miss and a failed write is dropped.
    """

    async def get(self, key: str) -> Optional[Any]:
        ...

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        """Store a JSON-compatible value; ``ttl`` in seconds."""
        ...

    async def delete(self, key: str) -> None:
        ...

    async def clear(self) -> None:
        ...

    async def health_check(self) -> bool:
        ...

    def stats(self) -> Dict[str, Any]:
        """Hit, miss and error counts."""
        ...

    async def close(self) -> None:
        ...


class IQualityAnalyzer(Protocol):
    """Interface for the external fact-check / bias / coherence agents."""

    async def analyze(self, content: str, context: Dict[str, Any]) -> QualityAnalysis:
        """Score content; only the scalar outputs are consumed."""
        ...


class IPredictor(Protocol):
    """Interface for the response-quality predictor."""

    async def predict(
        self,
        responses: List[ModelCallResult],
        quality_analysis: Optional[QualityAnalysis] = None,
    ) -> Any:
        """Predict quality of a set of responses."""
        ...

    async def add_training_example(
        self,
        responses: List[ModelCallResult],
        quality_analysis: Optional[QualityAnalysis],
        user_feedback: Dict[str, Any],
    ) -> None:
        """Append one labelled example."""
        ...

    async def retrain(self) -> bool:
        """Refit on the training buffer; False when nothing was refit."""
        ...

    def get_model_stats(self) -> Dict[str, Any]:
        """Current weights, bias and buffer size."""
        ...


class IKnowledgeSource(Protocol):
    """Interface for external reference lookups."""

    name: str

    async def search(self, concept: str) -> List[Dict[str, Any]]:
        """Return reference snippets for a concept."""
        ...
