"""Weighted response selection."""

from itertools import combinations
from typing import Dict, Iterable, List, Optional

from mergeflow.core.exceptions import DispatchError
from mergeflow.core.models import ModelCallResult, MergedResponse, WeightedResponse
from mergeflow.application.performance import PerformanceTracker


def jaccard(a: str, b: str) -> float:
    """Word-set overlap of two lower-cased texts."""
    words_a = set(a.lower().split())
    words_b = set(b.lower().split())
    union = words_a | words_b
    if not union:
        return 1.0
    return len(words_a & words_b) / len(union)


def consensus(contents: List[str]) -> float:
    """Mean pairwise Jaccard similarity; 1.0 for fewer than two texts."""
    if len(contents) < 2:
        return 1.0
    scores = [jaccard(a, b) for a, b in combinations(contents, 2)]
    return sum(scores) / len(scores)


class MergeEngine:
    """Chooses one answer from many using performance-derived weights."""

    strategy = "weighted_selection"

    def __init__(self, tracker: PerformanceTracker):
        self.tracker = tracker

    def weights(self, model_ids: Optional[Iterable[str]] = None) -> Dict[str, float]:
        """
        Normalised ``quality_score * success_rate`` over the given models.

        Models without a record score zero; when every score is zero the
        weights are uniform.
        """
        ids = list(dict.fromkeys(model_ids)) if model_ids is not None else self.tracker.model_ids()
        if not ids:
            return {}

        scores = {}
        for model_id in ids:
            record = self.tracker.get(model_id)
            scores[model_id] = record.quality_score * record.success_rate if record else 0.0

        total = sum(scores.values())
        if total <= 0:
            return {model_id: 1.0 / len(ids) for model_id in ids}
        return {model_id: score / total for model_id, score in scores.items()}

    def merge(
        self, results: List[ModelCallResult], weights: Dict[str, float]
    ) -> MergedResponse:
        """Pick the highest-weighted successful response."""
        successful = [r for r in results if r.success and r.content is not None]
        if not successful:
            raise DispatchError("Nothing to merge")

        default_weight = 1.0 / len(weights) if weights else 1.0 / len(successful)
        weighted = [
            WeightedResponse(
                model_id=r.model_id,
                weight=weights.get(r.model_id, default_weight),
                response_time_ms=r.response_time_ms,
            )
            for r in successful
        ]

        # Completion order must not influence the winner
        best = min(weighted, key=lambda w: (-w.weight, w.model_id))
        content = next(r.content for r in successful if r.model_id == best.model_id)

        return MergedResponse(
            content=content,
            primary_model=best.model_id,
            confidence=consensus([r.content for r in successful]),
            weighted_responses=sorted(weighted, key=lambda w: w.model_id),
            merge_strategy=self.strategy,
        )

    @staticmethod
    def consensus(contents: List[str]) -> float:
        return consensus(contents)
