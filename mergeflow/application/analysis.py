"""Quality-agent collaborator used when no external analyzer is wired in."""

from typing import Dict, Any

from mergeflow.core.models import QualityAnalysis
from mergeflow.utils.logger import get_logger

logger = get_logger(__name__)


class NeutralQualityAnalyzer:
    """Returns mid-scale scores so downstream math stays neutral."""

    def __init__(self, config: Dict[str, Any] = None):
        self.config = config or {}
        self.quality_score = self.config.get("quality_score", 0.5)

    async def analyze(self, content: str, context: Dict[str, Any]) -> QualityAnalysis:
        logger.debug(f"Neutral quality analysis for {len(content)} chars")
        return QualityAnalysis(
            quality_score=self.quality_score,
            fact_check={"confidence": 0.5},
            bias_analysis={"overall_bias_score": 0.0},
            coherence_analysis={"overall_score": 0.5},
        )
