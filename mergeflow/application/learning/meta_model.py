"""Online linear meta-model that learns per-model weights from feedback."""

import asyncio
import json
import re
import uuid
from datetime import datetime
from pathlib import Path
from typing import Dict, Any, Iterable, List, Optional

import numpy as np

from mergeflow.core.models import (
    ModelCallResult,
    Prediction,
    QualityAnalysis,
    TrainingExample,
)
from mergeflow.application.merge import consensus
from mergeflow.utils.logger import get_logger

logger = get_logger(__name__)

MODEL_VERSION = "1.0"
COHERENCE_WORDS = ("therefore", "however", "furthermore", "because", "since")

_SENTENCE_SPLIT = re.compile(r"[.!?]+")


def assess_content_quality(content: Optional[str]) -> float:
    """Structural quality of one answer; rewards discourse connectives."""
    if not content:
        return 0.0

    quality = 0.5

    if 50 < len(content) < 2000:
        quality += 0.1

    sentences = [s for s in _SENTENCE_SPLIT.split(content) if s.strip()]
    if 1 < len(sentences) < 20:
        quality += 0.1

    words = content.lower().split()
    if words and len(set(words)) / len(words) > 0.7:
        quality += 0.1

    lowered = content.lower()
    if any(word in lowered for word in COHERENCE_WORDS):
        quality += 0.1

    return min(1.0, quality)


def extract_features(
    responses: List[ModelCallResult], quality_analysis: Optional[QualityAnalysis] = None
) -> Dict[str, float]:
    """Flat feature dict for one set of responses."""
    features: Dict[str, float] = {}

    for response in responses:
        features[f"{response.model_id}_response_time"] = float(response.response_time_ms or 0)
        features[f"{response.model_id}_content_length"] = float(len(response.content or ""))
        features[f"{response.model_id}_success"] = 1.0 if response.success else 0.0

    if quality_analysis is not None:
        features["factual_confidence"] = quality_analysis.factual_confidence
        features["bias_score"] = quality_analysis.bias_score
        features["coherence_score"] = quality_analysis.coherence_score
        features["overall_quality"] = quality_analysis.quality_score

    successful = [r for r in responses if r.success]
    features["consensus_count"] = float(len(successful))
    features["consensus_ratio"] = len(successful) / len(responses) if responses else 0.0
    features["response_similarity"] = (
        consensus([r.content or "" for r in successful]) if len(successful) > 1 else 0.0
    )

    return features


class MetaModel:
    """
    Linear model over per-model success indicators.

    Weights start uniform over the known models and change only through
    ``retrain``, which renormalises them so their absolute values sum to 1.
    Training examples live in a bounded FIFO; every ``retrain_every``-th
    insertion triggers a retrain.
    """

    def __init__(self, config: Dict[str, Any]):
        self.config = config
        self.model_file = Path(config.get("model_path", "data/models")) / "meta_model.json"
        self.training_file = (
            Path(config.get("training_data_path", "data/training")) / "training_data.json"
        )
        self.persist = config.get("persist", True)
        self.learning_rate = config.get("learning_rate", 0.01)
        self.epochs = config.get("epochs", 100)
        self.max_examples = config.get("max_examples", 1000)
        self.retrain_every = config.get("retrain_every", 50)
        self.min_examples = config.get("min_examples", 10)

        self.weights: Dict[str, float] = {}
        self.bias = 0.0
        self.training_data: List[TrainingExample] = []
        self.examples_added = 0
        self.last_updated: Optional[datetime] = None
        self.is_initialized = False

        self._lock = asyncio.Lock()

    async def initialize(self, model_ids: Optional[Iterable[str]] = None) -> None:
        """Load persisted weights and examples, then cover ``model_ids``."""
        if self.persist:
            state = await asyncio.to_thread(self._read_json, self.model_file)
            if state:
                self.weights = {k: float(v) for k, v in (state.get("weights") or {}).items()}
                self.bias = float(state.get("bias", 0.0))
                self.last_updated = (
                    datetime.fromisoformat(state["last_updated"])
                    if state.get("last_updated")
                    else None
                )
                logger.info("Meta-model loaded from disk")

            examples = await asyncio.to_thread(self._read_json, self.training_file)
            for item in examples or []:
                try:
                    self.training_data.append(TrainingExample.from_dict(item))
                except (KeyError, TypeError, ValueError) as e:
                    logger.warning(f"Skipping malformed training example: {e}")
            self.training_data = self.training_data[-self.max_examples:]
            logger.info(f"Loaded {len(self.training_data)} training examples")

        self.is_initialized = True
        self.sync_models(model_ids or [])

    def sync_models(self, model_ids: Iterable[str]) -> None:
        """Give newly known models a uniform share, keeping Σ|w| = 1."""
        new_ids = [m for m in dict.fromkeys(model_ids) if m not in self.weights]
        if not new_ids:
            return

        total = len(self.weights) + len(new_ids)
        if self.weights:
            scale = len(self.weights) / total
            self.weights = {k: v * scale for k, v in self.weights.items()}
        for model_id in new_ids:
            self.weights[model_id] = 1.0 / total

        logger.debug(f"Meta-model now covers {total} models")

    def retain_models(self, live_ids: Iterable[str]) -> int:
        """Drop weights of models no longer registered and renormalise Σ|w| = 1."""
        live = set(live_ids)
        stale = [m for m in self.weights if m not in live]
        for model_id in stale:
            del self.weights[model_id]

        if stale and self.weights:
            total = sum(abs(v) for v in self.weights.values())
            if total > 0:
                self.weights = {k: abs(v) / total for k, v in self.weights.items()}
            else:
                self.weights = {k: 1.0 / len(self.weights) for k in self.weights}
        if stale:
            logger.debug(f"Meta-model dropped {len(stale)} models")
        return len(stale)

    def _weight_for(self, model_id: str) -> float:
        if model_id in self.weights:
            return self.weights[model_id]
        return 1.0 / len(self.weights) if self.weights else 1.0

    async def predict(
        self,
        responses: List[ModelCallResult],
        quality_analysis: Optional[QualityAnalysis] = None,
    ) -> Prediction:
        """Estimate the quality of a response set; degrades to 0.5 on error."""
        if not self.is_initialized:
            await self.initialize()

        try:
            features = extract_features(responses, quality_analysis)

            prediction = self.bias
            for response in responses:
                if response.success:
                    prediction += self._weight_for(response.model_id) * assess_content_quality(
                        response.content
                    )

            if quality_analysis is not None:
                prediction *= 1 + quality_analysis.quality_score * 0.2
                prediction *= 1 - quality_analysis.bias_score * 0.1

            return Prediction(
                prediction=max(0.0, min(1.0, prediction)),
                confidence=self._confidence(features),
                features=features,
                model_weights=dict(self.weights),
            )

        except Exception as e:
            logger.error(f"Meta-model prediction failed: {e}")
            return Prediction(prediction=0.5, confidence=0.0, error=str(e))

    @staticmethod
    def _confidence(features: Dict[str, float]) -> float:
        confidence = 0.5
        confidence += features.get("consensus_ratio", 0.0) * 0.3
        confidence += features.get("overall_quality", 0.0) * 0.2
        confidence += features.get("response_similarity", 0.0) * 0.2
        return min(1.0, confidence)

    async def add_training_example(
        self,
        responses: List[ModelCallResult],
        quality_analysis: Optional[QualityAnalysis],
        user_feedback: Dict[str, Any],
    ) -> Optional[TrainingExample]:
        """Append one example labelled ``rating / 5``; may trigger a retrain."""
        try:
            example = TrainingExample(
                id=str(uuid.uuid4()),
                features=extract_features(responses, quality_analysis),
                target=float(user_feedback["rating"]) / 5.0,
                responses=[
                    {
                        "model_id": r.model_id,
                        "success": r.success,
                        "content_length": len(r.content or ""),
                        "response_time_ms": r.response_time_ms,
                    }
                    for r in responses
                ],
                quality_scores=(
                    {
                        "factual": quality_analysis.factual_confidence,
                        "bias": quality_analysis.bias_score,
                        "coherence": quality_analysis.coherence_score,
                        "overall": quality_analysis.quality_score,
                    }
                    if quality_analysis is not None
                    else None
                ),
                user_feedback=dict(user_feedback),
            )
        except (KeyError, TypeError, ValueError) as e:
            logger.error(f"Invalid training feedback: {e}")
            return None

        async with self._lock:
            self.training_data.append(example)
            if len(self.training_data) > self.max_examples:
                self.training_data = self.training_data[-self.max_examples:]
            self.examples_added += 1
            should_retrain = self.examples_added % self.retrain_every == 0
            buffer_size = len(self.training_data)

        await self._save_training_data()
        logger.info(
            f"Training example added (rating {user_feedback['rating']}, {buffer_size} buffered)"
        )

        if should_retrain:
            await self.retrain()

        return example

    async def retrain(self) -> bool:
        """
        Full-batch gradient descent on mean squared error.

        Returns:
            True if the weights were refit, False when there were too few
            examples or training failed
        """
        async with self._lock:
            examples = list(self.training_data)
            model_ids = list(self.weights)

        if len(examples) < self.min_examples:
            logger.info(f"Not enough training data for retraining ({len(examples)})")
            return False

        try:
            logger.info(f"Retraining meta-model on {len(examples)} examples")

            x = np.array(
                [[ex.features.get(f"{m}_success", 0.0) for m in model_ids] for ex in examples],
                dtype=float,
            ).reshape(len(examples), len(model_ids))
            y = np.array([ex.target for ex in examples], dtype=float)
            w = np.array([self.weights[m] for m in model_ids], dtype=float)
            b = self.bias
            n = len(examples)

            for epoch in range(self.epochs):
                error = x @ w + b - y
                b -= self.learning_rate * error.sum() / n
                w -= self.learning_rate * (x.T @ error) / n

                if epoch % 20 == 0:
                    logger.debug(f"Epoch {epoch}, average loss {float(np.mean(error ** 2)):.4f}")

            total = float(np.abs(w).sum())
            if total > 0:
                w = np.abs(w) / total

            # Models removed while training stay removed
            self.weights.update(
                {m: float(v) for m, v in zip(model_ids, w) if m in self.weights}
            )
            self.bias = float(b)
            self.last_updated = datetime.utcnow()

            await self._save_model()
            logger.info(f"Meta-model retrained, bias {self.bias:.4f}")
            return True

        except Exception as e:
            logger.error(f"Meta-model retraining failed: {e}")
            return False

    def get_model_stats(self) -> Dict[str, Any]:
        return {
            "weights": dict(self.weights),
            "bias": self.bias,
            "training_examples": len(self.training_data),
            "examples_added": self.examples_added,
            "is_initialized": self.is_initialized,
            "last_updated": self.last_updated.isoformat() if self.last_updated else None,
            "version": MODEL_VERSION,
        }

    async def _save_model(self) -> None:
        if not self.persist:
            return
        state = {
            "weights": self.weights,
            "bias": self.bias,
            "last_updated": self.last_updated.isoformat() if self.last_updated else None,
            "version": MODEL_VERSION,
        }
        await asyncio.to_thread(self._write_json, self.model_file, state)

    async def _save_training_data(self) -> None:
        if not self.persist:
            return
        data = [example.to_dict() for example in self.training_data]
        await asyncio.to_thread(self._write_json, self.training_file, data)

    @staticmethod
    def _read_json(path: Path) -> Any:
        try:
            with open(path, "r") as f:
                return json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            logger.error(f"Failed to read {path}: {e}")
            return None

    @staticmethod
    def _write_json(path: Path, data: Any) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "w") as f:
                json.dump(data, f, indent=2)
        except OSError as e:
            logger.error(f"Failed to write {path}: {e}")
