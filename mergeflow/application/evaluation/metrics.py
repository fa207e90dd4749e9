"""Heuristic answer evaluation: accuracy, coherence, clarity, completeness, relevance."""

import re
import time
import uuid
from collections import Counter
from datetime import datetime
from typing import Dict, Any, List, Optional

from mergeflow.utils.logger import get_logger

logger = get_logger(__name__)

METRIC_WEIGHTS = {
    "accuracy": 0.3,
    "coherence": 0.25,
    "clarity": 0.2,
    "completeness": 0.15,
    "relevance": 0.1,
}

RECOMMENDATION_THRESHOLD = 0.6
HIGH_PRIORITY_THRESHOLD = 0.4

UNCERTAINTY_WORDS = ("might", "could", "possibly", "perhaps", "maybe")
CERTAINTY_WORDS = ("definitely", "certainly", "absolutely", "clearly")
SOURCE_INDICATORS = ("according to", "research shows", "study found", "data indicates")
TRANSITION_WORDS = ("however", "therefore", "furthermore", "moreover", "consequently")
LOGICAL_CONNECTORS = ("because", "since", "as a result", "due to", "leads to")
PASSIVE_INDICATORS = (" was ", " were ", " been ", " being ")
COMMON_WORDS = ("the", "and", "to", "of", "a", "in", "is", "it", "you", "that")

_SENTENCE_SPLIT = re.compile(r"[.!?]+")
_WORD = re.compile(r"[a-z0-9]+")
_NUMBER = re.compile(r"\d+(\.\d+)?%?")
_CLAIM = re.compile(r"\b(is|are|was|were|has|have)\b")
_INTRO = re.compile(r"^(this|in this|the following|to answer)", re.IGNORECASE)
_CONCLUSION = re.compile(r"(in conclusion|therefore|thus|to summarize).*$", re.IGNORECASE)
_EXAMPLES = re.compile(r"for example|such as|for instance", re.IGNORECASE)
_DIRECT_ANSWER = re.compile(r"^(yes|no|the answer is|it is|this is)", re.IGNORECASE)

COOCCURRENCE_WINDOW = 5


def split_sentences(text: str) -> List[str]:
    return [s for s in _SENTENCE_SPLIT.split(text) if s.strip()]


def tokenize(text: str, min_length: int = 3) -> List[str]:
    """Lower-cased alphanumeric tokens of at least ``min_length`` characters."""
    return [t for t in _WORD.findall(text.lower()) if len(t) >= min_length]


def count_words(text: str, words) -> int:
    lowered = text.lower()
    return sum(len(re.findall(rf"\b{re.escape(word)}\b", lowered)) for word in words)


class EvaluationMetrics:
    """Scores one answer along five weighted axes."""

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.config = config or {}

    async def evaluate_response(
        self, content: str, context: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """
        Evaluate an answer.

        Args:
            content: Answer text
            context: Optional ``query`` the answer responds to

        Returns:
            Dict with evaluation_id, overall_score, per-metric results and
            recommendations for weak metrics
        """
        context = context or {}
        evaluation_id = str(uuid.uuid4())
        start_time = time.time()

        try:
            metrics = {
                "accuracy": self.evaluate_accuracy(content),
                "coherence": self.evaluate_coherence(content),
                "clarity": self.evaluate_clarity(content),
                "completeness": self.evaluate_completeness(content, context),
                "relevance": self.evaluate_relevance(content, context),
            }
            overall = sum(metrics[name]["score"] * weight for name, weight in METRIC_WEIGHTS.items())
            response_time_ms = int((time.time() - start_time) * 1000)

            logger.info(
                f"Response evaluated: overall {overall:.3f}",
                extra={"latency_ms": response_time_ms},
            )
            return {
                "evaluation_id": evaluation_id,
                "overall_score": overall,
                "metrics": metrics,
                "recommendations": self.generate_recommendations(metrics),
                "response_time_ms": response_time_ms,
                "timestamp": datetime.utcnow().isoformat(),
            }

        except Exception as e:
            logger.error(f"Response evaluation failed: {e}")
            return {
                "evaluation_id": evaluation_id,
                "overall_score": 0.0,
                "metrics": {},
                "recommendations": [],
                "error": str(e),
                "response_time_ms": int((time.time() - start_time) * 1000),
            }

    def evaluate_accuracy(self, content: str) -> Dict[str, Any]:
        score = 0.7
        issues = []

        claims = [s for s in split_sentences(content) if _CLAIM.search(s.lower())]
        uncertainty = count_words(content, UNCERTAINTY_WORDS)
        certainty = count_words(content, CERTAINTY_WORDS)

        if uncertainty > certainty * 2:
            score -= 0.1
            issues.append("High uncertainty in statements")
        elif certainty > uncertainty * 3:
            score -= 0.05
            issues.append("Overly certain statements without evidence")

        numbers = [m.group(0) for m in _NUMBER.finditer(content)]
        if numbers:
            score += 0.1

        lowered = content.lower()
        has_sources = any(indicator in lowered for indicator in SOURCE_INDICATORS)
        if has_sources:
            score += 0.1
        elif len(claims) > 2:
            score -= 0.05
            issues.append("Factual claims without source references")

        return {
            "score": max(0.0, min(1.0, score)),
            "details": {
                "factual_claims": len(claims),
                "uncertainty_words": uncertainty,
                "certainty_words": certainty,
                "numerical_claims": len(numbers),
                "has_source_references": has_sources,
            },
            "issues": issues,
        }

    def evaluate_coherence(self, content: str) -> Dict[str, Any]:
        sentences = split_sentences(content)
        if not sentences:
            return {"score": 0.0, "details": {}, "issues": ["No sentences found"]}

        score = 0.5
        issues = []

        transitions = sum(
            1 for s in sentences if any(word in s.lower() for word in TRANSITION_WORDS)
        )
        transition_ratio = transitions / max(len(sentences) - 1, 1)
        score += transition_ratio * 0.2

        term_freq = Counter(tokenize(content))
        common_terms = [term for term, count in term_freq.items() if count > 1]
        topic_consistency = len(common_terms) / len(term_freq) if term_freq else 0.0
        score += topic_consistency * 0.3

        lowered = content.lower()
        connections = sum(lowered.count(connector) for connector in LOGICAL_CONNECTORS)
        score += min(connections / len(sentences), 0.2)

        if transition_ratio < 0.1:
            issues.append("Lack of transition words between sentences")
        if topic_consistency < 0.3:
            issues.append("Low topic consistency across sentences")
        if len(sentences) > 20:
            issues.append("Content may be too long to maintain coherence")

        return {
            "score": max(0.0, min(1.0, score)),
            "details": {
                "sentence_count": len(sentences),
                "transition_ratio": transition_ratio,
                "topic_consistency": topic_consistency,
                "logical_connections": connections,
                "common_terms": len(common_terms),
            },
            "issues": issues,
        }

    def evaluate_clarity(self, content: str) -> Dict[str, Any]:
        sentences = split_sentences(content)
        words = content.split()
        if not sentences or not words:
            return {"score": 0.0, "details": {}, "issues": ["No sentences found"]}

        score = 0.5
        issues = []

        avg_sentence_length = len(words) / len(sentences)
        if avg_sentence_length > 25:
            score -= 0.2
            issues.append("Sentences are too long on average")
        elif avg_sentence_length < 8:
            score -= 0.1
            issues.append("Sentences are too short on average")
        else:
            score += 0.1

        complexity_ratio = sum(1 for w in words if len(w) > 12) / len(words)
        if complexity_ratio > 0.1:
            score -= 0.1
            issues.append("High use of complex words")

        lowered = content.lower()
        passive_ratio = sum(lowered.count(p) for p in PASSIVE_INDICATORS) / len(sentences)
        if passive_ratio > 0.3:
            score -= 0.15
            issues.append("Excessive use of passive voice")

        readability_ratio = count_words(content, COMMON_WORDS) / len(words)
        if readability_ratio > 0.3:
            score += 0.1

        return {
            "score": max(0.0, min(1.0, score)),
            "details": {
                "avg_sentence_length": avg_sentence_length,
                "complexity_ratio": complexity_ratio,
                "passive_ratio": passive_ratio,
                "readability_ratio": readability_ratio,
                "word_count": len(words),
                "sentence_count": len(sentences),
            },
            "issues": issues,
        }

    def evaluate_completeness(self, content: str, context: Dict[str, Any]) -> Dict[str, Any]:
        score = 0.5
        issues = []

        if len(content) < 100:
            score -= 0.3
            issues.append("Response is too brief")
        elif len(content) > 2000:
            score -= 0.1
            issues.append("Response may be too verbose")
        else:
            score += 0.1

        stripped = content.strip()
        has_introduction = bool(_INTRO.search(stripped))
        has_conclusion = bool(_CONCLUSION.search(stripped))
        has_examples = bool(_EXAMPLES.search(content))
        score += 0.1 * sum((has_introduction, has_conclusion, has_examples))

        address_ratio = None
        query = context.get("query")
        if query:
            query_words = query.lower().split()
            content_words = set(content.lower().split())
            addressed = [w for w in query_words if len(w) > 3 and w in content_words]
            address_ratio = len(addressed) / len(query_words)
            score += address_ratio * 0.2
            if address_ratio < 0.3:
                issues.append("Response does not adequately address the query")

        return {
            "score": max(0.0, min(1.0, score)),
            "details": {
                "content_length": len(content),
                "has_introduction": has_introduction,
                "has_conclusion": has_conclusion,
                "has_examples": has_examples,
                "query_address_ratio": address_ratio,
            },
            "issues": issues,
        }

    def evaluate_relevance(self, content: str, context: Dict[str, Any]) -> Dict[str, Any]:
        score = 0.7
        query = context.get("query")
        if not query:
            return {
                "score": score,
                "details": {"query_provided": False},
                "issues": ["No query provided for relevance evaluation"],
            }

        issues = []
        query_tokens = tokenize(query)
        content_tokens = tokenize(content)
        query_set = set(query_tokens)
        shared = query_set & set(content_tokens)

        term_overlap = len(shared) / len(query_set) if query_set else 0.0
        score += term_overlap * 0.3

        cooccurrence = self.cooccurrence(query_tokens, content_tokens)
        score += cooccurrence * 0.2

        if term_overlap < 0.2:
            issues.append("Low term overlap with query")
            score -= 0.2

        if "?" in query and _DIRECT_ANSWER.search(content.strip()):
            score += 0.1

        return {
            "score": max(0.0, min(1.0, score)),
            "details": {
                "term_overlap": term_overlap,
                "cooccurrence_score": cooccurrence,
                "query_tokens": len(query_tokens),
                "content_tokens": len(content_tokens),
                "shared_terms": len(shared),
            },
            "issues": issues,
        }

    @staticmethod
    def cooccurrence(query_tokens: List[str], content_tokens: List[str]) -> float:
        """How often query terms appear near each other in the content."""
        if not query_tokens:
            return 0.0

        score = 0.0
        for query_token in query_tokens:
            for i, token in enumerate(content_tokens):
                if token != query_token:
                    continue
                window = content_tokens[max(0, i - COOCCURRENCE_WINDOW):i + COOCCURRENCE_WINDOW]
                overlap = sum(1 for t in query_tokens if t in window)
                score += overlap / len(query_tokens)

        return min(1.0, score / len(query_tokens))

    @staticmethod
    def generate_recommendations(metrics: Dict[str, Dict[str, Any]]) -> List[Dict[str, str]]:
        recommendations = []
        for name, metric in metrics.items():
            if metric["score"] >= RECOMMENDATION_THRESHOLD:
                continue
            for issue in metric.get("issues", []):
                recommendations.append(
                    {
                        "metric": name,
                        "issue": issue,
                        "priority": "high" if metric["score"] < HIGH_PRIORITY_THRESHOLD else "medium",
                    }
                )
        return recommendations
