"""Core domain models for MergeFlow."""

from dataclasses import dataclass, field, asdict
from typing import Optional, Dict, Any, List
from datetime import datetime
from enum import Enum


NEUTRAL_SUCCESS_RATE = 0.8
NEUTRAL_RESPONSE_TIME_MS = 5000.0
NEUTRAL_QUALITY_SCORE = 0.7


class ModelProvider(Enum):
    """Supported model provider families."""

    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GOOGLE = "google"
    OPENROUTER = "openrouter"
    MOCK = "mock"


class ErrorKind(Enum):
    """Classification of a failed model call, dispatch or job."""

    RATE_LIMIT = "RATE_LIMIT"
    SERVER_ERROR = "SERVER_ERROR"
    AUTH_ERROR = "AUTH_ERROR"
    CLIENT_ERROR = "CLIENT_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"
    PROMISE_REJECTED = "PROMISE_REJECTED"
    ALL_MODELS_FAILED = "ALL_MODELS_FAILED"
    JOB_EXHAUSTED = "JOB_EXHAUSTED"


class JobKind(Enum):
    """Typed job queues."""

    QUERY_PROCESSING = "query_processing"
    MODEL_TRAINING = "model_training"
    KNOWLEDGE_ENHANCEMENT = "knowledge_enhancement"
    EVALUATION = "evaluation"


class JobStatus(Enum):
    """Job lifecycle states."""

    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


class TaskStatus(Enum):
    """Agent task lifecycle states."""

    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_dt(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


@dataclass
class ModelDescriptor:
    """A callable backend model."""

    model_id: str
    provider: str
    name: str = ""
    description: str = ""
    capabilities: List[str] = field(default_factory=list)
    context_length: int = 4096

    @property
    def key(self) -> str:
        return f"{self.provider}:{self.model_id}"

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["key"] = self.key
        return data


@dataclass
class ModelPerformance:
    """Rolling statistics for one model."""

    model_id: str
    provider: Optional[str] = None
    success_rate: float = NEUTRAL_SUCCESS_RATE
    avg_response_time_ms: float = NEUTRAL_RESPONSE_TIME_MS
    quality_score: float = NEUTRAL_QUALITY_SCORE
    total_calls: int = 0
    successful_calls: int = 0
    last_updated: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["last_updated"] = _iso(self.last_updated)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ModelPerformance":
        return cls(
            model_id=data["model_id"],
            provider=data.get("provider"),
            success_rate=float(data.get("success_rate", NEUTRAL_SUCCESS_RATE)),
            avg_response_time_ms=float(
                data.get("avg_response_time_ms", NEUTRAL_RESPONSE_TIME_MS)
            ),
            quality_score=float(data.get("quality_score", NEUTRAL_QUALITY_SCORE)),
            total_calls=int(data.get("total_calls", 0)),
            successful_calls=int(data.get("successful_calls", 0)),
            last_updated=_parse_dt(data.get("last_updated")) or datetime.utcnow(),
        )


@dataclass
class ModelCallResult:
    """Outcome of one model call (after retries when produced by the dispatcher)."""

    model_id: str
    success: bool
    content: Optional[str] = None
    response_time_ms: int = 0
    error_kind: Optional[ErrorKind] = None
    retryable: bool = False
    message: Optional[str] = None
    retry_after_ms: Optional[int] = None
    http_status: Optional[int] = None
    attempts: int = 1
    usage: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["error_kind"] = self.error_kind.value if self.error_kind else None
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ModelCallResult":
        kind = data.get("error_kind")
        return cls(
            model_id=data["model_id"],
            success=bool(data["success"]),
            content=data.get("content"),
            response_time_ms=int(data.get("response_time_ms", 0)),
            error_kind=ErrorKind(kind) if kind else None,
            retryable=bool(data.get("retryable", False)),
            message=data.get("message"),
            retry_after_ms=data.get("retry_after_ms"),
            http_status=data.get("http_status"),
            attempts=int(data.get("attempts", 1)),
            usage=data.get("usage") or {},
        )


@dataclass
class WeightedResponse:
    """Per-model entry of a merged response."""

    model_id: str
    weight: float
    response_time_ms: int


@dataclass
class MergedResponse:
    """Single answer chosen from the successful responses."""

    content: str
    primary_model: str
    confidence: float
    weighted_responses: List[WeightedResponse] = field(default_factory=list)
    merge_strategy: str = "weighted_selection"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MergedResponse":
        return cls(
            content=data["content"],
            primary_model=data["primary_model"],
            confidence=float(data["confidence"]),
            weighted_responses=[
                WeightedResponse(**item) for item in data.get("weighted_responses", [])
            ],
            merge_strategy=data.get("merge_strategy", "weighted_selection"),
        )


@dataclass
class DispatchResult:
    """Result of one parallel fan-out."""

    query_id: str
    merged: MergedResponse
    individual: List[ModelCallResult]
    weights: Dict[str, float]
    total_time_ms: int
    success_rate: float
    timestamp: datetime = field(default_factory=datetime.utcnow)
    from_cache: bool = False

    @property
    def successful(self) -> List[ModelCallResult]:
        return [result for result in self.individual if result.success]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "query_id": self.query_id,
            "merged": self.merged.to_dict(),
            "individual": [result.to_dict() for result in self.individual],
            "weights": dict(self.weights),
            "total_time_ms": self.total_time_ms,
            "success_rate": self.success_rate,
            "timestamp": _iso(self.timestamp),
            "from_cache": self.from_cache,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DispatchResult":
        return cls(
            query_id=data["query_id"],
            merged=MergedResponse.from_dict(data["merged"]),
            individual=[ModelCallResult.from_dict(r) for r in data["individual"]],
            weights={k: float(v) for k, v in data["weights"].items()},
            total_time_ms=int(data["total_time_ms"]),
            success_rate=float(data["success_rate"]),
            timestamp=_parse_dt(data.get("timestamp")) or datetime.utcnow(),
            from_cache=bool(data.get("from_cache", False)),
        )


@dataclass
class QualityAnalysis:
    """Scalar outputs of the external quality agents."""

    quality_score: float = 0.5
    fact_check: Dict[str, Any] = field(default_factory=dict)
    bias_analysis: Dict[str, Any] = field(default_factory=dict)
    coherence_analysis: Dict[str, Any] = field(default_factory=dict)

    @property
    def factual_confidence(self) -> float:
        return float(self.fact_check.get("confidence") or 0.0)

    @property
    def bias_score(self) -> float:
        return float(self.bias_analysis.get("overall_bias_score") or 0.0)

    @property
    def coherence_score(self) -> float:
        return float(self.coherence_analysis.get("overall_score") or 0.0)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["QualityAnalysis"]:
        if not data:
            return None
        return cls(
            quality_score=float(data.get("quality_score", 0.5)),
            fact_check=data.get("fact_check") or {},
            bias_analysis=data.get("bias_analysis") or {},
            coherence_analysis=data.get("coherence_analysis") or {},
        )


@dataclass
class Prediction:
    """Meta-model estimate of answer quality."""

    prediction: float
    confidence: float
    features: Dict[str, float] = field(default_factory=dict)
    model_weights: Dict[str, float] = field(default_factory=dict)
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Feedback:
    """User feedback on a query result."""

    query_id: str
    rating: int
    feedback: Optional[str] = None
    aspects: Optional[Dict[str, int]] = None
    user_id: str = "anonymous"
    timestamp: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = _iso(self.timestamp)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Feedback":
        return cls(
            query_id=data["query_id"],
            rating=int(data["rating"]),
            feedback=data.get("feedback"),
            aspects=data.get("aspects"),
            user_id=data.get("user_id", "anonymous"),
            timestamp=_parse_dt(data.get("timestamp")) or datetime.utcnow(),
        )


@dataclass
class TrainingExample:
    """One labelled example for the meta-model."""

    id: str
    features: Dict[str, float]
    target: float
    responses: List[Dict[str, Any]] = field(default_factory=list)
    quality_scores: Optional[Dict[str, Any]] = None
    user_feedback: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = _iso(self.timestamp)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TrainingExample":
        return cls(
            id=data["id"],
            features={k: float(v) for k, v in data.get("features", {}).items()},
            target=float(data["target"]),
            responses=data.get("responses", []),
            quality_scores=data.get("quality_scores"),
            user_feedback=data.get("user_feedback", {}),
            timestamp=_parse_dt(data.get("timestamp")) or datetime.utcnow(),
        )


@dataclass
class Job:
    """Unit of queued work."""

    id: str
    kind: JobKind
    payload: Dict[str, Any]
    max_attempts: int
    status: JobStatus = JobStatus.WAITING
    progress: float = 0.0
    attempts_made: int = 0
    priority: int = 0
    result: Any = None
    failed_reason: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.utcnow)
    processed_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (JobStatus.COMPLETED, JobStatus.FAILED)

    def update_progress(self, value: float) -> None:
        # Never moves backwards, including across retried attempts
        self.progress = max(self.progress, min(100.0, float(value)))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "status": self.status.value,
            "progress": self.progress,
            "attempts_made": self.attempts_made,
            "max_attempts": self.max_attempts,
            "priority": self.priority,
            "result": self.result,
            "failed_reason": self.failed_reason,
            "created_at": _iso(self.created_at),
            "processed_at": _iso(self.processed_at),
            "finished_at": _iso(self.finished_at),
        }


@dataclass
class AgentTask:
    """Background agent run with a readable step log."""

    id: str
    status: TaskStatus = TaskStatus.PROCESSING
    logs: List[str] = field(default_factory=list)
    result: Optional[Dict[str, Any]] = None
    created_at: datetime = field(default_factory=datetime.utcnow)
    finished_at: Optional[datetime] = None

    @property
    def is_finished(self) -> bool:
        return self.status != TaskStatus.PROCESSING

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "status": self.status.value,
            "logs": list(self.logs),
            "result": self.result,
            "created_at": _iso(self.created_at),
            "finished_at": _iso(self.finished_at),
        }


__all__ = [
    "NEUTRAL_SUCCESS_RATE",
    "NEUTRAL_RESPONSE_TIME_MS",
    "NEUTRAL_QUALITY_SCORE",
    "ModelProvider",
    "ErrorKind",
    "JobKind",
    "JobStatus",
    "TaskStatus",
    "ModelDescriptor",
    "ModelPerformance",
    "ModelCallResult",
    "WeightedResponse",
    "MergedResponse",
    "DispatchResult",
    "QualityAnalysis",
    "Prediction",
    "Feedback",
    "TrainingExample",
    "Job",
    "AgentTask",
]
