"""Typed job pipeline: query processing, training, knowledge enhancement, evaluation."""

import time
import uuid
from collections import OrderedDict
from datetime import datetime
from typing import Dict, Any, List, Optional

from mergeflow.core.exceptions import FeedbackError, JobNotFoundError, QueueError, QueueNotFoundError
from mergeflow.core.interfaces import ICache, IPredictor, IQualityAnalyzer
from mergeflow.core.models import (
    Feedback,
    Job,
    JobKind,
    JobStatus,
    ModelCallResult,
    QualityAnalysis,
)
from mergeflow.application.dispatch import ParallelDispatcher
from mergeflow.application.evaluation import EvaluationMetrics
from mergeflow.application.knowledge import KnowledgeFusion
from mergeflow.infrastructure.observability.metrics import MetricsCollector
from mergeflow.utils.logger import get_logger
from .job_queue import JobQueue, QueueSettings

logger = get_logger(__name__)

FEEDBACK_ASPECTS = ("accuracy", "clarity", "completeness", "relevance")
MAX_TRACKED_REQUESTS = 10000

DEFAULT_QUEUES = {
    JobKind.QUERY_PROCESSING: {
        "concurrency": 5, "attempts": 3,
        "backoff": {"type": "exponential", "delay_ms": 2000},
        "keep_completed": 100, "keep_failed": 50,
    },
    JobKind.MODEL_TRAINING: {
        "concurrency": 1, "attempts": 2,
        "backoff": {"type": "exponential", "delay_ms": 5000},
        "keep_completed": 10, "keep_failed": 10,
    },
    JobKind.KNOWLEDGE_ENHANCEMENT: {
        "concurrency": 3, "attempts": 3,
        "backoff": {"type": "fixed", "delay_ms": 2000},
        "keep_completed": 50, "keep_failed": 25,
    },
    JobKind.EVALUATION: {
        "concurrency": 5, "attempts": 2,
        "backoff": {"type": "fixed", "delay_ms": 1000},
        "keep_completed": 200, "keep_failed": 50,
    },
}


def _mark_once(seen: "OrderedDict[str, bool]", key: str) -> bool:
    """Record ``key``; False if it was already recorded."""
    if key in seen:
        return False
    seen[key] = True
    while len(seen) > MAX_TRACKED_REQUESTS:
        seen.popitem(last=False)
    return True


class QueueManager:
    """Owns the four job queues and the processors behind them."""

    def __init__(
        self,
        dispatcher: ParallelDispatcher,
        meta_model: IPredictor,
        cache: ICache,
        analyzer: IQualityAnalyzer,
        evaluator: EvaluationMetrics,
        knowledge: KnowledgeFusion,
        config: Dict[str, Any],
        metrics: Optional[MetricsCollector] = None,
    ):
        self.dispatcher = dispatcher
        self.meta_model = meta_model
        self.cache = cache
        self.analyzer = analyzer
        self.evaluator = evaluator
        self.knowledge = knowledge
        self.metrics = metrics

        queue_config = config.get("queue", {})
        cache_config = config.get("cache", {})
        self.queue_config = queue_config
        self.estimated_job_ms = queue_config.get("estimated_job_ms", 30000)
        self.evaluation_delay_ms = queue_config.get("evaluation_delay_ms", 1000)
        self.training_priority = queue_config.get("training_priority", 5)
        self.result_ttl = cache_config.get("result_ttl", 3600)
        self.feedback_ttl = cache_config.get("feedback_ttl", 604800)
        self.evaluation_ttl = cache_config.get("evaluation_ttl", 86400)

        self.queues: Dict[str, JobQueue] = {}
        self._requests: "OrderedDict[str, str]" = OrderedDict()
        self._evaluated: "OrderedDict[str, bool]" = OrderedDict()
        self._trained: "OrderedDict[str, bool]" = OrderedDict()
        self.is_initialized = False

    async def initialize(self) -> None:
        """Create the queues and start their workers."""
        if self.is_initialized:
            return

        processors = {
            JobKind.QUERY_PROCESSING: self.process_query_job,
            JobKind.MODEL_TRAINING: self.train_model_job,
            JobKind.KNOWLEDGE_ENHANCEMENT: self.enhance_knowledge_job,
            JobKind.EVALUATION: self.evaluate_response_job,
        }
        for kind, processor in processors.items():
            settings = QueueSettings.from_config(
                kind.value, {**DEFAULT_QUEUES[kind], **(self.queue_config.get(kind.value) or {})}
            )
            queue = JobQueue(kind, settings, processor, self.metrics)
            queue.start()
            self.queues[kind.value] = queue

        self.is_initialized = True
        logger.info("Queue manager initialized")

    def _queue(self, name: str) -> JobQueue:
        if not self.is_initialized:
            raise QueueError("Queue manager not initialized")
        queue = self.queues.get(name)
        if queue is None:
            raise QueueNotFoundError(f"Queue {name} not found")
        return queue

    # Processors

    async def process_query_job(self, job: Job) -> Dict[str, Any]:
        query = job.payload["query"]
        options = job.payload.get("options") or {}
        request_id = job.payload["request_id"]
        start_time = time.time()

        logger.info(
            f"Processing query job: {query[:100]}",
            extra={"job_id": job.id, "request_id": request_id},
        )
        job.update_progress(10)

        dispatch = await self.dispatcher.dispatch(query, options=options)
        job.update_progress(40)

        analysis = await self.analyzer.analyze(dispatch.merged.content, {"query": query, **options})
        job.update_progress(60)

        prediction = await self.meta_model.predict(dispatch.individual, analysis)
        job.update_progress(80)

        enhancement = None
        if options.get("enhance_with_knowledge", True) is not False:
            enhancement = await self.knowledge.enhance(query, dispatch.individual)
        job.update_progress(90)

        evaluation = await self.evaluator.evaluate_response(
            dispatch.merged.content, {"query": query}
        )
        job.update_progress(100)

        result = {
            "request_id": request_id,
            "query_id": dispatch.query_id,
            "query": query,
            "model_results": dispatch.to_dict(),
            "agent_analysis": analysis.to_dict(),
            "meta_prediction": prediction.to_dict(),
            "knowledge_enhancement": enhancement,
            "evaluation": evaluation,
            "processing_time_ms": int((time.time() - start_time) * 1000),
            "timestamp": datetime.utcnow().isoformat(),
        }

        await self.cache.set(f"result:{request_id}", result, self.result_ttl)

        if options.get("enable_learning", True) is not False:
            await self._queue(JobKind.EVALUATION.value).add(
                {"request_id": request_id, "query": query, "result": result},
                delay_ms=self.evaluation_delay_ms,
            )

        return result

    async def train_model_job(self, job: Job) -> Dict[str, Any]:
        training_data = job.payload.get("training_data") or []
        model_type = job.payload.get("model_type", "meta")
        start_time = time.time()

        logger.info(
            f"Processing {model_type} training job with {len(training_data)} examples",
            extra={"job_id": job.id},
        )
        job.update_progress(10)

        if model_type != "meta":
            raise QueueError(f"Unknown model type: {model_type}")

        for index, example in enumerate(training_data):
            await self.meta_model.add_training_example(
                [ModelCallResult.from_dict(r) for r in example.get("responses") or []],
                QualityAnalysis.from_dict(example.get("quality_analysis")),
                example.get("user_feedback") or {},
            )
            job.update_progress(10 + (index + 1) / len(training_data) * 80)

        if training_data:
            refit = await self.meta_model.retrain()
            if self.metrics:
                self.metrics.record_retrain(refit, self.meta_model.get_model_stats()["weights"])

        return {
            "model_type": model_type,
            "training_examples": len(training_data),
            "new_weights": self.meta_model.get_model_stats()["weights"],
            "processing_time_ms": int((time.time() - start_time) * 1000),
        }

    async def enhance_knowledge_job(self, job: Job) -> Dict[str, Any]:
        query = job.payload["query"]
        responses = [ModelCallResult.from_dict(r) for r in job.payload.get("responses") or []]
        start_time = time.time()

        logger.info(f"Processing knowledge enhancement job: {query[:100]}", extra={"job_id": job.id})
        job.update_progress(20)

        enhancement = await self.knowledge.enhance(query, responses)
        return {**enhancement, "processing_time_ms": int((time.time() - start_time) * 1000)}

    async def evaluate_response_job(self, job: Job) -> Dict[str, Any]:
        request_id = job.payload["request_id"]
        query = job.payload.get("query")
        result = job.payload["result"]
        start_time = time.time()

        logger.info("Processing evaluation job", extra={"job_id": job.id, "request_id": request_id})
        job.update_progress(20)

        # Marked first so feedback arriving from here on schedules training itself
        _mark_once(self._evaluated, request_id)
        feedback = await self.cache.get(f"feedback:{request_id}")
        if feedback:
            await self._schedule_training(request_id, result, feedback)
            job.update_progress(60)

        evaluation = await self.evaluator.evaluate_response(
            result["model_results"]["merged"]["content"], {"query": query}
        )
        job.update_progress(80)

        await self.cache.set(f"evaluation:{request_id}", evaluation, self.evaluation_ttl)

        return {
            "request_id": request_id,
            "evaluation": evaluation,
            "user_feedback_received": bool(feedback),
            "processing_time_ms": int((time.time() - start_time) * 1000),
        }

    async def _schedule_training(
        self, request_id: str, result: Dict[str, Any], feedback: Dict[str, Any]
    ) -> Optional[Dict[str, str]]:
        if not _mark_once(self._trained, request_id):
            return None

        example = {
            "responses": result["model_results"]["individual"],
            "quality_analysis": result.get("agent_analysis"),
            "user_feedback": feedback,
            "query": result.get("query"),
        }
        return await self.add_training_job([example])

    # Public API

    async def submit_query(self, query: str, options: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Queue a query for processing.

        Returns:
            Dict with job_id, request_id and estimated_wait_time (ms)
        """
        options = dict(options or {})
        queue = self._queue(JobKind.QUERY_PROCESSING.value)
        request_id = options.pop("request_id", None) or str(uuid.uuid4())

        job = await queue.add(
            {"query": query, "options": options, "request_id": request_id},
            priority=options.get("priority", 0),
            delay_ms=options.get("delay_ms", 0),
        )
        self._requests[request_id] = job.id
        while len(self._requests) > MAX_TRACKED_REQUESTS:
            self._requests.popitem(last=False)

        logger.info(
            f"Query job queued: {query[:100]}",
            extra={"job_id": job.id, "request_id": request_id},
        )
        return {
            "job_id": job.id,
            "request_id": request_id,
            "estimated_wait_time": self.get_estimated_wait_time(JobKind.QUERY_PROCESSING.value),
        }

    async def get_query_result(self, request_id: str) -> Dict[str, Any]:
        """Cached result if finished, otherwise the status of its job."""
        result = await self.cache.get(f"result:{request_id}")
        if result:
            return {"status": JobStatus.COMPLETED.value, "result": result}

        job_id = self._requests.get(request_id)
        if job_id is None:
            return {"status": "not_found"}
        return await self.get_job_status(job_id)

    async def get_job_status(
        self, job_id: str, queue_name: str = JobKind.QUERY_PROCESSING.value
    ) -> Dict[str, Any]:
        job = self._queue(queue_name).get_job(job_id)
        if job is None:
            return {"status": "not_found"}
        return job.to_dict()

    async def submit_feedback(
        self,
        query_id: str,
        rating: int,
        feedback: Optional[str] = None,
        aspects: Optional[Dict[str, int]] = None,
        user_id: str = "anonymous",
    ) -> Feedback:
        """
        Store user feedback for a finished query.

        Raises:
            FeedbackError: If the rating or aspects are out of range
            JobNotFoundError: If no result exists for ``query_id``
        """
        if not isinstance(rating, int) or not 1 <= rating <= 5:
            raise FeedbackError("Rating must be an integer between 1 and 5")
        for name, value in (aspects or {}).items():
            if name not in FEEDBACK_ASPECTS:
                raise FeedbackError(f"Unknown feedback aspect: {name}")
            if not isinstance(value, int) or not 1 <= value <= 5:
                raise FeedbackError(f"Aspect {name} must be an integer between 1 and 5")

        result = await self.cache.get(f"result:{query_id}")
        if not result:
            raise JobNotFoundError(f"Query {query_id} not found")

        entry = Feedback(
            query_id=query_id, rating=rating, feedback=feedback, aspects=aspects, user_id=user_id
        )
        await self.cache.set(f"feedback:{query_id}", entry.to_dict(), self.feedback_ttl)
        if self.metrics:
            self.metrics.record_feedback(rating)

        logger.info(
            f"Feedback received: rating {rating}",
            extra={"query_id": query_id, "request_id": query_id},
        )

        # Evaluation already looked for feedback; convert it here instead
        if query_id in self._evaluated:
            await self._schedule_training(query_id, result, entry.to_dict())

        return entry

    async def add_training_job(
        self, training_data: List[Dict[str, Any]], model_type: str = "meta"
    ) -> Dict[str, str]:
        job = await self._queue(JobKind.MODEL_TRAINING.value).add(
            {"training_data": training_data, "model_type": model_type},
            priority=self.training_priority,
        )
        logger.info(
            f"Training job queued with {len(training_data)} examples", extra={"job_id": job.id}
        )
        return {"job_id": job.id}

    async def add_knowledge_enhancement_job(
        self, query: str, responses: List[Dict[str, Any]], options: Optional[Dict[str, Any]] = None
    ) -> Dict[str, str]:
        job = await self._queue(JobKind.KNOWLEDGE_ENHANCEMENT.value).add(
            {"query": query, "responses": responses, "options": options or {}}
        )
        return {"job_id": job.id}

    def get_queue_stats(self) -> Dict[str, Dict[str, int]]:
        return {name: queue.counts() for name, queue in self.queues.items()}

    def get_estimated_wait_time(self, queue_name: str) -> float:
        """Milliseconds until a new job would start, assuming a fixed job time."""
        queue = self.queues.get(queue_name)
        if queue is None:
            return 0
        counts = queue.counts()
        busy = counts[JobStatus.WAITING.value] + counts[JobStatus.ACTIVE.value]
        return busy * self.estimated_job_ms / queue.settings.concurrency

    async def pause_queue(self, queue_name: str) -> None:
        self._queue(queue_name).pause()

    async def resume_queue(self, queue_name: str) -> None:
        self._queue(queue_name).resume()

    async def clear_queue(self, queue_name: str) -> int:
        return await self._queue(queue_name).clear()

    async def health_check(self) -> Dict[str, Any]:
        return {
            "initialized": self.is_initialized,
            "queues": {
                name: {"healthy": True, "paused": queue.paused, **queue.counts()}
                for name, queue in self.queues.items()
            },
            "cache": await self.cache.health_check(),
            "timestamp": datetime.utcnow().isoformat(),
        }

    async def close(self) -> None:
        for queue in self.queues.values():
            await queue.close()
        self.queues.clear()
        self.is_initialized = False
        logger.info("All queues closed")
