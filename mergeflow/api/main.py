"""
MergeFlow FastAPI Server
Main API application
"""

from fastapi import FastAPI, HTTPException, Depends, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import time
import uuid
import uvicorn
from typing import Dict, Any

from mergeflow import __version__
from mergeflow.core.exceptions import (
    AuthenticationError,
    FeedbackError,
    JobNotFoundError,
    MergeFlowError,
    QueueNotFoundError,
    UnknownProviderError,
)
from mergeflow.core.models import JobStatus
from .models import (
    AgentRequest,
    AgentStartResponse,
    AgentTaskResponse,
    CredentialRequest,
    CredentialResponse,
    ErrorResponse,
    FeedbackRequest,
    FeedbackResponse,
    HealthResponse,
    QueryRequest,
    QuerySubmitResponse,
)
from .dependencies import Services, cleanup_resources, get_config, get_services
from ..utils.logger import get_logger

logger = get_logger(__name__)

API_PREFIX = "/api/v1"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager"""
    logger.info("Starting MergeFlow API server")

    try:
        services = await get_services()
        logger.info(f"Services initialized with {len(services.registry.descriptors)} models")
        yield
    except Exception as e:
        logger.error(f"Failed to initialize services: {e}")
        raise
    finally:
        await cleanup_resources()
        logger.info("Shutting down MergeFlow API server")


# Create FastAPI app
app = FastAPI(
    title="MergeFlow API",
    description="Adaptive multi-model orchestration and ensemble engine",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def error(status_code: int, error_type: str, message: str) -> HTTPException:
    return HTTPException(status_code=status_code, detail={"error": error_type, "message": message})


@app.exception_handler(MergeFlowError)
async def mergeflow_error_handler(request: Request, exc: MergeFlowError):
    """Report unhandled domain errors without leaking internals."""
    logger.error(f"Unhandled error on {request.url.path}: {exc}")
    body = ErrorResponse(error=type(exc).__name__, message=str(exc))
    return JSONResponse(status_code=500, content=jsonable_encoder(body))


@app.get("/health", response_model=HealthResponse)
async def health_check(services: Services = Depends(get_services)):
    """Health check endpoint"""
    cache_ok = await services.cache.health_check()
    queues = await services.queue_manager.health_check()
    return HealthResponse(
        status="healthy" if cache_ok and queues["initialized"] else "degraded",
        timestamp=time.time(),
        version=__version__,
        services={
            "api": "healthy",
            "cache": "healthy" if cache_ok else "unhealthy",
            "queues": "healthy" if queues["initialized"] else "not_initialized",
            "models": str(len(services.registry.descriptors)),
            "cache_hit_rate": f"{services.cache.stats()['hit_rate']:.2f}",
        },
    )


@app.post(f"{API_PREFIX}/queries", status_code=202, response_model=QuerySubmitResponse)
async def submit_query(request: QueryRequest, services: Services = Depends(get_services)):
    """Queue a query for multi-model processing"""
    options = request.options.dict(exclude_none=True)
    submitted = await services.queue_manager.submit_query(request.query, options)
    query_id = submitted["request_id"]

    logger.info("Query submitted", extra={"request_id": query_id, "job_id": submitted["job_id"]})

    return QuerySubmitResponse(
        query_id=query_id,
        job_id=submitted["job_id"],
        estimated_wait_time=submitted["estimated_wait_time"],
        links={
            "status": f"{API_PREFIX}/queries/{query_id}/status",
            "result": f"{API_PREFIX}/queries/{query_id}",
            "feedback": f"{API_PREFIX}/queries/{query_id}/feedback",
        },
    )


@app.get(f"{API_PREFIX}/queries/{{query_id}}")
async def get_query_result(query_id: str, services: Services = Depends(get_services)):
    """Result of a query, or its processing status"""
    status = await services.queue_manager.get_query_result(query_id)

    if status["status"] == "not_found":
        raise error(404, "Not Found", "Query not found")

    if status["status"] == JobStatus.FAILED.value:
        raise error(500, "Processing Failed", status.get("failed_reason") or "Query processing failed")

    if status["status"] != JobStatus.COMPLETED.value:
        return JSONResponse(
            status_code=202,
            content={
                "success": False,
                "query_id": query_id,
                "status": status["status"],
                "progress": status.get("progress", 0),
                "message": "Query is still being processed",
            },
        )

    result = status.get("result") or {}
    merged = result["model_results"]["merged"]
    prediction = result.get("meta_prediction") or {}
    evaluation = result.get("evaluation") or {}
    enhancement = result.get("knowledge_enhancement") or {}

    return {
        "success": True,
        "query_id": query_id,
        "query": result.get("query"),
        "result": {
            "content": merged["content"],
            "primary_model": merged["primary_model"],
            "consensus": merged["confidence"],
            "confidence": prediction.get("confidence"),
            "quality_score": evaluation.get("overall_score"),
            "sources": enhancement.get("external_knowledge", []),
            "model_weights": prediction.get("model_weights", {}),
        },
        "evaluation": {
            "overall": evaluation.get("overall_score"),
            "metrics": {
                name: metric.get("score") for name, metric in (evaluation.get("metrics") or {}).items()
            },
            "recommendations": len(evaluation.get("recommendations") or []),
        },
        "metadata": {
            "timestamp": result.get("timestamp"),
            "processing_time_ms": result.get("processing_time_ms"),
            "from_cache": result["model_results"].get("from_cache", False),
            "model_responses": len(result["model_results"]["individual"]),
            "success_rate": result["model_results"]["success_rate"],
        },
    }


@app.get(f"{API_PREFIX}/queries/{{query_id}}/status")
async def get_query_status(query_id: str, services: Services = Depends(get_services)):
    """Processing status of a query"""
    status = await services.queue_manager.get_query_result(query_id)
    if status["status"] == "not_found":
        raise error(404, "Not Found", "Query not found")
    if status["status"] == JobStatus.COMPLETED.value and "result" in status:
        return {"query_id": query_id, "status": JobStatus.COMPLETED.value, "progress": 100}
    return {"query_id": query_id, **status}


@app.post(f"{API_PREFIX}/queries/{{query_id}}/feedback", response_model=FeedbackResponse)
async def submit_feedback(
    query_id: str, request: FeedbackRequest, services: Services = Depends(get_services)
):
    """Store feedback; it becomes a training example for the meta-model"""
    aspects = request.aspects.dict(exclude_none=True) if request.aspects else None
    try:
        await services.queue_manager.submit_feedback(
            query_id, request.rating, request.feedback, aspects or None
        )
    except JobNotFoundError:
        raise error(404, "Not Found", "Query not found")
    except FeedbackError as e:
        raise error(400, "Validation Error", str(e))

    return FeedbackResponse(query_id=query_id, feedback_id=str(uuid.uuid4()))


@app.post(f"{API_PREFIX}/agents", status_code=202, response_model=AgentStartResponse)
async def start_agent(request: AgentRequest, services: Services = Depends(get_services)):
    """Start a background agent task"""
    task_id = services.agents.start_agent(request.message, request.model, request.options)
    return AgentStartResponse(task_id=task_id)


@app.get(f"{API_PREFIX}/agents/{{task_id}}", response_model=AgentTaskResponse)
async def get_agent_task(task_id: str, services: Services = Depends(get_services)):
    """Agent task status and logs"""
    task = services.agents.get_task(task_id)
    if task is None:
        raise error(404, "Not Found", "Task not found")
    return AgentTaskResponse(**task.to_dict())


@app.get(f"{API_PREFIX}/models")
async def list_models(services: Services = Depends(get_services)) -> Dict[str, Any]:
    """Registered models with their current statistics"""
    models = services.registry.list_models()
    return {"models": models, "total": len(models)}


@app.post(f"{API_PREFIX}/models/credentials", response_model=CredentialResponse)
async def add_credential(request: CredentialRequest, services: Services = Depends(get_services)):
    """Validate an API key and register the models it unlocks"""
    try:
        summary = await services.registry.add_credential(request.api_key, request.provider)
    except UnknownProviderError as e:
        raise error(400, "Validation Error", str(e))
    except AuthenticationError as e:
        raise error(401, "Authentication Failed", str(e))

    services.meta_model.sync_models(d.model_id for d in services.registry.descriptors)
    return CredentialResponse(**summary)


@app.delete(f"{API_PREFIX}/models/credentials/{{provider}}")
async def remove_credential(provider: str, services: Services = Depends(get_services)):
    """Forget a provider key with its models and statistics"""
    if provider not in services.registry.providers:
        raise error(404, "Not Found", f"No credential for provider {provider}")
    summary = await services.registry.remove_credential(provider)
    services.meta_model.retain_models(d.model_id for d in services.registry.descriptors)
    return summary


@app.get(f"{API_PREFIX}/models/performance")
async def get_performance(services: Services = Depends(get_services)) -> Dict[str, Any]:
    """Per-model performance statistics"""
    return {
        model_id: record.to_dict() for model_id, record in services.tracker.snapshot().items()
    }


@app.post(f"{API_PREFIX}/models/performance/reset")
async def reset_performance(services: Services = Depends(get_services)):
    """Reset every model to neutral statistics"""
    await services.tracker.reset()
    return {"success": True, "message": "Model performance data reset"}


@app.get(f"{API_PREFIX}/meta-model")
async def meta_model_stats(services: Services = Depends(get_services)):
    """Current meta-model weights and training state"""
    return services.meta_model.get_model_stats()


@app.get(f"{API_PREFIX}/queues")
async def queue_stats(services: Services = Depends(get_services)) -> Dict[str, Any]:
    """Job counts per queue"""
    return services.queue_manager.get_queue_stats()


@app.post(f"{API_PREFIX}/queues/{{queue_name}}/{{action}}")
async def control_queue(queue_name: str, action: str, services: Services = Depends(get_services)):
    """Pause, resume or clear a queue"""
    actions = {
        "pause": services.queue_manager.pause_queue,
        "resume": services.queue_manager.resume_queue,
        "clear": services.queue_manager.clear_queue,
    }
    if action not in actions:
        raise error(400, "Validation Error", f"Unknown queue action: {action}")
    try:
        outcome = await actions[action](queue_name)
    except QueueNotFoundError as e:
        raise error(404, "Not Found", str(e))

    response: Dict[str, Any] = {"queue": queue_name, "action": action, "success": True}
    if action == "clear":
        response["removed"] = outcome
    return response


@app.get("/metrics")
async def metrics_endpoint(services: Services = Depends(get_services)):
    """Prometheus-compatible metrics endpoint"""
    return services.metrics.get_metrics()


def run(host: str = None, port: int = None, reload: bool = False):
    """Serve the API with uvicorn."""
    config = get_config()
    uvicorn.run(
        "mergeflow.api.main:app",
        host=host or config.get("api", {}).get("host", "0.0.0.0"),
        port=port or config.get("api", {}).get("port", 8000),
        reload=reload,
        log_level="info",
    )


if __name__ == "__main__":
    run(reload=True)
