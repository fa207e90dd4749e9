"""
Pydantic models for the MergeFlow API
"""

from pydantic import BaseModel, Field, validator
from typing import Dict, List, Any, Optional
from datetime import datetime


class QueryOptions(BaseModel):
    """Per-query processing options"""

    priority: int = Field(0, ge=0, le=10, description="0 = unprioritised, 1 runs first")
    skip_cache: bool = Field(False, description="Ignore cached dispatch results")
    enhance_with_knowledge: bool = Field(True, description="Attach external references")
    enable_learning: bool = Field(True, description="Schedule evaluation for learning")
    max_tokens: Optional[int] = Field(None, ge=100, le=4000, description="Max output tokens")
    temperature: Optional[float] = Field(None, ge=0.0, le=2.0, description="Sampling temperature")
    timeout_ms: Optional[int] = Field(None, ge=5000, le=60000, description="Per-call timeout")
    selected_model: Optional[str] = Field(None, description="Single model id or key")
    selected_models: Optional[List[str]] = Field(None, description="Model ids or keys")


class QueryRequest(BaseModel):
    """Request model for query submission"""

    query: str = Field(..., min_length=1, max_length=5000, description="User query")
    options: QueryOptions = Field(default_factory=QueryOptions)

    @validator("query")
    def query_not_empty(cls, v):
        if not v.strip():
            raise ValueError("Query cannot be empty")
        return v.strip()


class QuerySubmitResponse(BaseModel):
    """Response for an accepted query"""

    query_id: str = Field(..., description="Request id used to poll for the result")
    job_id: str = Field(..., description="Queue job id")
    status: str = Field("queued", description="Submission status")
    estimated_wait_time: float = Field(..., description="Estimated wait in milliseconds")
    links: Dict[str, str] = Field(default_factory=dict, description="Follow-up URLs")
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class FeedbackAspects(BaseModel):
    """Optional per-aspect ratings"""

    accuracy: Optional[int] = Field(None, ge=1, le=5)
    clarity: Optional[int] = Field(None, ge=1, le=5)
    completeness: Optional[int] = Field(None, ge=1, le=5)
    relevance: Optional[int] = Field(None, ge=1, le=5)


class FeedbackRequest(BaseModel):
    """User feedback on a query result"""

    rating: int = Field(..., ge=1, le=5, description="Overall rating")
    feedback: Optional[str] = Field(None, max_length=1000, description="Free-text feedback")
    aspects: Optional[FeedbackAspects] = Field(None, description="Per-aspect ratings")


class FeedbackResponse(BaseModel):
    """Acknowledgement of stored feedback"""

    success: bool = True
    query_id: str
    feedback_id: str
    message: str = "Feedback submitted successfully"
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class AgentRequest(BaseModel):
    """Start an agent task"""

    message: str = Field(..., min_length=1, max_length=5000, description="Task for the agent")
    model: Optional[str] = Field(None, description="Model to use in single-model mode")
    options: Dict[str, Any] = Field(default_factory=dict, description="collaboration, selected_models, ...")


class AgentStartResponse(BaseModel):
    task_id: str
    status: str = "processing"


class AgentTaskResponse(BaseModel):
    """Agent task state"""

    id: str
    status: str
    logs: List[str]
    result: Optional[Dict[str, Any]] = None
    created_at: Optional[str] = None
    finished_at: Optional[str] = None


class CredentialRequest(BaseModel):
    """Provider API key to validate and register"""

    api_key: str = Field(..., min_length=1, description="Provider API key")
    provider: Optional[str] = Field(None, description="Provider family; detected when omitted")


class CredentialResponse(BaseModel):
    provider: str
    provider_name: str
    models_discovered: int
    models: List[Dict[str, Any]]


class HealthResponse(BaseModel):
    """Health check response"""

    status: str = Field(..., description="Overall health status")
    timestamp: float = Field(..., description="Health check timestamp")
    version: str = Field(..., description="Application version")
    services: Dict[str, str] = Field(..., description="Individual service statuses")


class ErrorResponse(BaseModel):
    """Error response model"""

    error: str = Field(..., description="Error type")
    message: str = Field(..., description="Error message")
    timestamp: datetime = Field(default_factory=datetime.utcnow, description="Error timestamp")
