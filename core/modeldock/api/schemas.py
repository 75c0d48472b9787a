"""Pydantic models for API request/response schemas."""

from pydantic import BaseModel

from modeldock.models.types import InferenceParams, ManageModel, RuntimeInfo


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str


class SuccessResponse(BaseModel):
    """Generic success response."""

    success: bool
    message: str | None = None


class ModelRequest(BaseModel):
    """Request targeting a catalog entry by URL."""

    url: str


class CatalogResponse(BaseModel):
    """Catalog with the orchestrator's current status."""

    models: list[ManageModel]
    current_model: str | None = None
    is_downloading: bool
    is_loading_model: bool
    is_generating: bool
    runtime_info: RuntimeInfo | None = None
    params: InferenceParams
    last_error: str | None = None


class CompletionRequest(BaseModel):
    """Completion request."""

    prompt: str
    stream: bool = False


class CompletionResponse(BaseModel):
    """Completion response."""

    content: str
