"""Pydantic request/response schemas for the PeopleSorter API."""

from __future__ import annotations

from pydantic import BaseModel, Field


class RunStatusResponse(BaseModel):
    """Progress of the current (or most recent) classification run."""

    run_id: int = Field(description="Sequence number of the run; 0 before the first run")
    state: str = Field(description="'idle', 'running', 'completed', 'cancelled' or 'failed'")
    total: int = Field(ge=0, description="Number of image files accepted for the run")
    processed: int = Field(ge=0)
    failed: int = Field(ge=0)
    percent: float = Field(ge=0.0, le=100.0)


class ClassifiedImageInfo(BaseModel):
    """A single classified image."""

    id: str
    url: str = Field(description="Where the browser can fetch the original image")
    category: str
    filename: str
    person_count: int = Field(ge=0)


class CategoryGroup(BaseModel):
    category: str
    count: int
    images: list[ClassifiedImageInfo]


class ResultsResponse(BaseModel):
    """All classified images grouped by category, in display order."""

    total: int
    categories: list[CategoryGroup]


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    gpu: bool
    model_state: str = Field(description="Detector state: 'loading', 'ready' or 'failed'")
    model_error: str | None = None
    models_loaded: list[str]
    concurrent_requests: int
    queue_depth: int


class ModelInfo(BaseModel):
    """Information about an available model."""

    name: str
    task: str
    status: str = Field(description="Model status: 'active' or 'available'")
    license: str


class ModelsResponse(BaseModel):
    """Response for the models listing endpoint."""

    models: list[ModelInfo]


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
