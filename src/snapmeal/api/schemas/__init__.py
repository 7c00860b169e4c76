"""Pydantic request/response schemas for the SnapMeal API."""

from snapmeal.api.schemas.jobs import (
    EnqueueJobRequest,
    EnqueueJobResponse,
    HealthResponse,
    JobRecordResponse,
)

__all__ = [
    "EnqueueJobRequest",
    "EnqueueJobResponse",
    "HealthResponse",
    "JobRecordResponse",
]
