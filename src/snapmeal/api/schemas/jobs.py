"""Pydantic schemas for the jobs API.

Wire names are camelCase (``jobType``, ``taskData``, ``jobId``); Python
attributes are snake_case.
"""

from __future__ import annotations

# NOTE: datetime must remain at runtime for Pydantic validation
from datetime import datetime  # noqa: TC003
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model with camelCase aliases."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class EnqueueJobRequest(CamelModel):
    """Request body for queueing a job.

    Every field is optional at the schema level so the endpoint can report
    a missing job type with its own message.
    """

    job_type: str | None = Field(None, max_length=100, description="Job type, e.g. exportData")
    priority: int | None = Field(None, description="Job priority (defaults to 1)")
    task_data: dict[str, Any] | None = Field(
        None,
        description="Pass-through payload stored with the job",
    )


class EnqueueJobResponse(CamelModel):
    """Response for a queued job."""

    success: bool = True
    message: str
    job_id: str


class JobRecordResponse(CamelModel):
    """A job record as seen by its owner."""

    job_id: str
    user_id: str
    user_email: str | None
    job_type: str
    status: str
    priority: int
    created_at: datetime
    completed_at: datetime | None
    errors: list[str]
    attempts: int
    task_data: dict[str, Any]


class HealthResponse(BaseModel):
    """Liveness check response."""

    uptime: float = Field(..., description="Seconds since the API started")
    message: str = "OK"
    timestamp: int = Field(..., description="Current time in milliseconds since the epoch")
