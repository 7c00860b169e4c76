"""Jobs API router.

Authenticated users queue asynchronous jobs for their own account and
read back the job record to follow its outcome.
"""

from __future__ import annotations

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Body
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from snapmeal.api.middleware.auth import Caller, OptionalCaller, ServicesDep
from snapmeal.api.middleware.errors import (
    InternalError,
    InvalidArgumentError,
    NotFoundError,
    UnauthenticatedError,
    validation_details,
)
from snapmeal.api.schemas.jobs import EnqueueJobRequest, EnqueueJobResponse, JobRecordResponse
from snapmeal.db import session_scope
from snapmeal.services.job_queue import JobQueueError, JobQueueService

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/jobs",
    tags=["jobs"],
    responses={
        400: {"description": "Invalid argument"},
        401: {"description": "Authentication required"},
    },
)


@router.post("", response_model=EnqueueJobResponse)
async def enqueue_job(
    caller: OptionalCaller,
    services: ServicesDep,
    payload: Annotated[Any, Body()] = None,
) -> EnqueueJobResponse:
    """Queue a job for the calling user.

    Checks run in order: caller identity, job type, user id. The body is
    validated only after the caller is known, so an unauthenticated call
    is always rejected as such.
    """
    if caller is None:
        raise UnauthenticatedError

    try:
        request = EnqueueJobRequest.model_validate(payload if payload is not None else {})
    except ValidationError as e:
        raise InvalidArgumentError(
            "Invalid job request.",
            detail={"errors": validation_details(e.errors())},
        ) from e

    if not request.job_type:
        raise InvalidArgumentError("Job type is required.")
    if not caller.uid:
        raise InvalidArgumentError("User ID is required.")

    try:
        async with session_scope(services.session_factory) as session:
            job = await JobQueueService(session).enqueue(
                user_id=caller.uid,
                user_email=caller.email,
                job_type=request.job_type,
                priority=request.priority,
                task_data=request.task_data,
            )
            await session.commit()
    except (JobQueueError, SQLAlchemyError) as e:
        await services.telemetry.capture_exception(
            e,
            operation="queueJob",
            user_id=caller.uid,
            job_type=request.job_type,
        )
        raise InternalError(f"Error adding task to queue: {e}") from e

    return EnqueueJobResponse(
        success=True,
        message=f"Your {request.job_type} task has been queued.",
        job_id=job.job_id,
    )


@router.get("/{job_id}", response_model=JobRecordResponse)
async def get_job(job_id: str, caller: Caller, services: ServicesDep) -> JobRecordResponse:
    """Return one of the caller's jobs."""
    async with session_scope(services.session_factory) as session:
        job = await JobQueueService(session).get_job_for_user(job_id, caller.uid)

    if job is None:
        raise NotFoundError("Job", job_id)

    return JobRecordResponse(
        job_id=job.job_id,
        user_id=job.user_id,
        user_email=job.user_email,
        job_type=job.job_type,
        status=job.status.value,
        priority=job.priority,
        created_at=job.created_at,
        completed_at=job.completed_at,
        errors=list(job.errors or []),
        attempts=job.attempts,
        task_data=dict(job.task_data or {}),
    )
