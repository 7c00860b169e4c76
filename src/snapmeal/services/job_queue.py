"""Job record persistence for asynchronous account jobs.

Jobs are plain rows in the ``jobs`` table. The API inserts them in the
``pending`` state; the worker picks up rows that were never dispatched and
writes back one terminal outcome. A finished job is never written again.

Job types handled today:
- exportData: export the user's meals as CSV and email a download link
- deleteAccount: delete the user's data, identity and stored files

Usage:
    from snapmeal.services.job_queue import JobQueueService

    async def queue_export(session: AsyncSession, uid: str, email: str) -> str:
        queue = JobQueueService(session)
        job = await queue.enqueue(user_id=uid, user_email=email, job_type="exportData")
        await session.commit()
        return job.job_id
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from snapmeal.db.models.base import JobStatus
from snapmeal.db.models.jobs import Job

if TYPE_CHECKING:
    from collections.abc import Collection

    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

DEFAULT_PRIORITY = 1


class JobType(str, Enum):
    """Job types with a registered handler.

    Unrecognized job types are still accepted at enqueue time.
    """

    EXPORT_DATA = "exportData"
    DELETE_ACCOUNT = "deleteAccount"


class JobQueueError(Exception):
    """Base exception for job queue operations."""

    pass


class JobNotFoundError(JobQueueError):
    """Raised when a job cannot be found."""

    pass


class JobAlreadyFinishedError(JobQueueError):
    """Raised when an outcome is written to a job that is no longer pending."""

    pass


class JobQueueService:
    """Reads and writes job records.

    The service flushes but never commits; callers own the transaction.

    Attributes:
        session: SQLAlchemy async session for database operations.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def enqueue(
        self,
        *,
        user_id: str,
        user_email: str | None,
        job_type: str | JobType,
        priority: int | None = None,
        task_data: dict[str, Any] | None = None,
    ) -> Job:
        """Insert a new pending job.

        Args:
            user_id: Owning account.
            user_email: Address for the completion email.
            job_type: Declared job type; stored as given.
            priority: Job priority; falsy values become 1.
            task_data: Caller pass-through payload, stored verbatim.

        Returns:
            The persisted Job with its generated id.

        Raises:
            JobQueueError: If the insert fails.
        """
        job_type_value = job_type.value if isinstance(job_type, JobType) else job_type

        job = Job(
            user_id=user_id,
            user_email=user_email,
            job_type=job_type_value,
            status=JobStatus.PENDING,
            priority=priority or DEFAULT_PRIORITY,
            created_at=datetime.now(UTC),
            completed_at=None,
            errors=[],
            attempts=0,
            task_data=dict(task_data or {}),
        )

        try:
            self.session.add(job)
            await self.session.flush()
        except SQLAlchemyError as e:
            logger.error("Failed to enqueue job: %s", str(e))
            raise JobQueueError(f"Failed to enqueue job: {e}") from e

        logger.info(
            "Job enqueued: job_id=%s, job_type=%s, user_id=%s, priority=%d",
            job.job_id,
            job_type_value,
            user_id,
            job.priority,
        )
        return job

    async def get_job(self, job_id: str) -> Job | None:
        """Get a job by ID."""
        result = await self.session.execute(select(Job).where(Job.job_id == job_id))
        return result.scalar_one_or_none()

    async def get_job_for_user(self, job_id: str, user_id: str) -> Job | None:
        """Get a job by ID, only if it belongs to ``user_id``."""
        result = await self.session.execute(
            select(Job).where(Job.job_id == job_id, Job.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def record_outcome(
        self,
        job_id: str,
        *,
        success: bool,
        error: str | None = None,
    ) -> Job:
        """Write the outcome of one dispatch to the job record.

        ``attempts`` is incremented whatever the outcome. Success sets
        ``completed``; failure sets ``failed`` and appends ``error`` to the
        job's error list. A job leaves ``pending`` at most once.

        Raises:
            JobNotFoundError: If the job does not exist.
            JobAlreadyFinishedError: If the job already has a terminal status.
            JobQueueError: If the update fails.
        """
        try:
            job = await self.get_job(job_id)
            if job is None:
                raise JobNotFoundError(f"Job not found: {job_id}")
            if job.status in (JobStatus.COMPLETED, JobStatus.FAILED):
                raise JobAlreadyFinishedError(
                    f"Job {job_id} is already {job.status.value}"
                )

            job.attempts += 1
            if success:
                job.status = JobStatus.COMPLETED
                job.completed_at = datetime.now(UTC)
            else:
                job.status = JobStatus.FAILED
                # Reassign so the JSON column is marked dirty
                job.errors = [*(job.errors or []), error or "Unknown error"]

            await self.session.flush()

        except JobQueueError:
            raise
        except SQLAlchemyError as e:
            logger.error("Failed to record outcome for job %s: %s", job_id, str(e))
            raise JobQueueError(f"Failed to record job outcome: {e}") from e

        logger.info(
            "Job %s: job_id=%s, job_type=%s, attempts=%d",
            job.status.value,
            job_id,
            job.job_type,
            job.attempts,
        )
        return job

    async def undelivered(
        self,
        *,
        exclude: Collection[str] = (),
        limit: int = 50,
    ) -> list[Job]:
        """Pending jobs that were never dispatched, oldest first.

        Args:
            exclude: Job ids to skip (already delivered but left pending).
            limit: Maximum number of jobs to return.
        """
        stmt = (
            select(Job)
            .where(Job.status == JobStatus.PENDING, Job.attempts == 0)
            .order_by(Job.created_at, Job.job_id)
            .limit(limit)
        )
        if exclude:
            stmt = stmt.where(Job.job_id.not_in(list(exclude)))
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def still_undelivered(self, job_ids: Collection[str]) -> set[str]:
        """The subset of ``job_ids`` that is still pending and never dispatched."""
        if not job_ids:
            return set()
        result = await self.session.execute(
            select(Job.job_id).where(
                Job.job_id.in_(list(job_ids)),
                Job.status == JobStatus.PENDING,
                Job.attempts == 0,
            )
        )
        return set(result.scalars().all())
