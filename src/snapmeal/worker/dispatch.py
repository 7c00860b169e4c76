"""Job dispatch: runs the handler for a newly created job and records the outcome.

Each :class:`JobCreatedEvent` is dispatched independently. Delivery is
at-least-once with no deduplication token: events for jobs that are no longer
pending are skipped, and an outcome is never written over a finished job, but
two concurrent deliveries of the same pending job can both run the handler.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from sqlalchemy.exc import SQLAlchemyError

from snapmeal.db import session_scope
from snapmeal.db.models.base import JobStatus
from snapmeal.services.job_queue import (
    JobAlreadyFinishedError,
    JobQueueError,
    JobQueueService,
    JobType,
)
from snapmeal.worker.handlers import delete_account, export_data
from snapmeal.worker.handlers.base import JobHandler, JobResult, MissingUserIdError

if TYPE_CHECKING:
    from snapmeal.core.container import Services

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class JobCreatedEvent:
    """A job record that has just been created.

    Attributes:
        job_id: Id of the created job.
        data: The job's record view (see ``Job.to_record``), or None if it
            could not be read.
    """

    job_id: str
    data: Mapping[str, Any] | None


def default_handlers() -> dict[str, JobHandler]:
    """Handlers for every job type the worker understands."""
    return {
        JobType.EXPORT_DATA.value: export_data,
        JobType.DELETE_ACCOUNT.value: delete_account,
    }


class JobDispatcher:
    """Routes created jobs to their handler and writes back the outcome.

    Example:
        dispatcher = JobDispatcher(services)
        result = await dispatcher.dispatch(JobCreatedEvent(job.job_id, job.to_record()))
    """

    def __init__(
        self,
        services: Services,
        handlers: Mapping[str, JobHandler] | None = None,
        *,
        fail_unknown_job_types: bool | None = None,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            services: Service bundle passed to handlers.
            handlers: Job type to handler mapping; defaults to :func:`default_handlers`.
            fail_unknown_job_types: Record unknown job types as failed instead
                of leaving them pending. Defaults to the jobs setting.
        """
        self._services = services
        self._handlers: dict[str, JobHandler] = dict(
            handlers if handlers is not None else default_handlers()
        )
        if fail_unknown_job_types is None:
            fail_unknown_job_types = services.jobs.fail_unknown_job_types
        self._fail_unknown_job_types = fail_unknown_job_types

    def register_handler(self, job_type: str | JobType, handler: JobHandler) -> None:
        """Register a handler for a specific job type."""
        type_str = job_type.value if isinstance(job_type, JobType) else job_type
        self._handlers[type_str] = handler
        logger.debug("Registered handler for job_type=%s", type_str)

    async def dispatch(self, event: JobCreatedEvent) -> JobResult | None:
        """Run the handler for ``event`` and record its outcome.

        Returns:
            The handler result, or None if nothing ran (unreadable event, job
            already finished, or unknown job type left pending).
        """
        data = event.data
        if not isinstance(data, Mapping):
            logger.warning("No data found for job ID %s", event.job_id)
            return None

        status = data.get("status", JobStatus.PENDING.value)
        if status != JobStatus.PENDING.value:
            logger.info("Job %s is already %s, skipping", event.job_id, status)
            return None

        job_type = data.get("jobType")
        handler = self._handlers.get(job_type) if isinstance(job_type, str) else None

        if handler is None:
            logger.warning("Unknown job type %r for job ID %s", job_type, event.job_id)
            if not self._fail_unknown_job_types:
                return None
            result = JobResult.fail(f"Unknown job type: {job_type}")
        else:
            logger.info("Dispatching job: job_id=%s, job_type=%s", event.job_id, job_type)
            try:
                result = await handler(
                    self._services,
                    user_id=data.get("userId"),
                    user_email=data.get("userEmail"),
                )
            except MissingUserIdError as e:
                logger.error("Job %s rejected: %s", event.job_id, e)
                await self._services.telemetry.capture_exception(
                    e,
                    job_id=event.job_id,
                    job_type=job_type,
                )
                result = JobResult.fail(str(e))

        await self._record_outcome(event.job_id, result)
        return result

    async def _record_outcome(self, job_id: str, result: JobResult) -> None:
        """Persist ``result`` on the job record. Failures are reported, not raised."""
        try:
            async with session_scope(self._services.session_factory) as session:
                await JobQueueService(session).record_outcome(
                    job_id,
                    success=result.success,
                    error=None if result.success else result.message,
                )
                await session.commit()
        except JobAlreadyFinishedError as e:
            logger.warning("Outcome for job %s discarded: %s", job_id, e)
        except (JobQueueError, SQLAlchemyError) as e:
            logger.exception("Error updating job %s: %s", job_id, e)
            await self._services.telemetry.capture_exception(
                e,
                job_id=job_id,
                operation="recordOutcome",
            )
