"""Tests for job dispatch.

Tests cover:
- Outcome recording for successful and failed handlers
- Unknown job types (left pending, or failed when configured)
- Unreadable creation events
- Jobs without a user id
- Duplicate deliveries, finished jobs and record update failures
"""

from unittest.mock import AsyncMock

import pytest

from snapmeal.db.models.base import JobStatus
from snapmeal.worker.dispatch import JobCreatedEvent, JobDispatcher, default_handlers
from snapmeal.worker.handlers import JobResult, delete_account, export_data
from tests.factories import create_job, get_job


def event_for(job) -> JobCreatedEvent:
    return JobCreatedEvent(job.job_id, job.to_record())


@pytest.fixture
def succeeding_handler() -> AsyncMock:
    return AsyncMock(return_value=JobResult.ok("done"))


@pytest.fixture
def failing_handler() -> AsyncMock:
    return AsyncMock(return_value=JobResult.fail("boom"))


class TestDefaultHandlers:
    """Tests for the handler registry."""

    def test_default_handlers(self):
        assert default_handlers() == {
            "exportData": export_data,
            "deleteAccount": delete_account,
        }

    @pytest.mark.asyncio
    async def test_register_handler(self, services, session_factory, succeeding_handler):
        dispatcher = JobDispatcher(services, handlers={})
        dispatcher.register_handler("resizePhotos", succeeding_handler)
        job = await create_job(session_factory, job_type="resizePhotos")

        result = await dispatcher.dispatch(event_for(job))

        assert result.success is True
        succeeding_handler.assert_awaited_once()


class TestDispatchOutcome:
    """Tests for outcome recording."""

    @pytest.mark.asyncio
    async def test_success_completes_job(self, services, session_factory, succeeding_handler):
        job = await create_job(session_factory)
        dispatcher = JobDispatcher(services, {"exportData": succeeding_handler})

        result = await dispatcher.dispatch(event_for(job))

        assert result.success is True
        stored = await get_job(session_factory, job.job_id)
        assert stored.status == JobStatus.COMPLETED
        assert stored.completed_at is not None
        assert stored.attempts == 1
        assert stored.errors == []

    @pytest.mark.asyncio
    async def test_failure_fails_job(self, services, session_factory, failing_handler):
        job = await create_job(session_factory)
        dispatcher = JobDispatcher(services, {"exportData": failing_handler})

        result = await dispatcher.dispatch(event_for(job))

        assert result.success is False
        stored = await get_job(session_factory, job.job_id)
        assert stored.status == JobStatus.FAILED
        assert stored.completed_at is None
        assert stored.attempts == 1
        assert stored.errors == ["boom"]

    @pytest.mark.asyncio
    async def test_handler_receives_job_user(self, services, session_factory, succeeding_handler):
        job = await create_job(session_factory, user_id="u7", user_email="u7@x.com")
        dispatcher = JobDispatcher(services, {"exportData": succeeding_handler})

        await dispatcher.dispatch(event_for(job))

        succeeding_handler.assert_awaited_once_with(
            services, user_id="u7", user_email="u7@x.com"
        )

    @pytest.mark.asyncio
    async def test_routes_on_job_type(self, services, session_factory, succeeding_handler):
        export_handler = AsyncMock(return_value=JobResult.ok("exported"))
        job = await create_job(session_factory, job_type="deleteAccount")
        dispatcher = JobDispatcher(
            services,
            {"exportData": export_handler, "deleteAccount": succeeding_handler},
        )

        await dispatcher.dispatch(event_for(job))

        succeeding_handler.assert_awaited_once()
        export_handler.assert_not_called()

    @pytest.mark.asyncio
    async def test_duplicate_delivery_keeps_first_outcome(
        self, services, session_factory, failing_handler, telemetry
    ):
        """Two deliveries of the same pending job leave a single outcome."""
        job = await create_job(session_factory)
        event = event_for(job)
        dispatcher = JobDispatcher(services, {"exportData": failing_handler})

        await dispatcher.dispatch(event)
        await dispatcher.dispatch(event)

        assert failing_handler.await_count == 2
        stored = await get_job(session_factory, job.job_id)
        assert stored.status == JobStatus.FAILED
        assert stored.attempts == 1
        assert stored.errors == ["boom"]
        telemetry.capture_exception.assert_not_called()

    @pytest.mark.asyncio
    async def test_finished_job_skipped(self, services, session_factory, succeeding_handler):
        job = await create_job(session_factory)
        dispatcher = JobDispatcher(services, {"exportData": succeeding_handler})
        await dispatcher.dispatch(event_for(job))

        stored = await get_job(session_factory, job.job_id)
        result = await dispatcher.dispatch(event_for(stored))

        assert result is None
        succeeding_handler.assert_awaited_once()
        assert (await get_job(session_factory, job.job_id)).attempts == 1

    @pytest.mark.asyncio
    async def test_task_data_cannot_retarget_job(
        self, services, session_factory, succeeding_handler
    ):
        job = await create_job(
            session_factory,
            user_id="u1",
            user_email="u1@x.com",
            job_type="deleteAccount",
            task_data={"userId": "u2", "userEmail": "u2@x.com", "jobType": "exportData"},
        )
        export_handler = AsyncMock(return_value=JobResult.ok("exported"))
        dispatcher = JobDispatcher(
            services,
            {"exportData": export_handler, "deleteAccount": succeeding_handler},
        )

        await dispatcher.dispatch(event_for(job))

        export_handler.assert_not_called()
        succeeding_handler.assert_awaited_once_with(
            services, user_id="u1", user_email="u1@x.com"
        )


class TestUnknownJobType:
    """Tests for job types without a handler."""

    @pytest.mark.asyncio
    async def test_left_pending_by_default(self, services, session_factory):
        job = await create_job(session_factory, job_type="orderPizza")

        result = await JobDispatcher(services).dispatch(event_for(job))

        assert result is None
        stored = await get_job(session_factory, job.job_id)
        assert stored.status == JobStatus.PENDING
        assert stored.attempts == 0
        assert stored.errors == []

    @pytest.mark.asyncio
    async def test_failed_when_configured(self, services, session_factory):
        job = await create_job(session_factory, job_type="orderPizza")
        dispatcher = JobDispatcher(services, fail_unknown_job_types=True)

        result = await dispatcher.dispatch(event_for(job))

        assert result.success is False
        stored = await get_job(session_factory, job.job_id)
        assert stored.status == JobStatus.FAILED
        assert stored.attempts == 1
        assert stored.errors == ["Unknown job type: orderPizza"]

    @pytest.mark.asyncio
    async def test_setting_controls_default(self, services, session_factory):
        services.jobs.fail_unknown_job_types = True
        job = await create_job(session_factory, job_type="orderPizza")

        await JobDispatcher(services).dispatch(event_for(job))

        stored = await get_job(session_factory, job.job_id)
        assert stored.status == JobStatus.FAILED

    @pytest.mark.asyncio
    async def test_missing_job_type(self, services, session_factory, succeeding_handler):
        job = await create_job(session_factory)
        data = {k: v for k, v in job.to_record().items() if k != "jobType"}

        result = await JobDispatcher(services, {"exportData": succeeding_handler}).dispatch(
            JobCreatedEvent(job.job_id, data)
        )

        assert result is None
        succeeding_handler.assert_not_called()


class TestUnreadableEvent:
    """Tests for creation events without data."""

    @pytest.mark.asyncio
    async def test_event_without_data_is_dropped(
        self, services, session_factory, succeeding_handler, caplog
    ):
        job = await create_job(session_factory)
        dispatcher = JobDispatcher(services, {"exportData": succeeding_handler})

        result = await dispatcher.dispatch(JobCreatedEvent(job.job_id, None))

        assert result is None
        succeeding_handler.assert_not_called()
        assert "No data found for job ID" in caplog.text
        stored = await get_job(session_factory, job.job_id)
        assert stored.status == JobStatus.PENDING
        assert stored.attempts == 0


class TestMissingUserId:
    """Tests for jobs that name no user."""

    @pytest.mark.asyncio
    async def test_recorded_as_failure(self, services, session_factory, telemetry):
        job = await create_job(session_factory)
        event = JobCreatedEvent(job.job_id, {**job.to_record(), "userId": None})

        result = await JobDispatcher(services).dispatch(event)

        assert result.success is False
        assert result.message == "User ID is required."
        stored = await get_job(session_factory, job.job_id)
        assert stored.status == JobStatus.FAILED
        assert stored.attempts == 1
        assert stored.errors == ["User ID is required."]
        telemetry.capture_exception.assert_awaited_once()


class TestRecordFailure:
    """Tests for failures while writing the outcome."""

    @pytest.mark.asyncio
    async def test_missing_job_is_reported(self, services, succeeding_handler, telemetry):
        event = JobCreatedEvent("deleted-job", {"jobType": "exportData", "userId": "u1"})

        result = await JobDispatcher(services, {"exportData": succeeding_handler}).dispatch(event)

        assert result.success is True
        _, kwargs = telemetry.capture_exception.await_args
        assert kwargs["operation"] == "recordOutcome"
        assert kwargs["job_id"] == "deleted-job"
