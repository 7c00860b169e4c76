"""SnapMeal worker service entry point.

This module provides the Worker class that:
- Picks up pending jobs that were never dispatched, oldest first
- Delivers each one to the dispatcher
- Handles graceful shutdown via SIGTERM/SIGINT

A dispatched job leaves the feed once its outcome is recorded. Jobs that stay
pending after delivery (unknown types) are remembered in memory and skipped
until the process restarts, when they are delivered once more. Selection does
not depend on commit order, so a job committed late is still picked up.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
import sys
from datetime import UTC, datetime
from typing import TYPE_CHECKING, NoReturn

from snapmeal.core.container import ServiceContainer
from snapmeal.core.settings import get_settings
from snapmeal.db import session_scope
from snapmeal.services.job_queue import JobQueueService
from snapmeal.worker.dispatch import JobCreatedEvent, JobDispatcher
from snapmeal.worker.handlers.base import run_blocking

if TYPE_CHECKING:
    from snapmeal.core.config import Settings
    from snapmeal.core.container import Services

logger = logging.getLogger(__name__)


class Worker:
    """Delivers newly created jobs to a :class:`JobDispatcher`.

    Example:
        worker = Worker(services, JobDispatcher(services))
        await worker.start()
    """

    def __init__(
        self,
        services: Services,
        dispatcher: JobDispatcher,
        *,
        poll_interval: float | None = None,
        batch_size: int | None = None,
    ) -> None:
        """Initialize the worker.

        Args:
            services: Service bundle (for database access).
            dispatcher: Dispatcher that handles each delivered job.
            poll_interval: Seconds between polls when idle; defaults to the jobs setting.
            batch_size: Maximum jobs per poll; defaults to the jobs setting.
        """
        self._services = services
        self._dispatcher = dispatcher
        self.poll_interval = poll_interval or services.jobs.poll_interval
        self.batch_size = batch_size or services.jobs.batch_size
        self._shutdown_event = asyncio.Event()
        self._left_pending: set[str] = set()
        self._started_at: datetime | None = None
        self._jobs_delivered = 0

    @property
    def left_pending(self) -> frozenset[str]:
        """Ids delivered in this process that are still pending."""
        return frozenset(self._left_pending)

    async def start(self) -> None:
        """Run until shutdown is requested via signal or stop()."""
        self._started_at = datetime.now(UTC)
        logger.info(
            "Worker starting: poll_interval=%.1fs, batch_size=%d",
            self.poll_interval,
            self.batch_size,
        )
        try:
            await self._run_loop()
        finally:
            logger.info(
                "Worker stopped: delivered=%d, uptime=%s",
                self._jobs_delivered,
                self._get_uptime(),
            )

    async def stop(self) -> None:
        """Request graceful shutdown of the worker."""
        logger.info("Worker shutdown requested")
        self._shutdown_event.set()

    async def _run_loop(self) -> None:
        while not self._shutdown_event.is_set():
            try:
                delivered = await self.poll_once()
            except Exception as e:
                # Keep following the feed after database hiccups
                logger.exception("Error in worker loop: %s", e)
                delivered = 0

            if delivered >= self.batch_size:
                continue

            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(
                    self._shutdown_event.wait(),
                    timeout=self.poll_interval,
                )

    async def poll_once(self) -> int:
        """Deliver the next batch of undispatched jobs.

        Returns:
            Number of jobs delivered.
        """
        async with session_scope(self._services.session_factory) as session:
            job_queue = JobQueueService(session)
            if self._left_pending:
                self._left_pending = await job_queue.still_undelivered(self._left_pending)
            jobs = await job_queue.undelivered(
                exclude=self._left_pending,
                limit=self.batch_size,
            )
            events = [JobCreatedEvent(job.job_id, job.to_record()) for job in jobs]

        for event in events:
            if self._shutdown_event.is_set():
                break
            await self._dispatcher.dispatch(event)
            # Pruned on the next poll once an outcome is recorded
            self._left_pending.add(event.job_id)
            self._jobs_delivered += 1

        return len(events)

    def _get_uptime(self) -> str:
        """Calculate worker uptime as a human-readable string."""
        if self._started_at is None:
            return "0s"
        delta = datetime.now(UTC) - self._started_at
        hours, remainder = divmod(int(delta.total_seconds()), 3600)
        minutes, seconds = divmod(remainder, 60)
        if hours > 0:
            return f"{hours}h {minutes}m {seconds}s"
        elif minutes > 0:
            return f"{minutes}m {seconds}s"
        else:
            return f"{seconds}s"


async def prepare_storage(services: Services, settings: Settings) -> bool:
    """Create the user bucket outside production.

    Production buckets are provisioned ahead of time; a local MinIO starts
    empty.

    Returns:
        True if the bucket was created.
    """
    if settings.is_production:
        return False
    return await run_blocking(services.storage.ensure_bucket)


# Global shutdown event for signal handlers
_shutdown_event: asyncio.Event | None = None


def _handle_shutdown(signum: int, _frame: object) -> None:
    """Handle shutdown signals gracefully."""
    logger.info("Shutdown signal received (signal=%d)", signum)
    if _shutdown_event is not None:
        _shutdown_event.get_loop().call_soon_threadsafe(_shutdown_event.set)


async def _async_main(shutdown_event: asyncio.Event) -> None:
    """Async entry point for the worker."""
    settings = get_settings()
    container = ServiceContainer(settings)
    services = container.services()
    worker = Worker(services, JobDispatcher(services))

    try:
        await prepare_storage(services, settings)
        worker_task = asyncio.create_task(worker.start())
        await shutdown_event.wait()
        await worker.stop()
        try:
            await asyncio.wait_for(worker_task, timeout=30.0)
        except TimeoutError:
            logger.warning("Worker did not stop within timeout, forcing shutdown")
            worker_task.cancel()
    finally:
        await container.close()


def run() -> NoReturn:
    """Run the worker process.

    Sets up logging, registers signal handlers for graceful shutdown and
    runs the creation feed until stopped.
    """
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    signal.signal(signal.SIGTERM, _handle_shutdown)
    signal.signal(signal.SIGINT, _handle_shutdown)

    logger.info("SnapMeal worker starting...")

    async def _run_with_event() -> None:
        global _shutdown_event
        _shutdown_event = asyncio.Event()
        await _async_main(_shutdown_event)

    try:
        asyncio.run(_run_with_event())
    except KeyboardInterrupt:
        logger.info("Worker interrupted")
    except Exception as e:
        logger.exception("Worker failed: %s", e)
        sys.exit(1)

    logger.info("SnapMeal worker shutdown complete")
    sys.exit(0)


if __name__ == "__main__":
    run()
