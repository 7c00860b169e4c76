"""Service container for the API and the worker.

Every external client (database, object store, identity provider, SMTP,
telemetry) is built lazily by a :class:`ServiceContainer` and handed to
endpoints and job handlers as an explicit :class:`Services` bundle.

A container builds its services at most once: the first call to
:meth:`ServiceContainer.services` constructs them under a lock and later
calls, from any thread, return the same bundle. Tests build their own
``Services`` directly with fakes.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING

from snapmeal.db import create_engine, create_session_factory
from snapmeal.services.email import EmailService
from snapmeal.services.identity import IdentityProviderClient
from snapmeal.services.storage import ObjectStoreClient
from snapmeal.services.telemetry import ErrorReporter

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

    from snapmeal.core.config import JobSettings, Settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Services:
    """Collaborators shared by endpoints and job handlers.

    Attributes:
        session_factory: Factory for database sessions.
        storage: Object store client bound to the user bucket.
        identity: Identity provider client.
        email: Notification email sender.
        telemetry: Error reporter.
        jobs: Job handler settings.
    """

    session_factory: async_sessionmaker[AsyncSession]
    storage: ObjectStoreClient
    identity: IdentityProviderClient
    email: EmailService
    telemetry: ErrorReporter
    jobs: JobSettings


class ServiceContainer:
    """Builds :class:`Services` from settings, once."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self._lock = threading.Lock()
        self._engine: AsyncEngine | None = None
        self._services: Services | None = None

    def services(self) -> Services:
        """Return the service bundle, building it on first use."""
        if self._services is not None:
            return self._services

        with self._lock:
            if self._services is None:
                self._services = self._build()
        return self._services

    def _build(self) -> Services:
        settings = self.settings
        self._engine = create_engine(settings.database)

        services = Services(
            session_factory=create_session_factory(self._engine),
            storage=ObjectStoreClient.from_settings(settings.s3),
            identity=IdentityProviderClient(settings.identity),
            email=EmailService(settings.smtp),
            telemetry=ErrorReporter(
                settings.telemetry,
                environment=settings.environment.value,
                release=settings.app_version,
            ),
            jobs=settings.jobs,
        )
        logger.info(
            "Services initialized: environment=%s, bucket=%s",
            settings.environment.value,
            settings.s3.bucket,
        )
        return services

    async def close(self) -> None:
        """Release connections held by the built services."""
        with self._lock:
            services, self._services = self._services, None
            engine, self._engine = self._engine, None

        if services is not None:
            await services.identity.close()
            await services.telemetry.close()
        if engine is not None:
            await engine.dispose()
