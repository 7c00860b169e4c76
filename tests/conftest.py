"""Pytest configuration and shared fixtures.

Tests run against an in-memory SQLite database (aiosqlite) created from the
same models as production. External clients (object store, identity
provider, SMTP, telemetry) are replaced with mocks; their own unit tests
use moto and httpx mock transports instead.
"""

from collections.abc import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from snapmeal.api import create_app
from snapmeal.core.config import JobSettings, SMTPSettings
from snapmeal.core.container import Services
from snapmeal.db import create_session_factory
from snapmeal.db.models import Base
from snapmeal.services.email import EmailService, SendResult
from snapmeal.services.identity import CallerIdentity, InvalidTokenError
from snapmeal.services.storage import ObjectStoreClient
from tests.factories import PRESIGNED_URL

# Bearer tokens accepted by the fake identity provider
CALLERS = {
    "token-u1": CallerIdentity(uid="u1", email="u1@x.com"),
    "token-u2": CallerIdentity(uid="u2", email="u2@x.com"),
    "token-no-uid": CallerIdentity(uid="", email="ghost@x.com"),
}


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
async def engine():
    """In-memory SQLite engine with the schema created."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    """Session factory bound to the test database."""
    return create_session_factory(engine)


# ---------------------------------------------------------------------------
# Service fakes
# ---------------------------------------------------------------------------
@pytest.fixture
def storage() -> MagicMock:
    """Object store mock; uploads succeed and URLs are fixed."""
    storage = MagicMock(spec=ObjectStoreClient)
    storage.generate_presigned_url.return_value = PRESIGNED_URL
    storage.delete_prefix.return_value = 0
    return storage


@pytest.fixture
def identity() -> AsyncMock:
    """Identity provider mock accepting the tokens in CALLERS."""

    async def verify(token: str) -> CallerIdentity:
        try:
            return CALLERS[token]
        except KeyError:
            raise InvalidTokenError("ID token verification failed") from None

    identity = AsyncMock()
    identity.verify_id_token.side_effect = verify
    identity.delete_user.return_value = True
    return identity


@pytest.fixture
def email() -> EmailService:
    """Real email rendering with delivery replaced by a mock."""
    service = EmailService(SMTPSettings())

    async def deliver(message):
        return SendResult(message_id="<test@yourapp.com>", recipient=message.to)

    service.deliver = AsyncMock(side_effect=deliver)
    return service


@pytest.fixture
def telemetry() -> MagicMock:
    """Error reporter mock."""
    telemetry = MagicMock()
    telemetry.capture_exception = AsyncMock(return_value="err-test")
    return telemetry


@pytest.fixture
def job_settings() -> JobSettings:
    return JobSettings()


@pytest.fixture
def services(session_factory, storage, identity, email, telemetry, job_settings) -> Services:
    """Service bundle wired to the test database and mocks."""
    return Services(
        session_factory=session_factory,
        storage=storage,
        identity=identity,
        email=email,
        telemetry=telemetry,
        jobs=job_settings,
    )


# ---------------------------------------------------------------------------
# API client fixture (in-process testing via ASGI transport)
# ---------------------------------------------------------------------------
@pytest.fixture
def test_app(services):
    """FastAPI application using the fake services."""
    return create_app(services=services)


@pytest.fixture
async def api_client(test_app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client for testing the API.

    Uses httpx with ASGI transport for in-process testing.
    """
    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def u1_headers() -> dict[str, str]:
    return {"Authorization": "Bearer token-u1"}


@pytest.fixture
def u2_headers() -> dict[str, str]:
    return {"Authorization": "Bearer token-u2"}
