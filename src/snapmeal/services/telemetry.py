"""Error telemetry for job handlers and the API.

Captured exceptions are always written to the log. When a webhook URL is
configured, a JSON event is also POSTed to it, signed with HMAC-SHA256 when
a shared secret is set. Capturing never raises: telemetry failures are
logged and dropped so they cannot change the outcome of the code that
reported the error.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import secrets
import traceback
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import httpx

if TYPE_CHECKING:
    from snapmeal.core.config import TelemetrySettings

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ErrorEvent:
    """Structured payload describing one captured exception.

    Attributes:
        event_id: Unique identifier for this event.
        exception_type: Qualified class name of the exception.
        message: ``str()`` of the exception.
        stacktrace: Formatted traceback, if the exception carried one.
        environment: Deployment environment name.
        release: Application version.
        context: Caller-supplied tags (job id, user id, operation).
        timestamp: When the event was captured.
    """

    event_id: str
    exception_type: str
    message: str
    stacktrace: str | None
    environment: str
    release: str
    context: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        """Convert payload to dictionary for serialization."""
        return {
            "event_id": self.event_id,
            "exception_type": self.exception_type,
            "message": self.message,
            "stacktrace": self.stacktrace,
            "environment": self.environment,
            "release": self.release,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
        }


class ErrorReporter:
    """Reports exceptions to the log and an optional webhook collector.

    Example:
        reporter = ErrorReporter(settings.telemetry, environment="production")
        try:
            ...
        except Exception as exc:
            await reporter.capture_exception(exc, job_id=job_id)
    """

    def __init__(
        self,
        settings: TelemetrySettings,
        *,
        environment: str = "development",
        release: str = "0.1.0",
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the reporter.

        Args:
            settings: Telemetry configuration.
            environment: Environment name attached to every event.
            release: Application version attached to every event.
            http_client: Client for webhook delivery; created lazily if omitted.
        """
        self._settings = settings
        self._environment = environment
        self._release = release
        self._http_client = http_client

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client for webhook delivery."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=10.0)
        return self._http_client

    async def close(self) -> None:
        """Close the HTTP client and release resources."""
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def capture_exception(self, exc: BaseException, **context: Any) -> str | None:
        """Record an exception.

        Args:
            exc: The exception to report.
            **context: Tags attached to the event (e.g. job_id, user_id).

        Returns:
            The event id, or None if telemetry is disabled.
        """
        if not self._settings.enabled:
            return None

        event = ErrorEvent(
            event_id=self._generate_event_id(),
            exception_type=f"{type(exc).__module__}.{type(exc).__qualname__}",
            message=str(exc),
            stacktrace=(
                "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
                if exc.__traceback__ is not None
                else None
            ),
            environment=self._environment,
            release=self._release,
            context=context,
        )

        logger.error(
            "Captured exception: event_id=%s, type=%s, message=%s, context=%s",
            event.event_id,
            event.exception_type,
            event.message,
            context,
            exc_info=(type(exc), exc, exc.__traceback__),
        )

        if self._settings.webhook_url:
            await self._send_webhook(event)

        return event.event_id

    async def _send_webhook(self, event: ErrorEvent) -> bool:
        """Send an event to the webhook endpoint. Returns delivery success."""
        payload = json.dumps(event.to_dict(), default=str)
        headers = {
            "Content-Type": "application/json",
            "X-Event-ID": event.event_id,
        }

        if self._settings.webhook_secret is not None:
            secret = self._settings.webhook_secret.get_secret_value()
            if secret:
                headers["X-Signature-SHA256"] = self._compute_webhook_signature(payload, secret)

        try:
            client = await self._get_http_client()
            response = await client.post(
                self._settings.webhook_url,
                content=payload,
                headers=headers,
            )
        except httpx.HTTPError as e:
            logger.warning("Telemetry webhook failed: event_id=%s, error=%s", event.event_id, e)
            return False

        if not response.is_success:
            logger.warning(
                "Telemetry webhook returned status %d: event_id=%s",
                response.status_code,
                event.event_id,
            )
            return False
        return True

    def _generate_event_id(self) -> str:
        """Generate a unique event ID."""
        timestamp = datetime.now(UTC).strftime("%Y%m%d%H%M%S")
        return f"err-{timestamp}-{secrets.token_hex(4)}"

    def _compute_webhook_signature(self, payload: str, secret: str) -> str:
        """Compute HMAC-SHA256 signature for webhook payload."""
        signature = hmac.new(
            secret.encode("utf-8"),
            payload.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()
        return f"sha256={signature}"
