"""Tests for error telemetry.

Tests cover:
- Disabled reporter
- Logging of captured exceptions
- Webhook delivery with HMAC signatures
- Webhook failures never propagate
"""

import hashlib
import hmac
import json
import logging

import httpx
import pytest
from pydantic import SecretStr

from snapmeal.core.config import TelemetrySettings
from snapmeal.services.telemetry import ErrorEvent, ErrorReporter

WEBHOOK_URL = "https://errors.test/hook"


def raised(exc: Exception) -> Exception:
    """Return ``exc`` with a traceback attached."""
    try:
        raise exc
    except Exception as e:
        return e


class TestErrorEvent:
    """Tests for ErrorEvent serialization."""

    def test_to_dict(self):
        event = ErrorEvent(
            event_id="err-1",
            exception_type="builtins.ValueError",
            message="bad",
            stacktrace=None,
            environment="development",
            release="0.1.0",
            context={"job_id": "j1"},
        )

        data = event.to_dict()
        assert data["event_id"] == "err-1"
        assert data["context"] == {"job_id": "j1"}
        assert isinstance(data["timestamp"], str)


class TestCaptureException:
    """Tests for capture_exception."""

    @pytest.mark.asyncio
    async def test_disabled(self, caplog):
        reporter = ErrorReporter(TelemetrySettings(enabled=False))

        with caplog.at_level(logging.ERROR):
            assert await reporter.capture_exception(ValueError("bad")) is None

        assert "Captured exception" not in caplog.text

    @pytest.mark.asyncio
    async def test_logs_without_webhook(self, caplog):
        reporter = ErrorReporter(TelemetrySettings())

        with caplog.at_level(logging.ERROR):
            event_id = await reporter.capture_exception(raised(ValueError("bad")), job_id="j1")

        assert event_id.startswith("err-")
        assert "Captured exception" in caplog.text
        assert "j1" in caplog.text

    @pytest.mark.asyncio
    async def test_webhook_signed(self):
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(202)

        reporter = ErrorReporter(
            TelemetrySettings(webhook_url=WEBHOOK_URL, webhook_secret=SecretStr("s3cret")),
            environment="staging",
            release="1.2.3",
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )

        event_id = await reporter.capture_exception(
            raised(RuntimeError("upload failed")),
            operation="exportData",
            user_id="u1",
        )

        (request,) = requests
        body = request.content.decode("utf-8")
        expected = hmac.new(b"s3cret", body.encode("utf-8"), hashlib.sha256).hexdigest()
        assert request.headers["X-Signature-SHA256"] == f"sha256={expected}"
        assert request.headers["X-Event-ID"] == event_id

        payload = json.loads(body)
        assert payload["exception_type"] == "builtins.RuntimeError"
        assert payload["message"] == "upload failed"
        assert payload["environment"] == "staging"
        assert payload["release"] == "1.2.3"
        assert payload["context"] == {"operation": "exportData", "user_id": "u1"}
        assert "Traceback" in payload["stacktrace"]
        await reporter.close()

    @pytest.mark.asyncio
    async def test_webhook_unsigned_without_secret(self):
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200)

        reporter = ErrorReporter(
            TelemetrySettings(webhook_url=WEBHOOK_URL),
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )

        await reporter.capture_exception(ValueError("bad"))

        assert "X-Signature-SHA256" not in requests[0].headers
        assert json.loads(requests[0].content)["stacktrace"] is None

    @pytest.mark.asyncio
    async def test_webhook_connection_error(self, caplog):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        reporter = ErrorReporter(
            TelemetrySettings(webhook_url=WEBHOOK_URL),
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )

        event_id = await reporter.capture_exception(ValueError("bad"))

        assert event_id is not None
        assert "Telemetry webhook failed" in caplog.text

    @pytest.mark.asyncio
    async def test_webhook_error_status(self, caplog):
        reporter = ErrorReporter(
            TelemetrySettings(webhook_url=WEBHOOK_URL),
            http_client=httpx.AsyncClient(
                transport=httpx.MockTransport(lambda request: httpx.Response(500))
            ),
        )

        assert await reporter.capture_exception(ValueError("bad")) is not None
        assert "returned status 500" in caplog.text
