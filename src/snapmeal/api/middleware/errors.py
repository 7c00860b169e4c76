"""Error handling for consistent JSON error responses.

All errors are converted to one JSON structure:
- error: Error code (``unauthenticated``, ``invalid-argument``, ``not-found``, ``internal``)
- message: Human-readable description
- detail: Optional additional information
- request_id: Correlation ID for debugging
"""

import logging
from collections.abc import Callable, Sequence
from typing import Any

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from snapmeal.api.middleware.request_id import get_request_id

logger = logging.getLogger(__name__)


class APIError(Exception):
    """Base exception for API errors with structured details."""

    def __init__(
        self,
        error: str,
        message: str,
        status_code: int = 400,
        detail: dict[str, Any] | None = None,
    ) -> None:
        """Initialize API error.

        Args:
            error: Machine-readable error code (e.g., "invalid-argument").
            message: Human-readable error description.
            status_code: HTTP status code to return.
            detail: Optional additional details for debugging.
        """
        self.error = error
        self.message = message
        self.status_code = status_code
        self.detail = detail
        super().__init__(message)


class UnauthenticatedError(APIError):
    """No verified caller identity (401)."""

    def __init__(self, message: str = "The function must be called while authenticated.") -> None:
        super().__init__(error="unauthenticated", message=message, status_code=401)


class InvalidArgumentError(APIError):
    """Request is missing or has malformed arguments (400)."""

    def __init__(self, message: str, detail: dict[str, Any] | None = None) -> None:
        super().__init__(
            error="invalid-argument",
            message=message,
            status_code=400,
            detail=detail,
        )


class NotFoundError(APIError):
    """Resource not found error (404)."""

    def __init__(self, resource: str, identifier: str) -> None:
        super().__init__(
            error="not-found",
            message=f"{resource} not found: {identifier}",
            status_code=404,
        )


class InternalError(APIError):
    """Server-side failure (500)."""

    def __init__(self, message: str) -> None:
        super().__init__(error="internal", message=message, status_code=500)


def build_error_response(
    error: str,
    message: str,
    status_code: int,
    detail: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    """Build a standardized error response."""
    body: dict[str, Any] = {
        "error": error,
        "message": message,
    }

    request_id = get_request_id()
    if request_id:
        body["request_id"] = request_id

    if detail:
        body["detail"] = detail

    return JSONResponse(status_code=status_code, content=body, headers=headers)


async def api_error_handler(_request: Request, exc: APIError) -> JSONResponse:
    """Render an :class:`APIError` raised by a route."""
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return build_error_response(
        error=exc.error,
        message=exc.message,
        status_code=exc.status_code,
        detail=exc.detail,
        headers=headers,
    )


def validation_details(errors: Sequence[Any]) -> list[dict[str, Any]]:
    """JSON-safe summary of pydantic validation errors."""
    return [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg", ""), "type": err.get("type", "")}
        for err in errors
    ]


async def validation_error_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
    """Render request validation failures as ``invalid-argument``."""
    errors = validation_details(exc.errors())
    return build_error_response(
        error="invalid-argument",
        message="Request validation failed",
        status_code=400,
        detail={"errors": errors},
    )


async def http_error_handler(_request: Request, exc: HTTPException) -> JSONResponse:
    """Render framework HTTP errors (404 routes, 405 methods) in the same shape."""
    return build_error_response(
        error="http_error",
        message=str(exc.detail),
        status_code=exc.status_code,
        headers=getattr(exc, "headers", None),
    )


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Catches unexpected exceptions and returns a JSON 500."""

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Response]
    ) -> Response:
        try:
            return await call_next(request)
        except APIError as exc:
            return await api_error_handler(request, exc)
        except Exception:
            logger.exception(
                "Unexpected error processing request: %s %s",
                request.method,
                request.url.path,
            )
            return build_error_response(
                error="internal",
                message="An internal error occurred",
                status_code=500,
            )
