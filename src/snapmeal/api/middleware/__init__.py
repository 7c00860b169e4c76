"""SnapMeal API middleware components.

This module provides:
- Request ID tracking for request correlation
- Consistent error response formatting
- ID token authentication dependencies
"""

from snapmeal.api.middleware.auth import (
    Caller,
    OptionalCaller,
    ServicesDep,
    get_services,
    optional_caller,
    require_caller,
)
from snapmeal.api.middleware.errors import (
    APIError,
    ErrorHandlerMiddleware,
    InternalError,
    InvalidArgumentError,
    NotFoundError,
    UnauthenticatedError,
)
from snapmeal.api.middleware.request_id import RequestIDLogFilter, RequestIDMiddleware

__all__ = [
    "APIError",
    "Caller",
    "ErrorHandlerMiddleware",
    "InternalError",
    "InvalidArgumentError",
    "NotFoundError",
    "OptionalCaller",
    "RequestIDLogFilter",
    "RequestIDMiddleware",
    "ServicesDep",
    "UnauthenticatedError",
    "get_services",
    "optional_caller",
    "require_caller",
]
