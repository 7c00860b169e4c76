"""Shared types for job handlers.

Handlers take the service bundle plus the job's user fields and return a
:class:`JobResult`. They catch their own failures and report them in the
result; the only exception they raise is :class:`MissingUserIdError`, for
a job that names no user.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, replace
from functools import partial
from typing import TYPE_CHECKING, Any, Protocol, TypeVar

if TYPE_CHECKING:
    from snapmeal.core.container import Services

T = TypeVar("T")


class MissingUserIdError(ValueError):
    """Raised when a job handler is invoked without a user id."""

    def __init__(self, message: str = "User ID is required.") -> None:
        super().__init__(message)


def require_user_id(user_id: str | None) -> str:
    """Return ``user_id`` or raise :class:`MissingUserIdError` if it is empty."""
    if not user_id:
        raise MissingUserIdError
    return user_id


@dataclass(frozen=True)
class JobResult:
    """Outcome of a job handler.

    Attributes:
        success: Whether the job achieved its purpose.
        message: Human-readable outcome; recorded in the job's errors on failure.
        data: Extra outputs (e.g. ``download_url``, ``account_id``).
        tolerated_errors: Failures that were logged and reported but did not
            fail the job.
    """

    success: bool
    message: str
    data: dict[str, Any] = field(default_factory=dict)
    tolerated_errors: list[str] = field(default_factory=list)

    @classmethod
    def ok(cls, message: str, **data: Any) -> JobResult:
        return cls(success=True, message=message, data=data)

    @classmethod
    def fail(cls, message: str) -> JobResult:
        return cls(success=False, message=message)

    def with_tolerated(self, error: str) -> JobResult:
        """Copy of this result with ``error`` added to the tolerated errors."""
        return replace(self, tolerated_errors=[*self.tolerated_errors, error])

    def to_dict(self) -> dict[str, Any]:
        """Wire form: ``success``, ``message`` and camelCase data keys."""
        payload: dict[str, Any] = {"success": self.success, "message": self.message}
        for key, value in self.data.items():
            payload[_camel(key)] = value
        if self.tolerated_errors:
            payload["toleratedErrors"] = list(self.tolerated_errors)
        return payload


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


class JobHandler(Protocol):
    """Signature shared by all job handlers."""

    def __call__(
        self,
        services: Services,
        *,
        user_id: str | None,
        user_email: str | None,
    ) -> Awaitable[JobResult]: ...


async def run_blocking(func: Callable[..., T], /, *args: Any, **kwargs: Any) -> T:
    """Run a blocking client call in the default executor."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, partial(func, *args, **kwargs))
