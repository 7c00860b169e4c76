"""Caller authentication for API routes.

Callers authenticate with ``Authorization: Bearer <id token>``, where the
token is an ID token issued by the managed authentication provider. The
dependencies here verify it and expose the caller as a
:class:`~snapmeal.services.identity.CallerIdentity`.
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from snapmeal.api.middleware.errors import InternalError, UnauthenticatedError
from snapmeal.core.container import Services  # noqa: TC001 - resolved by FastAPI at runtime
from snapmeal.services.identity import (
    CallerIdentity,
    IdentityProviderError,
    InvalidTokenError,
)

logger = logging.getLogger(__name__)

# Bearer token security scheme for OpenAPI docs
bearer_scheme = HTTPBearer(auto_error=False)


def get_services(request: Request) -> Services:
    """Dependency returning the application's service bundle."""
    return request.app.state.services_provider()


ServicesDep = Annotated[Services, Depends(get_services)]


async def optional_caller(
    services: ServicesDep,
    credentials: Annotated[
        HTTPAuthorizationCredentials | None,
        Depends(bearer_scheme),
    ] = None,
) -> CallerIdentity | None:
    """Dependency returning the verified caller, or None.

    Raises:
        InternalError: If the identity provider cannot be reached to verify
            a presented token.
    """
    if credentials is None or not credentials.credentials:
        return None

    try:
        return await services.identity.verify_id_token(credentials.credentials)
    except InvalidTokenError as e:
        logger.info("Rejected ID token: %s", e)
        return None
    except IdentityProviderError as e:
        await services.telemetry.capture_exception(e, operation="verifyIdToken")
        raise InternalError(f"Could not verify credentials: {e}") from e


async def require_caller(
    caller: Annotated[CallerIdentity | None, Depends(optional_caller)],
) -> CallerIdentity:
    """Dependency that requires a verified caller.

    Raises:
        UnauthenticatedError: If no valid ID token was presented.
    """
    if caller is None:
        raise UnauthenticatedError
    return caller


OptionalCaller = Annotated[CallerIdentity | None, Depends(optional_caller)]
Caller = Annotated[CallerIdentity, Depends(require_caller)]
