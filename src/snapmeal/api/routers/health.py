"""Health check router."""

from __future__ import annotations

import time

from fastapi import APIRouter, Request

from snapmeal.api.schemas.jobs import HealthResponse

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request) -> HealthResponse:
    """Liveness check for container orchestration."""
    return HealthResponse(
        uptime=time.monotonic() - request.app.state.started_at,
        message="OK",
        timestamp=int(time.time() * 1000),
    )
