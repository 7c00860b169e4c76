"""SnapMeal API routers.

- /health: liveness check
- /api/jobs: queue jobs and read job records
"""

from snapmeal.api.routers.health import router as health_router
from snapmeal.api.routers.jobs import router as jobs_router

__all__ = [
    "health_router",
    "jobs_router",
]
