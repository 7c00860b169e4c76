"""SnapMeal API service entry point.

This module provides the application instance for ASGI servers (uvicorn)
and a run() function for direct execution.
"""

import logging

from snapmeal.api import create_app
from snapmeal.api.middleware.request_id import RequestIDLogFilter

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s [%(request_id)s]: %(message)s"

# This is what uvicorn references: snapmeal.api.main:app
app = create_app()


def run() -> None:
    """Run the API server using uvicorn.

    This function is called by the snapmeal-api console script
    defined in pyproject.toml.
    """
    import uvicorn

    from snapmeal.core.settings import get_settings

    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format=LOG_FORMAT,
    )
    for handler in logging.getLogger().handlers:
        handler.addFilter(RequestIDLogFilter())

    logger.info("Starting SnapMeal API on %s:%d", settings.api_host, settings.api_port)

    uvicorn.run(
        "snapmeal.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=False,
    )


if __name__ == "__main__":
    run()
