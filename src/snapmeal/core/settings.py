"""Process-wide settings accessor.

Both entry points (API and worker) call :func:`get_settings` once at startup;
a configuration error stops the process before any job is touched.
"""

from __future__ import annotations

import logging
from functools import lru_cache

from pydantic import ValidationError

from snapmeal.core.config import ConfigValidationError, Settings, validate_settings

logger = logging.getLogger(__name__)


def _describe_errors(exc: ValidationError) -> str:
    return "\n".join(
        f"  - {'.'.join(str(part) for part in err['loc']) or '<root>'}: {err['msg']}"
        for err in exc.errors()
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load, validate and cache settings from the environment.

    Raises:
        SystemExit: When the environment does not describe a usable deployment.
    """
    try:
        settings = Settings()  # type: ignore[call-arg]
        validate_settings(settings)
    except ValidationError as e:
        logger.critical("Invalid SnapMeal configuration:\n%s", _describe_errors(e))
        raise SystemExit(1) from e
    except ConfigValidationError as e:
        logger.critical("Invalid SnapMeal configuration: %s [%s]", e.message, e.field or "?")
        raise SystemExit(1) from e

    logger.info(
        "Settings loaded: environment=%s bucket=%s export_expiry_days=%d "
        "fail_unknown_job_types=%s",
        settings.environment.value,
        settings.s3.bucket,
        settings.jobs.export_url_expiry_days,
        settings.jobs.fail_unknown_job_types,
    )
    return settings


def clear_settings_cache() -> None:
    """Forget the cached settings so the next call reloads them."""
    get_settings.cache_clear()
