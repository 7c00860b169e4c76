"""Account export handler.

Handles ``exportData`` jobs:
1. Reads every meal the user has logged
2. Writes them to a CSV scratch file and uploads it under the user's prefix
3. Issues a time-limited download link and emails it to the user

The scratch file is removed whether or not the upload succeeds.
"""

from __future__ import annotations

import csv
import logging
import os
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import select

from snapmeal.db import session_scope
from snapmeal.db.models.users import Meal
from snapmeal.services.storage import user_prefix
from snapmeal.worker.handlers.base import JobResult, require_user_id, run_blocking

if TYPE_CHECKING:
    from collections.abc import Sequence

    from sqlalchemy.ext.asyncio import AsyncSession

    from snapmeal.core.container import Services

logger = logging.getLogger(__name__)

CSV_CONTENT_TYPE = "text/csv"
SECONDS_PER_DAY = 24 * 60 * 60


class NoExportDataError(LookupError):
    """Raised when the user has no meals to export."""


def export_key(user_id: str, now: datetime) -> str:
    """Object key for an export created at ``now``."""
    timestamp = int(now.timestamp() * 1000)
    return f"{user_prefix(user_id)}exports/meals-{timestamp}.csv"


def csv_columns(rows: Sequence[dict[str, Any]]) -> list[str]:
    """Union of the rows' keys, in first-seen order."""
    columns: dict[str, None] = {}
    for row in rows:
        for key in row:
            columns.setdefault(key, None)
    return list(columns)


def _csv_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if value is None:
        return ""
    return value


@contextmanager
def scratch_csv(rows: Sequence[dict[str, Any]]) -> Iterator[str]:
    """Write ``rows`` to a temporary CSV file and yield its path.

    The file is deleted on exit, including when the body raises.
    """
    fd, path = tempfile.mkstemp(prefix="snapmeal-export-", suffix=".csv")
    try:
        with os.fdopen(fd, "w", newline="", encoding="utf-8") as f:
            writer = csv.DictWriter(f, fieldnames=csv_columns(rows), restval="")
            writer.writeheader()
            for row in rows:
                writer.writerow({k: _csv_value(v) for k, v in row.items()})
        yield path
    finally:
        if os.path.exists(path):
            os.remove(path)


async def _load_meals(session: AsyncSession, user_id: str) -> list[Meal]:
    result = await session.execute(
        select(Meal).where(Meal.user_id == user_id).order_by(Meal.date, Meal.meal_id)
    )
    return list(result.scalars().all())


async def export_data(
    services: Services,
    *,
    user_id: str | None,
    user_email: str | None,
) -> JobResult:
    """Export a user's meals and email them a download link.

    Args:
        services: Service bundle.
        user_id: Owner of the meals to export.
        user_email: Recipient of the download link.

    Returns:
        Success with ``download_url``, or failure with the error message.

    Raises:
        MissingUserIdError: If ``user_id`` is empty.
    """
    user_id = require_user_id(user_id)

    try:
        async with session_scope(services.session_factory) as session:
            meals = await _load_meals(session, user_id)

        if not meals:
            raise NoExportDataError(f"No data found for {user_email}.")

        rows = [meal.to_export_row() for meal in meals]
        key = export_key(user_id, datetime.now(UTC))

        with scratch_csv(rows) as path:
            await run_blocking(
                services.storage.upload_file,
                key,
                path,
                content_type=CSV_CONTENT_TYPE,
            )

        expiry_days = services.jobs.export_url_expiry_days
        download_url = await run_blocking(
            services.storage.generate_presigned_url,
            key,
            expires_in=expiry_days * SECONDS_PER_DAY,
        )

        message = services.email.export_ready(
            user_email or "",
            download_url=download_url,
            expiry_days=expiry_days,
        )
        await services.email.deliver(message)

        logger.info("Exported %d meal(s) for user %s to %s", len(rows), user_id, key)
        return JobResult.ok(
            f"{user_email} data exported successfully.",
            download_url=download_url,
        )

    except Exception as e:
        await services.telemetry.capture_exception(e, operation="exportData", user_id=user_id)
        logger.exception("Error exporting data for user %s", user_id)
        return JobResult.fail(str(e))
