"""Account deletion handler.

Handles ``deleteAccount`` jobs. In order:
1. Deletes the user's meals (concurrently) and then the user row
2. Deletes the identity at the authentication provider
3. Deletes every stored object under ``users/{user_id}/``
4. Emails a deletion confirmation

Object store cleanup is best effort: its failures are reported and listed
in the result's tolerated errors but do not fail the job.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from botocore.exceptions import BotoCoreError
from sqlalchemy import select

from snapmeal.db import session_scope
from snapmeal.db.models.users import Meal, User
from snapmeal.services.storage import StorageError, user_prefix
from snapmeal.worker.handlers.base import JobResult, require_user_id, run_blocking

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from snapmeal.core.container import Services

logger = logging.getLogger(__name__)


async def _delete_user_rows(session: AsyncSession, user: User) -> int:
    """Delete the user's meals, then the user. Returns the meal count."""
    result = await session.execute(select(Meal).where(Meal.user_id == user.user_id))
    meals = result.scalars().all()

    await asyncio.gather(*(session.delete(meal) for meal in meals))
    # Meals must be gone before the user row they reference
    await session.flush()

    await session.delete(user)
    await session.commit()
    return len(meals)


async def delete_account(
    services: Services,
    *,
    user_id: str | None,
    user_email: str | None,
) -> JobResult:
    """Delete a user's account, data, identity and stored files.

    Args:
        services: Service bundle.
        user_id: Account to delete.
        user_email: Recipient of the confirmation email.

    Returns:
        Success with ``account_id``, or failure with the error message.

    Raises:
        MissingUserIdError: If ``user_id`` is empty.
    """
    user_id = require_user_id(user_id)

    try:
        async with session_scope(services.session_factory) as session:
            user = await session.get(User, user_id)
            if user is None:
                logger.info("User %s not found, nothing to delete", user_id)
                return JobResult.fail(f"User Doc with ID {user_id} not found.")

            meal_count = await _delete_user_rows(session, user)

        logger.info("Deleted user %s and %d meal(s)", user_id, meal_count)

        await services.identity.delete_user(user_id)

        result = JobResult.ok(
            f"Account for {user_email} deleted successfully.",
            account_id=user_id,
        )

        try:
            await run_blocking(services.storage.delete_prefix, user_prefix(user_id))
        except (StorageError, BotoCoreError) as storage_error:
            logger.warning(
                "Error deleting stored files for user %s: %s",
                user_id,
                storage_error,
            )
            await services.telemetry.capture_exception(
                storage_error,
                operation="deleteAccount.storage",
                user_id=user_id,
            )
            result = result.with_tolerated(f"Storage cleanup failed: {storage_error}")

        await services.email.deliver(services.email.account_deleted(user_email or ""))
        return result

    except Exception as e:
        await services.telemetry.capture_exception(e, operation="deleteAccount", user_id=user_id)
        logger.exception("Error deleting account %s", user_id)
        return JobResult.fail(str(e))
