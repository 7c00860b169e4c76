"""SQLAlchemy ORM models for SnapMeal.

- base: Common metadata, column types and enums
- users: Users and their meals
- jobs: Asynchronous job records
"""

from snapmeal.db.models.base import Base, JobStatus, metadata
from snapmeal.db.models.jobs import Job
from snapmeal.db.models.users import Meal, User

__all__ = [
    "Base",
    "Job",
    "JobStatus",
    "Meal",
    "User",
    "metadata",
]
