"""Base model definitions and common column types.

This module provides:
- SQLAlchemy declarative base with naming conventions
- Reusable column annotations (string ids, timestamps, JSON)
- Enum types shared across models

Column types are portable: JSON becomes JSONB on PostgreSQL, and ids and
timestamps are generated client-side so the same models run against the
in-memory SQLite database used in tests.
"""

import enum
import uuid
from datetime import UTC, datetime
from typing import Annotated, Any

from sqlalchemy import JSON, DateTime, MetaData, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, mapped_column

# See: https://alembic.sqlalchemy.org/en/latest/naming.html
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

metadata = MetaData(naming_convention=NAMING_CONVENTION)

JSONType = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(UTC)


def new_id() -> str:
    """Generate a record identifier (uuid4, hex form)."""
    return uuid.uuid4().hex


StringPrimaryKey = Annotated[str, mapped_column(String(128), primary_key=True)]

GeneratedPrimaryKey = Annotated[
    str,
    mapped_column(String(128), primary_key=True, default=new_id),
]

TimestampTZ = Annotated[
    datetime,
    mapped_column(DateTime(timezone=True), default=utcnow, nullable=False),
]

OptionalTimestampTZ = Annotated[
    datetime | None,
    mapped_column(DateTime(timezone=True), nullable=True),
]

JSONDict = Annotated[dict[str, Any], mapped_column(JSONType, default=dict, nullable=False)]

JSONList = Annotated[list[Any], mapped_column(JSONType, default=list, nullable=False)]


class Base(DeclarativeBase):
    """Declarative base for all SnapMeal models."""

    metadata = metadata


class JobStatus(enum.Enum):
    """Status of a background job.

    Values:
        PENDING: Job is waiting to be dispatched
        IN_PROGRESS: Reserved; nothing sets it today
        COMPLETED: Handler reported success
        FAILED: Handler reported failure
    """

    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    FAILED = "failed"
