"""User and meal models.

A user owns any number of meals. Meal rows carry a handful of fixed
columns plus a free-form ``details`` object with whatever else the app
recorded for the meal.
"""

from __future__ import annotations

from datetime import datetime  # noqa: TC003 - required at runtime for SQLAlchemy type resolution
from typing import Any

from sqlalchemy import DateTime, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from snapmeal.db.models.base import (
    Base,
    GeneratedPrimaryKey,
    JSONDict,
    StringPrimaryKey,
    TimestampTZ,
)


class User(Base):
    """Application user, keyed by the identity provider's uid."""

    __tablename__ = "users"

    user_id: Mapped[StringPrimaryKey]
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[TimestampTZ]
    updated_at: Mapped[TimestampTZ]

    def __repr__(self) -> str:
        return f"<User {self.user_id}>"


class Meal(Base):
    """A meal logged by a user."""

    __tablename__ = "meals"

    meal_id: Mapped[GeneratedPrimaryKey]
    user_id: Mapped[str] = mapped_column(
        String(128),
        ForeignKey("users.user_id"),
        nullable=False,
    )
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created: Mapped[TimestampTZ]
    updated: Mapped[TimestampTZ]

    details: Mapped[JSONDict]

    __table_args__ = (Index("ix_meals_user_id", "user_id"),)

    def to_export_row(self) -> dict[str, Any]:
        """Flatten the meal into one export row.

        Extra ``details`` fields sit between the fixed text columns and the
        date columns; the date columns always win over a same-named detail.
        """
        return {
            "id": self.meal_id,
            "name": self.name,
            "description": self.description,
            **(self.details or {}),
            "date": self.date,
            "created": self.created,
            "updated": self.updated,
        }

    def __repr__(self) -> str:
        return f"<Meal {self.meal_id} user={self.user_id}>"
