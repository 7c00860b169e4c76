"""Job record model.

One row per asynchronous job requested by a user. Rows are created by the
enqueue endpoint and updated exactly once per dispatch by the worker.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import Enum, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from snapmeal.db.models.base import (
    Base,
    GeneratedPrimaryKey,
    JobStatus,
    JSONDict,
    JSONList,
    OptionalTimestampTZ,
    TimestampTZ,
)


class Job(Base):
    """Asynchronous job requested by a user.

    ``task_data`` holds the caller's pass-through payload verbatim. It is
    merged into the record view returned by :meth:`to_record` but never
    overwrites the stored columns.
    """

    __tablename__ = "jobs"

    job_id: Mapped[GeneratedPrimaryKey]
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    user_email: Mapped[str | None] = mapped_column(String(320), nullable=True)

    # e.g. 'exportData', 'deleteAccount'; unknown values are stored as given
    job_type: Mapped[str] = mapped_column(String(100), nullable=False)

    status: Mapped[JobStatus] = mapped_column(
        Enum(
            JobStatus,
            name="job_status",
            create_constraint=True,
            values_callable=lambda statuses: [s.value for s in statuses],
        ),
        nullable=False,
        default=JobStatus.PENDING,
    )
    priority: Mapped[int] = mapped_column(default=1, nullable=False)

    created_at: Mapped[TimestampTZ]
    completed_at: Mapped[OptionalTimestampTZ]

    errors: Mapped[JSONList]
    attempts: Mapped[int] = mapped_column(default=0, nullable=False)

    task_data: Mapped[JSONDict]

    __table_args__ = (
        # Creation feed scans in (created_at, job_id) order
        Index("ix_jobs_created_at_job_id", "created_at", "job_id"),
        Index("ix_jobs_user_id", "user_id"),
        Index("ix_jobs_status", "status"),
    )

    def to_record(self) -> dict[str, Any]:
        """Return the merged record view carried by creation events.

        Standard fields use their wire names. ``task_data`` keys are merged
        first, so a caller payload can never replace the owner, email or type.
        """
        record: dict[str, Any] = dict(self.task_data or {})
        record.update(
            {
                "userId": self.user_id,
                "userEmail": self.user_email,
                "jobType": self.job_type,
                "status": self.status.value,
                "priority": self.priority,
                "createdAt": self.created_at,
                "completedAt": self.completed_at,
                "errors": list(self.errors or []),
                "attempts": self.attempts,
            }
        )
        return record

    def __repr__(self) -> str:
        return f"<Job {self.job_id} {self.job_type} {self.status.value}>"
