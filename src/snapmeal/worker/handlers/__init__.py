"""Job handlers for the SnapMeal worker.

Each handler processes one job type:
- export_data: ``exportData`` jobs
- delete_account: ``deleteAccount`` jobs
"""

from snapmeal.worker.handlers.base import JobHandler, JobResult, MissingUserIdError
from snapmeal.worker.handlers.delete_account import delete_account
from snapmeal.worker.handlers.export_data import export_data

__all__ = [
    "JobHandler",
    "JobResult",
    "MissingUserIdError",
    "delete_account",
    "export_data",
]
