"""SnapMeal Jobs - asynchronous account jobs for SnapMeal.

Authenticated clients queue jobs (data export, account deletion) through the
API; the worker picks up each newly created job record, runs the matching
handler and records the terminal state on the job.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
