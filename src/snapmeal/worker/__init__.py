"""SnapMeal worker: follows the job creation feed and dispatches jobs."""
