"""SnapMeal services.

- job_queue: Job record persistence and the creation feed queries
- storage: S3-compatible object store for per-user artifacts
- email: Notification emails over SMTP
- identity: ID token verification and identity deletion
- telemetry: Error capture to log and webhook
"""
