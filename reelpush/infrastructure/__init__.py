"""
Infrastructure layer - external service integrations.

Each subdirectory wraps an external dependency:
- facebook: Graph API resumable video uploads and OAuth code exchange
- storage: Object storage (R2/S3)

These wrappers translate between external formats and our domain models.
"""
