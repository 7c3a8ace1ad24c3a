"""
ReelPush - publish videos from object storage to Facebook Pages.

This package contains the complete application:
- core: Framework-agnostic resumable upload driver
- infrastructure: External service integrations (R2, Graph API)
- api: FastAPI routes and dependencies
- config: Application configuration
"""

__version__ = "0.1.0"
