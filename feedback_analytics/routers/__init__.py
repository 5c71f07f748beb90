"""API routers for all endpoints."""

from feedback_analytics.routers import analytics

__all__ = [
    "analytics",
]
