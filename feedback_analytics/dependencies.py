"""
FastAPI dependencies.

The analytics service is built once per application in the lifespan handler
and handed to route handlers through ``Depends(get_analytics_service)``.
Tests replace it with ``app.dependency_overrides``.
"""

from fastapi import HTTPException, Request

from feedback_analytics.engine.analytics_service import AnalyticsService


def get_analytics_service(request: Request) -> AnalyticsService:
    """Analytics service of the running application."""
    service = getattr(request.app.state, "analytics_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Analytics service not initialized")
    return service
