"""
Analytics router - rollup refresh, dashboard and category endpoints.

Wired to:
- AnalyticsService for every operation (refresh, dashboard, category
  mapping, category performance, period comparison, question analytics)
"""

from datetime import date
from typing import Any, List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query
from pydantic import BaseModel

from feedback_analytics.dependencies import get_analytics_service
from feedback_analytics.engine.analytics_service import AnalyticsService
from feedback_analytics.models.enums import ComparisonType, Granularity
from feedback_analytics.storage.base import NotFoundError
from feedback_analytics.utils.logging import get_logger

logger = get_logger(__name__)
router = APIRouter()


class RefreshRequest(BaseModel):
    """Granularities to refresh; the configured defaults when omitted."""

    granularities: Optional[List[Granularity]] = None


@router.post("/{questionnaire_id}/refresh")
async def refresh_analytics(
    questionnaire_id: int,
    request: Optional[RefreshRequest] = None,
    service: AnalyticsService = Depends(get_analytics_service),
):
    """
    Recompute KPI, trend and breakdown rollups over the rolling window.
    Failed buckets are reported in the summary, not as an HTTP error.
    """
    granularities = request.granularities if request else None
    logger.info(
        "refresh_requested",
        questionnaire_id=questionnaire_id,
        granularities=[g.value for g in granularities] if granularities else None,
    )

    try:
        summary = service.refresh_analytics(questionnaire_id, granularities)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    return {"success": True, "data": summary.model_dump(mode="json")}


@router.get("/{questionnaire_id}/dashboard")
async def get_dashboard(
    questionnaire_id: int,
    granularity: Granularity = Query(Granularity.WEEK),
    service: AnalyticsService = Depends(get_analytics_service),
):
    """Latest KPI, recent daily trends and category breakdown from stored rollups."""
    try:
        data = service.get_dashboard_data(questionnaire_id, granularity)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    return {"success": True, "data": data}


@router.get("/{questionnaire_id}/category-mapping")
async def get_category_mapping(
    questionnaire_id: int,
    service: AnalyticsService = Depends(get_analytics_service),
):
    """Sanitized category mapping of the questionnaire."""
    try:
        mapping = service.get_category_mapping(questionnaire_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    return {"success": True, "data": mapping.to_blob()}


@router.put("/{questionnaire_id}/category-mapping")
async def update_category_mapping(
    questionnaire_id: int,
    raw: Any = Body(...),
    service: AnalyticsService = Depends(get_analytics_service),
):
    """
    Replace the category mapping.
    Any JSON body is accepted; invalid fields are clamped or defaulted.
    """
    try:
        mapping = service.update_category_mapping(questionnaire_id, raw)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    return {"success": True, "data": mapping.to_blob()}


@router.get("/{questionnaire_id}/category-performance")
async def get_category_performance(
    questionnaire_id: int,
    date_from: Optional[date] = Query(None, description="Inclusive start date"),
    date_to: Optional[date] = Query(None, description="Exclusive end date"),
    service: AnalyticsService = Depends(get_analytics_service),
):
    """Per-category scores, target gaps and insights over a date range."""
    try:
        data = service.get_category_performance(questionnaire_id, date_from, date_to)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))

    return {"success": True, "data": data}


@router.get("/{questionnaire_id}/questions")
async def get_question_analytics(
    questionnaire_id: int,
    date_from: Optional[date] = Query(None, description="Inclusive start date"),
    date_to: Optional[date] = Query(None, description="Exclusive end date"),
    service: AnalyticsService = Depends(get_analytics_service),
):
    """Answer counts, skip rate, average rating and distributions per question."""
    try:
        data = service.get_question_analytics(questionnaire_id, date_from, date_to)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))

    return {"success": True, "data": data}


@router.get("/{questionnaire_id}/comparison")
async def get_period_comparison(
    questionnaire_id: int,
    comparison_type: ComparisonType = Query(ComparisonType.WEEK_OVER_WEEK),
    current_start: Optional[date] = Query(None),
    current_end: Optional[date] = Query(None),
    previous_start: Optional[date] = Query(None),
    previous_end: Optional[date] = Query(None),
    service: AnalyticsService = Depends(get_analytics_service),
):
    """
    Compare two periods: week_over_week, month_over_month or custom.
    Custom comparisons need all four range dates.
    """
    current_range = None
    previous_range = None
    if comparison_type == ComparisonType.CUSTOM:
        if None in (current_start, current_end, previous_start, previous_end):
            raise HTTPException(
                status_code=422,
                detail="custom comparison requires current_start, current_end, previous_start and previous_end",
            )
        current_range = (current_start, current_end)
        previous_range = (previous_start, previous_end)

    try:
        data = service.compare_periods(
            questionnaire_id,
            comparison_type,
            current_range=current_range,
            previous_range=previous_range,
        )
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))

    return {"success": True, "data": data}
