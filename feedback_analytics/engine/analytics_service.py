"""
Analytics Service - caller-facing facade over the analytics engine.

Wires storage, cache and the engine components together. Reads of derived
views go through the cache; anything that changes what those views would
contain (a refresh or a mapping update) invalidates the questionnaire's
cache entries.
"""

import threading
from datetime import date, datetime, timezone
from typing import Any, Iterable, Optional, Union

import structlog

from feedback_analytics.cache import AnalyticsCache
from feedback_analytics.models.enums import ComparisonType, Granularity
from feedback_analytics.models.mapping import CategoryMapping
from feedback_analytics.models.rollups import RefreshSummary
from feedback_analytics.storage.base import NotFoundError, StorageBackend

from .category_mapping import validate_category_mapping
from .category_scorer import CategoryScorer
from .period_comparison import PeriodComparisonService
from .periods import DateLike, to_utc_date
from .question_analytics import QuestionAnalytics
from .refresh_orchestrator import RefreshOrchestrator

logger = structlog.get_logger()

DASHBOARD_TREND_POINTS = 30
DASHBOARD_BREAKDOWN_ROWS = 20
DEFAULT_GRANULARITIES = (Granularity.DAY, Granularity.WEEK, Granularity.MONTH, Granularity.YEAR)


class AnalyticsService:
    """
    Analytics operations for one storage backend and cache.

    Attributes:
        storage: Storage backend
        cache: Analytics cache (shared tier plus in-memory fallback)
        orchestrator: Refresh orchestrator writing rollups
        scorer: Category scorer for ad-hoc performance queries
        comparison: Period comparison engine
        questions: Per-question answer statistics
    """

    def __init__(
        self,
        storage: StorageBackend,
        cache: AnalyticsCache,
        orchestrator: Optional[RefreshOrchestrator] = None,
        scorer: Optional[CategoryScorer] = None,
        comparison: Optional[PeriodComparisonService] = None,
        questions: Optional[QuestionAnalytics] = None,
        default_granularities: Optional[Iterable[Union[Granularity, str]]] = None,
    ):
        self.storage = storage
        self.cache = cache
        self.orchestrator = orchestrator or RefreshOrchestrator(storage, cache=cache)
        self.scorer = scorer or CategoryScorer(storage)
        self.comparison = comparison or PeriodComparisonService(storage, category_scorer=self.scorer)
        self.questions = questions or QuestionAnalytics(storage)
        self.default_granularities = [
            Granularity(g) for g in (default_granularities or DEFAULT_GRANULARITIES)
        ]

    # =========================================================================
    # Rollups
    # =========================================================================

    def refresh_analytics(
        self,
        questionnaire_id: int,
        granularities: Optional[Iterable[Union[Granularity, str]]] = None,
        now: Optional[datetime] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> RefreshSummary:
        """Recompute rollups for the rolling window (all default granularities if none given)."""
        requested = list(granularities) if granularities else self.default_granularities
        return self.orchestrator.refresh(
            questionnaire_id, requested, now=now, cancel_event=cancel_event
        )

    def get_dashboard_data(
        self, questionnaire_id: int, granularity: Union[Granularity, str] = Granularity.WEEK
    ) -> dict:
        """
        Dashboard view built from stored rollups only.

        Returns:
            {
                "questionnaire_id": int,
                "granularity": str,
                "kpi": latest KPI row or None,
                "trends": last 30 trend points, oldest first,
                "breakdown": top 20 categories of the latest KPI period,
            }

        Raises:
            NotFoundError: If the questionnaire does not exist
        """
        granularity = Granularity(granularity)
        self._require_questionnaire(questionnaire_id)

        key = self.cache.generate_key(
            "dashboard", questionnaire_id=questionnaire_id, granularity=granularity.value
        )
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        kpi = self.storage.read_latest_kpi(questionnaire_id, granularity)
        trends = self.storage.read_trends(
            questionnaire_id, granularity, limit=DASHBOARD_TREND_POINTS
        )
        breakdown = []
        if kpi is not None:
            breakdown = self.storage.read_breakdown(
                questionnaire_id,
                granularity,
                period_date=kpi.period_date,
                limit=DASHBOARD_BREAKDOWN_ROWS,
            )

        data = {
            "questionnaire_id": questionnaire_id,
            "granularity": granularity.value,
            "kpi": kpi.model_dump(mode="json") if kpi else None,
            "trends": [point.model_dump(mode="json") for point in trends],
            "breakdown": [row.model_dump(mode="json") for row in breakdown],
        }
        self.cache.set(key, data, ttl=self.cache.analytics_ttl)
        return data

    # =========================================================================
    # Category mapping
    # =========================================================================

    def get_category_mapping(self, questionnaire_id: int) -> CategoryMapping:
        """Sanitized view of the stored mapping (defaults when none is stored)."""
        return validate_category_mapping(self.storage.fetch_questionnaire_mapping(questionnaire_id))

    def update_category_mapping(self, questionnaire_id: int, raw: Any) -> CategoryMapping:
        """
        Validate and persist a new category mapping.

        Malformed input is sanitized, never rejected. Cached views of the
        questionnaire are invalidated; stored rollups keep their old scores
        until the next refresh.

        Raises:
            NotFoundError: If the questionnaire does not exist
        """
        mapping = validate_category_mapping(raw)
        self.storage.update_questionnaire_mapping(questionnaire_id, mapping.to_blob())
        self.cache.invalidate_questionnaire(questionnaire_id)

        logger.info(
            "category_mapping_updated",
            questionnaire_id=questionnaire_id,
            questions=len(mapping.questions),
            categories=len(mapping.categories),
            aggregation_method=mapping.settings.aggregation_method.value,
        )
        return mapping

    # =========================================================================
    # Ad-hoc analytics
    # =========================================================================

    def get_category_performance(
        self,
        questionnaire_id: int,
        date_from: Optional[DateLike] = None,
        date_to: Optional[DateLike] = None,
    ) -> dict:
        """Category performance over ``[date_from, date_to)``, cached per range."""
        start, end = _date_bounds(date_from, date_to)

        key = self.cache.generate_key(
            "performance",
            questionnaire_id=questionnaire_id,
            date_from=start.isoformat() if start else None,
            date_to=end.isoformat() if end else None,
        )
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        performance = self.scorer.compute_category_performance(questionnaire_id, start, end)
        data = performance.model_dump(mode="json")
        self.cache.set(key, data, ttl=self.cache.analytics_ttl)
        return data

    def get_question_analytics(
        self,
        questionnaire_id: int,
        date_from: Optional[DateLike] = None,
        date_to: Optional[DateLike] = None,
    ) -> list[dict]:
        """Per-question answer statistics over ``[date_from, date_to)``, cached per range."""
        start, end = _date_bounds(date_from, date_to)

        key = self.cache.generate_key(
            "analytics",
            questionnaire_id=questionnaire_id,
            view="questions",
            date_from=start.isoformat() if start else None,
            date_to=end.isoformat() if end else None,
        )
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        entries = self.questions.compute(questionnaire_id, start, end)
        data = [entry.model_dump(mode="json") for entry in entries]
        self.cache.set(key, data, ttl=self.cache.analytics_ttl)
        return data

    def compare_periods(
        self,
        questionnaire_id: int,
        comparison_type: Union[ComparisonType, str] = ComparisonType.WEEK_OVER_WEEK,
        current_range: Optional[tuple[DateLike, DateLike]] = None,
        previous_range: Optional[tuple[DateLike, DateLike]] = None,
        now: Optional[datetime] = None,
    ) -> dict:
        """Period comparison, cached per parameter set and reference day."""
        comparison_type = ComparisonType(comparison_type)
        now = now or datetime.now(timezone.utc)

        key = self.cache.generate_key(
            "comparison",
            questionnaire_id=questionnaire_id,
            comparison_type=comparison_type.value,
            as_of=to_utc_date(now).isoformat(),
            current=_range_key(current_range),
            previous=_range_key(previous_range),
        )
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        data = self.comparison.compare(
            questionnaire_id,
            comparison_type,
            current_range=current_range,
            previous_range=previous_range,
            now=now,
        )
        self.cache.set(key, data, ttl=self.cache.analytics_ttl)
        return data

    def _require_questionnaire(self, questionnaire_id: int) -> None:
        if not self.storage.questionnaire_exists(questionnaire_id):
            raise NotFoundError("Questionnaire", questionnaire_id)


def _date_bounds(
    date_from: Optional[DateLike], date_to: Optional[DateLike]
) -> tuple[Optional[date], Optional[date]]:
    start = to_utc_date(date_from) if date_from is not None else None
    end = to_utc_date(date_to) if date_to is not None else None
    if start is not None and end is not None and start >= end:
        raise ValueError(f"Invalid date range: date_from {start} must be before date_to {end}")
    return start, end


def _range_key(date_range: Optional[tuple[DateLike, DateLike]]) -> Optional[str]:
    if date_range is None:
        return None
    start, end = date_range
    return f"{to_utc_date(start).isoformat()}_{to_utc_date(end).isoformat()}"
