"""
Refresh Orchestrator - recomputes rollups over a rolling window.

For every requested granularity the orchestrator walks the period buckets
touching the refresh window in chronological order. Each bucket is computed
from source data (KPIs, daily trends, category breakdown) and written with a
single atomic storage call, so a bucket is either fully replaced or left
untouched.

Bucket lifecycle:
    pending -> computing -> upserted
                         -> failed (logged, recorded, run continues)

Refreshes of the same (questionnaire, granularity) are serialized by a
per-key lock; different keys proceed independently.
"""

import threading
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Iterable, Optional, Union

import structlog

from feedback_analytics.models.enums import BucketState, Granularity
from feedback_analytics.models.rollups import (
    BreakdownRollup,
    BucketError,
    KPIRollup,
    RefreshSummary,
    TrendRollup,
)
from feedback_analytics.storage.base import NotFoundError, StorageBackend

from .category_scorer import CategoryScorer
from .kpi_aggregator import KPIAggregator
from .periods import iter_periods
from .trend_calculator import TrendCalculator

if TYPE_CHECKING:
    from feedback_analytics.cache import AnalyticsCache

logger = structlog.get_logger()

DEFAULT_WINDOW_DAYS = 30


class RefreshOrchestrator:
    """
    Drives the windowed recomputation of KPI, trend and breakdown rollups.

    Attributes:
        storage: Storage backend (source reads and rollup writes)
        cache: Optional cache invalidated after every run
        window_days: Length of the rolling refresh window

    Example:
        >>> orchestrator = RefreshOrchestrator(storage, cache=cache)
        >>> summary = orchestrator.refresh(1, ["week"])
        >>> summary.buckets_processed
        5
    """

    def __init__(
        self,
        storage: StorageBackend,
        cache: Optional["AnalyticsCache"] = None,
        window_days: int = DEFAULT_WINDOW_DAYS,
        kpi_aggregator: Optional[KPIAggregator] = None,
        trend_calculator: Optional[TrendCalculator] = None,
        category_scorer: Optional[CategoryScorer] = None,
    ):
        self.storage = storage
        self.cache = cache
        self.window_days = window_days
        self.kpis = kpi_aggregator or KPIAggregator(storage)
        self.trends = trend_calculator or TrendCalculator(storage, self.kpis)
        self.scorer = category_scorer or CategoryScorer(storage)

        self._locks: dict[tuple[int, Granularity], threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def refresh(
        self,
        questionnaire_id: int,
        granularities: Iterable[Union[Granularity, str]],
        now: Optional[datetime] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> RefreshSummary:
        """
        Recompute every bucket of the rolling window for each granularity.

        Args:
            questionnaire_id: Questionnaire ID
            granularities: Granularities to refresh
            now: End of the window (defaults to the current UTC time)
            cancel_event: Checked between buckets; when set the run stops

        Returns:
            RefreshSummary with created/updated counts, bucket states and errors

        Raises:
            NotFoundError: If the questionnaire does not exist
            ValueError: For an unknown granularity
        """
        resolved = [Granularity(granularity) for granularity in granularities]
        if not self.storage.questionnaire_exists(questionnaire_id):
            raise NotFoundError("Questionnaire", questionnaire_id)

        now = now or datetime.now(timezone.utc)
        window_start = now - timedelta(days=self.window_days)
        summary = RefreshSummary(questionnaire_id=questionnaire_id, granularities=resolved)

        logger.info(
            "refresh_started",
            questionnaire_id=questionnaire_id,
            granularities=[g.value for g in resolved],
            window_days=self.window_days,
        )

        try:
            for granularity in resolved:
                with self._lock_for(questionnaire_id, granularity):
                    self._refresh_granularity(
                        questionnaire_id, granularity, window_start, now, summary, cancel_event
                    )
                if summary.cancelled:
                    break
        finally:
            if self.cache is not None:
                self.cache.invalidate_questionnaire(questionnaire_id)

        logger.info(
            "refresh_completed",
            questionnaire_id=questionnaire_id,
            buckets_processed=summary.buckets_processed,
            buckets_failed=summary.buckets_failed,
            cancelled=summary.cancelled,
            kpis=summary.kpis.model_dump(),
            trends=summary.trends.model_dump(),
            breakdown=summary.breakdown.model_dump(),
        )
        return summary

    def _refresh_granularity(
        self,
        questionnaire_id: int,
        granularity: Granularity,
        window_start: datetime,
        now: datetime,
        summary: RefreshSummary,
        cancel_event: Optional[threading.Event],
    ) -> None:
        periods = list(iter_periods(window_start, now, granularity))
        for period_date in periods:
            summary.set_state(granularity, period_date, BucketState.PENDING)

        for period_date in periods:
            if cancel_event is not None and cancel_event.is_set():
                logger.warning(
                    "refresh_cancelled",
                    questionnaire_id=questionnaire_id,
                    granularity=granularity.value,
                    next_period=period_date,
                )
                summary.cancelled = True
                return
            self._refresh_bucket(questionnaire_id, granularity, period_date, summary)

    def _refresh_bucket(
        self,
        questionnaire_id: int,
        granularity: Granularity,
        period_date: str,
        summary: RefreshSummary,
    ) -> None:
        summary.set_state(granularity, period_date, BucketState.COMPUTING)

        try:
            kpi = self.kpis.compute_kpis(questionnaire_id, granularity, period_date)
            trends = self.trends.compute_trends(questionnaire_id, granularity, period_date)
            breakdown = self.scorer.compute_breakdown(questionnaire_id, granularity, period_date)

            bucket = {
                "questionnaire_id": questionnaire_id,
                "period_type": granularity,
                "period_date": period_date,
            }
            result = self.storage.upsert_bucket(
                KPIRollup(**bucket, **kpi.model_dump()),
                [TrendRollup(**bucket, **point.model_dump()) for point in trends],
                [BreakdownRollup(**bucket, **row.model_dump()) for row in breakdown],
            )
        except Exception as e:
            summary.set_state(granularity, period_date, BucketState.FAILED)
            summary.buckets_failed += 1
            summary.errors.append(
                BucketError(granularity=granularity, period_date=period_date, error=str(e))
            )
            logger.error(
                "refresh_bucket_failed",
                questionnaire_id=questionnaire_id,
                granularity=granularity.value,
                period_date=period_date,
                error=str(e),
            )
            return

        summary.set_state(granularity, period_date, BucketState.UPSERTED)
        summary.record(result)
        logger.debug(
            "refresh_bucket_upserted",
            questionnaire_id=questionnaire_id,
            granularity=granularity.value,
            period_date=period_date,
            trends=len(trends),
            breakdown=len(breakdown),
        )

    def _lock_for(self, questionnaire_id: int, granularity: Granularity) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault((questionnaire_id, granularity), threading.Lock())
