"""
Trend Calculator - day-by-day series inside a period bucket.

Trend resolution is always daily: a week bucket yields seven points, a month
bucket one point per calendar day, regardless of the requested granularity.
Each point carries the day's average rating and response rate, plus the
percent change of the average rating against the previous point.

The day-over-day change is a plain local derivative with no smoothing, so
noisy series are expected.
"""

from typing import Optional, Union

import structlog

from feedback_analytics.models.enums import Granularity
from feedback_analytics.models.rollups import TrendPoint
from feedback_analytics.storage.base import StorageBackend
from feedback_analytics.utils.numbers import mean, percent_change, round_half_up, round_percent

from .kpi_aggregator import KPIAggregator
from .periods import DateLike, iter_days, next_period, period_range, start_of_day

logger = structlog.get_logger()


class TrendCalculator:
    """
    Computes daily trend points for a period bucket.

    Attributes:
        storage: Storage backend for source responses and answers
        kpis: Aggregator used for the shared rating query
    """

    def __init__(self, storage: StorageBackend, kpi_aggregator: Optional[KPIAggregator] = None):
        self.storage = storage
        self.kpis = kpi_aggregator or KPIAggregator(storage)

    def compute_trends(
        self,
        questionnaire_id: int,
        granularity: Union[Granularity, str],
        period_start: DateLike,
    ) -> list[TrendPoint]:
        """
        Compute one trend point per calendar day of the period.

        Args:
            questionnaire_id: Questionnaire ID
            granularity: Bucket size (only determines the range covered)
            period_start: Canonical period-start date

        Returns:
            Chronologically ordered trend points
        """
        start, end = period_range(period_start, granularity)
        points: list[TrendPoint] = []
        previous_rating: Optional[float] = None

        for day in iter_days(start, end):
            responses = self.storage.fetch_responses(
                questionnaire_id, start_of_day(day), start_of_day(next_period(day, Granularity.DAY))
            )

            if not responses:
                points.append(TrendPoint(date=day.isoformat()))
                previous_rating = None
                continue

            complete = sum(1 for response in responses if response.is_complete)
            average = mean(self.kpis.fetch_ratings([response.id for response in responses]))
            avg_rating = round_half_up(average, 2) if average is not None else None

            points.append(
                TrendPoint(
                    date=day.isoformat(),
                    avg_rating=avg_rating,
                    response_rate=round_percent(complete / len(responses) * 100),
                    # Unrounded current average against the rounded previous one
                    trend_value=percent_change(average, previous_rating),
                )
            )
            previous_rating = avg_rating

        logger.debug(
            "trends_computed",
            questionnaire_id=questionnaire_id,
            granularity=Granularity(granularity).value,
            period_start=start.isoformat(),
            points=len(points),
        )
        return points
