"""
KPI Aggregator - per-period scalar metrics of a questionnaire.

Computes, for one period bucket:
- total_responses: responses whose response_date falls in the period
- response_rate: share of those responses that are complete (whole percent)
- avg_rating: mean rating_score of non-skipped, scored answers (2 decimals)
- positive_sentiment: share of scored answers at or above 4.0 (whole percent)

A period without responses reports ``total_responses == 0`` and ``None`` for
every other metric, keeping "no data" distinct from a real zero.
"""

from datetime import date
from typing import Optional, Union

import structlog

from feedback_analytics.models.enums import Granularity
from feedback_analytics.models.rollups import KPIMetrics
from feedback_analytics.storage.base import StorageBackend
from feedback_analytics.utils.numbers import is_finite_number, mean, round_half_up, round_percent

from .periods import DateLike, period_range, start_of_day

logger = structlog.get_logger()

# Ratings on the 1-5 scale at or above this count as positive sentiment
POSITIVE_SENTIMENT_THRESHOLD = 4.0


def summarize_ratings(ratings: list[float]) -> tuple[Optional[float], Optional[int]]:
    """Rounded mean rating and positive-sentiment percentage of a set of ratings."""
    average = mean(ratings)
    if average is None:
        return None, None
    positive = sum(1 for rating in ratings if rating >= POSITIVE_SENTIMENT_THRESHOLD)
    return round_half_up(average, 2), round_percent(positive / len(ratings) * 100)


class KPIAggregator:
    """
    Computes KPI metrics from source responses and answers.

    Every call re-derives its result from source data; nothing is
    accumulated between calls.

    Example:
        >>> aggregator = KPIAggregator(storage=storage)
        >>> kpis = aggregator.compute_kpis(1, "week", "2026-10-12")
    """

    def __init__(self, storage: StorageBackend):
        self.storage = storage

    def compute_kpis(
        self,
        questionnaire_id: int,
        granularity: Union[Granularity, str],
        period_start: DateLike,
    ) -> KPIMetrics:
        """
        Compute KPIs of the period bucket starting at ``period_start``.

        Args:
            questionnaire_id: Questionnaire ID
            granularity: Bucket size
            period_start: Canonical period-start date

        Returns:
            KPIMetrics for the half-open period range
        """
        start, end = period_range(period_start, granularity)
        return self.compute_for_range(questionnaire_id, start, end)

    def compute_for_range(self, questionnaire_id: int, start: date, end: date) -> KPIMetrics:
        """Compute KPIs over an arbitrary half-open date range ``[start, end)``."""
        responses = self.storage.fetch_responses(
            questionnaire_id, start_of_day(start), start_of_day(end)
        )

        total = len(responses)
        if total == 0:
            return KPIMetrics(total_responses=0)

        complete = sum(1 for response in responses if response.is_complete)
        ratings = self.fetch_ratings([response.id for response in responses])
        avg_rating, positive_sentiment = summarize_ratings(ratings)

        return KPIMetrics(
            total_responses=total,
            avg_rating=avg_rating,
            response_rate=round_percent(complete / total * 100),
            positive_sentiment=positive_sentiment,
        )

    def fetch_ratings(self, response_ids: list[int]) -> list[float]:
        """Rating scores of the non-skipped, scored answers of these responses."""
        answers = self.storage.fetch_answers(
            response_ids=response_ids, exclude_skipped=True, require_rating=True
        )
        # Corrupt NaN or infinite ratings are treated as missing
        return [
            float(answer.rating_score)
            for answer in answers
            if not answer.is_skipped and is_finite_number(answer.rating_score)
        ]
