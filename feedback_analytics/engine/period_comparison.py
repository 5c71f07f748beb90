"""
Period Comparison Engine - This Week vs Last, This Month vs Last.

Compares response volume, overall rating and per-category ratings of two
periods and summarizes the movement as an overall trend plus a short list of
insights for the dashboard.
"""

from datetime import date, datetime, timedelta, timezone
from typing import Optional, Union

import structlog

from feedback_analytics.models.enums import ComparisonType
from feedback_analytics.storage.base import NotFoundError, StorageBackend
from feedback_analytics.utils.numbers import round_half_up

from .category_scorer import CategoryScorer
from .kpi_aggregator import KPIAggregator
from .periods import DateLike, add_months, to_utc_date

logger = structlog.get_logger()

DateRange = tuple[date, date]

# Percent change beyond which a metric counts as moving
TREND_THRESHOLD = 5.0

# Overall trend weights and cut-offs
VOLUME_WEIGHT = 0.3
RATING_WEIGHT = 0.4
CATEGORY_WEIGHT = 0.3
OVERALL_TREND_THRESHOLD = 0.2

# Insight thresholds
VOLUME_INSIGHT_PCT = 20.0
RATING_INSIGHT_POINTS = 0.3
CATEGORY_INSIGHT_POINTS = 0.5


def percentage_change(
    previous: Optional[float], current: Optional[float]
) -> dict:
    """
    Change between two values with its direction.

    A previous value of 0 reports +100% when the current value is positive
    (0% otherwise). Missing values report no change and a stable trend.

    Returns:
        {"previous", "current", "change", "percentage_change", "trend"}
    """
    if previous is None or current is None:
        return {
            "previous": previous,
            "current": current,
            "change": None,
            "percentage_change": None,
            "trend": "stable",
        }

    if previous == 0:
        return {
            "previous": previous,
            "current": current,
            "change": current,
            "percentage_change": 100 if current > 0 else 0,
            "trend": "increasing" if current > 0 else "stable",
        }

    change = round_half_up(current - previous, 2)
    pct = round_half_up((current - previous) / previous * 100, 2)
    if pct > TREND_THRESHOLD:
        trend = "increasing"
    elif pct < -TREND_THRESHOLD:
        trend = "decreasing"
    else:
        trend = "stable"

    return {
        "previous": previous,
        "current": current,
        "change": change,
        "percentage_change": pct,
        "trend": trend,
    }


def compare_categories(current: list[dict], previous: list[dict]) -> list[dict]:
    """Per-category rating and volume movement; categories new this period are marked ``new``."""
    previous_by_name = {category["name"]: category for category in previous}
    comparisons = []

    for category in current:
        before = previous_by_name.get(category["name"])
        if before is None:
            comparisons.append({
                "name": category["name"],
                "current_rating": category["rating"],
                "previous_rating": None,
                "rating_change": category["rating"],
                "rating_trend": "new",
                "current_responses": category["response_count"],
                "previous_responses": 0,
                "response_trend": "new",
            })
            continue

        rating = percentage_change(before["rating"], category["rating"])
        volume = percentage_change(before["response_count"], category["response_count"])
        comparisons.append({
            "name": category["name"],
            "current_rating": category["rating"],
            "previous_rating": before["rating"],
            "rating_change": rating["change"],
            "rating_trend": rating["trend"],
            "current_responses": category["response_count"],
            "previous_responses": before["response_count"],
            "response_trend": volume["trend"],
        })

    return comparisons


def overall_trend(response_change: dict, rating_change: dict, categories: list[dict]) -> str:
    """Weighted vote of volume, rating and category movement: improving, declining or stable."""
    score = 0.0

    if response_change["trend"] == "increasing":
        score += VOLUME_WEIGHT
    elif response_change["trend"] == "decreasing":
        score -= VOLUME_WEIGHT

    if rating_change["trend"] == "increasing":
        score += RATING_WEIGHT
    elif rating_change["trend"] == "decreasing":
        score -= RATING_WEIGHT

    if categories:
        improving = sum(1 for c in categories if c["rating_trend"] == "increasing")
        declining = sum(1 for c in categories if c["rating_trend"] == "decreasing")
        score += (improving - declining) / len(categories) * CATEGORY_WEIGHT

    if score > OVERALL_TREND_THRESHOLD:
        return "improving"
    if score < -OVERALL_TREND_THRESHOLD:
        return "declining"
    return "stable"


def comparison_insights(
    response_change: dict, rating_change: dict, categories: list[dict]
) -> list[dict]:
    """Human-readable observations about the biggest movements."""
    insights = []

    volume_pct = response_change["percentage_change"]
    if response_change["trend"] == "increasing" and volume_pct > VOLUME_INSIGHT_PCT:
        insights.append({
            "type": "positive",
            "message": f"Response volume increased by {volume_pct}% compared to previous period",
        })
    elif response_change["trend"] == "decreasing" and volume_pct < -VOLUME_INSIGHT_PCT:
        insights.append({
            "type": "concern",
            "message": f"Response volume decreased by {abs(volume_pct)}% compared to previous period",
        })

    rating_delta = rating_change["change"]
    if rating_change["trend"] == "increasing" and rating_delta > RATING_INSIGHT_POINTS:
        insights.append({
            "type": "positive",
            "message": f"Overall satisfaction rating improved by {rating_delta:.1f} points",
        })
    elif rating_change["trend"] == "decreasing" and rating_delta < -RATING_INSIGHT_POINTS:
        insights.append({
            "type": "concern",
            "message": f"Overall satisfaction rating declined by {abs(rating_delta):.1f} points",
        })

    improving = [c for c in categories if c["rating_trend"] == "increasing"]
    if improving:
        best = max(improving, key=lambda c: c["rating_change"])
        if best["rating_change"] > CATEGORY_INSIGHT_POINTS:
            insights.append({
                "type": "positive",
                "message": (
                    f"{best['name']} showed significant improvement with "
                    f"{best['rating_change']:.1f} point increase"
                ),
            })

    declining = [c for c in categories if c["rating_trend"] == "decreasing"]
    if declining:
        worst = min(declining, key=lambda c: c["rating_change"])
        if worst["rating_change"] < -CATEGORY_INSIGHT_POINTS:
            insights.append({
                "type": "attention",
                "message": (
                    f"{worst['name']} needs attention with "
                    f"{abs(worst['rating_change']):.1f} point decline"
                ),
            })

    return insights


class PeriodComparisonService:
    """
    Compares questionnaire analytics across two periods.

    Supports week-over-week (last 7 days vs the 7 before), month-over-month
    (month to date vs the whole previous month) and custom ranges. All
    ranges are half-open ``[start, end)`` calendar-date ranges.
    """

    def __init__(
        self,
        storage: StorageBackend,
        kpi_aggregator: Optional[KPIAggregator] = None,
        category_scorer: Optional[CategoryScorer] = None,
    ):
        self.storage = storage
        self.kpis = kpi_aggregator or KPIAggregator(storage)
        self.scorer = category_scorer or CategoryScorer(storage)
        self.logger = structlog.get_logger()

    def compare(
        self,
        questionnaire_id: int,
        comparison_type: Union[ComparisonType, str] = ComparisonType.WEEK_OVER_WEEK,
        current_range: Optional[tuple[DateLike, DateLike]] = None,
        previous_range: Optional[tuple[DateLike, DateLike]] = None,
        now: Optional[datetime] = None,
    ) -> dict:
        """
        Compare the current period to the previous one.

        Args:
            questionnaire_id: Questionnaire ID
            comparison_type: week_over_week, month_over_month or custom
            current_range: ``(start, end)`` of the current period (custom only)
            previous_range: ``(start, end)`` of the previous period (custom only)
            now: Reference time (default: current UTC time)

        Returns:
            {
                "questionnaire_id": int,
                "comparison_type": str,
                "current_period": {"start", "end", "analytics"},
                "previous_period": {"start", "end", "analytics"},
                "comparison_metrics": {
                    "response_count_change", "overall_rating_change",
                    "category_comparisons", "overall_trend", "insights",
                },
            }

        Raises:
            NotFoundError: If the questionnaire does not exist
            ValueError: For an unknown comparison type or an invalid range
        """
        comparison_type = ComparisonType(comparison_type)
        if not self.storage.questionnaire_exists(questionnaire_id):
            raise NotFoundError("Questionnaire", questionnaire_id)

        current, previous = self._resolve_ranges(
            comparison_type, current_range, previous_range, now or datetime.now(timezone.utc)
        )

        current_analytics = self._period_analytics(questionnaire_id, current)
        previous_analytics = self._period_analytics(questionnaire_id, previous)

        response_change = percentage_change(
            previous_analytics["total_responses"], current_analytics["total_responses"]
        )
        rating_change = percentage_change(
            previous_analytics["overall_rating"], current_analytics["overall_rating"]
        )
        categories = compare_categories(
            current_analytics["categories"], previous_analytics["categories"]
        )
        trend = overall_trend(response_change, rating_change, categories)

        self.logger.info(
            "period_comparison_computed",
            questionnaire_id=questionnaire_id,
            comparison_type=comparison_type.value,
            current_responses=current_analytics["total_responses"],
            previous_responses=previous_analytics["total_responses"],
            overall_trend=trend,
        )

        return {
            "questionnaire_id": questionnaire_id,
            "comparison_type": comparison_type.value,
            "current_period": {
                "start": current[0].isoformat(),
                "end": current[1].isoformat(),
                "analytics": current_analytics,
            },
            "previous_period": {
                "start": previous[0].isoformat(),
                "end": previous[1].isoformat(),
                "analytics": previous_analytics,
            },
            "comparison_metrics": {
                "response_count_change": response_change,
                "overall_rating_change": rating_change,
                "category_comparisons": categories,
                "overall_trend": trend,
                "insights": comparison_insights(response_change, rating_change, categories),
            },
        }

    def _resolve_ranges(
        self,
        comparison_type: ComparisonType,
        current_range: Optional[tuple[DateLike, DateLike]],
        previous_range: Optional[tuple[DateLike, DateLike]],
        now: datetime,
    ) -> tuple[DateRange, DateRange]:
        today = to_utc_date(now)
        tomorrow = today + timedelta(days=1)

        if comparison_type == ComparisonType.WEEK_OVER_WEEK:
            current_start = tomorrow - timedelta(days=7)
            return (
                (current_start, tomorrow),
                (current_start - timedelta(days=7), current_start),
            )

        if comparison_type == ComparisonType.MONTH_OVER_MONTH:
            month_start = today.replace(day=1)
            return (month_start, tomorrow), (add_months(month_start, -1), month_start)

        if current_range is None or previous_range is None:
            raise ValueError("Custom comparison requires current and previous ranges")
        return _validated_range(current_range), _validated_range(previous_range)

    def _period_analytics(self, questionnaire_id: int, date_range: DateRange) -> dict:
        start, end = date_range
        kpis = self.kpis.compute_for_range(questionnaire_id, start, end)
        performance = self.scorer.compute_category_performance(questionnaire_id, start, end)

        categories = [
            {
                "name": name,
                "rating": entry.average_score,
                "response_count": entry.responses,
            }
            for name, entry in sorted(performance.categories.items())
        ]

        return {
            "total_responses": kpis.total_responses,
            "overall_rating": kpis.avg_rating,
            "response_rate": kpis.response_rate,
            "positive_sentiment": kpis.positive_sentiment,
            "categories": categories,
            "period_days": (end - start).days,
        }


def _validated_range(date_range: tuple[DateLike, DateLike]) -> DateRange:
    start, end = (to_utc_date(value) for value in date_range)
    if start >= end:
        raise ValueError(f"Invalid date range: start {start} must be before end {end}")
    return start, end
