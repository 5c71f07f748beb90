"""
Category Scorer - weighted per-category scoring of survey responses.

Answers are scored individually (a rating, or the mean score of the selected
choice options), grouped by the effective category of their question and
aggregated with the questionnaire's aggregation method. Response-level
category averages are then averaged across responses to produce category
performance, target gaps, dashboard breakdown rows and insights.
"""

import statistics
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Iterable, Optional, Union

import structlog

from feedback_analytics.models.enums import (
    AggregationMethod,
    BreakdownStatus,
    Granularity,
    InsightPriority,
    InsightType,
    PerformanceStatus,
)
from feedback_analytics.models.mapping import CategoryMapping, ResolvedQuestion
from feedback_analytics.models.rollups import BreakdownRow
from feedback_analytics.models.scoring import (
    CategoryPerformance,
    CategoryPerformanceEntry,
    CategoryScore,
    Insight,
    ResponseScore,
)
from feedback_analytics.models.survey import Answer
from feedback_analytics.storage.base import StorageBackend
from feedback_analytics.utils.numbers import (
    is_finite_number,
    mean,
    percent_change,
    round_half_up,
    round_percent,
)

from .category_mapping import build_question_map, validate_category_mapping
from .periods import DateLike, period_range, period_start_date, start_of_day, to_utc_date

logger = structlog.get_logger()

# Dashboard status thresholds on the 1-5 rating scale
GOOD_THRESHOLD = 4.0
URGENT_THRESHOLD = 3.0

# Points above target before a category counts as excellent
EXCELLENT_MARGIN = 1.0
# Points below target before an improvement insight becomes high priority
HIGH_PRIORITY_GAP = -1.0


def breakdown_status(avg_rating: Optional[float]) -> BreakdownStatus:
    """
    Dashboard status of a category average.

    ``>= 4.0`` is Good, ``< 3.0`` is Urgent, anything in between (and a
    missing average) is Monitor.
    """
    if avg_rating is None:
        return BreakdownStatus.MONITOR
    if avg_rating >= GOOD_THRESHOLD:
        return BreakdownStatus.GOOD
    if avg_rating < URGENT_THRESHOLD:
        return BreakdownStatus.URGENT
    return BreakdownStatus.MONITOR


def answer_score(answer: Answer, resolved: ResolvedQuestion) -> Optional[float]:
    """
    Score of a single answer, or None when no score can be derived.

    A positive, finite ``rating_score`` is used as-is. Otherwise the selected options
    that have a mapped score are averaged; unmapped options are ignored.
    """
    if is_finite_number(answer.rating_score) and answer.rating_score > 0:
        return float(answer.rating_score)

    scores = [
        resolved.options[option]
        for option in answer.selected_options
        if option in resolved.options
    ]
    return mean(scores)


def aggregate_scores(
    scores: list[float], weights: list[float], method: AggregationMethod
) -> float:
    """Combine answer scores with the configured aggregation method."""
    if method == AggregationMethod.MEDIAN:
        return statistics.median(scores)
    if method == AggregationMethod.SIMPLE_AVERAGE:
        return sum(scores) / len(scores)

    total_weight = sum(weights)
    return sum(score * weight for score, weight in zip(scores, weights)) / total_weight


@dataclass
class _Accumulator:
    """Scores of one group of answers, kept unreduced until aggregation."""

    scores: list[float] = field(default_factory=list)
    weights: list[float] = field(default_factory=list)

    def add(self, score: float, weight: float) -> None:
        self.scores.append(score)
        self.weights.append(weight)

    def result(self, method: AggregationMethod) -> float:
        return aggregate_scores(self.scores, self.weights, method)


@dataclass
class _CategoryTotals:
    """Response-level category averages collected across a range."""

    averages: list[float] = field(default_factory=list)
    answer_count: int = 0


@dataclass
class _RangeResult:
    total_responses: int
    processed_responses: int
    totals: dict[str, _CategoryTotals]


class CategoryScorer:
    """
    Scores responses per category and derives category performance.

    Example:
        >>> scorer = CategoryScorer(storage=storage)
        >>> performance = scorer.compute_category_performance(1, date(2026, 10, 1), date(2026, 11, 1))
        >>> performance.categories["service"].average_score
        4.5
    """

    def __init__(self, storage: StorageBackend):
        self.storage = storage

    def score_response(
        self,
        response_id: int,
        answers: Iterable[Answer],
        question_map: dict[int, ResolvedQuestion],
        mapping: CategoryMapping,
    ) -> ResponseScore:
        """
        Score one response per category.

        Skipped answers, answers to questions outside ``question_map`` and
        answers without a derivable score are excluded.

        Args:
            response_id: Response ID
            answers: The response's answers
            question_map: Resolved category, weight and options per question
            mapping: Sanitized category mapping of the questionnaire

        Returns:
            ResponseScore with per-category results and the overall score
        """
        method = mapping.settings.aggregation_method
        overall = _Accumulator()
        by_category: dict[str, _Accumulator] = {}

        for answer in answers:
            if answer.is_skipped:
                continue
            resolved = question_map.get(answer.question_id)
            if resolved is None:
                continue
            score = answer_score(answer, resolved)
            if score is None:
                continue

            by_category.setdefault(resolved.category, _Accumulator()).add(score, resolved.weight)
            overall.add(score, resolved.weight)

        per_category: dict[str, CategoryScore] = {}
        for category, accumulator in by_category.items():
            average = accumulator.result(method)
            weighted_score = None
            settings = mapping.categories.get(category)
            if mapping.settings.enable_category_weights and settings is not None:
                weighted_score = average * settings.weight

            # Non-weighted methods count every answer with weight 1
            if method == AggregationMethod.WEIGHTED_AVERAGE:
                total_weight = sum(accumulator.weights)
            else:
                total_weight = float(len(accumulator.scores))

            per_category[category] = CategoryScore(
                average_score=average,
                total_weight=total_weight,
                answer_count=len(accumulator.scores),
                weighted_score=weighted_score,
            )

        return ResponseScore(
            response_id=response_id,
            overall_score=overall.result(method) if overall.scores else None,
            per_category=per_category,
        )

    def compute_category_performance(
        self,
        questionnaire_id: int,
        start: Optional[DateLike] = None,
        end: Optional[DateLike] = None,
    ) -> CategoryPerformance:
        """
        Category performance over the half-open date range ``[start, end)``.

        Either bound may be omitted to leave that side unbounded.

        Raises:
            NotFoundError: If the questionnaire does not exist
        """
        mapping = self._load_mapping(questionnaire_id)
        start_date = to_utc_date(start) if start is not None else None
        end_date = to_utc_date(end) if end is not None else None

        result = self._score_range(questionnaire_id, mapping, start_date, end_date)

        performance = CategoryPerformance(
            questionnaire_id=questionnaire_id,
            date_from=start_date.isoformat() if start_date else None,
            date_to=end_date.isoformat() if end_date else None,
            total_responses=result.total_responses,
            processed_responses=result.processed_responses,
        )

        for category, totals in result.totals.items():
            entry = self._performance_entry(totals, mapping.target_for(category), result.processed_responses)
            performance.categories[category] = entry

            insight = self._insight(category, entry)
            if insight is not None:
                performance.insights.append(insight)

        logger.info(
            "category_performance_computed",
            questionnaire_id=questionnaire_id,
            total_responses=performance.total_responses,
            categories=len(performance.categories),
            insights=len(performance.insights),
        )
        return performance

    def compute_breakdown(
        self,
        questionnaire_id: int,
        granularity: Union[Granularity, str],
        period_start: DateLike,
    ) -> list[BreakdownRow]:
        """
        Per-category breakdown rows of a period bucket.

        ``trend`` is the percent change of the category average against the
        same category in the previous bucket, None when that bucket has no
        score for the category.
        """
        granularity = Granularity(granularity)
        start, end = period_range(period_start, granularity)
        mapping = self._load_mapping(questionnaire_id)

        current = self._score_range(questionnaire_id, mapping, start, end)
        if not current.totals:
            return []

        previous_start = self._previous_period_start(start, granularity)
        previous = self._score_range(questionnaire_id, mapping, previous_start, start)

        rows = []
        for category, totals in current.totals.items():
            target = mapping.target_for(category)
            entry = self._performance_entry(totals, target, current.processed_responses)

            previous_average = None
            if category in previous.totals:
                previous_average = round_half_up(mean(previous.totals[category].averages), 2)

            rows.append(
                BreakdownRow(
                    area=category,
                    avg_rating=entry.average_score,
                    responses=entry.responses,
                    answer_count=entry.answer_count,
                    trend=percent_change(entry.average_score, previous_average),
                    status=breakdown_status(entry.average_score),
                    target_score=entry.target_score,
                    gap=entry.gap,
                    performance=entry.performance,
                )
            )

        rows.sort(key=lambda row: (-row.avg_rating, row.area))
        return rows

    def _load_mapping(self, questionnaire_id: int) -> CategoryMapping:
        return validate_category_mapping(self.storage.fetch_questionnaire_mapping(questionnaire_id))

    def _score_range(
        self,
        questionnaire_id: int,
        mapping: CategoryMapping,
        start: Optional[date],
        end: Optional[date],
    ) -> _RangeResult:
        responses = self.storage.fetch_responses(
            questionnaire_id,
            start_of_day(start) if start else None,
            start_of_day(end) if end else None,
        )
        if not responses:
            return _RangeResult(total_responses=0, processed_responses=0, totals={})

        question_map = build_question_map(self.storage.fetch_questions(questionnaire_id), mapping)

        answers_by_response: dict[int, list[Answer]] = {}
        for answer in self.storage.fetch_answers(response_ids=[r.id for r in responses]):
            answers_by_response.setdefault(answer.response_id, []).append(answer)

        totals: dict[str, _CategoryTotals] = {}
        for response in responses:
            score = self.score_response(
                response.id, answers_by_response.get(response.id, []), question_map, mapping
            )
            for category, category_score in score.per_category.items():
                category_totals = totals.setdefault(category, _CategoryTotals())
                category_totals.averages.append(category_score.average_score)
                category_totals.answer_count += category_score.answer_count

        return _RangeResult(
            total_responses=len(responses),
            processed_responses=len(responses),
            totals=totals,
        )

    @staticmethod
    def _performance_entry(
        totals: _CategoryTotals, target: float, processed_responses: int
    ) -> CategoryPerformanceEntry:
        average = round_half_up(mean(totals.averages), 2)
        gap = round_half_up(average - target, 2)
        response_rate = (
            round_percent(len(totals.averages) / processed_responses * 100)
            if processed_responses
            else 0
        )
        return CategoryPerformanceEntry(
            average_score=average,
            responses=len(totals.averages),
            answer_count=totals.answer_count,
            target_score=target,
            gap=gap,
            performance=PerformanceStatus.ABOVE_TARGET if gap >= 0 else PerformanceStatus.BELOW_TARGET,
            response_rate=response_rate,
        )

    @staticmethod
    def _insight(category: str, entry: CategoryPerformanceEntry) -> Optional[Insight]:
        if entry.performance == PerformanceStatus.BELOW_TARGET:
            return Insight(
                type=InsightType.IMPROVEMENT_NEEDED,
                category=category,
                message=f"{category} category is {abs(entry.gap)} points below target",
                priority=InsightPriority.HIGH if entry.gap < HIGH_PRIORITY_GAP else InsightPriority.MEDIUM,
            )
        if entry.gap > EXCELLENT_MARGIN:
            return Insight(
                type=InsightType.EXCELLENT_PERFORMANCE,
                category=category,
                message=f"{category} category is performing {round_percent(entry.gap)} points above target",
                priority=InsightPriority.LOW,
            )
        return None

    @staticmethod
    def _previous_period_start(start: date, granularity: Granularity) -> date:
        # The day before a canonical start always falls inside the previous bucket
        return period_start_date(start - timedelta(days=1), granularity)
