"""
Pydantic v2 data models for the feedback analytics engine.

Model Organization:
    - enums: Enumeration types (granularity, statuses, aggregation methods)
    - survey: Source records owned by the persistence layer
    - mapping: Sanitized category mapping configuration
    - rollups: KPI / trend / breakdown rollups and refresh summaries
    - scoring: Category scoring and performance results
    - questions: Question-level answer statistics

Usage:
    >>> from feedback_analytics.models import Granularity, KPIRollup
    >>> row = KPIRollup(
    ...     questionnaire_id=1,
    ...     period_type=Granularity.WEEK,
    ...     period_date="2026-10-12",
    ...     total_responses=0,
    ... )
"""

from .enums import (
    AggregationMethod,
    BreakdownStatus,
    BucketState,
    ComparisonType,
    Granularity,
    InsightPriority,
    InsightType,
    PerformanceStatus,
    QuestionType,
)
from .mapping import (
    CategoryMapping,
    CategorySettings,
    MappingSettings,
    QuestionMapping,
    ResolvedQuestion,
)
from .questions import QuestionAnalyticsEntry, QuestionStatistics
from .rollups import (
    BreakdownRollup,
    BreakdownRow,
    BucketError,
    BucketWriteResult,
    KPIMetrics,
    KPIRollup,
    RefreshSummary,
    TrendPoint,
    TrendRollup,
    UpsertCounts,
)
from .scoring import (
    CategoryPerformance,
    CategoryPerformanceEntry,
    CategoryScore,
    Insight,
    ResponseScore,
)
from .survey import Answer, Question, Questionnaire, Response

__all__ = [
    # Enums
    "AggregationMethod",
    "BreakdownStatus",
    "BucketState",
    "ComparisonType",
    "Granularity",
    "InsightPriority",
    "InsightType",
    "PerformanceStatus",
    "QuestionType",
    # Survey
    "Answer",
    "Question",
    "Questionnaire",
    "Response",
    # Mapping
    "CategoryMapping",
    "CategorySettings",
    "MappingSettings",
    "QuestionMapping",
    "ResolvedQuestion",
    # Questions
    "QuestionAnalyticsEntry",
    "QuestionStatistics",
    # Rollups
    "BreakdownRollup",
    "BreakdownRow",
    "BucketError",
    "BucketWriteResult",
    "KPIMetrics",
    "KPIRollup",
    "RefreshSummary",
    "TrendPoint",
    "TrendRollup",
    "UpsertCounts",
    # Scoring
    "CategoryPerformance",
    "CategoryPerformanceEntry",
    "CategoryScore",
    "Insight",
    "ResponseScore",
]
