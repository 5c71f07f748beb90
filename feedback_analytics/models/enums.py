"""
Enumeration types for the feedback analytics engine.

All enums inherit from str to ensure JSON serialization compatibility and
so that values round-trip through DuckDB VARCHAR columns unchanged.
"""

from enum import Enum


class Granularity(str, Enum):
    """Bucket size for time-series aggregation (a.k.a. period type)."""

    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"


class QuestionType(str, Enum):
    """Question kinds a questionnaire may contain."""

    RATING = "rating"
    SINGLE_CHOICE = "single_choice"
    MULTIPLE_CHOICE = "multiple_choice"
    TEXT = "text"
    OTHER = "other"


class AggregationMethod(str, Enum):
    """Formula used to combine answer scores within a category."""

    WEIGHTED_AVERAGE = "weighted_average"
    SIMPLE_AVERAGE = "simple_average"
    MEDIAN = "median"


class BreakdownStatus(str, Enum):
    """Dashboard coloring of a category breakdown row."""

    GOOD = "Good"
    MONITOR = "Monitor"
    URGENT = "Urgent"


class PerformanceStatus(str, Enum):
    """Category average relative to its configured target score."""

    ABOVE_TARGET = "above_target"
    BELOW_TARGET = "below_target"


class InsightType(str, Enum):
    """Kinds of category performance insights."""

    IMPROVEMENT_NEEDED = "improvement_needed"
    EXCELLENT_PERFORMANCE = "excellent_performance"


class InsightPriority(str, Enum):
    """Priority attached to a generated insight."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class BucketState(str, Enum):
    """Lifecycle of one period bucket during a refresh run."""

    PENDING = "pending"
    COMPUTING = "computing"
    UPSERTED = "upserted"
    FAILED = "failed"


class ComparisonType(str, Enum):
    """Period-over-period comparison modes."""

    WEEK_OVER_WEEK = "week_over_week"
    MONTH_OVER_MONTH = "month_over_month"
    CUSTOM = "custom"
