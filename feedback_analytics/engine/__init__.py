"""
Feedback analytics engine components.

This package turns raw survey responses into dashboard analytics:

- Period calculation: canonical day/week/month/year buckets
- Category mapping: sanitizing owner configuration and resolving question categories
- KPI aggregation and daily trends per bucket
- Category scoring: weighted per-category scores, performance and insights
- Refresh orchestration: windowed, per-bucket atomic rollup recomputation
- Period comparison: week-over-week, month-over-month and custom ranges
- Question analytics: per-question answer counts, skip rates and distributions

All engine components take their storage backend (and cache, where used)
through the constructor; none of them hold module-level state.
"""

__all__ = [
    "AnalyticsService",
    "CategoryScorer",
    "KPIAggregator",
    "PeriodComparisonService",
    "QuestionAnalytics",
    "RefreshOrchestrator",
    "TrendCalculator",
]

from feedback_analytics.engine.analytics_service import AnalyticsService
from feedback_analytics.engine.category_scorer import CategoryScorer
from feedback_analytics.engine.kpi_aggregator import KPIAggregator
from feedback_analytics.engine.period_comparison import PeriodComparisonService
from feedback_analytics.engine.question_analytics import QuestionAnalytics
from feedback_analytics.engine.refresh_orchestrator import RefreshOrchestrator
from feedback_analytics.engine.trend_calculator import TrendCalculator
