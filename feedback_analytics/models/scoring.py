"""
Category scoring results.

Produced by ``CategoryScorer``: per-response category scores and the
aggregated category performance of a date range.
"""

from typing import Optional

from pydantic import BaseModel, Field

from .enums import InsightPriority, InsightType, PerformanceStatus


class CategoryScore(BaseModel):
    """Score of one category within a single response."""

    average_score: float
    total_weight: float
    answer_count: int
    weighted_score: Optional[float] = None


class ResponseScore(BaseModel):
    """Category scores of a single response; overall is None when nothing scored."""

    response_id: int
    overall_score: Optional[float] = None
    per_category: dict[str, CategoryScore] = Field(default_factory=dict)


class CategoryPerformanceEntry(BaseModel):
    """Aggregated performance of one category across responses."""

    average_score: float
    responses: int
    answer_count: int
    target_score: float
    gap: float
    performance: PerformanceStatus
    response_rate: int


class Insight(BaseModel):
    """Actionable observation about a category's performance."""

    type: InsightType
    category: str
    message: str
    priority: InsightPriority


class CategoryPerformance(BaseModel):
    """Category performance of a questionnaire over a date range."""

    questionnaire_id: int
    date_from: Optional[str] = None
    date_to: Optional[str] = None
    total_responses: int = 0
    processed_responses: int = 0
    categories: dict[str, CategoryPerformanceEntry] = Field(default_factory=dict)
    insights: list[Insight] = Field(default_factory=list)
