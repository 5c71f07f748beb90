"""
Question-level answer statistics.

Produced by ``QuestionAnalytics`` for every question of a questionnaire over
a date range of responses.
"""

from typing import Optional

from pydantic import BaseModel, Field

from .enums import QuestionType


class QuestionStatistics(BaseModel):
    """
    Answer statistics of one question.

    ``skip_rate`` is ``None`` when the question has no answers and
    ``average_rating`` is ``None`` when no answer carries a usable rating.
    Rating distribution keys are ratings rounded half-up to whole numbers.
    """

    total_answers: int = 0
    skipped_answers: int = 0
    answered: int = 0
    skip_rate: Optional[int] = Field(default=None, ge=0, le=100)
    average_rating: Optional[float] = None
    rating_distribution: dict[int, int] = Field(default_factory=dict)
    choice_distribution: dict[str, int] = Field(default_factory=dict)


class QuestionAnalyticsEntry(QuestionStatistics):
    """Statistics of a question together with its identifying attributes."""

    question_id: int
    question_type: QuestionType
    category: Optional[str] = None
    options: list[str] = Field(default_factory=list)
