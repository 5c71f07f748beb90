"""
Source survey records consumed by the analytics engine.

Questionnaires, questions, responses and answers are owned by the
persistence layer. The engine only reads them (the questionnaire's category
mapping blob is the single field it ever writes back).
"""

from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from .enums import QuestionType


def to_naive_utc(value: datetime) -> datetime:
    """Normalize a datetime to naive UTC (aware values are converted first)."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class Questionnaire(BaseModel):
    """
    A survey owned by a tenant.

    Attributes:
        id: Questionnaire identifier
        owner_id: Owning user identifier
        title: Display title
        category_mapping: Raw category mapping blob as stored (may be malformed)
    """

    id: int = Field(description="Questionnaire identifier")
    owner_id: Optional[int] = Field(default=None, description="Owning user identifier")
    title: str = Field(default="", description="Display title")
    category_mapping: Optional[Any] = Field(
        default=None, description="Raw category mapping blob as stored"
    )


class Question(BaseModel):
    """A question belonging to a questionnaire."""

    id: int
    questionnaire_id: int
    category: Optional[str] = None
    question_type: QuestionType = QuestionType.RATING
    options: list[str] = Field(default_factory=list)


class Response(BaseModel):
    """
    One submission of a questionnaire.

    ``response_date`` is the bucketing timestamp; it is stored as naive UTC
    and never changes after submission.
    """

    id: int
    questionnaire_id: int
    is_complete: bool = True
    response_date: datetime

    @field_validator("response_date")
    @classmethod
    def normalize_response_date(cls, v: datetime) -> datetime:
        """Store response dates as naive UTC."""
        return to_naive_utc(v)


class Answer(BaseModel):
    """
    A single answer to a question within a response.

    Skipped answers, and answers carrying neither a rating nor selected
    options, never contribute to an aggregate.
    """

    id: int
    response_id: int
    question_id: int
    rating_score: Optional[float] = None
    selected_options: list[str] = Field(default_factory=list)
    is_skipped: bool = False
