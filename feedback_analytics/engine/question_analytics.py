"""
Question Analytics - per-question answer statistics over a date range.

For every question of a questionnaire, reports how many answers it received
within the responses of the range, how many were skipped, the average rating
and the distributions of ratings and selected choices.
"""

from collections import Counter
from datetime import date
from typing import Iterable, Optional

import structlog

from feedback_analytics.models.questions import QuestionAnalyticsEntry, QuestionStatistics
from feedback_analytics.models.survey import Answer
from feedback_analytics.storage.base import NotFoundError, StorageBackend
from feedback_analytics.utils.numbers import is_finite_number, mean, round_half_up, round_percent

from .periods import DateLike, start_of_day, to_utc_date

logger = structlog.get_logger()


def question_statistics(answers: Iterable[Answer]) -> QuestionStatistics:
    """Summarize the answers given to a single question."""
    answers = list(answers)
    answered = [answer for answer in answers if not answer.is_skipped]
    skipped = len(answers) - len(answered)

    ratings = [
        float(answer.rating_score) for answer in answered if is_finite_number(answer.rating_score)
    ]
    rating_counts = Counter(int(round_half_up(rating)) for rating in ratings)
    choice_counts = Counter(option for answer in answered for option in answer.selected_options)

    average = mean(ratings)
    return QuestionStatistics(
        total_answers=len(answers),
        skipped_answers=skipped,
        answered=len(answered),
        skip_rate=round_percent(skipped / len(answers) * 100) if answers else None,
        average_rating=round_half_up(average, 2) if average is not None else None,
        rating_distribution=dict(sorted(rating_counts.items())),
        choice_distribution=dict(choice_counts),
    )


class QuestionAnalytics:
    """
    Computes answer statistics for every question of a questionnaire.

    Example:
        >>> analytics = QuestionAnalytics(storage=storage)
        >>> entries = analytics.compute(1, date(2026, 10, 1), date(2026, 11, 1))
        >>> entries[0].skip_rate
        10
    """

    def __init__(self, storage: StorageBackend):
        self.storage = storage

    def compute(
        self,
        questionnaire_id: int,
        start: Optional[DateLike] = None,
        end: Optional[DateLike] = None,
    ) -> list[QuestionAnalyticsEntry]:
        """
        Statistics per question over responses in ``[start, end)``.

        Either bound may be omitted to leave that side unbounded. Questions
        are listed in storage order, including those without answers.

        Raises:
            NotFoundError: If the questionnaire does not exist
        """
        if not self.storage.questionnaire_exists(questionnaire_id):
            raise NotFoundError("Questionnaire", questionnaire_id)

        start_date: Optional[date] = to_utc_date(start) if start is not None else None
        end_date: Optional[date] = to_utc_date(end) if end is not None else None
        responses = self.storage.fetch_responses(
            questionnaire_id,
            start_of_day(start_date) if start_date else None,
            start_of_day(end_date) if end_date else None,
        )
        response_ids = [response.id for response in responses]

        entries = []
        for question in self.storage.fetch_questions(questionnaire_id):
            answers = (
                self.storage.fetch_answers(response_ids=response_ids, question_id=question.id)
                if response_ids
                else []
            )
            stats = question_statistics(answers)
            entries.append(
                QuestionAnalyticsEntry(
                    question_id=question.id,
                    question_type=question.question_type,
                    category=question.category,
                    options=question.options,
                    **stats.model_dump(),
                )
            )

        logger.info(
            "question_analytics_computed",
            questionnaire_id=questionnaire_id,
            questions=len(entries),
            responses=len(response_ids),
        )
        return entries
