"""
Pytest configuration and shared fixtures for the feedback analytics test suite.

Provides model factories, an in-memory storage backend, environment isolation
and reusable fixtures across all test types (unit, integration, golden,
property-based).
"""

import os
import tempfile
import uuid as _uuid
from datetime import datetime, timedelta
from itertools import count
from typing import Optional

import pytest
from fastapi.testclient import TestClient

# Set testing environment BEFORE importing app
# Use temp path (must not exist - DuckDB creates the file). :memory: causes
# per-connection DB which breaks multi-threaded tests.
_test_db_path = os.path.join(
    tempfile.gettempdir(), f"feedback_analytics_test_{_uuid.uuid4().hex[:8]}.duckdb"
)
os.environ["TESTING"] = "true"
os.environ["DB_PATH"] = _test_db_path
os.environ["CACHE_ENABLED"] = "false"


# ---------------------------------------------------------------------------
# Pydantic model factories - reusable across all test suites
# ---------------------------------------------------------------------------

from feedback_analytics.cache import AnalyticsCache
from feedback_analytics.models.enums import Granularity, QuestionType
from feedback_analytics.models.rollups import (
    BreakdownRollup,
    BucketWriteResult,
    KPIRollup,
    TrendRollup,
    UpsertCounts,
)
from feedback_analytics.models.survey import Answer, Question, Questionnaire, Response
from feedback_analytics.storage.base import NotFoundError, StorageBackend

_ids = count(1000)

# A Wednesday; its ISO week starts on 2026-10-12
NOW = datetime(2026, 10, 14, 12, 0, 0)


def next_id() -> int:
    return next(_ids)


def make_questionnaire(
    questionnaire_id: int = 1,
    category_mapping: Optional[dict] = None,
    **overrides,
) -> Questionnaire:
    """Factory function for creating test Questionnaire objects."""
    defaults = dict(
        id=questionnaire_id,
        owner_id=1,
        title="Customer Satisfaction",
        category_mapping=category_mapping,
    )
    defaults.update(overrides)
    return Questionnaire(**defaults)


def make_question(
    question_id: Optional[int] = None,
    questionnaire_id: int = 1,
    category: Optional[str] = "service",
    question_type: QuestionType = QuestionType.RATING,
    **overrides,
) -> Question:
    """Factory function for creating test Question objects."""
    defaults = dict(
        id=question_id if question_id is not None else next_id(),
        questionnaire_id=questionnaire_id,
        category=category,
        question_type=question_type,
        options=[],
    )
    defaults.update(overrides)
    return Question(**defaults)


def make_response(
    response_id: Optional[int] = None,
    questionnaire_id: int = 1,
    response_date: Optional[datetime] = None,
    is_complete: bool = True,
) -> Response:
    """Factory function for creating test Response objects."""
    return Response(
        id=response_id if response_id is not None else next_id(),
        questionnaire_id=questionnaire_id,
        is_complete=is_complete,
        response_date=response_date or NOW,
    )


def make_answer(
    response_id: int,
    question_id: int,
    rating_score: Optional[float] = None,
    selected_options: Optional[list[str]] = None,
    is_skipped: bool = False,
    answer_id: Optional[int] = None,
) -> Answer:
    """Factory function for creating test Answer objects."""
    return Answer(
        id=answer_id if answer_id is not None else next_id(),
        response_id=response_id,
        question_id=question_id,
        rating_score=rating_score,
        selected_options=selected_options or [],
        is_skipped=is_skipped,
    )


def seed_rated_responses(
    storage: StorageBackend,
    question: Question,
    ratings: list[Optional[float]],
    response_date: datetime = NOW,
    complete: Optional[list[bool]] = None,
    questionnaire_id: int = 1,
) -> list[Response]:
    """Write one response per rating, each answering ``question`` once."""
    responses = []
    answers = []
    for i, rating in enumerate(ratings):
        response = make_response(
            questionnaire_id=questionnaire_id,
            response_date=response_date,
            is_complete=complete[i] if complete else True,
        )
        responses.append(response)
        answers.append(make_answer(response.id, question.id, rating_score=rating))
    storage.write_responses(responses)
    storage.write_answers(answers)
    return responses


# ---------------------------------------------------------------------------
# Mock storage - reusable in-memory backend for pure unit tests
# ---------------------------------------------------------------------------

class MockStorage(StorageBackend):
    """
    In-memory implementation of StorageBackend for unit tests.

    No I/O dependency. ``fail_upsert_for`` makes ``upsert_bucket`` raise for
    the listed period dates to exercise partial-failure handling.
    """

    def __init__(self):
        self._questionnaires: dict[int, Questionnaire] = {}
        self._questions: dict[int, Question] = {}
        self._responses: dict[int, Response] = {}
        self._answers: dict[int, Answer] = {}
        self._kpis: dict[tuple, KPIRollup] = {}
        self._trends: dict[tuple, TrendRollup] = {}
        self._breakdowns: dict[tuple, BreakdownRollup] = {}
        self.fail_upsert_for: set[str] = set()
        self.upsert_calls = 0

    # --- Source reads ---
    def read_questionnaire(self, questionnaire_id):
        return self._questionnaires.get(questionnaire_id)

    def fetch_questions(self, questionnaire_id):
        return sorted(
            (q for q in self._questions.values() if q.questionnaire_id == questionnaire_id),
            key=lambda q: q.id,
        )

    def fetch_responses(self, questionnaire_id, start=None, end=None):
        results = [
            r
            for r in self._responses.values()
            if r.questionnaire_id == questionnaire_id
            and (start is None or r.response_date >= start)
            and (end is None or r.response_date < end)
        ]
        return sorted(results, key=lambda r: (r.response_date, r.id))

    def fetch_answers(
        self, response_ids=None, question_id=None, exclude_skipped=False, require_rating=False
    ):
        wanted = set(response_ids) if response_ids is not None else None
        results = [
            a
            for a in self._answers.values()
            if (wanted is None or a.response_id in wanted)
            and (question_id is None or a.question_id == question_id)
            and not (exclude_skipped and a.is_skipped)
            and not (require_rating and a.rating_score is None)
        ]
        return sorted(results, key=lambda a: (a.response_id, a.id))

    # --- Source writes ---
    def write_questionnaire(self, questionnaire):
        self._questionnaires[questionnaire.id] = questionnaire
        return questionnaire.id

    def write_questions(self, questions):
        for q in questions:
            self._questions[q.id] = q
        return len(questions)

    def write_responses(self, responses):
        for r in responses:
            self._responses[r.id] = r
        return len(responses)

    def write_answers(self, answers):
        for a in answers:
            self._answers[a.id] = a
        return len(answers)

    def update_questionnaire_mapping(self, questionnaire_id, mapping):
        questionnaire = self._questionnaires.get(questionnaire_id)
        if questionnaire is None:
            raise NotFoundError("Questionnaire", questionnaire_id)
        self._questionnaires[questionnaire_id] = questionnaire.model_copy(
            update={"category_mapping": mapping}
        )

    # --- Rollups ---
    def upsert_bucket(self, kpi, trends, breakdowns):
        self.upsert_calls += 1
        if kpi.period_date in self.fail_upsert_for:
            raise RuntimeError(f"simulated upsert failure for {kpi.period_date}")

        result = BucketWriteResult()
        bucket = (kpi.questionnaire_id, kpi.period_type, kpi.period_date)

        self._put(self._kpis, bucket, kpi, result.kpis)
        for trend in trends:
            self._put(self._trends, bucket + (trend.date,), trend, result.trends)

        areas = {row.area for row in breakdowns}
        for key in [k for k in self._breakdowns if k[:3] == bucket and k[3] not in areas]:
            del self._breakdowns[key]
        for row in breakdowns:
            self._put(self._breakdowns, bucket + (row.area,), row, result.breakdown)
        return result

    def read_kpis(self, questionnaire_id, period_type):
        rows = [
            v for k, v in self._kpis.items()
            if k[0] == questionnaire_id and k[1] == Granularity(period_type)
        ]
        return sorted(rows, key=lambda r: r.period_date)

    def read_trends(self, questionnaire_id, period_type, limit=None):
        rows = sorted(
            (
                v for k, v in self._trends.items()
                if k[0] == questionnaire_id and k[1] == Granularity(period_type)
            ),
            key=lambda r: r.date,
        )
        return rows[-limit:] if limit else rows

    def read_breakdown(self, questionnaire_id, period_type, period_date=None, limit=None):
        rows = [
            v for k, v in self._breakdowns.items()
            if k[0] == questionnaire_id
            and k[1] == Granularity(period_type)
            and (period_date is None or k[2] == period_date)
        ]
        rows.sort(key=lambda r: (-(r.avg_rating or 0), r.area))
        return rows[:limit] if limit else rows

    @staticmethod
    def _put(table: dict, key: tuple, row, counts: UpsertCounts) -> None:
        if key in table:
            counts.updated += 1
        else:
            counts.created += 1
        table[key] = row


# ---------------------------------------------------------------------------
# Pytest fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def mock_storage():
    """Fresh MockStorage instance holding questionnaire 1."""
    storage = MockStorage()
    storage.write_questionnaire(make_questionnaire())
    return storage


@pytest.fixture
def memory_cache():
    """Memory-only cache (no Redis)."""
    cache = AnalyticsCache(redis_url=None)
    cache.connect()
    yield cache
    cache.close()


@pytest.fixture
def rating_question(mock_storage):
    """A rating question in the ``service`` category of questionnaire 1."""
    question = make_question(category="service")
    mock_storage.write_questions([question])
    return question


@pytest.fixture
def scored_storage(mock_storage):
    """
    Questionnaire 1 with a service category (two questions, weight 2.0) and a
    product category (one question, weight 1.0); one response rating them
    4, 5 and 2.
    """
    service_a = make_question(question_id=11, category="service")
    service_b = make_question(question_id=12, category="service")
    product = make_question(question_id=13, category="product")
    mock_storage.write_questions([service_a, service_b, product])
    mock_storage.update_questionnaire_mapping(1, {
        "questions": {
            "11": {"weight": 2.0},
            "12": {"weight": 2.0},
            "13": {"weight": 1.0},
        },
        "categories": {
            "service": {"weight": 1.5, "targetScore": 4.0},
            "product": {"targetScore": 3.5},
        },
    })

    response = make_response(response_date=NOW)
    mock_storage.write_responses([response])
    mock_storage.write_answers([
        make_answer(response.id, 11, rating_score=4),
        make_answer(response.id, 12, rating_score=5),
        make_answer(response.id, 13, rating_score=2),
    ])
    return mock_storage


@pytest.fixture
def now():
    """Fixed reference time (Wednesday 2026-10-14 12:00 UTC)."""
    return NOW


@pytest.fixture
def client():
    """FastAPI test client for integration tests (DuckDB at a temp path)."""
    from feedback_analytics.main import app
    with TestClient(app) as c:
        yield c


def days_ago(days: int, base: datetime = NOW) -> datetime:
    return base - timedelta(days=days)
