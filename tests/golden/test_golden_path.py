"""
Golden Path (End-to-End) Tests for the feedback analytics engine.

These tests verify complete workflows on fixed datasets: source data is
seeded, rollups are computed, and the exact numbers a dashboard would show
are checked.
"""

from datetime import date, datetime, timedelta

import pytest

from feedback_analytics.cache import AnalyticsCache
from feedback_analytics.engine.analytics_service import AnalyticsService
from feedback_analytics.engine.category_mapping import build_question_map, validate_category_mapping
from feedback_analytics.engine.category_scorer import CategoryScorer, breakdown_status
from feedback_analytics.engine.kpi_aggregator import KPIAggregator
from feedback_analytics.engine.periods import period_start
from feedback_analytics.engine.refresh_orchestrator import RefreshOrchestrator
from feedback_analytics.models.enums import BreakdownStatus, Granularity
from feedback_analytics.storage import DuckDBStorage
from tests.conftest import (
    NOW,
    make_answer,
    make_question,
    make_questionnaire,
    make_response,
    seed_rated_responses,
)


@pytest.fixture
def duckdb_storage(tmp_path):
    storage = DuckDBStorage(db_path=str(tmp_path / "golden.duckdb"))
    storage.write_questionnaire(make_questionnaire(category_mapping={
        "categories": {"service": {"targetScore": 4.0}, "product": {"targetScore": 3.5}},
    }))
    yield storage
    storage.close()


def _seed_two_categories(storage):
    """Three responses this week, one the week before; service and product questions."""
    service = make_question(question_id=1, category="service")
    product = make_question(question_id=2, category="product")
    storage.write_questions([service, product])

    dataset = [
        (NOW, 5, 2),
        (NOW - timedelta(days=1), 4, 2),
        (NOW - timedelta(days=2), 4.5, 2),
        (NOW - timedelta(days=8), 3, 4),
    ]
    for response_date, service_rating, product_rating in dataset:
        response = make_response(response_date=response_date)
        storage.write_responses([response])
        storage.write_answers([
            make_answer(response.id, service.id, rating_score=service_rating),
            make_answer(response.id, product.id, rating_score=product_rating),
        ])


# ============================================================================
# Scenario 1: KPI rollup of a fixed week
# ============================================================================


def test_golden_kpi_all_fives_two_incomplete(mock_storage, rating_question):
    """
    Golden path: ten responses all rated 5, eight of them complete.

    Expected KPI: 10 responses, average 5.0, response rate 80, sentiment 100.
    """
    seed_rated_responses(
        mock_storage,
        rating_question,
        [5] * 10,
        complete=[True] * 8 + [False] * 2,
    )

    kpis = KPIAggregator(mock_storage).compute_kpis(1, Granularity.WEEK, period_start(NOW, "week"))

    assert kpis.total_responses == 10
    assert kpis.avg_rating == 5.0
    assert kpis.response_rate == 80
    assert kpis.positive_sentiment == 100


# ============================================================================
# Scenario 2: Category scoring of a single response
# ============================================================================


def test_golden_category_scores(scored_storage):
    """
    Golden path: one response rating two service questions 4 and 5 and one
    product question 2.

    Expected: service 4.5, product 2.0, overall 4.0 (question weights 2, 2, 1),
    service weighted score 6.75 (category weight 1.5).
    """
    mapping = validate_category_mapping(scored_storage.fetch_questionnaire_mapping(1))
    question_map = build_question_map(scored_storage.fetch_questions(1), mapping)
    response = scored_storage.fetch_responses(1)[0]
    answers = scored_storage.fetch_answers(response_ids=[response.id])

    score = CategoryScorer(scored_storage).score_response(response.id, answers, question_map, mapping)

    assert score.per_category["service"].average_score == 4.5
    assert score.per_category["product"].average_score == 2.0
    assert score.overall_score == 4.0
    assert score.per_category["service"].weighted_score == 6.75
    assert score.per_category["product"].weighted_score == 2.0


# ============================================================================
# Scenario 3: Period bucketing and status boundaries
# ============================================================================


def test_golden_sunday_belongs_to_previous_monday():
    """Golden path: Sunday 2026-10-18 falls into the week starting Monday 2026-10-12."""
    assert period_start(date(2026, 10, 18), "week") == "2026-10-12"
    assert period_start(date(2026, 10, 19), "week") == "2026-10-19"
    assert period_start(datetime(2026, 10, 18, 23, 59, 59), "week") == "2026-10-12"


@pytest.mark.parametrize(
    "avg_rating,expected",
    [
        (4.0, BreakdownStatus.GOOD),
        (3.99, BreakdownStatus.MONITOR),
        (3.0, BreakdownStatus.MONITOR),
        (2.99, BreakdownStatus.URGENT),
    ],
)
def test_golden_status_boundaries(avg_rating, expected):
    """Golden path: >= 4.0 is Good, < 3.0 is Urgent, everything else Monitor."""
    assert breakdown_status(avg_rating) == expected


# ============================================================================
# Scenario 4: Full refresh on DuckDB, twice
# ============================================================================


def test_golden_refresh_is_idempotent(duckdb_storage):
    """
    Golden path: refreshing twice over unchanged data rewrites identical rows.

    The second run updates every row it created in the first run.
    """
    _seed_two_categories(duckdb_storage)
    orchestrator = RefreshOrchestrator(duckdb_storage)

    first = orchestrator.refresh(1, ["day", "week", "month"], now=NOW)
    snapshot = {
        g: (
            duckdb_storage.read_kpis(1, g),
            duckdb_storage.read_trends(1, g),
            duckdb_storage.read_breakdown(1, g),
        )
        for g in (Granularity.DAY, Granularity.WEEK, Granularity.MONTH)
    }

    second = orchestrator.refresh(1, ["day", "week", "month"], now=NOW)

    assert first.buckets_failed == 0
    assert second.kpis.created == 0
    assert second.kpis.updated == first.kpis.created
    assert second.trends.updated == first.trends.created
    assert second.breakdown.updated == first.breakdown.created
    for granularity, rows in snapshot.items():
        assert duckdb_storage.read_kpis(1, granularity) == rows[0]
        assert duckdb_storage.read_trends(1, granularity) == rows[1]
        assert duckdb_storage.read_breakdown(1, granularity) == rows[2]


# ============================================================================
# Scenario 5: Refresh then dashboard
# ============================================================================


def test_golden_dashboard_after_refresh(duckdb_storage):
    """
    Golden path: the weekly dashboard after a refresh.

    Current week (2026-10-12): service ratings 5, 4, 4.5 and product 2, 2, 2.
    Previous week: service 3, product 4.
    """
    _seed_two_categories(duckdb_storage)
    cache = AnalyticsCache(redis_url=None)
    service = AnalyticsService(duckdb_storage, cache)

    summary = service.refresh_analytics(1, ["week"], now=NOW)
    data = service.get_dashboard_data(1, "week")

    assert summary.buckets_processed == 5
    assert data["kpi"] == {
        "questionnaire_id": 1,
        "period_type": "week",
        "period_date": "2026-10-12",
        "total_responses": 3,
        "avg_rating": 3.25,
        "response_rate": 100,
        "positive_sentiment": 50,
    }

    service_row, product_row = data["breakdown"]
    assert service_row["area"] == "service"
    assert service_row["avg_rating"] == 4.5
    assert service_row["trend"] == 50
    assert service_row["status"] == "Good"
    assert service_row["gap"] == 0.5
    assert service_row["performance"] == "above_target"

    assert product_row["area"] == "product"
    assert product_row["avg_rating"] == 2.0
    assert product_row["trend"] == -50
    assert product_row["status"] == "Urgent"
    assert product_row["gap"] == -1.5
    assert product_row["performance"] == "below_target"

    trends = {point["date"]: point for point in data["trends"]}
    assert trends["2026-10-12"]["avg_rating"] == 3.25
    assert trends["2026-10-13"]["avg_rating"] == 3.0
    assert trends["2026-10-13"]["trend_value"] == -8
    assert trends["2026-10-14"]["avg_rating"] == 3.5
    assert trends["2026-10-14"]["trend_value"] == 17
    assert trends["2026-10-15"]["avg_rating"] is None
