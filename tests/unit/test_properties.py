"""
Property-based tests using Hypothesis for the feedback analytics engine.

These tests verify invariants of the pure helpers (period bucketing, mapping
sanitization, rating summaries and score aggregation) over generated input.
"""

import math
from datetime import date, datetime, timedelta

import hypothesis.strategies as st
from hypothesis import given, settings

from feedback_analytics.engine.category_mapping import validate_category_mapping
from feedback_analytics.engine.category_scorer import aggregate_scores, breakdown_status
from feedback_analytics.engine.kpi_aggregator import summarize_ratings
from feedback_analytics.engine.periods import (
    iter_periods,
    period_range,
    period_start,
    period_start_date,
)
from feedback_analytics.models.enums import AggregationMethod, BreakdownStatus, Granularity
from feedback_analytics.models.mapping import MAX_SCORE, MAX_WEIGHT, MIN_SCORE, MIN_WEIGHT
from feedback_analytics.utils.numbers import round_half_up

dates = st.dates(min_value=date(1990, 1, 1), max_value=date(2100, 12, 31))
granularities = st.sampled_from(list(Granularity))

json_values = st.recursive(
    st.none()
    | st.booleans()
    | st.integers()
    | st.floats()
    | st.text(max_size=20),
    lambda children: st.lists(children, max_size=5)
    | st.dictionaries(st.text(max_size=10), children, max_size=5),
    max_leaves=20,
)

mapping_blobs = st.fixed_dictionaries(
    {},
    optional={
        "questions": st.dictionaries(
            st.one_of(st.integers(), st.text(max_size=6)),
            st.fixed_dictionaries(
                {},
                optional={
                    "category": json_values,
                    "weight": json_values,
                    "options": st.dictionaries(st.text(max_size=10), json_values, max_size=4),
                },
            )
            | json_values,
            max_size=5,
        ),
        "categories": st.dictionaries(
            st.text(max_size=12),
            st.fixed_dictionaries(
                {},
                optional={
                    "weight": json_values,
                    "color": st.one_of(st.from_regex(r"#[0-9a-f]{6}\n?", fullmatch=True), json_values),
                    "description": json_values,
                    "targetScore": json_values,
                },
            )
            | json_values,
            max_size=5,
        ),
        "settings": st.fixed_dictionaries(
            {},
            optional={
                "enableCategoryWeights": json_values,
                "defaultCategory": json_values,
                "aggregationMethod": st.one_of(
                    st.sampled_from([m.value for m in AggregationMethod]), json_values
                ),
            },
        )
        | json_values,
    },
)


# =============================================================================
# Period Calculator Property Tests
# =============================================================================


@given(day=dates, granularity=granularities)
@settings(max_examples=100)
def test_prop_period_start_idempotent(day: date, granularity: Granularity):
    """
    Invariant: the start of a period lies in its own period.

    Property: period_start(period_start(d)) == period_start(d)
    """
    first = period_start(day, granularity)
    assert period_start(first, granularity) == first


@given(day=dates, granularity=granularities)
@settings(max_examples=100)
def test_prop_date_falls_inside_its_period_range(day: date, granularity: Granularity):
    """
    Invariant: every date belongs to the half-open range of its bucket.

    Property: start <= d < end for [start, end) = period_range(period_start(d))
    """
    start, end = period_range(period_start(day, granularity), granularity)
    assert start <= day < end


@given(day=dates, granularity=granularities)
@settings(max_examples=100)
def test_prop_period_range_length(day: date, granularity: Granularity):
    """
    Invariant: a bucket spans one day, seven days, one month or one year.
    """
    start, end = period_range(period_start(day, granularity), granularity)
    length = (end - start).days

    expected = {
        Granularity.DAY: {1},
        Granularity.WEEK: {7},
        Granularity.MONTH: {28, 29, 30, 31},
        Granularity.YEAR: {365, 366},
    }[granularity]
    assert length in expected


@given(day=dates)
@settings(max_examples=100)
def test_prop_week_starts_on_monday(day: date):
    """
    Invariant: week buckets start on Monday, so a Sunday maps six days back.
    """
    start = period_start_date(day, Granularity.WEEK)
    assert start.weekday() == 0
    assert 0 <= (day - start).days <= 6
    if day.weekday() == 6:
        assert start == day - timedelta(days=6)


@given(
    now=st.datetimes(min_value=datetime(2000, 1, 1), max_value=datetime(2090, 1, 1)),
    window_days=st.integers(min_value=0, max_value=400),
    granularity=granularities,
)
@settings(max_examples=100)
def test_prop_iter_periods_contiguous(now: datetime, window_days: int, granularity: Granularity):
    """
    Invariant: the refresh window's buckets are distinct, ascending and
    contiguous, and cover both window ends.
    """
    window_start = now - timedelta(days=window_days)
    periods = list(iter_periods(window_start, now, granularity))

    assert periods[0] == period_start(window_start, granularity)
    assert periods[-1] == period_start(now, granularity)
    assert periods == sorted(set(periods))
    for current, following in zip(periods, periods[1:]):
        assert period_range(current, granularity)[1].isoformat() == following


# =============================================================================
# Category Mapping Validation Property Tests
# =============================================================================


@given(raw=json_values)
@settings(max_examples=100)
def test_prop_validate_mapping_never_raises(raw):
    """
    Invariant: sanitization accepts any JSON value and always yields a mapping.
    """
    mapping = validate_category_mapping(raw)
    assert mapping.settings.default_category


@given(raw=mapping_blobs)
@settings(max_examples=100)
def test_prop_validated_mapping_within_bounds(raw):
    """
    Invariant: every weight, option score and target of a sanitized mapping
    lies within its documented range.
    """
    mapping = validate_category_mapping(raw)

    for question in mapping.questions.values():
        assert MIN_WEIGHT <= question.weight <= MAX_WEIGHT
        for score in question.options.values():
            assert MIN_SCORE <= score <= MAX_SCORE

    for category in mapping.categories.values():
        assert MIN_WEIGHT <= category.weight <= MAX_WEIGHT
        assert MIN_SCORE <= category.target_score <= MAX_SCORE
        assert len(category.color) == 7

    assert mapping.settings.aggregation_method in set(AggregationMethod)


@given(raw=mapping_blobs)
@settings(max_examples=100)
def test_prop_validation_is_idempotent(raw):
    """
    Invariant: re-validating a stored blob changes nothing.

    Property: validate(validate(x).to_blob()) == validate(x)
    """
    mapping = validate_category_mapping(raw)
    assert validate_category_mapping(mapping.to_blob()) == mapping


# =============================================================================
# KPI and Scoring Property Tests
# =============================================================================


@given(
    ratings=st.lists(
        st.floats(min_value=1.0, max_value=5.0, allow_nan=False, allow_infinity=False),
        min_size=1,
        max_size=50,
    )
)
@settings(max_examples=100)
def test_prop_rating_summary_bounds(ratings: list[float]):
    """
    Invariant: the average lies within the rating range and the positive
    sentiment is a whole percentage in [0, 100].
    """
    avg, positive = summarize_ratings(ratings)

    assert round_half_up(min(ratings), 2) - 0.01 <= avg <= round_half_up(max(ratings), 2) + 0.01
    assert isinstance(positive, int)
    assert 0 <= positive <= 100


@given(
    pairs=st.lists(
        st.tuples(
            st.floats(min_value=0.0, max_value=10.0, allow_nan=False),
            st.floats(min_value=MIN_WEIGHT, max_value=MAX_WEIGHT, allow_nan=False),
        ),
        min_size=1,
        max_size=20,
    ),
    method=st.sampled_from(list(AggregationMethod)),
)
@settings(max_examples=100)
def test_prop_aggregate_within_score_range(pairs, method: AggregationMethod):
    """
    Invariant: any aggregation of scores stays between the lowest and the
    highest score.
    """
    scores = [score for score, _ in pairs]
    weights = [weight for _, weight in pairs]

    result = aggregate_scores(scores, weights, method)

    assert min(scores) - 1e-9 <= result <= max(scores) + 1e-9


@given(avg=st.one_of(st.none(), st.floats(min_value=0.0, max_value=10.0, allow_nan=False)))
@settings(max_examples=100)
def test_prop_breakdown_status_thresholds(avg):
    """Invariant: status is a pure function of the average and its thresholds."""
    status = breakdown_status(avg)

    if avg is None or 3.0 <= avg < 4.0:
        assert status == BreakdownStatus.MONITOR
    elif avg >= 4.0:
        assert status == BreakdownStatus.GOOD
    else:
        assert status == BreakdownStatus.URGENT


@given(value=st.integers(min_value=-10_000, max_value=10_000))
@settings(max_examples=100)
def test_prop_round_half_up_ties_round_up(value: int):
    """
    Invariant: exact halves always round towards positive infinity.
    """
    assert round_half_up(value + 0.5) == value + 1
    assert math.isclose(round_half_up(value / 100, 2), value / 100)
