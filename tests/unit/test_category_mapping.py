"""
Unit tests for category mapping validation and question resolution.

The validator must never raise: every test feeds malformed input and checks
the sanitized result.
"""

import math

import pytest

from feedback_analytics.engine.category_mapping import (
    build_question_map,
    resolve_question_category,
    validate_category_mapping,
    validate_category_settings,
    validate_option_scores,
)
from feedback_analytics.models.enums import AggregationMethod
from feedback_analytics.models.mapping import (
    DEFAULT_CATEGORY,
    DEFAULT_COLOR,
    DEFAULT_TARGET_SCORE,
    CategoryMapping,
)
from tests.conftest import make_question


class TestValidateCategoryMapping:
    """Test top-level sanitization."""

    @pytest.mark.parametrize("raw", [None, [], "mapping", 42, True])
    def test_non_mapping_yields_defaults(self, raw):
        mapping = validate_category_mapping(raw)
        assert mapping == CategoryMapping()

    def test_weight_clamped_to_max(self):
        mapping = validate_category_mapping({"questions": {"7": {"weight": 99}}})
        assert mapping.questions[7].weight == 5.0

    def test_weight_clamped_to_min(self):
        mapping = validate_category_mapping({"questions": {"7": {"weight": 0}}})
        assert mapping.questions[7].weight == 0.1

    def test_negative_infinity_clamps_to_bound(self):
        mapping = validate_category_mapping({"questions": {"7": {"weight": -math.inf}}})
        assert mapping.questions[7].weight == 0.1

    def test_numeric_string_weight_accepted(self):
        mapping = validate_category_mapping({"questions": {"7": {"weight": " 2.5 "}}})
        assert mapping.questions[7].weight == 2.5

    @pytest.mark.parametrize("weight", [True, "heavy", None, [2], math.nan])
    def test_unusable_weight_defaults(self, weight):
        mapping = validate_category_mapping({"questions": {"7": {"weight": weight}}})
        assert mapping.questions[7].weight == 1.0

    def test_non_integer_question_keys_dropped(self):
        mapping = validate_category_mapping(
            {"questions": {"abc": {}, "-3": {}, "1.5": {}, "12": {}, 4: {}}}
        )
        assert set(mapping.questions) == {12, 4}

    def test_category_name_trimmed_and_capped(self):
        mapping = validate_category_mapping(
            {"questions": {"1": {"category": "  " + "x" * 300 + "  "}}}
        )
        assert mapping.questions[1].category == "x" * 255

    def test_blank_category_override_ignored(self):
        mapping = validate_category_mapping({"questions": {"1": {"category": "   "}}})
        assert mapping.questions[1].category is None

    def test_empty_category_names_dropped(self):
        mapping = validate_category_mapping({"categories": {"": {}, "  ": {}, "ok": {}}})
        assert list(mapping.categories) == ["ok"]

    def test_unknown_aggregation_method_defaults(self):
        mapping = validate_category_mapping({"settings": {"aggregationMethod": "mode"}})
        assert mapping.settings.aggregation_method == AggregationMethod.WEIGHTED_AVERAGE

    def test_known_aggregation_method_kept(self):
        mapping = validate_category_mapping({"settings": {"aggregationMethod": "median"}})
        assert mapping.settings.aggregation_method == AggregationMethod.MEDIAN

    def test_snake_case_settings_accepted(self):
        mapping = validate_category_mapping(
            {"settings": {"enable_category_weights": False, "default_category": "general"}}
        )
        assert mapping.settings.enable_category_weights is False
        assert mapping.settings.default_category == "general"

    def test_non_boolean_enable_weights_defaults(self):
        mapping = validate_category_mapping({"settings": {"enableCategoryWeights": "no"}})
        assert mapping.settings.enable_category_weights is True

    def test_blank_default_category_falls_back(self):
        mapping = validate_category_mapping({"settings": {"defaultCategory": "  "}})
        assert mapping.settings.default_category == DEFAULT_CATEGORY

    def test_unknown_sections_ignored(self):
        mapping = validate_category_mapping({"extra": {"a": 1}, "questions": []})
        assert mapping == CategoryMapping()

    def test_blob_uses_camel_case(self):
        blob = validate_category_mapping({"categories": {"service": {"targetScore": 4}}}).to_blob()
        assert blob["categories"]["service"]["targetScore"] == 4.0
        assert "aggregationMethod" in blob["settings"]

    def test_blob_round_trips_through_validator(self):
        mapping = validate_category_mapping({
            "questions": {"3": {"category": "service", "weight": 2, "options": {"Yes": 5}}},
            "categories": {"service": {"color": "#AABBCC", "targetScore": 3.5}},
            "settings": {"aggregationMethod": "simple_average"},
        })
        assert validate_category_mapping(mapping.to_blob()) == mapping


class TestCategorySettings:
    """Test per-category settings sanitization."""

    def test_invalid_color_defaults(self):
        assert validate_category_settings({"color": "blue"}).color == DEFAULT_COLOR

    def test_valid_color_kept(self):
        assert validate_category_settings({"color": "#00ff00"}).color == "#00ff00"

    def test_target_score_clamped(self):
        assert validate_category_settings({"targetScore": 25}).target_score == 10.0

    def test_zero_target_score_is_kept(self):
        assert validate_category_settings({"targetScore": 0}).target_score == 0.0

    def test_missing_target_defaults(self):
        assert validate_category_settings({}).target_score == DEFAULT_TARGET_SCORE

    def test_description_capped(self):
        assert len(validate_category_settings({"description": "d" * 900}).description) == 500


class TestOptionScores:
    """Test option label -> score maps."""

    def test_scores_clamped(self):
        assert validate_option_scores({"Great": 50, "Bad": -4}) == {"Great": 10.0, "Bad": 0.0}

    def test_non_numeric_scores_dropped(self):
        assert validate_option_scores({"Great": "lots", "Ok": 3}) == {"Ok": 3.0}

    def test_non_mapping_yields_empty(self):
        assert validate_option_scores(["Great"]) == {}


class TestResolveQuestionCategory:
    """Test effective category resolution."""

    def test_override_category_wins(self):
        question = make_question(question_id=1, category="service")
        mapping = validate_category_mapping({"questions": {"1": {"category": "product", "weight": 3}}})
        resolved = resolve_question_category(question, mapping)
        assert resolved.category == "product"
        assert resolved.weight == 3.0

    def test_own_category_used_without_override(self):
        question = make_question(question_id=1, category="service")
        resolved = resolve_question_category(question, CategoryMapping())
        assert resolved.category == "service"
        assert resolved.weight == 1.0
        assert resolved.options == {}

    def test_override_without_category_keeps_own(self):
        question = make_question(question_id=1, category="service")
        mapping = validate_category_mapping({"questions": {"1": {"weight": 2}}})
        assert resolve_question_category(question, mapping).category == "service"

    def test_uncategorized_question_uses_default(self):
        question = make_question(question_id=1, category=None)
        assert resolve_question_category(question, CategoryMapping()).category == "uncategorized"

    def test_configured_default_category(self):
        question = make_question(question_id=1, category=None)
        mapping = validate_category_mapping({"settings": {"defaultCategory": "general"}})
        assert resolve_question_category(question, mapping).category == "general"

    def test_build_question_map_keys_by_id(self):
        questions = [make_question(question_id=1), make_question(question_id=2, category="product")]
        question_map = build_question_map(questions, CategoryMapping())
        assert set(question_map) == {1, 2}
        assert question_map[2].category == "product"
