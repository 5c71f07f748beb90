"""
Category Mapping Validator - sanitizes owner-supplied category configuration.

Questionnaire owners edit a free-form ``categoryMapping`` blob. This module
turns any input, however malformed, into a strict ``CategoryMapping``:

- Unknown keys and wrongly-typed values are dropped
- Numbers are clamped into range (weights [0.1, 5.0], scores [0, 10])
- Strings are trimmed and length-capped
- Enum values outside the allowed set fall back to their defaults

Validation never raises; the engine is permissive at input and strict at
output. It also resolves the effective category, weight and option scores
of each question.
"""

import math
import re
from collections.abc import Mapping
from numbers import Real
from typing import Any, Iterable, Optional

import structlog

from feedback_analytics.models.enums import AggregationMethod
from feedback_analytics.models.mapping import (
    DEFAULT_CATEGORY,
    DEFAULT_COLOR,
    DEFAULT_TARGET_SCORE,
    DEFAULT_WEIGHT,
    MAX_CATEGORY_NAME_LENGTH,
    MAX_DESCRIPTION_LENGTH,
    MAX_SCORE,
    MAX_WEIGHT,
    MIN_SCORE,
    MIN_WEIGHT,
    CategoryMapping,
    CategorySettings,
    MappingSettings,
    QuestionMapping,
    ResolvedQuestion,
)
from feedback_analytics.models.survey import Question

logger = structlog.get_logger()

HEX_COLOR = re.compile(r"#[0-9A-Fa-f]{6}")
AGGREGATION_METHODS = {method.value for method in AggregationMethod}


def _pick(source: Mapping, *keys: str) -> Any:
    """First present value among alternative key spellings (camelCase, snake_case)."""
    for key in keys:
        if key in source:
            return source[key]
    return None


def _parse_number(value: Any) -> Optional[float]:
    """Numeric value of ints, floats and numeric strings; None otherwise."""
    if isinstance(value, bool):
        return None
    if isinstance(value, Real):
        try:
            number = float(value)
        except OverflowError:
            number = math.inf if value > 0 else -math.inf
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return None if math.isnan(number) else number


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _clamped_number(value: Any, low: float, high: float, default: float) -> float:
    number = _parse_number(value)
    if number is None:
        return default
    return _clamp(number, low, high)


def _clean_text(value: Any, max_length: int) -> Optional[str]:
    """Trimmed, length-capped string; None for non-strings and blank strings."""
    if not isinstance(value, str):
        return None
    text = value.strip()[:max_length].strip()
    return text or None


def _parse_question_id(key: Any) -> Optional[int]:
    if isinstance(key, bool):
        return None
    if isinstance(key, int):
        return key if key >= 0 else None
    if isinstance(key, str) and key.strip().isdecimal():
        try:
            return int(key.strip())
        except ValueError:
            return None
    return None


def validate_option_scores(raw: Any) -> dict[str, float]:
    """Option label -> score map with scores clamped to [0, 10]."""
    if not isinstance(raw, Mapping):
        return {}

    options: dict[str, float] = {}
    for label, score in raw.items():
        if not isinstance(label, str) or not label.strip():
            continue
        number = _parse_number(score)
        if number is None:
            continue
        options[label] = _clamp(number, MIN_SCORE, MAX_SCORE)
    return options


def validate_question_mapping(raw: Any) -> QuestionMapping:
    """Sanitize one per-question override."""
    if not isinstance(raw, Mapping):
        return QuestionMapping()

    return QuestionMapping(
        category=_clean_text(raw.get("category"), MAX_CATEGORY_NAME_LENGTH),
        weight=_clamped_number(raw.get("weight"), MIN_WEIGHT, MAX_WEIGHT, DEFAULT_WEIGHT),
        options=validate_option_scores(raw.get("options")),
    )


def validate_category_settings(raw: Any) -> CategorySettings:
    """Sanitize one category's settings."""
    if not isinstance(raw, Mapping):
        return CategorySettings()

    color = raw.get("color")
    if not (isinstance(color, str) and HEX_COLOR.fullmatch(color)):
        color = DEFAULT_COLOR

    return CategorySettings(
        weight=_clamped_number(raw.get("weight"), MIN_WEIGHT, MAX_WEIGHT, DEFAULT_WEIGHT),
        color=color,
        description=_clean_text(raw.get("description"), MAX_DESCRIPTION_LENGTH) or "",
        target_score=_clamped_number(
            _pick(raw, "targetScore", "target_score"),
            MIN_SCORE,
            MAX_SCORE,
            DEFAULT_TARGET_SCORE,
        ),
    )


def validate_global_settings(raw: Any) -> MappingSettings:
    """Sanitize the questionnaire-wide settings section."""
    if not isinstance(raw, Mapping):
        return MappingSettings()

    enable_weights = _pick(raw, "enableCategoryWeights", "enable_category_weights")
    method = _pick(raw, "aggregationMethod", "aggregation_method")
    method = method.strip() if isinstance(method, str) else None

    return MappingSettings(
        enable_category_weights=enable_weights if isinstance(enable_weights, bool) else True,
        default_category=_clean_text(
            _pick(raw, "defaultCategory", "default_category"), MAX_CATEGORY_NAME_LENGTH
        )
        or DEFAULT_CATEGORY,
        aggregation_method=method
        if method in AGGREGATION_METHODS
        else AggregationMethod.WEIGHTED_AVERAGE,
    )


def validate_category_mapping(raw: Any) -> CategoryMapping:
    """
    Sanitize a raw category mapping blob into a strict ``CategoryMapping``.

    Never raises. Non-mapping input yields the all-defaults mapping; within
    each section, entries with unusable keys are dropped and values are
    clamped or defaulted field by field.

    Args:
        raw: Anything (typically the decoded JSON blob of a questionnaire)

    Returns:
        Sanitized CategoryMapping

    Example:
        >>> mapping = validate_category_mapping({"questions": {"7": {"weight": 99}}})
        >>> mapping.questions[7].weight
        5.0
    """
    if not isinstance(raw, Mapping):
        if raw is not None:
            logger.debug("category_mapping_not_a_mapping", received=type(raw).__name__)
        return CategoryMapping()

    questions: dict[int, QuestionMapping] = {}
    raw_questions = raw.get("questions")
    if isinstance(raw_questions, Mapping):
        for key, value in raw_questions.items():
            question_id = _parse_question_id(key)
            if question_id is not None:
                questions[question_id] = validate_question_mapping(value)

    categories: dict[str, CategorySettings] = {}
    raw_categories = raw.get("categories")
    if isinstance(raw_categories, Mapping):
        for key, value in raw_categories.items():
            name = _clean_text(key, MAX_CATEGORY_NAME_LENGTH)
            if name is not None:
                categories[name] = validate_category_settings(value)

    return CategoryMapping(
        questions=questions,
        categories=categories,
        settings=validate_global_settings(raw.get("settings")),
    )


def resolve_question_category(question: Question, mapping: CategoryMapping) -> ResolvedQuestion:
    """
    Effective category, weight and option scores of a question.

    An override's category wins; otherwise the question's own category is
    used, falling back to the mapping's default category. Questions without
    an override get weight 1.0 and no option scores.
    """
    own_category = _clean_text(question.category, MAX_CATEGORY_NAME_LENGTH)
    override = mapping.questions.get(question.id)

    if override is None:
        return ResolvedQuestion(
            category=own_category or mapping.settings.default_category,
            weight=DEFAULT_WEIGHT,
            options={},
        )

    return ResolvedQuestion(
        category=override.category or own_category or mapping.settings.default_category,
        weight=override.weight,
        options=dict(override.options),
    )


def build_question_map(
    questions: Iterable[Question], mapping: CategoryMapping
) -> dict[int, ResolvedQuestion]:
    """Resolve every question of a questionnaire, keyed by question ID."""
    return {question.id: resolve_question_category(question, mapping) for question in questions}
