"""
Category mapping configuration models.

A questionnaire carries a free-form ``categoryMapping`` blob edited by its
owner. These models are the strict, sanitized form of that blob. They are
only ever built by ``validate_category_mapping`` in
``feedback_analytics.engine.category_mapping``, which clamps or defaults every
field, so the range constraints declared here always hold.

Blobs are persisted with the camelCase keys the dashboard uses
(``targetScore``, ``aggregationMethod``...); models accept either spelling.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from .enums import AggregationMethod

MIN_WEIGHT = 0.1
MAX_WEIGHT = 5.0
MIN_SCORE = 0.0
MAX_SCORE = 10.0
DEFAULT_WEIGHT = 1.0
DEFAULT_COLOR = "#3498db"
DEFAULT_TARGET_SCORE = 3.0
DEFAULT_CATEGORY = "uncategorized"
MAX_DESCRIPTION_LENGTH = 500
MAX_CATEGORY_NAME_LENGTH = 255


class QuestionMapping(BaseModel):
    """
    Per-question override.

    Attributes:
        category: Category the question counts towards (None keeps the
            question's own category)
        weight: Relative weight of the question inside its category
        options: Score of each choice option label, used for choice questions
    """

    category: Optional[str] = Field(default=None, max_length=MAX_CATEGORY_NAME_LENGTH)
    weight: float = Field(default=DEFAULT_WEIGHT, ge=MIN_WEIGHT, le=MAX_WEIGHT)
    options: dict[str, float] = Field(default_factory=dict)


class CategorySettings(BaseModel):
    """Per-category display and target settings."""

    model_config = ConfigDict(populate_by_name=True)

    weight: float = Field(default=DEFAULT_WEIGHT, ge=MIN_WEIGHT, le=MAX_WEIGHT)
    color: str = Field(default=DEFAULT_COLOR, pattern=r"^#[0-9A-Fa-f]{6}$")
    description: str = Field(default="", max_length=MAX_DESCRIPTION_LENGTH)
    target_score: float = Field(
        default=DEFAULT_TARGET_SCORE, ge=MIN_SCORE, le=MAX_SCORE, alias="targetScore"
    )


class MappingSettings(BaseModel):
    """Questionnaire-wide scoring settings."""

    model_config = ConfigDict(populate_by_name=True)

    enable_category_weights: bool = Field(default=True, alias="enableCategoryWeights")
    default_category: str = Field(
        default=DEFAULT_CATEGORY,
        min_length=1,
        max_length=MAX_CATEGORY_NAME_LENGTH,
        alias="defaultCategory",
    )
    aggregation_method: AggregationMethod = Field(
        default=AggregationMethod.WEIGHTED_AVERAGE, alias="aggregationMethod"
    )


class CategoryMapping(BaseModel):
    """Sanitized category mapping of a questionnaire."""

    model_config = ConfigDict(populate_by_name=True)

    questions: dict[int, QuestionMapping] = Field(default_factory=dict)
    categories: dict[str, CategorySettings] = Field(default_factory=dict)
    settings: MappingSettings = Field(default_factory=MappingSettings)

    def to_blob(self) -> dict:
        """Dump to the JSON-compatible camelCase blob stored on the questionnaire."""
        return self.model_dump(mode="json", by_alias=True)

    def target_for(self, category: str) -> float:
        """Target score of a category (default when the category has no settings)."""
        settings = self.categories.get(category)
        return settings.target_score if settings else DEFAULT_TARGET_SCORE


class ResolvedQuestion(BaseModel):
    """Effective category, weight and option scores of one question."""

    category: str
    weight: float = DEFAULT_WEIGHT
    options: dict[str, float] = Field(default_factory=dict)
