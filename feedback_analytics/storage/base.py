"""
Abstract storage interface for the feedback analytics engine.

This module defines the storage abstraction that the engine consumes. It
covers two very different kinds of data:

- Source: questionnaires, questions, responses and answers. Owned by the
  persistence layer; the engine reads them and only ever writes back a
  questionnaire's category mapping.
- Rollups: KPI, trend and breakdown aggregates. Written exclusively by the
  refresh orchestrator through atomic per-bucket upserts and read by the
  dashboard.

Implementations must make ``upsert_bucket`` atomic: either every row of the
bucket is written or none is, so a refresh can be aborted between buckets
without leaving partial state.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

from feedback_analytics.models.enums import Granularity
from feedback_analytics.models.rollups import (
    BreakdownRollup,
    BucketWriteResult,
    KPIRollup,
    TrendRollup,
)
from feedback_analytics.models.survey import Answer, Question, Questionnaire, Response


class NotFoundError(Exception):
    """Raised when a requested questionnaire does not exist."""

    def __init__(self, resource: str, resource_id):
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(f"{resource} {resource_id} not found")


class StorageBackend(ABC):
    """
    Abstract base class for all storage implementations.

    Storage implementations should ensure:
    - Thread safety for concurrent access
    - Atomic bucket upserts with rollback on failure
    - Half-open ``[start, end)`` semantics for every date-range read
    - Comprehensive error handling with structured logging
    """

    # =========================================================================
    # Source Data - Reads
    # =========================================================================

    @abstractmethod
    def read_questionnaire(self, questionnaire_id: int) -> Optional[Questionnaire]:
        """
        Read a questionnaire by ID.

        Returns:
            Questionnaire, or None when it does not exist
        """
        pass

    def questionnaire_exists(self, questionnaire_id: int) -> bool:
        """Whether a questionnaire with this ID exists."""
        return self.read_questionnaire(questionnaire_id) is not None

    def fetch_questionnaire_mapping(self, questionnaire_id: int) -> Optional[dict]:
        """
        Fetch the raw category mapping blob of a questionnaire.

        Returns:
            The stored blob (possibly None or malformed; callers sanitize it)

        Raises:
            NotFoundError: If the questionnaire does not exist
        """
        questionnaire = self.read_questionnaire(questionnaire_id)
        if questionnaire is None:
            raise NotFoundError("Questionnaire", questionnaire_id)
        return questionnaire.category_mapping

    @abstractmethod
    def fetch_questions(self, questionnaire_id: int) -> list[Question]:
        """Fetch all questions of a questionnaire ordered by ID."""
        pass

    @abstractmethod
    def fetch_responses(
        self,
        questionnaire_id: int,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> list[Response]:
        """
        Fetch responses of a questionnaire within ``[start, end)``.

        Args:
            questionnaire_id: Questionnaire ID
            start: Inclusive lower bound on response_date (None = unbounded)
            end: Exclusive upper bound on response_date (None = unbounded)

        Returns:
            Responses ordered by response_date, then ID
        """
        pass

    @abstractmethod
    def fetch_answers(
        self,
        response_ids: Optional[list[int]] = None,
        question_id: Optional[int] = None,
        exclude_skipped: bool = False,
        require_rating: bool = False,
    ) -> list[Answer]:
        """
        Fetch answers by response IDs and/or question ID.

        Args:
            response_ids: Restrict to answers of these responses
            question_id: Restrict to answers of this question
            exclude_skipped: Drop answers flagged as skipped
            require_rating: Drop answers without a rating_score

        Returns:
            Answers ordered by response ID, then answer ID
        """
        pass

    # =========================================================================
    # Source Data - Writes
    # =========================================================================

    @abstractmethod
    def write_questionnaire(self, questionnaire: Questionnaire) -> int:
        """Insert or replace a questionnaire. Returns its ID."""
        pass

    @abstractmethod
    def write_questions(self, questions: list[Question]) -> int:
        """Insert or replace questions. Returns the count written."""
        pass

    @abstractmethod
    def write_responses(self, responses: list[Response]) -> int:
        """Insert responses. Returns the count written."""
        pass

    @abstractmethod
    def write_answers(self, answers: list[Answer]) -> int:
        """Insert answers. Returns the count written."""
        pass

    @abstractmethod
    def update_questionnaire_mapping(self, questionnaire_id: int, mapping: dict) -> None:
        """
        Persist a sanitized category mapping blob.

        Raises:
            NotFoundError: If the questionnaire does not exist
        """
        pass

    # =========================================================================
    # Rollups
    # =========================================================================

    @abstractmethod
    def upsert_bucket(
        self,
        kpi: KPIRollup,
        trends: list[TrendRollup],
        breakdowns: list[BreakdownRollup],
    ) -> BucketWriteResult:
        """
        Atomically insert-or-replace every rollup row of one period bucket.

        Breakdown rows of the bucket whose area no longer appears in
        ``breakdowns`` are removed in the same transaction, so the stored
        bucket always equals the latest recomputation.

        Returns:
            Created vs updated counts per rollup kind
        """
        pass

    @abstractmethod
    def read_kpis(self, questionnaire_id: int, period_type: Granularity) -> list[KPIRollup]:
        """Read KPI rows ordered by period_date ascending."""
        pass

    def read_latest_kpi(
        self, questionnaire_id: int, period_type: Granularity
    ) -> Optional[KPIRollup]:
        """Read the KPI row with the most recent period_date."""
        kpis = self.read_kpis(questionnaire_id, period_type)
        return kpis[-1] if kpis else None

    @abstractmethod
    def read_trends(
        self,
        questionnaire_id: int,
        period_type: Granularity,
        limit: Optional[int] = None,
    ) -> list[TrendRollup]:
        """
        Read trend rows in ascending date order.

        Args:
            limit: Keep only the most recent ``limit`` points
        """
        pass

    @abstractmethod
    def read_breakdown(
        self,
        questionnaire_id: int,
        period_type: Granularity,
        period_date: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[BreakdownRollup]:
        """Read breakdown rows ordered by avg_rating descending, then area."""
        pass
