"""
Rollup models: KPI, trend and breakdown aggregates plus refresh summaries.

Rollups are derived, disposable state. They are keyed by composite keys,
written only by the refresh orchestrator (insert-or-replace), and can be
recomputed from source responses and answers at any time. They deliberately
carry no wall-clock timestamps so that re-running a refresh over unchanged
source data yields identical rows.
"""

from typing import Optional

from pydantic import BaseModel, Field

from .enums import BreakdownStatus, BucketState, Granularity, PerformanceStatus


class KPIMetrics(BaseModel):
    """
    Scalar metrics of one period.

    ``None`` means "no data" and is distinct from a real zero: a period with
    no responses has ``total_responses == 0`` and every other field ``None``.
    """

    total_responses: int = Field(default=0, ge=0)
    avg_rating: Optional[float] = None
    response_rate: Optional[int] = Field(default=None, ge=0, le=100)
    positive_sentiment: Optional[int] = Field(default=None, ge=0, le=100)


class KPIRollup(KPIMetrics):
    """KPI row keyed by (questionnaire_id, period_type, period_date)."""

    questionnaire_id: int
    period_type: Granularity
    period_date: str


class TrendPoint(BaseModel):
    """One day of a trend series."""

    date: str
    avg_rating: Optional[float] = None
    response_rate: Optional[int] = None
    trend_value: Optional[int] = None


class TrendRollup(TrendPoint):
    """Trend row keyed by (questionnaire_id, period_type, period_date, date)."""

    questionnaire_id: int
    period_type: Granularity
    period_date: str


class BreakdownRow(BaseModel):
    """
    Per-category performance of one period.

    Attributes:
        area: Category name
        avg_rating: Mean of response-level category averages
        responses: Responses that contributed a score to the category
        answer_count: Scored answers that fed the category
        trend: Percent change vs the previous period (None if unavailable)
        status: Dashboard coloring derived from fixed rating thresholds
        target_score: Configured target of the category
        gap: avg_rating minus target_score
        performance: Whether the category meets its target
    """

    area: str
    avg_rating: Optional[float] = None
    responses: int = 0
    answer_count: int = 0
    trend: Optional[int] = None
    status: BreakdownStatus
    target_score: float
    gap: float
    performance: PerformanceStatus


class BreakdownRollup(BreakdownRow):
    """Breakdown row keyed by (questionnaire_id, period_type, period_date, area)."""

    questionnaire_id: int
    period_type: Granularity
    period_date: str


class UpsertCounts(BaseModel):
    """Created vs updated row counts."""

    created: int = 0
    updated: int = 0

    def add(self, other: "UpsertCounts") -> None:
        self.created += other.created
        self.updated += other.updated


class BucketWriteResult(BaseModel):
    """Counts produced by one atomic bucket upsert."""

    kpis: UpsertCounts = Field(default_factory=UpsertCounts)
    trends: UpsertCounts = Field(default_factory=UpsertCounts)
    breakdown: UpsertCounts = Field(default_factory=UpsertCounts)


class BucketError(BaseModel):
    """A bucket whose computation or upsert failed during a refresh."""

    granularity: Granularity
    period_date: str
    error: str


class RefreshSummary(BaseModel):
    """
    Outcome of a refresh run.

    Partial success is reported rather than raised: failed buckets are listed
    in ``errors`` while the counts cover every bucket that was upserted.
    ``bucket_states`` holds the final lifecycle state of each bucket of this
    run, keyed by ``"<granularity>:<period_date>"``.
    """

    questionnaire_id: int
    granularities: list[Granularity] = Field(default_factory=list)
    kpis: UpsertCounts = Field(default_factory=UpsertCounts)
    trends: UpsertCounts = Field(default_factory=UpsertCounts)
    breakdown: UpsertCounts = Field(default_factory=UpsertCounts)
    buckets_processed: int = 0
    buckets_failed: int = 0
    cancelled: bool = False
    errors: list[BucketError] = Field(default_factory=list)
    bucket_states: dict[str, BucketState] = Field(default_factory=dict)

    @staticmethod
    def bucket_key(granularity: Granularity, period_date: str) -> str:
        return f"{Granularity(granularity).value}:{period_date}"

    def set_state(self, granularity: Granularity, period_date: str, state: BucketState) -> None:
        self.bucket_states[self.bucket_key(granularity, period_date)] = state

    def record(self, result: BucketWriteResult) -> None:
        self.kpis.add(result.kpis)
        self.trends.add(result.trends)
        self.breakdown.add(result.breakdown)
        self.buckets_processed += 1
