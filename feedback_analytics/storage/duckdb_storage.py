"""
DuckDB storage implementation for the feedback analytics engine.

Holds both the source survey tables and the rollup tables in a single local
DuckDB database. Rollup tables carry composite primary keys matching their
uniqueness constraints, which is what makes ``INSERT OR REPLACE`` an
idempotent upsert.

Key features:
- Thread-local connections with a schema initialization lock
- Automatic, idempotent schema creation
- JSON columns for mapping blobs and option lists
- One transaction per rollup bucket
- Structured logging on every failure, re-raised as StorageError
"""

import json
import os
import threading
from contextlib import contextmanager
from datetime import date, datetime
from pathlib import Path
from typing import Any, Optional

import duckdb
import structlog

from feedback_analytics.models.enums import Granularity
from feedback_analytics.models.rollups import (
    BreakdownRollup,
    BucketWriteResult,
    KPIRollup,
    TrendRollup,
    UpsertCounts,
)
from feedback_analytics.models.survey import Answer, Question, Questionnaire, Response

from .base import NotFoundError, StorageBackend

logger = structlog.get_logger(__name__)


class StorageError(Exception):
    """Base exception for all storage operation failures."""

    pass


def _iso(value: Any) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat() if hasattr(value, "isoformat") else str(value)


class DuckDBStorage(StorageBackend):
    """
    DuckDB implementation of the storage backend.

    Attributes:
        db_path: Path to the DuckDB database file
        _local: Thread-local storage for per-thread connections
        _lock: Thread lock for schema operations
        _initialized: Flag tracking whether schema is initialized
    """

    ROLLUP_TABLES = ("analytics_kpis", "analytics_trends", "analytics_breakdowns")
    SOURCE_TABLES = ("answers", "responses", "questions", "questionnaires")

    def __init__(self, db_path: str = "./data/feedback_analytics.duckdb"):
        """
        Initialize DuckDB storage backend.

        Args:
            db_path: Path to DuckDB database file
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._local = threading.local()
        self._lock = threading.Lock()
        self._initialized = False

        logger.info("duckdb_storage_initialized", db_path=str(self.db_path))

        self._initialize_schema()

    @contextmanager
    def _get_connection(self):
        """
        Get a thread-local DuckDB connection.

        Yields:
            DuckDB connection instance

        Raises:
            StorageError: If connection cannot be established
        """
        if not hasattr(self._local, "connection"):
            try:
                self._local.connection = duckdb.connect(str(self.db_path))
                logger.debug("duckdb_connection_created", thread_id=threading.get_ident())
            except Exception as e:
                logger.error("duckdb_connection_failed", error=str(e))
                raise StorageError(f"Failed to connect to DuckDB: {e}") from e

        yield self._local.connection

    @contextmanager
    def _transaction(self):
        """Run a block inside an explicit transaction, rolling back on error."""
        with self._get_connection() as conn:
            conn.begin()
            try:
                yield conn
            except Exception:
                conn.rollback()
                raise
            conn.commit()

    def close(self) -> None:
        """Close the calling thread's connection, if any."""
        connection = getattr(self._local, "connection", None)
        if connection is not None:
            connection.close()
            del self._local.connection

    def _initialize_schema(self):
        """
        Initialize all database tables and indexes.

        Idempotent and safe to call multiple times.

        Raises:
            StorageError: If schema creation fails
        """
        if self._initialized:
            return

        with self._lock:
            if self._initialized:
                return

            try:
                with self._transaction() as conn:
                    # =========================================================
                    # Source Tables
                    # =========================================================

                    conn.execute("""
                        CREATE TABLE IF NOT EXISTS questionnaires (
                            id BIGINT PRIMARY KEY,
                            owner_id BIGINT,
                            title VARCHAR NOT NULL DEFAULT '',
                            category_mapping JSON
                        )
                    """)

                    conn.execute("""
                        CREATE TABLE IF NOT EXISTS questions (
                            id BIGINT PRIMARY KEY,
                            questionnaire_id BIGINT NOT NULL,
                            category VARCHAR,
                            question_type VARCHAR NOT NULL,
                            options JSON
                        )
                    """)

                    conn.execute("""
                        CREATE INDEX IF NOT EXISTS idx_questions_questionnaire_id
                        ON questions(questionnaire_id)
                    """)

                    conn.execute("""
                        CREATE TABLE IF NOT EXISTS responses (
                            id BIGINT PRIMARY KEY,
                            questionnaire_id BIGINT NOT NULL,
                            is_complete BOOLEAN NOT NULL DEFAULT TRUE,
                            response_date TIMESTAMP NOT NULL
                        )
                    """)

                    conn.execute("""
                        CREATE INDEX IF NOT EXISTS idx_responses_questionnaire_date
                        ON responses(questionnaire_id, response_date)
                    """)

                    conn.execute("""
                        CREATE TABLE IF NOT EXISTS answers (
                            id BIGINT PRIMARY KEY,
                            response_id BIGINT NOT NULL,
                            question_id BIGINT NOT NULL,
                            rating_score DOUBLE,
                            selected_options JSON,
                            is_skipped BOOLEAN NOT NULL DEFAULT FALSE
                        )
                    """)

                    conn.execute("""
                        CREATE INDEX IF NOT EXISTS idx_answers_response_id
                        ON answers(response_id)
                    """)

                    conn.execute("""
                        CREATE INDEX IF NOT EXISTS idx_answers_question_id
                        ON answers(question_id)
                    """)

                    # =========================================================
                    # Rollup Tables
                    # =========================================================

                    conn.execute("""
                        CREATE TABLE IF NOT EXISTS analytics_kpis (
                            questionnaire_id BIGINT NOT NULL,
                            period_type VARCHAR NOT NULL,
                            period_date DATE NOT NULL,
                            total_responses INTEGER NOT NULL DEFAULT 0,
                            avg_rating DOUBLE,
                            response_rate INTEGER,
                            positive_sentiment INTEGER,
                            PRIMARY KEY (questionnaire_id, period_type, period_date)
                        )
                    """)

                    conn.execute("""
                        CREATE TABLE IF NOT EXISTS analytics_trends (
                            questionnaire_id BIGINT NOT NULL,
                            period_type VARCHAR NOT NULL,
                            period_date DATE NOT NULL,
                            date DATE NOT NULL,
                            avg_rating DOUBLE,
                            response_rate INTEGER,
                            trend_value INTEGER,
                            PRIMARY KEY (questionnaire_id, period_type, period_date, date)
                        )
                    """)

                    conn.execute("""
                        CREATE TABLE IF NOT EXISTS analytics_breakdowns (
                            questionnaire_id BIGINT NOT NULL,
                            period_type VARCHAR NOT NULL,
                            period_date DATE NOT NULL,
                            area VARCHAR NOT NULL,
                            avg_rating DOUBLE,
                            responses INTEGER NOT NULL DEFAULT 0,
                            answer_count INTEGER NOT NULL DEFAULT 0,
                            trend INTEGER,
                            status VARCHAR NOT NULL,
                            target_score DOUBLE NOT NULL,
                            gap DOUBLE NOT NULL,
                            performance VARCHAR NOT NULL,
                            PRIMARY KEY (questionnaire_id, period_type, period_date, area)
                        )
                    """)

                    self._initialized = True

            except Exception as e:
                logger.error("duckdb_schema_initialization_failed", error=str(e))
                raise StorageError(f"Failed to initialize schema: {e}") from e

    def clear_for_testing(self) -> None:
        """
        Truncate all tables. For testing only; requires TESTING=true.
        Allows each test to start with a clean slate.
        """
        if not os.environ.get("TESTING"):
            return
        with self._transaction() as conn:
            for table in self.ROLLUP_TABLES + self.SOURCE_TABLES:
                conn.execute(f"DELETE FROM {table}")

    # =========================================================================
    # Source Data - Reads
    # =========================================================================

    def read_questionnaire(self, questionnaire_id: int) -> Optional[Questionnaire]:
        """Read a questionnaire by ID."""
        try:
            with self._get_connection() as conn:
                row = conn.execute(
                    """
                    SELECT id, owner_id, title, category_mapping
                    FROM questionnaires
                    WHERE id = ?
                    """,
                    [questionnaire_id],
                ).fetchone()

                if not row:
                    return None

                return Questionnaire(
                    id=row[0],
                    owner_id=row[1],
                    title=row[2],
                    category_mapping=json.loads(row[3]) if row[3] else None,
                )

        except Exception as e:
            logger.error(
                "read_questionnaire_failed", questionnaire_id=questionnaire_id, error=str(e)
            )
            raise StorageError(f"Failed to read questionnaire: {e}") from e

    def fetch_questions(self, questionnaire_id: int) -> list[Question]:
        """Fetch all questions of a questionnaire."""
        try:
            with self._get_connection() as conn:
                rows = conn.execute(
                    """
                    SELECT id, questionnaire_id, category, question_type, options
                    FROM questions
                    WHERE questionnaire_id = ?
                    ORDER BY id
                    """,
                    [questionnaire_id],
                ).fetchall()

                questions = [
                    Question(
                        id=row[0],
                        questionnaire_id=row[1],
                        category=row[2],
                        question_type=row[3],
                        options=json.loads(row[4]) if row[4] else [],
                    )
                    for row in rows
                ]

                logger.debug("questions_read", questionnaire_id=questionnaire_id, count=len(questions))
                return questions

        except Exception as e:
            logger.error("fetch_questions_failed", questionnaire_id=questionnaire_id, error=str(e))
            raise StorageError(f"Failed to fetch questions: {e}") from e

    def fetch_responses(
        self,
        questionnaire_id: int,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> list[Response]:
        """Fetch responses within the half-open range [start, end)."""
        try:
            with self._get_connection() as conn:
                query = """
                    SELECT id, questionnaire_id, is_complete, response_date
                    FROM responses
                    WHERE questionnaire_id = ?
                """
                params: list[Any] = [questionnaire_id]

                if start is not None:
                    query += " AND response_date >= ?"
                    params.append(start)

                if end is not None:
                    query += " AND response_date < ?"
                    params.append(end)

                query += " ORDER BY response_date ASC, id ASC"

                rows = conn.execute(query, params).fetchall()

                return [
                    Response(
                        id=row[0],
                        questionnaire_id=row[1],
                        is_complete=row[2],
                        response_date=row[3],
                    )
                    for row in rows
                ]

        except Exception as e:
            logger.error("fetch_responses_failed", questionnaire_id=questionnaire_id, error=str(e))
            raise StorageError(f"Failed to fetch responses: {e}") from e

    def fetch_answers(
        self,
        response_ids: Optional[list[int]] = None,
        question_id: Optional[int] = None,
        exclude_skipped: bool = False,
        require_rating: bool = False,
    ) -> list[Answer]:
        """Fetch answers by response IDs and/or question ID."""
        if response_ids is not None and not response_ids:
            return []

        try:
            with self._get_connection() as conn:
                query = """
                    SELECT id, response_id, question_id, rating_score,
                           selected_options, is_skipped
                    FROM answers
                    WHERE 1=1
                """
                params: list[Any] = []

                if response_ids is not None:
                    placeholders = ",".join(["?"] * len(response_ids))
                    query += f" AND response_id IN ({placeholders})"
                    params.extend(response_ids)

                if question_id is not None:
                    query += " AND question_id = ?"
                    params.append(question_id)

                if exclude_skipped:
                    query += " AND is_skipped = FALSE"

                if require_rating:
                    query += " AND rating_score IS NOT NULL"

                query += " ORDER BY response_id ASC, id ASC"

                rows = conn.execute(query, params).fetchall()

                return [
                    Answer(
                        id=row[0],
                        response_id=row[1],
                        question_id=row[2],
                        rating_score=row[3],
                        selected_options=json.loads(row[4]) if row[4] else [],
                        is_skipped=row[5],
                    )
                    for row in rows
                ]

        except Exception as e:
            logger.error("fetch_answers_failed", error=str(e))
            raise StorageError(f"Failed to fetch answers: {e}") from e

    # =========================================================================
    # Source Data - Writes
    # =========================================================================

    def write_questionnaire(self, questionnaire: Questionnaire) -> int:
        """Insert or replace a questionnaire."""
        try:
            with self._transaction() as conn:
                conn.execute(
                    """
                    INSERT OR REPLACE INTO questionnaires (id, owner_id, title, category_mapping)
                    VALUES (?, ?, ?, ?)
                    """,
                    [
                        questionnaire.id,
                        questionnaire.owner_id,
                        questionnaire.title,
                        json.dumps(questionnaire.category_mapping)
                        if questionnaire.category_mapping is not None
                        else None,
                    ],
                )
            logger.debug("questionnaire_written", questionnaire_id=questionnaire.id)
            return questionnaire.id

        except Exception as e:
            logger.error(
                "write_questionnaire_failed", questionnaire_id=questionnaire.id, error=str(e)
            )
            raise StorageError(f"Failed to write questionnaire: {e}") from e

    def write_questions(self, questions: list[Question]) -> int:
        """Insert or replace questions."""
        if not questions:
            return 0

        try:
            with self._transaction() as conn:
                for question in questions:
                    conn.execute(
                        """
                        INSERT OR REPLACE INTO questions (
                            id, questionnaire_id, category, question_type, options
                        ) VALUES (?, ?, ?, ?, ?)
                        """,
                        [
                            question.id,
                            question.questionnaire_id,
                            question.category,
                            question.question_type.value,
                            json.dumps(question.options),
                        ],
                    )
            logger.debug("questions_written", count=len(questions))
            return len(questions)

        except Exception as e:
            logger.error("write_questions_failed", error=str(e))
            raise StorageError(f"Failed to write questions: {e}") from e

    def write_responses(self, responses: list[Response]) -> int:
        """Insert responses."""
        if not responses:
            return 0

        try:
            with self._transaction() as conn:
                conn.executemany(
                    """
                    INSERT INTO responses (id, questionnaire_id, is_complete, response_date)
                    VALUES (?, ?, ?, ?)
                    """,
                    [
                        [r.id, r.questionnaire_id, r.is_complete, r.response_date]
                        for r in responses
                    ],
                )
            logger.debug("responses_written", count=len(responses))
            return len(responses)

        except Exception as e:
            logger.error("write_responses_failed", error=str(e))
            raise StorageError(f"Failed to write responses: {e}") from e

    def write_answers(self, answers: list[Answer]) -> int:
        """Insert answers."""
        if not answers:
            return 0

        try:
            with self._transaction() as conn:
                conn.executemany(
                    """
                    INSERT INTO answers (
                        id, response_id, question_id, rating_score,
                        selected_options, is_skipped
                    ) VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    [
                        [
                            a.id,
                            a.response_id,
                            a.question_id,
                            a.rating_score,
                            json.dumps(a.selected_options),
                            a.is_skipped,
                        ]
                        for a in answers
                    ],
                )
            logger.debug("answers_written", count=len(answers))
            return len(answers)

        except Exception as e:
            logger.error("write_answers_failed", error=str(e))
            raise StorageError(f"Failed to write answers: {e}") from e

    def update_questionnaire_mapping(self, questionnaire_id: int, mapping: dict) -> None:
        """Persist a sanitized category mapping blob."""
        if not self.questionnaire_exists(questionnaire_id):
            raise NotFoundError("Questionnaire", questionnaire_id)

        try:
            with self._transaction() as conn:
                conn.execute(
                    "UPDATE questionnaires SET category_mapping = ? WHERE id = ?",
                    [json.dumps(mapping), questionnaire_id],
                )
            logger.info("category_mapping_written", questionnaire_id=questionnaire_id)

        except Exception as e:
            logger.error(
                "update_questionnaire_mapping_failed",
                questionnaire_id=questionnaire_id,
                error=str(e),
            )
            raise StorageError(f"Failed to update category mapping: {e}") from e

    # =========================================================================
    # Rollups - Writes
    # =========================================================================

    @staticmethod
    def _row_exists(conn, table: str, where: str, params: list) -> bool:
        return conn.execute(f"SELECT 1 FROM {table} WHERE {where} LIMIT 1", params).fetchone() is not None

    def upsert_bucket(
        self,
        kpi: KPIRollup,
        trends: list[TrendRollup],
        breakdowns: list[BreakdownRollup],
    ) -> BucketWriteResult:
        """Atomically upsert every rollup row of one period bucket."""
        result = BucketWriteResult()
        bucket_key = [
            kpi.questionnaire_id,
            kpi.period_type.value,
            date.fromisoformat(kpi.period_date),
        ]
        bucket_where = "questionnaire_id = ? AND period_type = ? AND period_date = ?"

        try:
            with self._transaction() as conn:
                existed = self._row_exists(conn, "analytics_kpis", bucket_where, bucket_key)
                conn.execute(
                    """
                    INSERT OR REPLACE INTO analytics_kpis (
                        questionnaire_id, period_type, period_date, total_responses,
                        avg_rating, response_rate, positive_sentiment
                    ) VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    bucket_key
                    + [
                        kpi.total_responses,
                        kpi.avg_rating,
                        kpi.response_rate,
                        kpi.positive_sentiment,
                    ],
                )
                self._count(result.kpis, existed)

                for trend in trends:
                    key = bucket_key + [date.fromisoformat(trend.date)]
                    existed = self._row_exists(
                        conn, "analytics_trends", bucket_where + " AND date = ?", key
                    )
                    conn.execute(
                        """
                        INSERT OR REPLACE INTO analytics_trends (
                            questionnaire_id, period_type, period_date, date,
                            avg_rating, response_rate, trend_value
                        ) VALUES (?, ?, ?, ?, ?, ?, ?)
                        """,
                        key + [trend.avg_rating, trend.response_rate, trend.trend_value],
                    )
                    self._count(result.trends, existed)

                areas = [b.area for b in breakdowns]
                stale_query = f"DELETE FROM analytics_breakdowns WHERE {bucket_where}"
                stale_params = list(bucket_key)
                if areas:
                    stale_query += f" AND area NOT IN ({','.join(['?'] * len(areas))})"
                    stale_params.extend(areas)
                conn.execute(stale_query, stale_params)

                for row in breakdowns:
                    key = bucket_key + [row.area]
                    existed = self._row_exists(
                        conn, "analytics_breakdowns", bucket_where + " AND area = ?", key
                    )
                    conn.execute(
                        """
                        INSERT OR REPLACE INTO analytics_breakdowns (
                            questionnaire_id, period_type, period_date, area,
                            avg_rating, responses, answer_count, trend, status,
                            target_score, gap, performance
                        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                        """,
                        key
                        + [
                            row.avg_rating,
                            row.responses,
                            row.answer_count,
                            row.trend,
                            row.status.value,
                            row.target_score,
                            row.gap,
                            row.performance.value,
                        ],
                    )
                    self._count(result.breakdown, existed)

            logger.debug(
                "bucket_upserted",
                questionnaire_id=kpi.questionnaire_id,
                period_type=kpi.period_type.value,
                period_date=kpi.period_date,
                trends=len(trends),
                breakdowns=len(breakdowns),
            )
            return result

        except Exception as e:
            logger.error(
                "upsert_bucket_failed",
                questionnaire_id=kpi.questionnaire_id,
                period_type=kpi.period_type.value,
                period_date=kpi.period_date,
                error=str(e),
            )
            raise StorageError(f"Failed to upsert rollup bucket: {e}") from e

    @staticmethod
    def _count(counts: UpsertCounts, existed: bool) -> None:
        if existed:
            counts.updated += 1
        else:
            counts.created += 1

    # =========================================================================
    # Rollups - Reads
    # =========================================================================

    def read_kpis(self, questionnaire_id: int, period_type: Granularity) -> list[KPIRollup]:
        """Read KPI rows ordered by period_date."""
        try:
            with self._get_connection() as conn:
                rows = conn.execute(
                    """
                    SELECT questionnaire_id, period_type, period_date, total_responses,
                           avg_rating, response_rate, positive_sentiment
                    FROM analytics_kpis
                    WHERE questionnaire_id = ? AND period_type = ?
                    ORDER BY period_date ASC
                    """,
                    [questionnaire_id, period_type.value],
                ).fetchall()

                return [
                    KPIRollup(
                        questionnaire_id=row[0],
                        period_type=row[1],
                        period_date=_iso(row[2]),
                        total_responses=row[3],
                        avg_rating=row[4],
                        response_rate=row[5],
                        positive_sentiment=row[6],
                    )
                    for row in rows
                ]

        except Exception as e:
            logger.error("read_kpis_failed", questionnaire_id=questionnaire_id, error=str(e))
            raise StorageError(f"Failed to read KPIs: {e}") from e

    def read_trends(
        self,
        questionnaire_id: int,
        period_type: Granularity,
        limit: Optional[int] = None,
    ) -> list[TrendRollup]:
        """Read trend rows in ascending date order (most recent ``limit``)."""
        try:
            with self._get_connection() as conn:
                query = """
                    SELECT questionnaire_id, period_type, period_date, date,
                           avg_rating, response_rate, trend_value
                    FROM analytics_trends
                    WHERE questionnaire_id = ? AND period_type = ?
                    ORDER BY date DESC
                """
                params: list[Any] = [questionnaire_id, period_type.value]
                if limit is not None:
                    query += " LIMIT ?"
                    params.append(limit)

                rows = conn.execute(query, params).fetchall()

                trends = [
                    TrendRollup(
                        questionnaire_id=row[0],
                        period_type=row[1],
                        period_date=_iso(row[2]),
                        date=_iso(row[3]),
                        avg_rating=row[4],
                        response_rate=row[5],
                        trend_value=row[6],
                    )
                    for row in rows
                ]
                trends.reverse()
                return trends

        except Exception as e:
            logger.error("read_trends_failed", questionnaire_id=questionnaire_id, error=str(e))
            raise StorageError(f"Failed to read trends: {e}") from e

    def read_breakdown(
        self,
        questionnaire_id: int,
        period_type: Granularity,
        period_date: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[BreakdownRollup]:
        """Read breakdown rows ordered by avg_rating descending."""
        try:
            with self._get_connection() as conn:
                query = """
                    SELECT questionnaire_id, period_type, period_date, area, avg_rating,
                           responses, answer_count, trend, status, target_score, gap,
                           performance
                    FROM analytics_breakdowns
                    WHERE questionnaire_id = ? AND period_type = ?
                """
                params: list[Any] = [questionnaire_id, period_type.value]

                if period_date is not None:
                    query += " AND period_date = ?"
                    params.append(date.fromisoformat(period_date))

                query += " ORDER BY avg_rating DESC NULLS LAST, area ASC"

                if limit is not None:
                    query += " LIMIT ?"
                    params.append(limit)

                rows = conn.execute(query, params).fetchall()

                return [
                    BreakdownRollup(
                        questionnaire_id=row[0],
                        period_type=row[1],
                        period_date=_iso(row[2]),
                        area=row[3],
                        avg_rating=row[4],
                        responses=row[5],
                        answer_count=row[6],
                        trend=row[7],
                        status=row[8],
                        target_score=row[9],
                        gap=row[10],
                        performance=row[11],
                    )
                    for row in rows
                ]

        except Exception as e:
            logger.error("read_breakdown_failed", questionnaire_id=questionnaire_id, error=str(e))
            raise StorageError(f"Failed to read breakdown: {e}") from e
