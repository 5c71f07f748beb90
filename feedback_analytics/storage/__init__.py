"""
Data storage layer.

Source tables (questionnaires, questions, responses, answers) are read-only
to the engine; rollup tables (KPI, trend, breakdown) are written only by the
refresh orchestrator. All storage uses DuckDB for OLAP workloads.
"""

from functools import lru_cache

from feedback_analytics.config import get_settings

from .base import NotFoundError, StorageBackend
from .duckdb_storage import DuckDBStorage, StorageError


@lru_cache
def get_storage() -> StorageBackend:
    """
    Get cached storage backend instance (singleton).

    Returns:
        StorageBackend implementation instance
    """
    settings = get_settings()
    return DuckDBStorage(db_path=settings.db_path)


__all__ = [
    "DuckDBStorage",
    "NotFoundError",
    "StorageBackend",
    "StorageError",
    "get_storage",
]
