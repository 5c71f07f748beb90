"""
Analytics cache - Redis shared tier with a bounded in-memory fallback.

Values are stored as JSON envelopes ``{"data": ..., "cached_at": ...}``.
Every operation goes to Redis when a connection is available; when Redis is
not configured, cannot be reached, or a call fails, the operation is served
by the local tier instead and a warning is logged. Cache failures never
propagate to callers.

Keys are built by ``generate_key`` and always embed the questionnaire ID so
that ``invalidate_questionnaire`` can drop every derived view at once.
"""

import fnmatch
import json
import threading
import time
from datetime import datetime, timezone
from typing import Any, Callable, Optional

import redis
import structlog
from cachetools import TLRUCache

logger = structlog.get_logger()

DEFAULT_TTL_SECONDS = 300
ANALYTICS_TTL_SECONDS = 600
MAX_MEMORY_ITEMS = 1000

# Key prefixes of every view derived from a questionnaire's data
QUESTIONNAIRE_PREFIXES = ("analytics", "dashboard", "comparison", "performance")

HEALTH_CHECK_KEY = "health_check_test"


class AnalyticsCache:
    """
    Two-tier cache for computed analytics views.

    Construct it once at the application edge and inject it where needed.
    ``connect()`` opens the Redis connection (optional); ``close()``
    releases it. The instance is also a context manager.

    Example:
        >>> with AnalyticsCache(redis_url=None) as cache:
        ...     key = cache.generate_key("dashboard", questionnaire_id=1, granularity="week")
        ...     cache.set(key, {"kpi": None})
        ...     cache.get(key)
        {'kpi': None}
    """

    def __init__(
        self,
        redis_url: Optional[str] = None,
        default_ttl: int = DEFAULT_TTL_SECONDS,
        analytics_ttl: int = ANALYTICS_TTL_SECONDS,
        max_memory_items: int = MAX_MEMORY_ITEMS,
        enabled: bool = True,
        max_connections: int = 50,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.redis_url = redis_url
        self.default_ttl = default_ttl
        self.analytics_ttl = analytics_ttl
        self.max_memory_items = max_memory_items
        self.enabled = enabled
        self.max_connections = max_connections

        self._client: Optional[redis.Redis] = None
        # Values are (payload, ttl); each entry expires ttl seconds after it was written
        self._memory: TLRUCache = TLRUCache(
            maxsize=max_memory_items,
            ttu=lambda _key, value, now: now + value[1],
            timer=clock,
        )
        self._memory_lock = threading.Lock()
        self._stats = {"hits": 0, "misses": 0, "sets": 0, "deletes": 0, "fallbacks": 0}

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def connect(self) -> bool:
        """
        Open the Redis connection.

        Returns:
            True if Redis is in use, False if the cache runs memory-only
        """
        if not self.enabled or not self.redis_url:
            logger.info("cache_memory_only", enabled=self.enabled)
            return False

        try:
            client = redis.Redis.from_url(
                self.redis_url,
                decode_responses=True,
                max_connections=self.max_connections,
                socket_connect_timeout=2,
                socket_timeout=2,
            )
            client.ping()
        except redis.RedisError as e:
            logger.warning("cache_redis_unavailable", error=str(e))
            self._client = None
            return False

        self._client = client
        logger.info("cache_redis_connected")
        return True

    def close(self) -> None:
        """Close the Redis connection and drop local entries."""
        if self._client is not None:
            try:
                self._client.close()
            except redis.RedisError as e:
                logger.warning("cache_redis_close_failed", error=str(e))
            self._client = None
        with self._memory_lock:
            self._memory.clear()

    def __enter__(self) -> "AnalyticsCache":
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def backend(self) -> str:
        return "redis" if self._client is not None else "memory"

    # =========================================================================
    # Keys
    # =========================================================================

    @staticmethod
    def generate_key(prefix: str, **params: Any) -> str:
        """
        Deterministic key: ``prefix:k1:v1|k2:v2`` with parameters sorted by name.

        Parameters whose value is None are omitted.
        """
        parts = [f"{name}:{params[name]}" for name in sorted(params) if params[name] is not None]
        return f"{prefix}:{'|'.join(parts)}"

    # =========================================================================
    # Operations
    # =========================================================================

    def get(self, key: str) -> Optional[Any]:
        """Cached value, or None on miss, expiry or malformed entry."""
        if not self.enabled:
            return None

        raw = None
        if self._client is not None:
            try:
                raw = self._client.get(key)
            except redis.RedisError as e:
                self._fallback("get", key, e)
                raw = self._memory_get(key)
        else:
            raw = self._memory_get(key)

        value = self._unwrap(key, raw)
        self._stats["hits" if value is not None else "misses"] += 1
        return value

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """
        Store a JSON-serializable value.

        Args:
            key: Cache key
            value: Value to cache (None is not cacheable)
            ttl: Time to live in seconds (default_ttl if omitted)

        Returns:
            True if the value was stored in either tier
        """
        if not self.enabled or value is None:
            return False

        ttl = ttl or self.default_ttl
        try:
            payload = json.dumps(
                {"data": value, "cached_at": datetime.now(timezone.utc).isoformat()},
                default=str,
            )
        except (TypeError, ValueError) as e:
            logger.warning("cache_serialize_failed", key=key, error=str(e))
            return False

        self._stats["sets"] += 1
        if self._client is not None:
            try:
                self._client.set(key, payload, ex=ttl)
                return True
            except redis.RedisError as e:
                self._fallback("set", key, e)

        self._memory_set(key, payload, ttl)
        return True

    def delete(self, key: str) -> bool:
        """Remove a key from both tiers."""
        if not self.enabled:
            return False

        deleted = False
        if self._client is not None:
            try:
                deleted = bool(self._client.delete(key))
            except redis.RedisError as e:
                self._fallback("delete", key, e)

        with self._memory_lock:
            deleted = self._memory.pop(key, None) is not None or deleted

        self._stats["deletes"] += 1
        return deleted

    def clear_pattern(self, pattern: str) -> int:
        """
        Remove every key matching a glob pattern from both tiers.

        Returns:
            Number of keys removed
        """
        if not self.enabled:
            return 0

        removed = 0
        if self._client is not None:
            try:
                keys = list(self._client.scan_iter(match=pattern, count=500))
                if keys:
                    removed += self._client.delete(*keys)
            except redis.RedisError as e:
                self._fallback("clear_pattern", pattern, e)

        with self._memory_lock:
            matching = [key for key in list(self._memory.keys()) if fnmatch.fnmatchcase(key, pattern)]
            for key in matching:
                if self._memory.pop(key, None) is not None:
                    removed += 1

        logger.debug("cache_pattern_cleared", pattern=pattern, removed=removed)
        return removed

    def invalidate_questionnaire(self, questionnaire_id: int) -> int:
        """Drop every cached view of a questionnaire."""
        removed = 0
        for prefix in QUESTIONNAIRE_PREFIXES:
            # Exact ID match whether or not questionnaire_id is the last key part
            removed += self.clear_pattern(f"{prefix}:*questionnaire_id:{questionnaire_id}")
            removed += self.clear_pattern(f"{prefix}:*questionnaire_id:{questionnaire_id}|*")

        logger.info("cache_questionnaire_invalidated", questionnaire_id=questionnaire_id, removed=removed)
        return removed

    def get_stats(self) -> dict:
        """Hit/miss counters plus backend details."""
        with self._memory_lock:
            self._memory.expire()
            memory_size = len(self._memory)
        stats = {
            "type": self.backend,
            "enabled": self.enabled,
            "memory_size": memory_size,
            "memory_max_size": self.max_memory_items,
            **self._stats,
        }
        if self._client is not None:
            try:
                stats["redis_keys"] = self._client.dbsize()
            except redis.RedisError as e:
                stats["redis_error"] = str(e)
        return stats

    def health_check(self) -> dict:
        """Round-trip a sample value through the active tier."""
        started = time.perf_counter()
        sample = {"status": "ok"}
        try:
            if not self.enabled:
                return {"status": "disabled", "type": self.backend}
            if not self.set(HEALTH_CHECK_KEY, sample, ttl=10):
                raise RuntimeError("cache set operation failed")
            if self.get(HEALTH_CHECK_KEY) != sample:
                raise RuntimeError("cache get operation failed")
            self.delete(HEALTH_CHECK_KEY)
        except RuntimeError as e:
            logger.error("cache_health_check_failed", error=str(e))
            return {"status": "unhealthy", "type": self.backend, "error": str(e)}

        return {
            "status": "healthy",
            "type": self.backend,
            "latency_ms": round((time.perf_counter() - started) * 1000, 2),
        }

    # =========================================================================
    # Internals
    # =========================================================================

    def _fallback(self, operation: str, key: str, error: Exception) -> None:
        self._stats["fallbacks"] += 1
        logger.warning("cache_redis_call_failed", operation=operation, key=key, error=str(error))

    def _memory_get(self, key: str) -> Optional[str]:
        with self._memory_lock:
            entry = self._memory.get(key)
        return entry[0] if entry is not None else None

    def _memory_set(self, key: str, payload: str, ttl: int) -> None:
        with self._memory_lock:
            self._memory[key] = (payload, ttl)

    @staticmethod
    def _unwrap(key: str, raw: Optional[str]) -> Optional[Any]:
        if raw is None:
            return None
        try:
            envelope = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("cache_entry_malformed", key=key)
            return None
        if not isinstance(envelope, dict) or "data" not in envelope:
            return None
        return envelope["data"]
