"""
Extraction result cache backed by the extraction_cache table.

The cache is advisory: a failed read is treated as a miss and a failed
write is reported as an Advisory, so cache problems never fail a job.

Cache keys are pure functions of (answer text, prompt id, engine key):
    extraction:<sha256(normalized answer \\x1f prompt id \\x1f engine key)>
where the answer is whitespace-normalized (runs collapsed, ends trimmed).

Concurrent writes of the same key are last-write-wins.

Example:
    >>> cache = ExtractionCache("./data/ai_visibility.db")
    >>> lookup = cache.get(answer_text, prompt_id, "OPENAI")
    >>> if not lookup.hit:
    ...     advisory = cache.put(answer_text, prompt_id, "OPENAI", data, metadata)
"""

import hashlib
import json
import logging
import re
import sqlite3
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from ai_visibility.config.constants import EXTRACTION_CACHE_TTL_SECONDS
from ai_visibility.outcomes import Advisory
from ai_visibility.storage.db import connect
from ai_visibility.utils.logging import log_with_context
from ai_visibility.utils.time import format_timestamp, utc_now

logger = logging.getLogger(__name__)

CACHE_KEY_PREFIX = "extraction:"
_KEY_SEPARATOR = "\x1f"
_WHITESPACE_RE = re.compile(r"\s+")


def compute_cache_key(answer_text: str, prompt_id: str, engine_key: str) -> str:
    """
    Deterministic cache key for an extraction.

    Example:
        >>> compute_cache_key("Acme  is\\ngreat ", "p1", "OPENAI") == (
        ...     compute_cache_key("Acme is great", "p1", "OPENAI")
        ... )
        True
    """
    normalized = _WHITESPACE_RE.sub(" ", answer_text).strip()
    material = _KEY_SEPARATOR.join([normalized, prompt_id, engine_key.upper()])
    return CACHE_KEY_PREFIX + hashlib.sha256(material.encode("utf-8")).hexdigest()


@dataclass
class CacheLookup:
    """
    Result of ExtractionCache.get().

    Attributes:
        hit: True when a live entry was found
        cache_key: Key that was looked up
        data: Stored extraction bundle (hit only)
        metadata: Stored extraction metadata (hit only)
        error: Message when the lookup failed and degraded to a miss
    """

    hit: bool
    cache_key: str
    data: dict[str, Any] | None = None
    metadata: dict[str, Any] | None = None
    error: str | None = None


class ExtractionCache:
    """
    SQLite-backed extraction cache.

    Args:
        db_path: Database path (schema must be initialized)
        ttl_seconds: Entry lifetime; None keeps entries until invalidated
        clock: Returns the current aware datetime (injectable for tests)
    """

    def __init__(
        self,
        db_path: str,
        ttl_seconds: int | None = EXTRACTION_CACHE_TTL_SECONDS,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.db_path = db_path
        self.ttl_seconds = ttl_seconds
        self.clock = clock

    def get(self, answer_text: str, prompt_id: str, engine_key: str) -> CacheLookup:
        """Look up an extraction. Never raises; errors degrade to a miss."""
        cache_key = compute_cache_key(answer_text, prompt_id, engine_key)
        now = format_timestamp(self.clock())

        try:
            with connect(self.db_path) as conn:
                row = conn.execute(
                    """
                    SELECT result_json, metadata_json, expires_at
                    FROM extraction_cache WHERE cache_key = ?
                    """,
                    (cache_key,),
                ).fetchone()

                if row is None or (row["expires_at"] is not None and row["expires_at"] <= now):
                    log_with_context(
                        logger,
                        logging.DEBUG,
                        "Extraction cache miss",
                        context={"cache_key": cache_key, "engine_key": engine_key},
                    )
                    return CacheLookup(hit=False, cache_key=cache_key)

                conn.execute(
                    """
                    UPDATE extraction_cache
                    SET hit_count = hit_count + 1, last_accessed_at = ?
                    WHERE cache_key = ?
                    """,
                    (now, cache_key),
                )
                conn.commit()

                data = json.loads(row["result_json"])
                metadata = json.loads(row["metadata_json"])
        except (sqlite3.Error, json.JSONDecodeError) as e:
            logger.warning(
                f"Extraction cache read failed, treating as miss: {e}",
                extra={"context": {"cache_key": cache_key}},
            )
            return CacheLookup(hit=False, cache_key=cache_key, error=str(e))

        log_with_context(
            logger,
            logging.INFO,
            "Extraction cache hit",
            context={"cache_key": cache_key, "engine_key": engine_key},
        )
        return CacheLookup(hit=True, cache_key=cache_key, data=data, metadata=metadata)

    def put(
        self,
        answer_text: str,
        prompt_id: str,
        engine_key: str,
        data: dict[str, Any],
        metadata: dict[str, Any],
    ) -> Advisory | None:
        """
        Store an extraction (overwrites an existing entry for the key).

        Returns:
            None on success, an Advisory describing the failure otherwise
        """
        cache_key = compute_cache_key(answer_text, prompt_id, engine_key)
        now_dt = self.clock()
        now = format_timestamp(now_dt)
        expires_at = (
            format_timestamp(now_dt + timedelta(seconds=self.ttl_seconds))
            if self.ttl_seconds is not None
            else None
        )

        try:
            with connect(self.db_path) as conn:
                conn.execute(
                    """
                    INSERT INTO extraction_cache (
                        cache_key, engine_key, prompt_id, result_json, metadata_json,
                        cached_at, last_accessed_at, expires_at, hit_count
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, 0)
                    ON CONFLICT(cache_key) DO UPDATE SET
                        result_json = excluded.result_json,
                        metadata_json = excluded.metadata_json,
                        cached_at = excluded.cached_at,
                        last_accessed_at = excluded.last_accessed_at,
                        expires_at = excluded.expires_at
                    """,
                    (
                        cache_key,
                        engine_key.upper(),
                        prompt_id,
                        json.dumps(data, default=str),
                        json.dumps(metadata, default=str),
                        now,
                        now,
                        expires_at,
                    ),
                )
                conn.commit()
        except (sqlite3.Error, TypeError, ValueError) as e:
            logger.warning(
                f"Extraction cache write failed: {e}",
                extra={"context": {"cache_key": cache_key}},
            )
            return Advisory.from_exception("cache_write", e)

        logger.debug(f"Extraction cached: {cache_key}")
        return None

    def invalidate(self, answer_text: str, prompt_id: str, engine_key: str) -> bool:
        """Delete one entry. Returns True if it existed."""
        cache_key = compute_cache_key(answer_text, prompt_id, engine_key)
        with connect(self.db_path) as conn:
            cursor = conn.execute("DELETE FROM extraction_cache WHERE cache_key = ?", (cache_key,))
            conn.commit()
            return cursor.rowcount > 0

    def purge_expired(self) -> int:
        """Delete expired entries and return how many were removed."""
        now = format_timestamp(self.clock())
        with connect(self.db_path) as conn:
            cursor = conn.execute(
                "DELETE FROM extraction_cache WHERE expires_at IS NOT NULL AND expires_at <= ?",
                (now,),
            )
            conn.commit()
            removed = cursor.rowcount

        if removed:
            logger.info(f"Purged {removed} expired extraction cache entries")
        return removed

    def stats(self) -> dict[str, int]:
        """
        Entry and hit counters.

        Returns:
            {"entries": ..., "total_hits": ..., "expired": ...}
        """
        now = format_timestamp(self.clock())
        with connect(self.db_path) as conn:
            row = conn.execute(
                """
                SELECT COUNT(*) AS entries,
                       COALESCE(SUM(hit_count), 0) AS total_hits,
                       COALESCE(SUM(CASE WHEN expires_at IS NOT NULL AND expires_at <= ?
                                    THEN 1 ELSE 0 END), 0) AS expired
                FROM extraction_cache
                """,
                (now,),
            ).fetchone()
        return {
            "entries": int(row["entries"]),
            "total_hits": int(row["total_hits"]),
            "expired": int(row["expired"]),
        }
