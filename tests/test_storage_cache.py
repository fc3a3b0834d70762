"""
Tests for storage.cache module.

Tests cover:
- Deterministic, whitespace-insensitive cache keys
- put/get round-trips and hit counting
- TTL expiry and purge
- Read and write failures degrading to a miss or an advisory
- Invalidation and stats
"""

from datetime import UTC, datetime, timedelta

import pytest

from ai_visibility.outcomes import Advisory
from ai_visibility.storage.cache import CACHE_KEY_PREFIX, ExtractionCache, compute_cache_key
from ai_visibility.storage.db import connect

ANSWER = "Airbnb is the best option for families."
DATA = {"mentions": [{"brand": "Airbnb", "position": 0}], "citations": []}
METADATA = {"method": "rule_based", "confidence": 0.8}


class FakeClock:
    """Settable clock for TTL tests."""

    def __init__(self):
        self.now = datetime(2025, 11, 2, 8, 0, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(db_path, clock):
    return ExtractionCache(db_path, ttl_seconds=60, clock=clock)


# ============================================================================
# Keys
# ============================================================================


class TestCacheKey:
    """Test suite for compute_cache_key()."""

    def test_prefix_and_length(self):
        """Test the extraction:<sha256> shape."""
        key = compute_cache_key(ANSWER, "p1", "OPENAI")

        assert key.startswith(CACHE_KEY_PREFIX)
        assert len(key) == len(CACHE_KEY_PREFIX) + 64

    def test_whitespace_normalized(self):
        """Test that whitespace runs and trailing spaces don't change the key."""
        assert compute_cache_key("  Acme   is\n\tgreat ", "p1", "OPENAI") == compute_cache_key(
            "Acme is great", "p1", "OPENAI"
        )

    def test_engine_key_case_insensitive(self):
        """Test that engine keys are upper-cased."""
        assert compute_cache_key(ANSWER, "p1", "openai") == compute_cache_key(ANSWER, "p1", "OPENAI")

    @pytest.mark.parametrize(
        "args",
        [
            ("Different answer", "p1", "OPENAI"),
            (ANSWER, "p2", "OPENAI"),
            (ANSWER, "p1", "GEMINI"),
        ],
    )
    def test_every_component_matters(self, args):
        """Test that each input changes the key."""
        assert compute_cache_key(*args) != compute_cache_key(ANSWER, "p1", "OPENAI")


# ============================================================================
# Get / put
# ============================================================================


class TestGetPut:
    """Test suite for ExtractionCache.get() and put()."""

    def test_miss_on_empty_cache(self, cache):
        """Test a plain miss."""
        lookup = cache.get(ANSWER, "p1", "OPENAI")

        assert lookup.hit is False
        assert lookup.error is None
        assert lookup.cache_key == compute_cache_key(ANSWER, "p1", "OPENAI")

    def test_put_then_hit(self, cache):
        """Test that stored data and metadata come back."""
        assert cache.put(ANSWER, "p1", "OPENAI", DATA, METADATA) is None

        lookup = cache.get(ANSWER, "p1", "OPENAI")

        assert lookup.hit is True
        assert lookup.data == DATA
        assert lookup.metadata == METADATA

    def test_hit_count_incremented(self, cache):
        """Test that each hit is counted."""
        cache.put(ANSWER, "p1", "OPENAI", DATA, METADATA)

        cache.get(ANSWER, "p1", "OPENAI")
        cache.get(ANSWER, "p1", "OPENAI")

        assert cache.stats()["total_hits"] == 2

    def test_put_overwrites(self, cache):
        """Test last-write-wins for the same key."""
        cache.put(ANSWER, "p1", "OPENAI", DATA, METADATA)
        cache.put(ANSWER, "p1", "OPENAI", {"mentions": []}, {"method": "llm"})

        lookup = cache.get(ANSWER, "p1", "OPENAI")

        assert lookup.data == {"mentions": []}
        assert lookup.metadata == {"method": "llm"}
        assert cache.stats()["entries"] == 1

    def test_unserializable_data_is_advisory(self, cache):
        """Test that a write failure returns an Advisory instead of raising."""
        circular: dict = {}
        circular["self"] = circular

        advisory = cache.put(ANSWER, "p1", "OPENAI", circular, METADATA)

        assert isinstance(advisory, Advisory)
        assert advisory.step == "cache_write"
        assert advisory.severity == "advisory"
        assert cache.get(ANSWER, "p1", "OPENAI").hit is False

    def test_corrupt_entry_is_miss_with_error(self, cache):
        """Test that unreadable JSON degrades to a miss."""
        cache.put(ANSWER, "p1", "OPENAI", DATA, METADATA)
        with connect(cache.db_path) as conn:
            conn.execute("UPDATE extraction_cache SET result_json = '{broken'")
            conn.commit()

        lookup = cache.get(ANSWER, "p1", "OPENAI")

        assert lookup.hit is False
        assert lookup.error

    def test_missing_table_is_miss_with_error(self, tmp_path):
        """Test that a database without the schema still never raises."""
        cache = ExtractionCache(str(tmp_path / "empty.db"))

        lookup = cache.get(ANSWER, "p1", "OPENAI")

        assert lookup.hit is False
        assert "extraction_cache" in lookup.error


# ============================================================================
# Expiry and maintenance
# ============================================================================


class TestExpiry:
    """Test suite for TTL handling, purge, invalidate and stats."""

    def test_entry_expires_after_ttl(self, cache, clock):
        """Test that an entry is a miss once its TTL passed."""
        cache.put(ANSWER, "p1", "OPENAI", DATA, METADATA)

        clock.advance(59)
        assert cache.get(ANSWER, "p1", "OPENAI").hit is True

        clock.advance(1)
        assert cache.get(ANSWER, "p1", "OPENAI").hit is False

    def test_no_ttl_never_expires(self, db_path, clock):
        """Test ttl_seconds=None."""
        cache = ExtractionCache(db_path, ttl_seconds=None, clock=clock)
        cache.put(ANSWER, "p1", "OPENAI", DATA, METADATA)

        clock.advance(10 * 365 * 86400)

        assert cache.get(ANSWER, "p1", "OPENAI").hit is True
        assert cache.purge_expired() == 0

    def test_stats_and_purge(self, cache, clock):
        """Test expired counting and removal."""
        cache.put(ANSWER, "p1", "OPENAI", DATA, METADATA)
        clock.advance(30)
        cache.put(ANSWER, "p2", "OPENAI", DATA, METADATA)
        clock.advance(40)

        assert cache.stats() == {"entries": 2, "total_hits": 0, "expired": 1}
        assert cache.purge_expired() == 1
        assert cache.stats() == {"entries": 1, "total_hits": 0, "expired": 0}

    def test_invalidate(self, cache):
        """Test deleting a single entry."""
        cache.put(ANSWER, "p1", "OPENAI", DATA, METADATA)

        assert cache.invalidate(ANSWER, "p1", "OPENAI") is True
        assert cache.invalidate(ANSWER, "p1", "OPENAI") is False
        assert cache.get(ANSWER, "p1", "OPENAI").hit is False
