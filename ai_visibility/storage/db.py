"""
SQLite database initialization, schema management and queries.

All timestamps are stored in ISO 8601 format with 'Z' suffix (UTC) and all
costs as integer cents.

The database tracks:
- workspaces, workspace_profiles: brand identity and knowledge profile
- engines: per-workspace answer engines with daily budget and latency stats
- prompts, prompt_clusters: what gets asked
- prompt_runs: one row per idempotency key, the job ledger
- answers, mentions, citations: what came back
- demo_runs: batch context with progress counters
- hallucination_alerts: profile facts contradicted by answers
- extraction_cache, job_queue: see storage.cache and storage.queue

Schema versioning ensures safe upgrades as features evolve.

Example usage:
    >>> init_db_if_needed("./data/ai_visibility.db")
    >>> with connect("./data/ai_visibility.db") as conn:
    ...     prompt_id = get_or_create_prompt(conn, "ws-1", "Best CRM tools?")
    ...     conn.commit()

Security:
    - ALL queries use parameterized statements to prevent SQL injection
    - NO API keys are ever stored in the database
    - Connection context managers ensure proper cleanup

Concurrency:
    - State transitions are single atomic statements (INSERT ... ON
      CONFLICT DO NOTHING, UPDATE ... WHERE status = 'PENDING', counter
      arithmetic in SQL), so concurrent deliveries of the same job cannot
      double-apply them.
"""

import json
import logging
import sqlite3
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from ai_visibility.config.constants import LATENCY_EMA_ALPHA
from ai_visibility.exceptions import DatabaseInitError, DatabaseMigrationError
from ai_visibility.utils.time import utc_timestamp

logger = logging.getLogger(__name__)

# Current schema version - increment when migrations are added
CURRENT_SCHEMA_VERSION = 2

# Seconds SQLite waits on a locked database before raising
BUSY_TIMEOUT_SECONDS = 30.0

RUN_PENDING = "PENDING"
RUN_SUCCESS = "SUCCESS"
RUN_FAILED = "FAILED"

BATCH_ANALYZING = "analyzing"
BATCH_COMPLETE = "analysis_complete"
BATCH_FAILED = "analysis_failed"


def new_id() -> str:
    """Random 32-char hex identifier."""
    return uuid.uuid4().hex


@contextmanager
def connect(db_path: str) -> Iterator[sqlite3.Connection]:
    """
    Open a connection with row access by name and foreign keys enforced.

    The connection is closed on exit; callers commit explicitly.

    Example:
        >>> with connect(db_path) as conn:
        ...     conn.execute("SELECT 1").fetchone()[0]
        1
    """
    conn = sqlite3.connect(db_path, timeout=BUSY_TIMEOUT_SECONDS)
    try:
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        yield conn
    finally:
        conn.close()


# ============================================================================
# Schema management
# ============================================================================


def init_db_if_needed(db_path: str) -> None:
    """
    Initialize the SQLite database with schema versioning.

    Creates the database file and parent directory if needed, then applies
    any pending migrations. Idempotent.

    Args:
        db_path: Filesystem path to the SQLite database file

    Raises:
        DatabaseInitError: If the file cannot be created or opened, or the
            schema is newer than this code
        DatabaseMigrationError: If a migration fails (rolled back)
    """
    try:
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise DatabaseInitError(f"Cannot create database directory for {db_path}: {e}") from e

    try:
        conn = sqlite3.connect(db_path, timeout=BUSY_TIMEOUT_SECONDS)
    except sqlite3.Error as e:
        raise DatabaseInitError(f"Cannot open database {db_path}: {e}") from e

    try:
        conn.execute("PRAGMA foreign_keys = ON")
        # WAL lets readers proceed while a worker writes
        conn.execute("PRAGMA journal_mode = WAL")
        conn.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at TEXT NOT NULL
            )
        """)
        conn.commit()

        current_version = get_schema_version(conn)

        if current_version < CURRENT_SCHEMA_VERSION:
            logger.info(
                f"Database schema upgrade needed: "
                f"v{current_version} -> v{CURRENT_SCHEMA_VERSION}"
            )
            apply_migrations(conn, current_version, CURRENT_SCHEMA_VERSION)
        elif current_version > CURRENT_SCHEMA_VERSION:
            raise DatabaseInitError(
                f"Database schema version {current_version} is newer than "
                f"expected {CURRENT_SCHEMA_VERSION}. Update your software or "
                f"use a different database file."
            )
        else:
            logger.debug(f"Database schema is current (v{CURRENT_SCHEMA_VERSION})")
    except sqlite3.Error as e:
        raise DatabaseInitError(f"Database initialization failed for {db_path}: {e}") from e
    finally:
        conn.close()


def get_schema_version(conn: sqlite3.Connection) -> int:
    """Current schema version (0 for a fresh database)."""
    result = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()[0]
    return result if result is not None else 0


def apply_migrations(conn: sqlite3.Connection, from_version: int, to_version: int) -> None:
    """
    Apply schema migrations sequentially, each in its own transaction.

    Raises:
        DatabaseMigrationError: If a migration fails; the database stays at
            the last successfully applied version
    """
    if from_version > to_version:
        raise DatabaseMigrationError(
            f"Cannot downgrade schema from v{from_version} to v{to_version}."
        )

    migrations = {1: _migrate_to_v1, 2: _migrate_to_v2}

    for target_version in range(from_version + 1, to_version + 1):
        logger.info(f"Applying migration to schema version {target_version}")
        try:
            conn.execute("BEGIN")
            migration = migrations.get(target_version)
            if migration is None:
                raise ValueError(f"No migration defined for version {target_version}")
            migration(conn)

            conn.execute(
                "INSERT INTO schema_version (version, applied_at) VALUES (?, ?)",
                (target_version, utc_timestamp()),
            )
            conn.commit()
        except (sqlite3.Error, ValueError) as e:
            conn.rollback()
            logger.error(f"Migration to version {target_version} failed: {e}", exc_info=True)
            raise DatabaseMigrationError(
                f"Failed to migrate database to version {target_version}: {e}"
            ) from e


def _migrate_to_v1(conn: sqlite3.Connection) -> None:
    """
    Schema v1: workspace configuration and the run ledger.

    Note:
        Called by apply_migrations() inside a transaction. Do NOT call
        directly.
    """
    conn.execute("""
        CREATE TABLE IF NOT EXISTS workspaces (
            id TEXT PRIMARY KEY,
            brand_name TEXT,
            primary_domain TEXT,
            created_at TEXT NOT NULL
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS workspace_profiles (
            workspace_id TEXT PRIMARY KEY REFERENCES workspaces(id),
            profile_json TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS engines (
            id TEXT PRIMARY KEY,
            workspace_id TEXT NOT NULL,
            key TEXT NOT NULL,
            enabled INTEGER NOT NULL DEFAULT 1,
            daily_budget_cents INTEGER NOT NULL DEFAULT 0,
            timezone TEXT NOT NULL DEFAULT 'UTC',
            last_run_at TEXT,
            avg_latency_ms REAL,
            UNIQUE(workspace_id, key)
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS prompts (
            id TEXT PRIMARY KEY,
            workspace_id TEXT NOT NULL,
            text TEXT NOT NULL,
            intent TEXT,
            active INTEGER NOT NULL DEFAULT 1,
            created_at TEXT NOT NULL,
            UNIQUE(workspace_id, text)
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS prompt_clusters (
            id TEXT PRIMARY KEY,
            workspace_id TEXT NOT NULL,
            name TEXT NOT NULL,
            intent TEXT,
            prompts_json TEXT NOT NULL DEFAULT '[]',
            created_at TEXT NOT NULL
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS prompt_runs (
            id TEXT PRIMARY KEY,
            workspace_id TEXT NOT NULL,
            prompt_id TEXT NOT NULL REFERENCES prompts(id),
            engine_id TEXT NOT NULL REFERENCES engines(id),
            idempotency_key TEXT NOT NULL UNIQUE,
            status TEXT NOT NULL CHECK (status IN ('PENDING', 'SUCCESS', 'FAILED')),
            cost_cents INTEGER NOT NULL DEFAULT 0,
            provider_used TEXT,
            started_at TEXT NOT NULL,
            finished_at TEXT,
            error_msg TEXT
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS answers (
            id TEXT PRIMARY KEY,
            prompt_run_id TEXT NOT NULL UNIQUE REFERENCES prompt_runs(id),
            raw_text TEXT NOT NULL,
            json_payload TEXT,
            created_at TEXT NOT NULL
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS mentions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            answer_id TEXT NOT NULL REFERENCES answers(id),
            brand TEXT NOT NULL,
            position INTEGER,
            sentiment TEXT NOT NULL CHECK (sentiment IN ('positive', 'neutral', 'negative')),
            snippet TEXT NOT NULL DEFAULT '',
            confidence REAL NOT NULL,
            list_rank INTEGER
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS citations (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            answer_id TEXT NOT NULL REFERENCES answers(id),
            url TEXT NOT NULL,
            domain TEXT NOT NULL,
            rank INTEGER NOT NULL,
            confidence REAL NOT NULL
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS demo_runs (
            id TEXT PRIMARY KEY,
            workspace_id TEXT,
            brand TEXT,
            domain TEXT,
            status TEXT NOT NULL DEFAULT 'analyzing',
            progress INTEGER NOT NULL DEFAULT 0,
            analysis_jobs_total INTEGER NOT NULL DEFAULT 0,
            analysis_jobs_completed INTEGER NOT NULL DEFAULT 0,
            analysis_jobs_failed INTEGER NOT NULL DEFAULT 0,
            updated_at TEXT NOT NULL
        )
    """)

    # Budget guard sums today's cost per engine
    conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_prompt_runs_engine_started
        ON prompt_runs(engine_id, started_at)
    """)
    conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_mentions_answer
        ON mentions(answer_id)
    """)
    conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_citations_answer
        ON citations(answer_id)
    """)

    logger.debug("Created schema v1 tables and indexes")


def _migrate_to_v2(conn: sqlite3.Connection) -> None:
    """
    Schema v2: job queue, extraction cache and hallucination alerts.

    Note:
        Called by apply_migrations() inside a transaction. Do NOT call
        directly.
    """
    conn.execute("""
        CREATE TABLE IF NOT EXISTS job_queue (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            kind TEXT NOT NULL CHECK (kind IN ('individual_prompt', 'cluster_scan')),
            payload_json TEXT NOT NULL,
            dedupe_key TEXT NOT NULL UNIQUE,
            status TEXT NOT NULL DEFAULT 'queued'
                CHECK (status IN ('queued', 'running', 'done', 'dead')),
            attempts INTEGER NOT NULL DEFAULT 0,
            max_attempts INTEGER NOT NULL,
            available_at TEXT NOT NULL,
            claimed_by TEXT,
            claimed_at TEXT,
            last_error TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
    """)
    conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_job_queue_available
        ON job_queue(status, available_at)
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS extraction_cache (
            cache_key TEXT PRIMARY KEY,
            engine_key TEXT NOT NULL,
            prompt_id TEXT NOT NULL,
            result_json TEXT NOT NULL,
            metadata_json TEXT NOT NULL,
            cached_at TEXT NOT NULL,
            last_accessed_at TEXT NOT NULL,
            expires_at TEXT,
            hit_count INTEGER NOT NULL DEFAULT 0
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS hallucination_alerts (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            workspace_id TEXT NOT NULL,
            prompt_run_id TEXT REFERENCES prompt_runs(id),
            engine_key TEXT NOT NULL,
            fact_type TEXT NOT NULL,
            ai_statement TEXT NOT NULL,
            correct_fact TEXT NOT NULL,
            severity TEXT NOT NULL CHECK (severity IN ('low', 'medium', 'high', 'critical')),
            status TEXT NOT NULL DEFAULT 'open',
            confidence REAL NOT NULL,
            context TEXT,
            created_at TEXT NOT NULL
        )
    """)

    logger.debug("Created schema v2 tables and indexes")


# ============================================================================
# Workspace configuration
# ============================================================================


def insert_workspace(
    conn: sqlite3.Connection,
    workspace_id: str,
    brand_name: str | None = None,
    primary_domain: str | None = None,
) -> None:
    """Insert a workspace (no-op if the id exists)."""
    conn.execute(
        """
        INSERT OR IGNORE INTO workspaces (id, brand_name, primary_domain, created_at)
        VALUES (?, ?, ?, ?)
        """,
        (workspace_id, brand_name, primary_domain, utc_timestamp()),
    )


def get_workspace(conn: sqlite3.Connection, workspace_id: str) -> dict | None:
    row = conn.execute(
        "SELECT id, brand_name, primary_domain FROM workspaces WHERE id = ?",
        (workspace_id,),
    ).fetchone()
    return dict(row) if row else None


def upsert_workspace_profile(
    conn: sqlite3.Connection, workspace_id: str, profile: dict[str, Any]
) -> None:
    """Store the knowledge profile used by hallucination detection."""
    conn.execute(
        """
        INSERT INTO workspace_profiles (workspace_id, profile_json, updated_at)
        VALUES (?, ?, ?)
        ON CONFLICT(workspace_id) DO UPDATE SET
            profile_json = excluded.profile_json,
            updated_at = excluded.updated_at
        """,
        (workspace_id, json.dumps(profile), utc_timestamp()),
    )


def get_workspace_profile(conn: sqlite3.Connection, workspace_id: str) -> dict | None:
    row = conn.execute(
        "SELECT profile_json FROM workspace_profiles WHERE workspace_id = ?",
        (workspace_id,),
    ).fetchone()
    if row is None:
        return None
    return json.loads(row["profile_json"])


def insert_engine(
    conn: sqlite3.Connection,
    workspace_id: str,
    key: str,
    daily_budget_cents: int = 1000,
    enabled: bool = True,
    timezone: str = "UTC",
) -> str:
    """
    Insert an engine for a workspace and return its id.

    Raises:
        sqlite3.IntegrityError: If the workspace already has this engine key
    """
    engine_id = new_id()
    conn.execute(
        """
        INSERT INTO engines (id, workspace_id, key, enabled, daily_budget_cents, timezone)
        VALUES (?, ?, ?, ?, ?, ?)
        """,
        (engine_id, workspace_id, key.upper(), 1 if enabled else 0, daily_budget_cents, timezone),
    )
    return engine_id


def get_enabled_engine(conn: sqlite3.Connection, workspace_id: str, key: str) -> dict | None:
    """Engine row for (workspace, key) if it exists and is enabled."""
    row = conn.execute(
        """
        SELECT id, workspace_id, key, enabled, daily_budget_cents, timezone,
               last_run_at, avg_latency_ms
        FROM engines
        WHERE workspace_id = ? AND key = ? AND enabled = 1
        """,
        (workspace_id, key.upper()),
    ).fetchone()
    return dict(row) if row else None


def get_or_create_prompt(
    conn: sqlite3.Connection, workspace_id: str, text: str, intent: str | None = None
) -> str:
    """
    Return the id of the workspace prompt with this text, creating it if needed.

    Safe under concurrency: INSERT OR IGNORE on UNIQUE(workspace_id, text)
    followed by a lookup.
    """
    conn.execute(
        """
        INSERT OR IGNORE INTO prompts (id, workspace_id, text, intent, active, created_at)
        VALUES (?, ?, ?, ?, 1, ?)
        """,
        (new_id(), workspace_id, text, intent, utc_timestamp()),
    )
    row = conn.execute(
        "SELECT id FROM prompts WHERE workspace_id = ? AND text = ?",
        (workspace_id, text),
    ).fetchone()
    return row["id"]


def get_prompt(conn: sqlite3.Connection, prompt_id: str) -> dict | None:
    row = conn.execute(
        "SELECT id, workspace_id, text, intent, active FROM prompts WHERE id = ?",
        (prompt_id,),
    ).fetchone()
    return dict(row) if row else None


def insert_cluster(
    conn: sqlite3.Connection,
    workspace_id: str,
    name: str,
    prompts: list[str],
    intent: str | None = None,
) -> str:
    """Insert a prompt cluster (ordered prompt texts) and return its id."""
    cluster_id = new_id()
    conn.execute(
        """
        INSERT INTO prompt_clusters (id, workspace_id, name, intent, prompts_json, created_at)
        VALUES (?, ?, ?, ?, ?, ?)
        """,
        (cluster_id, workspace_id, name, intent, json.dumps(prompts), utc_timestamp()),
    )
    return cluster_id


def get_cluster(conn: sqlite3.Connection, cluster_id: str, workspace_id: str) -> dict | None:
    """Cluster with its prompt texts decoded, scoped to the workspace."""
    row = conn.execute(
        """
        SELECT id, workspace_id, name, intent, prompts_json
        FROM prompt_clusters
        WHERE id = ? AND workspace_id = ?
        """,
        (cluster_id, workspace_id),
    ).fetchone()
    if row is None:
        return None

    cluster = dict(row)
    prompts = json.loads(cluster.pop("prompts_json") or "[]")
    cluster["prompts"] = [p for p in prompts if isinstance(p, str) and p.strip()]
    return cluster


# ============================================================================
# Prompt runs
# ============================================================================


def prompt_run_exists(conn: sqlite3.Connection, idempotency_key: str) -> bool:
    row = conn.execute(
        "SELECT 1 FROM prompt_runs WHERE idempotency_key = ?",
        (idempotency_key,),
    ).fetchone()
    return row is not None


def get_prompt_run(conn: sqlite3.Connection, idempotency_key: str) -> dict | None:
    row = conn.execute(
        """
        SELECT id, workspace_id, prompt_id, engine_id, idempotency_key, status,
               cost_cents, provider_used, started_at, finished_at, error_msg
        FROM prompt_runs
        WHERE idempotency_key = ?
        """,
        (idempotency_key,),
    ).fetchone()
    return dict(row) if row else None


def sum_engine_cost_since(conn: sqlite3.Connection, engine_id: str, since_timestamp: str) -> int:
    """Total cost (cents) of the engine's runs started at or after since_timestamp."""
    row = conn.execute(
        """
        SELECT COALESCE(SUM(cost_cents), 0)
        FROM prompt_runs
        WHERE engine_id = ? AND started_at >= ?
        """,
        (engine_id, since_timestamp),
    ).fetchone()
    return int(row[0])


def claim_prompt_run(
    conn: sqlite3.Connection,
    workspace_id: str,
    prompt_id: str,
    engine_id: str,
    idempotency_key: str,
) -> str | None:
    """
    Atomically create the PENDING run for an idempotency key.

    Returns:
        New run id, or None if a run with this key already exists (another
        delivery won the race)
    """
    run_id = new_id()
    cursor = conn.execute(
        """
        INSERT INTO prompt_runs (
            id, workspace_id, prompt_id, engine_id, idempotency_key,
            status, cost_cents, started_at
        ) VALUES (?, ?, ?, ?, ?, 'PENDING', 0, ?)
        ON CONFLICT(idempotency_key) DO NOTHING
        """,
        (run_id, workspace_id, prompt_id, engine_id, idempotency_key, utc_timestamp()),
    )
    return run_id if cursor.rowcount == 1 else None


def mark_prompt_run_succeeded(
    conn: sqlite3.Connection, run_id: str, cost_cents: int, provider_used: str | None
) -> bool:
    """PENDING -> SUCCESS. Returns False if the run was not PENDING."""
    cursor = conn.execute(
        """
        UPDATE prompt_runs
        SET status = 'SUCCESS', cost_cents = ?, provider_used = ?, finished_at = ?
        WHERE id = ? AND status = 'PENDING'
        """,
        (cost_cents, provider_used, utc_timestamp(), run_id),
    )
    return cursor.rowcount == 1


def mark_prompt_run_failed(conn: sqlite3.Connection, run_id: str, error_msg: str) -> bool:
    """PENDING -> FAILED. Returns False if the run was not PENDING."""
    cursor = conn.execute(
        """
        UPDATE prompt_runs
        SET status = 'FAILED', finished_at = ?, error_msg = ?
        WHERE id = ? AND status = 'PENDING'
        """,
        (utc_timestamp(), error_msg[:2000], run_id),
    )
    return cursor.rowcount == 1


def record_engine_run(
    conn: sqlite3.Connection,
    engine_id: str,
    latency_ms: float,
    alpha: float = LATENCY_EMA_ALPHA,
) -> None:
    """
    Update last-run timestamp and the rolling average latency in one UPDATE.

    avg = latency when no average exists yet, else
    avg * (1 - alpha) + latency * alpha.
    """
    conn.execute(
        """
        UPDATE engines
        SET last_run_at = ?,
            avg_latency_ms = CASE
                WHEN avg_latency_ms IS NULL THEN ?
                ELSE avg_latency_ms * (1.0 - ?) + ? * ?
            END
        WHERE id = ?
        """,
        (utc_timestamp(), latency_ms, alpha, latency_ms, alpha, engine_id),
    )


# ============================================================================
# Answers, mentions, citations, alerts
# ============================================================================


def insert_answer(
    conn: sqlite3.Connection, prompt_run_id: str, raw_text: str, payload: dict[str, Any]
) -> str:
    """Insert the answer for a run and return its id."""
    answer_id = new_id()
    conn.execute(
        """
        INSERT INTO answers (id, prompt_run_id, raw_text, json_payload, created_at)
        VALUES (?, ?, ?, ?, ?)
        """,
        (answer_id, prompt_run_id, raw_text, json.dumps(payload, default=str), utc_timestamp()),
    )
    return answer_id


def insert_mention(
    conn: sqlite3.Connection,
    answer_id: str,
    brand: str,
    position: int | None,
    sentiment: str,
    snippet: str,
    confidence: float,
    list_rank: int | None = None,
) -> None:
    """
    Insert one brand mention.

    Raises:
        sqlite3.IntegrityError: On a sentiment outside the allowed set or an
            unknown answer id
    """
    conn.execute(
        """
        INSERT INTO mentions (answer_id, brand, position, sentiment, snippet, confidence, list_rank)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
        (answer_id, brand, position, sentiment, snippet, confidence, list_rank),
    )


def insert_citation(
    conn: sqlite3.Connection,
    answer_id: str,
    url: str,
    domain: str,
    rank: int,
    confidence: float,
) -> None:
    conn.execute(
        """
        INSERT INTO citations (answer_id, url, domain, rank, confidence)
        VALUES (?, ?, ?, ?, ?)
        """,
        (answer_id, url, domain, rank, confidence),
    )


def insert_hallucination_alert(
    conn: sqlite3.Connection,
    workspace_id: str,
    prompt_run_id: str | None,
    engine_key: str,
    fact_type: str,
    ai_statement: str,
    correct_fact: str,
    severity: str,
    confidence: float,
    context: str | None = None,
) -> None:
    conn.execute(
        """
        INSERT INTO hallucination_alerts (
            workspace_id, prompt_run_id, engine_key, fact_type, ai_statement,
            correct_fact, severity, status, confidence, context, created_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, 'open', ?, ?, ?)
        """,
        (
            workspace_id,
            prompt_run_id,
            engine_key,
            fact_type,
            ai_statement,
            correct_fact,
            severity,
            confidence,
            context,
            utc_timestamp(),
        ),
    )


# ============================================================================
# Batch (demo run) context
# ============================================================================


def insert_demo_run(
    conn: sqlite3.Connection,
    brand: str | None,
    domain: str | None,
    analysis_jobs_total: int,
    workspace_id: str | None = None,
    progress: int = 0,
) -> str:
    """Create a batch context and return its id."""
    demo_run_id = new_id()
    conn.execute(
        """
        INSERT INTO demo_runs (
            id, workspace_id, brand, domain, status, progress,
            analysis_jobs_total, updated_at
        ) VALUES (?, ?, ?, ?, 'analyzing', ?, ?, ?)
        """,
        (demo_run_id, workspace_id, brand, domain, progress, analysis_jobs_total, utc_timestamp()),
    )
    return demo_run_id


def get_demo_run(conn: sqlite3.Connection, demo_run_id: str) -> dict | None:
    row = conn.execute(
        """
        SELECT id, workspace_id, brand, domain, status, progress,
               analysis_jobs_total, analysis_jobs_completed, analysis_jobs_failed
        FROM demo_runs WHERE id = ?
        """,
        (demo_run_id,),
    ).fetchone()
    return dict(row) if row else None


def record_batch_job_outcome(conn: sqlite3.Connection, demo_run_id: str, succeeded: bool) -> bool:
    """
    Count one terminal job against a batch in a single atomic UPDATE.

    Progress becomes min(100, max(progress, 80 + round(done / total * 20)))
    where done counts completed and failed jobs (total = 0 -> at least 95).
    Once every job is terminal the status becomes analysis_complete, or
    analysis_failed when none of them succeeded.

    Note:
        All right-hand sides read the pre-update row, so the expressions add
        this job explicitly.

    Returns:
        True if the batch row exists
    """
    completed_delta = 1 if succeeded else 0
    failed_delta = 0 if succeeded else 1

    cursor = conn.execute(
        """
        UPDATE demo_runs
        SET analysis_jobs_completed = analysis_jobs_completed + :completed,
            analysis_jobs_failed = analysis_jobs_failed + :failed,
            progress = MIN(100, CASE
                WHEN analysis_jobs_total = 0 THEN MAX(progress, 95)
                ELSE MAX(progress, 80 + CAST(ROUND(
                    (analysis_jobs_completed + analysis_jobs_failed + 1) * 20.0
                    / analysis_jobs_total) AS INTEGER))
            END),
            status = CASE
                WHEN analysis_jobs_total > 0
                     AND analysis_jobs_completed + analysis_jobs_failed + 1 >= analysis_jobs_total
                THEN CASE
                    WHEN analysis_jobs_completed + :completed = 0 THEN 'analysis_failed'
                    ELSE 'analysis_complete'
                END
                ELSE status
            END,
            updated_at = :now
        WHERE id = :id
        """,
        {
            "completed": completed_delta,
            "failed": failed_delta,
            "now": utc_timestamp(),
            "id": demo_run_id,
        },
    )
    return cursor.rowcount == 1


# ============================================================================
# Read helpers
# ============================================================================


def count_rows(conn: sqlite3.Connection, table: str) -> int:
    """Row count for a known table (used by the CLI and tests)."""
    if table not in {
        "prompt_runs",
        "answers",
        "mentions",
        "citations",
        "hallucination_alerts",
        "job_queue",
        "extraction_cache",
        "prompts",
    }:
        raise ValueError(f"Unknown table: {table}")
    return conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]


def get_answer_for_run(conn: sqlite3.Connection, prompt_run_id: str) -> dict | None:
    row = conn.execute(
        "SELECT id, raw_text, json_payload FROM answers WHERE prompt_run_id = ?",
        (prompt_run_id,),
    ).fetchone()
    if row is None:
        return None
    answer = dict(row)
    answer["payload"] = json.loads(answer.pop("json_payload") or "{}")
    return answer


def get_mentions_for_answer(conn: sqlite3.Connection, answer_id: str) -> list[dict]:
    rows = conn.execute(
        """
        SELECT brand, position, sentiment, snippet, confidence, list_rank
        FROM mentions WHERE answer_id = ? ORDER BY id
        """,
        (answer_id,),
    ).fetchall()
    return [dict(row) for row in rows]


def get_citations_for_answer(conn: sqlite3.Connection, answer_id: str) -> list[dict]:
    rows = conn.execute(
        "SELECT url, domain, rank, confidence FROM citations WHERE answer_id = ? ORDER BY rank",
        (answer_id,),
    ).fetchall()
    return [dict(row) for row in rows]
