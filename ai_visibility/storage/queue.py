"""
Durable job queue on the job_queue table.

Jobs move queued -> running -> done, or back to queued with exponential
backoff after a retryable failure, or to dead once attempts run out or the
failure is terminal. Delivery is at-least-once; the orchestrator's
idempotency guard makes repeated deliveries harmless.

Deduplication: enqueue() ignores a job whose dedupe key already exists,
whatever its status, so expanding a cluster twice adds nothing.

Claiming is a single UPDATE ... RETURNING on the oldest available job, so
two workers can never claim the same row.
"""

import json
import logging
import sqlite3
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Literal

from ai_visibility.config.constants import DEFAULT_MAX_JOB_ATTEMPTS
from ai_visibility.storage.db import connect
from ai_visibility.utils.time import format_timestamp, utc_now

logger = logging.getLogger(__name__)

JobKind = Literal["individual_prompt", "cluster_scan"]

JOB_QUEUED = "queued"
JOB_RUNNING = "running"
JOB_DONE = "done"
JOB_DEAD = "dead"

# Upper bound for one backoff delay
MAX_BACKOFF_SECONDS = 3600.0


@dataclass
class QueuedJob:
    """A claimed job."""

    id: int
    kind: str
    payload: dict[str, Any]
    dedupe_key: str
    attempts: int
    max_attempts: int


class JobQueue:
    """
    SQLite-backed job queue.

    Args:
        db_path: Database path (schema must be initialized)
        backoff_base_seconds: Delay after the first failed attempt; doubles
            with every further attempt
        max_attempts: Default attempts for jobs enqueued without one
        clock: Returns the current aware datetime (injectable for tests)
    """

    def __init__(
        self,
        db_path: str,
        backoff_base_seconds: float = 5.0,
        max_attempts: int = DEFAULT_MAX_JOB_ATTEMPTS,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.db_path = db_path
        self.backoff_base_seconds = backoff_base_seconds
        self.max_attempts = max_attempts
        self.clock = clock

    def _now(self) -> str:
        return format_timestamp(self.clock())

    def enqueue(
        self,
        kind: JobKind,
        payload: dict[str, Any],
        dedupe_key: str,
        max_attempts: int | None = None,
        conn: sqlite3.Connection | None = None,
    ) -> bool:
        """
        Add a job unless one with the same dedupe key exists.

        Args:
            kind: "individual_prompt" or "cluster_scan"
            payload: JSON-serializable job payload
            dedupe_key: Unique key (the idempotency key for individual jobs)
            max_attempts: Deliveries before the job is marked dead
            conn: Optional open connection; the caller commits

        Returns:
            True if a new job was inserted
        """
        now = self._now()
        params = (
            kind,
            json.dumps(payload),
            dedupe_key,
            max_attempts or self.max_attempts,
            now,
            now,
            now,
        )
        sql = """
            INSERT OR IGNORE INTO job_queue (
                kind, payload_json, dedupe_key, status, attempts, max_attempts,
                available_at, created_at, updated_at
            ) VALUES (?, ?, ?, 'queued', 0, ?, ?, ?, ?)
        """

        if conn is not None:
            inserted = conn.execute(sql, params).rowcount == 1
        else:
            with connect(self.db_path) as own_conn:
                inserted = own_conn.execute(sql, params).rowcount == 1
                own_conn.commit()

        if inserted:
            logger.debug(f"Enqueued {kind} job: {dedupe_key}")
        return inserted

    def claim(self, worker_id: str) -> QueuedJob | None:
        """Atomically claim the oldest available job, or None if there is none."""
        now = self._now()
        with connect(self.db_path) as conn:
            row = conn.execute(
                """
                UPDATE job_queue
                SET status = 'running',
                    attempts = attempts + 1,
                    claimed_by = ?,
                    claimed_at = ?,
                    updated_at = ?
                WHERE id = (
                    SELECT id FROM job_queue
                    WHERE status = 'queued' AND available_at <= ?
                    ORDER BY available_at, id
                    LIMIT 1
                ) AND status = 'queued'
                RETURNING id, kind, payload_json, dedupe_key, attempts, max_attempts
                """,
                (worker_id, now, now, now),
            ).fetchone()
            conn.commit()

        if row is None:
            return None

        return QueuedJob(
            id=row["id"],
            kind=row["kind"],
            payload=json.loads(row["payload_json"]),
            dedupe_key=row["dedupe_key"],
            attempts=row["attempts"],
            max_attempts=row["max_attempts"],
        )

    def complete(self, job_id: int) -> None:
        with connect(self.db_path) as conn:
            conn.execute(
                "UPDATE job_queue SET status = 'done', updated_at = ? WHERE id = ?",
                (self._now(), job_id),
            )
            conn.commit()

    def backoff_seconds(self, attempts: int) -> float:
        """
        Delay before the next delivery after `attempts` failed deliveries.

        Example:
            >>> JobQueue(":memory:", backoff_base_seconds=5).backoff_seconds(3)
            20.0
        """
        return min(MAX_BACKOFF_SECONDS, self.backoff_base_seconds * 2 ** max(attempts - 1, 0))

    def fail(self, job_id: int, error: str, retryable: bool) -> str:
        """
        Record a failed delivery.

        Retryable failures with attempts left go back to queued after the
        backoff delay; everything else becomes dead.

        Returns:
            New status ("queued" or "dead")
        """
        now_dt = self.clock()
        with connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT attempts, max_attempts FROM job_queue WHERE id = ?",
                (job_id,),
            ).fetchone()
            if row is None:
                raise ValueError(f"Unknown job id: {job_id}")

            if retryable and row["attempts"] < row["max_attempts"]:
                status = JOB_QUEUED
                available_at = format_timestamp(
                    now_dt + timedelta(seconds=self.backoff_seconds(row["attempts"]))
                )
            else:
                status = JOB_DEAD
                available_at = format_timestamp(now_dt)

            conn.execute(
                """
                UPDATE job_queue
                SET status = ?, available_at = ?, last_error = ?, updated_at = ?,
                    claimed_by = NULL
                WHERE id = ?
                """,
                (status, available_at, error[:2000], format_timestamp(now_dt), job_id),
            )
            conn.commit()

        logger.info(
            f"Job {job_id} failed (attempt {row['attempts']}/{row['max_attempts']}), now {status}"
        )
        return status

    def counts(self) -> dict[str, int]:
        """Jobs per status (every status present, zero if empty)."""
        counts = {JOB_QUEUED: 0, JOB_RUNNING: 0, JOB_DONE: 0, JOB_DEAD: 0}
        with connect(self.db_path) as conn:
            rows = conn.execute(
                "SELECT status, COUNT(*) AS n FROM job_queue GROUP BY status"
            ).fetchall()
        for row in rows:
            counts[row["status"]] = row["n"]
        return counts

    def pending(self) -> int:
        """Jobs that are queued or running."""
        counts = self.counts()
        return counts[JOB_QUEUED] + counts[JOB_RUNNING]

    def recover_running(self) -> int:
        """
        Requeue jobs left running by a crashed worker.

        Call at worker startup, before any claim.

        Returns:
            Number of jobs requeued
        """
        now = self._now()
        with connect(self.db_path) as conn:
            cursor = conn.execute(
                """
                UPDATE job_queue
                SET status = 'queued', available_at = ?, claimed_by = NULL, updated_at = ?
                WHERE status = 'running'
                """,
                (now, now),
            )
            conn.commit()
            recovered = cursor.rowcount

        if recovered:
            logger.warning(f"Requeued {recovered} job(s) left running by a previous worker")
        return recovered
