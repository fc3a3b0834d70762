"""
Bounded worker pool pulling jobs from the durable queue.

A fixed number of asyncio tasks each claim one job at a time and run it
through the orchestrator. Workers interleave only at provider calls and
sleeps: queue and database access is synchronous sqlite3, so every claim
and every DB round-trip holds the event loop for all workers until it
returns. Concurrency overlaps network latency, not storage.

Failure routing:
- invalid payloads and NON_RETRYABLE_ERRORS go straight to dead
- anything else is requeued with backoff until attempts run out

run(drain=True) returns once the queue has no claimable job and no job
is in flight (an in-flight cluster scan may still enqueue children).
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from pydantic import ValidationError

from ai_visibility.config.constants import DEFAULT_WORKER_CONCURRENCY
from ai_visibility.exceptions import NON_RETRYABLE_ERRORS
from ai_visibility.storage.queue import JOB_DEAD, JobQueue, QueuedJob
from ai_visibility.utils.logging import log_with_context
from ai_visibility.worker.orchestrator import JobOrchestrator

logger = logging.getLogger(__name__)

# Idle sleep while draining and other workers still hold jobs
DRAIN_POLL_SECONDS = 0.05


@dataclass
class PoolSummary:
    """Counters for one pool run."""

    processed: int = 0
    succeeded: int = 0
    duplicates: int = 0
    expanded: int = 0
    requeued: int = 0
    dead: int = 0

    @property
    def failed(self) -> int:
        return self.requeued + self.dead


class WorkerPool:
    """
    Fixed-concurrency job runner.

    Args:
        orchestrator: Runs individual jobs
        queue: Source of jobs
        concurrency: Number of concurrent workers
        poll_interval_seconds: Idle sleep when the queue is empty (non-drain)
        worker_id_prefix: Prefix of the claimed_by value
        sleep: Awaitable sleep (injectable for tests)

    Example:
        >>> pool = WorkerPool(orchestrator, queue, concurrency=5)
        >>> summary = await pool.run(drain=True)
        >>> summary.dead
        0
    """

    def __init__(
        self,
        orchestrator: JobOrchestrator,
        queue: JobQueue,
        concurrency: int = DEFAULT_WORKER_CONCURRENCY,
        poll_interval_seconds: float = 1.0,
        worker_id_prefix: str = "worker",
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if concurrency < 1:
            raise ValueError(f"concurrency must be >= 1 (got: {concurrency})")
        self.orchestrator = orchestrator
        self.queue = queue
        self.concurrency = concurrency
        self.poll_interval_seconds = poll_interval_seconds
        self.worker_id_prefix = worker_id_prefix
        self._sleep = sleep
        self._in_flight = 0
        self._stop = asyncio.Event()
        self.summary = PoolSummary()

    def stop(self) -> None:
        """Ask workers to exit after their current job."""
        self._stop.set()

    async def run(self, drain: bool = False) -> PoolSummary:
        """
        Run workers until stopped, or until the queue is drained.

        Args:
            drain: Return once no job is claimable and none is in flight

        Returns:
            Counters for this run
        """
        self.summary = PoolSummary()
        self._stop.clear()
        self.queue.recover_running()

        logger.info(f"Starting worker pool with {self.concurrency} worker(s), drain={drain}")
        workers = [
            asyncio.create_task(self._worker(f"{self.worker_id_prefix}-{index}", drain))
            for index in range(self.concurrency)
        ]
        await asyncio.gather(*workers)

        logger.info(
            "Worker pool finished",
            extra={
                "context": {
                    "processed": self.summary.processed,
                    "succeeded": self.summary.succeeded,
                    "duplicates": self.summary.duplicates,
                    "expanded": self.summary.expanded,
                    "requeued": self.summary.requeued,
                    "dead": self.summary.dead,
                }
            },
        )
        return self.summary

    async def _worker(self, worker_id: str, drain: bool) -> None:
        while not self._stop.is_set():
            job = self.queue.claim(worker_id)

            if job is None:
                if drain:
                    if self._in_flight == 0 and self.queue.pending() == 0:
                        return
                    await self._sleep(DRAIN_POLL_SECONDS)
                else:
                    await self._sleep(self.poll_interval_seconds)
                continue

            self._in_flight += 1
            try:
                await self._run_job(job)
            finally:
                self._in_flight -= 1

    async def _run_job(self, job: QueuedJob) -> None:
        self.summary.processed += 1
        try:
            result = await self.orchestrator.process(job.payload)
        except ValidationError as e:
            self._record_failure(job, e, retryable=False)
            return
        except NON_RETRYABLE_ERRORS as e:
            self._record_failure(job, e, retryable=False)
            return
        except Exception as e:
            self._record_failure(job, e, retryable=True)
            return

        self.queue.complete(job.id)
        if result.status == "duplicate":
            self.summary.duplicates += 1
        elif result.status == "expanded":
            self.summary.expanded += 1
        else:
            self.summary.succeeded += 1

    def _record_failure(self, job: QueuedJob, error: Exception, retryable: bool) -> None:
        status = self.queue.fail(job.id, f"{type(error).__name__}: {error}", retryable)
        if status == JOB_DEAD:
            self.summary.dead += 1
        else:
            self.summary.requeued += 1

        log_with_context(
            logger,
            logging.WARNING,
            f"Job {job.id} failed: {error}",
            context={
                "kind": job.kind,
                "attempt": job.attempts,
                "max_attempts": job.max_attempts,
                "retryable": retryable,
                "status": status,
                "error_type": type(error).__name__,
            },
            job_id=job.dedupe_key,
        )
