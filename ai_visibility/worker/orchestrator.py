"""
Job orchestrator: runs one queued job to completion.

Individual-prompt jobs follow a fixed sequence:

    1. idempotency guard      existing PromptRun -> duplicate, no side effects
    2. preconditions          prompt and enabled engine must exist
    3. budget guard           today's engine cost >= daily budget -> fail,
                              zero provider calls
    4. claim                  atomic insert of the PENDING PromptRun
    5. credential validation  missing / implausible key -> terminal failure
    6. execution              router.route_with_credential(), latency measured
    7. brand context          demo run or workspace brand terms
    8. extraction             cache -> extract() -> cache
    9. persistence            answer, mentions (each advisory), citations
    10. hallucination check   best-effort, failures become advisories
    11. finalization          SUCCESS, engine latency EMA, batch counters
    12. on error              classify, mark FAILED, batch failure, re-raise

The budget guard reads the day's total and decides without a lock: two
jobs for the same engine that pass the check concurrently can both spend.
This is an accepted race; strict enforcement would need the check and the
claim in one transaction.

Database steps run synchronously on the event loop (sqlite3); only the
provider call, LLM extraction and the brand lookup retry are suspension
points.

After a claim, a failure leaves a FAILED PromptRun behind, so a queue
retry of the same payload stops at the idempotency guard.

Cluster-scan jobs expand (cluster prompts x engine keys) into individual
jobs keyed "{cluster job key}:{prompt id}:{engine key}", skipping pairs
that already have a PromptRun; the queue's dedupe key makes a second
expansion a no-op.
"""

import asyncio
import logging
import sqlite3
import time
from collections.abc import Awaitable, Callable
from datetime import datetime

from ai_visibility.config.constants import MIN_CREDENTIAL_LENGTH
from ai_visibility.config.schema import RuntimeConfig
from ai_visibility.exceptions import (
    NON_RETRYABLE_ERRORS,
    AllProvidersFailedError,
    BudgetExceededError,
    CredentialInvalidError,
    CredentialMissingError,
    NotFoundError,
    ProviderAuthenticationError,
)
from ai_visibility.extractor import ExtractionOptions, StructuredExtraction, extract
from ai_visibility.outcomes import Advisory, JobResult, classify_error
from ai_visibility.providers.router import ProviderRouter, RoutedAnswer
from ai_visibility.storage import db
from ai_visibility.storage.cache import ExtractionCache
from ai_visibility.storage.queue import JobQueue
from ai_visibility.utils.logging import log_with_context
from ai_visibility.utils.time import start_of_local_day, utc_now
from ai_visibility.worker.brand_context import SleepCallable, resolve_brand_context
from ai_visibility.worker.hallucination import detect_hallucinations
from ai_visibility.worker.payloads import ClusterScanJob, IndividualPromptJob, parse_job_payload

logger = logging.getLogger(__name__)


def child_idempotency_key(cluster_key: str, prompt_id: str, engine_key: str) -> str:
    """
    Idempotency key of an individual job expanded from a cluster scan.

    Example:
        >>> child_idempotency_key("scan-1", "p1", "OPENAI")
        'scan-1:p1:OPENAI'
    """
    return f"{cluster_key}:{prompt_id}:{engine_key.upper()}"


def dedupe_mentions(mentions: list) -> list:
    """One mention per lower(brand) + position; first occurrence wins."""
    unique: dict = {}
    for mention in mentions:
        unique.setdefault(mention.dedupe_key(), mention)
    return list(unique.values())


class JobOrchestrator:
    """
    Executes individual-prompt and cluster-scan jobs.

    Args:
        config: Runtime configuration (settings and credentials)
        router: Provider router used for answers and llm extraction
        queue: Queue that receives jobs expanded from cluster scans
        cache: Extraction cache; None disables caching
        sleep: Awaitable sleep used by the brand lookup retry
        clock: Current aware datetime (budget day boundary)
        monotonic: Monotonic clock in seconds (latency measurement)
    """

    def __init__(
        self,
        config: RuntimeConfig,
        router: ProviderRouter,
        queue: JobQueue,
        cache: ExtractionCache | None = None,
        sleep: SleepCallable = asyncio.sleep,
        clock: Callable[[], datetime] = utc_now,
        monotonic: Callable[[], float] = time.perf_counter,
    ):
        self.config = config
        self.router = router
        self.queue = queue
        self.cache = cache
        self.db_path = config.settings.database_path
        self._sleep = sleep
        self._clock = clock
        self._monotonic = monotonic

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def process(self, payload: dict) -> JobResult:
        """
        Validate a raw queue payload and run the matching job.

        Raises:
            pydantic.ValidationError: If the payload fits neither job shape
            AIVisibilityError: Fatal job failures (see run_individual)
        """
        job = parse_job_payload(payload)
        if isinstance(job, ClusterScanJob):
            return await self.run_cluster_scan(job)
        return await self.run_individual(job)

    # ------------------------------------------------------------------
    # Individual prompt
    # ------------------------------------------------------------------

    async def run_individual(self, job: IndividualPromptJob) -> JobResult:
        """
        Run one prompt against one engine, exactly once per idempotency key.

        Returns:
            JobResult with status "success" or "duplicate"

        Raises:
            NotFoundError: Prompt or enabled engine missing
            BudgetExceededError: Engine's daily budget already spent
            CredentialMissingError / CredentialInvalidError: Unusable key
            ProviderAuthenticationError: Engine rejected the key
            AllProvidersFailedError: Engine call failed
            sqlite3.Error: Persistence failure on the primary records
        """
        key = job.idempotency_key
        log_with_context(
            logger,
            logging.INFO,
            "Job started",
            context={
                "workspace_id": job.workspace_id,
                "prompt_id": job.prompt_id,
                "engine_key": job.engine_key,
                "demo_run_id": job.demo_run_id,
            },
            job_id=key,
        )

        with db.connect(self.db_path) as conn:
            if db.prompt_run_exists(conn, key):
                log_with_context(logger, logging.INFO, "Duplicate delivery ignored", job_id=key)
                return JobResult(status="duplicate", idempotency_key=key)

        run_id: str | None = None

        try:
            with db.connect(self.db_path) as conn:
                prompt, engine = self._check_preconditions(conn, job)
                self._check_budget(conn, engine)

                run_id = db.claim_prompt_run(
                    conn, job.workspace_id, prompt["id"], engine["id"], key
                )
                conn.commit()

            if run_id is None:
                log_with_context(
                    logger, logging.INFO, "Concurrent delivery won the claim", job_id=key
                )
                return JobResult(status="duplicate", idempotency_key=key)

            api_key = self._resolve_credential(job.engine_key)

            started = self._monotonic()
            routed = await self.router.route_with_credential(job.engine_key, api_key, prompt["text"])
            latency_ms = (self._monotonic() - started) * 1000.0
            self._raise_for_fallback(routed, job.engine_key)

            brands = await resolve_brand_context(
                self.db_path,
                job.workspace_id,
                job.demo_run_id,
                attempts=self.config.settings.worker.brand_lookup_attempts,
                delay_seconds=self.config.settings.worker.brand_lookup_delay_seconds,
                sleep=self._sleep,
            )

            result = JobResult(
                status="success",
                idempotency_key=key,
                prompt_run_id=run_id,
                provider_used=routed.provider_used,
                cost_cents=routed.cost_cents,
            )

            extraction = await self._extract(job, prompt, routed.answer_text, brands, result)
            self._persist(run_id, routed, extraction, result)
            self._detect_hallucinations(job, run_id, routed.answer_text, brands, result)

            with db.connect(self.db_path) as conn:
                db.mark_prompt_run_succeeded(
                    conn, run_id, routed.cost_cents, routed.provider_used
                )
                db.record_engine_run(conn, engine["id"], latency_ms)
                if job.demo_run_id:
                    db.record_batch_job_outcome(conn, job.demo_run_id, succeeded=True)
                conn.commit()

        except Exception as e:
            self._handle_failure(job, run_id, e)
            raise

        log_with_context(
            logger,
            logging.INFO,
            "Job succeeded",
            context={
                "prompt_run_id": run_id,
                "provider_used": result.provider_used,
                "cost_cents": result.cost_cents,
                "latency_ms": round(latency_ms, 1),
                "cache_hit": result.cache_hit,
                "mentions": result.mentions_created,
                "citations": result.citations_created,
                "advisories": len(result.advisories),
            },
            job_id=key,
        )
        return result

    def _check_preconditions(
        self, conn: sqlite3.Connection, job: IndividualPromptJob
    ) -> tuple[dict, dict]:
        prompt = db.get_prompt(conn, job.prompt_id)
        if prompt is None or prompt["workspace_id"] != job.workspace_id:
            raise NotFoundError("prompt", job.prompt_id)

        engine = db.get_enabled_engine(conn, job.workspace_id, job.engine_key)
        if engine is None:
            raise NotFoundError(
                "engine",
                job.engine_key,
                f"Engine not found or disabled: {job.engine_key}",
            )
        return prompt, engine

    def _check_budget(self, conn: sqlite3.Connection, engine: dict) -> None:
        timezone = engine["timezone"] or "UTC"
        try:
            day_start = start_of_local_day(timezone, self._clock())
        except ValueError:
            logger.warning(f"Engine {engine['key']} has unknown timezone {timezone!r}, using UTC")
            day_start = start_of_local_day("UTC", self._clock())

        spent = db.sum_engine_cost_since(conn, engine["id"], day_start)
        budget = engine["daily_budget_cents"]
        if spent >= budget:
            raise BudgetExceededError(
                f"Daily budget exceeded for engine {engine['key']}: "
                f"spent {spent} of {budget} cents",
                engine_key=engine["key"],
                spent_cents=spent,
                budget_cents=budget,
            )

    def _resolve_credential(self, engine_key: str) -> str:
        name, value = self.config.credential_for_engine(engine_key)
        if value is None or not value.strip():
            raise CredentialMissingError(
                f"Missing API key for engine {engine_key}. Set {name}.",
                engine_key=engine_key,
                credential_name=name,
            )
        if len(value.strip()) < MIN_CREDENTIAL_LENGTH:
            raise CredentialInvalidError(
                f"API key in {name} is too short to be valid for engine {engine_key}",
                engine_key=engine_key,
                credential_name=name,
            )
        return value

    @staticmethod
    def _raise_for_fallback(routed: RoutedAnswer, engine_key: str) -> None:
        if not routed.fallback:
            return
        details = "; ".join(f"{a['provider']}: {a['error']}" for a in routed.attempts)
        if routed.auth_failed:
            raise ProviderAuthenticationError(
                f"Authentication failed for engine {engine_key}: {details}",
                provider=engine_key,
            )
        raise AllProvidersFailedError(
            f"Engine {engine_key} produced no answer ({routed.failure_kind})"
            + (f": {details}" if details else ""),
            failure_kind=routed.failure_kind or "",
            attempts=routed.attempts,
        )

    def _extraction_options(self) -> ExtractionOptions:
        settings = self.config.settings.extraction
        return ExtractionOptions(
            method=settings.method,
            min_confidence=(
                settings.llm_min_confidence
                if settings.method == "llm"
                else settings.brand_min_confidence
            ),
            include_insights=settings.include_insights,
            context_window=settings.context_window,
            fuzzy_threshold=settings.fuzzy_threshold,
            max_answer_chars=settings.max_answer_chars,
        )

    def _extraction_ask(self, workspace_id: str) -> Callable[[str], Awaitable[str]]:
        async def ask(instruction: str) -> str:
            routed = await self.router.route(workspace_id, instruction)
            if routed.fallback:
                raise AllProvidersFailedError(
                    "No provider available for structured extraction",
                    failure_kind=routed.failure_kind or "",
                    attempts=routed.attempts,
                )
            return routed.answer_text

        return ask

    async def _extract(
        self,
        job: IndividualPromptJob,
        prompt: dict,
        answer_text: str,
        brands: list[str],
        result: JobResult,
    ) -> StructuredExtraction:
        if self.cache is not None and self.config.settings.extraction.cache_enabled:
            lookup = self.cache.get(answer_text, prompt["id"], job.engine_key)
            if lookup.error:
                result.advisories.append(
                    Advisory(step="cache_read", error=lookup.error, error_type="CacheReadError")
                )
            if lookup.hit and lookup.data is not None:
                result.cache_hit = True
                cached = StructuredExtraction.from_dict(lookup.data)
                cached.mentions = dedupe_mentions(cached.mentions)
                return cached

        options = self._extraction_options()
        ask = self._extraction_ask(job.workspace_id) if options.method == "llm" else None
        extraction = await extract(answer_text, prompt["text"], brands, options, ask=ask)
        extraction.mentions = dedupe_mentions(extraction.mentions)

        if extraction.metadata.parse_stage == "empty":
            log_with_context(
                logger,
                logging.WARNING,
                "Extraction output could not be parsed",
                context={"prompt_id": prompt["id"], "engine_key": job.engine_key},
                job_id=job.idempotency_key,
            )

        # the empty bundle is a failure marker, not a result worth reusing
        if (
            self.cache is not None
            and self.config.settings.extraction.cache_enabled
            and extraction.metadata.confidence > 0
        ):
            advisory = self.cache.put(
                answer_text,
                prompt["id"],
                job.engine_key,
                extraction.to_dict(),
                extraction.metadata.to_dict(),
            )
            if advisory is not None:
                result.advisories.append(advisory)

        return extraction

    def _persist(
        self,
        run_id: str,
        routed: RoutedAnswer,
        extraction: StructuredExtraction,
        result: JobResult,
    ) -> None:
        payload = {
            "provider": routed.meta,
            "providerUsed": routed.provider_used,
            "tokensUsed": routed.tokens_used,
            "extraction": extraction.to_dict(),
            "cacheHit": result.cache_hit,
        }

        with db.connect(self.db_path) as conn:
            answer_id = db.insert_answer(conn, run_id, routed.answer_text, payload)
            conn.commit()

            for mention in extraction.mentions:
                try:
                    db.insert_mention(
                        conn,
                        answer_id,
                        mention.brand,
                        mention.position,
                        mention.sentiment,
                        mention.snippet,
                        mention.confidence,
                        mention.list_rank,
                    )
                except sqlite3.Error as e:
                    logger.warning(f"Failed to store mention for brand {mention.brand!r}: {e}")
                    result.advisories.append(Advisory.from_exception("mention_insert", e))
                    continue
                result.mentions_created += 1

            for citation in extraction.citations:
                try:
                    db.insert_citation(
                        conn,
                        answer_id,
                        citation.url,
                        citation.domain,
                        citation.rank,
                        citation.confidence,
                    )
                except sqlite3.Error as e:
                    logger.warning(f"Failed to store citation {citation.url!r}: {e}")
                    result.advisories.append(Advisory.from_exception("citation_insert", e))
                    continue
                result.citations_created += 1

            conn.commit()

    def _detect_hallucinations(
        self,
        job: IndividualPromptJob,
        run_id: str,
        answer_text: str,
        brands: list[str],
        result: JobResult,
    ) -> None:
        try:
            with db.connect(self.db_path) as conn:
                profile = db.get_workspace_profile(conn, job.workspace_id)
                if profile is None:
                    logger.debug(f"No knowledge profile for workspace {job.workspace_id}")
                    return

                findings = detect_hallucinations(answer_text, profile, brands)
                for finding in findings:
                    db.insert_hallucination_alert(
                        conn,
                        job.workspace_id,
                        run_id,
                        job.engine_key,
                        finding.fact_type,
                        finding.ai_statement,
                        finding.correct_fact,
                        finding.severity,
                        finding.confidence,
                        finding.context,
                    )
                conn.commit()
        except Exception as e:
            logger.warning(f"Hallucination detection failed: {e}")
            result.advisories.append(Advisory.from_exception("hallucination_detection", e))
            return

        if findings:
            logger.info(f"Detected {len(findings)} hallucination(s) for run {run_id}")

    def _handle_failure(
        self, job: IndividualPromptJob, run_id: str | None, error: Exception
    ) -> None:
        category = classify_error(error)
        log_with_context(
            logger,
            logging.ERROR,
            f"Job failed: {error}",
            context={
                "error_type": type(error).__name__,
                "category": category,
                "prompt_run_id": run_id,
                "engine_key": job.engine_key,
            },
            job_id=job.idempotency_key,
        )

        # before a claim a retryable error will be redelivered and counted then
        count_for_batch = job.demo_run_id is not None and (
            run_id is not None or isinstance(error, NON_RETRYABLE_ERRORS)
        )

        try:
            with db.connect(self.db_path) as conn:
                if run_id is not None:
                    db.mark_prompt_run_failed(conn, run_id, f"[{category}] {error}")
                if count_for_batch:
                    db.record_batch_job_outcome(conn, job.demo_run_id, succeeded=False)
                conn.commit()
        except sqlite3.Error as db_error:
            logger.error(f"Failed to record job failure for {job.idempotency_key}: {db_error}")

    # ------------------------------------------------------------------
    # Cluster scan
    # ------------------------------------------------------------------

    async def run_cluster_scan(self, job: ClusterScanJob) -> JobResult:
        """
        Expand a cluster into individual jobs.

        Returns:
            JobResult with status "expanded" and the number of jobs enqueued

        Raises:
            NotFoundError: If the cluster doesn't exist in the workspace
        """
        limit = job.max_prompts_per_cluster or self.config.settings.worker.max_prompts_per_cluster
        enqueued = 0

        with db.connect(self.db_path) as conn:
            cluster = db.get_cluster(conn, job.cluster_id, job.workspace_id)
            if cluster is None:
                raise NotFoundError("cluster", job.cluster_id)

            prompt_texts = cluster["prompts"][:limit]
            for text in prompt_texts:
                prompt_id = db.get_or_create_prompt(conn, job.workspace_id, text, cluster["intent"])

                for engine_key in job.engine_keys:
                    key = child_idempotency_key(job.idempotency_key, prompt_id, engine_key)
                    if db.prompt_run_exists(conn, key):
                        continue

                    child = IndividualPromptJob(
                        workspace_id=job.workspace_id,
                        prompt_id=prompt_id,
                        engine_key=engine_key,
                        idempotency_key=key,
                        user_id=job.user_id,
                        demo_run_id=job.demo_run_id,
                    )
                    if self.queue.enqueue("individual_prompt", child.to_payload(), key, conn=conn):
                        enqueued += 1

            conn.commit()

        log_with_context(
            logger,
            logging.INFO,
            "Cluster scan expanded",
            context={
                "cluster_id": job.cluster_id,
                "prompts": len(prompt_texts),
                "engines": job.engine_keys,
                "jobs_enqueued": enqueued,
            },
            job_id=job.idempotency_key,
        )
        return JobResult(
            status="expanded", idempotency_key=job.idempotency_key, jobs_enqueued=enqueued
        )
