"""
CLI entrypoint for AI Visibility Jobs.

Dual-mode output: Rich tables and panels for humans (--format text), one
JSON object on stdout for automation (--format json), tab-separated
values with --quiet.

Commands:
    init-db: Create or upgrade the SQLite schema
    enqueue-prompt: Queue one prompt against one engine
    enqueue-cluster: Queue a cluster scan (prompts x engines)
    worker: Run the worker pool (--drain to stop when the queue is empty)
    queue-status: Job counts per status
    cache stats / cache purge: Extraction cache maintenance
    demo: Offline end-to-end run with mock answer engines
    validate: Validate configuration and report configured credentials

Exit codes:
    0: Success
    1: Configuration error (invalid YAML, unknown settings)
    2: Database error (cannot create/access SQLite)
    3: Partial failure (some jobs ended dead)
    4: Complete failure (every processed job ended dead)

Examples:
    ai-visibility init-db --config ai_visibility.yaml
    ai-visibility enqueue-cluster -w ws-1 --cluster c-1 --engines OPENAI,GEMINI
    ai-visibility worker --drain --format json

Security:
    - API keys are read from environment variables only
    - Key values are never printed; validate lists variable names only
"""

import asyncio
import sqlite3
import tempfile
import uuid
from pathlib import Path

import typer
from rich.traceback import install as install_rich_traceback

from ai_visibility.config.constants import DEFAULT_ENGINE_MODELS
from ai_visibility.config.loader import load_config
from ai_visibility.config.schema import RuntimeConfig, credential_name_for
from ai_visibility.exceptions import ConfigurationError, DatabaseError
from ai_visibility.providers import MockProviderAdapter, ProviderRouter
from ai_visibility.storage import db
from ai_visibility.storage.cache import ExtractionCache
from ai_visibility.storage.queue import JobQueue
from ai_visibility.utils.console import (
    error,
    info,
    output_mode,
    print_banner,
    print_counts_table,
    print_mentions_table,
    print_pool_summary,
    spinner,
    success,
    warning,
)
from ai_visibility.utils.logging import setup_logging
from ai_visibility.worker.orchestrator import JobOrchestrator
from ai_visibility.worker.payloads import ClusterScanJob, IndividualPromptJob
from ai_visibility.worker.pool import PoolSummary, WorkerPool

install_rich_traceback(show_locals=False)

# Exit codes
EXIT_SUCCESS = 0
EXIT_CONFIG_ERROR = 1
EXIT_DB_ERROR = 2
EXIT_PARTIAL_FAILURE = 3
EXIT_COMPLETE_FAILURE = 4

app = typer.Typer(
    name="ai-visibility",
    help="Run prompts against AI answer engines and track brand visibility",
    add_completion=False,
)
cache_app = typer.Typer(help="Extraction cache maintenance", add_completion=False)
app.add_typer(cache_app, name="cache")

ConfigOption = typer.Option(
    None,
    "--config",
    "-c",
    help="Path to YAML settings file (defaults apply when omitted)",
    dir_okay=False,
)
FormatOption = typer.Option(
    "text",
    "--format",
    "-f",
    help="Output format: 'text' (human-friendly) or 'json' (machine-readable)",
)
QuietOption = typer.Option(False, "--quiet", "-q", help="Minimal output (tab-separated values)")
VerboseOption = typer.Option(False, "--verbose", "-v", help="Enable debug logging")


def _setup(format: str, quiet: bool, verbose: bool) -> None:
    if format not in ("text", "json"):
        output_mode.reset()
        error(f"Invalid format: {format}. Must be 'text' or 'json'")
        raise typer.Exit(EXIT_CONFIG_ERROR)
    output_mode.format = format
    output_mode.quiet = quiet
    # JSON log lines would interleave with Rich output in human mode
    setup_logging(verbose=verbose, quiet_logs=output_mode.is_human())


def _load_runtime(config: Path | None) -> RuntimeConfig:
    try:
        return load_config(config)
    except ConfigurationError as e:
        error(str(e))
        output_mode.flush_json()
        raise typer.Exit(EXIT_CONFIG_ERROR) from e


def _init_database(runtime: RuntimeConfig) -> str:
    db_path = runtime.settings.database_path
    try:
        db.init_db_if_needed(db_path)
    except DatabaseError as e:
        error(f"Database error: {e}")
        output_mode.flush_json()
        raise typer.Exit(EXIT_DB_ERROR) from e
    return db_path


def _build_queue(runtime: RuntimeConfig) -> JobQueue:
    worker = runtime.settings.worker
    return JobQueue(
        runtime.settings.database_path,
        backoff_base_seconds=worker.backoff_base_seconds,
        max_attempts=worker.max_attempts,
    )


def _build_cache(runtime: RuntimeConfig) -> ExtractionCache | None:
    extraction = runtime.settings.extraction
    if not extraction.cache_enabled:
        return None
    return ExtractionCache(runtime.settings.database_path, ttl_seconds=extraction.cache_ttl_seconds)


def _exit_code(summary: PoolSummary) -> int:
    """
    Map a pool run to an exit code.

    Example:
        >>> _exit_code(PoolSummary(processed=2, succeeded=1, dead=1))
        3
    """
    if summary.dead == 0:
        return EXIT_SUCCESS
    if summary.succeeded + summary.duplicates + summary.expanded > 0:
        return EXIT_PARTIAL_FAILURE
    return EXIT_COMPLETE_FAILURE


def _summary_dict(summary: PoolSummary) -> dict[str, int]:
    return {
        "processed": summary.processed,
        "succeeded": summary.succeeded,
        "duplicates": summary.duplicates,
        "expanded": summary.expanded,
        "requeued": summary.requeued,
        "dead": summary.dead,
    }


def _read_version() -> str:
    from importlib.metadata import PackageNotFoundError, version

    try:
        return version("ai-visibility-jobs")
    except PackageNotFoundError:
        return "0.1.0"


# ============================================================================
# Commands
# ============================================================================


@app.command("init-db")
def init_db(
    config: Path | None = ConfigOption,
    format: str = FormatOption,
    verbose: bool = VerboseOption,
):
    """Create the database or apply pending schema migrations."""
    _setup(format, False, verbose)
    runtime = _load_runtime(config)
    db_path = _init_database(runtime)

    with db.connect(db_path) as conn:
        version = db.get_schema_version(conn)

    if output_mode.is_agent():
        output_mode.add_json("database_path", db_path)
        output_mode.add_json("schema_version", version)
    success(f"Database ready at {db_path} (schema v{version})")
    output_mode.flush_json()


@app.command("enqueue-prompt")
def enqueue_prompt(
    workspace: str = typer.Option(..., "--workspace", "-w", help="Workspace id"),
    prompt: str = typer.Option(..., "--prompt", "-p", help="Prompt text (created if new)"),
    engine: str = typer.Option(..., "--engine", "-e", help="Engine key, e.g. OPENAI"),
    key: str | None = typer.Option(None, "--key", "-k", help="Idempotency key (random if omitted)"),
    demo_run: str | None = typer.Option(None, "--demo-run", help="Batch (demo run) id"),
    config: Path | None = ConfigOption,
    format: str = FormatOption,
    verbose: bool = VerboseOption,
):
    """Queue one prompt against one engine."""
    _setup(format, False, verbose)
    runtime = _load_runtime(config)
    db_path = _init_database(runtime)

    idempotency_key = key or uuid.uuid4().hex
    with db.connect(db_path) as conn:
        prompt_id = db.get_or_create_prompt(conn, workspace, prompt)
        conn.commit()

    try:
        job = IndividualPromptJob(
            workspace_id=workspace,
            prompt_id=prompt_id,
            engine_key=engine,
            idempotency_key=idempotency_key,
            demo_run_id=demo_run,
        )
    except ValueError as e:
        error(f"Invalid job: {e}")
        output_mode.flush_json()
        raise typer.Exit(EXIT_CONFIG_ERROR) from e

    inserted = _build_queue(runtime).enqueue("individual_prompt", job.to_payload(), idempotency_key)

    if output_mode.is_agent():
        output_mode.add_json("idempotency_key", idempotency_key)
        output_mode.add_json("prompt_id", prompt_id)
        output_mode.add_json("enqueued", inserted)
    if inserted:
        success(f"Queued prompt {prompt_id} on {job.engine_key} (key {idempotency_key})")
    else:
        warning(f"A job with key {idempotency_key} is already queued")
    output_mode.flush_json()


@app.command("enqueue-cluster")
def enqueue_cluster(
    workspace: str = typer.Option(..., "--workspace", "-w", help="Workspace id"),
    cluster: str = typer.Option(..., "--cluster", help="Prompt cluster id"),
    engines: str = typer.Option(..., "--engines", "-e", help="Comma-separated engine keys"),
    key: str | None = typer.Option(None, "--key", "-k", help="Idempotency key (random if omitted)"),
    max_prompts: int | None = typer.Option(None, "--max-prompts", help="Prompts taken from the cluster"),
    demo_run: str | None = typer.Option(None, "--demo-run", help="Batch (demo run) id"),
    config: Path | None = ConfigOption,
    format: str = FormatOption,
    verbose: bool = VerboseOption,
):
    """Queue a cluster scan that expands into prompt x engine jobs."""
    _setup(format, False, verbose)
    runtime = _load_runtime(config)
    _init_database(runtime)

    idempotency_key = key or uuid.uuid4().hex
    try:
        job = ClusterScanJob(
            workspace_id=workspace,
            cluster_id=cluster,
            engine_keys=[e for e in engines.split(",") if e.strip()],
            idempotency_key=idempotency_key,
            max_prompts_per_cluster=max_prompts,
            demo_run_id=demo_run,
        )
    except ValueError as e:
        error(f"Invalid job: {e}")
        output_mode.flush_json()
        raise typer.Exit(EXIT_CONFIG_ERROR) from e

    inserted = _build_queue(runtime).enqueue("cluster_scan", job.to_payload(), idempotency_key)

    if output_mode.is_agent():
        output_mode.add_json("idempotency_key", idempotency_key)
        output_mode.add_json("enqueued", inserted)
    if inserted:
        success(f"Queued cluster scan {cluster} on {', '.join(job.engine_keys)}")
    else:
        warning(f"A job with key {idempotency_key} is already queued")
    output_mode.flush_json()


@app.command()
def worker(
    drain: bool = typer.Option(False, "--drain", help="Exit when the queue is empty"),
    concurrency: int | None = typer.Option(None, "--concurrency", help="Override worker.concurrency"),
    config: Path | None = ConfigOption,
    format: str = FormatOption,
    quiet: bool = QuietOption,
    verbose: bool = VerboseOption,
):
    """
    Run the worker pool.

    Without --drain the pool keeps polling until interrupted.
    """
    _setup(format, quiet, verbose)
    runtime = _load_runtime(config)
    _init_database(runtime)
    print_banner(_read_version())

    queue = _build_queue(runtime)
    orchestrator = JobOrchestrator(
        runtime,
        ProviderRouter.from_config(runtime),
        queue,
        cache=_build_cache(runtime),
    )
    pool = WorkerPool(
        orchestrator,
        queue,
        concurrency=concurrency or runtime.settings.worker.concurrency,
        poll_interval_seconds=runtime.settings.worker.poll_interval_seconds,
    )

    try:
        with spinner("Processing jobs..."):
            summary = asyncio.run(pool.run(drain=drain))
    except KeyboardInterrupt:
        pool.stop()
        warning("Interrupted; jobs left running are requeued on next start")
        summary = pool.summary
    except sqlite3.Error as e:
        error(f"Database error: {e}")
        output_mode.flush_json()
        raise typer.Exit(EXIT_DB_ERROR) from e

    print_pool_summary(_summary_dict(summary))
    raise typer.Exit(_exit_code(summary))


@app.command("queue-status")
def queue_status(
    config: Path | None = ConfigOption,
    format: str = FormatOption,
    quiet: bool = QuietOption,
):
    """Show job counts per status."""
    _setup(format, quiet, False)
    runtime = _load_runtime(config)
    _init_database(runtime)

    print_counts_table("Queue", _build_queue(runtime).counts())
    output_mode.flush_json()


@cache_app.command("stats")
def cache_stats(
    config: Path | None = ConfigOption,
    format: str = FormatOption,
    quiet: bool = QuietOption,
):
    """Show extraction cache entries and hits."""
    _setup(format, quiet, False)
    runtime = _load_runtime(config)
    db_path = _init_database(runtime)

    stats = ExtractionCache(db_path, ttl_seconds=runtime.settings.extraction.cache_ttl_seconds).stats()
    print_counts_table("Extraction Cache", stats)
    output_mode.flush_json()


@cache_app.command("purge")
def cache_purge(
    config: Path | None = ConfigOption,
    format: str = FormatOption,
):
    """Delete expired extraction cache entries."""
    _setup(format, False, False)
    runtime = _load_runtime(config)
    db_path = _init_database(runtime)

    removed = ExtractionCache(
        db_path, ttl_seconds=runtime.settings.extraction.cache_ttl_seconds
    ).purge_expired()

    if output_mode.is_agent():
        output_mode.add_json("removed", removed)
    success(f"Removed {removed} expired cache entr{'y' if removed == 1 else 'ies'}")
    output_mode.flush_json()


@app.command()
def validate(
    config: Path | None = ConfigOption,
    format: str = FormatOption,
):
    """
    Validate configuration without running anything.

    Lists which engine credentials are set (names only).
    """
    _setup(format, False, False)
    runtime = _load_runtime(config)

    configured = []
    missing = []
    for engine_key in DEFAULT_ENGINE_MODELS:
        name, value = runtime.credential_for_engine(engine_key)
        (configured if value else missing).append(name)

    router_providers = sorted(p for p, keys in runtime.router_credentials.items() if keys)

    if output_mode.is_agent():
        output_mode.add_json("valid", True)
        output_mode.add_json("database_path", runtime.settings.database_path)
        output_mode.add_json("extraction_method", runtime.settings.extraction.method)
        output_mode.add_json("engine_credentials", configured)
        output_mode.add_json("missing_credentials", missing)
        output_mode.add_json("router_providers", router_providers)
        output_mode.flush_json()
        raise typer.Exit(EXIT_SUCCESS)

    success("Configuration is valid")
    info(f"Database: {runtime.settings.database_path}")
    info(f"Extraction method: {runtime.settings.extraction.method}")
    info(f"Router providers with credentials: {', '.join(router_providers) or 'none'}")
    for name in missing:
        warning(f"{name} is not set")


# ============================================================================
# Demo
# ============================================================================

DEMO_WORKSPACE = "demo-workspace"
DEMO_ENGINES = ("OPENAI", "PERPLEXITY")
DEMO_PROMPTS = (
    "What are the best vacation rental sites?",
    "Where should I book a cabin for a family trip?",
)
DEMO_ANSWERS = {
    DEMO_PROMPTS[0]: (
        "Here are the top vacation rental platforms:\n"
        "1. Airbnb - the largest selection and a trusted review system.\n"
        "2. Vrbo - great for families who want a whole home.\n"
        "3. Booking.com - also lists apartments and villas.\n"
        "Sources: https://www.airbnb.com/help and expedia.com"
    ),
    DEMO_PROMPTS[1]: (
        "For family cabins, Vrbo is excellent and Airbnb offers many unique stays. "
        "Hipcamp is a good option for rustic cabins."
    ),
}


def _demo_engine_registry(cost_cents: int) -> dict:
    def factory(api_key: str, model_name: str, timeout: float) -> MockProviderAdapter:
        return MockProviderAdapter(
            responses=dict(DEMO_ANSWERS), model_name=model_name, cost_cents=cost_cents
        )

    return {engine_key: factory for engine_key in DEMO_ENGINES}


@app.command()
def demo(
    format: str = FormatOption,
    quiet: bool = QuietOption,
    db_path: Path | None = typer.Option(
        None, "--db", help="Database file (a temporary one is used when omitted)"
    ),
):
    """
    Run an offline end-to-end demo with mock answer engines.

    Creates a workspace, a two-prompt cluster and two engines, queues a
    cluster scan linked to a demo run, drains the queue and shows the
    stored mentions. No API keys or network access needed.
    """
    _setup(format, quiet, False)

    with tempfile.TemporaryDirectory() as tmp_dir:
        path = str(db_path or Path(tmp_dir) / "demo.db")
        runtime = RuntimeConfig.model_validate(
            {
                "settings": {"database_path": path},
                "engine_credentials": {
                    credential_name_for(k): f"demo-key-{k.lower()}-0000" for k in DEMO_ENGINES
                },
            }
        )
        _init_database(runtime)

        with db.connect(path) as conn:
            db.insert_workspace(conn, DEMO_WORKSPACE, "Airbnb", "https://www.airbnb.com")
            for engine_key in DEMO_ENGINES:
                if db.get_enabled_engine(conn, DEMO_WORKSPACE, engine_key) is None:
                    db.insert_engine(conn, DEMO_WORKSPACE, engine_key, daily_budget_cents=100)
            cluster_id = db.insert_cluster(
                conn, DEMO_WORKSPACE, "Vacation rentals", list(DEMO_PROMPTS), intent="discovery"
            )
            demo_run_id = db.insert_demo_run(
                conn,
                "Airbnb",
                "https://www.airbnb.com",
                analysis_jobs_total=len(DEMO_PROMPTS) * len(DEMO_ENGINES),
                workspace_id=DEMO_WORKSPACE,
            )
            conn.commit()

        queue = _build_queue(runtime)
        scan = ClusterScanJob(
            workspace_id=DEMO_WORKSPACE,
            cluster_id=cluster_id,
            engine_keys=list(DEMO_ENGINES),
            idempotency_key=f"demo-{demo_run_id}",
            demo_run_id=demo_run_id,
        )
        queue.enqueue("cluster_scan", scan.to_payload(), scan.idempotency_key)

        router = ProviderRouter.from_config(
            runtime, registry={}, engine_registry=_demo_engine_registry(cost_cents=1)
        )
        orchestrator = JobOrchestrator(runtime, router, queue, cache=_build_cache(runtime))
        pool = WorkerPool(orchestrator, queue, concurrency=runtime.settings.worker.concurrency)

        with spinner("Running demo jobs..."):
            summary = asyncio.run(pool.run(drain=True))

        with db.connect(path) as conn:
            batch = db.get_demo_run(conn, demo_run_id)
            mentions = [
                dict(row)
                for row in conn.execute(
                    "SELECT brand, position, sentiment, confidence, list_rank FROM mentions "
                    "ORDER BY answer_id, position"
                ).fetchall()
            ]

        print_mentions_table(mentions)
        if output_mode.is_agent():
            output_mode.add_json("demo_run", batch)
        else:
            info(f"Demo run status: {batch['status']} ({batch['progress']}%)")

        print_pool_summary(_summary_dict(summary))

    raise typer.Exit(_exit_code(summary))


if __name__ == "__main__":
    app()
