"""
Tests for the CLI (cli module).

Tests cover:
- init-db, validate, enqueue-prompt, enqueue-cluster, queue-status
- worker --drain exit codes
- cache stats and purge
- The offline demo
- JSON (agent) and quiet output modes
- Exit codes for configuration and database errors

JSON output is parsed from stdout only; logs go to stderr.
"""

import json
import logging

import pytest
from typer.testing import CliRunner

from ai_visibility.cli import (
    EXIT_COMPLETE_FAILURE,
    EXIT_CONFIG_ERROR,
    EXIT_DB_ERROR,
    EXIT_PARTIAL_FAILURE,
    EXIT_SUCCESS,
    _exit_code,
    app,
)
from ai_visibility.storage import db
from ai_visibility.utils.console import output_mode
from ai_visibility.worker.pool import PoolSummary

CREDENTIAL_VARIABLES = (
    "OPENAI_API_KEY",
    "ANTHROPIC_API_KEY",
    "GEMINI_API_KEY",
    "PERPLEXITY_API_KEY",
    "SERPAPI_KEY",
    "GOOGLE_AI_API_KEY",
    "OPENAI_MODEL",
    "ANTHROPIC_MODEL",
    "GEMINI_MODEL",
)


@pytest.fixture
def runner():
    """Return CliRunner for testing Typer apps."""
    return CliRunner()


@pytest.fixture(autouse=True)
def isolated_cli(monkeypatch):
    """Clean credentials, output mode and root logger around each test."""
    for name in CREDENTIAL_VARIABLES:
        monkeypatch.delenv(name, raising=False)

    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    output_mode.reset()
    yield
    output_mode.reset()
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def config_file(tmp_path):
    """YAML settings file pointing at a temp database."""
    path = tmp_path / "ai_visibility.yaml"
    path.write_text(
        f"database_path: {tmp_path / 'cli.db'}\nworker:\n  backoff_base_seconds: 0\n",
        encoding="utf-8",
    )
    return path


def run_json(runner, args):
    result = runner.invoke(app, [*args, "--format", "json"])
    return result, json.loads(result.stdout)


# ============================================================================
# Exit code mapping
# ============================================================================


@pytest.mark.parametrize(
    "summary,expected",
    [
        (PoolSummary(), EXIT_SUCCESS),
        (PoolSummary(processed=2, succeeded=2), EXIT_SUCCESS),
        (PoolSummary(processed=2, succeeded=1, dead=1), EXIT_PARTIAL_FAILURE),
        (PoolSummary(processed=2, expanded=1, dead=1), EXIT_PARTIAL_FAILURE),
        (PoolSummary(processed=1, dead=1), EXIT_COMPLETE_FAILURE),
    ],
)
def test_exit_code(summary, expected):
    """Test pool summary -> exit code."""
    assert _exit_code(summary) == expected


# ============================================================================
# init-db and validate
# ============================================================================


class TestInitDb:
    """Test suite for the init-db command."""

    def test_creates_schema(self, runner, config_file, tmp_path):
        """Test that init-db reports the schema version."""
        result, data = run_json(runner, ["init-db", "--config", str(config_file)])

        assert result.exit_code == EXIT_SUCCESS
        assert data["schema_version"] == db.CURRENT_SCHEMA_VERSION
        assert data["status"] == "success"
        assert (tmp_path / "cli.db").exists()

    def test_human_output(self, runner, config_file):
        """Test the text-mode confirmation."""
        result = runner.invoke(app, ["init-db", "--config", str(config_file)])

        assert result.exit_code == EXIT_SUCCESS
        assert "Database ready" in result.stdout

    def test_database_error_exit_code(self, runner, tmp_path):
        """Test exit code 2 when the database can't be created."""
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory", encoding="utf-8")
        config = tmp_path / "bad_db.yaml"
        config.write_text(f"database_path: {blocker / 'ai.db'}\n", encoding="utf-8")

        result = runner.invoke(app, ["init-db", "--config", str(config)])

        assert result.exit_code == EXIT_DB_ERROR

    def test_invalid_format(self, runner, config_file):
        """Test that an unknown --format is a configuration error."""
        result = runner.invoke(app, ["init-db", "--config", str(config_file), "--format", "xml"])

        assert result.exit_code == EXIT_CONFIG_ERROR


class TestValidate:
    """Test suite for the validate command."""

    def test_reports_credential_names_only(self, runner, config_file, monkeypatch):
        """Test that set and missing credentials are listed by name."""
        monkeypatch.setenv("OPENAI_API_KEY", "sk-secret-value-123456")

        result, data = run_json(runner, ["validate", "--config", str(config_file)])

        assert result.exit_code == EXIT_SUCCESS
        assert data["valid"] is True
        assert data["engine_credentials"] == ["OPENAI_API_KEY"]
        assert "SERPAPI_KEY" in data["missing_credentials"]
        assert data["router_providers"] == ["openai"]
        assert data["extraction_method"] == "rule_based"
        assert "sk-secret-value-123456" not in result.output

    def test_invalid_settings(self, runner, tmp_path):
        """Test exit code 1 and the error message for bad settings."""
        config = tmp_path / "bad.yaml"
        config.write_text("worker:\n  concurrency: 0\n", encoding="utf-8")

        result, data = run_json(runner, ["validate", "--config", str(config)])

        assert result.exit_code == EXIT_CONFIG_ERROR
        assert data["status"] == "error"
        assert "worker.concurrency" in data["error"]

    def test_missing_file(self, runner, tmp_path):
        """Test exit code 1 for a config path that doesn't exist."""
        result = runner.invoke(app, ["validate", "--config", str(tmp_path / "nope.yaml")])

        assert result.exit_code == EXIT_CONFIG_ERROR

    def test_human_mode_warns_about_missing_keys(self, runner, config_file):
        """Test text output."""
        result = runner.invoke(app, ["validate", "--config", str(config_file)])

        assert result.exit_code == EXIT_SUCCESS
        assert "Configuration is valid" in result.stdout
        assert "OPENAI_API_KEY is not set" in result.stdout


# ============================================================================
# Queue commands
# ============================================================================


class TestQueueCommands:
    """Test suite for enqueue-prompt, enqueue-cluster and queue-status."""

    def test_enqueue_prompt_then_status(self, runner, config_file):
        """Test that a queued prompt shows up in the counts."""
        args = ["enqueue-prompt", "-w", "ws-1", "-p", "Best CRM?", "-e", "openai", "-k", "k1"]
        result, data = run_json(runner, [*args, "--config", str(config_file)])

        assert result.exit_code == EXIT_SUCCESS
        assert data["enqueued"] is True
        assert data["idempotency_key"] == "k1"

        again, again_data = run_json(runner, [*args, "--config", str(config_file)])
        assert again.exit_code == EXIT_SUCCESS
        assert again_data["enqueued"] is False

        status, status_data = run_json(runner, ["queue-status", "--config", str(config_file)])
        assert status.exit_code == EXIT_SUCCESS
        assert status_data["queue"] == {"queued": 1, "running": 0, "done": 0, "dead": 0}

    def test_enqueue_blank_engine(self, runner, config_file):
        """Test exit code 1 for a blank engine key."""
        result = runner.invoke(
            app,
            ["enqueue-prompt", "-w", "ws-1", "-p", "Q?", "-e", "  ", "--config", str(config_file)],
        )

        assert result.exit_code == EXIT_CONFIG_ERROR

    def test_enqueue_cluster(self, runner, config_file):
        """Test cluster scan enqueueing with engine normalization."""
        result, data = run_json(
            runner,
            [
                "enqueue-cluster",
                "-w",
                "ws-1",
                "--cluster",
                "c1",
                "--engines",
                "openai, gemini",
                "-k",
                "scan-1",
                "--config",
                str(config_file),
            ],
        )

        assert result.exit_code == EXIT_SUCCESS
        assert data["enqueued"] is True

    def test_queue_status_quiet(self, runner, config_file):
        """Test tab-separated quiet output."""
        result = runner.invoke(app, ["queue-status", "--config", str(config_file), "--quiet"])

        assert result.exit_code == EXIT_SUCCESS
        assert "queued\t0" in result.stdout.splitlines()

    def test_worker_drain_all_dead(self, runner, config_file):
        """Test exit code 4 when every processed job ended dead."""
        runner.invoke(
            app,
            [
                "enqueue-prompt",
                "-w",
                "ws-1",
                "-p",
                "Best CRM?",
                "-e",
                "OPENAI",
                "--config",
                str(config_file),
            ],
        )

        result, data = run_json(runner, ["worker", "--drain", "--config", str(config_file)])

        assert result.exit_code == EXIT_COMPLETE_FAILURE
        assert data["summary"]["dead"] == 1
        assert data["summary"]["processed"] == 1

    def test_worker_drain_empty_queue(self, runner, config_file):
        """Test that an empty queue drains immediately with exit 0."""
        result, data = run_json(runner, ["worker", "--drain", "--config", str(config_file)])

        assert result.exit_code == EXIT_SUCCESS
        assert data["summary"]["processed"] == 0


# ============================================================================
# Cache commands
# ============================================================================


class TestCacheCommands:
    """Test suite for cache stats and cache purge."""

    def test_stats_empty(self, runner, config_file):
        """Test counters on an empty cache."""
        result, data = run_json(runner, ["cache", "stats", "--config", str(config_file)])

        assert result.exit_code == EXIT_SUCCESS
        assert data["extraction_cache"] == {"entries": 0, "total_hits": 0, "expired": 0}

    def test_purge_empty(self, runner, config_file):
        """Test purge with nothing to remove."""
        result, data = run_json(runner, ["cache", "purge", "--config", str(config_file)])

        assert result.exit_code == EXIT_SUCCESS
        assert data["removed"] == 0


# ============================================================================
# Demo
# ============================================================================


class TestDemo:
    """Test suite for the offline demo."""

    def test_demo_json(self, runner, tmp_path):
        """Test that the demo completes its batch without network access."""
        db_file = tmp_path / "demo.db"

        result, data = run_json(runner, ["demo", "--db", str(db_file)])

        assert result.exit_code == EXIT_SUCCESS
        assert data["summary"]["expanded"] == 1
        assert data["summary"]["succeeded"] == 4
        assert data["summary"]["dead"] == 0
        assert data["demo_run"]["status"] == "analysis_complete"
        assert data["demo_run"]["progress"] == 100
        assert "Airbnb" in {m["brand"] for m in data["mentions"]}

        with db.connect(str(db_file)) as conn:
            assert db.count_rows(conn, "prompt_runs") == 4
            assert db.count_rows(conn, "answers") == 4

    def test_demo_human(self, runner):
        """Test text output with a temporary database."""
        result = runner.invoke(app, ["demo"])

        assert result.exit_code == EXIT_SUCCESS
        assert "Mentions" in result.stdout
        assert "analysis_complete" in result.stdout
