"""
Structured JSON logging for the job pipeline.

Every log line is a single JSON object on stderr so that worker output can
be shipped to any log collector without parsing free text. Observability
events (job start, cache hit/miss, provider attempts, extraction parse
failures, terminal job outcome) are emitted through log_with_context() with
a structured `context` dict and the job's idempotency key as `job_id`.

Examples:
    >>> from ai_visibility.utils.logging import setup_logging, get_logger
    >>> setup_logging(verbose=True)
    >>> logger = get_logger("worker.orchestrator")
    >>> log_with_context(logger, logging.INFO, "Job started",
    ...     context={"engine": "OPENAI"}, job_id="run:abc:OPENAI")

Security:
    - Provider keys are redacted by SecretRedactingFilter before output
    - Only stderr is used (stdout is reserved for CLI output)
"""

import json
import logging
import re
import sys
from typing import Any

from ai_visibility.utils.time import utc_timestamp


class JSONFormatter(logging.Formatter):
    """
    Format log records as JSON objects.

    Fields: timestamp, level, component, message, plus `context` and
    `job_id` when passed through `extra`, and `exception` when exc_info
    is set.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": utc_timestamp(),
            "level": record.levelname,
            "component": record.name,
            "message": record.getMessage(),
        }

        if hasattr(record, "context") and isinstance(record.context, dict):
            log_entry["context"] = record.context

        if hasattr(record, "job_id"):
            log_entry["job_id"] = record.job_id

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


class SecretRedactingFilter(logging.Filter):
    """
    Redact provider credentials from messages, args and context.

    Only the last four characters of a matched secret survive:
    "sk-proj-abcdef123456..." -> "sk-...3456"
    """

    SECRET_PATTERNS = [
        (re.compile(r"\bsk-[a-zA-Z0-9_-]{20,}\b"), "sk-...{last4}"),
        (re.compile(r"\bBearer\s+[a-zA-Z0-9_-]{20,}\b"), "Bearer ***{last4}"),
        (re.compile(r"\bAIza[a-zA-Z0-9_-]{20,}\b"), "AIza...{last4}"),
        (re.compile(r"\b[a-zA-Z0-9_-]{32,}\b"), "***{last4}"),
    ]

    def filter(self, record: logging.LogRecord) -> bool:
        record.msg = self._redact_secrets(str(record.msg))

        if record.args:
            if isinstance(record.args, dict):
                record.args = {
                    k: self._redact_secrets(str(v)) for k, v in record.args.items()
                }
            elif isinstance(record.args, tuple):
                record.args = tuple(
                    self._redact_secrets(str(arg)) for arg in record.args
                )

        if hasattr(record, "context") and isinstance(record.context, dict):
            record.context = self._redact_dict(record.context)

        return True

    def _redact_secrets(self, text: str) -> str:
        for pattern, template in self.SECRET_PATTERNS:

            def redact_match(match: re.Match, template: str = template) -> str:
                return template.format(last4=match.group(0)[-4:])

            text = pattern.sub(redact_match, text)

        return text

    def _redact_dict(self, data: dict[str, Any]) -> dict[str, Any]:
        result = {}
        for key, value in data.items():
            if isinstance(value, str):
                result[key] = self._redact_secrets(value)
            elif isinstance(value, dict):
                result[key] = self._redact_dict(value)
            elif isinstance(value, list):
                result[key] = [
                    self._redact_secrets(v) if isinstance(v, str) else v for v in value
                ]
            else:
                result[key] = value
        return result


def setup_logging(verbose: bool = False, quiet_logs: bool = False) -> None:
    """
    Configure JSON logging on the root logger.

    Args:
        verbose: DEBUG level when True, INFO otherwise.
        quiet_logs: Raise the threshold to WARNING (used by the human-mode
            CLI so JSON lines don't interleave with rich output). Ignored
            when verbose is set.
    """
    if verbose:
        level = logging.DEBUG
    elif quiet_logs:
        level = logging.WARNING
    else:
        level = logging.INFO

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(JSONFormatter())
    handler.addFilter(SecretRedactingFilter())
    root_logger.addHandler(handler)

    # httpx logs every request URL at INFO, which includes Gemini key params
    logging.getLogger("httpx").setLevel(logging.WARNING)


def get_logger(component: str) -> logging.Logger:
    """Return the logger for a component (e.g. "providers.router")."""
    return logging.getLogger(component)


def log_with_context(
    logger: logging.Logger,
    level: int,
    message: str,
    context: dict[str, Any] | None = None,
    job_id: str | None = None,
) -> None:
    """
    Log a message with structured context and optional job id.

    Equivalent to logger.log(level, message, extra={"context": ..., "job_id": ...}).

    Args:
        logger: Logger instance (from get_logger)
        level: Log level (logging.INFO, logging.WARNING, etc.)
        message: Human-readable log message
        context: Optional dict with additional structured data
        job_id: Optional idempotency key of the job being processed

    Example:
        >>> log_with_context(
        ...     logger,
        ...     logging.INFO,
        ...     "Extraction cache hit",
        ...     context={"cache_key": "extraction:3f2a..."},
        ...     job_id="scan-1:p1:OPENAI",
        ... )
    """
    extra: dict[str, Any] = {}

    if context is not None:
        extra["context"] = context

    if job_id is not None:
        extra["job_id"] = job_id

    logger.log(level, message, extra=extra if extra else None)
