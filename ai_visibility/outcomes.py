"""
Job outcome types and error classification.

Advisory failures (cache writes, single mention inserts, hallucination
detection) are collected on the JobResult instead of being raised; fatal
errors propagate as exceptions from the exceptions module.
"""

from dataclasses import asdict, dataclass, field
from typing import Literal

from ai_visibility.exceptions import (
    ProviderAuthenticationError,
    ProviderRateLimitError,
    ProviderTimeoutError,
)

ErrorCategory = Literal["authentication", "rate_limit", "network", "other"]

_AUTH_MARKERS = ("401", "authentication", "authorization required", "api key")
_RATE_LIMIT_MARKERS = ("rate limit", "429", "quota")
_NETWORK_MARKERS = ("network", "timeout", "econnrefused")


@dataclass
class Advisory:
    """
    A non-fatal failure recorded while processing a job.

    Attributes:
        step: Pipeline step that failed (e.g. "cache_write", "mention_insert")
        error: Error message
        error_type: Exception class name
        severity: Always "advisory"; fatal errors are raised instead
    """

    step: str
    error: str
    error_type: str
    severity: str = "advisory"

    @classmethod
    def from_exception(cls, step: str, exc: BaseException) -> "Advisory":
        return cls(step=step, error=str(exc), error_type=type(exc).__name__)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class JobResult:
    """
    Outcome of a processed job.

    Attributes:
        status: "success", "duplicate" (idempotency guard hit, no side
            effects) or "expanded" (cluster scan that enqueued child jobs)
        idempotency_key: Key of the individual job (None for cluster scans)
        prompt_run_id: PromptRun created by this delivery
        provider_used: Engine or provider that produced the answer
        cost_cents: Cost recorded on the run
        cache_hit: Extraction came from the cache
        mentions_created: Mentions persisted
        citations_created: Citations persisted
        jobs_enqueued: Child jobs enqueued by a cluster scan
        advisories: Non-fatal failures
    """

    status: Literal["success", "duplicate", "expanded"]
    idempotency_key: str | None = None
    prompt_run_id: str | None = None
    provider_used: str | None = None
    cost_cents: int = 0
    cache_hit: bool = False
    mentions_created: int = 0
    citations_created: int = 0
    jobs_enqueued: int = 0
    advisories: list[Advisory] = field(default_factory=list)


def classify_error(error: BaseException) -> ErrorCategory:
    """
    Map an exception to a diagnostic category.

    Typed provider errors decide first; anything else is matched on its
    message.

    Example:
        >>> classify_error(RuntimeError("HTTP 429 Too Many Requests"))
        'rate_limit'
        >>> classify_error(ValueError("boom"))
        'other'
    """
    if isinstance(error, ProviderAuthenticationError):
        return "authentication"
    if isinstance(error, ProviderRateLimitError):
        return "rate_limit"
    if isinstance(error, (ProviderTimeoutError, TimeoutError, ConnectionError)):
        return "network"

    message = str(error).lower()
    if any(marker in message for marker in _AUTH_MARKERS):
        return "authentication"
    if any(marker in message for marker in _RATE_LIMIT_MARKERS):
        return "rate_limit"
    if any(marker in message for marker in _NETWORK_MARKERS):
        return "network"
    return "other"
