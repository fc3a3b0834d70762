"""
Retry configuration for answer-engine HTTP calls.

One tenacity decorator shared by every HTTP adapter so all providers back
off the same way:
- Exponential backoff between MIN_WAIT_SECONDS and MAX_WAIT_SECONDS
- Retry on network errors, timeouts and retryable statuses (429, 5xx)
- Fail fast on credential and request errors (401, 403, 400, 404, ...)

Adapters raise ProviderAuthenticationError / ProviderResponseError for
non-retryable statuses BEFORE calling response.raise_for_status(), so
those never match the retry predicate.

Example:
    >>> @create_retry_decorator()
    ... async def call_engine():
    ...     ...
"""

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

# ============================================================================
# RETRY CONSTANTS
# ============================================================================

# Total attempts including the first one
MAX_ATTEMPTS = 3

MIN_WAIT_SECONDS = 1
MAX_WAIT_SECONDS = 60

# Transient: rate limit and server errors
RETRY_STATUS_CODES = frozenset([429, 500, 502, 503, 504])

# Credential rejected; surfaced as ProviderAuthenticationError
AUTH_STATUS_CODES = frozenset([401, 403])

# Request will never succeed as sent
NO_RETRY_STATUS_CODES = frozenset([400, 404, 405, 409, 413, 422])

# Per-request timeout for a single HTTP attempt (seconds)
REQUEST_TIMEOUT = 30.0


def create_retry_decorator():
    """
    Create the tenacity retry decorator for provider calls.

    Returns:
        Retry decorator: 3 attempts, exponential backoff (1s-60s), retrying
        httpx.HTTPStatusError, httpx.ConnectError and
        httpx.TimeoutException, re-raising the last error.
    """
    return retry(
        stop=stop_after_attempt(MAX_ATTEMPTS),
        wait=wait_exponential(
            multiplier=1,
            min=MIN_WAIT_SECONDS,
            max=MAX_WAIT_SECONDS,
        ),
        retry=retry_if_exception_type(
            (
                httpx.HTTPStatusError,
                httpx.ConnectError,
                httpx.TimeoutException,
            )
        ),
        reraise=True,
    )
