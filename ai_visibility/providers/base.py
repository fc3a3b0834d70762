"""
Shared HTTP plumbing for answer-engine adapters.

HTTPProviderAdapter owns everything that is the same for every hosted
engine: input validation, the retried HTTP round-trip, status-code
classification and mapping httpx failures onto the ProviderError
hierarchy. Concrete adapters only describe the request they send and how
to read the response.

Status handling (per attempt):
    401, 403        -> ProviderAuthenticationError (never retried)
    other 4xx       -> ProviderResponseError (never retried), except 429
    429, 5xx        -> response.raise_for_status(), retried by tenacity
    after retries   -> ProviderRateLimitError (429) / ProviderResponseError

Security:
    - API keys are NEVER logged, not even partially
    - Error messages carry status codes and provider detail only
"""

import logging
from typing import Any

import httpx

from ai_visibility.config.constants import MAX_PROMPT_LENGTH
from ai_visibility.exceptions import (
    ProviderAuthenticationError,
    ProviderError,
    ProviderRateLimitError,
    ProviderResponseError,
    ProviderTimeoutError,
)
from ai_visibility.providers.models import ProviderAnswer
from ai_visibility.providers.retry_config import (
    AUTH_STATUS_CODES,
    REQUEST_TIMEOUT,
    create_retry_decorator,
)
from ai_visibility.utils.time import utc_timestamp

logger = logging.getLogger(__name__)


class HTTPProviderAdapter:
    """
    Base class for adapters that talk to a hosted engine over HTTPS.

    Subclasses set `provider` and `http_method` and implement
    `_build_request()` and `_parse_response()`.

    Attributes:
        model_name: Model identifier sent to the engine
        api_key: Credential (NEVER logged)
        timeout: Per-attempt HTTP timeout in seconds
    """

    provider: str = "unknown"
    http_method: str = "POST"

    def __init__(self, model_name: str, api_key: str, timeout: float = REQUEST_TIMEOUT):
        if not model_name or model_name.isspace():
            raise ValueError("model_name cannot be empty")

        if not api_key or api_key.isspace():
            raise ValueError("api_key cannot be empty")

        self.model_name = model_name
        self.api_key = api_key
        self.timeout = timeout

        logger.debug(f"Initialized {self.provider} adapter for model: {model_name}")

    def __repr__(self) -> str:
        return f"{type(self).__name__}(model_name={self.model_name!r})"

    # ------------------------------------------------------------------
    # Subclass hooks
    # ------------------------------------------------------------------

    def _build_request(self, prompt: str) -> tuple[str, dict[str, str], dict[str, Any], dict[str, Any] | None]:
        """Return (url, headers, query params, JSON body or None)."""
        raise NotImplementedError

    def _parse_response(self, data: dict[str, Any]) -> tuple[str, int, int, dict[str, Any]]:
        """Return (answer text, prompt tokens, completion tokens, extra meta)."""
        raise NotImplementedError

    def _cost_cents(self, prompt_tokens: int, completion_tokens: int) -> int:
        raise NotImplementedError

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def ask(self, prompt: str) -> ProviderAnswer:
        """
        Send one prompt to the engine and return the normalized answer.

        Args:
            prompt: Prompt text

        Returns:
            ProviderAnswer with integer-cent cost

        Raises:
            ValueError: If the prompt is empty or too long
            ProviderAuthenticationError: Credential rejected (401/403)
            ProviderRateLimitError: Still rate limited after retries
            ProviderTimeoutError: Timed out after retries
            ProviderResponseError: Any other unusable response
            ProviderError: Connection failure after retries
        """
        if not prompt or prompt.isspace():
            raise ValueError("Prompt cannot be empty")

        if len(prompt) > MAX_PROMPT_LENGTH:
            raise ValueError(
                f"Prompt exceeds maximum length of {MAX_PROMPT_LENGTH:,} characters "
                f"(received {len(prompt):,} characters)."
            )

        try:
            data = await self._send(prompt)
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            detail = self._extract_error_detail(e.response)
            if status == 429:
                raise ProviderRateLimitError(
                    f"{self.provider} rate limit exceeded (429) after retries: {detail}",
                    provider=self.provider,
                    status_code=status,
                ) from e
            raise ProviderResponseError(
                f"{self.provider} API error: status={status}, detail={detail}",
                provider=self.provider,
                status_code=status,
            ) from e
        except httpx.TimeoutException as e:
            raise ProviderTimeoutError(
                f"{self.provider} request timeout after retries: {type(e).__name__}",
                provider=self.provider,
            ) from e
        except httpx.ConnectError as e:
            raise ProviderError(
                f"{self.provider} network connection failed: {e}",
                provider=self.provider,
            ) from e

        try:
            answer_text, prompt_tokens, completion_tokens, extra = self._parse_response(data)
        except (KeyError, IndexError, TypeError, AttributeError) as e:
            raise ProviderResponseError(
                f"Invalid {self.provider} response structure: {e}",
                provider=self.provider,
            ) from e

        tokens_used = prompt_tokens + completion_tokens
        timestamp = utc_timestamp()
        cost_cents = self._cost_cents(prompt_tokens, completion_tokens)

        meta = {
            "provider": self.provider,
            "model": self.model_name,
            "prompt_tokens": prompt_tokens,
            "completion_tokens": completion_tokens,
            "tokens_used": tokens_used,
            "timestamp_utc": timestamp,
            **extra,
        }

        return ProviderAnswer(
            answer_text=answer_text,
            cost_cents=cost_cents,
            provider=self.provider,
            model_name=self.model_name,
            timestamp_utc=timestamp,
            tokens_used=tokens_used,
            meta=meta,
        )

    # ------------------------------------------------------------------
    # HTTP round-trip
    # ------------------------------------------------------------------

    @create_retry_decorator()
    async def _send(self, prompt: str) -> dict[str, Any]:
        url, headers, params, payload = self._build_request(prompt)

        logger.debug(f"Sending request to {self.provider}: model={self.model_name}")

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.request(
                self.http_method,
                url,
                headers=headers,
                params=params or None,
                json=payload,
            )

        status = response.status_code

        if status in AUTH_STATUS_CODES:
            raise ProviderAuthenticationError(
                f"{self.provider} rejected the credential (status={status})",
                provider=self.provider,
                status_code=status,
            )

        if 400 <= status < 500 and status != 429:
            raise ProviderResponseError(
                f"{self.provider} API error (non-retryable): status={status}, "
                f"model={self.model_name}, detail={self._extract_error_detail(response)}",
                provider=self.provider,
                status_code=status,
            )

        if status >= 400:
            logger.warning(
                f"{self.provider} API retryable error: status={status}, model={self.model_name}"
            )
        # 429 and 5xx raise HTTPStatusError here; the retry decorator catches them
        response.raise_for_status()

        try:
            data = response.json()
        except ValueError as e:
            raise ProviderResponseError(
                f"Failed to parse {self.provider} response JSON: {e}",
                provider=self.provider,
                status_code=status,
            ) from e

        if not isinstance(data, dict):
            raise ProviderResponseError(
                f"{self.provider} response is not a JSON object",
                provider=self.provider,
                status_code=status,
            )
        return data

    @staticmethod
    def _extract_error_detail(response: httpx.Response) -> str:
        """Best-effort error message from an error response body."""
        try:
            data = response.json()
        except ValueError:
            return response.text[:200] if response.text else "No error detail"

        if isinstance(data, dict):
            error = data.get("error")
            if isinstance(error, dict) and error.get("message"):
                return str(error["message"])
            if isinstance(error, str):
                return error
            if data.get("message"):
                return str(data["message"])
        return str(data)[:200]
