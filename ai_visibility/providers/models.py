"""
Provider adapter abstraction.

Every answer engine (OpenAI, Anthropic, Gemini, Perplexity, Google AI
Overviews via SerpAPI, and the mock used in tests) is wrapped in an
adapter exposing one capability:

    await adapter.ask(prompt_text) -> ProviderAnswer

Key components:
- ProviderAnswer: answer text, integer-cent cost and opaque metadata
- ProviderAdapter: Protocol every adapter satisfies
- AdapterFactory: signature of the constructors held in the static
  registries (see providers.registry)

Authentication failures MUST surface as ProviderAuthenticationError so the
orchestrator can tell a revoked key from a flaky provider.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol


@dataclass
class ProviderAnswer:
    """
    Normalized response from one answer engine.

    Attributes:
        answer_text: Complete answer text (may be empty for engines that
            returned nothing usable, e.g. no AI overview)
        cost_cents: Estimated cost in integer cents (rounded up)
        provider: Provider kind ("openai", "serpapi", ...)
        model_name: Model or engine variant used
        timestamp_utc: ISO 8601 'Z' timestamp when the answer arrived
        tokens_used: Prompt + completion tokens (0 when not reported)
        meta: Provider-specific metadata persisted as the Answer payload

    Example:
        >>> answer = ProviderAnswer(
        ...     answer_text="Top CRMs are HubSpot and Salesforce.",
        ...     cost_cents=1,
        ...     provider="openai",
        ...     model_name="gpt-4o-mini",
        ...     timestamp_utc="2025-11-02T08:30:45Z",
        ...     tokens_used=120,
        ... )
    """

    answer_text: str
    cost_cents: int
    provider: str
    model_name: str
    timestamp_utc: str
    tokens_used: int = 0
    meta: dict[str, Any] = field(default_factory=dict)


class ProviderAdapter(Protocol):
    """
    Interface every answer-engine adapter implements.

    Implementations MUST:
    - Never log API keys
    - Raise ProviderAuthenticationError when the credential is rejected
    - Raise another ProviderError subclass for any other failure
    - Return a ProviderAnswer with cost in integer cents
    """

    provider: str
    model_name: str

    async def ask(self, prompt: str) -> ProviderAnswer:
        """Send one prompt and return the normalized answer."""
        ...


# (api_key, model_name, request_timeout) -> adapter
AdapterFactory = Callable[[str, str, float], ProviderAdapter]
