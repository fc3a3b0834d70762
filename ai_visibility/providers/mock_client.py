"""
Mock provider adapter for tests and the offline demo.

Provides MockProviderAdapter, which satisfies the ProviderAdapter protocol
without any network I/O. It can return canned answers per prompt or fail
with a configured exception, so routing, extraction and orchestration
can be exercised deterministically.

Example:
    >>> adapter = MockProviderAdapter(
    ...     responses={"best CRM": "HubSpot and Salesforce lead the market."}
    ... )
    >>> answer = await adapter.ask("best CRM")
    >>> answer.answer_text
    'HubSpot and Salesforce lead the market.'

Failure example:
    >>> adapter = MockProviderAdapter(
    ...     fail_with=ProviderAuthenticationError("bad key", provider="mock")
    ... )
    >>> await adapter.ask("anything")
    Traceback (most recent call last):
    ProviderAuthenticationError: bad key
"""

import logging
from dataclasses import dataclass, field

from ai_visibility.providers.models import ProviderAnswer
from ai_visibility.utils.time import utc_timestamp

logger = logging.getLogger(__name__)


@dataclass
class MockProviderAdapter:
    """
    Deterministic in-memory adapter.

    Attributes:
        responses: Prompt -> answer text. Unknown prompts get default_response.
        default_response: Answer for prompts not in responses
        model_name: Model identifier reported in answers
        provider: Provider name reported in answers
        cost_cents: Cost reported for every answer
        tokens_per_response: Tokens reported for every answer
        fail_with: When set, every ask() raises this exception
        calls: Prompts received, in order (for assertions)
    """

    responses: dict[str, str] = field(default_factory=dict)
    default_response: str = "Mock answer."
    model_name: str = "mock-model"
    provider: str = "mock"
    cost_cents: int = 0
    tokens_per_response: int = 100
    fail_with: Exception | None = None
    calls: list[str] = field(default_factory=list)

    async def ask(self, prompt: str) -> ProviderAnswer:
        """Return the canned answer for prompt, or raise fail_with."""
        self.calls.append(prompt)

        if self.fail_with is not None:
            logger.debug(f"MockProviderAdapter failing with {type(self.fail_with).__name__}")
            raise self.fail_with

        answer_text = self.responses.get(prompt, self.default_response)
        timestamp = utc_timestamp()

        return ProviderAnswer(
            answer_text=answer_text,
            cost_cents=self.cost_cents,
            provider=self.provider,
            model_name=self.model_name,
            timestamp_utc=timestamp,
            tokens_used=self.tokens_per_response,
            meta={
                "provider": self.provider,
                "model": self.model_name,
                "tokens_used": self.tokens_per_response,
                "timestamp_utc": timestamp,
            },
        )
