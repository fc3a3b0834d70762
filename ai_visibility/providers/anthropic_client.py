"""
Anthropic Messages API adapter.

Example:
    >>> adapter = AnthropicAdapter("claude-3-haiku-20240307", api_key="sk-ant-...")
    >>> answer = await adapter.ask("What are the best CRM tools?")
"""

from typing import Any

from ai_visibility.providers.base import HTTPProviderAdapter
from ai_visibility.utils.cost import estimate_cost_cents

ANTHROPIC_API_URL = "https://api.anthropic.com/v1/messages"

# Required version header
ANTHROPIC_VERSION = "2023-06-01"

# max_tokens is mandatory for the Messages API
DEFAULT_MAX_TOKENS = 4096


class AnthropicAdapter(HTTPProviderAdapter):
    """
    Anthropic Messages API adapter (x-api-key auth).

    Text is the concatenation of every "text" content block; usage is read
    from usage.input_tokens / usage.output_tokens.
    """

    provider = "anthropic"

    def _build_request(self, prompt: str):
        headers = {
            "x-api-key": self.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
            "content-type": "application/json",
        }
        payload = {
            "model": self.model_name,
            "max_tokens": DEFAULT_MAX_TOKENS,
            "messages": [{"role": "user", "content": prompt}],
        }
        return ANTHROPIC_API_URL, headers, {}, payload

    def _parse_response(self, data: dict[str, Any]):
        content = data["content"]
        if not isinstance(content, list):
            raise TypeError("content is not a list")

        text = "".join(
            str(block.get("text", ""))
            for block in content
            if isinstance(block, dict) and block.get("type") == "text"
        )

        usage = data.get("usage") or {}
        input_tokens = int(usage.get("input_tokens") or 0)
        output_tokens = int(usage.get("output_tokens") or 0)

        extra: dict[str, Any] = {}
        if data.get("stop_reason"):
            extra["stop_reason"] = data["stop_reason"]
        return text, input_tokens, output_tokens, extra

    def _cost_cents(self, prompt_tokens: int, completion_tokens: int) -> int:
        return estimate_cost_cents(self.provider, self.model_name, prompt_tokens, completion_tokens)
