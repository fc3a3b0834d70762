"""
OpenAI Chat Completions adapter.

Example:
    >>> adapter = OpenAIAdapter("gpt-4o-mini", api_key="sk-...")
    >>> answer = await adapter.ask("What are the best CRM tools?")
    >>> answer.cost_cents
    1
"""

from typing import Any

from ai_visibility.providers.base import HTTPProviderAdapter
from ai_visibility.utils.cost import estimate_cost_cents

OPENAI_API_URL = "https://api.openai.com/v1/chat/completions"


class OpenAIAdapter(HTTPProviderAdapter):
    """
    OpenAI Chat Completions adapter (Bearer auth).

    Response shape read:
        choices[0].message.content, usage.prompt_tokens, usage.completion_tokens
    """

    provider = "openai"
    api_url = OPENAI_API_URL

    def _build_request(self, prompt: str):
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        payload = {
            "model": self.model_name,
            "messages": [{"role": "user", "content": prompt}],
        }
        return self.api_url, headers, {}, payload

    def _parse_response(self, data: dict[str, Any]):
        choices = data["choices"]
        if not choices:
            raise KeyError("choices is empty")
        content = choices[0]["message"].get("content") or ""

        usage = data.get("usage") or {}
        prompt_tokens = int(usage.get("prompt_tokens") or 0)
        completion_tokens = int(usage.get("completion_tokens") or 0)

        extra: dict[str, Any] = {}
        if data.get("id"):
            extra["response_id"] = data["id"]
        return str(content), prompt_tokens, completion_tokens, extra

    def _cost_cents(self, prompt_tokens: int, completion_tokens: int) -> int:
        return estimate_cost_cents(self.provider, self.model_name, prompt_tokens, completion_tokens)
