"""
Google Gemini generateContent adapter.

The key travels as the `key` query parameter, which is why setup_logging()
silences the httpx request logger.
"""

from typing import Any

from ai_visibility.providers.base import HTTPProviderAdapter
from ai_visibility.utils.cost import estimate_cost_cents

GEMINI_API_BASE = "https://generativelanguage.googleapis.com/v1beta/models"


class GeminiAdapter(HTTPProviderAdapter):
    """
    Gemini adapter.

    Response shape read:
        candidates[0].content.parts[*].text,
        usageMetadata.promptTokenCount, usageMetadata.candidatesTokenCount
    """

    provider = "gemini"

    def _build_request(self, prompt: str):
        url = f"{GEMINI_API_BASE}/{self.model_name}:generateContent"
        headers = {"Content-Type": "application/json"}
        params = {"key": self.api_key}
        payload = {"contents": [{"role": "user", "parts": [{"text": prompt}]}]}
        return url, headers, params, payload

    def _parse_response(self, data: dict[str, Any]):
        candidates = data["candidates"]
        if not candidates:
            raise KeyError("candidates is empty")

        first = candidates[0]
        parts = (first.get("content") or {}).get("parts") or []
        text = "".join(str(part.get("text", "")) for part in parts if isinstance(part, dict))

        usage = data.get("usageMetadata") or {}
        prompt_tokens = int(usage.get("promptTokenCount") or 0)
        completion_tokens = int(usage.get("candidatesTokenCount") or 0)

        extra: dict[str, Any] = {}
        if first.get("finishReason"):
            extra["finish_reason"] = first["finishReason"]
        return text, prompt_tokens, completion_tokens, extra

    def _cost_cents(self, prompt_tokens: int, completion_tokens: int) -> int:
        return estimate_cost_cents(self.provider, self.model_name, prompt_tokens, completion_tokens)
