"""
Google AI Overview adapter backed by SerpAPI (engine key AIO).

A Google search is issued for the prompt and the AI Overview block, when
Google shows one, becomes the answer text. Searches without an overview
return an empty answer rather than an error: "no overview" is a valid
observation for visibility tracking.

Billing is per search (SERPAPI_COST_PER_SEARCH_USD), not per token.
"""

from typing import Any

from ai_visibility.providers.base import HTTPProviderAdapter
from ai_visibility.utils.cost import SERPAPI_COST_PER_SEARCH_USD, usd_to_cents

SERPAPI_URL = "https://serpapi.com/search.json"


def _flatten_text_blocks(blocks: list[Any]) -> list[str]:
    """Flatten SerpAPI ai_overview text_blocks (paragraphs and nested lists)."""
    lines: list[str] = []
    for block in blocks:
        if not isinstance(block, dict):
            continue
        snippet = block.get("snippet")
        if snippet:
            lines.append(str(snippet))
        items = block.get("list")
        if isinstance(items, list):
            for index, item in enumerate(items, start=1):
                if not isinstance(item, dict):
                    continue
                title = item.get("title")
                body = item.get("snippet")
                text = " ".join(str(part) for part in (title, body) if part)
                if text:
                    lines.append(f"{index}. {text}")
                if isinstance(item.get("list"), list):
                    lines.extend(_flatten_text_blocks(item["list"]))
    return lines


class SerpAPIOverviewAdapter(HTTPProviderAdapter):
    """AI Overview adapter (GET, api_key query parameter)."""

    provider = "serpapi"
    http_method = "GET"

    def _build_request(self, prompt: str):
        params = {
            "engine": "google",
            "q": prompt,
            "api_key": self.api_key,
        }
        return SERPAPI_URL, {"Accept": "application/json"}, params, None

    def _parse_response(self, data: dict[str, Any]):
        if data.get("error"):
            raise KeyError(f"SerpAPI error: {data['error']}")

        overview = data.get("ai_overview") or {}
        lines = _flatten_text_blocks(overview.get("text_blocks") or [])

        references = [
            str(ref["link"])
            for ref in overview.get("references") or []
            if isinstance(ref, dict) and ref.get("link")
        ]
        if references:
            sources = "\n".join(f"{i}. {url}" for i, url in enumerate(references, start=1))
            lines.append(f"\nSources:\n{sources}")

        extra = {
            "ai_overview_present": bool(overview),
            "references": references,
        }
        return "\n".join(lines).strip(), 0, 0, extra

    def _cost_cents(self, prompt_tokens: int, completion_tokens: int) -> int:
        return usd_to_cents(SERPAPI_COST_PER_SEARCH_USD)
