"""
Perplexity adapter.

Perplexity speaks the OpenAI chat-completions dialect and additionally
returns the URLs it grounded the answer on. Those are appended to the
answer text as a numbered source list so citation extraction sees them.
"""

from typing import Any

from ai_visibility.providers.openai_client import OpenAIAdapter

PERPLEXITY_API_URL = "https://api.perplexity.ai/chat/completions"


class PerplexityAdapter(OpenAIAdapter):
    """Perplexity chat-completions adapter with source URLs."""

    provider = "perplexity"
    api_url = PERPLEXITY_API_URL

    def _parse_response(self, data: dict[str, Any]):
        text, prompt_tokens, completion_tokens, extra = super()._parse_response(data)

        citations = [str(url) for url in data.get("citations") or [] if url]
        if citations:
            extra["citations"] = citations
            if not any(url in text for url in citations):
                sources = "\n".join(f"{i}. {url}" for i, url in enumerate(citations, start=1))
                text = f"{text}\n\nSources:\n{sources}"
        return text, prompt_tokens, completion_tokens, extra
