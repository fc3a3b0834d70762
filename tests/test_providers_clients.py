"""
Tests for the HTTP answer-engine adapters.

Tests cover:
- Initialization and prompt validation
- Response parsing for OpenAI, Anthropic, Gemini, Perplexity, SerpAPI
- Cost in integer cents (rounded up)
- Retry on 429/5xx, no retry on 401/403/400
- Error mapping onto the ProviderError hierarchy
- API keys never logged
"""

import logging

import httpx
import pytest
from freezegun import freeze_time
from tenacity import wait_none

from ai_visibility.exceptions import (
    ProviderAuthenticationError,
    ProviderError,
    ProviderRateLimitError,
    ProviderResponseError,
    ProviderTimeoutError,
)
from ai_visibility.providers.anthropic_client import (
    ANTHROPIC_API_URL,
    ANTHROPIC_VERSION,
    AnthropicAdapter,
)
from ai_visibility.providers.base import HTTPProviderAdapter
from ai_visibility.providers.gemini_client import GEMINI_API_BASE, GeminiAdapter
from ai_visibility.providers.models import ProviderAnswer
from ai_visibility.providers.openai_client import OPENAI_API_URL, OpenAIAdapter
from ai_visibility.providers.perplexity_client import PERPLEXITY_API_URL, PerplexityAdapter
from ai_visibility.providers.retry_config import MAX_ATTEMPTS
from ai_visibility.providers.serpapi_client import SERPAPI_URL, SerpAPIOverviewAdapter

API_KEY = "sk-test-0123456789"

OPENAI_OK = {
    "id": "chatcmpl-123",
    "choices": [{"message": {"role": "assistant", "content": "Airbnb and Vrbo lead."}}],
    "usage": {"prompt_tokens": 100, "completion_tokens": 50, "total_tokens": 150},
}


@pytest.fixture(autouse=True)
def no_retry_wait(monkeypatch):
    """Retries happen immediately in tests."""
    monkeypatch.setattr(HTTPProviderAdapter._send.retry, "wait", wait_none())


# ============================================================================
# Initialization and input validation
# ============================================================================


class TestAdapterInit:
    """Test suite for adapter construction."""

    def test_init_success(self):
        """Test that model and key are stored."""
        adapter = OpenAIAdapter("gpt-4o-mini", API_KEY)

        assert adapter.model_name == "gpt-4o-mini"
        assert adapter.api_key == API_KEY

    def test_init_empty_model_name(self):
        """Test that an empty model name raises ValueError."""
        with pytest.raises(ValueError, match="model_name cannot be empty"):
            OpenAIAdapter("  ", API_KEY)

    def test_init_empty_api_key(self):
        """Test that an empty API key raises ValueError."""
        with pytest.raises(ValueError, match="api_key cannot be empty"):
            AnthropicAdapter("claude-3-haiku-20240307", "")

    def test_repr_hides_api_key(self):
        """Test that repr shows the model but not the key."""
        adapter = GeminiAdapter("gemini-1.5-pro", API_KEY)

        assert "gemini-1.5-pro" in repr(adapter)
        assert API_KEY not in repr(adapter)

    @pytest.mark.asyncio
    async def test_empty_prompt_rejected(self):
        """Test that an empty prompt raises before any request."""
        adapter = OpenAIAdapter("gpt-4o-mini", API_KEY)

        with pytest.raises(ValueError, match="Prompt cannot be empty"):
            await adapter.ask("   ")

    @pytest.mark.asyncio
    async def test_oversized_prompt_rejected(self):
        """Test that a prompt over the maximum length raises."""
        adapter = OpenAIAdapter("gpt-4o-mini", API_KEY)

        with pytest.raises(ValueError, match="exceeds maximum length"):
            await adapter.ask("x" * 100_001)


# ============================================================================
# OpenAI
# ============================================================================


class TestOpenAIAdapter:
    """Test suite for the OpenAI adapter."""

    @pytest.mark.asyncio
    @freeze_time("2025-11-02T08:30:45Z")
    async def test_ask_success(self, httpx_mock):
        """Test a successful call with usage and cost."""
        httpx_mock.add_response(method="POST", url=OPENAI_API_URL, json=OPENAI_OK)

        answer = await OpenAIAdapter("gpt-4o-mini", API_KEY).ask("Best rental sites?")

        assert isinstance(answer, ProviderAnswer)
        assert answer.answer_text == "Airbnb and Vrbo lead."
        assert answer.tokens_used == 150
        assert answer.provider == "openai"
        assert answer.timestamp_utc == "2025-11-02T08:30:45Z"
        assert answer.meta["response_id"] == "chatcmpl-123"
        assert answer.meta["prompt_tokens"] == 100

    @pytest.mark.asyncio
    async def test_cost_rounds_up_to_one_cent(self, httpx_mock):
        """Test that a tiny paid call still costs one cent."""
        httpx_mock.add_response(method="POST", url=OPENAI_API_URL, json=OPENAI_OK)

        answer = await OpenAIAdapter("gpt-4o-mini", API_KEY).ask("Best rental sites?")

        assert answer.cost_cents == 1

    @pytest.mark.asyncio
    async def test_unknown_model_costs_zero(self, httpx_mock):
        """Test that a model without pricing costs zero cents."""
        httpx_mock.add_response(method="POST", url=OPENAI_API_URL, json=OPENAI_OK)

        answer = await OpenAIAdapter("gpt-unknown", API_KEY).ask("Best rental sites?")

        assert answer.cost_cents == 0

    @pytest.mark.asyncio
    async def test_request_shape(self, httpx_mock):
        """Test bearer auth and chat-completions payload."""
        httpx_mock.add_response(method="POST", url=OPENAI_API_URL, json=OPENAI_OK)

        await OpenAIAdapter("gpt-4o-mini", API_KEY).ask("Best rental sites?")

        request = httpx_mock.get_request()
        assert request.headers["Authorization"] == f"Bearer {API_KEY}"
        body = request.read().decode()
        assert '"model":"gpt-4o-mini"' in body.replace(" ", "")
        assert "Best rental sites?" in body

    @pytest.mark.asyncio
    async def test_empty_choices_is_response_error(self, httpx_mock):
        """Test that a response without choices raises ProviderResponseError."""
        httpx_mock.add_response(method="POST", url=OPENAI_API_URL, json={"choices": []})

        with pytest.raises(ProviderResponseError, match="Invalid openai response structure"):
            await OpenAIAdapter("gpt-4o-mini", API_KEY).ask("Best rental sites?")

    @pytest.mark.asyncio
    async def test_non_json_body_is_response_error(self, httpx_mock):
        """Test that a non-JSON body raises ProviderResponseError."""
        httpx_mock.add_response(method="POST", url=OPENAI_API_URL, text="<html>oops</html>")

        with pytest.raises(ProviderResponseError, match="Failed to parse openai response JSON"):
            await OpenAIAdapter("gpt-4o-mini", API_KEY).ask("Best rental sites?")


# ============================================================================
# Status handling and retries
# ============================================================================


class TestStatusHandling:
    """Test suite for retry and error mapping."""

    @pytest.mark.asyncio
    async def test_401_raises_auth_error_without_retry(self, httpx_mock):
        """Test that 401 is an authentication error and is not retried."""
        httpx_mock.add_response(
            method="POST",
            url=OPENAI_API_URL,
            status_code=401,
            json={"error": {"message": "Incorrect API key provided"}},
        )

        with pytest.raises(ProviderAuthenticationError) as exc_info:
            await OpenAIAdapter("gpt-4o-mini", API_KEY).ask("Best rental sites?")

        assert exc_info.value.status_code == 401
        assert exc_info.value.is_auth_error is True
        assert len(httpx_mock.get_requests()) == 1

    @pytest.mark.asyncio
    async def test_403_raises_auth_error(self, httpx_mock):
        """Test that 403 is an authentication error too."""
        httpx_mock.add_response(method="POST", url=ANTHROPIC_API_URL, status_code=403, json={})

        with pytest.raises(ProviderAuthenticationError):
            await AnthropicAdapter("claude-3-haiku-20240307", API_KEY).ask("Hi there")

    @pytest.mark.asyncio
    async def test_400_not_retried(self, httpx_mock):
        """Test that 400 raises ProviderResponseError after one request."""
        httpx_mock.add_response(
            method="POST",
            url=OPENAI_API_URL,
            status_code=400,
            json={"error": {"message": "Invalid model"}},
        )

        with pytest.raises(ProviderResponseError, match="Invalid model"):
            await OpenAIAdapter("gpt-4o-mini", API_KEY).ask("Best rental sites?")

        assert len(httpx_mock.get_requests()) == 1

    @pytest.mark.asyncio
    async def test_500_then_success_retries(self, httpx_mock):
        """Test that a 5xx is retried and a later success is returned."""
        httpx_mock.add_response(method="POST", url=OPENAI_API_URL, status_code=503)
        httpx_mock.add_response(method="POST", url=OPENAI_API_URL, json=OPENAI_OK)

        answer = await OpenAIAdapter("gpt-4o-mini", API_KEY).ask("Best rental sites?")

        assert answer.answer_text == "Airbnb and Vrbo lead."
        assert len(httpx_mock.get_requests()) == 2

    @pytest.mark.asyncio
    async def test_429_exhausts_retries(self, httpx_mock):
        """Test that persistent 429 becomes ProviderRateLimitError."""
        for _ in range(MAX_ATTEMPTS):
            httpx_mock.add_response(
                method="POST",
                url=OPENAI_API_URL,
                status_code=429,
                json={"error": {"message": "Rate limit reached"}},
            )

        with pytest.raises(ProviderRateLimitError, match="429"):
            await OpenAIAdapter("gpt-4o-mini", API_KEY).ask("Best rental sites?")

        assert len(httpx_mock.get_requests()) == MAX_ATTEMPTS

    @pytest.mark.asyncio
    async def test_timeout_maps_to_timeout_error(self, httpx_mock):
        """Test that repeated timeouts become ProviderTimeoutError."""
        for _ in range(MAX_ATTEMPTS):
            httpx_mock.add_exception(httpx.ReadTimeout("timed out"))

        with pytest.raises(ProviderTimeoutError):
            await OpenAIAdapter("gpt-4o-mini", API_KEY).ask("Best rental sites?")

    @pytest.mark.asyncio
    async def test_connect_error_maps_to_provider_error(self, httpx_mock):
        """Test that repeated connection failures become ProviderError."""
        for _ in range(MAX_ATTEMPTS):
            httpx_mock.add_exception(httpx.ConnectError("connection refused"))

        with pytest.raises(ProviderError, match="network connection failed"):
            await OpenAIAdapter("gpt-4o-mini", API_KEY).ask("Best rental sites?")

    @pytest.mark.asyncio
    async def test_api_key_never_logged(self, httpx_mock, caplog):
        """Test that the key doesn't appear in logs, even on errors."""
        caplog.set_level(logging.DEBUG)
        httpx_mock.add_response(method="POST", url=OPENAI_API_URL, status_code=401, json={})

        with pytest.raises(ProviderAuthenticationError):
            await OpenAIAdapter("gpt-4o-mini", API_KEY).ask("Best rental sites?")

        assert API_KEY not in caplog.text


# ============================================================================
# Anthropic
# ============================================================================


class TestAnthropicAdapter:
    """Test suite for the Anthropic adapter."""

    @pytest.mark.asyncio
    async def test_ask_joins_text_blocks(self, httpx_mock):
        """Test that text blocks are concatenated and tool blocks ignored."""
        httpx_mock.add_response(
            method="POST",
            url=ANTHROPIC_API_URL,
            json={
                "content": [
                    {"type": "text", "text": "Vrbo is great. "},
                    {"type": "tool_use", "id": "t1"},
                    {"type": "text", "text": "Airbnb too."},
                ],
                "usage": {"input_tokens": 20, "output_tokens": 10},
                "stop_reason": "end_turn",
            },
        )

        answer = await AnthropicAdapter("claude-3-haiku-20240307", API_KEY).ask("Rentals?")

        assert answer.answer_text == "Vrbo is great. Airbnb too."
        assert answer.tokens_used == 30
        assert answer.meta["stop_reason"] == "end_turn"

    @pytest.mark.asyncio
    async def test_request_headers(self, httpx_mock):
        """Test x-api-key and version headers."""
        httpx_mock.add_response(
            method="POST",
            url=ANTHROPIC_API_URL,
            json={"content": [], "usage": {}},
        )

        await AnthropicAdapter("claude-3-haiku-20240307", API_KEY).ask("Rentals?")

        request = httpx_mock.get_request()
        assert request.headers["x-api-key"] == API_KEY
        assert request.headers["anthropic-version"] == ANTHROPIC_VERSION


# ============================================================================
# Gemini
# ============================================================================


class TestGeminiAdapter:
    """Test suite for the Gemini adapter."""

    @pytest.mark.asyncio
    async def test_ask_success(self, httpx_mock):
        """Test parts concatenation and usage metadata."""
        httpx_mock.add_response(
            method="POST",
            url=f"{GEMINI_API_BASE}/gemini-1.5-pro:generateContent?key={API_KEY}",
            json={
                "candidates": [
                    {
                        "content": {"parts": [{"text": "Try "}, {"text": "Vrbo."}]},
                        "finishReason": "STOP",
                    }
                ],
                "usageMetadata": {"promptTokenCount": 12, "candidatesTokenCount": 3},
            },
        )

        answer = await GeminiAdapter("gemini-1.5-pro", API_KEY).ask("Rentals?")

        assert answer.answer_text == "Try Vrbo."
        assert answer.tokens_used == 15
        assert answer.meta["finish_reason"] == "STOP"

    @pytest.mark.asyncio
    async def test_missing_candidates_is_response_error(self, httpx_mock):
        """Test that a response without candidates raises ProviderResponseError."""
        httpx_mock.add_response(
            method="POST",
            url=f"{GEMINI_API_BASE}/gemini-1.5-pro:generateContent?key={API_KEY}",
            json={"promptFeedback": {"blockReason": "SAFETY"}},
        )

        with pytest.raises(ProviderResponseError):
            await GeminiAdapter("gemini-1.5-pro", API_KEY).ask("Rentals?")


# ============================================================================
# Perplexity
# ============================================================================


class TestPerplexityAdapter:
    """Test suite for the Perplexity adapter."""

    @pytest.mark.asyncio
    async def test_citations_appended_as_sources(self, httpx_mock):
        """Test that grounding URLs are appended when not in the text."""
        httpx_mock.add_response(
            method="POST",
            url=PERPLEXITY_API_URL,
            json={
                "choices": [{"message": {"content": "Airbnb leads the market [1]."}}],
                "usage": {"prompt_tokens": 10, "completion_tokens": 10},
                "citations": ["https://www.airbnb.com/about"],
            },
        )

        answer = await PerplexityAdapter("sonar", API_KEY).ask("Rentals?")

        assert answer.provider == "perplexity"
        assert answer.answer_text.endswith("Sources:\n1. https://www.airbnb.com/about")
        assert answer.meta["citations"] == ["https://www.airbnb.com/about"]

    @pytest.mark.asyncio
    async def test_citations_already_in_text_not_duplicated(self, httpx_mock):
        """Test that URLs already present in the answer are not appended."""
        httpx_mock.add_response(
            method="POST",
            url=PERPLEXITY_API_URL,
            json={
                "choices": [{"message": {"content": "See https://vrbo.com for homes."}}],
                "citations": ["https://vrbo.com"],
            },
        )

        answer = await PerplexityAdapter("sonar", API_KEY).ask("Rentals?")

        assert "Sources:" not in answer.answer_text


# ============================================================================
# SerpAPI (AI Overview)
# ============================================================================


class TestSerpAPIOverviewAdapter:
    """Test suite for the Google AI Overview adapter."""

    @pytest.mark.asyncio
    async def test_overview_flattened(self, httpx_mock):
        """Test text blocks, nested lists and references."""
        httpx_mock.add_response(
            method="GET",
            url=f"{SERPAPI_URL}?engine=google&q=best+rentals&api_key={API_KEY}",
            json={
                "ai_overview": {
                    "text_blocks": [
                        {"type": "paragraph", "snippet": "Popular options include:"},
                        {
                            "type": "list",
                            "list": [
                                {"title": "Airbnb:", "snippet": "unique stays"},
                                {"title": "Vrbo:", "snippet": "whole homes"},
                            ],
                        },
                    ],
                    "references": [{"link": "https://www.vrbo.com"}],
                }
            },
        )

        answer = await SerpAPIOverviewAdapter("google_ai_overview", API_KEY).ask("best rentals")

        assert "Popular options include:" in answer.answer_text
        assert "1. Airbnb: unique stays" in answer.answer_text
        assert "2. Vrbo: whole homes" in answer.answer_text
        assert "1. https://www.vrbo.com" in answer.answer_text
        assert answer.meta["ai_overview_present"] is True
        assert answer.cost_cents == 1
        assert answer.tokens_used == 0

    @pytest.mark.asyncio
    async def test_no_overview_is_empty_answer(self, httpx_mock):
        """Test that a search without an overview returns empty text."""
        httpx_mock.add_response(
            method="GET",
            url=f"{SERPAPI_URL}?engine=google&q=obscure&api_key={API_KEY}",
            json={"organic_results": []},
        )

        answer = await SerpAPIOverviewAdapter("google_ai_overview", API_KEY).ask("obscure")

        assert answer.answer_text == ""
        assert answer.meta["ai_overview_present"] is False

    @pytest.mark.asyncio
    async def test_error_field_is_response_error(self, httpx_mock):
        """Test that a SerpAPI error payload raises ProviderResponseError."""
        httpx_mock.add_response(
            method="GET",
            url=f"{SERPAPI_URL}?engine=google&q=rentals&api_key={API_KEY}",
            json={"error": "Invalid API key."},
        )

        with pytest.raises(ProviderResponseError, match="SerpAPI error"):
            await SerpAPIOverviewAdapter("google_ai_overview", API_KEY).ask("rentals")
