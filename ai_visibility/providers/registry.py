"""
Static adapter registries.

Two explicit maps, no reflection and no dynamic module loading:

    PROVIDER_REGISTRY   router provider kind -> AdapterFactory
    ENGINE_REGISTRY     engine key           -> AdapterFactory

A factory takes (api_key, model_name, timeout) and returns a
ProviderAdapter. Callers (router, CLI demo, tests) may pass their own maps
to substitute adapters, e.g. MockProviderAdapter.
"""

from ai_visibility.providers.anthropic_client import AnthropicAdapter
from ai_visibility.providers.gemini_client import GeminiAdapter
from ai_visibility.providers.models import AdapterFactory
from ai_visibility.providers.openai_client import OpenAIAdapter
from ai_visibility.providers.perplexity_client import PerplexityAdapter
from ai_visibility.providers.serpapi_client import SerpAPIOverviewAdapter


def _openai(api_key: str, model_name: str, timeout: float) -> OpenAIAdapter:
    return OpenAIAdapter(model_name, api_key, timeout=timeout)


def _anthropic(api_key: str, model_name: str, timeout: float) -> AnthropicAdapter:
    return AnthropicAdapter(model_name, api_key, timeout=timeout)


def _gemini(api_key: str, model_name: str, timeout: float) -> GeminiAdapter:
    return GeminiAdapter(model_name, api_key, timeout=timeout)


def _perplexity(api_key: str, model_name: str, timeout: float) -> PerplexityAdapter:
    return PerplexityAdapter(model_name, api_key, timeout=timeout)


def _serpapi(api_key: str, model_name: str, timeout: float) -> SerpAPIOverviewAdapter:
    return SerpAPIOverviewAdapter(model_name, api_key, timeout=timeout)


PROVIDER_REGISTRY: dict[str, AdapterFactory] = {
    "openai": _openai,
    "anthropic": _anthropic,
    "gemini": _gemini,
}

ENGINE_REGISTRY: dict[str, AdapterFactory] = {
    "OPENAI": _openai,
    "ANTHROPIC": _anthropic,
    "GEMINI": _gemini,
    "PERPLEXITY": _perplexity,
    "AIO": _serpapi,
}
