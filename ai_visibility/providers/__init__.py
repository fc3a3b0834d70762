"""
Answer-engine adapters and the fallback router.

Public API:
    - ProviderAnswer / ProviderAdapter: adapter contract
    - PROVIDER_REGISTRY / ENGINE_REGISTRY: static adapter factories
    - MockProviderAdapter: network-free adapter for tests and the demo
    - ProviderRouter / RoutedAnswer: sequential provider fallback

Example:
    >>> from ai_visibility.providers import ProviderRouter
    >>> router = ProviderRouter.from_config(runtime_config)
    >>> routed = await router.route("ws-1", "Best CRM tools?")
"""

from ai_visibility.providers.mock_client import MockProviderAdapter
from ai_visibility.providers.models import AdapterFactory, ProviderAdapter, ProviderAnswer
from ai_visibility.providers.registry import ENGINE_REGISTRY, PROVIDER_REGISTRY
from ai_visibility.providers.router import ProviderRouter, RoutedAnswer

__all__ = [
    "AdapterFactory",
    "ENGINE_REGISTRY",
    "MockProviderAdapter",
    "PROVIDER_REGISTRY",
    "ProviderAdapter",
    "ProviderAnswer",
    "ProviderRouter",
    "RoutedAnswer",
]
