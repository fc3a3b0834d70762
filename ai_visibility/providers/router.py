"""
Provider fallback router.

Given a prompt, tries the available answer engines one after another until
one answers. Credentials come from RuntimeConfig (resolved once at
startup); the router never reads the environment and never touches
storage.

Ordering:
    1. The primary hint, when it names an available provider
    2. The remaining providers in the configured order
       (openai, anthropic, gemini by default)
    OpenAI may contribute several candidates, one per configured key.

Exhaustion never raises. Instead a fallback RoutedAnswer is returned with
fallback=True, zero cost and a diagnostic text listing every per-provider
error, so the caller decides what "no answer" means for its job.

Example:
    >>> router = ProviderRouter.from_config(runtime_config)
    >>> routed = await router.route("ws-1", "Best CRM tools?", primary_hint="anthropic")
    >>> routed.provider_used
    'anthropic'
"""

import asyncio
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from ai_visibility.config.constants import MIN_CREDENTIAL_LENGTH
from ai_visibility.config.schema import RuntimeConfig
from ai_visibility.exceptions import ProviderAuthenticationError, ProviderTimeoutError
from ai_visibility.providers.models import AdapterFactory, ProviderAdapter
from ai_visibility.providers.registry import ENGINE_REGISTRY, PROVIDER_REGISTRY
from ai_visibility.utils.time import utc_timestamp

logger = logging.getLogger(__name__)

FAILURE_UNAVAILABLE = "all_providers_unavailable"
FAILURE_ALL_FAILED = "all_providers_failed"

FALLBACK_MESSAGE = (
    "[LLM Service Unavailable] Unable to process request at this time. "
    "All LLM providers are currently unavailable. "
    "Please check your API keys and provider status."
)


@dataclass
class RoutedAnswer:
    """
    Result of routing one prompt.

    Attributes:
        answer_text: Provider answer, or the diagnostic fallback text
        cost_cents: Integer cents (0 for fallbacks)
        meta: Provider metadata, or fallback diagnostics
        provider_used: Provider kind that answered (None for fallbacks)
        fallback: True when no provider produced an answer
        failure_kind: all_providers_unavailable / all_providers_failed
        attempts: One {provider, error, error_type, auth} dict per failed try
        tokens_used: Tokens reported by the provider (0 for fallbacks)
    """

    answer_text: str
    cost_cents: int
    meta: dict[str, Any]
    provider_used: str | None
    fallback: bool = False
    failure_kind: str | None = None
    attempts: list[dict[str, Any]] = field(default_factory=list)
    tokens_used: int = 0

    @property
    def auth_failed(self) -> bool:
        """True when at least one attempt was rejected for its credential."""
        return any(attempt.get("auth") for attempt in self.attempts)


@dataclass
class Candidate:
    """One provider kind + credential ready to be tried."""

    provider: str
    adapter: ProviderAdapter
    credential_index: int = 0


def is_plausible_credential(value: str | None) -> bool:
    """Non-empty, no embedded whitespace and at least MIN_CREDENTIAL_LENGTH chars."""
    if value is None:
        return False
    stripped = value.strip()
    return len(stripped) >= MIN_CREDENTIAL_LENGTH and not any(c.isspace() for c in stripped)


class ProviderRouter:
    """
    Sequential fallback across answer engines.

    Args:
        credentials: Provider kind -> candidate keys
        order: Deterministic provider order
        models: Provider kind -> model name
        call_timeout_seconds: Upper bound for one provider call
        registry: Provider kind -> adapter factory
        engine_registry: Engine key -> adapter factory (route_with_credential)
        engine_models: Engine key -> model name
        default_primary: Primary hint used when route() gets none
    """

    def __init__(
        self,
        credentials: Mapping[str, Sequence[str]],
        order: Sequence[str],
        models: Mapping[str, str],
        call_timeout_seconds: float = 60.0,
        registry: Mapping[str, AdapterFactory] | None = None,
        engine_registry: Mapping[str, AdapterFactory] | None = None,
        engine_models: Mapping[str, str] | None = None,
        default_primary: str | None = None,
    ):
        self._credentials = {kind: list(keys) for kind, keys in credentials.items()}
        self._order = list(order)
        self._models = dict(models)
        self._timeout = call_timeout_seconds
        self._registry = dict(registry if registry is not None else PROVIDER_REGISTRY)
        self._engine_registry = dict(
            engine_registry if engine_registry is not None else ENGINE_REGISTRY
        )
        self._engine_models = dict(engine_models or {})
        self._default_primary = default_primary

    @classmethod
    def from_config(
        cls,
        config: RuntimeConfig,
        registry: Mapping[str, AdapterFactory] | None = None,
        engine_registry: Mapping[str, AdapterFactory] | None = None,
    ) -> "ProviderRouter":
        """Build a router from the runtime configuration."""
        router_settings = config.settings.router
        return cls(
            credentials=config.router_credentials,
            order=router_settings.order,
            models=router_settings.models,
            call_timeout_seconds=router_settings.call_timeout_seconds,
            registry=registry,
            engine_registry=engine_registry,
            engine_models=config.settings.engines,
            default_primary=router_settings.primary,
        )

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    def discover_candidates(self) -> list[Candidate]:
        """
        Build one candidate per (provider kind, plausible key).

        Kinds without a registry entry, keys that fail the plausibility
        check and adapters whose constructor rejects the input are dropped
        (debug log only).
        """
        candidates: list[Candidate] = []
        known_kinds = list(self._order) + [
            kind for kind in self._credentials if kind not in self._order
        ]

        for kind in known_kinds:
            factory = self._registry.get(kind)
            if factory is None:
                logger.debug(f"No adapter registered for provider kind: {kind}")
                continue

            for index, key in enumerate(self._credentials.get(kind, [])):
                if not is_plausible_credential(key):
                    logger.debug(f"Skipping malformed credential #{index} for provider: {kind}")
                    continue
                try:
                    adapter = factory(key.strip(), self._models.get(kind, ""), self._timeout)
                except ValueError as e:
                    logger.debug(f"Adapter for {kind} rejected configuration: {e}")
                    continue
                candidates.append(Candidate(provider=kind, adapter=adapter, credential_index=index))

        return candidates

    def order_candidates(
        self, candidates: list[Candidate], primary_hint: str | None
    ) -> list[Candidate]:
        """
        Primary hint first, then everything else in configured order.

        Stable: candidates of the same kind keep their discovery order.
        """
        rank = {kind: position for position, kind in enumerate(self._order)}
        ordered = sorted(candidates, key=lambda c: rank.get(c.provider, len(rank)))

        if primary_hint:
            primary = [c for c in ordered if c.provider == primary_hint]
            rest = [c for c in ordered if c.provider != primary_hint]
            ordered = primary + rest

        return ordered

    # ------------------------------------------------------------------
    # Routing
    # ------------------------------------------------------------------

    async def route(
        self,
        workspace_id: str,
        prompt_text: str,
        primary_hint: str | None = None,
    ) -> RoutedAnswer:
        """
        Answer a prompt with the first provider that succeeds.

        Args:
            workspace_id: Workspace the call is made for (logging only)
            prompt_text: Prompt to send
            primary_hint: Provider kind to try first, if available

        Returns:
            RoutedAnswer; fallback=True when every candidate failed or none
            was available. Never raises for exhausted providers.
        """
        hint = primary_hint or self._default_primary
        candidates = self.order_candidates(self.discover_candidates(), hint)

        logger.info(
            "Routing prompt",
            extra={
                "context": {
                    "workspace_id": workspace_id,
                    "candidates": [c.provider for c in candidates],
                    "primary_hint": hint,
                }
            },
        )
        return await self._try_candidates(candidates, prompt_text)

    async def route_with_credential(
        self, engine_key: str, api_key: str, prompt_text: str
    ) -> RoutedAnswer:
        """
        Single-candidate routing with an engine-specific credential.

        Args:
            engine_key: Engine key (OPENAI, ANTHROPIC, GEMINI, PERPLEXITY, AIO)
            api_key: Credential resolved for that engine
            prompt_text: Prompt to send

        Returns:
            RoutedAnswer with provider_used set to the engine key on success
        """
        engine_key = engine_key.upper()
        factory = self._engine_registry.get(engine_key)
        candidates: list[Candidate] = []

        if factory is None:
            logger.warning(f"No adapter registered for engine: {engine_key}")
        elif not is_plausible_credential(api_key):
            logger.debug(f"Credential for engine {engine_key} failed plausibility check")
        else:
            try:
                adapter = factory(
                    api_key.strip(), self._engine_models.get(engine_key, ""), self._timeout
                )
                candidates.append(Candidate(provider=engine_key, adapter=adapter))
            except ValueError as e:
                logger.debug(f"Adapter for {engine_key} rejected configuration: {e}")

        return await self._try_candidates(candidates, prompt_text)

    async def _try_candidates(
        self, candidates: list[Candidate], prompt_text: str
    ) -> RoutedAnswer:
        if not candidates:
            logger.warning("No answer-engine candidates available")
            return self._fallback(FAILURE_UNAVAILABLE, [])

        attempts: list[dict[str, Any]] = []

        for candidate in candidates:
            try:
                answer = await asyncio.wait_for(
                    candidate.adapter.ask(prompt_text), timeout=self._timeout
                )
            except TimeoutError:
                error = ProviderTimeoutError(
                    f"{candidate.provider} call exceeded {self._timeout}s",
                    provider=candidate.provider,
                )
                attempts.append(self._attempt_record(candidate, error))
                logger.warning(f"Provider {candidate.provider} timed out, trying next")
                continue
            except Exception as e:
                attempts.append(self._attempt_record(candidate, e))
                logger.warning(
                    f"Provider {candidate.provider} failed, trying next",
                    extra={
                        "context": {
                            "provider": candidate.provider,
                            "credential_index": candidate.credential_index,
                            "error_type": type(e).__name__,
                        }
                    },
                )
                continue

            logger.info(
                f"Provider {candidate.provider} answered",
                extra={
                    "context": {
                        "provider": candidate.provider,
                        "cost_cents": answer.cost_cents,
                        "failed_attempts": len(attempts),
                    }
                },
            )
            return RoutedAnswer(
                answer_text=answer.answer_text,
                cost_cents=answer.cost_cents,
                meta=dict(answer.meta),
                provider_used=candidate.provider,
                attempts=attempts,
                tokens_used=answer.tokens_used,
            )

        logger.error(f"All {len(candidates)} provider candidate(s) failed")
        return self._fallback(FAILURE_ALL_FAILED, attempts)

    @staticmethod
    def _attempt_record(candidate: Candidate, error: Exception) -> dict[str, Any]:
        return {
            "provider": candidate.provider,
            "error": str(error),
            "error_type": type(error).__name__,
            "auth": isinstance(error, ProviderAuthenticationError)
            or bool(getattr(error, "is_auth_error", False)),
        }

    @staticmethod
    def _fallback(failure_kind: str, attempts: list[dict[str, Any]]) -> RoutedAnswer:
        text = FALLBACK_MESSAGE
        if attempts:
            text += " Errors: " + "; ".join(f"{a['provider']}: {a['error']}" for a in attempts)

        error = (
            "All LLM providers failed"
            if failure_kind == FAILURE_ALL_FAILED
            else "No LLM providers available"
        )
        return RoutedAnswer(
            answer_text=text,
            cost_cents=0,
            meta={
                "fallback": True,
                "error": error,
                "failure_kind": failure_kind,
                "errors": attempts,
                "tokens_used": 0,
                "timestamp": utc_timestamp(),
            },
            provider_used=None,
            fallback=True,
            failure_kind=failure_kind,
            attempts=attempts,
        )
