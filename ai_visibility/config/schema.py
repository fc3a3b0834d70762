"""
Configuration schema models for the job pipeline.

Pydantic v2 models validating the optional YAML settings file. Every field
has a default, so the worker runs with no file at all; the file only
overrides what it names.

Models:
    RouterSettings: Provider order, models and per-call timeout for the
        fallback router
    ExtractionSettings: Strategy selection and thresholds for extraction
    WorkerSettings: Queue, pool and retry knobs
    Settings: Root model (validates the whole YAML document)
    RuntimeConfig: Settings plus credentials resolved once at startup

Example YAML:
    database_path: ./data/ai_visibility.db
    router:
      order: [anthropic, openai, gemini]
      call_timeout_seconds: 45
    engines:
      OPENAI: gpt-4o-mini
    extraction:
      method: rule_based
    worker:
      concurrency: 5
"""

from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator

from ai_visibility.config.constants import (
    AIO_CREDENTIAL_NAME,
    AIO_ENGINE_KEY,
    BRAND_LOOKUP_ATTEMPTS,
    BRAND_LOOKUP_DELAY_SECONDS,
    DEFAULT_BRAND_MIN_CONFIDENCE,
    DEFAULT_CONTEXT_WINDOW,
    DEFAULT_ENGINE_MODELS,
    DEFAULT_FUZZY_THRESHOLD,
    DEFAULT_LLM_MIN_CONFIDENCE,
    DEFAULT_MAX_JOB_ATTEMPTS,
    DEFAULT_MAX_PROMPTS_PER_CLUSTER,
    DEFAULT_ROUTER_MODELS,
    DEFAULT_WORKER_CONCURRENCY,
    ENGINE_KEYS,
    EXTRACTION_CACHE_TTL_SECONDS,
    MAX_EXTRACTION_ANSWER_CHARS,
    ROUTER_PROVIDER_ORDER,
)

ProviderKind = Literal["openai", "anthropic", "gemini"]


class RouterSettings(BaseModel):
    """
    Fallback router settings.

    Attributes:
        order: Deterministic provider order used after the primary hint
        primary: Default primary provider hint when a caller passes none
        models: Model per provider kind
        call_timeout_seconds: Upper bound for one provider call, retries
            included; exceeding it counts as that provider failing
    """

    order: list[ProviderKind] = Field(default_factory=lambda: list(ROUTER_PROVIDER_ORDER))
    primary: ProviderKind | None = None
    models: dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_ROUTER_MODELS))
    call_timeout_seconds: float = 60.0

    @field_validator("order")
    @classmethod
    def validate_order(cls, v: list[str]) -> list[str]:
        """Reject duplicates; an empty order disables discovery entirely."""
        if len(set(v)) != len(v):
            raise ValueError(f"router.order contains duplicates: {v}")
        return v

    @field_validator("models")
    @classmethod
    def merge_default_models(cls, v: dict[str, str]) -> dict[str, str]:
        """Fill in defaults for provider kinds the file leaves out."""
        unknown = set(v) - set(ROUTER_PROVIDER_ORDER)
        if unknown:
            raise ValueError(f"Unknown router provider(s): {sorted(unknown)}")
        return {**DEFAULT_ROUTER_MODELS, **v}

    @field_validator("call_timeout_seconds")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"call_timeout_seconds must be positive (got: {v})")
        return v


class ExtractionSettings(BaseModel):
    """
    Structured extraction settings.

    Attributes:
        method: "rule_based" (local heuristics) or "llm" (secondary prompt
            sent through the router)
        brand_min_confidence: Threshold for rule-based brand mentions
        llm_min_confidence: Threshold for LLM-extracted records
        include_insights: Keep free-text insights from the LLM strategy
        context_window: Characters kept on each side of a mention snippet
        fuzzy_threshold: rapidfuzz ratio (0-100) for typo matches; 0 disables
        max_answer_chars: Answer text is truncated to this before being
            embedded in the extraction prompt
        cache_enabled: Consult the extraction cache
        cache_ttl_seconds: Cache entry lifetime; None keeps entries forever
    """

    method: Literal["rule_based", "llm"] = "rule_based"
    brand_min_confidence: float = DEFAULT_BRAND_MIN_CONFIDENCE
    llm_min_confidence: float = DEFAULT_LLM_MIN_CONFIDENCE
    include_insights: bool = True
    context_window: int = DEFAULT_CONTEXT_WINDOW
    fuzzy_threshold: float = DEFAULT_FUZZY_THRESHOLD
    max_answer_chars: int = MAX_EXTRACTION_ANSWER_CHARS
    cache_enabled: bool = True
    cache_ttl_seconds: int | None = EXTRACTION_CACHE_TTL_SECONDS

    @field_validator("brand_min_confidence", "llm_min_confidence")
    @classmethod
    def validate_confidence(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError(f"confidence threshold must be between 0.0 and 1.0 (got: {v})")
        return v

    @field_validator("fuzzy_threshold")
    @classmethod
    def validate_fuzzy_threshold(cls, v: float) -> float:
        if not 0.0 <= v <= 100.0:
            raise ValueError(f"fuzzy_threshold must be between 0 and 100 (got: {v})")
        return v

    @field_validator("cache_ttl_seconds")
    @classmethod
    def validate_ttl(cls, v: int | None) -> int | None:
        if v is not None and v <= 0:
            raise ValueError(f"cache_ttl_seconds must be positive or null (got: {v})")
        return v


class WorkerSettings(BaseModel):
    """
    Worker pool and queue settings.

    Attributes:
        concurrency: Jobs processed in parallel (1-50)
        max_prompts_per_cluster: Default cap when a cluster-scan payload
            doesn't carry one
        max_attempts: Deliveries before a retryable job is marked dead
        backoff_base_seconds: First retry delay; doubles per attempt
        poll_interval_seconds: Idle sleep when the queue is empty
        brand_lookup_attempts: Workspace lookups before giving up on brands
        brand_lookup_delay_seconds: Fixed delay between those lookups
    """

    concurrency: int = DEFAULT_WORKER_CONCURRENCY
    max_prompts_per_cluster: int = DEFAULT_MAX_PROMPTS_PER_CLUSTER
    max_attempts: int = DEFAULT_MAX_JOB_ATTEMPTS
    backoff_base_seconds: float = 5.0
    poll_interval_seconds: float = 1.0
    brand_lookup_attempts: int = BRAND_LOOKUP_ATTEMPTS
    brand_lookup_delay_seconds: float = BRAND_LOOKUP_DELAY_SECONDS

    @field_validator("concurrency")
    @classmethod
    def validate_concurrency(cls, v: int) -> int:
        if not 1 <= v <= 50:
            raise ValueError(f"concurrency must be between 1 and 50 (got: {v})")
        return v

    @field_validator("max_prompts_per_cluster", "max_attempts", "brand_lookup_attempts")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"must be >= 1 (got: {v})")
        return v


class Settings(BaseModel):
    """
    Root settings model (validates the whole YAML document).

    Attributes:
        database_path: SQLite database file
        router: Fallback router settings
        engines: Model name per engine key
        extraction: Extraction settings
        worker: Worker pool settings
    """

    database_path: str = "./data/ai_visibility.db"
    router: RouterSettings = Field(default_factory=RouterSettings)
    engines: dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_ENGINE_MODELS))
    extraction: ExtractionSettings = Field(default_factory=ExtractionSettings)
    worker: WorkerSettings = Field(default_factory=WorkerSettings)

    @field_validator("database_path")
    @classmethod
    def validate_database_path(cls, v: str) -> str:
        if not v or v.isspace():
            raise ValueError("database_path cannot be empty")
        return v

    @field_validator("engines")
    @classmethod
    def validate_engines(cls, v: dict[str, str]) -> dict[str, str]:
        """Normalize keys to upper case and fill in default models."""
        normalized = {key.upper(): model for key, model in v.items()}
        unknown = set(normalized) - set(ENGINE_KEYS)
        if unknown:
            raise ValueError(
                f"Unknown engine key(s): {sorted(unknown)}. "
                f"Supported: {', '.join(ENGINE_KEYS)}"
            )
        return {**DEFAULT_ENGINE_MODELS, **normalized}


def credential_name_for(engine_key: str) -> str:
    """
    Return the credential variable name for an engine key.

    Example:
        >>> credential_name_for("OPENAI")
        'OPENAI_API_KEY'
        >>> credential_name_for("AIO")
        'SERPAPI_KEY'
    """
    engine_key = engine_key.upper()
    if engine_key == AIO_ENGINE_KEY:
        return AIO_CREDENTIAL_NAME
    return f"{engine_key}_API_KEY"


class RuntimeConfig(BaseModel):
    """
    Settings plus credentials, resolved once at process start.

    Built by config.loader.load_config() and passed to constructors. Nothing
    downstream reads the process environment.

    Attributes:
        settings: Validated settings
        engine_credentials: Credential variable name -> value, for every
            engine credential that was set
        router_credentials: Provider kind -> candidate keys, in discovery
            order (OpenAI may carry several)
    """

    settings: Settings = Field(default_factory=Settings)
    engine_credentials: dict[str, str] = Field(default_factory=dict, repr=False)
    router_credentials: dict[str, list[str]] = Field(default_factory=dict, repr=False)

    @model_validator(mode="after")
    def strip_blank_router_keys(self) -> "RuntimeConfig":
        """Drop empty strings so discovery only sees real candidates."""
        self.router_credentials = {
            provider: [key for key in keys if key and key.strip()]
            for provider, keys in self.router_credentials.items()
        }
        return self

    def credential_for_engine(self, engine_key: str) -> tuple[str, str | None]:
        """
        Look up the credential for an engine.

        Returns:
            (credential variable name, value or None if unset)
        """
        name = credential_name_for(engine_key)
        return name, self.engine_credentials.get(name)

    def engine_model(self, engine_key: str) -> str:
        """Model name configured for an engine key."""
        return self.settings.engines.get(
            engine_key.upper(), DEFAULT_ENGINE_MODELS.get(engine_key.upper(), "")
        )
