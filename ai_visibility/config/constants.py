"""
Configuration constants shared across the pipeline.

Kept in one module so providers, the router and the orchestrator agree on
engine keys, credential names and limits without importing each other.
"""

# Maximum prompt length accepted by any provider adapter
MAX_PROMPT_LENGTH = 100_000

# Engine keys understood by the orchestrator (closed set)
ENGINE_KEYS = ("OPENAI", "ANTHROPIC", "GEMINI", "PERPLEXITY", "AIO")

# Provider kinds the fallback router can discover on its own, in order
ROUTER_PROVIDER_ORDER = ("openai", "anthropic", "gemini")

# Default model per router provider kind
DEFAULT_ROUTER_MODELS = {
    "openai": "gpt-4",
    "anthropic": "claude-3-haiku-20240307",
    "gemini": "gemini-1.5-pro",
}

# Default model per engine key
DEFAULT_ENGINE_MODELS = {
    "OPENAI": "gpt-4o-mini",
    "ANTHROPIC": "claude-3-haiku-20240307",
    "GEMINI": "gemini-1.5-pro",
    "PERPLEXITY": "sonar",
    "AIO": "google_ai_overview",
}

# Engine AIO is backed by SerpAPI and reads SERPAPI_KEY, not AIO_API_KEY
AIO_ENGINE_KEY = "AIO"
AIO_CREDENTIAL_NAME = "SERPAPI_KEY"

# Router credential variables
OPENAI_KEY_VARIABLE = "OPENAI_API_KEY"
OPENAI_NUMBERED_KEY_LIMIT = 10
ANTHROPIC_KEY_VARIABLE = "ANTHROPIC_API_KEY"
GEMINI_KEY_VARIABLE = "GOOGLE_AI_API_KEY"

# Credentials shorter than this are rejected before any call
MIN_CREDENTIAL_LENGTH = 10

# Worker defaults
DEFAULT_WORKER_CONCURRENCY = 5
DEFAULT_MAX_PROMPTS_PER_CLUSTER = 10
DEFAULT_MAX_JOB_ATTEMPTS = 3

# Brand lookup retry when the workspace row is not visible yet
BRAND_LOOKUP_ATTEMPTS = 3
BRAND_LOOKUP_DELAY_SECONDS = 0.5

# Extraction
DEFAULT_BRAND_MIN_CONFIDENCE = 0.4
DEFAULT_LLM_MIN_CONFIDENCE = 0.7
DEFAULT_CONTEXT_WINDOW = 120
DEFAULT_FUZZY_THRESHOLD = 80.0
MAX_EXTRACTION_ANSWER_CHARS = 8_000
EXTRACTION_CACHE_TTL_SECONDS = 86_400

# Weight of the newest sample in the engine's rolling average latency
LATENCY_EMA_ALPHA = 0.2
