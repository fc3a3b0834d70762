"""
Cost estimation for answer-engine calls.

Provider responses report token usage; this module turns usage into a
cost in integer cents, the unit budgets and PromptRuns are stored in.

Pricing data is hardcoded from public provider pricing. Costs are
estimates; the provider billing dashboard is authoritative.

Rounding:
    usd_to_cents() rounds UP. A call that used any tokens at all costs at
    least one cent, so a burst of cheap calls still advances the engine's
    daily budget instead of staying at zero forever.

Example:
    >>> estimate_cost_cents("openai", "gpt-4o-mini", 1000, 500)
    1
    >>> estimate_cost_cents("openai", "gpt-4", 10_000, 2_000)
    42
"""

import logging
import math

logger = logging.getLogger(__name__)

# USD per token (price_per_million / 1,000,000)
PRICING = {
    "openai": {
        "gpt-4o-mini": {
            "input": 0.150 / 1_000_000,
            "output": 0.600 / 1_000_000,
        },
        "gpt-4o": {
            "input": 2.50 / 1_000_000,
            "output": 10.00 / 1_000_000,
        },
        "gpt-4-turbo": {
            "input": 10.00 / 1_000_000,
            "output": 30.00 / 1_000_000,
        },
        "gpt-4": {
            "input": 30.00 / 1_000_000,
            "output": 60.00 / 1_000_000,
        },
        "gpt-3.5-turbo": {
            "input": 0.50 / 1_000_000,
            "output": 1.50 / 1_000_000,
        },
    },
    "anthropic": {
        "claude-3-haiku-20240307": {
            "input": 0.25 / 1_000_000,
            "output": 1.25 / 1_000_000,
        },
        "claude-3-5-haiku-20241022": {
            "input": 0.80 / 1_000_000,
            "output": 4.00 / 1_000_000,
        },
        "claude-3-5-sonnet-20241022": {
            "input": 3.00 / 1_000_000,
            "output": 15.00 / 1_000_000,
        },
    },
    "gemini": {
        "gemini-1.5-pro": {
            "input": 1.25 / 1_000_000,
            "output": 5.00 / 1_000_000,
        },
        "gemini-1.5-flash": {
            "input": 0.075 / 1_000_000,
            "output": 0.30 / 1_000_000,
        },
        "gemini-2.0-flash": {
            "input": 0.10 / 1_000_000,
            "output": 0.40 / 1_000_000,
        },
    },
    "perplexity": {
        "sonar": {
            "input": 1.00 / 1_000_000,
            "output": 1.00 / 1_000_000,
        },
        "sonar-pro": {
            "input": 3.00 / 1_000_000,
            "output": 15.00 / 1_000_000,
        },
    },
}

# SerpAPI bills per search, not per token
SERPAPI_COST_PER_SEARCH_USD = 0.01


def estimate_cost_usd(
    provider: str, model: str, prompt_tokens: int, completion_tokens: int
) -> float:
    """
    Estimate cost in USD from token usage.

    Returns 0.0 (with a warning) when the provider/model pair has no
    pricing entry.

    Args:
        provider: Provider name ("openai", "anthropic", "gemini", "perplexity")
        model: Model identifier
        prompt_tokens: Input tokens
        completion_tokens: Output tokens

    Returns:
        float: Estimated cost in USD, rounded to 6 decimal places
    """
    pricing = PRICING.get(provider, {}).get(model)

    if not pricing:
        logger.warning(
            f"Pricing unavailable for provider='{provider}', model='{model}'. "
            f"Returning $0.00 cost estimate."
        )
        return 0.0

    cost = (prompt_tokens * pricing["input"]) + (completion_tokens * pricing["output"])
    return round(cost, 6)


def usd_to_cents(cost_usd: float) -> int:
    """
    Convert a USD amount to integer cents, rounding up.

    Examples:
        >>> usd_to_cents(0.0)
        0
        >>> usd_to_cents(0.000045)
        1
        >>> usd_to_cents(0.42)
        42
    """
    if cost_usd <= 0:
        return 0
    # round() first so 0.42 * 100 == 42.00000000000001 doesn't become 43
    return math.ceil(round(cost_usd * 100, 6))


def estimate_cost_cents(
    provider: str, model: str, prompt_tokens: int, completion_tokens: int
) -> int:
    """Estimate cost in integer cents (see usd_to_cents for rounding)."""
    return usd_to_cents(
        estimate_cost_usd(provider, model, prompt_tokens, completion_tokens)
    )
