"""
Tests for utils.cost module.

Tests cover:
- USD estimates for known models
- Unknown provider/model returns zero with a warning
- Cents conversion rounds up
"""

import logging

import pytest

from ai_visibility.utils.cost import (
    PRICING,
    SERPAPI_COST_PER_SEARCH_USD,
    estimate_cost_cents,
    estimate_cost_usd,
    usd_to_cents,
)


class TestEstimateCostUsd:
    """Test suite for estimate_cost_usd()."""

    def test_known_model(self):
        """Test gpt-4o-mini pricing for 1000 input and 500 output tokens."""
        cost = estimate_cost_usd("openai", "gpt-4o-mini", 1000, 500)

        assert cost == pytest.approx(0.00045)

    def test_zero_tokens(self):
        """Test that no usage costs nothing."""
        assert estimate_cost_usd("openai", "gpt-4", 0, 0) == 0.0

    def test_unknown_model_warns(self, caplog):
        """Test that missing pricing returns 0.0 and logs a warning."""
        with caplog.at_level(logging.WARNING):
            cost = estimate_cost_usd("openai", "gpt-99", 1000, 1000)

        assert cost == 0.0
        assert "Pricing unavailable" in caplog.text

    def test_every_price_positive(self):
        """Test the pricing table has positive input and output prices."""
        for provider, models in PRICING.items():
            for model, prices in models.items():
                assert prices["input"] > 0, f"{provider}/{model}"
                assert prices["output"] > 0, f"{provider}/{model}"


class TestUsdToCents:
    """Test suite for usd_to_cents()."""

    @pytest.mark.parametrize(
        "usd,cents",
        [
            (0.0, 0),
            (-1.0, 0),
            (0.000045, 1),
            (0.01, 1),
            (0.42, 42),
            (0.4201, 43),
            (1.0, 100),
        ],
    )
    def test_rounds_up(self, usd, cents):
        """Test ceiling rounding without float artefacts."""
        assert usd_to_cents(usd) == cents

    def test_serpapi_search_is_one_cent(self):
        """Test per-search pricing."""
        assert usd_to_cents(SERPAPI_COST_PER_SEARCH_USD) == 1


def test_estimate_cost_cents_gpt4():
    """Test 10k input and 2k output tokens on gpt-4 cost 42 cents."""
    assert estimate_cost_cents("openai", "gpt-4", 10_000, 2_000) == 42
