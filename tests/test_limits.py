"""
Test dynamic result limits.

Tests budget splitting, complexity scaling, clamping, per-request overrides
and the disabled path.
"""

import pytest
pytest.importorskip("hypothesis")
from hypothesis import given, settings, strategies as st  # noqa: E402

from retrieval_shaping.errors import ConfigurationError
from retrieval_shaping.limits import DynamicLimitCalculator
from retrieval_shaping.models import (
    DynamicLimitConfig,
    LimitOverrides,
    QueryComplexity,
    TokenBudget,
    parse_config,
)


def budget(remaining):
    return TokenBudget(model="gpt-4", total=remaining)


@pytest.fixture
def calculator():
    return DynamicLimitCalculator()


class TestBudgetSplit:
    """Test limits derived from the remaining token budget."""

    def test_moderate_query(self, calculator):
        """10000 tokens / 340 per item -> 29 items, 60% documents."""
        limits = calculator.compute("q", budget=budget(10000), complexity=QueryComplexity.MODERATE)
        assert (limits.document_chunks, limits.web_results) == (17, 12)
        assert limits.factors.token_budget == 10000
        assert limits.factors.base_limits.document_chunks == 17

    def test_complex_query_scaled_and_clamped(self, calculator):
        limits = calculator.compute("q", budget=budget(10000), complexity=QueryComplexity.COMPLEX)
        assert limits.document_chunks == 22
        assert limits.web_results == 15

    def test_simple_query_scaled_down(self, calculator):
        limits = calculator.compute("q", budget=budget(10000), complexity=QueryComplexity.SIMPLE)
        assert (limits.document_chunks, limits.web_results) == (11, 8)

    def test_zero_budget_clamps_to_minimums(self, calculator):
        limits = calculator.compute("q", budget=budget(0), complexity=QueryComplexity.MODERATE)
        assert (limits.document_chunks, limits.web_results) == (3, 2)

    def test_huge_budget_clamps_to_maximums(self, calculator):
        limits = calculator.compute("q", budget=budget(1_000_000), complexity=QueryComplexity.MODERATE)
        assert (limits.document_chunks, limits.web_results) == (30, 15)

    def test_reasoning_lists_every_step(self, calculator):
        limits = calculator.compute("q", budget=budget(10000), complexity=QueryComplexity.COMPLEX)
        assert limits.reasoning == (
            "Token budget: 10000 tokens available; "
            "Query complexity: complex (multiplier: 1.30); "
            "Base limits: 17 documents, 12 web; "
            "Adjusted limits: 22 documents, 15 web; "
            "Final limits: 22 documents, 15 web"
        )


class TestWithoutBudget:
    """Test limits when no budget is supplied."""

    def test_defaults_scaled_by_classified_complexity(self, calculator):
        """'What is a DNS server?' is simple: 5 * 0.7 -> 3."""
        limits = calculator.compute("What is a DNS server?")
        assert limits.factors.complexity == QueryComplexity.SIMPLE
        assert (limits.document_chunks, limits.web_results) == (3, 3)

    def test_recommended_limits_ignore_budget(self, calculator):
        assert calculator.recommended_limits("How to configure an nginx reverse proxy") == (5, 5)


class TestOverrides:
    """Test per-request overrides."""

    def test_disabled(self, calculator):
        limits = calculator.compute("q", budget=budget(10000), overrides=LimitOverrides(enabled=False))
        assert (limits.document_chunks, limits.web_results) == (5, 5)
        assert limits.reasoning == "Dynamic limits disabled, using defaults"

    def test_max_override(self, calculator):
        limits = calculator.compute(
            "q",
            budget=budget(10000),
            complexity=QueryComplexity.MODERATE,
            overrides=LimitOverrides(max_document_chunks=10),
        )
        assert limits.document_chunks == 10
        assert limits.web_results == 12

    def test_complexity_adjustment_off(self, calculator):
        limits = calculator.compute(
            "q",
            budget=budget(10000),
            complexity=QueryComplexity.COMPLEX,
            overrides=LimitOverrides(use_complexity_adjustments=False),
        )
        assert (limits.document_chunks, limits.web_results) == (17, 12)
        assert "Query complexity" not in limits.reasoning

    def test_overrides_do_not_leak(self, calculator):
        calculator.compute("q", overrides=LimitOverrides(enabled=False))
        assert calculator.config.enabled is True

    def test_inconsistent_override_rejected(self, calculator):
        with pytest.raises(ConfigurationError):
            calculator.compute("q", overrides=LimitOverrides(min_document_chunks=50))


class TestConfig:
    """Test limit configuration validation."""

    def test_min_above_max_rejected(self):
        with pytest.raises(ConfigurationError):
            parse_config(DynamicLimitConfig, min_web_results=20, max_web_results=10)

    def test_non_positive_multiplier_rejected(self):
        with pytest.raises(ConfigurationError):
            parse_config(DynamicLimitConfig, complexity_multipliers={"simple": 0.0})

    def test_custom_multiplier(self):
        config = DynamicLimitConfig(complexity_multipliers={QueryComplexity.SIMPLE: 2.0})
        limits = DynamicLimitCalculator(config).compute("q", complexity=QueryComplexity.SIMPLE)
        assert limits.document_chunks == 10


@given(
    remaining=st.integers(min_value=0, max_value=2_000_000),
    complexity=st.sampled_from(list(QueryComplexity)),
)
@settings(max_examples=200, deadline=None)
def test_limits_always_within_bounds(remaining, complexity):
    limits = DynamicLimitCalculator().compute("q", budget=budget(remaining), complexity=complexity)
    assert 3 <= limits.document_chunks <= 30
    assert 2 <= limits.web_results <= 15
