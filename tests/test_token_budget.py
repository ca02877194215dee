"""
Test token budget accounting.

Tests model window lookup, reserve defaults, over-budget rejection, token
counting with fallback, and trimming candidates to a budget.
"""

import pytest

from retrieval_shaping import token_budget
from retrieval_shaping.errors import ConfigurationError, OverBudgetError
from retrieval_shaping.models import PromptComponents, TokenAllocations, TokenBudget
from retrieval_shaping.token_budget import (
    TokenBudgetCalculator,
    budget_summary,
    count_tokens,
    estimate_tokens,
    fit_to_budget,
    get_model_limit,
)


class TestModelLimits:
    """Test context window lookup."""

    def test_known_models(self):
        assert get_model_limit("gpt-4") == 8192
        assert get_model_limit("gpt-4o-mini") == 128000
        assert get_model_limit("gpt-3.5-turbo") == 16385

    def test_family_inference(self):
        """Dated model ids resolve through their family."""
        assert get_model_limit("gpt-4o-2024-08-06") == 128000
        assert get_model_limit("gpt-4-0613") == 8192

    def test_unknown_model_uses_default(self, log_messages):
        assert get_model_limit("mystery-model") == 16385
        assert any("Unknown model 'mystery-model'" in m for m in log_messages)


class TestBudgetCalculator:
    """Test budget computation."""

    def test_default_reserve_is_fifteen_percent(self):
        calc = TokenBudgetCalculator()
        budget = calc.compute("gpt-4", PromptComponents(system=100, history=200, user_message=50))

        assert budget.total == 8192
        assert budget.allocations.reserved_for_response == 1228
        assert budget.remaining == 8192 - 100 - 200 - 50 - 1228

    def test_explicit_reserve_and_window(self):
        calc = TokenBudgetCalculator()
        budget = calc.compute(
            "gpt-4",
            PromptComponents(system=10, user_message=10, reserved_for_response=500),
            context_window=2000,
        )
        assert budget.total == 2000
        assert budget.remaining == 1480

    def test_over_budget_rejected(self):
        """3990 fixed tokens plus a 50-token reserve do not fit 4000."""
        calc = TokenBudgetCalculator()
        components = PromptComponents(system=3000, history=900, user_message=90, reserved_for_response=50)

        with pytest.raises(OverBudgetError) as exc_info:
            calc.compute("gpt-4", components, context_window=4000)

        err = exc_info.value
        assert err.error_code == "OVER_BUDGET"
        assert err.total_tokens == 4000
        assert err.requested_tokens == 4040
        assert err.overflow == 40

    def test_exact_fit_leaves_zero(self):
        calc = TokenBudgetCalculator()
        budget = calc.compute(
            "gpt-4",
            PromptComponents(system=950, reserved_for_response=50),
            context_window=1000,
        )
        assert budget.remaining == 0

    def test_soft_warnings(self):
        calc = TokenBudgetCalculator()
        budget = calc.compute("gpt-4", PromptComponents(system=1000, user_message=600))
        assert len(budget.warnings) == 2
        assert "System prompt" in budget.warnings[0]

    def test_invalid_reserve_ratio(self):
        with pytest.raises(ConfigurationError):
            TokenBudgetCalculator(response_reserve_ratio=1.0)

    def test_invalid_context_window(self):
        with pytest.raises(ConfigurationError):
            TokenBudgetCalculator().compute("gpt-4", PromptComponents(), context_window=0)

    def test_allocations_cannot_exceed_total(self):
        with pytest.raises(ValueError):
            TokenBudget(model="gpt-4", total=10, allocations=TokenAllocations(system=11))

    def test_summary_mentions_remaining(self):
        budget = TokenBudget(model="gpt-4", total=1000, allocations=TokenAllocations(system=250))
        assert "remaining 750" in budget_summary(budget)
        assert budget.utilization == pytest.approx(0.25)


class TestTokenCounting:
    """Test token counting and its fallback."""

    def test_empty_text(self):
        assert count_tokens("") == 0

    def test_counts_with_model_encoding(self, monkeypatch):
        requested = []

        class WordEncoding:
            def encode(self, text):
                return text.split()

        def fake_encoding(name):
            requested.append(name)
            return WordEncoding()

        monkeypatch.setattr(token_budget, "_get_encoding", fake_encoding)
        assert count_tokens("one two three", "gpt-4") == 3
        assert count_tokens("one two", "text-davinci-003") == 2
        assert requested == ["cl100k_base", "p50k_base"]

    def test_estimate(self):
        assert estimate_tokens("abcdefghi") == 3

    def test_falls_back_to_estimate(self, monkeypatch):
        def broken(name):
            raise RuntimeError("tokenizer unavailable")

        monkeypatch.setattr(token_budget, "_get_encoding", broken)
        assert count_tokens("a" * 40, "gpt-4") == 10

    def test_components_from_text(self, monkeypatch):
        monkeypatch.setattr(token_budget, "count_tokens", lambda text, model="gpt-3.5-turbo": len(text))
        components = PromptComponents.from_text("gpt-4", system="abc", user_message="hello")
        assert components.system == 3
        assert components.user_message == 5
        assert components.history == 0


class TestFitToBudget:
    """Test trimming an ordered candidate list to a budget."""

    def test_keeps_longest_fitting_prefix(self, make_doc):
        docs = [make_doc(token_count=40), make_doc(token_count=40), make_doc(token_count=40)]
        kept, used = fit_to_budget(docs, 100)
        assert [d.id for d in kept] == [docs[0].id, docs[1].id]
        assert used == 80

    def test_stops_at_first_overflow(self, make_doc):
        """A later small candidate is not pulled forward past a large one."""
        docs = [make_doc(token_count=50), make_doc(token_count=80), make_doc(token_count=10)]
        kept, used = fit_to_budget(docs, 100)
        assert len(kept) == 1
        assert used == 50

    def test_zero_budget(self, make_doc):
        kept, used = fit_to_budget([make_doc(token_count=1)], 0)
        assert kept == []
        assert used == 0
