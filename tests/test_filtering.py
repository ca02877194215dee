"""
Test multi-dimension filtering.

Tests hard filters and ranking penalties per mode, malformed signals,
domain diversity caps, strategy resolution and empty outcomes.
"""

from datetime import datetime, timedelta, timezone

import pytest

from retrieval_shaping.errors import EmptyResultSetError
from retrieval_shaping.filtering import (
    FILTERING_PRESETS,
    LENIENT_STRATEGY,
    MODERATE_STRATEGY,
    STRICT_STRATEGY,
    FilterContext,
    FilteringEngine,
    default_filtering_ab_test,
    resolve_strategy,
)
from retrieval_shaping.models import DiversityConfig, FilteringMode

NOW = datetime(2025, 6, 1, tzinfo=timezone.utc)


@pytest.fixture
def engine():
    return FilteringEngine()


class TestQualityDimension:
    """Test the quality threshold in each mode."""

    def test_strict_drops_below_threshold(self, engine, make_web):
        outcome = engine.filter([make_web(score=0.8, quality_score=0.55)], STRICT_STRATEGY)
        assert outcome.candidates == []
        assert outcome.stats.hard_filtered_count == 1
        assert outcome.stats.hard_filtered_by == {"quality": 1}

    def test_lenient_keeps_unpenalized(self, engine, make_web):
        candidate = make_web(score=0.8, quality_score=0.55)
        outcome = engine.filter([candidate], LENIENT_STRATEGY)
        assert outcome.candidates == [candidate]
        assert outcome.stats.ranking_adjusted_count == 0

    def test_soft_filter_applies_penalty(self, engine, make_web):
        """Below a soft threshold the score is multiplied by (1 - penalty)."""
        strategy = LENIENT_STRATEGY.model_copy(update={
            "quality": LENIENT_STRATEGY.quality.model_copy(update={"lenient_threshold": 0.7}),
        })
        outcome = engine.filter([make_web(score=0.8, quality_score=0.55)], strategy)

        [kept] = outcome.candidates
        assert kept.score == pytest.approx(0.72)
        assert kept.metadata["filter_penalties"] == ("quality",)
        assert outcome.stats.ranking_adjusted_count == 1
        assert outcome.stats.penalized_by == {"quality": 1}

    def test_moderate_penalizes_instead_of_dropping(self, engine, make_web):
        outcome = engine.filter([make_web(score=0.5, quality_score=0.3)], MODERATE_STRATEGY)
        [kept] = outcome.candidates
        assert kept.score == pytest.approx(0.4)

    def test_penalties_compound(self, engine, make_web):
        outcome = engine.filter(
            [make_web(score=1.0, quality_score=0.1, authority_score=0.1)],
            MODERATE_STRATEGY,
        )
        [kept] = outcome.candidates
        assert kept.score == pytest.approx(0.64)
        assert kept.metadata["filter_penalties"] == ("quality", "authority")

    def test_unscored_candidate_penalized_without_score(self, engine, make_web):
        outcome = engine.filter([make_web(score=None, quality_score=0.1)], MODERATE_STRATEGY)
        [kept] = outcome.candidates
        assert kept.score is None
        assert outcome.stats.ranking_adjusted_count == 1

    def test_disabled_dimension_skipped(self, engine, make_web):
        strategy = STRICT_STRATEGY.model_copy(update={
            "quality": STRICT_STRATEGY.quality.model_copy(update={"enabled": False}),
        })
        outcome = engine.filter([make_web(quality_score=0.1)], strategy)
        assert len(outcome.candidates) == 1

    def test_quality_derived_from_text(self, engine, make_web):
        """Without a supplied signal, quality is scored from the content."""
        outcome = engine.filter([make_web(quality_score=None, title="", text="x")], STRICT_STRATEGY)
        assert outcome.candidates == []


class TestTimeAndTopic:
    """Test the context-driven dimensions."""

    def test_stale_result_dropped_in_strict_mode(self, engine, make_web):
        context = FilterContext(cutoff_date=NOW - timedelta(days=30), now=NOW)
        old = make_web(published_at=NOW - timedelta(days=400))
        fresh = make_web(published_at=NOW - timedelta(days=2))

        outcome = engine.filter([old, fresh], STRICT_STRATEGY, context)

        assert [c.id for c in outcome.candidates] == [fresh.id]
        assert outcome.stats.hard_filtered_by == {"time_range": 1}

    def test_undated_result_scored_strictly(self, engine, make_web):
        context = FilterContext(cutoff_date=NOW - timedelta(days=30), now=NOW)
        outcome = engine.filter([make_web()], STRICT_STRATEGY, context)
        assert outcome.candidates == []

    def test_no_context_skips_time_and_topic(self, engine, make_web):
        outcome = engine.filter([make_web(published_at=NOW - timedelta(days=4000))], STRICT_STRATEGY)
        assert len(outcome.candidates) == 1

    def test_topic_mismatch_penalized(self, engine, make_web):
        context = FilterContext(topic="kubernetes autoscaling")
        outcome = engine.filter([make_web(score=0.5, title="Pasta recipes")], MODERATE_STRATEGY, context)
        [kept] = outcome.candidates
        assert kept.score == pytest.approx(0.375)

    def test_supplied_time_score_wins(self, engine, make_web):
        context = FilterContext(cutoff_date=NOW, now=NOW)
        outcome = engine.filter([make_web(time_score=1.0)], STRICT_STRATEGY, context)
        assert len(outcome.candidates) == 1


class TestMalformedSignals:
    """Test signals that are not numbers in [0,1]."""

    @pytest.mark.parametrize("bad", ["high", 1.5, -0.2, float("nan"), True, [0.5]])
    def test_malformed_signal_ignored(self, engine, make_web, bad):
        candidate = make_web(score=0.8, quality_score=bad)
        outcome = engine.filter([candidate], STRICT_STRATEGY)

        assert outcome.candidates == [candidate]
        assert outcome.stats.malformed_count == 1
        assert outcome.stats.malformed_by == {"quality": 1}


class TestDiversity:
    """Test per-domain caps."""

    def test_cap_keeps_best_per_domain_in_input_order(self, engine, make_web):
        strategy = MODERATE_STRATEGY.model_copy(update={
            "diversity": DiversityConfig(max_results_per_domain=2, min_domain_diversity=0.5),
        })
        a1 = make_web(score=0.9, domain="a.com")
        a2 = make_web(score=0.5, domain="a.com")
        a3 = make_web(score=0.7, domain="a.com")
        b1 = make_web(score=0.6, domain="b.com")

        outcome = engine.filter([a1, a2, a3, b1], strategy)

        assert [c.id for c in outcome.candidates] == [a1.id, a3.id, b1.id]
        assert outcome.stats.diversity_filtered_count == 1
        assert outcome.stats.domain_diversity == pytest.approx(2 / 3)
        assert outcome.stats.diversity_satisfied is True

    def test_domain_from_url(self, engine, make_web):
        strategy = STRICT_STRATEGY
        results = [
            make_web(score=0.9 - i * 0.1, domain=None, url=f"https://www.docs.example.org/page{i}")
            for i in range(4)
        ]
        outcome = engine.filter(results, strategy)
        assert len(outcome.candidates) == 2

    def test_undomained_results_not_capped(self, engine, make_web):
        results = [make_web(domain=None) for _ in range(6)]
        outcome = engine.filter(results, STRICT_STRATEGY)
        assert len(outcome.candidates) == 6

    def test_undomained_results_excluded_from_ratio(self, engine, make_web):
        results = [
            make_web(domain="a.com"),
            make_web(domain="a.com"),
            make_web(domain="b.com"),
            make_web(domain=None),
            make_web(domain=None),
        ]
        outcome = engine.filter(results, MODERATE_STRATEGY)
        assert len(outcome.candidates) == 5
        assert outcome.stats.domain_diversity == pytest.approx(2 / 3)

    @pytest.mark.parametrize("via_copy", [False, True])
    def test_nan_score_does_not_displace_valid_results(self, engine, make_web, via_copy):
        strategy = MODERATE_STRATEGY.model_copy(update={
            "diversity": DiversityConfig(max_results_per_domain=3, min_domain_diversity=0.0),
        })
        if via_copy:
            broken = make_web(score=0.5, domain="a.com").model_copy(update={"score": float("nan")})
        else:
            broken = make_web(score=float("nan"), domain="a.com")
        valid = [make_web(score=s, domain="a.com") for s in (0.9, 0.8, 0.7)]

        outcome = engine.filter([broken] + valid, strategy)

        assert [c.id for c in outcome.candidates] == [c.id for c in valid]

    def test_low_diversity_reported(self, engine, make_web):
        results = [make_web(score=0.5, domain="same.com") for _ in range(3)]
        outcome = engine.filter(results, MODERATE_STRATEGY)
        assert outcome.stats.diversity_satisfied is False
        assert len(outcome.candidates) == 3

    def test_diversity_disabled(self, engine, make_web):
        strategy = STRICT_STRATEGY.model_copy(update={"diversity": DiversityConfig(enabled=False)})
        results = [make_web(domain="same.com") for _ in range(5)]
        assert len(engine.filter(results, strategy).candidates) == 5


class TestStrategyResolution:
    """Test choosing a strategy for a request."""

    def test_presets_cover_every_mode(self):
        assert set(FILTERING_PRESETS) == set(FilteringMode)

    def test_explicit_strategy_wins(self):
        assert resolve_strategy(strategy=LENIENT_STRATEGY, mode=FilteringMode.STRICT) is LENIENT_STRATEGY

    def test_mode_preset(self):
        assert resolve_strategy(mode=FilteringMode.STRICT) is STRICT_STRATEGY
        assert resolve_strategy(mode="lenient") is LENIENT_STRATEGY

    def test_default_is_moderate(self):
        assert resolve_strategy() is MODERATE_STRATEGY

    @pytest.mark.parametrize("subject_id,expected", [
        ("ab", FilteringMode.STRICT),
        ("user-42", FilteringMode.MODERATE),
        ("a", FilteringMode.LENIENT),
        (None, FilteringMode.MODERATE),
    ])
    def test_ab_assignment(self, subject_id, expected):
        strategy = resolve_strategy(subject_id=subject_id, ab_test=default_filtering_ab_test(enabled=True))
        assert strategy.mode == expected

    def test_disabled_experiment_ignored(self):
        strategy = resolve_strategy(subject_id="ab", ab_test=default_filtering_ab_test(enabled=False))
        assert strategy is MODERATE_STRATEGY


class TestEmptyOutcome:
    """Test outcomes with no survivors."""

    def test_empty_flag_and_raise(self, engine, make_web, log_messages):
        outcome = engine.filter([make_web(quality_score=0.1), make_web(quality_score=0.2)], STRICT_STRATEGY)

        assert outcome.empty
        assert any(m.startswith("WARNING|Filtering (strict) left no results") for m in log_messages)
        with pytest.raises(EmptyResultSetError) as exc_info:
            outcome.raise_if_empty()
        assert exc_info.value.stage == "filtering"
        assert exc_info.value.context["original_count"] == 2

    def test_empty_input(self, engine):
        outcome = engine.filter([])
        assert outcome.empty
        assert outcome.stats.original_count == 0

    def test_non_empty_raise_returns_self(self, engine, make_web):
        outcome = engine.filter([make_web()])
        assert outcome.raise_if_empty() is outcome

    def test_stats_dict(self, engine, make_web):
        stats = engine.filter([make_web()], LENIENT_STRATEGY).stats.to_dict()
        assert stats["mode"] == "lenient"
        assert stats["filtered_count"] == 1
