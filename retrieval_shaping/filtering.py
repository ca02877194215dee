"""
Multi-dimension result filtering.

Checks every candidate against a filtering strategy on four dimensions (time
range, topic, quality, authority). A candidate under a dimension's threshold
is either dropped (hard filter) or kept with its score demoted by the
dimension's ranking penalty. A diversity pass then caps how many results a
single domain may contribute.

Strategies come in three presets (strict, moderate, lenient) and can be
assigned per subject through a deterministic A/B experiment.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from loguru import logger

from retrieval_shaping.authority import DomainAuthorityScorer, candidate_domain
from retrieval_shaping.bucketing import select_variant
from retrieval_shaping.errors import ConfigurationError, EmptyResultSetError
from retrieval_shaping.metrics import track_dropped, track_empty, track_malformed, track_penalized
from retrieval_shaping.models import (
    Candidate,
    DimensionFilterConfig,
    DiversityConfig,
    FilteringABTestConfig,
    FilteringMode,
    FilteringStrategy,
    FilteringVariant,
)
from retrieval_shaping.scorers import QualityScorer, coerce_signal, get_quality_scorer, time_range_score, topic_match_score


def _dimension(strict: float, moderate: float, lenient: float, penalty: float, hard: bool) -> DimensionFilterConfig:
    return DimensionFilterConfig(
        enabled=True,
        use_hard_filter=hard,
        strict_threshold=strict,
        moderate_threshold=moderate,
        lenient_threshold=lenient,
        ranking_penalty=penalty,
    )


# ============================================================================
# Presets
# ============================================================================

STRICT_STRATEGY = FilteringStrategy(
    mode=FilteringMode.STRICT,
    time_range=_dimension(0.9, 0.8, 0.7, 0.5, hard=True),
    topic=_dimension(0.8, 0.7, 0.6, 0.4, hard=True),
    quality=_dimension(0.7, 0.6, 0.5, 0.3, hard=True),
    authority=_dimension(0.7, 0.6, 0.5, 0.3, hard=True),
    diversity=DiversityConfig(enabled=True, min_domain_diversity=0.7, max_results_per_domain=2),
)

MODERATE_STRATEGY = FilteringStrategy(
    mode=FilteringMode.MODERATE,
    time_range=_dimension(0.8, 0.7, 0.6, 0.3, hard=False),
    topic=_dimension(0.7, 0.6, 0.5, 0.25, hard=False),
    quality=_dimension(0.6, 0.5, 0.4, 0.2, hard=False),
    authority=_dimension(0.6, 0.5, 0.4, 0.2, hard=False),
    diversity=DiversityConfig(enabled=True, min_domain_diversity=0.5, max_results_per_domain=3),
)

LENIENT_STRATEGY = FilteringStrategy(
    mode=FilteringMode.LENIENT,
    time_range=_dimension(0.7, 0.6, 0.5, 0.15, hard=False),
    topic=_dimension(0.6, 0.5, 0.4, 0.15, hard=False),
    quality=_dimension(0.5, 0.4, 0.3, 0.1, hard=False),
    authority=_dimension(0.5, 0.4, 0.3, 0.1, hard=False),
    diversity=DiversityConfig(enabled=True, min_domain_diversity=0.3, max_results_per_domain=5),
)

FILTERING_PRESETS: Mapping[FilteringMode, FilteringStrategy] = {
    FilteringMode.STRICT: STRICT_STRATEGY,
    FilteringMode.MODERATE: MODERATE_STRATEGY,
    FilteringMode.LENIENT: LENIENT_STRATEGY,
}

_missing = set(FilteringMode) - set(FILTERING_PRESETS)
if _missing:
    raise ConfigurationError(f"Filtering presets missing for modes: {sorted(m.value for m in _missing)}")


def default_filtering_ab_test(enabled: bool = False) -> FilteringABTestConfig:
    """strict 33% / moderate 34% / lenient 33%, defaulting to moderate."""
    return FilteringABTestConfig(
        enabled=enabled,
        variants=(
            FilteringVariant(name="strict", strategy=STRICT_STRATEGY, traffic_percentage=33),
            FilteringVariant(name="moderate", strategy=MODERATE_STRATEGY, traffic_percentage=34),
            FilteringVariant(name="lenient", strategy=LENIENT_STRATEGY, traffic_percentage=33),
        ),
        default_variant="moderate",
    )


def resolve_strategy(
    strategy: Optional[FilteringStrategy] = None,
    mode: Optional[FilteringMode] = None,
    subject_id: Optional[str] = None,
    ab_test: Optional[FilteringABTestConfig] = None,
) -> FilteringStrategy:
    """
    Pick the filtering strategy for a request.

    Precedence: an explicit strategy, then an explicit mode preset, then the
    subject's A/B variant when an experiment is enabled, then moderate.
    """
    if strategy is not None:
        return strategy
    if mode is not None:
        return FILTERING_PRESETS[FilteringMode(mode)]
    if ab_test is not None and ab_test.enabled:
        name = select_variant(subject_id, ab_test.variants, ab_test.default_variant, experiment="filtering")
        variant = ab_test.variant(name)
        if variant is not None:
            return variant.strategy
        logger.warning(f"Filtering variant '{name}' not configured, using moderate")
    return MODERATE_STRATEGY


# ============================================================================
# Outcome
# ============================================================================


@dataclass(frozen=True)
class FilterContext:
    """Request-level inputs for derived dimension scores."""
    cutoff_date: Optional[datetime] = None
    topic: Optional[str] = None
    now: Optional[datetime] = None


@dataclass
class FilteringStats:
    original_count: int = 0
    filtered_count: int = 0
    hard_filtered_count: int = 0
    ranking_adjusted_count: int = 0
    diversity_filtered_count: int = 0
    malformed_count: int = 0
    mode: str = FilteringMode.MODERATE.value
    domain_diversity: float = 1.0
    diversity_satisfied: bool = True
    hard_filtered_by: Dict[str, int] = field(default_factory=dict)
    penalized_by: Dict[str, int] = field(default_factory=dict)
    malformed_by: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, object]:
        return {
            "original_count": self.original_count,
            "filtered_count": self.filtered_count,
            "hard_filtered_count": self.hard_filtered_count,
            "ranking_adjusted_count": self.ranking_adjusted_count,
            "diversity_filtered_count": self.diversity_filtered_count,
            "malformed_count": self.malformed_count,
            "mode": self.mode,
            "domain_diversity": round(self.domain_diversity, 4),
            "diversity_satisfied": self.diversity_satisfied,
            "hard_filtered_by": dict(self.hard_filtered_by),
            "penalized_by": dict(self.penalized_by),
            "malformed_by": dict(self.malformed_by),
        }


@dataclass(frozen=True)
class FilteringOutcome:
    candidates: List[Candidate]
    stats: FilteringStats

    @property
    def empty(self) -> bool:
        return not self.candidates

    def raise_if_empty(self) -> "FilteringOutcome":
        if self.empty:
            raise EmptyResultSetError(
                f"No results survived {self.stats.mode} filtering "
                f"({self.stats.original_count} candidates in)",
                stage="filtering",
                context=self.stats.to_dict(),
            )
        return self


# ============================================================================
# Engine
# ============================================================================

# Dimension -> Candidate field carrying a pre-computed signal
SIGNAL_FIELDS = {
    "time_range": "time_score",
    "topic": "topic_score",
    "quality": "quality_score",
    "authority": "authority_score",
}


class FilteringEngine:
    """Apply a filtering strategy to a candidate list."""

    def __init__(
        self,
        authority_scorer: Optional[DomainAuthorityScorer] = None,
        quality_scorer: Optional[QualityScorer] = None,
    ):
        self.authority_scorer = authority_scorer or DomainAuthorityScorer()
        self.quality_scorer = quality_scorer or get_quality_scorer()

    def filter(
        self,
        candidates: Sequence[Candidate],
        strategy: Optional[FilteringStrategy] = None,
        context: Optional[FilterContext] = None,
    ) -> FilteringOutcome:
        """
        Filter candidates.

        Args:
            candidates: Candidates in retrieval order
            strategy: Strategy to apply; moderate when omitted
            context: Cutoff date and topic for the time and topic dimensions

        Returns:
            FilteringOutcome with surviving candidates (input order kept) and stats
        """
        strategy = strategy or MODERATE_STRATEGY
        context = context or FilterContext()
        stats = FilteringStats(original_count=len(candidates), mode=strategy.mode.value)

        survivors: List[Candidate] = []
        for candidate in candidates:
            result = self._apply_dimensions(candidate, strategy, context, stats)
            if result is not None:
                survivors.append(result)

        if strategy.diversity.enabled:
            survivors = self._apply_diversity(survivors, strategy.diversity, stats)

        stats.filtered_count = len(survivors)
        track_dropped("filtering", "hard_filter", stats.hard_filtered_count)
        track_dropped("diversity", "max_results_per_domain", stats.diversity_filtered_count)
        if not survivors:
            track_empty("filtering")
            logger.warning(f"Filtering ({strategy.mode.value}) left no results from {len(candidates)} candidates")
        else:
            logger.info(
                f"Filtering ({strategy.mode.value}): {stats.original_count} -> {stats.filtered_count} "
                f"(hard={stats.hard_filtered_count}, penalized={stats.ranking_adjusted_count}, "
                f"diversity={stats.diversity_filtered_count})"
            )
        return FilteringOutcome(candidates=survivors, stats=stats)

    def dimension_score(
        self,
        name: str,
        candidate: Candidate,
        strategy: FilteringStrategy,
        context: FilterContext,
    ) -> Tuple[Optional[float], bool]:
        """
        Score one dimension of a candidate.

        Returns:
            (score, malformed). score is None when the dimension does not apply
            or the candidate's own signal is unusable.
        """
        supplied = getattr(candidate, SIGNAL_FIELDS[name])
        if supplied is not None:
            score = coerce_signal(supplied)
            return score, score is None

        if name == "time_range":
            if context.cutoff_date is None:
                return None, False
            strict = strategy.mode is FilteringMode.STRICT
            return time_range_score(candidate.published_at, context.cutoff_date, strict=strict, now=context.now), False
        if name == "topic":
            if not context.topic:
                return None, False
            return topic_match_score(context.topic, candidate.title, candidate.text), False
        if name == "quality":
            return self.quality_scorer.score(candidate.text, candidate.title).overall, False
        if name == "authority":
            return self.authority_scorer.authority_for(candidate), False
        return None, False

    def _apply_dimensions(
        self,
        candidate: Candidate,
        strategy: FilteringStrategy,
        context: FilterContext,
        stats: FilteringStats,
    ) -> Optional[Candidate]:
        score = candidate.score
        penalties: List[str] = []
        for name, dim in strategy.dimensions():
            if not dim.enabled:
                continue
            value, malformed = self.dimension_score(name, candidate, strategy, context)
            if malformed:
                stats.malformed_count += 1
                stats.malformed_by[name] = stats.malformed_by.get(name, 0) + 1
                track_malformed(name)
                logger.debug(f"Ignoring malformed {name} signal on {candidate.id}")
                continue
            if value is None:
                continue

            threshold = dim.threshold_for(strategy.mode)
            if value >= threshold:
                continue
            if dim.use_hard_filter:
                stats.hard_filtered_count += 1
                stats.hard_filtered_by[name] = stats.hard_filtered_by.get(name, 0) + 1
                logger.debug(f"Hard filter ({name}): dropped {candidate.id} ({value:.2f} < {threshold})")
                return None
            penalties.append(name)
            if score is not None:
                score *= 1.0 - dim.ranking_penalty

        if not penalties:
            return candidate
        stats.ranking_adjusted_count += 1
        for name in penalties:
            stats.penalized_by[name] = stats.penalized_by.get(name, 0) + 1
            track_penalized(name)
        return candidate.model_copy(update={
            "score": score,
            "metadata": {**candidate.metadata, "filter_penalties": tuple(penalties)},
        })

    @staticmethod
    def _apply_diversity(
        candidates: List[Candidate],
        diversity: DiversityConfig,
        stats: FilteringStats,
    ) -> List[Candidate]:
        domains = [candidate_domain(c) for c in candidates]
        ranked = sorted(range(len(candidates)), key=lambda i: -candidates[i].effective_score)

        per_domain: Dict[str, int] = {}
        kept = set()
        for i in ranked:
            domain = domains[i]
            # Undomained candidates are never capped
            if domain is None:
                kept.add(i)
            elif per_domain.get(domain, 0) < diversity.max_results_per_domain:
                per_domain[domain] = per_domain.get(domain, 0) + 1
                kept.add(i)

        survivors = [c for i, c in enumerate(candidates) if i in kept]
        stats.diversity_filtered_count = len(candidates) - len(survivors)
        domained = sum(per_domain.values())
        if domained:
            stats.domain_diversity = len(per_domain) / domained
        stats.diversity_satisfied = stats.domain_diversity >= diversity.min_domain_diversity
        if not stats.diversity_satisfied:
            logger.info(
                f"Domain diversity {stats.domain_diversity:.2f} below target {diversity.min_domain_diversity}"
            )
        return survivors
