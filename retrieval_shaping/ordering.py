"""
Final result ordering.

Sorts document chunks and web results by the configured strategy
(relevance, score, quality, hybrid or chronological). Ties fall back to the
score and then to the input position, so every ordering is total and
re-sorting an ordered list changes nothing.
"""

from __future__ import annotations

import math
from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence

from loguru import logger

from retrieval_shaping import tuning_config as tc
from retrieval_shaping.authority import DomainAuthorityScorer
from retrieval_shaping.models import (
    Candidate,
    DocumentOrderingConfig,
    OrderingConfig,
    OrderingStrategy,
    WebOrderingConfig,
)
from retrieval_shaping.scorers import QualityScorer, coerce_signal, freshness_score, get_quality_scorer, parse_date

# ============================================================================
# Presets
# ============================================================================

# strategy -> (document overrides, web overrides)
ORDERING_PRESETS: Dict[OrderingStrategy, tuple] = {
    OrderingStrategy.RELEVANCE: (
        dict(enable_score_ordering=True, enable_quality_ordering=False, enable_chronological_ordering=False,
             score_weight=1.0, quality_weight=0.0),
        dict(enable_score_ordering=True, enable_quality_ordering=False, enable_authority_ordering=False,
             enable_freshness_ordering=False, score_weight=1.0, quality_weight=0.0, authority_weight=0.0),
    ),
    OrderingStrategy.SCORE: (
        dict(enable_score_ordering=True, enable_quality_ordering=False, enable_chronological_ordering=False,
             score_weight=1.0, quality_weight=0.0),
        dict(enable_score_ordering=True, enable_quality_ordering=False, enable_authority_ordering=False,
             enable_freshness_ordering=False, score_weight=1.0, quality_weight=0.0, authority_weight=0.0),
    ),
    OrderingStrategy.QUALITY: (
        dict(enable_score_ordering=False, enable_quality_ordering=True, enable_chronological_ordering=False,
             score_weight=0.0, quality_weight=1.0),
        dict(enable_score_ordering=False, enable_quality_ordering=True, enable_authority_ordering=False,
             enable_freshness_ordering=False, score_weight=0.0, quality_weight=1.0, authority_weight=0.0),
    ),
    OrderingStrategy.HYBRID: (
        dict(enable_score_ordering=True, enable_quality_ordering=True, enable_chronological_ordering=False,
             score_weight=0.7, quality_weight=0.3),
        dict(enable_score_ordering=True, enable_quality_ordering=True, enable_authority_ordering=True,
             enable_freshness_ordering=False, score_weight=0.5, quality_weight=0.3, authority_weight=0.2),
    ),
    OrderingStrategy.CHRONOLOGICAL: (
        dict(enable_score_ordering=False, enable_quality_ordering=False, enable_chronological_ordering=True,
             score_weight=0.0, quality_weight=0.0),
        dict(enable_score_ordering=False, enable_quality_ordering=False, enable_authority_ordering=False,
             enable_freshness_ordering=True, score_weight=0.0, quality_weight=0.0, authority_weight=0.0),
    ),
}

if set(ORDERING_PRESETS) != set(OrderingStrategy):
    raise RuntimeError("ORDERING_PRESETS must cover every OrderingStrategy")


def config_for_strategy(strategy: OrderingStrategy, ascending: bool = False) -> OrderingConfig:
    """Ordering config with both collections set to one strategy's preset."""
    strategy = OrderingStrategy(strategy)
    doc_preset, web_preset = ORDERING_PRESETS[strategy]
    return OrderingConfig(
        documents=DocumentOrderingConfig(strategy=strategy, ascending=ascending, **doc_preset),
        web=WebOrderingConfig(strategy=strategy, ascending=ascending, **web_preset),
    )


def _timestamp(value) -> float:
    try:
        published = parse_date(value)
    except (TypeError, ValueError):
        return -math.inf
    return published.timestamp() if published is not None else -math.inf


def _sort_value(value: float) -> float:
    return 0.0 if math.isnan(value) else value


class ResultOrderer:
    """Sort document and web collections deterministically."""

    def __init__(
        self,
        config: Optional[OrderingConfig] = None,
        authority_scorer: Optional[DomainAuthorityScorer] = None,
        quality_scorer: Optional[QualityScorer] = None,
    ):
        self.config = config or OrderingConfig()
        self.authority_scorer = authority_scorer or DomainAuthorityScorer()
        self.quality_scorer = quality_scorer or get_quality_scorer()

    def quality_of(self, candidate: Candidate) -> float:
        signal = coerce_signal(candidate.quality_score)
        if signal is not None:
            return signal
        return self.quality_scorer.score(candidate.text, candidate.title).overall

    def authority_of(self, candidate: Candidate) -> float:
        authority = self.authority_scorer.authority_for(candidate)
        return authority if authority is not None else tc.NEUTRAL_AUTHORITY

    def order_documents(self, candidates: Sequence[Candidate]) -> List[Candidate]:
        cfg = self.config.documents
        strategy = cfg.strategy

        def primary(c: Candidate) -> float:
            if strategy is OrderingStrategy.QUALITY:
                return self.quality_of(c)
            if strategy is OrderingStrategy.HYBRID:
                return c.effective_score * cfg.score_weight + self.quality_of(c) * cfg.quality_weight
            if strategy is OrderingStrategy.CHRONOLOGICAL:
                return _timestamp(c.published_at)
            return c.effective_score

        return self._sort(candidates, primary, cfg.ascending, "documents", strategy)

    def order_web(self, candidates: Sequence[Candidate], now: Optional[datetime] = None) -> List[Candidate]:
        cfg = self.config.web
        strategy = cfg.strategy

        def primary(c: Candidate) -> float:
            if strategy is OrderingStrategy.QUALITY:
                return self.quality_of(c)
            if strategy is OrderingStrategy.CHRONOLOGICAL:
                return _timestamp(c.published_at)
            if strategy is OrderingStrategy.HYBRID:
                quality = self.quality_of(c)
                authority = self.authority_of(c)
                if not c.has_score:
                    # Without a score, quality and authority share the whole weight
                    total = cfg.quality_weight + cfg.authority_weight
                    if total <= 0:
                        return quality
                    return quality * cfg.quality_weight / total + authority * cfg.authority_weight / total
                return c.effective_score * cfg.score_weight + quality * cfg.quality_weight + authority * cfg.authority_weight
            if not c.has_score:
                return self.quality_of(c)
            return c.effective_score

        ordered = self._sort(candidates, primary, cfg.ascending, "web", strategy)
        if cfg.enable_freshness_ordering:
            ordered = [c.model_copy(update={"metadata": {**c.metadata, "freshness": freshness_score(c.published_at, now)}})
                       for c in ordered]
        return ordered

    @staticmethod
    def _sort(
        candidates: Sequence[Candidate],
        primary: Callable[[Candidate], float],
        ascending: bool,
        collection: str,
        strategy: OrderingStrategy,
    ) -> List[Candidate]:
        keyed = [(_sort_value(primary(c)), c.effective_score, i, c) for i, c in enumerate(candidates)]
        if ascending:
            keyed.sort(key=lambda k: (k[0], k[1], k[2]))
        else:
            keyed.sort(key=lambda k: (-k[0], -k[1], k[2]))
        logger.debug(f"Ordered {len(keyed)} {collection} by {strategy.value} ({'asc' if ascending else 'desc'})")
        return [c for _, _, _, c in keyed]
