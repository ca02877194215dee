"""
Hybrid search weight resolution.

Resolves the semantic/keyword weight pair for a request, either from the
configured defaults or from the A/B variant a subject is bucketed into, and
always hands back a pair normalized to sum to 1.
"""

from __future__ import annotations

from typing import List, Optional, Sequence

from loguru import logger

from retrieval_shaping import tuning_config as tc
from retrieval_shaping.bucketing import select_variant
from retrieval_shaping.models import ABTestConfig, Candidate, HybridSearchWeights

DEFAULT_WEIGHTS = HybridSearchWeights(
    semantic=tc.DEFAULT_SEMANTIC_WEIGHT,
    keyword=tc.DEFAULT_KEYWORD_WEIGHT,
)


def normalize_weights(weights: HybridSearchWeights) -> HybridSearchWeights:
    """Scale a pair to sum to 1; a zero-sum pair falls back to the default 0.6/0.4."""
    total = weights.semantic + weights.keyword
    if total <= 0:
        return DEFAULT_WEIGHTS
    semantic = weights.semantic / total
    return HybridSearchWeights(semantic=semantic, keyword=1.0 - semantic)


def weights_for_preset(name: str) -> HybridSearchWeights:
    """Named preset (balanced, semantic_heavy, keyword_heavy, equal), default for unknown names."""
    preset = tc.HYBRID_WEIGHT_PRESETS.get(name)
    if preset is None:
        logger.warning(f"Unknown hybrid weight preset '{name}', using default weights")
        return DEFAULT_WEIGHTS
    return HybridSearchWeights(semantic=preset[0], keyword=preset[1])


class HybridWeightResolver:
    """Pick the weight pair for a subject."""

    def __init__(
        self,
        default_weights: Optional[HybridSearchWeights] = None,
        ab_test: Optional[ABTestConfig] = None,
    ):
        self.default_weights = default_weights or DEFAULT_WEIGHTS
        self.ab_test = ab_test or ABTestConfig()

    def variant_for(self, subject_id: Optional[str]) -> Optional[str]:
        """Variant name for a subject, or None when no experiment is running."""
        if not self.ab_test.enabled:
            return None
        return select_variant(
            subject_id,
            self.ab_test.variants,
            self.ab_test.default_variant,
            experiment="hybrid_weights",
        )

    def resolve(self, subject_id: Optional[str] = None) -> HybridSearchWeights:
        """
        Weights for a subject.

        Args:
            subject_id: Stable subject identity; None buckets into the default variant

        Returns:
            Normalized HybridSearchWeights
        """
        name = self.variant_for(subject_id)
        if name is None:
            return normalize_weights(self.default_weights)

        variant = self.ab_test.variant(name)
        if variant is None:
            logger.warning(f"Variant '{name}' has no weights, using default weights")
            return normalize_weights(self.default_weights)
        return normalize_weights(variant.weights)


def combine_scores(candidates: Sequence[Candidate], weights: HybridSearchWeights) -> List[Candidate]:
    """
    Blend semantic and keyword scores into each candidate's score.

    Only candidates carrying both components are blended. A candidate with
    one component and no score takes that component as its score; anything
    else passes through unchanged.
    """
    combined = []
    for candidate in candidates:
        semantic, keyword = candidate.semantic_score, candidate.keyword_score
        if semantic is not None and keyword is not None:
            combined.append(candidate.with_score(semantic * weights.semantic + keyword * weights.keyword))
        elif candidate.score is None and (semantic is not None or keyword is not None):
            combined.append(candidate.with_score(semantic if semantic is not None else keyword))
        else:
            combined.append(candidate)
    return combined
