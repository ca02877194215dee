"""
Re-ranking of retrieved candidates.

Combines per-candidate signals (semantic score, keyword score, length and
original position) into one composite score, optionally blended with a
cross-encoder. Re-ranking only looks at the top-K by current score and never
returns more than max_results.

Sorting is stable: candidates with equal composites keep their original
retrieval order, so identical inputs always re-rank identically.
"""

from __future__ import annotations

from typing import Dict, List, Optional, Protocol, Sequence

import numpy as np
from loguru import logger

from retrieval_shaping import tuning_config as tc
from retrieval_shaping.metrics import track_dropped
from retrieval_shaping.models import Candidate, RerankingConfig, RerankingStrategy


class CrossEncoder(Protocol):
    """Anything that scores (query, passage) pairs; higher is more relevant."""

    def score(self, query: str, texts: Sequence[str]) -> Sequence[float]:
        ...


def top_k_positions(candidates: Sequence[Candidate], k: int) -> List[int]:
    """Input positions of the first k candidates by current score, ties in input order."""
    return sorted(range(len(candidates)), key=lambda i: -candidates[i].effective_score)[:k]


class RerankingEngine:
    """Score-based, cross-encoder and hybrid re-ranking."""

    def __init__(self, config: Optional[RerankingConfig] = None, cross_encoder: Optional[CrossEncoder] = None):
        self.config = config or RerankingConfig()
        self.cross_encoder = cross_encoder

    def rerank(self, query: str, candidates: Sequence[Candidate]) -> List[Candidate]:
        """
        Re-rank candidates for a query.

        Args:
            query: User query, passed to the cross-encoder
            candidates: Candidates in retrieval order

        Returns:
            At most min(max_results, top_k, len(candidates)) candidates, best
            first, each carrying original_score and rank_change in metadata
        """
        if not candidates:
            return []
        if not self.config.enabled:
            return list(candidates)[: self.config.max_results]

        # Top-K by score, back in retrieval order for the position signal and tie-breaks
        positions = sorted(top_k_positions(candidates, self.config.top_k))
        pool = [candidates[i] for i in positions]
        composite = self._composite(query, pool)

        order = np.argsort(-composite, kind="stable")
        min_score = self.config.min_score
        reranked: List[Candidate] = []
        below = 0
        for idx in order:
            value = float(composite[idx])
            if min_score is not None and value < min_score:
                below += 1
                continue
            original = pool[idx]
            reranked.append(original.with_score(
                value,
                original_score=original.score,
                rank_change=positions[idx] - len(reranked),
            ))
            if len(reranked) >= self.config.max_results:
                break

        track_dropped("rerank", "min_score", below)
        logger.info(
            f"Reranked {len(pool)} candidates ({self.config.strategy.value}): "
            f"kept {len(reranked)}, {below} below min_score"
        )
        return reranked

    def _composite(self, query: str, pool: Sequence[Candidate]) -> np.ndarray:
        strategy = self.config.strategy
        if strategy is RerankingStrategy.NONE:
            return np.array([c.effective_score for c in pool], dtype=float)

        score_based = self.score_based(pool)
        if strategy is RerankingStrategy.SCORE_BASED:
            return score_based

        cross = self._cross_encoder_scores(query, pool)
        if cross is None:
            return score_based
        if strategy is RerankingStrategy.CROSS_ENCODER:
            return cross
        return tc.RERANK_HYBRID_CROSS_SHARE * cross + tc.RERANK_HYBRID_SCORE_SHARE * score_based

    def score_based(self, pool: Sequence[Candidate]) -> np.ndarray:
        """Weighted composite of semantic, keyword, brevity and position signals."""
        n = len(pool)
        weights = self.config.score_weights
        base = np.array([c.effective_score for c in pool], dtype=float)
        semantic = np.array(
            [c.semantic_score if c.semantic_score is not None else base[i] for i, c in enumerate(pool)],
            dtype=float,
        )
        keyword = np.array(
            [c.keyword_score if c.keyword_score is not None else base[i] for i, c in enumerate(pool)],
            dtype=float,
        )
        lengths = np.array([c.effective_length for c in pool], dtype=float)
        max_length = lengths.max() if n else 0.0
        normalized_length = lengths / max_length if max_length > 0 else np.zeros(n)
        normalized_position = np.arange(n, dtype=float) / n

        return (
            semantic * weights.semantic
            + keyword * weights.keyword
            + (1.0 - normalized_length) * weights.length
            + (1.0 - normalized_position) * weights.position
        )

    def _cross_encoder_scores(self, query: str, pool: Sequence[Candidate]) -> Optional[np.ndarray]:
        if self.cross_encoder is None:
            logger.warning(
                f"No cross-encoder available for {self.config.cross_encoder_model or 'reranking'}, "
                "falling back to score-based reranking"
            )
            return None
        texts = [f"{c.title}\n{c.text}".strip() for c in pool]
        scores: List[float] = []
        try:
            for start in range(0, len(texts), self.config.batch_size):
                scores.extend(self.cross_encoder.score(query, texts[start:start + self.config.batch_size]))
        except Exception as e:
            logger.warning(f"Cross-encoder scoring failed: {e}. Falling back to score-based reranking.")
            return None
        if len(scores) != len(pool):
            logger.warning(f"Cross-encoder returned {len(scores)} scores for {len(pool)} passages, ignoring them")
            return None
        return np.clip(np.asarray(scores, dtype=float), 0.0, 1.0)


def precision_metrics(original: Sequence[Candidate], reranked: Sequence[Candidate]) -> Dict[str, float]:
    """Top-5 mean score before and after re-ranking, plus mean absolute rank change."""
    n = min(5, len(original), len(reranked))
    before = sum(c.effective_score for c in original[:n]) / n if n else 0.0
    after = sum(c.effective_score for c in reranked[:n]) / n if n else 0.0
    changes = [abs(c.metadata.get("rank_change", 0)) for c in reranked]
    return {
        "original_precision": before,
        "reranked_precision": after,
        "improvement_pct": ((after - before) / before * 100) if before > 0 else 0.0,
        "average_rank_change": sum(changes) / len(changes) if changes else 0.0,
    }
