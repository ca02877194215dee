"""
Dynamic result limits.

Decides how many document chunks and web results to fetch for a query from
the remaining token budget and the query's complexity tier, then clamps both
counts into their configured windows.
"""

from __future__ import annotations

import math
from typing import List, Optional, Tuple

from loguru import logger

from retrieval_shaping.complexity import QueryComplexityClassifier, get_classifier
from retrieval_shaping.models import (
    BaseLimits,
    DynamicLimitConfig,
    DynamicLimits,
    LimitFactors,
    LimitOverrides,
    QueryComplexity,
    TokenBudget,
    merge_overrides,
)


def _clamp(value: int, lower: int, upper: int) -> int:
    return max(lower, min(upper, value))


class DynamicLimitCalculator:
    """Compute per-request document and web result limits."""

    def __init__(
        self,
        config: Optional[DynamicLimitConfig] = None,
        classifier: Optional[QueryComplexityClassifier] = None,
    ):
        self.config = config or DynamicLimitConfig()
        self.classifier = classifier or get_classifier()

    def compute(
        self,
        query: str,
        budget: Optional[TokenBudget] = None,
        complexity: Optional[QueryComplexity] = None,
        overrides: Optional[LimitOverrides] = None,
    ) -> DynamicLimits:
        """
        Compute limits for one request.

        Args:
            query: Raw user query
            budget: Token budget; when omitted, configured default counts are the base
            complexity: Pre-computed tier; classified from the query when omitted
            overrides: Per-request config overrides, applied field by field

        Returns:
            DynamicLimits with both counts inside their [min, max] windows
        """
        config = merge_overrides(self.config, overrides)

        if not config.enabled:
            return DynamicLimits(
                document_chunks=config.default_document_chunks,
                web_results=config.default_web_results,
                reasoning="Dynamic limits disabled, using defaults",
            )

        multiplier = 1.0
        if config.use_complexity_adjustments:
            if complexity is None:
                complexity = self.classifier.classify(query)
            multiplier = config.multiplier_for(complexity)

        base_docs, base_web = config.default_document_chunks, config.default_web_results
        remaining = None
        if config.use_token_budget_limits and budget is not None:
            remaining = budget.remaining
            base_docs, base_web = self._split_budget(remaining, config)

        adjusted_docs, adjusted_web = base_docs, base_web
        if config.use_complexity_adjustments and multiplier != 1.0:
            adjusted_docs = math.floor(base_docs * multiplier)
            adjusted_web = math.floor(base_web * multiplier)

        final_docs = _clamp(adjusted_docs, config.min_document_chunks, config.max_document_chunks)
        final_web = _clamp(adjusted_web, config.min_web_results, config.max_web_results)

        parts: List[str] = []
        if remaining is not None:
            parts.append(f"Token budget: {remaining} tokens available")
        if complexity is not None and config.use_complexity_adjustments:
            parts.append(f"Query complexity: {complexity.value} (multiplier: {multiplier:.2f})")
        parts.append(f"Base limits: {base_docs} documents, {base_web} web")
        parts.append(f"Adjusted limits: {adjusted_docs} documents, {adjusted_web} web")
        parts.append(f"Final limits: {final_docs} documents, {final_web} web")
        reasoning = "; ".join(parts)

        logger.info(f"Dynamic limits: {reasoning}")
        return DynamicLimits(
            document_chunks=final_docs,
            web_results=final_web,
            reasoning=reasoning,
            factors=LimitFactors(
                token_budget=remaining,
                complexity=complexity if config.use_complexity_adjustments else None,
                complexity_multiplier=multiplier,
                base_limits=BaseLimits(document_chunks=base_docs, web_results=base_web),
            ),
        )

    def recommended_limits(self, query: str, overrides: Optional[LimitOverrides] = None) -> Tuple[int, int]:
        """Quick (documents, web) limits from complexity alone, ignoring any token budget."""
        quick = LimitOverrides(use_token_budget_limits=False)
        if overrides is not None:
            quick = overrides.model_copy(update={"use_token_budget_limits": False})
        limits = self.compute(query, overrides=quick)
        return limits.document_chunks, limits.web_results

    @staticmethod
    def _split_budget(remaining: int, config: DynamicLimitConfig) -> Tuple[int, int]:
        ratio = config.document_web_ratio
        avg_tokens = config.tokens_per_document_chunk * ratio + config.tokens_per_web_result * (1 - ratio)
        max_items = math.floor(remaining / avg_tokens)
        docs = math.floor(max_items * ratio)
        logger.debug(f"Budget split: {remaining} tokens -> {max_items} items ({docs} documents)")
        return docs, max_items - docs
