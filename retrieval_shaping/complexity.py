"""
Query complexity classification.

Reads a raw query string and places it in a complexity tier (simple,
moderate, complex) from its length, its keyword count and the kind of
question it asks. The tier scales how many results the pipeline fetches.
"""

from __future__ import annotations

import re
from typing import List, Optional

from loguru import logger

from retrieval_shaping import tuning_config as tc
from retrieval_shaping.errors import ValidationError
from retrieval_shaping.models import ComplexityAnalysis, QueryComplexity, QueryKind


class QueryComplexityClassifier:
    """Classify query difficulty from its text alone."""

    # Query kind detection patterns, checked in order
    CONCEPTUAL_PATTERNS = [
        r"\b(explain|understand|meaning|concept|theory|idea|definition)\b",
        r"^(what does|what do|what means)",
    ]

    FACTUAL_PATTERNS = [
        r"^(what|who|when|where|which)\s+(is|are|was|were|did|does|do)",
        r"^(how many|how much)",
        r"^(who|what|when|where|which)\s+\w+",
    ]

    PROCEDURAL_PATTERNS = [
        r"^(how to|how do|how can|how should)",
        r"\b(steps|process|method|procedure|guide|tutorial|way to)\b",
    ]

    EXPLORATORY_PATTERNS = [
        r"^(tell me about|learn about|information about|know about|find out about)",
        r"\b(overview|introduction|background|general)\b",
    ]

    # Stop words excluded from keyword counts
    STOP_WORDS = {
        "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of", "with", "by",
        "is", "are", "was", "were", "be", "been", "being", "have", "has", "had", "do", "does", "did",
        "will", "would", "should", "could", "may", "might", "can", "this", "that", "these", "those",
        "what", "which", "who", "whom", "whose", "where", "when", "why", "how",
    }

    INTENT_SCORES = {
        QueryComplexity.SIMPLE: 0.3,
        QueryComplexity.MODERATE: 0.6,
        QueryComplexity.COMPLEX: 0.9,
    }

    TYPE_SCORES = {
        QueryKind.EXPLORATORY: 0.9,
        QueryKind.CONCEPTUAL: 0.7,
    }

    def __init__(self):
        self._compiled = [
            (QueryKind.CONCEPTUAL, [re.compile(p) for p in self.CONCEPTUAL_PATTERNS]),
            (QueryKind.FACTUAL, [re.compile(p) for p in self.FACTUAL_PATTERNS]),
            (QueryKind.PROCEDURAL, [re.compile(p) for p in self.PROCEDURAL_PATTERNS]),
            (QueryKind.EXPLORATORY, [re.compile(p) for p in self.EXPLORATORY_PATTERNS]),
        ]

    def analyze(self, query: str) -> ComplexityAnalysis:
        """
        Analyze a query.

        Returns:
            ComplexityAnalysis with:
            - tier: simple, moderate or complex
            - query_type: factual, conceptual, procedural, exploratory or unknown
            - length / word_count / keywords: the raw measurements
            - complexity_score: weighted 0-1 difficulty score
        """
        if not isinstance(query, str):
            raise ValidationError(f"Query must be a string, got {type(query).__name__}", field="query")

        length = len(query)
        word_count = len(query.split())
        keywords = self._extract_keywords(query)
        query_type = self.detect_type(query)
        tier = self._tier(length, len(keywords), query_type)

        length_score = min(1.0, length / tc.COMPLEXITY_LENGTH_SATURATION)
        keyword_score = min(1.0, len(keywords) / tc.COMPLEXITY_KEYWORD_SATURATION)
        score = (
            length_score * 0.2
            + keyword_score * 0.3
            + self.INTENT_SCORES[tier] * 0.3
            + self.TYPE_SCORES.get(query_type, 0.5) * 0.2
        )

        analysis = ComplexityAnalysis(
            query=query,
            tier=tier,
            query_type=query_type,
            length=length,
            word_count=word_count,
            keywords=tuple(keywords),
            complexity_score=min(1.0, score),
        )
        logger.debug(
            f"Query complexity: tier={tier.value} type={query_type.value} "
            f"length={length} keywords={len(keywords)} score={analysis.complexity_score:.2f}"
        )
        return analysis

    def classify(self, query: str) -> QueryComplexity:
        return self.analyze(query).tier

    def detect_type(self, query: str) -> QueryKind:
        """Detect the kind of question asked."""
        q = query.lower().strip()
        for kind, patterns in self._compiled:
            if any(p.search(q) for p in patterns):
                return kind
        return QueryKind.UNKNOWN

    def _extract_keywords(self, query: str) -> List[str]:
        words = (re.sub(r"[^\w]", "", w) for w in query.lower().split())
        return [w for w in words if len(w) > 2 and w not in self.STOP_WORDS]

    @staticmethod
    def _tier(length: int, keyword_count: int, query_type: QueryKind) -> QueryComplexity:
        if (
            length < tc.SIMPLE_MAX_LENGTH
            and keyword_count <= tc.SIMPLE_MAX_KEYWORDS
            and query_type is QueryKind.FACTUAL
        ):
            return QueryComplexity.SIMPLE
        if (length > tc.COMPLEX_MIN_LENGTH or keyword_count > tc.COMPLEX_MIN_KEYWORDS) and query_type in (
            QueryKind.EXPLORATORY,
            QueryKind.CONCEPTUAL,
        ):
            return QueryComplexity.COMPLEX
        return QueryComplexity.MODERATE


_classifier: Optional[QueryComplexityClassifier] = None


def get_classifier() -> QueryComplexityClassifier:
    """Get or create the shared classifier."""
    global _classifier
    if _classifier is None:
        _classifier = QueryComplexityClassifier()
    return _classifier
