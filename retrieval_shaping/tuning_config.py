"""
Tuning parameters for the retrieval shaping pipeline.

Centralizes the numeric constants that drive budgeting, complexity scaling,
chunk sizing, filtering presets, authority scoring and ordering so they can be
adjusted in one place. Values here are defaults; config.py builds the
validated settings objects from them.
"""

from __future__ import annotations

from typing import Dict, Tuple

# ============================================================================
# Model Context Windows
# ============================================================================

# Maximum context window (prompt + response) per model
MODEL_TOKEN_LIMITS: Dict[str, int] = {
    "gpt-3.5-turbo": 16385,
    "gpt-3.5-turbo-16k": 16385,
    "gpt-3.5-turbo-1106": 16385,
    "gpt-3.5-turbo-0125": 16385,
    "gpt-4": 8192,
    "gpt-4-32k": 32768,
    "gpt-4-turbo": 128000,
    "gpt-4-turbo-preview": 128000,
    "gpt-4-1106-preview": 128000,
    "gpt-4-0125-preview": 128000,
    "gpt-4o": 128000,
    "gpt-4o-mini": 128000,
}

DEFAULT_MODEL_TOKEN_LIMIT: int = 16385

# Substring rules for model ids missing from the table, checked in order
MODEL_FAMILY_RULES: Tuple[Tuple[Tuple[str, ...], int], ...] = (
    (("gpt-4-turbo", "gpt-4o"), 128000),
    (("gpt-4-32k",), 32768),
    (("gpt-4",), 8192),
    (("gpt-3.5-turbo",), 16385),
)

# Share of the window held back for the model's answer when no explicit reserve is given
RESPONSE_RESERVE_RATIO: float = 0.15

# Soft ceilings: a component above its share of the window adds a budget warning
SYSTEM_PROMPT_SOFT_SHARE: float = 0.05
USER_MESSAGE_SOFT_SHARE: float = 0.05

# Rough characters-per-token used when the tokenizer cannot encode the text
CHARS_PER_TOKEN_FALLBACK: int = 4

# ============================================================================
# Dynamic Result Limits
# ============================================================================

TOKENS_PER_DOCUMENT_CHUNK: int = 300
TOKENS_PER_WEB_RESULT: int = 400

# Share of the item budget given to document chunks (rest goes to web results)
DOCUMENT_WEB_RATIO: float = 0.6

MIN_DOCUMENT_CHUNKS: int = 3
MAX_DOCUMENT_CHUNKS: int = 30
MIN_WEB_RESULTS: int = 2
MAX_WEB_RESULTS: int = 15
DEFAULT_DOCUMENT_CHUNKS: int = 5
DEFAULT_WEB_RESULTS: int = 5

COMPLEXITY_MULTIPLIERS: Dict[str, float] = {
    "simple": 0.7,
    "moderate": 1.0,
    "complex": 1.3,
}

# ============================================================================
# Query Complexity
# ============================================================================

# Tier cut-offs on raw query length (characters) and keyword count
SIMPLE_MAX_LENGTH: int = 50
SIMPLE_MAX_KEYWORDS: int = 2
COMPLEX_MIN_LENGTH: int = 150
COMPLEX_MIN_KEYWORDS: int = 5

# Score saturation points
COMPLEXITY_LENGTH_SATURATION: int = 200
COMPLEXITY_KEYWORD_SATURATION: int = 10

# ============================================================================
# Adaptive Chunking
# ============================================================================

# (max_chunk_size, min_chunk_size, overlap_ratio) per document type
CHUNK_PROFILES: Dict[str, Tuple[int, int, float]] = {
    "pdf": (1000, 150, 0.15),
    "docx": (1000, 150, 0.15),
    "text": (800, 100, 0.125),
    "code": (600, 80, 0.2),
    "markdown": (900, 120, 0.15),
    "html": (900, 120, 0.15),
    "unknown": (800, 100, 0.125),
}

DYNAMIC_OVERLAP_MIN_RATIO: float = 0.1
DYNAMIC_OVERLAP_MAX_RATIO: float = 0.2
DYNAMIC_OVERLAP_BASE_RATIO: float = 0.125

# Dynamic overlap nudge: chunks above LARGE lose NUDGE, chunks below SMALL gain it
DYNAMIC_OVERLAP_NUDGE: float = 0.02
DYNAMIC_OVERLAP_LARGE_CHUNK: int = 1000
DYNAMIC_OVERLAP_SMALL_CHUNK: int = 500

STATIC_MAX_CHUNK_SIZE: int = 800
STATIC_MIN_CHUNK_SIZE: int = 100
STATIC_CHUNK_OVERLAP: int = 100

# ============================================================================
# Hybrid Search Weights
# ============================================================================

DEFAULT_SEMANTIC_WEIGHT: float = 0.6
DEFAULT_KEYWORD_WEIGHT: float = 0.4

# (semantic, keyword) per named preset
HYBRID_WEIGHT_PRESETS: Dict[str, Tuple[float, float]] = {
    "balanced": (0.6, 0.4),
    "semantic_heavy": (0.8, 0.2),
    "keyword_heavy": (0.3, 0.7),
    "equal": (0.5, 0.5),
}

# ============================================================================
# Result Quality Scoring
# ============================================================================

QUALITY_WEIGHT_LENGTH: float = 0.25
QUALITY_WEIGHT_READABILITY: float = 0.30
QUALITY_WEIGHT_STRUCTURE: float = 0.25
QUALITY_WEIGHT_COMPLETENESS: float = 0.20

MIN_CONTENT_LENGTH: int = 50
OPTIMAL_CONTENT_LENGTH: int = 500
MAX_CONTENT_LENGTH: int = 5000
MIN_WORDS_PER_SENTENCE: int = 5
MAX_WORDS_PER_SENTENCE: int = 25
MIN_SENTENCES: int = 3
MIN_WORD_COUNT: int = 20
OPTIMAL_WORD_COUNT: int = 200

# ============================================================================
# Time Range Scoring
# ============================================================================

# Maximum penalty for results older than the cutoff (reached after one year)
TIME_DECAY_MAX_PENALTY: float = 0.8
TIME_DECAY_DAYS: int = 365

# Score for a result without a publication date
UNDATED_SCORE_STRICT: float = 0.3
UNDATED_SCORE_RELAXED: float = 0.6
UNPARSEABLE_DATE_SCORE: float = 0.5

# ============================================================================
# Freshness (ordering)
# ============================================================================

# (max_age_days, score) bands, youngest first
FRESHNESS_BANDS: Tuple[Tuple[int, float], ...] = (
    (7, 1.0),
    (30, 0.9),
    (90, 0.8),
    (365, 0.7),
)
FRESHNESS_FLOOR: float = 0.3
FRESHNESS_UNKNOWN: float = 0.5

# ============================================================================
# Domain Authority
# ============================================================================

# Built-in authority for well-known sources, in [0,1]
KNOWN_DOMAIN_AUTHORITY: Dict[str, float] = {
    "wikipedia.org": 0.95,
    "britannica.com": 0.95,
    "nature.com": 0.98,
    "science.org": 0.98,
    "arxiv.org": 0.90,
    "ncbi.nlm.nih.gov": 0.95,
    "nih.gov": 0.95,
    "who.int": 0.95,
    "reuters.com": 0.90,
    "apnews.com": 0.90,
    "bbc.com": 0.88,
    "nytimes.com": 0.88,
    "docs.python.org": 0.92,
    "developer.mozilla.org": 0.92,
    "github.com": 0.80,
    "stackoverflow.com": 0.80,
    "medium.com": 0.60,
    "reddit.com": 0.45,
    "quora.com": 0.40,
}

# Fallback by top-level domain
TLD_AUTHORITY: Dict[str, float] = {
    "gov": 0.90,
    "edu": 0.85,
    "org": 0.70,
}

# Authority assumed for an unknown domain when filtering by authority
NEUTRAL_AUTHORITY: float = 0.5

# ============================================================================
# Re-ranking
# ============================================================================

RERANK_TOP_K: int = 20
RERANK_MAX_RESULTS: int = 10
RERANK_MIN_SCORE: float = 0.3
RERANK_BATCH_SIZE: int = 10

RERANK_SCORE_WEIGHTS: Dict[str, float] = {
    "semantic": 0.4,
    "keyword": 0.3,
    "length": 0.2,
    "position": 0.1,
}

# Hybrid strategy blend: cross-encoder share, score-based share
RERANK_HYBRID_CROSS_SHARE: float = 0.7
RERANK_HYBRID_SCORE_SHARE: float = 0.3

CROSS_ENCODER_MODELS: Tuple[str, ...] = (
    "cross-encoder/ms-marco-MiniLM-L-6-v2",
    "cross-encoder/ms-marco-MiniLM-L-12-v2",
)


def get_model_family_limit(model: str) -> int:
    """Infer a context window from a model id not present in MODEL_TOKEN_LIMITS."""
    for needles, limit in MODEL_FAMILY_RULES:
        if any(needle in model for needle in needles):
            return limit
    return DEFAULT_MODEL_TOKEN_LIMIT
