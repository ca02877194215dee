"""
Pydantic Data Models for the retrieval shaping pipeline

Provides immutable, validated definitions for:
- Token budgets and prompt components
- Query complexity analysis
- Dynamic result limits and their overrides
- Hybrid weights and A/B experiment configuration
- Filtering, authority, re-ranking and ordering configuration
- Retrieved candidates (document chunks and web results)
"""

from __future__ import annotations

import math
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Type, TypeVar

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, computed_field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from retrieval_shaping import tuning_config as tc
from retrieval_shaping.errors import ConfigurationError

M = TypeVar("M", bound=BaseModel)


# ============================================================================
# Enums
# ============================================================================


class QueryComplexity(str, Enum):
    """Coarse difficulty tier used to scale result counts."""
    SIMPLE = "simple"
    MODERATE = "moderate"
    COMPLEX = "complex"


class QueryKind(str, Enum):
    """Structural query type detected from its wording."""
    FACTUAL = "factual"
    CONCEPTUAL = "conceptual"
    PROCEDURAL = "procedural"
    EXPLORATORY = "exploratory"
    UNKNOWN = "unknown"


class DocumentType(str, Enum):
    PDF = "pdf"
    DOCX = "docx"
    TEXT = "text"
    CODE = "code"
    MARKDOWN = "markdown"
    HTML = "html"
    UNKNOWN = "unknown"


class OverlapMode(str, Enum):
    FIXED = "fixed"
    RATIO = "ratio"
    DYNAMIC = "dynamic"


class ChunkingStrategy(str, Enum):
    SENTENCE = "sentence"
    SEMANTIC = "semantic"
    HYBRID = "hybrid"


class FilteringMode(str, Enum):
    STRICT = "strict"
    MODERATE = "moderate"
    LENIENT = "lenient"


class RerankingStrategy(str, Enum):
    CROSS_ENCODER = "cross-encoder"
    SCORE_BASED = "score-based"
    HYBRID = "hybrid"
    NONE = "none"


class OrderingStrategy(str, Enum):
    RELEVANCE = "relevance"
    SCORE = "score"
    QUALITY = "quality"
    HYBRID = "hybrid"
    CHRONOLOGICAL = "chronological"


class CandidateKind(str, Enum):
    DOCUMENT = "document"
    WEB = "web"


class FrozenModel(BaseModel):
    """Base for per-request value objects: immutable once built."""

    model_config = ConfigDict(frozen=True, extra="forbid")


# ============================================================================
# Token Budget
# ============================================================================


class PromptComponents(FrozenModel):
    """Token estimates for the fixed parts of a prompt."""

    system: int = Field(default=0, ge=0)
    history: int = Field(default=0, ge=0)
    user_message: int = Field(default=0, ge=0)
    reserved_for_response: Optional[int] = Field(default=None, ge=0)

    @property
    def fixed_tokens(self) -> int:
        return self.system + self.history + self.user_message

    @classmethod
    def from_text(
        cls,
        model: str,
        system: str = "",
        history: str = "",
        user_message: str = "",
        reserved_for_response: Optional[int] = None,
    ) -> "PromptComponents":
        """Count tokens for raw prompt parts with the model's tokenizer."""
        from retrieval_shaping.token_budget import count_tokens

        return cls(
            system=count_tokens(system, model),
            history=count_tokens(history, model),
            user_message=count_tokens(user_message, model),
            reserved_for_response=reserved_for_response,
        )


class TokenAllocations(FrozenModel):
    system: int = Field(default=0, ge=0)
    history: int = Field(default=0, ge=0)
    user_question: int = Field(default=0, ge=0)
    reserved_for_response: int = Field(default=0, ge=0)

    @property
    def total(self) -> int:
        return self.system + self.history + self.user_question + self.reserved_for_response


class TokenBudget(FrozenModel):
    """Accounting of a model's context window for one request."""

    model: str
    total: int = Field(ge=0)
    allocations: TokenAllocations = Field(default_factory=TokenAllocations)
    warnings: Tuple[str, ...] = ()

    @model_validator(mode="after")
    def _allocations_fit(self) -> "TokenBudget":
        if self.allocations.total > self.total:
            raise ValueError(
                f"allocations ({self.allocations.total}) exceed total capacity ({self.total})"
            )
        return self

    @computed_field  # type: ignore[prop-decorator]
    @property
    def remaining(self) -> int:
        return self.total - self.allocations.total

    @property
    def utilization(self) -> float:
        return self.allocations.total / self.total if self.total else 1.0


# ============================================================================
# Query Complexity
# ============================================================================


class ComplexityAnalysis(FrozenModel):
    query: str
    tier: QueryComplexity
    query_type: QueryKind = QueryKind.UNKNOWN
    length: int = 0
    word_count: int = 0
    keywords: Tuple[str, ...] = ()
    complexity_score: float = Field(default=0.0, ge=0.0, le=1.0)


# ============================================================================
# Dynamic Limits
# ============================================================================


class BaseLimits(FrozenModel):
    document_chunks: int = Field(ge=0)
    web_results: int = Field(ge=0)


class LimitFactors(FrozenModel):
    token_budget: Optional[int] = None
    complexity: Optional[QueryComplexity] = None
    complexity_multiplier: Optional[float] = None
    base_limits: Optional[BaseLimits] = None


class DynamicLimits(FrozenModel):
    document_chunks: int = Field(ge=0)
    web_results: int = Field(ge=0)
    reasoning: str
    factors: LimitFactors = Field(default_factory=LimitFactors)


def _default_multipliers() -> Dict[QueryComplexity, float]:
    return {QueryComplexity(k): v for k, v in tc.COMPLEXITY_MULTIPLIERS.items()}


class DynamicLimitConfig(FrozenModel):
    enabled: bool = True
    use_token_budget_limits: bool = True
    tokens_per_document_chunk: int = Field(default=tc.TOKENS_PER_DOCUMENT_CHUNK, gt=0)
    tokens_per_web_result: int = Field(default=tc.TOKENS_PER_WEB_RESULT, gt=0)
    use_complexity_adjustments: bool = True
    complexity_multipliers: Dict[QueryComplexity, float] = Field(default_factory=_default_multipliers)
    min_document_chunks: int = Field(default=tc.MIN_DOCUMENT_CHUNKS, ge=0)
    max_document_chunks: int = Field(default=tc.MAX_DOCUMENT_CHUNKS, ge=0)
    min_web_results: int = Field(default=tc.MIN_WEB_RESULTS, ge=0)
    max_web_results: int = Field(default=tc.MAX_WEB_RESULTS, ge=0)
    default_document_chunks: int = Field(default=tc.DEFAULT_DOCUMENT_CHUNKS, ge=0)
    default_web_results: int = Field(default=tc.DEFAULT_WEB_RESULTS, ge=0)
    document_web_ratio: float = Field(default=tc.DOCUMENT_WEB_RATIO, ge=0.0, le=1.0)

    @field_validator("complexity_multipliers")
    @classmethod
    def _multipliers_positive(cls, value: Dict[QueryComplexity, float]) -> Dict[QueryComplexity, float]:
        for tier, multiplier in value.items():
            if multiplier <= 0:
                raise ValueError(f"complexity multiplier for {tier.value} must be > 0")
        return value

    @model_validator(mode="after")
    def _bounds_ordered(self) -> "DynamicLimitConfig":
        if self.min_document_chunks > self.max_document_chunks:
            raise ValueError("min_document_chunks must be <= max_document_chunks")
        if self.min_web_results > self.max_web_results:
            raise ValueError("min_web_results must be <= max_web_results")
        return self

    def multiplier_for(self, tier: QueryComplexity) -> float:
        return self.complexity_multipliers.get(tier, 1.0)


class LimitOverrides(FrozenModel):
    """Per-request overrides for DynamicLimitConfig; unset fields keep the base value."""

    enabled: Optional[bool] = None
    use_token_budget_limits: Optional[bool] = None
    use_complexity_adjustments: Optional[bool] = None
    min_document_chunks: Optional[int] = Field(default=None, ge=0)
    max_document_chunks: Optional[int] = Field(default=None, ge=0)
    min_web_results: Optional[int] = Field(default=None, ge=0)
    max_web_results: Optional[int] = Field(default=None, ge=0)
    default_document_chunks: Optional[int] = Field(default=None, ge=0)
    default_web_results: Optional[int] = Field(default=None, ge=0)
    document_web_ratio: Optional[float] = Field(default=None, ge=0.0, le=1.0)


# ============================================================================
# Adaptive Chunking
# ============================================================================


class ChunkSizeProfile(FrozenModel):
    max_chunk_size: int = Field(gt=0)
    min_chunk_size: int = Field(gt=0)
    overlap_ratio: float = Field(ge=0.0, le=1.0)
    preferred_strategy: ChunkingStrategy = ChunkingStrategy.SENTENCE

    @model_validator(mode="after")
    def _sizes_ordered(self) -> "ChunkSizeProfile":
        if self.min_chunk_size > self.max_chunk_size:
            raise ValueError("min_chunk_size must be <= max_chunk_size")
        return self


def _default_profiles() -> Dict[DocumentType, ChunkSizeProfile]:
    return {
        DocumentType(name): ChunkSizeProfile(
            max_chunk_size=max_size, min_chunk_size=min_size, overlap_ratio=ratio
        )
        for name, (max_size, min_size, ratio) in tc.CHUNK_PROFILES.items()
    }


class AdaptiveChunkingConfig(FrozenModel):
    enabled: bool = True
    profiles: Dict[DocumentType, ChunkSizeProfile] = Field(default_factory=_default_profiles)
    overlap_mode: OverlapMode = OverlapMode.DYNAMIC
    min_overlap_ratio: float = Field(default=tc.DYNAMIC_OVERLAP_MIN_RATIO, ge=0.0, le=1.0)
    max_overlap_ratio: float = Field(default=tc.DYNAMIC_OVERLAP_MAX_RATIO, ge=0.0, le=1.0)
    base_overlap_ratio: float = Field(default=tc.DYNAMIC_OVERLAP_BASE_RATIO, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def _overlap_window(self) -> "AdaptiveChunkingConfig":
        if not self.min_overlap_ratio <= self.max_overlap_ratio:
            raise ValueError("min_overlap_ratio must be <= max_overlap_ratio")
        return self


class ChunkingOptions(FrozenModel):
    max_chunk_size: int
    min_chunk_size: int
    overlap_size: int
    strategy: ChunkingStrategy


# ============================================================================
# Hybrid Weights & A/B Tests
# ============================================================================


class HybridSearchWeights(FrozenModel):
    semantic: float = Field(default=tc.DEFAULT_SEMANTIC_WEIGHT, ge=0.0, le=1.0)
    keyword: float = Field(default=tc.DEFAULT_KEYWORD_WEIGHT, ge=0.0, le=1.0)


class WeightVariant(FrozenModel):
    name: str = Field(min_length=1)
    weights: HybridSearchWeights
    traffic_percentage: float = Field(ge=0.0, le=100.0)


class FilteringVariant(FrozenModel):
    name: str = Field(min_length=1)
    strategy: "FilteringStrategy"
    traffic_percentage: float = Field(ge=0.0, le=100.0)


def _check_variants(variants: Tuple[Any, ...], default_variant: str) -> None:
    names = [v.name for v in variants]
    if len(set(names)) != len(names):
        raise ValueError("variant names must be unique")
    total = sum(v.traffic_percentage for v in variants)
    if total > 100.0 + 1e-9:
        raise ValueError(f"variant traffic percentages sum to {total}, more than 100")
    if variants and default_variant not in names:
        raise ValueError(f"default variant {default_variant!r} is not one of {names}")


class ABTestConfig(FrozenModel):
    """Experiment over hybrid weight pairs."""

    enabled: bool = False
    variants: Tuple[WeightVariant, ...] = ()
    default_variant: str = "balanced"

    @model_validator(mode="after")
    def _variants_consistent(self) -> "ABTestConfig":
        _check_variants(self.variants, self.default_variant)
        return self

    def variant(self, name: str) -> Optional[WeightVariant]:
        return next((v for v in self.variants if v.name == name), None)


class FilteringABTestConfig(FrozenModel):
    """Experiment over filtering strategies."""

    enabled: bool = False
    variants: Tuple[FilteringVariant, ...] = ()
    default_variant: str = "moderate"

    @model_validator(mode="after")
    def _variants_consistent(self) -> "FilteringABTestConfig":
        _check_variants(self.variants, self.default_variant)
        return self

    def variant(self, name: str) -> Optional[FilteringVariant]:
        return next((v for v in self.variants if v.name == name), None)


# ============================================================================
# Filtering
# ============================================================================


class DimensionFilterConfig(FrozenModel):
    enabled: bool = True
    use_hard_filter: bool = False
    strict_threshold: float = Field(default=0.8, ge=0.0, le=1.0)
    moderate_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    lenient_threshold: float = Field(default=0.6, ge=0.0, le=1.0)
    ranking_penalty: float = Field(default=0.2, ge=0.0, le=1.0)

    def threshold_for(self, mode: FilteringMode) -> float:
        if mode is FilteringMode.STRICT:
            return self.strict_threshold
        if mode is FilteringMode.LENIENT:
            return self.lenient_threshold
        return self.moderate_threshold


class DiversityConfig(FrozenModel):
    enabled: bool = True
    min_domain_diversity: float = Field(default=0.5, ge=0.0, le=1.0)
    max_results_per_domain: int = Field(default=3, gt=0)


class FilteringStrategy(FrozenModel):
    mode: FilteringMode
    time_range: DimensionFilterConfig
    topic: DimensionFilterConfig
    quality: DimensionFilterConfig
    authority: DimensionFilterConfig
    diversity: DiversityConfig = Field(default_factory=DiversityConfig)

    def dimensions(self) -> Tuple[Tuple[str, DimensionFilterConfig], ...]:
        """Dimensions in evaluation order."""
        return (
            ("time_range", self.time_range),
            ("topic", self.topic),
            ("quality", self.quality),
            ("authority", self.authority),
        )


FilteringVariant.model_rebuild()
FilteringABTestConfig.model_rebuild()


# ============================================================================
# Domain Authority
# ============================================================================


class DomainAuthorityConfig(FrozenModel):
    authority_weight: float = Field(default=0.3, ge=0.0, le=1.0)
    min_authority_score: float = Field(default=0.5, ge=0.0, le=1.0)
    high_authority_boost: float = Field(default=1.2, ge=0.0)
    low_authority_penalty: float = Field(default=0.9, ge=0.0)
    enabled: bool = True
    custom_domain_scores: Dict[str, float] = Field(default_factory=dict)
    filter_by_authority: bool = False
    min_authority_filter: float = Field(default=0.3, ge=0.0, le=1.0)

    @field_validator("custom_domain_scores")
    @classmethod
    def _scores_in_range(cls, value: Dict[str, float]) -> Dict[str, float]:
        normalized = {}
        for domain, score in value.items():
            if not 0.0 <= score <= 1.0:
                raise ValueError(f"authority for {domain} must be in [0,1], got {score}")
            normalized[domain.lower().removeprefix("www.")] = score
        return normalized


# ============================================================================
# Re-ranking
# ============================================================================


class RerankScoreWeights(FrozenModel):
    semantic: float = Field(default=tc.RERANK_SCORE_WEIGHTS["semantic"], ge=0.0, le=1.0)
    keyword: float = Field(default=tc.RERANK_SCORE_WEIGHTS["keyword"], ge=0.0, le=1.0)
    length: float = Field(default=tc.RERANK_SCORE_WEIGHTS["length"], ge=0.0, le=1.0)
    position: float = Field(default=tc.RERANK_SCORE_WEIGHTS["position"], ge=0.0, le=1.0)


class RerankingConfig(FrozenModel):
    enabled: bool = False
    strategy: RerankingStrategy = RerankingStrategy.SCORE_BASED
    top_k: int = Field(default=tc.RERANK_TOP_K, gt=0)
    max_results: int = Field(default=tc.RERANK_MAX_RESULTS, gt=0)
    min_score: Optional[float] = Field(default=tc.RERANK_MIN_SCORE, ge=0.0, le=1.0)
    score_weights: RerankScoreWeights = Field(default_factory=RerankScoreWeights)
    cross_encoder_model: Optional[str] = None
    batch_size: int = Field(default=tc.RERANK_BATCH_SIZE, gt=0)

    @model_validator(mode="after")
    def _bounds_consistent(self) -> "RerankingConfig":
        if self.max_results > self.top_k:
            raise ValueError(
                f"max_results ({self.max_results}) cannot exceed top_k ({self.top_k})"
            )
        if self.strategy is RerankingStrategy.CROSS_ENCODER and not self.cross_encoder_model:
            raise ValueError("cross-encoder strategy requires cross_encoder_model")
        return self


# ============================================================================
# Ordering
# ============================================================================


class DocumentOrderingConfig(FrozenModel):
    strategy: OrderingStrategy = OrderingStrategy.RELEVANCE
    enable_score_ordering: bool = True
    enable_quality_ordering: bool = False
    enable_chronological_ordering: bool = False
    score_weight: float = Field(default=0.7, ge=0.0, le=1.0)
    quality_weight: float = Field(default=0.3, ge=0.0, le=1.0)
    ascending: bool = False


class WebOrderingConfig(FrozenModel):
    strategy: OrderingStrategy = OrderingStrategy.RELEVANCE
    enable_score_ordering: bool = True
    enable_quality_ordering: bool = False
    enable_authority_ordering: bool = False
    enable_freshness_ordering: bool = False
    score_weight: float = Field(default=0.5, ge=0.0, le=1.0)
    quality_weight: float = Field(default=0.3, ge=0.0, le=1.0)
    authority_weight: float = Field(default=0.2, ge=0.0, le=1.0)
    ascending: bool = False


class OrderingConfig(FrozenModel):
    documents: DocumentOrderingConfig = Field(default_factory=DocumentOrderingConfig)
    web: WebOrderingConfig = Field(default_factory=WebOrderingConfig)


# ============================================================================
# Candidates
# ============================================================================


class Candidate(FrozenModel):
    """A retrieved document chunk or web result flowing through the pipeline."""

    model_config = ConfigDict(frozen=True, extra="forbid", json_schema_extra={
        "example": {
            "id": "web-3",
            "kind": "web",
            "title": "Getting started",
            "text": "Install the package and ...",
            "url": "https://docs.python.org/3/tutorial/",
            "score": 0.82,
            "semantic_score": 0.85,
            "keyword_score": 0.7,
        }
    })

    id: str
    kind: CandidateKind = CandidateKind.DOCUMENT
    text: str = ""
    title: str = ""
    url: Optional[str] = None
    domain: Optional[str] = None
    source_id: Optional[str] = None
    score: Optional[float] = None
    semantic_score: Optional[float] = None
    keyword_score: Optional[float] = None
    length: Optional[int] = Field(default=None, ge=0)
    published_at: Optional[datetime] = None
    # Pre-computed dimension signals; filtering derives the missing ones
    time_score: Optional[Any] = None
    topic_score: Optional[Any] = None
    quality_score: Optional[Any] = None
    authority_score: Optional[Any] = None
    token_count: Optional[int] = Field(default=None, ge=0)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("score", "semantic_score", "keyword_score")
    @classmethod
    def _finite_score(cls, v: Optional[float], info: ValidationInfo) -> Optional[float]:
        # NaN and infinities are treated as absent
        if v is not None and not math.isfinite(v):
            logger.debug(f"Ignoring non-finite {info.field_name}: {v}")
            return None
        return v

    @property
    def has_score(self) -> bool:
        return self.score is not None and math.isfinite(self.score)

    @property
    def effective_score(self) -> float:
        """Score for ranking; absent or non-finite scores rank as 0.0."""
        return self.score if self.has_score else 0.0

    @property
    def effective_length(self) -> int:
        return self.length if self.length is not None else len(self.text)

    def with_score(self, score: float, **metadata: Any) -> "Candidate":
        """Return a copy carrying a new score and extra metadata."""
        update: Dict[str, Any] = {"score": score}
        if metadata:
            update["metadata"] = {**self.metadata, **metadata}
        return self.model_copy(update=update)


# ============================================================================
# Helpers
# ============================================================================


def parse_config(model_cls: Type[M], data: Optional[Dict[str, Any]] = None, **kwargs: Any) -> M:
    """Validate configuration data, raising ConfigurationError on any violation."""
    payload = {**(data or {}), **kwargs}
    try:
        return model_cls.model_validate(payload)
    except PydanticValidationError as e:
        raise ConfigurationError(
            f"Invalid {model_cls.__name__}: {e.error_count()} error(s)",
            context={"errors": [
                {"loc": ".".join(str(p) for p in err["loc"]), "msg": err["msg"]}
                for err in e.errors()
            ]},
            cause=e,
        ) from e


def merge_overrides(base: M, overrides: Optional[BaseModel]) -> M:
    """Apply an override struct onto a base config.

    Every override field that is not None replaces the base field of the same
    name; all other base fields are kept. The merged result is re-validated.
    """
    if overrides is None:
        return base
    updates = overrides.model_dump(exclude_none=True)
    unknown = set(updates) - set(type(base).model_fields)
    if unknown:
        raise ConfigurationError(
            f"Overrides name unknown fields: {sorted(unknown)}",
            context={"config": type(base).__name__},
        )
    return parse_config(type(base), {**base.model_dump(), **updates})
