#!/usr/bin/env python3
"""Centralized configuration with validation and sensible defaults."""
from __future__ import annotations

import os
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from pydantic import Field

from retrieval_shaping import tuning_config as tc
from retrieval_shaping.errors import ConfigurationError
from retrieval_shaping.filtering import default_filtering_ab_test
from retrieval_shaping.models import (
    ABTestConfig,
    AdaptiveChunkingConfig,
    DomainAuthorityConfig,
    DynamicLimitConfig,
    FilteringABTestConfig,
    FilteringMode,
    FilteringStrategy,
    FrozenModel,
    HybridSearchWeights,
    OrderingConfig,
    OrderingStrategy,
    RerankingConfig,
    RerankingStrategy,
    WeightVariant,
    parse_config,
)
from retrieval_shaping.ordering import config_for_strategy

load_dotenv()


def _get_env(name: str, default: Optional[str] = None) -> str:
    val = os.getenv(name)
    return val if val is not None else (default or "")


def _parse_float(name: str, default: float) -> float:
    try:
        return float(_get_env(name, str(default)))
    except ValueError:
        return default


def _parse_int(name: str, default: int) -> int:
    try:
        return int(_get_env(name, str(default)))
    except ValueError:
        return default


def _parse_bool(name: str, default: bool) -> bool:
    return _get_env(name, "1" if default else "0").strip().lower() in ("1", "true", "yes", "on")


# Logging
LOG_LEVEL: str = _get_env("SHAPING_LOG_LEVEL", "INFO").upper()
LOG_FILE: Optional[str] = _get_env("SHAPING_LOG_FILE") or None

# Token budget
DEFAULT_MODEL: str = _get_env("SHAPING_DEFAULT_MODEL", "gpt-3.5-turbo")
RESPONSE_RESERVE_RATIO: float = _parse_float("SHAPING_RESPONSE_RESERVE_RATIO", tc.RESPONSE_RESERVE_RATIO)
TRIM_TO_BUDGET: bool = _parse_bool("SHAPING_TRIM_TO_BUDGET", True)

# Limits
DYNAMIC_LIMITS_ENABLED: bool = _parse_bool("SHAPING_DYNAMIC_LIMITS_ENABLED", True)

# Filtering
FILTERING_MODE: str = _get_env("SHAPING_FILTERING_MODE", "moderate").strip().lower()
FILTERING_AB_ENABLED: bool = _parse_bool("SHAPING_FILTERING_AB_ENABLED", False)

# Hybrid weights
WEIGHTS_AB_ENABLED: bool = _parse_bool("SHAPING_WEIGHTS_AB_ENABLED", False)

# Reranking
RERANK_ENABLED: bool = _parse_bool("SHAPING_RERANK_ENABLED", False)
RERANK_STRATEGY: str = _get_env("SHAPING_RERANK_STRATEGY", "score-based").strip().lower()
RERANK_TOP_K: int = _parse_int("SHAPING_RERANK_TOP_K", tc.RERANK_TOP_K)
RERANK_MAX_RESULTS: int = _parse_int("SHAPING_RERANK_MAX_RESULTS", tc.RERANK_MAX_RESULTS)
RERANK_CROSS_ENCODER_MODEL: Optional[str] = _get_env("SHAPING_RERANK_MODEL") or None

# Ordering
ORDERING_STRATEGY: str = _get_env("SHAPING_ORDERING_STRATEGY", "relevance").strip().lower()


def default_weights_ab_test(enabled: bool = False) -> ABTestConfig:
    """balanced 50% / semantic_heavy 30% / keyword_heavy 20%, defaulting to balanced."""
    def variant(name: str, share: float) -> WeightVariant:
        semantic, keyword = tc.HYBRID_WEIGHT_PRESETS[name]
        return WeightVariant(
            name=name,
            weights=HybridSearchWeights(semantic=semantic, keyword=keyword),
            traffic_percentage=share,
        )

    return ABTestConfig(
        enabled=enabled,
        variants=(variant("balanced", 50), variant("semantic_heavy", 30), variant("keyword_heavy", 20)),
        default_variant="balanced",
    )


class PipelineSettings(FrozenModel):
    """Everything the pipeline reads; replaced as a whole, never mutated."""

    default_model: str = "gpt-3.5-turbo"
    response_reserve_ratio: float = Field(default=tc.RESPONSE_RESERVE_RATIO, ge=0.0, lt=1.0)
    trim_to_budget: bool = True
    limits: DynamicLimitConfig = Field(default_factory=DynamicLimitConfig)
    chunking: AdaptiveChunkingConfig = Field(default_factory=AdaptiveChunkingConfig)
    hybrid_weights: HybridSearchWeights = Field(default_factory=HybridSearchWeights)
    weights_ab_test: ABTestConfig = Field(default_factory=default_weights_ab_test)
    filtering_mode: Optional[FilteringMode] = None
    filtering_strategy: Optional[FilteringStrategy] = None
    filtering_ab_test: FilteringABTestConfig = Field(default_factory=default_filtering_ab_test)
    authority: DomainAuthorityConfig = Field(default_factory=DomainAuthorityConfig)
    reranking: RerankingConfig = Field(default_factory=RerankingConfig)
    ordering: OrderingConfig = Field(default_factory=OrderingConfig)


def _enum(enum_cls, value: str, env_name: str):
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ConfigurationError(f"{env_name}={value!r} is not one of: {allowed}", context={"env": env_name}) from None


def load_settings(**overrides: Any) -> PipelineSettings:
    """
    Build validated settings from the environment.

    Keyword arguments replace whole sections (e.g. ``reranking=RerankingConfig(...)``)
    after the environment has been applied.

    Raises:
        ConfigurationError: any value is out of range or inconsistent
    """
    data: Dict[str, Any] = {
        "default_model": DEFAULT_MODEL,
        "response_reserve_ratio": RESPONSE_RESERVE_RATIO,
        "trim_to_budget": TRIM_TO_BUDGET,
        "limits": parse_config(DynamicLimitConfig, enabled=DYNAMIC_LIMITS_ENABLED),
        "weights_ab_test": default_weights_ab_test(enabled=WEIGHTS_AB_ENABLED),
        "filtering_ab_test": default_filtering_ab_test(enabled=FILTERING_AB_ENABLED),
        "reranking": parse_config(
            RerankingConfig,
            enabled=RERANK_ENABLED,
            strategy=_enum(RerankingStrategy, RERANK_STRATEGY, "SHAPING_RERANK_STRATEGY"),
            top_k=RERANK_TOP_K,
            max_results=RERANK_MAX_RESULTS,
            cross_encoder_model=RERANK_CROSS_ENCODER_MODEL,
        ),
        "ordering": config_for_strategy(_enum(OrderingStrategy, ORDERING_STRATEGY, "SHAPING_ORDERING_STRATEGY")),
    }
    # An A/B experiment on filtering only runs when no fixed mode pins the strategy
    if not FILTERING_AB_ENABLED:
        data["filtering_mode"] = _enum(FilteringMode, FILTERING_MODE, "SHAPING_FILTERING_MODE")
    data.update(overrides)
    return parse_config(PipelineSettings, data)


_settings: Optional[PipelineSettings] = None


def get_settings() -> PipelineSettings:
    """Current process-wide settings, loaded from the environment on first use."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def replace_settings(settings: PipelineSettings) -> PipelineSettings:
    """Swap in new settings; requests already running keep the object they started with."""
    global _settings
    validated = parse_config(PipelineSettings, settings.model_dump())
    _settings = validated
    return validated


def health_summary() -> dict:
    """Return the active knobs for health and debug output."""
    s = get_settings()
    return {
        "default_model": s.default_model,
        "dynamic_limits_enabled": s.limits.enabled,
        "filtering_mode": s.filtering_mode.value if s.filtering_mode else None,
        "filtering_ab_enabled": s.filtering_ab_test.enabled,
        "weights_ab_enabled": s.weights_ab_test.enabled,
        "rerank_enabled": s.reranking.enabled,
        "rerank_strategy": s.reranking.strategy.value,
        "ordering_strategy": s.ordering.documents.strategy.value,
        "trim_to_budget": s.trim_to_budget,
        "log_level": LOG_LEVEL,
    }
