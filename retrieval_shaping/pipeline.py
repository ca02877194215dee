"""
End-to-end retrieval shaping.

plan() runs before retrieval: it computes the token budget, classifies the
query, derives result limits and resolves the hybrid weights and filtering
strategy for the subject. shape() runs after retrieval: it filters web
results, applies domain authority, re-ranks and orders both collections and
finally trims them to the token budget.

The pipeline performs no I/O and holds no per-request state, so one
instance can serve concurrent requests.
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Sequence

from loguru import logger

from retrieval_shaping.authority import DomainAuthorityScorer
from retrieval_shaping.complexity import QueryComplexityClassifier
from retrieval_shaping.config import PipelineSettings, get_settings
from retrieval_shaping.errors import EmptyResultSetError, OverBudgetError
from retrieval_shaping.filtering import FilterContext, FilteringEngine, FilteringStats, resolve_strategy
from retrieval_shaping.hybrid_weights import HybridWeightResolver, combine_scores
from retrieval_shaping.limits import DynamicLimitCalculator
from retrieval_shaping.logging_config import log_error, log_filtering, log_limits, log_rerank
from retrieval_shaping.metrics import track_empty, track_result_size, track_stage
from retrieval_shaping.models import (
    Candidate,
    CandidateKind,
    ComplexityAnalysis,
    DynamicLimits,
    FilteringMode,
    FilteringStrategy,
    HybridSearchWeights,
    LimitOverrides,
    PromptComponents,
    TokenBudget,
)
from retrieval_shaping.ordering import ResultOrderer
from retrieval_shaping.reranking import CrossEncoder, RerankingEngine
from retrieval_shaping.token_budget import TokenBudgetCalculator, fit_to_budget


@contextmanager
def _timed(stage: str) -> Iterator[None]:
    start = time.perf_counter()
    try:
        yield
    finally:
        track_stage(stage, time.perf_counter() - start)


@dataclass(frozen=True)
class ShapingRequest:
    """Everything known about a request before retrieval."""
    query: str
    model: Optional[str] = None
    subject_id: Optional[str] = None
    request_id: Optional[str] = None
    components: PromptComponents = field(default_factory=PromptComponents)
    context_window: Optional[int] = None
    limit_overrides: Optional[LimitOverrides] = None
    filtering_mode: Optional[FilteringMode] = None
    filter_context: FilterContext = field(default_factory=FilterContext)


@dataclass(frozen=True)
class RetrievalPlan:
    """Decisions handed to the retrieval collaborators."""
    request: ShapingRequest
    budget: TokenBudget
    complexity: ComplexityAnalysis
    limits: DynamicLimits
    weights: HybridSearchWeights
    filtering_strategy: FilteringStrategy
    weight_variant: Optional[str] = None


@dataclass
class ShapedResults:
    documents: List[Candidate]
    web_results: List[Candidate]
    plan: RetrievalPlan
    filtering: FilteringStats
    tokens_used: int = 0
    diagnostics: Dict[str, Any] = field(default_factory=dict)

    @property
    def empty(self) -> bool:
        return not self.documents and not self.web_results

    def raise_if_empty(self) -> "ShapedResults":
        if self.empty:
            raise EmptyResultSetError(
                "No document or web results survived shaping",
                stage="pipeline",
                context=self.diagnostics,
            )
        return self


class RetrievalShapingPipeline:
    """Budgeting, filtering, re-ranking and ordering for one retrieval request at a time."""

    def __init__(
        self,
        settings: Optional[PipelineSettings] = None,
        cross_encoder: Optional[CrossEncoder] = None,
    ):
        self.settings = settings or get_settings()
        s = self.settings
        self.authority = DomainAuthorityScorer(s.authority)
        self.budget_calculator = TokenBudgetCalculator(s.response_reserve_ratio)
        self.classifier = QueryComplexityClassifier()
        self.limit_calculator = DynamicLimitCalculator(s.limits, self.classifier)
        self.weight_resolver = HybridWeightResolver(s.hybrid_weights, s.weights_ab_test)
        self.filtering = FilteringEngine(self.authority)
        self.reranker = RerankingEngine(s.reranking, cross_encoder)
        self.orderer = ResultOrderer(s.ordering, self.authority)

    def plan(self, request: ShapingRequest) -> RetrievalPlan:
        """
        Decide budget, limits, weights and filtering strategy for a request.

        Raises:
            OverBudgetError: the fixed prompt parts do not fit the model's window
        """
        model = request.model or self.settings.default_model
        with _timed("plan"):
            try:
                budget = self.budget_calculator.compute(model, request.components, request.context_window)
            except OverBudgetError as e:
                log_error(e, request.request_id, stage="token_budget")
                raise

            complexity = self.classifier.analyze(request.query)
            limits = self.limit_calculator.compute(
                request.query,
                budget=budget,
                complexity=complexity.tier,
                overrides=request.limit_overrides,
            )
            variant = self.weight_resolver.variant_for(request.subject_id)
            weights = self.weight_resolver.resolve(request.subject_id)

            if request.filtering_mode is not None:
                strategy = resolve_strategy(mode=request.filtering_mode)
            else:
                strategy = resolve_strategy(
                    strategy=self.settings.filtering_strategy,
                    mode=self.settings.filtering_mode,
                    subject_id=request.subject_id,
                    ab_test=self.settings.filtering_ab_test,
                )

        log_limits(request.request_id, request.query, limits.document_chunks, limits.web_results, limits.reasoning)
        return RetrievalPlan(
            request=request,
            budget=budget,
            complexity=complexity,
            limits=limits,
            weights=weights,
            filtering_strategy=strategy,
            weight_variant=variant,
        )

    def shape(
        self,
        plan: RetrievalPlan,
        documents: Sequence[Candidate],
        web_results: Sequence[Candidate],
    ) -> ShapedResults:
        """
        Turn retrieved candidates into the final ordered, size-bounded collections.

        An empty outcome is returned as such (``result.empty``); call
        ``raise_if_empty()`` to treat it as an error.
        """
        request = plan.request
        retrieved = list(documents) + list(web_results)
        documents = [c for c in retrieved if c.kind is CandidateKind.DOCUMENT]
        web = [c for c in retrieved if c.kind is CandidateKind.WEB]

        with _timed("weights"):
            documents = combine_scores(documents, plan.weights)
            web = combine_scores(web, plan.weights)

        with _timed("filtering"):
            outcome = self.filtering.filter(web, plan.filtering_strategy, request.filter_context)
        log_filtering(request.request_id, outcome.stats.to_dict())

        with _timed("authority"):
            web, authority_dropped = self.authority.apply(outcome.candidates)

        # Disabled re-ranking leaves the collections to ordering and the plan's limits
        if self.reranker.config.enabled:
            start = time.perf_counter()
            with _timed("rerank"):
                ranked_docs = self.reranker.rerank(request.query, documents)
                ranked_web = self.reranker.rerank(request.query, web)
            log_rerank(
                request.request_id,
                self.reranker.config.strategy.value,
                len(documents) + len(web),
                len(ranked_docs) + len(ranked_web),
                (time.perf_counter() - start) * 1000,
            )
        else:
            ranked_docs, ranked_web = documents, web

        with _timed("ordering"):
            ordered_docs = self.orderer.order_documents(ranked_docs)[: plan.limits.document_chunks]
            ordered_web = self.orderer.order_web(ranked_web, now=request.filter_context.now)[: plan.limits.web_results]

        tokens_used = 0
        if self.settings.trim_to_budget:
            with _timed("budget"):
                model = plan.budget.model
                ordered_docs, doc_tokens = fit_to_budget(ordered_docs, plan.budget.remaining, model)
                ordered_web, web_tokens = fit_to_budget(ordered_web, plan.budget.remaining - doc_tokens, model)
                tokens_used = doc_tokens + web_tokens

        track_result_size("documents", len(ordered_docs))
        track_result_size("web", len(ordered_web))

        result = ShapedResults(
            documents=ordered_docs,
            web_results=ordered_web,
            plan=plan,
            filtering=outcome.stats,
            tokens_used=tokens_used,
            diagnostics={
                "limits": plan.limits.reasoning,
                "complexity": plan.complexity.tier.value,
                "weights": {"semantic": plan.weights.semantic, "keyword": plan.weights.keyword},
                "weight_variant": plan.weight_variant,
                "filtering": outcome.stats.to_dict(),
                "authority_dropped": authority_dropped,
                "budget_warnings": list(plan.budget.warnings),
                "tokens_used": tokens_used,
                "tokens_available": plan.budget.remaining,
            },
        )
        if result.empty:
            track_empty("pipeline")
            logger.warning(f"Request {request.request_id or '-'} produced no results after shaping")
        return result

    def run(
        self,
        request: ShapingRequest,
        documents: Sequence[Candidate],
        web_results: Sequence[Candidate],
    ) -> ShapedResults:
        """plan() and shape() in one call, for callers that retrieved with their own limits."""
        return self.shape(self.plan(request), documents, web_results)
