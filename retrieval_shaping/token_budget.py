"""
Token budget accounting.

Works out how much of a model's context window is left for retrieved content
once the system prompt, conversation history, user message and the response
reserve are paid for. Token counts come from tiktoken; when the tokenizer is
unavailable a characters-per-token estimate is used instead.
"""

from __future__ import annotations

import math
from functools import lru_cache
from typing import List, Optional, Sequence, Tuple

import tiktoken
from loguru import logger

from retrieval_shaping import tuning_config as tc
from retrieval_shaping.errors import ConfigurationError, OverBudgetError
from retrieval_shaping.metrics import track_dropped, track_over_budget
from retrieval_shaping.models import Candidate, PromptComponents, TokenAllocations, TokenBudget

LEGACY_MODEL_PREFIXES = ("text-davinci", "davinci", "curie", "babbage", "ada")


def get_model_limit(model: str) -> int:
    """Context window for a model id, inferred from its family when not listed."""
    if model in tc.MODEL_TOKEN_LIMITS:
        return tc.MODEL_TOKEN_LIMITS[model]
    limit = tc.get_model_family_limit(model)
    if limit == tc.DEFAULT_MODEL_TOKEN_LIMIT and "gpt-3.5-turbo" not in model:
        logger.warning(f"Unknown model '{model}', assuming a {limit}-token context window")
    return limit


def _encoding_name(model: str) -> str:
    if model.startswith(LEGACY_MODEL_PREFIXES):
        return "p50k_base"
    return "cl100k_base"


@lru_cache(maxsize=4)
def _get_encoding(name: str) -> "tiktoken.Encoding":
    return tiktoken.get_encoding(name)


def estimate_tokens(text: str) -> int:
    """Character-based estimate: about four characters per token."""
    return math.ceil(len(text) / tc.CHARS_PER_TOKEN_FALLBACK)


def count_tokens(text: str, model: str = "gpt-3.5-turbo") -> int:
    """
    Count tokens in text for a model.

    Args:
        text: Text to count
        model: Model id; selects the tokenizer

    Returns:
        Token count, or a character-based estimate if the tokenizer fails
    """
    if not text:
        return 0
    try:
        return len(_get_encoding(_encoding_name(model)).encode(text))
    except Exception as e:
        logger.warning(f"Token encoding failed for model '{model}': {e}. Using character estimate.")
        return estimate_tokens(text)


def candidate_tokens(candidate: Candidate, model: str) -> int:
    if candidate.token_count is not None:
        return candidate.token_count
    return count_tokens(f"{candidate.title}\n{candidate.text}".strip(), model)


class TokenBudgetCalculator:
    """Compute per-request token budgets against a model's context window."""

    def __init__(self, response_reserve_ratio: float = tc.RESPONSE_RESERVE_RATIO):
        if not 0.0 <= response_reserve_ratio < 1.0:
            raise ConfigurationError(
                f"response_reserve_ratio must be in [0,1), got {response_reserve_ratio}"
            )
        self.response_reserve_ratio = response_reserve_ratio

    def compute(
        self,
        model: str,
        components: PromptComponents,
        context_window: Optional[int] = None,
    ) -> TokenBudget:
        """
        Build the budget for one request.

        Args:
            model: Model id
            components: Token estimates for the fixed prompt parts
            context_window: Explicit window size, overriding the model table

        Returns:
            TokenBudget whose remaining amount is available for retrieved content

        Raises:
            OverBudgetError: fixed components plus the response reserve exceed the window
        """
        if context_window is not None and context_window <= 0:
            raise ConfigurationError(f"context_window must be > 0, got {context_window}")
        total = context_window if context_window is not None else get_model_limit(model)

        reserved = components.reserved_for_response
        if reserved is None:
            reserved = math.floor(total * self.response_reserve_ratio)

        requested = components.fixed_tokens + reserved
        if requested > total:
            track_over_budget(model)
            raise OverBudgetError(
                f"Prompt needs {requested} tokens ({components.fixed_tokens} fixed + "
                f"{reserved} reserved) but {model} has {total}",
                total_tokens=total,
                requested_tokens=requested,
                context={"model": model},
            )

        warnings = []
        if components.system > total * tc.SYSTEM_PROMPT_SOFT_SHARE:
            warnings.append(f"System prompt uses {components.system} tokens (over 5% of window)")
        if components.user_message > total * tc.USER_MESSAGE_SOFT_SHARE:
            warnings.append(f"User message uses {components.user_message} tokens (over 5% of window)")

        budget = TokenBudget(
            model=model,
            total=total,
            allocations=TokenAllocations(
                system=components.system,
                history=components.history,
                user_question=components.user_message,
                reserved_for_response=reserved,
            ),
            warnings=tuple(warnings),
        )
        for warning in warnings:
            logger.warning(warning)
        logger.debug(budget_summary(budget))
        return budget


def fit_to_budget(
    candidates: Sequence[Candidate],
    budget_tokens: int,
    model: str = "gpt-3.5-turbo",
) -> Tuple[List[Candidate], int]:
    """
    Keep the longest prefix of candidates whose token cost fits the budget.

    Candidates are taken in the order given, so order them first.

    Returns:
        (kept candidates, tokens used)
    """
    kept: List[Candidate] = []
    used = 0
    for candidate in candidates:
        cost = candidate_tokens(candidate, model)
        if used + cost > budget_tokens:
            break
        kept.append(candidate)
        used += cost

    dropped = len(candidates) - len(kept)
    if dropped:
        logger.info(f"Token budget trim: kept {len(kept)}/{len(candidates)} candidates ({used}/{budget_tokens} tokens)")
        track_dropped("budget", "token_budget", dropped)
    return kept, used


def budget_summary(budget: TokenBudget) -> str:
    """One-line summary of a budget for logs."""
    a = budget.allocations
    return (
        f"Token budget for {budget.model}: {budget.total} total, "
        f"system {a.system}, history {a.history}, user {a.user_question}, "
        f"reserved {a.reserved_for_response}, remaining {budget.remaining} "
        f"({budget.utilization:.1%} used)"
    )
