"""
Per-dimension signal scoring for retrieved candidates.

Scores content quality, time-range fit, topic match and freshness. Every
score lies in [0,1]; the filtering and ordering stages consume them when a
candidate does not arrive with its own pre-computed signal.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional, Union

from loguru import logger

from retrieval_shaping import tuning_config as tc

DateLike = Union[datetime, str, None]


def _clamp(value: float) -> float:
    return min(1.0, max(0.0, value))


def parse_date(value: DateLike) -> Optional[datetime]:
    """Parse an ISO-8601 string or datetime into an aware UTC datetime.

    Raises ValueError for strings that are not dates.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _now(now: Optional[datetime]) -> datetime:
    return parse_date(now) if now is not None else datetime.now(timezone.utc)


def coerce_signal(value: Any) -> Optional[float]:
    """Return value as a float in [0,1], or None when it is not a usable score."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    score = float(value)
    if math.isnan(score) or not 0.0 <= score <= 1.0:
        return None
    return score


# ============================================================================
# Content Quality
# ============================================================================


@dataclass(frozen=True)
class QualityBreakdown:
    overall: float
    content_length: float
    readability: float
    structure: float
    completeness: float
    word_count: int
    sentence_count: int
    paragraph_count: int


class QualityScorer:
    """Score how usable a passage is as context: length, readability, structure, completeness."""

    WEIGHT_LENGTH = tc.QUALITY_WEIGHT_LENGTH
    WEIGHT_READABILITY = tc.QUALITY_WEIGHT_READABILITY
    WEIGHT_STRUCTURE = tc.QUALITY_WEIGHT_STRUCTURE
    WEIGHT_COMPLETENESS = tc.QUALITY_WEIGHT_COMPLETENESS

    SENTENCE_END = re.compile(r"[.!?]+\s")
    PARAGRAPH_BREAK = re.compile(r"\n\s*\n")
    FORMATTING_MARKERS = ("\n-", "\n*", "\n1.", "<h", "#")

    def __init__(self, require_title: bool = True, min_paragraphs: int = 1):
        self.require_title = require_title
        self.min_paragraphs = min_paragraphs

    def score(self, text: str, title: str = "") -> QualityBreakdown:
        """
        Score a passage.

        Args:
            text: Passage body
            title: Passage title, empty if none

        Returns:
            QualityBreakdown with the weighted overall score and its factors
        """
        text = text or ""
        words = text.split()
        word_count = len(words)
        # The end of the text closes the last sentence
        sentence_count = len(self.SENTENCE_END.findall(text)) + 1
        paragraphs = [p for p in self.PARAGRAPH_BREAK.split(text) if p.strip()]
        paragraph_count = max(1, len(paragraphs))

        length = self._length_score(len(text))
        readability = self._readability_score(word_count, sentence_count)
        structure = self._structure_score(title, paragraph_count, text)
        completeness = self._completeness_score(len(text), word_count)

        overall = (
            length * self.WEIGHT_LENGTH
            + readability * self.WEIGHT_READABILITY
            + structure * self.WEIGHT_STRUCTURE
            + completeness * self.WEIGHT_COMPLETENESS
        )
        return QualityBreakdown(
            overall=_clamp(overall),
            content_length=length,
            readability=readability,
            structure=structure,
            completeness=completeness,
            word_count=word_count,
            sentence_count=sentence_count,
            paragraph_count=paragraph_count,
        )

    def _length_score(self, length: int) -> float:
        if length < tc.MIN_CONTENT_LENGTH:
            return max(0.0, length / tc.MIN_CONTENT_LENGTH)
        if length <= tc.OPTIMAL_CONTENT_LENGTH:
            return 1.0
        if length <= tc.MAX_CONTENT_LENGTH:
            excess = length - tc.OPTIMAL_CONTENT_LENGTH
            return 1.0 - min(0.3, excess / (tc.MAX_CONTENT_LENGTH - tc.OPTIMAL_CONTENT_LENGTH))
        excess = length - tc.MAX_CONTENT_LENGTH
        return max(0.3, 1.0 - min(0.5, excess / tc.MAX_CONTENT_LENGTH))

    def _readability_score(self, word_count: int, sentence_count: int) -> float:
        if word_count == 0:
            return 0.0
        avg_words = word_count / sentence_count
        sentence_length = 1.0
        if avg_words < tc.MIN_WORDS_PER_SENTENCE:
            sentence_length = max(0.3, avg_words / tc.MIN_WORDS_PER_SENTENCE)
        elif avg_words > tc.MAX_WORDS_PER_SENTENCE:
            excess = avg_words - tc.MAX_WORDS_PER_SENTENCE
            sentence_length = 1.0 - min(0.5, excess / tc.MAX_WORDS_PER_SENTENCE)
        sentence_volume = min(1.0, sentence_count / tc.MIN_SENTENCES)
        return _clamp(sentence_length * 0.6 + sentence_volume * 0.4)

    def _structure_score(self, title: str, paragraph_count: int, text: str) -> float:
        score = 0.0
        has_title = bool(title and title.strip() and title != "Untitled")
        if has_title or not self.require_title:
            score += 0.3

        if paragraph_count >= self.min_paragraphs:
            score += 0.4 * min(1.0, paragraph_count / max(2, self.min_paragraphs))
        else:
            score += 0.4 * (paragraph_count / self.min_paragraphs)

        if any(marker in text for marker in self.FORMATTING_MARKERS):
            score += 0.3
        elif paragraph_count > 1:
            score += 0.15
        return _clamp(score)

    def _completeness_score(self, length: int, word_count: int) -> float:
        if length < tc.MIN_CONTENT_LENGTH:
            length_score = length / tc.MIN_CONTENT_LENGTH
        elif length <= tc.OPTIMAL_CONTENT_LENGTH:
            length_score = 1.0
        elif length <= tc.MAX_CONTENT_LENGTH:
            excess = length - tc.OPTIMAL_CONTENT_LENGTH
            length_score = 1.0 - min(0.3, excess / (tc.MAX_CONTENT_LENGTH - tc.OPTIMAL_CONTENT_LENGTH))
        else:
            excess = length - tc.MAX_CONTENT_LENGTH
            length_score = 1.0 - min(0.5, excess / tc.MAX_CONTENT_LENGTH)

        if word_count < tc.MIN_WORD_COUNT:
            word_score = word_count / tc.MIN_WORD_COUNT
        elif word_count <= tc.OPTIMAL_WORD_COUNT:
            word_score = 1.0
        else:
            excess = word_count - tc.OPTIMAL_WORD_COUNT
            word_score = 1.0 - min(0.2, excess / tc.OPTIMAL_WORD_COUNT)
        return _clamp(length_score * 0.6 + word_score * 0.4)


_quality_scorer: Optional[QualityScorer] = None


def get_quality_scorer() -> QualityScorer:
    """Get or create the shared quality scorer (it holds no per-request state)."""
    global _quality_scorer
    if _quality_scorer is None:
        _quality_scorer = QualityScorer()
    return _quality_scorer


def quality_score(text: str, title: str = "") -> float:
    return get_quality_scorer().score(text, title).overall


# ============================================================================
# Time Range
# ============================================================================


def time_range_score(
    published_at: DateLike,
    cutoff: DateLike,
    strict: bool = False,
    now: Optional[datetime] = None,
) -> float:
    """
    Score how well a publication date fits a requested time range.

    Results on or after the cutoff score 1.0. Older results decay linearly
    over a year to 0.2. Future-dated results score 0. Undated results score
    0.3 under strict time filtering and 0.6 otherwise.
    """
    if cutoff is None:
        return 1.0
    if published_at is None:
        return tc.UNDATED_SCORE_STRICT if strict else tc.UNDATED_SCORE_RELAXED

    try:
        published = parse_date(published_at)
        cutoff_date = parse_date(cutoff)
    except (TypeError, ValueError) as e:
        logger.debug(f"Unparseable date {published_at!r}: {e}")
        return tc.UNPARSEABLE_DATE_SCORE

    if published > _now(now):
        return 0.0
    if published >= cutoff_date:
        return 1.0
    days_before = (cutoff_date - published).total_seconds() / 86400
    return 1.0 - min(tc.TIME_DECAY_MAX_PENALTY, days_before / tc.TIME_DECAY_DAYS)


# ============================================================================
# Topic Match
# ============================================================================


def topic_match_score(topic: Optional[str], title: str, text: str) -> float:
    """Share of topic words found in the title and text; an exact phrase match scores 1.0."""
    if not topic or not topic.strip():
        return 1.0
    haystack = f"{title} {text}".lower()
    phrase = topic.strip().lower()
    if phrase in haystack:
        return 1.0
    words = [w for w in re.split(r"\s+", phrase) if len(w) >= 2]
    if not words:
        return 0.0
    found = sum(1 for w in words if w in haystack)
    return found / len(words)


# ============================================================================
# Freshness
# ============================================================================


def freshness_score(published_at: DateLike, now: Optional[datetime] = None) -> float:
    """Banded recency score used by web ordering; unknown dates score 0.5."""
    if published_at is None:
        return tc.FRESHNESS_UNKNOWN
    try:
        published = parse_date(published_at)
    except (TypeError, ValueError):
        return tc.FRESHNESS_UNKNOWN

    age_days = (_now(now) - published).total_seconds() / 86400
    for max_age, score in tc.FRESHNESS_BANDS:
        if age_days <= max_age:
            return score
    return max(tc.FRESHNESS_FLOOR, 1.0 - (age_days - 365) / 365)
