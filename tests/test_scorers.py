"""
Test per-dimension signal scorers.
"""

from datetime import datetime, timedelta, timezone

import pytest

from retrieval_shaping.scorers import (
    QualityScorer,
    coerce_signal,
    freshness_score,
    parse_date,
    quality_score,
    time_range_score,
    topic_match_score,
)

NOW = datetime(2025, 6, 1, tzinfo=timezone.utc)
CUTOFF = datetime(2025, 1, 1, tzinfo=timezone.utc)


class TestSignals:
    """Test signal coercion and date parsing."""

    @pytest.mark.parametrize("value,expected", [
        (0.5, 0.5),
        (1, 1.0),
        (0, 0.0),
        (1.5, None),
        (-0.1, None),
        (float("nan"), None),
        ("0.5", None),
        (True, None),
        (None, None),
    ])
    def test_coerce_signal(self, value, expected):
        assert coerce_signal(value) == expected

    def test_parse_date_naive_is_utc(self):
        assert parse_date("2025-01-01T00:00:00") == CUTOFF

    def test_parse_date_z_suffix(self):
        assert parse_date("2025-01-01T00:00:00Z") == CUTOFF

    def test_parse_date_invalid(self):
        with pytest.raises(ValueError):
            parse_date("last tuesday")


class TestTimeRange:
    """Test time-range scoring."""

    def test_no_cutoff(self):
        assert time_range_score(None, None) == 1.0

    def test_undated(self):
        assert time_range_score(None, CUTOFF) == 0.6
        assert time_range_score(None, CUTOFF, strict=True) == 0.3

    def test_unparseable(self):
        assert time_range_score("yesterday-ish", CUTOFF, now=NOW) == 0.5

    def test_within_range(self):
        assert time_range_score(CUTOFF + timedelta(days=10), CUTOFF, now=NOW) == 1.0

    def test_future_dated(self):
        assert time_range_score(NOW + timedelta(days=1), CUTOFF, now=NOW) == 0.0

    def test_decays_linearly(self):
        published = CUTOFF - timedelta(days=73)
        assert time_range_score(published, CUTOFF, now=NOW) == pytest.approx(0.8)

    def test_decay_floor(self):
        published = CUTOFF - timedelta(days=2000)
        assert time_range_score(published, CUTOFF, now=NOW) == pytest.approx(0.2)


class TestTopicMatch:
    """Test topic matching."""

    def test_no_topic(self):
        assert topic_match_score(None, "anything", "") == 1.0

    def test_phrase_match(self):
        assert topic_match_score("DNS server", "Running a DNS Server", "") == 1.0

    def test_partial_word_match(self):
        assert topic_match_score("dns caching", "DNS explained", "resolver basics") == 0.5

    def test_no_match(self):
        assert topic_match_score("kubernetes", "Cooking pasta", "boil water") == 0.0


class TestFreshness:
    """Test freshness bands."""

    @pytest.mark.parametrize("age_days,expected", [
        (3, 1.0),
        (20, 0.9),
        (60, 0.8),
        (200, 0.7),
    ])
    def test_bands(self, age_days, expected):
        assert freshness_score(NOW - timedelta(days=age_days), now=NOW) == expected

    def test_old_content_decays_to_floor(self):
        assert freshness_score(NOW - timedelta(days=500), now=NOW) == pytest.approx(1.0 - 135 / 365)
        assert freshness_score(NOW - timedelta(days=5000), now=NOW) == 0.3

    def test_unknown(self):
        assert freshness_score(None) == 0.5


class TestQuality:
    """Test content quality scoring."""

    WELL_FORMED = (
        "Domain Name System servers translate names into addresses. "
        "Each resolver caches answers for the duration of the record's TTL. "
        "Authoritative servers hold the zone data for a domain.\n\n"
        "When a cache misses, the resolver walks the hierarchy from the root. "
        "This keeps lookups fast while spreading load across many servers.\n\n"
        "- Recursive resolvers answer clients\n- Authoritative servers answer resolvers\n"
    )

    def test_scores_in_unit_range(self):
        for text in ["", "x", self.WELL_FORMED, "word " * 3000]:
            assert 0.0 <= quality_score(text, "Title") <= 1.0

    def test_structured_passage_beats_fragment(self):
        assert quality_score(self.WELL_FORMED, "How DNS works") > quality_score("dns", "")

    def test_breakdown_counts(self):
        breakdown = QualityScorer().score("One sentence here. Another one follows.\n\nSecond paragraph.", "T")
        assert breakdown.paragraph_count == 2
        # Two terminators followed by whitespace, plus the closing sentence
        assert breakdown.sentence_count == 3
        assert breakdown.word_count == 8

    def test_missing_title_costs_structure(self):
        scorer = QualityScorer()
        assert scorer.score(self.WELL_FORMED, "").structure < scorer.score(self.WELL_FORMED, "DNS").structure

    def test_title_optional(self):
        scorer = QualityScorer(require_title=False)
        assert scorer.score(self.WELL_FORMED, "").structure == scorer.score(self.WELL_FORMED, "DNS").structure
