"""
Test deterministic experiment bucketing.

Tests the rolling string hash, bucket assignment, variant selection and
traffic split behaviour.
"""

import pytest

from retrieval_shaping.bucketing import bucket_distribution, bucket_for, select_variant, string_hash
from retrieval_shaping.config import default_weights_ab_test

ABC = [("a", 34), ("b", 33), ("c", 33)]


class TestStringHash:
    """Test the 32-bit rolling hash."""

    def test_empty_string(self):
        assert string_hash("") == 0
        assert bucket_for("") == 0

    def test_known_values(self):
        """Matches h = h * 31 + code unit."""
        assert string_hash("a") == 97
        assert string_hash("ab") == 97 * 31 + 98

    def test_wraps_to_signed_32_bit(self):
        h = string_hash("a much longer subject identifier that overflows")
        assert -(2 ** 31) <= h < 2 ** 31

    def test_non_bmp_characters_hash_as_surrogate_pairs(self):
        """Characters outside the BMP contribute two UTF-16 code units."""
        high, low = 0xD83D, 0xDE00
        assert string_hash("\U0001F600") == high * 31 + low


class TestBucketFor:
    """Test bucket assignment."""

    def test_known_buckets(self):
        assert bucket_for("a") == 97
        assert bucket_for("ab") == 5
        assert bucket_for("user-42") == 56

    def test_bucket_in_range(self):
        for i in range(500):
            assert 0 <= bucket_for(f"subject-{i}") < 100


class TestSelectVariant:
    """Test weighted variant selection."""

    def test_selects_by_cumulative_percentage(self):
        """Bucket 56 falls in b's [34, 67) range."""
        assert select_variant("user-42", ABC, "a") == "b"

    def test_first_variant_for_low_bucket(self):
        assert select_variant("ab", ABC, "c") == "a"

    def test_last_variant_for_high_bucket(self):
        assert select_variant("a", ABC, "a") == "c"

    def test_anonymous_subject_gets_default(self):
        assert select_variant(None, ABC, "b") == "b"
        assert select_variant("", ABC, "b") == "b"

    def test_disabled_experiment_gets_default(self):
        assert select_variant("ab", ABC, "c", enabled=False) == "c"

    def test_no_variants_gets_default(self):
        assert select_variant("ab", [], "control") == "control"

    def test_uncovered_bucket_gets_default(self):
        """Percentages summing under 100 leave high buckets on the default."""
        assert select_variant("a", [("a", 50)], "control") == "control"

    def test_accepts_variant_objects(self):
        variants = default_weights_ab_test(enabled=True).variants
        assert select_variant("user-42", variants, "balanced") == "semantic_heavy"

    def test_deterministic(self):
        """The same subject always lands in the same variant."""
        first = [select_variant(f"user-{i}", ABC, "a") for i in range(200)]
        second = [select_variant(f"user-{i}", ABC, "a") for i in range(200)]
        assert first == second


@pytest.mark.slow
class TestTrafficSplit:
    """Test that assignments follow the configured traffic split."""

    def test_split_close_to_percentages(self):
        variants = [("balanced", 50), ("semantic_heavy", 30), ("keyword_heavy", 20)]
        subjects = [f"user-{i}" for i in range(10000)]

        counts = bucket_distribution(subjects, variants, "balanced")

        assert sum(counts.values()) == 10000
        assert counts["balanced"] / 10000 == pytest.approx(0.5, abs=0.05)
        assert counts["semantic_heavy"] / 10000 == pytest.approx(0.3, abs=0.05)
        assert counts["keyword_heavy"] / 10000 == pytest.approx(0.2, abs=0.05)

    def test_repeat_runs_identical(self):
        subjects = [f"session-{i}" for i in range(10000)]
        assert bucket_distribution(subjects, ABC, "a") == bucket_distribution(subjects, ABC, "a")
