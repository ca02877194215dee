"""
Deterministic experiment bucketing.

Assigns a subject id to one of 100 buckets with a 32-bit rolling string hash,
then walks weighted variants to pick a name. The hash runs over UTF-16 code
units with two's-complement wraparound so assignments agree with every other
service that buckets the same ids.
"""

from __future__ import annotations

from typing import Any, Iterable, Optional, Sequence, Tuple, Union

from loguru import logger

from retrieval_shaping.metrics import track_bucket_assignment

BUCKET_COUNT = 100

VariantSpec = Union[Tuple[str, float], Any]


def string_hash(value: str) -> int:
    """32-bit signed rolling hash: h = h * 31 + unit for each UTF-16 code unit."""
    h = 0
    encoded = value.encode("utf-16-le")
    for i in range(0, len(encoded), 2):
        unit = encoded[i] | (encoded[i + 1] << 8)
        h = ((h << 5) - h + unit) & 0xFFFFFFFF
    if h & 0x80000000:
        h -= 0x100000000
    return h


def bucket_for(subject_id: str) -> int:
    """Bucket in [0, 100) for a subject id."""
    return abs(string_hash(subject_id)) % BUCKET_COUNT


def _name_and_weight(variant: VariantSpec) -> Tuple[str, float]:
    if isinstance(variant, tuple):
        name, weight = variant
        return name, float(weight)
    return variant.name, float(variant.traffic_percentage)


def select_variant(
    subject_id: Optional[str],
    variants: Sequence[VariantSpec],
    default_name: str,
    enabled: bool = True,
    experiment: str = "default",
) -> str:
    """
    Pick the variant a subject belongs to.

    Args:
        subject_id: Stable subject identity; None or empty means anonymous
        variants: (name, traffic_percentage) pairs, or objects exposing
            ``name`` and ``traffic_percentage``, in declaration order
        default_name: Returned when the experiment is off, the subject is
            anonymous, or the percentages do not cover the subject's bucket
        enabled: Whether the experiment is running
        experiment: Label used for metrics only

    Returns:
        The selected variant name
    """
    if not enabled or not variants or not subject_id:
        return default_name

    bucket = bucket_for(subject_id)
    cumulative = 0.0
    selected = default_name
    for variant in variants:
        name, weight = _name_and_weight(variant)
        cumulative += weight
        if bucket < cumulative:
            selected = name
            break

    logger.debug(f"Bucket {bucket} -> variant '{selected}' (experiment={experiment})")
    track_bucket_assignment(experiment, selected)
    return selected


def bucket_distribution(subject_ids: Iterable[str], variants: Sequence[VariantSpec], default_name: str) -> dict:
    """Count how many subjects land in each variant; used to sanity check traffic splits."""
    counts: dict = {}
    for subject_id in subject_ids:
        name = select_variant(subject_id, variants, default_name, experiment="distribution")
        counts[name] = counts.get(name, 0) + 1
    return counts
