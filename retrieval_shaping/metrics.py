"""
Prometheus metrics for the retrieval shaping pipeline.

Provides counters and histograms for tracking:
- Experiment bucket assignments
- Candidates dropped or penalized per stage
- Empty result sets and over-budget rejections
- Stage latency and output sizes
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST

# ============================================================================
# Experiment Metrics
# ============================================================================

bucket_assignments = Counter(
    'shaping_bucket_assignments_total',
    'Subjects assigned to an experiment variant',
    ['experiment', 'variant']
)

# ============================================================================
# Filtering Metrics
# ============================================================================

candidates_dropped = Counter(
    'shaping_candidates_dropped_total',
    'Candidates removed from a result set',
    ['stage', 'reason']
)

candidates_penalized = Counter(
    'shaping_candidates_penalized_total',
    'Candidates kept with a ranking penalty applied',
    ['dimension']
)

malformed_signals = Counter(
    'shaping_malformed_signals_total',
    'Per-dimension scores ignored because they were not a number in [0,1]',
    ['dimension']
)

empty_result_sets = Counter(
    'shaping_empty_result_sets_total',
    'Stages that produced zero surviving candidates',
    ['stage']
)

# ============================================================================
# Budget Metrics
# ============================================================================

over_budget_rejections = Counter(
    'shaping_over_budget_total',
    'Requests whose fixed prompt components exceeded the context window',
    ['model']
)

# ============================================================================
# Latency & Size Metrics
# ============================================================================

stage_latency = Histogram(
    'shaping_stage_duration_seconds',
    'Pipeline stage latency in seconds',
    ['stage'],
    buckets=(0.0001, 0.0005, 0.001, 0.0025, 0.005, 0.01, 0.025, 0.05, 0.1)
)

result_sizes = Histogram(
    'shaping_result_size',
    'Number of candidates in a shaped collection',
    ['collection'],
    buckets=(0, 1, 2, 3, 5, 10, 15, 20, 30, 50)
)

# ============================================================================
# Helper Functions
# ============================================================================


def track_bucket_assignment(experiment: str, variant: str) -> None:
    bucket_assignments.labels(experiment=experiment, variant=variant).inc()


def track_dropped(stage: str, reason: str, count: int = 1) -> None:
    """
    Track candidates removed by a stage.

    Args:
        stage: Pipeline stage (filtering, diversity, authority, rerank, budget)
        reason: Why they were removed (dimension name, cap, min_score, ...)
        count: How many were removed
    """
    if count > 0:
        candidates_dropped.labels(stage=stage, reason=reason).inc(count)


def track_penalized(dimension: str, count: int = 1) -> None:
    if count > 0:
        candidates_penalized.labels(dimension=dimension).inc(count)


def track_malformed(dimension: str) -> None:
    malformed_signals.labels(dimension=dimension).inc()


def track_empty(stage: str) -> None:
    empty_result_sets.labels(stage=stage).inc()


def track_over_budget(model: str) -> None:
    over_budget_rejections.labels(model=model).inc()


def track_stage(stage: str, duration: float) -> None:
    """
    Track stage latency.

    Args:
        stage: Pipeline stage name
        duration: Elapsed time in seconds
    """
    stage_latency.labels(stage=stage).observe(duration)


def track_result_size(collection: str, size: int) -> None:
    result_sizes.labels(collection=collection).observe(size)


def get_metrics() -> bytes:
    """
    Get current metrics in Prometheus format.

    Returns:
        Prometheus-formatted metrics as bytes
    """
    return generate_latest()


def get_content_type() -> str:
    """Prometheus exposition content type, for whoever serves get_metrics()."""
    return CONTENT_TYPE_LATEST
