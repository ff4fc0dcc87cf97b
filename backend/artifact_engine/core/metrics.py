"""Prometheus metrics for system observability."""
from prometheus_client import Counter, Gauge, Histogram, generate_latest, REGISTRY


# Operation metrics
operations_total = Counter(
    'artifact_operations_total',
    'Total number of artifact lifecycle operations',
    ['operation', 'kind', 'status']  # operation: create, inject, update, fix
)

operation_duration_seconds = Histogram(
    'artifact_operation_duration_seconds',
    'Artifact operation duration in seconds',
    ['operation', 'kind'],
    buckets=[0.05, 0.1, 0.5, 1, 2, 5, 10, 30, 60, 120]
)

operations_active = Gauge(
    'artifact_operations_active',
    'Number of artifact operations currently streaming'
)

# Version metrics
versions_total = Counter(
    'artifact_versions_total',
    'Total number of artifact versions persisted',
    ['kind', 'update_type']
)

suggestions_total = Counter(
    'artifact_suggestions_total',
    'Total number of document suggestions persisted'
)

version_conflicts_total = Counter(
    'artifact_version_conflicts_total',
    'Unique-constraint conflicts while assigning a version number'
)

# Stream metrics
stream_events_total = Counter(
    'artifact_stream_events_total',
    'Total number of stream events emitted',
    ['event_type']
)

# Validation metrics
validation_failures_total = Counter(
    'artifact_validation_failures_total',
    'Total number of content validation failures',
    ['kind', 'severity']  # severity: warning, fatal
)

# LLM metrics
llm_calls_total = Counter(
    'artifact_llm_calls_total',
    'Total number of model producer calls',
    ['status']  # status: success, error, rate_limited
)

llm_rate_limit_hits = Counter(
    'artifact_llm_rate_limit_hits_total',
    'Total number of LLM rate limit hits'
)

llm_concurrent_calls = Gauge(
    'artifact_llm_concurrent_calls',
    'Current number of concurrent model producer calls'
)


class MetricsCollector:
    """Helper class for collecting and updating metrics."""

    @staticmethod
    def record_operation(operation: str, kind: str, status: str, duration: float) -> None:
        """Record a finished lifecycle operation."""
        operations_total.labels(operation=operation, kind=kind, status=status).inc()
        operation_duration_seconds.labels(operation=operation, kind=kind).observe(duration)

    @staticmethod
    def record_version_created(kind: str, update_type: str) -> None:
        """Record a persisted version."""
        versions_total.labels(kind=kind, update_type=update_type).inc()

    @staticmethod
    def record_version_conflict() -> None:
        """Record a lost race on version assignment."""
        version_conflicts_total.inc()

    @staticmethod
    def record_suggestions(count: int) -> None:
        """Record suggestions persisted by one suggest operation."""
        suggestions_total.inc(count)

    @staticmethod
    def record_stream_event(event_type: str) -> None:
        """Record a stream event emission."""
        stream_events_total.labels(event_type=event_type).inc()

    @staticmethod
    def record_validation_failure(kind: str, severity: str) -> None:
        """Record a validator rejection."""
        validation_failures_total.labels(kind=kind, severity=severity).inc()

    @staticmethod
    def record_llm_call(status: str = "success") -> None:
        """Record a model producer call."""
        llm_calls_total.labels(status=status).inc()

    @staticmethod
    def record_rate_limit_hit() -> None:
        """Record a rate limit hit."""
        llm_rate_limit_hits.inc()

    @staticmethod
    def update_concurrent_llm_calls(count: int) -> None:
        """Update current number of concurrent model calls."""
        llm_concurrent_calls.set(count)

    @staticmethod
    def operation_started() -> None:
        operations_active.inc()

    @staticmethod
    def operation_finished() -> None:
        operations_active.dec()


def get_metrics() -> bytes:
    """
    Get Prometheus metrics in text format.

    Returns:
        Metrics in Prometheus text format
    """
    return generate_latest(REGISTRY)
