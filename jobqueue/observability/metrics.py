"""
Prometheus metrics collection.
"""

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from jobqueue.constants import (
    METRIC_CLAIM_EMPTY,
    METRIC_JOB_DURATION,
    METRIC_JOBS_DEDUPLICATED,
    METRIC_JOBS_FINALIZED,
    METRIC_JOBS_SUBMITTED,
    METRIC_LEASE_ACQUIRED,
    METRIC_LEASE_EXPIRED,
    METRIC_QUEUE_DEPTH,
)

# Global metrics instance
_metrics: "MetricsCollector | None" = None


class MetricsCollector:
    """
    Prometheus metrics collector for the job queue.

    Collects metrics for:
    - Submissions, including idempotent replays
    - Finalized jobs and their execution duration
    - Lease claims, empty claims and expired-lease reclaims
    - Claimable queue depth
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        """
        Initialize the metrics collector.

        Args:
            registry: Optional custom registry. Uses default if not provided.
        """
        self._registry = registry or REGISTRY

        self.queue_depth = Gauge(
            METRIC_QUEUE_DEPTH,
            "Number of jobs eligible for claim",
            registry=self._registry,
        )

        self.jobs_submitted = Counter(
            METRIC_JOBS_SUBMITTED,
            "Total number of new jobs recorded",
            ["job_type"],
            registry=self._registry,
        )

        self.jobs_deduplicated = Counter(
            METRIC_JOBS_DEDUPLICATED,
            "Total number of submissions resolved to an existing job",
            ["job_type"],
            registry=self._registry,
        )

        self.jobs_finalized = Counter(
            METRIC_JOBS_FINALIZED,
            "Total number of executions recorded, by resulting state",
            ["job_type", "state"],
            registry=self._registry,
        )

        self.job_duration = Histogram(
            METRIC_JOB_DURATION,
            "Job execution duration in seconds",
            ["job_type", "state"],
            buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0),
            registry=self._registry,
        )

        self.lease_expired = Counter(
            METRIC_LEASE_EXPIRED,
            "Total number of jobs reclaimed after their lease expired",
            ["job_type"],
            registry=self._registry,
        )

        self.lease_acquired = Counter(
            METRIC_LEASE_ACQUIRED,
            "Total number of leases acquired",
            ["worker_id"],
            registry=self._registry,
        )

        self.claim_empty = Counter(
            METRIC_CLAIM_EMPTY,
            "Total number of claims that found no eligible job",
            ["worker_id"],
            registry=self._registry,
        )

    def record_job_submitted(self, job_type: str) -> None:
        """Record a new job."""
        self.jobs_submitted.labels(job_type=job_type).inc()

    def record_job_deduplicated(self, job_type: str) -> None:
        """Record a replayed submission."""
        self.jobs_deduplicated.labels(job_type=job_type).inc()

    def record_job_finalized(
        self,
        job_type: str,
        state: str,
        duration_seconds: float,
    ) -> None:
        """Record an execution outcome."""
        self.jobs_finalized.labels(job_type=job_type, state=state).inc()
        self.job_duration.labels(job_type=job_type, state=state).observe(
            duration_seconds
        )

    def record_lease_expired(self, job_type: str) -> None:
        """Record a reclaim of an expired lease."""
        self.lease_expired.labels(job_type=job_type).inc()

    def record_lease_acquired(self, worker_id: str, count: int = 1) -> None:
        """Record lease acquisition."""
        self.lease_acquired.labels(worker_id=worker_id).inc(count)

    def record_claim_empty(self, worker_id: str) -> None:
        """Record a claim that found nothing to do."""
        self.claim_empty.labels(worker_id=worker_id).inc()

    def update_queue_depth(self, depth: int) -> None:
        """Update the claimable queue depth."""
        self.queue_depth.set(depth)

    def get_metrics(self) -> bytes:
        """Get all metrics in Prometheus format."""
        return generate_latest(self._registry)

    def get_content_type(self) -> str:
        """Get the content type for metrics response."""
        return CONTENT_TYPE_LATEST


def setup_metrics() -> MetricsCollector:
    """
    Set up and return the metrics collector.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics


def get_metrics() -> MetricsCollector:
    """
    Get the metrics collector instance, creating it on first use.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    if _metrics is None:
        return setup_metrics()
    return _metrics
