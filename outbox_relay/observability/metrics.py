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

from outbox_relay.constants import (
    METRIC_JOB_DURATION,
    METRIC_JOBS_COMPLETED,
    METRIC_JOBS_DUPLICATE,
    METRIC_JOBS_ENQUEUED,
    METRIC_LOCK_SKIPPED,
    METRIC_OUTBOX_CLAIMED,
    METRIC_OUTBOX_DURATION,
    METRIC_OUTBOX_PROCESSED,
    METRIC_QUEUE_DEPTH,
)

# Global metrics instance
_metrics: "MetricsCollector | None" = None


class MetricsCollector:
    """
    Prometheus metrics collector for the delivery core.

    Collects metrics for:
    - Outbox claims, outcomes and dispatch latency
    - Job submissions, duplicates and outcomes
    - Queue depth
    - Lock contention
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        """
        Initialize the metrics collector.

        Args:
            registry: Optional custom registry. Uses default if not provided.
        """
        self._registry = registry or REGISTRY

        self.outbox_claimed = Counter(
            METRIC_OUTBOX_CLAIMED,
            "Total number of outbox events claimed",
            ["processor_id"],
            registry=self._registry,
        )

        # status: succeeded | retry | failed | skipped
        self.outbox_processed = Counter(
            METRIC_OUTBOX_PROCESSED,
            "Total number of outbox event dispatch outcomes",
            ["event_type", "status"],
            registry=self._registry,
        )

        self.outbox_duration = Histogram(
            METRIC_OUTBOX_DURATION,
            "Outbox event handler duration in seconds",
            ["event_type"],
            buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
            registry=self._registry,
        )

        self.queue_depth = Gauge(
            METRIC_QUEUE_DEPTH,
            "Number of ready and scheduled jobs",
            ["queue"],
            registry=self._registry,
        )

        self.jobs_enqueued = Counter(
            METRIC_JOBS_ENQUEUED,
            "Total number of jobs enqueued",
            ["queue", "job_type"],
            registry=self._registry,
        )

        self.jobs_duplicate = Counter(
            METRIC_JOBS_DUPLICATE,
            "Total number of jobs suppressed by fingerprint",
            ["queue", "job_type"],
            registry=self._registry,
        )

        # status: succeeded | retry | deadletter | duplicate
        self.jobs_completed = Counter(
            METRIC_JOBS_COMPLETED,
            "Total number of job outcomes",
            ["queue", "job_type", "status"],
            registry=self._registry,
        )

        self.job_duration = Histogram(
            METRIC_JOB_DURATION,
            "Job execution duration in seconds",
            ["queue", "job_type"],
            buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0),
            registry=self._registry,
        )

        self.lock_skipped = Counter(
            METRIC_LOCK_SKIPPED,
            "Total number of lock acquisitions skipped because the lock was held",
            ["lock"],
            registry=self._registry,
        )

    def record_events_claimed(self, processor_id: str, count: int) -> None:
        self.outbox_claimed.labels(processor_id=processor_id).inc(count)

    def record_event_processed(
        self,
        event_type: str,
        status: str,
        duration_seconds: float,
    ) -> None:
        self.outbox_processed.labels(event_type=event_type, status=status).inc()
        self.outbox_duration.labels(event_type=event_type).observe(duration_seconds)

    def record_job_enqueued(self, queue: str, job_type: str) -> None:
        self.jobs_enqueued.labels(queue=queue, job_type=job_type).inc()

    def record_job_duplicate(self, queue: str, job_type: str) -> None:
        self.jobs_duplicate.labels(queue=queue, job_type=job_type).inc()

    def record_job_completed(
        self,
        queue: str,
        job_type: str,
        status: str,
        duration_seconds: float | None = None,
    ) -> None:
        """Record a job outcome, and its duration when it actually ran."""
        self.jobs_completed.labels(queue=queue, job_type=job_type, status=status).inc()
        if duration_seconds is not None:
            self.job_duration.labels(queue=queue, job_type=job_type).observe(
                duration_seconds
            )

    def update_queue_depth(self, queue: str, depth: int) -> None:
        self.queue_depth.labels(queue=queue).set(depth)

    def record_lock_skipped(self, lock: str) -> None:
        self.lock_skipped.labels(lock=lock).inc()

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
    """Get the metrics collector instance, creating it on first use."""
    if _metrics is None:
        return setup_metrics()
    return _metrics
