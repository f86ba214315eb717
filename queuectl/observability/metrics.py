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
    start_http_server,
)

from queuectl.constants import (
    METRIC_JOB_DURATION,
    METRIC_JOBS_ENQUEUED,
    METRIC_JOBS_FINISHED,
    METRIC_LOCK_CONFLICTS,
    METRIC_LOCKS_ACQUIRED,
    METRIC_QUEUE_DEPTH,
    METRIC_STALE_LOCKS_RELEASED,
    METRIC_WORKERS_ACTIVE,
    JobState,
)

# Global metrics instance
_metrics: "MetricsCollector | None" = None


class MetricsCollector:
    """
    Prometheus metrics collector for the queue.

    Collects metrics for:
    - Jobs per state and registered workers
    - Job submissions and execution outcomes
    - Job execution duration
    - Lock operations
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
            "Number of jobs per state",
            ["state"],
            registry=self._registry,
        )

        self.workers_active = Gauge(
            METRIC_WORKERS_ACTIVE,
            "Number of registered worker processes",
            registry=self._registry,
        )

        self.jobs_enqueued = Counter(
            METRIC_JOBS_ENQUEUED,
            "Total number of jobs enqueued",
            registry=self._registry,
        )

        # Outcome of each execution: completed, failed or dead
        self.jobs_finished = Counter(
            METRIC_JOBS_FINISHED,
            "Total number of job executions by resulting state",
            ["state"],
            registry=self._registry,
        )

        self.job_duration = Histogram(
            METRIC_JOB_DURATION,
            "Job execution duration in seconds",
            ["state"],
            buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 300.0),
            registry=self._registry,
        )

        self.locks_acquired = Counter(
            METRIC_LOCKS_ACQUIRED,
            "Total number of job locks acquired",
            ["worker_id"],
            registry=self._registry,
        )

        self.lock_conflicts = Counter(
            METRIC_LOCK_CONFLICTS,
            "Total number of lock attempts lost to another worker",
            ["worker_id"],
            registry=self._registry,
        )

        self.stale_locks_released = Counter(
            METRIC_STALE_LOCKS_RELEASED,
            "Total number of locks released because their worker died",
            registry=self._registry,
        )

    def record_job_enqueued(self) -> None:
        """Record a job submission."""
        self.jobs_enqueued.inc()

    def record_job_finished(self, state: str, duration_seconds: float) -> None:
        """Record the outcome of one execution."""
        self.jobs_finished.labels(state=state).inc()
        self.job_duration.labels(state=state).observe(duration_seconds)

    def record_lock_acquired(self, worker_id: str) -> None:
        self.locks_acquired.labels(worker_id=worker_id).inc()

    def record_lock_conflict(self, worker_id: str) -> None:
        self.lock_conflicts.labels(worker_id=worker_id).inc()

    def record_stale_locks_released(self, count: int) -> None:
        self.stale_locks_released.inc(count)

    def update_queue_depth(self, stats: dict[str, int]) -> None:
        """Set the per-state gauges from a stats mapping."""
        for state in JobState:
            self.queue_depth.labels(state=state.value).set(stats.get(state.value, 0))

    def update_workers(self, count: int) -> None:
        self.workers_active.set(count)

    def get_metrics(self) -> bytes:
        """Get all metrics in Prometheus format."""
        return generate_latest(self._registry)

    def get_content_type(self) -> str:
        """Get the content type for metrics response."""
        return CONTENT_TYPE_LATEST

    def serve(self, port: int, host: str = "127.0.0.1") -> None:
        """Expose this collector on a background HTTP endpoint."""
        start_http_server(port, addr=host, registry=self._registry)


def setup_metrics(registry: CollectorRegistry | None = None) -> MetricsCollector:
    """
    Set up and return the metrics collector.

    Without a registry the existing collector is reused. Passing a registry
    replaces it with a fresh collector bound to that registry.

    Args:
        registry: Optional custom registry for a fresh collector.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    global _metrics
    if _metrics is None or registry is not None:
        _metrics = MetricsCollector(registry)
    return _metrics


def get_metrics() -> MetricsCollector:
    """
    Get the metrics collector instance.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    if _metrics is None:
        return setup_metrics()
    return _metrics
