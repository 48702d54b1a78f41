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
    METRIC_API_LATENCY,
    METRIC_API_REQUESTS,
    METRIC_CLAIM_CONFLICTS,
    METRIC_JOB_DURATION,
    METRIC_JOBS_CLAIMED,
    METRIC_JOBS_BY_STATUS,
    METRIC_JOBS_CREATED,
    METRIC_JOBS_REAPED,
    METRIC_SCHEDULE_FAILURES,
    METRIC_STATUS_TRANSITIONS,
    METRIC_STORAGE_ERRORS,
    METRIC_WAKE_SIGNALS,
)

# Global metrics instance
_metrics: "MetricsCollector | None" = None


class MetricsCollector:
    """
    Prometheus metrics collector for the job queue.

    Collects metrics for:
    - Job creation and storage failures
    - Status transitions and claim conflicts
    - Retention deletes and schedule registration failures
    - Consumer wake-ups and job duration
    - HTTP requests
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        """
        Initialize the metrics collector.

        Args:
            registry: Optional custom registry. Uses default if not provided.
        """
        self._registry = registry or REGISTRY

        self.jobs_created = Counter(
            METRIC_JOBS_CREATED,
            "Total number of jobs created",
            registry=self._registry,
        )

        self.storage_errors = Counter(
            METRIC_STORAGE_ERRORS,
            "Total number of failed database operations",
            ["operation"],
            registry=self._registry,
        )

        self.status_transitions = Counter(
            METRIC_STATUS_TRANSITIONS,
            "Total number of committed status transitions",
            ["from_status", "to_status"],
            registry=self._registry,
        )

        self.claim_conflicts = Counter(
            METRIC_CLAIM_CONFLICTS,
            "Total number of status updates that lost a race",
            ["to_status"],
            registry=self._registry,
        )

        self.jobs_claimed = Counter(
            METRIC_JOBS_CLAIMED,
            "Total number of jobs claimed by consumers",
            registry=self._registry,
        )

        self.jobs_reaped = Counter(
            METRIC_JOBS_REAPED,
            "Total number of succeeded jobs deleted by retention",
            registry=self._registry,
        )

        self.schedule_failures = Counter(
            METRIC_SCHEDULE_FAILURES,
            "Total number of failed retention schedule registrations",
            registry=self._registry,
        )

        self.wake_signals = Counter(
            METRIC_WAKE_SIGNALS,
            "Total number of consumer wake-ups",
            ["reason"],
            registry=self._registry,
        )

        self.jobs_by_status = Gauge(
            METRIC_JOBS_BY_STATUS,
            "Number of jobs currently in each status",
            ["status"],
            registry=self._registry,
        )

        self.job_duration = Histogram(
            METRIC_JOB_DURATION,
            "Job execution duration in seconds",
            ["status"],
            buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0),
            registry=self._registry,
        )

        self.api_requests = Counter(
            METRIC_API_REQUESTS,
            "Total number of HTTP requests",
            ["method", "route", "status"],
            registry=self._registry,
        )

        self.api_latency = Histogram(
            METRIC_API_LATENCY,
            "Duration of HTTP requests in seconds",
            ["method", "route", "status"],
            buckets=(0.05, 0.1, 0.3, 0.5, 1.0, 2.0, 5.0),
            registry=self._registry,
        )

    def record_job_created(self) -> None:
        """Record a committed job creation."""
        self.jobs_created.inc()

    def record_storage_error(self, operation: str) -> None:
        """Record a failed database operation."""
        self.storage_errors.labels(operation=operation).inc()

    def record_transition(self, from_status: str, to_status: str, count: int = 1) -> None:
        """Record committed status transitions."""
        self.status_transitions.labels(from_status=from_status, to_status=to_status).inc(count)

    def record_claimed(self) -> None:
        """Record a job claimed for execution."""
        self.jobs_claimed.inc()

    def record_conflict(self, to_status: str) -> None:
        """Record a status update that found the row already moved."""
        self.claim_conflicts.labels(to_status=to_status).inc()

    def record_reaped(self, count: int) -> None:
        """Record deleted jobs."""
        if count > 0:
            self.jobs_reaped.inc(count)

    def record_schedule_failure(self) -> None:
        """Record a failed schedule registration."""
        self.schedule_failures.inc()

    def record_wake(self, reason: str) -> None:
        """Record a consumer wake-up ("notify" or "timeout")."""
        self.wake_signals.labels(reason=reason).inc()

    def record_job_finished(self, status: str, duration_seconds: float) -> None:
        """Record how long a job ran before reaching ``status``."""
        self.job_duration.labels(status=status).observe(duration_seconds)

    def update_status_counts(self, counts: dict[str, int]) -> None:
        """Set the per-status gauge from a status -> count mapping."""
        for status, count in counts.items():
            self.jobs_by_status.labels(status=status).set(count)

    def record_api_request(
        self,
        method: str,
        route: str,
        status: int,
        duration_seconds: float,
    ) -> None:
        """Record an API request."""
        labels = {"method": method, "route": route, "status": str(status)}
        self.api_requests.labels(**labels).inc()
        self.api_latency.labels(**labels).observe(duration_seconds)

    def get_metrics(self) -> bytes:
        """Get all metrics in Prometheus format."""
        return generate_latest(self._registry)

    def get_content_type(self) -> str:
        """Get the content type for metrics response."""
        return CONTENT_TYPE_LATEST


def setup_metrics() -> MetricsCollector:
    """
    Set up and return the process-wide metrics collector.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics


def get_metrics() -> MetricsCollector:
    """
    Get the process-wide metrics collector, creating it on first use.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    if _metrics is None:
        return setup_metrics()
    return _metrics
