"""
Metrics Collection with Prometheus.

Exposes reconciliation and receipt-validation metrics for monitoring.
"""

from enum import Enum

from prometheus_client import Counter, Gauge, Histogram, Info

from app.config import settings


class MetricLabels(str, Enum):
    """Standard metric label names."""

    ENDPOINT = "endpoint"
    METHOD = "method"
    STATUS_CODE = "status_code"
    JOB = "job"
    OUTCOME = "outcome"
    PLATFORM = "platform"
    STATUS = "status"
    ERROR_TYPE = "error_type"


class ReconciliationMetrics:
    """
    Centralized metrics for the reconciliation worker.

    Covers:
    - Sweeps (runs, duration, per-item outcomes)
    - Receipt validation (results per platform, latency)
    - Operator HTTP requests
    """

    def __init__(self) -> None:
        """Initialize all Prometheus metrics."""

        # ====================================================================
        # Service Info
        # ====================================================================
        self.service_info = Info(
            "reconciler_service",
            "Service information",
        )
        self.service_info.info(
            {
                "version": settings.api_version,
                "service_name": settings.service_name,
            }
        )

        # ====================================================================
        # Sweep Metrics
        # ====================================================================
        self.sweeps_total = Counter(
            "reconciler_sweeps_total",
            "Total reconciliation sweeps run",
            [MetricLabels.JOB, "succeeded"],
        )

        self.sweep_duration_seconds = Histogram(
            "reconciler_sweep_duration_seconds",
            "Reconciliation sweep duration in seconds",
            [MetricLabels.JOB],
            buckets=(1, 5, 15, 30, 60, 300, 900, 1800, 3600, 7200),
        )

        self.sweep_items_total = Counter(
            "reconciler_sweep_items_total",
            "Items processed by reconciliation sweeps",
            [MetricLabels.JOB, MetricLabels.OUTCOME],
        )

        self.last_sweep_timestamp = Gauge(
            "reconciler_last_sweep_timestamp_seconds",
            "Unix time the last sweep finished",
            [MetricLabels.JOB],
        )

        # ====================================================================
        # Receipt Validation Metrics
        # ====================================================================
        self.receipt_validations_total = Counter(
            "reconciler_receipt_validations_total",
            "Receipt validation results",
            [MetricLabels.PLATFORM, MetricLabels.STATUS],
        )

        self.receipt_validation_duration_seconds = Histogram(
            "reconciler_receipt_validation_duration_seconds",
            "Receipt validation duration in seconds",
            [MetricLabels.PLATFORM],
            buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
        )

        # ====================================================================
        # HTTP Metrics
        # ====================================================================
        self.http_requests_total = Counter(
            "reconciler_http_requests_total",
            "Total HTTP requests",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD, MetricLabels.STATUS_CODE],
        )

        self.http_request_duration_seconds = Histogram(
            "reconciler_http_request_duration_seconds",
            "HTTP request duration in seconds",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )

        # ====================================================================
        # Error Metrics
        # ====================================================================
        self.errors_total = Counter(
            "reconciler_errors_total",
            "Total errors by type",
            [MetricLabels.ERROR_TYPE, MetricLabels.JOB],
        )

    # ========================================================================
    # Helper Methods
    # ========================================================================

    def record_sweep(self, job: str, succeeded: bool, duration: float, finished_at: float) -> None:
        """Record a finished sweep."""
        self.sweeps_total.labels(job=job, succeeded=str(succeeded)).inc()
        self.sweep_duration_seconds.labels(job=job).observe(duration)
        self.last_sweep_timestamp.labels(job=job).set(finished_at)

    def record_item(self, job: str, outcome: str) -> None:
        """Record one processed purchase or user."""
        self.sweep_items_total.labels(job=job, outcome=outcome).inc()

    def record_validation(self, platform: str, status: str, duration: float) -> None:
        """Record a receipt validation result."""
        self.receipt_validations_total.labels(platform=platform, status=status).inc()
        self.receipt_validation_duration_seconds.labels(platform=platform).observe(duration)

    def record_http_request(
        self, endpoint: str, method: str, status_code: int, duration: float
    ) -> None:
        """Record HTTP request metrics."""
        self.http_requests_total.labels(
            endpoint=endpoint, method=method, status_code=status_code
        ).inc()
        self.http_request_duration_seconds.labels(endpoint=endpoint, method=method).observe(
            duration
        )

    def record_error(self, error_type: str, job: str) -> None:
        """Record error occurrence."""
        self.errors_total.labels(error_type=error_type, job=job).inc()


# Global metrics instance
metrics = ReconciliationMetrics()
