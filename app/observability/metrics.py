"""
Metrics Collection with Prometheus.

Exposes webhook, store and HTTP metrics for monitoring.
"""

from enum import StrEnum

from prometheus_client import Counter, Gauge, Histogram, Info

from app.config import settings


class MetricLabels(StrEnum):
    """Standard metric label names."""

    ENDPOINT = "endpoint"
    METHOD = "method"
    STATUS_CODE = "status_code"
    OPERATION = "operation"
    PROVIDER = "provider"
    OUTCOME = "outcome"
    ERROR_TYPE = "error_type"


class EntitlementMetrics:
    """
    Centralized metrics for the entitlement sync service.

    Covers:
    - HTTP requests (rate, duration, errors)
    - Webhook events per provider and terminal outcome
    - Store writes (rate, duration, success/failure)
    - Provider re-fetches
    """

    def __init__(self) -> None:
        """Initialize all Prometheus metrics."""

        # ====================================================================
        # Service Info
        # ====================================================================
        self.service_info = Info(
            "entitlement_service",
            "Service information",
        )
        self.service_info.info(
            {
                "version": settings.api_version,
                "service_name": settings.service_name,
            }
        )

        # ====================================================================
        # HTTP Metrics
        # ====================================================================
        self.http_requests_total = Counter(
            "entitlement_http_requests_total",
            "Total HTTP requests",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD, MetricLabels.STATUS_CODE],
        )

        self.http_request_duration_seconds = Histogram(
            "entitlement_http_request_duration_seconds",
            "HTTP request duration in seconds",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )

        self.http_requests_in_progress = Gauge(
            "entitlement_http_requests_in_progress",
            "Number of HTTP requests currently being processed",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
        )

        # ====================================================================
        # Webhook Metrics
        # ====================================================================
        self.webhook_events_total = Counter(
            "entitlement_webhook_events_total",
            "Webhook deliveries by provider and terminal outcome",
            [MetricLabels.PROVIDER, MetricLabels.OUTCOME],
        )

        self.upstream_fetches_total = Counter(
            "entitlement_upstream_fetches_total",
            "Provider API re-fetches",
            [MetricLabels.PROVIDER, "success"],
        )

        # ====================================================================
        # Store Metrics
        # ====================================================================
        self.store_writes_total = Counter(
            "entitlement_store_writes_total",
            "Entitlement store writes",
            [MetricLabels.OPERATION, "success"],
        )

        self.store_write_duration_seconds = Histogram(
            "entitlement_store_write_duration_seconds",
            "Entitlement store write duration in seconds",
            [MetricLabels.OPERATION],
            buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0),
        )

        # ====================================================================
        # Error Metrics
        # ====================================================================
        self.errors_total = Counter(
            "entitlement_errors_total",
            "Total errors by type",
            [MetricLabels.ERROR_TYPE, MetricLabels.OPERATION],
        )

    # ========================================================================
    # Helper Methods
    # ========================================================================

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

    def record_webhook(self, provider: str, outcome: str) -> None:
        """Record a webhook delivery's terminal outcome."""
        self.webhook_events_total.labels(provider=provider, outcome=outcome).inc()

    def record_upstream_fetch(self, provider: str, success: bool) -> None:
        """Record a provider API re-fetch."""
        self.upstream_fetches_total.labels(provider=provider, success=str(success)).inc()

    def record_store_write(self, operation: str, success: bool, duration: float) -> None:
        """Record store write metrics."""
        self.store_writes_total.labels(operation=operation, success=str(success)).inc()
        self.store_write_duration_seconds.labels(operation=operation).observe(duration)

    def record_error(self, error_type: str, operation: str) -> None:
        """Record error occurrence."""
        self.errors_total.labels(error_type=error_type, operation=operation).inc()


# Global metrics instance
metrics = EntitlementMetrics()
