"""
Prometheus metrics module for MentorHub.

This module provides Prometheus-compatible metrics fed by the
@measure_operation decorator plus a handful of domain counters for the
scheduling and settlement core. It follows Prometheus naming conventions.
"""

from threading import Lock
from time import monotonic
from typing import Optional, cast

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

# Create a custom registry to avoid conflicts with default metrics
REGISTRY = CollectorRegistry()

service_operation_duration_seconds = Histogram(
    "mentorhub_service_operation_duration_seconds",
    "Service operation duration in seconds",
    ["service", "operation"],
    registry=REGISTRY,
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)

service_operations_total = Counter(
    "mentorhub_service_operations_total",
    "Total number of service operations",
    ["service", "operation", "status"],
    registry=REGISTRY,
)

errors_total = Counter(
    "mentorhub_errors_total",
    "Total number of errors",
    ["service", "operation", "error_type"],
    registry=REGISTRY,
)

# Domain-specific counters
booking_transitions_total = Counter(
    "mentorhub_booking_transitions_total",
    "Booking status transitions by target status",
    ["status"],
    registry=REGISTRY,
)

slot_claim_conflicts_total = Counter(
    "mentorhub_slot_claim_conflicts_total",
    "Slot claims lost to a concurrent claimer",
    registry=REGISTRY,
)

ledger_postings_total = Counter(
    "mentorhub_ledger_postings_total",
    "Balanced ledger postings by flow",
    ["flow"],  # capture | release | refund | payout
    registry=REGISTRY,
)

payout_requests_total = Counter(
    "mentorhub_payout_requests_total",
    "Payout request outcomes",
    ["status"],  # requested | completed | rejected | insufficient
    registry=REGISTRY,
)

collaborator_failures_total = Counter(
    "mentorhub_collaborator_failures_total",
    "Failures of non-critical collaborators that were logged and swallowed",
    ["collaborator"],  # notifier | scheduler
    registry=REGISTRY,
)


class PrometheusMetrics:
    """Static helpers around the module-level collectors."""

    _cache_lock = Lock()
    _cache_payload: Optional[bytes] = None
    _cache_ts: Optional[float] = None
    _cache_ttl_seconds: float = 1.0

    @staticmethod
    def record_service_operation(
        service: str,
        operation: str,
        duration: float,
        status: str = "success",
        error_type: Optional[str] = None,
    ) -> None:
        """
        Record service operation metrics from @measure_operation decorator.

        Args:
            service: Service name (e.g., 'BookingService')
            operation: Operation/method name (e.g., 'create_booking')
            duration: Operation duration in seconds
            status: Operation status ('success' or 'error')
            error_type: Type of error if status is 'error'
        """
        service_operation_duration_seconds.labels(service=service, operation=operation).observe(
            duration
        )
        service_operations_total.labels(service=service, operation=operation, status=status).inc()

        if status == "error" and error_type:
            errors_total.labels(service=service, operation=operation, error_type=error_type).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def get_metrics() -> bytes:
        """
        Generate Prometheus metrics in exposition format.

        Returns:
            Metrics data in Prometheus text format
        """
        now = monotonic()
        with PrometheusMetrics._cache_lock:
            payload = PrometheusMetrics._cache_payload
            ts = PrometheusMetrics._cache_ts
            if payload is None or ts is None or (now - ts) > PrometheusMetrics._cache_ttl_seconds:
                payload = cast(bytes, generate_latest(REGISTRY))
                PrometheusMetrics._cache_payload = payload
                PrometheusMetrics._cache_ts = monotonic()
        return payload

    @staticmethod
    def get_content_type() -> str:
        """Get the content type for Prometheus metrics."""
        return cast(str, CONTENT_TYPE_LATEST)

    @staticmethod
    def _invalidate_cache() -> None:
        """Invalidate cached metrics so next scrape refreshes."""
        with PrometheusMetrics._cache_lock:
            PrometheusMetrics._cache_ts = None
            PrometheusMetrics._cache_payload = None

    # Domain helpers
    @staticmethod
    def inc_booking_transition(status: str) -> None:
        booking_transitions_total.labels(status=status).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def inc_slot_claim_conflict() -> None:
        slot_claim_conflicts_total.inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def inc_ledger_posting(flow: str) -> None:
        ledger_postings_total.labels(flow=flow).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def inc_payout_request(status: str) -> None:
        payout_requests_total.labels(status=status).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def inc_collaborator_failure(collaborator: str) -> None:
        collaborator_failures_total.labels(collaborator=collaborator).inc()
        PrometheusMetrics._invalidate_cache()


# Singleton instance
prometheus_metrics = PrometheusMetrics()
