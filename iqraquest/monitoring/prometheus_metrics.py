"""
Prometheus metrics for the IqraQuest settlement core.

Service timings are fed by ``@BaseService.measure_operation``; the domain
helpers below count escrow transitions, payout outcomes, webhook deliveries
and scheduled job lock contention.
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

# Custom registry so tests and multiple app instances do not collide with defaults
REGISTRY = CollectorRegistry()

service_operation_duration_seconds = Histogram(
    "iqraquest_service_operation_duration_seconds",
    "Service operation duration in seconds",
    ["service", "operation"],
    registry=REGISTRY,
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)

service_operations_total = Counter(
    "iqraquest_service_operations_total",
    "Total number of service operations",
    ["service", "operation", "status"],
    registry=REGISTRY,
)

errors_total = Counter(
    "iqraquest_errors_total",
    "Total number of errors",
    ["service", "operation", "error_type"],
    registry=REGISTRY,
)

escrow_transitions_total = Counter(
    "iqraquest_escrow_transitions_total",
    "Escrow state transitions by kind",
    ["kind"],
    registry=REGISTRY,
)

payouts_total = Counter(
    "iqraquest_payouts_total",
    "Payout lifecycle events by status",
    ["status"],
    registry=REGISTRY,
)

webhook_events_total = Counter(
    "iqraquest_webhook_events_total",
    "Gateway webhook deliveries by event type and outcome",
    ["event_type", "outcome"],
    registry=REGISTRY,
)

job_lock_total = Counter(
    "iqraquest_job_lock_total",
    "Scheduled job lock attempts by job and outcome",
    ["job", "outcome"],
    registry=REGISTRY,
)

notifications_total = Counter(
    "iqraquest_notifications_total",
    "In-app notifications by type and outcome",
    ["type", "outcome"],
    registry=REGISTRY,
)


class PrometheusMetrics:
    """Manages Prometheus metrics collection and exposure."""

    _cache_lock: Lock = Lock()
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
            service: Service name (e.g., 'EscrowService')
            operation: Operation name (e.g., 'escrow.release_to_teacher')
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
    def record_escrow_transition(kind: str) -> None:
        escrow_transitions_total.labels(kind=kind).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def record_payout(status: str) -> None:
        payouts_total.labels(status=status).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def record_webhook_event(event_type: str, outcome: str) -> None:
        webhook_events_total.labels(event_type=event_type, outcome=outcome).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def record_job_lock(job: str, outcome: str) -> None:
        job_lock_total.labels(job=job, outcome=outcome).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def record_notification(notification_type: str, outcome: str) -> None:
        notifications_total.labels(type=notification_type, outcome=outcome).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def get_metrics() -> bytes:
        """
        Generate Prometheus metrics in exposition format.

        Returns:
            Metrics data in Prometheus text format
        """
        now = monotonic()
        payload = PrometheusMetrics._cache_payload
        ts = PrometheusMetrics._cache_ts

        if payload is not None and ts is not None and (now - ts) <= PrometheusMetrics._cache_ttl_seconds:
            return payload

        with PrometheusMetrics._cache_lock:
            PrometheusMetrics._cache_payload = cast(bytes, generate_latest(REGISTRY))
            PrometheusMetrics._cache_ts = monotonic()
            return PrometheusMetrics._cache_payload

    @staticmethod
    def get_content_type() -> str:
        """Get the content type for Prometheus metrics."""
        return cast(str, CONTENT_TYPE_LATEST)

    @staticmethod
    def _invalidate_cache() -> None:
        with PrometheusMetrics._cache_lock:
            PrometheusMetrics._cache_ts = None
            PrometheusMetrics._cache_payload = None


prometheus_metrics = PrometheusMetrics()
