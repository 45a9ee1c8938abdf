# backend/roombook/monitoring/prometheus_metrics.py
"""
Prometheus metrics for the reservation engine.

Service timings are fed by BaseService.measure_operation; ledger
counters are recorded by the credit, coupon and rate-limit modules.
"""

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
    "roombook_service_operation_duration_seconds",
    "Service operation duration in seconds",
    ["service", "operation"],
    registry=REGISTRY,
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)

service_operations_total = Counter(
    "roombook_service_operations_total",
    "Total number of service operations",
    ["service", "operation", "status"],
    registry=REGISTRY,
)

errors_total = Counter(
    "roombook_errors_total",
    "Total number of errors",
    ["service", "operation", "error_type"],
    registry=REGISTRY,
)

# Domain-specific custom counters
credits_consumed_cents_total = Counter(
    "roombook_credits_consumed_cents_total",
    "Cents drawn from credit grants",
    ["source"],  # booking | purchase
    registry=REGISTRY,
)

credit_allocation_failures_total = Counter(
    "roombook_credit_allocation_failures_total",
    "Credit allocations aborted, by error code",
    ["code"],
    registry=REGISTRY,
)

coupon_redemptions_total = Counter(
    "roombook_coupon_redemptions_total",
    "Coupon usage transitions",
    ["mode"],  # CREATED | CLAIMED_RESTORED | RESTORED
    registry=REGISTRY,
)

rate_limit_decisions_total = Counter(
    "roombook_rate_limit_decisions_total",
    "Rate-limit decisions",
    ["endpoint", "action"],  # allow | violation | blocked
    registry=REGISTRY,
)


class PrometheusMetrics:
    """Thin static facade so callers never touch metric objects directly."""

    @staticmethod
    def record_service_operation(
        service: str,
        operation: str,
        duration: float,
        status: str = "success",
        error_type: str | None = None,
    ) -> None:
        service_operation_duration_seconds.labels(service=service, operation=operation).observe(duration)
        service_operations_total.labels(service=service, operation=operation, status=status).inc()
        if status != "success":
            errors_total.labels(
                service=service, operation=operation, error_type=error_type or "unknown"
            ).inc()

    @staticmethod
    def inc_credits_consumed(amount_cents: int, source: str = "booking") -> None:
        if amount_cents > 0:
            credits_consumed_cents_total.labels(source=source).inc(amount_cents)

    @staticmethod
    def inc_credit_allocation_failure(code: str) -> None:
        credit_allocation_failures_total.labels(code=code).inc()

    @staticmethod
    def inc_coupon_redemption(mode: str) -> None:
        coupon_redemptions_total.labels(mode=mode).inc()

    @staticmethod
    def inc_rate_limit_decision(endpoint: str, action: str) -> None:
        rate_limit_decisions_total.labels(endpoint=endpoint, action=action).inc()

    @staticmethod
    def get_metrics() -> bytes:
        return generate_latest(REGISTRY)

    @staticmethod
    def get_content_type() -> str:
        return CONTENT_TYPE_LATEST


prometheus_metrics = PrometheusMetrics()
