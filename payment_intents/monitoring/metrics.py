"""
Prometheus metrics for payment intent monitoring.

Tracks:
- Intent creation and finalization counts
- Processing stage outcomes and durations
- Idempotency cache lookups
- Refund outcomes and amounts
- In-flight orchestrations
"""
from prometheus_client import Counter, Gauge, Histogram

# Intent metrics
payment_intents_created_total = Counter(
    "payment_intents_created_total",
    "Total number of payment intents created",
    ["currency"],
)

payment_intent_amount_minor_units = Histogram(
    "payment_intent_amount_minor_units",
    "Payment intent amounts in minor units",
    buckets=(50, 100, 500, 1000, 5000, 10000, 50000, 100000, 500000, 1000000),
)

payment_intents_finalized_total = Counter(
    "payment_intents_finalized_total",
    "Total number of payment intents that reached a terminal status",
    ["status"],  # succeeded, failed
)

# Stage metrics
processing_stages_total = Counter(
    "processing_stages_total",
    "Total processing stages finished",
    ["stage", "status"],  # status: completed, failed
)

processing_stage_duration_seconds = Histogram(
    "processing_stage_duration_seconds",
    "Processing stage duration in seconds",
    ["stage"],
    buckets=(0.01, 0.1, 0.5, 1.0, 2.5, 5.0, 7.5, 10.0, 15.0),
)

orchestrations_in_flight = Gauge(
    "orchestrations_in_flight",
    "Number of intents whose processing stages are still running",
)

# Idempotency metrics
idempotency_lookups_total = Counter(
    "idempotency_lookups_total",
    "Total idempotency cache lookups",
    ["result"],  # hit, miss, conflict
)

idempotency_records_purged_total = Counter(
    "idempotency_records_purged_total",
    "Total expired idempotency records purged",
)

# Refund metrics
refunds_total = Counter(
    "refunds_total",
    "Total refund requests by outcome",
    ["status"],  # accepted, rejected
)

refunded_amount_minor_units_total = Counter(
    "refunded_amount_minor_units_total",
    "Total refunded amount in minor units",
)


class MetricsCollector:
    """Helper class for collecting metrics."""

    @staticmethod
    def record_intent_created(currency: str, amount: int) -> None:
        """Record a created payment intent."""
        payment_intents_created_total.labels(currency=currency).inc()
        payment_intent_amount_minor_units.observe(amount)

    @staticmethod
    def record_intent_finalized(status: str) -> None:
        """Record a payment intent reaching a terminal status."""
        payment_intents_finalized_total.labels(status=status).inc()

    @staticmethod
    def record_stage(stage: str, status: str, duration_seconds: float) -> None:
        """Record a finished processing stage."""
        processing_stages_total.labels(stage=stage, status=status).inc()
        processing_stage_duration_seconds.labels(stage=stage).observe(duration_seconds)

    @staticmethod
    def set_orchestrations_in_flight(count: int) -> None:
        """Set the number of running orchestrations."""
        orchestrations_in_flight.set(count)

    @staticmethod
    def record_idempotency_lookup(result: str) -> None:
        """Record an idempotency cache lookup."""
        idempotency_lookups_total.labels(result=result).inc()

    @staticmethod
    def record_idempotency_purge(count: int) -> None:
        """Record purged idempotency records."""
        if count > 0:
            idempotency_records_purged_total.inc(count)

    @staticmethod
    def record_refund(status: str, amount: int = 0) -> None:
        """Record a refund request outcome."""
        refunds_total.labels(status=status).inc()
        if amount > 0:
            refunded_amount_minor_units_total.inc(amount)


# Export singleton instance
metrics = MetricsCollector()
