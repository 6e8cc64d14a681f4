"""
Metrics instrumentation for observability.
Exposes Prometheus-compatible metrics at /metrics endpoint.
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

# Reservation engine
reservation_attempts = Counter(
    'slot_reservation_attempts_total',
    'Slot reservation attempts',
    ['result']  # reserved, slot_full, slot_not_found, exhausted
)

reservation_latency = Histogram(
    'slot_reservation_latency_seconds',
    'Slot reservation transaction latency including retries',
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5]
)

reservation_retries = Counter(
    'slot_reservation_retries_total',
    'Reservation transactions retried after a serialization conflict'
)

# Booking wizard
step_submissions = Counter(
    'booking_step_submissions_total',
    'Booking wizard step submissions',
    ['step', 'result']  # ok, or the error code
)

# Payment events
webhook_receipts = Counter(
    'payment_webhook_receipts_total',
    'Payment provider webhook deliveries',
    ['result']  # recorded, duplicate, bad_signature
)

payment_events_processed = Counter(
    'payment_events_processed_total',
    'Payment events applied by the worker',
    ['event_type', 'result']  # applied, failed
)

# Hold expiry
hold_expiries = Counter(
    'slot_hold_expiries_total',
    'Slot holds handled by the expiry task',
    ['outcome']  # kept_slot, freed_slot, noop
)

# Rate limiting
rate_limit_rejections = Counter(
    'rate_limit_rejections_total',
    'Requests rejected by the rate limiter',
    ['scope']
)

redis_connection_errors = Counter(
    'redis_connection_errors_total',
    'Redis connection errors'
)


def metrics_endpoint() -> Response:
    """
    Prometheus metrics endpoint.

    Usage:
        @app.get("/metrics")
        def metrics():
            return metrics_endpoint()
    """
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


def record_reservation(result: str):
    """Record reservation outcome. Result: reserved, slot_full, slot_not_found, exhausted"""
    reservation_attempts.labels(result=result).inc()


def record_step(step: int, result: str):
    step_submissions.labels(step=str(step), result=result).inc()


def record_payment_event(event_type: str, result: str):
    payment_events_processed.labels(event_type=event_type, result=result).inc()
