"""Prometheus metric definitions shared across services."""

from prometheus_client import Counter, Gauge, Histogram, generate_latest
from starlette.responses import Response


payment_requests_total = Counter("payment_requests_total", "Total payment requests", ["service"])
payment_success_total = Counter("payment_success_total", "Total successful payments", ["service"])
payment_failure_total = Counter("payment_failure_total", "Total failed payments", ["service"])
payment_rejected_total = Counter(
    "payment_rejected_total",
    "Payment requests rejected before a record was created",
    ["service", "reason"],
)
payment_latency_seconds = Histogram("payment_latency_seconds", "Payment latency seconds", ["service"])
fx_calls_total = Counter(
    "fx_calls_total",
    "Upstream FX calls by logical operation and outcome",
    ["operation", "outcome"],
)
fx_call_duration_seconds = Histogram(
    "fx_call_duration_seconds",
    "Duration of single upstream FX attempts",
    ["operation"],
)
retries_total = Counter("retries_total", "Retry count", ["service", "dependency"])
fx_fallback_total = Counter("fx_fallback_total", "FX fallback invocations", ["operation"])
circuit_breaker_state = Gauge(
    "circuit_breaker_state",
    "Circuit breaker state (0=closed, 1=half_open, 2=open)",
    ["breaker"],
)


def metrics_response() -> Response:
    """Expose all registered Prometheus metrics in text format."""

    return Response(content=generate_latest(), media_type="text/plain")
