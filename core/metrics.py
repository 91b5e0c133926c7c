"""
Core metrics collection using Prometheus
"""
from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, Counter, Histogram, Info, generate_latest

from core.config import settings
from core.logging import get_logger

# Create a global registry for the application
REGISTRY = CollectorRegistry()

app_info = Info("marketplace_app", "Marketplace offer engine information", registry=REGISTRY)

# Request metrics
request_count = Counter(
    "marketplace_http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"],
    registry=REGISTRY,
)

request_duration = Histogram(
    "marketplace_http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0),
    registry=REGISTRY,
)

# Offer lifecycle metrics
offer_transitions = Counter(
    "marketplace_offer_transitions_total",
    "Offer status transitions applied",
    ["from_status", "to_status"],
    registry=REGISTRY,
)

concurrent_conflicts = Counter(
    "marketplace_concurrent_conflicts_total",
    "Conditional writes that lost a race",
    ["resource"],
    registry=REGISTRY,
)

# Webhook metrics
webhook_events = Counter(
    "marketplace_webhook_events_total",
    "Webhook events received",
    ["event_type", "status"],
    registry=REGISTRY,
)

# Gateway metrics
gateway_requests = Counter(
    "marketplace_gateway_requests_total",
    "Calls made to the payment processor",
    ["provider", "operation", "status"],
    registry=REGISTRY,
)

gateway_duration = Histogram(
    "marketplace_gateway_request_duration_seconds",
    "Payment processor call duration",
    ["provider", "operation"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
    registry=REGISTRY,
)

refunds_total = Counter(
    "marketplace_refunds_total",
    "Refund attempts",
    ["status"],
    registry=REGISTRY,
)

payment_noops = Counter(
    "marketplace_payment_transition_noops_total",
    "Payment transitions skipped because the row was already past the source status",
    ["target_status"],
    registry=REGISTRY,
)

# Error metrics
error_count = Counter(
    "marketplace_errors_total",
    "Total number of errors",
    ["error_type", "domain"],
    registry=REGISTRY,
)


class MetricsCollector:
    """Helper class for collecting metrics"""

    def __init__(self):
        self.logger = get_logger("metrics")
        app_info.info({"version": settings.app_version, "environment": settings.environment})

    def track_request(self, method: str, endpoint: str, status: int, duration: float):
        """Track HTTP request metrics"""
        request_count.labels(method=method, endpoint=endpoint, status=str(status)).inc()
        request_duration.labels(method=method, endpoint=endpoint).observe(duration)

    def track_offer_transition(self, from_status: str, to_status: str):
        offer_transitions.labels(from_status=from_status, to_status=to_status).inc()

    def track_conflict(self, resource: str):
        concurrent_conflicts.labels(resource=resource).inc()

    def track_webhook_event(self, event_type: str, status: str):
        webhook_events.labels(event_type=event_type, status=status).inc()

    def track_gateway_call(self, provider: str, operation: str, status: str, duration: float):
        """Track a payment processor call"""
        gateway_requests.labels(provider=provider, operation=operation, status=status).inc()
        gateway_duration.labels(provider=provider, operation=operation).observe(duration)

    def track_refund(self, status: str):
        refunds_total.labels(status=status).inc()

    def track_payment_noop(self, target_status: str):
        payment_noops.labels(target_status=target_status).inc()

    def track_error(self, error_type: str, domain: str):
        """Track errors"""
        error_count.labels(error_type=error_type, domain=domain).inc()


# Global metrics instance
metrics = MetricsCollector()


def get_metrics_response():
    """Generate Prometheus metrics payload and content type"""
    return generate_latest(REGISTRY), CONTENT_TYPE_LATEST
