"""
Prometheus metrics for checkout monitoring.

Tracks:
- PayPal API calls by operation and status
- Access token refreshes
- Circuit breaker state
- Webhook events by type and outcome
- Orders created, and remote orders that never reached the database
"""
from prometheus_client import Counter, Gauge, Histogram

# PayPal API metrics
paypal_api_requests_total = Counter(
    "paypal_api_requests_total",
    "Total PayPal API requests",
    ["operation", "status"],  # status: HTTP code, transport_error, circuit_open
)

paypal_token_refreshes_total = Counter(
    "paypal_token_refreshes_total",
    "Total PayPal access token exchanges",
    ["outcome"],
)

# Circuit breaker metrics
paypal_circuit_breaker_state = Gauge(
    "paypal_circuit_breaker_state",
    "PayPal circuit breaker state (0=closed, 1=open, 2=half_open)",
)

# Webhook metrics
webhook_events_processed_total = Counter(
    "webhook_events_processed_total",
    "Total webhook events processed",
    ["event_type", "outcome"],  # applied, ignored, unhandled, not_found, failed
)

webhook_processing_duration_seconds = Histogram(
    "webhook_processing_duration_seconds",
    "Webhook processing duration in seconds",
    ["event_type"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

# Order metrics
orders_created_total = Counter(
    "orders_created_total",
    "Total orders created",
    ["currency"],
)

orphaned_remote_orders_total = Counter(
    "orphaned_remote_orders_total",
    "PayPal orders created remotely but not persisted locally",
)


class MetricsCollector:
    """Helper class for collecting metrics."""

    @staticmethod
    def record_paypal_api_call(operation: str, status: str) -> None:
        """Record PayPal API call."""
        paypal_api_requests_total.labels(operation=operation, status=status).inc()

    @staticmethod
    def record_token_refresh(outcome: str) -> None:
        """Record an access token exchange."""
        paypal_token_refreshes_total.labels(outcome=outcome).inc()

    @staticmethod
    def set_circuit_breaker_state(state: str) -> None:
        """Set circuit breaker state."""
        state_map = {"closed": 0, "open": 1, "half_open": 2}
        paypal_circuit_breaker_state.set(state_map.get(state, 0))

    @staticmethod
    def record_webhook_event(event_type: str, outcome: str, duration_seconds: float) -> None:
        """Record webhook event processing."""
        webhook_events_processed_total.labels(event_type=event_type, outcome=outcome).inc()
        webhook_processing_duration_seconds.labels(event_type=event_type).observe(
            duration_seconds
        )

    @staticmethod
    def record_order_created(currency: str) -> None:
        """Record a persisted order."""
        orders_created_total.labels(currency=currency).inc()

    @staticmethod
    def record_orphaned_remote_order() -> None:
        """Record a remote order with no local row."""
        orphaned_remote_orders_total.inc()


# Export singleton instance
metrics = MetricsCollector()
