"""External integrations for the PayPal REST API."""
from .paypal_client import CaptureResult, CreatedOrder, PayPalClient
from .resilience import CircuitBreaker, CircuitState, ResilientTransport
from .signature import TransmissionHeaders, WebhookVerifier
from .token_cache import AccessToken, TokenCache

__all__ = [
    "AccessToken",
    "CaptureResult",
    "CircuitBreaker",
    "CircuitState",
    "CreatedOrder",
    "PayPalClient",
    "ResilientTransport",
    "TokenCache",
    "TransmissionHeaders",
    "WebhookVerifier",
]
