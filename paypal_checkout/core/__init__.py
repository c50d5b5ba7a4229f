"""Core checkout logic: order state machine, webhook ingress, order service."""
from .exceptions import (
    BadRequestError,
    CheckoutError,
    CircuitOpenError,
    CredentialExchangeError,
    GatewayError,
    OrderNotFoundError,
    OrderValidationError,
    PersistenceError,
    ServerError,
    UnauthorizedError,
    WebhookError,
)
from .order_lifecycle import Outcome, Transition, WebhookEventType, decide

__all__ = [
    "BadRequestError",
    "CheckoutError",
    "CircuitOpenError",
    "CredentialExchangeError",
    "GatewayError",
    "OrderNotFoundError",
    "OrderValidationError",
    "Outcome",
    "PersistenceError",
    "ServerError",
    "Transition",
    "UnauthorizedError",
    "WebhookError",
    "WebhookEventType",
    "decide",
]
