"""
Exception taxonomy for the checkout service.

Every error maps to a distinct HTTP outcome so PayPal's webhook redelivery
behaves correctly:
- 4xx (BadRequest, Unauthorized) for permanently bad input, never redelivered
- 5xx (ServerError, PersistenceError) and 502 (GatewayError) for conditions
  that may clear up, so PayPal retries
"""
from typing import Any, Dict, Optional


class CheckoutError(Exception):
    """
    Base exception for all checkout errors.

    Carries:
    - HTTP status code (for API responses)
    - User message (safe to return to callers)
    """

    http_status: int = 500
    default_user_message: str = "An unexpected error occurred."

    def __init__(self, message: str, user_message: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.user_message = user_message or self.default_user_message

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for API responses"""
        return {"error": self.user_message}


class CredentialExchangeError(CheckoutError):
    """Token endpoint unreachable, rejected the credentials, or answered garbage."""

    http_status = 502
    default_user_message = "Failed to obtain PayPal access token"

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        body: Optional[str] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class GatewayError(CheckoutError):
    """Non-success answer (or no answer) from the PayPal order/capture endpoints."""

    http_status = 502
    default_user_message = "PayPal request failed"

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        body: Optional[str] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.body = body

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.user_message}
        if self.status_code is not None:
            payload["status_code"] = self.status_code
        return payload


class CircuitOpenError(GatewayError):
    """Raised without touching the network while the circuit breaker is open."""

    default_user_message = "PayPal is temporarily unavailable"


class PersistenceError(CheckoutError):
    """Storage layer failure."""

    http_status = 500
    default_user_message = "Storage failure"


class OrderValidationError(CheckoutError):
    """Order request input is invalid."""

    http_status = 400

    def __init__(self, message: str):
        super().__init__(message, user_message=message)


class OrderNotFoundError(CheckoutError):
    """No order matched the request."""

    http_status = 404

    def __init__(self, message: str):
        super().__init__(message, user_message=message)


class WebhookError(CheckoutError):
    """Base class for webhook ingress failures."""


class BadRequestError(WebhookError):
    """Empty or malformed webhook body."""

    http_status = 400

    def __init__(self, message: str):
        super().__init__(message, user_message=message)


class UnauthorizedError(WebhookError):
    """Missing authenticity headers or failed signature verification."""

    http_status = 401
    default_user_message = "Invalid webhook signature"


class ServerError(WebhookError):
    """Unexpected failure while handling a verified webhook."""

    http_status = 500
    default_user_message = "Server error processing webhook"
