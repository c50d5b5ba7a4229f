"""FastAPI application and routes."""
from .main import app
from .schemas import (
    CreateOrderRequest,
    CreateOrderResponse,
    DeleteOrdersResponse,
    OrderResponse,
    WebhookResponse,
)

__all__ = [
    "app",
    "CreateOrderRequest",
    "CreateOrderResponse",
    "DeleteOrdersResponse",
    "OrderResponse",
    "WebhookResponse",
]
