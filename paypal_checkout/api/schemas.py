"""
Pydantic schemas for API request/response models.
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional, Union

from pydantic import BaseModel, Field, field_validator

from paypal_checkout.database.models import Order


class CreateOrderRequest(BaseModel):
    """Request schema for creating an order. Omitted fields use configured defaults."""

    # Range and format checks live in OrderService so every bad value answers 400
    amount: Optional[Union[Decimal, str]] = Field(
        default=None, description="Order total, e.g. 10.00"
    )
    currency: Optional[str] = Field(default=None, description="Currency code (e.g., USD)")

    @field_validator("currency")
    @classmethod
    def validate_currency(cls, v: Optional[str]) -> Optional[str]:
        """Normalise currency code."""
        return v.upper() if v else v

    model_config = {
        "json_schema_extra": {"examples": [{"amount": "10.00", "currency": "USD"}]}
    }


class CreateOrderResponse(BaseModel):
    """Response schema for order creation."""

    url: str = Field(..., description="PayPal approval URL to redirect the buyer to")


class OrderResponse(BaseModel):
    """One order as listed by the API."""

    id: int = Field(..., description="Local order id")
    processor_order_id: Optional[str] = Field(default=None, description="PayPal order id")
    created_at: datetime = Field(..., description="Creation timestamp")
    status: str = Field(..., description="Order status name")
    total_amount: Decimal = Field(..., description="Order total")
    currency: str = Field(..., description="Currency code")

    @classmethod
    def from_order(cls, order: Order) -> "OrderResponse":
        return cls(
            id=order.id,
            processor_order_id=order.processor_order_id,
            created_at=order.created_at,
            status=order.status.value,
            total_amount=order.total_amount,
            currency=order.currency,
        )


class DeleteOrdersResponse(BaseModel):
    """Response schema for bulk deletion."""

    message: str = Field(..., description="Human readable summary")
    deleted: int = Field(..., description="Number of deleted orders")


class WebhookResponse(BaseModel):
    """Response schema for webhook processing."""

    handled: bool = Field(..., description="Whether the event was acted on")
    ignored: bool = Field(default=False, description="Duplicate or out-of-order event")


class HealthCheckResponse(BaseModel):
    """Response schema for health checks."""

    status: str = Field(..., description="Overall health status (healthy/unhealthy)")
    checks: Optional[dict] = Field(default=None, description="Individual service checks")
    message: Optional[str] = Field(default=None, description="Status message")
