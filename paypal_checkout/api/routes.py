"""
API routes for orders, PayPal checkout and monitoring.
"""
import time
from typing import Any, Dict, List, Optional, Union

import structlog
from fastapi import APIRouter, Body, Depends, HTTPException, Request, Response, status
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from paypal_checkout.core.exceptions import (
    CheckoutError,
    CredentialExchangeError,
    GatewayError,
    OrderNotFoundError,
    OrderValidationError,
    PersistenceError,
)
from paypal_checkout.core.order_service import OrderService
from paypal_checkout.core.webhook_ingress import WebhookIngress
from paypal_checkout.monitoring.health import HealthCheck

from .dependencies import get_health_check, get_order_service, get_webhook_ingress
from .schemas import (
    CreateOrderRequest,
    CreateOrderResponse,
    DeleteOrdersResponse,
    HealthCheckResponse,
    OrderResponse,
    WebhookResponse,
)

logger = structlog.get_logger(__name__)

# Create routers
orders_router = APIRouter(prefix="/api/orders", tags=["orders"])
paypal_router = APIRouter(prefix="/api/paypal", tags=["paypal"])
monitoring_router = APIRouter(tags=["monitoring"])


@orders_router.get(
    "",
    response_model=List[OrderResponse],
    summary="List orders",
    description="List all orders, most recent first",
)
async def list_orders(
    service: OrderService = Depends(get_order_service),
) -> List[OrderResponse]:
    """List orders."""
    try:
        orders = await service.list_orders()
    except Exception as e:
        logger.error("api_list_orders_error", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to retrieve orders",
        )
    return [OrderResponse.from_order(order) for order in orders]


@orders_router.post(
    "/delete",
    response_model=DeleteOrdersResponse,
    summary="Delete orders",
    description="Bulk-delete orders by local id",
)
async def delete_orders(
    order_ids: Optional[List[Union[int, str]]] = Body(default=None),
    service: OrderService = Depends(get_order_service),
) -> Dict[str, Any]:
    """Delete orders by id."""
    try:
        deleted = await service.delete_orders(order_ids)
    except OrderValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.user_message)
    except OrderNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.user_message)
    except Exception as e:
        logger.error("api_delete_orders_error", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to delete orders",
        )

    return {"message": f"Successfully deleted {deleted} order(s)", "deleted": deleted}


@paypal_router.post(
    "/create-order",
    response_model=CreateOrderResponse,
    summary="Create a PayPal order",
    description="Create a PayPal order and return the buyer approval URL",
)
async def create_order(
    request: Optional[CreateOrderRequest] = Body(default=None),
    service: OrderService = Depends(get_order_service),
) -> Dict[str, Any]:
    """
    Create a PayPal order.

    The local order is stored in CREATED before the approval URL is returned.
    """
    amount = request.amount if request else None
    currency = request.currency if request else None

    try:
        creation = await service.create_order(amount=amount, currency=currency)

    except OrderValidationError as e:
        logger.warning("api_create_order_validation_error", error=str(e))
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.user_message)

    except GatewayError as e:
        logger.error("api_create_order_gateway_error", error=str(e), status_code=e.status_code)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Failed to create PayPal order",
        )

    except CredentialExchangeError as e:
        logger.error("api_create_order_token_error", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=e.user_message,
        )

    except PersistenceError as e:
        logger.error("api_create_order_persistence_error", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Order created at PayPal but could not be saved",
        )

    except Exception as e:
        logger.error("api_create_order_unexpected_error", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Unexpected error during order creation",
        )

    return {"url": creation.approval_url}


@paypal_router.post(
    "/webhook",
    response_model=WebhookResponse,
    summary="PayPal webhook endpoint",
    description="Handle PayPal webhook events",
)
async def paypal_webhook(
    request: Request,
    ingress: WebhookIngress = Depends(get_webhook_ingress),
) -> Dict[str, Any]:
    """
    Handle PayPal webhook events.

    4xx answers are final for PayPal; 5xx answers make it redeliver.
    """
    start_time = time.time()
    body = await request.body()

    try:
        result = await ingress.handle(body, request.headers)

    except CheckoutError as e:
        log = logger.warning if e.http_status < 500 else logger.error
        log(
            "api_webhook_error",
            error=str(e),
            error_type=type(e).__name__,
            status_code=e.http_status,
        )
        raise HTTPException(status_code=e.http_status, detail=e.user_message)

    except Exception as e:
        logger.error("api_webhook_unexpected_error", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Server error processing webhook",
        )

    logger.info(
        "api_webhook_handled",
        handled=result.handled,
        ignored=result.ignored,
        duration_seconds=time.time() - start_time,
    )
    return result.to_dict()


@monitoring_router.get(
    "/health",
    response_model=HealthCheckResponse,
    summary="Health check",
    description="Check overall system health",
)
async def health(health_check: HealthCheck = Depends(get_health_check)) -> Dict[str, Any]:
    """Health check endpoint for monitoring."""
    try:
        return await health_check.check_all()
    except Exception as e:
        logger.error("health_check_error", error=str(e))
        return {
            "status": "unhealthy",
            "checks": {"error": str(e)},
        }


@monitoring_router.get(
    "/health/live",
    response_model=HealthCheckResponse,
    summary="Liveness probe",
    description="Liveness probe endpoint",
)
async def liveness(health_check: HealthCheck = Depends(get_health_check)) -> Dict[str, Any]:
    """Liveness probe endpoint."""
    return await health_check.liveness()


@monitoring_router.get(
    "/metrics",
    summary="Prometheus metrics",
    description="Expose Prometheus metrics",
    include_in_schema=False,  # Don't include in OpenAPI docs
)
async def prometheus_metrics() -> Response:
    """Expose Prometheus metrics."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
