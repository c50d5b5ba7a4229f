"""
PayPal Orders API client.

Implements:
- Order creation with CAPTURE intent
- Order capture (result object, not an exception, on non-success)
- Bearer token from the shared TokenCache, refreshed once on 401
- One PayPal-Request-Id per create/capture, reused by every retry of it
"""
import json
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional

import httpx
import structlog

from paypal_checkout.config import Settings, get_settings
from paypal_checkout.core.exceptions import CircuitOpenError, GatewayError
from paypal_checkout.integrations.resilience import ResilientTransport
from paypal_checkout.integrations.token_cache import TokenCache
from paypal_checkout.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class CreatedOrder:
    """PayPal order id plus the URL the buyer must visit to approve it."""

    processor_order_id: str
    approval_url: str


@dataclass(frozen=True)
class CaptureResult:
    """Outcome of a capture call."""

    success: bool
    status_code: int
    body: str

    @property
    def capture_status(self) -> Optional[str]:
        """The order status PayPal reported in the capture response, if any."""
        try:
            payload = json.loads(self.body)
        except ValueError:
            return None
        return payload.get("status") if isinstance(payload, dict) else None


def format_amount(amount: Decimal) -> str:
    """PayPal expects amounts as strings with two decimals."""
    return f"{amount.quantize(Decimal('0.01'))}"


class PayPalClient:
    """
    Wrapper for the PayPal REST API.

    Features:
    - Retry with exponential backoff and circuit breaking (via the transport)
    - Cached, single-flight access token
    """

    def __init__(
        self,
        transport: Optional[ResilientTransport] = None,
        token_cache: Optional[TokenCache] = None,
        settings: Optional[Settings] = None,
    ):
        """
        Initialize PayPal client.

        Args:
            transport: Resilient transport shared with the token cache
            token_cache: Token cache (built on the transport if omitted)
            settings: Application settings
        """
        self.settings = settings or get_settings()
        self.transport = transport or ResilientTransport(settings=self.settings)
        self.token_cache = token_cache or TokenCache(self.transport, settings=self.settings)

        logger.info(
            "paypal_client_initialized",
            base_url=self.settings.paypal_base_url,
            sandbox=self.settings.is_sandbox,
        )

    def _url(self, path: str) -> str:
        return f"{self.settings.paypal_base_url}{path}"

    async def _authorized_request(
        self, operation: str, method: str, url: str, **kwargs: Any
    ) -> httpx.Response:
        """
        Send a bearer-authenticated request.

        A 401 means PayPal revoked the cached token early; drop it and retry once.
        """
        response = await self._send(operation, method, url, **kwargs)
        if response.status_code == 401:
            logger.warning("paypal_token_rejected", operation=operation)
            self.token_cache.invalidate()
            response = await self._send(operation, method, url, **kwargs)
        return response

    async def _send(self, operation: str, method: str, url: str, **kwargs: Any) -> httpx.Response:
        token = await self.token_cache.get_token()
        headers = dict(kwargs.pop("headers", {}) or {})
        headers["Authorization"] = f"Bearer {token.value}"
        headers.setdefault("Content-Type", "application/json")
        try:
            response = await self.transport.request(method, url, headers=headers, **kwargs)
        except CircuitOpenError:
            metrics.record_paypal_api_call(operation, "circuit_open")
            logger.warning("paypal_circuit_open", operation=operation)
            raise
        except httpx.HTTPError as e:
            metrics.record_paypal_api_call(operation, "transport_error")
            logger.error("paypal_request_failed", operation=operation, error=str(e))
            raise GatewayError(f"PayPal {operation} request failed: {e}") from e
        metrics.record_paypal_api_call(operation, str(response.status_code))
        return response

    async def create_order(self, amount: Decimal, currency: str) -> CreatedOrder:
        """
        Create a PayPal order with CAPTURE intent.

        Args:
            amount: Order total
            currency: Currency code

        Returns:
            CreatedOrder: PayPal order id and approval link

        Raises:
            GatewayError: If PayPal rejects the order or the response lacks id/approve link
            CredentialExchangeError: If no access token can be obtained
        """
        body: Dict[str, Any] = {
            "intent": "CAPTURE",
            "purchase_units": [
                {"amount": {"currency_code": currency, "value": format_amount(amount)}}
            ],
            "application_context": {
                "return_url": self.settings.paypal_return_url,
                "cancel_url": self.settings.paypal_cancel_url,
            },
        }

        # One id for every attempt so PayPal replays instead of creating a second order
        request_id = str(uuid.uuid4())
        logger.info(
            "paypal_creating_order",
            amount=format_amount(amount),
            currency=currency,
            request_id=request_id,
        )
        response = await self._authorized_request(
            "create_order",
            "POST",
            self._url("/v2/checkout/orders"),
            json=body,
            headers={"PayPal-Request-Id": request_id},
        )

        if not response.is_success:
            logger.error(
                "paypal_create_order_failed",
                status_code=response.status_code,
                body=response.text,
            )
            raise GatewayError(
                "Failed to create PayPal order",
                status_code=response.status_code,
                body=response.text,
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise GatewayError(
                "Invalid PayPal response format",
                status_code=response.status_code,
                body=response.text,
            ) from e

        processor_order_id = payload.get("id") if isinstance(payload, dict) else None
        links = payload.get("links") if isinstance(payload, dict) else None
        approval_url = next(
            (
                link.get("href")
                for link in links or []
                if isinstance(link, dict) and link.get("rel") == "approve"
            ),
            None,
        )

        if not processor_order_id or not approval_url:
            logger.error("paypal_approval_link_missing", body=response.text)
            raise GatewayError(
                "approval link missing",
                status_code=response.status_code,
                body=response.text,
            )

        logger.info("paypal_order_created", processor_order_id=processor_order_id)
        return CreatedOrder(processor_order_id=processor_order_id, approval_url=approval_url)

    async def capture_order(self, processor_order_id: str) -> CaptureResult:
        """
        Capture an approved PayPal order.

        Args:
            processor_order_id: PayPal order id

        Returns:
            CaptureResult: success flag, status code and raw body

        Raises:
            ValueError: If processor_order_id is blank
            CredentialExchangeError: If no access token can be obtained
            GatewayError: If PayPal cannot be reached at all
        """
        if not processor_order_id or not processor_order_id.strip():
            raise ValueError("processor_order_id is required")

        request_id = str(uuid.uuid4())
        logger.info(
            "paypal_capturing_order",
            processor_order_id=processor_order_id,
            request_id=request_id,
        )
        response = await self._authorized_request(
            "capture_order",
            "POST",
            self._url(f"/v2/checkout/orders/{processor_order_id}/capture"),
            content=b"",
            headers={"PayPal-Request-Id": request_id},
        )

        result = CaptureResult(
            success=response.is_success,
            status_code=response.status_code,
            body=response.text,
        )
        if result.success:
            logger.info(
                "paypal_order_captured",
                processor_order_id=processor_order_id,
                capture_status=result.capture_status,
            )
        else:
            logger.error(
                "paypal_capture_failed",
                processor_order_id=processor_order_id,
                status_code=response.status_code,
                body=response.text,
            )
        return result

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self.transport.aclose()
