"""
PayPal webhook ingress.

Implements:
- Authenticity check on the raw body before anything is parsed
- Event envelope decoding and order resolution
- State machine dispatch, persisted with a compare-and-set update
- Optional Redis fast path for transmissions already handled
"""
import json
import time
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

import redis.asyncio as aioredis
import structlog

from paypal_checkout.config import Settings, get_settings
from paypal_checkout.core.exceptions import (
    BadRequestError,
    CheckoutError,
    GatewayError,
    PersistenceError,
    ServerError,
)
from paypal_checkout.core.order_lifecycle import Outcome, Transition, WebhookEventType, decide
from paypal_checkout.database.models import Order, OrderStatus
from paypal_checkout.database.store import OrderStore
from paypal_checkout.integrations.paypal_client import PayPalClient
from paypal_checkout.integrations.signature import TransmissionHeaders, WebhookVerifier
from paypal_checkout.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class HandledResult:
    """Acknowledgement returned to PayPal."""

    handled: bool
    ignored: bool = False

    def to_dict(self) -> Dict[str, bool]:
        return {"handled": self.handled, "ignored": self.ignored}


@dataclass(frozen=True)
class WebhookEvent:
    """Decoded webhook envelope."""

    event_type: str
    resource: Dict[str, Any]
    event_id: Optional[str] = None

    @classmethod
    def parse(cls, raw_body: bytes) -> "WebhookEvent":
        """
        Decode a webhook body.

        Raises:
            BadRequestError: If the body is not a JSON event envelope
        """
        try:
            payload = json.loads(raw_body)
        except (ValueError, UnicodeDecodeError) as e:
            logger.warning("webhook_invalid_json", error=str(e))
            raise BadRequestError("Invalid JSON") from e

        if not isinstance(payload, dict):
            raise BadRequestError("Webhook body must be a JSON object")

        event_type = payload.get("event_type")
        resource = payload.get("resource")
        if not isinstance(event_type, str) or not event_type:
            raise BadRequestError("Missing event_type")
        if not isinstance(resource, dict):
            raise BadRequestError("Missing resource")

        event_id = payload.get("id")
        return cls(
            event_type=event_type,
            resource=resource,
            event_id=event_id if isinstance(event_id, str) else None,
        )

    @property
    def processor_order_id(self) -> Optional[str]:
        """
        The PayPal order id this event refers to.

        Capture events carry the order id under supplementary_data; order
        events carry it as the resource id.
        """
        supplementary = self.resource.get("supplementary_data")
        if isinstance(supplementary, dict):
            related = supplementary.get("related_ids")
            if isinstance(related, dict):
                order_id = related.get("order_id")
                if isinstance(order_id, str) and order_id:
                    return order_id
        resource_id = self.resource.get("id")
        return resource_id if isinstance(resource_id, str) and resource_id else None


class WebhookIngress:
    """
    Handles PayPal webhook deliveries end to end.

    Features:
    - Typed failures (BadRequest / Unauthorized / ServerError / GatewayError)
      so PayPal redelivers only when it makes sense
    - Idempotent under duplicate and reordered delivery
    - At most one capture per order, even under concurrent delivery
    """

    def __init__(
        self,
        store: OrderStore,
        paypal_client: PayPalClient,
        verifier: WebhookVerifier,
        redis_client: Optional[aioredis.Redis] = None,
        settings: Optional[Settings] = None,
    ):
        """
        Initialize webhook ingress.

        Args:
            store: Order persistence
            paypal_client: Client used for the capture side effect
            verifier: Webhook signature verifier
            redis_client: Optional Redis client for transmission dedup
            settings: Application settings
        """
        self.settings = settings or get_settings()
        self.store = store
        self.paypal_client = paypal_client
        self.verifier = verifier
        self.redis_client = redis_client

    @staticmethod
    def _dedup_key(transmission_id: str) -> str:
        return f"webhook:processed:{transmission_id}"

    async def is_transmission_processed(self, transmission_id: str) -> bool:
        """
        Check if a transmission has already been handled.

        Redis being down is not fatal: the state machine is idempotent anyway.
        """
        if self.redis_client is None:
            return False
        try:
            return bool(await self.redis_client.exists(self._dedup_key(transmission_id)))
        except Exception as e:
            logger.warning("webhook_dedup_check_error", error=str(e), transmission_id=transmission_id)
            return False

    async def mark_transmission_processed(self, transmission_id: str) -> None:
        """Remember a handled transmission for the configured TTL."""
        if self.redis_client is None:
            return
        try:
            await self.redis_client.setex(
                self._dedup_key(transmission_id),
                self.settings.webhook_dedup_ttl_seconds,
                "1",
            )
        except Exception as e:
            logger.warning(
                "webhook_mark_processed_error", error=str(e), transmission_id=transmission_id
            )

    async def handle(self, raw_body: bytes, headers: Mapping[str, str]) -> HandledResult:
        """
        Handle one webhook delivery.

        Args:
            raw_body: Request body exactly as received
            headers: Request headers

        Returns:
            HandledResult: handled/ignored acknowledgement

        Raises:
            BadRequestError: Empty or malformed body
            UnauthorizedError: Missing headers or failed signature check
            GatewayError: Capture was attempted and PayPal refused it
            CredentialExchangeError: No access token for the capture
            ServerError: Any other failure after the event was accepted
        """
        start_time = time.time()

        if not raw_body or not raw_body.strip():
            logger.warning("webhook_empty_payload")
            raise BadRequestError("Empty payload")

        transmission = await self.verifier.verify(raw_body, headers)
        event = WebhookEvent.parse(raw_body)

        structlog.contextvars.bind_contextvars(
            transmission_id=transmission.transmission_id,
            event_type=event.event_type,
        )
        logger.info("webhook_received", event_id=event.event_id)

        outcome = "failed"
        try:
            if await self.is_transmission_processed(transmission.transmission_id):
                logger.info("webhook_transmission_already_processed")
                outcome = "duplicate"
                return HandledResult(handled=True, ignored=True)

            result, outcome = await self._dispatch(event, transmission)
            await self.mark_transmission_processed(transmission.transmission_id)
            return result

        except PersistenceError as e:
            raise ServerError(f"Storage failure while processing webhook: {e}") from e
        except CheckoutError:
            raise
        except Exception as e:
            logger.error("webhook_processing_failed", error=str(e), error_type=type(e).__name__)
            raise ServerError(f"Error processing webhook event: {e}") from e
        finally:
            metrics.record_webhook_event(event.event_type, outcome, time.time() - start_time)
            structlog.contextvars.unbind_contextvars("transmission_id", "event_type")

    async def _dispatch(
        self, event: WebhookEvent, transmission: TransmissionHeaders
    ) -> tuple[HandledResult, str]:
        processor_order_id = event.processor_order_id
        order = (
            await self.store.find_by_processor_id(processor_order_id)
            if processor_order_id
            else None
        )
        if order is None:
            # Acknowledge so PayPal does not retry an order we will never know about
            logger.warning("webhook_order_not_found", processor_order_id=processor_order_id)
            return HandledResult(handled=False), "not_found"

        transition = decide(event.event_type, order.status)
        log = logger.bind(order_id=order.id, processor_order_id=processor_order_id)

        if transition.outcome is Outcome.UNHANDLED:
            log.info("webhook_event_unhandled", reason=transition.reason)
            await self._audit(order, event, transmission, transition, "unhandled")
            return HandledResult(handled=False), "unhandled"

        if transition.outcome is Outcome.IGNORE:
            log.info(
                "webhook_event_ignored",
                current_status=order.status.value,
                reason=transition.reason,
            )
            await self._audit(order, event, transmission, transition, "ignored")
            return HandledResult(handled=True, ignored=True), "ignored"

        applied = await self.store.update_status(
            order.id, transition.next_status, expected=transition.from_statuses
        )
        if not applied:
            # Another delivery for the same order won the compare-and-set
            log.info("webhook_event_lost_race", target_status=transition.next_status.value)
            await self._audit(order, event, transmission, transition, "ignored")
            return HandledResult(handled=True, ignored=True), "ignored"

        log.info(
            "order_status_changed",
            from_status=order.status.value,
            to_status=transition.next_status.value,
        )
        await self._audit(order, event, transmission, transition, "applied")

        if transition.capture:
            await self._capture(order, log)

        return HandledResult(handled=True), "applied"

    async def _capture(self, order: Order, log: Any) -> None:
        """
        Capture an order that was just moved to APPROVED.

        APPROVED is already durable when this runs. A failed capture is
        surfaced as GatewayError so PayPal redelivers; nothing is rolled back.
        """
        result = await self.paypal_client.capture_order(order.processor_order_id)
        if not result.success:
            log.error("webhook_capture_failed", status_code=result.status_code)
            raise GatewayError(
                "Capture failed after APPROVED",
                status_code=result.status_code,
                body=result.body,
            )

        if result.capture_status == OrderStatus.COMPLETED.value:
            completed = await self.store.update_status(
                order.id, OrderStatus.COMPLETED, expected=OrderStatus.APPROVED
            )
            log.info("order_completed_by_capture", applied=completed)

    async def _audit(
        self,
        order: Order,
        event: WebhookEvent,
        transmission: TransmissionHeaders,
        transition: Transition,
        outcome: str,
    ) -> None:
        await self.store.record_event(
            order_id=order.id,
            event_type=event.event_type,
            outcome=outcome,
            resulting_status=(
                transition.resulting_status if outcome == "applied" else order.status
            ),
            transmission_id=transmission.transmission_id,
        )


__all__ = ["HandledResult", "WebhookEvent", "WebhookEventType", "WebhookIngress"]
