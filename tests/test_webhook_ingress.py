"""
Tests for PayPal webhook ingress.

Covers authenticity failures, order resolution, idempotent replay and
concurrent delivery of the same event.
"""
import asyncio
from typing import Any, Callable

import pytest
from sqlalchemy import select

from paypal_checkout.core.exceptions import (
    BadRequestError,
    GatewayError,
    PersistenceError,
    ServerError,
    UnauthorizedError,
)
from paypal_checkout.core.webhook_ingress import WebhookEvent, WebhookIngress
from paypal_checkout.database.models import Order, OrderEvent, OrderStatus
from paypal_checkout.database.store import OrderStore

APPROVED = "CHECKOUT.ORDER.APPROVED"
CAPTURE_COMPLETED = "PAYMENT.CAPTURE.COMPLETED"


@pytest.fixture
def ingress(
    store: OrderStore, paypal_client: Any, webhook_verifier: Any, test_settings: Any
) -> WebhookIngress:
    return WebhookIngress(store, paypal_client, webhook_verifier, settings=test_settings)


@pytest.fixture
def deliver(ingress: WebhookIngress, webhook_signer: Any, make_event: Callable[..., bytes]) -> Any:
    """Sign and deliver one event."""

    async def _deliver(event_type: str, order_id: str = "PO-1", transmission_id: Any = None) -> Any:
        body = make_event(event_type, order_id)
        return await ingress.handle(body, webhook_signer.headers(body, transmission_id))

    return _deliver


class TestWebhookEvent:
    """Test suite for envelope decoding."""

    @pytest.mark.unit
    def test_capture_event_resolves_related_order(self, make_event: Any) -> None:
        event = WebhookEvent.parse(make_event(CAPTURE_COMPLETED, "PO-5"))

        assert event.processor_order_id == "PO-5"

    @pytest.mark.unit
    def test_order_event_resolves_resource_id(self, make_event: Any) -> None:
        event = WebhookEvent.parse(make_event(APPROVED, "PO-6"))

        assert event.processor_order_id == "PO-6"

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "body",
        [b"{not json", b"[1, 2]", b'{"resource": {}}', b'{"event_type": "X", "resource": "PO-1"}'],
    )
    def test_malformed_envelope(self, body: bytes) -> None:
        with pytest.raises(BadRequestError):
            WebhookEvent.parse(body)


class TestWebhookIngress:
    """Test suite for WebhookIngress."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [b"", b"   "])
    async def test_empty_body_bad_request(
        self, ingress: WebhookIngress, webhook_signer: Any, body: bytes
    ) -> None:
        with pytest.raises(BadRequestError, match="Empty payload"):
            await ingress.handle(body, webhook_signer.headers(body))

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_missing_headers_unauthorized(
        self, ingress: WebhookIngress, make_event: Any, created_order: Order, store: OrderStore
    ) -> None:
        with pytest.raises(UnauthorizedError):
            await ingress.handle(make_event(APPROVED), {"Content-Type": "application/json"})

        assert (await store.find(created_order.id)).status is OrderStatus.CREATED

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_signed_garbage_bad_request(
        self, ingress: WebhookIngress, webhook_signer: Any
    ) -> None:
        body = b"definitely not json"

        with pytest.raises(BadRequestError, match="Invalid JSON"):
            await ingress.handle(body, webhook_signer.headers(body))

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unknown_order_acknowledged(
        self, deliver: Any, fake_paypal: Any, store: OrderStore, created_order: Order
    ) -> None:
        """Test an event for an order we do not know is handled: false, no mutation."""
        result = await deliver(APPROVED, "PO-UNKNOWN")

        assert result.handled is False
        assert result.ignored is False
        assert fake_paypal.capture_calls == []
        assert (await store.find(created_order.id)).status is OrderStatus.CREATED

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unhandled_event_type(
        self, deliver: Any, store: OrderStore, created_order: Order
    ) -> None:
        result = await deliver("PAYMENT.CAPTURE.REFUNDED")

        assert result.handled is False
        assert (await store.find(created_order.id)).status is OrderStatus.CREATED

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_approved_captures_and_completes(
        self, deliver: Any, fake_paypal: Any, store: OrderStore, created_order: Order
    ) -> None:
        """Test approval captures PO-1 and a COMPLETED capture finishes the order."""
        result = await deliver(APPROVED)

        assert result.handled is True
        assert result.ignored is False
        assert [r.url.path for r in fake_paypal.capture_calls] == [
            "/v2/checkout/orders/PO-1/capture"
        ]
        assert (await store.find(created_order.id)).status is OrderStatus.COMPLETED

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_pending_capture_waits_for_webhook(
        self, deliver: Any, fake_paypal: Any, store: OrderStore, created_order: Order
    ) -> None:
        """Test a capture PayPal has not completed yet leaves the order APPROVED."""
        fake_paypal.capture_order_status = "PENDING"

        await deliver(APPROVED)
        assert (await store.find(created_order.id)).status is OrderStatus.APPROVED

        result = await deliver(CAPTURE_COMPLETED)

        assert result.handled is True
        assert result.ignored is False
        assert (await store.find(created_order.id)).status is OrderStatus.COMPLETED

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_duplicate_approved_ignored(
        self, deliver: Any, fake_paypal: Any, created_order: Order
    ) -> None:
        """Test redelivery of an approval triggers no second capture."""
        await deliver(APPROVED)
        result = await deliver(APPROVED)

        assert result.handled is True
        assert result.ignored is True
        assert len(fake_paypal.capture_calls) == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_capture_completed_before_approved(
        self, deliver: Any, fake_paypal: Any, store: OrderStore, created_order: Order
    ) -> None:
        """Test reordered delivery: completion first, late approval is ignored."""
        await deliver(CAPTURE_COMPLETED)
        result = await deliver(APPROVED)

        assert result.ignored is True
        assert fake_paypal.capture_calls == []
        assert (await store.find(created_order.id)).status is OrderStatus.COMPLETED

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_capture_completed_replay_ignored(
        self, deliver: Any, created_order: Order
    ) -> None:
        await deliver(CAPTURE_COMPLETED)
        result = await deliver(CAPTURE_COMPLETED)

        assert result.handled is True
        assert result.ignored is True

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_capture_failure_keeps_approved(
        self, deliver: Any, fake_paypal: Any, store: OrderStore, created_order: Order
    ) -> None:
        """Test a refused capture fails the delivery but APPROVED stays persisted."""
        fake_paypal.capture_status_code = 422

        with pytest.raises(GatewayError) as exc_info:
            await deliver(APPROVED)

        assert exc_info.value.status_code == 422
        assert (await store.find(created_order.id)).status is OrderStatus.APPROVED

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_storage_failure_is_server_error(
        self, deliver: Any, store: OrderStore, mocker: Any
    ) -> None:
        mocker.patch.object(
            store, "find_by_processor_id", side_effect=PersistenceError("database is locked")
        )

        with pytest.raises(ServerError):
            await deliver(APPROVED)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_events_audited(
        self, deliver: Any, session_factory: Any, created_order: Order
    ) -> None:
        await deliver(APPROVED, transmission_id="T-1")
        await deliver(APPROVED, transmission_id="T-2")

        async with session_factory() as session:
            events = (
                (await session.execute(select(OrderEvent).order_by(OrderEvent.id))).scalars().all()
            )

        assert [(e.transmission_id, e.outcome, e.resulting_status) for e in events] == [
            ("T-1", "applied", "APPROVED"),
            ("T-2", "ignored", "COMPLETED"),
        ]

    @pytest.mark.race
    @pytest.mark.asyncio
    async def test_concurrent_approved_single_capture(
        self, deliver: Any, fake_paypal: Any, store: OrderStore, created_order: Order
    ) -> None:
        """
        Test the same approval delivered twice concurrently.

        Exactly one capture is issued and the other delivery is reported ignored.
        """
        fake_paypal.latency = 0.01

        results = await asyncio.gather(deliver(APPROVED), deliver(APPROVED))

        assert len(fake_paypal.capture_calls) == 1
        assert sorted(r.ignored for r in results) == [False, True]
        assert all(r.handled for r in results)
        assert (await store.find(created_order.id)).status is OrderStatus.COMPLETED


class TestWebhookDedup:
    """Test suite for the Redis transmission dedup fast path."""

    @pytest.fixture
    def redis_client(self, mocker: Any) -> Any:
        client = mocker.AsyncMock()
        client.exists.return_value = 0
        return client

    @pytest.fixture
    def dedup_ingress(
        self,
        store: OrderStore,
        paypal_client: Any,
        webhook_verifier: Any,
        test_settings: Any,
        redis_client: Any,
    ) -> WebhookIngress:
        return WebhookIngress(
            store,
            paypal_client,
            webhook_verifier,
            redis_client=redis_client,
            settings=test_settings,
        )

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_processed_transmission_marked(
        self,
        dedup_ingress: WebhookIngress,
        redis_client: Any,
        webhook_signer: Any,
        make_event: Any,
        created_order: Order,
        test_settings: Any,
    ) -> None:
        body = make_event(APPROVED)

        await dedup_ingress.handle(body, webhook_signer.headers(body, "T-1"))

        redis_client.setex.assert_awaited_once_with(
            "webhook:processed:T-1", test_settings.webhook_dedup_ttl_seconds, "1"
        )

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_known_transmission_short_circuits(
        self,
        dedup_ingress: WebhookIngress,
        redis_client: Any,
        webhook_signer: Any,
        make_event: Any,
        fake_paypal: Any,
        store: OrderStore,
        created_order: Order,
    ) -> None:
        redis_client.exists.return_value = 1
        body = make_event(APPROVED)

        result = await dedup_ingress.handle(body, webhook_signer.headers(body, "T-1"))

        assert result.handled is True
        assert result.ignored is True
        assert fake_paypal.capture_calls == []
        assert (await store.find(created_order.id)).status is OrderStatus.CREATED

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_redis_outage_fails_open(
        self,
        dedup_ingress: WebhookIngress,
        redis_client: Any,
        webhook_signer: Any,
        make_event: Any,
        fake_paypal: Any,
        created_order: Order,
    ) -> None:
        redis_client.exists.side_effect = ConnectionError("redis down")
        redis_client.setex.side_effect = ConnectionError("redis down")
        body = make_event(APPROVED)

        result = await dedup_ingress.handle(body, webhook_signer.headers(body))

        assert result.handled is True
        assert len(fake_paypal.capture_calls) == 1

    @pytest.mark.unit
    def test_dedup_key(self) -> None:
        assert WebhookIngress._dedup_key("T-1") == "webhook:processed:T-1"
