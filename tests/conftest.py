"""
Pytest configuration and fixtures.
"""
import asyncio
import base64
import itertools
import json
import os
import uuid
import zlib
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, AsyncGenerator, Callable, Dict, List, Optional, Tuple

# Settings are read at import time by the API module
os.environ.setdefault("PAYPAL_CLIENT_ID", "test-client-id")
os.environ.setdefault("PAYPAL_CLIENT_SECRET", "test-client-secret")
os.environ.setdefault("PAYPAL_WEBHOOK_ID", "WH-TEST")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("RETRY_BACKOFF_BASE", "0")
os.environ.setdefault("RETRY_BACKOFF_MAX", "0")
os.environ.setdefault("APP_ENV", "test")

import httpx
import pytest
import pytest_asyncio
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.x509.oid import NameOID
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from paypal_checkout.config import Settings
from paypal_checkout.database.connection import create_engine_for_url, init_db
from paypal_checkout.database.models import Order, OrderStatus
from paypal_checkout.database.store import OrderStore
from paypal_checkout.integrations.paypal_client import PayPalClient
from paypal_checkout.integrations.resilience import ResilientTransport
from paypal_checkout.integrations.signature import WebhookVerifier

CERT_URL = "https://api.sandbox.paypal.com/v1/notifications/certs/CERT-360caa42-fca2a594"
WEBHOOK_ID = "WH-TEST"


def pytest_configure(config: Any) -> None:
    config.addinivalue_line("markers", "unit: fast tests without I/O beyond fakes")
    config.addinivalue_line("markers", "race: concurrency tests")
    config.addinivalue_line("markers", "integration: tests through the HTTP API")


class FakeClock:
    """Controllable UTC clock."""

    def __init__(self, now: Optional[datetime] = None):
        self.now = now or datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakePayPal:
    """
    In-memory stand-in for the PayPal REST API.

    Served to httpx through MockTransport; every request is recorded.
    """

    def __init__(self, certificate_pem: bytes):
        self.certificate_pem = certificate_pem
        self.requests: List[httpx.Request] = []
        self.latency = 0.0
        self.token_status = 200
        self.token_lifetime = 32400
        self.create_status = 201
        self.include_approve_link = True
        self.capture_status_code = 201
        self.capture_order_status = "COMPLETED"
        self.cert_status = 200
        self.revoked_bearer_calls = 0
        self.lost_create_responses = 0
        self.lost_capture_responses = 0
        self.created_order_ids: List[str] = []
        self._replies: Dict[str, Tuple[int, Dict[str, Any]]] = {}
        self._order_ids = (f"PO-{n}" for n in itertools.count(1))
        self._tokens = itertools.count(1)

    def calls(self, path_suffix: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.url.path.endswith(path_suffix)]

    @property
    def token_calls(self) -> List[httpx.Request]:
        return self.calls("/v1/oauth2/token")

    @property
    def capture_calls(self) -> List[httpx.Request]:
        return self.calls("/capture")

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.latency:
            await asyncio.sleep(self.latency)

        if self.revoked_bearer_calls and request.headers.get("Authorization", "").startswith("Bearer "):
            self.revoked_bearer_calls -= 1
            return httpx.Response(401, json={"error": "invalid_token"})

        path = request.url.path
        if path == "/v1/oauth2/token":
            if self.token_status != 200:
                return httpx.Response(self.token_status, json={"error": "invalid_client"})
            return httpx.Response(
                200,
                json={
                    "access_token": f"A21-token-{next(self._tokens)}",
                    "token_type": "Bearer",
                    "expires_in": self.token_lifetime,
                },
            )

        # PayPal-Request-Id makes a repeated create/capture return the first reply
        request_id = request.headers.get("PayPal-Request-Id")
        if request_id in self._replies:
            status_code, kwargs = self._replies[request_id]
            return httpx.Response(status_code, **kwargs)

        if path == "/v2/checkout/orders" and request.method == "POST":
            if self.create_status >= 300:
                return httpx.Response(self.create_status, json={"name": "UNPROCESSABLE_ENTITY"})
            reply = (201, {"json": self._new_order()})
            lost = self.lost_create_responses > 0
            self.lost_create_responses -= int(lost)
        elif path.startswith("/v2/checkout/orders/") and path.endswith("/capture"):
            order_id = path.split("/")[4]
            if self.capture_status_code >= 300:
                return httpx.Response(
                    self.capture_status_code,
                    json={"name": "UNPROCESSABLE_ENTITY", "details": [{"issue": "ORDER_NOT_APPROVED"}]},
                )
            reply = (201, {"json": {"id": order_id, "status": self.capture_order_status}})
            lost = self.lost_capture_responses > 0
            self.lost_capture_responses -= int(lost)
        elif path.startswith("/v1/notifications/certs/"):
            if self.cert_status != 200:
                return httpx.Response(self.cert_status)
            return httpx.Response(200, content=self.certificate_pem)
        else:
            return httpx.Response(404, json={"name": "RESOURCE_NOT_FOUND"})

        if request_id:
            self._replies[request_id] = reply
        if lost:
            # Applied at PayPal, but the caller only sees a gateway failure
            return httpx.Response(503, json={"name": "SERVICE_UNAVAILABLE"})
        status_code, kwargs = reply
        return httpx.Response(status_code, **kwargs)

    def _new_order(self) -> Dict[str, Any]:
        order_id = next(self._order_ids)
        self.created_order_ids.append(order_id)
        links = [
            {
                "rel": "self",
                "href": f"https://api-m.sandbox.paypal.com/v2/checkout/orders/{order_id}",
            }
        ]
        if self.include_approve_link:
            links.append(
                {
                    "rel": "approve",
                    "href": f"https://www.sandbox.paypal.com/checkoutnow?token={order_id}",
                }
            )
        return {"id": order_id, "status": "CREATED", "links": links}


class WebhookSigner:
    """Signs webhook bodies the way PayPal does, with a throwaway key."""

    def __init__(self, key: rsa.RSAPrivateKey, webhook_id: str = WEBHOOK_ID, cert_url: str = CERT_URL):
        self.key = key
        self.webhook_id = webhook_id
        self.cert_url = cert_url

    def headers(
        self,
        body: bytes,
        transmission_id: Optional[str] = None,
        transmission_time: str = "2026-03-01T12:00:00Z",
    ) -> Dict[str, str]:
        transmission_id = transmission_id or str(uuid.uuid4())
        crc = zlib.crc32(body) & 0xFFFFFFFF
        message = f"{transmission_id}|{transmission_time}|{self.webhook_id}|{crc}".encode()
        signature = self.key.sign(message, padding.PKCS1v15(), hashes.SHA256())
        return {
            "PAYPAL-TRANSMISSION-ID": transmission_id,
            "PAYPAL-TRANSMISSION-TIME": transmission_time,
            "PAYPAL-AUTH-ALGO": "SHA256withRSA",
            "PAYPAL-TRANSMISSION-SIG": base64.b64encode(signature).decode(),
            "PAYPAL-CERT-URL": self.cert_url,
        }


@pytest.fixture(scope="session")
def signing_key() -> rsa.RSAPrivateKey:
    """RSA key standing in for PayPal's webhook signing key."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def signing_certificate(signing_key: rsa.RSAPrivateKey) -> x509.Certificate:
    """Self-signed certificate for the signing key, valid around now."""
    name = x509.Name(
        [x509.NameAttribute(NameOID.COMMON_NAME, "messageverificationcerts.sandbox.paypal.com")]
    )
    now = datetime.now(timezone.utc)
    return (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(signing_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=30))
        .sign(signing_key, hashes.SHA256())
    )


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    """Create test settings."""
    return Settings(
        paypal_client_id="test-client-id",
        paypal_client_secret="test-client-secret",
        paypal_base_url="https://api-m.sandbox.paypal.com/",
        paypal_webhook_id=WEBHOOK_ID,
        database_url="sqlite+aiosqlite:///:memory:",
        retry_backoff_base=0,
        retry_backoff_max=0,
        app_name="paypal-checkout-test",
        app_env="test",
        log_level="DEBUG",
        debug=True,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_paypal(signing_certificate: x509.Certificate) -> FakePayPal:
    return FakePayPal(signing_certificate.public_bytes(serialization.Encoding.PEM))


@pytest_asyncio.fixture
async def transport(
    fake_paypal: FakePayPal, test_settings: Settings
) -> AsyncGenerator[ResilientTransport, Any]:
    """Resilient transport talking to the fake PayPal API."""
    client = httpx.AsyncClient(transport=httpx.MockTransport(fake_paypal))
    transport = ResilientTransport(client=client, settings=test_settings)
    yield transport
    await transport.aclose()


@pytest.fixture
def paypal_client(transport: ResilientTransport, test_settings: Settings) -> PayPalClient:
    return PayPalClient(transport=transport, settings=test_settings)


@pytest.fixture
def webhook_verifier(transport: ResilientTransport, test_settings: Settings) -> WebhookVerifier:
    return WebhookVerifier(transport, settings=test_settings)


@pytest.fixture
def webhook_signer(signing_key: rsa.RSAPrivateKey) -> WebhookSigner:
    return WebhookSigner(signing_key)


@pytest_asyncio.fixture
async def session_factory(tmp_path: Any) -> AsyncGenerator[async_sessionmaker[AsyncSession], Any]:
    """Session factory over a fresh SQLite database file."""
    engine = create_engine_for_url(f"sqlite+aiosqlite:///{tmp_path / 'orders.db'}")
    await init_db(engine)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)

    await engine.dispose()


@pytest.fixture
def store(session_factory: async_sessionmaker[AsyncSession]) -> OrderStore:
    return OrderStore(session_factory)


@pytest_asyncio.fixture
async def created_order(store: OrderStore) -> Order:
    """A persisted order for PayPal id PO-1 in CREATED."""
    return await store.insert(
        Order(
            processor_order_id="PO-1",
            status=OrderStatus.CREATED,
            total_amount=Decimal("10.00"),
            currency="USD",
        )
    )


@pytest.fixture
def make_event() -> Callable[..., bytes]:
    """Build a raw webhook body."""

    def _make_event(event_type: str, order_id: str = "PO-1") -> bytes:
        if event_type == "PAYMENT.CAPTURE.COMPLETED":
            resource: Dict[str, Any] = {
                "id": f"CAP-{order_id}",
                "status": "COMPLETED",
                "amount": {"currency_code": "USD", "value": "10.00"},
                "supplementary_data": {"related_ids": {"order_id": order_id}},
            }
        else:
            resource = {"id": order_id, "status": "APPROVED", "intent": "CAPTURE"}
        return json.dumps(
            {
                "id": f"WH-{uuid.uuid4()}",
                "event_version": "1.0",
                "event_type": event_type,
                "resource": resource,
            }
        ).encode()

    return _make_event
