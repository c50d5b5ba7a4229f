"""
FastAPI dependency providers.

Long-lived collaborators (HTTP client, token cache, verifier, Redis) are
built once per process; tests swap them through app.dependency_overrides.
"""
from functools import lru_cache
from typing import Optional

import redis.asyncio as aioredis
from fastapi import Depends

from paypal_checkout.config import get_settings
from paypal_checkout.core.order_service import OrderService
from paypal_checkout.core.webhook_ingress import WebhookIngress
from paypal_checkout.database.connection import get_session_factory
from paypal_checkout.database.store import OrderStore
from paypal_checkout.integrations.paypal_client import PayPalClient
from paypal_checkout.integrations.signature import WebhookVerifier
from paypal_checkout.monitoring.health import HealthCheck


@lru_cache()
def get_paypal_client() -> PayPalClient:
    return PayPalClient()


@lru_cache()
def get_webhook_verifier() -> WebhookVerifier:
    return WebhookVerifier(get_paypal_client().transport)


@lru_cache()
def get_redis_client() -> Optional[aioredis.Redis]:
    settings = get_settings()
    if not settings.redis_url:
        return None
    return aioredis.from_url(settings.redis_url, encoding="utf-8", decode_responses=True)


def get_order_store() -> OrderStore:
    return OrderStore(get_session_factory())


def get_order_service(
    store: OrderStore = Depends(get_order_store),
    paypal_client: PayPalClient = Depends(get_paypal_client),
) -> OrderService:
    return OrderService(store, paypal_client)


def get_webhook_ingress(
    store: OrderStore = Depends(get_order_store),
    paypal_client: PayPalClient = Depends(get_paypal_client),
    verifier: WebhookVerifier = Depends(get_webhook_verifier),
    redis_client: Optional[aioredis.Redis] = Depends(get_redis_client),
) -> WebhookIngress:
    return WebhookIngress(store, paypal_client, verifier, redis_client=redis_client)


def get_health_check(
    redis_client: Optional[aioredis.Redis] = Depends(get_redis_client),
) -> HealthCheck:
    return HealthCheck(get_session_factory(), redis_client=redis_client)
