"""
OAuth access token cache for the PayPal REST API.

A single token is shared by every request handler in the process. Refreshes
are single-flight: while one credential exchange is running, every other
caller awaits that same exchange and receives its token or its failure.
"""
import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import httpx
import structlog

from paypal_checkout.config import Settings, get_settings
from paypal_checkout.core.exceptions import CircuitOpenError, CredentialExchangeError
from paypal_checkout.integrations.resilience import ResilientTransport
from paypal_checkout.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class AccessToken:
    """Bearer credential and the instant after which it must not be used."""

    value: str
    expires_at: datetime

    def is_valid(self, now: datetime) -> bool:
        return now < self.expires_at


class TokenCache:
    """
    Caches the PayPal bearer token and coalesces concurrent refreshes.

    The token is never persisted; its lifetime is bounded by the process.
    """

    def __init__(
        self,
        transport: ResilientTransport,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        """
        Initialize token cache.

        Args:
            transport: Resilient transport used for the credential exchange
            settings: Application settings
            clock: Source of the current UTC time
        """
        self.settings = settings or get_settings()
        self.transport = transport
        self.clock = clock
        self.expiry_margin = timedelta(seconds=self.settings.token_expiry_margin_seconds)
        self._token: Optional[AccessToken] = None
        self._inflight: Optional[asyncio.Future] = None

    @property
    def token_url(self) -> str:
        return f"{self.settings.paypal_base_url}/v1/oauth2/token"

    def invalidate(self) -> None:
        """Forget the cached token so the next caller performs an exchange."""
        if self._token is not None:
            logger.info("paypal_token_invalidated", expires_at=self._token.expires_at.isoformat())
        self._token = None

    async def get_token(self) -> AccessToken:
        """
        Return a valid token, exchanging credentials if needed.

        Returns:
            AccessToken: Token valid at the time of the call

        Raises:
            CredentialExchangeError: If the exchange fails
        """
        token = self._token
        if token is not None and token.is_valid(self.clock()):
            logger.debug("paypal_token_cache_hit", expires_at=token.expires_at.isoformat())
            return token

        # No await between the check and the assignment, so exactly one
        # caller creates the refresh task per expiry cycle.
        if self._inflight is None:
            self._inflight = asyncio.ensure_future(self._refresh())
            self._inflight.add_done_callback(self._clear_inflight)

        # Shielded so one caller's cancellation does not abort the shared exchange
        return await asyncio.shield(self._inflight)

    def _clear_inflight(self, future: asyncio.Future) -> None:
        if self._inflight is future:
            self._inflight = None
        if not future.cancelled() and future.exception() is not None:
            # Retrieved here so an exchange nobody is awaiting any more is not
            # reported as "exception was never retrieved".
            logger.debug("paypal_token_refresh_failed", error=str(future.exception()))

    async def _refresh(self) -> AccessToken:
        token = await self._exchange()
        self._token = token
        return token

    async def _exchange(self) -> AccessToken:
        logger.debug("paypal_token_requesting", url=self.token_url)
        requested_at = self.clock()

        try:
            response = await self.transport.request(
                "POST",
                self.token_url,
                data={"grant_type": "client_credentials"},
                auth=(self.settings.paypal_client_id, self.settings.paypal_client_secret),
                headers={"Accept": "application/json"},
            )
        except CircuitOpenError as e:
            metrics.record_token_refresh("circuit_open")
            raise CredentialExchangeError(f"PayPal token endpoint unavailable: {e}") from e
        except httpx.HTTPError as e:
            metrics.record_token_refresh("transport_error")
            logger.error("paypal_token_request_failed", error=str(e))
            raise CredentialExchangeError(f"PayPal token endpoint unreachable: {e}") from e

        if not response.is_success:
            metrics.record_token_refresh("rejected")
            logger.error(
                "paypal_token_request_rejected",
                status_code=response.status_code,
                response=response.text,
            )
            raise CredentialExchangeError(
                f"Error requesting PayPal access token: {response.status_code}",
                status_code=response.status_code,
                body=response.text,
            )

        try:
            payload = response.json()
            value = payload["access_token"]
            expires_in = payload["expires_in"]
        except (ValueError, KeyError, TypeError) as e:
            metrics.record_token_refresh("malformed")
            logger.error("paypal_token_missing_in_response", response=response.text)
            raise CredentialExchangeError(
                "PayPal access token not found in response",
                status_code=response.status_code,
                body=response.text,
            ) from e

        if not isinstance(value, str) or not value or isinstance(expires_in, bool) or not isinstance(
            expires_in, int
        ):
            metrics.record_token_refresh("malformed")
            logger.error("paypal_token_malformed", response=response.text)
            raise CredentialExchangeError(
                "PayPal access token response has invalid field types",
                status_code=response.status_code,
                body=response.text,
            )

        lifetime = timedelta(seconds=expires_in) - self.expiry_margin
        if lifetime <= timedelta(0):
            metrics.record_token_refresh("too_short")
            raise CredentialExchangeError(
                f"PayPal token lifetime {expires_in}s is within the expiry margin",
                status_code=response.status_code,
            )

        token = AccessToken(value=value, expires_at=requested_at + lifetime)
        metrics.record_token_refresh("success")
        logger.info("paypal_token_obtained", expires_at=token.expires_at.isoformat())
        return token
