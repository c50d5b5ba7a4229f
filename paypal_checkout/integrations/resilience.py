"""
Retry and circuit-breaker policy for outbound PayPal calls.

Implements:
- Exponential backoff for transient errors (timeouts, connection errors, 408, 5xx)
- Circuit breaker pattern, checked on every attempt
- A transport wrapper that applies both around a shared httpx client

The policy lives here rather than inside the PayPal client so it can be
tested without any HTTP details.
"""
import asyncio
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    retry_if_result,
    stop_after_attempt,
    wait_exponential,
)

from paypal_checkout.config import Settings, get_settings
from paypal_checkout.core.exceptions import CircuitOpenError
from paypal_checkout.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

TRANSIENT_STATUS_CODES = frozenset({408})


def is_transient_response(response: httpx.Response) -> bool:
    """Whether an HTTP response should count as a transient failure."""
    return response.status_code >= 500 or response.status_code in TRANSIENT_STATUS_CODES


class CircuitState(Enum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Circuit breaker for PayPal API calls.

    Prevents cascading failures by temporarily stopping requests
    after a run of consecutive failures.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        cooldown: float = 30.0,
        success_threshold: int = 1,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize circuit breaker.

        Args:
            failure_threshold: Consecutive failures before opening circuit
            cooldown: Seconds before attempting a trial call
            success_threshold: Successful trial calls needed to close circuit
            clock: Monotonic time source
        """
        self.failure_threshold = failure_threshold
        self.cooldown = cooldown
        self.success_threshold = success_threshold
        self.clock = clock
        self.failure_count = 0
        self.success_count = 0
        self.opened_at: Optional[float] = None
        self._state = CircuitState.CLOSED
        self._trial_in_flight = False

    @property
    def state(self) -> CircuitState:
        return self._state

    def _set_state(self, state: CircuitState) -> None:
        self._state = state
        metrics.set_circuit_breaker_state(state.value)

    def before_call(self) -> None:
        """
        Gate a call.

        Raises:
            CircuitOpenError: If circuit is open and the cooldown has not elapsed,
                or a half-open trial call is still outstanding
        """
        if self._state is CircuitState.HALF_OPEN:
            if self._trial_in_flight:
                raise CircuitOpenError("Circuit breaker is half-open, trial call in flight")
            self._trial_in_flight = True
        elif self._state is CircuitState.OPEN:
            if self.opened_at is not None and self.clock() - self.opened_at >= self.cooldown:
                self._set_state(CircuitState.HALF_OPEN)
                self.success_count = 0
                self._trial_in_flight = True
                logger.info("circuit_breaker_half_open")
            else:
                raise CircuitOpenError("Circuit breaker is open")

    def release_trial(self) -> None:
        """Free the half-open trial slot when a call ends without a verdict."""
        self._trial_in_flight = False

    def record_success(self) -> None:
        """Record successful call."""
        self.failure_count = 0
        self._trial_in_flight = False
        if self._state is CircuitState.HALF_OPEN:
            self.success_count += 1
            if self.success_count >= self.success_threshold:
                self._set_state(CircuitState.CLOSED)
                self.opened_at = None
                logger.info("circuit_breaker_closed")

    def record_failure(self) -> None:
        """Record failed call."""
        self.failure_count += 1
        self._trial_in_flight = False
        if self._state is CircuitState.HALF_OPEN or self.failure_count >= self.failure_threshold:
            self.opened_at = self.clock()
            self._set_state(CircuitState.OPEN)
            logger.warning(
                "circuit_breaker_opened",
                failure_count=self.failure_count,
                cooldown_seconds=self.cooldown,
            )


def _last_outcome(retry_state: RetryCallState) -> Any:
    """Hand back the final response, or re-raise the final transport error."""
    return retry_state.outcome.result()


class ResilientTransport:
    """
    Outbound HTTP with retry and circuit breaking.

    Features:
    - Automatic retry with exponential backoff
    - Circuit breaker consulted before every attempt
    - Last response returned once retries are exhausted, so callers can
      inspect the final status code
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
        settings: Optional[Settings] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize transport.

        Args:
            client: Shared httpx client (one is created from settings if omitted)
            circuit_breaker: Breaker shared by every call through this transport
            settings: Application settings
            sleep: Awaitable sleep used between attempts
        """
        self.settings = settings or get_settings()
        self.sleep = sleep
        self.client = client or httpx.AsyncClient(timeout=self.settings.http_timeout_seconds)
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            failure_threshold=self.settings.circuit_breaker_failure_threshold,
            cooldown=self.settings.circuit_breaker_cooldown_seconds,
        )
        self.max_attempts = self.settings.retry_max_attempts
        self.backoff_base = self.settings.retry_backoff_base
        self.backoff_max = self.settings.retry_backoff_max

    @staticmethod
    def _log_retry(retry_state: RetryCallState) -> None:
        outcome = retry_state.outcome
        if outcome is not None and outcome.failed:
            reason = type(outcome.exception()).__name__
        else:
            reason = f"http_{outcome.result().status_code}" if outcome else "unknown"
        logger.warning(
            "paypal_call_retrying",
            attempt=retry_state.attempt_number,
            reason=reason,
            sleep_seconds=retry_state.next_action.sleep if retry_state.next_action else None,
        )

    async def _attempt(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        self.circuit_breaker.before_call()
        try:
            response = await self.client.request(method, url, **kwargs)
        except httpx.TransportError:
            self.circuit_breaker.record_failure()
            raise
        except BaseException:
            self.circuit_breaker.release_trial()
            raise
        if is_transient_response(response):
            self.circuit_breaker.record_failure()
        else:
            self.circuit_breaker.record_success()
        return response

    async def request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """
        Send a request under the retry and circuit-breaker policy.

        Args:
            method: HTTP method
            url: Absolute URL
            **kwargs: Passed through to httpx

        Returns:
            httpx.Response: The first non-transient response, or the last one

        Raises:
            CircuitOpenError: If the circuit is open
            httpx.TransportError: If every attempt failed at the transport level
        """
        retrying = AsyncRetrying(
            retry=(
                retry_if_exception_type(httpx.TransportError)
                | retry_if_result(is_transient_response)
            ),
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.backoff_base, max=self.backoff_max),
            sleep=self.sleep,
            before_sleep=self._log_retry,
            retry_error_callback=_last_outcome,
        )
        return await retrying(self._attempt, method, url, **kwargs)

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self.client.aclose()
