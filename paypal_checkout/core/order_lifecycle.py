"""
Order state machine.

Decides, for one webhook event and the order's current status, what should
happen. It performs no I/O: the webhook ingress applies the decision.

PayPal delivers webhooks at least once and in no particular order, so every
transition is idempotent under replay:

    CREATED   + CHECKOUT.ORDER.APPROVED   -> APPROVED, then capture
    APPROVED+ + CHECKOUT.ORDER.APPROVED   -> ignored
    CREATED/APPROVED + PAYMENT.CAPTURE.COMPLETED -> COMPLETED
    COMPLETED + PAYMENT.CAPTURE.COMPLETED -> ignored
    anything  + unknown event             -> unhandled
"""
from dataclasses import dataclass
from enum import Enum
from typing import FrozenSet, Optional

from paypal_checkout.database.models import OrderStatus


class WebhookEventType(str, Enum):
    """PayPal event types this service acts on."""

    ORDER_APPROVED = "CHECKOUT.ORDER.APPROVED"
    CAPTURE_COMPLETED = "PAYMENT.CAPTURE.COMPLETED"

    @classmethod
    def parse(cls, value: str) -> Optional["WebhookEventType"]:
        try:
            return cls(value)
        except ValueError:
            return None


class Outcome(str, Enum):
    """What a decision amounts to."""

    APPLY = "applied"
    IGNORE = "ignored"
    UNHANDLED = "unhandled"


@dataclass(frozen=True)
class Transition:
    """
    Result of feeding one event to the state machine.

    When outcome is APPLY, next_status is the target and from_statuses the
    states the order must still be in at write time.
    """

    outcome: Outcome
    current_status: OrderStatus
    next_status: Optional[OrderStatus] = None
    from_statuses: FrozenSet[OrderStatus] = frozenset()
    capture: bool = False
    reason: str = ""

    @property
    def resulting_status(self) -> OrderStatus:
        return self.next_status or self.current_status


def _approved(status: OrderStatus) -> Transition:
    if status is OrderStatus.CREATED:
        return Transition(
            outcome=Outcome.APPLY,
            current_status=status,
            next_status=OrderStatus.APPROVED,
            from_statuses=frozenset([OrderStatus.CREATED]),
            capture=True,
        )
    if status in (OrderStatus.APPROVED, OrderStatus.COMPLETED):
        return Transition(
            outcome=Outcome.IGNORE,
            current_status=status,
            reason=f"order already {status.value}",
        )
    raise AssertionError(f"unhandled status {status!r}")


def _capture_completed(status: OrderStatus) -> Transition:
    if status in (OrderStatus.CREATED, OrderStatus.APPROVED):
        return Transition(
            outcome=Outcome.APPLY,
            current_status=status,
            next_status=OrderStatus.COMPLETED,
            from_statuses=frozenset([OrderStatus.CREATED, OrderStatus.APPROVED]),
        )
    if status is OrderStatus.COMPLETED:
        return Transition(
            outcome=Outcome.IGNORE,
            current_status=status,
            reason="order already COMPLETED",
        )
    raise AssertionError(f"unhandled status {status!r}")


def decide(event_type: str, status: OrderStatus) -> Transition:
    """
    Decide the transition for an event.

    Args:
        event_type: PayPal event_type string
        status: Current persisted status of the order

    Returns:
        Transition: What to do; never raises for unknown event types
    """
    event = WebhookEventType.parse(event_type)
    if event is WebhookEventType.ORDER_APPROVED:
        return _approved(status)
    if event is WebhookEventType.CAPTURE_COMPLETED:
        return _capture_completed(status)
    return Transition(
        outcome=Outcome.UNHANDLED,
        current_status=status,
        reason=f"unhandled event type {event_type}",
    )
